"""Operator CLI for inspecting store redirects, routes, and town health."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.table import Table

from townbeads.beads.agents import is_agent_session_bead, parse_agent_bead_id
from townbeads.beads.redirect import DEFAULT_MAX_HOPS, resolve_redirect, setup_redirect
from townbeads.beads.routes import find_conflicting_prefixes, load_routes
from townbeads.core.errors import InvalidLocationError
from townbeads.doctor import CheckContext, CheckResult, CheckStatus, default_checks, run_checks
from townbeads.session import find_town_root

app = typer.Typer(help="Inspect beads redirects, prefix routes, and town health.")
console = Console()

_STATUS_STYLE = {
    CheckStatus.OK: "[green]ok[/green]",
    CheckStatus.WARNING: "[yellow]warning[/yellow]",
    CheckStatus.ERROR: "[red]error[/red]",
}


def _resolve_town_root(path: Path | None) -> Path:
    if path is not None:
        resolved = path.expanduser().absolute()
        if not resolved.is_dir():
            raise typer.BadParameter(f"Town root not found at {resolved}")
        return resolved
    return find_town_root(Path.cwd()) or Path.cwd().absolute()


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Log debug output to stderr.")) -> None:
    if verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")


@app.command()
def resolve(
    work_dir: Path = typer.Argument(Path("."), help="Working copy whose store should be located."),
    max_hops: int = typer.Option(DEFAULT_MAX_HOPS, "--max-hops", min=1, max=16),
    as_json: bool = typer.Option(False, "--json", help="Emit JSON instead of text."),
) -> None:
    """Follow .beads/redirect pointers to the canonical store."""

    resolution = resolve_redirect(work_dir, max_hops=max_hops)
    payload = {
        "work_dir": str(work_dir.expanduser().absolute()),
        "beads_dir": str(resolution.path),
        "hops": resolution.hops,
        "repaired": resolution.corruption.describe() if resolution.corruption else None,
    }
    if as_json:
        typer.echo(json.dumps(payload, indent=2))
        return
    console.print(f"[bold]Store:[/bold] {resolution.path}")
    console.print(f"[dim]{resolution.hops} redirect hop(s)[/dim]")
    if resolution.corruption is not None:
        console.print(f"[yellow]Removed corrupt redirect:[/yellow] {resolution.corruption.describe()}")


@app.command("setup-redirect")
def setup_redirect_command(
    worktree: Path = typer.Argument(..., help="Worktree to point at its rig's canonical store."),
    town_root: Path | None = typer.Option(None, "--town-root", show_default=False, help="Town root (auto-detected)."),
) -> None:
    """Write a single-hop redirect from a worktree to its rig's store."""

    town = _resolve_town_root(town_root)
    try:
        pointer = setup_redirect(town, worktree)
    except InvalidLocationError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1) from exc
    console.print(f"[green]Wrote[/green] {pointer}: {pointer.read_text(encoding='utf-8').strip()}")


@app.command()
def routes(
    town_root: Path | None = typer.Option(None, "--town-root", show_default=False, help="Town root (auto-detected)."),
    as_json: bool = typer.Option(False, "--json", help="Emit JSON instead of a table."),
) -> None:
    """List prefix routes from the town routes.jsonl."""

    town = _resolve_town_root(town_root)
    table_rows = load_routes(town / ".beads")
    if as_json:
        typer.echo(json.dumps([route.model_dump() for route in table_rows], indent=2))
        return
    if not table_rows:
        console.print("[yellow]No routes configured.[/yellow]")
        return
    duplicates = find_conflicting_prefixes(table_rows)
    table = Table("Prefix", "Path", "Exists")
    for route in table_rows:
        exists = (town / route.path).exists()
        prefix = f"[red]{route.prefix}[/red]" if route.prefix in duplicates else route.prefix
        table.add_row(prefix, route.path, "yes" if exists else "[red]no[/red]")
    console.print(table)


def _print_results(results: List[CheckResult]) -> None:
    table = Table("Check", "Status", "Message")
    for result in results:
        status = _STATUS_STYLE[result.status]
        if result.fixed:
            status += " (fixed)"
        table.add_row(result.name, status, result.message)
    console.print(table)
    for result in results:
        for detail in result.details:
            console.print(f"  [dim]{result.name}:[/dim] {detail}")
        if not result.ok and result.fix_hint:
            console.print(f"  [cyan]hint:[/cyan] {result.fix_hint}")


@app.command()
def doctor(
    town_root: Path | None = typer.Option(None, "--town-root", show_default=False, help="Town root (auto-detected)."),
    fix: bool = typer.Option(False, "--fix", help="Repair what can be repaired automatically."),
    as_json: bool = typer.Option(False, "--json", help="Emit JSON instead of a table."),
) -> None:
    """Check routing and registry consistency."""

    ctx = CheckContext(town_root=_resolve_town_root(town_root))
    results = run_checks(ctx, default_checks(), fix=fix)
    if as_json:
        typer.echo(
            json.dumps(
                [
                    {
                        "name": result.name,
                        "status": result.status.value,
                        "message": result.message,
                        "details": result.details,
                        "fixed": result.fixed,
                    }
                    for result in results
                ],
                indent=2,
            )
        )
    else:
        _print_results(results)
    if any(result.status is CheckStatus.ERROR for result in results):
        raise typer.Exit(code=1)


@app.command("parse-id")
def parse_id(
    bead_id: str = typer.Argument(..., help="Record id, e.g. gt-gastown-crew-joe."),
    as_json: bool = typer.Option(False, "--json"),
) -> None:
    """Decompose an agent record id into rig, role, and name."""

    rig, role, name, ok = parse_agent_bead_id(bead_id)
    if not ok:
        raise typer.BadParameter(f"{bead_id!r} is not an agent id (prefix must be 2-3 characters)")
    payload = {"id": bead_id, "rig": rig, "role": role, "name": name, "agent": is_agent_session_bead(bead_id)}
    if as_json:
        typer.echo(json.dumps(payload, indent=2))
        return
    table = Table("Field", "Value")
    for key in ("rig", "role", "name", "agent"):
        value: Optional[object] = payload[key]
        table.add_row(key, str(value) if value != "" else "-")
    console.print(table)


if __name__ == "__main__":  # pragma: no cover
    app()
