from pathlib import Path

import pytest

from townbeads.beads.redirect import (
    clean_ephemeral_files,
    find_rig_store,
    read_redirect,
    resolve_beads_dir,
    resolve_redirect,
    setup_redirect,
)
from townbeads.core.errors import InvalidLocationError


def _beads(path: Path, redirect: str | None = None) -> Path:
    beads = path / ".beads"
    beads.mkdir(parents=True, exist_ok=True)
    if redirect is not None:
        (beads / "redirect").write_text(redirect, encoding="utf-8")
    return beads


def test_no_redirect_uses_local_store(tmp_path: Path) -> None:
    work = tmp_path / "no-redirect"
    beads = _beads(work)
    resolution = resolve_redirect(work)
    assert resolution.path == beads
    assert resolution.hops == 0
    assert not resolution.redirected
    assert resolution.corruption is None


def test_missing_beads_dir_resolves_to_local_path(tmp_path: Path) -> None:
    work = tmp_path / "fresh"
    work.mkdir()
    assert resolve_beads_dir(work) == work / ".beads"


def test_redirect_is_relative_to_worktree(tmp_path: Path) -> None:
    canonical = _beads(tmp_path / "mayor" / "rig")
    crew = tmp_path / "crew" / "max"
    _beads(crew, "../../mayor/rig/.beads\n")
    resolution = resolve_redirect(crew)
    assert resolution.path == canonical
    assert resolution.hops == 1
    assert resolution.redirected


def test_whitespace_only_redirect_is_ignored(tmp_path: Path) -> None:
    work = tmp_path / "empty-redirect"
    beads = _beads(work, "  \n")
    assert read_redirect(beads) is None
    assert resolve_beads_dir(work) == beads
    assert (beads / "redirect").exists()


def test_chain_is_followed_within_bound(tmp_path: Path) -> None:
    final = _beads(tmp_path / "c")
    _beads(tmp_path / "b", "../c/.beads")
    _beads(tmp_path / "a", "../b/.beads")
    resolution = resolve_redirect(tmp_path / "a")
    assert resolution.path == final
    assert resolution.hops == 2


def test_self_redirect_is_removed(tmp_path: Path) -> None:
    work = tmp_path / "mayor" / "rig"
    beads = _beads(work, "../../mayor/rig/.beads\n")
    resolution = resolve_redirect(work)
    assert resolution.path == beads
    assert resolution.corruption is not None
    assert resolution.corruption.reason == "circular redirect"
    assert resolution.corruption.pointer_file == beads / "redirect"
    assert not (beads / "redirect").exists()
    # Repaired: the next call is a plain local resolution.
    assert resolve_redirect(work).corruption is None


def test_two_node_cycle_removes_pointer_where_loop_closes(tmp_path: Path) -> None:
    a = _beads(tmp_path / "a", "../b/.beads")
    b = _beads(tmp_path / "b", "../a/.beads")
    resolution = resolve_redirect(tmp_path / "a")
    assert resolution.path == a
    assert resolution.corruption is not None
    assert resolution.corruption.pointer_file == b / "redirect"
    assert resolution.corruption.chain == (a, b, a)
    assert not (b / "redirect").exists()
    assert (a / "redirect").exists()
    assert resolve_beads_dir(tmp_path / "a") == b


def test_chain_past_bound_is_cut(tmp_path: Path) -> None:
    _beads(tmp_path / "w4")
    _beads(tmp_path / "w3", "../w4/.beads")
    _beads(tmp_path / "w2", "../w3/.beads")
    _beads(tmp_path / "w1", "../w2/.beads")
    origin = _beads(tmp_path / "w0", "../w1/.beads")

    resolution = resolve_redirect(tmp_path / "w0", max_hops=3)
    assert resolution.path == origin
    assert resolution.corruption is not None
    assert "3 hops" in resolution.corruption.reason
    assert not (tmp_path / "w3" / ".beads" / "redirect").exists()
    assert (origin / "redirect").exists()
    assert resolve_redirect(tmp_path / "w0", max_hops=3).path == tmp_path / "w3" / ".beads"


def test_resolution_is_stable(tmp_path: Path) -> None:
    _beads(tmp_path / "mayor" / "rig")
    _beads(tmp_path / "crew" / "max", "../../mayor/rig/.beads")
    first = resolve_beads_dir(tmp_path / "crew" / "max")
    assert resolve_beads_dir(tmp_path / "crew" / "max" / "." / "") == first
    assert resolve_beads_dir(str(tmp_path / "crew" / "max")) == first


@pytest.fixture()
def town(tmp_path: Path) -> Path:
    root = tmp_path / "town"
    (root / "mayor").mkdir(parents=True)
    return root


def test_setup_redirect_to_local_rig_store(town: Path) -> None:
    _beads(town / "testrig")
    crew = town / "testrig" / "crew" / "max"
    crew.mkdir(parents=True)
    pointer = setup_redirect(town, crew)
    assert pointer == crew / ".beads" / "redirect"
    assert pointer.read_text(encoding="utf-8") == "../../.beads\n"
    assert resolve_beads_dir(crew) == town / "testrig" / ".beads"


def test_setup_redirect_collapses_tracked_chain(town: Path) -> None:
    canonical = _beads(town / "testrig" / "mayor" / "rig")
    _beads(town / "testrig", "mayor/rig/.beads\n")
    crew = town / "testrig" / "crew" / "max"
    crew.mkdir(parents=True)
    pointer = setup_redirect(town, crew)
    assert pointer.read_text(encoding="utf-8") == "../../mayor/rig/.beads\n"
    resolution = resolve_redirect(crew)
    assert resolution.path == canonical
    assert resolution.hops == 1


@pytest.mark.parametrize("worktree", [("polecats", "worker1"), ("refinery", "rig")])
def test_setup_redirect_for_other_worktrees(town: Path, worktree) -> None:
    _beads(town / "testrig")
    path = town.joinpath("testrig", *worktree)
    path.mkdir(parents=True)
    assert setup_redirect(town, path).read_text(encoding="utf-8") == "../../.beads\n"


def test_setup_redirect_with_only_canonical_clone_store(town: Path) -> None:
    canonical = _beads(town / "testrig" / "mayor" / "rig")
    crew = town / "testrig" / "crew" / "max"
    crew.mkdir(parents=True)
    pointer = setup_redirect(town, crew)
    assert pointer.read_text(encoding="utf-8") == "../../mayor/rig/.beads\n"
    assert resolve_beads_dir(crew) == canonical


def test_setup_redirect_cleans_runtime_files_only(town: Path) -> None:
    _beads(town / "testrig")
    crew = town / "testrig" / "crew" / "max"
    local = _beads(crew)
    (local / "beads.db").write_text("fake db", encoding="utf-8")
    (local / "issues.jsonl").write_text("{}", encoding="utf-8")
    (local / "config.yaml").write_text("prefix: test", encoding="utf-8")
    (local / "README.md").write_text("# Beads", encoding="utf-8")

    setup_redirect(town, crew)

    assert not (local / "beads.db").exists()
    assert not (local / "issues.jsonl").exists()
    assert (local / "config.yaml").exists()
    assert (local / "README.md").exists()
    assert (local / "redirect").exists()


def test_setup_redirect_rejects_canonical_clone(town: Path) -> None:
    _beads(town / "testrig")
    mayor_rig = town / "testrig" / "mayor" / "rig"
    mayor_rig.mkdir(parents=True)
    with pytest.raises(InvalidLocationError, match="canonical"):
        setup_redirect(town, mayor_rig)
    assert not (mayor_rig / ".beads").exists()


@pytest.mark.parametrize("depth", [("testrig",), ("testrig", "crew")])
def test_setup_redirect_rejects_shallow_paths(town: Path, depth) -> None:
    _beads(town / "testrig")
    path = town.joinpath(*depth)
    path.mkdir(parents=True, exist_ok=True)
    with pytest.raises(InvalidLocationError):
        setup_redirect(town, path)


def test_setup_redirect_rejects_paths_outside_town(town: Path, tmp_path: Path) -> None:
    outside = tmp_path / "elsewhere" / "crew" / "max"
    outside.mkdir(parents=True)
    with pytest.raises(InvalidLocationError, match="not inside town root"):
        setup_redirect(town, outside)


def test_setup_redirect_fails_without_rig_store(town: Path) -> None:
    crew = town / "testrig" / "crew" / "max"
    crew.mkdir(parents=True)
    with pytest.raises(InvalidLocationError, match="no rig .beads"):
        setup_redirect(town, crew)
    assert not (crew / ".beads").exists()


def test_setup_redirect_fails_when_rig_store_points_nowhere(town: Path) -> None:
    _beads(town / "testrig", "mayor/rig/.beads\n")
    crew = town / "testrig" / "crew" / "max"
    crew.mkdir(parents=True)
    with pytest.raises(InvalidLocationError, match="does not exist"):
        setup_redirect(town, crew)
    assert not (crew / ".beads").exists()


def test_find_rig_store_prefers_rig_root(town: Path) -> None:
    rig_store = _beads(town / "testrig")
    _beads(town / "testrig" / "mayor" / "rig")
    assert find_rig_store(town / "testrig") == rig_store


def test_clean_ephemeral_files_reports_removed(tmp_path: Path) -> None:
    beads = _beads(tmp_path)
    (beads / "daemon.lock").write_text("", encoding="utf-8")
    (beads / "bd.sock").write_text("", encoding="utf-8")
    (beads / "config.yaml").write_text("", encoding="utf-8")
    removed = clean_ephemeral_files(beads)
    assert sorted(path.name for path in removed) == ["bd.sock", "daemon.lock"]
    assert (beads / "config.yaml").exists()
