"""Check framework consumed by the town health report."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Iterable, List, Optional

from townbeads.core.errors import TownBeadsError

LOGGER = logging.getLogger(__name__)


class CheckStatus(str, Enum):
    OK = "ok"
    WARNING = "warning"
    ERROR = "error"


@dataclass
class CheckResult:
    name: str
    status: CheckStatus
    message: str
    details: List[str] = field(default_factory=list)
    fix_hint: str = ""
    fixed: bool = False

    @property
    def ok(self) -> bool:
        return self.status is CheckStatus.OK


@dataclass(frozen=True)
class CheckContext:
    town_root: Path

    @property
    def beads_dir(self) -> Path:
        return self.town_root / ".beads"

    @property
    def rigs_path(self) -> Path:
        return self.town_root / "mayor" / "rigs.json"


class Check:
    """A named health check; subclasses that can repair override ``fix``."""

    name = "check"
    description = ""
    can_fix = False

    def run(self, ctx: CheckContext) -> CheckResult:
        raise NotImplementedError

    def fix(self, ctx: CheckContext) -> None:
        raise NotImplementedError(f"{self.name} cannot be fixed automatically")

    def result(self, status: CheckStatus, message: str, **kwargs) -> CheckResult:
        return CheckResult(name=self.name, status=status, message=message, **kwargs)


def run_checks(ctx: CheckContext, checks: Iterable[Check], *, fix: bool = False) -> List[CheckResult]:
    """Run every check; with ``fix`` repair failing fixable checks and re-run them."""

    results: List[CheckResult] = []
    for check in checks:
        result = check.run(ctx)
        if fix and not result.ok and check.can_fix:
            error: Optional[Exception] = None
            try:
                check.fix(ctx)
            except (TownBeadsError, OSError, ValueError) as exc:
                LOGGER.warning("Fix for %s failed: %s", check.name, exc)
                error = exc
            if error is None:
                result = check.run(ctx)
                result.fixed = True
            else:
                result.details.append(f"fix failed: {error}")
        results.append(result)
    return results


__all__ = ["Check", "CheckContext", "CheckResult", "CheckStatus", "run_checks"]
