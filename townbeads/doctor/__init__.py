"""Health checks over the town's routing and registry files."""

from .checks import Check, CheckContext, CheckResult, CheckStatus, run_checks
from .routes_check import PrefixMismatchCheck, RoutesCheck, default_checks

__all__ = [
    "Check",
    "CheckContext",
    "CheckResult",
    "CheckStatus",
    "PrefixMismatchCheck",
    "RoutesCheck",
    "default_checks",
    "run_checks",
]
