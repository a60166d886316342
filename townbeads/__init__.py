"""
Shared substrate for a Gas Town fleet: store redirects, prefix routing,
structured description fields, and agent session records.

Everything that touches durable records goes through the external ``bd``
tool; this package only owns the small text artifacts around it.
"""

from importlib import metadata


def get_version() -> str:
    """Return the installed project version."""
    try:
        return metadata.version("townbeads")
    except metadata.PackageNotFoundError:
        return "0.0.0"


__all__ = ["get_version"]
