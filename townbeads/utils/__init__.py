"""Small helpers shared by the routing, redirect, and registry writers."""

from .atomic_write import atomic_write_text

__all__ = ["atomic_write_text"]
