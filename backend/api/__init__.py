"""API route handlers."""
from . import banking

__all__ = ["banking"]
