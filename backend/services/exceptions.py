"""Errors raised by the sync engine to its callers.

Provider failures never surface here directly: during a sync they are
folded into per-connection error strings. These classes cover caller
mistakes (bad input, missing rows). They subclass the matching builtin
so code that already catches ``ValueError`` / ``LookupError`` keeps
working.
"""


class BankingError(Exception):
    """Base class for sync engine errors."""


class ValidationError(BankingError, ValueError):
    """Caller input was rejected before any provider was contacted."""


class NotFoundError(BankingError, LookupError):
    """The requested connection does not exist for this owner."""
