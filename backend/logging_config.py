"""Centralized logging configuration.

Every handler installed here carries :class:`RedactSecretsFilter`, so an
OAuth token or client secret that slips into a log message (for example
inside a bank's error body) is masked before it is written.
"""

import logging
import re

from config import settings

REDACTED = "[REDACTED]"

# Each pattern captures the label in group 1 and the secret after it
_SECRET_PATTERNS = (
    re.compile(r"(Bearer\s+)[A-Za-z0-9\-._~+/]+=*", re.IGNORECASE),
    re.compile(
        r"((?:access_token|refresh_token|id_token|client_secret|authorization_code)"
        r"[\"']?\s*[:=]\s*[\"']?)[^\s\"'&,}]+",
        re.IGNORECASE,
    ),
    re.compile(r"([?&]code=)[^\s&]+"),
)


def redact_secrets(text: str) -> str:
    """Mask bearer tokens, OAuth token fields and authorization codes."""
    for pattern in _SECRET_PATTERNS:
        text = pattern.sub(lambda m: m.group(1) + REDACTED, text)
    return text


class RedactSecretsFilter(logging.Filter):
    """Rewrite a record's message with secrets masked. Never drops a record."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = redact_secrets(message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


def setup_logging() -> None:
    """Configure logging for the application.

    Sets root logger level from settings.LOG_LEVEL, masks secrets on every
    root handler and suppresses noisy third-party loggers to WARNING.
    """
    logging.basicConfig(
        format="%(asctime)s %(levelname)-8s %(name)s  %(message)s",
        datefmt="%H:%M:%S",
        level=getattr(logging, settings.LOG_LEVEL),
        force=True,
    )
    for handler in logging.getLogger().handlers:
        handler.addFilter(RedactSecretsFilter())

    # httpx logs full request URLs, which carry authorization codes
    for name in (
        "sqlalchemy.engine",
        "sqlalchemy.pool",
        "httpx",
        "httpcore",
        "urllib3",
    ):
        logging.getLogger(name).setLevel(logging.WARNING)
