"""Token encryption - Fernet cipher for OAuth tokens and OAuth state.

Implements the SecretsPort. Tokens are encrypted with Fernet
(AES-128-CBC + HMAC-SHA256) before they reach the database, and the
same key authenticates the OAuth ``state`` parameter so a callback can
prove it started from our own authorization URL.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from cryptography.fernet import Fernet, InvalidToken

from config import settings

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def resolve_token_key() -> str:
    """Determine the Fernet key to use for token encryption.

    A configured ``TOKEN_ENCRYPTION_KEY`` (environment, ``.env`` or
    keychain) always wins. Otherwise a fresh key is generated and stored
    in the keychain so later runs can decrypt what this run encrypts.

    Raises:
        RuntimeError: If no key is configured and the keychain cannot
            store a generated one.
    """
    configured_key = settings.TOKEN_ENCRYPTION_KEY
    if configured_key:
        _validate_key(configured_key)
        return configured_key

    key = Fernet.generate_key().decode()
    from services.credential_manager import set_credential

    if set_credential("TOKEN_ENCRYPTION_KEY", key):
        logger.info("Generated new token encryption key and stored in keychain")
        settings.TOKEN_ENCRYPTION_KEY = key
        return key

    raise RuntimeError(
        "No TOKEN_ENCRYPTION_KEY configured and the keychain is unavailable. "
        "Run scripts/setup_token_key.py or set TOKEN_ENCRYPTION_KEY in the "
        "environment."
    )


def _validate_key(key: str) -> None:
    try:
        Fernet(key)
    except (ValueError, TypeError) as e:
        raise RuntimeError(
            "TOKEN_ENCRYPTION_KEY is not a valid Fernet key "
            "(expected 32 url-safe base64-encoded bytes)"
        ) from e


class TokenEncryption:
    """Encrypt and decrypt OAuth tokens for storage in the database."""

    def __init__(
        self,
        key: Optional[str] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """Initialize the cipher.

        Args:
            key: Fernet key. Resolved via :func:`resolve_token_key` if None.
            clock: Returns the current UTC time; used for state expiry.
        """
        self._fernet = Fernet(key or resolve_token_key())
        self._clock = clock or _utcnow

    def encrypt(self, plaintext: str) -> str:
        """Encrypt a token for storage in a TEXT column."""
        return self._fernet.encrypt(plaintext.encode()).decode()

    def decrypt(self, ciphertext: str) -> str:
        """Decrypt a stored token.

        Raises:
            ValueError: If the ciphertext was tampered with or was
                produced by a different key.
        """
        try:
            return self._fernet.decrypt(ciphertext.encode()).decode()
        except InvalidToken:
            raise ValueError("Stored token could not be decrypted") from None

    def sign_state(self, owner_id: str, provider_name: str) -> str:
        """Build an opaque OAuth ``state`` value for an authorization URL."""
        payload = json.dumps({"owner_id": owner_id, "provider_name": provider_name})
        now = int(self._clock().timestamp())
        return self._fernet.encrypt_at_time(payload.encode(), now).decode()

    def verify_state(self, state: str, max_age_seconds: Optional[int] = None) -> dict:
        """Decode a ``state`` value produced by :meth:`sign_state`.

        Returns:
            ``{"owner_id": ..., "provider_name": ...}``

        Raises:
            ValueError: If the state is forged, corrupted or older than
                ``max_age_seconds`` (default ``OAUTH_STATE_MAX_AGE_SECONDS``).
        """
        ttl = max_age_seconds if max_age_seconds is not None else settings.OAUTH_STATE_MAX_AGE_SECONDS
        now = int(self._clock().timestamp())
        try:
            raw = self._fernet.decrypt_at_time(state.encode(), ttl, now)
        except InvalidToken:
            raise ValueError("Invalid or expired OAuth state") from None
        return json.loads(raw)
