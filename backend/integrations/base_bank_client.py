"""Shared OAuth and HTTP plumbing for bank clients.

Each concrete bank client (DBS, OCBC, UOB) subclasses
:class:`BaseBankClient`, declares its endpoints, page size and
description-cleaning rules, and maps the bank's JSON rows to the
canonical :mod:`integrations.provider_protocol` shapes. All transport
failures are translated into :mod:`integrations.exceptions` errors here,
so no ``httpx`` exception ever escapes a bank client.
"""

import logging
import re
from datetime import date
from decimal import Decimal
from urllib.parse import urlencode

import httpx

from integrations.exceptions import (
    ProviderAuthError,
    ProviderAuthExpiredError,
    ProviderError,
    ProviderForbiddenError,
    ProviderRateLimitError,
    ProviderTimeoutError,
    ProviderUnavailableError,
    ProviderUnknownError,
)
from integrations.parsing_utils import parse_amount, parse_iso_datetime
from integrations.provider_protocol import (
    AccountType,
    BankAccount,
    BankTransaction,
    ProviderName,
    TokenGrant,
    TransactionCategory,
    TransactionDirection,
)

logger = logging.getLogger(__name__)

# Request modes, used to pick the right error class for a failed response
_MODE_AUTHORIZE = "authorize"
_MODE_REFRESH = "refresh"
_MODE_API = "api"

_DEBIT_INDICATORS = frozenset({"DEBIT", "DR", "D"})

# Last-resort merchant rule: leading run of capitalized words
_GENERIC_MERCHANT_PATTERN = re.compile(r"^([A-Z][A-Za-z&'.]*(?:\s+[A-Z][A-Za-z&'.]*)*)")

# Shared account type aliases; each bank adds its own product codes
_BASE_ACCOUNT_TYPE_MAP: dict[str, AccountType] = {t.value: t for t in AccountType}


def first_present(row: dict, *keys: str, default=None):
    """Return the first non-empty value among ``keys`` in ``row``.

    Bank feeds rename fields between API versions (``accountNumber`` vs
    ``account_number``), so lookups try each known spelling in order.
    """
    for key in keys:
        value = row.get(key)
        if value is not None and value != "":
            return value
    return default


class BaseBankClient:
    """Base class for bank API clients.

    Implements the BankProviderClient protocol apart from the
    bank-specific ``get_accounts`` / ``get_transactions`` mapping.
    """

    PROVIDER: ProviderName
    AUTHORIZE_PATH = "/oauth/authorize"
    TOKEN_PATH = "/oauth/token"
    TOKEN_FORM_ENCODED = False
    SCOPES: tuple[str, ...] = ()
    PAGE_SIZE = 100
    API_HEADERS: dict[str, str] = {}
    ACCOUNT_TYPE_ALIASES: dict[str, AccountType] = {}

    # (pattern, replacement) pairs applied in order to raw descriptions
    DESCRIPTION_CLEANUP: tuple[tuple[re.Pattern, str], ...] = ()
    # Tried in order before the generic rule; group 1 is the merchant
    MERCHANT_PATTERNS: tuple[re.Pattern, ...] = ()
    MIN_MERCHANT_LENGTH = 2

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        base_url: str,
        timeout: float = 30.0,
        http_client: httpx.Client | None = None,
    ):
        """Initialize the client.

        Args:
            client_id: OAuth client ID issued by the bank.
            client_secret: OAuth client secret issued by the bank.
            base_url: API base URL, e.g. ``https://api.dbs.com/v1``.
            timeout: Per-request timeout in seconds.
            http_client: Pre-built ``httpx.Client`` (tests inject one backed
                by ``httpx.MockTransport``). Its ``base_url`` is used as-is.
        """
        self._client_id = client_id
        self._client_secret = client_secret
        self._base_url = base_url.rstrip("/")
        self._http = http_client or httpx.Client(
            base_url=self._base_url,
            timeout=timeout,
            headers={"User-Agent": "PHV-Bank-Sync/1.0"},
        )

    @property
    def provider_name(self) -> str:
        """Return the provider name for database storage."""
        return self.PROVIDER.value

    def is_configured(self) -> bool:
        """Check if client credentials are configured."""
        return bool(self._client_id) and bool(self._client_secret)

    def close(self) -> None:
        """Close the underlying HTTP connection pool."""
        self._http.close()

    # ------------------------------------------------------------------
    # OAuth
    # ------------------------------------------------------------------

    def get_authorization_url(self, state: str, redirect_uri: str) -> str:
        """Build the OAuth authorization URL for this bank."""
        params = {
            "response_type": "code",
            "client_id": self._client_id,
            "redirect_uri": redirect_uri,
            "scope": " ".join(self.SCOPES),
            "state": state,
        }
        return f"{self._base_url}{self.AUTHORIZE_PATH}?{urlencode(params)}"

    def authenticate(
        self, authorization_code: str, redirect_uri: str | None = None
    ) -> TokenGrant:
        """Exchange an authorization code for an access/refresh token pair."""
        payload = {
            "grant_type": "authorization_code",
            "client_id": self._client_id,
            "client_secret": self._client_secret,
            "code": authorization_code,
        }
        payload.update(self._extra_authorize_params(redirect_uri))
        data = self._token_request(payload, mode=_MODE_AUTHORIZE)
        grant = self._parse_grant(data, previous_refresh_token=None)
        logger.info("%s: authorization code exchanged", self.provider_name)
        return grant

    def refresh_access_token(self, refresh_token: str) -> TokenGrant:
        """Exchange a refresh token for a new token pair.

        Some banks rotate refresh tokens, others omit the field; when it is
        omitted the old refresh token is carried over.
        """
        payload = {
            "grant_type": "refresh_token",
            "client_id": self._client_id,
            "client_secret": self._client_secret,
            "refresh_token": refresh_token,
        }
        data = self._token_request(payload, mode=_MODE_REFRESH)
        grant = self._parse_grant(data, previous_refresh_token=refresh_token)
        logger.info("%s: access token refreshed", self.provider_name)
        return grant

    def _extra_authorize_params(self, redirect_uri: str | None) -> dict[str, str]:
        """Bank-specific additions to the authorization-code payload."""
        if redirect_uri:
            return {"redirect_uri": redirect_uri}
        return {}

    def _token_request(self, payload: dict, mode: str) -> dict:
        if self.TOKEN_FORM_ENCODED:
            return self._request("POST", self.TOKEN_PATH, mode=mode, data=payload)
        return self._request("POST", self.TOKEN_PATH, mode=mode, json=payload)

    def _parse_grant(
        self, data: dict, previous_refresh_token: str | None
    ) -> TokenGrant:
        access_token = data.get("access_token")
        if not access_token:
            raise ProviderUnknownError(
                "Token response missing access_token",
                provider_name=self.provider_name,
            )
        refresh_token = data.get("refresh_token") or previous_refresh_token
        if not refresh_token:
            raise ProviderUnknownError(
                "Token response missing refresh_token",
                provider_name=self.provider_name,
            )
        try:
            expires_in = int(data.get("expires_in", 0))
        except (TypeError, ValueError):
            expires_in = 0
        return TokenGrant(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=max(expires_in, 0),
        )

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    def _auth_headers(self, access_token: str) -> dict[str, str]:
        headers = {"Authorization": f"Bearer {access_token}"}
        headers.update(self.API_HEADERS)
        return headers

    def _get(self, path: str, access_token: str, params: dict | None = None) -> dict:
        return self._request(
            "GET", path, mode=_MODE_API,
            params=params, headers=self._auth_headers(access_token),
        )

    def _request(self, method: str, path: str, mode: str = _MODE_API, **kwargs) -> dict:
        """Send a request and return its JSON object body.

        Raises:
            ProviderError: A subclass matching the failure; never a raw
                ``httpx`` exception.
        """
        try:
            response = self._http.request(method, path, **kwargs)
        except httpx.TimeoutException as exc:
            raise ProviderTimeoutError(
                "Request timeout - bank service is slow to respond",
                provider_name=self.provider_name,
            ) from exc
        except httpx.HTTPError as exc:
            raise ProviderUnavailableError(
                f"Network error connecting to {self.provider_name}",
                provider_name=self.provider_name,
            ) from exc

        logger.debug(
            "%s API %s %s -> %d",
            self.provider_name, method, path, response.status_code,
        )

        if not response.is_success:
            raise self._status_error(response, mode)

        try:
            body = response.json()
        except ValueError as exc:
            raise ProviderUnknownError(
                f"{self.provider_name} returned a malformed response",
                provider_name=self.provider_name,
                status_code=response.status_code,
            ) from exc
        if not isinstance(body, dict):
            raise ProviderUnknownError(
                f"{self.provider_name} returned an unexpected response shape",
                provider_name=self.provider_name,
                status_code=response.status_code,
            )
        return body

    def _status_error(self, response: httpx.Response, mode: str) -> ProviderError:
        """Map a non-2xx response to the provider error taxonomy."""
        status = response.status_code
        detail = self._error_detail(response)
        logger.warning(
            "%s API error: HTTP %d on %s %s",
            self.provider_name, status, response.request.method, response.request.url.path,
        )

        if mode == _MODE_AUTHORIZE:
            return ProviderAuthError(
                f"{self.provider_name} authorization failed (HTTP {status}): {detail}",
                provider_name=self.provider_name,
                status_code=status,
            )
        if status == 401 or (mode == _MODE_REFRESH and status == 400):
            return ProviderAuthExpiredError(
                "Authentication failed - token may be expired",
                provider_name=self.provider_name,
                status_code=status,
            )
        if status == 403:
            return ProviderForbiddenError(
                "Access forbidden - insufficient permissions",
                provider_name=self.provider_name,
                status_code=status,
            )
        if status == 429:
            return ProviderRateLimitError(
                "Rate limit exceeded - too many requests",
                provider_name=self.provider_name,
                retry_after=self._retry_after(response),
            )
        if status >= 500:
            return ProviderUnavailableError(
                f"Bank service temporarily unavailable (HTTP {status})",
                provider_name=self.provider_name,
                status_code=status,
            )
        return ProviderUnknownError(
            f"{self.provider_name} API error: {detail}",
            provider_name=self.provider_name,
            status_code=status,
        )

    @staticmethod
    def _error_detail(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return "Unknown error"
        if isinstance(body, dict):
            return str(
                first_present(body, "message", "error_description", "error", default="Unknown error")
            )
        return "Unknown error"

    @staticmethod
    def _retry_after(response: httpx.Response) -> float | None:
        value = response.headers.get("Retry-After")
        if value is None:
            return None
        try:
            return float(value)
        except ValueError:
            return None

    # ------------------------------------------------------------------
    # Normalization helpers
    # ------------------------------------------------------------------

    def map_account_type(self, raw_type) -> AccountType:
        """Map a bank product code onto the normalized account type.

        Unknown codes default to SAVINGS.
        """
        if not raw_type:
            return AccountType.SAVINGS
        key = str(raw_type).strip().upper()
        mapped = self.ACCOUNT_TYPE_ALIASES.get(key) or _BASE_ACCOUNT_TYPE_MAP.get(key)
        return mapped or AccountType.SAVINGS

    def clean_description(self, description: str | None) -> str:
        """Strip bank boilerplate (channel prefixes, refs, dates, country)."""
        cleaned = (description or "").strip()
        for pattern, replacement in self.DESCRIPTION_CLEANUP:
            cleaned = pattern.sub(replacement, cleaned)
        return " ".join(cleaned.split())

    def extract_merchant(self, cleaned_description: str) -> str | None:
        """Best-effort merchant extraction from a cleaned description.

        Bank-specific patterns are tried most-specific first, then the
        generic leading-capitalized-words rule. Returns ``None`` when nothing
        matches.
        """
        if not cleaned_description:
            return None
        for pattern in self.MERCHANT_PATTERNS:
            match = pattern.search(cleaned_description)
            if match and match.group(1):
                candidate = match.group(1).strip()
                if len(candidate) > self.MIN_MERCHANT_LENGTH:
                    return candidate
        match = _GENERIC_MERCHANT_PATTERN.match(cleaned_description)
        if match:
            candidate = match.group(1).strip()
            if len(candidate) > self.MIN_MERCHANT_LENGTH:
                return candidate
        return None

    @staticmethod
    def resolve_direction(amount: Decimal, indicator) -> TransactionDirection:
        """Debit if the bank flags it as one or reports a negative amount."""
        if indicator is not None and str(indicator).strip().upper() in _DEBIT_INDICATORS:
            return TransactionDirection.DEBIT
        if amount < 0:
            return TransactionDirection.DEBIT
        return TransactionDirection.CREDIT

    def build_transaction(
        self,
        row: dict,
        *,
        external_id,
        amount_raw,
        indicator,
        description_raw,
        date_raw,
        currency: str | None = None,
        external_id_prefix: str = "",
        description_prefix: str = "",
        merchant: str | None = None,
        category: TransactionCategory | None = None,
    ) -> BankTransaction | None:
        """Map one raw feed row to a BankTransaction.

        Returns ``None`` (and logs) for rows that cannot be deduplicated or
        dated; the rest of the page is still processed.
        """
        if external_id is None or str(external_id).strip() == "":
            logger.warning("%s: skipping transaction without an id", self.provider_name)
            return None

        occurred_at = parse_iso_datetime(date_raw)
        if occurred_at is None:
            logger.warning(
                "%s: skipping transaction %s with unparseable date %r",
                self.provider_name, external_id, date_raw,
            )
            return None

        signed_amount = parse_amount(amount_raw)
        if signed_amount is None:
            signed_amount = Decimal("0")

        raw_description = " ".join(str(description_raw or "").split())
        cleaned = self.clean_description(raw_description)
        if merchant is None:
            merchant = self.extract_merchant(cleaned)

        return BankTransaction(
            external_id=f"{external_id_prefix}{external_id}",
            amount=abs(signed_amount),
            direction=self.resolve_direction(signed_amount, indicator),
            description=f"{description_prefix}{raw_description}",
            cleaned_description=f"{description_prefix}{cleaned}",
            occurred_at=occurred_at,
            merchant=merchant,
            category=category,
            running_balance=parse_amount(row.get("runningBalance")),
            currency=currency or row.get("currency"),
            raw_data=row,
        )

    @staticmethod
    def format_date(value: date) -> str:
        """Render a date the way every supported bank expects (YYYY-MM-DD)."""
        return value.strftime("%Y-%m-%d")

    # ------------------------------------------------------------------
    # Supplementary feeds
    # ------------------------------------------------------------------

    def get_supplementary_transactions(
        self,
        access_token: str,
        from_date: date,
        to_date: date,
    ) -> list[BankTransaction]:
        """Banks without extra feeds return nothing."""
        return []

    def _best_effort_feed(self, feed_name: str, fetch) -> list[BankTransaction]:
        """Run ``fetch()``; on any provider error log and return ``[]``.

        Wallet and payment feeds are not enabled for every account, so a
        failure here must never fail the connection's sync.
        """
        try:
            return fetch()
        except ProviderError as e:
            logger.warning("%s: %s transactions not available: %s", self.provider_name, feed_name, e)
            return []

    def _rows(self, body: dict, *keys: str) -> list[dict]:
        rows = first_present(body, *keys, default=[])
        if not isinstance(rows, list):
            raise ProviderUnknownError(
                f"{self.provider_name} returned a non-list {keys[0]} field",
                provider_name=self.provider_name,
            )
        return [r for r in rows if isinstance(r, dict)]

    def _map_account_row(self, row: dict, *, number_keys, type_keys, balance_keys, name_keys, default_name: str) -> BankAccount | None:
        account_number = first_present(row, *number_keys)
        if not account_number:
            logger.warning("%s: skipping account without a number", self.provider_name)
            return None
        balance = parse_amount(first_present(row, *balance_keys, default=0)) or Decimal("0")
        return BankAccount(
            account_number=str(account_number),
            account_type=self.map_account_type(first_present(row, *type_keys)),
            balance=balance,
            currency=row.get("currency") or "SGD",
            account_name=first_present(row, *name_keys) or default_name,
        )
