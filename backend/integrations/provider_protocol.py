"""Provider protocol definitions for multi-bank support.

This module defines the canonical shapes and the common interface that
all bank clients (DBS, OCBC, UOB) must implement to work with the sync
engine. Nothing above this layer knows which bank it is talking to
beyond the ``provider_name`` tag.
"""

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Protocol


class ProviderName(str, Enum):
    """Closed set of supported banks."""

    DBS = "DBS"
    OCBC = "OCBC"
    UOB = "UOB"


class AccountType(str, Enum):
    """Normalized bank account types."""

    SAVINGS = "SAVINGS"
    CURRENT = "CURRENT"
    FIXED_DEPOSIT = "FIXED_DEPOSIT"
    FOREIGN_CURRENCY = "FOREIGN_CURRENCY"
    CREDIT_CARD = "CREDIT_CARD"
    LOAN = "LOAN"


class TransactionDirection(str, Enum):
    """Money leaving (DEBIT) or entering (CREDIT) the account."""

    DEBIT = "DEBIT"
    CREDIT = "CREDIT"


class TransactionCategory(str, Enum):
    """Spending/earning categories relevant to PHV drivers."""

    PHV_EARNING = "PHV_EARNING"
    FUEL = "FUEL"
    VEHICLE_MAINTENANCE = "VEHICLE_MAINTENANCE"
    INSURANCE = "INSURANCE"
    TRANSPORT = "TRANSPORT"
    DIGITAL_PAYMENT = "DIGITAL_PAYMENT"
    OTHER = "OTHER"


class ErrorCategory(str, Enum):
    """Category of a provider error."""

    AUTH = "auth"
    AUTH_EXPIRED = "auth_expired"
    FORBIDDEN = "forbidden"
    RATE_LIMITED = "rate_limited"
    UNAVAILABLE = "unavailable"
    TIMEOUT = "timeout"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class TokenGrant:
    """Result of an OAuth code exchange or token refresh."""

    access_token: str
    refresh_token: str
    expires_in: int  # Seconds until the access token expires

    def __repr__(self) -> str:
        # Never render token material
        return f"TokenGrant(expires_in={self.expires_in})"


@dataclass
class BankAccount:
    """Normalized account data from any bank.

    All bank clients must map their account data to this format.
    """

    account_number: str
    account_type: AccountType
    balance: Decimal
    currency: str  # ISO 4217, e.g. "SGD"
    account_name: str


@dataclass
class BankTransaction:
    """Normalized transaction data from any bank.

    All bank clients must map their transaction feed to this format.
    """

    external_id: str  # Bank's own transaction ID, unique within an account
    amount: Decimal  # Unsigned magnitude; sign lives in ``direction``
    direction: TransactionDirection
    description: str  # Provider text as received (plus any feed prefix)
    occurred_at: datetime
    merchant: str | None = None
    category: TransactionCategory | None = None  # Set only when the feed implies one
    running_balance: Decimal | None = None
    currency: str | None = None
    raw_data: dict | None = None  # Raw provider row for debugging
    cleaned_description: str | None = None  # Boilerplate stripped; drives categorization


class BankProviderClient(Protocol):
    """Protocol that all bank clients must implement.

    Any new bank integration must implement these methods and raise only
    :mod:`integrations.exceptions` errors.
    """

    @property
    def provider_name(self) -> str:
        """Return the provider name (a ``ProviderName`` value)."""
        ...

    def is_configured(self) -> bool:
        """Check if this bank has client credentials configured."""
        ...

    def get_authorization_url(self, state: str, redirect_uri: str) -> str:
        """Build the OAuth authorization URL. Pure, no network call."""
        ...

    def authenticate(
        self, authorization_code: str, redirect_uri: str | None = None
    ) -> TokenGrant:
        """Exchange an authorization code for a token pair.

        Raises:
            ProviderAuthError: On any non-2xx response.
        """
        ...

    def refresh_access_token(self, refresh_token: str) -> TokenGrant:
        """Exchange a refresh token for a new token pair.

        If the bank omits a new refresh token, the one passed in is
        returned unchanged in the grant.
        """
        ...

    def get_accounts(self, access_token: str) -> list[BankAccount]:
        """Fetch all accounts visible to the token."""
        ...

    def get_transactions(
        self,
        access_token: str,
        account_number: str,
        from_date: date,
        to_date: date,
    ) -> list[BankTransaction]:
        """Fetch up to one page of transactions for an account."""
        ...

    def get_supplementary_transactions(
        self,
        access_token: str,
        from_date: date,
        to_date: date,
    ) -> list[BankTransaction]:
        """Fetch bank-specific extra feeds (e.g. wallet payments).

        Best-effort: returns an empty list when the feed is unavailable.
        """
        ...
