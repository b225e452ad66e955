"""Mock implementations for external services."""

import threading
import time
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

from integrations.provider_protocol import (
    AccountType,
    BankAccount,
    BankTransaction,
    TokenGrant,
    TransactionCategory,
    TransactionDirection,
)
from integrations.provider_registry import ProviderRegistry


class FakeClock:
    """Controllable UTC clock for token expiry and sync window tests."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


class MockBankClient:
    """Mock bank client implementing the BankProviderClient protocol.

    Records every call so tests can assert on token use and fetch windows.
    """

    def __init__(
        self,
        name: str = "DBS",
        accounts: list[BankAccount] | None = None,
        transactions: list[BankTransaction] | None = None,
        supplementary: list[BankTransaction] | None = None,
        grant: TokenGrant | None = None,
        refresh_grant: TokenGrant | None = None,
        failures: dict[str, Exception] | None = None,
        refresh_delay: float = 0.0,
        block_until: threading.Event | None = None,
    ):
        """Initialize the mock.

        Args:
            name: Provider name (must be a ProviderName value).
            accounts: Returned by get_accounts.
            transactions: Returned by get_transactions for any account.
            supplementary: Returned by get_supplementary_transactions.
            grant: Returned by authenticate.
            refresh_grant: Returned by refresh_access_token.
            failures: Method name -> exception to raise from that method.
            refresh_delay: Seconds refresh_access_token sleeps, to widen races.
            block_until: If set, get_accounts waits on this event first.
        """
        self._name = name
        self.accounts = accounts if accounts is not None else [make_account()]
        self.transactions = transactions or []
        self.supplementary = supplementary or []
        self.grant = grant or TokenGrant("access-1", "refresh-1", 3600)
        self.refresh_grant = refresh_grant or TokenGrant("access-2", "refresh-2", 3600)
        self.failures = failures or {}
        self.refresh_delay = refresh_delay
        self.block_until = block_until

        self.refresh_calls = 0
        self.refresh_tokens_seen: list[str] = []
        self.access_tokens_seen: list[str] = []
        self.transaction_windows: list[tuple[date, date]] = []
        self._lock = threading.Lock()

    def _maybe_fail(self, method: str) -> None:
        if method in self.failures:
            raise self.failures[method]

    @property
    def provider_name(self) -> str:
        return self._name

    def is_configured(self) -> bool:
        return True

    def get_authorization_url(self, state: str, redirect_uri: str) -> str:
        return f"https://bank.test/{self._name.lower()}/authorize?state={state}&redirect_uri={redirect_uri}"

    def authenticate(self, authorization_code: str, redirect_uri: str | None = None) -> TokenGrant:
        self._maybe_fail("authenticate")
        return self.grant

    def refresh_access_token(self, refresh_token: str) -> TokenGrant:
        with self._lock:
            self.refresh_calls += 1
            self.refresh_tokens_seen.append(refresh_token)
        if self.refresh_delay:
            time.sleep(self.refresh_delay)
        self._maybe_fail("refresh_access_token")
        return self.refresh_grant

    def get_accounts(self, access_token: str) -> list[BankAccount]:
        if self.block_until is not None:
            self.block_until.wait(timeout=5)
        self.access_tokens_seen.append(access_token)
        self._maybe_fail("get_accounts")
        return list(self.accounts)

    def get_transactions(
        self, access_token: str, account_number: str, from_date: date, to_date: date
    ) -> list[BankTransaction]:
        self.transaction_windows.append((from_date, to_date))
        self._maybe_fail("get_transactions")
        return list(self.transactions)

    def get_supplementary_transactions(
        self, access_token: str, from_date: date, to_date: date
    ) -> list[BankTransaction]:
        return list(self.supplementary)


class MockProviderRegistry(ProviderRegistry):
    """Mock provider registry for testing.

    Allows injecting mock providers without going through initialization.
    """

    def __init__(self, providers: dict | None = None):
        """Initialize with optional pre-configured providers.

        Args:
            providers: Dict mapping provider name to a bank client.
        """
        super().__init__()
        if providers:
            for name, provider in providers.items():
                self._providers[name] = provider

    def initialize_default_providers(self) -> None:
        """Override to do nothing - tests configure providers explicitly."""
        pass


class FailingSecrets:
    """SecretsPort whose decrypt always fails (e.g. rotated key)."""

    def encrypt(self, plaintext: str) -> str:
        return f"enc:{plaintext}"

    def decrypt(self, ciphertext: str) -> str:
        raise ValueError("Stored token could not be decrypted")


def make_account(
    account_number: str = "123-456789-0",
    account_type: AccountType = AccountType.SAVINGS,
    balance: str = "1500.00",
    account_name: str = "DBS Multiplier",
) -> BankAccount:
    return BankAccount(
        account_number=account_number,
        account_type=account_type,
        balance=Decimal(balance),
        currency="SGD",
        account_name=account_name,
    )


def make_transaction(
    external_id: str,
    amount: str = "25.00",
    description: str = "GRAB *RIDE",
    direction: TransactionDirection = TransactionDirection.CREDIT,
    occurred_at: datetime | None = None,
    merchant: str | None = None,
    category: TransactionCategory | None = None,
    cleaned_description: str | None = None,
) -> BankTransaction:
    return BankTransaction(
        external_id=external_id,
        amount=Decimal(amount),
        direction=direction,
        description=description,
        occurred_at=occurred_at or datetime(2024, 6, 10, 9, 30, tzinfo=timezone.utc),
        merchant=merchant,
        category=category,
        currency="SGD",
        cleaned_description=cleaned_description,
    )


SAMPLE_DBS_ACCOUNTS = [make_account()]

SAMPLE_DBS_TRANSACTIONS = [
    make_transaction("T1", "42.50", "GRAB *RIDE", merchant="GRAB"),
    make_transaction(
        "T2", "65.00", "SHELL PETROL STATION",
        direction=TransactionDirection.DEBIT, merchant="SHELL PETROL STATION",
    ),
    make_transaction(
        "T3", "180.00", "ACME WORKSHOP SERVICE",
        direction=TransactionDirection.DEBIT, merchant="ACME WORKSHOP SERVICE",
    ),
]
