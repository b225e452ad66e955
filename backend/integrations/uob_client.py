"""UOB API client.

Implements the BankProviderClient protocol against the UOB personal
banking API. UOB's token endpoint only accepts form-encoded bodies.
"""

import logging
import re
from datetime import date

import httpx

from config import settings
from integrations.base_bank_client import BaseBankClient, first_present
from integrations.provider_protocol import (
    AccountType,
    BankAccount,
    BankTransaction,
    ProviderName,
    TransactionCategory,
)

logger = logging.getLogger(__name__)


class UOBClient(BaseBankClient):
    """UOB client."""

    PROVIDER = ProviderName.UOB
    TOKEN_PATH = "/oauth/v1/token"
    TOKEN_FORM_ENCODED = True
    SCOPES = ("accounts", "transactions", "balances")
    PAGE_SIZE = 500
    API_HEADERS = {"X-UOB-API-VERSION": "1.0", "Accept": "application/json"}

    # UOB product codes
    ACCOUNT_TYPE_ALIASES = {
        "SDA": AccountType.SAVINGS,
        "CDA": AccountType.CURRENT,
        "FDA": AccountType.FIXED_DEPOSIT,
        "FCA": AccountType.FOREIGN_CURRENCY,
        "CCA": AccountType.CREDIT_CARD,
        "HLA": AccountType.LOAN,
        "PLA": AccountType.LOAN,
    }

    DESCRIPTION_CLEANUP = (
        (re.compile(r"^(POS|ATM|IBG|FAST|GIRO|BILL)\s*[-:]?\s*", re.IGNORECASE), ""),
        (re.compile(r"\s+TXN\s*ID:\s*\w+$", re.IGNORECASE), ""),
        (re.compile(r"\s+\d{2}/\d{2}/\d{4}$"), ""),
        (re.compile(r"\s+SG$"), ""),
    )
    MERCHANT_PATTERNS = (
        re.compile(r"^([A-Z\s&]+?)\s+(?:SINGAPORE|SG)\b", re.IGNORECASE),
        re.compile(r"^([A-Z\s&]+?)\s+\d{6,}", re.IGNORECASE),
        re.compile(r"^([A-Z\s&]{4,})", re.IGNORECASE),
    )
    MIN_MERCHANT_LENGTH = 3

    def __init__(
        self,
        client_id: str | None = None,
        client_secret: str | None = None,
        base_url: str | None = None,
        http_client: httpx.Client | None = None,
    ):
        super().__init__(
            client_id=client_id or settings.UOB_CLIENT_ID,
            client_secret=client_secret or settings.UOB_CLIENT_SECRET,
            base_url=base_url or settings.UOB_API_BASE_URL,
            timeout=settings.PROVIDER_HTTP_TIMEOUT,
            http_client=http_client,
        )

    def get_accounts(self, access_token: str) -> list[BankAccount]:
        body = self._get("/personal/v1/accounts", access_token)
        accounts = []
        for row in self._rows(body, "accounts", "data"):
            account = self._map_account_row(
                row,
                number_keys=("accountNumber", "accountId"),
                type_keys=("accountType", "productCode"),
                balance_keys=("availableBalance", "currentBalance", "balance"),
                name_keys=("accountName", "productName"),
                default_name="UOB Account",
            )
            if account is not None:
                accounts.append(account)
        logger.debug("UOB: %d accounts returned", len(accounts))
        return accounts

    def get_transactions(
        self,
        access_token: str,
        account_number: str,
        from_date: date,
        to_date: date,
    ) -> list[BankTransaction]:
        body = self._get(
            f"/personal/v1/accounts/{account_number}/transactions",
            access_token,
            params={
                "fromDate": self.format_date(from_date),
                "toDate": self.format_date(to_date),
                "maxResults": self.PAGE_SIZE,
            },
        )
        transactions = []
        for row in self._rows(body, "transactions", "data"):
            txn = self.build_transaction(
                row,
                external_id=first_present(row, "transactionId", "id", "referenceNumber"),
                amount_raw=first_present(row, "amount", "transactionAmount"),
                indicator=first_present(row, "creditDebitIndicator", "type"),
                description_raw=first_present(row, "description", "narrative", default=""),
                date_raw=first_present(row, "transactionDate", "valueDate"),
            )
            if txn is not None:
                transactions.append(txn)
        return transactions

    def get_supplementary_transactions(
        self,
        access_token: str,
        from_date: date,
        to_date: date,
    ) -> list[BankTransaction]:
        """PayNow transfers, when PayNow is linked to the customer."""
        return self._best_effort_feed(
            "PayNow", lambda: self._get_paynow_transactions(access_token, from_date, to_date)
        )

    def _get_paynow_transactions(
        self, access_token: str, from_date: date, to_date: date
    ) -> list[BankTransaction]:
        body = self._get(
            "/personal/v1/paynow/transactions",
            access_token,
            params={
                "fromDate": self.format_date(from_date),
                "toDate": self.format_date(to_date),
            },
        )
        transactions = []
        for row in self._rows(body, "transactions", "data"):
            txn = self.build_transaction(
                row,
                external_id=first_present(row, "transactionId", "id"),
                amount_raw=row.get("amount"),
                indicator=first_present(row, "creditDebitIndicator", "type"),
                description_raw=row.get("description", ""),
                date_raw=first_present(row, "transactionDate", "date"),
                external_id_prefix="paynow_",
                description_prefix="PayNow - ",
                merchant=first_present(row, "recipientInfo", "recipientName"),
                category=TransactionCategory.DIGITAL_PAYMENT,
            )
            if txn is not None:
                transactions.append(txn)
        return transactions
