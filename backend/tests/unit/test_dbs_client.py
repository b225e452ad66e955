"""Tests for the DBS client mapping."""

from datetime import date, datetime, timezone
from decimal import Decimal

import httpx
import pytest

from integrations.dbs_client import DBSClient
from integrations.provider_protocol import (
    AccountType,
    TransactionCategory,
    TransactionDirection,
)

BASE_URL = "https://api.dbs.test/v1"


def make_client(routes: dict, seen: list | None = None) -> DBSClient:
    """Client whose transport serves ``routes`` (path -> (status, json))."""

    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        status, body = routes.get(request.url.path, (404, {"message": "not found"}))
        return httpx.Response(status, json=body)

    http = httpx.Client(transport=httpx.MockTransport(handler), base_url=BASE_URL)
    return DBSClient("cid", "secret", base_url=BASE_URL, http_client=http)


class TestGetAccounts:
    def test_maps_accounts(self):
        client = make_client({
            "/v1/accounts": (200, {"accounts": [
                {
                    "accountNumber": "123-456789-0",
                    "accountType": "CURRENT",
                    "balance": "1,500.25",
                    "currency": "SGD",
                    "accountName": "DBS Multiplier",
                },
                {"account_number": "555", "availableBalance": 20},
            ]}),
        })

        accounts = client.get_accounts("token")

        assert len(accounts) == 2
        first, second = accounts
        assert first.account_number == "123-456789-0"
        assert first.account_type == AccountType.CURRENT
        assert first.balance == Decimal("1500.25")
        assert first.account_name == "DBS Multiplier"
        assert second.account_number == "555"
        assert second.account_type == AccountType.SAVINGS
        assert second.balance == Decimal("20")
        assert second.currency == "SGD"
        assert second.account_name == "DBS Account"

    def test_skips_account_without_number(self):
        client = make_client({"/v1/accounts": (200, {"accounts": [{"balance": 1}]})})
        assert client.get_accounts("token") == []

    def test_sends_bearer_token(self):
        seen = []
        client = make_client({"/v1/accounts": (200, {"accounts": []})}, seen)

        client.get_accounts("abc")

        assert seen[0].headers["Authorization"] == "Bearer abc"


class TestGetTransactions:
    PATH = "/v1/accounts/123/transactions"

    def test_request_window_and_page_size(self):
        seen = []
        client = make_client({self.PATH: (200, {"transactions": []})}, seen)

        client.get_transactions("token", "123", date(2024, 5, 16), date(2024, 6, 15))

        params = seen[0].url.params
        assert params["fromDate"] == "2024-05-16"
        assert params["toDate"] == "2024-06-15"
        assert params["limit"] == "500"

    def test_maps_and_normalizes_rows(self):
        client = make_client({self.PATH: (200, {"transactions": [
            {
                "transactionId": "T1",
                "amount": "-65.00",
                "description": "POS SHELL PETROL STATION 12/03 SG",
                "transactionDate": "2024-06-10T09:30:00Z",
                "runningBalance": "1,234.00",
            },
            {
                "id": "T2",
                "transactionAmount": 42.5,
                "type": "CREDIT",
                "narrative": "FAST GRAB *RIDE 10/06",
                "date": "2024-06-10",
            },
            {
                "referenceNumber": "T3",
                "amount": 12,
                "transactionType": "DEBIT",
                "particulars": "NETS ERP TOLL",
                "transactionDate": "2024-06-11T00:00:00+0800",
            },
        ]})})

        txns = client.get_transactions("token", "123", date(2024, 6, 1), date(2024, 6, 15))

        assert [t.external_id for t in txns] == ["T1", "T2", "T3"]

        shell = txns[0]
        assert shell.amount == Decimal("65.00")
        assert shell.direction == TransactionDirection.DEBIT
        assert shell.description == "POS SHELL PETROL STATION 12/03 SG"
        assert shell.cleaned_description == "SHELL PETROL STATION"
        assert shell.merchant == "SHELL PETROL STATION"
        assert shell.occurred_at == datetime(2024, 6, 10, 9, 30, tzinfo=timezone.utc)
        assert shell.running_balance == Decimal("1234.00")
        assert shell.category is None

        grab = txns[1]
        assert grab.direction == TransactionDirection.CREDIT
        assert grab.amount == Decimal("42.5")
        assert grab.description == "FAST GRAB *RIDE 10/06"
        assert grab.cleaned_description == "GRAB *RIDE"
        assert grab.merchant == "GRAB"

        toll = txns[2]
        assert toll.direction == TransactionDirection.DEBIT
        assert toll.amount == Decimal("12")
        assert toll.occurred_at == datetime(2024, 6, 10, 16, 0, tzinfo=timezone.utc)

    def test_zero_amount_kept(self):
        client = make_client({self.PATH: (200, {"transactions": [
            {"transactionId": "Z", "amount": 0, "description": "FEE WAIVER",
             "transactionDate": "2024-06-10"},
        ]})})

        txns = client.get_transactions("token", "123", date(2024, 6, 1), date(2024, 6, 15))

        assert len(txns) == 1
        assert txns[0].amount == Decimal("0")

    def test_skips_rows_without_id_or_date(self):
        client = make_client({self.PATH: (200, {"transactions": [
            {"amount": 5, "description": "NO ID", "transactionDate": "2024-06-10"},
            {"transactionId": "BAD", "amount": 5, "transactionDate": "yesterday"},
            {"transactionId": "OK", "amount": 5, "transactionDate": "2024-06-10"},
        ]})})

        txns = client.get_transactions("token", "123", date(2024, 6, 1), date(2024, 6, 15))

        assert [t.external_id for t in txns] == ["OK"]


@pytest.mark.parametrize(
    "raw,cleaned",
    [
        ("POS SHELL PETROL STATION 12/03 SG", "SHELL PETROL STATION"),
        ("NETS CALTEX 01/06 SINGAPORE", "CALTEX"),
        ("ATM WITHDRAWAL 30/05", "WITHDRAWAL"),
        ("IBG GRAB SG", "GRAB"),
        ("GIRO AIA", "GIRO AIA"),
    ],
)
def test_clean_description(raw, cleaned):
    assert make_client({}).clean_description(raw) == cleaned


class TestPayLah:
    def test_paylah_transactions_are_prefixed_and_categorized(self):
        client = make_client({"/v1/paylah/transactions": (200, {"transactions": [
            {
                "transactionId": "P1",
                "amount": 8.5,
                "type": "DEBIT",
                "description": "Kopi",
                "merchant": "Toast Box",
                "transactionDate": "2024-06-12T08:00:00Z",
            },
        ]})})

        txns = client.get_supplementary_transactions(
            "token", date(2024, 6, 1), date(2024, 6, 15)
        )

        assert len(txns) == 1
        assert txns[0].external_id == "paylah_P1"
        assert txns[0].description == "PayLah! - Kopi"
        assert txns[0].cleaned_description == "PayLah! - Kopi"
        assert txns[0].merchant == "Toast Box"
        assert txns[0].category == TransactionCategory.DIGITAL_PAYMENT
        assert txns[0].direction == TransactionDirection.DEBIT

    def test_paylah_failure_returns_empty(self):
        client = make_client({"/v1/paylah/transactions": (503, {})})

        assert client.get_supplementary_transactions(
            "token", date(2024, 6, 1), date(2024, 6, 15)
        ) == []
