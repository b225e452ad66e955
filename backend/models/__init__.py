"""SQLAlchemy ORM models."""

from .bank_connection import BankConnection
from .bank_transaction import BankTransaction
from .utils import generate_uuid

__all__ = ["BankConnection", "BankTransaction", "generate_uuid"]
