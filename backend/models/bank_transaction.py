"""BankTransaction model - a transaction pulled from a bank feed."""

from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from database import Base
from models.utils import generate_uuid


class BankTransaction(Base):
    """A transaction record from a bank provider.

    Deduplication via composite unique constraint
    (bank_connection_id, external_id). Rows are only ever created by a
    sync and only ever deleted with their connection.
    """

    __tablename__ = "bank_transactions"
    __table_args__ = (
        UniqueConstraint(
            "bank_connection_id", "external_id",
            name="uix_bank_transaction_connection_external",
        ),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    bank_connection_id = Column(
        String(36),
        ForeignKey("bank_connections.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    external_id = Column(String, nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)  # Unsigned magnitude
    direction = Column(String(6), nullable=False)  # "DEBIT" | "CREDIT"
    description = Column(Text, nullable=False, default="")
    normalized_merchant = Column(String, nullable=True)
    category = Column(String, nullable=False)  # TransactionCategory value
    # Set when the driver recategorizes by hand; syncs then keep the category
    category_locked = Column(Boolean, default=False, nullable=False)
    occurred_at = Column(DateTime, nullable=False, index=True)
    running_balance = Column(Numeric(14, 2), nullable=True)
    currency = Column(String(3), nullable=True)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # Relationships
    bank_connection = relationship("BankConnection", back_populates="transactions")
