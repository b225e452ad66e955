"""BankConnection model - a user's OAuth link to one account at one bank."""

from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship

from database import Base
from models.utils import generate_uuid


class BankConnection(Base):
    """An authorized connection to a single bank account.

    The combination of owner_id + provider_name + external_account_number
    uniquely identifies a connection. Tokens are stored as ciphertext
    produced by the token encryption service; plaintext never touches
    this table.
    """

    __tablename__ = "bank_connections"
    __table_args__ = (
        UniqueConstraint(
            "owner_id", "provider_name", "external_account_number",
            name="uix_owner_provider_account",
        ),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    owner_id = Column(String, nullable=False, index=True)
    provider_name = Column(String, nullable=False)  # ProviderName value, e.g. "DBS"
    external_account_number = Column(String, nullable=False)
    external_account_type = Column(String, nullable=False)  # AccountType value
    account_name = Column(String, nullable=True)
    currency = Column(String(3), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    last_sync_at = Column(DateTime, nullable=True)

    encrypted_access_token = Column(Text, nullable=True)
    encrypted_refresh_token = Column(Text, nullable=True)
    access_token_expires_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # Relationships
    transactions = relationship(
        "BankTransaction",
        back_populates="bank_connection",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return (
            f"<BankConnection {self.id} {self.provider_name} "
            f"owner={self.owner_id} active={self.is_active}>"
        )
