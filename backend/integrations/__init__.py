"""External bank API integrations.

This package contains:
- Provider protocol: Canonical account/transaction shapes and the common
  client interface
- Provider registry: Maps bank names to configured clients
- DBS, OCBC and UOB clients
"""

from integrations.provider_protocol import (
    BankAccount,
    BankProviderClient,
    BankTransaction,
    ProviderName,
    TokenGrant,
)
from integrations.provider_registry import ProviderRegistry, get_provider_registry

__all__ = [
    "BankAccount",
    "BankProviderClient",
    "BankTransaction",
    "ProviderName",
    "ProviderRegistry",
    "TokenGrant",
    "get_provider_registry",
]
