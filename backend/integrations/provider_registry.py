"""Provider registry for the supported banks.

The registry is responsible for:
- Initializing a client for each configured bank
- Providing access to a specific bank client by name
- Listing all configured banks

The set of banks is closed: names outside :class:`ProviderName` are
rejected before any lookup happens.
"""

import logging

from integrations.dbs_client import DBSClient
from integrations.ocbc_client import OCBCClient
from integrations.provider_protocol import BankProviderClient, ProviderName
from integrations.uob_client import UOBClient

logger = logging.getLogger(__name__)

# Adding a bank means adding a ProviderName member and one entry here.
PROVIDER_DEFINITIONS: dict[ProviderName, type] = {
    ProviderName.DBS: DBSClient,
    ProviderName.OCBC: OCBCClient,
    ProviderName.UOB: UOBClient,
}

ALL_PROVIDER_NAMES: list[str] = [name.value for name in PROVIDER_DEFINITIONS]


def parse_provider_name(name: str) -> ProviderName:
    """Resolve a user-supplied bank name to a ProviderName.

    Matching is case-insensitive ("dbs" and "DBS" are the same bank).

    Raises:
        ValueError: If the name is not a supported bank.
    """
    try:
        return ProviderName(str(name).strip().upper())
    except ValueError:
        raise ValueError(f"Unsupported bank: {name}") from None


class ProviderRegistry:
    """Registry mapping bank names to client instances.

    Example:
        registry = get_provider_registry()
        if registry.is_configured("DBS"):
            client = registry.get_provider("DBS")
            accounts = client.get_accounts(access_token)
    """

    def __init__(self):
        self._providers: dict[str, BankProviderClient] = {}

    def register_provider(self, provider: BankProviderClient) -> None:
        """Register a bank client under its ``provider_name``."""
        self._providers[provider.provider_name] = provider

    def get_provider(self, name: str) -> BankProviderClient:
        """Get a bank client by name.

        Raises:
            ValueError: If the bank is unsupported or has no credentials
                configured.
        """
        provider_name = parse_provider_name(name)
        if provider_name.value not in self._providers:
            raise ValueError(f"Provider '{provider_name.value}' is not configured")
        return self._providers[provider_name.value]

    def list_providers(self) -> list[str]:
        """List all registered bank names."""
        return list(self._providers.keys())

    def is_configured(self, name: str) -> bool:
        """Check if a bank is registered and configured."""
        try:
            return parse_provider_name(name).value in self._providers
        except ValueError:
            return False

    def initialize_default_providers(self) -> None:
        """Instantiate every supported bank and keep the configured ones."""
        for name, cls in PROVIDER_DEFINITIONS.items():
            self._try_init_provider(name.value, cls)

        names = self.list_providers()
        if names:
            logger.info("Active banks: %s", ", ".join(names))
        else:
            logger.warning("No banks configured")

    def _try_init_provider(self, name: str, cls: type) -> None:
        try:
            instance = cls()
            if instance.is_configured():
                self.register_provider(instance)
                logger.info("Bank registered: %s", name)
            else:
                instance.close()
                logger.debug("Bank skipped (not configured): %s", name)
        except Exception:
            logger.warning("Bank client failed to initialize: %s", name, exc_info=True)

    def close(self) -> None:
        """Close every registered client's HTTP pool."""
        for provider in self._providers.values():
            close = getattr(provider, "close", None)
            if close is not None:
                close()


def get_provider_registry() -> ProviderRegistry:
    """Create a registry with every configured bank registered."""
    registry = ProviderRegistry()
    registry.initialize_default_providers()
    return registry
