"""Service for categorizing bank transactions for PHV drivers."""

import logging
from typing import Optional

from integrations.provider_protocol import TransactionCategory

logger = logging.getLogger(__name__)

# Ordered (category, keywords) rules; the first rule with a keyword found
# in the lower-cased description wins.
CATEGORY_RULES: tuple[tuple[TransactionCategory, tuple[str, ...]], ...] = (
    (
        TransactionCategory.PHV_EARNING,
        ("grab", "gojek", "ryde", "tada", "cdg zig", "comfort"),
    ),
    (
        TransactionCategory.FUEL,
        ("petrol", "fuel", "shell", "esso", "caltex", "spc", "sinopec"),
    ),
    (TransactionCategory.VEHICLE_MAINTENANCE, ("workshop", "service", "repair")),
    (TransactionCategory.INSURANCE, ("insurance",)),
    (TransactionCategory.TRANSPORT, ("parking", "erp", "toll")),
)


class CategorizationService:
    """Keyword-rule categorizer.

    Deterministic: the same description always yields the same category.
    """

    def __init__(self, rules=CATEGORY_RULES):
        self._rules = rules

    def categorize(
        self,
        description: Optional[str],
        assigned: Optional[TransactionCategory] = None,
    ) -> TransactionCategory:
        """Categorize a transaction by its cleaned description.

        Args:
            description: Cleaned transaction description.
            assigned: Category the bank feed already implies (e.g. wallet
                payments); kept as-is when present.

        Returns:
            The matching category, or OTHER when no rule matches.
        """
        if assigned is not None:
            return assigned

        text = (description or "").lower()
        for category, keywords in self._rules:
            if any(keyword in text for keyword in keywords):
                return category
        return TransactionCategory.OTHER
