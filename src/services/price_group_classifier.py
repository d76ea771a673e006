from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Optional

from src.models import PriceGroup

_GROUP_DESCRIPTIONS = {
    "de": {
        PriceGroup.COMMON: "Häufige Sorten",
        PriceGroup.MEDIUM: "Mittlere Seltenheit",
        PriceGroup.RARE: "Seltene Sorten",
    },
    "en": {
        PriceGroup.COMMON: "Common Varieties",
        PriceGroup.MEDIUM: "Medium Rarity",
        PriceGroup.RARE: "Rare Varieties",
    },
}


class PriceGroupClassifier:
    """Read-only lookup of a cultivar's rarity tier."""

    def classify(self, cultivar: Any) -> Optional[PriceGroup]:
        """
        Return the cultivar's price group, or None when it is unpriced.

        Accepts a Cultivar row or any mapping carrying a ``price_group`` field.
        Unrecognised values are treated as "no group" rather than raising.
        """
        if cultivar is None:
            return None
        if isinstance(cultivar, Mapping):
            raw = cultivar.get("price_group")
        else:
            raw = getattr(cultivar, "price_group", None)
        return PriceGroup.parse(raw)

    def is_orderable(self, cultivar: Any) -> bool:
        return self.classify(cultivar) is not None

    @staticmethod
    def describe(group: Optional[PriceGroup], locale: str = "de") -> str:
        if group is None:
            return ""
        descriptions = _GROUP_DESCRIPTIONS.get(locale, _GROUP_DESCRIPTIONS["en"])
        return descriptions[group]
