from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from src.models import PriceGroup, PricingMatrixEntry
from src.observability.metrics import increment_counter
from src.services.errors import (
    InvalidPricingInputError,
    PriceNotFoundError,
    PriceUnavailableError,
    PricingError,
    UnpriceableError,
)

logger = logging.getLogger(__name__)

TWO_PLACES = Decimal("0.01")

# Fallback formula: base price per tier x age step x pot size step
BASE_PRICES: Dict[PriceGroup, Decimal] = {
    PriceGroup.COMMON: Decimal("25.00"),
    PriceGroup.MEDIUM: Decimal("45.00"),
    PriceGroup.RARE: Decimal("75.00"),
}
AGE_MULTIPLIER_STEPS: Tuple[Tuple[int, Decimal], ...] = (
    (2, Decimal("1.0")),
    (5, Decimal("1.5")),
    (10, Decimal("2.0")),
)
AGE_MULTIPLIER_MAX = Decimal("2.5")
SIZE_MULTIPLIER_STEPS: Tuple[Tuple[Decimal, Decimal], ...] = (
    (Decimal("3"), Decimal("1.0")),
    (Decimal("5"), Decimal("1.1")),
    (Decimal("7.5"), Decimal("1.2")),
    (Decimal("10"), Decimal("1.3")),
    (Decimal("15"), Decimal("1.5")),
)
SIZE_MULTIPLIER_MAX = Decimal("1.8")

# Shown on catalog cards when the matrix cannot be read
FALLBACK_AGES: Tuple[int, ...] = (3, 4, 5, 6)
FALLBACK_POT_SIZES: Tuple[str, ...] = ("3L", "5L", "10L")
FALLBACK_PRICE_RANGES: Dict[PriceGroup, Tuple[Decimal, Decimal]] = {
    PriceGroup.COMMON: (Decimal("21.00"), Decimal("59.00")),
    PriceGroup.MEDIUM: (Decimal("28.00"), Decimal("69.00")),
    PriceGroup.RARE: (Decimal("37.00"), Decimal("79.00")),
}

_POT_SIZE_PATTERN = re.compile(r"^\s*(\d+(?:[.,]\d+)?)\s*(?:l|ltr|liter|litre)?\s*$", re.IGNORECASE)


@dataclass(frozen=True)
class PriceQuote:
    price: Decimal
    source: str
    group: PriceGroup
    age_years: int
    pot_size: Optional[str] = None

    @property
    def is_fallback(self) -> bool:
        return self.source == "fallback"


@dataclass(frozen=True)
class PriceRange:
    min_price: Decimal
    max_price: Decimal
    available_ages: Tuple[int, ...]
    available_sizes: Tuple[str, ...]
    source: str = "matrix"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "min_price": str(self.min_price),
            "max_price": str(self.max_price),
            "available_ages": list(self.available_ages),
            "available_sizes": list(self.available_sizes),
            "source": self.source,
        }


@dataclass(frozen=True)
class PricingOption:
    age_years: int
    pot_size: str
    price: Decimal


def to_money(value: Any) -> Decimal:
    return Decimal(str(value)).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def parse_pot_size_litres(pot_size: Optional[str]) -> Optional[Decimal]:
    """Return the volume in litres for labels such as "10L", "7,5 l" or "3"."""
    if pot_size is None:
        return None
    match = _POT_SIZE_PATTERN.match(str(pot_size))
    if not match:
        return None
    return Decimal(match.group(1).replace(",", "."))


def age_multiplier(age_years: int) -> Decimal:
    for upper_bound, multiplier in AGE_MULTIPLIER_STEPS:
        if age_years <= upper_bound:
            return multiplier
    return AGE_MULTIPLIER_MAX


def size_multiplier(pot_size: Optional[str]) -> Decimal:
    litres = parse_pot_size_litres(pot_size)
    if litres is None:
        # No label or a label we cannot read: price as the smallest container
        return SIZE_MULTIPLIER_STEPS[0][1]
    for upper_bound, multiplier in SIZE_MULTIPLIER_STEPS:
        if litres <= upper_bound:
            return multiplier
    return SIZE_MULTIPLIER_MAX


def _validate_age(age_years: Any) -> int:
    if isinstance(age_years, bool) or not isinstance(age_years, int):
        raise InvalidPricingInputError(f"Age must be a whole number of years, got {age_years!r}")
    if age_years < 0:
        raise InvalidPricingInputError(f"Age must not be negative, got {age_years}")
    return age_years


def _require_group(group: Any) -> PriceGroup:
    parsed = PriceGroup.parse(group)
    if parsed is None:
        raise UnpriceableError(f"Unrecognised price group {group!r}")
    return parsed


def calculate_fallback_price(group: Any, age_years: int, pot_size: Optional[str] = None) -> Decimal:
    """
    Deterministic price used when the pricing matrix cannot be queried.

    base(group) x age multiplier x size multiplier, rounded half-up to cents.
    """
    price_group = _require_group(group)
    age = _validate_age(age_years)
    raw = BASE_PRICES[price_group] * age_multiplier(age) * size_multiplier(pot_size)
    return raw.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def format_price(amount: Any, locale: str = "de") -> str:
    value = to_money(amount)
    grouped = f"{value:,.2f}"
    if locale.startswith("de"):
        grouped = grouped.replace(",", "_").replace(".", ",").replace("_", ".")
        return f"{grouped} €"
    return f"€{grouped}"


class PricingService:
    """Resolves cultivar prices from the pricing matrix with a local fallback."""

    def __init__(self, db_session: Session) -> None:
        self.db = db_session

    def resolve_price(self, group: Any, age_years: int, pot_size: Optional[str] = None) -> PriceQuote:
        """
        Price a (group, age, pot size) combination.

        Missing or unavailable matrix keys raise; only a failing lookup switches
        to :func:`calculate_fallback_price`.
        """
        price_group = _require_group(group)
        age = _validate_age(age_years)

        try:
            entry = self._lookup_entry(price_group, age, pot_size)
        except SQLAlchemyError as exc:
            self._rollback_quietly()
            price = calculate_fallback_price(price_group, age, pot_size)
            logger.warning(
                "Pricing matrix lookup failed, using fallback price %s for %s/%s/%s: %s",
                price,
                price_group.name,
                age,
                pot_size,
                exc,
            )
            increment_counter("pricing_lookups_total", labels={"source": "fallback"})
            increment_counter("pricing_fallback_total", labels={"group": price_group.name.lower()})
            return PriceQuote(price=price, source="fallback", group=price_group, age_years=age, pot_size=pot_size)

        if entry is None:
            raise PriceNotFoundError(
                f"No price for group {price_group.name}, age {age}, pot size {pot_size or 'any'}"
            )
        if not entry.is_available:
            raise PriceUnavailableError(
                f"Price for group {price_group.name}, age {age}, pot size {entry.pot_size} is not available"
            )

        price = to_money(entry.base_price_euros)
        if price < 0:
            raise PricingError(f"Matrix entry {entry.id} carries a negative price")

        increment_counter("pricing_lookups_total", labels={"source": "matrix"})
        return PriceQuote(price=price, source="matrix", group=price_group, age_years=age, pot_size=entry.pot_size)

    def get_price_range(self, group: Any) -> PriceRange:
        """Min/max price and the offered ages and sizes of a group, for "from €X" labels."""
        price_group = _require_group(group)
        try:
            rows = (
                self.db.query(PricingMatrixEntry)
                .filter(
                    PricingMatrixEntry.price_group == price_group,
                    PricingMatrixEntry.is_available.is_(True),
                )
                .order_by(PricingMatrixEntry.base_price_euros)
                .all()
            )
        except SQLAlchemyError as exc:
            self._rollback_quietly()
            logger.warning("Pricing matrix unreachable for range of %s: %s", price_group.name, exc)
            return self._fallback_range(price_group)

        if not rows:
            return self._fallback_range(price_group)

        prices = [to_money(row.base_price_euros) for row in rows]
        sizes = sorted(
            {row.pot_size for row in rows},
            key=lambda label: (parse_pot_size_litres(label) is None, parse_pot_size_litres(label) or 0, label),
        )
        return PriceRange(
            min_price=min(prices),
            max_price=max(prices),
            available_ages=tuple(sorted({row.age_years for row in rows})),
            available_sizes=tuple(sizes),
        )

    def get_pricing_options(self, group: Any) -> List[PricingOption]:
        price_group = _require_group(group)
        try:
            rows = (
                self.db.query(PricingMatrixEntry)
                .filter(
                    PricingMatrixEntry.price_group == price_group,
                    PricingMatrixEntry.is_available.is_(True),
                )
                .order_by(PricingMatrixEntry.age_years, PricingMatrixEntry.base_price_euros)
                .all()
            )
        except SQLAlchemyError as exc:
            self._rollback_quietly()
            logger.warning("Error getting pricing options for %s: %s", price_group.name, exc)
            return []
        return [
            PricingOption(age_years=row.age_years, pot_size=row.pot_size, price=to_money(row.base_price_euros))
            for row in rows
        ]

    def _lookup_entry(
        self, group: PriceGroup, age_years: int, pot_size: Optional[str]
    ) -> Optional[PricingMatrixEntry]:
        query = self.db.query(PricingMatrixEntry).filter(
            PricingMatrixEntry.price_group == group,
            PricingMatrixEntry.age_years == age_years,
        )
        if pot_size is not None:
            return query.filter(PricingMatrixEntry.pot_size == pot_size).first()
        # Any size: cheapest available entry first
        return query.order_by(
            PricingMatrixEntry.is_available.desc(),
            PricingMatrixEntry.base_price_euros,
        ).first()

    @staticmethod
    def _fallback_range(group: PriceGroup) -> PriceRange:
        min_price, max_price = FALLBACK_PRICE_RANGES[group]
        return PriceRange(
            min_price=min_price,
            max_price=max_price,
            available_ages=FALLBACK_AGES,
            available_sizes=FALLBACK_POT_SIZES,
            source="fallback",
        )

    def _rollback_quietly(self) -> None:
        try:
            self.db.rollback()
        except SQLAlchemyError as exc:
            logger.debug("Rollback after failed pricing lookup also failed: %s", exc)
