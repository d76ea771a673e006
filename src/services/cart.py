"""Cart line items and the in-memory cart collection."""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, asdict, replace
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Dict, Iterator, List, Optional

ITEM_TYPE_VARIETY = "cultivar"
ITEM_TYPE_PRODUCT = "product"

PRICE_RESOLVED = "resolved"
PRICE_FALLBACK = "fallback"
PRICE_DEGRADED = "degraded"
PRICE_STATUSES = (PRICE_RESOLVED, PRICE_FALLBACK, PRICE_DEGRADED)

SNAPSHOT_VERSION = 1
_TWO_PLACES = Decimal("0.01")


def variety_key(cultivar_id: str, age_years: int) -> str:
    return f"{cultivar_id}-{age_years}"


@dataclass
class CartItem:
    key: str
    item_type: str
    reference_id: str
    name: str
    price: Decimal
    quantity: int
    age_years: Optional[int] = None
    pot_size: Optional[str] = None
    price_group: Optional[str] = None
    price_status: str = PRICE_RESOLVED
    description: Optional[str] = None
    image_url: Optional[str] = None

    @property
    def line_total(self) -> Decimal:
        return (self.price * self.quantity).quantize(_TWO_PLACES, rounding=ROUND_HALF_UP)

    @property
    def is_degraded(self) -> bool:
        return self.price_status == PRICE_DEGRADED

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["price"] = str(self.price)
        return data

    @classmethod
    def from_dict(cls, data: Any) -> "CartItem":
        """Decode one persisted entry. Raises ValueError when a field is unusable."""
        if not isinstance(data, Mapping):
            raise ValueError("Cart entry is not an object")

        key = data.get("key")
        item_type = data.get("item_type")
        reference_id = data.get("reference_id")
        if not isinstance(key, str) or not isinstance(item_type, str) or not isinstance(reference_id, str):
            raise ValueError("Cart entry is missing its key, type or reference")

        raw_price = data.get("price")
        if raw_price is None or isinstance(raw_price, bool):
            raise ValueError(f"Cart entry {key!r} has no price")
        try:
            price = Decimal(str(raw_price))
        except InvalidOperation as exc:
            raise ValueError(f"Cart entry {key!r} has an unreadable price") from exc
        if not price.is_finite() or price < 0:
            raise ValueError(f"Cart entry {key!r} has an invalid price")

        quantity = data.get("quantity")
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
            raise ValueError(f"Cart entry {key!r} has an invalid quantity")

        age_years = data.get("age_years")
        if age_years is not None and (isinstance(age_years, bool) or not isinstance(age_years, int)):
            raise ValueError(f"Cart entry {key!r} has an invalid age")

        price_status = data.get("price_status") or PRICE_RESOLVED
        if price_status not in PRICE_STATUSES:
            raise ValueError(f"Cart entry {key!r} has an unknown price status")

        return cls(
            key=key,
            item_type=item_type,
            reference_id=reference_id,
            name=str(data.get("name") or ""),
            price=price,
            quantity=quantity,
            age_years=age_years,
            pot_size=data.get("pot_size"),
            price_group=data.get("price_group"),
            price_status=price_status,
            description=data.get("description"),
            image_url=data.get("image_url"),
        )


class Cart:
    """Ordered line items; at most one item per key."""

    def __init__(self, items: Optional[List[CartItem]] = None) -> None:
        self._items: List[CartItem] = list(items or [])

    @property
    def items(self) -> List[CartItem]:
        return list(self._items)

    def __iter__(self) -> Iterator[CartItem]:
        return iter(list(self._items))

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, key: object) -> bool:
        return self.get(key) is not None  # type: ignore[arg-type]

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Cart):
            return NotImplemented
        return self._items == other._items

    def __repr__(self) -> str:
        return f"Cart({len(self._items)} items, {self.total_item_count()} units)"

    def get(self, key: str) -> Optional[CartItem]:
        for item in self._items:
            if item.key == key:
                return item
        return None

    def copy(self) -> "Cart":
        return Cart([replace(item) for item in self._items])

    def add_or_increment(self, item: CartItem) -> CartItem:
        """Append ``item`` or, if its key exists, add its quantity to the existing row."""
        for index, existing in enumerate(self._items):
            if existing.key != item.key:
                continue
            updated = replace(existing, quantity=existing.quantity + item.quantity)
            if existing.is_degraded and not item.is_degraded:
                updated = replace(
                    updated,
                    price=item.price,
                    price_status=item.price_status,
                    pot_size=item.pot_size,
                )
            self._items[index] = updated
            return updated
        self._items.append(item)
        return item

    def set_quantity(self, key: str, quantity: int) -> Optional[CartItem]:
        for index, existing in enumerate(self._items):
            if existing.key == key:
                self._items[index] = replace(existing, quantity=quantity)
                return self._items[index]
        return None

    def replace_item(self, item: CartItem) -> None:
        for index, existing in enumerate(self._items):
            if existing.key == item.key:
                self._items[index] = item
                return

    def remove(self, key: str) -> bool:
        before = len(self._items)
        self._items = [item for item in self._items if item.key != key]
        return len(self._items) != before

    def clear(self) -> None:
        self._items = []

    def total_item_count(self) -> int:
        return sum(item.quantity for item in self._items)

    def total_price(self) -> Decimal:
        total = sum((item.price * item.quantity for item in self._items), Decimal("0"))
        return total.quantize(_TWO_PLACES, rounding=ROUND_HALF_UP)

    def has_degraded_items(self) -> bool:
        return any(item.is_degraded for item in self._items)

    def to_snapshot(self) -> Dict[str, Any]:
        return {"state": {"items": [item.to_dict() for item in self._items]}, "version": SNAPSHOT_VERSION}
