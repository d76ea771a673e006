from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional
from uuid import uuid4

from src.config import Config
from src.models import PriceGroup
from src.observability.metrics import increment_counter
from src.services.cart import (
    ITEM_TYPE_PRODUCT,
    ITEM_TYPE_VARIETY,
    PRICE_DEGRADED,
    PRICE_FALLBACK,
    PRICE_RESOLVED,
    Cart,
    CartItem,
    variety_key,
)
from src.services.cart_storage import CartStorage
from src.services.cart_validator import CartConsistencyValidator, is_valid_identity
from src.services.errors import (
    CartError,
    CartItemNotFoundError,
    CartPersistenceError,
    InvalidPricingInputError,
    InvalidQuantityError,
    PricingError,
    UnpriceableError,
)
from src.services.price_group_classifier import PriceGroupClassifier
from src.services.pricing_service import PricingService, to_money

logger = logging.getLogger(__name__)


def _field(record: Any, name: str, default: Any = None) -> Any:
    if isinstance(record, Mapping):
        return record.get(name, default)
    return getattr(record, name, default)


def _require_quantity(quantity: Any) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
        raise InvalidQuantityError(f"Quantity must be a positive whole number, got {quantity!r}")
    return quantity


@dataclass(frozen=True)
class PendingReservation:
    """A variety selection waiting for its price. Never persisted or payable."""

    token: str
    cultivar_id: str
    name: str
    group: PriceGroup
    age_years: int
    quantity: int
    description: Optional[str] = None
    image_url: Optional[str] = None

    @property
    def key(self) -> str:
        return variety_key(self.cultivar_id, self.age_years)


class CartStore:
    """
    Client-side cart backed by a CartStorage port.

    Every mutation reloads the whole persisted snapshot, applies the change to
    a copy and writes the full snapshot back, so concurrent tabs resolve as
    last writer wins. If a write fails the in-memory cart stays authoritative
    until a later write succeeds.
    """

    def __init__(
        self,
        storage: CartStorage,
        pricing: PricingService,
        classifier: Optional[PriceGroupClassifier] = None,
        validator: Optional[CartConsistencyValidator] = None,
        storage_key: str = Config.CART_STORAGE_KEY,
    ) -> None:
        self.storage = storage
        self.pricing = pricing
        self.classifier = classifier or PriceGroupClassifier()
        self.validator = validator or CartConsistencyValidator()
        self.storage_key = storage_key
        self._cart = Cart()
        self._pending: Dict[str, PendingReservation] = {}
        self._unsaved_changes = False
        self.load()

    # -- reads -----------------------------------------------------------

    @property
    def cart(self) -> Cart:
        return self._cart.copy()

    @property
    def items(self) -> List[CartItem]:
        return self._cart.items

    @property
    def pending_reservations(self) -> List[PendingReservation]:
        return list(self._pending.values())

    @property
    def has_unsaved_changes(self) -> bool:
        return self._unsaved_changes

    def get(self, key: str) -> Optional[CartItem]:
        return self._cart.get(key)

    def total_item_count(self) -> int:
        return self._cart.total_item_count()

    def total_price(self) -> Decimal:
        return self._cart.total_price()

    def has_degraded_items(self) -> bool:
        return self._cart.has_degraded_items()

    def is_payable(self) -> bool:
        return len(self._cart) > 0 and not self._pending and not self._cart.has_degraded_items()

    def to_snapshot(self) -> Dict[str, Any]:
        return self._cart.to_snapshot()

    def load(self) -> Cart:
        """Re-read the persisted cart, sweeping invalid entries."""
        self._cart = self._read_current()
        return self.cart

    # -- two-phase variety add ---------------------------------------------

    def reserve_variety(self, cultivar: Any, age_years: int, quantity: int = 1) -> PendingReservation:
        """First phase of adding a variety: validate and hold it until priced."""
        quantity = _require_quantity(quantity)
        if isinstance(age_years, bool) or not isinstance(age_years, int) or age_years < 1:
            raise InvalidPricingInputError(f"Age must be at least one year, got {age_years!r}")

        cultivar_id = _field(cultivar, "id")
        if not is_valid_identity(cultivar_id):
            raise CartError(f"Cultivar identity {cultivar_id!r} is not a catalog reference")

        group = self.classifier.classify(cultivar)
        if group is None:
            raise UnpriceableError("This item cannot be added", cultivar_id=cultivar_id)

        species = _field(cultivar, "species")
        scientific_name = _field(species, "scientific_name") if species is not None else None
        reservation = PendingReservation(
            token=uuid4().hex,
            cultivar_id=cultivar_id,
            name=_field(cultivar, "cultivar_name") or "",
            group=group,
            age_years=age_years,
            quantity=quantity,
            description=f"{scientific_name} - {age_years} years" if scientific_name else f"{age_years} years",
            image_url=_field(cultivar, "photo_url"),
        )
        self._pending[reservation.token] = reservation
        return reservation

    def complete_reservation(self, token: str) -> CartItem:
        """Second phase: resolve the price, then append or increment in the persisted cart."""
        reservation = self._pending.get(token)
        if reservation is None:
            raise CartItemNotFoundError(f"No pending reservation {token}")

        price, status, pot_size = self._price_variety(reservation.group, reservation.age_years)
        item = CartItem(
            key=reservation.key,
            item_type=ITEM_TYPE_VARIETY,
            reference_id=reservation.cultivar_id,
            name=reservation.name,
            price=price,
            quantity=reservation.quantity,
            age_years=reservation.age_years,
            pot_size=pot_size,
            price_group=reservation.group.value,
            price_status=status,
            description=reservation.description,
            image_url=reservation.image_url,
        )

        result: Dict[str, CartItem] = {}
        self._mutate("add_variety", lambda cart: result.setdefault("item", cart.add_or_increment(item)))
        del self._pending[token]
        return result["item"]

    def discard_reservation(self, token: str) -> None:
        self._pending.pop(token, None)

    # -- mutations -----------------------------------------------------------

    def add_variety(self, cultivar: Any, age_years: int, quantity: int = 1) -> CartItem:
        reservation = self.reserve_variety(cultivar, age_years, quantity)
        try:
            return self.complete_reservation(reservation.token)
        finally:
            self.discard_reservation(reservation.token)

    def add_product(self, product: Any, quantity: int = 1) -> CartItem:
        quantity = _require_quantity(quantity)
        product_id = _field(product, "id")
        if not is_valid_identity(product_id):
            raise CartError(f"Product identity {product_id!r} is not a catalog reference")

        item = CartItem(
            key=product_id,
            item_type=ITEM_TYPE_PRODUCT,
            reference_id=product_id,
            name=_field(product, "name_de") or _field(product, "name_en") or "",
            price=to_money(_field(product, "price_euros") or 0),
            quantity=quantity,
            description=_field(product, "description_de"),
            image_url=_field(product, "image_url"),
        )
        result: Dict[str, CartItem] = {}
        self._mutate("add_product", lambda cart: result.setdefault("item", cart.add_or_increment(item)))
        return result["item"]

    def update_quantity(self, key: str, new_quantity: int) -> Optional[CartItem]:
        """Set an item's quantity exactly. Zero or less removes the item."""
        if isinstance(new_quantity, bool) or not isinstance(new_quantity, int):
            raise InvalidQuantityError(f"Quantity must be a whole number, got {new_quantity!r}")
        if new_quantity <= 0:
            self.remove_item(key)
            return None

        def _apply(cart: Cart) -> None:
            if cart.set_quantity(key, new_quantity) is None:
                raise CartItemNotFoundError(f"Cart has no item {key}")

        self._mutate("update_quantity", _apply)
        return self._cart.get(key)

    def remove_item(self, key: str) -> bool:
        """Remove ``key`` if present. Removing an absent key is a no-op."""
        removed: Dict[str, bool] = {}
        self._mutate("remove_item", lambda cart: removed.setdefault("value", cart.remove(key)))
        return removed["value"]

    def clear(self) -> None:
        self._pending.clear()
        self._mutate("clear", lambda cart: cart.clear())

    def revalidate_prices(self) -> int:
        """Re-price degraded and fallback-priced varieties against the matrix. Returns items updated."""
        updated: List[str] = []

        def _apply(cart: Cart) -> None:
            for item in cart:
                if item.item_type != ITEM_TYPE_VARIETY or item.price_status == PRICE_RESOLVED:
                    continue
                group = PriceGroup.parse(item.price_group)
                if group is None or item.age_years is None:
                    continue
                price, status, pot_size = self._price_variety(group, item.age_years)
                if status == PRICE_DEGRADED or (status == item.price_status and price == item.price):
                    continue
                cart.replace_item(replace(item, price=price, price_status=status, pot_size=pot_size))
                updated.append(item.key)

        self._mutate("revalidate_prices", _apply)
        if updated:
            logger.info("Re-priced %d cart items", len(updated))
        return len(updated)

    # -- internals -----------------------------------------------------------

    def _price_variety(self, group: PriceGroup, age_years: int):
        try:
            quote = self.pricing.resolve_price(group, age_years)
        except PricingError as exc:
            logger.warning(
                "Price resolution failed for group %s age %s, adding at price 0: %s",
                group.name,
                age_years,
                exc,
            )
            increment_counter("cart_degraded_prices_total")
            return Decimal("0.00"), PRICE_DEGRADED, None
        status = PRICE_FALLBACK if quote.is_fallback else PRICE_RESOLVED
        return quote.price, status, quote.pot_size

    def _read_current(self) -> Cart:
        if self._unsaved_changes:
            # Storage is behind the in-memory cart; do not let it overwrite our state
            return self._cart.copy()
        try:
            blob = self.storage.load(self.storage_key)
        except CartPersistenceError as exc:
            logger.warning("Could not read persisted cart, keeping in-memory state: %s", exc)
            return self._cart.copy()

        result = self.validator.load_snapshot(blob)
        if result.removed:
            self._cart = result.cart
            self._persist()
        return result.cart

    def _mutate(self, action: str, mutation: Callable[[Cart], Any]) -> Cart:
        working = self._read_current()
        mutation(working)
        self._cart = working
        self._persist()
        logger.debug("Cart %s applied, %d items", action, len(working))
        return working

    def _persist(self) -> bool:
        blob = json.dumps(self._cart.to_snapshot())
        try:
            self.storage.save(self.storage_key, blob)
        except CartPersistenceError:
            logger.exception("Failed to persist cart under %s", self.storage_key)
            increment_counter("cart_persist_failures_total")
            self._unsaved_changes = True
            return False
        self._unsaved_changes = False
        return True
