from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, List, Optional, Tuple

from src.observability.metrics import increment_counter
from src.services.cart import ITEM_TYPE_PRODUCT, ITEM_TYPE_VARIETY, Cart, CartItem

logger = logging.getLogger(__name__)

UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[1-5][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$",
    re.IGNORECASE,
)
_AGE_TOKEN = re.compile(r"^[0-9]+$")


def is_valid_identity(token: Any) -> bool:
    return isinstance(token, str) and UUID_PATTERN.match(token) is not None


def decode_variety_key(key: Any) -> Optional[Tuple[str, int]]:
    """
    Split ``"<cultivar uuid>-<age>"`` at its last hyphen.

    Returns (cultivar id, age) or None when either part is malformed. The age
    must be written in plain digits and be at least 1.
    """
    if not isinstance(key, str):
        return None
    identity, separator, age_token = key.rpartition("-")
    if not separator or not is_valid_identity(identity):
        return None
    if not _AGE_TOKEN.match(age_token):
        return None
    age = int(age_token)
    if age < 1:
        return None
    return identity, age


@dataclass(frozen=True)
class SweepResult:
    cart: Cart
    removed: int


class CartConsistencyValidator:
    """
    Drops cart entries whose key no longer parses as a catalog reference.

    Only structure is checked. Whether a cultivar or product still exists is
    left to checkout so the cart keeps working without a database round trip.
    """

    def is_structurally_valid(self, item: CartItem) -> bool:
        if item.item_type == ITEM_TYPE_VARIETY:
            decoded = decode_variety_key(item.key)
            if decoded is None:
                return False
            cultivar_id, age = decoded
            return item.reference_id == cultivar_id and item.age_years == age
        if item.item_type == ITEM_TYPE_PRODUCT:
            return is_valid_identity(item.key) and item.reference_id == item.key
        return False

    def sweep(self, cart: Cart) -> Cart:
        return self._sweep(cart).cart

    def load_snapshot(self, blob: Optional[str]) -> SweepResult:
        """Decode a persisted blob and sweep it. Unreadable blobs yield an empty cart."""
        if not blob:
            return SweepResult(cart=Cart(), removed=0)

        try:
            data = json.loads(blob)
        except (TypeError, ValueError) as exc:
            logger.warning("Discarding unreadable cart snapshot: %s", exc)
            increment_counter("cart_snapshots_discarded_total")
            return SweepResult(cart=Cart(), removed=0)

        raw_items = self._extract_items(data)
        if raw_items is None:
            logger.warning("Discarding cart snapshot with unexpected layout")
            increment_counter("cart_snapshots_discarded_total")
            return SweepResult(cart=Cart(), removed=0)

        decoded: List[CartItem] = []
        undecodable = 0
        for raw in raw_items:
            try:
                decoded.append(CartItem.from_dict(raw))
            except ValueError as exc:
                undecodable += 1
                logger.debug("Dropping undecodable cart entry: %s", exc)

        result = self._sweep(Cart(decoded))
        removed = result.removed + undecodable
        if undecodable:
            self._record_removals(undecodable)
        return SweepResult(cart=result.cart, removed=removed)

    def _sweep(self, cart: Cart) -> SweepResult:
        kept: List[CartItem] = []
        seen = set()
        for item in cart:
            if item.key in seen or not self.is_structurally_valid(item):
                continue
            seen.add(item.key)
            kept.append(item)

        removed = len(cart) - len(kept)
        if removed:
            self._record_removals(removed)
        return SweepResult(cart=Cart(kept), removed=removed)

    @staticmethod
    def _record_removals(count: int) -> None:
        logger.info("Removed %d invalid cart items", count)
        increment_counter("cart_items_swept_total", amount=count)

    @staticmethod
    def _extract_items(data: Any) -> Optional[List[Any]]:
        if isinstance(data, list):
            return data
        if not isinstance(data, dict):
            return None
        state = data.get("state", data)
        if not isinstance(state, dict):
            return None
        items = state.get("items", [])
        return items if isinstance(items, list) else None
