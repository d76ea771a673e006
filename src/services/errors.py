"""Exceptions raised by the pricing and cart services."""
from __future__ import annotations

from typing import Optional


class PricingError(Exception):
    """Base class for price resolution failures."""


class UnpriceableError(PricingError):
    """The cultivar carries no recognised price group and cannot be ordered."""

    def __init__(self, message: str = "Item cannot be priced", cultivar_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.cultivar_id = cultivar_id


class InvalidPricingInputError(PricingError, ValueError):
    pass


class PriceNotFoundError(PricingError):
    """No matrix entry exists for the requested key."""


class PriceUnavailableError(PricingError):
    """A matrix entry exists but is marked unavailable."""


class CartError(Exception):
    pass


class CartItemNotFoundError(CartError, KeyError):
    pass


class InvalidQuantityError(CartError, ValueError):
    pass


class CartPersistenceError(CartError):
    """The cart snapshot could not be read from or written to storage."""


class CheckoutValidationError(CartError):
    pass
