from .price_group_classifier import PriceGroupClassifier
from .pricing_service import PricingService, PriceQuote, PriceRange, calculate_fallback_price
from .cart import Cart, CartItem
from .cart_storage import CartStorage, InMemoryCartStorage, JsonFileCartStorage, SessionCartStorage
from .cart_validator import CartConsistencyValidator
from .cart_service import CartStore
from .checkout_service import CheckoutService, CustomerInfo

__all__ = [
    "PriceGroupClassifier",
    "PricingService",
    "PriceQuote",
    "PriceRange",
    "calculate_fallback_price",
    "Cart",
    "CartItem",
    "CartStorage",
    "InMemoryCartStorage",
    "JsonFileCartStorage",
    "SessionCartStorage",
    "CartConsistencyValidator",
    "CartStore",
    "CheckoutService",
    "CustomerInfo",
]
