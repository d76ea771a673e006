from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional, Tuple
from uuid import uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from src.config import Config
from src.models import Cultivar, Order, OrderItem, OrderStatus, PaymentMethod, Product
from src.observability.metrics import increment_counter, record_event
from src.services.cart import ITEM_TYPE_PRODUCT, ITEM_TYPE_VARIETY, CartItem
from src.services.cart_service import CartStore
from src.services.errors import CheckoutValidationError

logger = logging.getLogger(__name__)

TWO_PLACES = Decimal("0.01")

REQUIRED_CUSTOMER_FIELDS = ("first_name", "last_name", "email", "address", "city", "postal_code")

_PAYMENT_METHOD_ALIASES = {
    "cod": PaymentMethod.CASH_ON_DELIVERY,
    "bank": PaymentMethod.BANK_TRANSFER,
    "bank_transfer": PaymentMethod.BANK_TRANSFER,
    "card": PaymentMethod.CREDIT_CARD,
    "credit_card": PaymentMethod.CREDIT_CARD,
}

# Storefront forms post camelCase field names
_CUSTOMER_FIELD_ALIASES = {
    "firstName": "first_name",
    "lastName": "last_name",
    "postalCode": "postal_code",
    "taxId": "tax_id",
}


def _money(value: Decimal) -> Decimal:
    return value.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


@dataclass
class CustomerInfo:
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    address: str = ""
    city: str = ""
    postal_code: str = ""
    country: str = "Deutschland"
    phone: Optional[str] = None
    company: Optional[str] = None
    tax_id: Optional[str] = None

    @classmethod
    def from_mapping(cls, data: Mapping) -> "CustomerInfo":
        values: Dict[str, Any] = {}
        for raw_key, value in data.items():
            name = _CUSTOMER_FIELD_ALIASES.get(raw_key, raw_key)
            if name in cls.__dataclass_fields__ and value is not None:
                values[name] = str(value).strip()
        return cls(**values)

    def missing_fields(self) -> List[str]:
        return [name for name in REQUIRED_CUSTOMER_FIELDS if not getattr(self, name)]

    def to_address(self) -> Dict[str, Any]:
        return {
            "firstName": self.first_name,
            "lastName": self.last_name,
            "email": self.email,
            "phone": self.phone,
            "address": self.address,
            "city": self.city,
            "postalCode": self.postal_code,
            "country": self.country,
            "company": self.company,
            "taxId": self.tax_id,
        }


@dataclass
class OrderTotals:
    subtotal: Decimal
    shipping: Decimal
    vat: Decimal
    total: Decimal
    payment_fee: Decimal = Decimal("0.00")


@dataclass
class OrderSubmission:
    order_number: str
    customer: CustomerInfo
    payment_method: PaymentMethod
    items: List[CartItem]
    totals: OrderTotals
    currency: str = "EUR"
    delivery_method: Optional[str] = None
    delivery_notes: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class CheckoutService:
    """Turns a validated cart into a persisted order."""

    def __init__(self, db_session: Session, config: Any = Config) -> None:
        self.db = db_session
        self.config = config

    def calculate_totals(
        self, subtotal: Decimal, payment_method: Optional[PaymentMethod] = None
    ) -> OrderTotals:
        """Shipping is free above the threshold; cash on delivery adds COD_FEE on top of VAT."""
        subtotal = _money(subtotal)
        threshold = Decimal(str(self.config.FREE_SHIPPING_THRESHOLD))
        shipping = Decimal("0.00") if subtotal > threshold else _money(Decimal(str(self.config.SHIPPING_FEE)))
        vat = _money(subtotal * Decimal(str(self.config.VAT_RATE)))
        payment_fee = Decimal("0.00")
        if payment_method == PaymentMethod.CASH_ON_DELIVERY:
            payment_fee = _money(Decimal(str(self.config.COD_FEE)))
        return OrderTotals(
            subtotal=subtotal,
            shipping=shipping,
            vat=vat,
            total=_money(subtotal + shipping + vat + payment_fee),
            payment_fee=payment_fee,
        )

    def assemble(
        self,
        cart_store: CartStore,
        customer: CustomerInfo | Mapping,
        delivery: Optional[Mapping] = None,
        payment_method: str = "cod",
    ) -> OrderSubmission:
        """Validate the cart and customer data and build the order payload."""
        if isinstance(customer, Mapping):
            customer = CustomerInfo.from_mapping(customer)

        items = cart_store.items
        if not items:
            raise CheckoutValidationError("Cart is empty")
        if cart_store.pending_reservations:
            raise CheckoutValidationError("Some items are still being priced")
        if cart_store.has_degraded_items():
            raise CheckoutValidationError("Some items have no confirmed price; refresh the cart prices first")

        missing = customer.missing_fields()
        if missing:
            raise CheckoutValidationError(f"{', '.join(missing)} is required")

        method = _PAYMENT_METHOD_ALIASES.get((payment_method or "").strip().lower())
        if method is None:
            raise CheckoutValidationError(f"Unsupported payment method {payment_method!r}")

        delivery = delivery or {}
        return OrderSubmission(
            order_number=self._generate_order_number(),
            customer=customer,
            payment_method=method,
            items=items,
            totals=self.calculate_totals(cart_store.total_price(), method),
            currency=self.config.CURRENCY,
            delivery_method=delivery.get("deliveryMethod") or delivery.get("delivery_method"),
            delivery_notes=delivery.get("deliveryNotes") or delivery.get("delivery_notes"),
        )

    def submit(
        self,
        cart_store: CartStore,
        customer: CustomerInfo | Mapping,
        delivery: Optional[Mapping] = None,
        payment_method: str = "cod",
    ) -> Tuple[bool, str, Optional[Order]]:
        """Place the order and clear the cart on success."""
        try:
            submission = self.assemble(cart_store, customer, delivery, payment_method)
        except CheckoutValidationError as e:
            increment_counter("checkout_orders_total", labels={"status": "rejected"})
            return False, str(e), None

        try:
            missing = self._missing_references(submission.items)
            if missing:
                increment_counter("checkout_orders_total", labels={"status": "stale"})
                names = ", ".join(sorted(missing))
                return False, f"Items no longer available: {names}", None

            order = self._build_order(submission)
            self.db.add(order)
            self.db.commit()
            self.db.refresh(order)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Error creating order: {e}")
            increment_counter("checkout_orders_total", labels={"status": "failed"})
            return False, f"Error creating order: {str(e)}", None

        cart_store.clear()
        increment_counter("checkout_orders_total", labels={"status": "placed"})
        record_event("order_placed", {"order_number": order.order_number, "total": str(order.total_amount)})
        logger.info(f"Created order {order.order_number} with {len(submission.items)} line items")
        return True, "Order placed successfully", order

    def _missing_references(self, items: List[CartItem]) -> List[str]:
        """Names of cart items whose cultivar or product no longer exists."""
        cultivar_ids = {item.reference_id for item in items if item.item_type == ITEM_TYPE_VARIETY}
        product_ids = {item.reference_id for item in items if item.item_type == ITEM_TYPE_PRODUCT}

        found_cultivars = set()
        if cultivar_ids:
            found_cultivars = {
                row.id for row in self.db.query(Cultivar.id).filter(Cultivar.id.in_(cultivar_ids)).all()
            }
        found_products = set()
        if product_ids:
            found_products = {
                row.id
                for row in self.db.query(Product.id)
                .filter(Product.id.in_(product_ids), Product.is_active.is_(True))
                .all()
            }

        missing = []
        for item in items:
            known = found_cultivars if item.item_type == ITEM_TYPE_VARIETY else found_products
            if item.reference_id not in known:
                missing.append(item.name or item.key)
        return missing

    def _build_order(self, submission: OrderSubmission) -> Order:
        shipping_address = submission.customer.to_address()
        shipping_address["deliveryMethod"] = submission.delivery_method
        shipping_address["deliveryNotes"] = submission.delivery_notes

        order = Order(
            order_number=submission.order_number,
            status=OrderStatus.PENDING.value,
            currency=submission.currency,
            payment_method=submission.payment_method.value,
            subtotal=submission.totals.subtotal,
            shipping_amount=submission.totals.shipping,
            payment_fee_amount=submission.totals.payment_fee,
            tax_amount=submission.totals.vat,
            total_amount=submission.totals.total,
            shipping_address=shipping_address,
            notes=submission.delivery_notes,
        )
        for item in submission.items:
            order.items.append(
                OrderItem(
                    item_type=item.item_type,
                    cultivar_id=item.reference_id if item.item_type == ITEM_TYPE_VARIETY else None,
                    product_id=item.reference_id if item.item_type == ITEM_TYPE_PRODUCT else None,
                    age_years=item.age_years,
                    name=item.name,
                    quantity=item.quantity,
                    unit_price=item.price,
                    line_total=item.line_total,
                )
            )
        return order

    @staticmethod
    def _generate_order_number() -> str:
        return f"ORD-{datetime.now(timezone.utc):%Y%m%d}-{uuid4().hex[:6].upper()}"
