from __future__ import annotations

from typing import Any, Dict, Optional

from flask import Blueprint, current_app, g, jsonify, request, session

from src.database import get_db
from src.models import Cultivar, PriceGroup, Product
from src.services.cart import CartItem
from src.services.cart_service import CartStore
from src.services.cart_storage import SessionCartStorage
from src.services.checkout_service import CheckoutService
from src.services.errors import (
    CartError,
    CartItemNotFoundError,
    InvalidPricingInputError,
    PricingError,
    UnpriceableError,
)
from src.services.price_group_classifier import PriceGroupClassifier
from src.services.pricing_service import PricingService, format_price

cart_bp = Blueprint("cart", __name__)

# Room left for the cookie name, path and flags in the Set-Cookie header
COOKIE_ATTRIBUTE_ALLOWANCE = 128


def _locale() -> str:
    return request.args.get("locale") or current_app.config.get("DEFAULT_LOCALE", "de")


def _session_storage() -> SessionCartStorage:
    serializer = current_app.session_interface.get_signing_serializer(current_app)
    max_bytes = current_app.config.get("MAX_COOKIE_SIZE", 4093) - COOKIE_ATTRIBUTE_ALLOWANCE
    return SessionCartStorage(session, serializer=serializer, max_bytes=max_bytes)


def _get_cart_store() -> CartStore:
    if "cart_store" not in g:
        g.cart_store = CartStore(
            storage=_session_storage(),
            pricing=PricingService(get_db()),
            storage_key=current_app.config.get("CART_STORAGE_KEY", "cart-storage"),
        )
    return g.cart_store


def _cart_response(store: CartStore, body: Dict[str, Any], status: int = 200):
    if store.has_unsaved_changes:
        return jsonify({"error": "Cart is too large to store; remove items or check out first"}), 507
    return jsonify(body), status


def _json_body() -> Dict[str, Any]:
    return request.get_json(silent=True) or {}


def _parse_quantity(value: Any, default: Optional[int] = 1) -> Any:
    if value is None:
        return default
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value)
    return value


@cart_bp.errorhandler(UnpriceableError)
def _handle_unpriceable(exc: UnpriceableError):
    return jsonify({"error": "This item cannot be added", "detail": str(exc)}), 422


@cart_bp.errorhandler(InvalidPricingInputError)
def _handle_invalid_pricing_input(exc: InvalidPricingInputError):
    return jsonify({"error": str(exc)}), 422


@cart_bp.errorhandler(CartItemNotFoundError)
def _handle_missing_item(exc: CartItemNotFoundError):
    return jsonify({"error": exc.args[0] if exc.args else "Not found"}), 404


@cart_bp.errorhandler(CartError)
def _handle_cart_error(exc: CartError):
    return jsonify({"error": str(exc)}), 400


@cart_bp.errorhandler(PricingError)
def _handle_pricing_error(exc: PricingError):
    return jsonify({"error": str(exc)}), 400


@cart_bp.route("/api/cart", methods=["GET"])
def api_get_cart():
    return jsonify(_serialize_cart(_get_cart_store()))


@cart_bp.route("/api/cart/varieties", methods=["POST"])
def api_add_variety():
    payload = _json_body()
    cultivar_id = payload.get("cultivar_id")
    age_years = _parse_quantity(payload.get("age_years"), default=None)
    if not cultivar_id or age_years is None:
        return jsonify({"error": "cultivar_id and age_years are required"}), 400

    cultivar = get_db().query(Cultivar).filter_by(id=cultivar_id).first()
    if cultivar is None:
        return jsonify({"error": "Cultivar not found"}), 404

    store = _get_cart_store()
    item = store.add_variety(cultivar, age_years, _parse_quantity(payload.get("quantity")))
    return _cart_response(store, {"item": _serialize_item(item), "cart": _serialize_cart(store)}, 201)


@cart_bp.route("/api/cart/products", methods=["POST"])
def api_add_product():
    payload = _json_body()
    product_id = payload.get("product_id")
    if not product_id:
        return jsonify({"error": "product_id is required"}), 400

    product = get_db().query(Product).filter_by(id=product_id, is_active=True).first()
    if product is None:
        return jsonify({"error": "Product not found"}), 404

    store = _get_cart_store()
    item = store.add_product(product, _parse_quantity(payload.get("quantity")))
    return _cart_response(store, {"item": _serialize_item(item), "cart": _serialize_cart(store)}, 201)


@cart_bp.route("/api/cart/items/<path:key>", methods=["PATCH"])
def api_update_quantity(key: str):
    quantity = _parse_quantity(_json_body().get("quantity"), default=None)
    if quantity is None:
        return jsonify({"error": "quantity is required"}), 400
    store = _get_cart_store()
    store.update_quantity(key, quantity)
    return _cart_response(store, _serialize_cart(store))


@cart_bp.route("/api/cart/items/<path:key>", methods=["DELETE"])
def api_remove_item(key: str):
    store = _get_cart_store()
    store.remove_item(key)
    return _cart_response(store, _serialize_cart(store))


@cart_bp.route("/api/cart", methods=["DELETE"])
def api_clear_cart():
    store = _get_cart_store()
    store.clear()
    return _cart_response(store, _serialize_cart(store))


@cart_bp.route("/api/cart/revalidate", methods=["POST"])
def api_revalidate_cart():
    store = _get_cart_store()
    updated = store.revalidate_prices()
    body = _serialize_cart(store)
    body["updated"] = updated
    return _cart_response(store, body)


@cart_bp.route("/api/checkout", methods=["POST"])
def api_checkout():
    payload = _json_body()
    store = _get_cart_store()
    service = CheckoutService(get_db())
    success, message, order = service.submit(
        store,
        customer=payload.get("customer") or {},
        delivery=payload.get("delivery") or {},
        payment_method=payload.get("payment_method") or "cod",
    )
    if not success:
        return jsonify({"success": False, "message": message}), 400
    return jsonify(
        {
            "success": True,
            "message": message,
            "order": {
                "id": order.id,
                "order_number": order.order_number,
                "subtotal": str(order.subtotal),
                "shipping": str(order.shipping_amount),
                "payment_fee": str(order.payment_fee_amount),
                "vat": str(order.tax_amount),
                "total": str(order.total_amount),
            },
        }
    ), 201


@cart_bp.route("/api/pricing/<group>/range", methods=["GET"])
def api_price_range(group: str):
    price_group = PriceGroup.parse(group)
    if price_group is None:
        return jsonify({"error": f"Unknown price group {group}"}), 404
    price_range = PricingService(get_db()).get_price_range(price_group)
    body = price_range.to_dict()
    body["group"] = price_group.value
    body["label"] = PriceGroupClassifier.describe(price_group, _locale())
    body["from_label"] = format_price(price_range.min_price, _locale())
    return jsonify(body)


@cart_bp.route("/api/pricing/<group>/options", methods=["GET"])
def api_pricing_options(group: str):
    price_group = PriceGroup.parse(group)
    if price_group is None:
        return jsonify({"error": f"Unknown price group {group}"}), 404
    options = PricingService(get_db()).get_pricing_options(price_group)
    return jsonify(
        {
            "group": price_group.value,
            "options": [
                {"age_years": option.age_years, "pot_size": option.pot_size, "price": str(option.price)}
                for option in options
            ],
        }
    )


def _serialize_item(item: CartItem) -> Dict[str, Any]:
    data = item.to_dict()
    data["line_total"] = str(item.line_total)
    return data


def _serialize_cart(store: CartStore) -> Dict[str, Any]:
    g.cart_item_count = store.total_item_count()
    total = store.total_price()
    return {
        "items": [_serialize_item(item) for item in store.items],
        "total_item_count": store.total_item_count(),
        "total_price": str(total),
        "total_price_label": format_price(total, _locale()),
        "has_degraded_items": store.has_degraded_items(),
        "is_payable": store.is_payable(),
    }
