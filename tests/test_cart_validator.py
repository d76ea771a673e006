from __future__ import annotations

import json
from decimal import Decimal
from uuid import uuid4

import pytest

from src.observability.metrics import get_counter_value
from src.services.cart import (
    ITEM_TYPE_PRODUCT,
    ITEM_TYPE_VARIETY,
    PRICE_DEGRADED,
    Cart,
    CartItem,
)
from src.services.cart_validator import CartConsistencyValidator, decode_variety_key, is_valid_identity


@pytest.fixture
def validator():
    return CartConsistencyValidator()


def _variety(cultivar_id: str, age_token, *, price="21.00", quantity=1, age_years=None, **overrides) -> CartItem:
    if age_years is None and isinstance(age_token, int):
        age_years = age_token
    fields = dict(
        key=f"{cultivar_id}-{age_token}",
        item_type=ITEM_TYPE_VARIETY,
        reference_id=cultivar_id,
        name="Debutante",
        price=Decimal(price),
        quantity=quantity,
        age_years=age_years,
        price_group="A",
    )
    fields.update(overrides)
    return CartItem(**fields)


def _product(product_id: str, price="20.00", quantity=1) -> CartItem:
    return CartItem(
        key=product_id,
        item_type=ITEM_TYPE_PRODUCT,
        reference_id=product_id,
        name="Kameliendünger",
        price=Decimal(price),
        quantity=quantity,
    )


def test_decode_variety_key_splits_at_last_hyphen():
    cultivar_id = str(uuid4())
    assert decode_variety_key(f"{cultivar_id}-4") == (cultivar_id, 4)
    assert decode_variety_key(f"{cultivar_id}-abc") is None
    assert decode_variety_key(f"{cultivar_id}--3") is None
    assert decode_variety_key(f"{cultivar_id}-0") is None
    assert decode_variety_key(f"{cultivar_id}-+3") is None
    assert decode_variety_key(cultivar_id) is None
    assert decode_variety_key("not-a-uuid-3") is None
    assert decode_variety_key(None) is None


def test_identity_format():
    assert is_valid_identity(str(uuid4()))
    assert is_valid_identity(str(uuid4()).upper())
    assert not is_valid_identity("12345")
    assert not is_valid_identity("00000000-0000-0000-0000-000000000000")
    assert not is_valid_identity(42)


def test_sweep_drops_bad_age_tokens_and_keeps_valid_items(validator):
    valid = _variety(str(uuid4()), 5)
    non_numeric = _variety(str(uuid4()), "five", age_years=5)
    negative = _variety(str(uuid4()), -3, age_years=-3)
    zero = _variety(str(uuid4()), 0)

    cleaned = validator.sweep(Cart([non_numeric, valid, negative, zero]))

    assert cleaned.items == [valid]
    assert get_counter_value("cart_items_swept_total") == 3


def test_sweep_checks_product_identity(validator):
    good = _product(str(uuid4()))
    bad = _product("fertilizer-1")

    assert validator.sweep(Cart([good, bad])).items == [good]


def test_sweep_drops_unknown_types_duplicates_and_mismatched_references(validator):
    cultivar_id = str(uuid4())
    first = _variety(cultivar_id, 3, quantity=2)
    duplicate = _variety(cultivar_id, 3, quantity=5)
    mismatched = _variety(str(uuid4()), 4, reference_id=str(uuid4()))
    wrong_age = _variety(str(uuid4()), 4, age_years=6)
    unknown = _product(str(uuid4()))
    unknown.item_type = "gift-card"

    cleaned = validator.sweep(Cart([first, duplicate, mismatched, wrong_age, unknown]))

    assert cleaned.items == [first]


def test_sweep_never_modifies_valid_items(validator):
    degraded = _variety(str(uuid4()), 4, price="0.00", price_status=PRICE_DEGRADED, quantity=7)
    product = _product(str(uuid4()), price="45.50", quantity=2)

    cleaned = validator.sweep(Cart([degraded, product]))

    assert cleaned.items == [degraded, product]
    assert cleaned.get(degraded.key).price == Decimal("0.00")
    assert cleaned.get(degraded.key).quantity == 7


def test_sweep_is_idempotent(validator):
    cart = Cart(
        [
            _variety(str(uuid4()), 3),
            _variety(str(uuid4()), "x", age_years=1),
            _product("bogus"),
            _product(str(uuid4())),
        ]
    )

    once = validator.sweep(cart)
    twice = validator.sweep(once)

    assert twice == once
    assert len(once) == 2


def test_load_snapshot_drops_undecodable_entries(validator):
    valid = _product(str(uuid4()), quantity=2)
    missing_price = valid.to_dict()
    missing_price["key"] = missing_price["reference_id"] = str(uuid4())
    missing_price["price"] = None
    zero_quantity = _product(str(uuid4())).to_dict()
    zero_quantity["quantity"] = 0
    blob = json.dumps({"state": {"items": [valid.to_dict(), missing_price, zero_quantity, "junk"]}, "version": 1})

    result = validator.load_snapshot(blob)

    assert result.cart.items == [valid]
    assert result.removed == 3


@pytest.mark.parametrize("blob", [None, "", "{not json", json.dumps("string"), json.dumps({"state": {"items": 5}})])
def test_load_snapshot_treats_unreadable_blobs_as_empty(validator, blob):
    result = validator.load_snapshot(blob)
    assert len(result.cart) == 0
    assert result.removed == 0
