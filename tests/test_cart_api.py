"""
Cart API tests

Drive the Flask blueprint through the test client. The cart lives in the
signed session cookie, so one client behaves like one browser.
"""
import json
from decimal import Decimal

import pytest

from src.config import Config
from src.main import app
from src.models import Product
from src.observability.metrics import get_counter_value


@pytest.fixture
def client(pricing_matrix, sample_cultivars, sample_products):
    app.config["TESTING"] = True
    with app.test_client() as client:
        with client.session_transaction() as sess:
            sess.clear()
        yield client


def _add_variety(client, cultivar, age=3, quantity=1):
    return client.post(
        "/api/cart/varieties",
        json={"cultivar_id": cultivar.id, "age_years": age, "quantity": quantity},
    )


def test_empty_cart(client):
    response = client.get("/api/cart")
    assert response.status_code == 200
    body = response.get_json()
    assert body["items"] == []
    assert body["total_item_count"] == 0
    assert body["total_price"] == "0.00"
    assert body["is_payable"] is False


def test_add_variety_twice_increments_quantity(client, sample_cultivars):
    first = _add_variety(client, sample_cultivars["rare"])
    second = _add_variety(client, sample_cultivars["rare"])

    assert first.status_code == 201
    assert second.status_code == 201
    cart = second.get_json()["cart"]
    assert len(cart["items"]) == 1
    assert cart["items"][0]["quantity"] == 2
    assert cart["items"][0]["price"] == "37.00"
    assert cart["total_price"] == "74.00"
    assert cart["total_price_label"] == "74,00 €"


def test_cart_is_stored_in_session_under_fixed_key(client, sample_products):
    client.post("/api/cart/products", json={"product_id": sample_products["pot"].id})

    with client.session_transaction() as sess:
        snapshot = json.loads(sess[Config.CART_STORAGE_KEY])
    assert snapshot["state"]["items"][0]["reference_id"] == sample_products["pot"].id


def test_unpriced_cultivar_cannot_be_added(client, sample_cultivars):
    response = _add_variety(client, sample_cultivars["unpriced"])
    assert response.status_code == 422
    assert response.get_json()["error"] == "This item cannot be added"


def test_unknown_cultivar_and_missing_fields(client):
    assert client.post("/api/cart/varieties", json={"cultivar_id": "nope", "age_years": 3}).status_code == 404
    assert client.post("/api/cart/varieties", json={"age_years": 3}).status_code == 400
    assert client.post("/api/cart/products", json={}).status_code == 400


def test_invalid_quantity_is_rejected(client, sample_cultivars):
    response = _add_variety(client, sample_cultivars["common"], quantity=0)
    assert response.status_code == 400


def test_invalid_age_is_unprocessable(client, sample_cultivars):
    response = _add_variety(client, sample_cultivars["common"], age=0)
    assert response.status_code == 422
    assert client.get("/api/cart").get_json()["items"] == []


def test_cart_too_large_for_cookie_is_refused_not_dropped(client, db_session):
    labels = [
        Product(
            name_de=f"Pflanzenetikett {number}",
            price_euros=Decimal("1.50"),
            description_de="Wetterfestes Etikett aus Aluminium",
            image_url=f"https://cdn.example.com/labels/{number}.jpg",
        )
        for number in range(60)
    ]
    db_session.add_all(labels)
    db_session.commit()

    statuses = []
    cookie_sizes = []
    for label in labels:
        response = client.post("/api/cart/products", json={"product_id": label.id})
        statuses.append(response.status_code)
        cookie_sizes.extend(
            len(header) for header in response.headers.getlist("Set-Cookie") if header.startswith("session=")
        )

    assert 507 in statuses
    assert set(statuses) == {201, 507}
    assert max(cookie_sizes) <= 4093
    assert get_counter_value("cart_persist_failures_total") == statuses.count(507)
    # everything acknowledged with 201 is still in the cart on the next request
    assert client.get("/api/cart").get_json()["total_item_count"] == statuses.count(201)


def test_update_and_remove_items(client, sample_products):
    added = client.post("/api/cart/products", json={"product_id": sample_products["fertilizer"].id, "quantity": 1})
    key = added.get_json()["item"]["key"]

    updated = client.patch(f"/api/cart/items/{key}", json={"quantity": 4})
    assert updated.get_json()["total_item_count"] == 4

    removed = client.patch(f"/api/cart/items/{key}", json={"quantity": 0})
    assert removed.get_json()["items"] == []

    assert client.delete(f"/api/cart/items/{key}").status_code == 200
    assert client.patch(f"/api/cart/items/{key}", json={"quantity": 2}).status_code == 404


def test_variety_keys_route_with_age_suffix(client, sample_cultivars):
    added = _add_variety(client, sample_cultivars["medium"], age=4)
    key = added.get_json()["item"]["key"]

    response = client.delete(f"/api/cart/items/{key}")

    assert response.status_code == 200
    assert response.get_json()["items"] == []


def test_clear_cart(client, sample_products):
    client.post("/api/cart/products", json={"product_id": sample_products["pot"].id})
    response = client.delete("/api/cart")
    assert response.get_json()["total_item_count"] == 0


def test_checkout_places_order_and_empties_cart(client, sample_cultivars, sample_products):
    _add_variety(client, sample_cultivars["common"], age=6)
    client.post("/api/cart/products", json={"product_id": sample_products["fertilizer"].id})

    response = client.post(
        "/api/checkout",
        json={
            "customer": {
                "firstName": "Erika",
                "lastName": "Mustermann",
                "email": "erika@example.com",
                "address": "Gartenweg 3",
                "city": "Pillnitz",
                "postalCode": "01326",
            },
            "payment_method": "bank",
        },
    )

    assert response.status_code == 201
    order = response.get_json()["order"]
    assert order["subtotal"] == "79.00"
    assert order["shipping"] == "0.00"
    assert order["payment_fee"] == "0.00"
    assert client.get("/api/cart").get_json()["items"] == []


def test_checkout_rejects_empty_cart(client):
    response = client.post("/api/checkout", json={"customer": {}})
    assert response.status_code == 400
    assert response.get_json()["success"] is False


def test_price_range_endpoint(client):
    response = client.get("/api/pricing/A/range?locale=en")
    body = response.get_json()
    assert response.status_code == 200
    assert body["min_price"] == "21.00"
    assert body["max_price"] == "59.00"
    assert body["label"] == "Common Varieties"
    assert body["from_label"] == "€21.00"
    assert client.get("/api/pricing/Q/range").status_code == 404


def test_pricing_options_endpoint(client):
    body = client.get("/api/pricing/rare/options").get_json()
    assert body["group"] == "C"
    assert [option["age_years"] for option in body["options"]] == [3, 4, 5, 6]


def test_health_and_metrics(client):
    health = client.get("/health")
    assert health.status_code == 200
    assert health.get_json()["available_prices"] == 12

    client.get("/api/cart")
    metrics = client.get("/metrics").get_json()
    assert "http_requests_total" in metrics["counters"]
