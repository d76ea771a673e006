# tests/conftest.py
"""
Pytest configuration and shared fixtures.

Tests run against an in-memory SQLite database unless TEST_DATABASE_URL
points somewhere else. The variable must be set before ``src`` is imported
because the engine is created at import time.
"""

import os
import sys
from decimal import Decimal
from uuid import uuid4

os.environ["DATABASE_URL"] = os.getenv("TEST_DATABASE_URL", "sqlite://")
os.environ.setdefault("STRUCTURED_LOGS_ENABLED", "false")

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from src.database import Base, engine, SessionLocal
from src.models import Cultivar, PriceGroup, PricingMatrixEntry, Product, Species
from src.observability.metrics import reset_metrics
from src.seed import default_price_rows, seed_pricing_matrix
from src.services.cart_service import CartStore
from src.services.cart_storage import InMemoryCartStorage
from src.services.pricing_service import PricingService


@pytest.fixture(autouse=True)
def _reset_metrics():
    reset_metrics()
    yield


@pytest.fixture
def db_session():
    """Create a fresh schema and session for each test"""
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def pricing_matrix(db_session):
    """Default price list plus one entry that exists but is withdrawn from sale"""
    seed_pricing_matrix(db_session, default_price_rows())
    db_session.add(
        PricingMatrixEntry(
            price_group=PriceGroup.RARE,
            age_years=8,
            pot_size="15L",
            base_price_euros=Decimal("120.00"),
            is_available=False,
        )
    )
    db_session.commit()
    return db_session


@pytest.fixture
def camellia_species(db_session):
    species = Species(scientific_name="Camellia japonica", common_name_de="Japanische Kamelie")
    db_session.add(species)
    db_session.commit()
    return species


@pytest.fixture
def sample_cultivars(db_session, camellia_species):
    """One cultivar per price group plus an unpriced one"""
    cultivars = {
        "common": Cultivar(cultivar_name="Debutante", price_group=PriceGroup.COMMON, species=camellia_species),
        "medium": Cultivar(cultivar_name="Nuccio's Pearl", price_group=PriceGroup.MEDIUM, species=camellia_species),
        "rare": Cultivar(cultivar_name="Kramer's Supreme", price_group=PriceGroup.RARE, species=camellia_species),
        "unpriced": Cultivar(cultivar_name="Seedling 42", price_group=None, species=camellia_species),
    }
    db_session.add_all(cultivars.values())
    db_session.commit()
    return cultivars


@pytest.fixture
def sample_products(db_session):
    products = {
        "fertilizer": Product(name_de="Kameliendünger", name_en="Camellia fertilizer", price_euros=Decimal("20.00")),
        "pot": Product(name_de="Terrakotta-Topf", name_en="Terracotta pot", price_euros=Decimal("45.50")),
    }
    db_session.add_all(products.values())
    db_session.commit()
    return products


@pytest.fixture
def pricing_service(pricing_matrix):
    return PricingService(pricing_matrix)


@pytest.fixture
def unreachable_db():
    """Session whose every query fails as if the database were down"""
    session = MagicMock()
    session.query.side_effect = OperationalError("SELECT pricing_matrix", {}, Exception("connection refused"))
    return session


@pytest.fixture
def cart_storage():
    return InMemoryCartStorage()


@pytest.fixture
def cart_store(cart_storage, pricing_service):
    return CartStore(storage=cart_storage, pricing=pricing_service)


@pytest.fixture
def make_cultivar():
    """Factory for cultivar records as the catalog API returns them"""
    def _make(price_group="A", name="Debutante", cultivar_id=None):
        return {
            "id": cultivar_id or str(uuid4()),
            "cultivar_name": name,
            "price_group": price_group,
            "species": {"scientific_name": "Camellia japonica"},
            "photo_url": None,
        }
    return _make


@pytest.fixture
def make_product():
    def _make(price, name="Kameliendünger", product_id=None):
        return {
            "id": product_id or str(uuid4()),
            "name_de": name,
            "price_euros": price,
        }
    return _make
