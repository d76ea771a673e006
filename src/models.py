# src/models.py
from enum import Enum
from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from sqlalchemy import (
    Column,
    Integer,
    String,
    Numeric,
    DateTime,
    ForeignKey,
    Boolean,
    Text,
    JSON,
    UniqueConstraint,
    CheckConstraint,
    Enum as SAEnum,
)
from sqlalchemy.orm import relationship

# Use a single, shared Base for all models
# This ensures all models use the same SQLAlchemy metadata, preventing conflicts.
from src.database import Base


def _uuid_str() -> str:
    return str(uuid4())


class PriceGroup(str, Enum):
    """Rarity tier of a cultivar. Values are the storefront's historical A/B/C codes."""

    COMMON = "A"
    MEDIUM = "B"
    RARE = "C"

    @classmethod
    def parse(cls, value) -> Optional["PriceGroup"]:
        """Accept the enum itself, an A/B/C code or a common/medium/rare name."""
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return None
        token = value.strip()
        for group in cls:
            if token.upper() == group.value or token.upper() == group.name:
                return group
        return None


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    SHIPPED = "shipped"
    CANCELLED = "cancelled"


class PaymentMethod(str, Enum):
    CASH_ON_DELIVERY = "cod"
    BANK_TRANSFER = "bank_transfer"
    CREDIT_CARD = "credit_card"


class Species(Base):
    __tablename__ = 'species'
    id = Column(String(36), primary_key=True, default=_uuid_str)
    scientific_name = Column(String(255), nullable=False, unique=True)
    common_name_de = Column(String(255))
    common_name_en = Column(String(255))
    cultivars = relationship("Cultivar", back_populates="species")


class Cultivar(Base):
    __tablename__ = 'cultivars'
    id = Column(String(36), primary_key=True, default=_uuid_str)
    species_id = Column(String(36), ForeignKey('species.id'))
    cultivar_name = Column(String(255), nullable=False)
    price_group = Column(SAEnum(PriceGroup, name="price_group", values_callable=lambda e: [m.value for m in e]), nullable=True)
    photo_url = Column(String(512))
    _created_at = Column('created_at', DateTime, default=lambda: datetime.now(timezone.utc))
    species = relationship("Species", back_populates="cultivars")

    @property
    def created_at(self):
        return self._created_at


class PricingMatrixEntry(Base):
    __tablename__ = 'pricing_matrix'
    __table_args__ = (
        UniqueConstraint('price_group', 'age_years', 'pot_size', name='uq_pricing_matrix_key'),
        CheckConstraint('age_years >= 0', name='ck_pricing_matrix_age'),
        CheckConstraint('base_price_euros >= 0', name='ck_pricing_matrix_price'),
    )
    id = Column(String(36), primary_key=True, default=_uuid_str)
    price_group = Column(SAEnum(PriceGroup, name="price_group", values_callable=lambda e: [m.value for m in e]), nullable=False)
    age_years = Column(Integer, nullable=False)
    pot_size = Column(String(32), nullable=False)
    base_price_euros = Column(Numeric(10, 2), nullable=False)
    is_available = Column(Boolean, nullable=False, default=True)
    _updated_at = Column(
        'updated_at',
        DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    @property
    def updated_at(self):
        return self._updated_at


class Product(Base):
    __tablename__ = 'products'
    id = Column(String(36), primary_key=True, default=_uuid_str)
    name_de = Column(String(255), nullable=False)
    name_en = Column(String(255))
    description_de = Column(Text)
    price_euros = Column(Numeric(10, 2), nullable=False, default=0)
    image_url = Column(String(512))
    is_active = Column(Boolean, nullable=False, default=True)


class Order(Base):
    __tablename__ = 'orders'
    id = Column(String(36), primary_key=True, default=_uuid_str)
    order_number = Column(String(32), nullable=False, unique=True)
    status = Column(String(32), nullable=False, default=OrderStatus.PENDING.value)
    currency = Column(String(3), nullable=False, default="EUR")
    payment_method = Column(String(32), nullable=False)
    subtotal = Column(Numeric(10, 2), nullable=False)
    shipping_amount = Column(Numeric(10, 2), nullable=False)
    payment_fee_amount = Column(Numeric(10, 2), nullable=False, default=0)
    tax_amount = Column(Numeric(10, 2), nullable=False)
    total_amount = Column(Numeric(10, 2), nullable=False)
    shipping_address = Column(JSON, nullable=False)
    notes = Column(Text)
    _created_at = Column('created_at', DateTime, default=lambda: datetime.now(timezone.utc))
    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan")

    @property
    def created_at(self):
        return self._created_at


class OrderItem(Base):
    __tablename__ = 'order_items'
    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(String(36), ForeignKey('orders.id'), nullable=False)
    item_type = Column(String(16), nullable=False)
    cultivar_id = Column(String(36), ForeignKey('cultivars.id'))
    product_id = Column(String(36), ForeignKey('products.id'))
    age_years = Column(Integer)
    name = Column(String(255), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(10, 2), nullable=False)
    line_total = Column(Numeric(10, 2), nullable=False)
    order = relationship("Order", back_populates="items")
