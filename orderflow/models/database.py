import enum
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean, CheckConstraint, Column, DateTime, ForeignKey, Integer, Numeric, String, Text,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()

MONEY = Numeric(12, 2)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OrderStatus(str, enum.Enum):
    """Order lifecycle status; PENDING is initial, DELIVERED and CANCELLED are terminal"""
    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"

    @classmethod
    def parse(cls, value: str) -> "OrderStatus":
        return cls(value.strip().lower())

    @classmethod
    def _missing_(cls, value):
        if isinstance(value, str) and value.strip().lower() != value:
            return cls.parse(value)
        return None

    def __str__(self) -> str:
        return self.name


class PaymentStatus(str, enum.Enum):
    UNPAID = "unpaid"
    PAID = "paid"
    REFUNDED = "refunded"

    @classmethod
    def parse(cls, value: str) -> "PaymentStatus":
        return cls(value.strip().lower())

    @classmethod
    def _missing_(cls, value):
        if isinstance(value, str) and value.strip().lower() != value:
            return cls.parse(value)
        return None

    def __str__(self) -> str:
        return self.name


class User(Base):
    """Read-only view of the user directory"""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, nullable=False)
    first_name = Column(String)
    last_name = Column(String)


class Product(Base):
    """Read-only view of the product catalog"""
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    price = Column(MONEY, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)


class InventoryRecord(Base):
    """Stock counter for a single product"""
    __tablename__ = "inventory"
    __table_args__ = (
        CheckConstraint("quantity_in_stock >= 0", name="ck_inventory_quantity_non_negative"),
        CheckConstraint("reorder_level >= 0", name="ck_inventory_reorder_level_non_negative"),
    )

    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), unique=True, index=True, nullable=False)
    quantity_in_stock = Column(Integer, nullable=False, default=0)
    reorder_level = Column(Integer, nullable=False, default=0)
    last_restocked = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class Order(Base):
    """Order header; lines are created with it and never changed afterwards"""
    __tablename__ = "orders"
    __table_args__ = (
        CheckConstraint("total_amount >= 0", name="ck_orders_total_non_negative"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=False)
    order_date = Column(DateTime, default=utcnow, index=True, nullable=False)
    total_amount = Column(MONEY, nullable=False)
    status = Column(String(20), default=OrderStatus.PENDING.value, index=True, nullable=False)
    shipping_address = Column(String(500), nullable=False)
    payment_method = Column(String(100), nullable=False)
    payment_status = Column(String(20), default=PaymentStatus.UNPAID.value, nullable=False)
    notes = Column(Text)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationship to order lines
    lines = relationship(
        "OrderLine",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderLine.id",
    )


class OrderLine(Base):
    """One requested product within an order, priced at order time"""
    __tablename__ = "order_lines"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_order_lines_quantity_positive"),
        CheckConstraint("unit_price >= 0", name="ck_order_lines_unit_price_non_negative"),
    )

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), index=True, nullable=False)
    product_id = Column(Integer, ForeignKey("products.id"), index=True, nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(MONEY, nullable=False)
    subtotal = Column(MONEY, nullable=False)
    created_at = Column(DateTime, default=utcnow)

    order = relationship("Order", back_populates="lines")
