from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from orderflow.models.database import OrderStatus, PaymentStatus


class UserSummary(BaseModel):
    id: int
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None

    class Config:
        from_attributes = True


class ProductSummary(BaseModel):
    id: int
    name: str
    price: Decimal
    is_active: bool = True

    class Config:
        from_attributes = True


class InventoryCreate(BaseModel):
    product_id: int
    quantity_in_stock: int = 0
    reorder_level: int = 0


class InventoryRecord(BaseModel):
    id: int
    product_id: int
    quantity_in_stock: int
    reorder_level: int
    last_restocked: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class StockQuantity(BaseModel):
    """Body of the add/remove/reserve/release/set stock endpoints"""
    quantity: int


class ReorderLevelUpdate(BaseModel):
    reorder_level: int


class OrderLineCreate(BaseModel):
    product_id: int
    quantity: int


class OrderLine(BaseModel):
    id: int
    order_id: int
    product_id: int
    quantity: int
    unit_price: Decimal
    subtotal: Decimal

    class Config:
        from_attributes = True


class OrderCreate(BaseModel):
    user_id: int
    lines: List[OrderLineCreate]
    shipping_address: str
    payment_method: str
    notes: Optional[str] = Field(default=None, max_length=1000)


class OrderStatusUpdate(BaseModel):
    status: OrderStatus


class PaymentStatusUpdate(BaseModel):
    payment_status: PaymentStatus


class Order(BaseModel):
    id: int
    user_id: int
    order_date: datetime
    total_amount: Decimal
    status: OrderStatus
    shipping_address: str
    payment_method: str
    payment_status: PaymentStatus
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    lines: List[OrderLine] = []

    class Config:
        from_attributes = True


class OrderTotal(BaseModel):
    order_id: int
    total_amount: Decimal
