from datetime import datetime
from typing import Callable, List, TypeVar

from fastapi import APIRouter, Depends

from orderflow.api.dependencies import get_order_cache, get_order_service
from orderflow.core.cache import TTLCache
from orderflow.core.exceptions import ValidationError
from orderflow.models.database import OrderStatus
from orderflow.models.schemas import (
    Order, OrderCreate, OrderLine, OrderStatusUpdate, OrderTotal, PaymentStatusUpdate,
)
from orderflow.services.order_service import OrderService

router = APIRouter()

T = TypeVar("T")


def _cache_key(order_id: int) -> str:
    return f"order:{order_id}"


def _write(cache: TTLCache, order_id: int, operation: Callable[[], T]) -> T:
    try:
        return operation()
    finally:
        cache.invalidate(_cache_key(order_id))


@router.post("/", response_model=Order)
def create_order(order_data: OrderCreate, service: OrderService = Depends(get_order_service)):
    """Create a new order and reserve its stock"""
    return service.place_order(order_data)


@router.get("/", response_model=List[Order])
def get_orders(service: OrderService = Depends(get_order_service)):
    """Get all orders, newest first"""
    return service.get_all_orders()


@router.get("/pending", response_model=List[Order])
def get_pending_orders(service: OrderService = Depends(get_order_service)):
    return service.get_pending_orders()


@router.get("/date-range", response_model=List[Order])
def get_orders_by_date_range(start: datetime, end: datetime, service: OrderService = Depends(get_order_service)):
    return service.get_orders_by_date_range(start, end)


@router.get("/user/{user_id}", response_model=List[Order])
def get_orders_by_user(user_id: int, service: OrderService = Depends(get_order_service)):
    return service.get_orders_by_user(user_id)


@router.get("/status/{status}", response_model=List[Order])
def get_orders_by_status(status: str, service: OrderService = Depends(get_order_service)):
    try:
        parsed = OrderStatus.parse(status)
    except ValueError:
        raise ValidationError(f"Unknown order status: {status}") from None
    return service.get_orders_by_status(parsed)


@router.get("/{order_id}", response_model=Order)
def get_order(
    order_id: int,
    service: OrderService = Depends(get_order_service),
    cache: TTLCache = Depends(get_order_cache),
):
    """Get a specific order"""
    return cache.get_or_load(_cache_key(order_id), lambda: service.get_order(order_id))


@router.get("/{order_id}/items", response_model=List[OrderLine])
def get_order_items(order_id: int, service: OrderService = Depends(get_order_service)):
    return service.get_order_lines(order_id)


@router.get("/{order_id}/total", response_model=OrderTotal)
def get_order_total(order_id: int, service: OrderService = Depends(get_order_service)):
    return OrderTotal(order_id=order_id, total_amount=service.calculate_order_total(order_id))


# Every write below drops the cached copy of the order it touched

@router.patch("/{order_id}/status", response_model=Order)
def update_order_status(
    order_id: int,
    update: OrderStatusUpdate,
    service: OrderService = Depends(get_order_service),
    cache: TTLCache = Depends(get_order_cache),
):
    return _write(cache, order_id, lambda: service.update_order_status(order_id, update.status))


@router.patch("/{order_id}/payment-status", response_model=Order)
def update_payment_status(
    order_id: int,
    update: PaymentStatusUpdate,
    service: OrderService = Depends(get_order_service),
    cache: TTLCache = Depends(get_order_cache),
):
    return _write(cache, order_id, lambda: service.update_payment_status(order_id, update.payment_status))


@router.patch("/{order_id}/confirm", response_model=Order)
def confirm_order(
    order_id: int,
    service: OrderService = Depends(get_order_service),
    cache: TTLCache = Depends(get_order_cache),
):
    return _write(cache, order_id, lambda: service.confirm_order(order_id))


@router.patch("/{order_id}/ship", response_model=Order)
def ship_order(
    order_id: int,
    service: OrderService = Depends(get_order_service),
    cache: TTLCache = Depends(get_order_cache),
):
    return _write(cache, order_id, lambda: service.ship_order(order_id))


@router.patch("/{order_id}/complete", response_model=Order)
def complete_order(
    order_id: int,
    service: OrderService = Depends(get_order_service),
    cache: TTLCache = Depends(get_order_cache),
):
    return _write(cache, order_id, lambda: service.complete_order(order_id))


@router.patch("/{order_id}/cancel", response_model=Order)
def cancel_order(
    order_id: int,
    service: OrderService = Depends(get_order_service),
    cache: TTLCache = Depends(get_order_cache),
):
    """Cancel an order and return its stock to inventory"""
    return _write(cache, order_id, lambda: service.cancel_order(order_id))
