from datetime import datetime
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session, selectinload

from orderflow.models.database import Order, OrderLine, OrderStatus, PaymentStatus, utcnow


class OrderRepository:
    """Order header and line persistence within the caller's session"""

    def __init__(self, db: Session):
        self.db = db

    def add(self, order: Order) -> Order:
        self.db.add(order)
        self.db.flush()  # Get the order ID
        return order

    def add_line(self, order: Order, line: OrderLine) -> OrderLine:
        order.lines.append(line)
        self.db.flush()
        return line

    def get(self, order_id: int, for_update: bool = False) -> Optional[Order]:
        query = (
            select(Order)
            .where(Order.id == order_id)
            .options(selectinload(Order.lines))
            .execution_options(populate_existing=True)
        )
        if for_update:
            query = query.with_for_update(of=Order)
        return self.db.scalars(query).first()

    def list_lines(self, order_id: int) -> List[OrderLine]:
        return list(self.db.scalars(
            select(OrderLine).where(OrderLine.order_id == order_id).order_by(OrderLine.id)
        ))

    def _list(self, *criteria) -> List[Order]:
        query = (
            select(Order)
            .where(*criteria)
            .options(selectinload(Order.lines))
            .order_by(Order.order_date.desc(), Order.id.desc())
        )
        return list(self.db.scalars(query))

    def list_all(self) -> List[Order]:
        return self._list()

    def list_by_user(self, user_id: int) -> List[Order]:
        return self._list(Order.user_id == user_id)

    def list_by_status(self, status: OrderStatus) -> List[Order]:
        return self._list(Order.status == OrderStatus(status).value)

    def list_by_date_range(self, start: datetime, end: datetime) -> List[Order]:
        return self._list(Order.order_date.between(start, end))

    def update_status(self, order: Order, expected: OrderStatus, new_status: OrderStatus) -> bool:
        """Compare-and-set the status; False when another transaction changed it first"""
        return self._compare_and_set(
            order, Order.status == OrderStatus(expected).value, status=OrderStatus(new_status).value
        )

    def update_payment_status(self, order: Order, expected: PaymentStatus, new_status: PaymentStatus) -> bool:
        return self._compare_and_set(
            order,
            Order.payment_status == PaymentStatus(expected).value,
            payment_status=PaymentStatus(new_status).value,
        )

    def _compare_and_set(self, order: Order, guard, **values) -> bool:
        result = self.db.execute(
            update(Order)
            .where(Order.id == order.id, guard)
            .values(updated_at=utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return False
        self.db.refresh(order)
        return True
