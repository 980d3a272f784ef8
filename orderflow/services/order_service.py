import logging
import time
from datetime import datetime
from decimal import Decimal
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple, TypeVar, Union

from sqlalchemy.orm import Session

from orderflow.core import config
from orderflow.core.database import UnitOfWork
from orderflow.core.exceptions import (
    ConcurrencyConflictError, InsufficientStockError, InternalError, InvalidOrderStateError,
    ResourceNotFoundError, ValidationError,
)
from orderflow.core.instrumentation import PerformanceMetrics, instrumented
from orderflow.models import schemas
from orderflow.models.database import Order, OrderLine, OrderStatus, PaymentStatus, utcnow
from orderflow.services.catalog import ProductCatalog, UserDirectory
from orderflow.services.inventory_ledger import InventoryLedger
from orderflow.services.order_repository import OrderRepository
from orderflow.services.state_machine import (
    CANCELLABLE_STATUSES, ensure_payment_transition, ensure_transition,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")
CENT = Decimal("0.01")
LineInput = Union[schemas.OrderLineCreate, Tuple[int, int]]


def _as_line(line: LineInput) -> schemas.OrderLineCreate:
    if isinstance(line, schemas.OrderLineCreate):
        return line
    product_id, quantity = line
    return schemas.OrderLineCreate(product_id=product_id, quantity=quantity)


def _is_blank(value: Optional[str]) -> bool:
    return value is None or not value.strip()


class OrderService:
    """
    Coordinates order creation, status changes and cancellation.

    This is the only component that touches the inventory ledger and the
    order tables in the same transaction. Order creation runs at the
    configured isolation level (SERIALIZABLE by default) and is retried when
    the store reports a serialization conflict; inventory is reserved with
    the ledger's conditional decrement, so a lost race surfaces as
    InsufficientStockError and rolls the whole order back.
    """

    def __init__(
        self,
        uow: UnitOfWork,
        users: UserDirectory,
        catalog: ProductCatalog,
        ledger: Optional[InventoryLedger] = None,
        metrics: Optional[PerformanceMetrics] = None,
        isolation_level: Optional[str] = config.ORDER_ISOLATION_LEVEL,
        max_retries: int = config.ORDER_MAX_RETRIES,
        retry_backoff: float = config.ORDER_RETRY_BACKOFF_SECONDS,
    ):
        self.uow = uow
        self.users = users
        self.catalog = catalog
        self.metrics = metrics
        self.ledger = ledger or InventoryLedger(uow, metrics)
        self.isolation_level = isolation_level
        self.max_retries = max(1, max_retries)
        self.retry_backoff = retry_backoff

    def _with_retries(self, description: str, attempt_fn: Callable[[], T]) -> T:
        for attempt in range(self.max_retries):
            try:
                return attempt_fn()
            except ConcurrencyConflictError as e:
                if attempt == self.max_retries - 1:
                    logger.error(f"Giving up on {description} after {self.max_retries} attempts")
                    raise InternalError(
                        f"Unable to {description} after {self.max_retries} attempts, please try again later"
                    ) from e
                logger.warning(f"Concurrency conflict on attempt {attempt + 1} to {description}, retrying...")
                time.sleep(self.retry_backoff * (attempt + 1))
        raise InternalError()

    @staticmethod
    def _require_order(repo: OrderRepository, order_id: int, for_update: bool = False) -> Order:
        order = repo.get(order_id, for_update=for_update)
        if order is None:
            raise ResourceNotFoundError("Order", "id", order_id)
        return order

    # Order creation

    @instrumented("orders.create_order")
    def create_order(
        self,
        user_id: int,
        lines: Sequence[LineInput],
        shipping_address: str,
        payment_method: str,
        notes: Optional[str] = None,
    ) -> schemas.Order:
        logger.info(f"Creating order for user ID: {user_id}")

        if self.users.get_user(user_id) is None:
            raise ResourceNotFoundError("User", "id", user_id)
        if not lines:
            raise ValidationError("Order must have at least one item")
        if _is_blank(shipping_address):
            raise ValidationError("Shipping address is required")
        if _is_blank(payment_method):
            raise ValidationError("Payment method is required")

        requested = [_as_line(line) for line in lines]
        for index, line in enumerate(requested):
            if line.quantity is None or line.quantity <= 0:
                raise ValidationError("must be positive", field=f"lines[{index}].quantity")

        prices = self._lookup_prices(requested)

        order = self._with_retries(
            "create order",
            lambda: self._create_order_attempt(
                user_id, requested, prices, shipping_address.strip(), payment_method.strip(), notes
            ),
        )
        logger.info(f"Created order with ID: {order.id}")
        return order

    def place_order(self, order_data: schemas.OrderCreate) -> schemas.Order:
        return self.create_order(
            order_data.user_id,
            order_data.lines,
            order_data.shipping_address,
            order_data.payment_method,
            notes=order_data.notes,
        )

    def _lookup_prices(self, lines: Iterable[schemas.OrderLineCreate]) -> Dict[int, Decimal]:
        """Current unit price per product, snapshotted once for the whole order"""
        prices: Dict[int, Decimal] = {}
        for line in lines:
            if line.product_id in prices:
                continue
            product = self.catalog.get_product(line.product_id)
            if product is None:
                raise ResourceNotFoundError("Product", "id", line.product_id)
            if not product.is_active:
                raise ValidationError(f"Product {product.name} is not active")
            prices[line.product_id] = Decimal(str(product.price)).quantize(CENT)
        return prices

    def _create_order_attempt(
        self,
        user_id: int,
        lines: List[schemas.OrderLineCreate],
        prices: Dict[int, Decimal],
        shipping_address: str,
        payment_method: str,
        notes: Optional[str],
    ) -> schemas.Order:
        with self.uow.transaction(isolation_level=self.isolation_level) as db:
            # Fast rejection; the conditional reserve below is what guarantees no oversell
            for line in lines:
                if not self.ledger.has_available(line.product_id, line.quantity, session=db):
                    available = self._available(db, line.product_id)
                    raise InsufficientStockError(line.product_id, line.quantity, available)

            total_amount = sum(
                (prices[line.product_id] * line.quantity for line in lines), Decimal("0.00")
            )
            now = utcnow()
            repo = OrderRepository(db)
            order = repo.add(Order(
                user_id=user_id,
                order_date=now,
                total_amount=total_amount,
                status=OrderStatus.PENDING.value,
                shipping_address=shipping_address,
                payment_method=payment_method,
                payment_status=PaymentStatus.UNPAID.value,
                notes=notes,
                created_at=now,
                updated_at=now,
            ))

            # Persist each line before reserving stock against it
            for line in lines:
                unit_price = prices[line.product_id]
                repo.add_line(order, OrderLine(
                    product_id=line.product_id,
                    quantity=line.quantity,
                    unit_price=unit_price,
                    subtotal=unit_price * line.quantity,
                    created_at=now,
                ))
                self.ledger.reserve(line.product_id, line.quantity, session=db)

            return schemas.Order.model_validate(order)

    def _available(self, db: Session, product_id: int) -> int:
        try:
            return self.ledger.get_by_product(product_id, session=db).quantity_in_stock
        except ResourceNotFoundError:
            return 0

    # Status changes

    @instrumented("orders.update_order_status")
    def update_order_status(
        self, order_id: int, new_status: OrderStatus, session: Optional[Session] = None
    ) -> schemas.Order:
        new_status = OrderStatus(new_status)
        logger.info(f"Updating order {order_id} status to: {new_status}")

        if new_status == OrderStatus.CANCELLED:
            # Cancelling always returns the reserved stock
            if session is None:
                return self.cancel_order(order_id)
            return self._cancel(session, order_id)

        with self.uow.transaction(session) as db:
            repo = OrderRepository(db)
            order = self._require_order(repo, order_id, for_update=True)
            current = OrderStatus(order.status)
            ensure_transition(current, new_status, order_id)
            self._persist_status(repo, order, current, new_status)
            updated = schemas.Order.model_validate(order)

        logger.info(f"Successfully updated order {order_id} status to: {new_status}")
        return updated

    def _persist_status(
        self, repo: OrderRepository, order: Order, current: OrderStatus, new_status: OrderStatus
    ) -> None:
        if not repo.update_status(order, current, new_status):
            raise InvalidOrderStateError(
                order.id, current, new_status, "order was modified by another transaction"
            )

    def _advance(self, order_id: int, expected: OrderStatus, target: OrderStatus, action: str) -> schemas.Order:
        with self.uow.transaction() as db:
            order = self._require_order(OrderRepository(db), order_id, for_update=True)
            if OrderStatus(order.status) != expected:
                raise InvalidOrderStateError(
                    order_id, OrderStatus(order.status), target, f"can only {action} {expected} orders"
                )
            return self.update_order_status(order_id, target, session=db)

    @instrumented("orders.confirm_order")
    def confirm_order(self, order_id: int) -> schemas.Order:
        return self._advance(order_id, OrderStatus.PENDING, OrderStatus.PROCESSING, "confirm")

    @instrumented("orders.ship_order")
    def ship_order(self, order_id: int) -> schemas.Order:
        return self._advance(order_id, OrderStatus.PROCESSING, OrderStatus.SHIPPED, "ship")

    @instrumented("orders.complete_order")
    def complete_order(self, order_id: int) -> schemas.Order:
        return self._advance(order_id, OrderStatus.SHIPPED, OrderStatus.DELIVERED, "complete")

    @instrumented("orders.cancel_order")
    def cancel_order(self, order_id: int) -> schemas.Order:
        logger.info(f"Cancelling order ID: {order_id}")
        order = self._with_retries("cancel order", lambda: self._cancel_order_attempt(order_id))
        logger.info(f"Successfully cancelled order ID: {order_id}")
        return order

    def _cancel_order_attempt(self, order_id: int) -> schemas.Order:
        with self.uow.transaction(isolation_level=self.isolation_level) as db:
            return self._cancel(db, order_id)

    def _cancel(self, db: Session, order_id: int) -> schemas.Order:
        """Release every line's stock and mark the order CANCELLED, within the caller's transaction"""
        repo = OrderRepository(db)
        order = self._require_order(repo, order_id, for_update=True)
        current = OrderStatus(order.status)
        if current not in CANCELLABLE_STATUSES:
            raise InvalidOrderStateError(
                order_id, current, OrderStatus.CANCELLED,
                "can only cancel PENDING or PROCESSING orders",
            )
        ensure_transition(current, OrderStatus.CANCELLED, order_id)

        # Return reserved stock to the ledger
        for line in repo.list_lines(order_id):
            self.ledger.release(line.product_id, line.quantity, session=db)
            logger.debug(f"Released {line.quantity} units of product ID: {line.product_id}")

        self._persist_status(repo, order, current, OrderStatus.CANCELLED)
        return schemas.Order.model_validate(order)

    @instrumented("orders.update_payment_status")
    def update_payment_status(self, order_id: int, payment_status: PaymentStatus) -> schemas.Order:
        payment_status = PaymentStatus(payment_status)
        logger.info(f"Updating order {order_id} payment status to: {payment_status}")

        with self.uow.transaction() as db:
            repo = OrderRepository(db)
            order = self._require_order(repo, order_id, for_update=True)
            current = PaymentStatus(order.payment_status)
            if payment_status == PaymentStatus.PAID and order.status == OrderStatus.CANCELLED.value:
                raise InvalidOrderStateError(
                    order_id, current, payment_status, "cancelled orders cannot be paid"
                )
            ensure_payment_transition(current, payment_status, order_id)
            if not repo.update_payment_status(order, current, payment_status):
                raise InvalidOrderStateError(
                    order_id, current, payment_status, "order was modified by another transaction"
                )
            return schemas.Order.model_validate(order)

    # Queries

    @instrumented("orders.get_order")
    def get_order(self, order_id: int) -> schemas.Order:
        with self.uow.transaction() as db:
            return schemas.Order.model_validate(self._require_order(OrderRepository(db), order_id))

    def _list(self, fetch: Callable[[OrderRepository], List[Order]]) -> List[schemas.Order]:
        with self.uow.transaction() as db:
            return [schemas.Order.model_validate(order) for order in fetch(OrderRepository(db))]

    @instrumented("orders.get_all_orders")
    def get_all_orders(self) -> List[schemas.Order]:
        return self._list(lambda repo: repo.list_all())

    @instrumented("orders.get_orders_by_user")
    def get_orders_by_user(self, user_id: int) -> List[schemas.Order]:
        return self._list(lambda repo: repo.list_by_user(user_id))

    @instrumented("orders.get_orders_by_status")
    def get_orders_by_status(self, status: OrderStatus) -> List[schemas.Order]:
        if status is None:
            raise ValidationError("Order status cannot be null")
        status = OrderStatus(status)
        return self._list(lambda repo: repo.list_by_status(status))

    def get_pending_orders(self) -> List[schemas.Order]:
        return self.get_orders_by_status(OrderStatus.PENDING)

    @instrumented("orders.get_orders_by_date_range")
    def get_orders_by_date_range(self, start: datetime, end: datetime) -> List[schemas.Order]:
        if start is None or end is None:
            raise ValidationError("Start and end dates cannot be null")
        if start > end:
            raise ValidationError("Start date must be before end date")
        return self._list(lambda repo: repo.list_by_date_range(start, end))

    @instrumented("orders.get_order_lines")
    def get_order_lines(self, order_id: int) -> List[schemas.OrderLine]:
        with self.uow.transaction() as db:
            repo = OrderRepository(db)
            self._require_order(repo, order_id)
            return [schemas.OrderLine.model_validate(line) for line in repo.list_lines(order_id)]

    def calculate_order_total(self, order_id: int) -> Decimal:
        """Recompute the total from the persisted lines"""
        lines = self.get_order_lines(order_id)
        return sum((line.unit_price * line.quantity for line in lines), Decimal("0.00"))
