import logging
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from orderflow.core.database import UnitOfWork, is_unique_violation
from orderflow.core.exceptions import (
    DuplicateResourceError, InsufficientStockError, ResourceNotFoundError, ValidationError,
)
from orderflow.core.instrumentation import PerformanceMetrics, instrumented
from orderflow.models import schemas
from orderflow.models.database import InventoryRecord, utcnow

logger = logging.getLogger(__name__)


def _require_positive(quantity: int, field: str = "quantity") -> None:
    if quantity is None or quantity <= 0:
        raise ValidationError("must be positive", field=field)


def _require_non_negative(value: int, field: str) -> None:
    if value is None or value < 0:
        raise ValidationError("cannot be negative", field=field)


class InventoryLedger:
    """
    Single source of truth for available stock.

    Every mutation is one conditional UPDATE statement against the inventory
    row, so concurrent callers can never drive the stock below zero or lose
    each other's updates. Each method runs in its own transaction unless a
    session is passed, in which case it joins the caller's transaction.
    """

    def __init__(self, uow: UnitOfWork, metrics: Optional[PerformanceMetrics] = None):
        self.uow = uow
        self.metrics = metrics

    @staticmethod
    def _find(db: Session, product_id: int) -> Optional[InventoryRecord]:
        query = (
            select(InventoryRecord)
            .where(InventoryRecord.product_id == product_id)
            .execution_options(populate_existing=True)
        )
        return db.scalars(query).first()

    def _require(self, db: Session, product_id: int) -> InventoryRecord:
        record = self._find(db, product_id)
        if record is None:
            raise ResourceNotFoundError("Inventory", "productId", product_id)
        return record

    def _apply(self, db: Session, product_id: int, **values) -> schemas.InventoryRecord:
        """Run an unconditional single-row update and return the new state"""
        values.setdefault("updated_at", utcnow())
        result = db.execute(
            update(InventoryRecord)
            .where(InventoryRecord.product_id == product_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise ResourceNotFoundError("Inventory", "productId", product_id)
        return schemas.InventoryRecord.model_validate(self._require(db, product_id))

    def _decrement(self, db: Session, product_id: int, quantity: int) -> schemas.InventoryRecord:
        # Check and decrement in one statement; a lost race shows up as zero rows
        result = db.execute(
            update(InventoryRecord)
            .where(
                InventoryRecord.product_id == product_id,
                InventoryRecord.quantity_in_stock >= quantity,
            )
            .values(
                quantity_in_stock=InventoryRecord.quantity_in_stock - quantity,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            record = self._require(db, product_id)
            raise InsufficientStockError(product_id, quantity, record.quantity_in_stock)
        return schemas.InventoryRecord.model_validate(self._require(db, product_id))

    @instrumented("inventory.create")
    def create(
        self,
        product_id: int,
        initial_stock: int = 0,
        reorder_level: int = 0,
        session: Optional[Session] = None,
    ) -> schemas.InventoryRecord:
        logger.info(f"Creating inventory for product ID: {product_id}")
        if product_id is None or product_id <= 0:
            raise ValidationError("must be a valid product ID", field="productId")
        _require_non_negative(initial_stock, "quantityInStock")
        _require_non_negative(reorder_level, "reorderLevel")

        with self.uow.transaction(session) as db:
            if self._find(db, product_id) is not None:
                raise DuplicateResourceError("Inventory", "productId", product_id)
            now = utcnow()
            record = InventoryRecord(
                product_id=product_id,
                quantity_in_stock=initial_stock,
                reorder_level=reorder_level,
                last_restocked=now,
                updated_at=now,
            )
            db.add(record)
            try:
                db.flush()
            except IntegrityError as e:
                # Another transaction created the record after our check
                if is_unique_violation(e):
                    raise DuplicateResourceError("Inventory", "productId", product_id) from e
                raise
            created = schemas.InventoryRecord.model_validate(record)

        logger.info(f"Successfully created inventory with ID: {created.id}")
        return created

    @instrumented("inventory.get_by_product")
    def get_by_product(self, product_id: int, session: Optional[Session] = None) -> schemas.InventoryRecord:
        with self.uow.transaction(session) as db:
            return schemas.InventoryRecord.model_validate(self._require(db, product_id))

    @instrumented("inventory.has_available")
    def has_available(self, product_id: int, quantity: int, session: Optional[Session] = None) -> bool:
        with self.uow.transaction(session) as db:
            record = self._find(db, product_id)
            return record is not None and record.quantity_in_stock >= quantity

    @instrumented("inventory.is_in_stock")
    def is_in_stock(self, product_id: int, session: Optional[Session] = None) -> bool:
        return self.has_available(product_id, 1, session=session)

    @instrumented("inventory.reserve")
    def reserve(self, product_id: int, quantity: int, session: Optional[Session] = None) -> schemas.InventoryRecord:
        logger.debug(f"Reserving {quantity} units of product ID: {product_id}")
        _require_positive(quantity)
        with self.uow.transaction(session) as db:
            record = self._decrement(db, product_id, quantity)
        logger.debug(f"Reserved {quantity} units of product ID: {product_id}, {record.quantity_in_stock} left")
        return record

    @instrumented("inventory.release")
    def release(self, product_id: int, quantity: int, session: Optional[Session] = None) -> schemas.InventoryRecord:
        logger.debug(f"Releasing {quantity} units of product ID: {product_id}")
        _require_positive(quantity)
        with self.uow.transaction(session) as db:
            record = self._apply(
                db, product_id,
                quantity_in_stock=InventoryRecord.quantity_in_stock + quantity,
            )
        logger.debug(f"Released {quantity} units of product ID: {product_id}")
        return record

    @instrumented("inventory.add_stock")
    def add_stock(self, product_id: int, quantity: int, session: Optional[Session] = None) -> schemas.InventoryRecord:
        logger.info(f"Adding {quantity} units to product ID: {product_id}")
        _require_positive(quantity)
        now = utcnow()
        with self.uow.transaction(session) as db:
            record = self._apply(
                db, product_id,
                quantity_in_stock=InventoryRecord.quantity_in_stock + quantity,
                last_restocked=now,
                updated_at=now,
            )
        logger.info(f"Successfully added {quantity} units to product ID: {product_id}")
        return record

    @instrumented("inventory.remove_stock")
    def remove_stock(self, product_id: int, quantity: int, session: Optional[Session] = None) -> schemas.InventoryRecord:
        logger.info(f"Removing {quantity} units from product ID: {product_id}")
        _require_positive(quantity)
        with self.uow.transaction(session) as db:
            record = self._decrement(db, product_id, quantity)
        logger.info(f"Successfully removed {quantity} units from product ID: {product_id}")
        return record

    @instrumented("inventory.set_stock")
    def set_stock(self, product_id: int, quantity: int, session: Optional[Session] = None) -> schemas.InventoryRecord:
        logger.info(f"Updating stock for product ID: {product_id} to {quantity}")
        _require_non_negative(quantity, "quantityInStock")
        now = utcnow()
        with self.uow.transaction(session) as db:
            record = self._apply(
                db, product_id,
                quantity_in_stock=quantity,
                last_restocked=now,
                updated_at=now,
            )
        logger.info(f"Successfully updated stock for product ID: {product_id}")
        return record

    @instrumented("inventory.update_reorder_level")
    def update_reorder_level(
        self, product_id: int, reorder_level: int, session: Optional[Session] = None
    ) -> schemas.InventoryRecord:
        logger.info(f"Updating reorder level for product ID: {product_id} to {reorder_level}")
        _require_non_negative(reorder_level, "reorderLevel")
        with self.uow.transaction(session) as db:
            return self._apply(db, product_id, reorder_level=reorder_level)

    @instrumented("inventory.list_low_stock")
    def list_low_stock(self, session: Optional[Session] = None) -> List[schemas.InventoryRecord]:
        """Records at or below their reorder level"""
        with self.uow.transaction(session) as db:
            records = db.scalars(
                select(InventoryRecord)
                .where(InventoryRecord.quantity_in_stock <= InventoryRecord.reorder_level)
                .order_by(InventoryRecord.product_id)
            ).all()
            return [schemas.InventoryRecord.model_validate(record) for record in records]

    @instrumented("inventory.list_out_of_stock")
    def list_out_of_stock(self, session: Optional[Session] = None) -> List[schemas.InventoryRecord]:
        with self.uow.transaction(session) as db:
            records = db.scalars(
                select(InventoryRecord)
                .where(InventoryRecord.quantity_in_stock == 0)
                .order_by(InventoryRecord.product_id)
            ).all()
            return [schemas.InventoryRecord.model_validate(record) for record in records]
