from fastapi import Depends, Request

from orderflow.core.cache import TTLCache
from orderflow.core.database import UnitOfWork, get_unit_of_work
from orderflow.core.instrumentation import PerformanceMetrics
from orderflow.services.catalog import SqlProductCatalog, SqlUserDirectory
from orderflow.services.inventory_ledger import InventoryLedger
from orderflow.services.order_service import OrderService


def get_metrics(request: Request) -> PerformanceMetrics:
    return request.app.state.metrics


def get_order_cache(request: Request) -> TTLCache:
    return request.app.state.order_cache


def get_inventory_ledger(
    uow: UnitOfWork = Depends(get_unit_of_work),
    metrics: PerformanceMetrics = Depends(get_metrics),
) -> InventoryLedger:
    return InventoryLedger(uow, metrics)


def get_order_service(
    uow: UnitOfWork = Depends(get_unit_of_work),
    ledger: InventoryLedger = Depends(get_inventory_ledger),
    metrics: PerformanceMetrics = Depends(get_metrics),
) -> OrderService:
    return OrderService(
        uow,
        users=SqlUserDirectory(uow),
        catalog=SqlProductCatalog(uow),
        ledger=ledger,
        metrics=metrics,
    )
