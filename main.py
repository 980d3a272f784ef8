import logging

from fastapi import FastAPI

from orderflow.api.errors import register_exception_handlers
from orderflow.api.routes import inventory, orders
from orderflow.core import config
from orderflow.core.cache import TTLCache
from orderflow.core.instrumentation import PerformanceMetrics

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(
    title="Orderflow",
    description="Order workflow and inventory reservation service",
    version="1.0.0"
)

app.state.metrics = PerformanceMetrics()
app.state.order_cache = TTLCache(ttl_seconds=config.ORDER_CACHE_TTL_SECONDS)

register_exception_handlers(app)

# Include routers
app.include_router(orders.router, prefix="/api/v1/orders", tags=["orders"])
app.include_router(inventory.router, prefix="/api/v1/inventory", tags=["inventory"])

@app.get("/")
def root():
    return {"message": "Orderflow API"}

@app.get("/health")
def health_check():
    return {"status": "healthy"}

@app.get("/metrics")
def operation_metrics():
    """Execution time statistics per service operation"""
    return app.state.metrics.snapshot()

if __name__ == "__main__":
    import uvicorn
    from orderflow.core.database import get_unit_of_work
    from orderflow.models.database import Base

    Base.metadata.create_all(bind=get_unit_of_work().engine)
    uvicorn.run(app, host="0.0.0.0", port=8000)
