from decimal import Decimal

import pytest

from orderflow.core.database import UnitOfWork, build_engine
from orderflow.core.instrumentation import PerformanceMetrics
from orderflow.models.database import Base, InventoryRecord, Product, User
from orderflow.services.catalog import SqlProductCatalog, SqlUserDirectory
from orderflow.services.inventory_ledger import InventoryLedger
from orderflow.services.order_service import OrderService


@pytest.fixture
def test_engine(tmp_path):
    # File-backed SQLite so that concurrent threads share one database
    engine = build_engine(f"sqlite:///{tmp_path / 'orderflow_test.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def uow(test_engine):
    return UnitOfWork.from_engine(test_engine)


@pytest.fixture
def test_db(uow):
    db = uow.session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def metrics():
    return PerformanceMetrics()


@pytest.fixture
def ledger(uow, metrics):
    return InventoryLedger(uow, metrics)


@pytest.fixture
def order_service(uow, ledger, metrics):
    return OrderService(
        uow,
        users=SqlUserDirectory(uow),
        catalog=SqlProductCatalog(uow),
        ledger=ledger,
        metrics=metrics,
        retry_backoff=0,
    )


@pytest.fixture
def customer(test_db):
    user = User(email="customer1@example.com", first_name="Dana", last_name="Reyes")
    test_db.add(user)
    test_db.commit()
    test_db.refresh(user)
    return user


@pytest.fixture
def make_product(test_db):
    """Create a catalog product with an inventory record"""
    def factory(name, price, stock, reorder_level=0, is_active=True):
        product = Product(name=name, price=Decimal(price), is_active=is_active)
        test_db.add(product)
        test_db.flush()
        test_db.add(InventoryRecord(
            product_id=product.id,
            quantity_in_stock=stock,
            reorder_level=reorder_level,
        ))
        test_db.commit()
        test_db.refresh(product)
        return product

    return factory


@pytest.fixture
def mixer(make_product):
    # Only 5 items in stock
    return make_product("Professional DJ Mixer", "299.99", stock=5, reorder_level=2)


@pytest.fixture
def headphones(make_product):
    return make_product("DJ Headphones", "149.99", stock=10, reorder_level=3)
