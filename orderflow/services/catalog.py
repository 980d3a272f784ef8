"""
Lookups against collaborators this service does not own.

The order workflow only needs to know whether a user exists and what a
product currently costs. Anything that implements ``get_user`` or
``get_product`` can be plugged in; the SQL-backed versions below read the
shared ``users`` and ``products`` tables.
"""
import logging
from typing import Optional, Protocol

from orderflow.core.database import UnitOfWork
from orderflow.models import schemas
from orderflow.models.database import Product, User

logger = logging.getLogger(__name__)


class UserDirectory(Protocol):
    def get_user(self, user_id: int) -> Optional[schemas.UserSummary]:
        ...


class ProductCatalog(Protocol):
    def get_product(self, product_id: int) -> Optional[schemas.ProductSummary]:
        ...


class SqlUserDirectory:
    def __init__(self, uow: UnitOfWork):
        self.uow = uow

    def get_user(self, user_id: int) -> Optional[schemas.UserSummary]:
        with self.uow.transaction() as db:
            user = db.get(User, user_id)
            if user is None:
                logger.debug(f"User {user_id} not found")
                return None
            return schemas.UserSummary.model_validate(user)


class SqlProductCatalog:
    def __init__(self, uow: UnitOfWork):
        self.uow = uow

    def get_product(self, product_id: int) -> Optional[schemas.ProductSummary]:
        with self.uow.transaction() as db:
            product = db.get(Product, product_id)
            if product is None:
                logger.debug(f"Product {product_id} not found")
                return None
            return schemas.ProductSummary.model_validate(product)
