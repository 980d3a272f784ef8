import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from orderflow.core import config
from orderflow.core.exceptions import ConcurrencyConflictError, InternalError

logger = logging.getLogger(__name__)

# SQLSTATE codes for serialization failure and deadlock
SERIALIZATION_FAILURE_CODES = {"40001", "40P01"}
UNIQUE_VIOLATION_CODE = "23505"


def build_engine(database_url: str = config.DATABASE_URL, **kwargs) -> Engine:
    if database_url.startswith("sqlite"):
        connect_args = kwargs.pop("connect_args", {})
        connect_args.setdefault("check_same_thread", False)
        connect_args.setdefault("timeout", 30)
        kwargs["connect_args"] = connect_args
    return create_engine(database_url, **kwargs)


def is_serialization_failure(error: SQLAlchemyError) -> bool:
    """True when the store rejected a transaction because of a concurrent one"""
    orig = getattr(error, "orig", None)
    sqlstate = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if sqlstate in SERIALIZATION_FAILURE_CODES:
        return True
    # SQLite reports write contention as a locked database
    return isinstance(error, OperationalError) and "database is locked" in str(orig)


def is_unique_violation(error: SQLAlchemyError) -> bool:
    """True when an insert collided with a unique constraint"""
    if not isinstance(error, IntegrityError):
        return False
    orig = getattr(error, "orig", None)
    sqlstate = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    return sqlstate == UNIQUE_VIOLATION_CODE or "UNIQUE constraint failed" in str(orig)


def translate_database_error(error: SQLAlchemyError) -> InternalError:
    if is_serialization_failure(error):
        logger.warning(f"Transaction conflict detected: {error.__class__.__name__}")
        return ConcurrencyConflictError("Concurrent modification detected, please try again")
    logger.error("Database failure", exc_info=error)
    return InternalError()


class UnitOfWork:
    """
    Scopes a session to a single transaction.

    Commits when the block exits cleanly, rolls back on any error and
    translates storage faults into InternalError. Passing an existing
    session joins the caller's transaction instead of opening a new one.
    """

    def __init__(self, session_factory: sessionmaker, engine: Optional[Engine] = None):
        self.session_factory = session_factory
        self.engine = engine

    @classmethod
    def from_engine(cls, engine: Engine) -> "UnitOfWork":
        return cls(sessionmaker(bind=engine, autoflush=False, expire_on_commit=False), engine)

    @contextmanager
    def transaction(
        self,
        session: Optional[Session] = None,
        isolation_level: Optional[str] = None,
    ) -> Iterator[Session]:
        if session is not None:
            yield session
            return

        db = self.session_factory()
        try:
            if isolation_level:
                # Must be procured before any statement runs in this transaction
                db.connection(execution_options={"isolation_level": isolation_level})
            yield db
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise translate_database_error(e) from e
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()


_default_unit_of_work: Optional[UnitOfWork] = None


def get_unit_of_work() -> UnitOfWork:
    """Unit of work dependency for FastAPI"""
    global _default_unit_of_work
    if _default_unit_of_work is None:
        _default_unit_of_work = UnitOfWork.from_engine(build_engine())
    return _default_unit_of_work
