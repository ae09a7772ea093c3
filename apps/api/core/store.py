"""
Row store over SQLAlchemy.

The engine talks to persistence only through this module:

    store.find_by_id(Model, id)        -> record (NotFound if absent)
    store.insert(Model, {...})         -> record
    store.update(Model, id, {...})     -> record
    store.list_all(Model)              -> [records]

Multi-step operations that must commit or fail together use
``store.unit_of_work()``. Driver errors are translated here so callers
only ever see EngineError:

    no row               -> NOT_FOUND
    constraint violation -> VALIDATION
    version mismatch     -> CONFLICT
    anything else        -> DATABASE
"""
import logging
import uuid
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional, Type, TypeVar

from sqlalchemy import inspect, select, update as sa_update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, NoResultFound, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from core.database import check_db_connection, create_db_engine, create_session_factory, init_db
from core.exceptions import (
    EngineError,
    conflict_error,
    database_error,
    not_found,
    validation_error,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


@contextmanager
def translate_errors(operation: str) -> Iterator[None]:
    """Map SQLAlchemy failures onto engine error kinds."""
    try:
        yield
    except EngineError:
        raise
    except NoResultFound as e:
        raise not_found("Record", operation) from e
    except IntegrityError as e:
        logger.info(f"Constraint violation during {operation}: {e.orig}")
        raise validation_error(
            f"Constraint violation during {operation}",
            constraint=str(e.orig),
        ) from e
    except SQLAlchemyError as e:
        logger.error(f"Database error during {operation}: {e}")
        raise database_error(f"Database failure during {operation}", operation=operation) from e


def _primary_key(model: Type[Any]):
    return inspect(model).primary_key[0]


def as_uuid(value: Any, field: str = "id") -> uuid.UUID:
    """Coerce a UUID or its string form; malformed values are a validation error."""
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError, AttributeError):
        raise validation_error(f"{field} is not a valid identifier: {value!r}", field=field)


def retry_on_conflict(operation: Callable[[], T], max_retries: int, description: str = "operation") -> T:
    """
    Run ``operation``, re-running it when an optimistic version check fails.

    Each attempt must open its own unit of work so a retry starts from
    freshly read rows. Other errors propagate unchanged.
    """
    attempts = max_retries + 1
    for attempt in range(1, attempts + 1):
        try:
            return operation()
        except EngineError as e:
            if e.code != "VERSION_CONFLICT" or attempt == attempts:
                raise
            logger.warning(f"Version conflict during {description} (attempt {attempt}/{attempts}), retrying")
    raise AssertionError("unreachable")


class UnitOfWork:
    """Store operations bound to one session and one transaction."""

    def __init__(self, session: Session):
        self.session = session

    def find_by_id(self, model: Type[Any], record_id: Any) -> Any:
        with translate_errors(f"find {model.__name__}"):
            record = self.session.get(model, record_id)
        if record is None:
            raise not_found(model.__name__, record_id)
        return record

    def find_one(self, model: Type[Any], **filters: Any) -> Optional[Any]:
        with translate_errors(f"find {model.__name__}"):
            return self.session.execute(
                select(model).filter_by(**filters)
            ).scalars().first()

    def find_many(self, model: Type[Any], order_by: Optional[List[Any]] = None, **filters: Any) -> List[Any]:
        stmt = select(model).filter_by(**filters)
        if order_by:
            stmt = stmt.order_by(*order_by)
        with translate_errors(f"list {model.__name__}"):
            return list(self.session.execute(stmt).scalars().all())

    def list_all(self, model: Type[Any], order_by: Optional[List[Any]] = None) -> List[Any]:
        return self.find_many(model, order_by=order_by)

    def insert(self, model: Type[Any], record: Dict[str, Any]) -> Any:
        with translate_errors(f"insert {model.__name__}"):
            obj = model(**record)
            self.session.add(obj)
            self.session.flush()
        return obj

    def update(
        self,
        model: Type[Any],
        record_id: Any,
        patch: Dict[str, Any],
        expected_version: Optional[int] = None,
    ) -> Any:
        """
        Apply ``patch`` to one row and return the refreshed record.

        For versioned models the version is bumped on every write. When
        ``expected_version`` is given the write only lands if the stored
        version still matches; otherwise a CONFLICT error is raised and
        nothing is written.
        """
        pk = _primary_key(model)
        values = dict(patch)
        stmt = sa_update(model).where(pk == record_id)
        if hasattr(model, "version"):
            if expected_version is not None:
                stmt = stmt.where(model.version == expected_version)
            values["version"] = model.version + 1

        with translate_errors(f"update {model.__name__}"):
            result = self.session.execute(
                stmt.values(**values).execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                current = self.session.get(model, record_id, populate_existing=True)
                if current is not None and expected_version is not None:
                    raise conflict_error(
                        "VERSION_CONFLICT",
                        f"{model.__name__} {record_id} was modified concurrently",
                        expected_version=expected_version,
                        actual_version=current.version,
                    )
                raise not_found(model.__name__, record_id)
            return self.session.get(model, record_id, populate_existing=True)


class Store:
    """
    Owns an engine and hands out units of work.

    Construct one per process (or per test) and call ``dispose()`` when
    finished.
    """

    def __init__(self, engine: Engine, session_factory: Optional[sessionmaker] = None):
        self.engine = engine
        self._session_factory = session_factory or create_session_factory(engine)

    @classmethod
    def from_url(cls, url: Optional[str] = None, timeout_seconds: Optional[int] = None) -> "Store":
        return cls(create_db_engine(url, timeout_seconds))

    def create_schema(self) -> None:
        init_db(self.engine)

    def check_connection(self) -> bool:
        return check_db_connection(self.engine)

    def dispose(self) -> None:
        self.engine.dispose()

    @contextmanager
    def unit_of_work(self) -> Iterator[UnitOfWork]:
        """
        Transaction scope. Commits on clean exit, rolls back on any error.
        """
        session = self._session_factory()
        try:
            with translate_errors("transaction"):
                yield UnitOfWork(session)
                session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # Single-statement conveniences

    def find_by_id(self, model: Type[Any], record_id: Any) -> Any:
        with self.unit_of_work() as uow:
            return uow.find_by_id(model, record_id)

    def find_one(self, model: Type[Any], **filters: Any) -> Optional[Any]:
        with self.unit_of_work() as uow:
            return uow.find_one(model, **filters)

    def insert(self, model: Type[Any], record: Dict[str, Any]) -> Any:
        with self.unit_of_work() as uow:
            return uow.insert(model, record)

    def update(
        self,
        model: Type[Any],
        record_id: Any,
        patch: Dict[str, Any],
        expected_version: Optional[int] = None,
    ) -> Any:
        with self.unit_of_work() as uow:
            return uow.update(model, record_id, patch, expected_version=expected_version)

    def list_all(self, model: Type[Any], order_by: Optional[List[Any]] = None) -> List[Any]:
        with self.unit_of_work() as uow:
            return uow.list_all(model, order_by=order_by)
