"""
Database engine and session factory.

Engines are built from a URL so the service and the test-suite can each
own one. Every engine carries a timeout: pool checkout for all backends,
plus a busy timeout on SQLite and a statement timeout on PostgreSQL.
"""
from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.orm import sessionmaker
from core.config import settings
from typing import Optional
import logging

logger = logging.getLogger(__name__)

Base = declarative_base()


def create_db_engine(url: Optional[str] = None, timeout_seconds: Optional[int] = None) -> Engine:
    """
    Create a SQLAlchemy engine with connection timeouts applied.

    Args:
        url: Database URL (defaults to settings.DATABASE_URL)
        timeout_seconds: Upper bound for waits on the database

    Returns:
        Configured Engine
    """
    url = url or settings.DATABASE_URL
    timeout = timeout_seconds if timeout_seconds is not None else settings.DB_TIMEOUT_SECONDS

    if url.startswith("sqlite"):
        engine = create_engine(
            url,
            connect_args={"timeout": timeout, "check_same_thread": False},
            pool_timeout=timeout,
            echo=settings.DEBUG,
        )
    else:
        engine = create_engine(
            url,
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
            pool_timeout=timeout,
            pool_recycle=settings.DB_POOL_RECYCLE,
            pool_pre_ping=True,
            connect_args={
                "connect_timeout": timeout,
                "options": f"-c statement_timeout={timeout * 1000}",
            },
            echo=settings.DEBUG,
        )

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_conn, connection_record):
        """Set connection-level settings."""
        if engine.dialect.name == "sqlite":
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()
        logger.debug("New database connection established")

    @event.listens_for(engine, "checkin")
    def receive_checkin(dbapi_conn, connection_record):
        logger.debug("Connection returned to pool")

    return engine


def create_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=engine,
        expire_on_commit=False,  # Records are handed out detached
    )


def init_db(engine: Engine) -> None:
    """Create all tables known to the models module."""
    import models  # noqa: F401  (registers tables on Base.metadata)

    Base.metadata.create_all(bind=engine)
    logger.info("Database schema ensured")


def check_db_connection(engine: Engine) -> bool:
    """
    Check if database connection is healthy.

    Returns:
        True if connection is healthy, False otherwise
    """
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error(f"Database connection check failed: {e}")
        return False
