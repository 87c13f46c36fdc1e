"""
Database Session Management

Engine construction, the session factory and transactional session scopes.
Every pipeline stage writes through a scope produced by
session_scope_factory(); get_db_session is the one bound to the configured
database.
"""
import time
from contextlib import contextmanager
from functools import wraps
from typing import Callable, ContextManager, Generator, Optional

from sqlalchemy import create_engine, event, exc, pool
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from config.settings import settings
from src.propsignal.utils.logger import get_logger

logger = get_logger(__name__)


def build_engine(database_url: Optional[str] = None) -> Engine:
    """
    Create an engine for the configured database.

    Pool sizing options only apply to server databases; SQLite URLs get the
    dialect's default pool.
    """
    database_url = database_url or settings.database_url

    if database_url.startswith("sqlite"):
        return create_engine(database_url, echo=settings.database_echo)

    return create_engine(
        database_url,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
        pool_timeout=settings.database_pool_timeout,
        pool_recycle=settings.database_pool_recycle,
        pool_pre_ping=True,
        echo=settings.database_echo,
    )


engine = build_engine()


@event.listens_for(pool.Pool, "invalidate")
def receive_invalidate(dbapi_conn, connection_record, exception):
    """Log connections dropped from the pool."""
    logger.warning(
        "database_connection_invalidated",
        exception=str(exception) if exception else None
    )


SessionLocal = sessionmaker(
    bind=engine,
    autocommit=False,
    autoflush=False,
    expire_on_commit=False
)


def session_scope_factory(factory: sessionmaker) -> Callable[[], ContextManager[Session]]:
    """
    Build a transactional scope around a sessionmaker.

    The scope commits on success, rolls back and re-raises on any error,
    and always closes the session.

    Usage:
        scope = session_scope_factory(sessionmaker(bind=engine))
        with scope() as session:
            session.add(record)
    """
    @contextmanager
    def scope() -> Generator[Session, None, None]:
        session = factory()
        try:
            yield session
            session.commit()
        except exc.SQLAlchemyError as e:
            session.rollback()
            logger.error(
                "database_session_rollback",
                error=str(e),
                error_type=type(e).__name__
            )
            raise
        except Exception as e:
            session.rollback()
            logger.error(
                "database_session_error",
                error=str(e),
                error_type=type(e).__name__
            )
            raise
        finally:
            session.close()

    return scope


get_db_session = session_scope_factory(SessionLocal)


def with_retry(
    max_retries: int = 3,
    retry_delay: float = 1.0,
    sleep: Callable[[float], None] = time.sleep
):
    """
    Retry a database operation on connection-level failures.

    The wrapped callable must open its own session scope, so every attempt
    runs in a fresh transaction. Delays grow linearly with the attempt.

    Args:
        max_retries: Total attempts
        retry_delay: Base delay in seconds
        sleep: Sleep function (injectable for tests)
    """
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            for attempt in range(1, max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except (exc.OperationalError, exc.DisconnectionError) as e:
                    if attempt == max_retries:
                        logger.error(
                            "database_operation_failed_after_retries",
                            operation=func.__name__,
                            max_retries=max_retries,
                            error=str(e)
                        )
                        raise
                    logger.warning(
                        "database_operation_retry",
                        operation=func.__name__,
                        attempt=attempt,
                        max_retries=max_retries,
                        error=str(e)
                    )
                    sleep(retry_delay * attempt)

        return wrapper
    return decorator
