"""Database connection and session management."""

from contextlib import contextmanager
from typing import Generator

from fastapi import Request
from sqlalchemy import create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.exc import DBAPIError, IntegrityError, SQLAlchemyError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session, sessionmaker

from petprint.errors import Conflict, DatastoreTimeout, UpstreamUnavailable
from petprint.logging_config import get_logger
from petprint.settings import settings
from petprint.storage.models import Base

logger = get_logger(__name__)

_TIMEOUT_MARKERS = (
    "statement timeout",
    "lock timeout",
    "database is locked",
    "timed out",
)


def _connect_args(database_url: str, timeout: float) -> dict:
    """Driver arguments that bound every datastore call by ``timeout`` seconds."""
    backend = make_url(database_url).get_backend_name()
    if backend == "sqlite":
        return {"timeout": timeout, "check_same_thread": False}
    if backend == "postgresql":
        millis = int(timeout * 1000)
        return {
            "connect_timeout": max(1, int(timeout)),
            "options": f"-c statement_timeout={millis} -c lock_timeout={millis}",
        }
    return {}


def translate_error(exc: SQLAlchemyError) -> Exception:
    """Map a SQLAlchemy failure onto the domain error taxonomy."""
    if isinstance(exc, IntegrityError):
        return Conflict(str(exc.orig) if exc.orig is not None else str(exc))
    if isinstance(exc, PoolTimeoutError):
        return DatastoreTimeout("Timed out waiting for a database connection")
    if isinstance(exc, DBAPIError):
        message = str(exc.orig).lower() if exc.orig is not None else str(exc).lower()
        if any(marker in message for marker in _TIMEOUT_MARKERS):
            return DatastoreTimeout("Database call exceeded its time limit")
    return UpstreamUnavailable("Database unavailable")


class Database:
    """Database connection manager.

    One instance is created per process (or per test) and handed to the
    services that need it.
    """

    def __init__(
        self,
        database_url: str | None = None,
        timeout_seconds: float | None = None,
        **engine_kwargs,
    ):
        """Initialize database connection.

        Args:
            database_url: Database URL (defaults to settings)
            timeout_seconds: Upper bound for a single datastore call
            **engine_kwargs: Extra arguments for ``create_engine`` (e.g. ``poolclass``)
        """
        self.database_url = database_url or settings.database_url
        self.timeout_seconds = timeout_seconds or settings.database_timeout_seconds
        engine_kwargs.setdefault("echo", False)
        engine_kwargs.setdefault("pool_pre_ping", True)
        self.engine = create_engine(
            self.database_url,
            connect_args=_connect_args(self.database_url, self.timeout_seconds),
            **engine_kwargs,
        )
        self.SessionLocal = sessionmaker(
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
            bind=self.engine,
        )
        logger.info(
            "database_initialized",
            backend=self.engine.url.get_backend_name(),
            timeout_seconds=self.timeout_seconds,
        )

    def create_tables(self) -> None:
        """Create all tables in the database."""
        import petprint.ledger.models  # noqa: F401
        import petprint.payments.models  # noqa: F401
        import petprint.referral.models  # noqa: F401

        Base.metadata.create_all(bind=self.engine)
        logger.info("tables_created")

    def drop_tables(self) -> None:
        """Drop all tables from the database."""
        Base.metadata.drop_all(bind=self.engine)
        logger.warning("tables_dropped")

    def dispose(self) -> None:
        self.engine.dispose()

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        """Provide a transactional scope for database operations.

        SQLAlchemy errors leave this scope as ``Conflict``,
        ``DatastoreTimeout`` or ``UpstreamUnavailable``; domain errors pass
        through untouched.

        Yields:
            Database session
        """
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            translated = translate_error(exc)
            logger.error(
                "database_error",
                error=str(exc),
                error_type=type(exc).__name__,
                mapped_to=type(translated).__name__,
            )
            raise translated from exc
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()


def get_database(request: Request) -> Database:
    """FastAPI dependency returning the application's database handle."""
    return request.app.state.database
