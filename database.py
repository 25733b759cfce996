# database.py
"""
SQLAlchemy database connection and session management.

This module provides:
- Engine creation from DATABASE_URL (Azure SQL / MS SQL Server by default)
- Session factory for dependency injection
- Connection utilities

Importing this module installs the tenant isolation session events
(see services.tenant_context), so every Session it hands out is scoped.

Usage:
     from database import get_session

     # In FastAPI routes:
     @router.get("/items")
     def get_items(db: Session = Depends(get_session)):
          with tenant_scope(tenant_id):
               return db.query(PaymentLink).all()
"""
from contextlib import contextmanager
from typing import Any, Generator, Optional

import structlog
from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from config import get_settings
import services.tenant_context  # noqa: F401  (installs session events)

logger = structlog.get_logger(__name__)

_engine: Optional[Engine] = None


def create_db_engine(database_url: str, **kwargs: Any) -> Engine:
     """
     Create an engine for database_url.

     SQLite (used by tests and local development) gets real SAVEPOINT
     support, which the webhook insert-if-absent path relies on.
     """
     if database_url.startswith("sqlite"):
          kwargs.setdefault("connect_args", {"check_same_thread": False})
          engine = create_engine(database_url, **kwargs)

          @event.listens_for(engine, "connect")
          def _disable_pysqlite_transactions(dbapi_connection, connection_record):
               dbapi_connection.isolation_level = None

          @event.listens_for(engine, "begin")
          def _emit_begin(conn):
               conn.exec_driver_sql("BEGIN")

          return engine

     kwargs.setdefault("pool_size", 5)
     kwargs.setdefault("max_overflow", 10)
     kwargs.setdefault("pool_timeout", 30)
     kwargs.setdefault("pool_recycle", 1800)  # Recycle connections after 30 minutes
     kwargs.setdefault("pool_pre_ping", True)
     return create_engine(database_url, **kwargs)


def get_engine() -> Engine:
     """Process-wide engine, created on first use."""
     global _engine
     if _engine is None:
          settings = get_settings()
          _engine = create_db_engine(settings.database_url, echo=settings.sql_echo)
          SessionLocal.configure(bind=_engine)
     return _engine


# Session factory (bound lazily by get_engine)
SessionLocal = sessionmaker(
     autocommit=False,
     autoflush=False,
     expire_on_commit=False,
)


def get_session() -> Generator[Session, None, None]:
     """
     FastAPI dependency that provides a database session.

     Routes commit explicitly inside their tenant scope; anything left
     uncommitted when the request fails is rolled back here.

     Yields:
          Session: SQLAlchemy database session
     """
     get_engine()
     session = SessionLocal()
     try:
          yield session
     except Exception:
          session.rollback()
          raise
     finally:
          session.close()


@contextmanager
def get_session_context() -> Generator[Session, None, None]:
     """
     Context manager for database sessions (for use outside FastAPI routes).

     Usage:
          with get_session_context() as db:
               PaymentLinkService.expire_overdue_links(db)

     Yields:
          Session: SQLAlchemy database session
     """
     get_engine()
     session = SessionLocal()
     try:
          yield session
          session.commit()
     except Exception:
          session.rollback()
          raise
     finally:
          session.close()


def init_db() -> None:
     """
     Initialize database tables.

     Creates all tables defined in the models if they don't exist.
     For production, use Alembic migrations instead.
     """
     from models import Base
     Base.metadata.create_all(bind=get_engine())


def check_connection() -> bool:
     """
     Test database connectivity.

     Returns:
          bool: True if connection successful, False otherwise
     """
     try:
          with get_engine().connect() as conn:
               conn.execute(text("SELECT 1"))
          return True
     except SQLAlchemyError as e:
          logger.error("database_connection_failed", error=str(e))
          return False
