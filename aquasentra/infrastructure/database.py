from typing import Iterator, Optional

from fastapi import Request
from sqlalchemy import create_engine, URL
from sqlalchemy.engine import Engine
from sqlalchemy.engine.url import make_url
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from sqlalchemy.pool import StaticPool
import logging

logger = logging.getLogger(__name__)

Base = declarative_base()


def create_database_url(database_url_string: str) -> URL:
    """
    Create SQLAlchemy URL object from the configured connection string.
    The password is masked before the URL is logged.
    """
    if not database_url_string:
        raise ValueError("DATABASE_URL is empty or not set")

    try:
        url_obj = make_url(database_url_string)
    except Exception as e:
        logger.error(f"Failed to parse DATABASE_URL: {e}")
        raise ValueError(f"Invalid DATABASE_URL format: {e}")

    logger.info(f"Connecting to database: {url_obj.render_as_string(hide_password=True)}")
    return url_obj


def get_engine_kwargs(url: URL) -> dict:
    """Get engine arguments based on the backend (in-memory SQLite needs a shared connection)."""
    if url.get_backend_name() == "sqlite":
        return {
            "connect_args": {"check_same_thread": False},
            "poolclass": StaticPool,
        }
    host = url.host or ""
    if "localhost" in host or "127.0.0.1" in host or host == "db":
        return {"pool_pre_ping": True}
    # Cloud database - require SSL
    return {"pool_pre_ping": True, "connect_args": {"sslmode": "require"}}


class Database:
    """
    Owns the SQLAlchemy engine and session factory.

    Opened once at application startup and disposed at shutdown; request
    handlers obtain sessions through ``get_db``.
    """

    def __init__(self, database_url: str, echo: bool = False):
        self.url = create_database_url(database_url)
        self._echo = echo
        self.engine: Optional[Engine] = None
        self._session_factory: Optional[sessionmaker] = None

    def connect(self) -> "Database":
        self.engine = create_engine(self.url, echo=self._echo, **get_engine_kwargs(self.url))
        self._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)
        logger.info(f"Database engine initialized ({self.url.get_backend_name()})")
        return self

    def create_all(self) -> None:
        # Import models so every table is registered on Base.metadata
        from . import models  # noqa: F401

        Base.metadata.create_all(bind=self.engine)

    def drop_all(self) -> None:
        Base.metadata.drop_all(bind=self.engine)

    def session(self) -> Session:
        if self._session_factory is None:
            raise RuntimeError("Database is not connected")
        return self._session_factory()

    def dispose(self) -> None:
        if self.engine is not None:
            self.engine.dispose()
            logger.info("Database engine disposed")
        self.engine = None
        self._session_factory = None


def get_db(request: Request) -> Iterator[Session]:
    """Get a request-scoped database session."""
    db = request.app.state.database.session()
    try:
        yield db
    finally:
        db.close()
