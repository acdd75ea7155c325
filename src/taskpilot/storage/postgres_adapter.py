import logging
from contextlib import contextmanager
from typing import Generator, Optional

from pydantic import SecretStr
from pydantic_settings import BaseSettings
from sqlalchemy import create_engine, text
from sqlalchemy.engine import URL
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from .base import StorageAdapter

logger = logging.getLogger(__name__)


class PostgresConfig(BaseSettings):
    """Connection settings for the rule store and execution ledger."""
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: SecretStr = "postgres"
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "taskpilot"
    POSTGRES_POOL_SIZE: int = 5
    POSTGRES_MAX_OVERFLOW: int = 10
    # Full URL override, e.g. sqlite:// for local runs and tests
    DATABASE_URL: Optional[str] = None

    model_config = {"env_file": ".env", "extra": "ignore"}

    @property
    def connection_string(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        url = URL.create(
            "postgresql",
            username=self.POSTGRES_USER,
            password=self.POSTGRES_PASSWORD.get_secret_value(),
            host=self.POSTGRES_HOST,
            port=self.POSTGRES_PORT,
            database=self.POSTGRES_DB,
        )
        return url.render_as_string(hide_password=False)

    @property
    def is_sqlite(self) -> bool:
        return self.connection_string.startswith("sqlite")


class PostgresAdapter(StorageAdapter):
    """
    SQLAlchemy engine and session factory for the automation tables.

    Postgres gets a pre-pinged connection pool. SQLite gets one shared
    connection so an in-memory database lives as long as the adapter.
    """

    def __init__(self, config: PostgresConfig):
        self.config = config
        self._engine = None
        self._session_factory = None

    @property
    def engine(self):
        return self._engine

    def connect(self) -> None:
        if self._engine:
            return

        if self.config.is_sqlite:
            logger.info("Opening SQLite automation store")
            self._engine = create_engine(
                self.config.connection_string,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        else:
            logger.info(f"Connecting to Postgres at {self.config.POSTGRES_HOST}:{self.config.POSTGRES_PORT}/{self.config.POSTGRES_DB}")
            self._engine = create_engine(
                self.config.connection_string,
                pool_size=self.config.POSTGRES_POOL_SIZE,
                max_overflow=self.config.POSTGRES_MAX_OVERFLOW,
                pool_pre_ping=True,
            )
        self._session_factory = sessionmaker(bind=self._engine, expire_on_commit=False)

    def close(self) -> None:
        if self._engine:
            self._engine.dispose()
            self._engine = None
            self._session_factory = None
            logger.info("Database connection pool closed.")

    def health_check(self) -> bool:
        if not self._engine:
            return False
        try:
            with self._engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except Exception:
            logger.exception("database unhealthy")
            return False

    @contextmanager
    def get_session(self) -> Generator[Session, None, None]:
        """
        Provide a transactional scope around a series of operations.
        """
        if not self._session_factory:
            raise ConnectionError("Database is not connected. Call connect() first.")
            
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def create_all(self) -> None:
        """Create tables directly from the models (local dev and tests)."""
        from taskpilot.storage.models import Base
        # Register automation tables on the metadata
        import taskpilot.automations.models  # noqa: F401

        if not self._engine:
            raise ConnectionError("Database is not connected. Call connect() first.")
        Base.metadata.create_all(self._engine)
