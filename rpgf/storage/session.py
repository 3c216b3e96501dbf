"""
rpgf/storage/session.py: Engine, session factory and the transactional boundary.

Every multi-step mutation in the core runs inside Database.transaction():
the session commits on normal exit and rolls back on every exception path,
so a delete-then-insert pair is never observable half-applied.
"""

import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from rpgf.config import DEFAULT_CONFIG, RPGFConfig
from rpgf.errors import PersistenceError, RPGFError
from rpgf.storage.schema import Base

logger = logging.getLogger(__name__)


def _build_engine(config: RPGFConfig) -> Engine:
    url = config.database_url
    kwargs: dict = {"echo": config.database_echo, "future": True}

    if url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if ":memory:" in url or url in ("sqlite://", "sqlite+pysqlite://"):
            # One shared connection, otherwise every checkout sees an empty database.
            kwargs["poolclass"] = StaticPool
    else:
        kwargs["pool_pre_ping"] = True

    engine = create_engine(url, **kwargs)

    if url.startswith("sqlite"):
        @event.listens_for(engine, "connect")
        def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return engine


class Database:
    """
    Owns the SQLAlchemy engine and hands out transactional sessions.

    Args:
        config: RPGFConfig; only database_url and database_echo are read.
        engine: Optional pre-built engine (tests inject one).
    """

    def __init__(self, config: RPGFConfig = DEFAULT_CONFIG, engine: Engine | None = None):
        self.config = config
        self.engine = engine or _build_engine(config)
        self._sessionmaker = sessionmaker(
            bind=self.engine, autoflush=False, expire_on_commit=False
        )

    def create_all(self) -> None:
        """Create every table that does not exist yet."""
        Base.metadata.create_all(self.engine)
        logger.info("Schema ensured on %s", self.engine.url.render_as_string(hide_password=True))

    def drop_all(self) -> None:
        Base.metadata.drop_all(self.engine)

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """
        Yield a session bound to one database transaction.

        Domain errors (RPGFError) roll back and propagate unchanged. Any other
        failure rolls back, is logged with its traceback and surfaces as a
        PersistenceError, so callers never see driver internals.
        """
        session = self._sessionmaker()
        try:
            with session.begin():
                yield session
        except RPGFError:
            raise
        except Exception as exc:
            logger.exception("Transaction rolled back after unexpected failure: %s", exc)
            raise PersistenceError() from exc
        finally:
            session.close()
