"""
Database connection for the Location Engine

A single Database handle is built at startup (FastAPI lifespan or CLI main)
and handed to everything that needs a session. There is no module-level
engine; tests build their own handle against SQLite.
"""

from contextlib import contextmanager
from typing import Optional

from fastapi import Request
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base, Session

import config

Base = declarative_base()


class Database:
    """Owns the SQLAlchemy engine and session factory"""

    def __init__(self, url: Optional[str] = None, **engine_kwargs):
        self.url = url or config.get_database_url()

        if self.url.startswith("sqlite"):
            engine_kwargs.setdefault("connect_args", {"check_same_thread": False})
        else:
            engine_kwargs.setdefault("pool_size", config.DB_POOL_SIZE)           # Base connections to keep open
            engine_kwargs.setdefault("max_overflow", config.DB_MAX_OVERFLOW)     # Additional connections when busy
            engine_kwargs.setdefault("pool_timeout", config.DB_POOL_TIMEOUT)     # Seconds to wait for a connection
            engine_kwargs.setdefault("pool_recycle", config.DB_POOL_RECYCLE)     # Recycle connections (prevents stale)
            engine_kwargs.setdefault("pool_pre_ping", True)                      # Handles dropped connections

        self.engine = create_engine(self.url, **engine_kwargs)
        self.SessionLocal = sessionmaker(autocommit=False, autoflush=True, bind=self.engine)

    @property
    def dialect(self) -> str:
        return self.engine.dialect.name

    def create_all(self):
        """Create tables if missing. Safe to run on every startup."""
        import models  # noqa: F401  (registers tables on Base.metadata)
        Base.metadata.create_all(bind=self.engine)

    def session(self) -> Session:
        return self.SessionLocal()

    @contextmanager
    def session_scope(self):
        """Session that commits on success and rolls back on error"""
        db = self.SessionLocal()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def dispose(self):
        self.engine.dispose()


def get_db(request: Request):
    """FastAPI dependency for a request-scoped SQLAlchemy session"""
    db = request.app.state.database.session()
    try:
        yield db
    finally:
        db.close()
