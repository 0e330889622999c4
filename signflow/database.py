"""
Database connection and session.

Schema source of truth: signflow.models. On startup, Base.metadata.create_all(bind=engine)
creates all tables from the current models. The database is the persistence
collaborator only: the workflow coordinator keeps the authoritative in-memory
snapshot and writes through to these tables after every successful command.
"""
from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from signflow.config import get_settings


def make_engine(database_url: str, timeout: float = 10.0):
    """Build an engine; SQLite gets thread-safe connect args and in-memory URLs share one connection."""
    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False, "timeout": timeout}}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, **kwargs)
    return create_engine(database_url, pool_pre_ping=True, pool_timeout=timeout)


settings = get_settings()
engine = make_engine(settings.database_url, timeout=settings.persistence_timeout_seconds)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()
