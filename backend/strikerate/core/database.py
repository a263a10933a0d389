"""
Database configuration and session management.
"""
from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import QueuePool

from strikerate.core.config import settings

_engine_kwargs = {"pool_pre_ping": True}
if str(getattr(settings, "DATABASE_URL", "")).startswith(("postgresql://", "postgres://")):
    # Reduce worst-case startup/readiness delays when the DB host is unreachable.
    # (psycopg2 honors connect_timeout in seconds)
    _engine_kwargs.update(
        connect_args={"connect_timeout": 5},
        poolclass=QueuePool,
        pool_size=10,
        max_overflow=20,
        pool_timeout=30,
    )

engine = create_engine(settings.DATABASE_URL, **_engine_kwargs)

# Session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for models
Base = declarative_base()


def get_db():
    """Dependency for getting database sessions."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
