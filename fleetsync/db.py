# fleetsync/db.py
"""Database engine and session utilities.

The engine is built on first use so that a missing POSTGRES_URL surfaces as a
ConfigurationError on the request that needs it rather than at import time.
"""
from functools import lru_cache
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base

from .config import get_settings

Base = declarative_base()
SessionLocal = sessionmaker(autocommit=False, autoflush=False)


@lru_cache(maxsize=1)
def get_engine():
    settings = get_settings()
    url = settings.require_database_url()
    if url.startswith("sqlite"):
        return create_engine(url)
    # tuned pool settings for cloud DB
    return create_engine(
        url,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_pre_ping=True
    )


def get_db():
    db = SessionLocal(bind=get_engine())
    try:
        yield db
    finally:
        db.close()
