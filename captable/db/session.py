"""SQLAlchemy engine and session factory for the audit store."""
from __future__ import annotations

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from captable.core.config import get_settings
from captable.obs import instrument_sqlalchemy_engine

settings = get_settings()
engine = create_engine(settings.audit_database_url, pool_pre_ping=True)
if settings.enable_tracing:
    instrument_sqlalchemy_engine(engine)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


__all__ = ["SessionLocal", "engine"]
