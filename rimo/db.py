from __future__ import annotations
import logging
from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker, DeclarativeBase
from .config import DATABASE_URL

logger = logging.getLogger(__name__)

class Base(DeclarativeBase):
    pass

def get_engine(url: str | None = None):
    url = url or DATABASE_URL
    if not url:
        raise RuntimeError("DATABASE_URL is not set")
    if url.startswith("sqlite"):
        # local runs only; Postgres is the deployed store
        return create_engine(url, connect_args={"check_same_thread": False}, future=True)
    return create_engine(
        url,
        pool_pre_ping=True,
        pool_size=5,
        max_overflow=10,
        future=True,
    )

ENGINE = None
SessionLocal = None

def init_db(engine=None):
    global ENGINE, SessionLocal
    ENGINE = engine if engine is not None else get_engine()
    SessionLocal = sessionmaker(bind=ENGINE, autoflush=False, autocommit=False, future=True)
    return ENGINE

def get_session():
    """Request-scoped session. Nothing is acknowledged before its commit succeeds,
    so a failed request leaves no partial write behind."""
    if SessionLocal is None:
        init_db()
    db = SessionLocal()
    try:
        yield db
    except SQLAlchemyError:
        logger.warning("rolling back request session")
        db.rollback()
        raise
    finally:
        db.close()
