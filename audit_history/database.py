from __future__ import annotations

from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from audit_history.config import get_settings

Base = declarative_base()

settings = get_settings()
_DEFAULT_DATABASE_URL = settings.database_url


def _create_engine_with_fallback(url: str) -> Engine:
    engine_kwargs: dict[str, object] = {"future": True}
    if url.startswith("sqlite"):
        engine_kwargs["connect_args"] = {"check_same_thread": False}
        engine_kwargs["poolclass"] = StaticPool
    else:
        engine_kwargs["pool_pre_ping"] = True

    try:
        return create_engine(url, **engine_kwargs)
    except ModuleNotFoundError as exc:
        if "psycopg2" in str(exc) and "psycopg2" in url:
            fallback_url = url.replace("psycopg2", "psycopg")
            try:
                __import__("psycopg")
            except ModuleNotFoundError:
                raise
            return create_engine(fallback_url, future=True, pool_pre_ping=True)
        raise


_engine = _create_engine_with_fallback(_DEFAULT_DATABASE_URL)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=_engine, future=True)


def get_engine() -> Engine:
    return _engine


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
