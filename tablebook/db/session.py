from __future__ import annotations

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from tablebook.core.config import get_settings


def build_engine(database_url: str, **kwargs):
    if database_url.startswith("sqlite"):
        kwargs.setdefault("connect_args", {"check_same_thread": False})
    else:
        kwargs.setdefault("pool_size", 8)
        kwargs.setdefault("max_overflow", 10)
    return create_engine(database_url, pool_pre_ping=True, **kwargs)


engine = build_engine(get_settings().database_url)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
