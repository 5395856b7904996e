# linkwatch/db/session.py

from __future__ import annotations

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from fastapi import Request


def _validate_db_url(url: str) -> str:
    url = (url or "").strip()
    if not url:
        raise RuntimeError("DATABASE_URL is empty. Set it in .env or your environment.")

    # accept sqlite / postgres
    if not (url.startswith("sqlite") or url.startswith("postgresql")):
        raise RuntimeError(f"Invalid DATABASE_URL scheme: {url!r}")

    return url


def create_db_engine(database_url: str) -> Engine:
    db_url = _validate_db_url(database_url)

    connect_args = {}
    if db_url.startswith("sqlite"):
        # worker threads share the file; wait on the write lock instead of failing fast
        connect_args = {"check_same_thread": False, "timeout": 30}

    return create_engine(db_url, connect_args=connect_args, pool_pre_ping=True)


def create_session_factory(database_url: str | None = None, *, engine: Engine | None = None) -> sessionmaker:
    if engine is None:
        engine = create_db_engine(database_url or "")
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


def get_db(request: Request):
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()
