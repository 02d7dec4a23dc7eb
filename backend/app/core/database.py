from typing import Iterator

from fastapi import Request
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool
from app.core.config import Settings

# Base class for all database models
Base = declarative_base()


def build_engine(settings: Settings) -> Engine:
    """
    Create the database engine for the configured DATABASE_URL.

    SQLite URLs get thread-safe connect args so FastAPI's threadpool can share
    the connection; an in-memory SQLite database is pinned to a single
    connection with StaticPool, otherwise each checkout would see an empty
    database. PostgreSQL connections require SSL in production.
    """
    url = settings.DATABASE_URL
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(url, **kwargs)

    connect_args = {}
    if settings.is_production and url.startswith("postgresql"):
        connect_args["sslmode"] = "require"
    return create_engine(url, connect_args=connect_args, pool_pre_ping=True)


def build_session_factory(engine: Engine) -> sessionmaker:
    # autocommit=False: every mutation is committed explicitly by the service
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db(request: Request) -> Iterator[Session]:
    """
    Dependency for getting database session.

    The session factory is created by create_app and stored on app.state, so
    tests can hand the app a different engine without touching module globals.
    The session is always closed after the request completes.
    """
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()
