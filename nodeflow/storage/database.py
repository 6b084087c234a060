"""SQLAlchemy engine and session factory.

`engine` and `SessionLocal` are module globals rebound by
`configure_database`; callers look them up through this module at use time
so a reconfiguration (app startup, CLI, tests) takes effect everywhere.
"""

import os
from typing import Optional
from sqlalchemy import create_engine, Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

Base = declarative_base()

DEFAULT_DATABASE_URL = "sqlite:///./nodeflow.db"


def build_engine(database_url: Optional[str] = None,
                 echo: bool = False,
                 connect_args: Optional[dict] = None) -> Engine:
    database_url = database_url or os.getenv("NODEFLOW_DATABASE_URL", DEFAULT_DATABASE_URL)

    if not database_url.startswith("sqlite"):
        return create_engine(database_url, echo=echo, connect_args=connect_args or {}, pool_pre_ping=True)

    connect_args = {"check_same_thread": False} if connect_args is None else connect_args
    if ":memory:" in database_url:
        # One shared connection, otherwise every session sees an empty database
        return create_engine(database_url, echo=echo, connect_args=connect_args, poolclass=StaticPool)
    return create_engine(database_url, echo=echo, connect_args=connect_args)


engine: Engine = build_engine()
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def configure_database(database_url: Optional[str] = None,
                       echo: bool = False,
                       connect_args: Optional[dict] = None) -> Engine:
    """Dispose the current engine and bind a new one (and a new session factory)."""
    global engine, SessionLocal

    engine.dispose()
    engine = build_engine(database_url, echo=echo, connect_args=connect_args)
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    return engine


def create_tables():
    from . import models  # noqa: F401  registers tables on Base.metadata
    Base.metadata.create_all(bind=engine)


def drop_tables():
    from . import models  # noqa: F401
    Base.metadata.drop_all(bind=engine)
