"""Database connection and session management."""

from typing import Optional
from sqlalchemy import create_engine, Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from ..config import get_config

# Global engine instance
_engine: Optional[Engine] = None

# Base class for all database models
Base = declarative_base()


def create_database_engine(database_url: str, echo: bool = False,
                           connect_args: Optional[dict] = None) -> Engine:
    """Create a new engine; SQLite engines share one connection across threads."""
    if connect_args is None:
        connect_args = {"check_same_thread": False} if database_url.startswith("sqlite") else {}

    if database_url.startswith("sqlite"):
        return create_engine(
            database_url,
            connect_args=connect_args,
            poolclass=StaticPool,
            echo=echo
        )
    return create_engine(database_url, echo=echo, connect_args=connect_args)


def get_database_engine(database_url: Optional[str] = None, echo: Optional[bool] = None) -> Engine:
    """Get or create the shared engine, defaulting to the configured database."""
    global _engine

    if _engine is None:
        config = get_config()
        _engine = create_database_engine(
            database_url or config.database_url,
            echo=config.database_echo if echo is None else echo,
        )

    return _engine


def reset_database_engine():
    """Reset the global database engine (mainly for testing)."""
    global _engine
    if _engine:
        _engine.dispose()
    _engine = None


def create_session_factory(engine: Optional[Engine] = None) -> sessionmaker:
    """Session factory bound to ``engine`` or the shared engine."""
    return sessionmaker(autocommit=False, autoflush=False, bind=engine or get_database_engine())


def create_tables(engine: Optional[Engine] = None):
    """Create all database tables."""
    # Importing the models registers their tables on Base.metadata.
    from . import models  # noqa: F401
    Base.metadata.create_all(bind=engine or get_database_engine())


def drop_tables(engine: Optional[Engine] = None):
    """Drop all database tables."""
    from . import models  # noqa: F401
    Base.metadata.drop_all(bind=engine or get_database_engine())
