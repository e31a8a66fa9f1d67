from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base

# Base class for declarative models
Base = declarative_base()


def create_db_engine(database_url: str) -> Engine:
    """
    Create the pooled engine for the service.

    Called once at startup; the engine is then passed to the stores explicitly.
    """
    return create_engine(
        database_url,
        pool_size=10,
        max_overflow=20,        # total: 30 max connections
        pool_recycle=3600,      # recycle connections after 1 hour
        pool_pre_ping=True      # test connection health before use
    )
