from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.core.config import get_settings


def get_engine(database_url: str = None):
    """Get database engine."""
    database_url = database_url or get_settings().database_url

    if database_url.startswith("sqlite"):
        engine = create_engine(
            database_url,
            connect_args={"check_same_thread": False}
        )
    else:
        engine = create_engine(database_url, pool_pre_ping=True)

    return engine


def get_session_local(engine=None):
    """Get database session factory."""
    engine = engine or get_engine()
    return sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)
