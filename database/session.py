"""Database session management"""
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from core.config import settings


def build_engine(database_url: str, echo: bool = False):
    """Create an engine with settings appropriate for the backend"""
    if database_url.startswith("sqlite"):
        connect_args = {"check_same_thread": False}
        if ":memory:" in database_url:
            # A single shared connection keeps the in-memory database alive
            return create_engine(database_url, connect_args=connect_args, poolclass=StaticPool, echo=echo)
        return create_engine(database_url, connect_args=connect_args, echo=echo)

    return create_engine(
        database_url,
        pool_size=settings.database_pool_size,
        max_overflow=20,
        echo=echo,
    )


def build_session_factory(engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


engine = build_engine(settings.database_url, echo=settings.database_echo)

# Create session factory
SessionLocal = build_session_factory(engine)


def create_tables(bind=None) -> None:
    """Create every table the engine owns"""
    # Model modules register their tables on Base.metadata when imported
    import d1_conversations.models  # noqa: F401
    import d2_offers.models  # noqa: F401
    import d3_payments.models  # noqa: F401
    from database.base import Base

    Base.metadata.create_all(bind=bind or engine)
