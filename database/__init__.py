"""Database package for the offer and payment engine"""

from database.base import Base
from database.session import SessionLocal, create_tables, engine

__all__ = ["Base", "create_tables", "SessionLocal", "engine"]
