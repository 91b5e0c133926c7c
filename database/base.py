"""Base class for SQLAlchemy models"""
import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, String, TypeDecorator
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def generate_uuid() -> str:
    """Generate a new UUID"""
    return str(uuid.uuid4())


def utcnow() -> datetime:
    """Timezone-aware current time used for every lifecycle timestamp"""
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware timestamp.
    SQLite drops tzinfo on the way out, so values are normalised to UTC both ways.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class DatabaseAgnosticEnum(TypeDecorator):
    """
    Enum stored as its string value.
    Avoids native ENUM types so status sets can grow without a type migration.
    """

    impl = String
    cache_ok = True

    def __init__(self, enum_class, *args, **kwargs):
        self.enum_class = enum_class
        super().__init__(*args, **kwargs)

    def load_dialect_impl(self, dialect):
        max_len = max(len(item.value) for item in self.enum_class)
        return dialect.type_descriptor(String(max_len))

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if isinstance(value, self.enum_class):
            return value.value
        return self.enum_class(value).value

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        return self.enum_class(value)
