"""Database-agnostic type definitions for SQLAlchemy models.

This module provides type definitions that work with both SQLite and PostgreSQL.
"""
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import JSON, DateTime, TypeDecorator
from sqlalchemy.dialects.postgresql import UUID as PG_UUID

# Use JSON instead of JSONB for cross-database compatibility
# JSONB is PostgreSQL-specific, JSON works with both SQLite and PostgreSQL
JSONType = JSON

# UUID type that works with both databases
UUIDType = PG_UUID


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware DateTime that always hands back UTC datetimes.

    SQLite drops tzinfo on the way out, PostgreSQL keeps it; this normalizes
    both so elapsed-time arithmetic (return windows) never mixes naive and
    aware values.
    """
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: Optional[datetime], dialect) -> Optional[datetime]:
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value

    def process_result_value(self, value: Optional[datetime], dialect) -> Optional[datetime]:
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value


def utc_now() -> datetime:
    """Current time in UTC."""
    return datetime.now(timezone.utc)
