"""Database type compatibility layer for PostgreSQL and SQLite."""

from sqlalchemy import JSON
from sqlalchemy.dialects.postgresql import JSONB as PostgreSQLJSONB

# JSONB on PostgreSQL, plain JSON everywhere else (SQLite in tests)
JSONB = JSON().with_variant(PostgreSQLJSONB(), "postgresql")
