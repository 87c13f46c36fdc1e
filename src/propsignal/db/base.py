"""
SQLAlchemy Base and Mixins

Declarative base plus the column mixins shared by canonical and staging
tables.
"""
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import JSON, DateTime, Integer, String, Float
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql import func


# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Declarative base for every propsignal table."""

    id: Any


class TimestampMixin:
    """created_at / updated_at maintained by the database."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
        comment="Timestamp when record was created"
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
        comment="Timestamp when record was last updated"
    )


class DataSourceMixin:
    """When a row was pulled from the open data portal."""

    fetched_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
        comment="Timestamp when the row was fetched from the source API"
    )


class RawRecordMixin(DataSourceMixin):
    """
    Columns shared by every raw staging table.

    Rows are keyed by the source-native identifier and never updated after
    insert; a later fetch of the same record is skipped on conflict.
    """

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    source_id: Mapped[str] = mapped_column(
        String(100),
        unique=True,
        nullable=False,
        comment="Natural key from the source dataset"
    )
    bbl: Mapped[Optional[str]] = mapped_column(
        String(10),
        nullable=True,
        index=True,
        comment="Normalized 10-digit BBL when the source provides one"
    )
    latitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    longitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    raw_data: Mapped[Optional[dict]] = mapped_column(
        JSONType,
        nullable=True,
        comment="Upstream payload as received"
    )


def import_all_models():
    """Register every model on Base.metadata (Alembic and create_all need this)."""
    from src.propsignal.db import models  # noqa: F401
