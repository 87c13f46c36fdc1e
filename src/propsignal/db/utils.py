"""
Database Utilities

Dialect-aware inserts, batching and date parsing for staging loads.
"""
from typing import Any, Iterable, Iterator, List, Optional
from datetime import datetime, date

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from src.propsignal.utils.logger import get_logger

logger = get_logger(__name__)


def dialect_insert(session: Session, model):
    """
    Return an INSERT construct supporting ON CONFLICT for the session's dialect.

    PostgreSQL in production, SQLite in tests. Both expose
    on_conflict_do_nothing / on_conflict_do_update with index_elements.
    """
    dialect_name = session.get_bind().dialect.name
    if dialect_name == "postgresql":
        return postgresql.insert(model)
    if dialect_name == "sqlite":
        return sqlite.insert(model)
    raise NotImplementedError(f"Upserts are not supported for dialect {dialect_name}")


def chunked(items: Iterable[Any], size: int) -> Iterator[List[Any]]:
    """Yield lists of at most size items."""
    batch: List[Any] = []
    for item in items:
        batch.append(item)
        if len(batch) >= size:
            yield batch
            batch = []
    if batch:
        yield batch


def parse_date_string(date_str: Optional[str]) -> Optional[date]:
    """
    Parse date string in the formats NYC open data emits.

    Args:
        date_str: Date string (ISO floating timestamp, YYYY-MM-DD, MM/DD/YYYY)

    Returns:
        date object or None
    """
    if not date_str:
        return None

    value = str(date_str).strip()

    # Socrata floating timestamps: 2024-03-01T00:00:00.000
    if "T" in value:
        value = value.split("T", 1)[0]

    formats = [
        '%Y-%m-%d',
        '%m/%d/%Y',
        '%Y/%m/%d',
        '%Y%m%d',
    ]

    for fmt in formats:
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            continue

    logger.debug("date_parse_failed", date_str=date_str)
    return None
