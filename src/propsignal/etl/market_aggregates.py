"""
Market Aggregates

ZIP-level median price per square foot and its trailing 12-month trend,
computed with pandas from the last recorded sale of each property.
"""
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List

import pandas as pd
from sqlalchemy import select
from sqlalchemy.orm import Session

from src.propsignal.db.models import Property
from src.propsignal.db.repository import MarketAggregateRepository
from src.propsignal.utils.logger import get_logger

logger = get_logger(__name__)

WINDOW_DAYS = 365
GEO_TYPE_ZIP = "zip"


def sales_frame(session: Session) -> pd.DataFrame:
    """Properties with a usable last sale: zip_code, price_per_sqft, last_sale_date."""
    query = select(Property.zip_code, Property.price_per_sqft, Property.last_sale_date).where(
        Property.zip_code.isnot(None),
        Property.price_per_sqft.isnot(None),
        Property.price_per_sqft > 0,
        Property.last_sale_date.isnot(None),
    )
    rows = [tuple(row) for row in session.execute(query).all()]
    return pd.DataFrame(rows, columns=["zip_code", "price_per_sqft", "last_sale_date"])


def compute_zip_aggregates(sales: pd.DataFrame, as_of: date) -> List[Dict[str, Any]]:
    """
    Median price/sqft per ZIP for the trailing year, with trend against the
    year before.

    Args:
        sales: Frame with zip_code, price_per_sqft, last_sale_date
        as_of: End of the trailing window

    Returns:
        One aggregate dict per ZIP with at least one sale in the trailing year
    """
    if sales.empty:
        return []

    frame = sales.copy()
    frame["last_sale_date"] = pd.to_datetime(frame["last_sale_date"])
    end = pd.Timestamp(as_of)
    recent_start = end - pd.Timedelta(days=WINDOW_DAYS)
    prior_start = recent_start - pd.Timedelta(days=WINDOW_DAYS)

    recent = frame[(frame["last_sale_date"] > recent_start) & (frame["last_sale_date"] <= end)]
    prior = frame[(frame["last_sale_date"] > prior_start) & (frame["last_sale_date"] <= recent_start)]

    if recent.empty:
        return []

    recent_stats = recent.groupby("zip_code")["price_per_sqft"].agg(["median", "count"])
    prior_median = prior.groupby("zip_code")["price_per_sqft"].median()

    recent_stats["prior_median"] = prior_median.reindex(recent_stats.index)
    recent_stats["trend_12m"] = (recent_stats["median"] / recent_stats["prior_median"] - 1) * 100

    computed_at = datetime.now(timezone.utc)
    aggregates = []
    for zip_code, row in recent_stats.sort_index().iterrows():
        trend = row["trend_12m"]
        aggregates.append({
            "geo_type": GEO_TYPE_ZIP,
            "geo_id": str(zip_code),
            "median_price_per_sqft": round(float(row["median"]), 2),
            "transaction_count": int(row["count"]),
            "trend_12m": None if pd.isna(trend) else round(float(trend), 2),
            "computed_at": computed_at,
        })
    return aggregates


def refresh_market_aggregates(session: Session, as_of: date) -> int:
    """
    Recompute and upsert ZIP aggregates.

    Returns:
        Number of ZIP aggregates written
    """
    aggregates = compute_zip_aggregates(sales_frame(session), as_of)
    repo = MarketAggregateRepository()
    for aggregate in aggregates:
        repo.upsert(session, aggregate)
    session.flush()

    logger.info(
        "market_aggregates_refreshed",
        zips=len(aggregates),
        as_of=as_of.isoformat(),
        window_start=(as_of - timedelta(days=WINDOW_DAYS)).isoformat(),
    )
    return len(aggregates)
