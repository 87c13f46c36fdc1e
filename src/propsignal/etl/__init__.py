"""
ETL Package

Staging loads from open data and derived market aggregates.
"""
from src.propsignal.etl.loaders import StagingLoader
from src.propsignal.etl.market_aggregates import compute_zip_aggregates, refresh_market_aggregates

__all__ = [
    "StagingLoader",
    "compute_zip_aggregates",
    "refresh_market_aggregates",
]
