"""
Scrapers Package

Open data fetchers: Socrata pagination, retry policy and the dataset registry.
"""

from .retry import RetryPolicy
from .datasets import DatasetSpec, get_datasets, HOUSING_311_COMPLAINT_TYPES
from .socrata_fetcher import SocrataFetcher

__all__ = [
    "RetryPolicy",
    "DatasetSpec",
    "get_datasets",
    "HOUSING_311_COMPLAINT_TYPES",
    "SocrataFetcher",
]
