"""
Tests for ZIP market aggregates
"""
from datetime import date

import pandas as pd
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from src.propsignal.db.base import Base
from src.propsignal.db.models import MarketAggregate, Property
from src.propsignal.etl.market_aggregates import compute_zip_aggregates, refresh_market_aggregates, sales_frame

AS_OF = date(2024, 7, 1)


@pytest.fixture(scope="function")
def test_db():
    """Create an in-memory SQLite database for testing."""
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    Session = sessionmaker(bind=engine)
    session = Session()

    yield session

    session.close()
    Base.metadata.drop_all(engine)


def sales():
    return pd.DataFrame(
        [
            ("10036", 1000.0, date(2024, 2, 1)),
            ("10036", 1200.0, date(2024, 4, 1)),
            ("10036", 1400.0, date(2024, 6, 1)),
            ("10036", 1000.0, date(2023, 3, 1)),
            ("11201", 800.0, date(2024, 5, 15)),
            ("10001", 900.0, date(2021, 1, 1)),
        ],
        columns=["zip_code", "price_per_sqft", "last_sale_date"],
    )


class TestComputeZipAggregates:
    """Tests for compute_zip_aggregates"""

    def test_median_count_and_trend(self):
        aggregates = {a["geo_id"]: a for a in compute_zip_aggregates(sales(), AS_OF)}

        assert set(aggregates) == {"10036", "11201"}
        assert aggregates["10036"]["median_price_per_sqft"] == 1200.0
        assert aggregates["10036"]["transaction_count"] == 3
        assert aggregates["10036"]["trend_12m"] == 20.0
        assert aggregates["10036"]["geo_type"] == "zip"

    def test_no_prior_year_means_no_trend(self):
        aggregates = {a["geo_id"]: a for a in compute_zip_aggregates(sales(), AS_OF)}

        assert aggregates["11201"]["trend_12m"] is None

    def test_empty_frame(self):
        empty = pd.DataFrame(columns=["zip_code", "price_per_sqft", "last_sale_date"])

        assert compute_zip_aggregates(empty, AS_OF) == []


class TestRefreshMarketAggregates:
    """Tests for refresh_market_aggregates"""

    def test_refresh_upserts_from_properties(self, test_db):
        test_db.add_all([
            Property(bbl="1010330001", zip_code="10036", price_per_sqft=1000.0, last_sale_date=date(2024, 2, 1)),
            Property(bbl="1010330002", zip_code="10036", price_per_sqft=1400.0, last_sale_date=date(2024, 6, 1)),
            Property(bbl="1010330003", zip_code="10036", price_per_sqft=None, last_sale_date=date(2024, 6, 1)),
        ])
        test_db.commit()

        assert len(sales_frame(test_db)) == 2
        assert refresh_market_aggregates(test_db, AS_OF) == 1
        assert refresh_market_aggregates(test_db, AS_OF) == 1
        test_db.commit()

        aggregates = test_db.query(MarketAggregate).all()
        assert len(aggregates) == 1
        assert aggregates[0].median_price_per_sqft == 1200.0
        assert aggregates[0].transaction_count == 2
