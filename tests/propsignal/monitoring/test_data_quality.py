"""
Tests for resolution coverage and signal quality helpers
"""
from datetime import datetime

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from src.propsignal.db.base import Base
from src.propsignal.db.repository import (
    EntityResolutionRepository,
    PropertyRepository,
    SignalSummaryRepository,
)
from src.propsignal.monitoring.data_quality import (
    compute_resolution_coverage,
    compute_signal_quality,
    resolution_coverage_report,
)


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


def summary(property_id, bbl, completeness, confidence):
    return {
        "property_id": property_id,
        "bbl": bbl,
        "building_health_score": 100,
        "health_risk_level": "low",
        "transit_score": 0,
        "amenity_score": 0,
        "opportunity_score": 0,
        "opportunity_vs_market_points": 0.0,
        "opportunity_trend_points": 0.0,
        "opportunity_recency_points": 0.0,
        "data_completeness": completeness,
        "signal_confidence": confidence,
        "computed_at": datetime(2024, 7, 1, 12, 0),
    }


class TestResolutionCoverage:
    """Tests for compute_resolution_coverage"""

    def test_pivot(self):
        stats = [
            {"source_system": "hpd_violations", "match_type": "exact", "count": 6, "avg_confidence": 1.0},
            {"source_system": "hpd_violations", "match_type": "address", "count": 2, "avg_confidence": 0.7},
            {"source_system": "hpd_violations", "match_type": "unmatched", "count": 2, "avg_confidence": 0.0},
            {"source_system": "condo_registry", "match_type": "registry", "count": 3, "avg_confidence": 0.9},
        ]

        coverage = compute_resolution_coverage(stats)

        hpd = coverage.loc["hpd_violations"]
        assert hpd["exact"] == 6
        assert hpd["registry"] == 0
        assert hpd["total"] == 10
        assert hpd["matched"] == 8
        assert hpd["match_rate"] == 0.8

        condo = coverage.loc["condo_registry"]
        assert condo["unmatched"] == 0
        assert condo["match_rate"] == 1.0

    def test_empty(self):
        coverage = compute_resolution_coverage([])

        assert coverage.empty
        assert list(coverage.columns) == [
            "exact", "registry", "address", "unmatched", "total", "matched", "match_rate"
        ]

    def test_report_from_session(self, test_db):
        prop = PropertyRepository().create(test_db, bbl="1001230001")
        EntityResolutionRepository().bulk_insert(test_db, [
            {"source_system": "dob_permits", "source_record_id": "1", "matched_property_id": prop.id,
             "match_type": "exact", "match_confidence": 1.0},
            {"source_system": "dob_permits", "source_record_id": "2", "matched_property_id": None,
             "match_type": "unmatched", "match_confidence": 0.0},
        ])
        test_db.commit()

        coverage = resolution_coverage_report(test_db)

        assert coverage.loc["dob_permits", "matched"] == 1
        assert coverage.loc["dob_permits", "match_rate"] == 0.5


class TestSignalQuality:
    """Tests for compute_signal_quality"""

    def test_no_summaries(self, test_db):
        assert compute_signal_quality(test_db) == {"summaries": 0, "confidence": {}, "mean_completeness": None}

    def test_distribution(self, test_db):
        props = PropertyRepository()
        first = props.create(test_db, bbl="1001230001")
        second = props.create(test_db, bbl="1001230002")
        third = props.create(test_db, bbl="1001230003")
        SignalSummaryRepository().bulk_upsert(test_db, [
            summary(first.id, first.bbl, 1.0, "high"),
            summary(second.id, second.bbl, 0.9, "high"),
            summary(third.id, third.bbl, 0.3, "low"),
        ])
        test_db.commit()

        quality = compute_signal_quality(test_db)

        assert quality["summaries"] == 3
        assert quality["confidence"] == {"high": 2, "low": 1}
        assert quality["mean_completeness"] == pytest.approx(0.7333, abs=1e-4)
