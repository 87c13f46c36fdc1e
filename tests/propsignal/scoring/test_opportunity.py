"""
Tests for opportunity scoring
"""
from datetime import date

import pytest

from src.propsignal.scoring.opportunity import OpportunityScorer, confidence_level

AS_OF = date(2024, 7, 1)


class TestOpportunityComponents:
    """Tests for the 40/30/30 components"""

    def test_vs_market(self):
        scorer = OpportunityScorer()

        assert scorer.vs_market_points(1000, 1000) == 20.0
        assert scorer.vs_market_points(500, 1000) == 40.0
        assert scorer.vs_market_points(250, 1000) == 40.0
        assert scorer.vs_market_points(1500, 1000) == 0.0
        assert scorer.vs_market_points(900, 1000) == 24.0

    def test_vs_market_missing_inputs(self):
        scorer = OpportunityScorer()

        assert scorer.vs_market_points(None, 1000) == 0.0
        assert scorer.vs_market_points(800, None) == 0.0
        assert scorer.vs_market_points(800, 0) == 0.0

    def test_trend(self):
        scorer = OpportunityScorer()

        assert scorer.trend_points(10) == 15.0
        assert scorer.trend_points(20) == 30.0
        assert scorer.trend_points(45) == 30.0
        assert scorer.trend_points(-5) == 0.0
        assert scorer.trend_points(None) == 0.0

    @pytest.mark.parametrize("days_ago,points", [
        (0, 30.0), (179, 30.0), (180, 20.0), (364, 20.0), (365, 10.0), (729, 10.0), (730, 0.0),
    ])
    def test_recency_steps(self, days_ago, points):
        last_sale = date.fromordinal(AS_OF.toordinal() - days_ago)

        assert OpportunityScorer().recency_points(last_sale, AS_OF) == points

    def test_recency_without_sale(self):
        assert OpportunityScorer().recency_points(None, AS_OF) == 0.0


class TestOpportunityScore:
    """Tests for the combined score"""

    def test_breakdown_sums_to_total(self):
        breakdown = OpportunityScorer().score(
            price_per_sqft=900,
            median_price_per_sqft=1000,
            trend_12m=10,
            last_sale_date=date(2024, 3, 1),
            as_of=AS_OF,
        )

        assert breakdown.vs_market_points == 24.0
        assert breakdown.trend_points == 15.0
        assert breakdown.recency_points == 30.0
        assert breakdown.total == 69
        assert breakdown.confidence_level == "Medium"

    def test_no_market_data(self):
        breakdown = OpportunityScorer().score(None, None, None, None, AS_OF)

        assert breakdown.total == 0
        assert breakdown.to_dict() == {
            "vs_market_points": 0.0,
            "trend_points": 0.0,
            "recency_points": 0.0,
            "total": 0,
            "confidence_level": "Low",
        }

    @pytest.mark.parametrize("score,level", [
        (100, "High"), (71, "High"), (70, "Medium"), (51, "Medium"), (50, "Low"), (0, "Low"),
    ])
    def test_confidence_level(self, score, level):
        assert confidence_level(score) == level
