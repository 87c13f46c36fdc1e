"""
Opportunity Scoring

0-100 opportunity score with a fixed 40/30/30 split that is stored
alongside the total:

- vs_market (0-40): price per sqft relative to the ZIP median
- trend (0-30): trailing 12-month ZIP price trend
- recency (0-30): how recent the last recorded sale is
"""
from dataclasses import dataclass, asdict
from datetime import date
from typing import Dict, Optional

VS_MARKET_POINTS = 40
TREND_POINTS = 30
RECENCY_POINTS = 30

# Trend (percent) that earns the full trend component
FULL_TREND_PERCENT = 20.0

# (max age in days, points), checked in order
RECENCY_STEPS = (
    (180, 30),
    (365, 20),
    (730, 10),
)


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def confidence_level(score: int) -> str:
    if score > 70:
        return "High"
    if score > 50:
        return "Medium"
    return "Low"


@dataclass
class OpportunityBreakdown:
    """Opportunity total and its three components."""
    vs_market_points: float
    trend_points: float
    recency_points: float

    @property
    def total(self) -> int:
        return int(round(_clamp(
            self.vs_market_points + self.trend_points + self.recency_points, 0, 100
        )))

    @property
    def confidence_level(self) -> str:
        return confidence_level(self.total)

    def to_dict(self) -> Dict[str, float]:
        result = asdict(self)
        result["total"] = self.total
        result["confidence_level"] = self.confidence_level
        return result


class OpportunityScorer:
    """
    Scores a property against its ZIP market.

    Missing inputs score their component as zero; the breakdown is always
    complete.
    """

    def vs_market_points(
        self,
        price_per_sqft: Optional[float],
        median_price_per_sqft: Optional[float]
    ) -> float:
        """
        Up to 40 points for pricing below the median.

        At the median the ratio term is 50 (20 points); 50% below the median
        or cheaper earns the full 40.
        """
        if not price_per_sqft or not median_price_per_sqft or median_price_per_sqft <= 0:
            return 0.0
        discount = (median_price_per_sqft - price_per_sqft) / median_price_per_sqft * 100
        return round(_clamp(discount + 50, 0, 100) * VS_MARKET_POINTS / 100, 2)

    def trend_points(self, trend_12m: Optional[float]) -> float:
        if trend_12m is None:
            return 0.0
        return round(_clamp(trend_12m / FULL_TREND_PERCENT * TREND_POINTS, 0, TREND_POINTS), 2)

    def recency_points(self, last_sale_date: Optional[date], as_of: date) -> float:
        if last_sale_date is None:
            return 0.0
        age_days = (as_of - last_sale_date).days
        for max_age, points in RECENCY_STEPS:
            if age_days < max_age:
                return float(points)
        return 0.0

    def score(
        self,
        price_per_sqft: Optional[float],
        median_price_per_sqft: Optional[float],
        trend_12m: Optional[float],
        last_sale_date: Optional[date],
        as_of: date
    ) -> OpportunityBreakdown:
        return OpportunityBreakdown(
            vs_market_points=self.vs_market_points(price_per_sqft, median_price_per_sqft),
            trend_points=self.trend_points(trend_12m),
            recency_points=self.recency_points(last_sale_date, as_of),
        )
