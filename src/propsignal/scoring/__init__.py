"""
Scoring Package

Per-property signal scores and the opportunity breakdown.
"""
from src.propsignal.scoring.signal_scorers import (
    building_health_score,
    health_risk_level,
    transit_score,
    amenity_score,
    data_completeness,
    signal_confidence,
)
from src.propsignal.scoring.opportunity import OpportunityBreakdown, OpportunityScorer

__all__ = [
    "building_health_score",
    "health_risk_level",
    "transit_score",
    "amenity_score",
    "data_completeness",
    "signal_confidence",
    "OpportunityBreakdown",
    "OpportunityScorer",
]
