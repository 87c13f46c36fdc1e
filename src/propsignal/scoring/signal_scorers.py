"""
Signal Scorers

Deterministic score functions over per-property facts. Every score is an
integer in [0, 100]; inputs that are missing score as zero rather than
unknown.
"""
from typing import Optional

# (upper bound in meters, score), checked in order
TRANSIT_STEPS = (
    (200, 100),
    (400, 90),
    (600, 75),
    (800, 60),
    (1000, 45),
)
TRANSIT_DECAY_METERS_PER_POINT = 50

HEALTH_WEIGHTS = {
    "open_hpd_violations": 5,
    "open_dob_complaints": 3,
    "complaints_311_12m": 2,
}

AMENITY_WEIGHTS = {
    "parks": 10,
    "schools": 8,
    "hospitals": 15,
}

COMPLETENESS_CHECKS = 5


def _clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


def building_health_score(
    open_hpd_violations: int,
    open_dob_complaints: int,
    complaints_311_12m: int
) -> int:
    """
    Building condition score from open building records.

    100 minus 5 per open HPD violation, 3 per open DOB complaint and 2 per
    housing 311 complaint in the trailing year, floored at 0.

    Example:
        >>> building_health_score(2, 1, 0)
        87
    """
    penalty = (
        HEALTH_WEIGHTS["open_hpd_violations"] * (open_hpd_violations or 0)
        + HEALTH_WEIGHTS["open_dob_complaints"] * (open_dob_complaints or 0)
        + HEALTH_WEIGHTS["complaints_311_12m"] * (complaints_311_12m or 0)
    )
    return int(_clamp(100 - penalty))


def health_risk_level(score: int) -> str:
    if score >= 80:
        return "low"
    if score >= 60:
        return "medium"
    if score >= 40:
        return "high"
    return "critical"


def transit_score(distance_meters: Optional[float]) -> int:
    """
    Step function of the nearest subway distance.

    Args:
        distance_meters: Distance to the nearest station, None when no
            station lies inside the search window

    Returns:
        100 under 200m down to 45 under 1km, then one point lost per 50m
        beyond 1km; 0 when the distance is unknown
    """
    if distance_meters is None:
        return 0

    for upper_bound, score in TRANSIT_STEPS:
        if distance_meters < upper_bound:
            return score

    last_bound, last_score = TRANSIT_STEPS[-1]
    decayed = last_score - (distance_meters - last_bound) / TRANSIT_DECAY_METERS_PER_POINT
    return int(round(_clamp(decayed)))


def amenity_score(parks: int, schools: int, hospitals: int) -> int:
    """Weighted amenity count, capped at 100. Hospitals weigh the most."""
    total = (
        AMENITY_WEIGHTS["parks"] * (parks or 0)
        + AMENITY_WEIGHTS["schools"] * (schools or 0)
        + AMENITY_WEIGHTS["hospitals"] * (hospitals or 0)
    )
    return int(_clamp(total))


def data_completeness(
    has_bbl: bool,
    has_transit: bool,
    has_flood: bool,
    has_building_records: bool,
    has_amenities: bool
) -> float:
    """
    Fraction of signal inputs available, rounded to two places.

    A BBL without any linked building record earns half a point for the
    building-records check.
    """
    points = 0.0
    if has_bbl:
        points += 1
    if has_transit:
        points += 1
    if has_flood:
        points += 1
    if has_bbl and has_building_records:
        points += 1
    elif has_bbl:
        points += 0.5
    if has_amenities:
        points += 1
    return round(points / COMPLETENESS_CHECKS, 2)


def signal_confidence(completeness: float) -> str:
    if completeness >= 0.8:
        return "high"
    if completeness >= 0.5:
        return "medium"
    return "low"
