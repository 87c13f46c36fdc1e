"""
Flood Zone Classification

FEMA zone reference data and the per-property classifier. ZIP-level
reference rows take precedence; otherwise the zone is estimated from
latitude bands that follow the city's low-lying southern shoreline.
"""
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from src.propsignal.models.records import FloodZoneRecord
from src.propsignal.transformers.bbl import BOROUGH_NAMES
from src.propsignal.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class FloodClassification:
    """Flood zone code and risk flags for one location."""
    zone: Optional[str]
    risk_level: Optional[str]
    is_high_risk: bool = False
    is_moderate_risk: bool = False


# zone -> (risk level, high risk, moderate risk)
ZONE_RISK = {
    "VE": ("severe", True, False),
    "AE": ("high", True, False),
    "A": ("high", True, False),
    "X-SHADED": ("moderate", False, True),
    "X": ("minimal", False, False),
}

# Upper latitude bound -> zone, checked in order
LATITUDE_BANDS = (
    (40.65, "VE"),
    (40.68, "AE"),
    (40.72, "X-SHADED"),
)
DEFAULT_ZONE = "X"

NO_FLOOD_DATA = FloodClassification(zone=None, risk_level=None)


def classification_for_zone(zone: str) -> FloodClassification:
    risk_level, high, moderate = ZONE_RISK.get(zone, ZONE_RISK[DEFAULT_ZONE])
    return FloodClassification(zone=zone, risk_level=risk_level, is_high_risk=high, is_moderate_risk=moderate)


def zone_for_latitude(latitude: float) -> str:
    for upper_bound, zone in LATITUDE_BANDS:
        if latitude < upper_bound:
            return zone
    return DEFAULT_ZONE


def seed_flood_zone_records() -> List[FloodZoneRecord]:
    """Reference rows: every borough crossed with every zone."""
    records = []
    for code, borough in BOROUGH_NAMES.items():
        for zone, (risk_level, high, moderate) in ZONE_RISK.items():
            records.append(FloodZoneRecord(
                source_id=f"flood-{code}-{zone}",
                borough=borough,
                zone_code=zone,
                risk_level=risk_level,
                is_high_risk=high,
                is_moderate_risk=moderate,
            ))
    return records


class FloodZoneClassifier:
    """Classifies property locations into flood zones."""

    def __init__(self, zip_zones: Optional[Dict[str, FloodClassification]] = None):
        """
        Args:
            zip_zones: ZIP code -> classification overrides
        """
        self.zip_zones = zip_zones or {}

    @classmethod
    def from_rows(cls, rows: Iterable) -> "FloodZoneClassifier":
        """Build from flood_zones staging rows; only rows with a ZIP act as overrides."""
        zip_zones = {}
        for row in rows:
            if row.zip_code:
                zip_zones[row.zip_code] = FloodClassification(
                    zone=row.zone_code,
                    risk_level=row.risk_level,
                    is_high_risk=row.is_high_risk,
                    is_moderate_risk=row.is_moderate_risk,
                )
        logger.info("flood_zone_classifier_built", zip_overrides=len(zip_zones))
        return cls(zip_zones)

    def classify(
        self,
        latitude: Optional[float],
        longitude: Optional[float],
        zip_code: Optional[str] = None
    ) -> FloodClassification:
        """
        Flood classification for a location.

        Returns:
            ZIP override, else latitude-band estimate, else NO_FLOOD_DATA
            when the location has no coordinates
        """
        if zip_code and zip_code in self.zip_zones:
            return self.zip_zones[zip_code]
        if latitude is None or longitude is None:
            return NO_FLOOD_DATA
        return classification_for_zone(zone_for_latitude(latitude))
