"""
Signal Value Objects

Plain in-memory structures passed between the resolution, proximity and
scoring stages. Nothing here touches the database.
"""
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional, Tuple


@dataclass(frozen=True)
class PropertyFacts:
    """Snapshot of the canonical property columns the signal computer reads."""
    property_id: str
    bbl: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    zip_code: Optional[str] = None
    price_per_sqft: Optional[float] = None
    last_sale_date: Optional[date] = None

    @classmethod
    def from_property(cls, prop) -> "PropertyFacts":
        return cls(
            property_id=prop.id,
            bbl=prop.bbl,
            latitude=prop.latitude,
            longitude=prop.longitude,
            zip_code=prop.zip_code,
            price_per_sqft=prop.price_per_sqft,
            last_sale_date=prop.last_sale_date,
        )


@dataclass
class ResolvedFacts:
    """
    Building-record counts linked to one property through the resolution map.

    The *_12m counts cover the trailing signal window ending at as_of.
    """
    open_hpd_violations: int = 0
    total_hpd_violations: int = 0
    open_dob_complaints: int = 0
    total_dob_complaints: int = 0
    permits_12m: int = 0
    complaints_311_12m: int = 0
    sources: List[str] = field(default_factory=list)

    def has_records(self) -> bool:
        return any((
            self.total_hpd_violations,
            self.total_dob_complaints,
            self.permits_12m,
            self.complaints_311_12m,
        ))


@dataclass(frozen=True)
class MarketContext:
    """ZIP-level market statistics used by the opportunity score."""
    median_price_per_sqft: Optional[float] = None
    trend_12m: Optional[float] = None


@dataclass(frozen=True)
class EntityFailure:
    """One property whose signals could not be computed."""
    entity_id: str
    error: str
    error_type: str


@dataclass
class SignalBatchResult:
    """
    Outcome of a batch fold: computed summaries and per-entity failures.
    """
    successes: List[Dict[str, Any]] = field(default_factory=list)
    failures: List[EntityFailure] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.successes) + len(self.failures)

    def as_tuple(self) -> Tuple[List[Dict[str, Any]], List[EntityFailure]]:
        return self.successes, self.failures
