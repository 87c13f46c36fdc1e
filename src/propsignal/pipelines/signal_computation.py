"""
Signal Computation Pipeline

Computes one PropertySignalSummary per canonical property from:

- building records linked through the entity resolution map
- subway and amenity proximity (grid indexes over staged points)
- flood zone classification
- ZIP market aggregates (opportunity score)

The batch is a fold over properties producing (successes, failures); a
property that raises is logged with its id and counted, never fatal.
"""
import math
from collections import Counter, defaultdict
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from functools import reduce
from typing import Any, Dict, Iterable, Optional

from sqlalchemy import and_, select
from sqlalchemy.orm import Session

from config.settings import settings
from src.propsignal.db.models import (
    Amenity,
    Complaint311,
    DobComplaint,
    DobPermit,
    EntityResolutionRecord,
    FloodZone,
    HpdViolation,
    Property,
    SubwayStation,
)
from src.propsignal.db.repository import (
    MarketAggregateRepository,
    PropertyRepository,
    SignalSummaryRepository,
    StagingRepository,
)
from src.propsignal.enrichers.flood_zones import FloodZoneClassifier
from src.propsignal.enrichers.proximity_index import GeoGridIndex, ProximityPoint
from src.propsignal.errors import PerEntityComputationError
from src.propsignal.etl.market_aggregates import refresh_market_aggregates
from src.propsignal.models.records import is_open_dob_complaint, is_open_hpd_violation
from src.propsignal.models.signals import (
    EntityFailure,
    MarketContext,
    PropertyFacts,
    ResolvedFacts,
    SignalBatchResult,
)
from src.propsignal.scoring.opportunity import OpportunityScorer, confidence_level
from src.propsignal.scoring.signal_scorers import (
    amenity_score,
    building_health_score,
    data_completeness,
    health_risk_level,
    signal_confidence,
    transit_score,
)
from src.propsignal.utils.logger import get_logger

logger = get_logger(__name__)

AMENITY_BANDS_METERS = (400, 800)

# amenity category -> summary column
AMENITY_COLUMNS = {
    "park": "parks_nearby",
    "school": "schools_nearby",
    "hospital": "hospitals_nearby",
    "library": "libraries_nearby",
    "grocery": "groceries_nearby",
}


def _in_window(value: Optional[date], start: date, end: date) -> bool:
    return value is not None and start <= value <= end


def _linked_rows(session: Session, source_system: str, *columns):
    """Staging columns of records matched to a property, with the property id first."""
    model = columns[0].class_
    query = (
        select(EntityResolutionRecord.matched_property_id, *columns)
        .join(model, model.source_id == EntityResolutionRecord.source_record_id)
        .where(
            and_(
                EntityResolutionRecord.source_system == source_system,
                EntityResolutionRecord.matched_property_id.isnot(None),
            )
        )
    )
    return session.execute(query).all()


def collect_resolved_facts(
    session: Session,
    as_of: date,
    lookback_days: Optional[int] = None
) -> Dict[str, ResolvedFacts]:
    """
    Count linked building records per property.

    Args:
        session: Database session
        as_of: End of the trailing window
        lookback_days: Trailing window for permits and 311 complaints

    Returns:
        ResolvedFacts keyed by property id (properties without any linked
        record are absent)
    """
    lookback_days = lookback_days or settings.signal_lookback_days
    window_start = as_of - timedelta(days=lookback_days)
    facts: Dict[str, ResolvedFacts] = defaultdict(ResolvedFacts)

    for property_id, status in _linked_rows(session, "hpd_violations", HpdViolation.violation_status):
        entry = facts[property_id]
        entry.total_hpd_violations += 1
        if is_open_hpd_violation(status):
            entry.open_hpd_violations += 1

    for property_id, status in _linked_rows(session, "dob_complaints", DobComplaint.status):
        entry = facts[property_id]
        entry.total_dob_complaints += 1
        if is_open_dob_complaint(status):
            entry.open_dob_complaints += 1

    for property_id, issued in _linked_rows(session, "dob_permits", DobPermit.issued_date):
        if _in_window(issued, window_start, as_of):
            facts[property_id].permits_12m += 1

    for property_id, created in _linked_rows(session, "complaints_311", Complaint311.created_date):
        if _in_window(created, window_start, as_of):
            facts[property_id].complaints_311_12m += 1

    for entry in facts.values():
        entry.sources = [
            name for name, count in (
                ("hpd_violations", entry.total_hpd_violations),
                ("dob_complaints", entry.total_dob_complaints),
                ("dob_permits", entry.permits_12m),
                ("complaints_311", entry.complaints_311_12m),
            ) if count
        ]

    logger.info("resolved_facts_collected", properties=len(facts), window_start=window_start.isoformat())
    return dict(facts)


@dataclass
class ProximityIndexes:
    """Per-run lookup structures; rebuilt from staging on every run."""
    transit: GeoGridIndex
    amenities: GeoGridIndex
    flood: FloodZoneClassifier

    @classmethod
    def from_session(cls, session: Session) -> "ProximityIndexes":
        stations = (
            ProximityPoint(
                key=row.source_id,
                latitude=row.latitude,
                longitude=row.longitude,
                name=row.station_name,
                category="subway",
                lines=tuple(row.routes or ()),
            )
            for row in StagingRepository(SubwayStation).iter_rows(session)
        )
        amenities = (
            ProximityPoint(
                key=row.source_id,
                latitude=row.latitude,
                longitude=row.longitude,
                name=row.name,
                category=row.category,
            )
            for row in StagingRepository(Amenity).iter_rows(session)
        )
        return cls(
            transit=GeoGridIndex.build(stations, settings.transit_grid_window),
            amenities=GeoGridIndex.build(amenities, settings.amenity_grid_window),
            flood=FloodZoneClassifier.from_rows(StagingRepository(FloodZone).iter_rows(session)),
        )


class SignalComputer:
    """
    Pure per-property signal computation over prebuilt indexes.
    """

    def __init__(
        self,
        indexes: ProximityIndexes,
        opportunity_scorer: Optional[OpportunityScorer] = None,
        accessible_transit_meters: Optional[float] = None,
    ):
        self.indexes = indexes
        self.opportunity_scorer = opportunity_scorer or OpportunityScorer()
        self.accessible_transit_meters = (
            accessible_transit_meters if accessible_transit_meters is not None
            else settings.accessible_transit_meters
        )

    def compute_signals(
        self,
        facts: PropertyFacts,
        resolved: Optional[ResolvedFacts],
        market: Optional[MarketContext],
        as_of: date,
    ) -> Dict[str, Any]:
        """
        Build the signal summary of one property.

        Args:
            facts: Canonical property snapshot
            resolved: Linked building-record counts (None when nothing is linked)
            market: ZIP market statistics (None when unknown)
            as_of: Reference date for recency

        Returns:
            Column dictionary for property_signal_summary

        Raises:
            ValueError: coordinates present but not finite
        """
        resolved = resolved or ResolvedFacts()
        market = market or MarketContext()
        has_location = facts.latitude is not None and facts.longitude is not None
        if has_location and not (math.isfinite(facts.latitude) and math.isfinite(facts.longitude)):
            raise ValueError(f"non-finite coordinates ({facts.latitude}, {facts.longitude})")

        # Transit
        nearest_distance = None
        nearest_distance_m = None
        nearest_station = None
        nearest_lines = []
        stations_nearby = 0
        if has_location:
            stations = self.indexes.transit.within(facts.latitude, facts.longitude)
            stations_nearby = len(stations)
            if stations:
                station, distance = stations[0]
                nearest_distance = distance
                nearest_distance_m = int(round(distance))
                nearest_station = station.name
                nearest_lines = list(station.lines)

        # Amenities
        counts: Counter = Counter()
        bands = {radius: 0 for radius in AMENITY_BANDS_METERS}
        if has_location:
            for amenity, distance in self.indexes.amenities.within(facts.latitude, facts.longitude):
                counts[amenity.category] += 1
                for radius in AMENITY_BANDS_METERS:
                    if distance <= radius:
                        bands[radius] += 1

        flood = self.indexes.flood.classify(facts.latitude, facts.longitude, facts.zip_code)

        health = building_health_score(
            resolved.open_hpd_violations,
            resolved.open_dob_complaints,
            resolved.complaints_311_12m,
        )

        opportunity = self.opportunity_scorer.score(
            price_per_sqft=facts.price_per_sqft,
            median_price_per_sqft=market.median_price_per_sqft,
            trend_12m=market.trend_12m,
            last_sale_date=facts.last_sale_date,
            as_of=as_of,
        )

        completeness = data_completeness(
            has_bbl=bool(facts.bbl),
            has_transit=nearest_distance is not None,
            has_flood=flood.zone is not None,
            has_building_records=resolved.has_records(),
            has_amenities=sum(counts.values()) > 0,
        )

        sources = list(resolved.sources)
        if nearest_distance is not None:
            sources.append("subway_stations")
        if counts:
            sources.append("amenities")
        if flood.zone is not None:
            sources.append("flood_zones")

        summary = {
            "property_id": facts.property_id,
            "bbl": facts.bbl,
            "open_hpd_violations": resolved.open_hpd_violations,
            "total_hpd_violations": resolved.total_hpd_violations,
            "open_dob_complaints": resolved.open_dob_complaints,
            "total_dob_complaints": resolved.total_dob_complaints,
            "permits_12m": resolved.permits_12m,
            "complaints_311_12m": resolved.complaints_311_12m,
            "building_health_score": health,
            "health_risk_level": health_risk_level(health),
            "nearest_subway_distance_m": nearest_distance_m,
            "nearest_subway_station": nearest_station,
            "nearest_subway_lines": nearest_lines,
            "subway_stations_nearby": stations_nearby,
            "has_accessible_transit": (
                nearest_distance is not None and nearest_distance < self.accessible_transit_meters
            ),
            "transit_score": transit_score(nearest_distance),
            "amenities_400m": bands[400],
            "amenities_800m": bands[800],
            "amenity_score": amenity_score(counts["park"], counts["school"], counts["hospital"]),
            "flood_zone": flood.zone,
            "flood_risk_level": flood.risk_level,
            "is_flood_high_risk": flood.is_high_risk,
            "is_flood_moderate_risk": flood.is_moderate_risk,
            "opportunity_score": opportunity.total,
            "opportunity_vs_market_points": opportunity.vs_market_points,
            "opportunity_trend_points": opportunity.trend_points,
            "opportunity_recency_points": opportunity.recency_points,
            "data_completeness": completeness,
            "signal_confidence": signal_confidence(completeness),
            "signal_data_sources": sources,
            "computed_at": datetime.now(timezone.utc),
        }
        for category, column in AMENITY_COLUMNS.items():
            summary[column] = counts[category]
        return summary

    def compute_all(
        self,
        properties: Iterable[PropertyFacts],
        resolved_by_property: Dict[str, ResolvedFacts],
        market_by_zip: Dict[str, MarketContext],
        as_of: date,
    ) -> SignalBatchResult:
        """
        Fold compute_signals over properties.

        Returns:
            SignalBatchResult with one summary per success and one
            EntityFailure per property that raised
        """
        def step(result: SignalBatchResult, facts: PropertyFacts) -> SignalBatchResult:
            try:
                result.successes.append(self.compute_signals(
                    facts,
                    resolved_by_property.get(facts.property_id),
                    market_by_zip.get(facts.zip_code) if facts.zip_code else None,
                    as_of,
                ))
            except Exception as e:
                error = PerEntityComputationError(facts.property_id, e)
                logger.error(
                    "property_signal_computation_failed",
                    property_id=facts.property_id,
                    error=str(error),
                    error_type=type(e).__name__,
                )
                result.failures.append(EntityFailure(
                    entity_id=facts.property_id,
                    error=str(e),
                    error_type=type(e).__name__,
                ))
            return result

        result = reduce(step, properties, SignalBatchResult())
        logger.info(
            "signal_batch_computed",
            total=result.total,
            succeeded=len(result.successes),
            failed=len(result.failures),
        )
        return result


class SignalComputationPipeline:
    """
    ComputeSignals stage: re-reads every input from the database, computes,
    and upserts summaries plus the opportunity columns on properties.
    """

    def __init__(self):
        self.property_repo = PropertyRepository()
        self.summary_repo = SignalSummaryRepository()
        self.market_repo = MarketAggregateRepository()

    def market_contexts(self, session: Session) -> Dict[str, MarketContext]:
        return {
            geo_id: MarketContext(
                median_price_per_sqft=aggregate.median_price_per_sqft,
                trend_12m=aggregate.trend_12m,
            )
            for geo_id, aggregate in self.market_repo.get_index(session).items()
        }

    def run(self, session: Session, as_of: date) -> SignalBatchResult:
        refresh_market_aggregates(session, as_of)

        computer = SignalComputer(ProximityIndexes.from_session(session))
        properties = [
            PropertyFacts.from_property(prop)
            for prop in session.execute(select(Property).order_by(Property.id)).scalars()
        ]

        result = computer.compute_all(
            properties,
            collect_resolved_facts(session, as_of),
            self.market_contexts(session),
            as_of,
        )

        self.summary_repo.bulk_upsert(session, result.successes)
        for summary in result.successes:
            self.property_repo.set_opportunity(
                session,
                summary["property_id"],
                summary["opportunity_score"],
                confidence_level(summary["opportunity_score"]),
            )

        # A failed property keeps no summary from an earlier run, so needs_sync
        # reports it and the next run retries it
        failed_ids = [failure.entity_id for failure in result.failures]
        if failed_ids:
            self.summary_repo.delete_for_properties(session, failed_ids)
            self.property_repo.clear_opportunity(session, failed_ids)
        session.flush()
        return result
