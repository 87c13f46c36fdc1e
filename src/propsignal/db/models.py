"""
SQLAlchemy ORM Models

Canonical entities (properties, buildings, condo units), raw staging tables
for every open-data feed, the entity resolution map, and the per-property
signal summary. BBL is the primary linkage key between them.
"""
import uuid
from datetime import date, datetime
from typing import Optional

from sqlalchemy import (
    String, Integer, Float, Date, DateTime, Boolean, Text,
    ForeignKey, CheckConstraint, UniqueConstraint, Index, func
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.propsignal.db.base import (
    Base, TimestampMixin, RawRecordMixin, JSONType
)


def _new_uuid() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Canonical entities
# ---------------------------------------------------------------------------

class Property(Base, TimestampMixin):
    """
    Master property table.

    One record per tax lot or condo unit. Signals and resolution links
    reference this table by id; bbl is unique when present.
    """
    __tablename__ = "properties"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_uuid)

    bbl: Mapped[Optional[str]] = mapped_column(
        String(10),
        unique=True,
        nullable=True,
        comment="10-digit Borough-Block-Lot"
    )
    bin: Mapped[Optional[str]] = mapped_column(
        String(10),
        nullable=True,
        comment="Building Identification Number"
    )

    # Address and location
    address: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    unit: Mapped[Optional[str]] = mapped_column(
        String(50),
        nullable=True,
        comment="Unit designation, enriched from the condo registry"
    )
    normalized_address: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        comment="Rule-based or geocoder-normalized address"
    )
    city: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    state: Mapped[Optional[str]] = mapped_column(String(2), nullable=True, default="NY")
    zip_code: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    borough: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    latitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    longitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    grid_lat: Mapped[Optional[int]] = mapped_column(
        Integer,
        nullable=True,
        comment="floor(latitude * 1000)"
    )
    grid_lng: Mapped[Optional[int]] = mapped_column(
        Integer,
        nullable=True,
        comment="floor(longitude * 1000)"
    )

    # Characteristics and last sale
    property_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    sqft: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    last_sale_price: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    last_sale_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    price_per_sqft: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    # Opportunity output
    opportunity_score: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    confidence_level: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)

    signal_summary: Mapped[Optional["PropertySignalSummary"]] = relationship(
        "PropertySignalSummary",
        back_populates="property",
        uselist=False,
        cascade="all, delete-orphan"
    )

    __table_args__ = (
        CheckConstraint(
            "latitude >= -90 AND latitude <= 90",
            name="check_latitude_range"
        ),
        CheckConstraint(
            "longitude >= -180 AND longitude <= 180",
            name="check_longitude_range"
        ),
        Index("idx_properties_zip_code", "zip_code"),
        Index("idx_properties_grid", "grid_lat", "grid_lng"),
    )

    def __repr__(self) -> str:
        return f"<Property(id={self.id}, bbl={self.bbl}, address={self.address})>"


class Building(Base, TimestampMixin):
    """Building aggregate keyed by the condominium base (billing) BBL."""
    __tablename__ = "buildings"

    base_bbl: Mapped[str] = mapped_column(String(10), primary_key=True)
    condo_number: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    display_address: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    zip_code: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    borough: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    latitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    longitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    unit_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    units: Mapped[list["CondoUnit"]] = relationship(
        "CondoUnit",
        back_populates="building",
        cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<Building(base_bbl={self.base_bbl}, units={self.unit_count})>"


class CondoUnit(Base, TimestampMixin):
    """Condominium unit (many:1 with buildings)."""
    __tablename__ = "condo_units"

    unit_bbl: Mapped[str] = mapped_column(String(10), primary_key=True)
    base_bbl: Mapped[str] = mapped_column(
        String(10),
        ForeignKey("buildings.base_bbl", ondelete="CASCADE"),
        nullable=False,
        comment="References buildings table"
    )
    unit_designation: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    property_id: Mapped[Optional[str]] = mapped_column(
        String(36),
        ForeignKey("properties.id", ondelete="SET NULL"),
        nullable=True
    )

    building: Mapped["Building"] = relationship("Building", back_populates="units")

    __table_args__ = (
        Index("idx_condo_units_base_bbl", "base_bbl"),
    )

    def __repr__(self) -> str:
        return f"<CondoUnit(unit_bbl={self.unit_bbl}, base_bbl={self.base_bbl})>"


# ---------------------------------------------------------------------------
# Raw staging tables (insert, skip on conflict by source_id)
# ---------------------------------------------------------------------------

class DobPermit(Base, RawRecordMixin):
    """DOB NOW approved permits."""
    __tablename__ = "dob_permits"

    job_filing_number: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    work_type: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    permit_status: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    issued_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    estimated_job_cost: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    address: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    zip_code: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)

    __table_args__ = (
        Index("idx_dob_permits_issued_date", "issued_date"),
    )

    def __repr__(self) -> str:
        return f"<DobPermit(source_id={self.source_id}, bbl={self.bbl})>"


class HpdViolation(Base, RawRecordMixin):
    """HPD housing maintenance code violations."""
    __tablename__ = "hpd_violations"

    building_id: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    violation_class: Mapped[Optional[str]] = mapped_column(String(5), nullable=True)
    violation_status: Mapped[Optional[str]] = mapped_column(
        String(20),
        nullable=True,
        comment="Open or Close"
    )
    inspection_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    address: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    zip_code: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)

    __table_args__ = (
        Index("idx_hpd_violations_status", "violation_status"),
    )

    def __repr__(self) -> str:
        return f"<HpdViolation(source_id={self.source_id}, status={self.violation_status})>"


class DobComplaint(Base, RawRecordMixin):
    """DOB complaints received."""
    __tablename__ = "dob_complaints"

    bin: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    complaint_category: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    status: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    date_entered: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    address: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    zip_code: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)

    def __repr__(self) -> str:
        return f"<DobComplaint(source_id={self.source_id}, status={self.status})>"


class Complaint311(Base, RawRecordMixin):
    """311 service requests restricted to housing-quality complaint types."""
    __tablename__ = "complaints_311"

    complaint_type: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    descriptor: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    status: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    created_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    address: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    zip_code: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)

    __table_args__ = (
        Index("idx_complaints_311_created_date", "created_date"),
    )

    def __repr__(self) -> str:
        return f"<Complaint311(source_id={self.source_id}, type={self.complaint_type})>"


class SubwayStation(Base, RawRecordMixin):
    """MTA subway stations."""
    __tablename__ = "subway_stations"

    station_name: Mapped[str] = mapped_column(String(255), nullable=False)
    routes: Mapped[Optional[list]] = mapped_column(
        JSONType,
        nullable=True,
        comment="Daytime routes serving the station"
    )
    ada_accessible: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    borough: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    def __repr__(self) -> str:
        return f"<SubwayStation(name={self.station_name}, routes={self.routes})>"


class Amenity(Base, RawRecordMixin):
    """Parks, schools, hospitals, libraries and grocery stores."""
    __tablename__ = "amenities"

    category: Mapped[str] = mapped_column(String(30), nullable=False)
    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    borough: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    __table_args__ = (
        Index("idx_amenities_category", "category"),
    )

    def __repr__(self) -> str:
        return f"<Amenity(category={self.category}, name={self.name})>"


class FloodZone(Base, RawRecordMixin):
    """FEMA flood zone reference rows, optionally narrowed to a ZIP code."""
    __tablename__ = "flood_zones"

    borough: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    zip_code: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    zone_code: Mapped[str] = mapped_column(String(20), nullable=False)
    risk_level: Mapped[str] = mapped_column(String(20), nullable=False)
    is_high_risk: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_moderate_risk: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    def __repr__(self) -> str:
        return f"<FloodZone(zone={self.zone_code}, borough={self.borough}, zip={self.zip_code})>"


class CondoRegistryRecord(Base, RawRecordMixin):
    """Digital tax map condominium unit registry (unit BBL -> base BBL)."""
    __tablename__ = "condo_registry"

    base_bbl: Mapped[Optional[str]] = mapped_column(String(10), nullable=True, index=True)
    condo_number: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    unit_designation: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    address: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    zip_code: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)

    def __repr__(self) -> str:
        return f"<CondoRegistryRecord(unit_bbl={self.bbl}, base_bbl={self.base_bbl})>"


class PlutoLot(Base, RawRecordMixin):
    """PLUTO tax lot attributes."""
    __tablename__ = "pluto_lots"

    borough: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    building_class: Mapped[Optional[str]] = mapped_column(String(5), nullable=True)
    residential_units: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    year_built: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    address: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    zip_code: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)

    def __repr__(self) -> str:
        return f"<PlutoLot(bbl={self.bbl}, address={self.address})>"


class AcrisSale(Base, RawRecordMixin):
    """
    Recorded deed sales (DOF citywide rolling sales, deeds recorded in ACRIS).

    bbl is the sold lot: a condo unit BBL for unit sales, resolved to its
    building through the condo registry.
    """
    __tablename__ = "acris_sales"

    sale_price: Mapped[float] = mapped_column(Float, nullable=False)
    sale_date: Mapped[date] = mapped_column(Date, nullable=False)
    apartment_number: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    building_class_category: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    gross_square_feet: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    borough: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    address: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    zip_code: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)

    __table_args__ = (
        Index("idx_acris_sales_sale_date", "sale_date"),
    )

    def __repr__(self) -> str:
        return f"<AcrisSale(bbl={self.bbl}, price={self.sale_price}, date={self.sale_date})>"


# ---------------------------------------------------------------------------
# Resolution, signals, aggregates
# ---------------------------------------------------------------------------

class EntityResolutionRecord(Base):
    """Link from one raw source record to at most one canonical property."""
    __tablename__ = "entity_resolution_map"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    source_system: Mapped[str] = mapped_column(String(50), nullable=False)
    source_record_id: Mapped[str] = mapped_column(String(100), nullable=False)
    source_bbl: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    matched_property_id: Mapped[Optional[str]] = mapped_column(
        String(36),
        ForeignKey("properties.id", ondelete="SET NULL"),
        nullable=True,
        comment="Null for unmatched records"
    )
    match_type: Mapped[str] = mapped_column(String(20), nullable=False)
    match_confidence: Mapped[float] = mapped_column(Float, nullable=False)
    match_metadata: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    resolved_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False
    )

    __table_args__ = (
        UniqueConstraint("source_system", "source_record_id", name="uq_entity_resolution_source"),
        CheckConstraint(
            "match_type IN ('exact', 'registry', 'address', 'unmatched')",
            name="check_match_type_valid"
        ),
        CheckConstraint(
            "match_confidence >= 0 AND match_confidence <= 1",
            name="check_match_confidence_range"
        ),
        Index("idx_entity_resolution_map_property", "matched_property_id"),
        Index("idx_entity_resolution_map_source_system", "source_system"),
    )

    def __repr__(self) -> str:
        return (
            f"<EntityResolutionRecord(source={self.source_system}:{self.source_record_id}, "
            f"match={self.match_type})>"
        )


class PropertySignalSummary(Base):
    """Per-property signals, recomputed in full on every batch run."""
    __tablename__ = "property_signal_summary"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    property_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("properties.id", ondelete="CASCADE"),
        unique=True,
        nullable=False
    )
    bbl: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)

    # Building records
    open_hpd_violations: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_hpd_violations: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    open_dob_complaints: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_dob_complaints: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    permits_12m: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    complaints_311_12m: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    building_health_score: Mapped[int] = mapped_column(Integer, nullable=False)
    health_risk_level: Mapped[str] = mapped_column(String(10), nullable=False)

    # Transit
    nearest_subway_distance_m: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    nearest_subway_station: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    nearest_subway_lines: Mapped[Optional[list]] = mapped_column(JSONType, nullable=True)
    subway_stations_nearby: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    has_accessible_transit: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    transit_score: Mapped[int] = mapped_column(Integer, nullable=False)

    # Amenities
    parks_nearby: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    schools_nearby: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    hospitals_nearby: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    libraries_nearby: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    groceries_nearby: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    amenities_400m: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    amenities_800m: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    amenity_score: Mapped[int] = mapped_column(Integer, nullable=False)

    # Flood
    flood_zone: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    flood_risk_level: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    is_flood_high_risk: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_flood_moderate_risk: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Opportunity (40/30/30 breakdown kept alongside the total)
    opportunity_score: Mapped[int] = mapped_column(Integer, nullable=False)
    opportunity_vs_market_points: Mapped[float] = mapped_column(Float, nullable=False)
    opportunity_trend_points: Mapped[float] = mapped_column(Float, nullable=False)
    opportunity_recency_points: Mapped[float] = mapped_column(Float, nullable=False)

    # Quality
    data_completeness: Mapped[float] = mapped_column(
        Float,
        nullable=False,
        comment="Fraction of signal inputs available (0-1)"
    )
    signal_confidence: Mapped[str] = mapped_column(String(10), nullable=False)
    signal_data_sources: Mapped[Optional[list]] = mapped_column(JSONType, nullable=True)
    computed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    property: Mapped["Property"] = relationship("Property", back_populates="signal_summary")

    __table_args__ = (
        CheckConstraint(
            "building_health_score >= 0 AND building_health_score <= 100",
            name="check_building_health_score_range"
        ),
        CheckConstraint(
            "transit_score >= 0 AND transit_score <= 100",
            name="check_transit_score_range"
        ),
        CheckConstraint(
            "amenity_score >= 0 AND amenity_score <= 100",
            name="check_amenity_score_range"
        ),
        CheckConstraint(
            "opportunity_score >= 0 AND opportunity_score <= 100",
            name="check_opportunity_score_range"
        ),
        Index("idx_property_signal_summary_bbl", "bbl"),
    )

    def __repr__(self) -> str:
        return (
            f"<PropertySignalSummary(property_id={self.property_id}, "
            f"health={self.building_health_score}, transit={self.transit_score})>"
        )


class MarketAggregate(Base, TimestampMixin):
    """Market statistics per geography (ZIP code)."""
    __tablename__ = "market_aggregates"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    geo_type: Mapped[str] = mapped_column(String(20), nullable=False)
    geo_id: Mapped[str] = mapped_column(String(20), nullable=False)
    median_price_per_sqft: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    transaction_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    trend_12m: Mapped[Optional[float]] = mapped_column(
        Float,
        nullable=True,
        comment="Percent change in median price/sqft versus the prior 12 months"
    )
    computed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("geo_type", "geo_id", name="uq_market_aggregates_geo"),
    )

    def __repr__(self) -> str:
        return f"<MarketAggregate({self.geo_type}={self.geo_id}, median_ppsf={self.median_price_per_sqft})>"


class DataIngestionRun(Base, TimestampMixin):
    """Dataset import and pipeline stage execution tracking."""
    __tablename__ = "data_ingestion_runs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    source_type: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        comment="Dataset name or stage:<name>"
    )
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        comment="Job status: running, success, failure, partial"
    )

    # Record counts
    records_processed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    records_inserted: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    records_skipped: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
        comment="Rows already present (conflict on natural key)"
    )
    records_failed: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
        comment="Rejected records or failed entities"
    )

    # Error tracking
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    run_metadata: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)

    # Timing
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint(
            "status IN ('running', 'success', 'failure', 'partial')",
            name="check_status_valid"
        ),
        Index("idx_data_ingestion_runs_source_type", "source_type"),
        Index("idx_data_ingestion_runs_started_at", "started_at"),
    )

    def __repr__(self) -> str:
        return f"<DataIngestionRun(source={self.source_type}, status={self.status}, processed={self.records_processed})>"
