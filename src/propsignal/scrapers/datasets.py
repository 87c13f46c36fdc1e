"""
Dataset Registry

Open data datasets pulled by the pipeline: where they live, how they are
filtered, which record model validates them and which staging table
receives them.
"""
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, Dict, Optional, Type

from config.settings import settings
from src.propsignal.db.models import (
    AcrisSale,
    Amenity,
    CondoRegistryRecord,
    Complaint311,
    DobComplaint,
    DobPermit,
    HpdViolation,
    PlutoLot,
    SubwayStation,
)
from src.propsignal.models.records import (
    AcrisSaleRecord,
    AmenityRecord,
    Complaint311Record,
    CondoUnitRecord,
    DobComplaintRecord,
    DobPermitRecord,
    HpdViolationRecord,
    PlutoLotRecord,
    SourceRecord,
    SubwayStationRecord,
)

# 311 complaint types that reflect building condition
HOUSING_311_COMPLAINT_TYPES = (
    "HEAT/HOT WATER",
    "PLUMBING",
    "WATER LEAK",
    "ELECTRIC",
    "ELEVATOR",
    "Noise - Residential",
    "UNSANITARY CONDITION",
    "Rodent",
)


@dataclass(frozen=True)
class DatasetSpec:
    """
    One Socrata dataset.

    Attributes:
        name: Pipeline name (also the ingestion run source_type)
        dataset_id: Socrata four-by-four identifier
        domain: Open data portal host
        record_cls: Pydantic model validating each row
        staging_model: ORM model of the staging table
        date_field: Column used for the incremental window
        lookback_days: Size of the incremental window
        extra_where: Additional SoQL filter
        order: SoQL ordering; a stable order keeps offsets consistent
        context: Extra keyword arguments for record_cls.from_socrata
    """

    name: str
    dataset_id: str
    domain: str
    record_cls: Type[SourceRecord]
    staging_model: Type
    date_field: Optional[str] = None
    lookback_days: Optional[int] = None
    extra_where: Optional[str] = None
    order: str = ":id"
    context: Dict[str, Any] = field(default_factory=dict)

    def since_date(self, as_of: date) -> Optional[date]:
        """Start of the incremental window, or None for full pulls."""
        if self.lookback_days is None:
            return None
        return as_of - timedelta(days=self.lookback_days)

    def where_clause(self, since: Optional[date]) -> Optional[str]:
        """
        SoQL $where for this dataset.

        Example:
            "created_date >= '2024-01-01T00:00:00' AND complaint_type IN (...)"
        """
        clauses = []
        if since is not None and self.date_field:
            clauses.append(f"{self.date_field} >= '{since.isoformat()}T00:00:00'")
        if self.extra_where:
            clauses.append(self.extra_where)
        return " AND ".join(clauses) if clauses else None


def _quoted_list(values) -> str:
    return ", ".join("'" + value.replace("'", "''") + "'" for value in values)


def get_datasets() -> Dict[str, DatasetSpec]:
    """
    All datasets keyed by name, in fetch order.

    Returns:
        Ordered mapping of dataset name to DatasetSpec
    """
    nyc = settings.nyc_opendata_domain
    nys = settings.nys_opendata_domain

    specs = [
        DatasetSpec(
            name="dob_permits",
            dataset_id="rbx6-tga4",
            domain=nyc,
            record_cls=DobPermitRecord,
            staging_model=DobPermit,
            date_field="issued_date",
            lookback_days=settings.etl_permits_lookback_days,
        ),
        DatasetSpec(
            name="hpd_violations",
            dataset_id="wvxf-dwi5",
            domain=nyc,
            record_cls=HpdViolationRecord,
            staging_model=HpdViolation,
            date_field="inspectiondate",
            lookback_days=settings.etl_hpd_violations_lookback_days,
        ),
        DatasetSpec(
            name="dob_complaints",
            dataset_id="eabe-havv",
            domain=nyc,
            record_cls=DobComplaintRecord,
            staging_model=DobComplaint,
            date_field="date_entered",
            lookback_days=settings.etl_dob_complaints_lookback_days,
        ),
        DatasetSpec(
            name="complaints_311",
            dataset_id="erm2-nwe9",
            domain=nyc,
            record_cls=Complaint311Record,
            staging_model=Complaint311,
            date_field="created_date",
            lookback_days=settings.etl_311_lookback_days,
            extra_where=f"complaint_type IN ({_quoted_list(HOUSING_311_COMPLAINT_TYPES)})",
        ),
        DatasetSpec(
            name="subway_stations",
            dataset_id="39hk-dx4f",
            domain=nys,
            record_cls=SubwayStationRecord,
            staging_model=SubwayStation,
        ),
        DatasetSpec(
            name="amenities_parks",
            dataset_id="enfh-gkve",
            domain=nyc,
            record_cls=AmenityRecord,
            staging_model=Amenity,
            context={"category": "park"},
        ),
        DatasetSpec(
            name="amenities_schools",
            dataset_id="wg9x-4ke6",
            domain=nyc,
            record_cls=AmenityRecord,
            staging_model=Amenity,
            context={"category": "school"},
        ),
        DatasetSpec(
            name="amenities_hospitals",
            dataset_id="833y-fsy8",
            domain=nyc,
            record_cls=AmenityRecord,
            staging_model=Amenity,
            context={"category": "hospital"},
        ),
        DatasetSpec(
            name="amenities_libraries",
            dataset_id="b67a-vkqb",
            domain=nyc,
            record_cls=AmenityRecord,
            staging_model=Amenity,
            context={"category": "library"},
        ),
        DatasetSpec(
            name="amenities_groceries",
            dataset_id="9a8c-vfzj",
            domain=nys,
            record_cls=AmenityRecord,
            staging_model=Amenity,
            extra_where="county IN ('New York', 'Kings', 'Queens', 'Bronx', 'Richmond')",
            context={"category": "grocery"},
        ),
        DatasetSpec(
            name="condo_registry",
            dataset_id="eguu-7ie3",
            domain=nyc,
            record_cls=CondoUnitRecord,
            staging_model=CondoRegistryRecord,
        ),
        DatasetSpec(
            name="pluto_lots",
            dataset_id="64uk-42ks",
            domain=nyc,
            record_cls=PlutoLotRecord,
            staging_model=PlutoLot,
        ),
        DatasetSpec(
            name="acris_sales",
            dataset_id="usep-8jbt",
            domain=nyc,
            record_cls=AcrisSaleRecord,
            staging_model=AcrisSale,
            date_field="sale_date",
            lookback_days=settings.etl_sales_lookback_days,
            context={"min_price": settings.sales_min_price},
        ),
    ]

    return {spec.name: spec for spec in specs}
