"""
Source Record Models

Pydantic models that turn loosely-shaped open data JSON into strict staging
records. Every model exposes from_socrata(), which maps upstream field names
and raises MalformedRecordError (or pydantic's ValidationError) for rows
that cannot be staged; parse_records() filters those out and counts them.
"""
from datetime import date
from typing import Any, ClassVar, Dict, List, Optional, Tuple, Type

from pydantic import BaseModel, ConfigDict, Field, field_validator

from src.propsignal.db.utils import parse_date_string
from src.propsignal.errors import MalformedRecordError
from src.propsignal.transformers.address_standardizer import AddressStandardizer
from src.propsignal.transformers.bbl import build_bbl, borough_name, normalize_bbl
from src.propsignal.utils.geo_utils import geometry_point
from src.propsignal.utils.logger import get_logger

logger = get_logger(__name__)

# Coordinates outside this box are treated as absent (open data uses 0,0 for unknown)
NYC_BOUNDS = {"min_lat": 40.4, "max_lat": 41.0, "min_lon": -74.3, "max_lon": -73.6}

DOB_CLOSED_STATUSES = frozenset({"CLOSED", "RESOLVED"})


def is_open_hpd_violation(status: Optional[str]) -> bool:
    return (status or "").strip().upper() == "OPEN"


def is_open_dob_complaint(status: Optional[str]) -> bool:
    return (status or "").strip().upper() not in DOB_CLOSED_STATUSES


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


def _first(raw: Dict[str, Any], *keys: str) -> Any:
    """First non-blank value among keys."""
    for key in keys:
        value = _blank_to_none(raw.get(key))
        if value is not None:
            return value
    return None


def _join_address(*parts: Optional[str]) -> Optional[str]:
    tokens = [str(part).strip() for part in parts if part is not None and str(part).strip()]
    return " ".join(tokens) if tokens else None


def _coordinates(raw: Dict[str, Any], lat_keys=("latitude",), lon_keys=("longitude",)) -> Tuple[Any, Any]:
    """
    Extract (lat, lon) from flat columns or a GeoJSON/location column.
    """
    lat = _first(raw, *lat_keys)
    lon = _first(raw, *lon_keys)
    if lat is not None and lon is not None:
        return lat, lon

    for key in ("the_geom", "georeference", "location", "location_1", "point"):
        value = raw.get(key)
        if not isinstance(value, dict):
            continue
        if "coordinates" in value:
            point = geometry_point(value)
            if point:
                return point
        if value.get("latitude") is not None and value.get("longitude") is not None:
            return value["latitude"], value["longitude"]

    return None, None


class SourceRecord(BaseModel):
    """
    Base staging record.

    Attributes:
        source_id: Natural key from the source dataset
        bbl: Normalized 10-digit BBL, if the source provides one
        latitude: WGS84 latitude (None when absent or outside NYC)
        longitude: WGS84 longitude
        raw_data: Upstream payload
    """

    model_config = ConfigDict(str_strip_whitespace=True, coerce_numbers_to_str=True)

    dataset: ClassVar[str] = "source"

    source_id: str = Field(..., min_length=1, max_length=100, description="Natural key")
    bbl: Optional[str] = Field(None, max_length=10, description="10-digit BBL")
    latitude: Optional[float] = Field(None, description="WGS84 latitude")
    longitude: Optional[float] = Field(None, description="WGS84 longitude")
    raw_data: Dict[str, Any] = Field(default_factory=dict, description="Upstream payload")

    @field_validator("bbl", mode="before")
    @classmethod
    def _normalize_bbl(cls, value: Any) -> Optional[str]:
        return normalize_bbl(_blank_to_none(value))

    @field_validator("latitude", "longitude", mode="before")
    @classmethod
    def _blank_coordinate(cls, value: Any) -> Any:
        return _blank_to_none(value)

    @field_validator("zip_code", mode="before", check_fields=False)
    @classmethod
    def _normalize_zip(cls, value: Any) -> Optional[str]:
        return AddressStandardizer.normalize_zip(_blank_to_none(value))

    def model_post_init(self, __context: Any) -> None:
        if self.latitude is None or self.longitude is None:
            self.latitude = None
            self.longitude = None
            return
        in_bounds = (
            NYC_BOUNDS["min_lat"] <= self.latitude <= NYC_BOUNDS["max_lat"]
            and NYC_BOUNDS["min_lon"] <= self.longitude <= NYC_BOUNDS["max_lon"]
        )
        if not in_bounds:
            self.latitude = None
            self.longitude = None

    def has_coordinates(self) -> bool:
        """Check if record has usable coordinates."""
        return self.latitude is not None and self.longitude is not None

    def to_row(self) -> Dict[str, Any]:
        """Column dictionary for the staging table."""
        return self.model_dump()

    @classmethod
    def from_socrata(cls, raw: Dict[str, Any], **context: Any) -> "SourceRecord":
        raise NotImplementedError

    @classmethod
    def _require(cls, value: Any, field: str) -> Any:
        if value is None:
            raise MalformedRecordError(cls.dataset, f"missing {field}")
        return value


class DobPermitRecord(SourceRecord):
    """DOB NOW approved permit."""

    dataset: ClassVar[str] = "dob_permits"

    job_filing_number: str = Field(..., min_length=1, max_length=50)
    work_type: Optional[str] = Field(None, max_length=100)
    permit_status: Optional[str] = Field(None, max_length=50)
    issued_date: Optional[date] = None
    estimated_job_cost: Optional[float] = None
    address: Optional[str] = Field(None, max_length=255)
    zip_code: Optional[str] = Field(None, max_length=10)

    @field_validator("issued_date", mode="before")
    @classmethod
    def _parse_date(cls, value: Any) -> Optional[date]:
        return parse_date_string(value) if value else None

    @field_validator("estimated_job_cost", mode="before")
    @classmethod
    def _blank_cost(cls, value: Any) -> Any:
        return _blank_to_none(value)

    @classmethod
    def from_socrata(cls, raw: Dict[str, Any], **context: Any) -> "DobPermitRecord":
        job_number = cls._require(_first(raw, "job_filing_number", "job__"), "job_filing_number")
        permit_key = _first(raw, "work_permit", "work_type", "permit_sequence__") or "0"
        lat, lon = _coordinates(raw)
        return cls.model_validate({
            "source_id": f"{job_number}:{permit_key}",
            "job_filing_number": job_number,
            "bbl": _first(raw, "bbl") or build_bbl(raw.get("borough"), raw.get("block"), raw.get("lot")),
            "latitude": lat,
            "longitude": lon,
            "work_type": _first(raw, "work_type"),
            "permit_status": _first(raw, "permit_status"),
            "issued_date": _first(raw, "issued_date"),
            "estimated_job_cost": _first(raw, "estimated_job_costs"),
            "address": _join_address(_first(raw, "house_no"), _first(raw, "street_name")),
            "zip_code": _first(raw, "zip_code"),
            "raw_data": raw,
        })


class HpdViolationRecord(SourceRecord):
    """HPD housing maintenance code violation."""

    dataset: ClassVar[str] = "hpd_violations"

    building_id: Optional[str] = Field(None, max_length=20)
    violation_class: Optional[str] = Field(None, max_length=5)
    violation_status: Optional[str] = Field(None, max_length=20)
    inspection_date: Optional[date] = None
    address: Optional[str] = Field(None, max_length=255)
    zip_code: Optional[str] = Field(None, max_length=10)

    @field_validator("inspection_date", mode="before")
    @classmethod
    def _parse_date(cls, value: Any) -> Optional[date]:
        return parse_date_string(value) if value else None

    def is_open(self) -> bool:
        return is_open_hpd_violation(self.violation_status)

    @classmethod
    def from_socrata(cls, raw: Dict[str, Any], **context: Any) -> "HpdViolationRecord":
        violation_id = cls._require(_first(raw, "violationid"), "violationid")
        lat, lon = _coordinates(raw)
        return cls.model_validate({
            "source_id": str(violation_id),
            "bbl": _first(raw, "bbl") or build_bbl(raw.get("boroid"), raw.get("block"), raw.get("lot")),
            "latitude": lat,
            "longitude": lon,
            "building_id": _first(raw, "buildingid"),
            "violation_class": _first(raw, "class"),
            "violation_status": _first(raw, "violationstatus"),
            "inspection_date": _first(raw, "inspectiondate", "novissueddate"),
            "address": _join_address(_first(raw, "housenumber"), _first(raw, "streetname")),
            "zip_code": _first(raw, "zip"),
            "raw_data": raw,
        })


class DobComplaintRecord(SourceRecord):
    """DOB complaint received."""

    dataset: ClassVar[str] = "dob_complaints"

    bin: Optional[str] = Field(None, max_length=10)
    complaint_category: Optional[str] = Field(None, max_length=20)
    status: Optional[str] = Field(None, max_length=20)
    date_entered: Optional[date] = None
    address: Optional[str] = Field(None, max_length=255)
    zip_code: Optional[str] = Field(None, max_length=10)

    @field_validator("date_entered", mode="before")
    @classmethod
    def _parse_date(cls, value: Any) -> Optional[date]:
        return parse_date_string(value) if value else None

    def is_open(self) -> bool:
        return is_open_dob_complaint(self.status)

    @classmethod
    def from_socrata(cls, raw: Dict[str, Any], **context: Any) -> "DobComplaintRecord":
        complaint_number = cls._require(_first(raw, "complaint_number"), "complaint_number")
        return cls.model_validate({
            "source_id": str(complaint_number),
            "bbl": _first(raw, "bbl"),
            "bin": _first(raw, "bin"),
            "complaint_category": _first(raw, "complaint_category"),
            "status": _first(raw, "status"),
            "date_entered": _first(raw, "date_entered"),
            "address": _join_address(_first(raw, "house_number"), _first(raw, "house_street")),
            "zip_code": _first(raw, "zip_code"),
            "raw_data": raw,
        })


class Complaint311Record(SourceRecord):
    """311 service request."""

    dataset: ClassVar[str] = "complaints_311"

    complaint_type: Optional[str] = Field(None, max_length=100)
    descriptor: Optional[str] = Field(None, max_length=255)
    status: Optional[str] = Field(None, max_length=30)
    created_date: Optional[date] = None
    address: Optional[str] = Field(None, max_length=255)
    zip_code: Optional[str] = Field(None, max_length=10)

    @field_validator("created_date", mode="before")
    @classmethod
    def _parse_date(cls, value: Any) -> Optional[date]:
        return parse_date_string(value) if value else None

    @classmethod
    def from_socrata(cls, raw: Dict[str, Any], **context: Any) -> "Complaint311Record":
        unique_key = cls._require(_first(raw, "unique_key"), "unique_key")
        lat, lon = _coordinates(raw)
        return cls.model_validate({
            "source_id": str(unique_key),
            "bbl": _first(raw, "bbl"),
            "latitude": lat,
            "longitude": lon,
            "complaint_type": _first(raw, "complaint_type"),
            "descriptor": _first(raw, "descriptor"),
            "status": _first(raw, "status"),
            "created_date": _first(raw, "created_date"),
            "address": _first(raw, "incident_address"),
            "zip_code": _first(raw, "incident_zip"),
            "raw_data": raw,
        })


class SubwayStationRecord(SourceRecord):
    """MTA subway station. Coordinates are required."""

    dataset: ClassVar[str] = "subway_stations"

    latitude: float = Field(..., description="WGS84 latitude")
    longitude: float = Field(..., description="WGS84 longitude")
    station_name: str = Field(..., min_length=1, max_length=255)
    routes: List[str] = Field(default_factory=list)
    ada_accessible: bool = False
    borough: Optional[str] = Field(None, max_length=20)

    @field_validator("routes", mode="before")
    @classmethod
    def _split_routes(cls, value: Any) -> List[str]:
        if value is None:
            return []
        if isinstance(value, str):
            return [route for route in value.replace(",", " ").split() if route]
        return list(value)

    @field_validator("ada_accessible", mode="before")
    @classmethod
    def _parse_ada(cls, value: Any) -> bool:
        if isinstance(value, bool):
            return value
        return str(value or "").strip().upper() in ("1", "2", "TRUE", "Y", "YES")

    def model_post_init(self, __context: Any) -> None:
        super().model_post_init(__context)
        if self.latitude is None:
            raise ValueError("station coordinates outside New York City")

    @classmethod
    def from_socrata(cls, raw: Dict[str, Any], **context: Any) -> "SubwayStationRecord":
        stop_id = cls._require(_first(raw, "gtfs_stop_id", "station_id", "complex_id"), "gtfs_stop_id")
        lat, lon = _coordinates(raw, ("gtfs_latitude", "latitude"), ("gtfs_longitude", "longitude"))
        return cls.model_validate({
            "source_id": str(stop_id),
            "latitude": lat,
            "longitude": lon,
            "station_name": _first(raw, "stop_name", "station_name", "name"),
            "routes": _first(raw, "daytime_routes", "routes"),
            "ada_accessible": _first(raw, "ada"),
            "borough": borough_name(_first(raw, "borough")),
            "raw_data": raw,
        })


class AmenityRecord(SourceRecord):
    """Park, school, hospital, library or grocery store. Coordinates are required."""

    dataset: ClassVar[str] = "amenities"

    CATEGORIES: ClassVar[tuple] = ("park", "school", "hospital", "library", "grocery")

    latitude: float = Field(..., description="WGS84 latitude")
    longitude: float = Field(..., description="WGS84 longitude")
    category: str = Field(..., max_length=30)
    name: Optional[str] = Field(None, max_length=255)
    borough: Optional[str] = Field(None, max_length=20)

    @field_validator("category")
    @classmethod
    def _known_category(cls, value: str) -> str:
        if value not in cls.CATEGORIES:
            raise ValueError(f"unknown amenity category: {value}")
        return value

    def model_post_init(self, __context: Any) -> None:
        super().model_post_init(__context)
        if self.latitude is None:
            raise ValueError("amenity coordinates outside New York City")

    @classmethod
    def from_socrata(cls, raw: Dict[str, Any], category: str = None, **context: Any) -> "AmenityRecord":
        lat, lon = _coordinates(raw)
        if lat is None or lon is None:
            raise MalformedRecordError(cls.dataset, "missing coordinates")

        name = _first(
            raw, "signname", "name", "location_name", "facility_name", "facname",
            "dba_name", "entity_name", "branch",
        )
        object_id = _first(
            raw, "objectid", "gispropnum", "ats_system_code", "location_code",
            "facility_id", "license_number", "system_code",
        )
        if object_id is None:
            object_id = f"{name or 'unnamed'}-{float(lat):.5f}-{float(lon):.5f}"

        return cls.model_validate({
            "source_id": f"{category}-{object_id}"[:100],
            "latitude": lat,
            "longitude": lon,
            "category": category,
            "name": name,
            "borough": borough_name(_first(raw, "borough", "boro", "city")),
            "raw_data": raw,
        })


class CondoUnitRecord(SourceRecord):
    """Condominium unit registry row (unit BBL -> base BBL)."""

    dataset: ClassVar[str] = "condo_registry"

    base_bbl: Optional[str] = Field(None, max_length=10)
    condo_number: Optional[str] = Field(None, max_length=20)
    unit_designation: Optional[str] = Field(None, max_length=50)
    address: Optional[str] = Field(None, max_length=255)
    zip_code: Optional[str] = Field(None, max_length=10)

    @field_validator("base_bbl", mode="before")
    @classmethod
    def _normalize_base_bbl(cls, value: Any) -> Optional[str]:
        return normalize_bbl(_blank_to_none(value))

    @classmethod
    def from_socrata(cls, raw: Dict[str, Any], **context: Any) -> "CondoUnitRecord":
        unit_bbl = normalize_bbl(_first(raw, "unit_bbl")) or build_bbl(
            raw.get("unit_boro"), raw.get("unit_block"), raw.get("unit_lot")
        )
        cls._require(unit_bbl, "unit_bbl")
        return cls.model_validate({
            "source_id": unit_bbl,
            "bbl": unit_bbl,
            "base_bbl": _first(raw, "condo_base_bbl", "base_bbl"),
            "condo_number": _first(raw, "condo_number"),
            "unit_designation": _first(raw, "unit_designation"),
            "address": _first(raw, "address", "unit_address"),
            "zip_code": _first(raw, "zip_code", "zipcode"),
            "raw_data": raw,
        })


class PlutoLotRecord(SourceRecord):
    """PLUTO tax lot."""

    dataset: ClassVar[str] = "pluto_lots"

    borough: Optional[str] = Field(None, max_length=20)
    building_class: Optional[str] = Field(None, max_length=5)
    residential_units: Optional[int] = None
    year_built: Optional[int] = None
    address: Optional[str] = Field(None, max_length=255)
    zip_code: Optional[str] = Field(None, max_length=10)

    @field_validator("residential_units", "year_built", mode="before")
    @classmethod
    def _parse_int(cls, value: Any) -> Optional[int]:
        value = _blank_to_none(value)
        if value is None:
            return None
        return int(float(value))

    @classmethod
    def from_socrata(cls, raw: Dict[str, Any], **context: Any) -> "PlutoLotRecord":
        bbl = normalize_bbl(_first(raw, "bbl")) or build_bbl(
            raw.get("borocode") or raw.get("borough"), raw.get("block"), raw.get("lot")
        )
        cls._require(bbl, "bbl")
        lat, lon = _coordinates(raw)
        return cls.model_validate({
            "source_id": bbl,
            "bbl": bbl,
            "latitude": lat,
            "longitude": lon,
            "borough": borough_name(_first(raw, "borough", "borocode")),
            "building_class": _first(raw, "bldgclass"),
            "residential_units": _first(raw, "unitsres"),
            "year_built": _first(raw, "yearbuilt"),
            "address": _first(raw, "address"),
            "zip_code": _first(raw, "zipcode"),
            "raw_data": raw,
        })


def _parse_amount(value: Any) -> Optional[float]:
    """Numeric value from "1,250,000", "$ 1,250,000" or a plain number."""
    value = _blank_to_none(value)
    if value is None:
        return None
    if isinstance(value, str):
        value = value.replace(",", "").replace("$", "").strip()
    return float(value)


class AcrisSaleRecord(SourceRecord):
    """
    Recorded deed sale.

    Rows carry no upstream identifier; the natural key is the sold lot, the
    sale date, the price and the apartment.
    """

    dataset: ClassVar[str] = "acris_sales"

    sale_price: float = Field(..., gt=0)
    sale_date: date
    apartment_number: Optional[str] = Field(None, max_length=50)
    building_class_category: Optional[str] = Field(None, max_length=100)
    gross_square_feet: Optional[int] = Field(None, ge=0)
    borough: Optional[str] = Field(None, max_length=20)
    address: Optional[str] = Field(None, max_length=255)
    zip_code: Optional[str] = Field(None, max_length=10)

    @field_validator("sale_date", mode="before")
    @classmethod
    def _parse_date(cls, value: Any) -> Optional[date]:
        return parse_date_string(value) if value else None

    @field_validator("gross_square_feet", mode="before")
    @classmethod
    def _parse_sqft(cls, value: Any) -> Optional[int]:
        amount = _parse_amount(value)
        return int(amount) if amount else None

    @classmethod
    def from_socrata(
        cls,
        raw: Dict[str, Any],
        min_price: float = 0,
        **context: Any
    ) -> "AcrisSaleRecord":
        bbl = normalize_bbl(_first(raw, "bbl")) or build_bbl(raw.get("borough"), raw.get("block"), raw.get("lot"))
        cls._require(bbl, "bbl")
        price = cls._require(_parse_amount(_first(raw, "sale_price")), "sale_price")
        # Nominal transfers ($0, $10 deeds between related parties) are not market sales
        if price <= min_price:
            raise MalformedRecordError(cls.dataset, f"sale price {price:.0f} at or below {min_price:.0f}")
        sale_date = cls._require(parse_date_string(_first(raw, "sale_date")), "sale_date")
        apartment = _first(raw, "apartment_number")

        source_id = f"{bbl}:{sale_date.isoformat()}:{price:.0f}"
        if apartment:
            source_id = f"{source_id}:{str(apartment).strip()}"

        lat, lon = _coordinates(raw)
        return cls.model_validate({
            "source_id": source_id[:100],
            "bbl": bbl,
            "latitude": lat,
            "longitude": lon,
            "sale_price": price,
            "sale_date": sale_date,
            "apartment_number": apartment,
            "building_class_category": _first(raw, "building_class_category"),
            "gross_square_feet": _first(raw, "gross_square_feet"),
            "borough": borough_name(_first(raw, "borough")),
            "address": _first(raw, "address"),
            "zip_code": _first(raw, "zip_code"),
            "raw_data": raw,
        })


class FloodZoneRecord(SourceRecord):
    """Flood zone reference row."""

    dataset: ClassVar[str] = "flood_zones"

    borough: Optional[str] = Field(None, max_length=20)
    zip_code: Optional[str] = Field(None, max_length=10)
    zone_code: str = Field(..., min_length=1, max_length=20)
    risk_level: str = Field(..., max_length=20)
    is_high_risk: bool = False
    is_moderate_risk: bool = False


def parse_records(
    record_cls: Type[SourceRecord],
    rows: List[Dict[str, Any]],
    **context: Any
) -> Tuple[List[SourceRecord], int]:
    """
    Validate raw upstream rows, dropping the ones that cannot be staged.

    Args:
        record_cls: Record model for the dataset
        rows: Raw JSON rows
        **context: Extra mapping inputs (e.g. amenity category)

    Returns:
        Tuple of (valid records, rejected count)
    """
    records: List[SourceRecord] = []
    rejected = 0

    for idx, raw in enumerate(rows):
        try:
            if not isinstance(raw, dict):
                raise MalformedRecordError(record_cls.dataset, f"row is {type(raw).__name__}, not an object")
            records.append(record_cls.from_socrata(raw, **context))
        except Exception as e:
            # Any mapping failure rejects only this row
            rejected += 1
            logger.debug(
                "record_rejected",
                dataset=record_cls.dataset,
                index=idx,
                error_type=type(e).__name__,
                error=str(e)[:200]
            )

    if rejected:
        logger.warning(
            "records_rejected",
            dataset=record_cls.dataset,
            rejected=rejected,
            accepted=len(records)
        )

    return records, rejected
