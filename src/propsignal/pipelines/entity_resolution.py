"""
Entity Resolution Engine

Links raw staging records to canonical properties through tiers tried in
strict order:

1. exact: the record's BBL is a property BBL (confidence 1.0)
2. registry: the record's BBL is a condo unit whose base BBL is a property,
   or the record carries a base BBL that is a property (0.9)
3. address: normalized "ADDRESS|ZIP" key equals a property's key (0.7)
4. unmatched: persisted with no property (0.0)

Each run is a full recompute per source system: prior records are deleted
and rewritten from the current staging and canonical tables. The lookup
indexes are built per run and passed in explicitly.
"""
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy.orm import Session

from src.propsignal.db.models import (
    AcrisSale,
    CondoRegistryRecord,
    Complaint311,
    DobComplaint,
    DobPermit,
    HpdViolation,
)
from src.propsignal.db.repository import (
    EntityResolutionRepository,
    PropertyRepository,
    StagingRepository,
)
from src.propsignal.transformers.address_standardizer import AddressStandardizer
from src.propsignal.utils.logger import get_logger

logger = get_logger(__name__)

EXACT = "exact"
REGISTRY = "registry"
ADDRESS = "address"
UNMATCHED = "unmatched"

MATCH_CONFIDENCE = {
    EXACT: 1.0,
    REGISTRY: 0.9,
    ADDRESS: 0.7,
    UNMATCHED: 0.0,
}

# source_system -> staging model, in resolution order
SOURCE_SYSTEMS = {
    "condo_registry": CondoRegistryRecord,
    "dob_permits": DobPermit,
    "hpd_violations": HpdViolation,
    "dob_complaints": DobComplaint,
    "complaints_311": Complaint311,
    "acris_sales": AcrisSale,
}


@dataclass(frozen=True)
class ResolutionCandidate:
    """One staging record to resolve."""
    source_system: str
    source_record_id: str
    bbl: Optional[str] = None
    address: Optional[str] = None
    zip_code: Optional[str] = None
    base_bbl: Optional[str] = None


@dataclass(frozen=True)
class ResolutionRecord:
    """Resolution outcome for one candidate."""
    source_system: str
    source_record_id: str
    source_bbl: Optional[str]
    matched_property_id: Optional[str]
    match_type: str
    match_confidence: float
    match_metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_matched(self) -> bool:
        return self.matched_property_id is not None

    def to_row(self) -> Dict[str, Any]:
        return {
            "source_system": self.source_system,
            "source_record_id": self.source_record_id,
            "source_bbl": self.source_bbl,
            "matched_property_id": self.matched_property_id,
            "match_type": self.match_type,
            "match_confidence": self.match_confidence,
            "match_metadata": self.match_metadata,
        }


class PropertyIndex:
    """
    BBL and address-key lookups over canonical properties.

    When several properties share an address key, the lowest property id
    wins so repeated runs resolve identically.
    """

    def __init__(
        self,
        by_bbl: Dict[str, str],
        by_address: Dict[str, str],
        standardizer: Optional[AddressStandardizer] = None,
    ):
        self.by_bbl = by_bbl
        self.by_address = by_address
        self.standardizer = standardizer or AddressStandardizer()

    @classmethod
    def build(
        cls,
        rows: Iterable[Tuple[str, Optional[str], Optional[str], Optional[str]]],
        standardizer: Optional[AddressStandardizer] = None,
    ) -> "PropertyIndex":
        """
        Args:
            rows: (property_id, bbl, address, zip_code) tuples
        """
        standardizer = standardizer or AddressStandardizer()
        by_bbl: Dict[str, str] = {}
        by_address: Dict[str, str] = {}

        for property_id, bbl, address, zip_code in sorted(rows, key=lambda row: row[0]):
            if bbl:
                by_bbl.setdefault(bbl, property_id)
            key = standardizer.address_key(address, zip_code)
            if key:
                by_address.setdefault(key, property_id)

        logger.info("property_index_built", bbls=len(by_bbl), address_keys=len(by_address))
        return cls(by_bbl, by_address, standardizer)

    @classmethod
    def from_session(cls, session: Session) -> "PropertyIndex":
        return cls.build(PropertyRepository().get_index_rows(session))

    def property_for_bbl(self, bbl: Optional[str]) -> Optional[str]:
        return self.by_bbl.get(bbl) if bbl else None

    def property_for_address(self, address: Optional[str], zip_code: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
        """
        Returns:
            (property_id, address_key); either may be None
        """
        key = self.standardizer.address_key(address, zip_code)
        if not key:
            return None, None
        return self.by_address.get(key), key


class RegistryIndex:
    """Condo registry lookup: unit BBL -> base (billing) BBL."""

    def __init__(self, unit_to_base: Optional[Dict[str, str]] = None):
        self.unit_to_base = unit_to_base or {}

    @classmethod
    def build(cls, rows: Iterable[Tuple[Optional[str], Optional[str]]]) -> "RegistryIndex":
        """
        Args:
            rows: (unit_bbl, base_bbl) tuples
        """
        unit_to_base = {unit: base for unit, base in rows if unit and base}
        logger.info("registry_index_built", units=len(unit_to_base))
        return cls(unit_to_base)

    @classmethod
    def from_session(cls, session: Session) -> "RegistryIndex":
        rows = StagingRepository(CondoRegistryRecord).iter_rows(
            session, CondoRegistryRecord.bbl, CondoRegistryRecord.base_bbl
        )
        return cls.build(rows)

    def base_for(self, unit_bbl: Optional[str]) -> Optional[str]:
        return self.unit_to_base.get(unit_bbl) if unit_bbl else None

    def __len__(self) -> int:
        return len(self.unit_to_base)


def _record(candidate: ResolutionCandidate, property_id: Optional[str], match_type: str, **metadata) -> ResolutionRecord:
    return ResolutionRecord(
        source_system=candidate.source_system,
        source_record_id=candidate.source_record_id,
        source_bbl=candidate.bbl,
        matched_property_id=property_id,
        match_type=match_type,
        match_confidence=MATCH_CONFIDENCE[match_type],
        match_metadata=metadata,
    )


def resolve(
    candidate: ResolutionCandidate,
    property_index: PropertyIndex,
    registry_index: Optional[RegistryIndex] = None,
) -> ResolutionRecord:
    """
    Resolve one candidate. Never raises for a missing match.

    Args:
        candidate: Record to resolve
        property_index: Canonical property lookups
        registry_index: Condo unit -> base BBL lookups

    Returns:
        ResolutionRecord; match_confidence is fixed by match_type
    """
    property_id = property_index.property_for_bbl(candidate.bbl)
    if property_id:
        return _record(candidate, property_id, EXACT, key="bbl", bbl=candidate.bbl)

    base_bbl = candidate.base_bbl or (registry_index.base_for(candidate.bbl) if registry_index else None)
    property_id = property_index.property_for_bbl(base_bbl)
    if property_id:
        return _record(candidate, property_id, REGISTRY, key="base_bbl", base_bbl=base_bbl)

    property_id, address_key = property_index.property_for_address(candidate.address, candidate.zip_code)
    if property_id:
        return _record(candidate, property_id, ADDRESS, key="address_key", address_key=address_key)

    return _record(candidate, None, UNMATCHED, address_key=address_key)


@dataclass
class ResolutionStats:
    """Per-source-system outcome counts."""
    source_system: str
    by_type: Counter = field(default_factory=Counter)

    @property
    def total(self) -> int:
        return sum(self.by_type.values())

    @property
    def matched(self) -> int:
        return self.total - self.by_type.get(UNMATCHED, 0)

    @property
    def unmatched(self) -> int:
        return self.by_type.get(UNMATCHED, 0)

    @property
    def match_rate(self) -> float:
        """True ratio of matched to total; 0.0 for an empty source."""
        return self.matched / self.total if self.total else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source_system": self.source_system,
            "total": self.total,
            "matched": self.matched,
            "unmatched": self.unmatched,
            "match_rate": round(self.match_rate, 4),
            **{match_type: self.by_type.get(match_type, 0) for match_type in MATCH_CONFIDENCE},
        }


def load_candidates(session: Session, source_system: str) -> List[ResolutionCandidate]:
    """Read every staging record of one source system as candidates."""
    model = SOURCE_SYSTEMS[source_system]
    base_column = getattr(model, "base_bbl", None)
    columns = [model.source_id, model.bbl, model.address, model.zip_code]
    if base_column is not None:
        columns.append(base_column)

    candidates = []
    for row in StagingRepository(model).iter_rows(session, *columns):
        candidates.append(ResolutionCandidate(
            source_system=source_system,
            source_record_id=row[0],
            bbl=row[1],
            address=row[2],
            zip_code=row[3],
            base_bbl=row[4] if base_column is not None else None,
        ))
    return candidates


class EntityResolutionEngine:
    """
    Full-recompute resolution over the staging tables.
    """

    def __init__(self, repository: Optional[EntityResolutionRepository] = None):
        self.repository = repository or EntityResolutionRepository()

    def resolve_source(
        self,
        session: Session,
        source_system: str,
        property_index: PropertyIndex,
        registry_index: Optional[RegistryIndex] = None,
    ) -> ResolutionStats:
        """
        Replace every resolution record of one source system.

        Returns:
            Match counts for the source system
        """
        if source_system not in SOURCE_SYSTEMS:
            raise ValueError(f"Unknown source system: {source_system}")

        candidates = load_candidates(session, source_system)
        self.repository.clear_source_system(session, source_system)

        stats = ResolutionStats(source_system)
        rows = []
        for candidate in candidates:
            record = resolve(candidate, property_index, registry_index)
            stats.by_type[record.match_type] += 1
            rows.append(record.to_row())

        self.repository.bulk_insert(session, rows)

        logger.info("source_system_resolved", **stats.to_dict())
        return stats

    def resolve_all(
        self,
        session: Session,
        source_systems: Optional[Iterable[str]] = None,
        property_index: Optional[PropertyIndex] = None,
        registry_index: Optional[RegistryIndex] = None,
    ) -> Dict[str, ResolutionStats]:
        """
        Resolve every source system against one snapshot of the indexes.

        Returns:
            Stats keyed by source system
        """
        if property_index is None:
            property_index = PropertyIndex.from_session(session)
        if registry_index is None:
            registry_index = RegistryIndex.from_session(session)

        results = {}
        for source_system in (source_systems or SOURCE_SYSTEMS):
            results[source_system] = self.resolve_source(
                session, source_system, property_index, registry_index
            )

        total = sum(stats.total for stats in results.values())
        matched = sum(stats.matched for stats in results.values())
        logger.info(
            "entity_resolution_completed",
            sources=len(results),
            total=total,
            matched=matched,
            unmatched=total - matched,
            match_rate=round(matched / total, 4) if total else 0.0,
        )
        return results
