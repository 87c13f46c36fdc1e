"""
Condo Unit Enrichment

Builds the buildings/condo_units hierarchy from the condo registry and
writes unit designations back onto canonical properties.
"""
from collections import defaultdict
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, select
from sqlalchemy.orm import Session

from src.propsignal.db.models import CondoRegistryRecord, EntityResolutionRecord, Property
from src.propsignal.db.repository import BuildingRepository, PropertyRepository, StagingRepository
from src.propsignal.transformers.address_standardizer import AddressStandardizer
from src.propsignal.transformers.bbl import borough_name
from src.propsignal.utils.logger import get_logger

logger = get_logger(__name__)

CONDO_SOURCE_SYSTEM = "condo_registry"


def _mean(values: List[float]) -> Optional[float]:
    return sum(values) / len(values) if values else None


class UnitEnrichmentPipeline:
    """
    Registry-driven enrichment, run after staging and before signals.

    Buildings are always written before their units so every unit's base
    BBL references an existing building.
    """

    def __init__(self):
        self.building_repo = BuildingRepository()
        self.property_repo = PropertyRepository()
        self.registry_repo = StagingRepository(CondoRegistryRecord)

    def build_buildings(self, registry_rows: List[CondoRegistryRecord]) -> List[Dict[str, Any]]:
        """
        Group registry rows by base BBL into building dictionaries.

        Rows without a base BBL are skipped.
        """
        grouped: Dict[str, List[CondoRegistryRecord]] = defaultdict(list)
        for row in registry_rows:
            if row.base_bbl:
                grouped[row.base_bbl].append(row)

        buildings = []
        for base_bbl in sorted(grouped):
            units = sorted(grouped[base_bbl], key=lambda unit: unit.bbl or "")
            buildings.append({
                "base_bbl": base_bbl,
                "condo_number": next((u.condo_number for u in units if u.condo_number), None),
                "display_address": next((u.address for u in units if u.address), None),
                "zip_code": next((u.zip_code for u in units if u.zip_code), None),
                "borough": borough_name(base_bbl[0]),
                "latitude": _mean([u.latitude for u in units if u.latitude is not None]),
                "longitude": _mean([u.longitude for u in units if u.longitude is not None]),
                "unit_count": len(units),
            })
        return buildings

    def build_units(
        self,
        registry_rows: List[CondoRegistryRecord],
        property_ids_by_bbl: Dict[str, str]
    ) -> List[Dict[str, Any]]:
        units = []
        for row in registry_rows:
            if not row.base_bbl or not row.bbl:
                continue
            units.append({
                "unit_bbl": row.bbl,
                "base_bbl": row.base_bbl,
                "unit_designation": AddressStandardizer.clean_unit_designation(row.unit_designation),
                "property_id": property_ids_by_bbl.get(row.bbl),
            })
        return units

    def populate_hierarchy(self, session: Session) -> Dict[str, int]:
        """
        Upsert buildings, then condo units, from the staged registry.

        Returns:
            {"buildings": n, "units": n, "skipped": n}
        """
        registry_rows = self.registry_repo.iter_rows(session)
        property_ids_by_bbl = {
            bbl: property_id
            for property_id, bbl, _, _ in self.property_repo.get_index_rows(session)
            if bbl
        }

        buildings = self.build_buildings(registry_rows)
        units = self.build_units(registry_rows, property_ids_by_bbl)

        self.building_repo.upsert_buildings(session, buildings)
        self.building_repo.upsert_units(session, units)

        result = {
            "buildings": len(buildings),
            "units": len(units),
            "skipped": len(registry_rows) - len(units),
        }
        logger.info("condo_hierarchy_populated", **result)
        return result

    def write_back_units(self, session: Session) -> int:
        """
        Copy registry unit designations onto exactly-matched properties.

        Only properties whose unit is still null are touched; empty, "-" and
        "0" designations are ignored.

        Returns:
            Number of properties updated
        """
        query = (
            select(EntityResolutionRecord.matched_property_id, CondoRegistryRecord.unit_designation)
            .join(
                CondoRegistryRecord,
                CondoRegistryRecord.source_id == EntityResolutionRecord.source_record_id,
            )
            .join(Property, Property.id == EntityResolutionRecord.matched_property_id)
            .where(
                and_(
                    EntityResolutionRecord.source_system == CONDO_SOURCE_SYSTEM,
                    EntityResolutionRecord.match_type == "exact",
                    Property.unit.is_(None),
                )
            )
            .order_by(EntityResolutionRecord.source_record_id)
        )

        updated = 0
        ignored = 0
        for property_id, designation in session.execute(query).all():
            unit = AddressStandardizer.clean_unit_designation(designation)
            if not unit:
                ignored += 1
                continue
            if self.property_repo.set_unit_if_missing(session, property_id, unit):
                updated += 1

        session.flush()
        logger.info("property_units_written", updated=updated, ignored=ignored)
        return updated
