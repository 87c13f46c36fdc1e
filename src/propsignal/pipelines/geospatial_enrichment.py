"""
Geospatial Enrichment

Fills property coordinates and normalized addresses ahead of signal
computation: PLUTO coordinates by BBL first, then the geocoder (when
configured) for whatever is still missing, then rule-based normalized
addresses and grid cells.
"""
from typing import Callable, ContextManager, Dict, List, Optional, Tuple

from sqlalchemy import and_, select
from sqlalchemy.orm import Session

from src.propsignal.db.models import PlutoLot, Property
from src.propsignal.db.repository import PropertyRepository
from src.propsignal.enrichers.address_normalizer import AddressNormalizer
from src.propsignal.models.addresses import GEOCLIENT_METHOD
from src.propsignal.utils.logger import get_logger

logger = get_logger(__name__)

SessionScope = Callable[[], ContextManager[Session]]


class GeospatialEnrichment:
    """EnrichGeospatial stage steps."""

    def __init__(self, normalizer: Optional[AddressNormalizer] = None):
        self.normalizer = normalizer or AddressNormalizer()
        self.property_repo = PropertyRepository()

    def backfill_from_pluto(self, session: Session) -> int:
        """
        Copy PLUTO lot coordinates onto properties that lack them.

        Returns:
            Number of properties updated
        """
        query = (
            select(Property, PlutoLot.latitude, PlutoLot.longitude)
            .join(PlutoLot, PlutoLot.bbl == Property.bbl)
            .where(
                and_(
                    (Property.latitude.is_(None)) | (Property.longitude.is_(None)),
                    PlutoLot.latitude.isnot(None),
                    PlutoLot.longitude.isnot(None),
                )
            )
        )

        updated = 0
        for prop, latitude, longitude in session.execute(query).all():
            prop.latitude = latitude
            prop.longitude = longitude
            updated += 1

        session.flush()
        logger.info("pluto_coordinates_backfilled", updated=updated)
        return updated

    def geocode_candidates(self, session: Session) -> List[Tuple[str, str, str]]:
        """
        Properties still missing coordinates that can be geocoded.

        Returns:
            (property_id, address, borough_or_zip) tuples; the ZIP is
            preferred, otherwise the BBL's borough digit
        """
        candidates = []
        for prop in self.property_repo.get_missing_coordinates(session):
            if not prop.address:
                continue
            location = prop.zip_code or (prop.bbl[0] if prop.bbl else None)
            if location:
                candidates.append((prop.id, prop.address, location))
        return candidates

    async def geocode_missing(self, session_scope: SessionScope) -> Dict[str, int]:
        """
        Geocode properties without coordinates.

        Reads candidates and writes results in separate session scopes so
        no transaction stays open while requests are in flight.

        Returns:
            {"candidates": n, "geocoded": n, "bbl_assigned": n}
        """
        if not self.normalizer.geocoding_enabled:
            logger.info("geocoding_skipped_not_configured")
            return {"candidates": 0, "geocoded": 0, "bbl_assigned": 0}

        with session_scope() as session:
            candidates = self.geocode_candidates(session)

        if not candidates:
            return {"candidates": 0, "geocoded": 0, "bbl_assigned": 0}

        results = await self.normalizer.normalize_batch(
            [(address, location) for _, address, location in candidates]
        )

        geocoded = 0
        bbl_assigned = 0
        assigned_bbls = set()
        with session_scope() as session:
            for (property_id, _, _), result in zip(candidates, results):
                if result.method != GEOCLIENT_METHOD or result.latitude is None or result.longitude is None:
                    continue
                prop = session.get(Property, property_id)
                if prop is None:
                    continue

                prop.latitude = result.latitude
                prop.longitude = result.longitude
                prop.normalized_address = result.normalized_address
                if result.bin:
                    prop.bin = result.bin
                geocoded += 1

                if (
                    not prop.bbl
                    and result.bbl
                    and result.bbl not in assigned_bbls
                    and not self.property_repo.bbl_in_use(session, result.bbl)
                ):
                    prop.bbl = result.bbl
                    assigned_bbls.add(result.bbl)
                    bbl_assigned += 1

            session.flush()

        stats = {"candidates": len(candidates), "geocoded": geocoded, "bbl_assigned": bbl_assigned}
        logger.info("properties_geocoded", **stats)
        return stats

    def fill_normalized_addresses(self, session: Session) -> int:
        """Rule-based normalized_address for properties that have none."""
        query = select(Property).where(
            and_(Property.address.isnot(None), Property.normalized_address.is_(None))
        )

        filled = 0
        for prop in session.execute(query).scalars().all():
            normalized = self.normalizer.rule_based(prop.address, prop.zip_code).normalized_address
            if normalized:
                prop.normalized_address = normalized
                filled += 1

        session.flush()
        logger.info("normalized_addresses_filled", filled=filled)
        return filled
