"""
Repository Pattern for Data Access

Data access for canonical, staging, resolution and summary tables.
Repositories never commit; the caller's session scope owns the transaction.
"""
from datetime import datetime
from typing import List, Optional, Dict, Any, Type, TypeVar, Iterable

from sqlalchemy import select, update, delete, func, and_, desc, case
from sqlalchemy.orm import Session

from config.settings import settings
from src.propsignal.db.models import (
    Property,
    Building,
    CondoUnit,
    EntityResolutionRecord,
    PropertySignalSummary,
    MarketAggregate,
    DataIngestionRun,
)
from src.propsignal.db.utils import dialect_insert, chunked
from src.propsignal.utils.geo_utils import grid_cell
from src.propsignal.utils.logger import get_logger

logger = get_logger(__name__)

T = TypeVar('T')


class BaseRepository:
    """Lookup, create and count for one model class."""

    def __init__(self, model: Type[T]):
        self.model = model
        logger.debug("repository_initialized", model=model.__name__)

    def get_by_id(self, session: Session, id_value: Any) -> Optional[T]:
        """
        Get single record by primary key.

        Args:
            session: Database session
            id_value: Primary key value

        Returns:
            Model instance or None
        """
        result = session.get(self.model, id_value)
        logger.debug(
            "repository_get_by_id",
            model=self.model.__name__,
            id=id_value,
            found=result is not None
        )
        return result

    def create(self, session: Session, **kwargs) -> T:
        """
        Create new record.

        Args:
            session: Database session
            **kwargs: Model field values

        Returns:
            Created model instance
        """
        instance = self.model(**kwargs)
        session.add(instance)
        session.flush()
        logger.debug("repository_created", model=self.model.__name__, id=getattr(instance, 'id', None))
        return instance

    def count(self, session: Session) -> int:
        """
        Count total records.

        Args:
            session: Database session

        Returns:
            Total count
        """
        count = session.scalar(select(func.count()).select_from(self.model))
        logger.debug("repository_count", model=self.model.__name__, count=count)
        return count


class StagingRepository(BaseRepository):
    """
    Repository for raw staging tables.

    Rows are inserted with ON CONFLICT (source_id) DO NOTHING so re-fetching
    the same upstream records never duplicates them.
    """

    def insert_skip_duplicates(
        self,
        session: Session,
        rows: List[Dict[str, Any]],
        chunk_size: Optional[int] = None
    ) -> int:
        """
        Insert rows, skipping any whose source_id already exists.

        Args:
            session: Database session
            rows: Column dictionaries (all with the same keys)
            chunk_size: Rows per INSERT statement

        Returns:
            Number of rows actually inserted
        """
        if not rows:
            return 0

        chunk_size = chunk_size or settings.etl_insert_chunk_size
        inserted = 0

        # Duplicates inside one page would otherwise conflict within a single statement
        unique_rows = list({row["source_id"]: row for row in rows}.values())

        for batch in chunked(unique_rows, chunk_size):
            stmt = dialect_insert(session, self.model).values(batch)
            stmt = stmt.on_conflict_do_nothing(index_elements=["source_id"])
            result = session.execute(stmt)
            inserted += max(result.rowcount or 0, 0)

        session.flush()
        logger.debug(
            "staging_rows_inserted",
            model=self.model.__name__,
            offered=len(rows),
            inserted=inserted
        )
        return inserted

    def iter_rows(self, session: Session, *columns) -> List[Any]:
        """Select the given columns (or whole rows) from the staging table."""
        if columns:
            return session.execute(select(*columns)).all()
        return session.execute(select(self.model)).scalars().all()


class PropertyRepository(BaseRepository):
    """Repository for Property model with specialized queries."""

    def __init__(self):
        super().__init__(Property)

    def get_by_bbl(self, session: Session, bbl: str) -> Optional[Property]:
        return session.execute(select(Property).where(Property.bbl == bbl)).scalar_one_or_none()

    def get_index_rows(self, session: Session) -> List[Any]:
        """
        Rows needed to build the resolution indexes.

        Returns:
            (id, bbl, address, zip_code) tuples
        """
        query = select(Property.id, Property.bbl, Property.address, Property.zip_code)
        return session.execute(query).all()

    def get_missing_coordinates(self, session: Session, limit: Optional[int] = None) -> List[Property]:
        """
        Properties without coordinates.

        Args:
            session: Database session
            limit: Maximum number of records

        Returns:
            List of properties lacking latitude or longitude
        """
        query = select(Property).where(
            (Property.latitude.is_(None)) | (Property.longitude.is_(None))
        ).order_by(Property.id)
        if limit:
            query = query.limit(limit)
        return session.execute(query).scalars().all()

    def get_with_coordinates(self, session: Session) -> List[Property]:
        """
        Get properties that have coordinates.
        """
        query = select(Property).where(
            and_(
                Property.latitude.isnot(None),
                Property.longitude.isnot(None)
            )
        )
        return session.execute(query).scalars().all()

    def bbl_in_use(self, session: Session, bbl: str) -> bool:
        return session.scalar(
            select(func.count()).select_from(Property).where(Property.bbl == bbl)
        ) > 0

    def set_unit_if_missing(self, session: Session, property_id: str, unit: str) -> bool:
        """
        Write a unit designation only when the property has none.

        Returns:
            True if the row was updated
        """
        result = session.execute(
            update(Property)
            .where(and_(Property.id == property_id, Property.unit.is_(None)))
            .values(unit=unit)
        )
        return (result.rowcount or 0) > 0

    def refresh_grid_cells(self, session: Session) -> int:
        """
        Recompute grid_lat/grid_lng for every property with coordinates.

        Returns:
            Number of properties whose cell changed
        """
        changed = 0
        for prop in self.get_with_coordinates(session):
            try:
                cell = grid_cell(prop.latitude, prop.longitude)
            except (ValueError, OverflowError):
                logger.warning("grid_cell_invalid_coordinates", property_id=prop.id)
                continue
            if (prop.grid_lat, prop.grid_lng) != cell:
                prop.grid_lat, prop.grid_lng = cell
                changed += 1

        session.flush()
        logger.info("property_grid_cells_refreshed", changed=changed)
        return changed

    def set_opportunity(
        self,
        session: Session,
        property_id: str,
        score: int,
        confidence_level: str
    ) -> None:
        session.execute(
            update(Property)
            .where(Property.id == property_id)
            .values(opportunity_score=score, confidence_level=confidence_level)
        )

    def clear_opportunity(self, session: Session, property_ids: List[str]) -> int:
        """
        Null the opportunity columns of properties whose signals failed.

        Returns:
            Number of properties updated
        """
        if not property_ids:
            return 0
        result = session.execute(
            update(Property)
            .where(Property.id.in_(property_ids))
            .values(opportunity_score=None, confidence_level=None)
        )
        return result.rowcount or 0


class BuildingRepository(BaseRepository):
    """Repository for Building aggregates and their condo units."""

    def __init__(self):
        super().__init__(Building)

    def upsert_buildings(self, session: Session, buildings: List[Dict[str, Any]]) -> int:
        """
        Insert or update building aggregates by base BBL.

        Args:
            session: Database session
            buildings: Building dictionaries (must include base_bbl)

        Returns:
            Number of buildings processed
        """
        if not buildings:
            return 0

        for batch in chunked(buildings, settings.etl_insert_chunk_size):
            stmt = dialect_insert(session, Building).values(batch)
            stmt = stmt.on_conflict_do_update(
                index_elements=['base_bbl'],
                set_={
                    'condo_number': stmt.excluded.condo_number,
                    'display_address': stmt.excluded.display_address,
                    'zip_code': stmt.excluded.zip_code,
                    'borough': stmt.excluded.borough,
                    'latitude': stmt.excluded.latitude,
                    'longitude': stmt.excluded.longitude,
                    'unit_count': stmt.excluded.unit_count,
                    'updated_at': func.now(),
                }
            )
            session.execute(stmt)

        session.flush()
        logger.info("buildings_upserted", count=len(buildings))
        return len(buildings)

    def upsert_units(self, session: Session, units: List[Dict[str, Any]]) -> int:
        """
        Insert or update condo units by unit BBL.

        Callers must upsert the owning buildings first.
        """
        if not units:
            return 0

        for batch in chunked(units, settings.etl_insert_chunk_size):
            stmt = dialect_insert(session, CondoUnit).values(batch)
            stmt = stmt.on_conflict_do_update(
                index_elements=['unit_bbl'],
                set_={
                    'base_bbl': stmt.excluded.base_bbl,
                    'unit_designation': stmt.excluded.unit_designation,
                    'property_id': stmt.excluded.property_id,
                    'updated_at': func.now(),
                }
            )
            session.execute(stmt)

        session.flush()
        logger.info("condo_units_upserted", count=len(units))
        return len(units)


class EntityResolutionRepository(BaseRepository):
    """Repository for the entity resolution map."""

    def __init__(self):
        super().__init__(EntityResolutionRecord)

    def clear_source_system(self, session: Session, source_system: str) -> int:
        """
        Delete every resolution record of one source system.

        Returns:
            Number of rows deleted
        """
        result = session.execute(
            delete(EntityResolutionRecord).where(
                EntityResolutionRecord.source_system == source_system
            )
        )
        deleted = result.rowcount or 0
        logger.info("resolution_records_cleared", source_system=source_system, deleted=deleted)
        return deleted

    def bulk_insert(self, session: Session, records: Iterable[Dict[str, Any]]) -> int:
        """Insert resolution rows in chunks."""
        total = 0
        for batch in chunked(records, settings.etl_insert_chunk_size):
            session.execute(dialect_insert(session, EntityResolutionRecord).values(batch))
            total += len(batch)
        session.flush()
        return total

    def get_for_source(self, session: Session, source_system: str) -> List[EntityResolutionRecord]:
        query = (
            select(EntityResolutionRecord)
            .where(EntityResolutionRecord.source_system == source_system)
            .order_by(EntityResolutionRecord.source_record_id)
        )
        return session.execute(query).scalars().all()

    def get_match_stats(self, session: Session) -> List[Dict[str, Any]]:
        """
        Match counts grouped by source system and match type.

        Returns:
            List of {source_system, match_type, count, avg_confidence}
        """
        query = (
            select(
                EntityResolutionRecord.source_system,
                EntityResolutionRecord.match_type,
                func.count().label("count"),
                func.avg(EntityResolutionRecord.match_confidence).label("avg_confidence"),
            )
            .group_by(EntityResolutionRecord.source_system, EntityResolutionRecord.match_type)
            .order_by(EntityResolutionRecord.source_system, EntityResolutionRecord.match_type)
        )
        return [
            {
                "source_system": row.source_system,
                "match_type": row.match_type,
                "count": row.count,
                "avg_confidence": float(row.avg_confidence or 0.0),
            }
            for row in session.execute(query).all()
        ]

    def count_matched(self, session: Session) -> Dict[str, int]:
        matched = func.sum(
            case((EntityResolutionRecord.matched_property_id.isnot(None), 1), else_=0)
        )
        row = session.execute(
            select(func.count().label("total"), matched.label("matched"))
            .select_from(EntityResolutionRecord)
        ).one()
        total = row.total or 0
        matched_count = int(row.matched or 0)
        return {"total": total, "matched": matched_count, "unmatched": total - matched_count}


class SignalSummaryRepository(BaseRepository):
    """Repository for PropertySignalSummary rows."""

    def __init__(self):
        super().__init__(PropertySignalSummary)

    def get_by_property_id(self, session: Session, property_id: str) -> Optional[PropertySignalSummary]:
        query = select(PropertySignalSummary).where(PropertySignalSummary.property_id == property_id)
        return session.execute(query).scalar_one_or_none()

    def upsert(self, session: Session, summary: Dict[str, Any]) -> None:
        """
        Insert or fully replace the summary row of one property.

        Args:
            session: Database session
            summary: Column values (must include property_id)
        """
        if not summary.get("property_id"):
            raise ValueError("property_id is required for upsert")

        stmt = dialect_insert(session, PropertySignalSummary).values(**summary)
        stmt = stmt.on_conflict_do_update(
            index_elements=['property_id'],
            set_={k: v for k, v in summary.items() if k != 'property_id'}
        )
        session.execute(stmt)

    def bulk_upsert(self, session: Session, summaries: List[Dict[str, Any]]) -> int:
        for summary in summaries:
            self.upsert(session, summary)
        session.flush()
        logger.info("signal_summaries_upserted", count=len(summaries))
        return len(summaries)

    def delete_for_properties(self, session: Session, property_ids: List[str]) -> int:
        """
        Drop the summaries of the given properties.

        Returns:
            Number of rows deleted
        """
        if not property_ids:
            return 0
        result = session.execute(
            delete(PropertySignalSummary).where(PropertySignalSummary.property_id.in_(property_ids))
        )
        deleted = result.rowcount or 0
        logger.info("signal_summaries_deleted", requested=len(property_ids), deleted=deleted)
        return deleted


class MarketAggregateRepository(BaseRepository):
    """Repository for market aggregates."""

    def __init__(self):
        super().__init__(MarketAggregate)

    def upsert(self, session: Session, aggregate: Dict[str, Any]) -> None:
        stmt = dialect_insert(session, MarketAggregate).values(**aggregate)
        stmt = stmt.on_conflict_do_update(
            index_elements=['geo_type', 'geo_id'],
            set_={
                'median_price_per_sqft': stmt.excluded.median_price_per_sqft,
                'transaction_count': stmt.excluded.transaction_count,
                'trend_12m': stmt.excluded.trend_12m,
                'computed_at': stmt.excluded.computed_at,
                'updated_at': func.now(),
            }
        )
        session.execute(stmt)

    def get_index(self, session: Session, geo_type: str = "zip") -> Dict[str, MarketAggregate]:
        """Aggregates of one geography type keyed by geo_id."""
        query = select(MarketAggregate).where(MarketAggregate.geo_type == geo_type)
        return {row.geo_id: row for row in session.execute(query).scalars().all()}


class DataIngestionRunRepository(BaseRepository):
    """Repository for DataIngestionRun model (ETL tracking)."""

    def __init__(self):
        super().__init__(DataIngestionRun)

    def create_run(
        self,
        session: Session,
        source_type: str,
        started_at: Optional[datetime] = None
    ) -> DataIngestionRun:
        """
        Create new ingestion run.

        Args:
            session: Database session
            source_type: Dataset name or stage:<name>
            started_at: Start timestamp (defaults to now)

        Returns:
            DataIngestionRun instance
        """
        if started_at is None:
            started_at = datetime.now()

        run = DataIngestionRun(
            source_type=source_type,
            status='running',
            started_at=started_at
        )

        session.add(run)
        session.flush()

        logger.info("ingestion_run_created", run_id=run.id, source_type=source_type)
        return run

    def complete_run(
        self,
        session: Session,
        run_id: int,
        status: str,
        records_processed: int = 0,
        records_inserted: int = 0,
        records_skipped: int = 0,
        records_failed: int = 0,
        error_message: Optional[str] = None,
        run_metadata: Optional[Dict] = None
    ) -> DataIngestionRun:
        """
        Mark ingestion run as complete.

        Args:
            session: Database session
            run_id: Run ID
            status: Final status (success, failure, partial)
            records_processed: Total records processed
            records_inserted: Records inserted
            records_skipped: Records already present
            records_failed: Records rejected or failed
            error_message: Error message if failed
            run_metadata: Structured run details

        Returns:
            Updated DataIngestionRun instance
        """
        run = self.get_by_id(session, run_id)
        if not run:
            raise ValueError(f"DataIngestionRun {run_id} not found")

        run.status = status
        run.records_processed = records_processed
        run.records_inserted = records_inserted
        run.records_skipped = records_skipped
        run.records_failed = records_failed
        run.error_message = error_message
        run.run_metadata = run_metadata
        run.completed_at = datetime.now()

        session.flush()

        logger.info(
            "ingestion_run_completed",
            run_id=run_id,
            source_type=run.source_type,
            status=status,
            processed=records_processed,
            inserted=records_inserted,
            skipped=records_skipped,
            failed=records_failed
        )

        return run

    def get_recent_runs(
        self,
        session: Session,
        source_type: Optional[str] = None,
        limit: int = 10
    ) -> List[DataIngestionRun]:
        """
        Get recent ingestion runs.

        Args:
            session: Database session
            source_type: Filter by source type (optional)
            limit: Maximum number of runs

        Returns:
            List of ingestion runs
        """
        query = select(DataIngestionRun).order_by(desc(DataIngestionRun.started_at))

        if source_type:
            query = query.where(DataIngestionRun.source_type == source_type)

        query = query.limit(limit)

        return session.execute(query).scalars().all()
