"""
ETL Loaders

Move fetched open-data pages into the staging tables. Each page is
validated through its record model, malformed rows are counted and
dropped, and the rest is inserted with skip-on-conflict so re-imports
never duplicate rows.
"""
from datetime import date
from typing import Any, Callable, ContextManager, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from src.propsignal.db.models import FloodZone
from src.propsignal.db.repository import DataIngestionRunRepository, StagingRepository
from src.propsignal.enrichers.flood_zones import seed_flood_zone_records
from src.propsignal.errors import TransientFetchError
from src.propsignal.models.records import parse_records
from src.propsignal.scrapers.datasets import DatasetSpec
from src.propsignal.scrapers.socrata_fetcher import SocrataFetcher
from src.propsignal.utils.logger import get_logger

logger = get_logger(__name__)

SessionScope = Callable[[], ContextManager[Session]]


def _empty_stats() -> Dict[str, int]:
    return {
        'fetched': 0,
        'inserted': 0,
        'skipped': 0,
        'rejected': 0,
    }


class StagingLoader:
    """
    Load dataset pages into staging tables.

    Every page is committed in its own session scope so rows landed before
    a fetch failure are kept; the next run skips them on conflict.
    """

    def __init__(self, session_scope: SessionScope, fetcher: Optional[SocrataFetcher] = None):
        """
        Args:
            session_scope: Context manager factory yielding a committed session
            fetcher: Socrata fetcher (constructed from settings when omitted)
        """
        self.session_scope = session_scope
        self.fetcher = fetcher or SocrataFetcher()
        self.run_repo = DataIngestionRunRepository()
        logger.info("staging_loader_initialized")

    def load_page(self, session: Session, spec: DatasetSpec, rows: List[Dict[str, Any]]) -> Dict[str, int]:
        """
        Validate and insert one page.

        Returns:
            Stats dict with fetched, inserted, skipped and rejected counts
        """
        records, rejected = parse_records(spec.record_cls, rows, **spec.context)
        inserted = StagingRepository(spec.staging_model).insert_skip_duplicates(
            session, [record.to_row() for record in records]
        )
        return {
            'fetched': len(rows),
            'inserted': inserted,
            'skipped': len(records) - inserted,
            'rejected': rejected,
        }

    async def import_dataset(self, spec: DatasetSpec, as_of: date) -> Dict[str, Any]:
        """
        Fetch and stage one dataset, tracked as an ingestion run.

        A fetch that exhausts its retries, or any other non-store error, fails
        only this dataset: the run is marked failed and the stats are returned
        instead of raising. Store errors mark the run failed and propagate.

        Returns:
            Stats dict plus "dataset", "status" and "error"
        """
        with self.session_scope() as session:
            run_id = self.run_repo.create_run(session, spec.name).id

        stats = _empty_stats()
        error = None
        store_error = None
        since = spec.since_date(as_of)

        try:
            async for page in self.fetcher.iter_pages(spec, since):
                with self.session_scope() as session:
                    page_stats = self.load_page(session, spec, page)
                for key, value in page_stats.items():
                    stats[key] += value
        except TransientFetchError as e:
            error = str(e)
            logger.error(
                "dataset_import_failed",
                dataset=spec.name,
                offset=e.offset,
                attempts=e.attempts,
                error=error
            )
        except SQLAlchemyError as e:
            error = str(e)
            store_error = e
            logger.error("dataset_import_store_error", dataset=spec.name, error=error, error_type=type(e).__name__)
        except Exception as e:
            error = f"{type(e).__name__}: {e}"
            logger.error("dataset_import_failed", dataset=spec.name, error=error, error_type=type(e).__name__)

        if error:
            status = 'failure'
        elif stats['rejected']:
            status = 'partial'
        else:
            status = 'success'

        with self.session_scope() as session:
            self.run_repo.complete_run(
                session,
                run_id,
                status=status,
                records_processed=stats['fetched'],
                records_inserted=stats['inserted'],
                records_skipped=stats['skipped'],
                records_failed=stats['rejected'],
                error_message=error,
                run_metadata={'since': since.isoformat() if since else None},
            )

        if store_error is not None:
            raise store_error

        logger.info("dataset_import_completed", dataset=spec.name, status=status, **stats)
        return {'dataset': spec.name, 'status': status, 'error': error, **stats}

    def seed_flood_zones(self, session: Session) -> int:
        """
        Insert the flood zone reference rows if missing.

        Returns:
            Number of rows inserted (0 when already seeded)
        """
        rows = [record.to_row() for record in seed_flood_zone_records()]
        inserted = StagingRepository(FloodZone).insert_skip_duplicates(session, rows)
        logger.info("flood_zones_seeded", offered=len(rows), inserted=inserted)
        return inserted
