"""
Batch Orchestrator

Runs the pipeline as a linear state machine:

    FETCH_ALL -> RESOLVE_ALL -> ENRICH_GEOSPATIAL -> COMPUTE_SIGNALS -> DONE

Every stage re-reads its inputs from persisted tables, so a run may start
at any stage without re-fetching data that already landed. Each stage logs
entity counts in and out and is recorded as a data_ingestion_runs row with
source_type "stage:<name>".
"""
import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Callable, ContextManager, Dict, Iterable, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config.settings import settings
from src.propsignal.db.models import (
    Amenity,
    Complaint311,
    DobComplaint,
    DobPermit,
    FloodZone,
    HpdViolation,
    SubwayStation,
)
from src.propsignal.db.repository import (
    DataIngestionRunRepository,
    PropertyRepository,
    SignalSummaryRepository,
    StagingRepository,
)
from src.propsignal.db.session import with_retry
from src.propsignal.enrichers.address_normalizer import AddressNormalizer
from src.propsignal.etl.loaders import StagingLoader
from src.propsignal.pipelines.entity_resolution import EntityResolutionEngine
from src.propsignal.pipelines.geospatial_enrichment import GeospatialEnrichment
from src.propsignal.pipelines.sale_matching import SaleWriteBack
from src.propsignal.pipelines.signal_computation import SignalComputationPipeline
from src.propsignal.pipelines.unit_enrichment import UnitEnrichmentPipeline
from src.propsignal.scrapers.datasets import DatasetSpec, get_datasets
from src.propsignal.scrapers.socrata_fetcher import SocrataFetcher
from src.propsignal.utils.logger import bind_run_context, clear_run_context, get_logger

logger = get_logger(__name__)

SessionScope = Callable[[], ContextManager[Session]]

# Staging tables that must hold rows before signals are meaningful
REQUIRED_STAGING_TABLES = (
    SubwayStation,
    Amenity,
    FloodZone,
    HpdViolation,
    DobComplaint,
    DobPermit,
    Complaint311,
)


def _failed_import(name: str, error: BaseException) -> Dict[str, Any]:
    return {"dataset": name, "status": "failure", "error": str(error),
            "fetched": 0, "inserted": 0, "skipped": 0, "rejected": 0}


class PipelineStage(str, Enum):
    FETCH_ALL = "fetch_all"
    RESOLVE_ALL = "resolve_all"
    ENRICH_GEOSPATIAL = "enrich_geospatial"
    COMPUTE_SIGNALS = "compute_signals"
    DONE = "done"


STAGE_ORDER = [
    PipelineStage.FETCH_ALL,
    PipelineStage.RESOLVE_ALL,
    PipelineStage.ENRICH_GEOSPATIAL,
    PipelineStage.COMPUTE_SIGNALS,
    PipelineStage.DONE,
]


@dataclass
class SyncDecision:
    """Whether a full refresh is needed, and why."""
    needed: bool
    reasons: List[str] = field(default_factory=list)


@dataclass
class StageResult:
    """Counts and details reported by one stage."""
    stage: PipelineStage
    count_in: int = 0
    count_out: int = 0
    failed: int = 0
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def status(self) -> str:
        return "partial" if self.failed else "success"


@dataclass
class PipelineRunResult:
    """Outcome of one orchestrator run."""
    run_id: str
    skipped: bool
    sync: Optional[SyncDecision] = None
    stages: List[StageResult] = field(default_factory=list)
    final_stage: PipelineStage = PipelineStage.DONE

    def stage(self, stage: PipelineStage) -> Optional[StageResult]:
        return next((result for result in self.stages if result.stage == stage), None)


class BatchOrchestrator:
    """
    Drives one pipeline run.

    One orchestrator instance should run at a time; resolution is a full
    recompute that is not isolated from concurrent canonical writes.
    """

    def __init__(
        self,
        session_scope: SessionScope,
        fetcher: Optional[SocrataFetcher] = None,
        normalizer: Optional[AddressNormalizer] = None,
        datasets: Optional[Dict[str, DatasetSpec]] = None,
        as_of: Optional[date] = None,
        max_concurrent_datasets: Optional[int] = None,
    ):
        """
        Args:
            session_scope: Context manager factory yielding a committed session
            fetcher: Socrata fetcher for the FETCH_ALL stage
            normalizer: Address normalizer for ENRICH_GEOSPATIAL
            datasets: Datasets to fetch (all registered datasets by default)
            as_of: Reference date for incremental windows and trailing counts
            max_concurrent_datasets: Datasets fetched at the same time
        """
        self.session_scope = session_scope
        self.loader = StagingLoader(session_scope, fetcher)
        self.datasets = datasets if datasets is not None else get_datasets()
        self.as_of = as_of or date.today()
        self.max_concurrent_datasets = max_concurrent_datasets or settings.etl_max_concurrent_datasets

        self.resolution_engine = EntityResolutionEngine()
        self.unit_enrichment = UnitEnrichmentPipeline()
        self.sale_write_back = SaleWriteBack()
        self.geospatial = GeospatialEnrichment(normalizer)
        self.signals = SignalComputationPipeline()
        self.run_repo = DataIngestionRunRepository()

    def needs_sync(self, session: Session) -> SyncDecision:
        """
        Decide whether a full pipeline run is needed.

        A run is needed when any required staging table is empty or when
        some property has no signal summary.
        """
        reasons = []
        for model in REQUIRED_STAGING_TABLES:
            if StagingRepository(model).count(session) == 0:
                reasons.append(f"{model.__tablename__} is empty")

        properties = PropertyRepository().count(session)
        summaries = SignalSummaryRepository().count(session)
        if summaries < properties:
            reasons.append(f"{properties - summaries} properties lack signal summaries")

        decision = SyncDecision(needed=bool(reasons), reasons=reasons)
        logger.info("needs_sync_checked", needed=decision.needed, reasons=reasons)
        return decision

    async def run(
        self,
        start_stage: PipelineStage = PipelineStage.FETCH_ALL,
        force: bool = False
    ) -> PipelineRunResult:
        """
        Run every stage from start_stage through COMPUTE_SIGNALS.

        A full run (starting at FETCH_ALL) is skipped when needs_sync says
        nothing is missing, unless force is set. Runs that start later are
        explicit restarts and always proceed.
        """
        start_stage = PipelineStage(start_stage)
        run_id = str(uuid.uuid4())
        bind_run_context(pipeline_run_id=run_id)

        try:
            result = PipelineRunResult(run_id=run_id, skipped=False)

            if start_stage == PipelineStage.FETCH_ALL and not force:
                with self.session_scope() as session:
                    result.sync = self.needs_sync(session)
                if not result.sync.needed:
                    logger.info("pipeline_run_skipped", reason="up_to_date")
                    result.skipped = True
                    return result

            logger.info("pipeline_run_started", start_stage=start_stage.value, force=force, as_of=self.as_of.isoformat())

            for stage in STAGE_ORDER[STAGE_ORDER.index(start_stage):]:
                if stage == PipelineStage.DONE:
                    break
                result.stages.append(await self._run_stage(stage))

            logger.info(
                "pipeline_run_completed",
                stages=[stage_result.stage.value for stage_result in result.stages],
            )
            return result
        finally:
            clear_run_context()

    def run_sync(
        self,
        start_stage: PipelineStage = PipelineStage.FETCH_ALL,
        force: bool = False
    ) -> PipelineRunResult:
        return asyncio.run(self.run(start_stage, force))

    @with_retry()
    def _open_stage_run(self, stage: PipelineStage) -> int:
        with self.session_scope() as session:
            return self.run_repo.create_run(session, f"stage:{stage.value}").id

    @with_retry()
    def _close_stage_run(self, stage_run_id: int, **fields: Any) -> None:
        with self.session_scope() as session:
            self.run_repo.complete_run(session, stage_run_id, **fields)

    async def _run_stage(self, stage: PipelineStage) -> StageResult:
        stage_run_id = self._open_stage_run(stage)

        logger.info("pipeline_stage_started", stage=stage.value)
        try:
            handler = {
                PipelineStage.FETCH_ALL: self.fetch_all,
                PipelineStage.RESOLVE_ALL: self.resolve_all,
                PipelineStage.ENRICH_GEOSPATIAL: self.enrich_geospatial,
                PipelineStage.COMPUTE_SIGNALS: self.compute_signals,
            }[stage]
            stage_result = await handler()
        except Exception as e:
            self._close_stage_run(stage_run_id, status="failure", error_message=str(e))
            logger.error("pipeline_stage_failed", stage=stage.value, error=str(e), error_type=type(e).__name__)
            raise

        self._close_stage_run(
            stage_run_id,
            status=stage_result.status,
            records_processed=stage_result.count_in,
            records_inserted=stage_result.count_out,
            records_failed=stage_result.failed,
            run_metadata=stage_result.details,
        )

        logger.info(
            "pipeline_stage_completed",
            stage=stage.value,
            count_in=stage_result.count_in,
            count_out=stage_result.count_out,
            failed=stage_result.failed,
        )
        return stage_result

    async def fetch_all(self, dataset_names: Optional[Iterable[str]] = None) -> StageResult:
        """
        Seed flood zones and import datasets concurrently.

        A dataset that fails is reported in the details; its siblings still
        complete. A store error is raised once every import has finished.
        """
        with self.session_scope() as session:
            seeded = self.loader.seed_flood_zones(session)

        names = list(dataset_names) if dataset_names is not None else list(self.datasets)
        semaphore = asyncio.Semaphore(self.max_concurrent_datasets)

        async def import_one(name: str) -> Dict[str, Any]:
            async with semaphore:
                return await self.loader.import_dataset(self.datasets[name], self.as_of)

        outcomes = await asyncio.gather(*(import_one(name) for name in names), return_exceptions=True)

        imports = []
        store_errors = []
        for name, outcome in zip(names, outcomes):
            if isinstance(outcome, BaseException):
                if isinstance(outcome, SQLAlchemyError):
                    store_errors.append(outcome)
                logger.error(
                    "dataset_import_raised",
                    dataset=name,
                    error=str(outcome),
                    error_type=type(outcome).__name__,
                )
                imports.append(_failed_import(name, outcome))
            else:
                imports.append(outcome)
        if store_errors:
            raise store_errors[0]

        failed = [item["dataset"] for item in imports if item["status"] == "failure"]
        return StageResult(
            stage=PipelineStage.FETCH_ALL,
            count_in=sum(item["fetched"] for item in imports),
            count_out=sum(item["inserted"] for item in imports) + seeded,
            failed=len(failed),
            details={
                "datasets": {item["dataset"]: item["status"] for item in imports},
                "failed_datasets": failed,
                "flood_zones_seeded": seeded,
            },
        )

    async def resolve_all(self) -> StageResult:
        """Condo hierarchy, full entity resolution, then unit and sale write-back."""
        with self.session_scope() as session:
            hierarchy = self.unit_enrichment.populate_hierarchy(session)
            stats = self.resolution_engine.resolve_all(session)
            units_written = self.unit_enrichment.write_back_units(session)
            sales = self.sale_write_back.write_back(session)

        total = sum(source.total for source in stats.values())
        matched = sum(source.matched for source in stats.values())
        return StageResult(
            stage=PipelineStage.RESOLVE_ALL,
            count_in=total,
            count_out=matched,
            details={
                "sources": {name: source.to_dict() for name, source in stats.items()},
                "buildings": hierarchy["buildings"],
                "condo_units": hierarchy["units"],
                "units_written": units_written,
                "sales": sales,
            },
        )

    async def enrich_geospatial(self) -> StageResult:
        with self.session_scope() as session:
            missing_before = len(PropertyRepository().get_missing_coordinates(session))
            backfilled = self.geospatial.backfill_from_pluto(session)

        geocoded = await self.geospatial.geocode_missing(self.session_scope)

        with self.session_scope() as session:
            normalized = self.geospatial.fill_normalized_addresses(session)
            cells = PropertyRepository().refresh_grid_cells(session)

        return StageResult(
            stage=PipelineStage.ENRICH_GEOSPATIAL,
            count_in=missing_before,
            count_out=backfilled + geocoded["geocoded"],
            details={
                "pluto_backfilled": backfilled,
                "geocoding": geocoded,
                "normalized_addresses": normalized,
                "grid_cells_changed": cells,
            },
        )

    async def compute_signals(self) -> StageResult:
        with self.session_scope() as session:
            batch = self.signals.run(session, self.as_of)

        return StageResult(
            stage=PipelineStage.COMPUTE_SIGNALS,
            count_in=batch.total,
            count_out=len(batch.successes),
            failed=len(batch.failures),
            details={
                "failures": [
                    {"property_id": failure.entity_id, "error_type": failure.error_type}
                    for failure in batch.failures[:100]
                ],
            },
        )
