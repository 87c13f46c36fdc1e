"""
Tests for the batch orchestrator

Stages run against a shared in-memory SQLite database with a fake fetcher
serving canned pages per dataset.
"""
import asyncio
from datetime import date
from unittest.mock import patch

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from src.propsignal.db.base import Base
from src.propsignal.db.models import (
    Amenity,
    Complaint311,
    DataIngestionRun,
    DobComplaint,
    DobPermit,
    FloodZone,
    HpdViolation,
    Property,
    PropertySignalSummary,
    SubwayStation,
)
from src.propsignal.db.session import session_scope_factory
from src.propsignal.errors import TransientFetchError
from src.propsignal.pipelines.orchestrator import BatchOrchestrator, PipelineStage
from src.propsignal.scrapers.datasets import get_datasets

AS_OF = date(2024, 7, 1)

PAGES = {
    "hpd_violations": [[
        {"violationid": "1", "bbl": "1001230001", "violationstatus": "Open"},
        {"violationid": "2", "bbl": "1001230001", "violationstatus": "Open"},
    ]],
    "subway_stations": [[
        {"gtfs_stop_id": "127", "stop_name": "Times Sq-42 St", "daytime_routes": "1 2 3",
         "gtfs_latitude": "40.75529", "gtfs_longitude": "-73.987495"},
    ]],
}


class FakeFetcher:
    """
    Serves PAGES by dataset name.

    Names in `failing` raise TransientFetchError; names in `raising` raise the
    given exception.
    """

    def __init__(self, pages=None, failing=(), raising=None):
        self.pages = pages if pages is not None else PAGES
        self.failing = set(failing)
        self.raising = raising or {}
        self.requested = []

    async def iter_pages(self, spec, since_date=None, page_size=None):
        self.requested.append(spec.name)
        if spec.name in self.failing:
            raise TransientFetchError(spec.name, 0, 3, ConnectionError("portal down"))
        if spec.name in self.raising:
            raise self.raising[spec.name]
        for page in self.pages.get(spec.name, []):
            yield page


@pytest.fixture(scope="function")
def session_scope():
    """Session scope over one shared in-memory SQLite database."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)

    yield session_scope_factory(sessionmaker(bind=engine, expire_on_commit=False))

    Base.metadata.drop_all(engine)
    engine.dispose()


def make_orchestrator(session_scope, fetcher=None, names=("hpd_violations", "subway_stations", "complaints_311")):
    datasets = get_datasets()
    return BatchOrchestrator(
        session_scope=session_scope,
        fetcher=fetcher or FakeFetcher(),
        datasets={name: datasets[name] for name in names},
        as_of=AS_OF,
        max_concurrent_datasets=2,
    )


def populate_required_tables(session):
    session.add_all([
        SubwayStation(source_id="s1", station_name="42 St", latitude=40.7553, longitude=-73.9875),
        Amenity(source_id="park-1", category="park", latitude=40.7536, longitude=-73.9832),
        FloodZone(source_id="flood-1-X", zone_code="X", risk_level="minimal"),
        HpdViolation(source_id="h1"),
        DobComplaint(source_id="d1"),
        DobPermit(source_id="p1"),
        Complaint311(source_id="c1"),
    ])


class TestNeedsSync:
    """Tests for the sync decision"""

    def test_empty_database_needs_sync(self, session_scope):
        orchestrator = make_orchestrator(session_scope)

        with session_scope() as session:
            decision = orchestrator.needs_sync(session)

        assert decision.needed is True
        assert "subway_stations is empty" in decision.reasons
        assert "complaints_311 is empty" in decision.reasons

    def test_missing_summaries_need_sync(self, session_scope):
        with session_scope() as session:
            populate_required_tables(session)
            session.add(Property(bbl="1001230001"))

        with session_scope() as session:
            decision = make_orchestrator(session_scope).needs_sync(session)

        assert decision.needed is True
        assert decision.reasons == ["1 properties lack signal summaries"]

    def test_up_to_date(self, session_scope):
        with session_scope() as session:
            populate_required_tables(session)

        with session_scope() as session:
            assert make_orchestrator(session_scope).needs_sync(session).needed is False


class TestBatchOrchestrator:
    """Tests for full and partial runs"""

    def test_up_to_date_run_is_skipped(self, session_scope):
        with session_scope() as session:
            populate_required_tables(session)
        fetcher = FakeFetcher()

        result = make_orchestrator(session_scope, fetcher).run_sync()

        assert result.skipped is True
        assert result.stages == []
        assert fetcher.requested == []

    def test_force_runs_every_stage(self, session_scope):
        with session_scope() as session:
            populate_required_tables(session)

        result = make_orchestrator(session_scope).run_sync(force=True)

        assert result.skipped is False
        assert result.sync is None
        assert [stage.stage for stage in result.stages] == [
            PipelineStage.FETCH_ALL,
            PipelineStage.RESOLVE_ALL,
            PipelineStage.ENRICH_GEOSPATIAL,
            PipelineStage.COMPUTE_SIGNALS,
        ]

    def test_full_run_with_failed_dataset(self, session_scope):
        """One failing dataset is reported; siblings load and later stages run"""
        with session_scope() as session:
            session.add(Property(bbl="1001230001", latitude=40.7577, longitude=-73.9857, zip_code="10036"))
        fetcher = FakeFetcher(failing=["complaints_311"])

        result = make_orchestrator(session_scope, fetcher).run_sync()

        fetch = result.stage(PipelineStage.FETCH_ALL)
        assert fetch.failed == 1
        assert fetch.status == "partial"
        assert fetch.details["failed_datasets"] == ["complaints_311"]
        assert fetch.details["datasets"]["hpd_violations"] == "success"
        assert fetch.details["flood_zones_seeded"] == 25

        resolve_stage = result.stage(PipelineStage.RESOLVE_ALL)
        assert resolve_stage.count_in == 2
        assert resolve_stage.count_out == 2
        assert resolve_stage.details["sales"]["matched_sales"] == 0

        compute = result.stage(PipelineStage.COMPUTE_SIGNALS)
        assert compute.count_out == 1

        with session_scope() as session:
            summary = session.execute(select(PropertySignalSummary)).scalar_one()
            assert summary.open_hpd_violations == 2
            assert summary.building_health_score == 90
            assert summary.nearest_subway_station == "Times Sq-42 St"

            runs = {run.source_type: run.status for run in session.execute(select(DataIngestionRun)).scalars()}
            assert runs["complaints_311"] == "failure"
            assert runs["hpd_violations"] == "success"
            assert runs["stage:fetch_all"] == "partial"
            assert runs["stage:compute_signals"] == "success"

    def test_start_stage_skips_fetch(self, session_scope):
        """A later start stage uses persisted inputs and ignores needs_sync"""
        fetcher = FakeFetcher()

        result = make_orchestrator(session_scope, fetcher).run_sync(PipelineStage.RESOLVE_ALL)

        assert result.skipped is False
        assert fetcher.requested == []
        assert result.stage(PipelineStage.FETCH_ALL) is None
        assert [stage.stage for stage in result.stages][0] == PipelineStage.RESOLVE_ALL

    def test_start_stage_accepts_value(self, session_scope):
        result = make_orchestrator(session_scope).run_sync("compute_signals")

        assert [stage.stage for stage in result.stages] == [PipelineStage.COMPUTE_SIGNALS]

    def test_stage_failure_is_recorded_and_raised(self, session_scope):
        orchestrator = make_orchestrator(session_scope)

        with patch.object(orchestrator.signals, "run", side_effect=RuntimeError("boom")):
            with pytest.raises(RuntimeError, match="boom"):
                asyncio.run(orchestrator.run(PipelineStage.COMPUTE_SIGNALS))

        with session_scope() as session:
            run = session.execute(
                select(DataIngestionRun).where(DataIngestionRun.source_type == "stage:compute_signals")
            ).scalar_one()
            assert run.status == "failure"
            assert run.error_message == "boom"


class TestFetchAll:
    """Tests for per-dataset failure isolation in the fetch stage"""

    def test_unexpected_fetch_error_fails_only_its_dataset(self, session_scope):
        fetcher = FakeFetcher(raising={"complaints_311": RuntimeError("unexpected payload")})

        stage = asyncio.run(make_orchestrator(session_scope, fetcher).fetch_all())

        assert stage.status == "partial"
        assert stage.details["failed_datasets"] == ["complaints_311"]
        assert stage.details["datasets"]["hpd_violations"] == "success"
        assert stage.details["datasets"]["subway_stations"] == "success"
        with session_scope() as session:
            runs = {run.source_type: run for run in session.execute(select(DataIngestionRun)).scalars()}
            assert runs["complaints_311"].status == "failure"
            assert runs["complaints_311"].error_message == "RuntimeError: unexpected payload"
            assert all(run.status != "running" for run in runs.values())
            assert len(session.execute(select(HpdViolation.id)).all()) == 2

    def test_raising_import_does_not_cancel_siblings(self, session_scope):
        """An exception escaping one import becomes a failure entry"""
        orchestrator = make_orchestrator(session_scope)
        import_dataset = orchestrator.loader.import_dataset

        async def flaky_import(spec, as_of):
            if spec.name == "subway_stations":
                raise ValueError("bad page")
            return await import_dataset(spec, as_of)

        with patch.object(orchestrator.loader, "import_dataset", side_effect=flaky_import):
            stage = asyncio.run(orchestrator.fetch_all())

        assert stage.failed == 1
        assert stage.details["failed_datasets"] == ["subway_stations"]
        assert stage.details["datasets"]["hpd_violations"] == "success"
        assert stage.details["datasets"]["complaints_311"] == "success"
        assert stage.count_in == 2

    def test_store_error_raised_after_siblings_finish(self, session_scope):
        orchestrator = make_orchestrator(session_scope)
        import_dataset = orchestrator.loader.import_dataset

        async def failing_store(spec, as_of):
            if spec.name == "hpd_violations":
                raise OperationalError("INSERT", {}, Exception("disk I/O error"))
            return await import_dataset(spec, as_of)

        with patch.object(orchestrator.loader, "import_dataset", side_effect=failing_store):
            with pytest.raises(OperationalError):
                asyncio.run(orchestrator.fetch_all())

        with session_scope() as session:
            runs = {run.source_type: run.status for run in session.execute(select(DataIngestionRun)).scalars()}
            assert runs["subway_stations"] == "success"
            assert runs["complaints_311"] == "success"
