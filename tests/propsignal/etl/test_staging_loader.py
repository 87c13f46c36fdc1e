"""
Tests for the staging loader

Imports run against a shared in-memory SQLite database through the same
session-scope factory the orchestrator uses.
"""
import asyncio
from datetime import date
from unittest.mock import Mock

import pytest
import requests
from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from src.propsignal.db.base import Base
from src.propsignal.db.models import DataIngestionRun, FloodZone, HpdViolation
from src.propsignal.db.session import session_scope_factory
from src.propsignal.etl.loaders import StagingLoader
from src.propsignal.scrapers.datasets import get_datasets
from src.propsignal.scrapers.retry import RetryPolicy
from src.propsignal.scrapers.socrata_fetcher import SocrataFetcher

AS_OF = date(2024, 7, 1)


def hpd_row(n, **overrides):
    row = {
        "violationid": str(n),
        "boroid": "1",
        "block": "123",
        "lot": "1",
        "violationstatus": "Open",
        "inspectiondate": "2024-05-01T00:00:00.000",
    }
    row.update(overrides)
    return row


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


def make_loader(session_scope, get_side_effect, page_size=10):
    client = Mock()
    client.get.side_effect = get_side_effect
    fetcher = SocrataFetcher(
        retry_policy=RetryPolicy(max_attempts=2, sleep=Mock()),
        client_factory=lambda domain: client,
        page_size=page_size,
        max_records=1000,
    )
    return StagingLoader(session_scope, fetcher), client


def serve(rows):
    return lambda dataset_id, limit, offset, where, order: rows[offset:offset + limit]


class TestStagingLoader:
    """Tests for StagingLoader"""

    def test_import_dataset(self, session_scope):
        rows = [hpd_row(n) for n in range(15)]
        loader, _ = make_loader(session_scope, serve(rows))

        result = asyncio.run(loader.import_dataset(get_datasets()["hpd_violations"], AS_OF))

        assert result["status"] == "success"
        assert result["fetched"] == 15
        assert result["inserted"] == 15
        with session_scope() as session:
            stored = session.execute(select(HpdViolation)).scalars().all()
            run = session.execute(select(DataIngestionRun)).scalar_one()

            assert len(stored) == 15
            assert stored[0].bbl == "1001230001"
            assert run.source_type == "hpd_violations"
            assert run.status == "success"
            assert run.records_inserted == 15
            assert run.run_metadata == {"since": "2024-01-03"}

    def test_reimport_is_idempotent(self, session_scope):
        """A second import of the same rows inserts nothing"""
        rows = [hpd_row(n) for n in range(15)]
        loader, _ = make_loader(session_scope, serve(rows))
        spec = get_datasets()["hpd_violations"]

        asyncio.run(loader.import_dataset(spec, AS_OF))
        second = asyncio.run(loader.import_dataset(spec, AS_OF))

        assert second["inserted"] == 0
        assert second["skipped"] == 15
        with session_scope() as session:
            assert len(session.execute(select(HpdViolation.id)).all()) == 15

    def test_rejected_rows_mark_run_partial(self, session_scope):
        rows = [hpd_row(n) for n in range(4)] + [{"boroid": "1"}]
        loader, _ = make_loader(session_scope, serve(rows))

        result = asyncio.run(loader.import_dataset(get_datasets()["hpd_violations"], AS_OF))

        assert result["status"] == "partial"
        assert result["rejected"] == 1
        assert result["inserted"] == 4

    def test_fetch_failure_keeps_landed_pages(self, session_scope):
        """Pages committed before the failure survive; the run is marked failed"""
        rows = [hpd_row(n) for n in range(10)]

        def get(dataset_id, limit, offset, where, order):
            if offset >= 10:
                raise requests.ConnectionError("portal down")
            return rows[offset:offset + limit]

        loader, client = make_loader(session_scope, get)

        result = asyncio.run(loader.import_dataset(get_datasets()["hpd_violations"], AS_OF))

        assert result["status"] == "failure"
        assert "portal down" in result["error"]
        assert result["inserted"] == 10
        assert client.get.call_count == 3
        with session_scope() as session:
            run = session.execute(select(DataIngestionRun)).scalar_one()
            assert run.status == "failure"
            assert run.error_message == result["error"]
            assert len(session.execute(select(HpdViolation.id)).all()) == 10

    def test_malformed_rows_do_not_abort_import(self, session_scope):
        """Non-object rows and broken geometries are rejected; the run completes"""
        rows = [hpd_row(n) for n in range(3)] + [
            None,
            hpd_row(3, the_geom={"type": "Point", "coordinates": [-73.99]}),
        ]
        loader, _ = make_loader(session_scope, serve(rows))

        result = asyncio.run(loader.import_dataset(get_datasets()["hpd_violations"], AS_OF))

        assert result["status"] == "partial"
        assert result["rejected"] == 1
        assert result["inserted"] == 4
        with session_scope() as session:
            run = session.execute(select(DataIngestionRun)).scalar_one()
            assert run.status == "partial"
            assert run.records_failed == 1

    def test_unexpected_error_marks_run_failed(self, session_scope):
        """An error outside the fetch retry path still closes the run"""
        fetcher = Mock()

        async def iter_pages(spec, since_date=None):
            yield [hpd_row(1)]
            raise KeyError("offset")

        fetcher.iter_pages = iter_pages
        loader = StagingLoader(session_scope, fetcher)

        result = asyncio.run(loader.import_dataset(get_datasets()["hpd_violations"], AS_OF))

        assert result["status"] == "failure"
        assert result["error"] == "KeyError: 'offset'"
        assert result["inserted"] == 1
        with session_scope() as session:
            run = session.execute(select(DataIngestionRun)).scalar_one()
            assert run.status == "failure"
            assert run.error_message == "KeyError: 'offset'"

    def test_seed_flood_zones_once(self, session_scope):
        loader, _ = make_loader(session_scope, serve([]))

        with session_scope() as session:
            first = loader.seed_flood_zones(session)
        with session_scope() as session:
            second = loader.seed_flood_zones(session)
            count = len(session.execute(select(FloodZone.id)).all())

        assert first == 25
        assert second == 0
        assert count == 25
