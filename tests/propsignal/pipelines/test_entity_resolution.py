"""
Tests for the entity resolution engine

Covers the tier order (exact, registry, address, unmatched), fixed tier
confidences and full-recompute behavior.
"""
import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker

from src.propsignal.db.base import Base
from src.propsignal.db.models import (
    CondoRegistryRecord,
    Complaint311,
    EntityResolutionRecord,
    HpdViolation,
    Property,
)
from src.propsignal.pipelines.entity_resolution import (
    EntityResolutionEngine,
    PropertyIndex,
    RegistryIndex,
    ResolutionCandidate,
    ResolutionStats,
    resolve,
)


@pytest.fixture(scope="function")
def test_db():
    """Create an in-memory SQLite database for testing."""
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    Session = sessionmaker(bind=engine)
    session = Session()

    yield session

    session.close()
    Base.metadata.drop_all(engine)


@pytest.fixture
def property_index():
    return PropertyIndex.build([
        ("p1", "1001230001", "350 West 42nd Street", "10036"),
        ("p2", "1001237501", "200 Park Avenue", "10166"),
    ])


@pytest.fixture
def registry_index():
    return RegistryIndex.build([("1001231001", "1001237501"), ("1001231002", None)])


def candidate(record_id, **kwargs):
    return ResolutionCandidate(source_system="hpd_violations", source_record_id=record_id, **kwargs)


class TestResolve:
    """Tests for single-record resolution"""

    def test_exact_bbl(self, property_index, registry_index):
        record = resolve(candidate("1", bbl="1001230001"), property_index, registry_index)

        assert record.match_type == "exact"
        assert record.match_confidence == 1.0
        assert record.matched_property_id == "p1"
        assert record.match_metadata == {"key": "bbl", "bbl": "1001230001"}

    def test_registry_unit_to_base(self, property_index, registry_index):
        record = resolve(candidate("2", bbl="1001231001"), property_index, registry_index)

        assert record.match_type == "registry"
        assert record.match_confidence == 0.9
        assert record.matched_property_id == "p2"
        assert record.match_metadata["base_bbl"] == "1001237501"

    def test_registry_from_carried_base_bbl(self, property_index):
        record = resolve(
            ResolutionCandidate("condo_registry", "1001231009", bbl="1001231009", base_bbl="1001237501"),
            property_index,
        )

        assert record.match_type == "registry"
        assert record.matched_property_id == "p2"

    def test_address_fallback(self, property_index, registry_index):
        record = resolve(
            candidate("3", address="350 W 42ND ST, APT 2", zip_code="10036-0001"),
            property_index,
            registry_index,
        )

        assert record.match_type == "address"
        assert record.match_confidence == 0.7
        assert record.matched_property_id == "p1"
        assert record.match_metadata["address_key"] == "350 W 42 ST|10036"

    def test_bbl_beats_address(self, property_index, registry_index):
        """A BBL match wins even when the address points elsewhere"""
        record = resolve(
            candidate("4", bbl="1001237501", address="350 West 42nd Street", zip_code="10036"),
            property_index,
            registry_index,
        )

        assert record.match_type == "exact"
        assert record.matched_property_id == "p2"

    def test_unmatched(self, property_index, registry_index):
        record = resolve(
            candidate("5", bbl="3000010001", address="1 Nowhere Lane", zip_code="11201"),
            property_index,
            registry_index,
        )

        assert record.match_type == "unmatched"
        assert record.match_confidence == 0.0
        assert record.matched_property_id is None
        assert record.is_matched is False

    def test_duplicate_address_key_resolves_to_lowest_id(self):
        index = PropertyIndex.build([
            ("b", None, "10 Main Street", "11201"),
            ("a", None, "10 Main St", "11201"),
        ])

        property_id, key = index.property_for_address("10 MAIN ST", "11201")

        assert property_id == "a"
        assert key == "10 MAIN ST|11201"


class TestResolutionStats:
    """Tests for ResolutionStats"""

    def test_match_rate(self):
        stats = ResolutionStats("hpd_violations")
        stats.by_type.update({"exact": 2, "address": 1, "unmatched": 1})

        assert stats.total == 4
        assert stats.matched == 3
        assert stats.match_rate == 0.75
        assert stats.to_dict()["registry"] == 0

    def test_empty_source(self):
        assert ResolutionStats("dob_permits").match_rate == 0.0


class TestEntityResolutionEngine:
    """Tests for EntityResolutionEngine against staged rows"""

    @pytest.fixture
    def staged(self, test_db):
        p1 = Property(bbl="1001230001", address="350 West 42nd Street", zip_code="10036")
        p2 = Property(bbl="1001237501", address="200 Park Avenue", zip_code="10166")
        test_db.add_all([p1, p2])
        test_db.add_all([
            HpdViolation(source_id="h1", bbl="1001230001"),
            HpdViolation(source_id="h2", bbl="1001231001"),
            HpdViolation(source_id="h3", address="350 W 42ND ST", zip_code="10036"),
            HpdViolation(source_id="h4", bbl="3000010001"),
            CondoRegistryRecord(source_id="1001231001", bbl="1001231001", base_bbl="1001237501"),
            Complaint311(source_id="c1", address="200 PARK AVE", zip_code="10166"),
        ])
        test_db.commit()
        return p1, p2

    def test_resolve_all(self, test_db, staged):
        p1, p2 = staged

        results = EntityResolutionEngine().resolve_all(test_db)
        test_db.commit()

        hpd = results["hpd_violations"]
        assert hpd.by_type == {"exact": 1, "registry": 1, "address": 1, "unmatched": 1}
        assert results["condo_registry"].by_type == {"registry": 1}
        assert results["complaints_311"].by_type == {"address": 1}
        assert results["dob_permits"].total == 0

        rows = {
            (r.source_system, r.source_record_id): r
            for r in test_db.execute(select(EntityResolutionRecord)).scalars()
        }
        assert rows[("hpd_violations", "h1")].matched_property_id == p1.id
        assert rows[("hpd_violations", "h2")].matched_property_id == p2.id
        assert rows[("hpd_violations", "h4")].matched_property_id is None
        assert rows[("complaints_311", "c1")].match_confidence == 0.7

    def test_every_record_has_tier_confidence(self, test_db, staged):
        EntityResolutionEngine().resolve_all(test_db)
        test_db.commit()

        expected = {"exact": 1.0, "registry": 0.9, "address": 0.7, "unmatched": 0.0}
        for record in test_db.execute(select(EntityResolutionRecord)).scalars():
            assert record.match_confidence == expected[record.match_type]
            assert (record.matched_property_id is None) == (record.match_type == "unmatched")

    def test_recompute_replaces_records(self, test_db, staged):
        """Running twice yields the same rows, not duplicates"""
        engine = EntityResolutionEngine()
        engine.resolve_all(test_db)
        test_db.commit()
        first = sorted(
            (r.source_system, r.source_record_id, r.match_type, r.matched_property_id)
            for r in test_db.execute(select(EntityResolutionRecord)).scalars()
        )

        engine.resolve_all(test_db)
        test_db.commit()
        second = sorted(
            (r.source_system, r.source_record_id, r.match_type, r.matched_property_id)
            for r in test_db.execute(select(EntityResolutionRecord)).scalars()
        )

        assert first == second
        assert len(second) == 6

    def test_recompute_picks_up_new_property(self, test_db, staged):
        engine = EntityResolutionEngine()
        engine.resolve_all(test_db, source_systems=["hpd_violations"])
        test_db.commit()

        test_db.add(Property(bbl="3000010001"))
        test_db.commit()
        results = engine.resolve_all(test_db, source_systems=["hpd_violations"])

        assert results["hpd_violations"].unmatched == 0

    def test_unknown_source_system(self, test_db):
        with pytest.raises(ValueError):
            EntityResolutionEngine().resolve_source(test_db, "zoning", PropertyIndex({}, {}))
