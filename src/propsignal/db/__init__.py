"""
Database Package

Database models, connection management, and data persistence layer.
"""
from src.propsignal.db.base import Base
from src.propsignal.db.session import (
    engine,
    SessionLocal,
    get_db_session,
    session_scope_factory,
    with_retry,
)
from src.propsignal.db.models import (
    Property,
    Building,
    CondoUnit,
    DobPermit,
    HpdViolation,
    DobComplaint,
    Complaint311,
    SubwayStation,
    Amenity,
    FloodZone,
    CondoRegistryRecord,
    PlutoLot,
    AcrisSale,
    EntityResolutionRecord,
    PropertySignalSummary,
    MarketAggregate,
    DataIngestionRun,
)
from src.propsignal.db.repository import (
    BaseRepository,
    StagingRepository,
    PropertyRepository,
    BuildingRepository,
    EntityResolutionRepository,
    SignalSummaryRepository,
    MarketAggregateRepository,
    DataIngestionRunRepository,
)
from src.propsignal.db import utils as db_utils

__all__ = [
    # Base
    "Base",
    # Session management
    "engine",
    "SessionLocal",
    "get_db_session",
    "session_scope_factory",
    "with_retry",
    # Models
    "Property",
    "Building",
    "CondoUnit",
    "DobPermit",
    "HpdViolation",
    "DobComplaint",
    "Complaint311",
    "SubwayStation",
    "Amenity",
    "FloodZone",
    "CondoRegistryRecord",
    "PlutoLot",
    "AcrisSale",
    "EntityResolutionRecord",
    "PropertySignalSummary",
    "MarketAggregate",
    "DataIngestionRun",
    # Repositories
    "BaseRepository",
    "StagingRepository",
    "PropertyRepository",
    "BuildingRepository",
    "EntityResolutionRepository",
    "SignalSummaryRepository",
    "MarketAggregateRepository",
    "DataIngestionRunRepository",
    # Utilities
    "db_utils",
]
