"""
Pipelines Package

Batch stages of the signal pipeline:
- Entity resolution: staging records -> canonical properties
- Unit enrichment: condo registry -> buildings, units, property units
- Geospatial enrichment: coordinates, normalized addresses, grid cells
- Signal computation: per-property summaries and opportunity scores
- Orchestrator: the stage state machine
"""
from src.propsignal.pipelines.entity_resolution import (
    EntityResolutionEngine,
    PropertyIndex,
    RegistryIndex,
    ResolutionCandidate,
    ResolutionRecord,
    resolve,
)
from src.propsignal.pipelines.unit_enrichment import UnitEnrichmentPipeline
from src.propsignal.pipelines.geospatial_enrichment import GeospatialEnrichment
from src.propsignal.pipelines.signal_computation import (
    SignalComputer,
    SignalComputationPipeline,
    ProximityIndexes,
)
from src.propsignal.pipelines.orchestrator import BatchOrchestrator, PipelineStage

__all__ = [
    "EntityResolutionEngine",
    "PropertyIndex",
    "RegistryIndex",
    "ResolutionCandidate",
    "ResolutionRecord",
    "resolve",
    "UnitEnrichmentPipeline",
    "GeospatialEnrichment",
    "SignalComputer",
    "SignalComputationPipeline",
    "ProximityIndexes",
    "BatchOrchestrator",
    "PipelineStage",
]
