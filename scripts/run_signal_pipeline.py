"""
Run the property signal pipeline.

Fetches open data into staging, resolves records to properties, enriches
coordinates and computes per-property signal summaries. A full run is
skipped when nothing is missing unless --force is given.
"""
import argparse
import sys
from datetime import date
from pathlib import Path

# Add parent directory to Python path
ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(ROOT))

from src.propsignal.db.session import get_db_session
from src.propsignal.enrichers.address_normalizer import AddressNormalizer
from src.propsignal.enrichers.geoclient import GeoclientClient
from src.propsignal.pipelines.orchestrator import BatchOrchestrator, PipelineStage
from src.propsignal.scrapers.datasets import get_datasets
from src.propsignal.utils.logger import get_logger, setup_logging

setup_logging()
logger = get_logger(__name__)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Fetch, resolve and score NYC property signals.")
    parser.add_argument("--force", action="store_true", help="Run even when every table is already populated.")
    parser.add_argument(
        "--start-stage",
        choices=[stage.value for stage in PipelineStage if stage != PipelineStage.DONE],
        default=PipelineStage.FETCH_ALL.value,
        help="Resume from this stage using already-persisted inputs.",
    )
    parser.add_argument("--datasets", help="Comma-separated dataset names to fetch (default: all).")
    parser.add_argument("--as-of", type=date.fromisoformat, help="Reference date (YYYY-MM-DD, default: today).")
    return parser.parse_args()


def main():
    args = parse_args()

    datasets = get_datasets()
    if args.datasets:
        names = [name.strip() for name in args.datasets.split(",") if name.strip()]
        unknown = sorted(set(names) - set(datasets))
        if unknown:
            raise SystemExit(f"Unknown datasets: {', '.join(unknown)}. Known: {', '.join(datasets)}")
        datasets = {name: datasets[name] for name in names}

    orchestrator = BatchOrchestrator(
        session_scope=get_db_session,
        normalizer=AddressNormalizer(geocoder=GeoclientClient()),
        datasets=datasets,
        as_of=args.as_of,
    )
    result = orchestrator.run_sync(PipelineStage(args.start_stage), force=args.force)

    if result.skipped:
        print("Pipeline skipped: all staging tables and signal summaries are populated (use --force).")
        return

    for stage in result.stages:
        print(
            f"{stage.stage.value:<18} in={stage.count_in:<8} out={stage.count_out:<8} "
            f"failed={stage.failed:<5} status={stage.status}"
        )


if __name__ == "__main__":
    main()
