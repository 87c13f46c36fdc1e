"""
Print entity resolution coverage and signal quality.
"""
import sys
from pathlib import Path

# Add parent directory to Python path
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.propsignal.db.session import get_db_session
from src.propsignal.monitoring.data_quality import compute_signal_quality, resolution_coverage_report
from src.propsignal.utils.logger import setup_logging

setup_logging()


def main():
    with get_db_session() as session:
        coverage = resolution_coverage_report(session)
        quality = compute_signal_quality(session)

    if coverage.empty:
        print("No resolution records yet.")
    else:
        print("Entity resolution coverage")
        print(coverage.to_string())

    print()
    print(f"Signal summaries: {quality['summaries']}")
    print(f"Mean completeness: {quality['mean_completeness']}")
    for level, count in sorted(quality["confidence"].items()):
        print(f"  {level}: {count}")


if __name__ == "__main__":
    main()
