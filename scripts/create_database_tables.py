"""
Create Database Tables Using SQLAlchemy

Creates every table with create_all(). Useful for local setups and
throwaway databases; production schemas are managed by Alembic.
"""
import argparse
import sys
from pathlib import Path

# Add parent directory to Python path
sys.path.insert(0, str(Path(__file__).parent.parent))

import sqlalchemy as sa

from src.propsignal.db.base import Base, import_all_models
from src.propsignal.db.session import engine
from src.propsignal.utils.logger import get_logger, setup_logging

setup_logging()
logger = get_logger(__name__)


def main():
    parser = argparse.ArgumentParser(description="Create all propsignal tables.")
    parser.add_argument("--drop", action="store_true", help="Drop existing tables first.")
    args = parser.parse_args()

    import_all_models()

    if args.drop:
        logger.warning("dropping_all_tables")
        Base.metadata.drop_all(bind=engine)

    Base.metadata.create_all(bind=engine, checkfirst=True)

    tables = sorted(sa.inspect(engine).get_table_names())
    logger.info("tables_created", count=len(tables), tables=tables)


if __name__ == "__main__":
    main()
