"""
Database migration entrypoint for the pattern store.

This script runs Alembic migrations up to the latest head revision.
It reads the database connection URI from the ``DATABASE_URL``
environment variable.  Use this script in CI and deployment pipelines to
initialise or upgrade the schema before starting the price monitor or the
backtester.
"""

from __future__ import annotations

import os
import pathlib

from alembic import command
from alembic.config import Config


def run_migrations() -> None:
    base_dir = pathlib.Path(__file__).resolve().parents[1]
    cfg = Config()
    cfg.set_main_option("script_location", str(base_dir / "alembic"))
    db_url = os.getenv("DATABASE_URL")
    if not db_url:
        raise SystemExit("DATABASE_URL is not set")
    cfg.set_main_option("sqlalchemy.url", db_url)
    command.upgrade(cfg, "head")


if __name__ == "__main__":
    run_migrations()
