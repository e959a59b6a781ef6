"""Apply (or list) database migrations using yoyo-migrations."""

import argparse
import logging
import sys
from pathlib import Path

from yoyo import get_backend, read_migrations

# Add project root to path so config is importable
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from config.settings import settings

logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).resolve().parent.parent / "migrations"


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Apply tax config schema migrations")
    parser.add_argument(
        "--list",
        action="store_true",
        help="Only list pending migrations",
    )
    return parser.parse_args()


def main() -> None:
    """Apply all pending migrations."""
    args = parse_args()

    logger.info("Connecting to database...")
    backend = get_backend(settings.database_url_sync)
    migrations = read_migrations(str(MIGRATIONS_DIR))

    with backend.lock():
        to_apply = backend.to_apply(migrations)
        if not to_apply:
            logger.info("No pending migrations.")
            return

        if args.list:
            for migration in to_apply:
                logger.info("Pending: %s", migration.id)
            return

        logger.info("Applying %d migration(s)...", len(to_apply))
        backend.apply_migrations(to_apply)
        logger.info("Migrations applied successfully.")


if __name__ == "__main__":
    main()
