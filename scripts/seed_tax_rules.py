"""Seed tax bracket and social insurance versions from config/tax_params.yaml.

Parameter sets are imported in (city, year) order so each one closes the
previous year's open version.

Usage:
    python scripts/seed_tax_rules.py [--city Hangzhou]
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from pydantic import ValidationError

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from config import load_city_params
from src.calculators.errors import TaxConfigError
from src.calculators.params import import_city_params, normalize_tax_params
from src.db.session import close_pool, get_pool
from src.db.tax_config import PostgresTaxConfigRepository

logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
logger = logging.getLogger(__name__)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Seed city tax parameters")
    parser.add_argument("--city", help="Only seed this city")
    return parser.parse_args()


async def run(args: argparse.Namespace) -> int:
    params = sorted(
        (normalize_tax_params(raw) for raw in load_city_params()),
        key=lambda p: (p.city, p.year),
    )
    if args.city:
        params = [p for p in params if p.city == args.city]

    pool = await get_pool()
    try:
        repository = PostgresTaxConfigRepository(pool)
        seeded = 0
        for item in params:
            try:
                effective_from = await import_city_params(repository, item)
            except TaxConfigError as exc:
                # Re-running the seed hits versions that are already in place
                logger.warning("Skipping %s %d: %s", item.city, item.year, exc)
                continue
            seeded += 1
            logger.info("Seeded %s %d (effective %s)", item.city, item.year, effective_from)
    finally:
        await close_pool()

    logger.info("Seeded %d of %d parameter sets.", seeded, len(params))
    return 0


def main() -> None:
    args = parse_args()
    try:
        sys.exit(asyncio.run(run(args)))
    except (TaxConfigError, ValidationError) as exc:
        logger.error("Seeding failed: %s", exc)
        sys.exit(1)


if __name__ == "__main__":
    main()
