"""Run a cumulative withholding forecast for an income plan file.

Usage:
    python scripts/forecast.py plans/2025.yaml
    python scripts/forecast.py plans/2025.yaml --bundled   # no database needed
"""

import argparse
import asyncio
import logging
import sys
from decimal import Decimal
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from config import load_city_params, load_yaml_config
from config.settings import settings
from src.calculators.errors import TaxConfigError
from src.calculators.income_tax import calculate_annual_tax
from src.calculators.params import import_city_params, normalize_tax_params
from src.calculators.withholding import calculate_forecast
from src.db.models import ForecastResult, MonthMarkers
from src.db.session import close_pool, get_pool
from src.db.tax_config import (
    InMemoryTaxConfigRepository,
    PostgresTaxConfigRepository,
    TaxConfigRepository,
)
from src.income.plan import IncomePlan

logger = logging.getLogger(__name__)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Forecast monthly IIT withholding")
    parser.add_argument("plan", help="Income plan YAML file")
    parser.add_argument("--city", help="Override the plan's city")
    parser.add_argument(
        "--bundled",
        action="store_true",
        help="Use config/tax_params.yaml instead of the database",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose logging")
    return parser.parse_args()


async def bundled_repository() -> InMemoryTaxConfigRepository:
    """In-memory repository loaded with the curated parameter sets."""
    repository = InMemoryTaxConfigRepository()
    params = sorted(
        (normalize_tax_params(raw) for raw in load_city_params()),
        key=lambda p: (p.city, p.year),
    )
    for item in params:
        await import_city_params(repository, item)
    return repository


def print_forecast(forecast: ForecastResult, markers: dict[str, MonthMarkers]) -> None:
    logger.info("=" * 100)
    logger.info("WITHHOLDING FORECAST: %s", forecast.city)
    logger.info("=" * 100)
    logger.info(
        "%-8s %12s %12s %12s %12s %12s %12s %6s  %s",
        "Month", "Salary", "Bonus", "SI", "HF", "Tax", "Net", "Rate%", "Events",
    )
    for r in forecast.results:
        marker = markers.get(r.ym, MonthMarkers())
        events = [
            label
            for label, flag in (
                ("salary change", marker.salary_change),
                ("bonus", marker.bonus_paid),
                (f"long-term cash x{marker.long_term_cash_count}", marker.long_term_cash_count),
                ("tax rules changed", r.tax_rule_changed),
            )
            if flag
        ]
        logger.info(
            "%-8s %12s %12s %12s %12s %12s %12s %6s  %s",
            r.ym,
            r.salary_this_month,
            r.bonus_this_month,
            r.social_insurance_this_month,
            r.housing_fund_this_month,
            r.tax_this_month,
            r.net,
            r.applied_tax_rate,
            ", ".join(events),
        )

    totals = forecast.totals
    logger.info("-" * 100)
    logger.info("Total salary: %s", totals.total_salary)
    logger.info("Total bonus:  %s", totals.total_bonus)
    logger.info("Total gross:  %s", totals.total_gross)
    logger.info("Total tax:    %s", totals.total_tax)
    logger.info("Total net:    %s", totals.total_net)

    # Annual settlement view; meaningful when the plan covers one tax year
    contributions = sum((r.total_deductions_this_month for r in forecast.results), Decimal("0"))
    annual = calculate_annual_tax(
        totals.total_gross,
        deductions=contributions,
        standard_deduction=settings.annual_basic_deduction,
    )
    logger.info("Annual tax:   %.2f", annual["total_tax"])
    logger.info("Withheld minus annual: %.2f", float(totals.total_tax) - annual["total_tax"])


async def run(args: argparse.Namespace) -> int:
    plan = IncomePlan.model_validate(load_yaml_config(args.plan))
    city = args.city or plan.city or settings.default_city

    repository: TaxConfigRepository
    if args.bundled:
        repository = await bundled_repository()
        forecast = await calculate_forecast(
            repository, city, plan.monthly_inputs(), settings.monthly_basic_deduction
        )
    else:
        pool = await get_pool()
        try:
            repository = PostgresTaxConfigRepository(pool)
            forecast = await calculate_forecast(
                repository, city, plan.monthly_inputs(), settings.monthly_basic_deduction
            )
        finally:
            await close_pool()

    print_forecast(forecast, plan.markers())
    return 0


def main() -> None:
    args = parse_args()

    log_level = logging.DEBUG if args.verbose else settings.log_level
    logging.basicConfig(level=log_level, format="%(message)s")

    try:
        sys.exit(asyncio.run(run(args)))
    except (TaxConfigError, ValueError) as exc:
        logger.error("Forecast failed: %s", exc)
        sys.exit(1)


if __name__ == "__main__":
    main()
