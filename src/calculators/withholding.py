"""Cumulative withholding engine (累计预扣法).

Each month's withholding is the year-to-date tax due on year-to-date taxable
income, minus what earlier months were already charged:

    cumulative_taxable = cum_gross - cum_sihf - basic_deduction * months_elapsed
    cumulative_due     = calculate_tax(cumulative_taxable, this month's table)
    tax_this_month     = max(0, cumulative_due - cumulative_charged)

Under a single bracket table cumulative_due only grows. When the table changes
mid-sequence it can fall; that month is charged zero (no refund, no later
true-up) and the charged baseline drops to the new cumulative_due so later
months accumulate against the new curve.

Social insurance and housing fund are computed on regular salary only; bonus
enters taxable income but not the contribution base.
"""

import calendar
import logging
from datetime import date
from decimal import Decimal
from typing import NamedTuple, Sequence

from src.calculators.errors import DuplicateMonthInput
from src.calculators.income_tax import calculate_tax
from src.calculators.social_insurance import SocialInsuranceCalculator
from src.calculators.tax_data import MONTHLY_BASIC_DEDUCTION, params_signature, round2
from src.db.models import ForecastResult, ForecastTotals, MonthlyIncomeInput, MonthlyResult
from src.db.tax_config import TaxConfigRepository, gather_lookups, load_effective_config

logger = logging.getLogger(__name__)

_ZERO = Decimal("0")


class WithholdingState(NamedTuple):
    """Year-to-date tax due and tax actually charged so far.

    Invariant after every ``advance``: 0 <= cumulative_charged <= cumulative_due.
    """

    cumulative_due: Decimal = _ZERO
    cumulative_charged: Decimal = _ZERO

    def advance(self, cumulative_due: Decimal) -> tuple["WithholdingState", Decimal]:
        """Move to the next month's cumulative due; return (new state, tax to charge)."""
        tax_this_month = max(_ZERO, cumulative_due - self.cumulative_charged)
        charged = min(cumulative_due, self.cumulative_charged + tax_this_month)
        return WithholdingState(cumulative_due, charged), tax_this_month


def month_end(year: int, month: int) -> date:
    """Last calendar day of a month; config is resolved as of this date."""
    return date(year, month, calendar.monthrange(year, month)[1])


def _order_months(months: Sequence[MonthlyIncomeInput]) -> list[MonthlyIncomeInput]:
    seen: set[tuple[int, int]] = set()
    for item in months:
        key = (item.year, item.month)
        if key in seen:
            raise DuplicateMonthInput(f"Month {item.year}-{item.month:02d} appears more than once")
        seen.add(key)
    return sorted(months, key=lambda m: (m.year, m.month))


async def calculate_forecast_withholding_cumulative(
    repository: TaxConfigRepository,
    city: str,
    months: Sequence[MonthlyIncomeInput],
    monthly_basic_deduction: Decimal = MONTHLY_BASIC_DEDUCTION,
) -> list[MonthlyResult]:
    """Run the cumulative withholding method over a sequence of months.

    Args:
        repository: Source of effective-dated brackets and SI/HF config.
        city: Jurisdiction key.
        months: Monthly salary and bonus; sorted here by (year, month).
        monthly_basic_deduction: Standard deduction per elapsed month.

    Returns:
        One MonthlyResult per input month, in chronological order.

    Raises:
        DuplicateMonthInput: if a (year, month) repeats.
        ConfigurationMissing: if any month has no brackets or SI config.
        ConfigurationAmbiguous: if any month resolves to overlapping versions.
    """
    ordered = _order_months(months)
    if not ordered:
        return []

    logger.info(
        "Forecasting %d months for %s (%d-%02d to %d-%02d)",
        len(ordered),
        city,
        ordered[0].year,
        ordered[0].month,
        ordered[-1].year,
        ordered[-1].month,
    )

    # Lookups are independent; results must still be computed in order.
    # The first failure cancels the lookups still in flight.
    configs = await gather_lookups(
        *(load_effective_config(repository, city, month_end(m.year, m.month)) for m in ordered)
    )

    cumulative_gross = _ZERO
    cumulative_sihf = _ZERO
    state = WithholdingState()
    previous_signature: str | None = None
    results: list[MonthlyResult] = []

    for months_elapsed, (item, (brackets, social_config)) in enumerate(
        zip(ordered, configs), start=1
    ):
        social_calc = SocialInsuranceCalculator(social_config)
        social = social_calc.calculate_social_insurance(item.gross)
        housing = social_calc.calculate_housing_fund(item.gross)
        sihf_this_month = social.total + housing.amount

        month_gross = item.gross + item.bonus
        cumulative_gross += month_gross
        cumulative_sihf += sihf_this_month

        cumulative_taxable = max(
            _ZERO,
            cumulative_gross - cumulative_sihf - monthly_basic_deduction * months_elapsed,
        )
        due = calculate_tax(cumulative_taxable, brackets)
        previously_charged = state.cumulative_charged
        state, tax_this_month = state.advance(due.tax)

        if due.tax < previously_charged:
            logger.warning(
                "%d-%02d: cumulative tax due for %s fell from %s to %s; nothing withheld",
                item.year,
                item.month,
                city,
                previously_charged,
                due.tax,
            )

        signature = params_signature(brackets)
        tax_rule_changed = previous_signature is not None and signature != previous_signature
        previous_signature = signature

        net = month_gross - sihf_this_month - tax_this_month

        logger.debug(
            "%d-%02d taxable=%s due=%s withheld=%s",
            item.year,
            item.month,
            cumulative_taxable,
            state.cumulative_due,
            tax_this_month,
        )

        results.append(
            MonthlyResult(
                year=item.year,
                month=item.month,
                ym=f"{item.year}-{item.month:02d}",
                salary_this_month=round2(item.gross),
                bonus_this_month=round2(item.bonus),
                gross_this_month=round2(month_gross),
                cumulative_income=round2(cumulative_gross),
                social_insurance_this_month=round2(social.total),
                housing_fund_this_month=round2(housing.amount),
                total_deductions_this_month=round2(sihf_this_month),
                tax_this_month=round2(tax_this_month),
                net=round2(net),
                applied_tax_rate=round2(due.bracket.tax_rate * 100),
                cumulative_taxable=round2(cumulative_taxable),
                cumulative_tax_due=round2(state.cumulative_due),
                cumulative_tax_charged=round2(state.cumulative_charged),
                params_signature=signature,
                tax_rule_changed=tax_rule_changed,
            )
        )

    logger.info(
        "Forecast for %s complete: total tax %s", city, sum(r.tax_this_month for r in results)
    )
    return results


def summarize_forecast(results: Sequence[MonthlyResult]) -> ForecastTotals:
    """Totals over a forecast; each field is a plain sum of the monthly values."""
    return ForecastTotals(
        total_salary=sum((r.salary_this_month for r in results), _ZERO),
        total_bonus=sum((r.bonus_this_month for r in results), _ZERO),
        total_gross=sum((r.gross_this_month for r in results), _ZERO),
        total_net=sum((r.net for r in results), _ZERO),
        total_tax=sum((r.tax_this_month for r in results), _ZERO),
    )


async def calculate_forecast(
    repository: TaxConfigRepository,
    city: str,
    months: Sequence[MonthlyIncomeInput],
    monthly_basic_deduction: Decimal = MONTHLY_BASIC_DEDUCTION,
) -> ForecastResult:
    """Monthly results plus totals, as handed to reporting callers."""
    results = await calculate_forecast_withholding_cumulative(
        repository, city, months, monthly_basic_deduction
    )
    return ForecastResult(city=city, results=results, totals=summarize_forecast(results))
