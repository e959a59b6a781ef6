"""Assemble monthly forecast inputs from salary, bonus and long-term cash records."""

from collections.abc import Callable, Sequence
from datetime import date
from decimal import Decimal
from typing import NamedTuple

from src.calculators.withholding import month_end
from src.db.models import MonthlyIncomeInput, MonthMarkers

REPORTING_CURRENCY = "CNY"

# Long-term cash awards pay out in equal quarterly instalments
LONG_TERM_CASH_INSTALMENTS = 16
LONG_TERM_CASH_PAYOUT_MONTHS = (1, 4, 7, 10)

_ZERO = Decimal("0")

CurrencyConverter = Callable[[Decimal, str, date], Decimal]
"""(amount, currency, on_date) -> amount in the reporting currency."""


class SalaryChange(NamedTuple):
    """Monthly gross salary in force from a date onwards."""

    effective_from: date
    gross_monthly: Decimal
    currency: str = REPORTING_CURRENCY


class BonusPlan(NamedTuple):
    """A one-off bonus paid on a date."""

    effective_date: date
    amount: Decimal
    currency: str = REPORTING_CURRENCY


class LongTermCash(NamedTuple):
    """A cash award paid out over LONG_TERM_CASH_INSTALMENTS quarters."""

    effective_date: date
    total_amount: Decimal
    currency: str = REPORTING_CURRENCY


def _same_currency(amount: Decimal, currency: str, on_date: date) -> Decimal:
    if currency != REPORTING_CURRENCY:
        raise ValueError(f"No converter supplied for {currency} amount on {on_date}")
    return amount


def iterate_months(start: date, end: date) -> list[tuple[int, int]]:
    """(year, month) pairs from start's month to end's month inclusive."""
    months: list[tuple[int, int]] = []
    year, month = start.year, start.month
    while (year, month) <= (end.year, end.month):
        months.append((year, month))
        year, month = (year + 1, 1) if month == 12 else (year, month + 1)
    return months


def salary_for_month(changes: Sequence[SalaryChange], year: int, month: int) -> SalaryChange | None:
    """Latest salary change effective on or before the month's last day."""
    cutoff = month_end(year, month)
    current: SalaryChange | None = None
    for change in sorted(changes, key=lambda c: c.effective_from):
        if change.effective_from <= cutoff:
            current = change
    return current


def bonuses_for_month(bonuses: Sequence[BonusPlan], year: int, month: int) -> list[BonusPlan]:
    return [
        b for b in bonuses if b.effective_date.year == year and b.effective_date.month == month
    ]


def long_term_cash_instalments(
    awards: Sequence[LongTermCash], year: int, month: int
) -> list[tuple[LongTermCash, Decimal]]:
    """Awards paying an instalment in this month, with the instalment amount.

    Instalments fall in payout months, counted in quarters from the quarter the
    award became effective.
    """
    if month not in LONG_TERM_CASH_PAYOUT_MONTHS:
        return []

    paid: list[tuple[LongTermCash, Decimal]] = []
    for award in awards:
        start = award.effective_date
        quarters = (year - start.year) * 4 + ((month - 1) // 3 - (start.month - 1) // 3)
        if 0 <= quarters < LONG_TERM_CASH_INSTALMENTS:
            paid.append((award, award.total_amount / LONG_TERM_CASH_INSTALMENTS))
    return paid


def build_monthly_inputs(
    start: date,
    end: date,
    salary_changes: Sequence[SalaryChange] = (),
    bonuses: Sequence[BonusPlan] = (),
    long_term_cash: Sequence[LongTermCash] = (),
    convert: CurrencyConverter | None = None,
) -> list[MonthlyIncomeInput]:
    """One MonthlyIncomeInput per month in [start, end].

    Salary becomes ``gross``; bonuses and long-term cash instalments paid in
    the month are summed into ``bonus``. Foreign-currency amounts go through
    ``convert``; without one, any non-CNY record raises ValueError.
    """
    convert = convert or _same_currency
    inputs: list[MonthlyIncomeInput] = []

    for year, month in iterate_months(start, end):
        cutoff = month_end(year, month)

        salary = salary_for_month(salary_changes, year, month)
        gross = convert(salary.gross_monthly, salary.currency, cutoff) if salary else _ZERO

        bonus = sum(
            (
                convert(b.amount, b.currency, b.effective_date)
                for b in bonuses_for_month(bonuses, year, month)
            ),
            _ZERO,
        )
        bonus += sum(
            (
                convert(amount, award.currency, cutoff)
                for award, amount in long_term_cash_instalments(long_term_cash, year, month)
            ),
            _ZERO,
        )

        inputs.append(MonthlyIncomeInput(year=year, month=month, gross=gross, bonus=bonus))

    return inputs


def month_markers(
    start: date,
    end: date,
    salary_changes: Sequence[SalaryChange] = (),
    bonuses: Sequence[BonusPlan] = (),
    long_term_cash: Sequence[LongTermCash] = (),
) -> dict[str, MonthMarkers]:
    """Income events per month, keyed by "YYYY-MM"."""
    change_months = {(c.effective_from.year, c.effective_from.month) for c in salary_changes}
    markers: dict[str, MonthMarkers] = {}
    for year, month in iterate_months(start, end):
        markers[f"{year}-{month:02d}"] = MonthMarkers(
            salary_change=(year, month) in change_months,
            bonus_paid=bool(bonuses_for_month(bonuses, year, month)),
            long_term_cash_count=len(long_term_cash_instalments(long_term_cash, year, month)),
        )
    return markers
