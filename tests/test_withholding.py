"""Tests for the cumulative withholding engine."""

import asyncio
import logging
from datetime import date
from decimal import Decimal

import pytest

from src.calculators.errors import ConfigurationMissing, DuplicateMonthInput
from src.calculators.withholding import (
    WithholdingState,
    calculate_forecast,
    calculate_forecast_withholding_cumulative,
    month_end,
    summarize_forecast,
)
from src.db.models import MonthlyIncomeInput

CITY = "Hangzhou"


def _months(
    *gross: str, year: int = 2025, bonus: dict[int, str] | None = None
) -> list[MonthlyIncomeInput]:
    bonus = bonus or {}
    return [
        MonthlyIncomeInput(
            year=year,
            month=index,
            gross=Decimal(amount),
            bonus=Decimal(bonus.get(index, "0")),
        )
        for index, amount in enumerate(gross, start=1)
    ]


# --- WithholdingState ---


def test_state_starts_empty() -> None:
    state = WithholdingState()
    assert state.cumulative_due == 0
    assert state.cumulative_charged == 0


def test_state_charges_increase_in_due() -> None:
    state, tax = WithholdingState().advance(Decimal("100"))
    assert tax == Decimal("100")
    assert state == WithholdingState(Decimal("100"), Decimal("100"))

    state, tax = state.advance(Decimal("250"))
    assert tax == Decimal("150")
    assert state.cumulative_charged == Decimal("250")


def test_state_drop_charges_nothing_and_resyncs() -> None:
    """A fall in due is not refunded; the charged baseline follows due down."""
    state = WithholdingState(Decimal("100"), Decimal("100"))

    state, tax = state.advance(Decimal("80"))
    assert tax == 0
    assert state == WithholdingState(Decimal("80"), Decimal("80"))

    # Later months accumulate against the lowered baseline
    state, tax = state.advance(Decimal("120"))
    assert tax == Decimal("40")
    assert state.cumulative_charged == Decimal("120")


def test_month_end() -> None:
    assert month_end(2025, 1) == date(2025, 1, 31)
    assert month_end(2025, 2) == date(2025, 2, 28)
    assert month_end(2024, 2) == date(2024, 2, 29)
    assert month_end(2025, 12) == date(2025, 12, 31)


# --- Engine ---


@pytest.mark.asyncio
async def test_full_year_flat_salary(make_repository) -> None:
    """12 x 20,000 with no contributions: 15,000 taxable per month."""
    repository = await make_repository()

    results = await calculate_forecast_withholding_cumulative(
        repository, CITY, _months(*["20000"] * 12)
    )

    expected_due = [
        450, 900, 1980, 3480, 4980, 6480, 7980, 9480, 10980, 13080, 16080, 19080,
    ]
    expected_tax = [450, 450, 1080, 1500, 1500, 1500, 1500, 1500, 1500, 2100, 3000, 3000]
    expected_rate = [3, 3] + [10] * 7 + [20] * 3

    assert [r.cumulative_tax_due for r in results] == [Decimal(d) for d in expected_due]
    assert [r.tax_this_month for r in results] == [Decimal(t) for t in expected_tax]
    assert [r.applied_tax_rate for r in results] == [Decimal(r) for r in expected_rate]
    assert sum(r.tax_this_month for r in results) == Decimal("19080")

    first = results[0]
    assert first.ym == "2025-01"
    assert first.cumulative_taxable == Decimal("15000")
    assert first.net == Decimal("19550")
    assert first.cumulative_income == Decimal("20000")
    assert results[-1].cumulative_income == Decimal("240000")


@pytest.mark.asyncio
async def test_due_is_monotonic_under_one_table(make_repository) -> None:
    repository = await make_repository()
    gross = ["8000", "31000", "4000", "0", "52000", "12000", "19000", "7000"]

    results = await calculate_forecast_withholding_cumulative(repository, CITY, _months(*gross))

    dues = [r.cumulative_tax_due for r in results]
    assert dues == sorted(dues)
    assert all(r.tax_this_month >= 0 for r in results)
    assert all(r.cumulative_tax_charged == r.cumulative_tax_due for r in results)
    assert sum(r.tax_this_month for r in results) == dues[-1]
    assert not any(r.tax_rule_changed for r in results)


@pytest.mark.asyncio
async def test_low_income_pays_nothing(make_repository) -> None:
    repository = await make_repository()

    results = await calculate_forecast_withholding_cumulative(
        repository, CITY, _months("4000", "5000", "3000")
    )

    assert all(r.tax_this_month == 0 for r in results)
    assert all(r.cumulative_taxable == 0 for r in results)


@pytest.mark.asyncio
async def test_rate_cut_mid_year_skips_a_month(make_repository, flat_table, caplog) -> None:
    """10% in January, 3% from February: February's due falls below January's charge."""
    repository = await make_repository(brackets=flat_table("0.10"))
    await repository.save_tax_brackets(CITY, flat_table("0.03"), date(2025, 2, 1))

    with caplog.at_level(logging.WARNING):
        results = await calculate_forecast_withholding_cumulative(
            repository, CITY, _months("20000", "20000", "20000")
        )

    assert [r.tax_this_month for r in results] == [Decimal("1500"), 0, Decimal("450")]
    assert [r.cumulative_tax_due for r in results] == [
        Decimal("1500"),
        Decimal("900"),
        Decimal("1350"),
    ]
    assert results[1].cumulative_tax_charged == Decimal("900")
    assert [r.tax_rule_changed for r in results] == [False, True, False]
    assert [r.applied_tax_rate for r in results] == [Decimal("10"), Decimal("3"), Decimal("3")]

    # No refund: the employee has been charged more than the final due
    total = sum(r.tax_this_month for r in results)
    assert total == Decimal("1950")
    assert total >= results[-1].cumulative_tax_due

    assert "fell from" in caplog.text


@pytest.mark.asyncio
async def test_bonus_is_taxed_but_not_a_contribution_base(
    make_repository, hangzhou_social_config
) -> None:
    repository = await make_repository(social=hangzhou_social_config)

    results = await calculate_forecast_withholding_cumulative(
        repository, CITY, _months("20000", "20000", "20000", bonus={3: "5000"})
    )

    assert all(r.social_insurance_this_month == Decimal("2100") for r in results)
    assert all(r.housing_fund_this_month == Decimal("2400") for r in results)
    assert all(r.total_deductions_this_month == Decimal("4500") for r in results)

    assert [r.tax_this_month for r in results] == [
        Decimal("315"),
        Decimal("315"),
        Decimal("500"),
    ]
    third = results[2]
    assert third.bonus_this_month == Decimal("5000")
    assert third.gross_this_month == Decimal("25000")
    assert third.cumulative_taxable == Decimal("36500")
    assert third.net == Decimal("20000")


@pytest.mark.asyncio
async def test_basic_deduction_parameter(make_repository, flat_table) -> None:
    repository = await make_repository(brackets=flat_table("0.10"))

    results = await calculate_forecast_withholding_cumulative(
        repository, CITY, _months("20000"), monthly_basic_deduction=Decimal("0")
    )

    assert results[0].tax_this_month == Decimal("2000")


@pytest.mark.asyncio
async def test_empty_input(make_repository) -> None:
    repository = await make_repository()
    assert await calculate_forecast_withholding_cumulative(repository, CITY, []) == []


@pytest.mark.asyncio
async def test_unsorted_input_is_ordered(make_repository) -> None:
    repository = await make_repository()
    months = _months("20000", "20000", "20000")

    results = await calculate_forecast_withholding_cumulative(
        repository, CITY, [months[2], months[0], months[1]]
    )

    assert [r.month for r in results] == [1, 2, 3]
    assert [r.tax_this_month for r in results] == [
        Decimal("450"),
        Decimal("450"),
        Decimal("1080"),
    ]


@pytest.mark.asyncio
async def test_duplicate_month_rejected(make_repository) -> None:
    repository = await make_repository()
    months = _months("20000", "20000")

    with pytest.raises(DuplicateMonthInput):
        await calculate_forecast_withholding_cumulative(repository, CITY, months + months[:1])


@pytest.mark.asyncio
async def test_duplicate_month_is_a_value_error(make_repository) -> None:
    repository = await make_repository()
    months = _months("20000")

    with pytest.raises(ValueError, match="2025-01"):
        await calculate_forecast_withholding_cumulative(repository, CITY, months * 2)


@pytest.mark.asyncio
async def test_missing_config_aborts(make_repository) -> None:
    repository = await make_repository()

    with pytest.raises(ConfigurationMissing) as exc_info:
        await calculate_forecast_withholding_cumulative(repository, "Shanghai", _months("20000"))

    assert exc_info.value.city == "Shanghai"


@pytest.mark.asyncio
async def test_month_before_first_version_aborts(make_repository) -> None:
    """December 2024 has no config when versions start in 2025."""
    repository = await make_repository()
    months = [MonthlyIncomeInput(year=2024, month=12, gross=Decimal("20000"))] + _months("20000")

    with pytest.raises(ConfigurationMissing) as exc_info:
        await calculate_forecast_withholding_cumulative(repository, CITY, months)

    assert exc_info.value.as_of == date(2024, 12, 31)


class _StalledAfterJanuary:
    """Nothing configured for January; later lookups wait until cancelled."""

    def __init__(self) -> None:
        self.cancelled: list[date] = []

    async def _lookup(self, as_of: date, empty):
        if as_of.month == 1:
            return empty
        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            self.cancelled.append(as_of)
            raise

    async def get_tax_brackets(self, city: str, as_of: date):
        return await self._lookup(as_of, [])

    async def get_social_insurance_config(self, city: str, as_of: date):
        return await self._lookup(as_of, None)


@pytest.mark.asyncio
async def test_missing_config_cancels_pending_lookups() -> None:
    repository = _StalledAfterJanuary()

    with pytest.raises(ConfigurationMissing) as exc_info:
        await calculate_forecast_withholding_cumulative(
            repository, CITY, _months("20000", "20000", "20000")
        )

    assert exc_info.value.as_of == date(2025, 1, 31)
    # Both kinds for February and March were still waiting
    assert sorted(repository.cancelled) == [
        date(2025, 2, 28),
        date(2025, 2, 28),
        date(2025, 3, 31),
        date(2025, 3, 31),
    ]


@pytest.mark.asyncio
async def test_config_starting_mid_month_applies_to_that_month(
    make_repository, flat_table
) -> None:
    """Config is looked up as of the month's last day."""
    repository = await make_repository(
        brackets=flat_table("0.10"), effective_from=date(2025, 1, 15)
    )

    results = await calculate_forecast_withholding_cumulative(repository, CITY, _months("20000"))

    assert results[0].tax_this_month == Decimal("1500")


# --- Totals ---


@pytest.mark.asyncio
async def test_calculate_forecast_totals(make_repository) -> None:
    repository = await make_repository()

    forecast = await calculate_forecast(
        repository, CITY, _months(*["20000"] * 12, bonus={12: "10000"})
    )

    assert forecast.city == CITY
    assert len(forecast.results) == 12
    totals = forecast.totals
    assert totals.total_salary == Decimal("240000")
    assert totals.total_bonus == Decimal("10000")
    assert totals.total_gross == Decimal("250000")
    assert totals.total_tax == sum(r.tax_this_month for r in forecast.results)
    assert totals.total_net == totals.total_gross - totals.total_tax


def test_summarize_empty() -> None:
    totals = summarize_forecast([])
    assert totals.total_tax == 0
    assert totals.total_gross == 0
