"""Tests for building monthly inputs from salary, bonus and long-term cash records."""

from datetime import date
from decimal import Decimal

import pytest
from pydantic import ValidationError

from config import load_yaml_config
from src.income.plan import IncomePlan, parse_year_month
from src.income.schedule import (
    LONG_TERM_CASH_INSTALMENTS,
    BonusPlan,
    LongTermCash,
    SalaryChange,
    build_monthly_inputs,
    iterate_months,
    long_term_cash_instalments,
    month_markers,
    salary_for_month,
)


def test_iterate_months_across_year_end() -> None:
    assert iterate_months(date(2024, 11, 20), date(2025, 2, 1)) == [
        (2024, 11),
        (2024, 12),
        (2025, 1),
        (2025, 2),
    ]


def test_iterate_months_single_and_empty() -> None:
    assert iterate_months(date(2025, 3, 1), date(2025, 3, 31)) == [(2025, 3)]
    assert iterate_months(date(2025, 3, 1), date(2025, 2, 1)) == []


def test_salary_for_month_uses_latest_change() -> None:
    changes = [
        SalaryChange(date(2025, 6, 15), Decimal("25000")),
        SalaryChange(date(2025, 1, 1), Decimal("20000")),
    ]
    assert salary_for_month(changes, 2024, 12) is None
    assert salary_for_month(changes, 2025, 5).gross_monthly == Decimal("20000")
    # A change effective mid-month applies to that whole month
    assert salary_for_month(changes, 2025, 6).gross_monthly == Decimal("25000")


def test_long_term_cash_quarterly_instalments() -> None:
    award = LongTermCash(date(2025, 4, 15), Decimal("160000"))

    paid_months = [
        (year, month)
        for year, month in iterate_months(date(2025, 1, 1), date(2030, 12, 1))
        if long_term_cash_instalments([award], year, month)
    ]

    assert len(paid_months) == LONG_TERM_CASH_INSTALMENTS
    assert paid_months[0] == (2025, 4)
    assert paid_months[-1] == (2029, 1)
    assert {month for _, month in paid_months} == {1, 4, 7, 10}
    assert long_term_cash_instalments([award], 2025, 7) == [(award, Decimal("10000"))]


def test_long_term_cash_only_in_payout_months() -> None:
    award = LongTermCash(date(2025, 1, 1), Decimal("16000"))
    assert long_term_cash_instalments([award], 2025, 2) == []
    assert long_term_cash_instalments([award], 2025, 12) == []


def test_build_monthly_inputs() -> None:
    inputs = build_monthly_inputs(
        date(2025, 1, 1),
        date(2025, 4, 1),
        salary_changes=[
            SalaryChange(date(2025, 1, 1), Decimal("20000")),
            SalaryChange(date(2025, 3, 1), Decimal("22000")),
        ],
        bonuses=[
            BonusPlan(date(2025, 2, 20), Decimal("30000")),
            BonusPlan(date(2025, 2, 25), Decimal("5000")),
        ],
        long_term_cash=[LongTermCash(date(2025, 4, 1), Decimal("32000"))],
    )

    assert [(i.year, i.month) for i in inputs] == [(2025, 1), (2025, 2), (2025, 3), (2025, 4)]
    assert [i.gross for i in inputs] == [
        Decimal("20000"),
        Decimal("20000"),
        Decimal("22000"),
        Decimal("22000"),
    ]
    assert [i.bonus for i in inputs] == [0, Decimal("35000"), 0, Decimal("2000")]


def test_build_monthly_inputs_before_first_salary() -> None:
    inputs = build_monthly_inputs(
        date(2025, 1, 1),
        date(2025, 2, 1),
        salary_changes=[SalaryChange(date(2025, 2, 1), Decimal("20000"))],
    )
    assert [i.gross for i in inputs] == [0, Decimal("20000")]


def test_build_monthly_inputs_converts_currency() -> None:
    def convert(amount: Decimal, currency: str, on_date: date) -> Decimal:
        return amount * Decimal("7") if currency == "USD" else amount

    inputs = build_monthly_inputs(
        date(2025, 1, 1),
        date(2025, 1, 1),
        salary_changes=[SalaryChange(date(2025, 1, 1), Decimal("3000"), "USD")],
        bonuses=[BonusPlan(date(2025, 1, 10), Decimal("1000"))],
        convert=convert,
    )
    assert inputs[0].gross == Decimal("21000")
    assert inputs[0].bonus == Decimal("1000")


def test_foreign_currency_without_converter() -> None:
    with pytest.raises(ValueError, match="USD"):
        build_monthly_inputs(
            date(2025, 1, 1),
            date(2025, 1, 1),
            salary_changes=[SalaryChange(date(2025, 1, 1), Decimal("3000"), "USD")],
        )


def test_month_markers() -> None:
    markers = month_markers(
        date(2025, 1, 1),
        date(2025, 4, 1),
        salary_changes=[SalaryChange(date(2025, 3, 1), Decimal("22000"))],
        bonuses=[BonusPlan(date(2025, 2, 20), Decimal("30000"))],
        long_term_cash=[
            LongTermCash(date(2025, 4, 1), Decimal("32000")),
            LongTermCash(date(2024, 10, 1), Decimal("16000")),
        ],
    )

    assert list(markers) == ["2025-01", "2025-02", "2025-03", "2025-04"]
    assert markers["2025-02"].bonus_paid
    assert markers["2025-03"].salary_change
    assert not markers["2025-01"].salary_change
    assert markers["2025-01"].long_term_cash_count == 1
    assert markers["2025-04"].long_term_cash_count == 2


# --- Plan files ---


def test_parse_year_month() -> None:
    assert parse_year_month("2025-07") == (2025, 7)


def test_income_plan_from_yaml(tmp_path) -> None:
    plan_file = tmp_path / "plan.yaml"
    plan_file.write_text(
        "city: Hangzhou\n"
        "start: '2025-01'\n"
        "end: '2025-12'\n"
        "salary_changes:\n"
        "  - {effective_from: 2025-01-01, gross_monthly: 20000}\n"
        "bonuses:\n"
        "  - {effective_date: 2025-12-20, amount: 50000}\n",
        encoding="utf-8",
    )

    plan = IncomePlan.model_validate(load_yaml_config(plan_file))
    inputs = plan.monthly_inputs()

    assert plan.city == "Hangzhou"
    assert plan.start_date == date(2025, 1, 1)
    assert len(inputs) == 12
    assert inputs[-1].bonus == Decimal("50000")
    assert plan.markers()["2025-12"].bonus_paid


def test_income_plan_rejects_bad_month() -> None:
    with pytest.raises(ValidationError):
        IncomePlan(start="2025-13", end="2025-12")


def test_income_plan_rejects_negative_salary() -> None:
    with pytest.raises(ValidationError):
        IncomePlan.model_validate(
            {
                "start": "2025-01",
                "end": "2025-02",
                "salary_changes": [{"effective_from": "2025-01-01", "gross_monthly": -1}],
            }
        )
