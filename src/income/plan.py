"""Income plan files: a forecast window plus salary, bonus and award records."""

from datetime import date
from decimal import Decimal

from pydantic import BaseModel, Field

from src.db.models import MonthlyIncomeInput, MonthMarkers
from src.income.schedule import (
    REPORTING_CURRENCY,
    BonusPlan,
    CurrencyConverter,
    LongTermCash,
    SalaryChange,
    build_monthly_inputs,
    month_markers,
)

_YM_PATTERN = r"^\d{4}-(0[1-9]|1[0-2])$"


def parse_year_month(value: str) -> tuple[int, int]:
    year, month = value.split("-")
    return int(year), int(month)


class SalaryChangeEntry(BaseModel):
    effective_from: date
    gross_monthly: Decimal = Field(ge=0)
    currency: str = REPORTING_CURRENCY


class BonusEntry(BaseModel):
    effective_date: date
    amount: Decimal = Field(ge=0)
    currency: str = REPORTING_CURRENCY


class LongTermCashEntry(BaseModel):
    effective_date: date
    total_amount: Decimal = Field(gt=0)
    currency: str = REPORTING_CURRENCY


class IncomePlan(BaseModel):
    """A forecast request as written in a YAML plan file."""

    city: str | None = None
    start: str = Field(pattern=_YM_PATTERN)
    end: str = Field(pattern=_YM_PATTERN)
    salary_changes: list[SalaryChangeEntry] = []
    bonuses: list[BonusEntry] = []
    long_term_cash: list[LongTermCashEntry] = []

    @property
    def start_date(self) -> date:
        return date(*parse_year_month(self.start), 1)

    @property
    def end_date(self) -> date:
        return date(*parse_year_month(self.end), 1)

    def _records(self) -> tuple[list[SalaryChange], list[BonusPlan], list[LongTermCash]]:
        salary = [
            SalaryChange(e.effective_from, e.gross_monthly, e.currency)
            for e in self.salary_changes
        ]
        bonuses = [BonusPlan(e.effective_date, e.amount, e.currency) for e in self.bonuses]
        awards = [
            LongTermCash(e.effective_date, e.total_amount, e.currency)
            for e in self.long_term_cash
        ]
        return salary, bonuses, awards

    def monthly_inputs(self, convert: CurrencyConverter | None = None) -> list[MonthlyIncomeInput]:
        salary, bonuses, awards = self._records()
        return build_monthly_inputs(
            self.start_date, self.end_date, salary, bonuses, awards, convert=convert
        )

    def markers(self) -> dict[str, MonthMarkers]:
        salary, bonuses, awards = self._records()
        return month_markers(self.start_date, self.end_date, salary, bonuses, awards)
