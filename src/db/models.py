"""Pydantic models for calculation inputs, results and config rows."""

from datetime import date
from decimal import Decimal

from pydantic import BaseModel, Field

# --- Inputs ---


class MonthlyIncomeInput(BaseModel):
    """One month of income fed to the cumulative withholding engine."""

    year: int
    month: int = Field(ge=1, le=12)
    gross: Decimal  # regular salary; the SI/HF contribution base
    bonus: Decimal = Field(default=Decimal("0"), ge=0)


class IncomeCalculationInput(BaseModel):
    """Single-month what-if calculation request."""

    year: int
    month: int = Field(ge=1, le=12)
    gross: Decimal = Field(ge=0)
    bonus: Decimal = Field(default=Decimal("0"), ge=0)
    special_deductions: Decimal = Field(default=Decimal("0"), ge=0)
    other_deductions: Decimal = Field(default=Decimal("0"), ge=0)
    charity_donations: Decimal = Field(default=Decimal("0"), ge=0)
    custom_social_insurance_base: Decimal | None = None
    custom_housing_fund_base: Decimal | None = None


# --- Results ---


class MonthlyResult(BaseModel):
    """Cumulative withholding outcome for one month."""

    year: int
    month: int
    ym: str
    salary_this_month: Decimal
    bonus_this_month: Decimal
    gross_this_month: Decimal
    cumulative_income: Decimal
    social_insurance_this_month: Decimal
    housing_fund_this_month: Decimal
    total_deductions_this_month: Decimal
    tax_this_month: Decimal
    net: Decimal
    applied_tax_rate: Decimal  # percent
    cumulative_taxable: Decimal
    cumulative_tax_due: Decimal
    cumulative_tax_charged: Decimal
    params_signature: str
    tax_rule_changed: bool = False


class ForecastTotals(BaseModel):
    """Sums over a forecast's monthly results."""

    total_salary: Decimal
    total_bonus: Decimal
    total_gross: Decimal
    total_net: Decimal
    total_tax: Decimal


class ForecastResult(BaseModel):
    """Monthly results plus totals for one city."""

    city: str
    results: list[MonthlyResult]
    totals: ForecastTotals


class AppliedTaxBracket(BaseModel):
    rate: Decimal  # percent
    quick_deduction: Decimal


class IncomeCalculationResult(BaseModel):
    """Single-month what-if calculation result."""

    month: int
    gross_income: Decimal
    bonus: Decimal
    social_insurance_base: Decimal
    housing_fund_base: Decimal
    social_insurance: Decimal
    housing_fund: Decimal
    special_deductions: Decimal
    other_deductions: Decimal
    charity_donations: Decimal
    taxable_income: Decimal
    income_tax: Decimal
    net_income: Decimal
    tax_config_version: str
    params_signature: str
    effective_tax_rate: Decimal  # percent of gross + bonus
    applied_tax_bracket: AppliedTaxBracket


class MonthMarkers(BaseModel):
    """Income events that happened in a month, for forecast annotations."""

    salary_change: bool = False
    bonus_paid: bool = False
    long_term_cash_count: int = 0


# --- Config rows ---


class ConfigVersionSummary(BaseModel):
    """One stored config version (maps to a *_versions / *_configs row)."""

    kind: str  # "tax_brackets" or "social_insurance"
    city: str
    effective_from: date
    effective_to: date | None = None
