"""China IIT constants: bracket table, basic deductions, social insurance types.

Statutory defaults live here as Python constants; city-specific versions are
stored in the database and resolved by date (see src/db/tax_config.py).
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import NamedTuple, Sequence

from src.calculators.errors import InvalidBracketTable, InvalidSocialInsuranceConfig


class TaxBracket(NamedTuple):
    """A single bracket of the comprehensive income table."""

    min_income: Decimal  # inclusive
    max_income: Decimal | None  # exclusive; None = no cap
    tax_rate: Decimal
    quick_deduction: Decimal


class SocialInsuranceConfig(NamedTuple):
    """Employee-side social insurance and housing fund parameters for a city."""

    social_min_base: Decimal
    social_max_base: Decimal
    pension_rate: Decimal
    medical_rate: Decimal
    unemployment_rate: Decimal
    housing_fund_min_base: Decimal
    housing_fund_max_base: Decimal
    housing_fund_rate: Decimal


MONTHLY_BASIC_DEDUCTION = Decimal("5000")
ANNUAL_BASIC_DEDUCTION = Decimal("60000")

DEFAULT_CITY = "Hangzhou"

# Annual comprehensive income table (effective 2019-01-01). Applied to
# year-to-date taxable income by the cumulative withholding method.
COMPREHENSIVE_BRACKETS: tuple[TaxBracket, ...] = (
    TaxBracket(Decimal("0"), Decimal("36000"), Decimal("0.03"), Decimal("0")),
    TaxBracket(Decimal("36000"), Decimal("144000"), Decimal("0.10"), Decimal("2520")),
    TaxBracket(Decimal("144000"), Decimal("300000"), Decimal("0.20"), Decimal("16920")),
    TaxBracket(Decimal("300000"), Decimal("420000"), Decimal("0.25"), Decimal("31920")),
    TaxBracket(Decimal("420000"), Decimal("660000"), Decimal("0.30"), Decimal("52920")),
    TaxBracket(Decimal("660000"), Decimal("960000"), Decimal("0.35"), Decimal("85920")),
    TaxBracket(Decimal("960000"), None, Decimal("0.45"), Decimal("181920")),
)

# Employee-side rates used when imported parameters omit them
DEFAULT_PENSION_RATE = Decimal("0.08")
DEFAULT_MEDICAL_RATE = Decimal("0.02")
DEFAULT_UNEMPLOYMENT_RATE = Decimal("0.005")
DEFAULT_HOUSING_FUND_RATE = Decimal("0.12")

_ZERO = Decimal("0")
_ONE = Decimal("1")
_CENT = Decimal("0.01")


def round2(value: Decimal) -> Decimal:
    """Round a money amount to cents, half-up."""
    return value.quantize(_CENT, rounding=ROUND_HALF_UP)


def sort_brackets(brackets: Sequence[TaxBracket]) -> list[TaxBracket]:
    """Return brackets ordered ascending by min_income."""
    return sorted(brackets, key=lambda b: b.min_income)


def validate_brackets(brackets: Sequence[TaxBracket]) -> list[TaxBracket]:
    """Check a bracket table and return it sorted.

    Raises:
        InvalidBracketTable: if the table is empty, does not start at 0,
            has gaps/overlaps, has rates outside [0, 1], negative quick
            deductions, or not exactly one unbounded top bracket.
    """
    if not brackets:
        raise InvalidBracketTable("Bracket table is empty")

    ordered = sort_brackets(brackets)
    if ordered[0].min_income != _ZERO:
        raise InvalidBracketTable(
            f"Lowest bracket must start at 0, got {ordered[0].min_income}"
        )

    open_count = sum(1 for b in ordered if b.max_income is None)
    if open_count != 1:
        raise InvalidBracketTable(
            f"Expected exactly one unbounded top bracket, found {open_count}"
        )
    if ordered[-1].max_income is not None:
        raise InvalidBracketTable("The unbounded bracket must be the highest one")

    for bracket in ordered:
        if not _ZERO <= bracket.tax_rate <= _ONE:
            raise InvalidBracketTable(f"Tax rate {bracket.tax_rate} outside [0, 1]")
        if bracket.quick_deduction < _ZERO:
            raise InvalidBracketTable(
                f"Quick deduction {bracket.quick_deduction} is negative"
            )
        if bracket.max_income is not None and bracket.max_income <= bracket.min_income:
            raise InvalidBracketTable(
                f"Bracket [{bracket.min_income}, {bracket.max_income}) is empty"
            )

    for lower, upper in zip(ordered, ordered[1:]):
        if lower.max_income != upper.min_income:
            raise InvalidBracketTable(
                f"Brackets not contiguous: {lower.max_income} -> {upper.min_income}"
            )

    return ordered


def validate_social_insurance_config(config: SocialInsuranceConfig) -> SocialInsuranceConfig:
    """Check rate bounds and min <= max for both base pairs."""
    for name in ("pension_rate", "medical_rate", "unemployment_rate", "housing_fund_rate"):
        rate = getattr(config, name)
        if not _ZERO <= rate <= _ONE:
            raise InvalidSocialInsuranceConfig(f"{name}={rate} outside [0, 1]")

    for name in (
        "social_min_base",
        "social_max_base",
        "housing_fund_min_base",
        "housing_fund_max_base",
    ):
        if getattr(config, name) < _ZERO:
            raise InvalidSocialInsuranceConfig(f"{name} is negative")

    if config.social_min_base > config.social_max_base:
        raise InvalidSocialInsuranceConfig(
            f"Social insurance base range inverted: "
            f"{config.social_min_base} > {config.social_max_base}"
        )
    if config.housing_fund_min_base > config.housing_fund_max_base:
        raise InvalidSocialInsuranceConfig(
            f"Housing fund base range inverted: "
            f"{config.housing_fund_min_base} > {config.housing_fund_max_base}"
        )
    return config


def _canonical(value: Decimal) -> str:
    # Same text for 36000, 36000.00 and 3.6E+4
    return format(value.normalize(), "f")


def params_signature(brackets: Sequence[TaxBracket]) -> str:
    """Fingerprint a bracket table, e.g. ``0-0.03-0|36000-0.1-2520|...``.

    Two months with different signatures were taxed under different tables.
    """
    return "|".join(
        f"{_canonical(b.min_income)}-{_canonical(b.tax_rate)}-{_canonical(b.quick_deduction)}"
        for b in sort_brackets(brackets)
    )
