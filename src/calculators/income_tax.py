"""Income tax calculator: bracket lookup with quick deduction."""

from decimal import Decimal
from typing import Any, NamedTuple, Sequence

from src.calculators.errors import InvalidBracketTable
from src.calculators.tax_data import (
    ANNUAL_BASIC_DEDUCTION,
    COMPREHENSIVE_BRACKETS,
    TaxBracket,
    round2,
    sort_brackets,
)

_ZERO = Decimal("0")


class TaxResult(NamedTuple):
    """Tax owed on one taxable amount and the bracket that produced it."""

    tax: Decimal
    bracket: TaxBracket


def find_bracket(taxable_income: Decimal, brackets: Sequence[TaxBracket]) -> TaxBracket:
    """Return the bracket whose [min_income, max_income) contains the income.

    Scans from the highest bracket down.
    """
    ordered = sort_brackets(brackets)
    if not ordered:
        raise InvalidBracketTable("Bracket table is empty")

    for bracket in reversed(ordered):
        if bracket.min_income <= taxable_income and (
            bracket.max_income is None or taxable_income < bracket.max_income
        ):
            return bracket

    raise InvalidBracketTable(f"No bracket covers taxable income {taxable_income}")


def calculate_tax(taxable_income: Decimal, brackets: Sequence[TaxBracket]) -> TaxResult:
    """Apply a bracket table to a taxable amount.

    tax = taxable * rate - quick_deduction, floored at zero. Non-positive
    income pays nothing and reports the lowest bracket.

    Raises:
        InvalidBracketTable: if the table is empty or has a gap at this income.
    """
    if taxable_income <= _ZERO:
        ordered = sort_brackets(brackets)
        if not ordered:
            raise InvalidBracketTable("Bracket table is empty")
        return TaxResult(_ZERO, ordered[0])

    bracket = find_bracket(taxable_income, brackets)
    tax = max(_ZERO, taxable_income * bracket.tax_rate - bracket.quick_deduction)
    return TaxResult(tax, bracket)


def calculate_annual_tax(
    annual_income: Decimal,
    brackets: Sequence[TaxBracket] = COMPREHENSIVE_BRACKETS,
    deductions: Decimal = _ZERO,
    standard_deduction: Decimal = ANNUAL_BASIC_DEDUCTION,
) -> dict[str, Any]:
    """Calculate tax on a full year of comprehensive income in one pass.

    Used for annual reconciliation and the single-period what-if view.

    Args:
        annual_income: Gross annual comprehensive income (must be >= 0).
        brackets: Bracket table to apply.
        deductions: SI/HF, special additional and other deductions for the year.
        standard_deduction: Annual basic deduction (60,000 by statute).

    Returns:
        Dict with taxable_income, total_tax, effective_rate, rate, quick_deduction.
    """
    if annual_income < _ZERO:
        return {"error": "Annual income must be non-negative."}

    taxable = max(_ZERO, annual_income - standard_deduction - deductions)
    result = calculate_tax(taxable, brackets)

    effective_rate = (result.tax / annual_income * 100) if annual_income > 0 else _ZERO

    return {
        "annual_income": float(annual_income),
        "taxable_income": float(round2(taxable)),
        "total_tax": float(round2(result.tax)),
        "effective_rate": float(round2(effective_rate)),
        "rate": float(result.bracket.tax_rate * 100),
        "quick_deduction": float(result.bracket.quick_deduction),
    }
