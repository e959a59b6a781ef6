"""Single-month what-if calculator combining SI/HF and income tax.

Unlike the cumulative engine, bonus goes into this month's taxable income
alongside salary and the bracket table is applied once, with no year-to-date
state.
"""

from decimal import Decimal

from src.calculators.income_tax import calculate_tax
from src.calculators.social_insurance import SocialInsuranceCalculator
from src.calculators.tax_data import MONTHLY_BASIC_DEDUCTION, params_signature, round2
from src.calculators.withholding import month_end
from src.db.models import AppliedTaxBracket, IncomeCalculationInput, IncomeCalculationResult
from src.db.tax_config import TaxConfigRepository, load_effective_config

_ZERO = Decimal("0")


async def calculate_monthly_income(
    repository: TaxConfigRepository,
    city: str,
    income: IncomeCalculationInput,
    monthly_basic_deduction: Decimal = MONTHLY_BASIC_DEDUCTION,
) -> IncomeCalculationResult:
    """Calculate one month's contributions, tax and take-home pay.

    Args:
        repository: Source of effective-dated brackets and SI/HF config.
        city: Jurisdiction key.
        income: Salary, bonus, deductions and optional contribution bases.
        monthly_basic_deduction: Standard deduction for the month.

    Raises:
        ConfigurationMissing: if the month has no brackets or SI config.
        ConfigurationAmbiguous: if versions overlap on the month.
    """
    brackets, social_config = await load_effective_config(
        repository, city, month_end(income.year, income.month)
    )

    social_calc = SocialInsuranceCalculator(social_config)
    social = social_calc.calculate_social_insurance(
        income.gross, income.custom_social_insurance_base
    )
    housing = social_calc.calculate_housing_fund(income.gross, income.custom_housing_fund_base)

    total_income = income.gross + income.bonus
    taxable = max(
        _ZERO,
        total_income
        - monthly_basic_deduction
        - social.total
        - housing.amount
        - income.special_deductions
        - income.other_deductions
        - income.charity_donations,
    )
    result = calculate_tax(taxable, brackets)

    net = total_income - social.total - housing.amount - result.tax
    effective_rate = (result.tax / total_income * 100) if total_income > 0 else _ZERO

    return IncomeCalculationResult(
        month=income.month,
        gross_income=round2(income.gross),
        bonus=round2(income.bonus),
        social_insurance_base=round2(social.base),
        housing_fund_base=round2(housing.base),
        social_insurance=round2(social.total),
        housing_fund=round2(housing.amount),
        special_deductions=round2(income.special_deductions),
        other_deductions=round2(income.other_deductions),
        charity_donations=round2(income.charity_donations),
        taxable_income=round2(taxable),
        income_tax=round2(result.tax),
        net_income=round2(net),
        tax_config_version=f"{city}-{income.year}-{income.month}",
        params_signature=params_signature(brackets),
        effective_tax_rate=round2(effective_rate),
        applied_tax_bracket=AppliedTaxBracket(
            rate=result.bracket.tax_rate * 100,
            quick_deduction=result.bracket.quick_deduction,
        ),
    )
