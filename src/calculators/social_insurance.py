"""Social insurance and housing fund calculator.

Contributions are charged on a base clamped to the city's floor and ceiling:
salaries below the floor contribute at the floor, salaries above the ceiling
at the ceiling.
"""

from decimal import Decimal
from typing import Any, NamedTuple

from src.calculators.tax_data import SocialInsuranceConfig


class SocialInsurance(NamedTuple):
    """Employee social insurance contribution for one month."""

    base: Decimal
    pension: Decimal
    medical: Decimal
    unemployment: Decimal
    total: Decimal


class HousingFund(NamedTuple):
    """Employee housing fund contribution for one month."""

    base: Decimal
    amount: Decimal


def clamp(value: Decimal, lower: Decimal, upper: Decimal) -> Decimal:
    return min(max(value, lower), upper)


class SocialInsuranceCalculator:
    """Contribution calculator bound to one city's config version."""

    def __init__(self, config: SocialInsuranceConfig) -> None:
        self._config = config

    @property
    def config(self) -> SocialInsuranceConfig:
        return self._config

    def calculate_social_insurance_base(self, gross_income: Decimal) -> Decimal:
        return clamp(gross_income, self._config.social_min_base, self._config.social_max_base)

    def calculate_housing_fund_base(self, gross_income: Decimal) -> Decimal:
        return clamp(
            gross_income,
            self._config.housing_fund_min_base,
            self._config.housing_fund_max_base,
        )

    def calculate_social_insurance(
        self,
        gross_income: Decimal,
        custom_base: Decimal | None = None,
    ) -> SocialInsurance:
        """Pension, medical and unemployment contributions.

        Args:
            gross_income: Regular monthly salary.
            custom_base: Explicit contribution base; skips clamping when given.
        """
        base = (
            custom_base
            if custom_base is not None
            else self.calculate_social_insurance_base(gross_income)
        )
        pension = base * self._config.pension_rate
        medical = base * self._config.medical_rate
        unemployment = base * self._config.unemployment_rate
        return SocialInsurance(
            base=base,
            pension=pension,
            medical=medical,
            unemployment=unemployment,
            total=pension + medical + unemployment,
        )

    def calculate_housing_fund(
        self,
        gross_income: Decimal,
        custom_base: Decimal | None = None,
    ) -> HousingFund:
        base = (
            custom_base
            if custom_base is not None
            else self.calculate_housing_fund_base(gross_income)
        )
        return HousingFund(base=base, amount=base * self._config.housing_fund_rate)

    def base_info(self) -> dict[str, Any]:
        """Base ranges and rates, for display next to a calculation."""
        cfg = self._config
        return {
            "social": {
                "min": float(cfg.social_min_base),
                "max": float(cfg.social_max_base),
                "rates": {
                    "pension": float(cfg.pension_rate),
                    "medical": float(cfg.medical_rate),
                    "unemployment": float(cfg.unemployment_rate),
                    "total": float(cfg.pension_rate + cfg.medical_rate + cfg.unemployment_rate),
                },
            },
            "housing_fund": {
                "min": float(cfg.housing_fund_min_base),
                "max": float(cfg.housing_fund_max_base),
                "rate": float(cfg.housing_fund_rate),
            },
        }
