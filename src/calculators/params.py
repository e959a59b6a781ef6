"""City tax parameters in the threshold format used by the curated YAML files.

A parameter set lists bracket lower thresholds only, with SI rates as a loose
mapping. ``import_city_params`` converts it into a contiguous bracket table and
a SocialInsuranceConfig and stores both as versions effective 1 January.
"""

import logging
from collections.abc import Mapping
from datetime import date
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from src.calculators.tax_data import (
    DEFAULT_HOUSING_FUND_RATE,
    DEFAULT_MEDICAL_RATE,
    DEFAULT_PENSION_RATE,
    DEFAULT_UNEMPLOYMENT_RATE,
    SocialInsuranceConfig,
    TaxBracket,
    validate_brackets,
    validate_social_insurance_config,
)
from src.db.tax_config import TaxConfigRepository

logger = logging.getLogger(__name__)


class _ParamsModel(BaseModel):
    # Accept both snake_case and the camelCase keys of stored JSON blobs
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ThresholdBracket(_ParamsModel):
    threshold: Decimal = Field(ge=0)
    rate: Decimal = Field(ge=0, le=1)
    quick_deduction: Decimal = Field(ge=0)


class BaseRange(_ParamsModel):
    min: Decimal = Field(ge=0)
    max: Decimal = Field(ge=0)


class HousingFundParams(_ParamsModel):
    rate: Decimal = Field(ge=0, le=1)
    base_min: Decimal = Field(ge=0)
    base_max: Decimal = Field(ge=0)


class TaxParams(_ParamsModel):
    """One city's parameters for one calendar year.

    The monthly basic deduction is not part of a parameter set; callers pass it
    to the calculators. Extra keys in older blobs are ignored.
    """

    city: str
    year: int
    brackets: list[ThresholdBracket] = Field(min_length=1)
    sihf_rates: dict[str, Decimal] = {}
    sihf_base: BaseRange
    housing_fund: HousingFundParams | None = None


def normalize_tax_params(raw: str | Mapping[str, Any]) -> TaxParams:
    """Parse parameters from a JSON string or an already-decoded mapping.

    Raises:
        pydantic.ValidationError: if the shape is wrong.
    """
    if isinstance(raw, str):
        return TaxParams.model_validate_json(raw)
    return TaxParams.model_validate(raw)


def brackets_from_thresholds(thresholds: list[ThresholdBracket]) -> list[TaxBracket]:
    """Each bracket runs up to the next threshold; the last one is unbounded."""
    ordered = sorted(thresholds, key=lambda t: t.threshold)
    brackets: list[TaxBracket] = []
    for index, item in enumerate(ordered):
        upper = ordered[index + 1].threshold if index + 1 < len(ordered) else None
        brackets.append(
            TaxBracket(
                min_income=item.threshold,
                max_income=upper,
                tax_rate=item.rate,
                quick_deduction=item.quick_deduction,
            )
        )
    return brackets


def social_insurance_from_params(params: TaxParams) -> SocialInsuranceConfig:
    """Build the SI/HF config, filling employee-side defaults for missing rates.

    Housing fund bases fall back to the social insurance bases.
    """
    rates = params.sihf_rates
    housing = params.housing_fund
    return SocialInsuranceConfig(
        social_min_base=params.sihf_base.min,
        social_max_base=params.sihf_base.max,
        pension_rate=rates.get("pension", DEFAULT_PENSION_RATE),
        medical_rate=rates.get("medical", DEFAULT_MEDICAL_RATE),
        unemployment_rate=rates.get("unemployment", DEFAULT_UNEMPLOYMENT_RATE),
        housing_fund_min_base=housing.base_min if housing else params.sihf_base.min,
        housing_fund_max_base=housing.base_max if housing else params.sihf_base.max,
        housing_fund_rate=housing.rate if housing else DEFAULT_HOUSING_FUND_RATE,
    )


async def import_city_params(repository: TaxConfigRepository, params: TaxParams) -> date:
    """Store a parameter set as new versions effective 1 January of its year.

    Brackets and SI config are saved together: if either version cannot be
    stored, neither is.

    Returns:
        The effective_from date of the new versions.
    """
    effective_from = date(params.year, 1, 1)
    brackets = validate_brackets(brackets_from_thresholds(params.brackets))
    social = validate_social_insurance_config(social_insurance_from_params(params))

    await repository.save_tax_config(params.city, brackets, social, effective_from)

    logger.info("Imported %s %d parameters (%d brackets)", params.city, params.year, len(brackets))
    return effective_from
