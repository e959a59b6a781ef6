"""Shared test fixtures."""

from collections.abc import Awaitable, Callable, Sequence
from datetime import date
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.calculators.tax_data import COMPREHENSIVE_BRACKETS, SocialInsuranceConfig, TaxBracket
from src.db.tax_config import InMemoryTaxConfigRepository

CITY = "Hangzhou"
YEAR_START = date(2025, 1, 1)

RepositoryFactory = Callable[..., Awaitable[InMemoryTaxConfigRepository]]


def _flat_table(rate: str) -> list[TaxBracket]:
    return [TaxBracket(Decimal("0"), None, Decimal(rate), Decimal("0"))]


@pytest.fixture
def flat_table() -> Callable[[str], list[TaxBracket]]:
    """Builds a single unbounded bracket at one rate, no quick deduction."""
    return _flat_table


@pytest.fixture
def standard_brackets() -> list[TaxBracket]:
    return list(COMPREHENSIVE_BRACKETS)


@pytest.fixture
def hangzhou_social_config() -> SocialInsuranceConfig:
    """Employee rates 8% + 2% + 0.5%, HF 12%, both bases 5,000-30,000."""
    return SocialInsuranceConfig(
        social_min_base=Decimal("5000"),
        social_max_base=Decimal("30000"),
        pension_rate=Decimal("0.08"),
        medical_rate=Decimal("0.02"),
        unemployment_rate=Decimal("0.005"),
        housing_fund_min_base=Decimal("5000"),
        housing_fund_max_base=Decimal("30000"),
        housing_fund_rate=Decimal("0.12"),
    )


@pytest.fixture
def zero_social_config() -> SocialInsuranceConfig:
    """No contributions at all, for checking pure tax arithmetic."""
    zero = Decimal("0")
    return SocialInsuranceConfig(zero, zero, zero, zero, zero, zero, zero, zero)


@pytest.fixture
def make_repository(
    standard_brackets: list[TaxBracket],
    zero_social_config: SocialInsuranceConfig,
) -> RepositoryFactory:
    """Factory for an in-memory repository with one open version of each kind."""

    async def _make(
        brackets: Sequence[TaxBracket] | None = None,
        social: SocialInsuranceConfig | None = None,
        city: str = CITY,
        effective_from: date = YEAR_START,
    ) -> InMemoryTaxConfigRepository:
        repository = InMemoryTaxConfigRepository()
        await repository.save_tax_brackets(
            city, brackets if brackets is not None else standard_brackets, effective_from
        )
        await repository.save_social_insurance_config(
            city, social if social is not None else zero_social_config, effective_from
        )
        return repository

    return _make


@pytest.fixture
def mock_db_pool() -> MagicMock:
    """Mock of asyncpg.Pool with context-managed acquire() and transaction().

    asyncpg.Pool.acquire() and Connection.transaction() return async context
    managers (not coroutines), so both use MagicMock with __aenter__/__aexit__
    configured manually.
    """
    conn = AsyncMock()
    conn.fetch.return_value = []

    tx = MagicMock()
    tx.__aenter__ = AsyncMock(return_value=tx)
    tx.__aexit__ = AsyncMock(return_value=False)
    conn.transaction = MagicMock(return_value=tx)

    acm = MagicMock()
    acm.__aenter__ = AsyncMock(return_value=conn)
    acm.__aexit__ = AsyncMock(return_value=False)

    pool = MagicMock()
    pool.acquire.return_value = acm
    pool.conn = conn
    return pool
