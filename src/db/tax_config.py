"""Effective-dated tax bracket and social insurance config storage.

Each city has a series of versions valid over [effective_from, effective_to],
with effective_to = None for the currently open version. Saving a version
closes the open one at the new version's effective_from in the same
transaction, so a city never has two open versions. A version whose window
overlaps any other stored window is rejected; the only shared day allowed is
a handover, where one version ends on the day the next starts.
"""

import asyncio
import logging
from collections import defaultdict
from collections.abc import Awaitable
from datetime import date
from typing import Any, NamedTuple, Protocol, Sequence

import asyncpg

from src.calculators.errors import (
    ConfigurationAmbiguous,
    ConfigurationMissing,
    TaxConfigError,
)
from src.calculators.tax_data import (
    SocialInsuranceConfig,
    TaxBracket,
    validate_brackets,
    validate_social_insurance_config,
)
from src.db.models import ConfigVersionSummary

logger = logging.getLogger(__name__)

BRACKETS_KIND = "tax_brackets"
SOCIAL_KIND = "social_insurance"


class TaxConfigRepository(Protocol):
    """Lookup and versioned writes for city tax configuration."""

    async def get_tax_brackets(self, city: str, as_of: date) -> list[TaxBracket]: ...

    async def get_social_insurance_config(
        self, city: str, as_of: date
    ) -> SocialInsuranceConfig | None: ...

    async def save_tax_brackets(
        self,
        city: str,
        brackets: Sequence[TaxBracket],
        effective_from: date,
        effective_to: date | None = None,
    ) -> None: ...

    async def save_social_insurance_config(
        self,
        city: str,
        config: SocialInsuranceConfig,
        effective_from: date,
        effective_to: date | None = None,
    ) -> None: ...

    async def save_tax_config(
        self,
        city: str,
        brackets: Sequence[TaxBracket],
        config: SocialInsuranceConfig,
        effective_from: date,
        effective_to: date | None = None,
    ) -> None: ...

    async def get_config_history(
        self, city: str, limit: int = 10
    ) -> list[ConfigVersionSummary]: ...


class StoredVersion(NamedTuple):
    """A config version's validity window plus whatever the store keeps for it."""

    effective_from: date
    effective_to: date | None
    payload: Any


def resolve_effective_version(
    versions: Sequence[StoredVersion],
    as_of: date,
    city: str,
    kind: str,
) -> StoredVersion | None:
    """Pick the single version in effect on ``as_of``.

    A version matches when effective_from <= as_of and effective_to is open
    or >= as_of. On a handover day (old version closed at as_of, new version
    starting at as_of) the new version wins. Any other overlap is a data
    integrity problem.

    Raises:
        ConfigurationAmbiguous: if more than one version remains.
    """
    matches = [
        v
        for v in versions
        if v.effective_from <= as_of and (v.effective_to is None or v.effective_to >= as_of)
    ]
    if len(matches) <= 1:
        return matches[0] if matches else None

    starting = [v for v in matches if v.effective_from == as_of]
    closing = [v for v in matches if v.effective_to == as_of and v.effective_from < as_of]
    if len(starting) == 1 and len(starting) + len(closing) == len(matches):
        return starting[0]

    raise ConfigurationAmbiguous(city, as_of, kind, len(matches))


def _check_window(effective_from: date, effective_to: date | None) -> None:
    if effective_to is not None and effective_to <= effective_from:
        raise TaxConfigError(
            f"effective_to {effective_to} must be after effective_from {effective_from}"
        )


def _windows_overlap(
    a_from: date, a_to: date | None, b_from: date, b_to: date | None
) -> bool:
    # Compared half-open: ending on the day the other starts is a handover
    return (b_to is None or a_from < b_to) and (a_to is None or b_from < a_to)


def _describe(effective_from: date, effective_to: date | None) -> str:
    return f"[{effective_from}, {effective_to or 'open'}]"


def check_version_fits(
    versions: Sequence[StoredVersion],
    effective_from: date,
    effective_to: date | None,
    city: str,
    kind: str,
) -> StoredVersion | None:
    """Check a new window against the stored ones.

    The open version, if any, is treated as closed at ``effective_from``.

    Returns:
        The open version that saving the new window will close, or None.

    Raises:
        TaxConfigError: if the open version does not start before
            ``effective_from`` or the new window overlaps a stored one.
    """
    open_version: StoredVersion | None = None
    for existing in versions:
        existing_to = existing.effective_to
        if existing_to is None:
            if existing.effective_from >= effective_from:
                raise TaxConfigError(
                    f"Open {kind} version for {city} starts {existing.effective_from}; "
                    f"cannot close it at {effective_from}"
                )
            open_version = existing
            existing_to = effective_from

        if _windows_overlap(existing.effective_from, existing_to, effective_from, effective_to):
            raise TaxConfigError(
                f"New {kind} version for {city} {_describe(effective_from, effective_to)} "
                f"overlaps stored version "
                f"{_describe(existing.effective_from, existing.effective_to)}"
            )
    return open_version


async def gather_lookups(*lookups: Awaitable[Any]) -> list[Any]:
    """Await lookups concurrently; if one fails, cancel and drain the rest, then re-raise."""
    tasks = [asyncio.ensure_future(lookup) for lookup in lookups]
    try:
        return list(await asyncio.gather(*tasks))
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


async def load_effective_config(
    repository: TaxConfigRepository,
    city: str,
    as_of: date,
) -> tuple[list[TaxBracket], SocialInsuranceConfig]:
    """Fetch both config kinds for a date, failing if either is missing."""
    brackets, social = await gather_lookups(
        repository.get_tax_brackets(city, as_of),
        repository.get_social_insurance_config(city, as_of),
    )
    if not brackets:
        raise ConfigurationMissing(city, as_of, "tax brackets")
    if social is None:
        raise ConfigurationMissing(city, as_of, "social insurance config")
    return brackets, social


async def get_current_tax_config(
    repository: TaxConfigRepository,
    city: str,
    as_of: date | None = None,
) -> dict[str, Any] | None:
    """Config in effect for a city today (or on ``as_of``); None if incomplete."""
    as_of = as_of or date.today()
    brackets, social = await gather_lookups(
        repository.get_tax_brackets(city, as_of),
        repository.get_social_insurance_config(city, as_of),
    )
    if not brackets or social is None:
        return None
    return {"tax_brackets": brackets, "social_insurance": social}


# --- In-process store ---


def _insert_version(
    versions: list[StoredVersion],
    new: StoredVersion,
    city: str,
    kind: str,
) -> None:
    """Close the open version (if any) at new.effective_from and append ``new``."""
    open_version = check_version_fits(versions, new.effective_from, new.effective_to, city, kind)
    if open_version is not None:
        index = versions.index(open_version)
        versions[index] = open_version._replace(effective_to=new.effective_from)
    versions.append(new)


class InMemoryTaxConfigRepository:
    """Config store held in process memory.

    Used for what-if runs against bundled parameters and in tests.
    """

    def __init__(self) -> None:
        self._brackets: dict[str, list[StoredVersion]] = defaultdict(list)
        self._social: dict[str, list[StoredVersion]] = defaultdict(list)
        self._lock = asyncio.Lock()

    async def get_tax_brackets(self, city: str, as_of: date) -> list[TaxBracket]:
        version = resolve_effective_version(self._brackets[city], as_of, city, BRACKETS_KIND)
        return list(version.payload) if version else []

    async def get_social_insurance_config(
        self, city: str, as_of: date
    ) -> SocialInsuranceConfig | None:
        version = resolve_effective_version(self._social[city], as_of, city, SOCIAL_KIND)
        return version.payload if version else None

    async def save_tax_brackets(
        self,
        city: str,
        brackets: Sequence[TaxBracket],
        effective_from: date,
        effective_to: date | None = None,
    ) -> None:
        ordered = validate_brackets(brackets)
        _check_window(effective_from, effective_to)
        async with self._lock:
            _insert_version(
                self._brackets[city],
                StoredVersion(effective_from, effective_to, tuple(ordered)),
                city,
                BRACKETS_KIND,
            )
        logger.info("Saved %d brackets for %s from %s", len(ordered), city, effective_from)

    async def save_social_insurance_config(
        self,
        city: str,
        config: SocialInsuranceConfig,
        effective_from: date,
        effective_to: date | None = None,
    ) -> None:
        validate_social_insurance_config(config)
        _check_window(effective_from, effective_to)
        async with self._lock:
            _insert_version(
                self._social[city],
                StoredVersion(effective_from, effective_to, config),
                city,
                SOCIAL_KIND,
            )
        logger.info("Saved social insurance config for %s from %s", city, effective_from)

    async def save_tax_config(
        self,
        city: str,
        brackets: Sequence[TaxBracket],
        config: SocialInsuranceConfig,
        effective_from: date,
        effective_to: date | None = None,
    ) -> None:
        """Save a bracket version and an SI version together, or neither."""
        ordered = validate_brackets(brackets)
        validate_social_insurance_config(config)
        _check_window(effective_from, effective_to)
        async with self._lock:
            check_version_fits(
                self._brackets[city], effective_from, effective_to, city, BRACKETS_KIND
            )
            check_version_fits(self._social[city], effective_from, effective_to, city, SOCIAL_KIND)
            _insert_version(
                self._brackets[city],
                StoredVersion(effective_from, effective_to, tuple(ordered)),
                city,
                BRACKETS_KIND,
            )
            _insert_version(
                self._social[city],
                StoredVersion(effective_from, effective_to, config),
                city,
                SOCIAL_KIND,
            )
        logger.info("Saved tax config for %s from %s", city, effective_from)

    async def get_config_history(self, city: str, limit: int = 10) -> list[ConfigVersionSummary]:
        stores = ((BRACKETS_KIND, self._brackets[city]), (SOCIAL_KIND, self._social[city]))
        summaries = [
            ConfigVersionSummary(
                kind=kind, city=city, effective_from=v.effective_from, effective_to=v.effective_to
            )
            for kind, versions in stores
            for v in versions
        ]
        summaries.sort(key=lambda s: s.effective_from, reverse=True)
        return summaries[:limit]


# --- PostgreSQL store ---

_VERSION_TABLES = {
    BRACKETS_KIND: "tax_bracket_versions",
    SOCIAL_KIND: "social_insurance_configs",
}


def _row_to_social_config(row: asyncpg.Record) -> SocialInsuranceConfig:
    return SocialInsuranceConfig(
        social_min_base=row["social_min_base"],
        social_max_base=row["social_max_base"],
        pension_rate=row["pension_rate"],
        medical_rate=row["medical_rate"],
        unemployment_rate=row["unemployment_rate"],
        housing_fund_min_base=row["housing_fund_min_base"],
        housing_fund_max_base=row["housing_fund_max_base"],
        housing_fund_rate=row["housing_fund_rate"],
    )


class PostgresTaxConfigRepository:
    """Config store backed by the tax_bracket_versions / social_insurance_configs tables."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def get_tax_brackets(self, city: str, as_of: date) -> list[TaxBracket]:
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT id, effective_from, effective_to
                FROM tax_bracket_versions
                WHERE city = $1
                  AND effective_from <= $2
                  AND (effective_to IS NULL OR effective_to >= $2)
                """,
                city,
                as_of,
            )
            version = resolve_effective_version(
                [StoredVersion(r["effective_from"], r["effective_to"], r["id"]) for r in rows],
                as_of,
                city,
                BRACKETS_KIND,
            )
            if version is None:
                return []

            bracket_rows = await conn.fetch(
                """
                SELECT min_income, max_income, tax_rate, quick_deduction
                FROM tax_brackets
                WHERE version_id = $1
                ORDER BY min_income
                """,
                version.payload,
            )

        return [
            TaxBracket(
                min_income=r["min_income"],
                max_income=r["max_income"],
                tax_rate=r["tax_rate"],
                quick_deduction=r["quick_deduction"],
            )
            for r in bracket_rows
        ]

    async def get_social_insurance_config(
        self, city: str, as_of: date
    ) -> SocialInsuranceConfig | None:
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT *
                FROM social_insurance_configs
                WHERE city = $1
                  AND effective_from <= $2
                  AND (effective_to IS NULL OR effective_to >= $2)
                """,
                city,
                as_of,
            )
        version = resolve_effective_version(
            [StoredVersion(r["effective_from"], r["effective_to"], r) for r in rows],
            as_of,
            city,
            SOCIAL_KIND,
        )
        return _row_to_social_config(version.payload) if version else None

    async def save_tax_brackets(
        self,
        city: str,
        brackets: Sequence[TaxBracket],
        effective_from: date,
        effective_to: date | None = None,
    ) -> None:
        ordered = validate_brackets(brackets)
        _check_window(effective_from, effective_to)

        async with self._pool.acquire() as conn:
            async with conn.transaction():
                await self._close_open_version(
                    conn, BRACKETS_KIND, city, effective_from, effective_to
                )
                await self._insert_brackets(conn, city, ordered, effective_from, effective_to)

        logger.info("Saved %d brackets for %s from %s", len(ordered), city, effective_from)

    async def save_social_insurance_config(
        self,
        city: str,
        config: SocialInsuranceConfig,
        effective_from: date,
        effective_to: date | None = None,
    ) -> None:
        validate_social_insurance_config(config)
        _check_window(effective_from, effective_to)

        async with self._pool.acquire() as conn:
            async with conn.transaction():
                await self._close_open_version(
                    conn, SOCIAL_KIND, city, effective_from, effective_to
                )
                await self._insert_social(conn, city, config, effective_from, effective_to)

        logger.info("Saved social insurance config for %s from %s", city, effective_from)

    async def save_tax_config(
        self,
        city: str,
        brackets: Sequence[TaxBracket],
        config: SocialInsuranceConfig,
        effective_from: date,
        effective_to: date | None = None,
    ) -> None:
        """Save a bracket version and an SI version in one transaction."""
        ordered = validate_brackets(brackets)
        validate_social_insurance_config(config)
        _check_window(effective_from, effective_to)

        async with self._pool.acquire() as conn:
            async with conn.transaction():
                # Both kinds are checked and closed before anything is inserted
                await self._close_open_version(
                    conn, BRACKETS_KIND, city, effective_from, effective_to
                )
                await self._close_open_version(
                    conn, SOCIAL_KIND, city, effective_from, effective_to
                )
                await self._insert_brackets(conn, city, ordered, effective_from, effective_to)
                await self._insert_social(conn, city, config, effective_from, effective_to)

        logger.info("Saved tax config for %s from %s", city, effective_from)

    async def _insert_brackets(
        self,
        conn: asyncpg.Connection,
        city: str,
        ordered: Sequence[TaxBracket],
        effective_from: date,
        effective_to: date | None,
    ) -> None:
        version_id = await conn.fetchval(
            """
            INSERT INTO tax_bracket_versions (city, effective_from, effective_to)
            VALUES ($1, $2, $3)
            RETURNING id
            """,
            city,
            effective_from,
            effective_to,
        )
        await conn.executemany(
            """
            INSERT INTO tax_brackets
                (version_id, min_income, max_income, tax_rate, quick_deduction, sort_order)
            VALUES ($1, $2, $3, $4, $5, $6)
            """,
            [
                (
                    version_id,
                    b.min_income,
                    b.max_income,
                    b.tax_rate,
                    b.quick_deduction,
                    sort_order,
                )
                for sort_order, b in enumerate(ordered)
            ],
        )

    async def _insert_social(
        self,
        conn: asyncpg.Connection,
        city: str,
        config: SocialInsuranceConfig,
        effective_from: date,
        effective_to: date | None,
    ) -> None:
        await conn.execute(
            """
            INSERT INTO social_insurance_configs (
                city, effective_from, effective_to,
                social_min_base, social_max_base,
                pension_rate, medical_rate, unemployment_rate,
                housing_fund_min_base, housing_fund_max_base, housing_fund_rate
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11)
            """,
            city,
            effective_from,
            effective_to,
            config.social_min_base,
            config.social_max_base,
            config.pension_rate,
            config.medical_rate,
            config.unemployment_rate,
            config.housing_fund_min_base,
            config.housing_fund_max_base,
            config.housing_fund_rate,
        )

    async def _close_open_version(
        self,
        conn: asyncpg.Connection,
        kind: str,
        city: str,
        effective_from: date,
        effective_to: date | None,
    ) -> None:
        """Check the new window and close the city's open version.

        Must run inside a transaction.
        """
        table = _VERSION_TABLES[kind]
        # Serialises concurrent writers for the same city and kind
        await conn.execute("SELECT pg_advisory_xact_lock(hashtext($1))", f"{table}:{city}")
        # Versions ending on or before effective_from cannot overlap the new window
        rows = await conn.fetch(
            f"SELECT id, effective_from, effective_to FROM {table} "
            "WHERE city = $1 AND (effective_to IS NULL OR effective_to > $2) FOR UPDATE",
            city,
            effective_from,
        )
        open_version = check_version_fits(
            [StoredVersion(r["effective_from"], r["effective_to"], r["id"]) for r in rows],
            effective_from,
            effective_to,
            city,
            kind,
        )
        if open_version is None:
            return
        await conn.execute(
            f"UPDATE {table} SET effective_to = $2 WHERE id = $1",
            open_version.payload,
            effective_from,
        )

    async def get_config_history(self, city: str, limit: int = 10) -> list[ConfigVersionSummary]:
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT kind, city, effective_from, effective_to FROM (
                    SELECT 'tax_brackets' AS kind, city, effective_from, effective_to
                    FROM tax_bracket_versions WHERE city = $1
                    UNION ALL
                    SELECT 'social_insurance' AS kind, city, effective_from, effective_to
                    FROM social_insurance_configs WHERE city = $1
                ) AS versions
                ORDER BY effective_from DESC
                LIMIT $2
                """,
                city,
                limit,
            )
        return [ConfigVersionSummary(**dict(r)) for r in rows]
