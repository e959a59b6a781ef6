"""Exceptions raised by the tax calculators and the config repository."""

from datetime import date


class TaxConfigError(Exception):
    """Base class for tax/social-insurance configuration problems."""


class ConfigurationMissing(TaxConfigError):
    """No bracket table or social insurance config is in effect."""

    def __init__(self, city: str, as_of: date, kind: str) -> None:
        self.city = city
        self.as_of = as_of
        self.kind = kind
        super().__init__(f"No {kind} configured for {city} as of {as_of.isoformat()}")


class ConfigurationAmbiguous(TaxConfigError):
    """More than one version matches a lookup date."""

    def __init__(self, city: str, as_of: date, kind: str, matches: int) -> None:
        self.city = city
        self.as_of = as_of
        self.kind = kind
        self.matches = matches
        super().__init__(
            f"{matches} {kind} versions for {city} overlap on {as_of.isoformat()}"
        )


class InvalidBracketTable(TaxConfigError):
    """Bracket table is empty, unsorted, non-contiguous or lacks a single open top bracket."""


class InvalidSocialInsuranceConfig(TaxConfigError):
    """Social insurance rates or base ranges are out of bounds."""


class DuplicateMonthInput(ValueError):
    """The same (year, month) appears more than once in a forecast input."""
