"""
Per-country schema mapping.

Loads config/countries.yaml into CountrySpec objects. Each country declares
which source column (or fallback list of columns, optionally with a named
transform) feeds each canonical person-year field, its candidate periods and
the covariates it does not collect.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

import pandas as pd
import yaml

from studies.labor_transitions.src.diagnostics import ConfigurationError

logger = logging.getLogger(__name__)


# Canonical person-year schema
ID_FIELDS = ["person_id", "household_id"]

FLAG_FIELDS = [
    "is_head",
    "cohabiting_partner_flag",
    "cohabiting_head_flag",
    "transfer_receipt_flag",
    "urban_flag",
    "male_flag",
    "health_shock_flag",
]

CODE_FIELDS = [
    "relationship_code",
    "occupation_code",
    "employment_status",
    "economic_sector_code",
    "region_code",
    "education_level",
    "age_band_code",
]

NUMERIC_FIELDS = [
    "age",
    "per_capita_income_ppp",
    "household_size",
    "num_children",
    "survey_weight",
]

CANONICAL_FIELDS = ID_FIELDS + ["year"] + FLAG_FIELDS + CODE_FIELDS + NUMERIC_FIELDS

# Fields without which a country cannot be processed at all
REQUIRED_FIELDS = ["person_id", "household_id", "year", "is_head"]

HEAD_RELATIONSHIP_CODE = 1


def _identity(series: pd.Series) -> pd.Series:
    return series


def _invert_flag(series: pd.Series) -> pd.Series:
    values = pd.to_numeric(series, errors="coerce")
    return 1 - values


def _yes_no_flag(series: pd.Series) -> pd.Series:
    # Survey convention: 1 = yes, 2 = no
    values = pd.to_numeric(series, errors="coerce")
    return values.map({1: 1, 2: 0})


def _head_from_relationship(series: pd.Series) -> pd.Series:
    values = pd.to_numeric(series, errors="coerce")
    return (values == HEAD_RELATIONSHIP_CODE).astype(float).where(values.notna())


TRANSFORMS: dict[str, Callable[[pd.Series], pd.Series]] = {
    "identity": _identity,
    "invert_flag": _invert_flag,
    "yes_no_flag": _yes_no_flag,
    "head_from_relationship": _head_from_relationship,
}


@dataclass
class ColumnRule:
    """How one canonical field is read from a country's source file."""

    canonical: str
    sources: list[str]
    transform: str = "identity"

    def __post_init__(self):
        if self.transform not in TRANSFORMS:
            raise ValueError(
                f"Unknown transform '{self.transform}' for field '{self.canonical}'. "
                f"Available: {sorted(TRANSFORMS)}"
            )

    @classmethod
    def from_config(cls, canonical: str, value: Any) -> ColumnRule:
        """Build a rule from a YAML value (name, list of names or mapping)."""
        if isinstance(value, dict):
            sources = value.get("source", canonical)
            transform = value.get("transform", "identity")
        else:
            sources = value
            transform = "identity"

        if isinstance(sources, str):
            sources = [sources]

        return cls(canonical=canonical, sources=list(sources), transform=transform)

    def resolve(self, columns: pd.Index | list[str]) -> str | None:
        """Return the first source column present, or None."""
        available = set(columns)
        for source in self.sources:
            if source in available:
                return source
        return None

    def apply(self, raw: pd.DataFrame) -> pd.Series | None:
        """Extract and transform the field from raw data, or None if absent."""
        source = self.resolve(raw.columns)
        if source is None:
            return None
        return TRANSFORMS[self.transform](raw[source])


@dataclass
class CountrySpec:
    """Configuration for one country's person-year panel."""

    code: str
    name: str
    path: Path
    periods: list[tuple[int, int]]
    columns: dict[str, ColumnRule] = field(default_factory=dict)
    employed_code: int = 1
    missing_covariates: list[str] = field(default_factory=list)

    def __post_init__(self):
        for t0, t1 in self.periods:
            if t1 <= t0:
                raise ValueError(
                    f"Country '{self.code}': period ({t0}, {t1}) must have t1 after t0"
                )

    def rule(self, canonical: str) -> ColumnRule:
        """Rule for a canonical field; defaults to the canonical name itself."""
        if canonical in self.columns:
            return self.columns[canonical]
        return ColumnRule(canonical=canonical, sources=[canonical])

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "name": self.name,
            "path": str(self.path),
            "periods": [list(p) for p in self.periods],
            "employed_code": self.employed_code,
            "missing_covariates": self.missing_covariates,
            "columns": {
                name: {"sources": rule.sources, "transform": rule.transform}
                for name, rule in self.columns.items()
            },
        }


def _parse_country(code: str, entry: dict[str, Any], defaults: dict[str, Any]) -> CountrySpec:
    columns = {}
    for canonical, value in (entry.get("columns") or {}).items():
        if canonical not in CANONICAL_FIELDS:
            raise ValueError(f"Country '{code}': unknown canonical field '{canonical}'")
        columns[canonical] = ColumnRule.from_config(canonical, value)

    periods = entry.get("periods", defaults.get("periods", []))
    if "path" not in entry:
        raise ValueError(f"Country '{code}': missing input 'path'")

    return CountrySpec(
        code=code,
        name=entry.get("name", code),
        path=Path(entry["path"]),
        periods=[(int(t0), int(t1)) for t0, t1 in periods],
        columns=columns,
        employed_code=int(entry.get("employed_code", defaults.get("employed_code", 1))),
        missing_covariates=list(entry.get("missing_covariates") or []),
    )


def load_country_specs(path: str | Path) -> dict[str, CountrySpec]:
    """
    Load the per-country schema mapping table.

    Args:
        path: Path to countries.yaml

    Returns:
        Dictionary of country code to CountrySpec, in file order
    """
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"Country configuration not found: {path}", field="countries_config")

    try:
        with open(path) as f:
            config = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Cannot parse {path}: {e}", field="countries_config") from e

    defaults = config.get("defaults") or {}
    specs = {}
    for code, entry in (config.get("countries") or {}).items():
        try:
            specs[code] = _parse_country(code, entry or {}, defaults)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(str(e), country=code) from e

    logger.info(f"Loaded {len(specs)} country specifications from {path}")
    return specs
