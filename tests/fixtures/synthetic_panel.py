"""
Synthetic person-year panels for the labor transitions tests.

Provides deterministic builders with fixed seeds. Raw frames use the
canonical field names, so a CountrySpec without column rules maps them as-is.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import numpy as np
import pandas as pd
import yaml

from studies.labor_transitions.src.country_schema import CountrySpec

# Income well above the vulnerability line (~517) and between the lines
NON_VULNERABLE_INCOME = 800.0
VULNERABLE_INCOME = 400.0
POOR_INCOME = 100.0

DEFAULT_ROW: dict[str, Any] = {
    "is_head": 1,
    "cohabiting_head_flag": 1,
    "cohabiting_partner_flag": 1,
    "age": 40,
    "relationship_code": 1,
    "occupation_code": 52,
    "employment_status": 1,
    "per_capita_income_ppp": NON_VULNERABLE_INCOME,
    "economic_sector_code": 7,
    "transfer_receipt_flag": 0,
    "region_code": 1,
    "household_size": 4,
    "num_children": 2,
    "education_level": 2,
    "age_band_code": 2,
    "urban_flag": 1,
    "male_flag": 1,
    "health_shock_flag": 0,
    "survey_weight": 10.0,
}

OCCUPATION_CODES = [12, 25, 34, 41, 52, 63, 71, 83, 91]

PERIOD_KEYS = {0: "2021-2022", 1: "2021-2022", 2: "2022-2023"}


def person_year(person_id: str, year: int, household_id: str | None = None, **overrides) -> dict:
    """One raw person-year row with sensible defaults."""
    row = {
        "person_id": person_id,
        "household_id": household_id or f"h_{person_id}",
        "year": year,
        **DEFAULT_ROW,
    }
    row.update(overrides)
    return row


def make_panel(rows: list[dict]) -> pd.DataFrame:
    return pd.DataFrame(rows)


def make_spec(
    code: str = "tst",
    periods: list[tuple[int, int]] | None = None,
    missing_covariates: list[str] | None = None,
    path: str = "tst.csv",
) -> CountrySpec:
    """CountrySpec whose canonical fields are read under their own names."""
    return CountrySpec(
        code=code,
        name=f"Test country {code}",
        path=Path(path),
        periods=periods or [(2021, 2022), (2022, 2023)],
        missing_covariates=missing_covariates or [],
    )


def make_cohort(
    n_heads: int,
    years: list[int],
    prefix: str = "p",
    seed: int = 42,
) -> pd.DataFrame:
    """
    Heads observed in every year given, with random labor and income paths.

    Employment is drawn independently each year (p=0.7), income uniformly
    between 100 and 900 so that poor, vulnerable and non-vulnerable heads
    all occur.
    """
    rng = np.random.default_rng(seed)
    rows = []
    for i in range(n_heads):
        pid = f"{prefix}{i:04d}"
        region = int(rng.integers(1, 4))
        education = int(rng.integers(1, 4))
        age = int(rng.integers(20, 80))
        weight = float(rng.uniform(5, 20))
        for k, year in enumerate(years):
            rows.append(
                person_year(
                    pid,
                    year,
                    employment_status=int(rng.random() < 0.7),
                    occupation_code=int(rng.choice(OCCUPATION_CODES)),
                    economic_sector_code=int(rng.integers(1, 22)),
                    per_capita_income_ppp=float(rng.uniform(100, 900)),
                    transfer_receipt_flag=int(rng.random() < 0.3),
                    region_code=region,
                    education_level=education,
                    age=age + k,
                    age_band_code=np.nan,
                    male_flag=int(rng.random() < 0.6),
                    health_shock_flag=int(rng.random() < 0.1),
                    household_size=int(rng.integers(1, 8)),
                    num_children=int(rng.integers(0, 4)),
                    survey_weight=weight,
                )
            )
    return pd.DataFrame(rows)


def make_analysis_table(
    n: int = 2000,
    effect: float = 0.3,
    seed: int = 42,
    country: str | None = None,
) -> pd.DataFrame:
    """
    Head-period analysis table with a known linear probability effect.

    fell_into_poverty ~ Bernoulli(0.1 + effect * exited_job) among the
    baseline non-poor. The other outcomes are pure noise.
    """
    rng = np.random.default_rng(seed)

    emp_t0 = (rng.random(n) < 0.7).astype(int)
    emp_t1 = (rng.random(n) < 0.7).astype(int)
    stayed = emp_t0 * emp_t1
    skill_t0 = rng.integers(1, 4, n)
    skill_t1 = rng.integers(1, 4, n)

    poor_t0 = (rng.random(n) < 0.3).astype(int)
    vulnerable_t0 = np.maximum(poor_t0, (rng.random(n) < 0.4).astype(int))
    exited = emp_t0 * (1 - emp_t1)

    fell = (rng.random(n) < 0.1 + effect * exited).astype(float)
    fell[poor_t0 == 1] = np.nan

    df = pd.DataFrame({
        "person_id": [f"p{i:05d}" for i in range(n)],
        "household_id": [f"h{i // 2:05d}" for i in range(n)],
        "period_id": rng.integers(1, 3, n),
        "region_t0": rng.integers(1, 4, n).astype(str),
        "poor_t0": poor_t0,
        "vulnerable_t0": vulnerable_t0,
        "employed_t0": emp_t0,
        "fell_into_poverty": fell,
        "escaped_poverty": np.where(poor_t0 == 1, (rng.random(n) < 0.3), np.nan),
        "fell_into_vulnerability": np.where(vulnerable_t0 == 0, (rng.random(n) < 0.2), np.nan),
        "escaped_vulnerability": np.where(
            (vulnerable_t0 == 1) & (poor_t0 == 0), (rng.random(n) < 0.3), np.nan
        ),
        "entered_job": (1 - emp_t0) * emp_t1,
        "exited_job": exited,
        "skill_increased": stayed * (skill_t1 > skill_t0),
        "skill_decreased": stayed * (skill_t1 < skill_t0),
        "same_skill": stayed * (skill_t1 == skill_t0),
        "male_t0": (rng.random(n) < 0.6).astype(int),
        "age_under25_t0": (rng.random(n) < 0.1).astype(int),
        "age_41_64_t0": (rng.random(n) < 0.4).astype(int),
        "age_65plus_t0": (rng.random(n) < 0.1).astype(int),
        "educ_secondary_t0": (rng.random(n) < 0.4).astype(int),
        "educ_tertiary_t0": (rng.random(n) < 0.2).astype(int),
        "partner_t0": (rng.random(n) < 0.7).astype(int),
        "health_shock_t0": (rng.random(n) < 0.1).astype(int),
        "household_size_t0": rng.integers(1, 8, n).astype(float),
        "num_children_t0": rng.integers(0, 4, n).astype(float),
        "urban_t0": (rng.random(n) < 0.6).astype(int),
        "started_transfers": (rng.random(n) < 0.1).astype(int),
        "stopped_transfers": (rng.random(n) < 0.1).astype(int),
        "weight": rng.uniform(5, 20, n),
    })
    for col in ["escaped_poverty", "fell_into_vulnerability", "escaped_vulnerability"]:
        df[col] = df[col].astype(float)
    df["period_key"] = df["period_id"].map(PERIOD_KEYS)

    if country is not None:
        df["country"] = country
        df["country_region"] = country + "_" + df["region_t0"]
        df["equal_weight"] = df["weight"] / df["weight"].sum() * 100

    return df


def write_country_config(
    tmp_path: Path,
    countries: dict[str, dict[str, Any]],
    defaults: dict[str, Any] | None = None,
) -> Path:
    """Write a countries.yaml under tmp_path and return its path."""
    config = {
        "defaults": defaults or {"employed_code": 1, "periods": [[2021, 2022], [2022, 2023]]},
        "countries": countries,
    }
    path = tmp_path / "countries.yaml"
    with open(path, "w") as f:
        yaml.safe_dump(config, f, sort_keys=False)
    return path
