"""
Derived person-year indicators.

Every function here is a pure function of one person-year row (vectorized
over a column): employment, occupational skill tier, economic sector bucket,
partner presence, poverty/vulnerability status and age band. Flags are
nullable Int8 (0/1/<NA>) so that a missing source value stays missing.
"""

import logging

import numpy as np
import pandas as pd

from config.settings import Settings, get_settings

logger = logging.getLogger(__name__)


# Occupation major group (first digit of the 2-digit code) -> skill tier
# 3 = high (managers, professionals, technicians)
# 2 = medium (clerks, services, agriculture, crafts, operators)
# 1 = low (elementary occupations)
SKILL_TIER_BY_MAJOR_GROUP = {
    1: 3,
    2: 3,
    3: 3,
    4: 2,
    5: 2,
    6: 2,
    7: 2,
    8: 2,
    9: 1,
}

# ISIC Rev.4 sections numbered A=1 ... U=21 -> sector bucket
SECTOR_BUCKETS = {
    1: 1,   # Agriculture, forestry, fishing
    2: 2,   # Mining
    3: 3,   # Manufacturing
    4: 2,   # Electricity, gas
    5: 2,   # Water, waste
    6: 4,   # Construction
    7: 5,   # Wholesale and retail trade
    8: 6,   # Transport and storage
    9: 5,   # Accommodation and food
    10: 6,  # Information and communication
    11: 7,  # Finance and insurance
    12: 7,  # Real estate
    13: 7,  # Professional, scientific
    14: 7,  # Administrative and support
    15: 8,  # Public administration
    16: 9,  # Education
    17: 9,  # Health and social work
    18: 10,  # Arts and recreation
    19: 10,  # Other services
    20: 10,  # Households as employers
    21: 10,  # Extraterritorial organizations
}

SECTOR_NOT_WORKING = 0

# Education levels: 1 primary or less (reference), 2 secondary, 3 tertiary
EDUCATION_SECONDARY = 2
EDUCATION_TERTIARY = 3

# Age band code -> (min age, max age); band 2 (25-40) is the reference
AGE_BANDS = {
    1: (0, 24),
    2: (25, 40),
    3: (41, 64),
    4: (65, 200),
}
AGE_BAND_REFERENCE = 2


def as_float(series: pd.Series) -> pd.Series:
    """Numeric float64 view of a column, NaN where missing or non-numeric."""
    return pd.to_numeric(series, errors="coerce").astype("float64")


def is_one(series: pd.Series) -> np.ndarray:
    """Boolean mask of rows equal to 1, treating missing as False."""
    return series.eq(1).fillna(False).to_numpy(dtype=bool)


def map_codes(values: pd.Series, mapping: dict[int, int]) -> pd.Series:
    """Map float-typed codes through an integer-keyed table."""
    return values.map({float(k): v for k, v in mapping.items()})


def to_flag(condition: pd.Series, defined: pd.Series | np.ndarray) -> pd.Series:
    """Nullable 0/1 flag: condition where defined, <NA> elsewhere."""
    values = pd.Series(np.asarray(condition, dtype=float), index=condition.index)
    return values.where(np.asarray(defined, dtype=bool)).astype("Int8")


def employed(employment_status: pd.Series, employed_code: int = 1) -> pd.Series:
    """1 if the person works, 0 if not, <NA> when status is missing."""
    status = as_float(employment_status)
    return to_flag(status == employed_code, status.notna())


def skill_tier(occupation_code: pd.Series, is_employed: pd.Series) -> pd.Series:
    """Skill tier (1-3) from the occupation major group, only where employed."""
    code = as_float(occupation_code)
    major = np.floor(code / 10).where(code.between(10, 99))
    tier = map_codes(major, SKILL_TIER_BY_MAJOR_GROUP)
    return tier.where(is_one(is_employed)).astype("Int8")


def sector_bucket(economic_sector_code: pd.Series, is_employed: pd.Series) -> pd.Series:
    """
    Sector bucket for workers; SECTOR_NOT_WORKING when employment is 0 or
    missing. Workers with an unmapped sector code stay missing.
    """
    code = as_float(economic_sector_code)
    bucket = map_codes(code, SECTOR_BUCKETS)
    return bucket.where(is_one(is_employed), SECTOR_NOT_WORKING).astype("Int8")


def partner_present(cohabiting_partner_flag: pd.Series) -> pd.Series:
    flag = as_float(cohabiting_partner_flag)
    return to_flag(flag == 1, flag.notna())


def below_line(income: pd.Series, line: float) -> pd.Series:
    """1 if income is at or below the line (the line itself counts as below)."""
    income = as_float(income)
    return to_flag(income <= line, income.notna())


def age_band(age_band_code: pd.Series, age: pd.Series) -> pd.Series:
    """Age band from the survey's own code, else derived from age."""
    code = as_float(age_band_code)
    code = code.where(code.isin(list(AGE_BANDS)))

    bins = [-np.inf] + [hi for _, hi in list(AGE_BANDS.values())[:-1]] + [np.inf]
    derived = pd.cut(
        as_float(age),
        bins=bins,
        labels=list(AGE_BANDS),
    ).astype(float)

    return code.fillna(derived).astype("Int8")


def add_indicators(
    panel: pd.DataFrame,
    settings: Settings | None = None,
    employed_code: int = 1,
) -> pd.DataFrame:
    """
    Add derived indicators to a canonical person-year panel.

    Args:
        panel: Canonical person-year DataFrame
        settings: Settings holding the poverty and vulnerability lines
        employed_code: Employment status code that means "employed"

    Returns:
        Copy of the panel with employed, skill_tier, sector, partner_present,
        income, poor, vulnerable, transfers and age_band columns
    """
    settings = settings or get_settings()
    df = panel.copy()

    df["employed"] = employed(df["employment_status"], employed_code)
    df["skill_tier"] = skill_tier(df["occupation_code"], df["employed"])
    df["sector"] = sector_bucket(df["economic_sector_code"], df["employed"])
    df["partner_present"] = partner_present(df["cohabiting_partner_flag"])

    df["income"] = as_float(df["per_capita_income_ppp"])
    df["poor"] = below_line(df["income"], settings.poverty_line_monthly)
    df["vulnerable"] = below_line(df["income"], settings.vulnerability_line_monthly)
    df["transfers"] = df["transfer_receipt_flag"].astype("Int8")
    df["age_band"] = age_band(df["age_band_code"], df["age"])

    logger.debug(f"Added derived indicators to {len(df):,} person-years")

    return df
