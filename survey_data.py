"""
survey_data.py

Load and prepare long-format survey data (one row per sample x taxon):

- rename the abundance column to `response`
- add sqrt.<col> columns for skewed predictors
- drop rows missing any column the models use
- keep taxa whose proportion of zero counts is below `max_zero_fraction`
"""

import logging
from typing import List, Sequence

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)


class SurveyDataError(ValueError):
    """Input data cannot be modelled (missing columns, nothing left after filtering)."""


def require_cols(df: pd.DataFrame, cols: Sequence[str], name: str = "survey data") -> None:
    missing = [c for c in cols if c not in df.columns]
    if missing:
        raise SurveyDataError(
            "{}: missing required columns: {}\nFound columns: {}".format(name, missing, list(df.columns))
        )


def sqrt_name(col: str) -> str:
    return "sqrt.{}".format(col)


def add_sqrt_columns(df: pd.DataFrame, cols: Sequence[str]) -> pd.DataFrame:
    require_cols(df, cols)
    df = df.copy()
    for c in cols:
        values = pd.to_numeric(df[c], errors="coerce")
        if (values < 0).any():
            raise SurveyDataError("Cannot sqrt-transform '{}': negative values present".format(c))
        df[sqrt_name(c)] = np.sqrt(values)
    return df


def load_survey_data(path, response: str = "Abundance", sqrt_cols: Sequence[str] = ()) -> pd.DataFrame:
    df = pd.read_csv(path)
    df.replace([np.inf, -np.inf], np.nan, inplace=True)
    require_cols(df, [response])

    if response != "response":
        df = df.rename(columns={response: "response"})
    df["response"] = pd.to_numeric(df["response"], errors="coerce")

    if sqrt_cols:
        df = add_sqrt_columns(df, sqrt_cols)
    return df


def prepare_model_data(df: pd.DataFrame, columns: Sequence[str]) -> pd.DataFrame:
    """Keep complete rows over `columns` (+ response)."""
    cols = list(dict.fromkeys(["response"] + list(columns)))
    require_cols(df, cols)

    n_before = len(df)
    out = df.dropna(subset=cols).copy()
    if (out["response"] < 0).any():
        raise SurveyDataError("Negative response values; Tweedie models need abundance >= 0")

    dropped = n_before - len(out)
    if dropped:
        logger.info("Dropped %d of %d rows with missing values", dropped, n_before)
    if out.empty:
        raise SurveyDataError("No complete rows left after dropping missing values")
    return out


def zero_fraction(df: pd.DataFrame, taxon_col: str = "Taxa") -> pd.Series:
    return df.groupby(taxon_col, sort=False)["response"].apply(lambda r: float((r == 0).mean()))


def select_taxa(df: pd.DataFrame, taxon_col: str = "Taxa", max_zero_fraction: float = 0.8) -> List[str]:
    """Taxa (in order of first appearance) with fewer than `max_zero_fraction` zeros."""
    require_cols(df, [taxon_col, "response"])
    zeros = zero_fraction(df, taxon_col)
    keep = zeros[zeros < max_zero_fraction]
    for taxon, frac in zeros[zeros >= max_zero_fraction].items():
        logger.info("Skipping taxon %s: %.0f%% zeros", taxon, 100 * frac)
    return [str(t) for t in keep.index]


def taxon_subset(df: pd.DataFrame, taxon: str, taxon_col: str = "Taxa") -> pd.DataFrame:
    sub = df[df[taxon_col].astype(str) == str(taxon)].copy()
    if sub.empty:
        raise SurveyDataError("No rows for taxon '{}'".format(taxon))
    return sub
