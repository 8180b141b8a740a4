"""
model_selection.py

Rank fitted candidates by AICc and turn Akaike weights into variable
importance scores.

Ranking table columns (one row per successful fit):
  modname, AICc, BIC, r2, edf, delta.AICc, wi.AICc, delta.BIC, wi.BIC,
  cumsum.wi, predictors, n, tweedie.power

Importance of a predictor = sum of wi over every model that contains it
(Akaike weights on AICc or BIC, or normalised r2 weights).
"""

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Sequence

import numpy as np
import pandas as pd

from fit_model_set import FitResult

logger = logging.getLogger(__name__)

TABLE_COLUMNS = [
    "modname", "AICc", "BIC", "r2", "edf",
    "delta.AICc", "wi.AICc", "delta.BIC", "wi.BIC", "cumsum.wi",
    "predictors", "n", "tweedie.power",
]

IMPORTANCE_CRITERIA = ("AICc", "BIC", "r2")


def akaike_weights(scores: Sequence[float]):
    """Return (delta, weight) arrays for a set of information-criterion scores."""
    scores = np.asarray(scores, dtype=float)
    if scores.size == 0:
        return scores, scores
    delta = scores - scores.min()
    rel = np.exp(-0.5 * delta)
    return delta, rel / rel.sum()


def rank_models(fit_results: Iterable[FitResult]) -> pd.DataFrame:
    ok = [r for r in fit_results if r.success]
    if not ok:
        return pd.DataFrame(columns=TABLE_COLUMNS)

    table = pd.DataFrame({
        "modname": [r.name for r in ok],
        "AICc": [r.aicc for r in ok],
        "BIC": [r.bic for r in ok],
        "r2": [r.r2 for r in ok],
        "edf": [r.edf for r in ok],
        "predictors": ["+".join(r.predictors) for r in ok],
        "n": [r.n for r in ok],
        "tweedie.power": [r.tweedie_power for r in ok],
    })

    table["delta.AICc"], table["wi.AICc"] = akaike_weights(table["AICc"])
    table["delta.BIC"], table["wi.BIC"] = akaike_weights(table["BIC"])

    # stable sort keeps enumeration order for tied AICc
    table = table.sort_values("AICc", kind="mergesort").reset_index(drop=True)
    table["cumsum.wi"] = table["wi.AICc"].cumsum()
    return table[TABLE_COLUMNS]


def parsimonious_models(table: pd.DataFrame, delta: float = 3.0) -> pd.DataFrame:
    return table[table["delta.AICc"] <= delta].copy()


def variable_importance(
    fit_results: Iterable[FitResult],
    predictors: Sequence[str],
    criterion: str = "AICc",
) -> pd.Series:
    """
    Sum of model weights over the models containing each predictor.

    AICc / BIC use Akaike weights. r2 weights each model by its deviance
    explained (negatives as 0), normalised to sum to 1.
    """
    if criterion not in IMPORTANCE_CRITERIA:
        raise ValueError("Unknown criterion: {}".format(criterion))

    ok = [r for r in fit_results if r.success]
    importance = pd.Series(0.0, index=list(predictors), dtype=float)
    if not ok:
        return importance

    if criterion == "r2":
        r2 = np.clip(np.nan_to_num([r.r2 for r in ok], nan=0.0), 0.0, None)
        if r2.sum() <= 0:
            return importance
        weights = r2 / r2.sum()
    else:
        scores = [r.aicc if criterion == "AICc" else r.bic for r in ok]
        _, weights = akaike_weights(scores)
    for r, w in zip(ok, weights):
        for p in r.predictors:
            if p in importance.index:
                importance[p] += w
    return importance


def failed_models(fit_results: Iterable[FitResult]) -> pd.DataFrame:
    rows = [{"modname": r.name, "reason": r.reason} for r in fit_results if not r.success]
    return pd.DataFrame(rows, columns=["modname", "reason"])


# ----------------------------
# Per-taxon bundle
# ----------------------------
@dataclass
class ModelSelection:
    taxon: str
    table: pd.DataFrame
    retained: pd.DataFrame
    importance: pd.Series
    importance_bic: pd.Series
    importance_r2: pd.Series
    failed: pd.DataFrame
    fits: Dict[str, FitResult]

    @property
    def best(self):
        if self.table.empty:
            return None
        return self.fits[self.table.iloc[0]["modname"]]

    def retained_fits(self) -> List[FitResult]:
        return [self.fits[name] for name in self.retained["modname"]]


def select_models(
    taxon: str,
    fit_results: List[FitResult],
    predictors: Sequence[str],
    delta: float = 3.0,
) -> ModelSelection:
    table = rank_models(fit_results)
    if table.empty:
        logger.warning("%s: all %d candidate models failed; importance set to 0", taxon, len(fit_results))

    return ModelSelection(
        taxon=taxon,
        table=table,
        retained=parsimonious_models(table, delta),
        importance=variable_importance(fit_results, predictors, "AICc"),
        importance_bic=variable_importance(fit_results, predictors, "BIC"),
        importance_r2=variable_importance(fit_results, predictors, "r2"),
        failed=failed_models(fit_results),
        fits={r.name: r for r in fit_results},
    )


# ----------------------------
# Across taxa
# ----------------------------
def combine_mod_fits(selections: Dict[str, ModelSelection]) -> pd.DataFrame:
    frames = []
    for taxon, sel in selections.items():
        out = sel.retained.copy()
        out.insert(0, "resp.var", taxon)
        frames.append(out)
    if not frames:
        return pd.DataFrame(columns=["resp.var"] + TABLE_COLUMNS)
    return pd.concat(frames, ignore_index=True)


def combine_importance(selections: Dict[str, ModelSelection], criterion: str = "AICc") -> pd.DataFrame:
    if criterion not in IMPORTANCE_CRITERIA:
        raise ValueError("Unknown criterion: {}".format(criterion))
    attr = {"AICc": "importance", "BIC": "importance_bic", "r2": "importance_r2"}[criterion]
    rows = {taxon: getattr(sel, attr) for taxon, sel in selections.items()}
    out = pd.DataFrame(rows).T
    out.index.name = "resp.var"
    return out
