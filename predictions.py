"""
predictions.py

Partial-effect predictions from a fitted candidate.

A prediction grid varies one focal predictor, holds the other numeric
predictors at their means, crosses every factor level and every observed
random-effect group. Predictions are then averaged over whatever is not in
`by` (mean of fit and of se.fit), giving one curve per focal value / level.
"""

from typing import List, Optional, Sequence

import numpy as np
import pandas as pd

from fit_model_set import FitResult

N_GRID = 20


def _cross(frames: List[pd.DataFrame]) -> pd.DataFrame:
    out = frames[0]
    for f in frames[1:]:
        out = out.merge(f, how="cross")
    return out


def prediction_grid(fit: FitResult, data: pd.DataFrame, focal: str, n_points: int = N_GRID) -> pd.DataFrame:
    design = fit.design
    if focal not in fit.predictors:
        raise ValueError("'{}' is not a term of model '{}'".format(focal, fit.name))

    factors = [t.predictor for t in design.factor_terms]
    numeric = [t.predictor for t in design.smooth_terms + design.linear_terms]

    frames = []
    if focal in factors:
        frames.append(pd.DataFrame({focal: design.factor_levels[focal]}))
    else:
        x = data[focal].astype(float)
        frames.append(pd.DataFrame({focal: np.linspace(x.min(), x.max(), n_points)}))

    for p in numeric:
        if p != focal:
            frames.append(pd.DataFrame({p: [float(data[p].mean())]}))
    for p in factors:
        if p != focal:
            frames.append(pd.DataFrame({p: design.factor_levels[p]}))
    for t in design.random_terms:
        frames.append(data[list(t.grouping)].drop_duplicates().reset_index(drop=True))

    return _cross(frames).drop_duplicates().reset_index(drop=True)


def summarise_predictions(predicted: pd.DataFrame, by: Sequence[str]) -> pd.DataFrame:
    """Group by `by` and average the 'fit' and 'se.fit' columns."""
    out = (
        predicted.groupby(list(by), sort=True)
        .agg(response=("fit", "mean"), **{"se.fit": ("se.fit", "mean")})
        .reset_index()
    )
    return out


def predict_effect(
    fit: FitResult,
    data: pd.DataFrame,
    focal: str,
    by: Optional[Sequence[str]] = None,
    n_points: int = N_GRID,
) -> pd.DataFrame:
    grid = prediction_grid(fit, data, focal, n_points)
    predicted = pd.concat([grid, fit.predict(grid)], axis=1)
    return summarise_predictions(predicted, [focal] + list(by or []))
