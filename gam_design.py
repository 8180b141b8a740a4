"""
gam_design.py

Turn a CandidateModel's typed terms into the arrays statsmodels' GLMGam needs:

  exog_linear  : Intercept + treatment-coded factor dummies + linear covariates
  exog_smooth  : one column per smooth / random-effect term
  smoother     : GenericSmoothers over centred cubic B-splines (SmoothTerm)
                 and ridge-penalised group indicators (RandomEffectTerm)

The design keeps the factor levels, grouping codes and smooth standardisation
seen at fit time so prediction data is encoded the same way. Designs that
cannot be estimated (single-level factor, too few distinct values for a
smooth's basis) raise ValueError on construction.
"""

from typing import Dict, List, Sequence, Tuple

import numpy as np
import pandas as pd
from statsmodels.gam.smooth_basis import (
    GenericSmoothers,
    UnivariateBSplines,
    UnivariateGamSmoother,
)

from model_set import CandidateModel, LinearTerm, RandomEffectTerm, SmoothTerm


def group_key(data: pd.DataFrame, grouping: Sequence[str]) -> pd.Series:
    """Combined grouping label, e.g. 'North:Site3' for (Location, Site)."""
    return data[list(grouping)].astype(str).agg(":".join, axis=1)


class RandomEffectSmoother(UnivariateGamSmoother):
    """
    Random-intercept term as a penalised smooth (mgcv bs="re").

    Basis is one indicator column per group level; the penalty matrix is the
    identity, so the coefficients are shrunk towards zero like iid normal
    random effects. Codes < 0 (groups unseen at fit time) give an all-zero
    row, i.e. a population-level prediction.
    """

    def __init__(self, x, n_levels, variable_name="re"):
        self.n_levels = int(n_levels)
        super().__init__(np.asarray(x, dtype=float), variable_name=variable_name)

    def _indicators(self, x):
        x = np.asarray(x, dtype=float)
        return (x[:, None] == np.arange(self.n_levels)[None, :]).astype(float)

    def _smooth_basis_for_single_variable(self):
        basis = self._indicators(self.x)
        return basis, None, None, np.eye(self.n_levels)

    def transform(self, x_new):
        return self._indicators(x_new)


class ModelDesign:
    def __init__(self, candidate: CandidateModel, data: pd.DataFrame):
        self.name = candidate.name
        self.smooth_terms: List[SmoothTerm] = []
        self.random_terms: List[RandomEffectTerm] = []
        self.factor_terms: List[LinearTerm] = []
        self.linear_terms: List[LinearTerm] = []

        for term in candidate.terms:
            if isinstance(term, SmoothTerm):
                self.smooth_terms.append(term)
            elif isinstance(term, RandomEffectTerm):
                self.random_terms.append(term)
            elif term.factor:
                self.factor_terms.append(term)
            else:
                self.linear_terms.append(term)

        self.factor_levels: Dict[str, List[str]] = {}
        for t in self.factor_terms:
            levels = sorted(data[t.predictor].astype(str).unique().tolist())
            if len(levels) < 2:
                raise ValueError(
                    "rank deficient: factor '{}' has {} level(s) in the fitting data".format(t.predictor, len(levels))
                )
            self.factor_levels[t.predictor] = levels

        # smooth inputs are standardised so the fit does not depend on units
        self.smooth_scale: Dict[str, Tuple[float, float]] = {}
        for t in self.smooth_terms:
            x = data[t.predictor].astype(float)
            n_unique = int(x.nunique())
            if n_unique < t.k:
                raise ValueError(
                    "rank deficient: smooth of '{}' has k={} but only {} distinct value(s)".format(
                        t.predictor, t.k, n_unique
                    )
                )
            self.smooth_scale[t.predictor] = (float(x.mean()), float(x.std(ddof=0)))

        self.group_codes: Dict[Tuple[str, ...], Dict[str, int]] = {}
        for t in self.random_terms:
            levels = sorted(group_key(data, t.grouping).unique().tolist())
            self.group_codes[t.grouping] = {lev: i for i, lev in enumerate(levels)}

    @property
    def has_smooths(self) -> bool:
        return bool(self.smooth_terms or self.random_terms)

    @property
    def columns(self) -> List[str]:
        cols = [t.predictor for t in self.smooth_terms + self.factor_terms + self.linear_terms]
        for t in self.random_terms:
            cols.extend(t.grouping)
        return cols

    # ----------------------------
    # Encoding
    # ----------------------------
    def exog_linear(self, data: pd.DataFrame) -> pd.DataFrame:
        out = pd.DataFrame({"Intercept": np.ones(len(data))}, index=data.index)
        for t in self.factor_terms:
            values = data[t.predictor].astype(str)
            for level in self.factor_levels[t.predictor][1:]:
                out["{}[T.{}]".format(t.predictor, level)] = (values == level).astype(float)
        for t in self.linear_terms:
            out[t.predictor] = data[t.predictor].astype(float)
        return out

    def exog_smooth(self, data: pd.DataFrame) -> pd.DataFrame:
        out = pd.DataFrame(index=data.index)
        for t in self.smooth_terms:
            center, scale = self.smooth_scale[t.predictor]
            out[t.predictor] = (data[t.predictor].astype(float) - center) / scale
        for t in self.random_terms:
            codes = self.group_codes[t.grouping]
            keys = group_key(data, t.grouping)
            out[":".join(t.grouping)] = keys.map(codes).fillna(-1).astype(float)
        return out

    def check_rank(self, data: pd.DataFrame):
        """Raise ValueError if the parametric columns are not of full column rank."""
        exog = self.exog_linear(data).to_numpy(dtype=float)
        rank = int(np.linalg.matrix_rank(exog))
        if rank < exog.shape[1]:
            raise ValueError(
                "rank deficient: parametric design has rank {} for {} columns".format(rank, exog.shape[1])
            )

    def smoother(self, data: pd.DataFrame) -> GenericSmoothers:
        x = self.exog_smooth(data)
        smoothers = []
        for t in self.smooth_terms:
            smoothers.append(
                UnivariateBSplines(
                    x[t.predictor].to_numpy(),
                    df=t.k + 1,  # intercept column is dropped by the spline basis
                    degree=3,
                    constraints="center",
                    variable_name=t.predictor,
                )
            )
        for t in self.random_terms:
            col = ":".join(t.grouping)
            smoothers.append(
                RandomEffectSmoother(x[col].to_numpy(), len(self.group_codes[t.grouping]), variable_name=col)
            )
        return GenericSmoothers(x, smoothers)

    def alpha(self, smooth_alpha: float, re_alpha: float) -> List[float]:
        return [float(smooth_alpha)] * len(self.smooth_terms) + [float(re_alpha)] * len(self.random_terms)

    # ----------------------------
    # Prediction
    # ----------------------------
    def predict(self, results, newdata: pd.DataFrame) -> pd.DataFrame:
        """Response-scale prediction with standard errors ('fit', 'se.fit')."""
        exog = self.exog_linear(newdata).to_numpy(dtype=float)
        if self.has_smooths:
            exog_smooth = self.exog_smooth(newdata).to_numpy(dtype=float)
            pred = results.get_prediction(exog=exog, exog_smooth=exog_smooth)
        else:
            pred = results.get_prediction(exog=exog)
        frame = pred.summary_frame()
        return pd.DataFrame(
            {"fit": frame["mean"].to_numpy(), "se.fit": frame["mean_se"].to_numpy()},
            index=newdata.index,
        )
