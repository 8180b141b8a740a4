"""
fit_model_set.py

Fit every candidate in a ModelSet as a Tweedie GAM.

Each candidate is fitted once per Tweedie power in the profile grid and the
power with the highest log-likelihood is kept (the power index is unknown
and estimated from the data). For every power the penalty weights of the
smooth and random-effect terms are chosen by GLMGam.select_penweight
(AIC or GCV) before the final fit. Numerical trouble or a rank-deficient
design in one candidate is recorded as a failed FitResult and never stops
the batch.

Fits are independent, so with n_workers > 1 the candidates are farmed out to
a process pool and collected by model name.
"""

import logging
import warnings
from concurrent.futures import ProcessPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any, List, Optional, Tuple

import numpy as np
import pandas as pd
import statsmodels.api as sm
from statsmodels.gam.api import GLMGam
from statsmodels.tools.sm_exceptions import (
    ConvergenceWarning,
    PerfectSeparationError,
    SingularMatrixWarning,
)

from gam_design import ModelDesign
from model_set import CandidateModel, ModelSet

logger = logging.getLogger(__name__)

FIT_ERRORS = (
    np.linalg.LinAlgError,
    ValueError,
    FloatingPointError,
    ZeroDivisionError,
    OverflowError,
    ConvergenceWarning,
    SingularMatrixWarning,
    PerfectSeparationError,
)

ALPHA_CRITERIA = ("aic", "gcv")
# lower bound on selected penalty weights; keeps the penalised design full rank
ALPHA_FLOOR = 1e-6


@dataclass(frozen=True)
class FitSettings:
    response: str = "response"
    tweedie_powers: Tuple[float, ...] = (1.1, 1.3, 1.5, 1.7, 1.9)
    smooth_alpha: float = 1.0
    re_alpha: float = 1.0
    select_alpha: bool = True
    alpha_criterion: str = "aic"
    alpha_maxiter: int = 100
    max_iter: int = 200

    def __post_init__(self):
        if self.alpha_criterion not in ALPHA_CRITERIA:
            raise ValueError(
                "alpha_criterion must be one of {}, got '{}'".format(ALPHA_CRITERIA, self.alpha_criterion)
            )


@dataclass
class FitResult:
    name: str
    predictors: Tuple[str, ...]
    success: bool
    reason: str = ""
    aicc: float = float("nan")
    bic: float = float("nan")
    llf: float = float("nan")
    edf: float = float("nan")
    n: int = 0
    r2: float = float("nan")
    tweedie_power: float = float("nan")
    alpha: Tuple[float, ...] = ()
    results: Any = field(default=None, repr=False)
    design: Optional[ModelDesign] = field(default=None, repr=False)

    @classmethod
    def failed(cls, candidate: CandidateModel, reason: str) -> "FitResult":
        return cls(name=candidate.name, predictors=candidate.predictors, success=False, reason=reason)

    def predict(self, newdata: pd.DataFrame) -> pd.DataFrame:
        if not self.success:
            raise ValueError("Model '{}' failed to fit: {}".format(self.name, self.reason))
        return self.design.predict(self.results, newdata)


# ----------------------------
# Information criteria
# ----------------------------
def aicc(llf: float, k: float, n: int) -> float:
    if n - k - 1 <= 0:
        return float("nan")
    return -2.0 * llf + 2.0 * k + 2.0 * k * (k + 1.0) / (n - k - 1.0)


def bic(llf: float, k: float, n: int) -> float:
    return -2.0 * llf + np.log(n) * k


def deviance_explained(family, y: np.ndarray, mu: np.ndarray) -> float:
    null_dev = family.deviance(y, np.full_like(y, y.mean()))
    if null_dev <= 0:
        return float("nan")
    return float(1.0 - family.deviance(y, mu) / null_dev)


# ----------------------------
# Single candidate
# ----------------------------
def select_alpha(model: GLMGam, start, settings: FitSettings) -> np.ndarray:
    """Penalty weights minimising the configured criterion, searched on log-alpha."""
    with warnings.catch_warnings():
        # intermediate PIRLS fits at extreme weights may not converge
        warnings.simplefilter("ignore", ConvergenceWarning)
        selected = model.select_penweight(
            criterion=settings.alpha_criterion,
            start_params=np.asarray(start, dtype=float),
            method="nm",
            maxiter=settings.alpha_maxiter,
            maxfun=2 * settings.alpha_maxiter,
            disp=False,
        )
    alpha = np.atleast_1d(np.asarray(selected[0], dtype=float))
    if not np.all(np.isfinite(alpha)):
        raise ValueError("penalty weight selection gave non-finite alpha {}".format(alpha))
    return np.maximum(alpha, ALPHA_FLOOR)


def _fit_once(design: ModelDesign, data: pd.DataFrame, y: np.ndarray, power: float, settings: FitSettings):
    family = sm.families.Tweedie(var_power=power)
    exog = design.exog_linear(data).to_numpy(dtype=float)
    alpha = np.asarray(design.alpha(settings.smooth_alpha, settings.re_alpha), dtype=float)

    if design.has_smooths and settings.select_alpha:
        start = GLMGam(y, exog=exog, smoother=design.smoother(data), alpha=list(alpha), family=family)
        alpha = select_alpha(start, alpha, settings)

    with warnings.catch_warnings():
        warnings.simplefilter("error", ConvergenceWarning)
        warnings.simplefilter("error", SingularMatrixWarning)
        if design.has_smooths:
            model = GLMGam(y, exog=exog, smoother=design.smoother(data), alpha=list(alpha), family=family)
            res = model.fit(maxiter=settings.max_iter)
            edf = float(np.sum(res.edf))
        else:
            res = sm.GLM(y, exog, family=family).fit(maxiter=settings.max_iter)
            edf = float(len(res.params))
            alpha = np.array([])

    if not getattr(res, "converged", True):
        raise ConvergenceWarning("did not converge in {} iterations".format(settings.max_iter))
    return res, family, edf, tuple(float(a) for a in alpha)


def fit_candidate(candidate: CandidateModel, data: pd.DataFrame, settings: FitSettings = FitSettings()) -> FitResult:
    try:
        design = ModelDesign(candidate, data)
        design.check_rank(data)
    except KeyError as e:
        return FitResult.failed(candidate, "missing column {}".format(e))
    except ValueError as e:
        logger.debug("%s failed: %s", candidate.name, e)
        return FitResult.failed(candidate, str(e))

    y = data[settings.response].to_numpy(dtype=float)
    n = len(y)

    best = None
    reasons = []
    for power in settings.tweedie_powers:
        try:
            res, family, edf, alpha = _fit_once(design, data, y, power, settings)
        except FIT_ERRORS as e:
            reasons.append("p={}: {}: {}".format(power, type(e).__name__, e))
            continue

        llf = float(res.llf)
        if not np.isfinite(llf):
            reasons.append("p={}: non-finite log-likelihood".format(power))
            continue
        if best is None or llf > best[0]:
            best = (llf, power, res, family, edf, alpha)

    if best is None:
        reason = "; ".join(reasons) if reasons else "no Tweedie power tried"
        logger.debug("%s failed: %s", candidate.name, reason)
        return FitResult.failed(candidate, reason)

    llf, power, res, family, edf, alpha = best
    k = edf + 1.0  # + scale
    score = aicc(llf, k, n)
    if not np.isfinite(score):
        return FitResult.failed(candidate, "too few observations ({}) for {:.1f} parameters".format(n, k))

    return FitResult(
        name=candidate.name,
        predictors=candidate.predictors,
        success=True,
        aicc=score,
        bic=bic(llf, k, n),
        llf=llf,
        edf=edf,
        n=n,
        r2=deviance_explained(family, y, np.asarray(res.fittedvalues, dtype=float)),
        tweedie_power=power,
        alpha=alpha,
        results=res,
        design=design,
    )


# ----------------------------
# Whole model set
# ----------------------------
def fit_model_set(
    model_set: ModelSet,
    data: pd.DataFrame,
    settings: FitSettings = FitSettings(),
    n_workers: int = 1,
) -> List[FitResult]:
    """Fit all candidates; results come back in enumeration order."""
    candidates = list(model_set)

    if n_workers and n_workers > 1 and len(candidates) > 1:
        fitted = {}
        with ProcessPoolExecutor(max_workers=n_workers) as pool:
            futures = {pool.submit(fit_candidate, c, data, settings): c.name for c in candidates}
            for future in as_completed(futures):
                fitted[futures[future]] = future.result()
    else:
        fitted = {c.name: fit_candidate(c, data, settings) for c in candidates}

    results = [fitted[c.name] for c in candidates]
    n_failed = sum(not r.success for r in results)
    logger.info("Fitted %d models (%d failed)", len(results), n_failed)
    return results
