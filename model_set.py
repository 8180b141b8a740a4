"""
model_set.py

Full-subsets candidate model generation.

Given the predictor universe (continuous smooths, factors, linear-only
covariates) and the fixed terms every model carries (random effects), build
every admissible predictor combination up to `max_predictors` terms.

Rules:
- combinations are enumerated in a fixed order (continuous, factors, linear,
  each in configured order) so two runs give identical model sets
- any combination holding two continuous / linear predictors with
  |r| > cov_cutoff is dropped
- more admissible models than `max_models` is a configuration error; nothing
  is returned and the caller must raise the cap or shrink the model space
"""

import itertools
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd


NULL_MODEL_NAME = "null"


class ModelSetError(ValueError):
    """Bad model-set configuration. Raised before any model is fitted."""


# ----------------------------
# Model terms
# ----------------------------
@dataclass(frozen=True)
class SmoothTerm:
    predictor: str
    k: int
    bs: str = "cr"

    @property
    def label(self) -> str:
        return "s({},k={},bs='{}')".format(self.predictor, self.k, self.bs)


@dataclass(frozen=True)
class LinearTerm:
    predictor: str
    factor: bool = False

    @property
    def label(self) -> str:
        return self.predictor


@dataclass(frozen=True)
class RandomEffectTerm:
    grouping: Tuple[str, ...]

    @property
    def label(self) -> str:
        return "s({},bs='re')".format(",".join(self.grouping))


Term = Union[SmoothTerm, LinearTerm, RandomEffectTerm]


# ----------------------------
# Predictor universe + candidates
# ----------------------------
@dataclass(frozen=True)
class PredictorSpec:
    continuous: Tuple[str, ...] = ()
    factors: Tuple[str, ...] = ()
    linear: Tuple[str, ...] = ()
    k: int = 3

    @property
    def all_predictors(self) -> Tuple[str, ...]:
        return tuple(self.continuous) + tuple(self.factors) + tuple(self.linear)

    @property
    def numeric_predictors(self) -> Tuple[str, ...]:
        return tuple(self.continuous) + tuple(self.linear)

    def validate(self, fixed_terms: Sequence[Term] = ()):
        seen = {}
        for role, names in (("continuous", self.continuous),
                            ("factor", self.factors),
                            ("linear", self.linear)):
            for name in names:
                if name in seen:
                    raise ModelSetError(
                        "Predictor '{}' listed as both {} and {}".format(name, seen[name], role)
                    )
                seen[name] = role

        if not seen:
            raise ModelSetError("No candidate predictors given")
        if self.k < 3:
            raise ModelSetError("Smooth basis size k must be >= 3, got {}".format(self.k))

        for term in fixed_terms:
            used = term.grouping if isinstance(term, RandomEffectTerm) else (term.predictor,)
            clash = [v for v in used if v in seen]
            if clash:
                raise ModelSetError(
                    "Fixed term {} uses candidate predictor(s) {}".format(term.label, clash)
                )


@dataclass(frozen=True)
class CandidateModel:
    name: str
    predictors: Tuple[str, ...]
    terms: Tuple[Term, ...]

    @property
    def formula(self) -> str:
        return "response ~ " + " + ".join(t.label for t in self.terms) if self.terms else "response ~ 1"

    def uses(self, predictor: str) -> bool:
        return predictor in self.predictors


@dataclass
class ModelSet:
    candidates: List[CandidateModel]
    spec: PredictorSpec
    fixed_terms: Tuple[Term, ...]
    correlations: pd.DataFrame = field(default_factory=pd.DataFrame)
    excluded: int = 0

    def __len__(self):
        return len(self.candidates)

    def __iter__(self):
        return iter(self.candidates)

    @property
    def names(self) -> List[str]:
        return [c.name for c in self.candidates]

    @property
    def predictors(self) -> Tuple[str, ...]:
        return self.spec.all_predictors


# ----------------------------
# Correlation screening
# ----------------------------
def predictor_correlations(data: pd.DataFrame, predictors: Sequence[str]) -> pd.DataFrame:
    """Pearson correlation over the numeric predictors; undefined pairs are 0."""
    predictors = list(predictors)
    if not predictors:
        return pd.DataFrame()
    corr = data[predictors].astype(float).corr()
    corr = corr.fillna(0.0)
    values = corr.to_numpy(copy=True)
    np.fill_diagonal(values, 1.0)
    return pd.DataFrame(values, index=corr.index, columns=corr.columns)


def correlated_pairs(corr: pd.DataFrame, cov_cutoff: float) -> set:
    pairs = set()
    names = list(corr.columns)
    for a, b in itertools.combinations(names, 2):
        if abs(float(corr.loc[a, b])) > cov_cutoff:
            pairs.add(frozenset((a, b)))
    return pairs


# ----------------------------
# Generation
# ----------------------------
def _basis_size(data: Optional[pd.DataFrame], predictor: str, k: int) -> int:
    if data is None or predictor not in data.columns:
        return k
    n_unique = int(data[predictor].nunique())
    return max(3, min(k, n_unique))


def _predictor_terms(spec: PredictorSpec, data: Optional[pd.DataFrame]) -> dict:
    terms = {}
    for name in spec.continuous:
        terms[name] = SmoothTerm(name, _basis_size(data, name, spec.k))
    for name in spec.factors:
        terms[name] = LinearTerm(name, factor=True)
    for name in spec.linear:
        terms[name] = LinearTerm(name)
    return terms


def generate_model_set(
    spec: PredictorSpec,
    data: Optional[pd.DataFrame] = None,
    fixed_terms: Sequence[Term] = (),
    max_predictors: int = 3,
    cov_cutoff: float = 0.28,
    max_models: int = 500,
    include_null: bool = True,
    correlations: Optional[pd.DataFrame] = None,
) -> ModelSet:
    """
    Enumerate all admissible candidate models.

    `correlations` takes precedence over `data` for the correlation screen;
    `data` is also used to cap each smooth's basis size at the number of
    distinct predictor values.
    """
    fixed_terms = tuple(fixed_terms)
    spec.validate(fixed_terms)
    if max_predictors < 1:
        raise ModelSetError("max_predictors must be >= 1, got {}".format(max_predictors))

    if correlations is None:
        if data is not None:
            correlations = predictor_correlations(data, spec.numeric_predictors)
        else:
            correlations = pd.DataFrame()

    screened = [p for p in spec.numeric_predictors if p in correlations.columns]
    bad_pairs = correlated_pairs(correlations.loc[screened, screened], cov_cutoff) if screened else set()

    terms = _predictor_terms(spec, data)
    universe = spec.all_predictors

    candidates = []
    if include_null:
        candidates.append(CandidateModel(NULL_MODEL_NAME, (), fixed_terms))

    excluded = 0
    for size in range(1, min(max_predictors, len(universe)) + 1):
        for combo in itertools.combinations(universe, size):
            if any(frozenset(pair) in bad_pairs for pair in itertools.combinations(combo, 2)):
                excluded += 1
                continue
            candidates.append(
                CandidateModel(
                    name="+".join(combo),
                    predictors=combo,
                    terms=tuple(terms[p] for p in combo) + fixed_terms,
                )
            )

    if len(candidates) > max_models:
        raise ModelSetError(
            "{} candidate models exceed max_models={}. Raise max_models or reduce "
            "max_predictors / the predictor list.".format(len(candidates), max_models)
        )

    return ModelSet(
        candidates=candidates,
        spec=spec,
        fixed_terms=fixed_terms,
        correlations=correlations,
        excluded=excluded,
    )
