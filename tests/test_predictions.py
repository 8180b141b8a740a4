import numpy as np
import pandas as pd
import pytest

from fit_model_set import FitSettings, fit_candidate
from model_set import CandidateModel, LinearTerm, RandomEffectTerm, SmoothTerm
from predictions import predict_effect, prediction_grid, summarise_predictions

RE = RandomEffectTerm(("Location", "Site"))


@pytest.fixture
def fitted(large_taxon_data):
    candidate = CandidateModel(
        "x1+Status",
        ("x1", "Status"),
        (SmoothTerm("x1", 3), LinearTerm("Status", factor=True), RE),
    )
    fit = fit_candidate(candidate, large_taxon_data, FitSettings(tweedie_powers=(1.5,)))
    assert fit.success, fit.reason
    return fit


def test_summarise_is_groupby_mean():
    predicted = pd.DataFrame({
        "Status": ["Fished", "Fished", "No-take", "No-take"],
        "Site": ["a", "b", "a", "b"],
        "fit": [1.0, 3.0, 4.0, 6.0],
        "se.fit": [0.1, 0.3, 0.2, 0.4],
    })
    out = summarise_predictions(predicted, ["Status"])

    assert list(out.columns) == ["Status", "response", "se.fit"]
    assert list(out["Status"]) == ["Fished", "No-take"]
    assert out["response"].tolist() == pytest.approx([2.0, 5.0])
    assert out["se.fit"].tolist() == pytest.approx([0.2, 0.3])


def test_grid_over_continuous_focal(fitted, large_taxon_data):
    grid = prediction_grid(fitted, large_taxon_data, "x1", n_points=10)
    n_groups = len(large_taxon_data[["Location", "Site"]].drop_duplicates())

    assert set(grid.columns) == {"x1", "Status", "Location", "Site"}
    assert grid["x1"].nunique() == 10
    assert grid["x1"].min() == pytest.approx(large_taxon_data["x1"].min())
    assert grid["x1"].max() == pytest.approx(large_taxon_data["x1"].max())
    assert len(grid) == 10 * 2 * n_groups


def test_grid_rejects_unknown_predictor(fitted, large_taxon_data):
    with pytest.raises(ValueError):
        prediction_grid(fitted, large_taxon_data, "x3")


def test_predict_effect_continuous(fitted, large_taxon_data):
    out = predict_effect(fitted, large_taxon_data, "x1", n_points=15)

    assert len(out) == 15
    assert (out["response"] > 0).all()
    assert (out["se.fit"] >= 0).all()
    assert np.all(np.diff(out["x1"]) > 0)


def test_predict_effect_factor_by_level(fitted, large_taxon_data):
    out = predict_effect(fitted, large_taxon_data, "Status")
    assert list(out["Status"]) == ["Fished", "No-take"]
    assert out["response"].notna().all()
