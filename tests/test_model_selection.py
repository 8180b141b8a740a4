import logging

import numpy as np
import pytest

from fit_model_set import FitResult
from model_selection import (
    akaike_weights,
    combine_importance,
    combine_mod_fits,
    parsimonious_models,
    rank_models,
    select_models,
    variable_importance,
)

PREDICTORS = ("x1", "x2", "x3", "Status")


def fake_fit(name, predictors, aicc, success=True, r2=0.2):
    if not success:
        return FitResult(name=name, predictors=predictors, success=False, reason="LinAlgError: singular")
    return FitResult(
        name=name, predictors=predictors, success=True,
        aicc=aicc, bic=aicc + 2.0, llf=-aicc / 2, edf=2.0 + len(predictors), n=50, r2=r2, tweedie_power=1.5,
    )


@pytest.fixture
def fits():
    return [
        fake_fit("null", (), 210.0),
        fake_fit("x1", ("x1",), 201.5),
        fake_fit("x2", ("x2",), 209.0),
        fake_fit("Status", ("Status",), 204.0),
        fake_fit("x1+x2", ("x1", "x2"), 200.0),
        fake_fit("x1+Status", ("x1", "Status"), 202.0),
        fake_fit("x2+Status", ("x2", "Status"), 0.0, success=False),
    ]


def test_weights_sum_to_one_and_cumsum(fits):
    table = rank_models(fits)

    assert table["wi.AICc"].sum() == pytest.approx(1.0)
    assert table["wi.BIC"].sum() == pytest.approx(1.0)
    cum = table["cumsum.wi"].to_numpy()
    assert np.all(np.diff(cum) >= 0)
    assert cum[-1] == pytest.approx(1.0)


def test_delta_zero_only_for_best(fits):
    table = rank_models(fits)

    assert table.iloc[0]["modname"] == "x1+x2"
    assert table.iloc[0]["delta.AICc"] == 0.0
    assert (table["delta.AICc"] >= 0).all()
    assert (table["delta.AICc"] == 0).sum() == 1
    assert list(table["AICc"]) == sorted(table["AICc"])


def test_failed_models_are_not_ranked(fits):
    sel = select_models("BDS", fits, PREDICTORS)

    assert "x2+Status" not in set(sel.table["modname"])
    assert list(sel.failed["modname"]) == ["x2+Status"]
    assert "LinAlgError" in sel.failed.iloc[0]["reason"]


def test_ties_keep_enumeration_order():
    fits = [fake_fit("a", ("x1",), 100.0), fake_fit("b", ("x2",), 100.0), fake_fit("c", ("x3",), 99.0)]
    table = rank_models(fits)
    assert list(table["modname"]) == ["c", "a", "b"]


def test_akaike_weight_values():
    delta, w = akaike_weights([10.0, 12.0])
    assert list(delta) == [0.0, 2.0]
    assert w[0] == pytest.approx(1.0 / (1.0 + np.exp(-1.0)))
    assert w[1] == pytest.approx(np.exp(-1.0) / (1.0 + np.exp(-1.0)))


def test_importance_matches_direct_recomputation(fits):
    importance = variable_importance(fits, PREDICTORS)
    table = rank_models(fits).set_index("modname")

    for p in PREDICTORS:
        expected = sum(table.loc[f.name, "wi.AICc"] for f in fits if f.success and p in f.predictors)
        assert importance[p] == pytest.approx(expected)

    # x3 is in no fitted model
    assert importance["x3"] == 0.0
    assert (importance <= 1.0 + 1e-12).all()


def test_bic_importance(fits):
    aicc_imp = variable_importance(fits, PREDICTORS, "AICc")
    bic_imp = variable_importance(fits, PREDICTORS, "BIC")
    # BIC = AICc + 2 for every fake fit, so the weights are identical
    assert np.allclose(aicc_imp.to_numpy(), bic_imp.to_numpy())

    with pytest.raises(ValueError):
        variable_importance(fits, PREDICTORS, "DIC")


def test_parsimonious_threshold(fits):
    table = rank_models(fits)
    kept = parsimonious_models(table, delta=3.0)

    assert list(kept["modname"]) == ["x1+x2", "x1", "x1+Status"]
    assert (kept["delta.AICc"] <= 3.0).all()


def test_all_failed_gives_empty_ranking_and_warning(caplog):
    fits = [fake_fit("null", (), 0, success=False), fake_fit("x1", ("x1",), 0, success=False)]
    with caplog.at_level(logging.WARNING):
        sel = select_models("CPN", fits, PREDICTORS)

    assert sel.table.empty
    assert sel.retained.empty
    assert sel.best is None
    assert (sel.importance == 0).all()
    assert list(sel.importance.index) == list(PREDICTORS)
    assert len(sel.failed) == 2
    assert "CPN" in caplog.text


def test_best_and_retained_fits(fits):
    sel = select_models("BDS", fits, PREDICTORS, delta=3.0)
    assert sel.best.name == "x1+x2"
    assert [f.name for f in sel.retained_fits()] == ["x1+x2", "x1", "x1+Status"]


def test_combine_across_taxa(fits):
    failed = [fake_fit("null", (), 0, success=False)]
    selections = {
        "BDS": select_models("BDS", fits, PREDICTORS),
        "BMS": select_models("BMS", fits[:3], PREDICTORS),
        "CPN": select_models("CPN", failed, PREDICTORS),
    }

    imp = combine_importance(selections)
    assert list(imp.index) == ["BDS", "BMS", "CPN"]
    assert list(imp.columns) == list(PREDICTORS)
    assert (imp.loc["CPN"] == 0).all()

    mod_fits = combine_mod_fits(selections)
    assert list(mod_fits["resp.var"].unique()) == ["BDS", "BMS"]
    assert mod_fits.columns[0] == "resp.var"


def test_r2_weighted_importance():
    fits = [
        fake_fit("null", (), 110.0, r2=-0.05),
        fake_fit("x1", ("x1",), 100.0, r2=0.3),
        fake_fit("x2", ("x2",), 105.0, r2=0.1),
        fake_fit("x1+x2", ("x1", "x2"), 101.0, r2=0.4),
        fake_fit("x1+Status", ("x1", "Status"), 0.0, success=False),
    ]
    importance = variable_importance(fits, PREDICTORS, "r2")

    # null counts as 0; weights are r2 / 0.8
    assert importance["x1"] == pytest.approx(0.7 / 0.8)
    assert importance["x2"] == pytest.approx(0.5 / 0.8)
    assert importance["Status"] == 0.0
    assert importance["x3"] == 0.0


def test_r2_importance_is_zero_without_explained_deviance():
    fits = [fake_fit("null", (), 110.0, r2=0.0), fake_fit("x1", ("x1",), 100.0, r2=-0.1)]
    assert (variable_importance(fits, PREDICTORS, "r2") == 0).all()


def test_combine_r2_importance(fits):
    selections = {"BDS": select_models("BDS", fits, PREDICTORS)}
    imp = combine_importance(selections, "r2")

    # every fake fit has r2 = 0.2, so weights are uniform over the six successes
    assert imp.loc["BDS", "x1"] == pytest.approx(3 / 6)
    assert imp.loc["BDS", "Status"] == pytest.approx(2 / 6)
