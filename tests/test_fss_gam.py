import configparser
import os

import pandas as pd
import pytest

import fss_gam
from model_set import ModelSetError, RandomEffectTerm

CONFIG = """
[Data]
path = {path}
name = clams
response = Abundance
taxon_col = Taxa
random_effects = Location:Site
max_zero_fraction = 0.9

[Predictors]
continuous = x1, x2
factors = Status
k = 3

[Model Set]
max_predictors = 1
cov_cutoff = 0.95
max_models = {max_models}

[Fitting]
tweedie_powers = 1.5
alpha_criterion = GCV
n_workers = 1

[Output]
outdir = {outdir}
delta_aicc = 3
plots = {plots}
dpi = 60
"""


def make_settings(tmp_path, survey, max_models=50, plots="false"):
    path = tmp_path / "survey.csv"
    survey.to_csv(path, index=False)
    config = configparser.ConfigParser()
    config.read_string(CONFIG.format(path=path, outdir=tmp_path / "out", max_models=max_models, plots=plots))
    return fss_gam.settings_from_config(config)


def test_settings_from_config(tmp_path, survey_raw):
    settings = make_settings(tmp_path, survey_raw)

    assert settings.predictors.continuous == ("x1", "x2")
    assert settings.predictors.factors == ("Status",)
    assert settings.predictors.linear == ()
    assert settings.fixed_terms == (RandomEffectTerm(("Location", "Site")),)
    assert settings.grouping_cols == ["Location", "Site"]
    assert settings.fit.tweedie_powers == (1.5,)
    assert settings.fit.select_alpha is True
    assert settings.fit.alpha_criterion == "gcv"
    assert settings.include_null is True
    assert settings.plots is False
    assert settings.max_models == 50


def test_parse_args_defaults():
    args = fss_gam.parse_args([])
    assert args.config == "fss_gam.ini"
    assert args.taxa is None
    assert not args.no_plots


def test_cap_error_stops_before_fitting(tmp_path, survey_raw, monkeypatch):
    settings = make_settings(tmp_path, survey_raw, max_models=2)

    def no_fit(*args, **kwargs):
        raise AssertionError("fitting started")

    monkeypatch.setattr(fss_gam, "fit_model_set", no_fit)
    with pytest.raises(ModelSetError, match="4 candidate models"):
        fss_gam.run(settings)


def test_run_writes_tables(tmp_path, survey_raw):
    settings = make_settings(tmp_path, survey_raw, plots="true")
    selections = fss_gam.run(settings)
    out = settings.outdir

    assert set(selections) == {"BDS", "BMS"}
    for taxon, sel in selections.items():
        assert os.path.exists(os.path.join(out, taxon, "model_table.csv"))
        assert os.path.exists(os.path.join(out, taxon, "failed_models.csv"))
        if not sel.table.empty:
            assert sel.table["wi.AICc"].sum() == pytest.approx(1.0)

    var_imp = pd.read_csv(os.path.join(out, "clams_all.var.imp.csv"), index_col=0)
    assert list(var_imp.index) == ["BDS", "BMS"]
    assert list(var_imp.columns) == ["x1", "x2", "Status"]

    r2_imp = pd.read_csv(os.path.join(out, "clams_all.var.imp.r2.csv"), index_col=0)
    assert list(r2_imp.columns) == ["x1", "x2", "Status"]
    assert ((r2_imp >= 0) & (r2_imp <= 1 + 1e-9)).all().all()

    mod_fits = pd.read_csv(os.path.join(out, "clams_all.mod.fits.csv"))
    assert set(mod_fits["resp.var"]) <= {"BDS", "BMS"}
    assert (mod_fits["delta.AICc"] <= 3).all()


def test_unknown_taxon_is_skipped(tmp_path, survey_raw):
    settings = make_settings(tmp_path, survey_raw)
    selections = fss_gam.run(settings, taxa=["BDS", "NOPE"])
    assert set(selections) == {"BDS"}
