#!/usr/bin/env python3
"""
fss_gam.py

Full-subsets GAM model selection over several response taxa.

For every taxon that passes the zero-count screen:
  1) correlation matrix of the numeric predictors (taxon subset)
  2) candidate model set (all admissible predictor combinations)
  3) Tweedie GAM fit for every candidate (optionally in a process pool)
  4) AICc ranking, Akaike weights, variable importance
  5) per-taxon tables + plots of the most parsimonious models

Model sets for all taxa are generated before any fitting so configuration
errors (e.g. too many candidate models) stop the run up front.

Outputs (in outdir):
  <name>_all.mod.fits.csv        retained models (delta AICc <= threshold), all taxa
  <name>_all.var.imp.csv         importance, taxa x predictors
  <name>_all.var.imp.bic.csv     BIC-weighted importance
  <name>_all.var.imp.r2.csv      r2-weighted importance
  <name>_importance_heatmap.png
  <name>_summary.png             best-model plots of every taxon on one sheet
  <taxon>/model_table.csv, failed_models.csv, model_weights.png,
  <taxon>/<name>_<rank>_<taxon>_mod_fits.png
"""

import argparse
import configparser
import logging
import os
from dataclasses import dataclass, replace
from typing import Dict, List, Optional, Tuple

import pandas as pd

from fit_model_set import FitSettings, fit_model_set
from fss_plots import compose_figures, plot_importance_heatmap, plot_model_fits, plot_model_weights
from model_selection import ModelSelection, combine_importance, combine_mod_fits, select_models
from model_set import ModelSet, PredictorSpec, RandomEffectTerm, generate_model_set
from survey_data import (
    SurveyDataError,
    load_survey_data,
    prepare_model_data,
    require_cols,
    select_taxa,
    taxon_subset,
)

logger = logging.getLogger("fss_gam")


# ============================================================
# Config / CLI
# ============================================================

@dataclass(frozen=True)
class Settings:
    data_path: str
    name: str
    response: str
    taxon_col: str
    random_effects: Tuple[Tuple[str, ...], ...]
    sqrt_cols: Tuple[str, ...]
    max_zero_fraction: float
    predictors: PredictorSpec
    max_predictors: int
    cov_cutoff: float
    max_models: int
    include_null: bool
    fit: FitSettings
    n_workers: int
    outdir: str
    delta_aicc: float
    plots: bool
    dpi: int

    @property
    def grouping_cols(self) -> List[str]:
        return [c for g in self.random_effects for c in g]

    @property
    def fixed_terms(self) -> Tuple[RandomEffectTerm, ...]:
        return tuple(RandomEffectTerm(g) for g in self.random_effects)


def _split(raw: str) -> Tuple[str, ...]:
    return tuple(s.strip() for s in raw.split(",") if s.strip())


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Full-subsets Tweedie GAM selection per taxon")
    parser.add_argument("-c", "--config", default="fss_gam.ini", help="INI file (default: fss_gam.ini)")
    parser.add_argument(
        "--taxa",
        nargs="*",
        default=None,
        help="Taxa to model. Default: every taxon passing the zero-count screen.",
    )
    parser.add_argument("-o", "--outdir", default=None, help="Override [Output] outdir")
    parser.add_argument("--n-workers", type=int, default=None, help="Override [Fitting] n_workers")
    parser.add_argument("--no-plots", action="store_true", help="Only write the CSV tables")
    parser.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    return parser.parse_args(argv)


def get_config(path: str) -> configparser.ConfigParser:
    config = configparser.ConfigParser()
    if not config.read(path):
        raise FileNotFoundError("Config file not found: {}".format(path))
    return config


def settings_from_config(config: configparser.ConfigParser) -> Settings:
    random_effects = tuple(
        tuple(c.strip() for c in group.split(":") if c.strip())
        for group in _split(config.get("Data", "random_effects", fallback="Location:Site"))
    )

    predictors = PredictorSpec(
        continuous=_split(config.get("Predictors", "continuous", fallback="")),
        factors=_split(config.get("Predictors", "factors", fallback="")),
        linear=_split(config.get("Predictors", "linear", fallback="")),
        k=config.getint("Predictors", "k", fallback=3),
    )

    fit = FitSettings(
        tweedie_powers=tuple(float(p) for p in _split(config.get("Fitting", "tweedie_powers", fallback="1.1,1.3,1.5,1.7,1.9"))),
        smooth_alpha=config.getfloat("Fitting", "smooth_alpha", fallback=1.0),
        re_alpha=config.getfloat("Fitting", "re_alpha", fallback=1.0),
        select_alpha=config.getboolean("Fitting", "select_alpha", fallback=True),
        alpha_criterion=config.get("Fitting", "alpha_criterion", fallback="aic").strip().lower(),
        alpha_maxiter=config.getint("Fitting", "alpha_maxiter", fallback=100),
        max_iter=config.getint("Fitting", "max_iter", fallback=200),
    )

    return Settings(
        data_path=config.get("Data", "path", fallback="input_data/survey_data.csv"),
        name=config.get("Data", "name", fallback="fss"),
        response=config.get("Data", "response", fallback="Abundance"),
        taxon_col=config.get("Data", "taxon_col", fallback="Taxa"),
        random_effects=random_effects,
        sqrt_cols=_split(config.get("Data", "sqrt", fallback="")),
        max_zero_fraction=config.getfloat("Data", "max_zero_fraction", fallback=0.8),
        predictors=predictors,
        max_predictors=config.getint("Model Set", "max_predictors", fallback=3),
        cov_cutoff=config.getfloat("Model Set", "cov_cutoff", fallback=0.28),
        max_models=config.getint("Model Set", "max_models", fallback=500),
        include_null=config.getboolean("Model Set", "include_null", fallback=True),
        fit=fit,
        n_workers=config.getint("Fitting", "n_workers", fallback=1),
        outdir=config.get("Output", "outdir", fallback="fss_outputs"),
        delta_aicc=config.getfloat("Output", "delta_aicc", fallback=3.0),
        plots=config.getboolean("Output", "plots", fallback=True),
        dpi=config.getint("Output", "dpi", fallback=150),
    )


# ============================================================
# Pipeline
# ============================================================

def build_model_sets(df: pd.DataFrame, taxa: List[str], settings: Settings) -> Dict[str, Tuple[pd.DataFrame, ModelSet]]:
    """Generate every taxon's model set. ModelSetError propagates; data errors skip the taxon."""
    used_cols = list(settings.predictors.all_predictors) + settings.grouping_cols
    out = {}
    for taxon in taxa:
        try:
            use_dat = prepare_model_data(taxon_subset(df, taxon, settings.taxon_col), used_cols)
        except SurveyDataError as e:
            logger.warning("Skipping taxon %s: %s", taxon, e)
            continue

        model_set = generate_model_set(
            settings.predictors,
            data=use_dat,
            fixed_terms=settings.fixed_terms,
            max_predictors=settings.max_predictors,
            cov_cutoff=settings.cov_cutoff,
            max_models=settings.max_models,
            include_null=settings.include_null,
        )
        logger.info(
            "%s: %d rows, %d candidate models (%d dropped for correlated predictors)",
            taxon, len(use_dat), len(model_set), model_set.excluded,
        )
        out[taxon] = (use_dat, model_set)
    return out


def write_taxon_outputs(sel: ModelSelection, use_dat: pd.DataFrame, settings: Settings) -> List[str]:
    taxon_dir = os.path.join(settings.outdir, str(sel.taxon))
    os.makedirs(taxon_dir, exist_ok=True)

    sel.table.to_csv(os.path.join(taxon_dir, "model_table.csv"), index=False)
    sel.failed.to_csv(os.path.join(taxon_dir, "failed_models.csv"), index=False)

    pngs = []
    if not settings.plots or sel.table.empty:
        return pngs

    plot_model_weights(sel.table, os.path.join(taxon_dir, "model_weights.png"), taxon=sel.taxon, dpi=settings.dpi)
    for m, fit in enumerate(sel.retained_fits(), start=1):
        out = os.path.join(taxon_dir, "{}_{}_{}_mod_fits.png".format(settings.name, m, sel.taxon))
        plot_model_fits(fit, use_dat, out, taxon=sel.taxon, dpi=settings.dpi)
        pngs.append(out)
    return pngs


def run(settings: Settings, taxa: Optional[List[str]] = None) -> Dict[str, ModelSelection]:
    df = load_survey_data(settings.data_path, settings.response, settings.sqrt_cols)
    require_cols(df, [settings.taxon_col] + list(settings.predictors.all_predictors) + settings.grouping_cols)

    if not taxa:
        taxa = select_taxa(df.dropna(subset=["response"]), settings.taxon_col, settings.max_zero_fraction)
    print("Taxa to model:", taxa)

    model_sets = build_model_sets(df, taxa, settings)
    os.makedirs(settings.outdir, exist_ok=True)

    selections = {}
    best_pngs = []
    for taxon, (use_dat, model_set) in model_sets.items():
        print("\n====================================")
        print(f"   FULL SUBSETS: {taxon} ({len(model_set)} models)")
        print("====================================\n")

        fits = fit_model_set(model_set, use_dat, settings.fit, n_workers=settings.n_workers)
        sel = select_models(taxon, fits, model_set.predictors, delta=settings.delta_aicc)
        selections[taxon] = sel

        if not sel.failed.empty:
            print("Failed models:", ", ".join(sel.failed["modname"]))
        if not sel.table.empty:
            print(sel.retained[["modname", "AICc", "delta.AICc", "wi.AICc", "r2", "edf"]].to_string(index=False))

        pngs = write_taxon_outputs(sel, use_dat, settings)
        if pngs:
            best_pngs.append(pngs[0])

    all_mod_fits = combine_mod_fits(selections)
    all_var_imp = combine_importance(selections, "AICc")
    all_mod_fits.to_csv(os.path.join(settings.outdir, "{}_all.mod.fits.csv".format(settings.name)), index=False)
    all_var_imp.to_csv(os.path.join(settings.outdir, "{}_all.var.imp.csv".format(settings.name)))
    for criterion, suffix in (("BIC", "bic"), ("r2", "r2")):
        combine_importance(selections, criterion).to_csv(
            os.path.join(settings.outdir, "{}_all.var.imp.{}.csv".format(settings.name, suffix))
        )

    if settings.plots and not all_var_imp.empty:
        plot_importance_heatmap(
            all_var_imp, os.path.join(settings.outdir, "{}_importance_heatmap.png".format(settings.name)), dpi=settings.dpi
        )
        compose_figures(best_pngs, os.path.join(settings.outdir, "{}_summary.png".format(settings.name)))

    print("\nSaved to:", settings.outdir)
    return selections


def main(argv=None):
    args = parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level), format="%(levelname)s %(name)s: %(message)s")

    settings = settings_from_config(get_config(args.config))
    if args.outdir:
        settings = replace(settings, outdir=args.outdir)
    if args.n_workers is not None:
        settings = replace(settings, n_workers=args.n_workers)
    if args.no_plots:
        settings = replace(settings, plots=False)

    run(settings, taxa=args.taxa)


if __name__ == "__main__":
    main()
