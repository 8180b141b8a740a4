#!/usr/bin/env python3
"""
case_study2_parsimonious_models.py

Refit the most parsimonious model of each taxon picked from the full-subsets
output and draw one combined figure of the fitted relationships.

Taxa / models (soft-sediment case study):
  BDS  Dosinia subrosea        sqrt.X500um + Distance + Status
  BMS  Myadora striata         lobster
  CPN  Pagurus novaezelandiae  sqrt.X4mm + lobster

Each panel shows the raw data and the predicted response +/- 1 SE, averaged
over the observed Location/Site combinations.

Outputs (in --outdir):
  predicts_<taxon>_<predictor>.csv
  parsimonious_models.png
"""

import argparse
import os

import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt
import numpy as np

from fit_model_set import FitSettings, fit_candidate
from model_set import CandidateModel, LinearTerm, RandomEffectTerm, SmoothTerm
from predictions import predict_effect
from survey_data import load_survey_data, prepare_model_data, taxon_subset

RANDOM = RandomEffectTerm(("Location", "Site"))

MODELS = {
    "BDS": ("Dosinia subrosea", [SmoothTerm("sqrt.X500um", 3), LinearTerm("Distance"), LinearTerm("Status", factor=True)]),
    "BMS": ("Myadora striata", [SmoothTerm("lobster", 3)]),
    "CPN": ("Pagurus novaezelandiae", [SmoothTerm("sqrt.X4mm", 3), SmoothTerm("lobster", 3)]),
}

STATUS_COLORS = {"Fished": "red", "No-take": "black"}


def parse_args():
    parser = argparse.ArgumentParser(description="Plot the most parsimonious GAM per taxon")
    parser.add_argument("--csv", type=str, default="input_data/case_study2_dataset.csv")
    parser.add_argument("--outdir", type=str, default="case_study2_model_out")
    return parser.parse_args()


def fit_taxon_model(dat, taxon, terms):
    predictors = tuple(t.predictor for t in terms)
    candidate = CandidateModel("+".join(predictors), predictors, tuple(terms) + (RANDOM,))
    use_dat = prepare_model_data(taxon_subset(dat, taxon), list(candidate.predictors) + ["Location", "Site", "Status"])
    fit = fit_candidate(candidate, use_dat, FitSettings())
    if not fit.success:
        raise RuntimeError("{}: model {} failed to fit ({})".format(taxon, fit.name, fit.reason))
    return fit, use_dat


def draw_panel(ax, fit, use_dat, predictor, label, outdir, taxon):
    factors = {t.predictor for t in fit.design.factor_terms}
    pred = predict_effect(fit, use_dat, predictor)
    pred.to_csv(os.path.join(outdir, "predicts_{}_{}.csv".format(taxon, predictor)), index=False)

    if predictor in factors:
        levels = pred[predictor].tolist()
        xpos = np.arange(len(levels))
        colors = [STATUS_COLORS.get(lev, "0.5") for lev in levels]
        ax.bar(xpos, pred["response"], color=colors)
        ax.errorbar(xpos, pred["response"], yerr=pred["se.fit"], fmt="none", ecolor="0.3", capsize=5)
        ax.set_xticks(xpos)
        ax.set_xticklabels(levels)
    else:
        for status, sub in use_dat.groupby("Status"):
            ax.scatter(sub[predictor], sub["response"], s=14, alpha=0.75,
                       color=STATUS_COLORS.get(status, "0.5"), linewidths=0)
        ax.plot(pred[predictor], pred["response"], color="black", alpha=0.6)
        ax.plot(pred[predictor], pred["response"] - pred["se.fit"], color="black", linestyle="--", alpha=0.6)
        ax.plot(pred[predictor], pred["response"] + pred["se.fit"], color="black", linestyle="--", alpha=0.6)

    ax.set_xlabel(predictor)
    ax.text(0.02, 0.98, label, transform=ax.transAxes, va="top", ha="left", fontsize=12)


def main():
    args = parse_args()
    os.makedirs(args.outdir, exist_ok=True)

    dat = load_survey_data(args.csv, response="Abundance", sqrt_cols=["X4mm", "X2mm", "X1mm", "X500um"])

    fig, axes = plt.subplots(3, 3, figsize=(12, 12))
    panel_labels = iter("abcdefghi")

    for row, (taxon, (species, terms)) in enumerate(MODELS.items()):
        fit, use_dat = fit_taxon_model(dat, taxon, terms)
        print("{} ({}): {}  AICc={:.2f}  p={}".format(taxon, species, fit.name, fit.aicc, fit.tweedie_power))

        # factor panels first, as in the published figure
        predictors = sorted(fit.predictors, key=lambda p: p != "Status")
        for col in range(3):
            ax = axes[row, col]
            if col >= len(predictors):
                ax.axis("off")
                continue
            label = "({})".format(next(panel_labels))
            if col == 0:
                label += "  " + species
            draw_panel(ax, fit, use_dat, predictors[col], label, args.outdir, taxon)
        axes[row, 0].set_ylabel("Abundance")

    fig.tight_layout()
    out = os.path.join(args.outdir, "parsimonious_models.png")
    fig.savefig(out, dpi=200)
    plt.close(fig)
    print("Saved:", out)


if __name__ == "__main__":
    main()
