"""
fss_plots.py

Figures for the full-subsets output:

- importance heatmap (taxa x predictors)
- partial-effect panels for each retained model, raw data underneath
- top model weights per taxon
- composite summary sheet stitched from per-model PNGs
"""

import math
import os
from typing import Sequence

import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import seaborn as sns
from matplotlib.colors import LinearSegmentedColormap
from PIL import Image

from fit_model_set import FitResult
from predictions import predict_effect

SCATTER_S = 12
SCATTER_ALPHA = 0.6
IMPORTANCE_CMAP = LinearSegmentedColormap.from_list("importance", ["white", "yellow", "red"])


def _safe_makedirs(path: str):
    dirpath = os.path.dirname(path)
    if dirpath:
        os.makedirs(dirpath, exist_ok=True)


def plot_importance_heatmap(importance: pd.DataFrame, out_path: str, dpi: int = 200):
    _safe_makedirs(out_path)
    n_taxa, n_pred = importance.shape

    plt.figure(figsize=(max(6.0, 0.9 * n_pred + 2.0), max(3.0, 0.6 * n_taxa + 1.5)))
    ax = sns.heatmap(
        importance.astype(float),
        cmap=IMPORTANCE_CMAP,
        vmin=0.0,
        vmax=1.0,
        annot=True,
        fmt=".2f",
        linewidths=0.5,
        linecolor="black",
        cbar_kws={"label": "Importance"},
    )
    ax.set_xlabel("")
    ax.set_ylabel("")
    plt.xticks(rotation=90)
    plt.yticks(rotation=0, fontstyle="italic")
    plt.title("Variable importance (summed AICc weights)")
    plt.tight_layout()
    plt.savefig(out_path, dpi=dpi)
    plt.close()


def plot_model_fits(fit: FitResult, data: pd.DataFrame, out_path: str, taxon: str = "", dpi: int = 150):
    """One panel per predictor: predicted response +/- SE over the raw data."""
    _safe_makedirs(out_path)
    predictors = list(fit.predictors)
    factors = {t.predictor for t in fit.design.factor_terms}

    n_panels = max(1, len(predictors))
    fig, axes = plt.subplots(n_panels, 1, figsize=(6.4, 3.2 * n_panels), squeeze=False)

    if not predictors:
        ax = axes[0, 0]
        ax.hist(data["response"], bins="auto", color="0.7", edgecolor="black")
        ax.set_xlabel("response")
        ax.set_title("{} | {}".format(taxon, fit.name))

    for ax, p in zip(axes[:, 0], predictors):
        pred = predict_effect(fit, data, p)
        if p in factors:
            levels = pred[p].astype(str).tolist()
            xpos = np.arange(len(levels))
            ax.bar(xpos, pred["response"], color="0.6", edgecolor="black")
            ax.errorbar(xpos, pred["response"], yerr=pred["se.fit"], fmt="none", ecolor="black", capsize=4)
            ax.set_xticks(xpos)
            ax.set_xticklabels(levels)
        else:
            ax.scatter(data[p], data["response"], s=SCATTER_S, alpha=SCATTER_ALPHA, color="tab:blue", linewidths=0)
            ax.plot(pred[p], pred["response"], color="black", linewidth=1.8)
            ax.plot(pred[p], pred["response"] - pred["se.fit"], color="black", linestyle="--", linewidth=1.0)
            ax.plot(pred[p], pred["response"] + pred["se.fit"], color="black", linestyle="--", linewidth=1.0)
        ax.set_xlabel(p)
        ax.set_ylabel(taxon or "response")

    axes[0, 0].set_title("{} | {} (AICc={:.2f})".format(taxon, fit.name, fit.aicc))
    fig.tight_layout()
    fig.savefig(out_path, dpi=dpi)
    plt.close(fig)


def plot_model_weights(table: pd.DataFrame, out_path: str, taxon: str = "", topn: int = 12, dpi: int = 150):
    _safe_makedirs(out_path)
    sub = table.head(topn)

    plt.figure(figsize=(10.2, 4.6))
    plt.bar(np.arange(len(sub)), sub["wi.AICc"].values, color="0.5")
    plt.xticks(np.arange(len(sub)), sub["modname"].tolist(), rotation=45, ha="right", fontsize=8)
    plt.ylabel("AICc weight")
    plt.title("{}: top {} models by AICc weight".format(taxon, len(sub)))
    plt.tight_layout()
    plt.savefig(out_path, dpi=dpi)
    plt.close()


def compose_figures(paths: Sequence[str], out_path: str, ncols: int = 3):
    """Paste PNGs into a grid (left to right, top to bottom) on a white sheet."""
    images = [Image.open(p).convert("RGB") for p in paths if os.path.exists(p)]
    if not images:
        return None

    ncols = max(1, min(ncols, len(images)))
    nrows = math.ceil(len(images) / ncols)
    cell_w = max(im.width for im in images)
    cell_h = max(im.height for im in images)

    sheet = Image.new("RGB", (cell_w * ncols, cell_h * nrows), "white")
    for i, im in enumerate(images):
        row, col = divmod(i, ncols)
        sheet.paste(im, (col * cell_w, row * cell_h))
        im.close()

    _safe_makedirs(out_path)
    sheet.save(out_path)
    return out_path
