from __future__ import annotations

from pathlib import Path

import matplotlib.pyplot as plt
import pandas as pd


def plot_anneal_trace(trace_csv: Path, out_png: Path) -> None:
    """Current and best objective per iteration, with temperature on a log axis."""
    df = pd.read_csv(trace_csv)
    for col in ("iteration", "current", "best", "temperature"):
        if col not in df.columns:
            raise ValueError(f"Trace CSV must have column '{col}'.")

    fig, ax = plt.subplots(figsize=(8, 4))
    ax.plot(df["iteration"], df["current"], lw=0.6, alpha=0.7, label="current")
    ax.plot(df["iteration"], df["best"], lw=1.5, label="best")
    ax.set_xlabel("Iteration")
    ax.set_ylabel("Objective")

    ax2 = ax.twinx()
    ax2.plot(df["iteration"], df["temperature"], color="grey", lw=1, linestyle="--")
    ax2.set_yscale("log")
    ax2.set_ylabel("Temperature")

    ax.legend(loc="lower right", fontsize="small")
    ax.set_title("Simulated annealing trace")
    fig.tight_layout()
    out_png.parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(out_png, dpi=150)
    plt.close(fig)


def plot_marker_count_curve(curve_csv: Path, out_png: Path) -> None:
    """Best diversity / differentiation / objective against number of markers."""
    df = pd.read_csv(curve_csv)
    if "n_markers" not in df.columns:
        raise ValueError("Curve CSV must have column 'n_markers'.")
    df = df.sort_values("n_markers")

    plt.figure(figsize=(6, 4))
    for col in ("score", "diversity", "differentiation"):
        if col in df.columns and df[col].notna().any():
            plt.plot(df["n_markers"], df[col], marker="o", ms=3, label=col)
    plt.xlabel("Number of markers")
    plt.ylabel("Value")
    plt.title("Optimal marker count")
    plt.legend(fontsize="small")
    plt.tight_layout()
    out_png.parent.mkdir(parents=True, exist_ok=True)
    plt.savefig(out_png, dpi=150)
    plt.close()
