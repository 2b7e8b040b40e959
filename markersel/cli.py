from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Sequence

import numpy as np
import pandas as pd

from . import anneal, evaluate, filters, freq, io, plots, sim
from .errors import ConfigurationError, DataError
from .scoring import OBJECTIVE_KINDS, Objective


def _add_input_args(p: argparse.ArgumentParser) -> None:
    p.add_argument(
        "genotypes",
        type=Path,
        help="Numeric genotype CSV/TSV (markers as rows) or a .zarr genotype store",
    )
    p.add_argument(
        "--groups",
        type=Path,
        required=True,
        help="CSV with columns sample_id,group giving the group of each individual.",
    )


def _add_anneal_args(p: argparse.ArgumentParser) -> None:
    p.add_argument(
        "--initial-temperature",
        type=float,
        default=0.01,
        help="Starting annealing temperature (default: 0.01).",
    )
    p.add_argument(
        "--cooling-rate",
        type=float,
        default=0.995,
        help="Geometric cooling factor in (0,1) (default: 0.995).",
    )
    p.add_argument(
        "--cooling-interval",
        type=int,
        default=1,
        help="Iterations between cooling steps (default: 1).",
    )
    p.add_argument(
        "--iteration-budget",
        type=int,
        default=10000,
        help="Maximum number of annealing iterations (default: 10000).",
    )
    p.add_argument(
        "--temperature-floor",
        type=float,
        default=1e-8,
        help="Stop once the temperature falls below this value (default: 1e-8).",
    )
    p.add_argument(
        "--patience",
        type=int,
        default=None,
        help="Stop after this many iterations without a new best (default: off).",
    )
    p.add_argument(
        "--random-seed",
        type=int,
        default=None,
        help="Seed for reproducible runs.",
    )
    p.add_argument(
        "--objective",
        choices=list(OBJECTIVE_KINDS),
        default="weighted",
        help="Objective combining diversity and differentiation (default: weighted).",
    )
    p.add_argument(
        "--diversity-weight",
        type=float,
        default=0.5,
        help="Weight of diversity for --objective weighted (default: 0.5).",
    )
    p.add_argument(
        "--clone-threshold",
        type=float,
        default=None,
        help="Remove clones at IBS >= threshold before selection (default: off).",
    )
    p.add_argument(
        "--het-cutoff",
        type=float,
        default=None,
        help="Remove individuals with observed/expected heterozygosity above cutoff.",
    )


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="markersel",
        description=(
            "Select marker subsets maximising within-group diversity and "
            "between-group differentiation by simulated annealing."
        ),
    )
    p.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Log progress (-v info, -vv debug).",
    )

    sub = p.add_subparsers(dest="command", required=True)

    simulate = sub.add_parser(
        "simulate",
        help="Simulate grouped genotypes (CSV + group file) for testing.",
    )
    simulate.add_argument("--n-ind", type=int, default=100)
    simulate.add_argument("--n-snp", type=int, default=500)
    simulate.add_argument("--n-groups", type=int, default=2)
    simulate.add_argument("--fst", type=float, default=0.1)
    simulate.add_argument("--missing-rate", type=float, default=0.0)
    simulate.add_argument("--n-clones", type=int, default=0)
    simulate.add_argument("--seed", type=int, default=None)
    simulate.add_argument(
        "--out-dir",
        type=Path,
        required=True,
        help="Directory for genotypes.csv and groups.csv.",
    )

    store = sub.add_parser(
        "to-store",
        help="Convert a numeric genotype CSV to a Zarr genotype store.",
    )
    store.add_argument("genotypes", type=Path, help="Numeric genotype CSV/TSV")
    store.add_argument("--out", type=Path, required=True, help="Output .zarr path")

    filt = sub.add_parser(
        "filter",
        help="Remove clones and heterozygosity outliers.",
    )
    filt.add_argument("genotypes", type=Path, help="Numeric genotype CSV/TSV or .zarr store")
    filt.add_argument(
        "--clone-threshold",
        type=float,
        default=0.95,
        help="IBS at or above which two individuals are clones (default: 0.95).",
    )
    filt.add_argument(
        "--het-cutoff",
        type=float,
        default=None,
        help="Observed/expected heterozygosity above which individuals are dropped.",
    )
    filt.add_argument(
        "--out",
        type=Path,
        required=True,
        help="Output genotype CSV (markers as rows) for the retained individuals.",
    )
    filt.add_argument(
        "--removed-out",
        type=Path,
        default=None,
        help="Optional CSV listing removed individuals and the reason.",
    )

    select = sub.add_parser(
        "select",
        help="Choose a marker subset by simulated annealing.",
    )
    _add_input_args(select)
    select.add_argument(
        "--target-subset-size",
        type=int,
        required=True,
        help="Number of markers to select.",
    )
    _add_anneal_args(select)
    select.add_argument(
        "--out",
        type=Path,
        required=True,
        help="Output CSV with columns: marker_id, score, diversity, differentiation.",
    )
    select.add_argument(
        "--trace-out",
        type=Path,
        default=None,
        help="Optional CSV with the per-iteration annealing trace.",
    )

    ev = sub.add_parser(
        "evaluate",
        help="Evaluate marker sets (diversity, differentiation, IBS, uniqueness).",
    )
    _add_input_args(ev)
    ev.add_argument(
        "--marker-sets",
        type=Path,
        nargs="+",
        required=True,
        help="CSV files each listing one marker set (marker_id column).",
    )
    ev.add_argument(
        "--random-draws",
        type=int,
        default=0,
        help="Also evaluate this many random sets of the same size as the first set.",
    )
    ev.add_argument("--random-seed", type=int, default=None)
    ev.add_argument("--out", type=Path, required=True, help="Output CSV, one row per set.")

    curve = sub.add_parser(
        "curve",
        help="Best achievable score for a range of marker counts.",
    )
    _add_input_args(curve)
    curve.add_argument(
        "--sizes",
        type=int,
        nargs="+",
        required=True,
        help="Target subset sizes to optimise.",
    )
    curve.add_argument(
        "--workers",
        type=int,
        default=1,
        help="Worker processes for independent runs (default: 1).",
    )
    _add_anneal_args(curve)
    curve.add_argument("--out", type=Path, required=True, help="Output CSV.")

    ptrace = sub.add_parser("plot-trace", help="Plot an annealing trace CSV.")
    ptrace.add_argument("trace_csv", type=Path)
    ptrace.add_argument("--out", type=Path, required=True)

    pcurve = sub.add_parser("plot-curve", help="Plot a marker-count curve CSV.")
    pcurve.add_argument("curve_csv", type=Path)
    pcurve.add_argument("--out", type=Path, required=True)

    return p


def _anneal_config(args: argparse.Namespace, target: int) -> anneal.AnnealConfig:
    return anneal.AnnealConfig(
        target_subset_size=target,
        initial_temperature=args.initial_temperature,
        cooling_rate=args.cooling_rate,
        cooling_interval=args.cooling_interval,
        iteration_budget=args.iteration_budget,
        random_seed=args.random_seed,
        temperature_floor=args.temperature_floor,
        patience=args.patience,
        objective=Objective(kind=args.objective, diversity_weight=args.diversity_weight),
    )


def _load_frequencies(args: argparse.Namespace):
    matrix = io.read_genotypes(args.genotypes)
    groups = io.read_groups(args.groups)
    if args.clone_threshold is not None or args.het_cutoff is not None:
        res = filters.filter_individuals(
            matrix,
            filters.FilterConfig(
                clone_similarity_threshold=args.clone_threshold,
                heterozygosity_outlier_cutoff=args.het_cutoff,
            ),
        )
        matrix = res.matrix
    freqs = freq.group_frequencies(matrix, groups)
    objective = Objective(kind=args.objective, diversity_weight=args.diversity_weight)
    pool = anneal.candidate_pool(freqs, objective)
    dropped = freqs.n_snp - len(pool)
    if dropped:
        print(f"Excluded {dropped} markers with undefined group frequencies.")
    return freqs, pool


def cmd_simulate(args: argparse.Namespace) -> None:
    data = sim.simulate_grouped_genotypes(
        n_ind=args.n_ind,
        n_snp=args.n_snp,
        n_groups=args.n_groups,
        fst=args.fst,
        seed=args.seed,
        missing_rate=args.missing_rate,
        n_clones=args.n_clones,
    )
    geno_path = args.out_dir / "genotypes.csv"
    group_path = args.out_dir / "groups.csv"
    sim.write_genotype_csv(data.matrix, geno_path)
    sim.write_groups_csv(data.groups, group_path)
    print(f"Wrote genotypes: {geno_path}")
    print(f"Wrote groups: {group_path}")


def cmd_to_store(args: argparse.Namespace) -> None:
    matrix = io.read_genotype_csv(args.genotypes)
    io.write_genotype_store(matrix, args.out)
    print(f"Wrote genotype store: {args.out} ({matrix.n_ind} individuals, {matrix.n_snp} markers)")


def cmd_filter(args: argparse.Namespace) -> None:
    matrix = io.read_genotypes(args.genotypes)
    res = filters.filter_individuals(
        matrix,
        filters.FilterConfig(
            clone_similarity_threshold=args.clone_threshold,
            heterozygosity_outlier_cutoff=args.het_cutoff,
        ),
    )
    sim.write_genotype_csv(res.matrix, args.out)
    if args.removed_out is not None:
        rows = [
            {"sample_id": s, "reason": "clone", "kept_as": res.clone_of.get(s, "")}
            for s in res.removed_clones
        ]
        rows += [{"sample_id": s, "reason": "het_outlier", "kept_as": ""} for s in res.removed_outliers]
        args.removed_out.parent.mkdir(parents=True, exist_ok=True)
        pd.DataFrame(rows, columns=["sample_id", "reason", "kept_as"]).to_csv(
            args.removed_out, index=False
        )
    print(
        f"Kept {res.matrix.n_ind} of {matrix.n_ind} individuals "
        f"({len(res.removed_clones)} clones, {len(res.removed_outliers)} het outliers)."
    )


def cmd_select(args: argparse.Namespace) -> None:
    freqs, pool = _load_frequencies(args)
    config = _anneal_config(args, args.target_subset_size)
    result = anneal.anneal_markers(freqs, config, candidates=pool)
    io.write_subset(result, args.out)
    if args.trace_out is not None:
        args.trace_out.parent.mkdir(parents=True, exist_ok=True)
        result.to_frame().to_csv(args.trace_out, index=False)
    print(
        f"Selected {len(result.marker_ids)} markers: score {result.score:.4f}  "
        f"diversity {result.diversity:.4f}  differentiation {result.differentiation:.4f}  "
        f"({result.iterations} iterations, {result.stop_reason})"
    )


def cmd_evaluate(args: argparse.Namespace) -> None:
    matrix = io.read_genotypes(args.genotypes)
    groups = io.read_groups(args.groups)
    sets = {p.stem: io.read_marker_list(p) for p in args.marker_sets}
    out_df = evaluate.compare_marker_sets(matrix, groups, sets)
    if args.random_draws > 0:
        first = next(iter(sets.values()))
        base = evaluate.random_baseline(
            matrix, groups, n_markers=len(first), n_draws=args.random_draws, seed=args.random_seed
        )
        out_df = pd.concat([out_df, base], ignore_index=True)
        print(
            f"Random baseline ({args.random_draws} draws): mean diversity "
            f"{np.nanmean(base['diversity']):.4f}  mean differentiation "
            f"{np.nanmean(base['differentiation']):.4f}"
        )
    args.out.parent.mkdir(parents=True, exist_ok=True)
    out_df.to_csv(args.out, index=False)


def cmd_curve(args: argparse.Namespace) -> None:
    freqs, pool = _load_frequencies(args)
    config = _anneal_config(args, max(args.sizes))
    out_df = anneal.marker_count_curve(
        freqs, args.sizes, config, candidates=pool, max_workers=args.workers
    )
    args.out.parent.mkdir(parents=True, exist_ok=True)
    out_df.to_csv(args.out, index=False)


def main(argv: Sequence[str] | None = None) -> None:
    parser = _build_parser()
    args = parser.parse_args(argv)

    level = logging.WARNING
    if args.verbose == 1:
        level = logging.INFO
    elif args.verbose > 1:
        level = logging.DEBUG
    logging.basicConfig(level=level, format="%(asctime)s %(name)s %(levelname)s: %(message)s")

    try:
        if args.command == "simulate":
            cmd_simulate(args)
        elif args.command == "to-store":
            cmd_to_store(args)
        elif args.command == "filter":
            cmd_filter(args)
        elif args.command == "select":
            cmd_select(args)
        elif args.command == "evaluate":
            cmd_evaluate(args)
        elif args.command == "curve":
            cmd_curve(args)
        elif args.command == "plot-trace":
            plots.plot_anneal_trace(trace_csv=args.trace_csv, out_png=args.out)
        elif args.command == "plot-curve":
            plots.plot_marker_count_curve(curve_csv=args.curve_csv, out_png=args.out)
        else:
            parser.error(f"Unknown command {args.command}")
    except (ConfigurationError, DataError) as e:
        raise SystemExit(f"{type(e).__name__}: {e}") from e


if __name__ == "__main__":
    main()
