from __future__ import annotations

import logging
import math
import multiprocessing
from concurrent.futures import ProcessPoolExecutor
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from .errors import ConfigurationError, DataError
from .filters import FilterConfig
from .freq import GroupFrequencyMatrix
from .genotypes import lookup_index
from .scoring import MarkerScoreTable, Objective, build_score_table

logger = logging.getLogger(__name__)

# camelCase option names accepted by AnnealConfig.from_mapping
_OPTION_ALIASES = {
    "targetSubsetSize": "target_subset_size",
    "initialTemperature": "initial_temperature",
    "coolingRate": "cooling_rate",
    "coolingInterval": "cooling_interval",
    "iterationBudget": "iteration_budget",
    "randomSeed": "random_seed",
    "temperatureFloor": "temperature_floor",
    "diversityWeight": "diversity_weight",
}


class Phase(str, Enum):
    INITIALIZING = "initializing"
    ANNEALING = "annealing"
    DONE = "done"


@dataclass(frozen=True)
class AnnealConfig:
    """Simulated-annealing parameters.

    Temperature is multiplied by cooling_rate every cooling_interval
    iterations. A run ends when iteration_budget is spent, the temperature
    drops below temperature_floor, or (if patience is set) after patience
    consecutive iterations without a new best score.
    """

    target_subset_size: int
    initial_temperature: float = 0.01
    cooling_rate: float = 0.995
    cooling_interval: int = 1
    iteration_budget: int = 10000
    random_seed: Optional[int] = None
    temperature_floor: float = 1e-8
    patience: Optional[int] = None
    objective: Objective = field(default_factory=Objective)

    def __post_init__(self) -> None:
        if int(self.target_subset_size) != self.target_subset_size or self.target_subset_size < 1:
            raise ConfigurationError("target_subset_size must be a positive integer")
        if not self.initial_temperature > 0.0:
            raise ConfigurationError("initial_temperature must be positive")
        if not (0.0 < self.cooling_rate < 1.0):
            raise ConfigurationError("cooling_rate must lie in (0, 1)")
        if self.cooling_interval < 1:
            raise ConfigurationError("cooling_interval must be >= 1")
        if self.iteration_budget < 1:
            raise ConfigurationError("iteration_budget must be a positive integer")
        if self.temperature_floor < 0.0:
            raise ConfigurationError("temperature_floor must be non-negative")
        if self.patience is not None and self.patience < 1:
            raise ConfigurationError("patience must be a positive integer")
        if not isinstance(self.objective, Objective):
            raise ConfigurationError("objective must be an Objective")

    @classmethod
    def from_mapping(cls, options: Mapping[str, Any]) -> "AnnealConfig":
        """Build from a mapping using either camelCase or snake_case option names."""
        kwargs: Dict[str, Any] = {}
        objective_kwargs: Dict[str, Any] = {}
        for key, value in options.items():
            name = _OPTION_ALIASES.get(key, key)
            if name == "objective" and not isinstance(value, Objective):
                objective_kwargs["kind"] = value
            elif name == "diversity_weight":
                objective_kwargs["diversity_weight"] = value
            elif name in cls.__dataclass_fields__:
                kwargs[name] = value
            else:
                raise ConfigurationError(f"Unknown annealing option '{key}'")
        if objective_kwargs:
            kwargs["objective"] = Objective(**objective_kwargs)
        if "target_subset_size" not in kwargs:
            raise ConfigurationError("targetSubsetSize is required")
        return cls(**kwargs)


def load_options(options: Mapping[str, Any]) -> Tuple[AnnealConfig, FilterConfig]:
    """Split one options mapping into annealing and individual-filter settings."""
    filter_opts = {k: v for k, v in options.items() if FilterConfig.accepts(k)}
    anneal_opts = {k: v for k, v in options.items() if k not in filter_opts}
    return AnnealConfig.from_mapping(anneal_opts), FilterConfig.from_mapping(filter_opts)


@dataclass
class AnnealState:
    """Transient optimizer state; positions index into the candidate pool."""

    inside: np.ndarray
    outside: np.ndarray
    score: float
    iteration: int
    temperature: float
    phase: Phase = Phase.INITIALIZING


@dataclass
class AnnealResult:
    marker_ids: List[str]
    score: float
    diversity: float
    differentiation: float
    iterations: int
    accepted: int
    stop_reason: str
    seed: Optional[int] = None
    current_trace: np.ndarray = field(default_factory=lambda: np.zeros(0), repr=False)
    best_trace: np.ndarray = field(default_factory=lambda: np.zeros(0), repr=False)
    temperature_trace: np.ndarray = field(default_factory=lambda: np.zeros(0), repr=False)

    def to_frame(self) -> pd.DataFrame:
        """Per-iteration trace (iteration, temperature, current, best)."""
        return pd.DataFrame(
            {
                "iteration": np.arange(1, self.current_trace.size + 1),
                "temperature": self.temperature_trace,
                "current": self.current_trace,
                "best": self.best_trace,
            }
        )


def candidate_pool(freqs: GroupFrequencyMatrix, objective: Optional[Objective] = None) -> List[str]:
    """Pre-filter: markers that can be scored under the given objective.

    Markers undefined in every group are dropped; for objectives using
    differentiation, markers without any pair of defined groups are dropped too.
    """
    objective = objective or Objective()
    table = build_score_table(freqs)
    ok = table.diversity_ok.copy()
    if objective.needs_differentiation:
        ok &= table.differentiation_ok
    return [m for m, k in zip(freqs.marker_ids, ok) if k]


def _pool_index(
    table: MarkerScoreTable,
    candidates: Sequence[str],
    config: AnnealConfig,
) -> np.ndarray:
    pool = lookup_index(table.marker_ids, candidates, "frequency matrix", unique=True)
    if pool.size < 2:
        raise ConfigurationError(
            f"Candidate pool has {pool.size} markers; at least 2 are needed"
        )
    if config.target_subset_size > pool.size:
        raise ConfigurationError(
            f"target_subset_size {config.target_subset_size} exceeds "
            f"candidate pool size {pool.size}"
        )

    objective = config.objective
    if objective.needs_differentiation and table.n_groups < 2:
        raise ConfigurationError(
            f"Objective '{objective.kind}' needs at least two groups"
        )
    bad = ~table.diversity_ok[pool]
    if objective.needs_differentiation:
        bad |= ~table.differentiation_ok[pool]
    if np.any(bad):
        raise DataError(
            "Candidate markers cannot be scored (undefined frequencies): "
            f"{[table.marker_ids[i] for i in pool[bad][:5]]}; "
            "pre-filter with candidate_pool()"
        )
    return pool


def _score_parts(table: MarkerScoreTable, idx: np.ndarray) -> tuple:
    div = table.diversity_of(idx)
    diff = float("nan")
    if table.n_groups >= 2 and np.all(table.differentiation_ok[idx]):
        diff = table.differentiation_of(idx)
    return div, diff


def anneal_markers(
    freqs: GroupFrequencyMatrix,
    config: AnnealConfig,
    candidates: Optional[Sequence[str]] = None,
    rng: Optional[np.random.Generator] = None,
    should_stop: Optional[Callable[[], bool]] = None,
) -> AnnealResult:
    """Select target_subset_size markers by simulated annealing.

    Args:
        freqs: per-group allele frequencies for (at least) the candidate markers.
        config: annealing parameters and objective.
        candidates: marker ids forming the pool (default: all markers in freqs).
        rng: random stream; built from config.random_seed when omitted.
        should_stop: optional callback polled between iterations; returning
            True ends the run early with the best subset so far.

    Each iteration swaps one marker in the subset for one outside it, and
    accepts the move if it does not lower the score, otherwise with
    probability exp(delta / T). Validation happens before any sampling.
    """
    table = build_score_table(freqs)
    if candidates is None:
        candidates = freqs.marker_ids
    pool = _pool_index(table, candidates, config)
    objective = config.objective
    n_sel = int(config.target_subset_size)

    if rng is None:
        rng = np.random.default_rng(config.random_seed)

    # INITIALIZING: uniform draw without replacement from the pool.
    chosen = rng.choice(pool.size, size=n_sel, replace=False)
    outside = np.setdiff1d(np.arange(pool.size), chosen)
    score, _, _ = objective.evaluate(table, pool[chosen])
    state = AnnealState(
        inside=chosen.astype(int),
        outside=outside.astype(int),
        score=score,
        iteration=0,
        temperature=float(config.initial_temperature),
    )
    best_score = state.score
    best_inside = state.inside.copy()

    budget = int(config.iteration_budget)
    current_trace = np.empty(budget, dtype=np.float64)
    best_trace = np.empty(budget, dtype=np.float64)
    temp_trace = np.empty(budget, dtype=np.float64)
    accepted = 0
    since_best = 0

    if state.outside.size == 0:
        # The whole pool is the only subset of this size.
        stop_reason = "exhaustive"
    else:
        state.phase = Phase.ANNEALING
        stop_reason = "iteration_budget"

    while state.phase == Phase.ANNEALING:
        if state.iteration >= budget:
            break
        if should_stop is not None and should_stop():
            stop_reason = "cancelled"
            break
        if state.temperature < config.temperature_floor:
            stop_reason = "temperature_floor"
            break

        a = int(rng.integers(state.inside.size))
        b = int(rng.integers(state.outside.size))
        proposal = state.inside.copy()
        proposal[a] = state.outside[b]
        new_score, _, _ = objective.evaluate(table, pool[proposal])

        # Metropolis criterion; one uniform per decision.
        u = rng.random()
        delta = new_score - state.score
        if delta >= 0.0 or u < math.exp(delta / state.temperature):
            state.outside[b] = state.inside[a]
            state.inside = proposal
            state.score = new_score
            accepted += 1

        if state.score > best_score:
            best_score = state.score
            best_inside = state.inside.copy()
            since_best = 0
        else:
            since_best += 1

        current_trace[state.iteration] = state.score
        best_trace[state.iteration] = best_score
        temp_trace[state.iteration] = state.temperature
        state.iteration += 1

        if state.iteration % config.cooling_interval == 0:
            state.temperature *= config.cooling_rate
        if state.iteration % 1000 == 0:
            logger.debug(
                "iter %d  T=%.3g  current=%.6g  best=%.6g  accepted=%d",
                state.iteration, state.temperature, state.score, best_score, accepted,
            )
        if config.patience is not None and since_best >= config.patience:
            stop_reason = "patience"
            break

    state.phase = Phase.DONE
    best_idx = pool[np.sort(best_inside)]
    div, diff = _score_parts(table, best_idx)
    n_iter = state.iteration
    logger.info(
        "Annealing done (%s) after %d iterations: score=%.6g diversity=%.6g differentiation=%.6g",
        stop_reason, n_iter, best_score, div, diff,
    )
    return AnnealResult(
        marker_ids=[table.marker_ids[i] for i in best_idx],
        score=float(best_score),
        diversity=float(div),
        differentiation=float(diff),
        iterations=n_iter,
        accepted=accepted,
        stop_reason=stop_reason,
        seed=config.random_seed,
        current_trace=current_trace[:n_iter],
        best_trace=best_trace[:n_iter],
        temperature_trace=temp_trace[:n_iter],
    )


def _run_job(job: tuple) -> AnnealResult:
    freqs, config, candidates = job
    return anneal_markers(freqs, config, candidates=candidates)


def _run_jobs(jobs: List[tuple], max_workers: int) -> List[AnnealResult]:
    if max_workers <= 1 or len(jobs) <= 1:
        return [_run_job(job) for job in jobs]
    # JAX is not fork-safe once initialised in the parent
    ctx = multiprocessing.get_context("spawn")
    logger.info("Running %d annealing jobs on %d spawned workers", len(jobs), max_workers)
    with ProcessPoolExecutor(max_workers=max_workers, mp_context=ctx) as pool:
        return list(pool.map(_run_job, jobs))


def anneal_many(
    freqs: GroupFrequencyMatrix,
    config: AnnealConfig,
    seeds: Sequence[int],
    candidates: Optional[Sequence[str]] = None,
    max_workers: int = 1,
) -> List[AnnealResult]:
    """Independent runs, one per seed, returned in seed order."""
    jobs = [(freqs, replace(config, random_seed=int(s)), candidates) for s in seeds]
    return _run_jobs(jobs, max_workers)


def spawn_seeds(seed: Optional[int], n: int) -> List[int]:
    """Independent child seeds from one root seed."""
    children = np.random.SeedSequence(seed).spawn(n)
    return [int(c.generate_state(1)[0]) for c in children]


def marker_count_curve(
    freqs: GroupFrequencyMatrix,
    sizes: Sequence[int],
    config: AnnealConfig,
    candidates: Optional[Sequence[str]] = None,
    max_workers: int = 1,
) -> pd.DataFrame:
    """Best score per target subset size, for choosing how many markers to use."""
    sizes = [int(n) for n in sizes]
    if not sizes:
        raise ConfigurationError("sizes must not be empty")
    n_pool = len(freqs.marker_ids if candidates is None else candidates)
    too_big = [n for n in sizes if n > n_pool]
    if too_big:
        raise ConfigurationError(
            f"Target sizes {too_big} exceed candidate pool size {n_pool}"
        )
    seeds = spawn_seeds(config.random_seed, len(sizes))
    jobs = [
        (freqs, replace(config, target_subset_size=n, random_seed=s), candidates)
        for n, s in zip(sizes, seeds)
    ]
    results = _run_jobs(jobs, max_workers)
    return pd.DataFrame(
        {
            "n_markers": sizes,
            "score": [r.score for r in results],
            "diversity": [r.diversity for r in results],
            "differentiation": [r.differentiation for r in results],
            "seed": seeds,
        }
    )
