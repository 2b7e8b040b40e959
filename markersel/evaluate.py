from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Dict, Optional, Sequence

import numpy as np
import pandas as pd

from .errors import ConfigurationError
from .freq import GroupFrequencyMatrix, group_frequencies
from .genotypes import GenotypeMatrix, GroupAssignment
from .identity import ibs_matrix, proportion_unique
from .scoring import build_score_table


@dataclass
class MarkerSetEvaluation:
    n_markers: int
    diversity: float
    differentiation: float
    proportion_unique: float
    mean_ibs: float


def evaluate_marker_set(
    matrix: GenotypeMatrix,
    groups: GroupAssignment,
    marker_ids: Sequence[str],
    freqs: Optional[GroupFrequencyMatrix] = None,
) -> MarkerSetEvaluation:
    """Diversity, differentiation and resolving power of one marker set."""
    marker_ids = [str(m) for m in marker_ids]
    if len(set(marker_ids)) != len(marker_ids):
        raise ConfigurationError("Marker set contains duplicate markers")
    sub = matrix.select_markers(marker_ids)
    if freqs is None:
        freqs = group_frequencies(sub, groups)
    table = build_score_table(freqs)
    idx = freqs.index_of(marker_ids)

    diversity = table.diversity_of(idx)
    differentiation = table.differentiation_of(idx) if table.n_groups >= 2 else float("nan")

    ibs = ibs_matrix(sub)
    iu = np.triu_indices(sub.n_ind, k=1)
    off = ibs[iu]
    mean_ibs = float(np.nanmean(off)) if np.any(np.isfinite(off)) else float("nan")

    return MarkerSetEvaluation(
        n_markers=len(marker_ids),
        diversity=diversity,
        differentiation=differentiation,
        proportion_unique=proportion_unique(sub),
        mean_ibs=mean_ibs,
    )


def compare_marker_sets(
    matrix: GenotypeMatrix,
    groups: GroupAssignment,
    sets: Dict[str, Sequence[str]],
) -> pd.DataFrame:
    """One row of evaluation statistics per named marker set."""
    freqs = group_frequencies(matrix, groups)
    rows = []
    for name, markers in sets.items():
        ev = evaluate_marker_set(matrix, groups, markers, freqs=freqs)
        rows.append({"set": name, **asdict(ev)})
    return pd.DataFrame(rows)


def random_baseline(
    matrix: GenotypeMatrix,
    groups: GroupAssignment,
    n_markers: int,
    n_draws: int = 100,
    seed: Optional[int] = None,
    candidates: Optional[Sequence[str]] = None,
) -> pd.DataFrame:
    """Evaluations of uniformly drawn marker sets of the same size."""
    pool = list(matrix.marker_ids if candidates is None else candidates)
    if n_markers < 1 or n_markers > len(pool):
        raise ConfigurationError(
            f"n_markers must lie in [1, {len(pool)}], got {n_markers}"
        )
    rng = np.random.default_rng(seed)
    sets = {}
    for d in range(n_draws):
        idx = np.sort(rng.choice(len(pool), size=n_markers, replace=False))
        sets[f"random_{d + 1}"] = [pool[i] for i in idx]
    return compare_marker_sets(matrix, groups, sets)
