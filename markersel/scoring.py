from __future__ import annotations

from dataclasses import dataclass, field
from itertools import combinations
from typing import List, Optional, Sequence, Tuple

import numpy as np

from .errors import ConfigurationError, DataError
from .freq import GroupFrequencyMatrix
from .genotypes import lookup_index


OBJECTIVE_KINDS = ("product", "weighted", "diversity", "differentiation")


def expected_heterozygosity(p):
    """He = 2p(1-p) under Hardy-Weinberg; accepts scalars or arrays."""
    p = np.asarray(p, dtype=np.float64)
    he = 2.0 * p * (1.0 - p)
    return float(he) if he.ndim == 0 else he


def jost_d(p_i, p_j):
    """Two-group Jost's D from allele frequencies alone (no sample-size correction).

    With Hs = (He(p_i) + He(p_j)) / 2 and Ht = He((p_i + p_j) / 2),
    D = 2 (Ht - Hs) / (1 - Hs). Ht - Hs reduces to (p_i - p_j)^2 / 2, which
    is used directly so identical frequencies give exactly 0.
    """
    p_i = np.asarray(p_i, dtype=np.float64)
    p_j = np.asarray(p_j, dtype=np.float64)
    hs = 0.5 * (2.0 * p_i * (1.0 - p_i) + 2.0 * p_j * (1.0 - p_j))
    d = (p_i - p_j) ** 2 / (1.0 - hs)
    return float(d) if d.ndim == 0 else d


def geometric_mean_zero_guard(values: Sequence[float]) -> float:
    """Geometric mean where any exact zero makes the result 0.

    No epsilon is substituted: one marker fixed everywhere zeroes the score.
    """
    v = np.asarray(values, dtype=np.float64)
    if v.size == 0:
        raise DataError("Cannot take the geometric mean of an empty marker set")
    if np.any(~np.isfinite(v)) or np.any(v < 0.0):
        raise DataError("Per-marker scores must be finite and non-negative")
    if np.any(v == 0.0):
        return 0.0
    return float(np.exp(np.mean(np.log(v))))


@dataclass(frozen=True, eq=False)
class MarkerScoreTable:
    """Per-marker diversity and differentiation, computed once per frequency matrix.

    Both quantities depend only on the marker, so a subset score is the
    zero-guarded geometric mean over the subset's rows.
    """

    marker_ids: List[str]
    diversity: np.ndarray = field(repr=False)        # mean He over defined groups
    diversity_ok: np.ndarray = field(repr=False)     # at least one group defined
    differentiation: np.ndarray = field(repr=False)  # mean pairwise D over defined pairs
    differentiation_ok: np.ndarray = field(repr=False)
    n_groups: int = 0

    def diversity_of(self, idx: np.ndarray) -> float:
        idx = np.asarray(idx, dtype=int)
        bad = idx[~self.diversity_ok[idx]]
        if bad.size:
            raise DataError(
                "Markers with no defined group frequency: "
                f"{[self.marker_ids[i] for i in bad[:5]]}"
            )
        return geometric_mean_zero_guard(self.diversity[idx])

    def differentiation_of(self, idx: np.ndarray) -> float:
        if self.n_groups < 2:
            raise ConfigurationError("Differentiation needs at least two groups")
        idx = np.asarray(idx, dtype=int)
        bad = idx[~self.differentiation_ok[idx]]
        if bad.size:
            raise DataError(
                "Markers with no pair of groups both defined: "
                f"{[self.marker_ids[i] for i in bad[:5]]}"
            )
        return geometric_mean_zero_guard(self.differentiation[idx])


def _check_groups(freqs: GroupFrequencyMatrix, groups: Optional[Sequence[str]]) -> np.ndarray:
    if groups is None:
        return np.arange(freqs.n_groups)
    unknown = [g for g in groups if g not in freqs.groups]
    if unknown:
        raise DataError(f"Group labels not in frequency matrix columns: {unknown}")
    if len(set(groups)) != len(groups):
        raise DataError("Duplicate group labels requested")
    return np.array([freqs.groups.index(g) for g in groups], dtype=int)


def marker_heterozygosity(
    freqs: GroupFrequencyMatrix, groups: Optional[Sequence[str]] = None
) -> Tuple[np.ndarray, np.ndarray]:
    """Group-averaged He per marker and a mask of markers with any defined group."""
    gsel = _check_groups(freqs, groups)
    p = freqs.freq[:, gsel]
    ok = freqs.defined[:, gsel]
    pz = np.where(ok, p, 0.0)
    he = np.where(ok, 2.0 * pz * (1.0 - pz), 0.0)
    n_ok = ok.sum(axis=1)
    with np.errstate(divide="ignore", invalid="ignore"):
        mean_he = np.where(n_ok > 0, he.sum(axis=1) / n_ok, np.nan)
    return mean_he, n_ok > 0


def marker_differentiation(
    freqs: GroupFrequencyMatrix, groups: Optional[Sequence[str]] = None
) -> Tuple[np.ndarray, np.ndarray]:
    """Mean pairwise Jost's D per marker over group pairs defined in both groups."""
    gsel = _check_groups(freqs, groups)
    n_snp = freqs.n_snp
    total = np.zeros(n_snp, dtype=np.float64)
    n_pairs = np.zeros(n_snp, dtype=np.int64)
    p = np.where(freqs.defined, freqs.freq, 0.0)
    for a, b in combinations(gsel.tolist(), 2):
        both = freqs.defined[:, a] & freqs.defined[:, b]
        d = jost_d(p[:, a], p[:, b])
        total += np.where(both, d, 0.0)
        n_pairs += both
    with np.errstate(divide="ignore", invalid="ignore"):
        mean_d = np.where(n_pairs > 0, total / n_pairs, np.nan)
    return mean_d, n_pairs > 0


def build_score_table(
    freqs: GroupFrequencyMatrix, groups: Optional[Sequence[str]] = None
) -> MarkerScoreTable:
    div, div_ok = marker_heterozygosity(freqs, groups)
    diff, diff_ok = marker_differentiation(freqs, groups)
    n_groups = freqs.n_groups if groups is None else len(groups)
    return MarkerScoreTable(
        marker_ids=freqs.marker_ids,
        diversity=div,
        diversity_ok=div_ok,
        differentiation=diff,
        differentiation_ok=diff_ok,
        n_groups=n_groups,
    )


def _subset_index(freqs: GroupFrequencyMatrix, subset: Sequence[str]) -> np.ndarray:
    return lookup_index(freqs.marker_ids, subset, "frequency matrix", unique=True)


def diversity_score(
    freqs: GroupFrequencyMatrix,
    subset: Sequence[str],
    groups: Optional[Sequence[str]] = None,
) -> float:
    """Geometric mean over markers of the group-averaged expected heterozygosity."""
    idx = _subset_index(freqs, subset)
    return build_score_table(freqs, groups).diversity_of(idx)


def differentiation_score(
    freqs: GroupFrequencyMatrix,
    subset: Sequence[str],
    groups: Optional[Sequence[str]] = None,
) -> float:
    """Geometric mean over markers of the mean pairwise Jost's D."""
    idx = _subset_index(freqs, subset)
    return build_score_table(freqs, groups).differentiation_of(idx)


@dataclass(frozen=True)
class Objective:
    """Scalar annealing objective built from diversity and differentiation.

    kinds:
      - weighted:        w * diversity + (1 - w) * differentiation (default)
      - product:         diversity * differentiation (0 if any marker has D = 0)
      - diversity:       diversity only
      - differentiation: differentiation only
    """

    kind: str = "weighted"
    diversity_weight: float = 0.5

    def __post_init__(self) -> None:
        kind = str(self.kind).lower()
        if kind not in OBJECTIVE_KINDS:
            raise ConfigurationError(
                f"Unsupported objective '{self.kind}' (expected one of {OBJECTIVE_KINDS})."
            )
        if not (0.0 <= float(self.diversity_weight) <= 1.0):
            raise ConfigurationError("diversity_weight must lie in [0, 1]")
        object.__setattr__(self, "kind", kind)
        object.__setattr__(self, "diversity_weight", float(self.diversity_weight))

    @property
    def needs_diversity(self) -> bool:
        return self.kind != "differentiation"

    @property
    def needs_differentiation(self) -> bool:
        return self.kind != "diversity"

    def combine(self, diversity: float, differentiation: float) -> float:
        if self.kind == "product":
            return diversity * differentiation
        if self.kind == "weighted":
            w = self.diversity_weight
            return w * diversity + (1.0 - w) * differentiation
        if self.kind == "diversity":
            return diversity
        return differentiation

    def evaluate(self, table: MarkerScoreTable, idx: np.ndarray) -> Tuple[float, float, float]:
        """Return (objective, diversity, differentiation); unused parts are NaN."""
        div = table.diversity_of(idx) if self.needs_diversity else float("nan")
        diff = table.differentiation_of(idx) if self.needs_differentiation else float("nan")
        return self.combine(div, diff), div, diff
