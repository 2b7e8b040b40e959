from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import numpy as np

from .errors import DataError
from .genotypes import GenotypeMatrix, GroupAssignment, group_indices, lookup_index


@dataclass(frozen=True, eq=False)
class GroupFrequencyMatrix:
    """Alternate-allele frequency per marker and group.

    freq[s,g] is only meaningful where defined[s,g] is True; a group with no
    called individuals at a marker is undefined there (held as NaN for display,
    never read by the scoring code).
    """

    marker_ids: List[str]
    groups: List[str]
    freq: np.ndarray = field(repr=False)     # (n_snp, n_groups), float64
    defined: np.ndarray = field(repr=False)  # (n_snp, n_groups), bool
    counts: Optional[np.ndarray] = field(default=None, repr=False)  # called individuals

    def __post_init__(self) -> None:
        freq = np.array(self.freq, dtype=np.float64)
        defined = np.array(self.defined, dtype=bool)
        shape = (len(self.marker_ids), len(self.groups))
        if freq.shape != shape or defined.shape != shape:
            raise DataError(f"freq/defined must have shape {shape}")
        if len(set(self.groups)) != len(self.groups):
            raise DataError("Group labels must be unique")
        vals = freq[defined]
        if np.any(~np.isfinite(vals)) or np.any((vals < 0.0) | (vals > 1.0)):
            raise DataError("Defined allele frequencies must lie in [0, 1]")
        freq[~defined] = np.nan
        freq.flags.writeable = False
        defined.flags.writeable = False
        object.__setattr__(self, "marker_ids", [str(m) for m in self.marker_ids])
        object.__setattr__(self, "groups", [str(g) for g in self.groups])
        object.__setattr__(self, "freq", freq)
        object.__setattr__(self, "defined", defined)

    @property
    def n_snp(self) -> int:
        return len(self.marker_ids)

    @property
    def n_groups(self) -> int:
        return len(self.groups)

    def index_of(self, marker_ids: Sequence[str]) -> np.ndarray:
        return lookup_index(self.marker_ids, marker_ids, "frequency matrix")

    def subset(self, marker_ids: Sequence[str]) -> "GroupFrequencyMatrix":
        idx = self.index_of(marker_ids)
        return GroupFrequencyMatrix(
            marker_ids=[self.marker_ids[i] for i in idx],
            groups=self.groups,
            freq=self.freq[idx],
            defined=self.defined[idx],
            counts=None if self.counts is None else self.counts[idx],
        )

    def drop_undefined(self) -> "GroupFrequencyMatrix":
        """Candidate-pool pre-filter: drop markers undefined in every group."""
        keep = self.defined.any(axis=1)
        return self.subset([m for m, k in zip(self.marker_ids, keep) if k])


def group_frequencies(
    matrix: GenotypeMatrix,
    assignment: GroupAssignment,
    groups: Optional[Sequence[str]] = None,
) -> GroupFrequencyMatrix:
    """Per-group alternate-allele frequency from hard dosage calls.

    p[s,g] = sum of called dosages in g / (2 * number of called individuals in g).
    Groups default to the labels of the matrix individuals, in order of first
    appearance. Every declared group must contain at least one individual.
    """
    labels = assignment.labels_for(matrix.sample_ids)
    if groups is None:
        groups = list(dict.fromkeys(labels.tolist()))
    groups = [str(g) for g in groups]
    if not groups:
        raise DataError("No groups to aggregate over")
    gidx = group_indices(labels, groups)

    n_groups = len(groups)
    X = np.zeros((matrix.n_ind, n_groups), dtype=np.float64)
    X[np.arange(matrix.n_ind), gidx] = 1.0
    empty = [g for g, n in zip(groups, X.sum(axis=0)) if n == 0]
    if empty:
        raise DataError(f"Group labels referencing no individuals: {empty}")

    genon = np.asarray(matrix.genon, dtype=np.float64)
    called = ~np.isnan(genon)
    num = X.T @ np.where(called, genon, 0.0)         # (n_groups, n_snp)
    ncall = X.T @ called.astype(np.float64)          # (n_groups, n_snp)

    defined = ncall > 0
    with np.errstate(divide="ignore", invalid="ignore"):
        p = np.where(defined, num / (2.0 * ncall), np.nan)

    return GroupFrequencyMatrix(
        marker_ids=matrix.marker_ids,
        groups=groups,
        freq=p.T,
        defined=defined.T,
        counts=ncall.T.astype(np.int64),
    )


def overall_frequencies(genon: np.ndarray) -> np.ndarray:
    """Allele frequency per marker pooling all individuals (NaN if nothing called)."""
    genon = np.asarray(genon, dtype=np.float64)
    mask = ~np.isnan(genon)
    num = np.nansum(genon, axis=0)
    den = 2.0 * mask.sum(axis=0)
    with np.errstate(divide="ignore", invalid="ignore"):
        p = num / den
    p[~np.isfinite(p)] = np.nan
    return p
