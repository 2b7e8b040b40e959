from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

import numpy as np

from .errors import ConfigurationError, DataError
from .genotypes import GenotypeMatrix
from .identity import heterozygosity_ratio, ibs_matrix

logger = logging.getLogger(__name__)

_FILTER_ALIASES = {
    "cloneSimilarityThreshold": "clone_similarity_threshold",
    "heterozygosityOutlierCutoff": "heterozygosity_outlier_cutoff",
}


@dataclass
class CloneFilterResult:
    matrix: GenotypeMatrix
    keep: np.ndarray                 # (n_ind,) bool mask into the input matrix
    clone_of: Dict[str, str]         # removed sample -> kept representative


@dataclass
class FilterConfig:
    clone_similarity_threshold: Optional[float] = 0.95
    heterozygosity_outlier_cutoff: Optional[float] = None

    def __post_init__(self) -> None:
        thr = self.clone_similarity_threshold
        if thr is not None and not (0.0 <= thr <= 1.0):
            raise ConfigurationError("clone_similarity_threshold must lie in [0, 1]")
        cut = self.heterozygosity_outlier_cutoff
        if cut is not None and not cut > 0.0:
            raise ConfigurationError("heterozygosity_outlier_cutoff must be positive")

    @classmethod
    def accepts(cls, key: str) -> bool:
        return _FILTER_ALIASES.get(key, key) in cls.__dataclass_fields__

    @classmethod
    def from_mapping(cls, options: Mapping[str, Any]) -> "FilterConfig":
        """Build from camelCase or snake_case option names; omitted options keep defaults."""
        unknown = [k for k in options if not cls.accepts(k)]
        if unknown:
            raise ConfigurationError(f"Unknown filter option(s) {unknown}")
        return cls(**{_FILTER_ALIASES.get(k, k): v for k, v in options.items()})


@dataclass
class IndividualFilterResult:
    matrix: GenotypeMatrix
    removed_clones: List[str] = field(default_factory=list)
    removed_outliers: List[str] = field(default_factory=list)
    clone_of: Dict[str, str] = field(default_factory=dict)


def remove_clones(
    matrix: GenotypeMatrix,
    ibs: Optional[np.ndarray] = None,
    threshold: float = 0.95,
) -> CloneFilterResult:
    """Drop near-duplicate individuals, keeping the first of each cluster.

    Individuals are visited in column order and kept only if their IBS with
    every individual kept so far is below threshold. No two retained
    individuals reach the threshold, and a transitive chain A~B~C where
    A and C differ keeps both A and C. NaN IBS (nothing co-called) is never
    treated as a clone.
    """
    if not (0.0 <= threshold <= 1.0):
        raise ConfigurationError("clone similarity threshold must lie in [0, 1]")
    if ibs is None:
        ibs = ibs_matrix(matrix)
    ibs = np.asarray(ibs, dtype=np.float64)
    if ibs.shape != (matrix.n_ind, matrix.n_ind):
        raise DataError(f"IBS matrix shape {ibs.shape} does not match {matrix.n_ind} individuals")

    keep = np.zeros(matrix.n_ind, dtype=bool)
    clone_of: Dict[str, str] = {}
    kept_idx: List[int] = []
    for i in range(matrix.n_ind):
        if kept_idx:
            sims = ibs[i, kept_idx]
            hits = np.where(np.nan_to_num(sims, nan=-1.0) >= threshold)[0]
            if hits.size:
                clone_of[matrix.sample_ids[i]] = matrix.sample_ids[kept_idx[hits[0]]]
                continue
        keep[i] = True
        kept_idx.append(i)

    if clone_of:
        logger.info("Removed %d clones at IBS >= %.3f", len(clone_of), threshold)
    return CloneFilterResult(matrix=matrix.select_samples(keep), keep=keep, clone_of=clone_of)


def remove_het_outliers(matrix: GenotypeMatrix, cutoff: Optional[float]) -> GenotypeMatrix:
    """Drop individuals whose observed/expected heterozygosity exceeds cutoff."""
    if cutoff is None:
        return matrix
    ratio = heterozygosity_ratio(matrix)
    drop = np.nan_to_num(ratio, nan=-np.inf) > cutoff
    if np.any(drop):
        logger.info("Removed %d heterozygosity outliers (ratio > %.3f)", int(drop.sum()), cutoff)
    return matrix.select_samples(~drop)


def filter_individuals(matrix: GenotypeMatrix, config: FilterConfig) -> IndividualFilterResult:
    """Clone removal followed by heterozygosity-outlier removal."""
    removed_clones: List[str] = []
    clone_of: Dict[str, str] = {}
    if config.clone_similarity_threshold is not None:
        res = remove_clones(matrix, threshold=config.clone_similarity_threshold)
        removed_clones = [s for s, k in zip(matrix.sample_ids, res.keep) if not k]
        clone_of = res.clone_of
        matrix = res.matrix

    before = matrix.sample_ids
    matrix = remove_het_outliers(matrix, config.heterozygosity_outlier_cutoff)
    after = set(matrix.sample_ids)
    removed_outliers = [s for s in before if s not in after]

    return IndividualFilterResult(
        matrix=matrix,
        removed_clones=removed_clones,
        removed_outliers=removed_outliers,
        clone_of=clone_of,
    )
