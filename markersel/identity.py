from __future__ import annotations

from typing import Optional, Sequence, Tuple

import jax.numpy as jnp
import numpy as np
import pandas as pd

from .freq import overall_frequencies
from .genotypes import GenotypeMatrix


def _restrict(matrix: GenotypeMatrix, marker_ids: Optional[Sequence[str]]) -> np.ndarray:
    if marker_ids is None:
        return np.asarray(matrix.genon)
    return np.asarray(matrix.genon)[:, matrix.marker_index(marker_ids)]


def match_counts(genon: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Pairwise counts of identical dosages and of co-called markers.

    Uses one-hot dosage indicators I_k (k = 0, 1, 2) and the call mask M:
      matches = sum_k I_k I_k^T,  cocall = M M^T
    Missing calls never count as a match.
    """
    g = jnp.asarray(genon, dtype=jnp.float32)
    called = ~jnp.isnan(g)
    M = called.astype(jnp.float32)
    matches = jnp.zeros((g.shape[0], g.shape[0]), dtype=jnp.float32)
    for k in (0.0, 1.0, 2.0):
        Ik = (called & (g == k)).astype(jnp.float32)
        matches = matches + Ik @ Ik.T
    cocall = M @ M.T
    return np.asarray(matches, dtype=np.int64), np.asarray(cocall, dtype=np.int64)


def ibs_matrix(matrix: GenotypeMatrix, marker_ids: Optional[Sequence[str]] = None) -> np.ndarray:
    """Identity-by-state between all pairs of individuals.

    IBS[i,j] = fraction of markers called in both i and j where the dosages are
    identical. Symmetric, NaN for pairs with no co-called markers, and the
    diagonal is defined as 1.
    """
    genon = _restrict(matrix, marker_ids)
    matches, cocall = match_counts(genon)
    with np.errstate(divide="ignore", invalid="ignore"):
        ibs = np.where(cocall > 0, matches / cocall, np.nan)
    np.fill_diagonal(ibs, 1.0)
    return ibs


def ibs_pair_table(ibs: np.ndarray, sample_ids: Sequence[str]) -> pd.DataFrame:
    """Compressed pairwise list (upper triangle, i < j)."""
    iu, ju = np.triu_indices(len(sample_ids), k=1)
    ids = np.asarray(sample_ids, dtype=object)
    return pd.DataFrame({"sample_a": ids[iu], "sample_b": ids[ju], "ibs": ibs[iu, ju]})


def proportion_unique(matrix: GenotypeMatrix, marker_ids: Optional[Sequence[str]] = None) -> float:
    """Fraction of individuals not identical to any other over the given markers.

    Two individuals are identical only if every marker is called in both and
    the dosages agree, so missing data can never make two individuals look
    the same. Adding markers therefore never lowers the result.
    """
    genon = _restrict(matrix, marker_ids)
    n_ind, n_snp = genon.shape
    if n_ind == 0:
        return float("nan")
    if n_ind == 1:
        return 1.0
    matches, _ = match_counts(genon)
    identical = matches == n_snp
    np.fill_diagonal(identical, False)
    return float(np.mean(~identical.any(axis=1)))


def heterozygosity_rate(matrix: GenotypeMatrix) -> np.ndarray:
    """Per-individual fraction of called markers that are heterozygous (dosage 1)."""
    genon = np.asarray(matrix.genon, dtype=np.float64)
    called = ~np.isnan(genon)
    ncall = called.sum(axis=1)
    nhet = np.sum(called & (genon == 1.0), axis=1)
    with np.errstate(divide="ignore", invalid="ignore"):
        rate = np.where(ncall > 0, nhet / ncall, np.nan)
    return rate


def heterozygosity_ratio(matrix: GenotypeMatrix) -> np.ndarray:
    """Observed over expected heterozygosity per individual.

    Expected is mean 2p(1-p) over the individual's called markers, with p the
    allele frequency pooled over all individuals.
    """
    genon = np.asarray(matrix.genon, dtype=np.float64)
    called = ~np.isnan(genon)
    p = overall_frequencies(genon)
    he = np.where(np.isfinite(p), 2.0 * p * (1.0 - p), 0.0)
    ncall = called.sum(axis=1)
    exp_sum = called.astype(np.float64) @ he
    with np.errstate(divide="ignore", invalid="ignore"):
        ehet = np.where(ncall > 0, exp_sum / ncall, np.nan)
        ratio = heterozygosity_rate(matrix) / ehet
    ratio[~np.isfinite(ratio)] = np.nan
    return ratio
