from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import numpy as np
import pandas as pd

from .genotypes import GenotypeMatrix, GroupAssignment


@dataclass
class SimulatedData:
    matrix: GenotypeMatrix
    groups: GroupAssignment
    group_freqs: np.ndarray  # (n_groups, n_snp) true allele frequencies


def simulate_grouped_genotypes(
    n_ind: int,
    n_snp: int,
    n_groups: int = 2,
    fst: float = 0.1,
    seed: Optional[int] = None,
    maf_min: float = 0.05,
    maf_max: float = 0.5,
    missing_rate: float = 0.0,
    n_clones: int = 0,
) -> SimulatedData:
    """Simulate SNP dosages for individuals split evenly into groups.

    Group frequencies are drawn around a shared ancestral frequency with the
    Balding-Nichols model (divergence set by fst); dosages are Binomial(2, p_g).
    n_clones extra individuals duplicate randomly chosen ones (same group).
    """
    rng = np.random.default_rng(seed)

    p_anc = rng.uniform(maf_min, maf_max, size=n_snp)
    if fst > 0.0:
        a = p_anc * (1.0 - fst) / fst
        b = (1.0 - p_anc) * (1.0 - fst) / fst
        p_grp = rng.beta(a[None, :], b[None, :], size=(n_groups, n_snp))
    else:
        p_grp = np.broadcast_to(p_anc, (n_groups, n_snp)).copy()

    group_of = np.arange(n_ind) % n_groups
    genotypes = rng.binomial(2, p_grp[group_of, :]).astype(np.float32)

    if n_clones > 0:
        src = rng.choice(n_ind, size=n_clones, replace=True)
        genotypes = np.vstack([genotypes, genotypes[src, :]])
        group_of = np.concatenate([group_of, group_of[src]])

    if missing_rate > 0.0:
        genotypes[rng.random(genotypes.shape) < missing_rate] = np.nan

    n_total = genotypes.shape[0]
    sample_ids = [f"S{i+1}" for i in range(n_total)]
    marker_ids = [f"SNP{s+1}" for s in range(n_snp)]
    labels = [f"G{g+1}" for g in group_of]

    return SimulatedData(
        matrix=GenotypeMatrix(sample_ids=sample_ids, marker_ids=marker_ids, genon=genotypes),
        groups=GroupAssignment.from_arrays(sample_ids, labels),
        group_freqs=p_grp,
    )


def write_genotype_csv(matrix: GenotypeMatrix, path: Path) -> None:
    """Write dosages in the marker-rows layout read by io.read_genotype_csv."""
    path.parent.mkdir(parents=True, exist_ok=True)
    df = pd.DataFrame(matrix.genon.T, columns=matrix.sample_ids)
    df.insert(0, "marker_id", matrix.marker_ids)
    df.to_csv(path, index=False, na_rep="NA", float_format="%.0f")


def write_groups_csv(groups: GroupAssignment, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    pd.DataFrame(
        {"sample_id": list(groups.mapping), "group": list(groups.mapping.values())}
    ).to_csv(path, index=False)
