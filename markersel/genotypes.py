from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Sequence

import numpy as np

from .errors import ConfigurationError, DataError


def _check_unique(ids: Sequence[str], what: str) -> None:
    seen = set()
    dups = []
    for x in ids:
        if x in seen:
            dups.append(x)
        seen.add(x)
    if dups:
        raise DataError(f"Duplicate {what} identifiers, e.g. {dups[:5]}")


def lookup_index(
    known: Sequence[str], wanted: Iterable[str], where: str, unique: bool = False
) -> np.ndarray:
    """Positions of wanted ids in known.

    Unknown ids raise DataError; with unique=True a repeated id is a
    ConfigurationError (a subset may not name a marker twice).
    """
    lookup = {k: i for i, k in enumerate(known)}
    wanted = [str(w) for w in wanted]
    if unique and len(set(wanted)) != len(wanted):
        raise ConfigurationError(f"Duplicate identifiers requested from {where}")
    missing = [w for w in wanted if w not in lookup]
    if missing:
        raise DataError(f"Identifiers not present in {where}: {missing[:5]}")
    return np.array([lookup[w] for w in wanted], dtype=int)


def validate_dosages(genon: np.ndarray) -> None:
    """Raise DataError unless every cell is 0, 1, 2 or NaN."""
    called = genon[~np.isnan(genon)]
    bad = ~np.isin(called, (0.0, 1.0, 2.0))
    if np.any(bad):
        examples = np.unique(called[bad])[:5]
        raise DataError(
            f"Genotype values must be 0/1/2 or missing; found {examples.tolist()}"
        )


@dataclass(frozen=True, eq=False)
class GenotypeMatrix:
    """Diploid dosage matrix in the (n_ind, n_snp) layout.

    - sample_ids: individual identifiers, one per row of genon
    - marker_ids: marker identifiers, one per column of genon
    - genon[i,s]: alternate-allele count in {0,1,2}, NaN for missing

    The array is copied and made read-only; filtering returns new matrices.
    """

    sample_ids: List[str]
    marker_ids: List[str]
    genon: np.ndarray = field(repr=False)

    def __post_init__(self) -> None:
        sample_ids = [str(s) for s in self.sample_ids]
        marker_ids = [str(m) for m in self.marker_ids]
        genon = np.array(self.genon, dtype=np.float32)
        if genon.ndim != 2:
            raise DataError("genon must be a 2D (n_ind, n_snp) array")
        if genon.shape != (len(sample_ids), len(marker_ids)):
            raise DataError(
                f"genon shape {genon.shape} does not match "
                f"{len(sample_ids)} samples x {len(marker_ids)} markers"
            )
        _check_unique(sample_ids, "sample")
        _check_unique(marker_ids, "marker")
        validate_dosages(genon)
        genon.flags.writeable = False
        object.__setattr__(self, "sample_ids", sample_ids)
        object.__setattr__(self, "marker_ids", marker_ids)
        object.__setattr__(self, "genon", genon)

    @classmethod
    def from_marker_rows(
        cls,
        dosage: np.ndarray,
        marker_ids: Sequence[str],
        sample_ids: Sequence[str],
    ) -> "GenotypeMatrix":
        """Build from a markers x individuals array (numeric-genotype table layout)."""
        dosage = np.asarray(dosage, dtype=np.float32)
        return cls(sample_ids=list(sample_ids), marker_ids=list(marker_ids), genon=dosage.T)

    @property
    def n_ind(self) -> int:
        return int(self.genon.shape[0])

    @property
    def n_snp(self) -> int:
        return int(self.genon.shape[1])

    def marker_index(self, marker_ids: Iterable[str]) -> np.ndarray:
        return lookup_index(self.marker_ids, marker_ids, "genotype matrix")

    def select_markers(self, marker_ids: Sequence[str]) -> "GenotypeMatrix":
        idx = self.marker_index(marker_ids)
        return GenotypeMatrix(
            sample_ids=self.sample_ids,
            marker_ids=[self.marker_ids[i] for i in idx],
            genon=self.genon[:, idx],
        )

    def select_samples(self, keep: np.ndarray) -> "GenotypeMatrix":
        """Restrict to individuals by boolean mask or index array."""
        keep = np.asarray(keep)
        if keep.dtype == bool:
            idx = np.where(keep)[0]
        else:
            idx = keep.astype(int)
        return GenotypeMatrix(
            sample_ids=[self.sample_ids[i] for i in idx],
            marker_ids=self.marker_ids,
            genon=self.genon[idx, :],
        )


@dataclass(frozen=True)
class GroupAssignment:
    """Sample id -> group label (e.g. cluster ids from an external clustering)."""

    mapping: Mapping[str, str]

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "mapping", {str(k): str(v) for k, v in dict(self.mapping).items()}
        )

    @classmethod
    def from_arrays(
        cls, sample_ids: Sequence[str], labels: Sequence[object]
    ) -> "GroupAssignment":
        if len(sample_ids) != len(labels):
            raise ConfigurationError("sample_ids and labels must have the same length")
        mapping: Dict[str, str] = {}
        for s, lab in zip(sample_ids, labels):
            s, lab = str(s), str(lab)
            if s in mapping and mapping[s] != lab:
                raise ConfigurationError(
                    f"Sample '{s}' assigned to both '{mapping[s]}' and '{lab}'"
                )
            mapping[s] = lab
        return cls(mapping=mapping)

    def labels_for(self, sample_ids: Sequence[str]) -> np.ndarray:
        missing = [s for s in sample_ids if s not in self.mapping]
        if missing:
            missing_str = ", ".join(missing[:5])
            raise DataError(
                f"Group assignments missing for {len(missing)} samples, e.g. {missing_str}."
            )
        return np.array([self.mapping[s] for s in sample_ids], dtype=object)

    @property
    def groups(self) -> List[str]:
        # Preserve order of first appearance.
        seen: Dict[str, bool] = {}
        for lab in self.mapping.values():
            seen.setdefault(lab, True)
        return list(seen)


def group_indices(labels: Sequence[str], groups: Sequence[str]) -> np.ndarray:
    """Map labels to integer indices into groups; unknown labels raise DataError."""
    lookup = {g: i for i, g in enumerate(groups)}
    unknown = sorted({str(lab) for lab in labels if lab not in lookup})
    if unknown:
        raise DataError(f"Group labels not among {list(groups)}: {unknown[:5]}")
    return np.array([lookup[lab] for lab in labels], dtype=np.int32)
