from __future__ import annotations

from pathlib import Path
from typing import List, Sequence

import numpy as np
import pandas as pd
import zarr

from .anneal import AnnealResult
from .errors import DataError
from .genotypes import GenotypeMatrix, GroupAssignment


def read_genotype_csv(path: str | Path) -> GenotypeMatrix:
    """Read a numeric genotype table into a GenotypeMatrix.

    The expected layout matches the upstream numeric-genotype extraction:
    - comma or tab delimited (by extension: .tsv/.tab are tab)
    - first column: marker ID; remaining columns: one per individual
    - cells 0/1/2, empty or NA for missing.
    """
    path = Path(path)
    sep = "\t" if path.suffix.lower() in {".tsv", ".tab"} else ","
    df = pd.read_csv(path, sep=sep)
    if df.shape[1] < 2:
        raise DataError(f"Genotype file {path} must have a marker column and one sample column")
    marker_ids = df.iloc[:, 0].astype(str).tolist()
    sample_cols: Sequence[str] = [str(c) for c in df.columns[1:]]
    try:
        dosage = df.iloc[:, 1:].apply(pd.to_numeric, errors="raise").to_numpy(dtype=np.float32)
    except ValueError as e:
        raise DataError(f"Non-numeric genotype values in {path}: {e}") from e
    return GenotypeMatrix.from_marker_rows(dosage, marker_ids=marker_ids, sample_ids=sample_cols)


def read_groups(path: str | Path) -> GroupAssignment:
    """Load a sample -> group mapping from CSV with columns sample_id, group."""
    df = pd.read_csv(path)
    cols = {c.lower(): c for c in df.columns}
    if "sample_id" in cols:
        sample_col = cols["sample_id"]
    elif "sample" in cols:
        sample_col = cols["sample"]
    else:
        raise DataError("Group file must have a 'sample_id' or 'sample' column.")

    if "group" in cols:
        group_col = cols["group"]
    elif "cluster" in cols:
        group_col = cols["cluster"]
    elif "pop" in cols:
        group_col = cols["pop"]
    else:
        raise DataError("Group file must have a 'group', 'cluster' or 'pop' column.")

    return GroupAssignment.from_arrays(
        df[sample_col].astype(str).tolist(), df[group_col].astype(str).tolist()
    )


def write_genotype_store(matrix: GenotypeMatrix, store_path: str | Path) -> None:
    """Write a GenotypeMatrix to a Zarr store.

    Layout:
      - sample_ids: (n_ind,)
      - marker_ids: (n_snp,)
      - genon:      (n_ind, n_snp) float32, NaN for missing,
                    chunked along the marker dimension.
    """
    store_path = Path(store_path)
    store_path.parent.mkdir(parents=True, exist_ok=True)

    g = zarr.open_group(store_path.as_posix(), mode="w")

    n_ind = matrix.n_ind
    n_snp = matrix.n_snp

    g.create_dataset(
        "sample_ids",
        data=np.asarray(matrix.sample_ids, dtype="U"),
        compressor=None,
        overwrite=True,
    )
    g.create_dataset(
        "marker_ids",
        data=np.asarray(matrix.marker_ids, dtype="U"),
        compressor=None,
        overwrite=True,
    )
    g.create_dataset(
        "genon",
        data=np.asarray(matrix.genon, dtype=np.float32),
        chunks=(max(n_ind, 1), max(min(n_snp, 1024), 1)),
        overwrite=True,
    )


def read_genotype_store(store_path: str | Path) -> GenotypeMatrix:
    """Read a Zarr store written by write_genotype_store."""
    store_path = Path(store_path)
    g = zarr.open_group(store_path.as_posix(), mode="r")

    return GenotypeMatrix(
        sample_ids=[str(s) for s in np.asarray(g["sample_ids"][:])],
        marker_ids=[str(m) for m in np.asarray(g["marker_ids"][:])],
        genon=np.asarray(g["genon"][:], dtype=np.float32),
    )


def read_genotypes(path: str | Path) -> GenotypeMatrix:
    """Dispatch on path: directories / *.zarr are stores, anything else a table."""
    path = Path(path)
    if path.is_dir() or path.suffix == ".zarr":
        return read_genotype_store(path)
    return read_genotype_csv(path)


def write_subset(result: AnnealResult, path: str | Path) -> None:
    """Selected markers with the run's scores repeated on every row."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    pd.DataFrame(
        {
            "marker_id": result.marker_ids,
            "score": result.score,
            "diversity": result.diversity,
            "differentiation": result.differentiation,
        }
    ).to_csv(path, index=False)


def read_marker_list(path: str | Path) -> List[str]:
    """Marker IDs from the first column (or a 'marker_id' column) of a CSV."""
    df = pd.read_csv(path)
    col = "marker_id" if "marker_id" in df.columns else df.columns[0]
    return df[col].astype(str).tolist()
