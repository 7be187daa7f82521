"""Pseudo-bulk aggregation and ambient-pool construction.

Everything here is indexed by sample, cluster and gene labels, never by
position, so reordering samples or genes upstream cannot silently change the
result.
"""

from __future__ import annotations

import logging
import warnings
from typing import Any, Mapping, Sequence

import numpy as np
import pandas as pd
import scipy.sparse as sp

_LOGGER = logging.getLogger(__name__)

CELL_SOURCE = "cell"
AMBIENT_SOURCE = "ambient"


def _counts_matrix(adata: Any, layer: str | None) -> sp.csr_matrix:
    if layer is None:
        X = adata.X
    else:
        if layer not in adata.layers:
            raise KeyError(f"adata.layers['{layer}'] not found.")
        X = adata.layers[layer]
    if X is None:
        raise ValueError("AnnData object has no count matrix.")
    if sp.issparse(X):
        return sp.csr_matrix(X)
    return sp.csr_matrix(np.asarray(X))


def _obs_labels(adata: Any, key: str) -> np.ndarray:
    if key not in adata.obs.columns:
        raise KeyError(f"adata.obs['{key}'] not found.")
    col = adata.obs[key]
    if col.isna().any():
        raise ValueError(f"adata.obs['{key}'] contains missing labels.")
    return col.astype(str).to_numpy()


def aggregate_pseudobulk(
    adata: Any,
    *,
    sample_key: str,
    group_key: str | None = None,
    layer: str | None = None,
    min_cells: int = 1,
    restrict_to: np.ndarray | None = None,
) -> tuple[pd.DataFrame, pd.DataFrame]:
    """Sum raw counts into one library per (sample, group).

    Returns `(counts_df, meta_df)`: counts are libraries x genes, metadata
    holds the sample (and group) label and `n_cells` per library. Library ids
    are `"{sample}"` or `"{sample}|{group}"`.

    `restrict_to` is a boolean cell mask (e.g. one cluster). Libraries with
    fewer than `min_cells` cells are dropped with a warning, and genes sharing
    a label in `var_names` are summed with a warning.
    """
    X = _counts_matrix(adata, layer)
    n_obs = X.shape[0]
    var_names = pd.Index(adata.var_names).astype(str)

    samples = _obs_labels(adata, sample_key)
    groups = _obs_labels(adata, group_key) if group_key is not None else None

    if restrict_to is not None:
        mask = np.asarray(restrict_to, dtype=bool).ravel()
        if mask.shape != (n_obs,):
            raise ValueError("restrict_to must be a boolean mask over cells.")
        X = X[np.flatnonzero(mask), :]
        samples = samples[mask]
        if groups is not None:
            groups = groups[mask]

    keys = {sample_key: samples}
    if groups is not None:
        keys[group_key] = groups
    key_df = pd.DataFrame(keys)
    key_cols = list(key_df.columns)

    if key_df.empty:
        meta_df = pd.DataFrame(
            {**{c: pd.Series([], dtype=object) for c in key_cols}, "n_cells": pd.Series([], dtype=int)},
            index=pd.Index([], dtype=object, name="library"),
        )
        return pd.DataFrame(index=meta_df.index, columns=var_names, dtype=float), meta_df

    grouped = key_df.groupby(key_cols, sort=True)
    codes = grouped.ngroup().to_numpy()
    sizes = grouped.size()

    n_libs = int(sizes.shape[0])
    G = sp.csr_matrix(
        (np.ones(codes.size, dtype=np.int8), (np.arange(codes.size), codes)),
        shape=(codes.size, n_libs),
    )
    pb = (G.T @ X).toarray()

    if groups is None:
        lib_samples = [str(s) for s in sizes.index]
        lib_ids = list(lib_samples)
        meta_df = pd.DataFrame({sample_key: lib_samples}, index=lib_ids)
    else:
        lib_samples = [str(s) for s, _ in sizes.index]
        lib_groups = [str(g) for _, g in sizes.index]
        lib_ids = [f"{s}|{g}" for s, g in zip(lib_samples, lib_groups)]
        meta_df = pd.DataFrame({sample_key: lib_samples, group_key: lib_groups}, index=lib_ids)
    meta_df["n_cells"] = sizes.to_numpy().astype(int)
    meta_df.index.name = "library"

    counts_df = _sum_duplicate_genes(
        pd.DataFrame(pb, index=meta_df.index, columns=var_names), "adata.var_names"
    )

    keep = meta_df["n_cells"].to_numpy() >= int(min_cells)
    if not np.all(keep):
        dropped = meta_df.index[~keep].tolist()
        warnings.warn(
            f"Dropped {len(dropped)} pseudo-bulk libraries with < {int(min_cells)} cells: {dropped[:5]}",
            RuntimeWarning,
            stacklevel=2,
        )
        meta_df = meta_df.loc[keep].copy()
        counts_df = counts_df.loc[keep]
    return counts_df, meta_df


def estimate_ambient_profile(
    raw_adata: Any,
    *,
    sample_key: str,
    lower: float = 100,
    layer: str | None = None,
) -> pd.DataFrame:
    """Per-sample ambient pools from barcodes with total count <= `lower`.

    `raw_adata` holds all barcodes (cells and empty droplets). The result is
    samples x genes summed counts, indexed by sample label.
    """
    X = _counts_matrix(raw_adata, layer)
    totals = np.asarray(X.sum(axis=1)).ravel()
    empty = totals <= float(lower)

    all_samples = pd.unique(_obs_labels(raw_adata, sample_key))
    counts_df, meta_df = aggregate_pseudobulk(
        raw_adata,
        sample_key=sample_key,
        layer=layer,
        min_cells=1,
        restrict_to=empty,
    )
    missing = sorted(set(all_samples) - set(meta_df[sample_key]))
    if missing:
        raise ValueError(
            f"No empty droplets (total <= {lower}) for samples {missing}; "
            "cannot estimate their ambient pool."
        )
    counts_df = counts_df.copy()
    counts_df.index = pd.Index(meta_df[sample_key].to_numpy(), name="sample")
    _LOGGER.info(
        "Ambient pools from %d empty barcodes across %d samples.",
        int(empty.sum()),
        int(counts_df.shape[0]),
    )
    return counts_df


def _sum_duplicate_genes(counts: pd.DataFrame, what: str) -> pd.DataFrame:
    """Sum columns that share a gene label, warning when any do."""
    genes = pd.Index(counts.columns).astype(str)
    out = counts.copy()
    out.columns = genes
    if genes.has_duplicates:
        dup = genes[genes.duplicated()].unique()
        warnings.warn(
            f"Duplicate gene labels in {what}; summing {dup.size} of them, e.g. {dup[:5].tolist()}.",
            RuntimeWarning,
            stacklevel=3,
        )
        out = out.T.groupby(level=0, sort=False).sum().T
    return out


def _sample_conditions_from_meta(
    cell_meta: pd.DataFrame, sample_key: str, condition_key: str
) -> pd.Series:
    if condition_key not in cell_meta.columns:
        raise KeyError(f"cell_meta['{condition_key}'] not found.")
    pairs = pd.DataFrame(
        {
            "sample": cell_meta[sample_key].astype(str).to_numpy(),
            "condition": cell_meta[condition_key].astype(str).to_numpy(),
        }
    ).drop_duplicates()
    conflicting = pairs["sample"][pairs["sample"].duplicated()].unique().tolist()
    if conflicting:
        raise ValueError(f"Samples {conflicting} carry more than one condition.")
    return pd.Series(pairs["condition"].to_numpy(), index=pairs["sample"].to_numpy(), dtype=object)


def build_interaction_design(
    cell_counts: pd.DataFrame,
    cell_meta: pd.DataFrame,
    ambient_counts: pd.DataFrame,
    sample_conditions: Mapping[str, str] | pd.Series | None = None,
    *,
    sample_key: str = "sample",
    condition_key: str | None = None,
    conditions: Sequence[str] | None = None,
) -> tuple[pd.DataFrame, pd.DataFrame]:
    """Stack cell and ambient pseudo-bulk libraries for the interaction fit.

    Returns `(counts, design)`. `design` has categorical columns `sample`,
    `condition` (first level is the reference) and `source` with levels
    `["ambient", "cell"]`, so the `condition:source` coefficient of a model
    such as `~ sample + condition:source` is the cell condition effect minus
    the ambient condition effect.

    Conditions are read from `cell_meta[condition_key]`, or from an explicit
    sample -> condition mapping. Cell libraries are matched to ambient pools
    by sample label and genes by gene label; duplicated gene labels are
    summed with a warning.
    """
    if sample_key not in cell_meta.columns:
        raise KeyError(f"cell_meta['{sample_key}'] not found.")
    if not cell_meta.index.equals(cell_counts.index):
        raise ValueError("cell_meta and cell_counts must share the same library index.")
    if sample_conditions is None:
        if condition_key is None:
            raise ValueError("Pass either condition_key or sample_conditions.")
        sample_conditions = _sample_conditions_from_meta(cell_meta, sample_key, condition_key)

    cond_map = pd.Series(sample_conditions, dtype=object).astype(str)
    cond_map.index = cond_map.index.astype(str)
    cell_samples = cell_meta[sample_key].astype(str)

    unknown = sorted(set(cell_samples) - set(cond_map.index))
    if unknown:
        raise KeyError(f"No condition given for samples {unknown}.")

    levels = list(conditions) if conditions is not None else sorted(cond_map.loc[cell_samples].unique())
    if len(levels) < 2:
        raise ValueError("At least two conditions are required for a comparison.")

    in_levels = cond_map.loc[cell_samples].isin(levels).to_numpy()
    cell_counts = cell_counts.loc[in_levels]
    cell_samples = cell_samples.loc[in_levels]
    if cell_counts.empty:
        raise ValueError(f"No cell libraries belong to conditions {levels}.")

    samples = list(pd.unique(cell_samples))
    ambient_index = pd.Index(ambient_counts.index).astype(str)
    missing = sorted(set(samples) - set(ambient_index))
    if missing:
        raise KeyError(f"No ambient pool for samples {missing}.")
    ambient = ambient_counts.copy()
    ambient.index = ambient_index
    ambient = ambient.loc[samples]

    cell_part = _sum_duplicate_genes(cell_counts, "cell counts")
    ambient_part = _sum_duplicate_genes(ambient, "ambient counts")

    genes = pd.Index(cell_part.columns)
    shared = genes.intersection(pd.Index(ambient_part.columns), sort=False)
    if shared.size < genes.size:
        warnings.warn(
            f"{genes.size - shared.size} genes absent from the ambient pools were dropped.",
            RuntimeWarning,
            stacklevel=2,
        )
    if shared.size == 0:
        raise ValueError("Cell and ambient count tables share no genes.")

    ambient_part.index = pd.Index([f"{s}|{AMBIENT_SOURCE}" for s in samples])

    counts = pd.concat([cell_part[shared], ambient_part[shared]], axis=0)
    counts.index.name = "library"
    counts = counts.round().astype(np.int64)

    lib_samples = list(cell_samples) + samples
    lib_sources = [CELL_SOURCE] * cell_part.shape[0] + [AMBIENT_SOURCE] * len(samples)
    design = pd.DataFrame(
        {
            "sample": pd.Categorical(lib_samples, categories=samples),
            "condition": pd.Categorical(
                [cond_map[s] for s in lib_samples], categories=levels
            ),
            "source": pd.Categorical(lib_sources, categories=[AMBIENT_SOURCE, CELL_SOURCE]),
        },
        index=counts.index,
    )
    return counts, design
