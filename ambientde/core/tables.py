"""Coercion and validation of per-gene DE test tables."""

from __future__ import annotations

import re
import warnings
from typing import Iterable

import numpy as np
import pandas as pd

from ambientde.core.errors import InputMismatch, InvalidRange
from ambientde.core.types import GENE_ID, LOG_FOLD_CHANGE, P_VALUE

GENE_COLUMNS: tuple[str, ...] = ("gene_id", "gene", "geneId", "names", "symbol")
LFC_COLUMNS: tuple[str, ...] = (
    "log_fold_change",
    "logFC",
    "log2FoldChange",
    "logfoldchanges",
    "log2fc",
)
P_COLUMNS: tuple[str, ...] = ("p_value", "PValue", "pvalue", "pvals", "P.Value")

_ENSEMBL_RE = re.compile(r"^ENS[A-Z]*G\d+(\.\d+)?$")
_NUMERIC_RE = re.compile(r"^\d+$")


def _pick_column(
    df: pd.DataFrame, provided: str | None, candidates: Iterable[str], what: str
) -> str | None:
    if provided is not None:
        if provided in df.columns:
            return str(provided)
        raise KeyError(f"{what} column '{provided}' not found.")
    for c in candidates:
        if c in df.columns:
            return str(c)
    return None


def _as_gene_ids(values: pd.Index | pd.Series, name: str) -> pd.Index:
    """String gene ids with surrounding whitespace stripped.

    Ids that only differ by whitespace (`" TP53"`, `"TP53"`) collide and are
    reported as duplicates together with their raw forms.
    """
    raw = pd.Index(values)
    if raw.hasnans:
        raise InputMismatch(f"{name}: gene identifiers contain missing values.")
    raw_str = [str(v) for v in raw]
    ids = pd.Index([v.strip() for v in raw_str], dtype=object, name=GENE_ID)
    if (ids == "").any():
        raise InputMismatch(f"{name}: gene identifiers contain empty strings.")
    if ids.has_duplicates:
        dup = ids[ids.duplicated()].unique()[:5].tolist()
        sources = {d: [r for r in raw_str if r.strip() == d] for d in dup}
        raise InputMismatch(
            f"{name}: duplicated gene identifiers after whitespace stripping, "
            f"e.g. {sources}."
        )
    return ids


def id_scheme(gene_ids: Iterable[str]) -> str:
    """Classify identifiers as `ensembl`, `numeric`, `symbol` or `empty`."""
    ids = [str(g) for g in gene_ids]
    if not ids:
        return "empty"
    if all(_ENSEMBL_RE.match(g) for g in ids):
        return "ensembl"
    if all(_NUMERIC_RE.match(g) for g in ids):
        return "numeric"
    return "symbol"


def validate_test_table(table: pd.DataFrame, name: str = "table") -> pd.DataFrame:
    """Check a GeneTestResult table and return a canonical float copy.

    The copy is indexed by string gene ids and holds only `log_fold_change`
    and `p_value`.
    """
    missing = [c for c in (LOG_FOLD_CHANGE, P_VALUE) if c not in table.columns]
    if missing:
        raise KeyError(f"{name}: missing required columns {missing}.")
    ids = _as_gene_ids(table.index, name)

    lfc = pd.to_numeric(table[LOG_FOLD_CHANGE], errors="coerce").to_numpy(dtype=float)
    if not np.all(np.isfinite(lfc)):
        bad = table.index[~np.isfinite(lfc)][:5].tolist()
        raise InvalidRange(f"{name}: log-fold-changes must be finite, offending genes {bad}.")

    p = pd.to_numeric(table[P_VALUE], errors="coerce").to_numpy(dtype=float)
    bad_mask = ~np.isfinite(p) | (p < 0.0) | (p > 1.0)
    if np.any(bad_mask):
        bad = table.index[bad_mask][:5].tolist()
        raise InvalidRange(f"{name}: p-values must lie in [0,1], offending genes {bad}.")
    return pd.DataFrame({LOG_FOLD_CHANGE: lfc, P_VALUE: p}, index=ids)


def as_test_table(
    df: pd.DataFrame,
    *,
    gene_col: str | None = None,
    lfc_col: str | None = None,
    p_col: str | None = None,
    dropna: bool = False,
    name: str = "table",
) -> pd.DataFrame:
    """Coerce a DE result table into canonical GeneTestResult form.

    Column names from edgeR (`logFC`, `PValue`), PyDESeq2 (`log2FoldChange`,
    `pvalue`) and scanpy (`logfoldchanges`, `pvals`, `names`) are recognised.
    Gene ids come from `gene_col` or a known gene column, else the index.

    With `dropna=True`, rows whose statistics are NaN (e.g. genes PyDESeq2
    left untested) are dropped with a warning instead of failing validation.
    """
    gcol = _pick_column(df, gene_col, GENE_COLUMNS, "gene id")
    lcol = _pick_column(df, lfc_col, LFC_COLUMNS, "log-fold-change")
    pcol = _pick_column(df, p_col, P_COLUMNS, "p-value")
    if lcol is None:
        raise KeyError(f"{name}: no log-fold-change column. Tried: {', '.join(LFC_COLUMNS)}")
    if pcol is None:
        raise KeyError(f"{name}: no p-value column. Tried: {', '.join(P_COLUMNS)}")

    raw_ids = df[gcol] if gcol is not None else df.index
    lfc = pd.to_numeric(df[lcol], errors="coerce").to_numpy(dtype=float)
    p = pd.to_numeric(df[pcol], errors="coerce").to_numpy(dtype=float)

    if dropna:
        keep = ~(np.isnan(lfc) | np.isnan(p))
        n_drop = int((~keep).sum())
        if n_drop > 0:
            warnings.warn(
                f"{name}: dropped {n_drop} genes with missing statistics.",
                RuntimeWarning,
                stacklevel=2,
            )
            raw_ids = pd.Index(raw_ids)[keep]
            lfc = lfc[keep]
            p = p[keep]

    ids = _as_gene_ids(raw_ids, name)
    table = pd.DataFrame({LOG_FOLD_CHANGE: lfc, P_VALUE: p}, index=ids)
    return validate_test_table(table, name)
