"""Table I/O, logging, and output helpers."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

import numpy as np
import pandas as pd

from ambientde.core.tables import GENE_COLUMNS, as_test_table
from ambientde.core.types import AmbientFilterResult, GENE_ID


def ensure_dir(path: str | Path) -> None:
    p = Path(path)
    p.mkdir(parents=True, exist_ok=True)


def _json_default(obj: Any) -> Any:
    if isinstance(obj, np.integer):
        return int(obj)
    if isinstance(obj, np.floating):
        return float(obj)
    if isinstance(obj, np.bool_):
        return bool(obj)
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def write_json(path: str | Path, payload: dict[str, Any]) -> None:
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    with out.open("w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2, sort_keys=True, default=_json_default)


def setup_logger(log_path: Path, logger_name: str) -> logging.Logger:
    ensure_dir(log_path.parent)
    logger = logging.getLogger(logger_name)
    logger.setLevel(logging.INFO)
    logger.handlers.clear()
    formatter = logging.Formatter("%(asctime)s | %(levelname)s | %(message)s")
    fh = logging.FileHandler(log_path, mode="w", encoding="utf-8")
    fh.setFormatter(formatter)
    logger.addHandler(fh)
    sh = logging.StreamHandler()
    sh.setFormatter(formatter)
    logger.addHandler(sh)
    return logger


def _separator(path: Path) -> str:
    suffixes = [s.lower() for s in path.suffixes]
    if ".tsv" in suffixes or ".txt" in suffixes:
        return "\t"
    if ".csv" in suffixes:
        return ","
    raise ValueError(f"Unsupported table format for '{path}'. Use .csv or .tsv.")


def read_test_table(
    path: str | Path,
    *,
    gene_col: str | None = None,
    lfc_col: str | None = None,
    p_col: str | None = None,
    dropna: bool = False,
) -> pd.DataFrame:
    """Read a DE result table from CSV/TSV into GeneTestResult form.

    Without a recognised gene column the first column is used as the index,
    which matches tables written by `DataFrame.to_csv()` and edgeR's
    `write.csv(topTags(...))`.
    """
    table_path = Path(path)
    if not table_path.exists():
        raise FileNotFoundError(f"DE table not found: {table_path}")
    sep = _separator(table_path)
    df = pd.read_csv(table_path, sep=sep)
    if gene_col is None and not any(c in df.columns for c in GENE_COLUMNS):
        df = df.set_index(df.columns[0])
    return as_test_table(
        df,
        gene_col=gene_col,
        lfc_col=lfc_col,
        p_col=p_col,
        dropna=dropna,
        name=table_path.name,
    )


def write_result_table(result: AmbientFilterResult, path: str | Path) -> Path:
    out = Path(path)
    ensure_dir(out.parent)
    table = result.table.copy()
    table.index.name = GENE_ID
    table.to_csv(out, sep=_separator(out))
    return out
