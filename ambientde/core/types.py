"""Typed containers for DE test tables and ambient-filter results."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterator

import numpy as np
import pandas as pd

GENE_ID = "gene_id"
LOG_FOLD_CHANGE = "log_fold_change"
P_VALUE = "p_value"


@dataclass(frozen=True)
class ContrastPair:
    """Direct and interaction test tables for one condition contrast.

    - `direct`: condition A vs B on the cell pseudo-bulk profiles.
    - `interaction`: condition effect in cells minus condition effect in the
      ambient pool.

    Both are GeneTestResult tables indexed by `gene_id` with
    `log_fold_change` and `p_value` columns.
    """

    direct: pd.DataFrame
    interaction: pd.DataFrame
    label: str | None = None


@dataclass(frozen=True)
class FilteredResult:
    gene_id: str
    log_fold_change: float
    interaction_log_fold_change: float
    same_sign: bool
    combined_p_value: float
    adjusted_p_value: float


@dataclass(frozen=True)
class FilterConfig:
    """Run options for filtering and reporting."""

    fdr: float = 0.05
    top_n: int = 20
    gene_col: str | None = None
    lfc_col: str | None = None
    p_col: str | None = None


@dataclass(frozen=True)
class AmbientFilterResult:
    """Ordered output of the ambient-aware filter.

    `table` is indexed by `gene_id`, sorted ascending by `combined_p_value`.
    """

    table: pd.DataFrame
    label: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def __len__(self) -> int:
        return int(self.table.shape[0])

    def rows(self) -> Iterator[FilteredResult]:
        for gene, row in zip(self.table.index, self.table.itertuples(index=False)):
            yield FilteredResult(
                gene_id=str(gene),
                log_fold_change=float(row.log_fold_change),
                interaction_log_fold_change=float(row.interaction_log_fold_change),
                same_sign=bool(row.same_sign),
                combined_p_value=float(row.combined_p_value),
                adjusted_p_value=float(row.adjusted_p_value),
            )

    def significant(self, fdr: float = 0.05) -> pd.DataFrame:
        q = self.table["adjusted_p_value"].to_numpy(dtype=float)
        return self.table.loc[q <= float(fdr)].copy()

    def top(self, n: int = 20) -> pd.DataFrame:
        return self.table.head(int(n)).copy()


def empty_result_table() -> pd.DataFrame:
    table = pd.DataFrame(
        {
            "log_fold_change": np.array([], dtype=float),
            "interaction_log_fold_change": np.array([], dtype=float),
            "same_sign": np.array([], dtype=bool),
            "combined_p_value": np.array([], dtype=float),
            "adjusted_p_value": np.array([], dtype=float),
        },
        index=pd.Index([], dtype=object, name=GENE_ID),
    )
    return table
