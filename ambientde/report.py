"""Summary counts for ambient-filtered DE results."""

from __future__ import annotations

from typing import Any

import numpy as np

from ambientde.core.types import AmbientFilterResult


def summarize(result: AmbientFilterResult, fdr: float = 0.05, top_n: int = 20) -> dict[str, Any]:
    table = result.table
    q = table["adjusted_p_value"].to_numpy(dtype=float)
    lfc = table["log_fold_change"].to_numpy(dtype=float)
    sig = q <= float(fdr)
    return {
        "label": result.label,
        "fdr": float(fdr),
        "n_tested": int(table.shape[0]),
        "n_same_sign": int(table["same_sign"].to_numpy(dtype=bool).sum()),
        "n_significant": int(sig.sum()),
        "n_up": int(np.sum(sig & (lfc > 0))),
        "n_down": int(np.sum(sig & (lfc < 0))),
        "top_genes": [str(g) for g in result.top(top_n).index],
    }
