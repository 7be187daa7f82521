"""Statistical utilities for ambientde."""

from ambientde.stats.fdr import bh_fdr, intersection_union_pvalue, sign_concordant

__all__ = [
    "bh_fdr",
    "intersection_union_pvalue",
    "sign_concordant",
]
