"""Multiple-testing and p-value combination utilities."""

from __future__ import annotations

import numpy as np


def bh_fdr(pvals: np.ndarray) -> np.ndarray:
    """Benjamini-Hochberg adjusted p-values.

    NaN entries are left out of the ranking and reported as 1.0.
    """
    arr = np.asarray(pvals, dtype=float)
    flat = arr.ravel()
    q = np.ones_like(flat)
    finite = np.isfinite(flat)
    if np.any((flat[finite] < 0.0) | (flat[finite] > 1.0)):
        raise ValueError("p-values must be in [0,1] or NaN.")
    if np.any(finite):
        p = flat[finite]
        m = int(p.size)
        order = np.argsort(p, kind="mergesort")
        ranked = p[order]
        ranks = np.arange(1, m + 1, dtype=float)
        adj = ranked * (float(m) / ranks)
        adj = np.minimum.accumulate(adj[::-1])[::-1]
        adj = np.clip(adj, 0.0, 1.0)
        q_valid = np.empty_like(adj)
        q_valid[order] = adj
        q[finite] = q_valid
    return q.reshape(arr.shape)


def sign_concordant(lfc_a: np.ndarray, lfc_b: np.ndarray) -> np.ndarray:
    a = np.asarray(lfc_a, dtype=float).ravel()
    b = np.asarray(lfc_b, dtype=float).ravel()
    if a.shape != b.shape:
        raise ValueError("log-fold-change vectors must have the same length.")
    return np.sign(a) == np.sign(b)


def intersection_union_pvalue(
    p_direct: np.ndarray,
    p_interaction: np.ndarray,
    gate: np.ndarray | None = None,
) -> np.ndarray:
    """Combine two p-values per gene as their maximum.

    Rejecting on `max(p1, p2)` requires both nulls to be rejected. Genes with
    `gate == False` get a combined p-value of exactly 1.0.
    """
    p1 = np.asarray(p_direct, dtype=float).ravel()
    p2 = np.asarray(p_interaction, dtype=float).ravel()
    if p1.shape != p2.shape:
        raise ValueError("p-value vectors must have the same length.")
    combined = np.maximum(p1, p2)
    if gate is not None:
        g = np.asarray(gate, dtype=bool).ravel()
        if g.shape != combined.shape:
            raise ValueError("gate must match the p-value vectors in length.")
        combined = np.where(g, combined, 1.0)
    return combined
