"""Ambient-contamination-aware DE filtering (no I/O, no plotting)."""

from __future__ import annotations

import logging
from typing import Mapping

import numpy as np
import pandas as pd

from ambientde.core.errors import InputMismatch
from ambientde.core.tables import id_scheme, validate_test_table
from ambientde.core.types import (
    GENE_ID,
    LOG_FOLD_CHANGE,
    P_VALUE,
    AmbientFilterResult,
    ContrastPair,
    empty_result_table,
)
from ambientde.stats.fdr import bh_fdr, intersection_union_pvalue, sign_concordant

_LOGGER = logging.getLogger(__name__)


def _shared_genes(direct: pd.DataFrame, interaction: pd.DataFrame) -> pd.Index:
    shared = direct.index.intersection(interaction.index, sort=False)
    if shared.size == 0 and direct.shape[0] > 0 and interaction.shape[0] > 0:
        scheme_d = id_scheme(direct.index)
        scheme_i = id_scheme(interaction.index)
        if scheme_d != scheme_i:
            raise InputMismatch(
                f"Gene identifier schemes differ (direct={scheme_d}, "
                f"interaction={scheme_i}); no common genes."
            )
    return shared


def filter_ambient_de(
    pair: ContrastPair,
    *,
    logger: logging.Logger | None = None,
) -> AmbientFilterResult:
    """Flag DE genes whose change in cells exceeds the change in the ambient pool.

    A gene is eligible only if the direct and interaction log-fold-changes
    share a sign. Eligible genes get `max(p_direct, p_interaction)`; the rest
    get 1.0. Benjamini-Hochberg runs over every shared gene, and rows are
    sorted by combined p-value (stable).
    """
    log = logger or _LOGGER
    direct = validate_test_table(pair.direct, "direct")
    interaction = validate_test_table(pair.interaction, "interaction")

    shared = _shared_genes(direct, interaction)
    if shared.size == 0:
        log.warning(
            "No genes shared between direct (%d) and interaction (%d) tables; "
            "returning an empty result.",
            direct.shape[0],
            interaction.shape[0],
        )
        return AmbientFilterResult(
            table=empty_result_table(),
            label=pair.label,
            metadata={"n_direct": int(direct.shape[0]), "n_interaction": int(interaction.shape[0])},
        )

    lfc_d = direct.loc[shared, LOG_FOLD_CHANGE].to_numpy(dtype=float)
    lfc_i = interaction.loc[shared, LOG_FOLD_CHANGE].to_numpy(dtype=float)
    p_d = direct.loc[shared, P_VALUE].to_numpy(dtype=float)
    p_i = interaction.loc[shared, P_VALUE].to_numpy(dtype=float)

    same_sign = sign_concordant(lfc_d, lfc_i)
    combined = intersection_union_pvalue(p_d, p_i, gate=same_sign)
    adjusted = bh_fdr(combined)

    table = pd.DataFrame(
        {
            "log_fold_change": lfc_d,
            "interaction_log_fold_change": lfc_i,
            "same_sign": same_sign,
            "combined_p_value": combined,
            "adjusted_p_value": adjusted,
        },
        index=pd.Index(shared, dtype=object, name=GENE_ID),
    )
    order = np.argsort(combined, kind="mergesort")
    table = table.iloc[order]

    n_gated = int((~same_sign).sum())
    log.info(
        "Ambient filter%s: %d shared genes, %d failed the sign gate.",
        f" [{pair.label}]" if pair.label else "",
        int(shared.size),
        n_gated,
    )
    return AmbientFilterResult(
        table=table,
        label=pair.label,
        metadata={
            "n_direct": int(direct.shape[0]),
            "n_interaction": int(interaction.shape[0]),
            "n_shared": int(shared.size),
            "n_sign_discordant": n_gated,
        },
    )


def filter_contrasts(
    pairs: Mapping[str, ContrastPair],
    *,
    logger: logging.Logger | None = None,
) -> dict[str, AmbientFilterResult]:
    """Filter several condition contrasts, each against its own ambient interaction.

    FDR is controlled within each contrast; nothing is pooled across them.
    """
    out: dict[str, AmbientFilterResult] = {}
    for name, pair in pairs.items():
        labelled = pair if pair.label == name else ContrastPair(pair.direct, pair.interaction, label=name)
        out[str(name)] = filter_ambient_de(labelled, logger=logger)
    return out


def stack_results(results: Mapping[str, AmbientFilterResult]) -> pd.DataFrame:
    """Concatenate per-contrast tables into one long table with a `contrast` column."""
    frames = []
    for name, res in results.items():
        frame = res.table.reset_index()
        frame.insert(0, "contrast", str(name))
        frames.append(frame)
    if not frames:
        frame = empty_result_table().reset_index()
        frame.insert(0, "contrast", pd.Series([], dtype=object))
        return frame
    return pd.concat(frames, ignore_index=True)
