from __future__ import annotations

import logging

import numpy as np
import pandas as pd
import pytest

from ambientde.core.ambient_filter import filter_ambient_de, filter_contrasts, stack_results
from ambientde.core.errors import InputMismatch, InvalidRange
from ambientde.core.types import ContrastPair, FilteredResult


def _table(rows: dict[str, tuple[float, float]]) -> pd.DataFrame:
    return pd.DataFrame(
        {
            "log_fold_change": [v[0] for v in rows.values()],
            "p_value": [v[1] for v in rows.values()],
        },
        index=pd.Index(list(rows), name="gene_id"),
    )


def _random_pair(n: int = 200, seed: int = 0) -> ContrastPair:
    rng = np.random.default_rng(seed)
    genes = [f"G{i}" for i in range(n)]
    direct = pd.DataFrame(
        {"log_fold_change": rng.normal(size=n), "p_value": rng.uniform(size=n)},
        index=genes,
    )
    interaction = pd.DataFrame(
        {"log_fold_change": rng.normal(size=n), "p_value": rng.uniform(size=n)},
        index=genes,
    )
    return ContrastPair(direct, interaction)


def test_two_gene_scenario():
    direct = _table({"geneA": (2.0, 0.001), "geneB": (-1.0, 0.2)})
    interaction = _table({"geneA": (1.5, 0.02), "geneB": (0.5, 0.01)})
    res = filter_ambient_de(ContrastPair(direct, interaction))

    assert list(res.table.index) == ["geneA", "geneB"]
    a = res.table.loc["geneA"]
    b = res.table.loc["geneB"]
    assert a["combined_p_value"] == 0.02
    assert bool(a["same_sign"]) is True
    assert a["log_fold_change"] == 2.0
    assert a["interaction_log_fold_change"] == 1.5
    assert b["combined_p_value"] == 1.0
    assert bool(b["same_sign"]) is False
    # BH over [0.02, 1.0]: 0.02 * 2 / 1
    assert np.isclose(a["adjusted_p_value"], 0.04)
    assert b["adjusted_p_value"] == 1.0


def test_sign_discordant_genes_forced_to_one():
    res = filter_ambient_de(_random_pair())
    t = res.table
    discordant = np.sign(t["log_fold_change"]) != np.sign(t["interaction_log_fold_change"])
    assert discordant.any()
    assert np.all(t.loc[discordant, "combined_p_value"].to_numpy() == 1.0)
    assert np.all(t.loc[discordant, "adjusted_p_value"].to_numpy() == 1.0)


def test_concordant_genes_take_max_pvalue():
    pair = _random_pair()
    res = filter_ambient_de(pair)
    t = res.table
    concordant = t.index[t["same_sign"].to_numpy()]
    expected = np.maximum(
        pair.direct.loc[concordant, "p_value"].to_numpy(),
        pair.interaction.loc[concordant, "p_value"].to_numpy(),
    )
    assert np.array_equal(t.loc[concordant, "combined_p_value"].to_numpy(), expected)


def test_sorted_and_fdr_monotone():
    res = filter_ambient_de(_random_pair(n=500, seed=3))
    combined = res.table["combined_p_value"].to_numpy()
    adjusted = res.table["adjusted_p_value"].to_numpy()
    assert np.all(np.diff(combined) >= 0)
    assert np.all(np.diff(adjusted) >= 0)
    assert np.all((adjusted >= combined) & (adjusted <= 1.0))


def test_repeated_runs_identical():
    pair = _random_pair(seed=7)
    first = filter_ambient_de(pair).table
    second = filter_ambient_de(pair).table
    pd.testing.assert_frame_equal(first, second)


def test_only_shared_genes_reported():
    direct = _table({"A": (1.0, 0.01), "B": (1.0, 0.02), "C": (1.0, 0.03)})
    interaction = _table({"B": (0.5, 0.04), "C": (0.5, 0.05), "D": (0.5, 0.06)})
    res = filter_ambient_de(ContrastPair(direct, interaction))
    assert sorted(res.table.index) == ["B", "C"]
    assert res.metadata["n_shared"] == 2


def test_empty_intersection_returns_empty(caplog):
    caplog.set_level(logging.WARNING)
    direct = _table({"A": (1.0, 0.01)})
    interaction = _table({"B": (1.0, 0.01)})
    res = filter_ambient_de(ContrastPair(direct, interaction))
    assert len(res) == 0
    assert list(res.table.columns) == [
        "log_fold_change",
        "interaction_log_fold_change",
        "same_sign",
        "combined_p_value",
        "adjusted_p_value",
    ]
    assert "No genes shared" in caplog.text


def test_empty_inputs_are_not_errors():
    empty = _table({})
    res = filter_ambient_de(ContrastPair(empty, empty))
    assert len(res) == 0


def test_incompatible_id_schemes_raise():
    direct = _table({"ENSG00000141510": (1.0, 0.01)})
    interaction = _table({"TP53": (1.0, 0.01)})
    with pytest.raises(InputMismatch, match="schemes differ"):
        filter_ambient_de(ContrastPair(direct, interaction))


def test_duplicated_gene_ids_raise():
    direct = pd.DataFrame(
        {"log_fold_change": [1.0, 2.0], "p_value": [0.1, 0.2]}, index=["A", "A"]
    )
    interaction = _table({"A": (1.0, 0.1)})
    with pytest.raises(InputMismatch, match="duplicated"):
        filter_ambient_de(ContrastPair(direct, interaction))


@pytest.mark.parametrize("bad_p", [1.5, -0.1, float("nan")])
@pytest.mark.parametrize("which", ["direct", "interaction"])
def test_out_of_range_pvalues_raise(bad_p, which):
    good = _table({"A": (1.0, 0.01), "B": (1.0, 0.5)})
    bad = _table({"A": (1.0, bad_p), "B": (1.0, 0.5)})
    pair = ContrastPair(bad, good) if which == "direct" else ContrastPair(good, bad)
    with pytest.raises(InvalidRange, match="p-values"):
        filter_ambient_de(pair)


def test_non_finite_lfc_raises():
    direct = _table({"A": (float("inf"), 0.01)})
    interaction = _table({"A": (1.0, 0.01)})
    with pytest.raises(InvalidRange, match="finite"):
        filter_ambient_de(ContrastPair(direct, interaction))


def test_errors_are_value_errors():
    assert issubclass(InputMismatch, ValueError)
    assert issubclass(InvalidRange, ValueError)


def test_zero_lfc_only_matches_zero():
    direct = _table({"A": (0.0, 0.01), "B": (0.0, 0.01)})
    interaction = _table({"A": (0.0, 0.02), "B": (0.3, 0.02)})
    t = filter_ambient_de(ContrastPair(direct, interaction)).table
    assert t.loc["A", "combined_p_value"] == 0.02
    assert t.loc["B", "combined_p_value"] == 1.0


def test_rows_and_significant():
    direct = _table({"A": (2.0, 1e-6), "B": (1.0, 0.5), "C": (-1.0, 1e-4)})
    interaction = _table({"A": (1.0, 1e-5), "B": (1.0, 0.6), "C": (-0.5, 1e-3)})
    res = filter_ambient_de(ContrastPair(direct, interaction, label="ctrl_vs_ko"))
    rows = list(res.rows())
    assert all(isinstance(r, FilteredResult) for r in rows)
    assert [r.gene_id for r in rows] == ["A", "C", "B"]
    assert list(res.significant(0.05).index) == ["A", "C"]
    assert list(res.top(1).index) == ["A"]
    assert res.label == "ctrl_vs_ko"


def test_filter_contrasts_independent_fdr():
    pair_a = _random_pair(seed=1)
    pair_b = _random_pair(n=50, seed=2)
    results = filter_contrasts({"a_vs_ctrl": pair_a, "b_vs_ctrl": pair_b})
    assert set(results) == {"a_vs_ctrl", "b_vs_ctrl"}
    pd.testing.assert_frame_equal(results["a_vs_ctrl"].table, filter_ambient_de(pair_a).table)
    assert results["b_vs_ctrl"].label == "b_vs_ctrl"

    long = stack_results(results)
    assert long.shape[0] == 250
    assert set(long["contrast"]) == {"a_vs_ctrl", "b_vs_ctrl"}
    assert "gene_id" in long.columns


def test_stack_results_empty():
    long = stack_results({})
    assert long.empty
    assert "contrast" in long.columns


def test_top_and_significant_return_copies():
    direct = _table({"A": (2.0, 1e-6), "B": (1.0, 0.5)})
    interaction = _table({"A": (1.0, 1e-5), "B": (1.0, 0.6)})
    res = filter_ambient_de(ContrastPair(direct, interaction))
    before = res.table.copy()

    top = res.top(1)
    top.loc["A", "adjusted_p_value"] = 0.9
    sig = res.significant(0.05)
    sig.loc["A", "combined_p_value"] = 0.9

    pd.testing.assert_frame_equal(res.table, before)
