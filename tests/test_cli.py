from __future__ import annotations

import json
from pathlib import Path

import anndata as ad
import numpy as np
import pandas as pd
import pytest

from ambientde import cli
from ambientde.core.errors import InvalidRange


def _write_tables(tmp_path: Path, bad_p: bool = False) -> tuple[Path, Path]:
    direct = pd.DataFrame(
        {
            "logFC": [2.0, -1.0, 0.3],
            "logCPM": [6.0, 4.0, 2.0],
            "PValue": [0.001, 0.2, 1.5 if bad_p else 0.6],
        },
        index=["geneA", "geneB", "geneC"],
    )
    interaction = pd.DataFrame(
        {"logFC": [1.5, 0.5, 0.1], "PValue": [0.01, 0.01, 0.9]},
        index=["geneA", "geneB", "geneC"],
    )
    d = tmp_path / "direct.csv"
    i = tmp_path / "interaction.csv"
    direct.to_csv(d)
    interaction.to_csv(i)
    return d, i


def test_filter_subcommand_writes_outputs(tmp_path: Path, capsys):
    d, i = _write_tables(tmp_path)
    outdir = tmp_path / "out"
    rc = cli.main(
        ["filter", "--direct", str(d), "--interaction", str(i), "--outdir", str(outdir)]
    )
    assert rc == 0

    table = pd.read_csv(outdir / "tables" / "ambient_filtered.csv", index_col=0)
    assert list(table.index) == ["geneA", "geneC", "geneB"]
    assert table.loc["geneB", "combined_p_value"] == 1.0
    assert table.loc["geneA", "combined_p_value"] == 0.01

    summary = json.loads((outdir / "summary.json").read_text(encoding="utf-8"))
    assert summary["n_tested"] == 3
    assert summary["n_significant"] == 1
    assert summary["top_genes"][0] == "geneA"
    assert (outdir / "logs" / "run.log").exists()
    assert "n_significant=1" in capsys.readouterr().out


def test_filter_reads_paths_and_options_from_config(tmp_path: Path):
    d, i = _write_tables(tmp_path)
    cfg = tmp_path / "run.json"
    cfg.write_text(
        json.dumps({"direct": str(d), "interaction": str(i), "filter": {"fdr": 0.01, "top_n": 1}}),
        encoding="utf-8",
    )
    outdir = tmp_path / "out"
    assert cli.filter_main(["--config", str(cfg), "--outdir", str(outdir)]) == 0
    summary = json.loads((outdir / "summary.json").read_text(encoding="utf-8"))
    assert summary["fdr"] == 0.01
    assert summary["n_significant"] == 0
    assert summary["top_genes"] == ["geneA"]


def test_filter_missing_input_rejected(tmp_path: Path):
    with pytest.raises(ValueError, match="interaction"):
        cli.filter_main(["--direct", "x.csv", "--outdir", str(tmp_path)])


def test_filter_invalid_pvalue_logged_and_raised(tmp_path: Path):
    d, i = _write_tables(tmp_path, bad_p=True)
    outdir = tmp_path / "out"
    with pytest.raises(InvalidRange):
        cli.filter_main(["--direct", str(d), "--interaction", str(i), "--outdir", str(outdir)])
    log_text = (outdir / "logs" / "run.log").read_text(encoding="utf-8")
    assert "Filtering failed" in log_text
    assert not (outdir / "tables" / "ambient_filtered.csv").exists()


def test_aggregate_subcommand(tmp_path: Path):
    x = np.array([[5, 0], [1, 2], [0, 3], [2, 2]], dtype=np.float32)
    obs = pd.DataFrame(
        {"sample": ["s1", "s1", "s2", "s2"], "cluster": ["a", "b", "a", "a"]},
        index=[f"c{k}" for k in range(4)],
    )
    adata = ad.AnnData(X=x, obs=obs, var=pd.DataFrame(index=["G1", "G2"]))
    h5ad = tmp_path / "cells.h5ad"
    adata.write_h5ad(h5ad)

    outdir = tmp_path / "pb"
    rc = cli.main(
        [
            "aggregate",
            "--h5ad",
            str(h5ad),
            "--sample-key",
            "sample",
            "--group-key",
            "cluster",
            "--min-cells",
            "1",
            "--outdir",
            str(outdir),
        ]
    )
    assert rc == 0
    counts = pd.read_csv(outdir / "tables" / "pseudobulk_counts.csv", index_col=0)
    assert list(counts.index) == ["s1|a", "s1|b", "s2|a"]
    assert counts.loc["s2|a"].tolist() == [2.0, 5.0]


def test_filter_rejects_out_of_range_fdr_flag(tmp_path: Path):
    d, i = _write_tables(tmp_path)
    with pytest.raises(ValueError, match=r"\(0, 1\]"):
        cli.filter_main(
            ["--direct", str(d), "--interaction", str(i), "--outdir", str(tmp_path), "--fdr", "5"]
        )
