"""Command-line interface for ambientde."""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import Any, Iterable

import anndata as ad

from ambientde.config import filter_config_from_dict, load_json_config
from ambientde.core.ambient_filter import filter_ambient_de
from ambientde.core.errors import AmbientDEError
from ambientde.core.types import ContrastPair
from ambientde.io import ensure_dir, read_test_table, setup_logger, write_json, write_result_table
from ambientde.pseudobulk import aggregate_pseudobulk, estimate_ambient_profile
from ambientde.report import summarize


def _read_adata(h5ad_path: str):
    path = Path(h5ad_path)
    if not path.exists():
        raise FileNotFoundError(f"Input file '{h5ad_path}' not found.")
    return ad.read_h5ad(path)


def _resolve_path(cli_value: str | None, cfg: dict[str, Any], key: str) -> str:
    value = cli_value if cli_value is not None else cfg.get(key)
    if not value:
        raise ValueError(f"Missing required input '{key}' (pass --{key} or set it in the config).")
    return str(value)


def filter_main(argv: Iterable[str] | None = None) -> int:
    """Run the ambient-aware DE filter on two result tables.

    Args:
        argv: Command-line arguments (if None, uses sys.argv).

    Returns:
        Exit code (0 for success).
    """
    parser = argparse.ArgumentParser(description="ambientde: ambient-aware DE filter")
    parser.add_argument("--direct", default=None, help="Direct contrast DE table (.csv/.tsv)")
    parser.add_argument(
        "--interaction", default=None, help="Cell-vs-ambient interaction DE table (.csv/.tsv)"
    )
    parser.add_argument("--outdir", default=".", help="Output directory root")
    parser.add_argument("--config", default=None, help="Optional JSON run config")
    parser.add_argument("--fdr", type=float, default=None, help="FDR threshold for the summary")
    parser.add_argument("--top-n", type=int, default=None, help="Number of top genes to report")
    parser.add_argument("--label", default=None, help="Contrast label")
    parser.add_argument(
        "--dropna",
        action="store_true",
        help="Drop genes with missing statistics instead of failing",
    )
    args = parser.parse_args(list(argv) if argv is not None else None)

    cfg = load_json_config(args.config) if args.config else {}
    filter_section = dict(cfg.get("filter") or {})
    if args.fdr is not None:
        filter_section["fdr"] = args.fdr
    if args.top_n is not None:
        filter_section["top_n"] = args.top_n
    filter_cfg = filter_config_from_dict(filter_section)
    fdr = filter_cfg.fdr
    top_n = filter_cfg.top_n

    outdir = Path(args.outdir)
    logger = setup_logger(outdir / "logs" / "run.log", "ambientde")

    direct_path = _resolve_path(args.direct, cfg, "direct")
    interaction_path = _resolve_path(args.interaction, cfg, "interaction")
    cols = {"gene_col": filter_cfg.gene_col, "lfc_col": filter_cfg.lfc_col, "p_col": filter_cfg.p_col}

    try:
        direct = read_test_table(direct_path, dropna=args.dropna, **cols)
        interaction = read_test_table(interaction_path, dropna=args.dropna, **cols)
        result = filter_ambient_de(
            ContrastPair(direct, interaction, label=args.label or cfg.get("label")),
            logger=logger,
        )
    except AmbientDEError as exc:
        logger.error("Filtering failed: %s", exc)
        raise

    table_dir = outdir / "tables"
    ensure_dir(table_dir)
    out_csv = write_result_table(result, table_dir / "ambient_filtered.csv")
    summary = summarize(result, fdr=fdr, top_n=top_n)
    summary.update({"direct": direct_path, "interaction": interaction_path, "table": out_csv.as_posix()})
    write_json(outdir / "summary.json", summary)

    logger.info(
        "%d/%d genes significant at FDR <= %.3g (up=%d, down=%d).",
        summary["n_significant"],
        summary["n_tested"],
        fdr,
        summary["n_up"],
        summary["n_down"],
    )
    print(f"n_tested={summary['n_tested']}")
    print(f"n_significant={summary['n_significant']}")
    print(f"table={out_csv.as_posix()}")
    return 0


def aggregate_main(argv: Iterable[str] | None = None) -> int:
    """Aggregate an .h5ad into pseudo-bulk counts (and optional ambient pools).

    Args:
        argv: Command-line arguments (if None, uses sys.argv).

    Returns:
        Exit code (0 for success).
    """
    parser = argparse.ArgumentParser(description="ambientde: pseudo-bulk aggregation")
    parser.add_argument("--h5ad", required=True, help="Path to filtered cell .h5ad file")
    parser.add_argument("--sample-key", required=True, help="adata.obs column with sample labels")
    parser.add_argument("--group-key", default=None, help="adata.obs column with cluster labels")
    parser.add_argument("--layer", default=None, help="Layer holding raw counts (default: X)")
    parser.add_argument("--min-cells", type=int, default=10, help="Minimum cells per library")
    parser.add_argument(
        "--raw-h5ad", default=None, help="Unfiltered barcode .h5ad for ambient pools"
    )
    parser.add_argument(
        "--lower", type=float, default=100, help="Max total count of an empty droplet"
    )
    parser.add_argument("--outdir", default=".", help="Output directory root")
    args = parser.parse_args(list(argv) if argv is not None else None)

    outdir = Path(args.outdir)
    logger = setup_logger(outdir / "logs" / "aggregate.log", "ambientde")
    table_dir = outdir / "tables"
    ensure_dir(table_dir)

    adata = _read_adata(args.h5ad)
    counts, meta = aggregate_pseudobulk(
        adata,
        sample_key=args.sample_key,
        group_key=args.group_key,
        layer=args.layer,
        min_cells=args.min_cells,
    )
    counts.to_csv(table_dir / "pseudobulk_counts.csv")
    meta.to_csv(table_dir / "pseudobulk_meta.csv")
    logger.info("Wrote %d pseudo-bulk libraries x %d genes.", counts.shape[0], counts.shape[1])

    if args.raw_h5ad is not None:
        raw = _read_adata(args.raw_h5ad)
        ambient = estimate_ambient_profile(
            raw, sample_key=args.sample_key, lower=args.lower, layer=args.layer
        )
        ambient.to_csv(table_dir / "ambient_pools.csv")
        logger.info("Wrote ambient pools for %d samples.", ambient.shape[0])
    return 0


def main(argv: Iterable[str] | None = None) -> int:
    """Main CLI entry point.

    Args:
        argv: Command-line arguments (if None, uses sys.argv).

    Returns:
        Exit code.
    """
    parser = argparse.ArgumentParser(description="ambientde CLI")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("filter", help="Run the ambient-aware DE filter", add_help=False)
    sub.add_parser("aggregate", help="Aggregate cells into pseudo-bulk libraries", add_help=False)

    args, remainder = parser.parse_known_args(list(argv) if argv is not None else None)
    if args.command == "filter":
        return filter_main(remainder)
    if args.command == "aggregate":
        return aggregate_main(remainder)
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
