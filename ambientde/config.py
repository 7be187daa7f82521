"""Configuration loading for ambientde runs."""

from __future__ import annotations

import json
from dataclasses import fields
from pathlib import Path
from typing import Any

from ambientde.core.types import FilterConfig


def load_json_config(path: str | Path) -> dict[str, Any]:
    """Load and validate a run config from a JSON file."""
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")
    if config_path.suffix.lower() != ".json":
        raise ValueError(
            f"Unsupported config format for '{config_path}'. Use a .json config file."
        )

    try:
        with open(config_path, "r", encoding="utf-8") as fh:
            data = json.load(fh)
    except json.JSONDecodeError as exc:
        raise ValueError(
            f"Invalid JSON in config '{config_path}' at line {exc.lineno}, "
            f"column {exc.colno}: {exc.msg}"
        ) from exc

    if not isinstance(data, dict):
        raise ValueError(
            f"Invalid config root in '{config_path}': expected JSON object, got {type(data).__name__}."
        )
    return data


def filter_config_from_dict(data: dict[str, Any] | None) -> FilterConfig:
    """Build a `FilterConfig` from the `filter` section of a run config."""
    if not data:
        return FilterConfig()
    allowed = {f.name for f in fields(FilterConfig)}
    unknown = sorted(set(data) - allowed)
    if unknown:
        raise ValueError(f"Unknown filter config keys: {unknown}. Allowed: {sorted(allowed)}")

    cfg = FilterConfig(**data)
    fdr = float(cfg.fdr)
    if not (0.0 < fdr <= 1.0):
        raise ValueError(f"filter.fdr must lie in (0, 1], got {cfg.fdr}.")
    if int(cfg.top_n) < 0:
        raise ValueError(f"filter.top_n must be non-negative, got {cfg.top_n}.")
    return cfg
