"""ambientde public API."""

from ambientde._version import __version__
from ambientde.core import (
    AmbientDEError,
    AmbientFilterResult,
    ContrastPair,
    FilterConfig,
    FilteredResult,
    InputMismatch,
    InvalidRange,
    as_test_table,
    filter_ambient_de,
    filter_contrasts,
    stack_results,
)
from ambientde.pseudobulk import (
    aggregate_pseudobulk,
    build_interaction_design,
    estimate_ambient_profile,
)
from ambientde.report import summarize

__all__ = [
    "__version__",
    "AmbientDEError",
    "InputMismatch",
    "InvalidRange",
    "ContrastPair",
    "FilteredResult",
    "FilterConfig",
    "AmbientFilterResult",
    "as_test_table",
    "filter_ambient_de",
    "filter_contrasts",
    "stack_results",
    "summarize",
    "aggregate_pseudobulk",
    "estimate_ambient_profile",
    "build_interaction_design",
]
