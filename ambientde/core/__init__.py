"""Core filtering subpackage."""

from ambientde.core.ambient_filter import filter_ambient_de, filter_contrasts, stack_results
from ambientde.core.errors import AmbientDEError, InputMismatch, InvalidRange
from ambientde.core.tables import as_test_table, id_scheme, validate_test_table
from ambientde.core.types import (
    AmbientFilterResult,
    ContrastPair,
    FilterConfig,
    FilteredResult,
)

__all__ = [
    "AmbientDEError",
    "InputMismatch",
    "InvalidRange",
    "ContrastPair",
    "FilteredResult",
    "FilterConfig",
    "AmbientFilterResult",
    "as_test_table",
    "validate_test_table",
    "id_scheme",
    "filter_ambient_de",
    "filter_contrasts",
    "stack_results",
]
