"""Exceptions raised by the ambient-aware DE filter."""

from __future__ import annotations


class AmbientDEError(ValueError):
    """Base class for malformed DE input."""


class InputMismatch(AmbientDEError):
    """Direct and interaction tables cannot be joined on gene identifiers."""


class InvalidRange(AmbientDEError):
    """A p-value or log-fold-change lies outside its valid domain."""
