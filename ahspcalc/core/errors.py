"""Error taxonomy for the pricing core.

Callers branch on these types: a ConflictError from a create is the signal
to re-read (a racing writer already produced the row).
"""

from __future__ import annotations


class AHSPError(Exception):
    """Base class for every error raised by the pricing core."""


class ValidationError(AHSPError, ValueError):
    """Malformed or out-of-range input. Raised before any write."""


class NotFoundError(AHSPError, LookupError):
    """Missing item, master item, recipe, category or component."""


class ConflictError(AHSPError):
    """Unique-key collision on create, or delete blocked by live references."""


class ComputationInvariantError(AHSPError, RuntimeError):
    """Internal inconsistency discovered while deriving recipe totals."""


class ImportTimeoutError(AHSPError, TimeoutError):
    """The bulk import transaction exceeded its time budget and was rolled back."""
