"""Exceptions raised by the classification pipeline.

Both concrete errors subclass ``ValueError`` so callers that already guard
against bad arguments keep working.
"""


class LulcError(Exception):
    """Base class for pipeline failures."""


class InvalidInputError(LulcError, ValueError):
    """Empty training tables, non-positive sample counts, bad parameters."""


class SchemaMismatchError(LulcError, ValueError):
    """A feature vector or predictor list does not match the table schema."""
