"""
Custom exceptions for multi-factor synthesis.

Undefined values (missing alignment data, absent forward returns, IC/ICIR
windows that are not yet full) are not errors: they travel as nulls.
"""


class MultiFactorError(Exception):
    """Base exception for multi-factor synthesis."""

    pass


class ConfigurationError(MultiFactorError):
    """Raised when a multi-factor configuration cannot produce a valid result.

    This includes:
    - Empty factor list or empty/duplicated universe at construction
    - Invalid IC horizon or strategy parameters
    - A synthesis strategy returning a composite count or length that does
      not match the universe / calendar (fatal: the instance stays failed)
    """

    pass


class EmptyUniverseError(ConfigurationError):
    """Raised when the reference security has no trading dates in the query range."""

    pass


class NotFoundError(MultiFactorError, LookupError):
    """Raised when a security or date is not part of a computed multi-factor.

    Local to the failing call; other accessors are unaffected.
    """

    pass


class SchemaVersionError(MultiFactorError):
    """Raised when restoring persisted configuration with an unsupported schema version."""

    pass
