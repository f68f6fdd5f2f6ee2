"""Exceptions raised by the canonicalization services.

Numeric edge cases (empty matrices, zero-magnitude rows, empty clusters) are
never errors; only caller-correctable preconditions and configuration
mistakes raise.
"""


class CanonicalizationError(Exception):
    """Base class for canonicalization failures."""


class MissingMatrixError(CanonicalizationError, ValueError):
    """Raised when a mode is invoked without a matrix it depends on."""

    def __init__(self, mode: str, matrix: str, message: str | None = None):
        self.mode = mode
        self.matrix = matrix
        super().__init__(message or f"{mode} mode requires an {matrix} matrix.")


class InvalidTargetCountError(CanonicalizationError, ValueError):
    """Raised when the requested canonical count cannot be satisfied."""

    def __init__(self, target: int, available: int, message: str | None = None):
        self.target = target
        self.available = available
        super().__init__(
            message
            or (
                f"Cannot request {target} canonical categories with only "
                f"{available} plot points available."
            )
        )


class UnknownModeError(CanonicalizationError, ValueError):
    """Raised when no algorithm is registered for a mode."""

    def __init__(self, mode: str):
        self.mode = mode
        super().__init__(f"No algorithm registered for mode {mode}")


class InvalidParametersError(CanonicalizationError, ValueError):
    """Raised when algorithm parameters fail validation."""

    def __init__(self, mode: str, detail: str):
        self.mode = mode
        self.detail = detail
        super().__init__(f"Invalid parameters for {mode} mode: {detail}")


class PreconditionError(CanonicalizationError, ValueError):
    """Raised when the input data cannot be canonicalized at all."""
