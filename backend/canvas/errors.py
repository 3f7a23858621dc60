"""Exception taxonomy for canvas operations.

Nothing here is fatal to the process: every failure ends in a visible,
retryable canvas state.
"""


class CanvasError(Exception):
    """Base class for canvas failures."""


class CanvasValidationError(CanvasError):
    """A requested mutation is structurally invalid.

    Raised before anything is changed (incompatible edge kinds, dangling
    edge endpoints, missing required upstream node).
    """


class PersistenceError(CanvasError):
    """A storage read or write failed.

    Attributes:
        operation: Name of the storage operation that failed.
    """

    def __init__(self, operation: str, message: str) -> None:
        super().__init__(f"{operation} failed: {message}")
        self.operation = operation


class GenerationError(CanvasError):
    """The content generation service failed to produce a result."""
