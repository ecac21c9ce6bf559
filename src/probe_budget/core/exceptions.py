"""Exception hierarchy for probe-budget.

Budget exhaustion is never an error: the degradation ladder absorbs it.
The only failure a caller can observe is a structurally invalid input.
"""

__all__ = ["ProbeBudgetError", "InvalidInputError"]


class ProbeBudgetError(Exception):
    """Base exception for all probe-budget errors."""


class InvalidInputError(ProbeBudgetError):
    """Top-level argument is not a node or a sequence of nodes.

    Raised synchronously before any stage runs, so no partial output is
    ever produced for malformed input.

    Attributes:
        path: Location of the offending value (e.g. "$[2].kv[0].v").

    """

    def __init__(self, message: str, path: str = "$") -> None:
        """Initialize with message and offending path.

        Args:
            message: Human-readable description of the problem.
            path: Location of the offending value inside the input.

        """
        super().__init__(f"{message} (at {path})")
        self.path = path
