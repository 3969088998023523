"""Exception types raised by the refinement core and its collaborators."""


class RefinerError(Exception):
    """Base class for all novel_refiner errors."""


class AssessmentError(RefinerError):
    """A weakness assessment could not be produced."""


class UnsupportedCategory(AssessmentError):
    """The assessor has no scorer for the requested category."""

    def __init__(self, category):
        super().__init__(f"No assessor available for category '{category}'")
        self.category = category


class PlanningError(RefinerError):
    """A strategy planner failed (as opposed to returning no strategy)."""


class ResourceExceeded(RefinerError):
    """A document view is larger than a size-constrained collaborator accepts.

    Raised explicitly by budget-aware boundaries so callers never have to
    guess from an error message whether a context limit was hit.
    """

    def __init__(self, estimated_tokens: int, limit: int, message: str = ""):
        super().__init__(
            message
            or f"Context too large: {estimated_tokens:,} tokens exceeds limit of {limit:,}"
        )
        self.estimated_tokens = estimated_tokens
        self.limit = limit


class OptimizationCancelled(RefinerError):
    """The caller cancelled a running optimization."""
