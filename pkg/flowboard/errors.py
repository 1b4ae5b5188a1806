"""
Error taxonomy for board and scheduling operations.

Every mutation validates before writing, so a raised error means no state
changed, except for PartialBatchFailure which describes a batch where some
items were written and some were not.
"""
from typing import Dict, List, Optional


class FlowboardError(Exception):
    """Base class for all core errors."""
    pass


class ValidationError(FlowboardError):
    """Malformed input (empty title, unknown recurrence pattern, bad date)."""
    pass


class NotFoundError(FlowboardError):
    """A board, column, task or habit id does not exist (stale id).

    Callers should re-fetch authoritative order before retrying.
    """

    def __init__(self, kind: str, item_id: str):
        self.kind = kind
        self.item_id = item_id
        super().__init__(f"{kind} '{item_id}' not found")


class ConstraintError(FlowboardError):
    """Operation would violate a structural rule (e.g. delete non-empty column)."""
    pass


class ConflictError(FlowboardError):
    """An order array changed since the caller read it (version mismatch)."""

    def __init__(self, item_id: str, expected: int, actual: int):
        self.item_id = item_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Order of '{item_id}' is at version {actual}, expected {expected}. "
            "Re-fetch and retry."
        )


class StoreError(FlowboardError):
    """The persistence layer failed to apply a write."""
    pass


class PartialBatchFailure(FlowboardError):
    """Some items of a best-effort batch failed; the rest were applied."""

    def __init__(
        self,
        succeeded: List[str],
        failed: List[str],
        errors: Optional[Dict[str, str]] = None,
    ):
        self.succeeded = list(succeeded)
        self.failed = list(failed)
        self.errors = dict(errors or {})
        super().__init__(
            f"{len(self.failed)} of {len(self.succeeded) + len(self.failed)} items failed"
        )
