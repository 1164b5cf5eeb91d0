"""
Error kinds shared across the memory engine.
"""

from typing import Optional, Sequence, Tuple


class ValidationError(ValueError):
    """Malformed input, rejected before any backend call is issued."""
    pass


class BackendError(Exception):
    """Failure reported by a graph, vector or embedding backend."""
    pass


class PartialWriteError(BackendError):
    """A multi-step interaction write failed after the interaction node was persisted.

    Earlier steps are not rolled back; completed_steps lists what is already durable.
    """

    def __init__(self,
                 interaction_id: str,
                 failed_step: str,
                 completed_steps: Sequence[str],
                 cause: Optional[BaseException] = None):
        self.interaction_id = interaction_id
        self.failed_step = failed_step
        self.completed_steps: Tuple[str, ...] = tuple(completed_steps)
        self.cause = cause
        super().__init__(f'Interaction {interaction_id} partially written: step "{failed_step}" failed '
                         f'after {", ".join(self.completed_steps) or "no steps"}: {cause}')
