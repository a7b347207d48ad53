"""
Document Job State Machine

Defines the job statuses and the transitions between them.
Every status write in the job store is validated here first.
"""

from enum import Enum
from typing import Final

import structlog

from pipeline.shared.exceptions import InvalidStateTransitionError

log = structlog.get_logger()


class JobStatus(str, Enum):
    """
    Document job status enum.

    Mirrors the Textract job states plus the pipeline-specific
    EXTRACTED resting state between extraction and classification.
    """

    SUBMITTED = "SUBMITTED"
    """Job row created, extraction not started yet."""

    IN_PROGRESS = "IN_PROGRESS"
    """Extraction running (sync call in flight or async Textract job)."""

    EXTRACTED = "EXTRACTED"
    """Extraction results stored, classification pending."""

    SUCCEEDED = "SUCCEEDED"
    """Classification stored."""

    FAILED = "FAILED"
    """A stage failed; see errorMessage."""

    PARTIAL_SUCCESS = "PARTIAL_SUCCESS"
    """Textract returned partial results; stored without classification."""

    @property
    def is_terminal(self) -> bool:
        """Check if this is a terminal state (completedAt is set)."""
        return self in TERMINAL_STATES

    @classmethod
    def from_string(cls, value: str) -> "JobStatus":
        """Convert string to JobStatus enum."""
        try:
            return cls(value.upper())
        except ValueError as e:
            raise ValueError(
                f"Invalid job status: '{value}'. "
                f"Valid values are: {[s.value for s in cls]}"
            ) from e


TERMINAL_STATES: Final[frozenset[JobStatus]] = frozenset({
    JobStatus.SUCCEEDED,
    JobStatus.FAILED,
    JobStatus.PARTIAL_SUCCESS,
})

# Key: current status, Value: set of allowed next statuses
VALID_TRANSITIONS: Final[dict[JobStatus, frozenset[JobStatus]]] = {
    JobStatus.SUBMITTED: frozenset({
        JobStatus.IN_PROGRESS,
        JobStatus.FAILED,
    }),
    JobStatus.IN_PROGRESS: frozenset({
        JobStatus.EXTRACTED,
        JobStatus.SUCCEEDED,
        JobStatus.PARTIAL_SUCCESS,
        JobStatus.FAILED,
    }),
    JobStatus.EXTRACTED: frozenset({
        JobStatus.SUCCEEDED,
        JobStatus.FAILED,
    }),
    JobStatus.SUCCEEDED: frozenset(),  # Terminal
    JobStatus.FAILED: frozenset(),  # Terminal, operator retry only
    JobStatus.PARTIAL_SUCCESS: frozenset(),  # Terminal
}

# Operator-driven retries bypass the terminal lock
OPERATOR_RETRY_TRANSITIONS: Final[dict[JobStatus, frozenset[JobStatus]]] = {
    JobStatus.FAILED: frozenset({JobStatus.SUBMITTED}),
}


def allowed_transitions(
    current_status: JobStatus,
    *,
    operator_retry: bool = False,
) -> frozenset[JobStatus]:
    """Return the statuses reachable from current_status."""
    if operator_retry:
        return OPERATOR_RETRY_TRANSITIONS.get(current_status, frozenset())
    return VALID_TRANSITIONS.get(current_status, frozenset())


def validate_transition(
    current_status: JobStatus | str,
    new_status: JobStatus | str,
    *,
    operator_retry: bool = False,
    raise_on_invalid: bool = True,
) -> bool:
    """
    Validate that a status transition is allowed.

    Args:
        current_status: Current job status
        new_status: Desired next status
        operator_retry: Validate against the operator retry table instead
        raise_on_invalid: If True, raise exception on invalid transition

    Returns:
        True if transition is valid

    Raises:
        InvalidStateTransitionError: If transition is invalid and raise_on_invalid=True
    """
    if isinstance(current_status, str):
        current_status = JobStatus.from_string(current_status)
    if isinstance(new_status, str):
        new_status = JobStatus.from_string(new_status)

    allowed = allowed_transitions(current_status, operator_retry=operator_retry)
    is_valid = new_status in allowed

    if not is_valid and raise_on_invalid:
        log.warning(
            "invalid_state_transition",
            current_status=current_status.value,
            new_status=new_status.value,
            allowed_transitions=sorted(s.value for s in allowed),
            operator_retry=operator_retry,
        )
        raise InvalidStateTransitionError(
            current_status=current_status.value,
            new_status=new_status.value,
            allowed_transitions=sorted(s.value for s in allowed),
        )

    return is_valid
