"""
State transition validation for jobs.

Lifecycle: INITIALIZING → EXTRACTING → TRANSCODING → STREAMING → terminal
Any non-terminal state may end in FAILED, TIMED_OUT or CANCELLED.

INVARIANT: Terminal states are immutable. A pipeline that already failed
must never be reported as completed because a late exit event arrived.
"""

from typing import FrozenSet, Set, Tuple
from .models import Job, JobStatus
from .errors import InvalidStateTransitionError


TERMINAL_JOB_STATES: FrozenSet[JobStatus] = frozenset({
    JobStatus.COMPLETED,
    JobStatus.FAILED,
    JobStatus.TIMED_OUT,
    JobStatus.CANCELLED,
})

_ACTIVE_JOB_STATES: Tuple[JobStatus, ...] = (
    JobStatus.INITIALIZING,
    JobStatus.EXTRACTING,
    JobStatus.TRANSCODING,
    JobStatus.STREAMING,
)

_JOB_TRANSITIONS: Set[Tuple[JobStatus, JobStatus]] = {
    (JobStatus.INITIALIZING, JobStatus.EXTRACTING),
    (JobStatus.EXTRACTING, JobStatus.TRANSCODING),
    (JobStatus.TRANSCODING, JobStatus.STREAMING),
    (JobStatus.STREAMING, JobStatus.COMPLETED),
}

# Failure, timeout and cancellation can interrupt any active stage
for _status in _ACTIVE_JOB_STATES:
    _JOB_TRANSITIONS.add((_status, JobStatus.FAILED))
    _JOB_TRANSITIONS.add((_status, JobStatus.TIMED_OUT))
    _JOB_TRANSITIONS.add((_status, JobStatus.CANCELLED))


def is_job_terminal(status: JobStatus) -> bool:
    """Check if a job status is terminal (immutable)."""
    return status in TERMINAL_JOB_STATES


def can_transition_job(from_status: JobStatus, to_status: JobStatus) -> bool:
    """
    Check if a job state transition is legal.

    Staying in the same state is always allowed.
    """
    if from_status == to_status:
        return True

    if is_job_terminal(from_status):
        return False

    return (from_status, to_status) in _JOB_TRANSITIONS


def transition_job(job: Job, to_status: JobStatus) -> None:
    """
    Move a job to a new status, raising if the transition is illegal.

    Raises:
        InvalidStateTransitionError: If the transition is not allowed
    """
    if not can_transition_job(job.status, to_status):
        raise InvalidStateTransitionError(job.id, job.status.value, to_status.value)
    job.status = to_status
