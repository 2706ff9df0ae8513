"""
Job model and lifecycle rules for streaming requests.

Jobs are in-memory only and exist for the lifetime of one pipeline.
"""

from .errors import (
    JobError,
    InvalidStateTransitionError,
)
from .models import (
    JobStatus,
    Job,
)
from .state import (
    TERMINAL_JOB_STATES,
    is_job_terminal,
    can_transition_job,
    transition_job,
)

__all__ = [
    "JobError",
    "InvalidStateTransitionError",
    "JobStatus",
    "Job",
    "TERMINAL_JOB_STATES",
    "is_job_terminal",
    "can_transition_job",
    "transition_job",
]
