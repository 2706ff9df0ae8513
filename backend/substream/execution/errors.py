"""
Pipeline error taxonomy.

Every failure of a running pipeline surfaces to its caller as exactly one
PipelineError. Subtitle fetch problems never appear here: they degrade to
"no subtitles" inside the fetcher.
"""

from typing import Optional


class PipelineError(Exception):
    """
    Base exception for pipeline failures.

    Carries the job id so the HTTP layer can echo the correlation id.
    """

    def __init__(self, job_id: str, message: str):
        self.job_id = job_id
        super().__init__(message)


class SpawnError(PipelineError):
    """An external tool could not be launched (missing binary, permissions)."""

    def __init__(self, job_id: str, tool: str, reason: str):
        self.tool = tool
        self.reason = reason
        super().__init__(job_id, f"Failed to spawn {tool}: {reason}")


class ProcessExitError(PipelineError):
    """An external tool exited with a nonzero code."""

    def __init__(self, job_id: str, tool: str, returncode: Optional[int], stderr: str = ""):
        self.tool = tool
        self.returncode = returncode
        self.stderr = stderr
        message = f"{tool} exited with code {returncode}"
        if stderr:
            message = f"{message}: {stderr}"
        super().__init__(job_id, message)


class StreamError(PipelineError):
    """I/O failure while moving bytes between stages."""
    pass


class PipelineTimeoutError(PipelineError):
    """The whole-pipeline deadline elapsed."""

    def __init__(self, job_id: str, timeout: float):
        self.timeout = timeout
        super().__init__(job_id, f"Stream timed out after {timeout:g}s")


class PipelineCancelledError(PipelineError):
    """
    The pipeline was cleaned up before it finished starting.

    Only raised from PipelineOrchestrator.run(); never reported to clients.
    """
    pass


class AdmissionRejectedError(Exception):
    """The admission queue is at its configured limit."""

    def __init__(self, queued: int, limit: int):
        self.queued = queued
        self.limit = limit
        super().__init__(f"Too many queued streams ({queued}/{limit})")
