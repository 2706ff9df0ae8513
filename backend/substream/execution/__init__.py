"""
Pipeline execution: admission control, process supervision, subtitle
fetching and the yt-dlp → ffmpeg streaming chain.
"""

from .errors import (
    PipelineError,
    SpawnError,
    ProcessExitError,
    StreamError,
    PipelineTimeoutError,
    PipelineCancelledError,
    AdmissionRejectedError,
)
from .admission import AdmissionController, AdmissionSlot, AdmissionStats
from .supervisor import ManagedProcess, ProcessSupervisor
from .subtitles import SubtitleFetcher, SubtitleResult
from .pipeline import Pipeline, PipelineOrchestrator

__all__ = [
    # Errors
    "PipelineError",
    "SpawnError",
    "ProcessExitError",
    "StreamError",
    "PipelineTimeoutError",
    "PipelineCancelledError",
    "AdmissionRejectedError",
    # Admission
    "AdmissionController",
    "AdmissionSlot",
    "AdmissionStats",
    # Processes
    "ManagedProcess",
    "ProcessSupervisor",
    # Subtitles
    "SubtitleFetcher",
    "SubtitleResult",
    # Pipeline
    "Pipeline",
    "PipelineOrchestrator",
]
