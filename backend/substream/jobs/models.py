"""
Job data model.

A Job is one streaming request: which resource to extract, how to encode it,
and where it is in its lifecycle. Jobs live only as long as their pipeline;
nothing is persisted.

State transitions are validated externally (see state.py).
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field


class JobStatus(str, Enum):
    """
    Pipeline lifecycle status.

    EXTRACTING covers both the extractor process and the parallel subtitle fetch.
    """

    INITIALIZING = "initializing"  # Admitted, nothing spawned yet
    EXTRACTING = "extracting"  # yt-dlp running, subtitle fetch in flight
    TRANSCODING = "transcoding"  # ffmpeg spawned and wired to yt-dlp
    STREAMING = "streaming"  # Output is being consumed
    COMPLETED = "completed"  # Output fully delivered, both tools exited 0
    FAILED = "failed"  # Spawn failure, nonzero exit or stream error
    TIMED_OUT = "timed_out"  # Pipeline watchdog fired
    CANCELLED = "cancelled"  # Consumer went away before completion


class Job(BaseModel):
    """
    One extract → transcode → stream request.

    cookies holds raw Netscape cookie file contents supplied by the caller.
    It is excluded from repr so it never ends up in logs.
    """

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    # Identity
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))

    # Request
    url: str
    sub_lang: str = "en"
    quality: str = "best"
    format: str = "mp4"
    cookies: Optional[str] = Field(default=None, repr=False)

    # State
    status: JobStatus = JobStatus.INITIALIZING
    failure_reason: Optional[str] = None

    # Timestamps
    created_at: datetime = Field(default_factory=datetime.now)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
