"""
Response models for the HTTP API.
"""

from typing import Optional
from pydantic import BaseModel, ConfigDict, Field


class StatsResponse(BaseModel):
    """Admission pool counts."""

    model_config = ConfigDict(extra="forbid")

    active: int
    queued: int
    max: int


class HealthResponse(BaseModel):
    """Liveness probe with pool stats."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    status: str = "ok"
    request_id: str = Field(alias="requestId")
    pool: StatsResponse


class ErrorResponse(BaseModel):
    """
    JSON body for every error response sent before streaming starts.

    Serialized with by_alias=True: clients read the id as requestId.
    """

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    error: str
    request_id: Optional[str] = Field(default=None, alias="requestId")
