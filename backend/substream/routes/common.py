"""
Helpers shared by the routers.
"""

import uuid
from typing import Optional

from fastapi import Request
from fastapi.responses import JSONResponse

from .models import ErrorResponse

REQUEST_ID_HEADER = "X-Request-Id"


def get_request_id(request: Request) -> str:
    """
    Correlation id for the request.

    Reuses an incoming X-Request-Id header, otherwise generates a uuid4.
    Stored on request.state so exception handlers can echo it.
    """
    existing = getattr(request.state, "request_id", None)
    if existing:
        return existing
    request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
    request.state.request_id = request_id
    return request_id


def error_response(status_code: int, message: str, request_id: Optional[str]) -> JSONResponse:
    headers = {REQUEST_ID_HEADER: request_id} if request_id else None
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=message, request_id=request_id).model_dump(by_alias=True),
        headers=headers,
    )
