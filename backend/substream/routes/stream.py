"""
Streaming API Routes

============================================================================
ENDPOINTS
============================================================================
GET /stream/stats          Admission pool counts
GET /stream                Start a pipeline and stream its output
GET /stream/{video_id}     Same; video_id is opaque and unused

Query parameters: url (required), subLang (default en), quality
(default best), format (default mp4), cookies (raw cookies.txt content).

Errors before the first byte are JSON. After headers are sent a failure
can only abort the connection, which is what raising from the body does.
============================================================================
"""

import logging
import re
from typing import AsyncIterator, Callable, Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import StreamingResponse
from pydantic import AnyUrl, TypeAdapter, ValidationError
from starlette.background import BackgroundTask

from ..execution.errors import PipelineError
from ..execution.pipeline import Pipeline
from ..jobs.models import Job
from .common import REQUEST_ID_HEADER, error_response, get_request_id
from .models import StatsResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/stream", tags=["stream"])

LANG_PATTERN = re.compile(r"[a-z0-9_-]+", re.IGNORECASE)
_URL_ADAPTER = TypeAdapter(AnyUrl)

DEFAULT_SUB_LANG = "en"
DEFAULT_QUALITY = "best"
DEFAULT_FORMAT = "mp4"


def is_valid_url(url: Optional[str]) -> bool:
    """True for a syntactically well-formed absolute URL."""
    if not url:
        return False
    try:
        _URL_ADAPTER.validate_python(url)
    except ValidationError:
        return False
    return True


def is_valid_lang(lang: str) -> bool:
    return LANG_PATTERN.fullmatch(lang) is not None


async def _stream_body(pipeline: Pipeline, finish: Callable[[], None]) -> AsyncIterator[bytes]:
    job_id = pipeline.job.id
    try:
        async for chunk in pipeline.output:
            yield chunk
    except PipelineError as e:
        logger.error(f"[{job_id}] Streaming error: {e}")
        raise
    finally:
        finish()
        logger.info(f"[{job_id}] Response closed ({pipeline.status.value})")


@router.get("/stats", response_model=StatsResponse)
async def stream_stats(request: Request) -> StatsResponse:
    """Current admission counts: active, queued and max concurrency."""
    return StatsResponse(**request.app.state.admission.stats().as_dict())


@router.get("")
@router.get("/{video_id}")
async def stream_video(
    request: Request,
    video_id: Optional[str] = None,
    url: Optional[str] = Query(None),
    sub_lang: Optional[str] = Query(None, alias="subLang"),
    quality: Optional[str] = Query(None),
    output_format: Optional[str] = Query(None, alias="format"),
    cookies: Optional[str] = Query(None),
    request_id: str = Depends(get_request_id),
):
    """
    Extract, subtitle-burn and stream a remote video.

    Waits for an admission slot, starts the pipeline, then streams ffmpeg's
    output as it is produced. The slot is held until the response ends and
    cleanup runs on every exit path (completion, error, client disconnect).
    """
    sub_lang = sub_lang or DEFAULT_SUB_LANG
    quality = quality or DEFAULT_QUALITY
    output_format = output_format or DEFAULT_FORMAT

    if not is_valid_url(url):
        return error_response(400, "Invalid url parameter", request_id)

    if not is_valid_lang(sub_lang):
        return error_response(400, "Invalid subLang parameter", request_id)

    logger.info(
        f"[{request_id}] Incoming stream request url={url} "
        f"quality={quality} subLang={sub_lang}"
    )

    job = Job(
        id=request_id,
        url=url,
        sub_lang=sub_lang,
        quality=quality,
        format=output_format,
        cookies=cookies,
    )

    admission = request.app.state.admission
    orchestrator = request.app.state.orchestrator

    slot = await admission.acquire()
    try:
        pipeline = await orchestrator.run(job)
    except BaseException:
        slot.release()
        raise

    def finish() -> None:
        pipeline.cleanup()
        slot.release()

    async def finish_after_response() -> None:
        # Async so it runs on the event loop rather than in the threadpool
        finish()

    # On client disconnect the body iterator is abandoned without reaching
    # its finally block; the background task covers that path
    return StreamingResponse(
        _stream_body(pipeline, finish),
        media_type="video/mp4",
        headers={
            "Cache-Control": "no-store",
            REQUEST_ID_HEADER: request_id,
        },
        background=BackgroundTask(finish_after_response),
    )
