"""
Substream service: application factory and entry point.
"""

import argparse
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request

from .execution.admission import AdmissionController
from .execution.errors import AdmissionRejectedError, PipelineError
from .execution.pipeline import PipelineOrchestrator
from .execution.subtitles import SubtitleFetcher
from .execution.supervisor import ProcessSupervisor
from .logging_config import configure_logging
from .routes import health, stream
from .routes.common import REQUEST_ID_HEADER, error_response, get_request_id
from .settings import StreamSettings

logger = logging.getLogger(__name__)


async def shutdown_processes(supervisor: ProcessSupervisor) -> bool:
    """
    Stop every child process still running.

    Returns:
        True if all of them exited within the grace period (plus a margin)
    """
    signalled = supervisor.terminate_all()
    if not signalled:
        return True
    logger.warning(f"Terminating {len(signalled)} child process(es)")
    closed = await supervisor.wait_closed(signalled, timeout=supervisor.grace_period + 1.0)
    if not closed:
        logger.error("Child processes still running after forced termination")
    return closed


async def pipeline_error_handler(request: Request, exc: PipelineError):
    logger.error(f"[{exc.job_id}] Failed to start streaming: {exc}")
    return error_response(500, str(exc), exc.job_id)


async def admission_rejected_handler(request: Request, exc: AdmissionRejectedError):
    request_id = getattr(request.state, "request_id", None)
    logger.warning(f"[{request_id}] {exc}")
    return error_response(503, str(exc), request_id)


def create_app(settings: Optional[StreamSettings] = None) -> FastAPI:
    """
    Build the FastAPI app with its own supervisor, admission pool and orchestrator.

    Every call returns an independent service instance.
    """
    settings = settings or StreamSettings.from_env()

    supervisor = ProcessSupervisor(grace_period=settings.kill_grace_period)
    fetcher = SubtitleFetcher(
        supervisor,
        ytdlp_path=settings.ytdlp_path,
        timeout=settings.subtitle_timeout,
        cookies_from_browser=settings.cookies_from_browser,
    )
    orchestrator = PipelineOrchestrator(
        supervisor,
        fetcher,
        ytdlp_path=settings.ytdlp_path,
        ffmpeg_path=settings.ffmpeg_path,
        stream_timeout=settings.stream_timeout,
        cookies_from_browser=settings.cookies_from_browser,
    )
    admission = AdmissionController(
        max_concurrent=settings.max_concurrent,
        max_queued=settings.max_queued,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            f"Service ready: max {settings.max_concurrent} concurrent streams, "
            f"stream timeout {settings.stream_timeout:g}s"
        )
        yield
        logger.warning("Shutting down gracefully...")
        await shutdown_processes(app.state.supervisor)
        logger.info("Server closed")

    app = FastAPI(title="Substream", version="0.1.0", lifespan=lifespan)

    app.state.settings = settings
    app.state.supervisor = supervisor
    app.state.fetcher = fetcher
    app.state.orchestrator = orchestrator
    app.state.admission = admission

    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next):
        request_id = get_request_id(request)
        # Path only: the query string may carry cookies
        logger.info(f"[{request_id}] {request.method} {request.url.path}")
        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response

    app.add_exception_handler(PipelineError, pipeline_error_handler)
    app.add_exception_handler(AdmissionRejectedError, admission_rejected_handler)

    app.include_router(health.router)
    app.include_router(stream.router)

    @app.get("/")
    async def root():
        return {"service": "substream", "status": "running"}

    return app


app = create_app()


def main(argv: Optional[list[str]] = None) -> None:
    """Run the service under uvicorn."""
    import uvicorn

    settings = StreamSettings.from_env()

    parser = argparse.ArgumentParser(description="Substream streaming service")
    parser.add_argument("--host", default=settings.host, help="Bind address")
    parser.add_argument("--port", type=int, default=settings.port, help="Listen port")
    args = parser.parse_args(argv)

    configure_logging(settings.log_level, settings.log_dir)
    logger.info(f"Server listening on {args.host}:{args.port}")

    # uvicorn owns SIGINT/SIGTERM: it stops accepting connections, waits up
    # to timeout_graceful_shutdown for open streams, then runs the lifespan
    # shutdown that terminates child processes
    uvicorn.run(
        create_app(settings),
        host=args.host,
        port=args.port,
        log_config=None,
        timeout_graceful_shutdown=max(1, round(settings.shutdown_timeout)),
    )


if __name__ == "__main__":
    main()
