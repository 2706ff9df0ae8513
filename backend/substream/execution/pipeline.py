"""
Extract → transcode → stream pipeline.

One Pipeline per job:

    yt-dlp stdout ──pump──▶ ffmpeg stdin
    ffmpeg stdout ──────────▶ Pipeline.output (pulled by the HTTP response)

Design rules:
- The subtitle fetch runs in parallel with yt-dlp and is joined before
  ffmpeg's arguments are built; it can only degrade, never fail the job
- Every stage is pull-driven: a slow client slows ffmpeg, which slows the
  pump, which slows yt-dlp. Nothing buffers more than a pipe's worth
- cleanup() is idempotent and runs on every exit path: completion, failure,
  timeout, client disconnect
- The first failure wins; later errors are logged only
- Failures reach the consumer as an exception from the output iterator,
  never as a clean end of stream
"""

import asyncio
import logging
from datetime import datetime
from typing import AsyncIterator, Optional

from ..jobs.models import Job, JobStatus
from ..jobs.state import is_job_terminal, transition_job
from .errors import (
    PipelineCancelledError,
    PipelineError,
    PipelineTimeoutError,
    ProcessExitError,
    SpawnError,
    StreamError,
)
from .extractor import EXTRACTOR_NAME, Extractor, spawn_extractor
from .ffmpeg import TRANSCODER_NAME, build_transcode_command
from .stderr import StderrTail
from .subtitles import SubtitleFetcher, SubtitleResult
from .supervisor import ManagedProcess, ProcessSupervisor

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024


class Pipeline:
    """
    Runtime state of one job's process chain.

    Created and started by PipelineOrchestrator.run(). Consumers iterate
    `output` once and must call cleanup() when they stop for any reason;
    calling it again is harmless.
    """

    def __init__(self, job: Job, orchestrator: "PipelineOrchestrator"):
        self.job = job
        self._orchestrator = orchestrator

        self.extractor: Optional[Extractor] = None
        self.transcoder: Optional[ManagedProcess] = None
        self._transcoder_stderr: Optional[StderrTail] = None

        self._subtitle_task: Optional[asyncio.Task] = None
        self._subtitle: Optional[SubtitleResult] = None
        self._tasks: list[asyncio.Task] = []
        self._watchdog: Optional[asyncio.TimerHandle] = None

        self._failure: Optional[PipelineError] = None
        self._cleaned = False
        self.output: Optional[AsyncIterator[bytes]] = None

    @property
    def status(self) -> JobStatus:
        return self.job.status

    @property
    def failure(self) -> Optional[PipelineError]:
        return self._failure

    @property
    def cleaned(self) -> bool:
        return self._cleaned

    @property
    def subtitle_path(self) -> Optional[str]:
        if self._subtitle is None or self._subtitle.path is None:
            return None
        return str(self._subtitle.path)

    # =========================================================================
    # Startup
    # =========================================================================

    async def start(self) -> None:
        """
        Spawn yt-dlp, join the subtitle fetch, spawn ffmpeg and wire them.

        Returns once ffmpeg is running; the output has not been read yet.

        Raises:
            PipelineError: Setup failed; cleanup has already run
        """
        job = self.job
        orchestrator = self._orchestrator
        loop = asyncio.get_running_loop()

        job.started_at = datetime.now()
        self._watchdog = loop.call_later(orchestrator.stream_timeout, self._on_timeout)

        self._subtitle_task = loop.create_task(
            orchestrator.fetcher.fetch(
                job.url,
                job.sub_lang,
                cookies=job.cookies,
                job_id=job.id,
            )
        )

        try:
            self.extractor = await spawn_extractor(
                job,
                orchestrator.supervisor,
                orchestrator.ytdlp_path,
                cookies_from_browser=orchestrator.cookies_from_browser,
                temp_root=orchestrator.temp_root,
            )
            self._check_open()
            self._transition(JobStatus.EXTRACTING)
            self._spawn_task(self._watch_extractor())

            # Does not raise if the fetch task gets cancelled by cleanup()
            await asyncio.wait({self._subtitle_task})
            self._check_open()
            self._subtitle = self._subtitle_outcome()

            await self._spawn_transcoder()
            self._check_open()
            self._transition(JobStatus.TRANSCODING)

            self._spawn_task(self._pump())
            self._spawn_task(self._watch_transcoder())

        except PipelineError as e:
            if not self._cleaned:
                self._fail(e)
            # A process may have been spawned after cleanup already ran
            self._release_resources()
            await self._join_subtitle_task()
            raise
        except asyncio.CancelledError:
            self.cleanup()
            self._release_resources()
            raise

        self.output = self._iter_output()
        logger.info(f"[{job.id}] Pipeline started")

    def _check_open(self) -> None:
        if self._cleaned:
            if self._failure is not None:
                raise self._failure
            raise PipelineCancelledError(self.job.id, "Pipeline was cleaned up during setup")

    def _subtitle_outcome(self) -> SubtitleResult:
        task = self._subtitle_task
        if task is None or task.cancelled():
            return SubtitleResult()
        error = task.exception()
        if error is not None:
            logger.warning(f"[{self.job.id}] Subtitle fetch raised {error!r}; continuing without subtitles")
            return SubtitleResult()
        return task.result()

    async def _join_subtitle_task(self) -> None:
        # Lets the cancelled fetch remove its temp directory before run() returns
        if self._subtitle_task is not None and not self._subtitle_task.done():
            await asyncio.wait({self._subtitle_task})

    async def _spawn_transcoder(self) -> None:
        job = self.job
        orchestrator = self._orchestrator
        cmd = build_transcode_command(orchestrator.ffmpeg_path, self.subtitle_path, job.format)

        logger.info(f"[{job.id}] Spawning ffmpeg with args: {' '.join(cmd[1:])}")

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            logger.error(f"[{job.id}] ffmpeg spawn error: {e}")
            raise SpawnError(job.id, TRANSCODER_NAME, str(e)) from e

        managed = orchestrator.supervisor.register(process, TRANSCODER_NAME, job.id)
        if managed is None:
            managed = ManagedProcess(process=process, name=TRANSCODER_NAME, job_id=job.id)
        self.transcoder = managed
        self._transcoder_stderr = StderrTail(process.stderr)
        logger.info(f"[{job.id}] ffmpeg started, PID {process.pid}")

    def _spawn_task(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.append(task)
        return task

    # =========================================================================
    # Running stages
    # =========================================================================

    async def _pump(self) -> None:
        """Copy yt-dlp stdout into ffmpeg stdin, honouring ffmpeg's read rate."""
        source = self.extractor.stdout
        sink = self.transcoder.process.stdin
        try:
            while True:
                chunk = await source.read(CHUNK_SIZE)
                if not chunk:
                    break
                sink.write(chunk)
                await sink.drain()
        except (BrokenPipeError, ConnectionResetError):
            # ffmpeg stopped reading; its exit code decides the outcome
            logger.debug(f"[{self.job.id}] ffmpeg closed stdin before yt-dlp finished")
        except OSError as e:
            self._fail(StreamError(self.job.id, f"Failed to pipe yt-dlp output into ffmpeg: {e}"))
        finally:
            try:
                sink.close()
            except OSError:
                pass

    async def _watch_extractor(self) -> None:
        managed = self.extractor.managed
        returncode = await managed.process.wait()
        if returncode == 0:
            logger.info(f"[{self.job.id}] yt-dlp completed successfully")
            return
        if managed.killed or self._cleaned:
            return
        stderr = await self.extractor.stderr.wait()
        logger.error(f"[{self.job.id}] yt-dlp exited with code {returncode}: {stderr}")
        self._fail(ProcessExitError(self.job.id, EXTRACTOR_NAME, returncode, stderr))

    async def _watch_transcoder(self) -> None:
        managed = self.transcoder
        returncode = await managed.process.wait()
        if returncode == 0 or managed.killed or self._cleaned:
            return
        stderr = await self._transcoder_stderr.wait()
        logger.error(f"[{self.job.id}] ffmpeg exited with code {returncode}: {stderr}")
        self._fail(ProcessExitError(self.job.id, TRANSCODER_NAME, returncode, stderr))

    def _on_timeout(self) -> None:
        timeout = self._orchestrator.stream_timeout
        logger.error(f"[{self.job.id}] Stream timed out after {timeout:g}s")
        self._fail(PipelineTimeoutError(self.job.id, timeout), JobStatus.TIMED_OUT)

    async def _iter_output(self) -> AsyncIterator[bytes]:
        stdout = self.transcoder.process.stdout
        try:
            self._transition(JobStatus.STREAMING)
            while True:
                try:
                    chunk = await stdout.read(CHUNK_SIZE)
                except OSError as e:
                    self._fail(StreamError(self.job.id, f"Failed to read ffmpeg output: {e}"))
                    break
                if not chunk:
                    break
                yield chunk

            await self._settle()
            if self._failure is not None:
                raise self._failure
        finally:
            self.cleanup()

    async def _settle(self) -> None:
        """
        Decide the outcome once ffmpeg's stdout hit EOF.

        EOF alone is not success: either tool may still report a nonzero exit.
        """
        if self._cleaned:
            return

        returncode = await self.transcoder.process.wait()
        if self._cleaned:
            return
        if returncode != 0:
            stderr = await self._transcoder_stderr.wait()
            self._fail(ProcessExitError(self.job.id, TRANSCODER_NAME, returncode, stderr))
            return

        extractor = self.extractor.managed
        try:
            extractor_code = await asyncio.wait_for(
                extractor.process.wait(),
                self._orchestrator.supervisor.grace_period,
            )
        except asyncio.TimeoutError:
            # ffmpeg finished without needing the rest of the input
            extractor_code = None
        if self._cleaned:
            return
        if extractor_code not in (0, None):
            stderr = await self.extractor.stderr.wait()
            self._fail(ProcessExitError(self.job.id, EXTRACTOR_NAME, extractor_code, stderr))
            return

        self._finish(JobStatus.COMPLETED)
        logger.info(f"[{self.job.id}] Stream completed")

    # =========================================================================
    # Termination
    # =========================================================================

    def _transition(self, status: JobStatus) -> None:
        if is_job_terminal(self.job.status):
            return
        transition_job(self.job, status)

    def _finish(self, status: JobStatus) -> None:
        if is_job_terminal(self.job.status):
            return
        transition_job(self.job, status)
        self.job.completed_at = datetime.now()

    def _fail(self, error: PipelineError, status: JobStatus = JobStatus.FAILED) -> None:
        if self._failure is not None or self._cleaned:
            logger.debug(f"[{self.job.id}] Late error after settle: {error}")
            return
        self._failure = error
        self.job.failure_reason = str(error)
        self._finish(status)
        self.cleanup()

    def cleanup(self) -> None:
        """
        Release everything this pipeline owns. Idempotent.

        Removes the subtitle and cookie temp files and kills any process that
        has not exited yet. A pipeline cleaned up before reaching a terminal
        state is recorded as CANCELLED.
        """
        if self._cleaned:
            return
        self._cleaned = True

        if self._watchdog is not None:
            self._watchdog.cancel()

        self._finish(JobStatus.CANCELLED)
        self._release_resources()
        logger.info(f"[{self.job.id}] Pipeline cleaned up ({self.job.status.value})")

    def _release_resources(self) -> None:
        # Each step is idempotent on its own
        if self._subtitle is not None:
            self._subtitle.cleanup()
        elif self._subtitle_task is not None:
            task = self._subtitle_task
            if not task.done():
                task.cancel()
            elif not task.cancelled() and task.exception() is None:
                task.result().cleanup()

        if self.extractor is not None:
            self.extractor.cleanup()
        if self.transcoder is not None and self.transcoder.alive:
            self.transcoder.kill()

        for task in self._tasks:
            if not task.done() and task is not asyncio.current_task():
                task.cancel()

    async def wait_closed(self, timeout: Optional[float] = None) -> bool:
        """
        Wait until both processes have exited.

        Returns:
            True if they exited within timeout
        """
        waits = [
            managed.process.wait()
            for managed in (self.extractor.managed if self.extractor else None, self.transcoder)
            if managed is not None
        ]
        if not waits:
            return True
        try:
            await asyncio.wait_for(asyncio.gather(*waits), timeout)
        except asyncio.TimeoutError:
            return False
        return True


class PipelineOrchestrator:
    """
    Builds and starts pipelines.

    Holds the shared collaborators (supervisor, subtitle fetcher) and the
    tool configuration; each run() gets its own Pipeline with its own state.
    """

    def __init__(
        self,
        supervisor: ProcessSupervisor,
        fetcher: SubtitleFetcher,
        ytdlp_path: str = "yt-dlp",
        ffmpeg_path: str = "ffmpeg",
        stream_timeout: float = 3600.0,
        cookies_from_browser: Optional[str] = None,
        temp_root: Optional[str] = None,
    ):
        self.supervisor = supervisor
        self.fetcher = fetcher
        self.ytdlp_path = ytdlp_path
        self.ffmpeg_path = ffmpeg_path
        self.stream_timeout = stream_timeout
        self.cookies_from_browser = cookies_from_browser
        self.temp_root = temp_root

    async def run(self, job: Job) -> Pipeline:
        """
        Start a pipeline for job.

        Returns as soon as ffmpeg is running so the caller can start
        forwarding bytes while they are produced.

        Raises:
            PipelineError: If setup fails (cleanup has already run)
        """
        logger.info(
            f"[{job.id}] Preparing pipeline for {job.url} "
            f"quality={job.quality} format={job.format} subLang={job.sub_lang}"
        )
        pipeline = Pipeline(job, self)
        await pipeline.start()
        return pipeline
