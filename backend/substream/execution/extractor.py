"""
yt-dlp extraction process.

Spawns yt-dlp writing the selected media to stdout ("-o -").
The caller reads stdout; stderr is drained into a tail buffer.
"""

import asyncio
import logging
from typing import Optional

from ..jobs.models import Job
from .cookies import CookieFile, cookie_args
from .errors import SpawnError
from .stderr import StderrTail
from .supervisor import ManagedProcess, ProcessSupervisor

logger = logging.getLogger(__name__)

EXTRACTOR_NAME = "yt-dlp"


def build_extract_command(
    ytdlp_path: str,
    job: Job,
    cookie_file: Optional[CookieFile] = None,
    cookies_from_browser: Optional[str] = None,
) -> list[str]:
    """Build the yt-dlp command line streaming media bytes to stdout."""
    cmd = [ytdlp_path]
    cmd.extend(cookie_args(cookie_file, cookies_from_browser))
    if job.format:
        cmd.extend(["-S", f"ext:{job.format}"])
    cmd.extend([
        "--no-playlist",
        "-f", job.quality,
        "-o", "-",
        job.url,
    ])
    return cmd


class Extractor:
    """
    A running yt-dlp process and the temp resources it owns.

    cleanup() removes the cookie file and kills the process if still alive.
    """

    def __init__(self, managed: ManagedProcess, cookie_file: Optional[CookieFile], stderr: StderrTail):
        self.managed = managed
        self.cookie_file = cookie_file
        self.stderr = stderr

    @property
    def stdout(self) -> asyncio.StreamReader:
        return self.managed.process.stdout

    def cleanup(self) -> None:
        if self.cookie_file is not None:
            self.cookie_file.remove()
        if self.managed.alive:
            self.managed.kill()


async def spawn_extractor(
    job: Job,
    supervisor: ProcessSupervisor,
    ytdlp_path: str,
    cookies_from_browser: Optional[str] = None,
    temp_root: Optional[str] = None,
) -> Extractor:
    """
    Start yt-dlp for a job and register it with the supervisor.

    Raises:
        SpawnError: If yt-dlp cannot be launched
    """
    cookie_file = CookieFile.create(job.cookies, temp_root)
    cmd = build_extract_command(ytdlp_path, job, cookie_file, cookies_from_browser)

    logger.info(f"[{job.id}] Starting yt-dlp with args: {' '.join(cmd[1:])}")

    try:
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        if cookie_file is not None:
            cookie_file.remove()
        logger.error(f"[{job.id}] yt-dlp spawn error: {e}")
        raise SpawnError(job.id, EXTRACTOR_NAME, str(e)) from e

    managed = supervisor.register(process, EXTRACTOR_NAME, job.id)
    if managed is None:
        # Spawned without a pid; still own the handle so cleanup can act on it
        managed = ManagedProcess(process=process, name=EXTRACTOR_NAME, job_id=job.id)

    logger.info(f"[{job.id}] yt-dlp started, PID {process.pid}")
    return Extractor(managed, cookie_file, StderrTail(process.stderr))
