"""
Best-effort subtitle fetch.

Runs a separate yt-dlp in --skip-download mode writing a VTT file into a
private temp directory. Any problem (spawn failure, nonzero exit, no file,
timeout) degrades to "no subtitles"; the stream itself never fails because
of subtitles.
"""

import asyncio
import logging
import os
import shutil
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

from .cookies import CookieFile, cookie_args
from .supervisor import ProcessSupervisor

logger = logging.getLogger(__name__)

SUBTITLE_BASENAME = "subtitle"
SUBTITLE_FORMAT = "vtt"


def _noop() -> None:
    pass


@dataclass
class SubtitleResult:
    """Outcome of a fetch: a file path (or None) and the cleanup for it."""

    path: Optional[Path] = None
    cleanup: Callable[[], None] = field(default=_noop, repr=False)

    @property
    def found(self) -> bool:
        return self.path is not None


def _remove_dir(directory: Path) -> Callable[[], None]:
    def cleanup() -> None:
        shutil.rmtree(directory, ignore_errors=True)
    return cleanup


def build_subtitle_command(
    ytdlp_path: str,
    url: str,
    language: str,
    output_template: str,
    cookie_file: Optional[CookieFile] = None,
    cookies_from_browser: Optional[str] = None,
) -> list[str]:
    """Build the yt-dlp command line that writes subtitles only."""
    cmd = [ytdlp_path]
    cmd.extend(cookie_args(cookie_file, cookies_from_browser))
    cmd.extend([
        "--no-playlist",
        "--skip-download",
        "--write-subs",
        "--sub-lang", language,
        "--sub-format", SUBTITLE_FORMAT,
        "-o", output_template,
        url,
    ])
    return cmd


def find_subtitle_file(directory: Path) -> Optional[Path]:
    """
    First regular file named subtitle* in directory listing order.

    Listing order is filesystem dependent; with several candidates the
    choice is not guaranteed to be stable across filesystems.
    """
    with os.scandir(directory) as entries:
        for entry in entries:
            if entry.is_file() and entry.name.startswith(SUBTITLE_BASENAME):
                return Path(entry.path)
    return None


class SubtitleFetcher:
    """
    Fetches one subtitle track per call into a fresh temp directory.
    """

    def __init__(
        self,
        supervisor: ProcessSupervisor,
        ytdlp_path: str = "yt-dlp",
        timeout: float = 10.0,
        cookies_from_browser: Optional[str] = None,
        temp_root: Optional[str] = None,
    ):
        self.supervisor = supervisor
        self.ytdlp_path = ytdlp_path
        self.timeout = timeout
        self.cookies_from_browser = cookies_from_browser
        self.temp_root = temp_root

    async def fetch(
        self,
        url: str,
        language: str,
        cookies: Optional[str] = None,
        timeout: Optional[float] = None,
        job_id: Optional[str] = None,
    ) -> SubtitleResult:
        """
        Download subtitles for url in language.

        Never raises for fetch problems. If the calling task is cancelled the
        process is killed and the temp directory removed before re-raising.

        Returns:
            SubtitleResult with the file path, or an empty result on any failure
        """
        tag = job_id or "subtitle"
        timeout = self.timeout if timeout is None else timeout

        temp_dir = Path(tempfile.mkdtemp(prefix="subs-", dir=self.temp_root))
        remove_temp_dir = _remove_dir(temp_dir)
        cookie_file: Optional[CookieFile] = None
        process = None

        try:
            cookie_file = CookieFile.create(cookies, self.temp_root)
            cmd = build_subtitle_command(
                self.ytdlp_path,
                url,
                language,
                str(temp_dir / SUBTITLE_BASENAME),
                cookie_file,
                self.cookies_from_browser,
            )
            logger.info(f"[{tag}] Downloading subtitles with yt-dlp: {' '.join(cmd[1:])}")

            try:
                process = await asyncio.create_subprocess_exec(
                    *cmd,
                    stdin=asyncio.subprocess.DEVNULL,
                    stdout=asyncio.subprocess.DEVNULL,
                    stderr=asyncio.subprocess.PIPE,
                )
            except OSError as e:
                logger.error(f"[{tag}] Failed to spawn yt-dlp for subtitles: {e}")
                remove_temp_dir()
                return SubtitleResult()

            self.supervisor.register(process, "yt-dlp-subs", job_id)

            try:
                _, stderr = await asyncio.wait_for(process.communicate(), timeout)
            except asyncio.TimeoutError:
                logger.warning(
                    f"[{tag}] Subtitle download timed out after {timeout:g}s; "
                    f"continuing without subtitles"
                )
                await self._kill(process)
                remove_temp_dir()
                return SubtitleResult()

            if process.returncode != 0:
                detail = stderr.decode("utf-8", "replace").strip() if stderr else ""
                logger.warning(
                    f"[{tag}] yt-dlp exited with code {process.returncode}; "
                    f"continuing without subtitles" + (f": {detail}" if detail else "")
                )
                remove_temp_dir()
                return SubtitleResult()

            subtitle_path = find_subtitle_file(temp_dir)
            if subtitle_path is None:
                logger.warning(f"[{tag}] No subtitle files found; continuing without subtitles")
                remove_temp_dir()
                return SubtitleResult()

            logger.info(f"[{tag}] Subtitles downloaded to {subtitle_path}")
            return SubtitleResult(path=subtitle_path, cleanup=remove_temp_dir)

        except asyncio.CancelledError:
            # No awaiting here: the supervisor's watcher reaps the process
            if process is not None and process.returncode is None:
                try:
                    process.kill()
                except ProcessLookupError:
                    pass
            remove_temp_dir()
            raise
        except OSError as e:
            logger.error(f"[{tag}] Subtitle fetch failed: {e}; continuing without subtitles")
            if process is not None:
                await self._kill(process)
            remove_temp_dir()
            return SubtitleResult()
        finally:
            if cookie_file is not None:
                cookie_file.remove()

    @staticmethod
    async def _kill(process: asyncio.subprocess.Process) -> None:
        if process.returncode is None:
            try:
                process.kill()
            except ProcessLookupError:
                pass
        await process.wait()
