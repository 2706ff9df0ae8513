"""
Pytest configuration and fake external tools.

yt-dlp and ffmpeg are replaced by small /bin/sh scripts so tests exercise
real subprocesses, pipes and signals without network access or codecs.
Scripts that wait use `exec` so that killing the script kills the waiter
and its pipes close immediately.
"""

import asyncio
import time
from pathlib import Path
from typing import Callable, Optional

import pytest

from substream.settings import StreamSettings


# =============================================================================
# Script snippets
# =============================================================================

MEDIA_BYTES = b"fake-media-0123456789" * 64

SUBS_OK = (
    "printf 'WEBVTT\\n\\n00:00.000 --> 00:01.000\\nhello\\n' > \"$out.en.vtt\"\n"
    "exit 0"
)
SUBS_NONE = "exit 0"
SUBS_FAIL = "echo 'ERROR: no subtitles for this video' >&2\nexit 1"
SUBS_HANG = "exec sleep 30"

EXTRACT_OK = "printf '%s' \"$FAKE_MEDIA\"\nexit 0"
EXTRACT_FAIL = "printf 'partial'\necho 'ERROR: Unable to download webpage' >&2\nexit 1"
EXTRACT_HANG = "exec sleep 30"

FFMPEG_CAT = "exec cat"
FFMPEG_FAIL = "cat > /dev/null\necho 'pipe:0: Invalid data found when processing input' >&2\nexit 1"
FFMPEG_HANG = "exec sleep 30"


def write_tool(directory: Path, name: str, body: str) -> str:
    """Write an executable /bin/sh script and return its path."""
    path = directory / name
    path.write_text("#!/bin/sh\n" + body + "\n")
    path.chmod(0o755)
    return str(path)


def make_ytdlp(directory: Path, subs: str = SUBS_OK, extract: str = EXTRACT_OK, name: str = "yt-dlp") -> str:
    """
    Fake yt-dlp.

    Every invocation appends its arguments to <name>.log. With --skip-download
    it runs the `subs` snippet ($out is the -o template), otherwise `extract`.
    A --cookies file is copied to <name>.cookies so tests can check its content.
    """
    log = directory / f"{name}.log"
    cookies_copy = directory / f"{name}.cookies"
    body = (
        f"printf '%s\\n' \"$*\" >> '{log}'\n"
        "out=''\n"
        "skip=0\n"
        "while [ $# -gt 0 ]; do\n"
        "  case \"$1\" in\n"
        "    --skip-download) skip=1 ;;\n"
        "    -o) shift; out=\"$1\" ;;\n"
        f"    --cookies) shift; cp \"$1\" '{cookies_copy}' ;;\n"
        "  esac\n"
        "  shift\n"
        "done\n"
        "if [ \"$skip\" = 1 ]; then\n"
        f"{subs}\n"
        "fi\n"
        f"{extract}\n"
    )
    return write_tool(directory, name, body)


def make_ffmpeg(directory: Path, body: str = FFMPEG_CAT, name: str = "ffmpeg") -> str:
    """Fake ffmpeg. Arguments are written one per line to <name>.args."""
    args_file = directory / f"{name}.args"
    return write_tool(directory, name, f"printf '%s\\n' \"$@\" > '{args_file}'\n{body}")


def invocations(directory: Path, name: str = "yt-dlp") -> list[str]:
    log = directory / f"{name}.log"
    if not log.exists():
        return []
    return [line for line in log.read_text().splitlines() if line]


def wait_until(predicate: Callable[[], bool], timeout: float = 5.0, interval: float = 0.02) -> bool:
    """Poll predicate from a synchronous test."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


async def async_wait_until(predicate: Callable[[], bool], timeout: float = 5.0, interval: float = 0.02) -> bool:
    """Poll predicate without blocking the event loop."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while loop.time() < deadline:
        if predicate():
            return True
        await asyncio.sleep(interval)
    return predicate()


def temp_entries(root: Path) -> list[str]:
    """Names of temp dirs created under root by the service."""
    return sorted(p.name for p in root.iterdir() if p.name.startswith(("subs-", "cookies-")))


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture(autouse=True)
def fake_media(monkeypatch):
    """Content printed by the fake extractor."""
    monkeypatch.setenv("FAKE_MEDIA", MEDIA_BYTES.decode())
    return MEDIA_BYTES


@pytest.fixture
def tools_dir(tmp_path) -> Path:
    directory = tmp_path / "bin"
    directory.mkdir()
    return directory


@pytest.fixture
def temp_root(tmp_path, monkeypatch) -> Path:
    """Private TMPDIR so tests can assert that no temp files are left behind."""
    root = tmp_path / "tmp"
    root.mkdir()
    monkeypatch.setenv("TMPDIR", str(root))
    import tempfile
    monkeypatch.setattr(tempfile, "tempdir", str(root))
    return root


@pytest.fixture
def make_settings(tools_dir) -> Callable[..., StreamSettings]:
    def factory(
        subs: str = SUBS_OK,
        extract: str = EXTRACT_OK,
        ffmpeg: str = FFMPEG_CAT,
        ytdlp_path: Optional[str] = None,
        ffmpeg_path: Optional[str] = None,
        **overrides,
    ) -> StreamSettings:
        values = dict(
            ytdlp_path=ytdlp_path or make_ytdlp(tools_dir, subs=subs, extract=extract),
            ffmpeg_path=ffmpeg_path or make_ffmpeg(tools_dir, ffmpeg),
            max_concurrent=2,
            stream_timeout=10.0,
            subtitle_timeout=2.0,
            kill_grace_period=0.5,
            log_dir=None,
        )
        values.update(overrides)
        return StreamSettings(**values)
    return factory


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers", "slow: tests that wait on real subprocess timeouts"
    )
