"""
Service settings.

All tunables are read once from the environment by StreamSettings.from_env()
and passed explicitly to create_app(). Nothing reads os.environ after that.

Durations are stored in seconds. Environment variables carrying durations
are expressed in milliseconds for compatibility with existing deployments.
"""

import os
from dataclasses import dataclass
from typing import Mapping, Optional


def _int_env(environ: Mapping[str, str], name: str, default: Optional[int]) -> Optional[int]:
    """Parse a positive integer env var, falling back to default when unset or invalid."""
    raw = environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw.strip())
    except ValueError:
        return default
    return value if value > 0 else default


def _ms_env(environ: Mapping[str, str], name: str, default_seconds: float) -> float:
    value = _int_env(environ, name, None)
    if value is None:
        return default_seconds
    return value / 1000.0


@dataclass(frozen=True)
class StreamSettings:
    """
    Configuration for the streaming service.

    max_queued=None leaves the admission queue unbounded.
    cookies_from_browser is only used when the request carries no cookies.
    """

    host: str = "0.0.0.0"
    port: int = 3000

    ytdlp_path: str = "yt-dlp"
    ffmpeg_path: str = "ffmpeg"
    cookies_from_browser: Optional[str] = None

    max_concurrent: int = 5
    max_queued: Optional[int] = None

    stream_timeout: float = 3600.0
    subtitle_timeout: float = 10.0
    kill_grace_period: float = 2.0
    shutdown_timeout: float = 10.0

    log_level: str = "INFO"
    log_dir: Optional[str] = "logs"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "StreamSettings":
        env = os.environ if environ is None else environ
        return cls(
            host=env.get("HOST", cls.host),
            port=_int_env(env, "PORT", cls.port),
            ytdlp_path=env.get("YTDLP_PATH") or cls.ytdlp_path,
            ffmpeg_path=env.get("FFMPEG_PATH") or cls.ffmpeg_path,
            cookies_from_browser=env.get("COOKIES_BROWSER") or None,
            max_concurrent=_int_env(env, "MAX_CONCURRENT_STREAMS", cls.max_concurrent),
            max_queued=_int_env(env, "MAX_QUEUED_STREAMS", None),
            stream_timeout=_ms_env(env, "STREAM_TIMEOUT", cls.stream_timeout),
            subtitle_timeout=_ms_env(env, "SUBTITLE_TIMEOUT", cls.subtitle_timeout),
            kill_grace_period=_ms_env(env, "PROCESS_CLEANUP_GRACE_MS", cls.kill_grace_period),
            shutdown_timeout=_ms_env(env, "SHUTDOWN_TIMEOUT_MS", cls.shutdown_timeout),
            log_level=(env.get("LOG_LEVEL") or cls.log_level).upper(),
            log_dir=env.get("LOG_DIR", cls.log_dir) or None,
        )
