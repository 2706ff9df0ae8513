"""
Per-job cookie files for yt-dlp.

Each spawning component writes its own copy and removes it in its own
cleanup; cookie files are never shared between jobs or processes.
"""

import logging
import shutil
import tempfile
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

COOKIE_FILENAME = "cookies.txt"


class CookieFile:
    """
    A temporary cookies.txt inside its own private directory.

    remove() is idempotent.
    """

    def __init__(self, directory: Path):
        self.directory = directory
        self.path = directory / COOKIE_FILENAME
        self._removed = False

    @classmethod
    def create(cls, cookies: Optional[str], temp_root: Optional[str] = None) -> Optional["CookieFile"]:
        """
        Write cookies to a fresh temp directory.

        Returns:
            The CookieFile, or None when no cookies were supplied
        """
        if not cookies:
            return None
        directory = Path(tempfile.mkdtemp(prefix="cookies-", dir=temp_root))
        cookie_file = cls(directory)
        try:
            cookie_file.path.write_text(cookies, encoding="utf-8")
            cookie_file.path.chmod(0o600)
        except OSError:
            cookie_file.remove()
            raise
        return cookie_file

    @property
    def removed(self) -> bool:
        return self._removed

    def remove(self) -> None:
        if self._removed:
            return
        self._removed = True
        shutil.rmtree(self.directory, ignore_errors=True)
        logger.debug(f"Removed cookie directory {self.directory}")


def cookie_args(cookie_file: Optional[CookieFile], browser: Optional[str]) -> list[str]:
    """yt-dlp arguments selecting the cookie source."""
    if cookie_file is not None:
        return ["--cookies", str(cookie_file.path)]
    if browser:
        return ["--cookies-from-browser", browser]
    return []
