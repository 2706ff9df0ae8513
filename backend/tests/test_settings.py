"""
Settings and logging configuration tests.
"""

import logging

from substream.logging_config import configure_logging
from substream.settings import StreamSettings


class TestSettingsFromEnv:

    def test_defaults(self):
        settings = StreamSettings.from_env({})

        assert settings.port == 3000
        assert settings.max_concurrent == 5
        assert settings.max_queued is None
        assert settings.stream_timeout == 3600.0
        assert settings.subtitle_timeout == 10.0
        assert settings.kill_grace_period == 2.0
        assert settings.shutdown_timeout == 10.0
        assert settings.ytdlp_path == "yt-dlp"
        assert settings.ffmpeg_path == "ffmpeg"
        assert settings.cookies_from_browser is None
        assert settings.log_level == "INFO"

    def test_durations_are_milliseconds(self):
        settings = StreamSettings.from_env({
            "STREAM_TIMEOUT": "90000",
            "SUBTITLE_TIMEOUT": "2500",
            "PROCESS_CLEANUP_GRACE_MS": "500",
            "SHUTDOWN_TIMEOUT_MS": "3000",
        })

        assert settings.stream_timeout == 90.0
        assert settings.subtitle_timeout == 2.5
        assert settings.kill_grace_period == 0.5
        assert settings.shutdown_timeout == 3.0

    def test_overrides(self):
        settings = StreamSettings.from_env({
            "PORT": "8080",
            "HOST": "127.0.0.1",
            "MAX_CONCURRENT_STREAMS": "2",
            "MAX_QUEUED_STREAMS": "10",
            "YTDLP_PATH": "/opt/yt-dlp",
            "FFMPEG_PATH": "/opt/ffmpeg",
            "COOKIES_BROWSER": "firefox",
            "LOG_LEVEL": "debug",
            "LOG_DIR": "",
        })

        assert settings.port == 8080
        assert settings.host == "127.0.0.1"
        assert settings.max_concurrent == 2
        assert settings.max_queued == 10
        assert settings.ytdlp_path == "/opt/yt-dlp"
        assert settings.ffmpeg_path == "/opt/ffmpeg"
        assert settings.cookies_from_browser == "firefox"
        assert settings.log_level == "DEBUG"
        assert settings.log_dir is None

    def test_invalid_numbers_fall_back_to_defaults(self):
        settings = StreamSettings.from_env({
            "PORT": "abc",
            "MAX_CONCURRENT_STREAMS": "0",
            "MAX_QUEUED_STREAMS": "-3",
            "STREAM_TIMEOUT": "soon",
            "SUBTITLE_TIMEOUT": " ",
        })

        assert settings.port == 3000
        assert settings.max_concurrent == 5
        assert settings.max_queued is None
        assert settings.stream_timeout == 3600.0
        assert settings.subtitle_timeout == 10.0


class TestLoggingConfig:

    def test_file_handler_and_idempotent_setup(self, tmp_path):
        root = logging.getLogger()
        before = list(root.handlers)
        level = root.level
        log_dir = tmp_path / "logs"
        try:
            configure_logging("DEBUG", str(log_dir))
            configure_logging("DEBUG", str(log_dir))

            added = [h for h in root.handlers if h not in before]
            assert len(added) == 2
            assert root.level == logging.DEBUG

            logging.getLogger("substream.test").info("hello from test")
            for handler in added:
                handler.flush()
            assert "INFO: hello from test" in (log_dir / "app.log").read_text()
        finally:
            root.setLevel(level)
            for handler in [h for h in root.handlers if h not in before]:
                root.removeHandler(handler)
                handler.close()

    def test_console_only_without_log_dir(self, tmp_path):
        root = logging.getLogger()
        before = list(root.handlers)
        level = root.level
        try:
            configure_logging("WARNING", None)
            added = [h for h in root.handlers if h not in before]
            assert len(added) == 1
            assert not isinstance(added[0], logging.FileHandler)
        finally:
            root.setLevel(level)
            for handler in [h for h in root.handlers if h not in before]:
                root.removeHandler(handler)
                handler.close()
