"""
FFmpeg transcoder command building.

The transcoder reads media on stdin, optionally burns a subtitle file into
the video and writes a fragmented container to stdout so it can be streamed
before encoding finishes.
"""

from typing import Optional

TRANSCODER_NAME = "ffmpeg"

# Fragmented MP4 so the container is playable while still being written
VIDEO_ARGS = ["-c:v", "libx264", "-preset", "medium", "-crf", "23"]
AUDIO_ARGS = ["-c:a", "aac", "-b:a", "128k"]
CONTAINER_ARGS = ["-movflags", "frag_keyframe+empty_moov"]


def escape_subtitle_path(subtitle_path: str) -> str:
    """
    Escape a path for use inside ffmpeg's subtitles filter argument.

    Backslash first, otherwise the escapes added for the other characters
    would be doubled.
    """
    return (
        subtitle_path
        .replace("\\", "\\\\")
        .replace(":", "\\:")
        .replace("'", "\\'")
        .replace(",", "\\,")
    )


def build_transcode_command(
    ffmpeg_path: str,
    subtitle_path: Optional[str] = None,
    output_format: Optional[str] = "mp4",
) -> list[str]:
    """Build the ffmpeg command line: stdin in, stdout out."""
    cmd = [
        ffmpeg_path,
        "-y",
        "-hide_banner",
        "-loglevel", "error",
        "-i", "pipe:0",
    ]

    if subtitle_path:
        cmd.extend(["-vf", f"subtitles='{escape_subtitle_path(subtitle_path)}'"])

    cmd.extend(VIDEO_ARGS)
    cmd.extend(AUDIO_ARGS)
    cmd.extend(CONTAINER_ARGS)
    cmd.extend(["-f", output_format or "mp4", "pipe:1"])
    return cmd
