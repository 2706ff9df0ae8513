"""
Substream: stream remote videos through yt-dlp and ffmpeg with
burned-in subtitles.
"""

__version__ = "0.1.0"
