"""Media file information utilities using FFprobe."""

import json
import subprocess
from dataclasses import dataclass
from typing import Optional

from slidecast.config import get_settings


def _get_settings():
    """Get settings lazily to avoid import issues in tests."""
    return get_settings()


@dataclass
class AudioInfo:
    """Audio file information."""

    duration: float  # seconds
    codec: str | None = None
    sample_rate: int | None = None
    channels: int | None = None


def _run_ffprobe(file_path: str, *args) -> dict:
    """Run ffprobe and return parsed JSON."""
    settings = _get_settings()
    cmd = [
        settings.ffprobe_path,
        "-v", "quiet",
        "-print_format", "json",
        *args,
        file_path,
    ]

    try:
        result = subprocess.run(cmd, capture_output=True, text=True)
    except FileNotFoundError as e:
        raise RuntimeError(f"ffprobe not found: {settings.ffprobe_path}") from e
    if result.returncode != 0:
        raise RuntimeError(f"ffprobe failed: {result.stderr}")

    try:
        return json.loads(result.stdout)
    except json.JSONDecodeError as e:
        raise RuntimeError(f"Failed to parse ffprobe output: {e}")


def get_audio_info(file_path: str) -> Optional[AudioInfo]:
    """
    Get duration and first audio stream information.

    Returns:
        AudioInfo, or None if the file has no audio stream

    Raises:
        RuntimeError: If ffprobe fails
    """
    data = _run_ffprobe(file_path, "-show_format", "-show_streams", "-select_streams", "a")

    streams = data.get("streams", [])
    if not streams:
        return None

    stream = streams[0]
    duration = data.get("format", {}).get("duration") or stream.get("duration")
    if duration is None:
        raise RuntimeError(f"Duration not found in: {file_path}")

    return AudioInfo(
        duration=float(duration),
        codec=stream.get("codec_name"),
        sample_rate=int(stream.get("sample_rate", 0)) or None,
        channels=stream.get("channels"),
    )
