"""Encoder capability probing and codec selection.

The export container/codec pairing is chosen from the encoders the local
ffmpeg build reports. Selection is a pure function of that set: the first
profile in ``CODEC_PROFILES`` whose video and audio encoders are both present.
"""

import logging
import subprocess
from dataclasses import dataclass
from typing import Iterable, Optional

from slidecast.config import Settings, get_settings
from slidecast.exceptions import EncoderError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CodecProfile:
    """A container plus video/audio encoder pairing."""

    name: str
    video_codec: str
    audio_codec: str
    container: str  # ffmpeg muxer name
    extension: str
    mime_type: str

    def video_args(self, settings: Settings) -> list[str]:
        """Encoder options for the video stream."""
        if self.video_codec == "libx264":
            return [
                "-preset", settings.export_preset,
                "-crf", str(settings.export_crf),
                "-pix_fmt", "yuv420p",
            ]
        if self.video_codec in ("libvpx-vp9", "libvpx"):
            return [
                "-deadline", "realtime",
                "-cpu-used", "8",
                "-crf", str(settings.export_crf + 8),
                "-b:v", "2M",
                "-pix_fmt", "yuv420p",
            ]
        return ["-q:v", "5", "-pix_fmt", "yuv420p"]

    def muxer_args(self) -> list[str]:
        """Options that make the container streamable to a pipe."""
        if self.container == "mp4":
            return ["-movflags", "frag_keyframe+empty_moov+default_base_moof", "-f", "mp4"]
        return ["-f", self.container]


# Preference order: widest playback compatibility first
CODEC_PROFILES: tuple[CodecProfile, ...] = (
    CodecProfile("h264-aac", "libx264", "aac", "mp4", "mp4", "video/mp4"),
    CodecProfile("vp9-opus", "libvpx-vp9", "libopus", "webm", "webm", "video/webm"),
    CodecProfile("vp8-opus", "libvpx", "libopus", "webm", "webm", "video/webm"),
    CodecProfile("mpeg4-aac", "mpeg4", "aac", "mp4", "mp4", "video/mp4"),
)


def parse_encoder_list(output: str) -> set[str]:
    """Parse the names out of ``ffmpeg -encoders`` output."""
    names: set[str] = set()
    in_table = False
    for line in output.splitlines():
        stripped = line.strip()
        if not in_table:
            if stripped.startswith("------"):
                in_table = True
            continue
        parts = stripped.split()
        if len(parts) >= 2:
            names.add(parts[1])
    return names


def probe_encoders(ffmpeg_path: Optional[str] = None) -> set[str]:
    """Ask ffmpeg which encoders it supports.

    Raises:
        EncoderError: If ffmpeg cannot be run
    """
    ffmpeg_path = ffmpeg_path or get_settings().ffmpeg_path
    try:
        result = subprocess.run(
            [ffmpeg_path, "-hide_banner", "-encoders"],
            capture_output=True,
            text=True,
            timeout=30,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        raise EncoderError(f"Failed to run {ffmpeg_path}: {e}") from e
    if result.returncode != 0:
        raise EncoderError(f"ffmpeg encoder probe failed: {result.stderr.strip()}")
    return parse_encoder_list(result.stdout)


def select_codec_profile(
    available: Iterable[str],
    profiles: tuple[CodecProfile, ...] = CODEC_PROFILES,
) -> CodecProfile:
    """Pick the first profile whose encoders are all available.

    Raises:
        EncoderError: If no profile is supported
    """
    available = set(available)
    for profile in profiles:
        if profile.video_codec in available and profile.audio_codec in available:
            logger.info(f"[ENCODER] Selected codec profile: {profile.name}")
            return profile
    raise EncoderError(
        "No supported video/audio encoder pairing found "
        f"(tried: {', '.join(p.name for p in profiles)})"
    )
