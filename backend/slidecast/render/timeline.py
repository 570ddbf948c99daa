"""Playback time to slideshow state mapping.

Both the interactive preview and the export loop derive what to draw from
these functions only, so a given time always maps to the same image and
caption word regardless of which driver asks.

Image slots use an even split: each image is shown for
``total_duration / image_count`` seconds, which always covers the full audio.
"""

import bisect
import math
from dataclasses import dataclass
from typing import Optional, Sequence

from slidecast.schemas.captions import CaptionWord


@dataclass(frozen=True)
class TimelineConfig:
    """Slideshow timing configuration."""

    total_duration: float  # seconds
    image_count: int

    @property
    def image_duration(self) -> float:
        """Seconds each image is on screen (0 when the timeline is empty)."""
        if self.total_duration <= 0 or self.image_count <= 0:
            return 0.0
        return self.total_duration / self.image_count


@dataclass(frozen=True)
class RenderState:
    """Everything needed to draw one frame."""

    time: float
    image_index: int
    active_word: Optional[CaptionWord] = None

    @property
    def caption_text(self) -> str:
        return self.active_word.word if self.active_word else ""


def image_index_at(t: float, image_count: int, total_duration: float) -> int:
    """Index of the image shown at time ``t``.

    Returns 0 for an empty or zero-length timeline; otherwise the result is
    clamped to ``[0, image_count - 1]``.
    """
    per_image = TimelineConfig(total_duration, image_count).image_duration
    if per_image <= 0:
        return 0
    index = math.floor(t / per_image)
    return max(0, min(image_count - 1, index))


def active_word_at(t: float, words: Sequence[CaptionWord]) -> Optional[CaptionWord]:
    """Caption word active at time ``t``, or None.

    Input may be unordered or overlapping. When several words contain ``t``
    the one that starts earliest wins; equal starts keep input order.
    """
    best = None
    for word in words:
        if word.is_active(t) and (best is None or word.start < best.start):
            best = word
    return best


class CaptionTrack:
    """Interval index over a caption list for large caption sets.

    Answers exactly like ``active_word_at`` over the same words, but only
    scans words whose start is <= t.
    """

    def __init__(self, words: Sequence[CaptionWord]):
        # Stable sort keeps input order among equal starts
        self._words = sorted(words, key=lambda w: w.start)
        self._starts = [w.start for w in self._words]
        self._max_span = max((w.end - w.start for w in self._words), default=0.0)

    def __len__(self) -> int:
        return len(self._words)

    @property
    def words(self) -> list[CaptionWord]:
        return list(self._words)

    def word_at(self, t: float) -> Optional[CaptionWord]:
        hi = bisect.bisect_right(self._starts, t)
        # No word starting before t - max_span can still contain t
        lo = bisect.bisect_left(self._starts, t - self._max_span - 1e-9)
        for word in self._words[lo:hi]:
            if word.is_active(t):
                return word
        return None


def compute_render_state(
    t: float,
    timeline: TimelineConfig,
    words: Sequence[CaptionWord] | CaptionTrack,
) -> RenderState:
    """Build the RenderState for time ``t``."""
    if isinstance(words, CaptionTrack):
        word = words.word_at(t)
    else:
        word = active_word_at(t, words)
    return RenderState(
        time=t,
        image_index=image_index_at(t, timeline.image_count, timeline.total_duration),
        active_word=word,
    )
