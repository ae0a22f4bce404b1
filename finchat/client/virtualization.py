"""Windowed rendering for long transcripts."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
import math

VIRTUALIZATION_THRESHOLD = 60
OVERSCAN = 8
MIN_ROW_HEIGHT = 60.0
INITIAL_ROW_HEIGHT = 140.0
INITIAL_WINDOW = 30


@dataclass(frozen=True)
class VisibleRange:
    start: int
    end: int
    top_spacer: float = 0.0
    bottom_spacer: float = 0.0

    def indices(self) -> range:
        return range(self.start, self.end)


class VirtualWindow:
    """Tracks the mounted index range; recomputation happens at most once per animation frame."""

    def __init__(
        self,
        *,
        threshold: int = VIRTUALIZATION_THRESHOLD,
        overscan: int = OVERSCAN,
        min_row_height: float = MIN_ROW_HEIGHT,
        initial_row_height: float = INITIAL_ROW_HEIGHT,
    ) -> None:
        self.threshold = threshold
        self.overscan = overscan
        self.min_row_height = min_row_height
        self.average_row_height = initial_row_height
        self.length = 0
        self.scroll_top = 0.0
        self.viewport_height = 0.0
        self._measured: dict[int, float] = {}
        self._dirty = False
        self.range = VisibleRange(0, 0)
        self.recompute_count = 0

    @property
    def enabled(self) -> bool:
        return self.length > self.threshold

    @property
    def row_height(self) -> float:
        return max(self.min_row_height, self.average_row_height)

    def capacity(self) -> int:
        """Rows that fit in the viewport, bounded by the list length."""

        if self.viewport_height <= 0:
            return 0
        return min(self.length, math.ceil(self.viewport_height / self.row_height))

    def set_length(self, length: int) -> None:
        was_enabled = self.enabled
        self.length = max(0, length)
        self._measured = {index: height for index, height in self._measured.items() if index < self.length}
        if self.enabled and not was_enabled:
            self.range = self._with_spacers(0, min(self.length, INITIAL_WINDOW))
        elif not self.enabled:
            self.range = VisibleRange(0, self.length)
        else:
            # Keep the mounted window inside the new bounds until the next frame recomputes it.
            end = min(self.range.end, self.length)
            self.range = self._with_spacers(min(self.range.start, max(0, end - 1)), end)
        self._dirty = True

    def on_scroll(self, scroll_top: float) -> None:
        self.scroll_top = max(0.0, scroll_top)
        self._dirty = True

    def on_resize(self, viewport_height: float) -> None:
        self.viewport_height = max(0.0, viewport_height)
        self._dirty = True

    def observe_row_heights(self, heights: Mapping[int, float]) -> None:
        for index, height in heights.items():
            if 0 <= index < self.length and height > 0:
                self._measured[index] = height
        if self._measured:
            self.average_row_height = sum(self._measured.values()) / len(self._measured)
            self._dirty = True

    def on_animation_frame(self) -> VisibleRange:
        if self._dirty:
            self._dirty = False
            self.range = self.compute()
            self.recompute_count += 1
        return self.range

    def compute(self) -> VisibleRange:
        if not self.enabled:
            return VisibleRange(0, self.length)

        row_height = self.row_height
        count = math.ceil(self.viewport_height / row_height) + 2 * self.overscan
        start = max(0, math.floor(self.scroll_top / row_height) - self.overscan)
        # Back-fill when scrolled past the content so the window still covers the viewport.
        start = min(start, max(0, self.length - count))
        end = min(self.length, start + count)
        return self._with_spacers(start, end)

    def _with_spacers(self, start: int, end: int) -> VisibleRange:
        row_height = self.row_height
        return VisibleRange(
            start=start,
            end=end,
            top_spacer=start * row_height,
            bottom_spacer=(self.length - end) * row_height,
        )
