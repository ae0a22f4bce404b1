"""Scroll stickiness: keep the newest content pinned while streaming without fighting the user."""

from __future__ import annotations

from typing import Protocol

from finchat.client.message_store import ChatStatus

AT_BOTTOM_THRESHOLD_PX = 5.0
TOUCH_INTENT_THRESHOLD_PX = 10.0


class ScrollContainer(Protocol):
    """Host scroll viewport (browser element bridge, TUI pane, test double)."""

    @property
    def scroll_top(self) -> float:
        """Current scroll offset from the top of the content."""

    @property
    def scroll_height(self) -> float:
        """Total content height."""

    @property
    def client_height(self) -> float:
        """Visible viewport height."""

    def scroll_to_end(self) -> None:
        """Move the viewport to the maximum scroll offset."""


class ScrollStickiness:
    """Explicit sticky-to-bottom state, mutated only through the named transitions below."""

    def __init__(self, container: ScrollContainer, *, threshold_px: float = AT_BOTTOM_THRESHOLD_PX) -> None:
        self._container = container
        self._threshold_px = threshold_px
        self.sticky_to_bottom = True
        self.user_interacted = False
        self._settle_pending = False
        self._touch_start_y: float | None = None

    def is_at_bottom(self) -> bool:
        container = self._container
        distance = container.scroll_height - container.scroll_top - container.client_height
        return distance <= self._threshold_px

    def _release(self) -> None:
        self.sticky_to_bottom = False
        self.user_interacted = True
        self._settle_pending = False

    def _pin(self) -> None:
        self.sticky_to_bottom = True
        self.user_interacted = False

    def on_wheel(self, delta_y: float) -> None:
        if delta_y < 0:
            self._release()
        elif delta_y > 0:
            self._settle_pending = True

    def on_touch_start(self, client_y: float) -> None:
        self._touch_start_y = client_y

    def on_touch_move(self, client_y: float) -> None:
        if self._touch_start_y is None:
            self._touch_start_y = client_y
            return
        # A finger moving down the screen scrolls the content up.
        delta = client_y - self._touch_start_y
        if delta > TOUCH_INTENT_THRESHOLD_PX:
            self._release()
        elif delta < -TOUCH_INTENT_THRESHOLD_PX:
            self._settle_pending = True

    def on_touch_end(self) -> None:
        self._touch_start_y = None

    def on_scroll(self) -> None:
        """User-driven scroll position change reported by the host."""

        if self.is_at_bottom():
            self._pin()
        elif self.user_interacted:
            self.sticky_to_bottom = False

    def on_scroll_settled(self) -> None:
        if not self._settle_pending:
            return
        self._settle_pending = False
        if self.is_at_bottom():
            self._pin()

    def on_content_mutation(self, status: ChatStatus) -> bool:
        """Follow new content if pinned; returns whether the container was scrolled."""

        if status not in ("submitted", "streaming") or not self.sticky_to_bottom:
            return False
        self._container.scroll_to_end()
        return True

    def on_submit(self) -> None:
        self._pin()
        self._settle_pending = False
        self._container.scroll_to_end()
