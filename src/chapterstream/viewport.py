from __future__ import annotations

import asyncio
import inspect
from typing import Awaitable, Callable

from .config import StreamConfig
from .display import Display
from .logging_utils import debug_log
from .models import AFTER, BEFORE, Direction


class Debouncer:
    """Run ``callback`` once ``delay`` seconds after the last trigger."""

    def __init__(self, delay: float, callback: Callable[[], object]) -> None:
        self.delay = delay
        self._callback = callback
        self._handle: asyncio.TimerHandle | None = None
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def trigger(self) -> None:
        self.cancel()
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self.delay, self._fire)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self) -> None:
        self._handle = None
        result = self._callback()
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def flush(self) -> None:
        """Fire now if a call is pending, then wait for every started call to finish."""
        if self._handle is not None:
            self.cancel()
            self._fire()
        if self._tasks:
            await asyncio.gather(*self._tasks)


class ViewportMonitor:
    """
    Watches scroll geometry and asks for more chapters near either edge.

    Nothing loads until the reader has scrolled for real at least once;
    ``loading_enabled`` flips ``enable_delay`` seconds after that first scroll
    and stays on, with an edge check right then. Scrolls made inside
    ``display.programmatic()`` are ignored.
    """

    def __init__(
        self,
        display: Display,
        config: StreamConfig,
        request_load: Callable[[Direction], Awaitable[object]],
        update_url: Callable[[], object],
    ) -> None:
        self._display = display
        self._config = config
        self._request_load = request_load
        self.loading_enabled = False
        self.user_scrolled = False
        self.preload_complete = not config.preload_before
        self._enable_handle: asyncio.TimerHandle | None = None
        self.edge_check = Debouncer(config.edge_check_delay, self.check_edges)
        self.url_update = Debouncer(config.url_update_delay, update_url)
        # Intersection callbacks run on the next turn of the loop.
        self.sentinel_check = Debouncer(0.0, self.check_sentinels)
        self._sentinels: dict[str, bool] = {BEFORE: False, AFTER: False}

    def columns_from_edge(self) -> tuple[float, float]:
        display = self._display
        column_width = display.column_width or self._config.fallback_column_width
        scroll_left = display.scroll_left
        left = scroll_left / column_width
        right = (display.scroll_width - scroll_left - display.client_width) / column_width
        return left, right

    def pick_direction(self, left: float, right: float) -> Direction | None:
        threshold = self._config.load_threshold
        if right < threshold:
            return AFTER
        if left < threshold and (
            self.preload_complete or self._display.scroll_left > self._config.dead_zone
        ):
            return BEFORE
        return None

    def _enable_loading(self) -> None:
        self._enable_handle = None
        self.loading_enabled = True
        debug_log("Loading enabled")
        self.edge_check.trigger()

    def on_scroll(self) -> None:
        if self._display.programmatic_scroll:
            return
        if not self.user_scrolled:
            self.user_scrolled = True
            loop = asyncio.get_running_loop()
            self._enable_handle = loop.call_later(self._config.enable_delay, self._enable_loading)
        self.edge_check.trigger()
        self.url_update.trigger()
        self.sentinel_check.trigger()

    async def check_edges(self) -> Direction | None:
        if not self.loading_enabled:
            return None
        left, right = self.columns_from_edge()
        direction = self.pick_direction(left, right)
        if direction is not None:
            debug_log(f"Edge check: {left:.1f} columns left, {right:.1f} right -> {direction}")
            await self._request_load(direction)
        return direction

    async def on_sentinel(self, direction: Direction, visible: bool) -> None:
        if not visible or not self.loading_enabled:
            return
        if direction == BEFORE and not self.preload_complete and (
            self._display.scroll_left <= self._config.dead_zone
        ):
            return
        await self._request_load(direction)

    def sentinel_visibility(self) -> dict[str, bool]:
        margin = self._config.load_threshold * (
            self._display.column_width or self._config.fallback_column_width
        )
        view_left = self._display.scroll_left
        view_right = view_left + self._display.client_width
        return {
            BEFORE: view_left - margin < 0,
            AFTER: view_right + margin > self._display.scroll_width,
        }

    async def check_sentinels(self) -> list[Direction]:
        """Dispatch sentinels that became visible since the last check."""
        fired: list[Direction] = []
        for direction, visible in self.sentinel_visibility().items():
            became_visible = visible and not self._sentinels[direction]
            self._sentinels[direction] = visible
            if became_visible:
                fired.append(direction)  # type: ignore[arg-type]
        for direction in fired:
            await self.on_sentinel(direction, True)
        return fired

    def refresh_sentinels(self) -> None:
        self._sentinels.update(self.sentinel_visibility())

    def close(self) -> None:
        self.edge_check.cancel()
        self.url_update.cancel()
        self.sentinel_check.cancel()
        if self._enable_handle is not None:
            self._enable_handle.cancel()
            self._enable_handle = None


__all__ = ["Debouncer", "ViewportMonitor"]
