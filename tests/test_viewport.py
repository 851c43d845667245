from __future__ import annotations

import asyncio

from chapterstream.display import ChapterEntry, ColumnDisplay
from chapterstream.models import AFTER, BEFORE, ChapterKey
from chapterstream.viewport import Debouncer, ViewportMonitor

from helpers import FakeFetcher, bible, make_config, open_at


def _monitor(chapters: int = 5, **overrides):
    config = make_config(**overrides)
    display = ColumnDisplay(
        client_width=config.client_width,
        column_width=config.column_width,
        fallback_column_width=config.fallback_column_width,
        chars_per_column=config.chars_per_column,
    )
    for chapter in range(1, chapters + 1):
        display.insert(ChapterEntry(key=ChapterKey("Gen", chapter), rank=0, posts=[], width=416.0))
    requests: list[str] = []

    async def request_load(direction):
        requests.append(direction)

    monitor = ViewportMonitor(display, config, request_load, lambda: None)
    return monitor, display, requests


def test_columns_from_edge_uses_column_width() -> None:
    monitor, display, _ = _monitor(chapters=3)
    display.scroll_to(416)

    left, right = monitor.columns_from_edge()

    assert left == 2.0
    assert right == 2.0


def test_columns_use_configured_column_width() -> None:
    monitor, display, _ = _monitor(chapters=3, column_width=104.0)
    display.scroll_to(416)

    left, right = monitor.columns_from_edge()

    assert left == 4.0
    assert right == 4.0


def test_right_edge_takes_priority() -> None:
    monitor, display, _ = _monitor(chapters=1)

    assert monitor.pick_direction(0.5, 0.5) == AFTER
    assert monitor.pick_direction(0.5, 5.0) == BEFORE
    assert monitor.pick_direction(5.0, 5.0) is None


def test_left_edge_waits_for_preload_or_dead_zone() -> None:
    monitor, display, _ = _monitor(chapters=5, preload_before=True)

    assert monitor.pick_direction(0.0, 5.0) is None
    display.scroll_to(50)
    assert monitor.pick_direction(0.2, 5.0) == BEFORE
    display.scroll_to(0)
    monitor.preload_complete = True
    assert monitor.pick_direction(0.0, 5.0) == BEFORE


def test_no_loading_before_first_real_scroll() -> None:
    monitor, display, requests = _monitor(chapters=5)

    async def scenario():
        before = await monitor.check_edges()
        with display.programmatic():
            display.scroll_to(832)
        await asyncio.sleep(0.01)
        return before

    display.add_scroll_listener(monitor.on_scroll)
    before = asyncio.run(scenario())

    assert before is None
    assert requests == []
    assert monitor.user_scrolled is False
    assert monitor.loading_enabled is False


def test_first_real_scroll_enables_loading_and_requests_edge() -> None:
    fetcher = FakeFetcher(bible(("Gen", "Genesis", 50)))
    stream = open_at(fetcher, "Gen", 25)

    async def scenario():
        stream.on_scroll()
        await asyncio.sleep(0.01)
        await stream.settle()

    asyncio.run(scenario())

    assert stream.monitor.user_scrolled is True
    assert stream.monitor.loading_enabled is True
    assert fetcher.calls == ["/Gen/res/26.html", "/Gen/res/27.html"]


def test_enable_delay_holds_loading_back() -> None:
    monitor, display, requests = _monitor(chapters=5, enable_delay=30.0)

    async def scenario():
        display.scroll_to(1664)
        await asyncio.sleep(0.01)
        await monitor.edge_check.flush()
        enabled = monitor.loading_enabled
        monitor.close()
        return enabled

    display.add_scroll_listener(monitor.on_scroll)
    enabled = asyncio.run(scenario())

    assert monitor.user_scrolled is True
    assert enabled is False
    assert requests == []


def test_debouncer_collapses_bursts() -> None:
    calls: list[int] = []

    async def scenario():
        debouncer = Debouncer(10.0, lambda: calls.append(1))
        for _ in range(5):
            debouncer.trigger()
        assert debouncer.pending
        await debouncer.flush()
        assert not debouncer.pending
        await debouncer.flush()

    asyncio.run(scenario())

    assert calls == [1]


def test_debouncer_awaits_coroutine_callbacks() -> None:
    seen: list[str] = []

    async def callback():
        await asyncio.sleep(0)
        seen.append("done")

    async def scenario():
        debouncer = Debouncer(0.0, callback)
        debouncer.trigger()
        await asyncio.sleep(0.01)
        await debouncer.flush()

    asyncio.run(scenario())

    assert seen == ["done"]


def test_sentinels_fire_on_becoming_visible() -> None:
    monitor, display, requests = _monitor(chapters=10)
    monitor.loading_enabled = True

    async def scenario():
        with display.programmatic():
            display.scroll_to(2080)
        first = await monitor.check_sentinels()
        with display.programmatic():
            display.scroll_to(display.max_scroll())
        second = await monitor.check_sentinels()
        third = await monitor.check_sentinels()
        return first, second, third

    first, second, third = asyncio.run(scenario())

    assert first == []
    assert second == [AFTER]
    assert third == []
    assert requests == [AFTER]


def test_sentinels_ignored_until_loading_enabled() -> None:
    monitor, display, requests = _monitor(chapters=1)

    fired = asyncio.run(monitor.check_sentinels())

    assert fired == [BEFORE, AFTER]
    assert requests == []


def test_debouncer_flush_waits_for_overlapping_calls() -> None:
    started: list[int] = []
    finished: list[int] = []

    async def scenario():
        gate = asyncio.Event()

        async def callback():
            call = len(started)
            started.append(call)
            await gate.wait()
            if call == 0:
                for _ in range(5):
                    await asyncio.sleep(0)
            finished.append(call)

        debouncer = Debouncer(0.0, callback)
        debouncer.trigger()
        await asyncio.sleep(0.01)
        debouncer.trigger()
        await asyncio.sleep(0.01)
        gate.set()
        await debouncer.flush()

    asyncio.run(scenario())

    assert started == [0, 1]
    assert sorted(finished) == [0, 1]


def test_scrolling_onto_the_sentinel_loads_without_the_edge_check() -> None:
    fetcher = FakeFetcher(bible(("Gen", "Genesis", 50)))
    stream = open_at(fetcher, "Gen", 25, edge_check_delay=30.0)

    async def scenario():
        await stream.load_more_chapters(AFTER)
        stream.scroll_by(stream.display.max_scroll())
        await asyncio.sleep(0.01)
        await stream.monitor.sentinel_check.flush()
        pending = stream.monitor.edge_check.pending
        stream.close()
        return pending

    edge_check_pending = asyncio.run(scenario())

    assert edge_check_pending is True
    assert fetcher.chapter_calls() == [
        "/Gen/res/26.html",
        "/Gen/res/27.html",
        "/Gen/res/28.html",
        "/Gen/res/29.html",
    ]


def test_enabling_loading_rechecks_the_edge_of_the_first_scroll() -> None:
    fetcher = FakeFetcher(bible(("Gen", "Genesis", 50)))
    stream = open_at(fetcher, "Gen", 25, client_width=208.0, enable_delay=0.05)

    async def scenario():
        stream.scroll_by(1)
        await asyncio.sleep(0.01)
        early = list(fetcher.calls)
        await asyncio.sleep(0.1)
        await stream.settle()
        stream.close()
        return early

    early = asyncio.run(scenario())

    assert early == []
    assert stream.monitor.loading_enabled is True
    assert fetcher.chapter_calls() == ["/Gen/res/26.html", "/Gen/res/27.html"]
