"""
Typewriter playback for terminal screens.

frames() is a cancellable async generator yielding one snapshot of the
revealed lines per tick; play() drives it into a render callback. Once the
seen flag is persisted, later screens render at once.
"""

import asyncio
import random
from typing import Awaitable, Callable, Iterable, List, Optional

from ..config import settings
from ..storage.errors import StorageError
from ..storage.kv import PersistentStore
from ..utils.events import log_debug

CARET = "▌"

Frame = List[str]


class CancelToken:
    """Cancellation handle tied to one playback."""

    def __init__(self):
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


class TypewriterScheduler:
    def __init__(
        self,
        store: PersistentStore,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
        start_delay_ms: float = None,
        char_delay_ms: float = None,
        space_delay_ms: float = None,
        empty_line_delay_ms: float = None,
        line_pause_ms: float = None,
        jitter_ms: float = None,
        remember_seen: bool = None,
    ):
        self.store = store
        self._sleep = sleep
        self._rng = rng or random.Random()

        def pick(value, default):
            return default if value is None else value

        self.start_delay_ms = pick(start_delay_ms, settings.TYPEWRITER_START_DELAY_MS)
        self.char_delay_ms = pick(char_delay_ms, settings.TYPEWRITER_CHAR_DELAY_MS)
        self.space_delay_ms = pick(space_delay_ms, settings.TYPEWRITER_SPACE_DELAY_MS)
        self.empty_line_delay_ms = pick(empty_line_delay_ms, settings.TYPEWRITER_EMPTY_LINE_DELAY_MS)
        self.line_pause_ms = pick(line_pause_ms, settings.TYPEWRITER_LINE_PAUSE_MS)
        self.jitter_ms = pick(jitter_ms, settings.TYPEWRITER_JITTER_MS)
        self.remember_seen = pick(remember_seen, settings.TYPEWRITER_REMEMBER_SEEN)

        self.done = False
        self._token: Optional[CancelToken] = None
        self._task: Optional[asyncio.Task] = None

    # --- seen flag ---

    def has_seen(self) -> bool:
        return self.store.get_flag(settings.TYPEWRITER_SEEN_KEY)

    def mark_seen(self) -> None:
        self.store.set_flag(settings.TYPEWRITER_SEEN_KEY, True)

    def _seen_for_playback(self) -> bool:
        """has_seen() for the playback task: an unreadable flag means animate."""
        try:
            return self.has_seen()
        except StorageError as e:
            log_debug(f"[TYPEWRITER] seen flag unreadable: {e}")
            return False

    # --- ticks ---

    async def _pause(self, delay_ms: float) -> None:
        jitter = self._rng.uniform(0, self.jitter_ms) if self.jitter_ms else 0
        await self._sleep((delay_ms + jitter) / 1000)

    def _char_delay(self, char: str) -> float:
        return self.space_delay_ms if char == " " else self.char_delay_ms

    async def frames(self, lines: Iterable[str], token: Optional[CancelToken] = None):
        """
        Yields the revealed text after every tick.

        The line being typed ends with the caret; the last frame is the full
        text without it. A cancelled token ends the generator before the next
        yield, including when it fires during a sleep.
        """
        token = token or CancelToken()
        lines = list(lines)

        await self._pause(self.start_delay_ms)
        if token.cancelled:
            return

        revealed: List[str] = []
        for index, line in enumerate(lines):
            if index:
                await self._pause(self.line_pause_ms)
                if token.cancelled:
                    return
            revealed.append("")

            if not line:
                yield revealed[:-1] + [CARET]
                await self._pause(self.empty_line_delay_ms)
                if token.cancelled:
                    return
                continue

            for position, char in enumerate(line):
                revealed[-1] = line[:position + 1]
                yield revealed[:-1] + [revealed[-1] + CARET]
                await self._pause(self._char_delay(char))
                if token.cancelled:
                    return

        yield list(lines)

    # --- playback ---

    def _complete(self, on_complete: Optional[Callable[[], None]]) -> None:
        if self.done:
            return
        self.done = True
        if on_complete:
            on_complete()

    async def play(
        self,
        lines: Iterable[str],
        render: Callable[[Frame], None],
        on_complete: Optional[Callable[[], None]] = None,
        token: Optional[CancelToken] = None,
    ) -> bool:
        """
        Renders lines, animated unless the seen flag is set.

        Returns:
            True when playback reached the end, False when it was cancelled
        """
        token = token or CancelToken()
        lines = list(lines)
        self.done = False

        if self._seen_for_playback():
            render(lines)
            self._complete(on_complete)
            return True

        async for frame in self.frames(lines, token):
            if token.cancelled:
                break
            render(frame)
        if token.cancelled:
            return False

        if self.remember_seen:
            try:
                self.mark_seen()
            except StorageError as e:
                log_debug(f"[TYPEWRITER] could not record seen flag: {e}")
        self._complete(on_complete)
        return True

    def start(
        self,
        lines: Iterable[str],
        render: Callable[[Frame], None],
        on_complete: Optional[Callable[[], None]] = None,
    ) -> asyncio.Task:
        """Cancels any running playback and starts a new one as a task."""
        self.cancel()
        self._token = CancelToken()
        loop = asyncio.get_running_loop()
        self._task = loop.create_task(self.play(lines, render, on_complete, self._token))
        return self._task

    def cancel(self) -> None:
        if self._token is not None:
            self._token.cancel()
        if self._task is not None and not self._task.done():
            self._task.cancel()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def wait(self) -> bool:
        """Waits for the current playback; False if it was cancelled."""
        task = self._task
        if task is None:
            return True
        try:
            return await task
        except asyncio.CancelledError:
            if task.cancelled():
                return False
            raise
