"""Lookahead metronome scheduling against the renderer clock."""

from __future__ import annotations

import asyncio
import logging

from tempogrid.analysis.models import BeatGrid, ClickEvent, PlaybackState, SampleBuffer
from tempogrid.config import Settings, settings
from tempogrid.playback.renderer import AudioRenderer

logger = logging.getLogger(__name__)


class PlaybackScheduler:
    """Plays a buffer and schedules metronome clicks ahead of time.

    Two states, Stopped and Playing. While playing, a polling task wakes
    every ``lookahead_interval_ms`` and hands the renderer every click whose
    time falls within ``schedule_ahead_ms`` of the renderer clock. Click
    times are computed from the grid and the renderer clock, so polling
    jitter only changes when a click is enqueued, never when it sounds.

    All methods are meant to be called from one thread (the one running the
    event loop). Without a running event loop, :meth:`tick` can be driven
    manually.
    """

    def __init__(self, renderer: AudioRenderer, config: Settings | None = None) -> None:
        self.renderer = renderer
        self.config = config or settings
        self.metronome_enabled = self.config.metronome_enabled

        self._buffer: SampleBuffer | None = None
        self._grid: BeatGrid | None = None
        self._state: PlaybackState | None = None
        self._next_beat = 0
        self._last_click: float | None = None  # renderer clock of the last click handed over
        self._task: asyncio.Task | None = None

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def is_playing(self) -> bool:
        return self._state is not None

    @property
    def state(self) -> PlaybackState | None:
        return self._state

    @property
    def grid(self) -> BeatGrid | None:
        return self._grid

    @property
    def next_beat_index(self) -> int:
        return self._next_beat

    def load(self, buffer: SampleBuffer | None) -> None:
        """Swap in a new buffer; stops playback."""
        self.stop()
        self._buffer = buffer

    def set_grid(self, grid: BeatGrid) -> None:
        """Replace the beat grid. While playing, the click phase restarts from the playhead."""
        self._grid = BeatGrid(bpm=grid.bpm, offset_ms=grid.offset_ms)
        if self.is_playing:
            self._reset_phase()

    def set_metronome(self, enabled: bool) -> None:
        self.metronome_enabled = enabled
        if enabled and self.is_playing:
            self._reset_phase()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def play(self, from_ms: float = 0.0) -> None:
        """Start playback at ``from_ms``. Playing again restarts from the new position."""
        if self._buffer is None:
            logger.info("play() ignored: no buffer loaded")
            return
        self.stop()

        song_start = min(self._buffer.duration_ms, max(0.0, from_ms))
        clock_start = self.renderer.start_playback(self._buffer, song_start / 1000.0)
        self._state = PlaybackState(song_start_ms=song_start, clock_start=clock_start)
        self._last_click = None
        # first beat at or after the start position, not the live playhead
        self._next_beat = self._grid.next_beat_index(song_start) if self._grid else 0
        logger.info(f"Playback from {song_start:.0f}ms")
        self._start_loop()

    def stop(self) -> None:
        """Stop playback and drop pending clicks. Safe to call when stopped."""
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
        if self._state is None:
            return
        self._state = None
        self.renderer.cancel_clicks()
        self.renderer.stop_playback()
        logger.info("Playback stopped")

    def current_playhead_ms(self) -> float:
        """Song position in ms; 0 while stopped, capped at the buffer duration."""
        if self._state is None or self._buffer is None:
            return 0.0
        elapsed = (self.renderer.current_time - self._state.clock_start) * 1000.0
        return min(self._buffer.duration_ms, self._state.song_start_ms + elapsed)

    def song_ms_to_clock(self, song_ms: float) -> float:
        return self._state.clock_start + (song_ms - self._state.song_start_ms) / 1000.0

    # ------------------------------------------------------------------
    # Lookahead
    # ------------------------------------------------------------------

    def _reset_phase(self) -> None:
        if self._grid is None:
            self._next_beat = 0
            return
        self._next_beat = self._grid.next_beat_index(self.current_playhead_ms())

    def _start_loop(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop; lookahead must be driven with tick()")
            return
        self._task = loop.create_task(self._lookahead())
        self._task.add_done_callback(self._on_lookahead_done)

    def _on_lookahead_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is None:
            return
        logger.exception("Lookahead loop failed, stopping playback", exc_info=exc)
        if task is self._task:
            self.stop()

    async def _lookahead(self) -> None:
        interval = self.config.lookahead_interval_ms / 1000.0
        while self.is_playing:
            self.tick()
            await asyncio.sleep(interval)

    def tick(self) -> list[ClickEvent]:
        """Run one scheduling pass and return the clicks handed to the renderer."""
        if self._state is None or self._buffer is None:
            return []

        now = self.renderer.current_time
        playhead = self.current_playhead_ms()
        if playhead >= self._buffer.duration_ms:
            self.stop()
            return []
        if not self.metronome_enabled or self._grid is None:
            return []

        cfg = self.config
        horizon = cfg.schedule_ahead_ms / 1000.0
        min_gap = (self._grid.period_ms - cfg.click_gap_tolerance_ms) / 1000.0
        emitted = []
        while True:
            index = self._next_beat
            song_ms = self._grid.beat_time_ms(index)
            when = self.song_ms_to_clock(song_ms)
            if when - now > horizon or song_ms > self._buffer.duration_ms:
                break
            self._next_beat = index + 1
            if song_ms < playhead - cfg.stale_click_ms:
                continue
            # a grid edit can put the next beat right after a click already queued
            if self._last_click is not None and when < self._last_click + min_gap:
                continue
            when = max(now, when)
            accent = index % cfg.beats_per_bar == 0
            self.renderer.schedule_click(when, accent)
            self._last_click = when
            emitted.append(ClickEvent(beat_index=index, when=when, song_ms=song_ms, accent=accent))

        return emitted
