"""Calibration session - owns the loaded audio, beat grid, viewport and playback."""

import logging
import threading

from tempogrid.analysis.models import BeatGrid, GridLine, SampleBuffer, TempoResult
from tempogrid.analysis.offset import estimate_offset
from tempogrid.analysis.onset import compute_envelope
from tempogrid.analysis.tempo import estimate_tempo, fallback_bpm
from tempogrid.config import Settings, settings
from tempogrid.playback.renderer import AudioRenderer
from tempogrid.playback.scheduler import PlaybackScheduler
from tempogrid.view.viewport import Viewport

logger = logging.getLogger(__name__)


class CalibrationSession:
    """All mutable state of one calibration session.

    Analysis results only replace the grid once they are complete, and at
    most one analysis of each kind runs at a time: a second request while
    one is in flight is rejected and returns ``None``.
    """

    def __init__(self, renderer: AudioRenderer | None = None, config: Settings | None = None):
        self.config = config or settings
        self.buffer: SampleBuffer | None = None
        self.grid = BeatGrid(bpm=float(fallback_bpm(None, self.config)))
        self.candidates: list[int] = []
        self.viewport = Viewport(config=self.config)
        self.scheduler = PlaybackScheduler(renderer, self.config) if renderer is not None else None
        self._bpm_lock = threading.Lock()
        self._offset_lock = threading.Lock()
        if self.scheduler:
            self.scheduler.set_grid(self.grid)

    @property
    def duration_ms(self) -> float:
        return self.buffer.duration_ms if self.buffer else 0.0

    @property
    def is_playing(self) -> bool:
        return bool(self.scheduler and self.scheduler.is_playing)

    def load(self, buffer: SampleBuffer) -> None:
        """Replace the loaded audio and reset everything derived from it."""
        if self.scheduler:
            self.scheduler.load(buffer)
        self.buffer = buffer
        self.candidates = []
        self.viewport.reset(buffer.duration_ms)
        self._set_grid(BeatGrid(bpm=self.grid.bpm, offset_ms=0.0))
        logger.info(f"Loaded {buffer.duration:.1f}s of audio at {buffer.sample_rate}Hz, "
                    f"{buffer.n_channels} channel(s)")

    # ------------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------------

    def analyze_bpm(self) -> TempoResult | None:
        """Detect the tempo and adopt the best fit as the grid BPM."""
        if self.buffer is None:
            return None
        if not self._bpm_lock.acquire(blocking=False):
            logger.warning("BPM analysis already running, request ignored")
            return None
        try:
            buffer = self.buffer
            envelope = compute_envelope(buffer, self.config)
            result = estimate_tempo(envelope, prior_bpm=self.config.default_bpm, config=self.config)
        finally:
            self._bpm_lock.release()

        if buffer is not self.buffer:
            logger.info("Buffer replaced during BPM analysis, result discarded")
            return None
        self.candidates = list(result.ranked)
        self._set_grid(BeatGrid(bpm=float(result.bpm), offset_ms=self.grid.offset_ms))
        return result

    def analyze_offset(self) -> float | None:
        """Detect the grid offset for the current BPM."""
        if self.buffer is None or self.grid.bpm <= 0:
            return None
        if not self._offset_lock.acquire(blocking=False):
            logger.warning("Offset analysis already running, request ignored")
            return None
        try:
            buffer, bpm = self.buffer, self.grid.bpm
            offset_ms = estimate_offset(buffer, bpm, self.config)
        finally:
            self._offset_lock.release()

        if buffer is not self.buffer:
            logger.info("Buffer replaced during offset analysis, result discarded")
            return None
        self._set_grid(BeatGrid(bpm=self.grid.bpm, offset_ms=offset_ms))
        return offset_ms

    # ------------------------------------------------------------------
    # Manual edits
    # ------------------------------------------------------------------

    def set_bpm(self, bpm: float) -> None:
        if bpm <= 0:
            raise ValueError("bpm must be positive")
        self._set_grid(BeatGrid(bpm=float(bpm), offset_ms=self.grid.offset_ms))

    def choose_candidate(self, bpm: int) -> None:
        """Adopt one of the ranked candidates."""
        self.set_bpm(bpm)

    def set_offset(self, offset_ms: float) -> None:
        offset_ms = min(self.duration_ms, max(0.0, offset_ms))
        self._set_grid(BeatGrid(bpm=self.grid.bpm, offset_ms=offset_ms))

    def _set_grid(self, grid: BeatGrid) -> None:
        self.grid = grid
        if self.scheduler:
            self.scheduler.set_grid(grid)

    # ------------------------------------------------------------------
    # Waveform gestures
    # ------------------------------------------------------------------

    def press(self, x: float) -> None:
        self.viewport.begin_drag(x)

    def drag(self, x: float, width: float) -> None:
        self.viewport.drag_to(x, width)

    def release(self, x: float, width: float) -> None:
        """End a pointer gesture; a press without drag sets the offset there."""
        if self.viewport.end_drag() and self.buffer is not None:
            self.set_offset(self.viewport.x_to_ms(x, width))

    def wheel(self, delta_y: float, zoom_modifier: bool = False) -> None:
        self.viewport.wheel(delta_y, self._zoom_anchor(), zoom_modifier)

    def zoom(self, factor: float) -> None:
        self.viewport.zoom_at(factor, self._zoom_anchor())

    def _zoom_anchor(self) -> float:
        return self.current_playhead_ms() if self.is_playing else self.grid.offset_ms

    def follow_playhead(self) -> None:
        """Called by the renderer each frame to keep the playhead in view."""
        if self.is_playing:
            self.viewport.follow(self.current_playhead_ms())

    def grid_lines(self) -> list[GridLine]:
        """Beat lines inside the visible range."""
        if self.buffer is None:
            return []
        return self.grid.lines(self.viewport.start_ms, self.viewport.end_ms, self.config.beats_per_bar)

    # ------------------------------------------------------------------
    # Playback
    # ------------------------------------------------------------------

    def play(self, from_ms: float | None = None) -> None:
        """Play from ``from_ms`` (default: just before the offset)."""
        if self.scheduler is None or self.buffer is None:
            return
        if from_ms is None:
            from_ms = max(0.0, self.grid.offset_ms - self.config.preroll_ms)
        self.scheduler.play(from_ms)
        if self.viewport.zoom > 1:
            self.viewport.center_on(from_ms)

    def stop(self) -> None:
        if self.scheduler:
            self.scheduler.stop()

    def toggle_play(self) -> None:
        if self.is_playing:
            self.stop()
        else:
            self.play()

    def current_playhead_ms(self) -> float:
        return self.scheduler.current_playhead_ms() if self.scheduler else 0.0
