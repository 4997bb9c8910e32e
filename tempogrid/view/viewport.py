"""Visible time range <-> pixel mapping with pan and zoom."""

from __future__ import annotations

import math

from tempogrid.analysis.models import ViewportState
from tempogrid.config import Settings, settings


class Viewport:
    """Pan/zoom window over a track of ``duration_ms``.

    Every mutation clamps ``start_ms`` so the visible range stays inside the
    track: ``0 <= start_ms`` and ``start_ms + visible_range_ms <= duration_ms``.
    """

    def __init__(self, duration_ms: float = 0.0, config: Settings | None = None) -> None:
        self.config = config or settings
        self.duration_ms = max(0.0, duration_ms)
        self.state = ViewportState()
        self._drag: tuple[float, float] | None = None  # (start x, start_ms)
        self._dragged = False

    @property
    def zoom(self) -> float:
        return self.state.zoom

    @property
    def start_ms(self) -> float:
        return self.state.start_ms

    @property
    def visible_range_ms(self) -> float:
        if self.duration_ms <= 0:
            return 0.0
        return min(self.duration_ms, max(self.config.min_visible_ms, self.duration_ms / self.state.zoom))

    @property
    def end_ms(self) -> float:
        return self.state.start_ms + self.visible_range_ms

    def reset(self, duration_ms: float, zoom: float | None = None) -> None:
        """Point the viewport at a new track, scrolled to the start."""
        self.duration_ms = max(0.0, duration_ms)
        self.state = ViewportState(zoom=self._clamp_zoom(self.config.load_zoom if zoom is None else zoom))
        self._drag = None

    def clamp_start(self, start_ms: float) -> float:
        if self.duration_ms <= 0:
            return 0.0
        max_start = max(0.0, self.duration_ms - self.visible_range_ms)
        return min(max(0.0, start_ms), max_start)

    def _clamp_zoom(self, zoom: float) -> float:
        return max(self.config.min_zoom, min(self.config.max_zoom, zoom))

    def scroll_to(self, start_ms: float) -> None:
        self.state.start_ms = self.clamp_start(start_ms)

    def center_on(self, ms: float) -> None:
        self.scroll_to(ms - self.visible_range_ms / 2.0)

    def pan(self, delta_ms: float) -> None:
        self.scroll_to(self.state.start_ms + delta_ms)

    def zoom_at(self, factor: float, anchor_ms: float) -> None:
        """Multiply the zoom by ``factor`` and centre the view on ``anchor_ms``."""
        if self.duration_ms <= 0:
            return
        zoom = self._clamp_zoom(self.state.zoom * factor)
        if zoom == self.state.zoom:
            return
        self.state.zoom = zoom
        self.center_on(anchor_ms)

    def wheel(self, delta_y: float, anchor_ms: float, zoom_modifier: bool = False) -> None:
        """Mouse wheel: zoom with a modifier key held, pan otherwise."""
        if self.duration_ms <= 0:
            return
        if zoom_modifier:
            self.zoom_at(math.exp(-delta_y * self.config.wheel_zoom_rate), anchor_ms)
        else:
            self.pan(delta_y * (self.visible_range_ms / self.config.wheel_pan_divisor))

    def follow(self, playhead_ms: float) -> None:
        """Keep the playhead centred when zoomed in."""
        if self.state.zoom > 1:
            desired = self.clamp_start(playhead_ms - self.visible_range_ms / 2.0)
            if abs(desired - self.state.start_ms) > 0.5:
                self.state.start_ms = desired

    # ------------------------------------------------------------------
    # Pixel mapping
    # ------------------------------------------------------------------

    def x_to_ms(self, x: float, width: float) -> float:
        if width <= 0:
            return self.state.start_ms
        return self.state.start_ms + (x / width) * self.visible_range_ms

    def ms_to_x(self, ms: float, width: float) -> float:
        span = self.visible_range_ms
        if span <= 0:
            return 0.0
        return (ms - self.state.start_ms) / span * width

    # ------------------------------------------------------------------
    # Drag gestures
    # ------------------------------------------------------------------

    def begin_drag(self, x: float) -> None:
        if self.duration_ms <= 0:
            return
        self._drag = (x, self.state.start_ms)
        self._dragged = False

    def drag_to(self, x: float, width: float) -> None:
        if self._drag is None or width <= 0:
            return
        start_x, start_ms = self._drag
        if x != start_x:
            self._dragged = True
        self.scroll_to(start_ms - (x - start_x) / width * self.visible_range_ms)

    def end_drag(self) -> bool:
        """Finish a gesture; True when the pointer never moved (a click)."""
        was_click = self._drag is not None and not self._dragged
        self._drag = None
        self._dragged = False
        return was_click
