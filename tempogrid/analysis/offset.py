"""Beat-grid offset (phase) estimation for a known tempo."""

from __future__ import annotations

import logging
import math

import numpy as np
from scipy.ndimage import maximum_filter1d

from tempogrid.analysis.models import SampleBuffer
from tempogrid.audio.preprocessing import (
    frame_count,
    frame_energy,
    frame_time_origin,
    lagged_baseline,
    mono_mix,
)
from tempogrid.config import Settings, settings

logger = logging.getLogger(__name__)


def gate_mask(rms: np.ndarray, threshold: float, hold_frames: int) -> np.ndarray:
    """True on every frame of a run that stays at or above ``threshold`` for at least ``hold_frames`` frames.

    The whole run opens, including the attack frames before the hold time is
    reached; shorter runs stay gated.
    """
    active = np.zeros(len(rms), dtype=bool)
    start = None
    for i, value in enumerate(rms):
        if value >= threshold:
            if start is None:
                start = i
            if i - start + 1 >= hold_frames:
                active[start:i + 1] = True
        else:
            start = None
    return active


def onset_strength(buffer: SampleBuffer, config: Settings | None = None) -> np.ndarray:
    """Noise-gated, baseline-subtracted positive RMS flux per frame."""
    cfg = config or settings
    sr = buffer.sample_rate
    signal = mono_mix(buffer)
    if frame_count(len(signal), cfg.frame_size, cfg.hop_size) == 0:
        return np.zeros(0)

    rms = np.sqrt(frame_energy(signal, cfg.frame_size, cfg.hop_size))

    gate = 10.0 ** (cfg.gate_db / 20.0)
    hop_seconds = cfg.hop_size / sr
    hold = max(1, round((cfg.gate_hold_ms / 1000.0) / hop_seconds))
    active = gate_mask(rms, gate, hold)

    rise = np.maximum(0.0, np.diff(rms, prepend=rms[0]))
    baseline = lagged_baseline(rise, cfg.offset_baseline_frames)
    return np.where(active, np.maximum(0.0, rise - baseline), 0.0)


def _plateau_centre(scores: np.ndarray) -> int:
    """Index of the centre of the first run of maximal scores."""
    best = float(np.max(scores))
    tied = scores >= best - 1e-12 * max(1.0, abs(best))
    first = int(np.argmax(tied))
    last = first
    while last + 1 < len(scores) and tied[last + 1]:
        last += 1
    return first + (last - first) // 2


def estimate_offset(buffer: SampleBuffer, bpm: float, config: Settings | None = None) -> float:
    """Estimate the grid offset in milliseconds for a given tempo.

    Every candidate phase in ``[0, period)`` (``offset_resolution_ms``
    apart) is scored by summing, over all beat lines of the track, the
    strongest gated onset within ``offset_tolerance_ms`` of the line. Equal
    scores resolve to the centre of the tied run. The winning phase is then
    moved forward to the first line that carries a real onset, so the
    offset points at the first beat of the song. Clamped to the duration.
    """
    cfg = config or settings
    if bpm <= 0:
        return 0.0
    strength = onset_strength(buffer, cfg)
    n = len(strength)
    if n == 0:
        logger.info("Buffer too short for offset analysis")
        return 0.0

    sr = buffer.sample_rate
    hop_ms = cfg.hop_size / sr * 1000.0
    origin_ms = frame_time_origin(cfg.frame_size, cfg.hop_size, sr) * 1000.0
    end_ms = origin_ms + n * hop_ms
    period_ms = 60000.0 / bpm

    tol = int(math.floor(cfg.offset_tolerance_ms / hop_ms))
    near_max = maximum_filter1d(strength, size=2 * tol + 1, mode="constant", cval=0.0)

    offsets = np.arange(0.0, period_ms, cfg.offset_resolution_ms)
    n_lines = int(math.ceil(end_ms / period_ms)) + 1
    line_ms = offsets[:, None] + np.arange(n_lines)[None, :] * period_ms
    in_track = line_ms < end_ms
    idx = np.clip(np.rint((line_ms - origin_ms) / hop_ms).astype(int), 0, n - 1)
    aligned = np.where(in_track, near_max[idx], 0.0)
    scores = aligned.sum(axis=1)

    if float(np.max(scores)) <= 0.0:
        logger.info("No gated onsets found, offset left at 0")
        return 0.0

    k = _plateau_centre(scores)
    lines = aligned[k]
    threshold = cfg.first_beat_ratio * float(np.max(lines))
    first = int(np.argmax(lines >= threshold))
    offset = offsets[k] + first * period_ms

    offset = min(buffer.duration_ms, max(0.0, offset))
    logger.info(f"Offset at {bpm:.2f} BPM: {offset:.0f}ms (phase {offsets[k]:.0f}ms, first beat line {first})")
    return float(round(offset))
