"""Signal helpers shared by the onset and offset estimators."""

from __future__ import annotations

import math

import numpy as np
from scipy.signal import lfilter

from tempogrid.analysis.models import SampleBuffer


def mono_mix(buffer: SampleBuffer) -> np.ndarray:
    """Average all channels into one float64 signal."""
    if buffer.n_channels == 1:
        return buffer.channels[0].astype(np.float64)
    return np.mean(np.stack(buffer.channels), axis=0, dtype=np.float64)


def normalize(signal: np.ndarray) -> np.ndarray:
    """Peak-normalize to [-1, 1].

    A silent signal has a zero peak; dividing by 1 instead leaves it
    unchanged.
    """
    peak = float(np.max(np.abs(signal))) if len(signal) else 0.0
    return signal / (peak if peak > 0 else 1.0)


def one_pole_lowpass(signal: np.ndarray, cutoff: float, sr: int) -> np.ndarray:
    """Exponential smoothing filter ``y += a * (x - y)``.

    Parameters
    ----------
    signal:
        Input audio signal.
    cutoff:
        Cutoff frequency in Hz; ``a = 1 - exp(-2 pi fc / sr)``.
    sr:
        Sample rate in Hz.
    """
    alpha = 1.0 - math.exp(-2.0 * math.pi * cutoff / sr)
    return lfilter([alpha], [1.0, alpha - 1.0], signal)


def frame_count(n_samples: int, frame_size: int, hop_size: int) -> int:
    """Number of analysis frames: ``floor((n - frame) / hop)``, never negative."""
    return max(0, (n_samples - frame_size) // hop_size)


def frame_energy(signal: np.ndarray, frame_size: int, hop_size: int) -> np.ndarray:
    """Mean squared amplitude of each overlapping frame.

    Computed from a running sum of squares so long tracks never need a
    ``(frame_size, n_frames)`` matrix.
    """
    n_frames = frame_count(len(signal), frame_size, hop_size)
    if n_frames == 0:
        return np.zeros(0)
    csum = np.concatenate(([0.0], np.cumsum(np.square(signal, dtype=np.float64))))
    starts = np.arange(n_frames) * hop_size
    energy = (csum[starts + frame_size] - csum[starts]) / frame_size
    # running-sum cancellation can leave tiny negatives in silent stretches
    return np.maximum(energy, 0.0)


def frame_time_origin(frame_size: int, hop_size: int, sr: int) -> float:
    """Time (seconds) attributed to frame 0.

    An energy rise at frame *i* comes from the hop of samples that frame
    *i* adds over frame *i - 1*, i.e. the last ``hop_size`` samples of the
    frame. Frames are stamped at the centre of that hop.
    """
    return (frame_size - hop_size / 2.0) / sr


def moving_average(values: np.ndarray, window: int) -> np.ndarray:
    """Trailing mean over the last ``window`` values (fewer at the start)."""
    values = np.asarray(values, dtype=np.float64)
    if len(values) == 0:
        return values.copy()
    window = max(1, int(window))
    csum = np.concatenate(([0.0], np.cumsum(values)))
    idx = np.arange(len(values))
    lo = np.maximum(0, idx + 1 - window)
    return (csum[idx + 1] - csum[lo]) / np.minimum(idx + 1, window)


def lagged_baseline(values: np.ndarray, window: int) -> np.ndarray:
    """Moving average as seen by the previous frame (frame 0 sees itself)."""
    ma = moving_average(values, window)
    if len(ma) == 0:
        return ma
    return np.concatenate((ma[:1], ma[:-1]))
