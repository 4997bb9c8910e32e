"""Multi-band energy-flux onset detection."""

import logging

import numpy as np

from tempogrid.analysis.models import OnsetEnvelope, SampleBuffer
from tempogrid.audio.preprocessing import (
    frame_count,
    frame_energy,
    frame_time_origin,
    lagged_baseline,
    mono_mix,
    normalize,
    one_pole_lowpass,
)
from tempogrid.config import Settings, settings

logger = logging.getLogger(__name__)


def split_bands(signal: np.ndarray, sr: int, config: Settings) -> list[tuple[np.ndarray, float]]:
    """Split into (low, mid, high) bands with two cascaded one-pole low-passes.

    Returns ``(band_signal, flux_weight)`` pairs.
    """
    lpf_low = one_pole_lowpass(signal, config.low_cutoff_hz, sr)
    lpf_mid = one_pole_lowpass(signal, config.mid_cutoff_hz, sr)
    return [
        (lpf_low, config.low_weight),
        (lpf_mid - lpf_low, config.mid_weight),
        (signal - lpf_mid, config.high_weight),
    ]


def compute_envelope(buffer: SampleBuffer, config: Settings | None = None) -> OnsetEnvelope:
    """Compute the normalized onset-strength envelope of a buffer.

    Per frame, the flux is the weighted sum of positive band-energy rises.
    A trailing moving average is subtracted as an adaptive baseline, the
    residual is clipped at zero, square-root compressed and normalized by
    its maximum. Deterministic for a given buffer and config.
    """
    cfg = config or settings
    sr = buffer.sample_rate
    hop_seconds = cfg.hop_size / sr
    origin = frame_time_origin(cfg.frame_size, cfg.hop_size, sr)

    signal = mono_mix(buffer)
    n_frames = frame_count(len(signal), cfg.frame_size, cfg.hop_size)
    if n_frames == 0:
        logger.info(f"Buffer too short for onset analysis ({len(signal)} samples)")
        return OnsetEnvelope(values=np.zeros(0), hop_seconds=hop_seconds, time_origin=origin)

    flux = np.zeros(n_frames)
    for band, weight in split_bands(signal, sr, cfg):
        energy = frame_energy(band, cfg.frame_size, cfg.hop_size)
        # only rising energy marks an onset
        rise = np.maximum(0.0, np.diff(energy, prepend=energy[0]))
        flux += weight * rise

    baseline = lagged_baseline(flux, cfg.onset_baseline_frames)
    envelope = np.sqrt(np.maximum(0.0, flux - baseline))
    envelope = normalize(envelope)

    logger.debug(f"Onset envelope: {n_frames} frames, hop {hop_seconds * 1000:.1f}ms")
    return OnsetEnvelope(values=envelope, hop_seconds=hop_seconds, time_origin=origin)
