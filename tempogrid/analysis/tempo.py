"""Tempo estimation: windowed autocorrelation voting refined by phase cost."""

from __future__ import annotations

import logging
import math

import librosa
import numpy as np

from tempogrid.analysis.models import OnsetEnvelope, Peak, TempoCandidate, TempoResult
from tempogrid.audio.preprocessing import lagged_baseline
from tempogrid.config import Settings, settings

logger = logging.getLogger(__name__)

# d <= T/2, so the normalized squared distance never exceeds 1/4
WORST_COST = 0.25

_GOLDEN = (math.sqrt(5.0) - 1.0) / 2.0


def round_bpm(bpm: float) -> int:
    """Round half up (0.5 -> 1), independent of banker's rounding."""
    return int(math.floor(bpm + 0.5))


def fold_bpm(bpm: float, min_bpm: float = 60.0, max_bpm: float = 240.0) -> float:
    """Fold a tempo into ``[min_bpm, max_bpm]`` by repeated doubling/halving."""
    if bpm <= 0:
        return bpm
    while bpm < min_bpm:
        bpm *= 2.0
    while bpm > max_bpm:
        bpm /= 2.0
    return bpm


def pick_peaks(envelope: OnsetEnvelope, config: Settings | None = None) -> list[Peak]:
    """Pick onset peaks with a local adaptive threshold.

    A peak must exceed ``peak_threshold`` times the local moving average and
    be a local maximum over a 5-frame neighbourhood (strictly above the
    left neighbours, not below the right ones so plateaus yield one peak).
    Peaks closer than ``peak_min_separation`` frames keep the stronger one.
    Weights are relative to the strongest peak.
    """
    cfg = config or settings
    x = np.asarray(envelope.values, dtype=np.float64)
    n = len(x)
    if n < 5:
        return []

    window = max(cfg.peak_baseline_min_frames, round(cfg.peak_baseline_seconds / envelope.hop_seconds))
    threshold = lagged_baseline(x, window) * cfg.peak_threshold

    i = np.arange(2, n - 2)
    v = x[i]
    is_peak = (
        (v > threshold[i])
        & (v > x[i - 1]) & (v >= x[i + 1])
        & (v > x[i - 2]) & (v >= x[i + 2])
    )

    picked: list[tuple[int, float]] = []
    for idx in i[is_peak]:
        val = float(x[idx])
        if not picked or idx - picked[-1][0] >= cfg.peak_min_separation:
            picked.append((int(idx), val))
        elif val > picked[-1][1]:
            picked[-1] = (int(idx), val)

    if not picked:
        return []
    vmax = max(val for _, val in picked)
    times = envelope.times()
    return [
        Peak(time=float(times[idx]), weight=(val / vmax if vmax > 0 else 0.0))
        for idx, val in picked
    ]


def autocorrelation(segment: np.ndarray, lag_max: int) -> np.ndarray:
    """Mean-removed autocorrelation up to ``lag_max``, scaled by the RMS norm."""
    centered = segment - np.mean(segment)
    denom = math.sqrt(float(np.sum(centered ** 2))) or 1.0
    return librosa.autocorrelate(centered, max_size=lag_max + 1) / denom


def window_votes(envelope: OnsetEnvelope, config: Settings | None = None) -> dict[int, float]:
    """Accumulate integer-BPM votes from short-window autocorrelation.

    Each analysis window contributes its strongest autocorrelation peaks
    (inside the lag range of ``[min_bpm, max_bpm]``), folded into that
    range and weighted by the window's mean activity. Votes at half and
    double tempo then reinforce each other.
    """
    cfg = config or settings
    x = np.asarray(envelope.values, dtype=np.float64)
    hop = envelope.hop_seconds
    votes: dict[int, float] = {}

    win = max(8, round(cfg.vote_window_seconds / hop))
    step = max(1, round(cfg.vote_hop_seconds / hop))
    lag_min = max(2, int(math.floor((60.0 / cfg.max_bpm) / hop)))
    lag_max = max(lag_min + 1, int(math.floor((60.0 / cfg.min_bpm) / hop)))

    for start in range(0, len(x) - win, step):
        seg = x[start:start + win]
        ac = autocorrelation(seg, lag_max)

        lags = np.arange(lag_min + 1, lag_max - 1)
        local = lags[(ac[lags] > ac[lags - 1]) & (ac[lags] > ac[lags + 1])]
        if len(local) == 0:
            continue
        strongest = local[np.argsort(-ac[local], kind="stable")][:cfg.vote_peaks_per_window]

        activity = float(np.mean(seg))
        for lag in strongest:
            bpm = round_bpm(fold_bpm(60.0 / (lag * hop), cfg.min_bpm, cfg.max_bpm))
            votes[bpm] = votes.get(bpm, 0.0) + max(0.0, float(ac[lag])) * (0.5 + 0.5 * activity)

    # Octave consolidation, computed from the raw votes so order doesn't matter
    raw = dict(votes)
    for bpm in raw:
        half, double = round_bpm(bpm / 2.0), round_bpm(bpm * 2.0)
        votes[bpm] += cfg.octave_reinforcement * (raw.get(half, 0.0) + raw.get(double, 0.0))

    return votes


def top_candidates(votes: dict[int, float], limit: int) -> list[int]:
    """Most-voted BPMs, merging any within +/-1 of a better one."""
    ranked = sorted(votes.items(), key=lambda kv: (-kv[1], kv[0]))
    unique: list[int] = []
    for bpm, _ in ranked:
        if not any(abs(u - bpm) <= 1 for u in unique):
            unique.append(bpm)
        if len(unique) >= limit:
            break
    return unique


def _cost_at(times: np.ndarray, weights: np.ndarray, period: float, phases: np.ndarray) -> np.ndarray:
    """Weighted mean squared circular distance to the grid, per phase."""
    r = np.mod(times[None, :] - phases[:, None], period)
    d = np.minimum(r, period - r)
    s = np.sum(weights[None, :] * (d * d), axis=1) / (period * period)
    wsum = float(np.sum(weights))
    return s / wsum if wsum > 0 else s


def phase_cost(peaks: list[Peak], bpm: float, steps: int = 64) -> tuple[float, float]:
    """Best grid phase for ``bpm`` and its cost.

    Grid search over ``steps`` phases in one period, then one parabolic
    interpolation step around the best grid point.

    Returns ``(phase_seconds, cost)``.
    """
    if bpm <= 0 or not peaks:
        return 0.0, WORST_COST
    period = 60.0 / bpm
    times = np.array([p.time for p in peaks])
    weights = np.array([p.weight for p in peaks])

    phases = np.arange(steps) * (period / steps)
    costs = _cost_at(times, weights, period, phases)
    k = int(np.argmin(costs))
    best_phi, best_cost = float(phases[k]), float(costs[k])

    step = period / steps
    c_left, c_mid, c_right = _cost_at(
        times, weights, period, np.array([best_phi - step, best_phi, best_phi + step]),
    )
    denom = c_left - 2.0 * c_mid + c_right
    if abs(denom) > 1e-12:
        delta = 0.5 * (c_left - c_right) / denom
        phi2 = (best_phi + delta * step) % period
        c2 = float(_cost_at(times, weights, period, np.array([phi2]))[0])
        if c2 < best_cost:
            best_phi, best_cost = phi2, c2
    return best_phi, best_cost


def refine_bpm(peaks: list[Peak], bpm0: float, config: Settings | None = None) -> TempoCandidate:
    """Golden-section search for the lowest phase cost within +/-refine_window of ``bpm0``."""
    cfg = config or settings
    cache: dict[float, float] = {}

    def cost(bpm: float) -> float:
        key = round(bpm, 3)
        if key not in cache:
            cache[key] = phase_cost(peaks, bpm, cfg.phase_steps)[1]
        return cache[key]

    a = max(cfg.refine_min_bpm, bpm0 * (1.0 - cfg.refine_window))
    b = min(cfg.refine_max_bpm, bpm0 * (1.0 + cfg.refine_window))
    c = b - _GOLDEN * (b - a)
    d = a + _GOLDEN * (b - a)
    fc, fd = cost(c), cost(d)

    for _ in range(cfg.golden_iterations):
        if fc > fd:
            a, c, fc = c, d, fd
            d = a + _GOLDEN * (b - a)
            fd = cost(d)
        else:
            b, d, fd = d, c, fc
            c = b - _GOLDEN * (b - a)
            fc = cost(c)
        if abs(b - a) < cfg.golden_tolerance_bpm:
            break

    best = c if fc < fd else d
    phi, best_cost = phase_cost(peaks, best, cfg.phase_steps)
    return TempoCandidate(bpm=best, phase_offset=phi, cost=best_cost)


def fallback_bpm(prior_bpm: float | None, config: Settings | None = None) -> int:
    """Default tempo used when nothing can be detected."""
    cfg = config or settings
    bpm = cfg.default_bpm if prior_bpm is None else prior_bpm
    return round_bpm(min(cfg.fallback_max_bpm, max(cfg.fallback_min_bpm, bpm)))


def estimate_tempo(
    envelope: OnsetEnvelope,
    prior_bpm: float | None = None,
    config: Settings | None = None,
) -> TempoResult:
    """Estimate the tempo of an onset envelope.

    Candidates from :func:`window_votes` are refined together with their
    half- and double-tempo variants; the lowest phase cost wins. The ranked
    list holds the winner's rounded BPM followed by the next best distinct
    integer tempos. With too few onsets the clamped prior is returned with
    an empty ranked list.
    """
    cfg = config or settings

    peaks = pick_peaks(envelope, cfg)
    if len(peaks) < cfg.min_peaks:
        fb = fallback_bpm(prior_bpm, cfg)
        logger.info(f"Only {len(peaks)} onset peaks, falling back to {fb} BPM")
        return TempoResult(primary=TempoCandidate(bpm=float(fb), phase_offset=0.0, cost=WORST_COST))

    votes = window_votes(envelope, cfg)
    candidates = top_candidates(votes, cfg.max_vote_candidates)
    if not candidates:
        default = cfg.default_bpm if prior_bpm is None else prior_bpm
        candidates = [round_bpm(fold_bpm(default, cfg.min_bpm, cfg.max_bpm))]
    logger.debug(f"Tempo vote candidates: {candidates}")

    fits: list[TempoCandidate] = []
    for bpm in candidates:
        for variant in (bpm / 2.0, float(bpm), bpm * 2.0):
            base = min(cfg.refine_max_bpm, max(cfg.refine_min_bpm, variant))
            fits.append(refine_bpm(peaks, base, cfg))

    fits.sort(key=lambda f: f.cost)
    best = fits[0]

    ranked = [round_bpm(best.bpm)]
    for fit in fits[1:]:
        if len(ranked) > cfg.max_alternate_candidates:
            break
        v = round_bpm(fit.bpm)
        if cfg.min_bpm <= v <= cfg.max_bpm and not any(abs(r - v) <= 1 for r in ranked):
            ranked.append(v)

    logger.info(f"Tempo: {best.bpm:.2f} BPM (cost {best.cost:.5f}), candidates {ranked}")
    return TempoResult(primary=best, ranked=ranked)
