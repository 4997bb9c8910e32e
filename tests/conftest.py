"""Shared test fixtures for tempo-grid tests."""

import numpy as np
import pytest
from fastapi.testclient import TestClient

from tempogrid.analysis.models import SampleBuffer
from tempogrid.main import app


@pytest.fixture
def client():
    """FastAPI test client."""
    return TestClient(app)


def generate_pulse_track(
    bpm: float,
    offset_ms: float = 0.0,
    duration_seconds: float = 10.0,
    sr: int = 22050,
    beats_per_bar: int = 4,
    accent_ratio: float = 1.0,
) -> np.ndarray:
    """Generate a synthetic click track whose first beat is at ``offset_ms``.

    Returns mono audio at the given sample rate.
    """
    n_samples = int(duration_seconds * sr)
    audio = np.zeros(n_samples, dtype=np.float32)

    beat_interval = 60.0 / bpm  # seconds per beat
    click_duration = 0.02  # 20ms click
    click_samples = int(click_duration * sr)

    # Create click sound (short sine burst with envelope)
    t_click = np.arange(click_samples) / sr
    click = np.sin(2 * np.pi * 1000 * t_click) * np.exp(-t_click * 100)

    beat = 0
    while True:
        time = offset_ms / 1000.0 + beat * beat_interval
        if time >= duration_seconds:
            break
        sample_pos = int(round(time * sr))
        amplitude = accent_ratio if beat % beats_per_bar == 0 else 1.0

        end = min(sample_pos + click_samples, n_samples)
        length = end - sample_pos
        if length > 0:
            audio[sample_pos:end] += click[:length] * amplitude
        beat += 1

    # Normalize
    peak = np.max(np.abs(audio))
    if peak > 0:
        audio = audio / peak

    return audio


def pulse_times(bpm: float, offset_ms: float, duration_seconds: float = 10.0) -> list[float]:
    """Times (seconds) of the pulses generated by :func:`generate_pulse_track`."""
    times = []
    t = offset_ms / 1000.0
    k = 0
    while t < duration_seconds:
        times.append(t)
        k += 1
        t = offset_ms / 1000.0 + k * 60.0 / bpm
    return times


class ManualClockRenderer:
    """Renderer double whose clock only moves when the test advances it."""

    def __init__(self, start: float = 100.0):
        self.now = start
        self.clicks: list[tuple[float, bool]] = []
        self.playing = False
        self.started_from: float | None = None
        self.stop_calls = 0
        self.cancel_calls = 0

    @property
    def current_time(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def start_playback(self, buffer, from_seconds):
        self.playing = True
        self.started_from = from_seconds
        return self.now

    def stop_playback(self):
        self.playing = False
        self.stop_calls += 1

    def schedule_click(self, when, accent):
        self.clicks.append((when, accent))

    def cancel_clicks(self):
        self.cancel_calls += 1


@pytest.fixture
def pulse_128():
    """10s click track at 128 BPM (468.75ms apart) starting at 500ms."""
    return SampleBuffer.from_array(generate_pulse_track(bpm=128, offset_ms=500), 22050)


@pytest.fixture
def silent_buffer():
    """10s of digital silence."""
    return SampleBuffer.from_array(np.zeros(22050 * 10, dtype=np.float32), 22050)


@pytest.fixture
def renderer():
    return ManualClockRenderer()
