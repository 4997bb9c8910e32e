"""Core data models for tempo-grid calibration."""

from __future__ import annotations

import math
from dataclasses import dataclass, field

import numpy as np


@dataclass(frozen=True)
class SampleBuffer:
    """Decoded audio, one float array per channel.

    Immutable: the channel arrays are made read-only on construction and the
    buffer is replaced wholesale when a new file is loaded.
    """
    sample_rate: int
    channels: tuple[np.ndarray, ...]

    def __post_init__(self):
        if self.sample_rate <= 0:
            raise ValueError("sample_rate must be positive")
        if len(self.channels) < 1:
            raise ValueError("SampleBuffer needs at least one channel")
        frozen = []
        for ch in self.channels:
            arr = np.array(ch, dtype=np.float32).ravel()
            arr.setflags(write=False)
            frozen.append(arr)
        if len({len(ch) for ch in frozen}) != 1:
            raise ValueError("All channels must have the same length")
        object.__setattr__(self, "channels", tuple(frozen))

    @classmethod
    def from_array(cls, audio: np.ndarray, sample_rate: int) -> SampleBuffer:
        """Build a buffer from a mono ``(n,)`` or ``(n, ch)`` array."""
        audio = np.asarray(audio)
        if audio.ndim == 1:
            return cls(sample_rate=sample_rate, channels=(audio,))
        if audio.ndim == 2:
            return cls(sample_rate=sample_rate,
                       channels=tuple(audio[:, c] for c in range(audio.shape[1])))
        raise ValueError("Audio array must be 1D (mono) or 2D (frames, channels).")

    @property
    def n_channels(self) -> int:
        return len(self.channels)

    @property
    def n_frames(self) -> int:
        """Samples per channel."""
        return len(self.channels[0])

    @property
    def duration(self) -> float:
        """Duration in seconds."""
        return self.n_frames / self.sample_rate

    @property
    def duration_ms(self) -> float:
        return self.duration * 1000.0


@dataclass
class OnsetEnvelope:
    """Onset strength, one value per hop, normalized to [0, 1].

    ``time_origin`` is the time (seconds) attributed to frame 0; frame *i*
    sits at ``time_origin + i * hop_seconds``.
    """
    values: np.ndarray
    hop_seconds: float
    time_origin: float = 0.0

    def __len__(self) -> int:
        return len(self.values)

    def times(self) -> np.ndarray:
        return self.time_origin + np.arange(len(self.values)) * self.hop_seconds


@dataclass
class Peak:
    """A detected onset event."""
    time: float  # seconds
    weight: float  # 0.0-1.0, relative to the strongest peak


@dataclass
class TempoCandidate:
    """A tempo hypothesis with its best grid phase. Lower cost = better fit."""
    bpm: float
    phase_offset: float  # seconds, in [0, 60 / bpm)
    cost: float


@dataclass
class TempoResult:
    """Primary tempo fit plus the ranked integer BPMs offered for override."""
    primary: TempoCandidate
    ranked: list[int] = field(default_factory=list)

    @property
    def detected(self) -> bool:
        """False when analysis fell back to the default BPM."""
        return bool(self.ranked)

    @property
    def bpm(self) -> int:
        return int(math.floor(self.primary.bpm + 0.5))


@dataclass
class GridLine:
    """A beat line for the renderer."""
    time_ms: float
    index: int
    is_downbeat: bool = False


@dataclass
class BeatGrid:
    """Tempo grid: beats at ``offset_ms + i * period_ms`` for i >= 0."""
    bpm: float
    offset_ms: float = 0.0

    @property
    def period_ms(self) -> float:
        return 60000.0 / max(1.0, self.bpm)

    def beat_time_ms(self, index: int) -> float:
        return self.offset_ms + index * self.period_ms

    def next_beat_index(self, at_ms: float) -> int:
        """Smallest beat index whose time is >= ``at_ms``."""
        rel = at_ms - self.offset_ms
        if rel <= 0:
            return 0
        return int(math.ceil(rel / self.period_ms))

    def lines(self, start_ms: float, end_ms: float, beats_per_bar: int = 4) -> list[GridLine]:
        """Beat lines inside ``[start_ms, end_ms]``."""
        if self.bpm <= 0 or end_ms < start_ms:
            return []
        out = []
        i = self.next_beat_index(start_ms)
        t = self.beat_time_ms(i)
        while t <= end_ms:
            out.append(GridLine(time_ms=t, index=i, is_downbeat=(i % beats_per_bar == 0)))
            i += 1
            t = self.beat_time_ms(i)
        return out


@dataclass
class PlaybackState:
    """Anchor between song time and the renderer clock while playing."""
    song_start_ms: float
    clock_start: float  # renderer clock, seconds
    is_playing: bool = True


@dataclass
class ClickEvent:
    """A metronome click handed to the renderer."""
    beat_index: int
    when: float  # renderer clock, seconds
    song_ms: float
    accent: bool = False


@dataclass
class ViewportState:
    zoom: float = 1.0
    start_ms: float = 0.0
