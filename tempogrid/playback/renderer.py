"""Audio renderers: the clocked sink that plays the buffer and metronome clicks."""

from __future__ import annotations

import logging
import threading
from typing import Protocol

import numpy as np

from tempogrid.analysis.models import SampleBuffer
from tempogrid.config import settings

logger = logging.getLogger(__name__)

CLICK_ATTACK_SECONDS = 0.001
CLICK_DECAY_SECONDS = 0.08
CLICK_LENGTH_SECONDS = 0.12
CLICK_FLOOR = 1e-4


class AudioRenderer(Protocol):
    """Independently clocked audio output.

    ``current_time`` is the renderer's own monotonic clock in seconds. It
    advances with the audio actually rendered and is read-only for callers.
    """

    @property
    def current_time(self) -> float: ...

    def start_playback(self, buffer: SampleBuffer, from_seconds: float) -> float:
        """Start playing ``buffer`` at ``from_seconds``; return the clock time of that position."""
        ...

    def stop_playback(self) -> None: ...

    def schedule_click(self, when: float, accent: bool) -> None: ...

    def cancel_clicks(self) -> None: ...


def synthesize_click(sr: int, accent: bool, volume: float) -> np.ndarray:
    """Square-wave metronome click: 1200 Hz accented, 880 Hz otherwise.

    1 ms linear attack, exponential decay to 1e-4 at 80 ms, cut at 120 ms.
    """
    freq = 1200.0 if accent else 880.0
    t = np.arange(int(CLICK_LENGTH_SECONDS * sr)) / sr
    decay = CLICK_DECAY_SECONDS - CLICK_ATTACK_SECONDS
    env = np.where(
        t < CLICK_ATTACK_SECONDS,
        t / CLICK_ATTACK_SECONDS,
        CLICK_FLOOR ** (np.minimum(t - CLICK_ATTACK_SECONDS, decay) / decay),
    )
    wave = np.sign(np.sin(2 * np.pi * freq * t))
    return (volume * env * wave).astype(np.float32)


class SoundDeviceRenderer:
    """Renderer backed by a sounddevice (PortAudio) output stream.

    The clock counts rendered frames, so clicks land on exact sample
    positions relative to the music no matter when they were enqueued.

    Parameters
    ----------
    volume:
        Gain applied to the music (default: ``settings.playback_volume``).
    click_volume:
        Peak gain of metronome clicks (default: ``settings.metronome_volume``).
    blocksize:
        Frames per audio callback.
    device:
        Output device index, or ``None`` for the default device.
    """

    def __init__(
        self,
        volume: float | None = None,
        click_volume: float | None = None,
        blocksize: int = 512,
        device: int | None = None,
    ) -> None:
        self.volume = settings.playback_volume if volume is None else volume
        self.click_volume = settings.metronome_volume if click_volume is None else click_volume
        self.blocksize = blocksize
        self.device = device

        self._lock = threading.Lock()
        self._stream = None
        self._audio: np.ndarray | None = None  # (frames, channels)
        self._sr = 0
        self._position = 0  # next song frame to render
        self._clock_base = 0.0
        self._rendered = 0
        self._clicks: list[tuple[int, np.ndarray]] = []  # (start frame on clock, samples)
        self._click_cache: dict[bool, np.ndarray] = {}

    # ------------------------------------------------------------------
    # Clock
    # ------------------------------------------------------------------

    @property
    def current_time(self) -> float:
        with self._lock:
            return self._clock_now()

    def _clock_now(self) -> float:
        if self._sr <= 0:
            return self._clock_base
        return self._clock_base + self._rendered / self._sr

    # ------------------------------------------------------------------
    # Playback
    # ------------------------------------------------------------------

    def start_playback(self, buffer: SampleBuffer, from_seconds: float) -> float:
        import sounddevice as sd

        self.stop_playback()
        with self._lock:
            self._clock_base = self._clock_now()
            self._rendered = 0
            self._sr = buffer.sample_rate
            self._audio = np.stack(buffer.channels, axis=1)
            self._position = min(buffer.n_frames, max(0, int(round(from_seconds * self._sr))))
            self._click_cache = {}
            start = self._clock_base

        self._stream = sd.OutputStream(
            samplerate=buffer.sample_rate,
            channels=buffer.n_channels,
            blocksize=self.blocksize,
            dtype="float32",
            device=self.device,
            callback=self._callback,
        )
        self._stream.start()
        logger.debug(f"Playback started at {from_seconds:.3f}s (clock {start:.3f}s)")
        return start

    def stop_playback(self) -> None:
        stream, self._stream = self._stream, None
        if stream is not None:
            # abort drops queued buffers instead of waiting for them to drain
            stream.abort()
            stream.close()
        with self._lock:
            self._clock_base = self._clock_now()
            self._rendered = 0
            self._audio = None
            self._clicks.clear()

    def schedule_click(self, when: float, accent: bool) -> None:
        with self._lock:
            if self._sr <= 0:
                return
            samples = self._click_cache.get(accent)
            if samples is None:
                samples = synthesize_click(self._sr, accent, self.click_volume)
                self._click_cache[accent] = samples
            # late clicks sound immediately
            start = max(self._rendered, int(round((when - self._clock_base) * self._sr)))
            self._clicks.append((start, samples))

    def cancel_clicks(self) -> None:
        with self._lock:
            self._clicks.clear()

    # ------------------------------------------------------------------
    # Audio thread
    # ------------------------------------------------------------------

    def _callback(self, outdata, frames, time_info, status):
        if status:
            logger.debug(f"Output stream status: {status}")
        outdata[:] = self.render(frames, outdata.shape[1])

    def render(self, frames: int, channels: int) -> np.ndarray:
        """Produce the next ``frames`` frames and advance the clock."""
        block = np.zeros((frames, channels), dtype=np.float32)
        with self._lock:
            if self._audio is not None:
                chunk = self._audio[self._position:self._position + frames]
                block[:len(chunk), :chunk.shape[1]] = chunk * self.volume
                self._position += len(chunk)

            block_start = self._rendered
            remaining = []
            for start, samples in self._clicks:
                lo = start - block_start
                if lo >= frames:
                    remaining.append((start, samples))
                    continue
                src = max(0, -lo)  # part already rendered in earlier blocks
                dst = max(0, lo)
                n = min(frames - dst, len(samples) - src)
                if n > 0:
                    block[dst:dst + n] += samples[src:src + n, None]
                if start + len(samples) > block_start + frames:
                    remaining.append((start, samples))
            self._clicks = remaining
            self._rendered += frames
        return block
