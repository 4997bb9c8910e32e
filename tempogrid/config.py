"""Application configuration."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Analysis, playback and viewport settings with env var overrides."""

    # Framing (shared by onset and offset analysis)
    frame_size: int = 1024
    hop_size: int = 512

    # Onset detection bands
    low_cutoff_hz: float = 200.0
    mid_cutoff_hz: float = 2000.0
    low_weight: float = 1.1
    mid_weight: float = 1.2
    high_weight: float = 0.7
    onset_baseline_frames: int = 48

    # Peak picking
    peak_threshold: float = 0.35  # multiple of the local moving average
    peak_baseline_seconds: float = 0.12
    peak_baseline_min_frames: int = 8
    peak_min_separation: int = 3  # frames
    min_peaks: int = 8

    # Tempo estimation
    min_bpm: float = 60.0
    max_bpm: float = 240.0
    default_bpm: float = 120.0
    fallback_min_bpm: float = 60.0
    fallback_max_bpm: float = 200.0
    vote_window_seconds: float = 6.0
    vote_hop_seconds: float = 3.0
    vote_peaks_per_window: int = 3
    octave_reinforcement: float = 0.5
    max_vote_candidates: int = 5
    max_alternate_candidates: int = 8
    refine_window: float = 0.08  # +/- fraction searched around each candidate
    refine_min_bpm: float = 40.0
    refine_max_bpm: float = 260.0
    phase_steps: int = 64
    golden_iterations: int = 40
    golden_tolerance_bpm: float = 0.01

    # Offset estimation
    gate_db: float = -35.0
    gate_hold_ms: float = 30.0
    offset_baseline_frames: int = 30
    offset_resolution_ms: float = 5.0
    offset_tolerance_ms: float = 20.0
    first_beat_ratio: float = 0.25  # of the strongest aligned onset

    # Playback / metronome
    lookahead_interval_ms: float = 25.0
    schedule_ahead_ms: float = 250.0
    beats_per_bar: int = 4
    click_gap_tolerance_ms: float = 30.0
    stale_click_ms: float = 10.0
    playback_volume: float = 0.35
    metronome_volume: float = 0.25
    metronome_enabled: bool = True
    preroll_ms: float = 100.0

    # Viewport
    min_zoom: float = 1.0
    max_zoom: float = 128.0
    min_visible_ms: float = 200.0
    load_zoom: float = 100.0
    wheel_pan_divisor: float = 600.0
    wheel_zoom_rate: float = 0.0015

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    reload: bool = False
    max_upload_mb: int = 50

    model_config = {"env_prefix": "TEMPOGRID_"}


settings = Settings()
