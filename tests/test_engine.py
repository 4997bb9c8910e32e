"""Integration tests for the calibration session."""

import logging

import numpy as np
import pytest

from tempogrid.analysis.engine import CalibrationSession
from tempogrid.analysis.models import SampleBuffer


@pytest.fixture
def session(renderer):
    return CalibrationSession(renderer)


@pytest.fixture
def loaded(session, pulse_128):
    session.load(pulse_128)
    session.viewport.reset(session.duration_ms, zoom=1.0)
    return session


def test_initial_state(session):
    assert session.buffer is None
    assert session.grid.bpm == 120
    assert session.grid.offset_ms == 0.0
    assert session.candidates == []
    assert session.analyze_bpm() is None
    assert session.analyze_offset() is None
    assert session.grid_lines() == []


def test_bpm_then_offset_click_track(session, pulse_128):
    """Full calibration pass: detect BPM, pin it, detect the offset."""
    session.load(pulse_128)
    result = session.analyze_bpm()
    assert result is not None
    assert abs(session.candidates[0] - 128) <= 1
    assert session.grid.bpm == result.bpm

    session.set_bpm(128)
    offset = session.analyze_offset()
    assert abs(offset - 500) <= 15
    assert session.grid.offset_ms == offset
    assert session.scheduler.grid.offset_ms == offset


def test_silence_falls_back(session, silent_buffer):
    session.load(silent_buffer)
    result = session.analyze_bpm()
    assert session.candidates == []
    assert not result.detected
    assert session.grid.bpm == 120
    assert session.analyze_offset() == 0.0


def test_load_resets_state(loaded, renderer, silent_buffer):
    loaded.set_offset(1234)
    loaded.candidates = [128, 64]
    loaded.play()
    assert loaded.is_playing

    loaded.load(silent_buffer)
    assert not loaded.is_playing
    assert loaded.candidates == []
    assert loaded.grid.offset_ms == 0.0
    assert loaded.viewport.zoom == 100
    assert loaded.viewport.start_ms == 0.0


def test_set_bpm_updates_scheduler(loaded):
    loaded.set_bpm(97.5)
    assert loaded.grid.bpm == 97.5
    assert loaded.scheduler.grid.bpm == 97.5
    loaded.choose_candidate(64)
    assert loaded.grid.bpm == 64


@pytest.mark.parametrize("bpm", [0, -120])
def test_set_bpm_rejects_non_positive(loaded, bpm):
    with pytest.raises(ValueError):
        loaded.set_bpm(bpm)
    assert loaded.grid.bpm == 120


def test_set_offset_is_clamped(loaded):
    loaded.set_offset(-50)
    assert loaded.grid.offset_ms == 0.0
    loaded.set_offset(1e9)
    assert loaded.grid.offset_ms == pytest.approx(loaded.duration_ms)


def test_click_sets_offset(loaded):
    loaded.press(250)
    loaded.release(250, 1000)
    assert loaded.grid.offset_ms == pytest.approx(2500.0)


def test_drag_pans_without_setting_offset(loaded):
    loaded.zoom(4)
    start = loaded.viewport.start_ms
    loaded.press(500)
    loaded.drag(400, 1000)
    loaded.release(400, 1000)
    assert loaded.grid.offset_ms == 0.0
    assert loaded.viewport.start_ms == pytest.approx(start + 250.0)


def test_zoom_anchors_on_offset_when_stopped(loaded):
    loaded.set_offset(5000)
    loaded.zoom(10)
    assert loaded.viewport.start_ms == pytest.approx(4500.0)


def test_wheel_zoom_anchors_on_playhead_when_playing(loaded, renderer):
    loaded.play(3000)
    renderer.advance(1.0)
    loaded.wheel(-1000, zoom_modifier=True)
    centre = (loaded.viewport.start_ms + loaded.viewport.end_ms) / 2
    assert centre == pytest.approx(4000.0)


def test_play_starts_before_offset(loaded, renderer):
    loaded.set_offset(1000)
    loaded.play()
    assert renderer.started_from == pytest.approx(0.9)
    assert loaded.current_playhead_ms() == pytest.approx(900.0)


def test_play_centres_viewport_when_zoomed(loaded):
    loaded.viewport.reset(loaded.duration_ms, zoom=10)
    loaded.set_offset(6000)
    loaded.play()
    assert loaded.viewport.start_ms == pytest.approx(5400.0)


def test_toggle_play(loaded, renderer):
    loaded.toggle_play()
    assert loaded.is_playing
    loaded.toggle_play()
    assert not loaded.is_playing
    assert renderer.stop_calls == 1


def test_follow_playhead(loaded, renderer):
    loaded.viewport.reset(loaded.duration_ms, zoom=10)
    loaded.play(0)
    renderer.advance(4.0)
    loaded.follow_playhead()
    assert loaded.viewport.start_ms == pytest.approx(3500.0)


def test_grid_lines_cover_visible_range(loaded):
    loaded.set_bpm(120)
    loaded.set_offset(100)
    lines = loaded.grid_lines()
    assert len(lines) == 20
    assert lines[0].time_ms == 100.0
    assert lines[0].is_downbeat
    assert not lines[1].is_downbeat


def test_concurrent_bpm_request_is_rejected(loaded, caplog):
    loaded._bpm_lock.acquire()
    try:
        with caplog.at_level(logging.WARNING):
            assert loaded.analyze_bpm() is None
    finally:
        loaded._bpm_lock.release()
    assert "already running" in caplog.text
    assert loaded.candidates == []


def test_concurrent_offset_request_is_rejected(loaded):
    loaded.set_offset(777)
    loaded._offset_lock.acquire()
    try:
        assert loaded.analyze_offset() is None
    finally:
        loaded._offset_lock.release()
    assert loaded.grid.offset_ms == 777


def test_session_without_renderer(pulse_128):
    session = CalibrationSession()
    session.load(pulse_128)
    session.play()
    assert not session.is_playing
    assert session.current_playhead_ms() == 0.0
    session.stop()


def test_stereo_buffer(session):
    from tests.conftest import generate_pulse_track

    mono = generate_pulse_track(bpm=128, offset_ms=500)
    session.load(SampleBuffer.from_array(np.column_stack([mono, mono * 0.5]), 22050))
    session.analyze_bpm()
    assert abs(session.candidates[0] - 128) <= 1
