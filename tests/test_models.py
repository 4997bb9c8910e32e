"""Tests for the data models."""

import numpy as np
import pytest

from tempogrid.analysis.models import BeatGrid, SampleBuffer, TempoCandidate, TempoResult


class TestSampleBuffer:
    def test_from_mono_array(self):
        buffer = SampleBuffer.from_array(np.zeros(22050), 22050)
        assert buffer.n_channels == 1
        assert buffer.n_frames == 22050
        assert buffer.duration == pytest.approx(1.0)
        assert buffer.duration_ms == pytest.approx(1000.0)

    def test_from_stereo_array(self):
        audio = np.column_stack([np.ones(100), -np.ones(100)])
        buffer = SampleBuffer.from_array(audio, 8000)
        assert buffer.n_channels == 2
        assert buffer.channels[0][0] == 1.0
        assert buffer.channels[1][0] == -1.0

    def test_channels_are_read_only(self):
        buffer = SampleBuffer.from_array(np.zeros(10), 8000)
        with pytest.raises(ValueError):
            buffer.channels[0][0] = 1.0

    def test_source_array_is_copied(self):
        audio = np.zeros(10, dtype=np.float32)
        buffer = SampleBuffer.from_array(audio, 8000)
        audio[0] = 1.0
        assert buffer.channels[0][0] == 0.0

    @pytest.mark.parametrize("sr", [0, -44100])
    def test_rejects_bad_sample_rate(self, sr):
        with pytest.raises(ValueError):
            SampleBuffer.from_array(np.zeros(10), sr)

    def test_rejects_no_channels(self):
        with pytest.raises(ValueError):
            SampleBuffer(sample_rate=8000, channels=())

    def test_rejects_ragged_channels(self):
        with pytest.raises(ValueError):
            SampleBuffer(sample_rate=8000, channels=(np.zeros(10), np.zeros(11)))

    def test_rejects_3d_array(self):
        with pytest.raises(ValueError):
            SampleBuffer.from_array(np.zeros((2, 2, 2)), 8000)


class TestBeatGrid:
    def test_period(self):
        assert BeatGrid(bpm=120).period_ms == pytest.approx(500.0)
        assert BeatGrid(bpm=128).period_ms == pytest.approx(468.75)

    def test_beat_times(self):
        grid = BeatGrid(bpm=120, offset_ms=100)
        assert [grid.beat_time_ms(i) for i in range(3)] == [100.0, 600.0, 1100.0]

    @pytest.mark.parametrize("at_ms, index", [(0, 0), (100, 0), (101, 1), (600, 1), (1200, 3)])
    def test_next_beat_index(self, at_ms, index):
        assert BeatGrid(bpm=120, offset_ms=100).next_beat_index(at_ms) == index

    def test_lines_in_range(self):
        grid = BeatGrid(bpm=120, offset_ms=100)
        lines = grid.lines(900, 2200)
        assert [line.time_ms for line in lines] == [1100.0, 1600.0, 2100.0]
        assert [line.index for line in lines] == [2, 3, 4]
        assert [line.is_downbeat for line in lines] == [False, False, True]

    def test_lines_start_at_offset(self):
        lines = BeatGrid(bpm=120, offset_ms=300).lines(0, 1000, beats_per_bar=3)
        assert [line.time_ms for line in lines] == [300.0, 800.0]
        assert lines[0].is_downbeat

    def test_lines_empty_range(self):
        assert BeatGrid(bpm=120).lines(1000, 500) == []


class TestTempoResult:
    def test_bpm_rounds_half_up(self):
        result = TempoResult(primary=TempoCandidate(bpm=127.5, phase_offset=0.0, cost=0.0), ranked=[128])
        assert result.bpm == 128
        assert result.detected

    def test_fallback_is_not_detected(self):
        result = TempoResult(primary=TempoCandidate(bpm=120.0, phase_offset=0.0, cost=0.25))
        assert not result.detected
        assert result.ranked == []
