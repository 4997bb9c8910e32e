"""Analysis endpoints over raw PCM request bodies.

A convenience HTTP wrapper around the in-process analysis functions. It is
not part of the engine contract: callers embedding tempogrid use
:class:`tempogrid.analysis.engine.CalibrationSession` and the estimators
directly.
"""

import asyncio
import logging

import numpy as np
from fastapi import APIRouter, HTTPException, Query, Request

from tempogrid.analysis.models import SampleBuffer, TempoResult
from tempogrid.analysis.offset import estimate_offset
from tempogrid.analysis.onset import compute_envelope
from tempogrid.analysis.tempo import estimate_tempo
from tempogrid.api.schemas import CandidateResponse, OffsetResponse, TempoResponse
from tempogrid.config import settings

logger = logging.getLogger(__name__)

router = APIRouter()


def pcm_to_buffer(content: bytes, sample_rate: int, channels: int) -> SampleBuffer:
    """Wrap interleaved little-endian float32 PCM in a SampleBuffer."""
    frame_bytes = 4 * channels
    if len(content) == 0 or len(content) % frame_bytes:
        raise ValueError(f"Body must be a non-empty whole number of {channels}-channel float32 frames")
    samples = np.frombuffer(content, dtype="<f4").reshape(-1, channels)
    return SampleBuffer.from_array(samples, sample_rate)


async def _read_buffer(request: Request, sample_rate: int, channels: int) -> SampleBuffer:
    content = await request.body()
    if len(content) > settings.max_upload_mb * 1024 * 1024:
        raise HTTPException(400, f"Payload too large (max {settings.max_upload_mb} MB)")
    try:
        return pcm_to_buffer(content, sample_rate, channels)
    except ValueError as e:
        raise HTTPException(400, str(e))


def _analyze_tempo(buffer: SampleBuffer, prior_bpm: float) -> TempoResult:
    return estimate_tempo(compute_envelope(buffer), prior_bpm=prior_bpm)


@router.post("/analyze/tempo", response_model=TempoResponse)
async def analyze_tempo(
    request: Request,
    sample_rate: int = Query(..., gt=0),
    channels: int = Query(1, ge=1, le=32),
    prior_bpm: float = Query(settings.default_bpm, gt=0),
):
    """Detect the BPM of raw float32 PCM (interleaved when multi-channel)."""
    buffer = await _read_buffer(request, sample_rate, channels)
    try:
        loop = asyncio.get_running_loop()
        result = await loop.run_in_executor(None, _analyze_tempo, buffer, prior_bpm)
    except Exception:
        logger.exception("Tempo analysis failed")
        raise HTTPException(500, "Analysis failed")

    return TempoResponse(
        bpm=result.bpm,
        detected=result.detected,
        primary=CandidateResponse(
            bpm=result.primary.bpm,
            phase_offset_ms=result.primary.phase_offset * 1000.0,
            cost=result.primary.cost,
        ),
        candidates=result.ranked,
    )


@router.post("/analyze/offset", response_model=OffsetResponse)
async def analyze_offset(
    request: Request,
    sample_rate: int = Query(..., gt=0),
    bpm: float = Query(..., gt=0),
    channels: int = Query(1, ge=1, le=32),
):
    """Detect the beat-grid offset of raw float32 PCM at a given BPM."""
    buffer = await _read_buffer(request, sample_rate, channels)
    try:
        loop = asyncio.get_running_loop()
        offset_ms = await loop.run_in_executor(None, estimate_offset, buffer, bpm)
    except Exception:
        logger.exception("Offset analysis failed")
        raise HTTPException(500, "Analysis failed")

    return OffsetResponse(bpm=bpm, offset_ms=offset_ms)
