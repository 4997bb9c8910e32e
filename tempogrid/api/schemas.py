"""Pydantic response models for API."""

from pydantic import BaseModel


class CandidateResponse(BaseModel):
    bpm: float
    phase_offset_ms: float
    cost: float


class TempoResponse(BaseModel):
    bpm: int
    detected: bool
    primary: CandidateResponse
    candidates: list[int] = []


class OffsetResponse(BaseModel):
    bpm: float
    offset_ms: float
