from __future__ import annotations

from datetime import datetime
from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from models.config import check_confidence_threshold, check_interval_ms

DeviceIdField = Union[int, str]


class StatsResponse(BaseModel):
    total_detections: int
    person_count: int
    vehicle_count: int
    animal_count: int
    object_count: int
    fps: int = Field(..., description="Sampling calls completed in the last 1s window")
    avg_confidence: float = Field(..., description="Mean confidence of the latest batch, 0-100")


class DetectionResponse(BaseModel):
    id: str
    label: str
    category: str
    confidence: float
    confidence_pct: int
    bbox: List[float] = Field(..., description="[x, y, width, height] in frame pixels")
    observed_at: datetime


class LogEntryResponse(BaseModel):
    id: str
    timestamp: datetime
    frame_number: int
    detections: List[DetectionResponse]


class DeviceResponse(BaseModel):
    device_id: DeviceIdField
    label: str


class SettingsResponse(BaseModel):
    confidence_threshold: float
    interval_ms: int
    detection_enabled: bool
    device_id: Optional[DeviceIdField] = None


class SettingsUpdate(BaseModel):
    """Partial settings update; omitted fields keep their current value."""
    confidence_threshold: Optional[float] = Field(None, description="0.10-0.90 in 0.05 steps")
    interval_ms: Optional[int] = Field(None, description="50-500 ms in 50 ms steps")
    detection_enabled: Optional[bool] = None
    device_id: Optional[DeviceIdField] = None

    @field_validator("confidence_threshold")
    @classmethod
    def _check_threshold(cls, v):
        return None if v is None else check_confidence_threshold(v)

    @field_validator("interval_ms")
    @classmethod
    def _check_interval(cls, v):
        return None if v is None else check_interval_ms(v)


class StreamStartRequest(BaseModel):
    device_id: Optional[DeviceIdField] = None


class StatusResponse(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    streaming: bool
    device_id: Optional[DeviceIdField] = None
    stream_error: Optional[str] = Field(None, description="Last camera access failure, cleared on success")
    model_state: str = Field(..., description="not_loaded|loading|ready|failed")
    model_error: Optional[str] = None
    sampler_state: str = Field(..., description="idle|waiting_model|sampling")
    tick_policy: str
    inflight_ticks: int
    tick_errors: int
    skipped_ticks: int
    log_entries: int
    settings: SettingsResponse


class ExportSavedResponse(BaseModel):
    path: str
    total_logs: int
