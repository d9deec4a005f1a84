from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse, Response, StreamingResponse

from analytics.export import export_filename
from inference.backend import ModelLoadError
from models.detection import Detection
from models.log import DetectionLogEntry
from observation.base import DeviceAccessError
from pipeline.engine import DetectionEngine, ModelState
from ..api_models import (
    DetectionResponse,
    DeviceResponse,
    ExportSavedResponse,
    LogEntryResponse,
    SettingsResponse,
    SettingsUpdate,
    StatsResponse,
    StatusResponse,
    StreamStartRequest,
)

router = APIRouter()


def get_engine(request: Request) -> DetectionEngine:
    return request.app.state.engine


def _detection_dict(d: Detection) -> Dict[str, Any]:
    return {
        "id": d.id,
        "label": d.label,
        "category": d.category.value,
        "confidence": d.confidence,
        "confidence_pct": d.confidence_pct,
        "bbox": d.bbox.as_list(),
        "observed_at": d.observed_at,
    }


def _log_entry_dict(entry: DetectionLogEntry) -> Dict[str, Any]:
    return {
        "id": entry.id,
        "timestamp": entry.timestamp,
        "frame_number": entry.frame_number,
        "detections": [_detection_dict(d) for d in entry.detections],
    }


def _enable(engine: DetectionEngine) -> None:
    try:
        engine.enable_detection()
    except ModelLoadError as e:
        raise HTTPException(status_code=409, detail=f"Detection model unavailable: {e}")


async def _start_stream(engine: DetectionEngine, device_id) -> None:
    try:
        await engine.start_stream(device_id)
    except DeviceAccessError as e:
        raise HTTPException(status_code=503, detail=str(e))


@router.get("/status", response_model=StatusResponse)
def status(engine: DetectionEngine = Depends(get_engine)):
    """
    Engine status for the UI:
    - streaming / device_id / stream_error: camera state and the last access failure
    - model_state / model_error: not_loaded|loading|ready|failed
    - sampler_state: idle|waiting_model|sampling
    - tick counters and current settings
    """
    return engine.status()


@router.get("/stats", response_model=StatsResponse)
def stats(engine: DetectionEngine = Depends(get_engine)):
    s = engine.snapshot().stats
    return {
        "total_detections": s.total_detections,
        "person_count": s.person_count,
        "vehicle_count": s.vehicle_count,
        "animal_count": s.animal_count,
        "object_count": s.object_count,
        "fps": s.fps,
        "avg_confidence": s.avg_confidence,
    }


@router.get("/detections/current", response_model=List[DetectionResponse])
def current_detections(engine: DetectionEngine = Depends(get_engine)):
    return [_detection_dict(d) for d in engine.current_detections]


@router.get("/logs", response_model=List[LogEntryResponse])
def logs(limit: Optional[int] = None, engine: DetectionEngine = Depends(get_engine)):
    entries = engine.snapshot().logs
    if limit is not None:
        entries = entries[: max(0, limit)]
    return [_log_entry_dict(e) for e in entries]


@router.delete("/logs")
async def clear_logs(engine: DetectionEngine = Depends(get_engine)):
    engine.clear_logs()
    return {"ok": True}


@router.get("/logs/export")
def export_logs(engine: DetectionEngine = Depends(get_engine)):
    return JSONResponse(
        engine.export_document(),
        headers={"Content-Disposition": f'attachment; filename="{export_filename()}"'},
    )


@router.post("/logs/export", response_model=ExportSavedResponse)
def save_export(engine: DetectionEngine = Depends(get_engine)):
    try:
        path = engine.export_to_file()
    except OSError as e:
        raise HTTPException(status_code=500, detail=f"Export failed: {e}")
    return {"path": path, "total_logs": len(engine.snapshot().logs)}


@router.get("/devices", response_model=List[DeviceResponse])
def devices(engine: DetectionEngine = Depends(get_engine)):
    return [d.to_dict() for d in engine.list_devices()]


@router.post("/stream/start", response_model=StatusResponse)
async def stream_start(req: Optional[StreamStartRequest] = None, engine: DetectionEngine = Depends(get_engine)):
    await _start_stream(engine, req.device_id if req else None)
    return engine.status()


@router.post("/stream/stop", response_model=StatusResponse)
async def stream_stop(engine: DetectionEngine = Depends(get_engine)):
    await engine.stop_stream()
    return engine.status()


@router.post("/detection/start", response_model=StatusResponse)
async def detection_start(engine: DetectionEngine = Depends(get_engine)):
    _enable(engine)
    return engine.status()


@router.post("/detection/stop", response_model=StatusResponse)
async def detection_stop(engine: DetectionEngine = Depends(get_engine)):
    engine.disable_detection()
    return engine.status()


@router.post("/model/reload", response_model=StatusResponse)
async def model_reload(engine: DetectionEngine = Depends(get_engine)):
    if not await engine.reload_model():
        raise HTTPException(status_code=409, detail=f"Detection model unavailable: {engine.model_error}")
    return engine.status()


@router.get("/settings", response_model=SettingsResponse)
def get_settings(engine: DetectionEngine = Depends(get_engine)):
    return engine.settings()


@router.put("/settings", response_model=SettingsResponse)
async def update_settings(req: SettingsUpdate, request: Request, engine: DetectionEngine = Depends(get_engine)):
    """
    Apply a settings change as a whole: a request that fails with 409 or 503
    leaves every setting and the persisted overrides as they were.
    """
    if req.detection_enabled and engine.model_state == ModelState.FAILED:
        raise HTTPException(status_code=409, detail=f"Detection model unavailable: {engine.model_error}")

    persisted: Dict[str, Any] = {}

    if req.device_id is not None:
        try:
            await engine.select_device(req.device_id)
        except DeviceAccessError as e:
            raise HTTPException(status_code=503, detail=str(e))
        persisted.setdefault("camera", {})["device_id"] = req.device_id
    if req.confidence_threshold is not None:
        value = engine.set_confidence_threshold(req.confidence_threshold)
        persisted.setdefault("detection", {})["confidence_threshold"] = value
    if req.interval_ms is not None:
        value = engine.set_interval(req.interval_ms)
        persisted.setdefault("detection", {})["interval_ms"] = value
    if req.detection_enabled is not None:
        if req.detection_enabled:
            _enable(engine)
        else:
            engine.disable_detection()

    config_service = getattr(request.app.state, "config_service", None)
    if persisted and config_service is not None:
        try:
            config_service.update_overrides(persisted)
        except OSError as e:
            logging.warning(f"Could not persist settings: {e}")

    return engine.settings()


@router.get("/snapshot.jpg")
def snapshot(engine: DetectionEngine = Depends(get_engine)):
    jpeg_bytes = engine.annotated_jpeg()
    if jpeg_bytes is None:
        raise HTTPException(status_code=404, detail="No frame sampled yet")
    return Response(jpeg_bytes, media_type="image/jpeg", headers={"Cache-Control": "no-store"})


async def mjpeg_frames(engine: DetectionEngine, delay: float) -> AsyncIterator[bytes]:
    """Multipart JPEG chunks of the annotated frame while the camera is open."""
    while engine.is_streaming:
        jpg = await asyncio.to_thread(engine.annotated_jpeg)
        if jpg is not None:
            yield b"--frame\r\nContent-Type: image/jpeg\r\n\r\n" + jpg + b"\r\n"
        await asyncio.sleep(delay)


@router.get("/stream.mjpg")
def overlay_stream(request: Request, engine: DetectionEngine = Depends(get_engine)):
    fps = max(1, min(30, int(getattr(request.app.state, "stream_fps", 10))))
    return StreamingResponse(
        mjpeg_frames(engine, 1.0 / fps),
        media_type="multipart/x-mixed-replace; boundary=frame",
    )
