"""
Detection log export.

Produces the JSON document handed to whatever stores or downloads it:

    {
      "exportDate": "2024-05-01T12:00:00.000Z",
      "totalLogs": 2,
      "stats": {"totalDetections": ..., "avgConfidence": ...},
      "logs": [
        {"timestamp": "...", "frameNumber": 2,
         "detections": [{"class": "person", "category": "person",
                         "confidence": 87, "bbox": [x, y, w, h]}]}
      ]
    }

Only the confidence is rounded (to a whole percentage); identifiers are left out.
"""

from __future__ import annotations

import json
import logging
import os
from datetime import date, datetime, timezone
from typing import Any, Dict, Optional

from models.log import DetectionLogEntry
from .aggregator import AggregatorSnapshot


def isoformat_utc(dt: datetime) -> str:
    """Format as ISO-8601 in UTC with millisecond precision and a Z suffix."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _entry_to_dict(entry: DetectionLogEntry) -> Dict[str, Any]:
    return {
        "timestamp": isoformat_utc(entry.timestamp),
        "frameNumber": entry.frame_number,
        "detections": [
            {
                "class": d.label,
                "category": d.category.value,
                "confidence": d.confidence_pct,
                "bbox": d.bbox.as_list(),
            }
            for d in entry.detections
        ],
    }


def build_export(snapshot: AggregatorSnapshot, exported_at: Optional[datetime] = None) -> Dict[str, Any]:
    exported_at = exported_at or datetime.now(timezone.utc)
    return {
        "exportDate": isoformat_utc(exported_at),
        "totalLogs": len(snapshot.logs),
        "stats": snapshot.stats.to_dict(),
        "logs": [_entry_to_dict(entry) for entry in snapshot.logs],
    }


def export_filename(day: Optional[date] = None) -> str:
    day = day or datetime.now(timezone.utc).date()
    return f"detection-log-{day.isoformat()}.json"


def write_export(snapshot: AggregatorSnapshot, directory: str, exported_at: Optional[datetime] = None) -> str:
    """Write the export document into directory and return its path."""
    exported_at = exported_at or datetime.now(timezone.utc)
    os.makedirs(directory, exist_ok=True)
    path = os.path.join(directory, export_filename(exported_at.astimezone(timezone.utc).date()))
    with open(path, "w") as f:
        json.dump(build_export(snapshot, exported_at), f, indent=2)
    logging.info(f"Exported {len(snapshot.logs)} detection log entries to {path}")
    return path
