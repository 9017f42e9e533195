"""Telemetry decoding and point-in-time sensor reads."""

from .codec import decode_frame, decode_json, is_object_frame, sanitize_frame
from .snapshot import SensorSnapshotAccessor

__all__ = [
    "SensorSnapshotAccessor",
    "decode_frame",
    "decode_json",
    "is_object_frame",
    "sanitize_frame",
]
