from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from detect_kit.errors import LoadError
from detect_kit.processors import ModelType, parse_model_type
from detect_kit.processors.base import DEFAULT_MAX_WAIT_CYCLES

DISPLAY_FITS = ("source", "model")


@dataclass(frozen=True)
class SourceConfig:
    video: Optional[str] = None
    webcam: Optional[int] = None
    rtsp: Optional[str] = None
    loop_video: bool = False

    @property
    def count(self) -> int:
        return int(self.video is not None) + int(self.webcam is not None) + int(self.rtsp is not None)


@dataclass(frozen=True)
class DisplayConfig:
    """
    `fit="source"`: the viewport shows the raw frame, boxes are un-letterboxed first.
    `fit="model"`: the viewport shows the model input, boxes are scaled straight across.
    """

    width: Optional[int] = None
    height: Optional[int] = None
    fit: str = "source"

    def __post_init__(self) -> None:
        if (self.width is None) != (self.height is None):
            raise ValueError("display width and height must be set together")
        if self.width is not None and (self.width <= 0 or self.height <= 0):
            raise ValueError("display width/height must be > 0")
        if self.fit not in DISPLAY_FITS:
            raise ValueError(f"display fit must be one of {DISPLAY_FITS}")


@dataclass(frozen=True)
class DetectorConfig:
    model: str
    labels: str
    model_type: ModelType = ModelType.YOLO
    backend: Optional[str] = None
    iou_threshold: float = 0.45
    score_threshold: float = 0.5
    max_wait_cycles: int = DEFAULT_MAX_WAIT_CYCLES
    source: SourceConfig = field(default_factory=SourceConfig)
    display: DisplayConfig = field(default_factory=DisplayConfig)

    def __post_init__(self) -> None:
        if not self.model:
            raise ValueError("model must be set")
        if not self.labels:
            raise ValueError("labels must be set")
        if not (0.0 <= self.iou_threshold <= 1.0):
            raise ValueError("iou_threshold must be within [0, 1]")
        if not (0.0 <= self.score_threshold <= 1.0):
            raise ValueError("score_threshold must be within [0, 1]")
        if self.max_wait_cycles < 1:
            raise ValueError("max_wait_cycles must be >= 1")
        if self.source.count > 1:
            raise ValueError("source must set only one of video/webcam/rtsp")


def _require_str(payload: Dict[str, Any], key: str) -> str:
    if key not in payload:
        raise ValueError(f"Missing required key: {key}")
    value = payload[key]
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{key} must be a non-empty string")
    return value.strip()


def _optional_number(payload: Dict[str, Any], key: str, default: float) -> float:
    if key not in payload:
        return default
    value = payload[key]
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{key} must be a number")
    return float(value)


def _optional_int(payload: Dict[str, Any], key: str, default: Optional[int]) -> Optional[int]:
    if key not in payload or payload[key] is None:
        return default
    value = payload[key]
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{key} must be an integer")
    return int(value)


def _source_from_payload(raw: Any) -> SourceConfig:
    if raw is None:
        return SourceConfig()
    if not isinstance(raw, dict):
        raise ValueError("'source' must be an object")
    unknown = sorted(set(raw.keys()) - {"video", "webcam", "rtsp", "loop_video"})
    if unknown:
        raise ValueError(f"Unknown source keys: {unknown}")
    video = raw.get("video") or None
    rtsp = raw.get("rtsp") or None
    if video is not None and not isinstance(video, str):
        raise ValueError("source.video must be a string path")
    if rtsp is not None and not isinstance(rtsp, str):
        raise ValueError("source.rtsp must be a string URL")
    webcam = _optional_int(raw, "webcam", None)
    loop_video = raw.get("loop_video", False)
    if not isinstance(loop_video, bool):
        raise ValueError("source.loop_video must be a boolean")
    return SourceConfig(video=video, webcam=webcam, rtsp=rtsp, loop_video=loop_video)


def _display_from_payload(raw: Any) -> DisplayConfig:
    if raw is None:
        return DisplayConfig()
    if not isinstance(raw, dict):
        raise ValueError("'display' must be an object")
    unknown = sorted(set(raw.keys()) - {"width", "height", "fit"})
    if unknown:
        raise ValueError(f"Unknown display keys: {unknown}")
    fit = raw.get("fit", "source")
    if not isinstance(fit, str):
        raise ValueError("display.fit must be a string")
    return DisplayConfig(
        width=_optional_int(raw, "width", None),
        height=_optional_int(raw, "height", None),
        fit=fit,
    )


def config_from_dict(payload: Dict[str, Any]) -> DetectorConfig:
    allowed = {
        "model",
        "labels",
        "model_type",
        "backend",
        "iou_threshold",
        "score_threshold",
        "max_wait_cycles",
        "source",
        "display",
    }
    unknown = sorted(set(payload.keys()) - allowed)
    if unknown:
        raise ValueError(f"Unknown detector config keys: {unknown}")

    backend = payload.get("backend")
    if backend is not None and not isinstance(backend, str):
        raise ValueError("backend must be a string if provided")

    try:
        model_type = parse_model_type(payload.get("model_type", ModelType.YOLO.value))
    except LoadError as exc:
        raise ValueError(str(exc)) from exc

    return DetectorConfig(
        model=_require_str(payload, "model"),
        labels=_require_str(payload, "labels"),
        model_type=model_type,
        backend=backend or None,
        iou_threshold=_optional_number(payload, "iou_threshold", 0.45),
        score_threshold=_optional_number(payload, "score_threshold", 0.5),
        max_wait_cycles=_optional_int(payload, "max_wait_cycles", DEFAULT_MAX_WAIT_CYCLES),
        source=_source_from_payload(payload.get("source")),
        display=_display_from_payload(payload.get("display")),
    )


def load_config_payload(path: Path) -> Dict[str, Any]:
    """Read a detector config file as a raw JSON object, before validation."""
    if not path.exists():
        raise FileNotFoundError(f"Detector config not found: {path}")
    raw = path.read_text(encoding="utf-8")
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid detector config JSON: {path}") from exc
    if not isinstance(payload, dict):
        raise ValueError("Detector config must be a JSON object")
    return payload


def load_detector_config(path: Path) -> DetectorConfig:
    return config_from_dict(load_config_payload(path))
