from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .decode import OutputLayout
from .labels import load_class_names
from .runtime import DetectorConfig, LandmarkDetector, load_detector


@dataclass(frozen=True)
class DetectorProfile:
    """
    Model profile loaded from JSON: which weights to run, on which backend, and how
    to read their output.

    Paths are absolute once loaded (relative entries resolve against the profile's
    directory).
    """

    schema_version: int
    model: Path
    backend: Optional[str] = None
    fallback_backend: Optional[str] = None
    fallback_model: Optional[Path] = None
    labels: Optional[Path] = None
    input_size: int = 512
    layout: str = OutputLayout.CHANNEL_MAJOR.value
    num_classes: int = 10
    confidence_threshold: float = 0.5
    iou_threshold: float = 0.5
    max_detections: Optional[int] = None
    class_agnostic_nms: bool = True
    input_layout: str = "nhwc"
    undo_letterbox: bool = False
    pixel_boxes: bool = False
    notes: Optional[str] = None

    def __post_init__(self) -> None:
        if self.schema_version != 1:
            raise ValueError("detector profile schema_version must be 1")
        if self.backend is not None and self.backend not in _BACKENDS:
            raise ValueError(f"backend must be one of {sorted(_BACKENDS)}")
        if self.fallback_backend is not None and self.fallback_backend not in _BACKENDS:
            raise ValueError(f"fallback_backend must be one of {sorted(_BACKENDS)}")
        if self.fallback_model is not None and self.fallback_backend is None:
            raise ValueError("fallback_model requires fallback_backend")
        try:
            OutputLayout(self.layout)
        except ValueError as exc:
            raise ValueError(f"layout must be one of {[m.value for m in OutputLayout]}") from exc

    def detector_config(self) -> DetectorConfig:
        return DetectorConfig(
            input_size=self.input_size,
            layout=OutputLayout(self.layout),
            num_classes=self.num_classes,
            confidence_threshold=self.confidence_threshold,
            iou_threshold=self.iou_threshold,
            max_detections=self.max_detections,
            class_agnostic_nms=self.class_agnostic_nms,
            input_layout=self.input_layout,
            undo_letterbox=self.undo_letterbox,
            pixel_boxes=self.pixel_boxes,
        )

    def class_names(self) -> Optional[List[str]]:
        if self.labels is None:
            return None
        return load_class_names(self.labels)


_BACKENDS = {"onnxruntime", "torchscript", "tflite", "replay"}

_ALLOWED_KEYS = {
    "schema_version",
    "model",
    "backend",
    "fallback_backend",
    "fallback_model",
    "labels",
    "input_size",
    "layout",
    "num_classes",
    "confidence_threshold",
    "iou_threshold",
    "max_detections",
    "class_agnostic_nms",
    "input_layout",
    "undo_letterbox",
    "pixel_boxes",
    "notes",
}


def _require_number(payload: Dict[str, Any], key: str, default: Optional[float] = None) -> float:
    if key not in payload:
        if default is None:
            raise ValueError(f"Missing required key: {key}")
        return default
    value = payload[key]
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{key} must be a number")
    return float(value)


def _require_int(payload: Dict[str, Any], key: str, default: Optional[int] = None) -> int:
    if key not in payload:
        if default is None:
            raise ValueError(f"Missing required key: {key}")
        return default
    value = payload[key]
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{key} must be an integer")
    return int(value)


def _optional_str(payload: Dict[str, Any], key: str) -> Optional[str]:
    value = payload.get(key)
    if value is not None and (not isinstance(value, str) or not value.strip()):
        raise ValueError(f"{key} must be a non-empty string if provided")
    return value


def _optional_bool(payload: Dict[str, Any], key: str, default: bool) -> bool:
    value = payload.get(key, default)
    if not isinstance(value, bool):
        raise ValueError(f"{key} must be a boolean")
    return value


def _resolve(base: Path, value: Optional[str]) -> Optional[Path]:
    if value is None:
        return None
    p = Path(value)
    return p if p.is_absolute() else (base / p).resolve()


def load_detector_profile(path: Union[str, Path]) -> DetectorProfile:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Detector profile not found: {path}")
    raw = path.read_text(encoding="utf-8")
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid detector profile JSON: {path}") from exc
    if not isinstance(payload, dict):
        raise ValueError("Detector profile must be a JSON object")

    unknown = sorted(set(payload.keys()) - _ALLOWED_KEYS)
    if unknown:
        raise ValueError(f"Unknown detector profile keys: {unknown}")

    model = _optional_str(payload, "model")
    if model is None:
        raise ValueError("Missing required key: model")

    max_detections = payload.get("max_detections")
    if max_detections is not None and (isinstance(max_detections, bool) or not isinstance(max_detections, int)):
        raise ValueError("max_detections must be an integer if provided")

    confidence_threshold = _require_number(payload, "confidence_threshold", 0.5)
    iou_threshold = _require_number(payload, "iou_threshold", 0.5)
    for key, value in (("confidence_threshold", confidence_threshold), ("iou_threshold", iou_threshold)):
        if not 0.0 <= value <= 1.0:
            raise ValueError(f"{key} must be in [0, 1]")

    base = path.resolve().parent
    profile = DetectorProfile(
        schema_version=_require_int(payload, "schema_version"),
        model=_resolve(base, model),
        backend=_optional_str(payload, "backend"),
        fallback_backend=_optional_str(payload, "fallback_backend"),
        fallback_model=_resolve(base, _optional_str(payload, "fallback_model")),
        labels=_resolve(base, _optional_str(payload, "labels")),
        input_size=_require_int(payload, "input_size", 512),
        layout=_optional_str(payload, "layout") or OutputLayout.CHANNEL_MAJOR.value,
        num_classes=_require_int(payload, "num_classes", 10),
        confidence_threshold=confidence_threshold,
        iou_threshold=iou_threshold,
        max_detections=max_detections,
        class_agnostic_nms=_optional_bool(payload, "class_agnostic_nms", True),
        input_layout=_optional_str(payload, "input_layout") or "nhwc",
        undo_letterbox=_optional_bool(payload, "undo_letterbox", False),
        pixel_boxes=_optional_bool(payload, "pixel_boxes", False),
        notes=_optional_str(payload, "notes"),
    )
    # Validates the remaining fields eagerly.
    profile.detector_config()
    return profile


def load_detector_from_profile(path: Union[str, Path], **backend_options: Any) -> LandmarkDetector:
    """Load a profile and build the detector it describes."""
    profile = load_detector_profile(path)
    return load_detector(
        profile.model,
        profile.detector_config(),
        backend=profile.backend,
        class_names=profile.class_names(),
        fallback_backend=profile.fallback_backend,
        fallback_model_path=profile.fallback_model,
        **backend_options,
    )
