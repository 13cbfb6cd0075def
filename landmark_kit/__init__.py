"""
Landmark/object detection post-processing for single-image YOLO-style models.

Pipeline: letterbox an RGB image, run one synchronous inference call, decode the
raw output tensor, then apply greedy NMS. Only NumPy and OpenCV are required;
inference runtimes are optional and loaded per backend.
"""

from .types import BoundingBox, Detection, DetectionBatch
from .errors import (
    DecodeLayoutMismatchError,
    DetectorClosedError,
    InferenceBackendError,
    InvalidImageError,
    LandmarkKitError,
)
from .letterbox import LetterboxResult, letterbox
from .decode import DecoderConfig, OutputLayout, TensorDecoder, decode, validate_output_shape
from .nms import NMSConfig, iou, nms, suppress
from .runtime import (
    LANDMARK_CONFIG,
    OBJECT_CONFIG,
    DetectorConfig,
    LandmarkDetector,
    PreprocessResult,
    find_project_root,
    load_detector,
    resolve_path,
)
from .labels import LANDMARK_CLASS_NAMES, load_class_names
from .frames import bgr_to_rgb, nv21_to_rgb, read_image, yuv_planes_to_nv21
from .config import DetectorProfile, load_detector_from_profile, load_detector_profile

__all__ = [
    "BoundingBox",
    "Detection",
    "DetectionBatch",
    "DecodeLayoutMismatchError",
    "DetectorClosedError",
    "InferenceBackendError",
    "InvalidImageError",
    "LandmarkKitError",
    "LetterboxResult",
    "letterbox",
    "DecoderConfig",
    "OutputLayout",
    "TensorDecoder",
    "decode",
    "validate_output_shape",
    "NMSConfig",
    "iou",
    "nms",
    "suppress",
    "LANDMARK_CONFIG",
    "OBJECT_CONFIG",
    "DetectorConfig",
    "LandmarkDetector",
    "PreprocessResult",
    "find_project_root",
    "load_detector",
    "resolve_path",
    "LANDMARK_CLASS_NAMES",
    "load_class_names",
    "bgr_to_rgb",
    "nv21_to_rgb",
    "read_image",
    "yuv_planes_to_nv21",
    "DetectorProfile",
    "load_detector_from_profile",
    "load_detector_profile",
]
