from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence, Tuple, Union

import numpy as np

from .backends import InferenceBackend
from .decode import DecoderConfig, OutputLayout, TensorDecoder, validate_output_shape
from .errors import DetectorClosedError, InferenceBackendError
from .letterbox import LetterboxResult, letterbox
from .nms import suppress
from .types import BoundingBox, Detection, DetectionBatch

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

BACKEND_SUFFIXES = {
    ".onnx": "onnxruntime",
    ".torchscript": "torchscript",
    ".ts": "torchscript",
    ".pt": "torchscript",
    ".tflite": "tflite",
    ".npy": "replay",
}


def find_project_root(
    start: Optional[PathLike] = None,
    markers: Sequence[str] = ("pyproject.toml", ".git"),
) -> Path:
    """
    Best-effort project root discovery, so `models/best_float32.tflite` resolves the
    same way from scripts, tests and notebooks.
    """

    p = Path(start) if start is not None else Path.cwd()
    p = p.resolve()

    if p.is_file():
        p = p.parent

    for parent in (p, *p.parents):
        for m in markers:
            if (parent / m).exists():
                return parent
    return p


def resolve_path(path: PathLike, root: Optional[PathLike] = "auto") -> Path:
    """
    Resolve `path` to an absolute Path.

    Relative paths are resolved against `root` if provided, the project root otherwise.
    """

    p = Path(path)
    if p.is_absolute():
        return p

    if root == "auto" or root is None:
        base = find_project_root()
    else:
        base = Path(root).resolve()

    return (base / p).resolve()


@dataclass(frozen=True)
class DetectorConfig:
    """
    Everything the pipeline needs to know about the model besides the weights.

    Attributes:
        input_size: square model input side, in pixels
        layout: raw output layout the model emits
        num_classes: number of class scores per candidate
        confidence_threshold: candidates must score strictly above this
        iou_threshold: a box overlapping an accepted box by more than this is dropped
        max_detections: cap on returned detections, None for no cap
        class_agnostic_nms: let boxes of different classes suppress each other
        input_layout: "nhwc" for (1, S, S, 3) inputs, "nchw" for (1, 3, S, S)
        undo_letterbox: map boxes from the padded canvas back onto the source image
        pixel_boxes: grid layout only, report boxes in source-image pixels (the
            letterbox is always undone first)
    """

    input_size: int = 512
    layout: OutputLayout = OutputLayout.CHANNEL_MAJOR
    num_classes: int = 10
    confidence_threshold: float = 0.5
    iou_threshold: float = 0.5
    max_detections: Optional[int] = None
    class_agnostic_nms: bool = True
    input_layout: str = "nhwc"
    undo_letterbox: bool = False
    pixel_boxes: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "layout", OutputLayout(self.layout))
        if self.input_size <= 0:
            raise ValueError("input_size must be > 0")
        if self.num_classes < 1:
            raise ValueError("num_classes must be >= 1")
        if not 0.0 <= self.confidence_threshold <= 1.0:
            raise ValueError("confidence_threshold must be in [0, 1]")
        if not 0.0 <= self.iou_threshold <= 1.0:
            raise ValueError("iou_threshold must be in [0, 1]")
        if self.max_detections is not None and self.max_detections < 1:
            raise ValueError("max_detections must be >= 1 when set")
        if self.input_layout not in ("nhwc", "nchw"):
            raise ValueError("input_layout must be 'nhwc' or 'nchw'")
        if self.pixel_boxes and self.layout is not OutputLayout.GRID:
            raise ValueError("pixel_boxes is only supported for the grid layout")

    @property
    def input_shape(self) -> Tuple[int, int, int, int]:
        s = self.input_size
        return (1, s, s, 3) if self.input_layout == "nhwc" else (1, 3, s, s)


# Ten-class landmark model: 14 x 5376 channel-major output at 512.
LANDMARK_CONFIG = DetectorConfig()

# Generic object model with a dense grid output.
OBJECT_CONFIG = DetectorConfig(
    layout=OutputLayout.GRID,
    num_classes=80,
    iou_threshold=0.45,
    max_detections=10,
)


@dataclass(frozen=True)
class PreprocessResult:
    tensor: np.ndarray
    letterbox: LetterboxResult


class LandmarkDetector:
    """
    Detection pipeline: letterbox -> inference -> decode -> NMS.

    Takes RGB `uint8` images of shape (H, W, 3) and returns a DetectionBatch of
    boxes normalized to the source image.

    A single detector may be shared between threads. `close()` refuses new calls,
    waits for in-flight ones, then releases the backend.
    """

    def __init__(
        self,
        backend: InferenceBackend,
        config: DetectorConfig = LANDMARK_CONFIG,
        class_names: Optional[Sequence[str]] = None,
        *,
        backend_name: Optional[str] = None,
    ):
        self.backend = backend
        self.backend_name = backend_name or type(backend).__name__
        self.config = config
        self.decoder = TensorDecoder(
            DecoderConfig(
                layout=config.layout,
                num_classes=config.num_classes,
                confidence_threshold=config.confidence_threshold,
            ),
            class_names,
        )

        input_shape = getattr(backend, "input_shape", None)
        if input_shape is not None and tuple(input_shape) != config.input_shape:
            raise InferenceBackendError(
                f"{self.backend_name} expects input {tuple(input_shape)}, detector produces {config.input_shape}"
            )
        output_shape = getattr(backend, "output_shape", None)
        if output_shape is not None:
            validate_output_shape(output_shape, config.layout, config.num_classes)

        self._cond = threading.Condition()
        self._in_flight = 0
        self._closed = False

    @property
    def class_names(self) -> Optional[List[str]]:
        return self.decoder.class_names

    @property
    def closed(self) -> bool:
        return self._closed

    def preprocess(self, image_rgb: np.ndarray) -> PreprocessResult:
        lb = letterbox(image_rgb, self.config.input_size)

        # normalize to [0, 1], add batch
        tensor = lb.image.astype(np.float32) / 255.0
        if self.config.input_layout == "nchw":
            tensor = np.transpose(tensor, (2, 0, 1))
        tensor = np.ascontiguousarray(tensor[None, ...])

        return PreprocessResult(tensor=tensor, letterbox=lb)

    def detect(self, image_rgb: np.ndarray) -> DetectionBatch:
        with self._cond:
            if self._closed:
                raise DetectorClosedError("detect() called on a closed detector")
            self._in_flight += 1
        try:
            return self._detect(image_rgb)
        finally:
            with self._cond:
                self._in_flight -= 1
                if self._in_flight == 0:
                    self._cond.notify_all()

    def __call__(self, image_rgb: np.ndarray) -> DetectionBatch:
        return self.detect(image_rgb)

    def close(self) -> None:
        with self._cond:
            if self._closed:
                return
            self._closed = True
            while self._in_flight:
                self._cond.wait()
        self.backend.close()
        logger.debug("Closed %s detector", self.backend_name)

    def __enter__(self) -> "LandmarkDetector":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ------------------------------------------------------------------ #
    # Internal helpers
    # ------------------------------------------------------------------ #
    def _detect(self, image_rgb: np.ndarray) -> DetectionBatch:
        prep = self.preprocess(image_rgb)

        try:
            raw = self.backend.run(prep.tensor)
        except Exception as e:
            logger.exception("Inference failed on %s backend", self.backend_name)
            error = InferenceBackendError(f"{self.backend_name} inference failed: {e}")
            error.__cause__ = e
            return DetectionBatch(error=error)

        try:
            candidates = self.decoder.decode(raw)
        except ValueError as e:
            logger.error("Could not decode %s output of shape %s: %s", self.backend_name, np.shape(raw), e)
            return DetectionBatch(error=e)

        # Padding-only boxes go before NMS so they never take a max_detections slot.
        if self.config.undo_letterbox or self.config.pixel_boxes:
            candidates = _to_source(candidates, prep.letterbox)

        detections = suppress(
            candidates,
            self.config.iou_threshold,
            max_detections=self.config.max_detections,
            class_agnostic=self.config.class_agnostic_nms,
        )
        if self.config.pixel_boxes:
            detections = _to_pixels(detections, prep.letterbox.source_size)

        logger.debug("%d candidates, %d after NMS", len(candidates), len(detections))
        return DetectionBatch(detections=tuple(detections))


def _to_source(detections: Sequence[Detection], lb: LetterboxResult) -> List[Detection]:
    out: List[Detection] = []
    for det in detections:
        box: BoundingBox = lb.to_source(det.box)
        # Boxes lying entirely in the padding collapse to nothing.
        if box.right <= box.left or box.bottom <= box.top:
            continue
        out.append(Detection(box=box, confidence=det.confidence, class_index=det.class_index, class_name=det.class_name))
    return out


def _to_pixels(detections: Sequence[Detection], source_size: Tuple[int, int]) -> List[Detection]:
    width, height = source_size
    return [
        Detection(
            box=BoundingBox(*det.to_pixels(width, height)),
            confidence=det.confidence,
            class_index=det.class_index,
            class_name=det.class_name,
        )
        for det in detections
    ]


def _create_backend(
    name: str,
    model_path: Path,
    *,
    onnx_providers: Optional[Sequence[str]],
    torch_device: str,
    num_threads: Optional[int],
) -> InferenceBackend:
    if name == "onnxruntime":
        from .backends.onnxruntime_backend import OnnxRuntimeBackend, OnnxRuntimeBackendConfig

        return OnnxRuntimeBackend(
            model_path, OnnxRuntimeBackendConfig(providers=onnx_providers, num_threads=num_threads)
        )

    if name == "torchscript":
        from .backends.torchscript_backend import TorchScriptBackend, TorchScriptBackendConfig

        return TorchScriptBackend(model_path, TorchScriptBackendConfig(device=torch_device))

    if name == "tflite":
        from .backends.tflite_backend import TfliteBackend, TfliteBackendConfig

        return TfliteBackend(model_path, TfliteBackendConfig(num_threads=num_threads))

    if name == "replay":
        from .backends.replay_backend import ReplayBackend

        return ReplayBackend.from_file(model_path)

    raise ValueError(f"Unsupported backend: {name!r}")


def _backend_for(model_path: Path, backend: Optional[str]) -> str:
    if backend is not None:
        return backend.lower()
    suffix = model_path.suffix.lower()
    if suffix not in BACKEND_SUFFIXES:
        raise ValueError(f"Could not infer backend from extension '{suffix}'. Pass backend=... explicitly.")
    return BACKEND_SUFFIXES[suffix]


def load_detector(
    model_path: PathLike,
    config: DetectorConfig = LANDMARK_CONFIG,
    *,
    backend: Optional[str] = None,
    class_names: Optional[Sequence[str]] = None,
    fallback_backend: Optional[str] = None,
    fallback_model_path: Optional[PathLike] = None,
    root: Optional[PathLike] = "auto",
    onnx_providers: Optional[Sequence[str]] = None,
    torch_device: str = "cpu",
    num_threads: Optional[int] = None,
) -> LandmarkDetector:
    """
    Load a model from disk and wrap it in a LandmarkDetector.

    Typical usage:
        detector = load_detector("models/best_float32.tflite", class_names=LANDMARK_CLASS_NAMES)

    Args:
        model_path: weights file; relative paths resolve against the project root by default
        backend: "onnxruntime", "torchscript", "tflite" or "replay"; None infers it from the extension
        fallback_backend: backend to load instead if the primary one fails. Off by default,
            and logged as a warning when used.
        fallback_model_path: model file for the fallback backend (defaults to `model_path`)

    Raises:
        InferenceBackendError: the backend (and fallback, if any) could not be loaded
        DecodeLayoutMismatchError: the model's output shape does not match `config`
    """

    resolved = resolve_path(model_path, root=root)
    options = dict(onnx_providers=onnx_providers, torch_device=torch_device, num_threads=num_threads)

    chosen = _backend_for(resolved, backend)
    try:
        be = _create_backend(chosen, resolved, **options)
    except Exception as e:
        if fallback_backend is None:
            raise InferenceBackendError(f"Failed to load {chosen} backend for {resolved}: {e}") from e

        fb_path = resolve_path(fallback_model_path, root=root) if fallback_model_path is not None else resolved
        fb_name = _backend_for(fb_path, fallback_backend)
        logger.warning("Failed to load %s backend for %s (%s); falling back to %s", chosen, resolved, e, fb_name)
        try:
            be = _create_backend(fb_name, fb_path, **options)
        except Exception as fb_e:
            raise InferenceBackendError(f"Fallback {fb_name} backend failed for {fb_path}: {fb_e}") from fb_e
        chosen = fb_name

    try:
        detector = LandmarkDetector(be, config, class_names, backend_name=chosen)
    except Exception:
        be.close()
        raise

    logger.info("Loaded %s detector from %s", chosen, resolved)
    return detector
