from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Sequence, Tuple

import numpy as np

from .errors import DecodeLayoutMismatchError
from .types import BoundingBox, Detection

logger = logging.getLogger(__name__)

# Fields stored ahead of the class scores in a grid record: confidence, cx, cy, w, h.
GRID_RECORD_HEADER = 5


class OutputLayout(str, Enum):
    """
    Supported raw output layouts (per image, batch axis of 1 optional):

    - CHANNEL_MAJOR: (4 + C, N) rows cx, cy, w, h, then one score row per class.
      e.g. 14 x 5376 for a 10-class model at 512.
    - GRID: (A, H, W) one float per (anchor, cell). The record for a cell starts at
      its flat offset and reads confidence, cx, cy, w, h, class scores.
    """

    CHANNEL_MAJOR = "channel_major"
    GRID = "grid"


@dataclass(frozen=True)
class OutputSpec:
    layout: OutputLayout
    num_classes: int
    shape: Tuple[int, ...]

    @property
    def num_candidates(self) -> int:
        if self.layout is OutputLayout.CHANNEL_MAJOR:
            return self.shape[1]
        anchors, grid_h, grid_w = self.shape
        return anchors * grid_h * grid_w


def validate_output_shape(shape: Sequence[int], layout: OutputLayout, num_classes: int) -> OutputSpec:
    """
    Check a raw output shape against the configured layout.

    Returns the per-image shape (batch axis removed) or raises
    DecodeLayoutMismatchError.
    """

    layout = OutputLayout(layout)
    if num_classes < 1:
        raise DecodeLayoutMismatchError(f"num_classes must be >= 1, got {num_classes}")

    dims = tuple(int(d) for d in shape)
    per_image_rank = 2 if layout is OutputLayout.CHANNEL_MAJOR else 3
    if len(dims) == per_image_rank + 1:
        if dims[0] != 1:
            raise DecodeLayoutMismatchError(f"Batch > 1 is not supported (got shape {dims}). Pass one image at a time.")
        dims = dims[1:]
    if len(dims) != per_image_rank:
        raise DecodeLayoutMismatchError(f"{layout.value} layout expects a rank-{per_image_rank} tensor, got shape {dims}")

    if layout is OutputLayout.CHANNEL_MAJOR:
        expected = 4 + num_classes
        if dims[0] != expected:
            raise DecodeLayoutMismatchError(
                f"channel_major layout expects {expected} attribute rows for {num_classes} classes, got shape {dims}"
            )
        if dims[1] < 1:
            raise DecodeLayoutMismatchError(f"Output has no candidates: {dims}")
    else:
        if any(d < 1 for d in dims):
            raise DecodeLayoutMismatchError(f"grid layout has an empty axis: {dims}")
        if int(np.prod(dims)) < GRID_RECORD_HEADER + num_classes:
            raise DecodeLayoutMismatchError(
                f"grid buffer of shape {dims} cannot hold a single {GRID_RECORD_HEADER + num_classes}-value record"
            )

    return OutputSpec(layout=layout, num_classes=num_classes, shape=dims)


@dataclass(frozen=True)
class DecoderConfig:
    layout: OutputLayout = OutputLayout.CHANNEL_MAJOR
    num_classes: int = 10
    # Strict: a candidate scoring exactly this value is dropped.
    confidence_threshold: float = 0.5


class TensorDecoder:
    """
    Turns one raw output tensor into thresholded candidate detections.

    Boxes are normalized to [0, 1]. The grid layout can emit pixel boxes instead
    when `image_size` is passed to `decode`.
    """

    def __init__(self, cfg: DecoderConfig, class_names: Optional[Sequence[str]] = None):
        if class_names is not None and len(class_names) < cfg.num_classes:
            raise ValueError(f"Label table has {len(class_names)} names but the model has {cfg.num_classes} classes.")
        self.cfg = cfg
        self.class_names = list(class_names) if class_names is not None else None

    def decode(self, raw_output: np.ndarray, image_size: Optional[Tuple[int, int]] = None) -> List[Detection]:
        p = np.asarray(raw_output)
        spec = validate_output_shape(p.shape, self.cfg.layout, self.cfg.num_classes)
        p = p.reshape(spec.shape).astype(np.float32, copy=False)

        if spec.layout is OutputLayout.CHANNEL_MAJOR:
            boxes, scores, class_ids = self._decode_channel_major(p)
        else:
            boxes, scores, class_ids = self._decode_grid(p, image_size)

        detections = [
            Detection(
                box=BoundingBox(left=float(x1), top=float(y1), right=float(x2), bottom=float(y2)),
                confidence=float(score),
                class_index=int(cls_id),
                class_name=self._class_name(int(cls_id)),
            )
            for (x1, y1, x2, y2), score, cls_id in zip(boxes, scores, class_ids)
        ]
        logger.debug("Decoded %d candidates from %s output %s", len(detections), spec.layout.value, spec.shape)
        return detections

    # ------------------------------------------------------------------ #
    # Internal helpers
    # ------------------------------------------------------------------ #
    def _class_name(self, class_id: int) -> str:
        assert 0 <= class_id < self.cfg.num_classes, f"class index {class_id} outside [0, {self.cfg.num_classes})"
        if self.class_names is None:
            return str(class_id)
        return self.class_names[class_id]

    def _decode_channel_major(self, p: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        threshold = np.float32(self.cfg.confidence_threshold)
        cx, cy, w_box, h_box = p[0], p[1], p[2], p[3]
        class_scores = p[4 : 4 + self.cfg.num_classes]

        # argmax returns the first index on ties.
        class_ids = np.argmax(class_scores, axis=0)
        scores = class_scores[class_ids, np.arange(class_scores.shape[1])]

        keep = (w_box > 0) & (h_box > 0) & (scores > threshold)
        keep[keep] = _in_unit_range(scores[keep])
        boxes = _cxcywh_to_clamped_xyxy(cx[keep], cy[keep], w_box[keep], h_box[keep], (1, 1))
        return _drop_degenerate(boxes, scores[keep], class_ids[keep])

    def _decode_grid(
        self, p: np.ndarray, image_size: Optional[Tuple[int, int]]
    ) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        threshold = np.float32(self.cfg.confidence_threshold)
        flat = p.reshape(-1)
        record_len = GRID_RECORD_HEADER + self.cfg.num_classes

        # The record for cell (anchor, y, x) starts at anchor*H*W + y*W + x, so the
        # confidence of every cell is simply the flat buffer itself. Nothing else is
        # read for cells at or below threshold.
        hits = np.flatnonzero(flat > threshold)
        hits = hits[_in_unit_range(flat[hits])]
        if hits.size == 0:
            return np.empty((0, 4), np.float32), np.empty((0,), np.float32), np.empty((0,), np.int64)

        last = int(hits[-1]) + record_len
        if last > flat.size:
            raise DecodeLayoutMismatchError(
                f"grid record at offset {int(hits[-1])} needs {record_len} values but the buffer holds {flat.size}"
            )

        fields = flat[hits[:, None] + np.arange(1, record_len)]
        cx, cy, w_box, h_box = fields[:, 0], fields[:, 1], fields[:, 2], fields[:, 3]
        class_ids = np.argmax(fields[:, 4:], axis=1)
        scores = flat[hits]

        keep = (w_box > 0) & (h_box > 0)
        size = image_size if image_size is not None else (1, 1)
        boxes = _cxcywh_to_clamped_xyxy(cx[keep], cy[keep], w_box[keep], h_box[keep], size)
        return _drop_degenerate(boxes, scores[keep], class_ids[keep])


def _cxcywh_to_clamped_xyxy(
    cx: np.ndarray, cy: np.ndarray, w_box: np.ndarray, h_box: np.ndarray, size: Tuple[int, int]
) -> np.ndarray:
    width, height = np.float32(size[0]), np.float32(size[1])
    zero = np.float32(0.0)
    half_w = w_box / np.float32(2.0)
    half_h = h_box / np.float32(2.0)
    x1 = np.clip((cx - half_w) * width, zero, width)
    y1 = np.clip((cy - half_h) * height, zero, height)
    x2 = np.clip((cx + half_w) * width, zero, width)
    y2 = np.clip((cy + half_h) * height, zero, height)
    return np.stack([x1, y1, x2, y2], axis=1).astype(np.float32, copy=False)


def _in_unit_range(scores: np.ndarray) -> np.ndarray:
    """Mask of scores a Detection can carry; anything above 1 is a broken output value."""
    ok = scores <= np.float32(1.0)
    dropped = int(ok.size - np.count_nonzero(ok))
    if dropped:
        logger.debug("Dropped %d candidates scoring above 1.0", dropped)
    return ok


def _drop_degenerate(
    boxes: np.ndarray, scores: np.ndarray, class_ids: np.ndarray
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    # Clamping to the image can collapse a box that sits on the edge.
    keep = (boxes[:, 2] > boxes[:, 0]) & (boxes[:, 3] > boxes[:, 1])
    return boxes[keep], scores[keep], class_ids[keep]


def decode(
    raw_output: np.ndarray,
    layout: OutputLayout,
    num_classes: int,
    confidence_threshold: float,
    class_names: Optional[Sequence[str]] = None,
    image_size: Optional[Tuple[int, int]] = None,
) -> List[Detection]:
    """
    Functional entry point: decode `raw_output` with a one-off TensorDecoder.
    """

    cfg = DecoderConfig(layout=OutputLayout(layout), num_classes=num_classes, confidence_threshold=confidence_threshold)
    return TensorDecoder(cfg, class_names).decode(raw_output, image_size=image_size)
