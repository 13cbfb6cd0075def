from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np

from .types import BoundingBox, Detection


@dataclass(frozen=True)
class NMSConfig:
    iou_threshold: float = 0.5
    # None keeps every surviving box.
    max_detections: Optional[int] = None
    # If False, boxes only suppress boxes of the same class.
    class_agnostic: bool = True


def iou(a: BoundingBox, b: BoundingBox) -> float:
    inter_w = max(0.0, min(a.right, b.right) - max(a.left, b.left))
    inter_h = max(0.0, min(a.bottom, b.bottom) - max(a.top, b.top))
    inter = inter_w * inter_h
    union = a.area + b.area - inter
    if union <= 0:
        raise ValueError(f"IoU undefined for zero-area boxes {a.as_xyxy()} and {b.as_xyxy()}")
    return inter / union


def nms(boxes: np.ndarray, scores: np.ndarray, cfg: NMSConfig) -> np.ndarray:
    """
    Greedy NumPy NMS. Expects boxes shape (N,4) in xyxy and scores shape (N,).
    Returns indices of kept boxes, highest score first; equal scores keep input order.
    """

    if boxes.size == 0:
        return np.empty((0,), dtype=np.int64)

    x1 = boxes[:, 0]
    y1 = boxes[:, 1]
    x2 = boxes[:, 2]
    y2 = boxes[:, 3]
    areas = (x2 - x1) * (y2 - y1)

    order = np.argsort(-scores, kind="stable")
    keep = []

    while order.size > 0:
        if cfg.max_detections is not None and len(keep) >= cfg.max_detections:
            break
        i = order[0]
        keep.append(i)

        xx1 = np.maximum(x1[i], x1[order[1:]])
        yy1 = np.maximum(y1[i], y1[order[1:]])
        xx2 = np.minimum(x2[i], x2[order[1:]])
        yy2 = np.minimum(y2[i], y2[order[1:]])

        w = np.maximum(0.0, xx2 - xx1)
        h = np.maximum(0.0, yy2 - yy1)
        inter = w * h
        union = areas[i] + areas[order[1:]] - inter
        if np.any(union <= 0):
            raise ValueError("NMS received zero-area boxes; degenerate boxes must be dropped before suppression.")
        overlap = inter / union

        inds = np.where(overlap <= cfg.iou_threshold)[0]
        order = order[inds + 1]

    return np.array(keep, dtype=np.int64)


def suppress(
    candidates: Sequence[Detection],
    iou_threshold: float,
    max_detections: Optional[int] = None,
    class_agnostic: bool = True,
) -> List[Detection]:
    """
    Greedy non-maximum suppression over decoded candidates.

    The result is ordered by descending confidence. By default boxes of different
    classes suppress each other.
    """

    if not candidates:
        return []

    cfg = NMSConfig(iou_threshold=iou_threshold, max_detections=max_detections, class_agnostic=class_agnostic)
    boxes = np.array([c.as_xyxy() for c in candidates], dtype=np.float32)
    scores = np.array([c.confidence for c in candidates], dtype=np.float32)

    if cfg.class_agnostic:
        keep_idx = nms(boxes, scores, cfg)
        return [candidates[int(i)] for i in keep_idx]

    class_ids = np.array([c.class_index for c in candidates], dtype=np.int64)
    kept: List[int] = []
    for cls in np.unique(class_ids):
        idx = np.where(class_ids == cls)[0]
        keep_local = nms(boxes[idx], scores[idx], cfg)
        kept.extend(idx[keep_local].tolist())

    # Re-merge by score, falling back to input order on ties.
    kept.sort(key=lambda i: (-scores[i], i))
    if cfg.max_detections is not None:
        kept = kept[: cfg.max_detections]
    return [candidates[i] for i in kept]
