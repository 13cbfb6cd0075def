from dataclasses import dataclass
from typing import Tuple

import numpy as np

from .errors import InvalidImageError
from .types import BoundingBox


def _split_pad(pad: float) -> Tuple[int, int]:
    # Odd padding puts the extra pixel on the right/bottom edge.
    return int(round(pad - 0.1)), int(round(pad + 0.1))


@dataclass(frozen=True)
class LetterboxResult:
    """
    Letterboxed image plus the geometry needed to undo the transform.

    Attributes:
        image: `target_size` x `target_size` x 3 canvas
        scale: resize factor applied to the source image
        pad_x: horizontal padding on each side (may be fractional)
        pad_y: vertical padding on each side (may be fractional)
        source_size: (width, height) of the source image
        resized_size: (width, height) of the resized image inside the canvas
    """

    image: np.ndarray
    scale: float
    pad_x: float
    pad_y: float
    source_size: Tuple[int, int]
    resized_size: Tuple[int, int]

    @property
    def target_size(self) -> int:
        return int(self.image.shape[0])

    def to_source(self, box: BoundingBox) -> BoundingBox:
        """
        Map a normalized box in letterboxed (detector) space back to normalized
        source-image space, clamped to the unit square.
        """

        size = float(self.target_size)
        left_pad, _ = _split_pad(self.pad_x)
        top_pad, _ = _split_pad(self.pad_y)
        src_w, src_h = self.source_size

        def _x(v: float) -> float:
            return float(np.clip((v * size - left_pad) / self.scale / src_w, 0.0, 1.0))

        def _y(v: float) -> float:
            return float(np.clip((v * size - top_pad) / self.scale / src_h, 0.0, 1.0))

        return BoundingBox(left=_x(box.left), top=_y(box.top), right=_x(box.right), bottom=_y(box.bottom))


def letterbox(
    image: np.ndarray,
    target_size: int = 512,
    color: Tuple[int, int, int] = (0, 0, 0),
) -> LetterboxResult:
    """
    Resize `image` into a square `target_size` canvas, keeping its aspect ratio and
    centering it on a solid `color` background.

    The source array is never modified.
    """
    try:
        import cv2  # type: ignore
    except Exception as e:  # pragma: no cover
        raise ImportError("OpenCV is required for letterbox(). Install with `pip install opencv-python`.") from e

    if image is None or not hasattr(image, "shape"):
        raise InvalidImageError("image must be a NumPy array (RGB).")
    if image.ndim != 3 or image.shape[2] != 3:
        raise InvalidImageError(f"Expected image shape (H, W, 3), got {image.shape}")
    if isinstance(target_size, bool) or int(target_size) <= 0:
        raise InvalidImageError(f"target_size must be a positive integer, got {target_size!r}")

    h, w = image.shape[:2]
    if w == 0 or h == 0:
        raise InvalidImageError(f"Image has a zero dimension: {w}x{h}")

    target_size = int(target_size)
    scale = min(target_size / w, target_size / h)
    resized_w = max(1, int(round(w * scale)))
    resized_h = max(1, int(round(h * scale)))

    pad_x = (target_size - resized_w) / 2
    pad_y = (target_size - resized_h) / 2

    resized = image
    if (w, h) != (resized_w, resized_h):
        resized = cv2.resize(image, (resized_w, resized_h), interpolation=cv2.INTER_LINEAR)

    top, bottom = _split_pad(pad_y)
    left, right = _split_pad(pad_x)
    canvas = cv2.copyMakeBorder(resized, top, bottom, left, right, cv2.BORDER_CONSTANT, value=color)

    return LetterboxResult(
        image=canvas,
        scale=scale,
        pad_x=pad_x,
        pad_y=pad_y,
        source_size=(w, h),
        resized_size=(resized_w, resized_h),
    )
