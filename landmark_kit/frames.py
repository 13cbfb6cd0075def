"""
Image-source helpers: camera YUV frames and image files to RGB arrays.
"""

from __future__ import annotations

from pathlib import Path
from typing import Union

import numpy as np

from .errors import InvalidImageError


def _cv2():
    try:
        import cv2  # type: ignore
    except Exception as e:  # pragma: no cover
        raise ImportError("OpenCV is required for frame conversion. Install with `pip install opencv-python`.") from e
    return cv2


def yuv_planes_to_nv21(y_plane: np.ndarray, u_plane: np.ndarray, v_plane: np.ndarray) -> np.ndarray:
    """
    Pack three camera planes into one NV21 byte buffer: all of Y, then V, then U.

    Mirrors how the camera layer hands over YUV_420_888 frames whose chroma planes
    are already pixel-interleaved.
    """

    y = np.asarray(y_plane, dtype=np.uint8).reshape(-1)
    u = np.asarray(u_plane, dtype=np.uint8).reshape(-1)
    v = np.asarray(v_plane, dtype=np.uint8).reshape(-1)
    return np.concatenate([y, v, u])


def nv21_to_rgb(buffer: np.ndarray, width: int, height: int) -> np.ndarray:
    """Convert an NV21 buffer of a `width` x `height` frame to an (H, W, 3) RGB array."""
    if width <= 0 or height <= 0:
        raise InvalidImageError(f"Frame has a zero dimension: {width}x{height}")
    if width % 2 or height % 2:
        raise InvalidImageError(f"NV21 frames need even dimensions, got {width}x{height}")

    expected = width * height * 3 // 2
    data = np.asarray(buffer, dtype=np.uint8).reshape(-1)
    if data.size < expected:
        raise InvalidImageError(f"NV21 buffer holds {data.size} bytes, {width}x{height} needs {expected}")

    cv2 = _cv2()
    yuv = data[:expected].reshape(height * 3 // 2, width)
    return cv2.cvtColor(yuv, cv2.COLOR_YUV2RGB_NV21)


def read_image(path: Union[str, Path]) -> np.ndarray:
    """Read an image file as an (H, W, 3) RGB array."""
    cv2 = _cv2()
    img = cv2.imread(str(path), cv2.IMREAD_COLOR)
    if img is None:
        raise FileNotFoundError(f"Could not read image at path: {path}")
    return cv2.cvtColor(img, cv2.COLOR_BGR2RGB)


def bgr_to_rgb(image_bgr: np.ndarray) -> np.ndarray:
    """Reverse the channel order of an OpenCV-style BGR frame."""
    if image_bgr is None or not hasattr(image_bgr, "shape") or image_bgr.ndim != 3 or image_bgr.shape[2] != 3:
        raise InvalidImageError(f"Expected image shape (H, W, 3), got {getattr(image_bgr, 'shape', None)}")
    return np.ascontiguousarray(image_bgr[:, :, ::-1])
