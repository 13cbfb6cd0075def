from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, Optional, Tuple


@dataclass(frozen=True)
class BoundingBox:
    """
    Axis-aligned box as (left, top, right, bottom).

    Boxes produced by the decoder are normalized to [0, 1] image space unless the
    detector is configured for pixel output.
    """

    left: float
    top: float
    right: float
    bottom: float

    @property
    def width(self) -> float:
        return self.right - self.left

    @property
    def height(self) -> float:
        return self.bottom - self.top

    @property
    def area(self) -> float:
        return self.width * self.height

    def as_xyxy(self) -> Tuple[float, float, float, float]:
        return self.left, self.top, self.right, self.bottom


@dataclass(frozen=True)
class Detection:
    """
    A labeled, confidence-scored box.

    Used both for decoder candidates and for the results handed back to callers.
    """

    box: BoundingBox
    confidence: float
    class_index: int
    class_name: str

    def __post_init__(self) -> None:
        if not self.box.right > self.box.left or not self.box.bottom > self.box.top:
            raise ValueError(f"Detection box must have positive area, got {self.box.as_xyxy()}")
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence must be in [0, 1], got {self.confidence}")
        if self.class_index < 0:
            raise ValueError(f"class_index must be >= 0, got {self.class_index}")

    def as_xyxy(self) -> Tuple[float, float, float, float]:
        return self.box.as_xyxy()

    def to_pixels(self, width: int, height: int) -> Tuple[float, float, float, float]:
        """Scale a normalized box to pixel coordinates of a `width` x `height` surface."""
        return (
            self.box.left * width,
            self.box.top * height,
            self.box.right * width,
            self.box.bottom * height,
        )


@dataclass(frozen=True)
class DetectionBatch:
    """
    Result of one `detect` call.

    Behaves like a read-only sequence of detections. A frame whose inference or
    decode step failed comes back empty with `error` set, so it can be told apart
    from a frame with nothing in it.
    """

    detections: Tuple[Detection, ...] = ()
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def __len__(self) -> int:
        return len(self.detections)

    def __iter__(self) -> Iterator[Detection]:
        return iter(self.detections)

    def __getitem__(self, index: int) -> Detection:
        return self.detections[index]
