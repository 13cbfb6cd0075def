"""
Inference backends for landmark_kit.

Every backend wraps one loaded model and exposes the same small surface:

    run(tensor) -> ndarray   synchronous, one image per call
    close()                  release the model; no `run` is valid afterwards
    input_shape / output_shape   fixed tensor shapes, or None when the runtime
                                 reports dynamic dimensions

Runtimes are imported lazily inside each backend so the pre/post-processing core
works without any of them installed.
"""

from __future__ import annotations

from typing import Optional, Protocol, Tuple, runtime_checkable

import numpy as np


@runtime_checkable
class InferenceBackend(Protocol):
    input_shape: Optional[Tuple[int, ...]]
    output_shape: Optional[Tuple[int, ...]]

    def run(self, tensor: np.ndarray) -> np.ndarray:
        ...

    def close(self) -> None:
        ...


def static_shape(dims) -> Optional[Tuple[int, ...]]:
    """Return `dims` as an int tuple, or None if any dimension is symbolic or unknown."""
    if dims is None:
        return None
    out = []
    for d in dims:
        if isinstance(d, bool) or not isinstance(d, (int, np.integer)) or int(d) < 0:
            return None
        out.append(int(d))
    return tuple(out)


__all__ = ["InferenceBackend", "static_shape"]
