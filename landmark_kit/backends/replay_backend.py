from __future__ import annotations

from pathlib import Path
from typing import Optional, Tuple, Union

import numpy as np


PathLike = Union[str, Path]


class ReplayBackend:
    """
    Backend that returns a recorded output tensor for every call.

    Stands in for a real model when exercising the camera/UI side or reproducing a
    frame offline. Selected explicitly (backend="replay"); never used as a silent
    substitute for a model that failed to load.
    """

    def __init__(self, output: np.ndarray, input_shape: Optional[Tuple[int, ...]] = None):
        self._output = np.array(output, dtype=np.float32)
        self._output.setflags(write=False)
        self.output_shape: Optional[Tuple[int, ...]] = tuple(int(d) for d in self._output.shape)
        self.input_shape = tuple(input_shape) if input_shape is not None else None
        self.calls = 0
        self.closed = False

    @classmethod
    def from_file(cls, path: PathLike) -> "ReplayBackend":
        """Load a tensor saved with `numpy.save`."""
        p = Path(path)
        if not p.exists():
            raise FileNotFoundError(str(p))
        return cls(np.load(str(p), allow_pickle=False))

    def run(self, tensor: np.ndarray) -> np.ndarray:
        if self.closed:
            raise RuntimeError("Replay backend is closed.")
        if self.input_shape is not None and tuple(tensor.shape) != self.input_shape:
            raise ValueError(f"Expected input shape {self.input_shape}, got {tuple(tensor.shape)}")
        self.calls += 1
        return self._output

    def close(self) -> None:
        self.closed = True
