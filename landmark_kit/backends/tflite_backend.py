from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

import numpy as np

from . import static_shape


PathLike = Union[str, Path]


@dataclass(frozen=True)
class TfliteBackendConfig:
    """
    Configuration for TensorFlow Lite inference.

    - num_threads: interpreter thread count (the mobile app used 4)
    - output_index: which output tensor to return
    """

    num_threads: Optional[int] = 4
    output_index: int = 0


class TfliteBackend:
    """
    TensorFlow Lite interpreter backend (`tflite_runtime`).

    Takes an NHWC float32 tensor, typically (1, S, S, 3).
    """

    def __init__(self, model_path: PathLike, cfg: TfliteBackendConfig = TfliteBackendConfig()):
        try:
            import tflite_runtime.interpreter as tflite  # type: ignore
        except Exception as e:  # pragma: no cover
            raise ImportError(
                "tflite_runtime is required for the TFLite backend. Install with `pip install tflite-runtime`."
            ) from e

        self.model_path = Path(model_path)
        if not self.model_path.exists():
            raise FileNotFoundError(str(self.model_path))

        self.interpreter = tflite.Interpreter(model_path=str(self.model_path), num_threads=cfg.num_threads)
        self.interpreter.allocate_tensors()

        input_details = self.interpreter.get_input_details()
        output_details = self.interpreter.get_output_details()
        if cfg.output_index < 0 or cfg.output_index >= len(output_details):
            raise IndexError(f"output_index {cfg.output_index} out of range (num outputs={len(output_details)}).")

        self.input_index = input_details[0]["index"]
        self.output_index = output_details[cfg.output_index]["index"]
        self.input_shape = static_shape(input_details[0]["shape"].tolist())
        self.output_shape = static_shape(output_details[cfg.output_index]["shape"].tolist())

    def run(self, tensor: np.ndarray) -> np.ndarray:
        if self.interpreter is None:
            raise RuntimeError("TFLite interpreter is closed.")
        self.interpreter.set_tensor(self.input_index, np.ascontiguousarray(tensor, dtype=np.float32))
        self.interpreter.invoke()
        # get_tensor copies, so the result outlives the next invoke().
        return self.interpreter.get_tensor(self.output_index)

    def close(self) -> None:
        self.interpreter = None
