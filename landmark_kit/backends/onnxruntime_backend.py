from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence, Union

import numpy as np

from . import static_shape


PathLike = Union[str, Path]


@dataclass(frozen=True)
class OnnxRuntimeBackendConfig:
    """
    Configuration for ONNX Runtime inference.

    - providers: ORT execution providers (e.g., ["CPUExecutionProvider"])
    - input_name/output_name: override auto-selected I/O names if needed
    - num_threads: intra-op thread count, None lets ORT decide
    """

    providers: Optional[Sequence[str]] = None
    input_name: Optional[str] = None
    output_name: Optional[str] = None
    num_threads: Optional[int] = None


class OnnxRuntimeBackend:
    """
    ONNX Runtime backend.

    Takes a float32 tensor shaped like the model input (usually (1, 3, S, S) for
    ONNX exports) and returns the selected output as a NumPy array.
    """

    def __init__(self, model_path: PathLike, cfg: OnnxRuntimeBackendConfig = OnnxRuntimeBackendConfig()):
        try:
            import onnxruntime as ort  # type: ignore
        except Exception as e:  # pragma: no cover
            raise ImportError(
                "onnxruntime is required for the ONNX backend. Install it with `pip install onnxruntime`."
            ) from e

        self.model_path = Path(model_path)
        if not self.model_path.exists():
            raise FileNotFoundError(str(self.model_path))

        sess_opts = ort.SessionOptions()
        if cfg.num_threads is not None:
            sess_opts.intra_op_num_threads = int(cfg.num_threads)
        providers = list(cfg.providers) if cfg.providers is not None else None
        self.session = ort.InferenceSession(str(self.model_path), sess_options=sess_opts, providers=providers)

        inputs = self.session.get_inputs()
        outputs = self.session.get_outputs()
        self.input_name = cfg.input_name or inputs[0].name
        self.output_name = cfg.output_name or outputs[0].name

        self.input_shape = static_shape(next(i.shape for i in inputs if i.name == self.input_name))
        self.output_shape = static_shape(next(o.shape for o in outputs if o.name == self.output_name))

    def run(self, tensor: np.ndarray) -> np.ndarray:
        if self.session is None:
            raise RuntimeError("ONNX Runtime session is closed.")
        outputs = self.session.run([self.output_name], {self.input_name: tensor})
        return outputs[0]

    def close(self) -> None:
        # InferenceSession has no explicit release; dropping the reference frees it.
        self.session = None
