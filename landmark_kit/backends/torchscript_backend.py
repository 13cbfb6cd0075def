from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple, Union

import numpy as np


PathLike = Union[str, Path]


@dataclass(frozen=True)
class TorchScriptBackendConfig:
    """
    Configuration for TorchScript inference.

    - device: "cpu" or "cuda" (if available)
    - output_index: if the model returns multiple outputs, select this index
    - output_shape: expected output shape; TorchScript carries no static shape info
    """

    device: str = "cpu"
    output_index: int = 0
    output_shape: Optional[Tuple[int, ...]] = None


class TorchScriptBackend:
    """
    TorchScript backend using `torch.jit.load`.

    Does not need the model's Python class, only the scripted/traced file.
    """

    input_shape = None

    def __init__(self, model_path: PathLike, cfg: TorchScriptBackendConfig = TorchScriptBackendConfig()):
        try:
            import torch  # type: ignore
        except Exception as e:  # pragma: no cover
            raise ImportError("torch is required for the TorchScript backend. Install with `pip install torch`.") from e

        self._torch = torch
        self.model_path = Path(model_path)
        if not self.model_path.exists():
            raise FileNotFoundError(str(self.model_path))

        self.device = torch.device(cfg.device)
        self.output_index = cfg.output_index
        self.output_shape = tuple(cfg.output_shape) if cfg.output_shape is not None else None

        model = torch.jit.load(str(self.model_path), map_location=self.device)
        model.eval()
        self.model = model

    def run(self, tensor: np.ndarray) -> np.ndarray:
        if self.model is None:
            raise RuntimeError("TorchScript model is closed.")
        torch = self._torch
        x = torch.as_tensor(tensor, device=self.device).float().contiguous()

        with torch.no_grad():
            y = self.model(x)

        if isinstance(y, (tuple, list)):
            y = y[self.output_index]

        return y.detach().to("cpu").numpy()

    def close(self) -> None:
        self.model = None
