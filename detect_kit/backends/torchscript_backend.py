from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence, Tuple, Union

import numpy as np

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


@dataclass(frozen=True)
class TorchScriptBackendConfig:
    """
    TorchScript files carry no input signature: pass `input_shape=(1, 3, H, W)`
    to pin the model input size, otherwise the processor default is used.
    `device="cuda"` falls back to CPU when CUDA is unavailable.
    """

    device: str = "cpu"
    half: bool = False
    input_shape: Optional[Sequence[int]] = None


class TorchScriptBackend:
    def __init__(self, model_path: PathLike, cfg: TorchScriptBackendConfig = TorchScriptBackendConfig()):
        try:
            import torch  # type: ignore
        except Exception as e:  # pragma: no cover
            raise ImportError("torch is required for the TorchScript backend. Install with `pip install torch`.") from e

        self._torch = torch
        self.model_path = Path(model_path)
        if not self.model_path.exists():
            raise FileNotFoundError(str(self.model_path))

        device = cfg.device
        if device.startswith("cuda") and not torch.cuda.is_available():
            logger.warning("CUDA requested but not available; running TorchScript model on CPU")
            device = "cpu"
        self.device = torch.device(device)
        self.half = cfg.half and self.device.type == "cuda"
        self.input_shape: Optional[Tuple[int, ...]] = tuple(cfg.input_shape) if cfg.input_shape is not None else None

        model = torch.jit.load(str(self.model_path), map_location=self.device)
        model.eval()
        if self.half:
            model = model.half()
        self.model = model

    def infer(self, blob: np.ndarray) -> List[np.ndarray]:
        if self.model is None:
            raise RuntimeError("TorchScript model is closed")
        torch = self._torch
        x = torch.as_tensor(blob, device=self.device)
        x = (x.half() if self.half else x.float()).contiguous()

        with torch.no_grad():
            y = self.model(x)

        outputs = list(y) if isinstance(y, (tuple, list)) else [y]
        return [o.detach().float().cpu().numpy() for o in outputs]

    def close(self) -> None:
        self.model = None
