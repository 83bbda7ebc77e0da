from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Optional, Sequence, Tuple, Union

import numpy as np

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


@dataclass(frozen=True)
class OnnxRuntimeBackendConfig:
    """
    - providers: ORT execution providers in priority order; None lets ORT pick
    - intra_op_threads: 0 keeps the ORT default
    """

    providers: Optional[Sequence[str]] = None
    intra_op_threads: int = 0


class OnnxRuntimeBackend:
    """
    ONNX Runtime session for a single-input detector.

    `infer` takes a (1, 3, H, W) float32 blob and returns every model output in
    graph order, so the worker can expose them as `output_0`, `output_1`, ...
    """

    def __init__(self, model_path: PathLike, cfg: OnnxRuntimeBackendConfig = OnnxRuntimeBackendConfig()):
        try:
            import onnxruntime as ort  # type: ignore
        except Exception as e:  # pragma: no cover
            raise ImportError(
                "onnxruntime is required for the ONNX backend. Install it with `pip install onnxruntime` "
                "(or `onnxruntime-gpu`)."
            ) from e

        self.model_path = Path(model_path)
        if not self.model_path.exists():
            raise FileNotFoundError(str(self.model_path))

        sess_opts = ort.SessionOptions()
        if cfg.intra_op_threads > 0:
            sess_opts.intra_op_num_threads = cfg.intra_op_threads
        providers = list(cfg.providers) if cfg.providers is not None else None
        self.session = ort.InferenceSession(str(self.model_path), sess_options=sess_opts, providers=providers)

        inputs = self.session.get_inputs()
        if len(inputs) != 1:
            raise ValueError(f"Expected a single image input, model declares {len(inputs)}")
        self.input_name = inputs[0].name
        self._input_shape = tuple(inputs[0].shape)
        self.output_names = [o.name for o in self.session.get_outputs()]

    @property
    def input_shape(self) -> Tuple[Any, ...]:
        # Dynamic axes come back as strings or None.
        return self._input_shape

    @property
    def providers_in_use(self) -> Sequence[str]:
        if self.session is None:
            return ()
        return tuple(self.session.get_providers())

    def infer(self, blob: np.ndarray) -> List[np.ndarray]:
        if self.session is None:
            raise RuntimeError("ONNX Runtime session is closed")
        outputs = self.session.run(self.output_names, {self.input_name: blob.astype(np.float32, copy=False)})
        return [np.asarray(o) for o in outputs]

    def close(self) -> None:
        if self.session is not None:
            logger.debug("Closing ONNX Runtime session for %s", self.model_path.name)
        self.session = None
