from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Mapping, Optional, Sequence, Tuple

import numpy as np

from ..errors import ScheduleError

logger = logging.getLogger(__name__)

InferFn = Callable[[np.ndarray], Any]
GraphFn = Callable[[np.ndarray], Mapping[str, np.ndarray]]


def _name_outputs(raw: Any) -> Dict[str, np.ndarray]:
    if isinstance(raw, Mapping):
        return {str(k): np.asarray(v) for k, v in raw.items()}
    if isinstance(raw, (list, tuple)):
        return {f"output_{i}": np.asarray(v) for i, v in enumerate(raw)}
    return {"output_0": np.asarray(raw)}


class Worker:
    """
    Schedules one tensor at a time on a raw inference function and exposes the
    results by name.

    When a postprocess `graph` is attached, the primary model output is fed
    through it and the graph's named outputs replace the raw ones. The worker
    is ready once the outputs of the latest `schedule` call are available.
    """

    def __init__(
        self,
        infer_fn: InferFn,
        *,
        graph: Optional[GraphFn] = None,
        input_shape: Optional[Sequence[Any]] = None,
        backend_name: str = "callable",
        on_dispose: Optional[Callable[[], None]] = None,
    ):
        self._infer_fn: Optional[InferFn] = infer_fn
        self._graph = graph
        self._input_shape = tuple(input_shape) if input_shape is not None else None
        self.backend_name = backend_name
        self._on_dispose = on_dispose
        self._outputs: Dict[str, np.ndarray] = {}
        self._ready = False

    def attach_graph(self, graph: Optional[GraphFn]) -> None:
        """Feed the primary model output through `graph` on every schedule."""
        self._graph = graph

    @property
    def disposed(self) -> bool:
        return self._infer_fn is None

    @property
    def input_size(self) -> Optional[Tuple[int, int]]:
        """(width, height) when the model declares a static NCHW input, else None."""
        shape = self._input_shape
        if shape is None or len(shape) != 4:
            return None
        h, w = shape[2], shape[3]
        if isinstance(h, int) and isinstance(w, int) and h > 0 and w > 0:
            return w, h
        return None

    def schedule(self, tensor: np.ndarray) -> None:
        if self._infer_fn is None:
            raise ScheduleError("Worker has been disposed.")
        blob = np.asarray(tensor)
        if blob.ndim != 4 or blob.shape[0] != 1:
            raise ScheduleError(f"Expected a (1, C, H, W) tensor, got shape {blob.shape}")

        self._ready = False
        self._outputs = {}
        try:
            raw = self._infer_fn(blob)
            if self._graph is not None:
                primary = _name_outputs(raw)["output_0"]
                outputs = dict(self._graph(primary))
            else:
                outputs = _name_outputs(raw)
        except ScheduleError:
            raise
        except Exception as e:
            raise ScheduleError(f"{self.backend_name} inference failed: {e}") from e

        self._outputs = outputs
        self._ready = True

    def is_ready(self) -> bool:
        return self._ready

    def peek_output(self, name: str) -> Optional[np.ndarray]:
        return self._outputs.get(name)

    def dispose(self) -> None:
        if self._infer_fn is None:
            return
        self._infer_fn = None
        self._outputs = {}
        self._ready = False
        if self._graph is not None and hasattr(self._graph, "dispose"):
            try:
                self._graph.dispose()
            except Exception:
                logger.exception("Failed to dispose postprocess graph")
        self._graph = None
        if self._on_dispose is not None:
            try:
                self._on_dispose()
            except Exception:
                logger.exception("Failed to release %s backend", self.backend_name)
            self._on_dispose = None
