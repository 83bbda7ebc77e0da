"""
Model processor contract.

A processor owns one loaded detector (backend worker + labels + thresholds) and
turns a source image into an ordered list of `Detection` in model-input pixel
space. `process` is a generator task: it suspends exactly once after handing
the input tensor to the backend, and is resumed by the caller's scheduler.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterator, List, Optional, Sequence, Tuple, Union

import numpy as np

from ..backends.worker import Worker
from ..errors import LoadError, PostprocessError
from ..letterbox import compute_letterbox, letterbox_blit
from ..types import Detection

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]
CompletionCallback = Callable[[List[Detection]], None]
ReadbackCallback = Callable[[], None]

DEFAULT_MAX_WAIT_CYCLES = 30


@dataclass(frozen=True)
class ModelConfig:
    input_width: int
    input_height: int
    iou_threshold: float = 0.45
    score_threshold: float = 0.5
    labels: Tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        if self.input_width <= 0 or self.input_height <= 0:
            raise LoadError(f"Model input size must be positive, got {self.input_width}x{self.input_height}")
        if not (0.0 <= self.iou_threshold <= 1.0):
            raise ValueError("iou_threshold must be within [0, 1]")
        if not (0.0 <= self.score_threshold <= 1.0):
            raise ValueError("score_threshold must be within [0, 1]")


def image_to_tensor(image_bgr: np.ndarray) -> np.ndarray:
    """(H, W, 3) uint8 BGR -> (1, 3, H, W) float32 RGB in [0, 1]."""
    blob = image_bgr[:, :, ::-1].astype(np.float32) / 255.0
    blob = np.transpose(blob, (2, 0, 1))[None, ...]
    return np.ascontiguousarray(blob)


class ModelProcessor(ABC):
    @property
    @abstractmethod
    def input_width(self) -> int:
        ...

    @property
    @abstractmethod
    def input_height(self) -> int:
        ...

    @property
    @abstractmethod
    def is_loaded(self) -> bool:
        ...

    @abstractmethod
    def load_model(
        self,
        model_path: PathLike,
        labels_path: PathLike,
        backend_kind: Optional[str],
        iou_threshold: float,
        score_threshold: float,
    ) -> None:
        """Load the model; raises LoadError unless a positive input size is established."""

    @abstractmethod
    def process(
        self,
        source_image: np.ndarray,
        scratch: np.ndarray,
        on_completed: CompletionCallback,
        on_readback: Optional[ReadbackCallback] = None,
    ) -> Iterator[None]:
        """
        Generator task. `on_completed` fires exactly once with a (possibly empty)
        list, whatever happens. Must not be re-entered before that.

        `on_readback`, when given, fires once the backend output is ready and
        right before it is decoded.
        """

    @abstractmethod
    def dispose(self) -> None:
        """Release backend resources. Safe to call repeatedly; never raises."""


class WorkerProcessor(ModelProcessor):
    """
    Shared flow for processors backed by a `Worker`:
    letterbox blit -> tensor -> schedule -> suspend -> decode.

    Subclasses provide the default input size, an optional postprocess graph,
    and `decode()`.
    """

    default_input_size: Tuple[int, int] = (640, 640)

    def __init__(self, max_wait_cycles: int = DEFAULT_MAX_WAIT_CYCLES):
        if max_wait_cycles < 1:
            raise ValueError("max_wait_cycles must be >= 1")
        self.max_wait_cycles = max_wait_cycles
        self.config: Optional[ModelConfig] = None
        self.worker: Optional[Worker] = None
        self.last_error: Optional[BaseException] = None
        self._in_flight = False

    @property
    def input_width(self) -> int:
        return self.config.input_width if self.config is not None else 0

    @property
    def input_height(self) -> int:
        return self.config.input_height if self.config is not None else 0

    @property
    def is_loaded(self) -> bool:
        return self.worker is not None and not self.worker.disposed and self.config is not None

    @property
    def labels(self) -> Tuple[str, ...]:
        return self.config.labels if self.config is not None else ()

    def build_graph(self, iou_threshold: float, score_threshold: float):
        return None

    def load_model(
        self,
        model_path: PathLike,
        labels_path: PathLike,
        backend_kind: Optional[str],
        iou_threshold: float,
        score_threshold: float,
    ) -> None:
        from ..metadata import load_labels
        from ..runtime import load_worker

        labels = load_labels(labels_path)
        worker = load_worker(model_path, backend=backend_kind)
        try:
            self.attach_worker(worker, labels, iou_threshold, score_threshold)
        except Exception:
            worker.dispose()
            raise

    def attach_worker(
        self,
        worker: Worker,
        labels: Sequence[str],
        iou_threshold: float,
        score_threshold: float,
        input_size: Optional[Tuple[int, int]] = None,
    ) -> None:
        """Use an already constructed worker (e.g. a custom runtime) instead of loading from disk."""
        if not labels:
            raise LoadError("Label list is empty.")
        width, height = input_size or worker.input_size or self.default_input_size
        self.config = ModelConfig(
            input_width=int(width),
            input_height=int(height),
            iou_threshold=float(iou_threshold),
            score_threshold=float(score_threshold),
            labels=tuple(labels),
        )
        worker.attach_graph(self.build_graph(iou_threshold, score_threshold))
        self.worker = worker
        logger.info(
            "%s loaded: backend=%s input=%dx%d classes=%d",
            type(self).__name__,
            worker.backend_name,
            self.input_width,
            self.input_height,
            len(self.labels),
        )

    def label_for(self, class_id: int) -> str:
        labels = self.labels
        if class_id < 0 or class_id >= len(labels):
            raise PostprocessError(f"class id {class_id} outside label range [0, {len(labels)})")
        return labels[class_id]

    @abstractmethod
    def decode(self) -> List[Detection]:
        """Read the worker outputs for the last scheduled tensor."""

    def _schedule(self, source_image: np.ndarray, scratch: np.ndarray) -> None:
        h, w = source_image.shape[:2]
        transform = compute_letterbox(w, h, self.input_width, self.input_height)
        letterbox_blit(source_image, transform, scratch)
        self.worker.schedule(image_to_tensor(scratch))

    def process(
        self,
        source_image: np.ndarray,
        scratch: np.ndarray,
        on_completed: CompletionCallback,
        on_readback: Optional[ReadbackCallback] = None,
    ) -> Iterator[None]:
        if self._in_flight:
            raise RuntimeError(f"{type(self).__name__}.process re-entered before the previous call completed.")

        self._in_flight = True
        self.last_error = None
        detections: List[Detection] = []
        name = type(self).__name__
        try:
            if source_image is None:
                self.last_error = ValueError("source image is None")
                logger.error("Source image is not assigned in %s", name)
                return
            if not self.is_loaded:
                self.last_error = LoadError("model not loaded")
                logger.error("%s.process called without a loaded model", name)
                return

            worker = self.worker
            try:
                self._schedule(source_image, scratch)
            except Exception as e:
                self.last_error = e
                logger.error("%s failed to schedule inference: %s", name, e)
                return
            # Drop the reference so the frame can be released while we are suspended.
            source_image = None

            yield
            waited = 1
            while not worker.is_ready():
                if worker.disposed:
                    self.last_error = PostprocessError("worker disposed while a job was in flight")
                    logger.error("%s: worker disposed before output was ready", name)
                    return
                if waited >= self.max_wait_cycles:
                    self.last_error = PostprocessError(f"backend not ready after {waited} cycles")
                    logger.error("%s: backend output not ready after %d cycles", name, waited)
                    return
                waited += 1
                yield

            try:
                if on_readback is not None:
                    on_readback()
                detections = self.decode()
            except Exception as e:
                self.last_error = e
                logger.exception("%s failed while reading model outputs", name)
                detections = []
        finally:
            self._in_flight = False
            on_completed(detections)

    def dispose(self) -> None:
        worker, self.worker = self.worker, None
        if worker is None:
            return
        try:
            worker.dispose()
        except Exception:
            logger.exception("Failed to dispose %s worker", type(self).__name__)
