"""
Execution orchestrator: owns the active model processor and its scratch
buffer, admits at most one detection job at a time, and remaps finished
detections from model-input space into the display viewport.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterator, List, Optional, Sequence, Tuple

import numpy as np

from detect_kit.errors import LoadError, RemapError
from detect_kit.letterbox import LetterboxTransform, compute_letterbox
from detect_kit.processors import ModelProcessor, create_processor
from detect_kit.types import Detection, DisplayBox, Viewport

from .config import DetectorConfig
from .scheduler import CooperativeScheduler
from .session import ProcessingSession, SessionState

logger = logging.getLogger(__name__)

NO_DETECTIONS = "no detections"


class OrchestratorState(str, Enum):
    UNINITIALIZED = "UNINITIALIZED"
    READY = "READY"
    BUSY = "BUSY"
    DISABLED = "DISABLED"


@dataclass(frozen=True)
class DetectionEvent:
    session_id: int
    detections: Tuple[Detection, ...]
    boxes: Tuple[DisplayBox, ...]
    summary: str


DetectionListener = Callable[[DetectionEvent], None]


def remap_to_display(
    detections: Sequence[Detection],
    model_size: Tuple[int, int],
    viewport: Viewport,
    transform: Optional[LetterboxTransform] = None,
) -> List[DisplayBox]:
    """
    Model-input rectangles -> boxes centered on the viewport center.

    Without `transform` the viewport is assumed to show the model input, so each
    axis is scaled by `viewport / model_input`. With `transform` the viewport
    shows the source frame: letterbox padding is removed first and the scale is
    `viewport / source`.
    """
    model_w, model_h = model_size
    if model_w <= 0 or model_h <= 0:
        raise RemapError(f"Model input size must be positive, got {model_w}x{model_h}")
    if viewport is None or not viewport.is_valid:
        raise RemapError(f"Invalid display viewport: {viewport}")

    if transform is not None:
        src_w, src_h = transform.source_size
        scale_x = viewport.width / src_w
        scale_y = viewport.height / src_h
    else:
        scale_x = viewport.width / model_w
        scale_y = viewport.height / model_h

    boxes: List[DisplayBox] = []
    for d in detections:
        rect = transform.inverse_rect(d.bounding_box) if transform is not None else d.bounding_box
        cx, cy = rect.center
        boxes.append(
            DisplayBox(
                center_x=cx * scale_x - viewport.width / 2,
                center_y=cy * scale_y - viewport.height / 2,
                width=rect.width * scale_x,
                height=rect.height * scale_y,
                label=d.label,
                score=d.score,
                class_id=d.class_id,
            )
        )
    return boxes


def summarize(detections: Sequence[Detection]) -> str:
    if not detections:
        return NO_DETECTIONS
    best = detections[0]
    for d in detections:
        if d.score > best.score:
            best = d
    return f"{best.label} {best.score:.2%} ({len(detections)} detections)"


class DetectionOrchestrator:
    """
    Single-flight detection driver.

    States: UNINITIALIZED -> READY -> (BUSY <-> READY) -> DISABLED. Requests
    arriving while BUSY or DISABLED are dropped, not queued. Completion always
    returns the orchestrator to READY, whatever the outcome of the job.
    """

    def __init__(
        self,
        config: Optional[DetectorConfig],
        scheduler: CooperativeScheduler,
        *,
        viewport: Optional[Viewport] = None,
        processor: Optional[ModelProcessor] = None,
        letterbox_aware: bool = False,
    ) -> None:
        self.config = config
        self.scheduler = scheduler
        self.viewport = viewport
        self.letterbox_aware = letterbox_aware
        self._processor = processor
        self._scratch: Optional[np.ndarray] = None
        self._state = OrchestratorState.UNINITIALIZED
        self._session: Optional[ProcessingSession] = None
        self._session_counter = 0
        self._listeners: List[DetectionListener] = []
        self.last_detections: List[Detection] = []
        self.last_event: Optional[DetectionEvent] = None

    @property
    def state(self) -> OrchestratorState:
        return self._state

    @property
    def session(self) -> Optional[ProcessingSession]:
        return self._session

    @property
    def processor(self) -> Optional[ModelProcessor]:
        return self._processor

    @property
    def model_size(self) -> Tuple[int, int]:
        if self._processor is None:
            return 0, 0
        return self._processor.input_width, self._processor.input_height

    def add_listener(self, listener: DetectionListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: DetectionListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def set_viewport(self, viewport: Optional[Viewport]) -> None:
        self.viewport = viewport

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #
    def initialize(self) -> bool:
        if self._state is not OrchestratorState.UNINITIALIZED:
            logger.warning("Orchestrator already initialized (state=%s)", self._state.value)
            return self._state is not OrchestratorState.DISABLED

        try:
            processor = self._processor
            if processor is None:
                if self.config is None:
                    raise LoadError("No detector configuration provided.")
                processor = create_processor(self.config.model_type, max_wait_cycles=self.config.max_wait_cycles)
                self._processor = processor
            if not processor.is_loaded:
                if self.config is None:
                    raise LoadError("Processor is not loaded and no detector configuration was provided.")
                processor.load_model(
                    self.config.model,
                    self.config.labels,
                    self.config.backend,
                    self.config.iou_threshold,
                    self.config.score_threshold,
                )

            width, height = processor.input_width, processor.input_height
            if width <= 0 or height <= 0:
                raise LoadError(f"Processor reported an invalid input size {width}x{height}")
            self._scratch = np.zeros((height, width, 3), dtype=np.uint8)
        except Exception as e:
            logger.error("Failed to initialize detection model: %s", e)
            self._disable()
            return False

        self._state = OrchestratorState.READY
        logger.info(
            "Orchestrator ready. processor=%s input=%dx%d",
            type(self._processor).__name__,
            self._processor.input_width,
            self._processor.input_height,
        )
        return True

    def dispose(self) -> None:
        """Release the processor and scratch buffer. Safe to call more than once."""
        if self._state is OrchestratorState.DISABLED and self._processor is None:
            return
        self._disable()
        logger.info("Orchestrator disabled and resources released")

    def _disable(self) -> None:
        self._state = OrchestratorState.DISABLED
        processor, self._processor = self._processor, None
        if processor is not None:
            processor.dispose()
        self._scratch = None

    # ------------------------------------------------------------------ #
    # Detection
    # ------------------------------------------------------------------ #
    def execute_detection(self, image: Optional[np.ndarray]) -> bool:
        """
        Start a detection job for `image`. Returns False when the request is
        dropped (no image, not ready, or a job is already in flight).
        """
        if image is None or getattr(image, "size", 0) == 0:
            logger.error("Source image is None or empty; detection skipped")
            return False
        if self._state is OrchestratorState.DISABLED:
            logger.warning("Orchestrator is disabled; detection request dropped")
            return False
        if self._state is OrchestratorState.UNINITIALIZED:
            logger.warning("Orchestrator is not initialized; detection request dropped")
            return False
        if self._state is OrchestratorState.BUSY:
            logger.warning("Orchestrator is already processing another image; request dropped")
            return False

        h, w = image.shape[:2]
        self._session_counter += 1
        session = ProcessingSession(self._session_counter, source_size=(int(w), int(h)))
        self._session = session
        self._state = OrchestratorState.BUSY
        self.scheduler.spawn(self._run_session(session, image), name=f"detection-{session.session_id}")
        return True

    def _run_session(self, session: ProcessingSession, image: np.ndarray) -> Iterator[None]:
        processor = self._processor
        session.advance(SessionState.PREPROCESSING)
        task = processor.process(
            image,
            self._scratch,
            lambda dets: self._on_completed(session, dets),
            lambda: self._on_readback(session),
        )
        del image
        try:
            for _ in task:
                if session.state is SessionState.PREPROCESSING:
                    session.advance(SessionState.INFERRING)
                yield
        except Exception as e:
            logger.error("Detection session %d aborted: %s", session.session_id, e)
            if not session.is_terminal:
                self._on_completed(session, [], failure=str(e))

    def _on_readback(self, session: ProcessingSession) -> None:
        if session.state is SessionState.PREPROCESSING:
            session.advance(SessionState.INFERRING)
        session.advance(SessionState.POSTPROCESSING)

    def _on_completed(
        self,
        session: ProcessingSession,
        detections: Optional[Sequence[Detection]],
        failure: Optional[str] = None,
    ) -> None:
        if session.is_terminal:
            return

        if failure is None:
            last_error = getattr(self._processor, "last_error", None)
            if last_error is not None:
                failure = str(last_error)
        if failure is not None:
            session.fail(failure)
        else:
            session.complete()

        if self._session is session:
            self._session = None
        if self._state is OrchestratorState.BUSY:
            self._state = OrchestratorState.READY
        else:
            logger.info("Session %d finished after teardown; result discarded", session.session_id)
            return

        detections = list(detections or [])
        self.last_detections = detections

        boxes: List[DisplayBox] = []
        try:
            boxes = self._remap(session, detections)
        except RemapError as e:
            logger.error("Skipping display remap: %s", e)

        summary = summarize(detections)
        logger.info("Session %d: %s", session.session_id, summary)
        event = DetectionEvent(
            session_id=session.session_id,
            detections=tuple(detections),
            boxes=tuple(boxes),
            summary=summary,
        )
        self.last_event = event
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Detection listener %r failed", listener)

    def _remap(self, session: ProcessingSession, detections: Sequence[Detection]) -> List[DisplayBox]:
        if self.viewport is None:
            raise RemapError("No display viewport assigned")
        if self._processor is None:
            raise RemapError("Model processor is not initialized")
        model_size = self.model_size
        transform = None
        if self.letterbox_aware and session.source_size is not None and min(model_size) > 0:
            src_w, src_h = session.source_size
            transform = compute_letterbox(src_w, src_h, model_size[0], model_size[1])
        return remap_to_display(detections, model_size, self.viewport, transform)
