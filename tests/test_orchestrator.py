import tempfile
import unittest
from pathlib import Path

import numpy as np

from detect_kit.backends import Worker
from detect_kit.errors import RemapError
from detect_kit.letterbox import compute_letterbox
from detect_kit.processors import YoloProcessor
from detect_kit.types import Detection, Rect, Viewport
from Live_Detection.config import DetectorConfig
from Live_Detection.orchestrator import (
    NO_DETECTIONS,
    DetectionOrchestrator,
    OrchestratorState,
    remap_to_display,
    summarize,
)
from Live_Detection.scheduler import CooperativeScheduler
from Live_Detection.session import SessionState

LABELS = ["person", "car"]


def make_head(boxes, class_scores) -> np.ndarray:
    b = np.asarray(boxes, dtype=np.float32).T
    s = np.asarray(class_scores, dtype=np.float32).T
    return np.vstack([b, s])[None, ...]


TWO_OBJECTS = make_head([[100, 100, 40, 20], [400, 300, 60, 30]], [[0.9, 0.1], [0.2, 0.6]])
NOTHING = make_head([[100, 100, 40, 20]], [[0.1, 0.2]])


class _NeverReadyWorker(Worker):
    def is_ready(self) -> bool:
        return False


def loaded_processor(head, worker_cls=Worker, **kwargs) -> YoloProcessor:
    proc = YoloProcessor(**kwargs)
    proc.attach_worker(worker_cls(lambda blob: head), LABELS, iou_threshold=0.45, score_threshold=0.5)
    return proc


class TestDetectionOrchestrator(unittest.TestCase):
    def setUp(self) -> None:
        self.scheduler = CooperativeScheduler()
        self.events = []
        self.frame = np.zeros((720, 1280, 3), dtype=np.uint8)

    def _orchestrator(self, head=TWO_OBJECTS, viewport=Viewport(1280, 720), **kwargs) -> DetectionOrchestrator:
        proc = kwargs.pop("processor", None) or loaded_processor(head)
        orch = DetectionOrchestrator(None, self.scheduler, viewport=viewport, processor=proc, **kwargs)
        orch.add_listener(self.events.append)
        self.assertTrue(orch.initialize())
        return orch

    def test_initialize_allocates_scratch_and_becomes_ready(self) -> None:
        orch = self._orchestrator()
        self.assertIs(orch.state, OrchestratorState.READY)
        self.assertEqual(orch.model_size, (640, 640))
        self.assertEqual(orch._scratch.shape, (640, 640, 3))

    def test_detection_event_with_remapped_boxes(self) -> None:
        orch = self._orchestrator()
        self.assertTrue(orch.execute_detection(self.frame))
        self.assertIs(orch.state, OrchestratorState.BUSY)
        self.scheduler.run_until_idle()

        self.assertIs(orch.state, OrchestratorState.READY)
        self.assertEqual(len(self.events), 1)
        event = self.events[0]
        self.assertEqual(event.session_id, 1)
        self.assertEqual(len(event.detections), 2)
        self.assertEqual(event.summary, "person 90.00% (2 detections)")

        # 640x640 model onto 1280x720: x scales by 2.0, y by 1.125.
        a, b = event.boxes
        self.assertAlmostEqual(a.center_x, -440.0, places=3)
        self.assertAlmostEqual(a.center_y, -247.5, places=3)
        self.assertAlmostEqual(a.width, 80.0, places=3)
        self.assertAlmostEqual(a.height, 22.5, places=3)
        self.assertAlmostEqual(b.center_x, 160.0, places=3)
        self.assertAlmostEqual(b.center_y, -22.5, places=3)
        self.assertAlmostEqual(b.width, 120.0, places=3)
        self.assertAlmostEqual(b.height, 33.75, places=3)
        self.assertEqual(a.label, "person")
        self.assertIs(orch.last_event, event)

    def test_single_flight_drops_overlapping_requests(self) -> None:
        orch = self._orchestrator()
        self.assertTrue(orch.execute_detection(self.frame))
        self.scheduler.step()
        self.assertIs(orch.session.state, SessionState.INFERRING)
        self.assertFalse(orch.execute_detection(self.frame))
        self.assertFalse(orch.execute_detection(self.frame))
        self.scheduler.run_until_idle()

        self.assertEqual(len(self.events), 1)
        self.assertIsNone(orch.session)
        self.assertTrue(orch.execute_detection(self.frame))
        self.scheduler.run_until_idle()
        self.assertEqual([e.session_id for e in self.events], [1, 2])

    def test_session_is_postprocessing_during_decode(self) -> None:
        observed = []

        class _Observed(YoloProcessor):
            def decode(self):
                observed.append(orch.session.state)
                return super().decode()

        proc = _Observed()
        proc.attach_worker(Worker(lambda blob: TWO_OBJECTS), LABELS, 0.45, 0.5)
        orch = self._orchestrator(processor=proc)
        orch.execute_detection(self.frame)
        session = orch.session
        self.scheduler.run_until_idle()

        self.assertEqual(observed, [SessionState.POSTPROCESSING])
        self.assertEqual(
            session.history,
            [
                SessionState.IDLE,
                SessionState.PREPROCESSING,
                SessionState.INFERRING,
                SessionState.POSTPROCESSING,
                SessionState.COMPLETED,
            ],
        )

    def test_zero_detections(self) -> None:
        orch = self._orchestrator(head=NOTHING)
        orch.execute_detection(self.frame)
        self.scheduler.run_until_idle()
        self.assertIs(orch.state, OrchestratorState.READY)
        self.assertEqual(self.events[0].summary, NO_DETECTIONS)
        self.assertEqual(self.events[0].boxes, ())

    def test_backend_failure_still_completes(self) -> None:
        def infer(blob):
            raise RuntimeError("device lost")

        proc = YoloProcessor()
        proc.attach_worker(Worker(infer), LABELS, 0.45, 0.5)
        orch = self._orchestrator(processor=proc)
        orch.execute_detection(self.frame)
        self.scheduler.run_until_idle()
        self.assertIs(orch.state, OrchestratorState.READY)
        self.assertEqual(self.events[0].summary, NO_DETECTIONS)

    def test_never_ready_backend_returns_to_ready(self) -> None:
        proc = loaded_processor(TWO_OBJECTS, worker_cls=_NeverReadyWorker, max_wait_cycles=4)
        orch = self._orchestrator(processor=proc)
        orch.execute_detection(self.frame)
        session = orch.session
        steps = self.scheduler.run_until_idle(max_steps=50)
        self.assertLess(steps, 50)
        self.assertIs(orch.state, OrchestratorState.READY)
        self.assertIs(session.state, SessionState.FAILED)
        self.assertEqual(len(self.events), 1)

    def test_missing_viewport_emits_event_without_boxes(self) -> None:
        orch = self._orchestrator(viewport=None)
        orch.execute_detection(self.frame)
        self.scheduler.run_until_idle()
        self.assertIs(orch.state, OrchestratorState.READY)
        self.assertEqual(self.events[0].boxes, ())
        self.assertEqual(len(self.events[0].detections), 2)

    def test_letterbox_aware_remap_removes_padding(self) -> None:
        head = make_head([[320, 320, 64, 36]], [[0.9, 0.1]])
        orch = self._orchestrator(head=head, letterbox_aware=True)
        orch.execute_detection(self.frame)
        self.scheduler.run_until_idle()
        (box,) = self.events[0].boxes
        self.assertAlmostEqual(box.center_x, 0.0, places=3)
        self.assertAlmostEqual(box.center_y, 0.0, places=3)
        self.assertAlmostEqual(box.width, 128.0, places=3)
        self.assertAlmostEqual(box.height, 72.0, places=3)

    def test_listener_failure_does_not_break_completion(self) -> None:
        orch = self._orchestrator()

        def broken(event):
            raise RuntimeError("listener")

        orch.add_listener(broken)
        orch.execute_detection(self.frame)
        with self.assertLogs("Live_Detection.orchestrator", level="ERROR"):
            self.scheduler.run_until_idle()
        self.assertIs(orch.state, OrchestratorState.READY)
        self.assertEqual(len(self.events), 1)

    def test_rejects_missing_image(self) -> None:
        orch = self._orchestrator()
        self.assertFalse(orch.execute_detection(None))
        self.assertFalse(orch.execute_detection(np.zeros((0, 0, 3), dtype=np.uint8)))
        self.assertIs(orch.state, OrchestratorState.READY)
        self.assertEqual(self.scheduler.pending, 0)

    def test_uninitialized_drops_requests(self) -> None:
        orch = DetectionOrchestrator(None, self.scheduler, processor=loaded_processor(TWO_OBJECTS))
        self.assertFalse(orch.execute_detection(self.frame))
        self.assertIs(orch.state, OrchestratorState.UNINITIALIZED)

    def test_dispose_is_idempotent_and_disables(self) -> None:
        orch = self._orchestrator()
        proc = orch.processor
        orch.dispose()
        orch.dispose()
        self.assertIs(orch.state, OrchestratorState.DISABLED)
        self.assertFalse(proc.is_loaded)
        self.assertFalse(orch.execute_detection(self.frame))
        self.assertEqual(self.events, [])

    def test_dispose_mid_flight_emits_nothing(self) -> None:
        orch = self._orchestrator()
        orch.execute_detection(self.frame)
        self.scheduler.step()
        orch.dispose()
        self.scheduler.run_until_idle()
        self.assertIs(orch.state, OrchestratorState.DISABLED)
        self.assertEqual(self.events, [])


class TestOrchestratorLoadFailure(unittest.TestCase):
    def test_missing_model_disables(self) -> None:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        root = Path(tmpdir.name)
        labels = root / "classes.txt"
        labels.write_text("person\n", encoding="utf-8")
        cfg = DetectorConfig(model=str(root / "missing.onnx"), labels=str(labels))

        scheduler = CooperativeScheduler()
        events = []
        orch = DetectionOrchestrator(cfg, scheduler, viewport=Viewport(640, 480))
        orch.add_listener(events.append)
        with self.assertLogs("Live_Detection.orchestrator", level="ERROR"):
            self.assertFalse(orch.initialize())
        self.assertIs(orch.state, OrchestratorState.DISABLED)

        self.assertFalse(orch.execute_detection(np.zeros((480, 640, 3), dtype=np.uint8)))
        self.assertEqual(scheduler.pending, 0)
        self.assertEqual(events, [])


class TestRemapAndSummary(unittest.TestCase):
    def _det(self, score, label="person", rect=Rect(0, 0, 10, 10)) -> Detection:
        return Detection(label=label, score=score, bounding_box=rect, class_id=0)

    def test_viewport_same_as_model_only_recenters(self) -> None:
        (box,) = remap_to_display([self._det(0.9, rect=Rect(0, 0, 640, 640))], (640, 640), Viewport(640, 640))
        self.assertEqual((box.center_x, box.center_y, box.width, box.height), (0.0, 0.0, 640.0, 640.0))

    def test_invalid_inputs(self) -> None:
        with self.assertRaises(RemapError):
            remap_to_display([], (0, 640), Viewport(640, 480))
        with self.assertRaises(RemapError):
            remap_to_display([], (640, 640), Viewport(0, 480))

    def test_with_transform_scales_against_source(self) -> None:
        t = compute_letterbox(1920, 1080, 640, 640)
        (box,) = remap_to_display([self._det(0.9, rect=Rect(0, 140, 640, 360))], (640, 640), Viewport(960, 540), t)
        self.assertAlmostEqual(box.center_x, 0.0, places=3)
        self.assertAlmostEqual(box.center_y, 0.0, places=3)
        self.assertAlmostEqual(box.width, 960.0, places=3)
        self.assertAlmostEqual(box.height, 540.0, places=3)

    def test_summary_reports_highest_score(self) -> None:
        dets = [self._det(0.6, "car"), self._det(0.8, "person"), self._det(0.8, "dog")]
        self.assertEqual(summarize(dets), "person 80.00% (3 detections)")
        self.assertEqual(summarize([]), NO_DETECTIONS)


if __name__ == "__main__":
    unittest.main()
