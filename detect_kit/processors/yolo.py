from __future__ import annotations

from typing import List

import numpy as np

from ..errors import PostprocessError
from ..graph import BOXES_OUTPUT, CLASS_IDS_OUTPUT, SCORES_OUTPUT, YoloGraphConfig, YoloPostprocessGraph
from ..types import Detection, Rect
from .base import WorkerProcessor


class YoloProcessor(WorkerProcessor):
    """
    Anchor-free single-stage detector (YOLOv8-style head, shape (1, 4 + C, A)).

    Box decode, score reduction and NMS run in the fused postprocess graph
    attached to the worker, so `decode()` only reads back the survivors.
    """

    default_input_size = (640, 640)

    def build_graph(self, iou_threshold: float, score_threshold: float) -> YoloPostprocessGraph:
        return YoloPostprocessGraph(YoloGraphConfig(iou_threshold=iou_threshold, score_threshold=score_threshold))

    def decode(self) -> List[Detection]:
        boxes = self.worker.peek_output(BOXES_OUTPUT)
        class_ids = self.worker.peek_output(CLASS_IDS_OUTPUT)
        scores = self.worker.peek_output(SCORES_OUTPUT)
        if boxes is None or class_ids is None or scores is None:
            raise PostprocessError("Failed to read model outputs: peek_output returned None.")

        boxes = np.asarray(boxes, dtype=np.float32).reshape(-1, 4)
        class_ids = np.asarray(class_ids).reshape(-1)
        scores = np.asarray(scores, dtype=np.float32).reshape(-1)
        if not (boxes.shape[0] == class_ids.shape[0] == scores.shape[0]):
            raise PostprocessError(
                f"Mismatched output lengths: boxes={boxes.shape[0]} class_ids={class_ids.shape[0]} scores={scores.shape[0]}"
            )

        detections: List[Detection] = []
        for (cx, cy, w, h), cls_id, score in zip(boxes, class_ids, scores):
            detections.append(
                Detection(
                    label=self.label_for(int(cls_id)),
                    score=float(score),
                    bounding_box=Rect(x=float(cx - w / 2), y=float(cy - h / 2), width=float(w), height=float(h)),
                    class_id=int(cls_id),
                )
            )
        return detections
