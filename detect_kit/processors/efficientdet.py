from __future__ import annotations

from typing import List

import numpy as np

from ..errors import PostprocessError
from ..nms import NMSConfig, nms
from ..types import Detection, Rect
from .base import WorkerProcessor


class EfficientDetProcessor(WorkerProcessor):
    """
    EfficientDet exports with a built-in box decoder.

    The primary output is already decoded, shaped (N, 6) or (1, N, 6):
    [x1, y1, x2, y2, score, class_id] in model-input pixels. Thresholding and
    class-agnostic NMS run on the host; detections keep the NMS survivor order.
    """

    default_input_size = (512, 512)

    def decode(self) -> List[Detection]:
        raw = self.worker.peek_output("output_0")
        if raw is None:
            raise PostprocessError("Failed to read model outputs: peek_output returned None.")

        p = np.asarray(raw, dtype=np.float32)
        if p.ndim == 3:
            if p.shape[0] != 1:
                raise PostprocessError(f"Batch > 1 is not supported (got shape {p.shape}).")
            p = p[0]
        if p.ndim != 2 or p.shape[1] != 6:
            raise PostprocessError(f"Expected decoded (N, 6) detections, got shape {np.shape(raw)}")
        if p.shape[0] == 0:
            return []

        boxes = p[:, 0:4]
        scores = p[:, 4]
        class_ids = p[:, 5].astype(np.int64)

        keep = nms(
            boxes,
            scores,
            NMSConfig(iou_threshold=self.config.iou_threshold, score_threshold=self.config.score_threshold),
        )

        detections: List[Detection] = []
        for i in keep:
            x1, y1, x2, y2 = (float(v) for v in boxes[i])
            detections.append(
                Detection(
                    label=self.label_for(int(class_ids[i])),
                    score=float(scores[i]),
                    bounding_box=Rect(x=x1, y=y1, width=x2 - x1, height=y2 - y1),
                    class_id=int(class_ids[i]),
                )
            )
        return detections
