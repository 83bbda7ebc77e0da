"""
Fused YOLO postprocess graph.

Runs on the raw head of an anchor-free detector, shaped (1, 4 + C, A):
split boxes / class scores, reduce scores, convert centers to corners, NMS,
then gather the survivors. Produces three named outputs so a backend worker can
expose them through `peek_output(name)`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional, Tuple

import numpy as np

from .nms import NMSConfig, nms

BOXES_OUTPUT = "output_0"
CLASS_IDS_OUTPUT = "output_1"
SCORES_OUTPUT = "output_2"
OUTPUT_NAMES = (BOXES_OUTPUT, CLASS_IDS_OUTPUT, SCORES_OUTPUT)

# Row vector (cx, cy, w, h) @ M -> (x0, y0, x1, y1)
CENTERS_TO_CORNERS = np.array(
    [
        [1.0, 0.0, 1.0, 0.0],
        [0.0, 1.0, 0.0, 1.0],
        [-0.5, 0.0, 0.5, 0.0],
        [0.0, -0.5, 0.0, 0.5],
    ],
    dtype=np.float32,
)


@dataclass(frozen=True)
class YoloGraphConfig:
    iou_threshold: float = 0.45
    score_threshold: float = 0.5
    max_detections: Optional[int] = None

    def __post_init__(self) -> None:
        if not (0.0 <= self.iou_threshold <= 1.0):
            raise ValueError("iou_threshold must be within [0, 1]")
        if not (0.0 <= self.score_threshold <= 1.0):
            raise ValueError("score_threshold must be within [0, 1]")
        if self.max_detections is not None and self.max_detections <= 0:
            raise ValueError("max_detections must be > 0")


class YoloPostprocessGraph:
    def __init__(self, cfg: YoloGraphConfig):
        self.cfg = cfg
        self.centers_to_corners = CENTERS_TO_CORNERS.copy()
        self._nms_cfg = NMSConfig(
            iou_threshold=cfg.iou_threshold,
            score_threshold=cfg.score_threshold,
            max_detections=cfg.max_detections,
        )

    def split(self, raw: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """
        (1, 4 + C, A) -> center boxes (A, 4), scores (A,), class ids (A,).
        """
        p = np.asarray(raw, dtype=np.float32)
        if p.ndim == 3:
            if p.shape[0] != 1:
                raise ValueError(f"Batch > 1 is not supported (got shape {p.shape}). Pass one image at a time.")
            p = p[0]
        if p.ndim != 2 or p.shape[0] < 5:
            raise ValueError(f"Expected a (1, 4 + C, A) detector head, got shape {np.shape(raw)}")

        boxes = p[0:4, :].T  # (A, 4) as cx, cy, w, h
        class_scores = p[4:, :]  # (C, A)
        class_ids = np.argmax(class_scores, axis=0).astype(np.int64)
        scores = class_scores[class_ids, np.arange(class_scores.shape[1])]
        return boxes, scores, class_ids

    def __call__(self, raw: np.ndarray) -> Dict[str, np.ndarray]:
        boxes, scores, class_ids = self.split(raw)
        corners = boxes @ self.centers_to_corners
        indices = nms(corners, scores, self._nms_cfg)
        return {
            BOXES_OUTPUT: np.ascontiguousarray(boxes[indices], dtype=np.float32).reshape(-1, 4),
            CLASS_IDS_OUTPUT: class_ids[indices].astype(np.int64),
            SCORES_OUTPUT: scores[indices].astype(np.float32),
        }

    def dispose(self) -> None:
        self.centers_to_corners = None
