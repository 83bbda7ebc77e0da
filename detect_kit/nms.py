from dataclasses import dataclass
from typing import Optional

import numpy as np


@dataclass
class NMSConfig:
    iou_threshold: float = 0.45
    score_threshold: float = 0.0
    max_detections: Optional[int] = None

    def __post_init__(self) -> None:
        if not (0.0 <= self.iou_threshold <= 1.0):
            raise ValueError("iou_threshold must be within [0, 1]")
        if not (0.0 <= self.score_threshold <= 1.0):
            raise ValueError("score_threshold must be within [0, 1]")
        if self.max_detections is not None and self.max_detections < 0:
            raise ValueError("max_detections must be >= 0")


def box_iou(box: np.ndarray, others: np.ndarray) -> np.ndarray:
    """IoU of one xyxy box against (N, 4) xyxy boxes."""
    xx1 = np.maximum(box[0], others[:, 0])
    yy1 = np.maximum(box[1], others[:, 1])
    xx2 = np.minimum(box[2], others[:, 2])
    yy2 = np.minimum(box[3], others[:, 3])

    w = np.maximum(0.0, xx2 - xx1)
    h = np.maximum(0.0, yy2 - yy1)
    inter = w * h
    area = np.maximum(0.0, box[2] - box[0]) * np.maximum(0.0, box[3] - box[1])
    areas = np.maximum(0.0, others[:, 2] - others[:, 0]) * np.maximum(0.0, others[:, 3] - others[:, 1])
    union = area + areas - inter
    return inter / np.maximum(union, 1e-6)


def nms(boxes: np.ndarray, scores: np.ndarray, cfg: NMSConfig) -> np.ndarray:
    """
    Greedy NumPy NMS. Expects boxes shape (N,4) in xyxy and scores shape (N,).

    Boxes scoring below `cfg.score_threshold` are discarded up front; a box is
    suppressed when its IoU with a kept box is above `cfg.iou_threshold`.
    Returns kept indices, highest score first. Equal scores keep the lower
    index first.
    """

    if boxes.size == 0:
        return np.empty((0,), dtype=np.int64)

    candidates = np.where(scores >= cfg.score_threshold)[0]
    if candidates.size == 0:
        return np.empty((0,), dtype=np.int64)

    # Stable sort on negated scores: ties resolve to the lowest anchor index.
    order = candidates[np.argsort(-scores[candidates], kind="stable")]
    keep = []

    while order.size > 0:
        if cfg.max_detections is not None and len(keep) >= cfg.max_detections:
            break
        i = order[0]
        keep.append(i)

        iou = box_iou(boxes[i], boxes[order[1:]])
        inds = np.where(iou <= cfg.iou_threshold)[0]
        order = order[inds + 1]

    return np.array(keep, dtype=np.int64)
