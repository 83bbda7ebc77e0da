"""
Detection core for live image streams.

Framework-agnostic pieces: letterbox geometry, NMS, the fused YOLO postprocess
graph, backend workers and model processors. Everything works on NumPy arrays;
OpenCV is used for resampling and drawing, inference runtimes are optional.
"""

from .errors import DetectionError, LoadError, PostprocessError, RemapError, ScheduleError
from .types import Detection, DisplayBox, Rect, Viewport
from .letterbox import LetterboxTransform, compute_letterbox, letterbox_blit
from .nms import NMSConfig, nms
from .graph import YoloGraphConfig, YoloPostprocessGraph
from .backends import Worker
from .processors import (
    EfficientDetProcessor,
    ModelConfig,
    ModelProcessor,
    ModelType,
    YoloProcessor,
    create_processor,
    register_processor,
)
from .runtime import find_project_root, load_worker, resolve_path
from .metadata import load_class_names, load_labels
from .visualize import draw_display_boxes

__all__ = [
    "DetectionError",
    "LoadError",
    "PostprocessError",
    "RemapError",
    "ScheduleError",
    "Detection",
    "DisplayBox",
    "Rect",
    "Viewport",
    "LetterboxTransform",
    "compute_letterbox",
    "letterbox_blit",
    "NMSConfig",
    "nms",
    "YoloGraphConfig",
    "YoloPostprocessGraph",
    "Worker",
    "EfficientDetProcessor",
    "ModelConfig",
    "ModelProcessor",
    "ModelType",
    "YoloProcessor",
    "create_processor",
    "register_processor",
    "find_project_root",
    "load_worker",
    "resolve_path",
    "load_class_names",
    "load_labels",
    "draw_display_boxes",
]
