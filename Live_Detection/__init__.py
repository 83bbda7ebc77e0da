"""
Live detection application layer built on top of `detect_kit`.

`detect_kit` keeps the model-facing pieces (letterbox, NMS, processors,
backends); this package owns
- the execution orchestrator (single-flight scheduling + display remap)
- the cooperative scheduler driving processor tasks
- per-request processing sessions
- frame sources, configuration, logging and the live runner
"""

from __future__ import annotations

from .config import DetectorConfig, DisplayConfig, SourceConfig, config_from_dict, load_detector_config
from .logs import setup_logging
from .orchestrator import (
    NO_DETECTIONS,
    DetectionEvent,
    DetectionOrchestrator,
    OrchestratorState,
    remap_to_display,
    summarize,
)
from .scheduler import CooperativeScheduler
from .session import ProcessingSession, SessionState, SessionStateError

__all__ = [
    "DetectorConfig",
    "DisplayConfig",
    "SourceConfig",
    "config_from_dict",
    "load_detector_config",
    "setup_logging",
    "NO_DETECTIONS",
    "DetectionEvent",
    "DetectionOrchestrator",
    "OrchestratorState",
    "remap_to_display",
    "summarize",
    "CooperativeScheduler",
    "ProcessingSession",
    "SessionState",
    "SessionStateError",
]
