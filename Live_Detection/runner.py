from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Sequence, Tuple

import cv2
import numpy as np

from detect_kit.letterbox import compute_letterbox, letterbox_blit
from detect_kit.types import Viewport
from detect_kit.visualize import draw_display_boxes

from .config import DISPLAY_FITS, DetectorConfig, DisplayConfig, SourceConfig, config_from_dict, load_config_payload
from .ingest import FrameSource, VideoCaptureSource, get_capture_info
from .logs import setup_logging
from .orchestrator import DetectionOrchestrator, DetectionEvent, OrchestratorState
from .scheduler import CooperativeScheduler

logger = logging.getLogger(__name__)

WINDOW_NAME = "live-detection"


def collect_cli_dests(parser: argparse.ArgumentParser, argv: Sequence[str]) -> set[str]:
    dests: set[str] = set()
    for opt, action in parser._option_string_actions.items():
        for arg in argv:
            if arg == opt or arg.startswith(f"{opt}="):
                dests.add(action.dest)
                break
    return dests


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Live object detection on a video file, webcam or RTSP stream.")
    parser.add_argument("--config", default=None, help="Detector config JSON. CLI flags override its values.")
    src = parser.add_mutually_exclusive_group()
    src.add_argument("--video", default=None, help="Path to a video file.")
    src.add_argument("--webcam", type=int, default=None, help="Webcam index.")
    src.add_argument("--rtsp", default=None, help="RTSP URL.")
    parser.add_argument("--loop-video", action="store_true", help="Restart the video file when it ends.")
    parser.add_argument("--model", default=None, help="Model file (.onnx, .torchscript, .pt).")
    parser.add_argument("--labels", default=None, help="classes.txt (one label per line) or metadata.yaml.")
    parser.add_argument(
        "--model-type",
        default="primary-detector",
        help="primary-detector (YOLO) or alternate-detector (EfficientDet).",
    )
    parser.add_argument("--backend", default=None, help="onnxruntime / torchscript (default: from extension).")
    parser.add_argument("--iou", type=float, default=0.45, help="NMS IoU threshold.")
    parser.add_argument("--score", type=float, default=0.5, help="Score threshold.")
    parser.add_argument("--max-wait-cycles", type=int, default=30, help="Scheduler cycles to wait for backend output.")
    parser.add_argument("--display-width", type=int, default=None)
    parser.add_argument("--display-height", type=int, default=None)
    parser.add_argument("--display-fit", choices=DISPLAY_FITS, default="source")
    parser.add_argument("--no-show", action="store_true", help="Do not open a preview window.")
    parser.add_argument("--max-frames", type=int, default=0, help="Stop after N frames (0 = until the stream ends).")
    parser.add_argument("--log-level", default="INFO")
    parser.add_argument("--log-file", default=None)
    return parser


def resolve_config(args: argparse.Namespace, cli_dests: set[str]) -> DetectorConfig:
    payload: Dict[str, Any] = load_config_payload(Path(args.config)) if args.config else {}

    overrides = {
        "model": "model",
        "labels": "labels",
        "model_type": "model_type",
        "backend": "backend",
        "iou": "iou_threshold",
        "score": "score_threshold",
        "max_wait_cycles": "max_wait_cycles",
    }
    for dest, key in overrides.items():
        value = getattr(args, dest)
        if dest in cli_dests or (key not in payload and value is not None):
            payload[key] = value

    cfg = config_from_dict(payload)

    source = cfg.source
    if any(d in cli_dests for d in ("video", "webcam", "rtsp")):
        source = SourceConfig(video=args.video, webcam=args.webcam, rtsp=args.rtsp, loop_video=source.loop_video)
    if args.loop_video:
        source = replace(source, loop_video=True)

    display = cfg.display
    if {"display_width", "display_height", "display_fit"} & cli_dests:
        display = DisplayConfig(
            width=args.display_width if "display_width" in cli_dests else display.width,
            height=args.display_height if "display_height" in cli_dests else display.height,
            fit=args.display_fit if "display_fit" in cli_dests else display.fit,
        )

    cfg = replace(cfg, source=source, display=display)
    if cfg.source.count != 1:
        raise ValueError("Exactly one source must be set: --video or --webcam or --rtsp (or via --config).")
    return cfg


def render_frame(
    frame: np.ndarray,
    event: Optional[DetectionEvent],
    viewport: Viewport,
    fit: str,
    model_size: Tuple[int, int],
) -> np.ndarray:
    vw, vh = int(viewport.width), int(viewport.height)
    if fit == "model" and min(model_size) > 0:
        mw, mh = model_size
        h, w = frame.shape[:2]
        canvas = np.empty((mh, mw, 3), dtype=np.uint8)
        letterbox_blit(frame, compute_letterbox(w, h, mw, mh), canvas)
        canvas = cv2.resize(canvas, (vw, vh), interpolation=cv2.INTER_LINEAR)
    else:
        canvas = cv2.resize(frame, (vw, vh), interpolation=cv2.INTER_LINEAR)
    if event is None:
        return canvas
    out = draw_display_boxes(canvas, event.boxes)
    cv2.putText(out, event.summary, (8, 20), cv2.FONT_HERSHEY_SIMPLEX, 0.5, (0, 255, 0), 1, cv2.LINE_AA)
    return out


def drive_frames(
    source: FrameSource,
    orchestrator: DetectionOrchestrator,
    scheduler: CooperativeScheduler,
    *,
    max_frames: int = 0,
    on_tick: Optional[Callable[[Optional[np.ndarray]], bool]] = None,
) -> int:
    """
    Pump frames into the orchestrator until the source ends, `max_frames` frames
    have been read, or `on_tick` returns False. At the end of the source or the
    frame limit, in-flight work is drained first. Returns the number of frames read.
    """
    frames = 0
    last_frame: Optional[np.ndarray] = None
    while True:
        limit_reached = bool(max_frames) and frames >= max_frames
        if not limit_reached and source.has_new_frame():
            frame = source.read()
            if frame is not None:
                last_frame = frame
                frames += 1
                # Single-flight: frames arriving while a job runs are only displayed.
                if orchestrator.state is OrchestratorState.READY:
                    orchestrator.execute_detection(frame)
        elif scheduler.pending == 0:
            if limit_reached:
                logger.info("Stopping after %d frames", frames)
            else:
                logger.info("Source exhausted after %d frames", frames)
            break

        scheduler.step()

        if on_tick is not None and not on_tick(last_frame):
            break
    return frames


def run_live(cfg: DetectorConfig, *, show: bool = True, max_frames: int = 0) -> int:
    source = VideoCaptureSource.from_config(cfg.source)
    info = get_capture_info(source.cap)
    if cfg.display.width is not None:
        viewport = Viewport(width=cfg.display.width, height=cfg.display.height)
    else:
        viewport = Viewport(width=info.width or 640, height=info.height or 480)

    scheduler = CooperativeScheduler()
    orchestrator = DetectionOrchestrator(
        cfg,
        scheduler,
        viewport=viewport,
        letterbox_aware=cfg.display.fit == "source",
    )
    if not orchestrator.initialize():
        source.release()
        return 1

    def show_frame(frame: Optional[np.ndarray]) -> bool:
        if frame is None:
            return True
        canvas = render_frame(frame, orchestrator.last_event, viewport, cfg.display.fit, orchestrator.model_size)
        cv2.imshow(WINDOW_NAME, canvas)
        key = cv2.waitKey(1) & 0xFF
        return key not in (ord("q"), 27)

    try:
        drive_frames(source, orchestrator, scheduler, max_frames=max_frames, on_tick=show_frame if show else None)
    finally:
        orchestrator.dispose()
        source.release()
        if show:
            cv2.destroyAllWindows()

    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    raw_argv = list(argv) if argv is not None else sys.argv[1:]
    setup_logging(args.log_level, args.log_file)
    cfg = resolve_config(args, collect_cli_dests(parser, raw_argv))
    return run_live(cfg, show=not args.no_show, max_frames=int(args.max_frames))
