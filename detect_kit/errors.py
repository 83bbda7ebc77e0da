"""
Error taxonomy for the detection pipeline.

Only `LoadError` is fatal. The others are raised inside a processing cycle and
recovered there (empty detection list, or remap skipped for that cycle).
"""

from __future__ import annotations


class DetectionError(Exception):
    pass


class LoadError(DetectionError):
    """Missing/invalid model or label asset, or an unresolvable input shape."""


class ScheduleError(DetectionError):
    """Backend rejected the input tensor. Handled like a PostprocessError."""


class PostprocessError(DetectionError):
    """Output tensors missing or inconsistent during readback."""


class RemapError(DetectionError):
    """Display target missing or model-input dimensions invalid at remap time."""
