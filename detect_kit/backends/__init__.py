"""
Inference backends for detect_kit.

Runtime-specific loaders (ONNX Runtime, TorchScript) live in their own modules
and import their runtime lazily, so the pipeline core can be used and tested
with a plain callable wrapped in a `Worker`.
"""

from __future__ import annotations

from .worker import Worker

__all__ = ["Worker"]
