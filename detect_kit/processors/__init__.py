"""
Detector processors, selected by `ModelType`.

New detector families register themselves with `register_processor` instead of
growing a switch in the orchestrator.
"""

from __future__ import annotations

from enum import Enum
from typing import Callable, Dict

from ..errors import LoadError
from .base import ModelConfig, ModelProcessor, WorkerProcessor
from .efficientdet import EfficientDetProcessor
from .yolo import YoloProcessor


class ModelType(str, Enum):
    YOLO = "primary-detector"
    EFFICIENTDET = "alternate-detector"


ProcessorFactory = Callable[..., ModelProcessor]

_REGISTRY: Dict[ModelType, ProcessorFactory] = {
    ModelType.YOLO: YoloProcessor,
    ModelType.EFFICIENTDET: EfficientDetProcessor,
}


def parse_model_type(value: object) -> ModelType:
    if isinstance(value, ModelType):
        return value
    text = str(value).strip().lower()
    for member in ModelType:
        if text in (member.value, member.name.lower()):
            return member
    raise LoadError(f"Unknown model type {value!r}. Expected one of {[m.value for m in ModelType]}")


def register_processor(model_type: ModelType, factory: ProcessorFactory) -> None:
    _REGISTRY[model_type] = factory


def create_processor(model_type: object, **kwargs) -> ModelProcessor:
    mt = parse_model_type(model_type)
    factory = _REGISTRY.get(mt)
    if factory is None:
        raise LoadError(f"No processor registered for model type {mt.value!r}")
    return factory(**kwargs)


__all__ = [
    "ModelConfig",
    "ModelProcessor",
    "WorkerProcessor",
    "YoloProcessor",
    "EfficientDetProcessor",
    "ModelType",
    "parse_model_type",
    "register_processor",
    "create_processor",
]
