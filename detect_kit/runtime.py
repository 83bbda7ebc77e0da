from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Sequence, Union

from .backends.worker import GraphFn, Worker
from .errors import LoadError

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

BACKEND_KINDS = ("onnxruntime", "torchscript")


def find_project_root(
    start: Optional[PathLike] = None,
    markers: Sequence[str] = ("pyproject.toml", ".git", "requirements.txt"),
) -> Path:
    """
    Best-effort project root discovery, used to resolve relative model/label paths.
    """

    p = Path(start) if start is not None else Path.cwd()
    p = p.resolve()

    if p.is_file():
        p = p.parent

    for parent in (p, *p.parents):
        for m in markers:
            if (parent / m).exists():
                return parent
    return p


def resolve_path(path: PathLike, root: Optional[PathLike] = "auto") -> Path:
    """
    Resolve `path` to an absolute Path.

    - Absolute paths are returned as-is.
    - Relative paths are resolved against `root` if provided, else the project root.
    """

    p = Path(path)
    if p.is_absolute():
        return p

    if root == "auto" or root is None:
        base = find_project_root()
    else:
        base = Path(root).resolve()

    return (base / p).resolve()


def infer_backend_kind(model_path: PathLike) -> str:
    suffix = Path(model_path).suffix.lower()
    if suffix == ".onnx":
        return "onnxruntime"
    if suffix in {".torchscript", ".ts", ".pt"}:
        return "torchscript"
    raise LoadError(f"Could not infer backend from extension '{suffix}'. Pass backend=... explicitly.")


def load_worker(
    model_path: PathLike,
    *,
    backend: Optional[str] = None,
    graph: Optional[GraphFn] = None,
    root: Optional[PathLike] = "auto",
    onnx_providers: Optional[Sequence[str]] = None,
    torch_device: str = "cpu",
    torch_half: bool = False,
    torch_input_shape: Optional[Sequence[int]] = None,
) -> Worker:
    """
    Load a model from disk and wrap it in a `Worker`.

    Args:
        model_path: model file; relative paths resolve against the project root by default
        backend: "onnxruntime" / "torchscript", or None to infer from the extension
        graph: optional postprocess graph fed with the model's primary output
    """

    resolved = resolve_path(model_path, root=root)
    if not resolved.exists():
        raise LoadError(f"Model asset not found: {resolved}")

    chosen = (backend or infer_backend_kind(resolved)).lower()

    try:
        if chosen == "onnxruntime":
            from .backends.onnxruntime_backend import OnnxRuntimeBackend, OnnxRuntimeBackendConfig

            ort_backend = OnnxRuntimeBackend(resolved, OnnxRuntimeBackendConfig(providers=onnx_providers))
            logger.info("ONNX Runtime session providers: %s", list(ort_backend.providers_in_use))
            return Worker(
                ort_backend.infer,
                graph=graph,
                input_shape=ort_backend.input_shape,
                backend_name="onnxruntime",
                on_dispose=ort_backend.close,
            )

        if chosen == "torchscript":
            from .backends.torchscript_backend import TorchScriptBackend, TorchScriptBackendConfig

            ts_backend = TorchScriptBackend(
                resolved,
                TorchScriptBackendConfig(device=torch_device, half=torch_half, input_shape=torch_input_shape),
            )
            return Worker(
                ts_backend.infer,
                graph=graph,
                input_shape=ts_backend.input_shape,
                backend_name="torchscript",
                on_dispose=ts_backend.close,
            )
    except Exception as e:
        raise LoadError(f"Failed to load {chosen} model {resolved}: {e}") from e

    raise LoadError(f"Unsupported backend: {chosen!r}. Expected one of {BACKEND_KINDS}")
