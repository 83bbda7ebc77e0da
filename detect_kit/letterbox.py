from dataclasses import dataclass
from typing import Tuple

import numpy as np

from .types import Rect

DEFAULT_FILL = 114


@dataclass(frozen=True)
class LetterboxTransform:
    """
    Aspect-preserving fit of a source image into a fixed-size target.

    `scale` and `offset` are normalized to the target size: the source content
    occupies `[offset, offset + scale]` of the target on each axis. Exactly one
    axis is shrunk (the letterboxed one); the other stays at scale 1.0.
    """

    scale: Tuple[float, float]
    offset: Tuple[float, float]
    source_size: Tuple[int, int]
    target_size: Tuple[int, int]

    def forward(self, x: float, y: float) -> Tuple[float, float]:
        """Source pixel -> target (model-input) pixel."""
        sw, sh = self.source_size
        tw, th = self.target_size
        sx, sy = self.scale
        ox, oy = self.offset
        return (ox + x / sw * sx) * tw, (oy + y / sh * sy) * th

    def inverse(self, mx: float, my: float) -> Tuple[float, float]:
        """Target (model-input) pixel -> source pixel, padding removed."""
        sw, sh = self.source_size
        tw, th = self.target_size
        sx, sy = self.scale
        ox, oy = self.offset
        return (mx / tw - ox) / sx * sw, (my / th - oy) / sy * sh

    def inverse_rect(self, rect: Rect) -> Rect:
        x0, y0 = self.inverse(rect.x, rect.y)
        x1, y1 = self.inverse(rect.x_max, rect.y_max)
        return Rect(x=x0, y=y0, width=x1 - x0, height=y1 - y0)

    def content_region(self) -> Tuple[int, int, int, int]:
        """(left, top, width, height) of the source content inside the target, in pixels."""
        tw, th = self.target_size
        sx, sy = self.scale
        ox, oy = self.offset
        w = max(1, int(round(sx * tw)))
        h = max(1, int(round(sy * th)))
        left = min(int(round(ox * tw)), tw - w)
        top = min(int(round(oy * th)), th - h)
        return left, top, w, h


def compute_letterbox(source_w: int, source_h: int, target_w: int, target_h: int) -> LetterboxTransform:
    if source_w <= 0 or source_h <= 0:
        raise ValueError(f"source size must be positive, got {source_w}x{source_h}")
    if target_w <= 0 or target_h <= 0:
        raise ValueError(f"target size must be positive, got {target_w}x{target_h}")

    source_aspect = source_w / source_h
    target_aspect = target_w / target_h
    sx, sy = 1.0, 1.0
    ox, oy = 0.0, 0.0
    if source_aspect > target_aspect:
        # Wider than the target: full width, bars top and bottom.
        sy = target_aspect / source_aspect
        oy = (1.0 - sy) / 2.0
    else:
        sx = source_aspect / target_aspect
        ox = (1.0 - sx) / 2.0

    return LetterboxTransform(
        scale=(sx, sy),
        offset=(ox, oy),
        source_size=(int(source_w), int(source_h)),
        target_size=(int(target_w), int(target_h)),
    )


def letterbox_blit(
    image: np.ndarray,
    transform: LetterboxTransform,
    out: np.ndarray,
    fill: int = DEFAULT_FILL,
) -> np.ndarray:
    """
    Resample `image` into `out` (H, W, 3 uint8) using `transform`; padding gets `fill`.

    `out` is written in place and returned.
    """
    try:
        import cv2  # type: ignore
    except Exception as e:  # pragma: no cover
        raise ImportError("OpenCV is required for letterbox_blit(). Install with `pip install opencv-python`.") from e

    if image is None or not hasattr(image, "shape"):
        raise TypeError("image must be a NumPy array.")
    tw, th = transform.target_size
    if out.shape[:2] != (th, tw) or out.ndim != 3 or out.shape[2] != 3:
        raise ValueError(f"Scratch buffer must be shaped ({th}, {tw}, 3), got {out.shape}")

    if image.ndim not in (2, 3):
        raise ValueError(f"Expected an (H, W) or (H, W, C) image, got shape {image.shape}")
    if image.ndim == 2 or image.shape[2] == 1:
        image = cv2.cvtColor(image, cv2.COLOR_GRAY2BGR)
    elif image.shape[2] == 4:
        image = cv2.cvtColor(image, cv2.COLOR_BGRA2BGR)
    elif image.shape[2] != 3:
        raise ValueError(f"Expected 1, 3 or 4 channels, got image shape {image.shape}")

    left, top, w, h = transform.content_region()
    h_src, w_src = image.shape[:2]
    if (w_src, h_src) != (w, h):
        image = cv2.resize(image, (w, h), interpolation=cv2.INTER_LINEAR)

    out[...] = fill
    out[top : top + h, left : left + w] = image
    return out
