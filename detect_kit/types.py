from dataclasses import dataclass
from typing import Tuple


@dataclass(frozen=True)
class Rect:
    """
    Axis-aligned rectangle: top-left corner plus size.
    """

    x: float
    y: float
    width: float
    height: float

    @property
    def x_max(self) -> float:
        return self.x + self.width

    @property
    def y_max(self) -> float:
        return self.y + self.height

    @property
    def center(self) -> Tuple[float, float]:
        return self.x + self.width / 2, self.y + self.height / 2

    def as_xyxy(self) -> Tuple[float, float, float, float]:
        return self.x, self.y, self.x_max, self.y_max


@dataclass(frozen=True)
class Detection:
    """
    One recognized object. `bounding_box` is in model-input pixel space.
    """

    label: str
    score: float
    bounding_box: Rect
    class_id: int = -1

    def __str__(self) -> str:
        b = self.bounding_box
        return f"{self.label} ({self.score:.2%}) at (x={b.x:.1f}, y={b.y:.1f}, w={b.width:.1f}, h={b.height:.1f})"


@dataclass(frozen=True)
class DisplayBox:
    """
    Display-space box, relative to the viewport center. The renderer decides
    whether the y axis points up or down.
    """

    center_x: float
    center_y: float
    width: float
    height: float
    label: str
    score: float = 0.0
    class_id: int = -1


@dataclass(frozen=True)
class Viewport:
    width: float
    height: float

    @property
    def is_valid(self) -> bool:
        return self.width > 0 and self.height > 0
