from dataclasses import dataclass, field
from typing import List, Optional, Protocol, Tuple

from PIL import Image


@dataclass(frozen=True)
class Rect:
    x: float = 0.0
    y: float = 0.0
    width: float = 0.0
    height: float = 0.0

    @property
    def is_empty(self) -> bool:
        return self.width <= 0 or self.height <= 0


@dataclass
class Stroke:
    points: List[Tuple[float, float]]
    width: float = 10.0
    color: str = "#000000"


@dataclass
class VectorDrawing:
    strokes: List[Stroke] = field(default_factory=list)


class Renderer(Protocol):
    def decode(self, data: bytes) -> Optional[VectorDrawing]:
        ...

    def bounding_box(self, drawing: VectorDrawing) -> Rect:
        ...

    def rasterize(self, drawing: VectorDrawing, background: str, scale: float) -> Image.Image:
        ...

    def encode_png(self, image: Image.Image) -> bytes:
        ...

    def thumbnail(self, drawing: VectorDrawing, size: Tuple[int, int]) -> Optional[bytes]:
        ...
