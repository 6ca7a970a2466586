import io
import json
import logging
import math
from typing import Optional, Tuple

from PIL import Image, ImageColor, ImageDraw

from ...application.ports.renderer import Rect, Renderer, Stroke, VectorDrawing
from ...exceptions import EncodingFailed, InvalidContent

logger = logging.getLogger(__name__)


class PillowRenderer(Renderer):
    """Renders JSON stroke documents with Pillow.

    Payload shape::

        {"strokes": [{"points": [[x, y], ...], "width": 10, "color": "#000000"}]}
    """

    def __init__(self, background: str = "#FFFFFF", thumbnail_scale: float = 2.0, max_dimension: int = 8192) -> None:
        self.background = background
        self.thumbnail_scale = thumbnail_scale
        self.max_dimension = max_dimension

    def decode(self, data: bytes) -> Optional[VectorDrawing]:
        try:
            payload = json.loads(data.decode("utf-8"))
            strokes = []
            for raw in payload["strokes"]:
                color = str(raw.get("color", "#000000"))
                ImageColor.getrgb(color)
                width = float(raw.get("width", 10.0))
                if width < 0 or not math.isfinite(width):
                    return None
                points = [(float(x), float(y)) for x, y in raw["points"]]
                if not all(math.isfinite(v) for p in points for v in p):
                    return None
                strokes.append(Stroke(points=points, width=width, color=color))
            return VectorDrawing(strokes=strokes)
        except (ValueError, TypeError, KeyError, AttributeError, UnicodeDecodeError) as e:
            logger.debug(f"Could not decode drawing payload: {e}")
            return None

    def bounding_box(self, drawing: VectorDrawing) -> Rect:
        min_x = min_y = math.inf
        max_x = max_y = -math.inf
        for stroke in drawing.strokes:
            pad = stroke.width / 2
            for x, y in stroke.points:
                min_x, min_y = min(min_x, x - pad), min(min_y, y - pad)
                max_x, max_y = max(max_x, x + pad), max(max_y, y + pad)
        if min_x == math.inf:
            return Rect()
        return Rect(x=min_x, y=min_y, width=max_x - min_x, height=max_y - min_y)

    def rasterize(self, drawing: VectorDrawing, background: str, scale: float) -> Image.Image:
        bounds = self.bounding_box(drawing)
        if bounds.is_empty:
            raise InvalidContent("Drawing has empty bounds")
        size = (max(1, math.ceil(bounds.width * scale)), max(1, math.ceil(bounds.height * scale)))
        if max(size) > self.max_dimension:
            raise InvalidContent(
                f"Drawing renders at {size[0]}x{size[1]} pixels, larger than the {self.max_dimension} pixel limit"
            )

        # Opaque RGB canvas, strokes are flattened onto the background colour
        image = Image.new("RGB", size, ImageColor.getrgb(background))
        draw = ImageDraw.Draw(image)
        for stroke in drawing.strokes:
            if not stroke.points:
                continue
            points = [((x - bounds.x) * scale, (y - bounds.y) * scale) for x, y in stroke.points]
            width = max(1, round(stroke.width * scale))
            if len(points) == 1:
                cx, cy = points[0]
                r = width / 2
                draw.ellipse([cx - r, cy - r, cx + r, cy + r], fill=stroke.color)
            else:
                draw.line(points, fill=stroke.color, width=width, joint="curve")
        return image

    def encode_png(self, image: Image.Image) -> bytes:
        try:
            output = io.BytesIO()
            image.save(output, format="PNG")
            return output.getvalue()
        except (OSError, ValueError) as e:
            raise EncodingFailed(f"Failed to convert image to data: {e}", original_error=e)

    def thumbnail(self, drawing: VectorDrawing, size: Tuple[int, int] = (400, 400)) -> Optional[bytes]:
        """Fit the whole drawing inside ``size``, centred on a background canvas.

        Returns None for drawings with no visible content.
        """
        if self.bounding_box(drawing).is_empty:
            return None
        rendered = self.rasterize(drawing, self.background, self.thumbnail_scale)
        if rendered.width > size[0] or rendered.height > size[1]:
            rendered.thumbnail(size, Image.Resampling.LANCZOS)
            canvas = Image.new("RGB", size, ImageColor.getrgb(self.background))
            canvas.paste(rendered, ((size[0] - rendered.width) // 2, (size[1] - rendered.height) // 2))
            rendered = canvas
        return self.encode_png(rendered)
