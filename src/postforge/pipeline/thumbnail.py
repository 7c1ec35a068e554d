"""Text-on-color thumbnail rendering with Pillow."""

from __future__ import annotations

import logging
from pathlib import Path

from PIL import Image, ImageDraw, ImageFont

from postforge.config import PipelineSectionConfig

logger = logging.getLogger(__name__)

THUMBNAIL_SIZE = (1000, 1000)
FONT_SIZE = 96
LINE_SPACING = 1.3


def _load_font(font_path: str, size: int) -> ImageFont.ImageFont | ImageFont.FreeTypeFont:
    if font_path:
        try:
            return ImageFont.truetype(font_path, size)
        except OSError:
            logger.warning("Could not load thumbnail font %s, using default", font_path)
    return ImageFont.load_default(size=size)


def render_thumbnail(
    lines: list[str],
    output_path: Path,
    settings: PipelineSectionConfig,
    *,
    size: tuple[int, int] = THUMBNAIL_SIZE,
) -> Path:
    """Draw up to three centered lines of text and save a PNG.

    Raises:
        ValueError: If there is no text to draw.
    """
    lines = [line.strip() for line in lines if line.strip()][:3]
    if not lines:
        raise ValueError("No thumbnail text")

    img = Image.new("RGB", size, color=settings.thumbnail_background)
    draw = ImageDraw.Draw(img)
    font = _load_font(settings.thumbnail_font, FONT_SIZE)

    line_height = int(FONT_SIZE * LINE_SPACING)
    top = (size[1] - line_height * len(lines)) // 2
    for i, line in enumerate(lines):
        left, _, right, _ = draw.textbbox((0, 0), line, font=font)
        x = (size[0] - (right - left)) // 2
        draw.text((x, top + i * line_height), line, font=font, fill=settings.thumbnail_text_color)

    output_path.parent.mkdir(parents=True, exist_ok=True)
    img.save(output_path, format="PNG")
    return output_path
