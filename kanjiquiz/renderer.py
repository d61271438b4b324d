"""
Renders question text as a PNG for the chat transport.
"""
import io
import logging
import os
from typing import List, Optional

from PIL import Image, ImageDraw, ImageFont

logger = logging.getLogger(__name__)

# Font candidates, first usable one wins
DEFAULT_FONT_PATHS = [
    "./resources/meiryo.ttc",
    "/usr/share/fonts/opentype/noto/NotoSansCJK-Regular.ttc",
    "/System/Library/Fonts/Hiragino Sans GB.ttc",
    "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf",
]


class QuestionRenderer:
    """Draws black text on a white canvas sized to the text."""

    def __init__(self, font_paths: Optional[List[str]] = None, font_size: int = 72):
        self.font_size = font_size
        self.font = self._load_font(DEFAULT_FONT_PATHS if font_paths is None else font_paths)

    def _load_font(self, font_paths: List[str]):
        for path in font_paths:
            if not os.path.exists(path):
                continue
            try:
                return ImageFont.truetype(path, self.font_size)
            except OSError as e:
                logger.warning(f"Font not usable: {path} - {e}")
        logger.warning("No TrueType font found, question images use the default bitmap font")
        return ImageFont.load_default()

    def render_text(self, text: str) -> bytes:
        """
        Render text to PNG bytes.

        Returns:
            PNG data, or b"" if rendering failed
        """
        if not text:
            return b""

        try:
            measure = ImageDraw.Draw(Image.new("RGB", (1, 1)))
            left, top, right, bottom = measure.multiline_textbbox((0, 0), text, font=self.font)
            width = max(1, int((right - left) * 1.1))
            height = max(1, int((bottom - top) * 1.2))

            image = Image.new("RGB", (width, height), (255, 255, 255))
            draw = ImageDraw.Draw(image)
            x = (width - (right - left)) / 2 - left
            y = (height - (bottom - top)) / 2 - top
            draw.multiline_text((x, y), text, fill=(0, 0, 0), font=self.font, align="center")

            buffer = io.BytesIO()
            image.save(buffer, format="PNG")
            return buffer.getvalue()
        except Exception as e:
            logger.error(f"Failed to render question image: {e}")
            return b""
