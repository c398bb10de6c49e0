"""Pillow-based photo compression."""

import io
from dataclasses import dataclass

from PIL import Image, ImageOps

from inspection_capture.services.uploads import ImageCompressor


@dataclass
class PillowImageCompressor(ImageCompressor):
    """Bounds the longer edge and re-encodes as JPEG."""

    max_dimension: int = 1600
    quality: int = 85

    def compress(self, content: bytes) -> bytes:
        """Return JPEG bytes no larger than max_dimension on either edge."""
        with Image.open(io.BytesIO(content)) as source:
            image = ImageOps.exif_transpose(source)
            image.thumbnail(
                (self.max_dimension, self.max_dimension), Image.Resampling.LANCZOS
            )
            if image.mode != "RGB":
                image = image.convert("RGB")
            buffer = io.BytesIO()
            image.save(buffer, format="JPEG", quality=self.quality, optimize=True)
        return buffer.getvalue()
