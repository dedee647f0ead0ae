"""Tk photo images built from Pillow images."""

import base64
import io
import itertools
import logging
from pathlib import Path
from typing import Iterator, Union

from PIL import Image, ImageDraw

from tkbridge.bridge import get_bridge

logger = logging.getLogger(__name__)

_ids: Iterator[int] = itertools.count(1)

ImageSource = Union[Image.Image, bytes, str, Path]


def encode_png(source: ImageSource) -> str:
    """Return ``source`` as base64 PNG data for ``image create photo -data``.

    Args:
        source: A Pillow image, raw image file bytes, or a path to an image.
    """
    if isinstance(source, (str, Path)):
        with Image.open(source) as img:
            return encode_png(img.copy())
    if isinstance(source, bytes):
        with Image.open(io.BytesIO(source)) as img:
            return encode_png(img.copy())

    buf = io.BytesIO()
    img = source if source.mode in ("RGB", "RGBA", "L", "LA", "P") else source.convert("RGBA")
    img.save(buf, format="PNG")
    return base64.b64encode(buf.getvalue()).decode("ascii")


class Photo:
    """A Tk photo image."""

    def __init__(self, source: ImageSource):
        self.name = f"img{next(_ids)}"
        get_bridge().eval_err(f"image create photo {self.name} -format png -data {encode_png(source)}")

    def __str__(self) -> str:
        return self.name

    def width(self) -> int:
        return int(get_bridge().eval_err(f"image width {self.name}") or 0)

    def height(self) -> int:
        return int(get_bridge().eval_err(f"image height {self.name}") or 0)

    def delete(self) -> None:
        get_bridge().eval_err(f"image delete {self.name}")


def default_icon(size: int = 64) -> Image.Image:
    """Draw the default application icon."""
    img = Image.new("RGBA", (size, size), (0, 0, 0, 0))
    draw = ImageDraw.Draw(img)
    pad = size // 8
    draw.rounded_rectangle((pad, pad, size - pad, size - pad), radius=size // 6, fill=(38, 110, 190, 255))
    draw.text((size // 3, size // 3), "Tk", fill=(255, 255, 255, 255))
    return img
