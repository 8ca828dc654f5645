import base64
import binascii
import re
from io import BytesIO
from typing import Optional
from PIL import Image

from openbadge_core.constants import DEFAULT_SVG_SIZE

_DATA_URL_PREFIX = re.compile(r"^data:image/[\w.+-]+;base64,", re.IGNORECASE)


def decode_data_url(image_data_url: str) -> bytes:
    """
    Decodes an image data URL (e.g. "data:image/png;base64,iVBOR...") into raw bytes.
    A bare base64 string without the data URL prefix is accepted too.

    Raises:
        ValueError: If the payload is not valid base64.
    """
    payload = _DATA_URL_PREFIX.sub("", image_data_url.strip(), count=1)
    try:
        return base64.b64decode(payload, validate=True)
    except binascii.Error as e:
        raise ValueError(f"Image data URL is not valid base64: {e}") from e


def encode_data_url(image_bytes: bytes, mime_type: str = "image/png") -> str:
    return f"data:{mime_type};base64,{base64.b64encode(image_bytes).decode('ascii')}"


def ensure_png_data_url(image_data_url: str) -> str:
    """
    Returns a PNG data URL for any raster image data URL Pillow can read.

    PNG input is returned unchanged so its chunks survive baking byte for byte;
    other formats (JPEG, WebP, GIF, ...) are converted to PNG.

    Raises:
        ValueError: If the image cannot be decoded.
    """
    image_bytes = decode_data_url(image_data_url)
    try:
        with Image.open(BytesIO(image_bytes)) as img:
            if img.format == 'PNG':
                return image_data_url

            # keep transparency where the source has it
            if img.mode not in ("RGB", "RGBA", "L", "LA"):
                img = img.convert("RGBA")
            output = BytesIO()
            img.save(output, "PNG")
    except OSError as e:
        raise ValueError(f"Unsupported or corrupt image: {e}") from e
    return encode_data_url(output.getvalue(), "image/png")


def image_to_svg(image_data_url: str, width: Optional[int] = DEFAULT_SVG_SIZE, height: Optional[int] = DEFAULT_SVG_SIZE) -> str:
    """
    Wraps a raster image data URL in a minimal SVG document, so the badge can be baked as SVG.

    Parameters:
        image_data_url (str): The raster image as a data URL.
        width (int): SVG width; None uses the raster's own width.
        height (int): SVG height; None uses the raster's own height.

    Returns:
        str: SVG markup referencing the image inline.
    """
    if width is None or height is None:
        try:
            with Image.open(BytesIO(decode_data_url(image_data_url))) as img:
                native_width, native_height = img.size
        except OSError as e:
            raise ValueError(f"Unsupported or corrupt image: {e}") from e
        width = width or native_width
        height = height or native_height

    return f"""<?xml version="1.0" encoding="UTF-8"?>
<svg xmlns="http://www.w3.org/2000/svg" width="{width}" height="{height}" viewBox="0 0 {width} {height}">
  <image href="{image_data_url}" width="{width}" height="{height}" />
</svg>"""
