"""
Logo overlay module for compositing a logo image onto a product image.

Placement is expressed as percentages so the same parameters work for the
live preview (native product resolution) and for the letterboxed canvas that
is sent to the generation API.
"""

import math
from dataclasses import dataclass
from io import BytesIO
from typing import Mapping, NamedTuple, Optional, Tuple

import requests
from PIL import Image, ImageDraw, UnidentifiedImageError


class InvalidImageError(ValueError):
    """Raised when uploaded bytes cannot be decoded as an image."""


class OverlayBox(NamedTuple):
    left: float
    top: float
    width: float
    height: float

    def rounded(self) -> Tuple[int, int, int, int]:
        """Integer (left, top, width, height) used when rasterizing."""
        return (
            int(round(self.left)),
            int(round(self.top)),
            max(1, int(round(self.width))),
            max(1, int(round(self.height))),
        )


@dataclass(frozen=True)
class PlacementParams:
    """
    Where and how large the logo is drawn.

    size_percent is the logo width as a percentage of the placement region
    width; the anchor is the logo's center as a percentage of the region.
    """
    size_percent: float = 15
    anchor_x_percent: float = 75
    anchor_y_percent: float = 80

    def __post_init__(self):
        values = (self.size_percent, self.anchor_x_percent, self.anchor_y_percent)
        if not all(math.isfinite(value) for value in values):
            raise ValueError(f'Placement values must be finite numbers, got {values}')
        if not 1 <= self.size_percent <= 100:
            raise ValueError(f'size must be between 1 and 100, got {self.size_percent}')
        if not 0 <= self.anchor_x_percent <= 100:
            raise ValueError(f'x must be between 0 and 100, got {self.anchor_x_percent}')
        if not 0 <= self.anchor_y_percent <= 100:
            raise ValueError(f'y must be between 0 and 100, got {self.anchor_y_percent}')

    @classmethod
    def from_mapping(cls, data: Mapping) -> 'PlacementParams':
        """Build params from form/JSON fields `size`, `x` and `y`."""
        defaults = cls()
        try:
            return cls(
                size_percent=float(data.get('size', defaults.size_percent)),
                anchor_x_percent=float(data.get('x', defaults.anchor_x_percent)),
                anchor_y_percent=float(data.get('y', defaults.anchor_y_percent)),
            )
        except (TypeError, ValueError) as e:
            raise ValueError(f'Invalid placement parameters: {e}') from e


def download_image(url: str) -> bytes:
    """
    Download an image from a URL.

    Args:
        url: The URL of the image to download

    Returns:
        The image data as bytes
    """
    response = requests.get(url, timeout=30)
    response.raise_for_status()
    return response.content


def load_image(image_bytes: bytes) -> Image.Image:
    """Decode image bytes into an RGBA image."""
    try:
        img = Image.open(BytesIO(image_bytes))
        img.load()
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError) as e:
        raise InvalidImageError(f'Could not decode image: {e}') from e
    return img.convert('RGBA')


def image_to_png_bytes(img: Image.Image) -> bytes:
    output = BytesIO()
    img.save(output, format='PNG')
    return output.getvalue()


def overlay_box(
    canvas_size: Tuple[int, int],
    overlay_size: Tuple[int, int],
    params: PlacementParams,
    region: Optional[Tuple[float, float, float, float]] = None,
) -> OverlayBox:
    """
    Compute the exact logo rectangle on the canvas.

    Args:
        canvas_size: (width, height) of the output canvas
        overlay_size: (width, height) of the source logo
        params: Placement parameters
        region: (x, y, width, height) the percentages are relative to.
                Defaults to the whole canvas.

    Returns:
        OverlayBox with float coordinates; no clamping is applied
    """
    if region is None:
        region = (0, 0, canvas_size[0], canvas_size[1])
    region_x, region_y, region_w, region_h = region
    logo_w, logo_h = overlay_size

    width = region_w * (params.size_percent / 100)
    height = logo_h * (width / logo_w)
    left = region_x + region_w * (params.anchor_x_percent / 100) - width / 2
    top = region_y + region_h * (params.anchor_y_percent / 100) - height / 2
    return OverlayBox(left, top, width, height)


def composite(
    base: Image.Image,
    overlay: Image.Image,
    params: PlacementParams,
    canvas_size: Optional[Tuple[int, int]] = None,
    region: Optional[Tuple[float, float, float, float]] = None,
) -> Image.Image:
    """
    Draw `base` at (0, 0) and `overlay` on top of it at the placement.

    The overlay is scaled uniformly. Parts of it that fall outside the
    canvas are clipped. Neither input image is modified.

    Args:
        base: Product image (already pre-scaled by the caller if needed)
        overlay: Logo image
        params: Placement parameters
        canvas_size: Output size, defaults to the base size
        region: Placement region, defaults to the whole canvas

    Returns:
        A new RGBA image of size `canvas_size`
    """
    if canvas_size is None:
        canvas_size = base.size

    canvas = Image.new('RGBA', canvas_size, (0, 0, 0, 0))
    canvas.paste(base.convert('RGBA'), (0, 0))

    box = overlay_box(canvas_size, overlay.size, params, region)
    left, top, width, height = box.rounded()

    # Only the on-canvas part of the logo is resized; the rest is clipped
    x0, y0 = max(0, left), max(0, top)
    x1, y1 = min(canvas_size[0], left + width), min(canvas_size[1], top + height)
    if x0 >= x1 or y0 >= y1:
        return canvas

    scale_x = overlay.width / width
    scale_y = overlay.height / height
    source_box = (
        (x0 - left) * scale_x,
        (y0 - top) * scale_y,
        (x1 - left) * scale_x,
        (y1 - top) * scale_y,
    )
    logo = overlay.convert('RGBA').resize((x1 - x0, y1 - y0), Image.Resampling.LANCZOS, box=source_box)

    layer = Image.new('RGBA', canvas_size, (0, 0, 0, 0))
    layer.paste(logo, (x0, y0))
    return Image.alpha_composite(canvas, layer)


def build_logo_mask(canvas_size: Tuple[int, int], box: OverlayBox) -> Image.Image:
    """White where the logo sits, black elsewhere. Used for inpainting."""
    mask = Image.new('L', canvas_size, 0)
    left, top, width, height = box.rounded()
    draw = ImageDraw.Draw(mask)
    draw.rectangle((left, top, left + width - 1, top + height - 1), fill=255)
    return mask


def overlay_logo_on_image(base_image_bytes: bytes, logo_image_bytes: bytes, params: PlacementParams) -> bytes:
    """
    Overlay a logo image onto a base image at its native resolution.

    Args:
        base_image_bytes: The base image as bytes
        logo_image_bytes: The logo image as bytes
        params: Logo size and center position in percent

    Returns:
        The composited image as PNG bytes
    """
    base_img = load_image(base_image_bytes)
    logo_img = load_image(logo_image_bytes)
    return image_to_png_bytes(composite(base_img, logo_img, params))
