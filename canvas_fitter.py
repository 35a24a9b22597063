"""
Fit a product image into one of the resolutions the generation model accepts.

SDXL only takes a fixed set of output sizes, so the product is letterboxed
into the allowed size whose aspect ratio is closest to its own.
"""

import math
from typing import NamedTuple, Sequence, Tuple

from PIL import Image

# Resolutions accepted by stable-diffusion-xl-1024-v1-0
ALLOWED_DIMENSIONS: Tuple[Tuple[int, int], ...] = (
    (1024, 1024), (1152, 896), (1216, 832), (1344, 768),
    (1536, 640), (640, 1536), (768, 1344), (832, 1216), (896, 1152),
)

DEFAULT_FILL_COLOR = '#000000'


class LetterboxResult(NamedTuple):
    canvas: Image.Image
    scale: float
    offset_x: float
    offset_y: float
    drawn_width: float
    drawn_height: float

    @property
    def drawn_region(self) -> Tuple[float, float, float, float]:
        """(x, y, width, height) of the product inside the padded canvas."""
        return (self.offset_x, self.offset_y, self.drawn_width, self.drawn_height)


def fit_dimensions(
    width: float,
    height: float,
    allowed: Sequence[Tuple[int, int]] = ALLOWED_DIMENSIONS,
) -> Tuple[int, int]:
    """
    Pick the allowed (width, height) whose aspect ratio is nearest the input's.

    Ties go to the entry listed first.
    """
    if not (math.isfinite(width) and math.isfinite(height)) or width <= 0 or height <= 0:
        raise ValueError(f'Dimensions must be positive finite numbers, got {width}x{height}')
    if not allowed:
        raise ValueError('No allowed dimensions to choose from')

    original_ratio = width / height
    best_match = allowed[0]
    min_diff = float('inf')
    for dim in allowed:
        diff = abs(original_ratio - dim[0] / dim[1])
        if diff < min_diff:
            min_diff = diff
            best_match = dim
    return tuple(best_match)


def letterbox(
    image: Image.Image,
    target: Tuple[int, int],
    fill_color=DEFAULT_FILL_COLOR,
) -> LetterboxResult:
    """
    Center `image` inside a `target`-sized canvas without distorting it.

    Args:
        image: Product image
        target: (width, height) of the output canvas
        fill_color: Anything PIL accepts as a color, used for the padding

    Returns:
        LetterboxResult with the new canvas and the exact scale/offsets used
    """
    target_w, target_h = target
    if not (math.isfinite(target_w) and math.isfinite(target_h)) or target_w <= 0 or target_h <= 0:
        raise ValueError(f'Target must be positive finite numbers, got {target_w}x{target_h}')
    if image.width <= 0 or image.height <= 0:
        raise ValueError('Cannot letterbox an empty image')

    scale = min(target_w / image.width, target_h / image.height)
    drawn_w = image.width * scale
    drawn_h = image.height * scale
    offset_x = (target_w - drawn_w) / 2
    offset_y = (target_h - drawn_h) / 2

    canvas = Image.new('RGBA', (target_w, target_h), fill_color)
    pixel_w = max(1, min(target_w, int(round(drawn_w))))
    pixel_h = max(1, min(target_h, int(round(drawn_h))))
    resized = image.convert('RGBA').resize((pixel_w, pixel_h), Image.Resampling.LANCZOS)
    canvas.alpha_composite(resized, (int(round(offset_x)), int(round(offset_y))))

    return LetterboxResult(canvas, scale, offset_x, offset_y, drawn_w, drawn_h)


def fit_and_letterbox(
    image: Image.Image,
    allowed: Sequence[Tuple[int, int]] = ALLOWED_DIMENSIONS,
    fill_color=DEFAULT_FILL_COLOR,
) -> LetterboxResult:
    target = fit_dimensions(image.width, image.height, allowed)
    return letterbox(image, target, fill_color)
