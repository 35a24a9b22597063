import pytest
from io import BytesIO
from PIL import Image

from overlay_logo import (
    InvalidImageError,
    PlacementParams,
    build_logo_mask,
    composite,
    load_image,
    overlay_box,
    overlay_logo_on_image,
)
from conftest import make_image, png_bytes

RED = (255, 0, 0, 255)
BLUE = (0, 0, 255, 255)


def test_overlay_box_reference_example():
    box = overlay_box((1000, 1000), (200, 100), PlacementParams(15, 75, 80))
    assert box.width == pytest.approx(150)
    assert box.height == pytest.approx(75)
    assert box.left == pytest.approx(675)
    assert box.top == pytest.approx(762.5)


@pytest.mark.parametrize('size', [1, 10, 33, 50, 100])
def test_overlay_width_linear_and_aspect_preserved(size):
    box = overlay_box((800, 600), (300, 120), PlacementParams(size, 50, 50))
    assert box.width == pytest.approx(800 * size / 100)
    assert box.width / box.height == pytest.approx(300 / 120)


@pytest.mark.parametrize('x,y', [(0, 0), (25, 75), (50, 50), (100, 100), (12.5, 99)])
def test_overlay_center_matches_anchor(x, y):
    box = overlay_box((640, 480), (40, 30), PlacementParams(20, x, y))
    assert box.left + box.width / 2 == pytest.approx(640 * x / 100)
    assert box.top + box.height / 2 == pytest.approx(480 * y / 100)


def test_overlay_box_relative_to_region():
    box = overlay_box((1024, 1024), (100, 100), PlacementParams(10, 50, 50), region=(0, 256, 1024, 512))
    assert box.width == pytest.approx(102.4)
    assert box.top + box.height / 2 == pytest.approx(512)


def test_composite_draws_logo_centered(red_product, blue_logo):
    result = composite(red_product, blue_logo, PlacementParams(20, 50, 50))
    assert result.size == (100, 100)
    assert result.mode == 'RGBA'
    # logo box is (40, 45, 20, 10)
    assert result.getpixel((50, 50)) == BLUE
    assert result.getpixel((40, 45)) == BLUE
    assert result.getpixel((59, 54)) == BLUE
    assert result.getpixel((39, 50)) == RED
    assert result.getpixel((60, 50)) == RED
    assert result.getpixel((50, 55)) == RED


def test_composite_clips_out_of_bounds(red_product):
    logo = make_image((20, 20), BLUE)
    bottom_right = composite(red_product, logo, PlacementParams(20, 100, 100))
    assert bottom_right.size == (100, 100)
    assert bottom_right.getpixel((95, 95)) == BLUE
    assert bottom_right.getpixel((85, 85)) == RED

    top_left = composite(red_product, logo, PlacementParams(20, 0, 0))
    assert top_left.getpixel((5, 5)) == BLUE
    assert top_left.getpixel((15, 15)) == RED


def test_composite_extreme_aspect_logo_only_resizes_visible_part():
    product = make_image((200, 200), RED)
    # 2x20000 logo at full width would be 200x2000000 px if resized whole
    logo = make_image((2, 20000), BLUE)
    result = composite(product, logo, PlacementParams(100, 50, 50))
    assert result.size == (200, 200)
    assert result.getpixel((100, 100)) == BLUE
    assert result.getpixel((0, 0)) == BLUE
    assert result.getpixel((199, 199)) == BLUE


def test_composite_partially_clipped_matches_visible_slice(red_product):
    logo = Image.new('RGBA', (20, 20), BLUE)
    logo.paste(Image.new('RGBA', (10, 20), (0, 255, 0, 255)), (10, 0))
    # logo box is (-10, 40, 20, 20): only its green right half is on canvas
    result = composite(red_product, logo, PlacementParams(20, 0, 50))
    assert result.getpixel((2, 50)) == (0, 255, 0, 255)
    assert result.getpixel((7, 45)) == (0, 255, 0, 255)
    assert result.getpixel((12, 50)) == RED


def test_composite_respects_logo_transparency(red_product):
    logo = make_image((20, 20), (0, 0, 255, 0))
    result = composite(red_product, logo, PlacementParams(20, 50, 50))
    assert result.getpixel((50, 50)) == RED


def test_composite_does_not_mutate_inputs(red_product, blue_logo):
    composite(red_product, blue_logo, PlacementParams(50, 50, 50))
    assert red_product.getpixel((50, 50)) == RED
    assert blue_logo.size == (20, 10)


def test_composite_on_larger_canvas(red_product, blue_logo):
    result = composite(red_product, blue_logo, PlacementParams(10, 90, 90), canvas_size=(200, 200))
    assert result.size == (200, 200)
    assert result.getpixel((180, 180)) == BLUE
    # outside the base, nothing was drawn
    assert result.getpixel((150, 10))[3] == 0


def test_build_logo_mask():
    box = overlay_box((100, 100), (20, 10), PlacementParams(20, 50, 50))
    mask = build_logo_mask((100, 100), box)
    assert mask.mode == 'L'
    assert mask.getpixel((50, 50)) == 255
    assert mask.getpixel((40, 45)) == 255
    assert mask.getpixel((59, 54)) == 255
    assert mask.getpixel((60, 50)) == 0
    assert mask.getpixel((0, 0)) == 0


def test_overlay_logo_on_image_returns_png(red_product, blue_logo):
    result = overlay_logo_on_image(png_bytes(red_product), png_bytes(blue_logo), PlacementParams(20, 50, 50))
    img = Image.open(BytesIO(result))
    assert img.format == 'PNG'
    assert img.size == (100, 100)


def test_load_image_rejects_garbage():
    with pytest.raises(InvalidImageError):
        load_image(b'definitely not an image')


def test_load_image_rejects_decompression_bomb(monkeypatch):
    monkeypatch.setattr(Image, 'MAX_IMAGE_PIXELS', 10)
    with pytest.raises(InvalidImageError):
        load_image(png_bytes(make_image((10, 10), RED)))


def test_load_image_converts_to_rgba():
    img = load_image(png_bytes(Image.new('RGB', (5, 5), (1, 2, 3))))
    assert img.mode == 'RGBA'
    assert img.getpixel((0, 0)) == (1, 2, 3, 255)


@pytest.mark.parametrize('kwargs', [
    {'size_percent': 0},
    {'size_percent': 101},
    {'anchor_x_percent': -1},
    {'anchor_y_percent': 100.5},
    {'size_percent': float('nan')},
    {'anchor_x_percent': float('inf')},
    {'anchor_y_percent': float('-inf')},
])
def test_placement_params_validation(kwargs):
    with pytest.raises(ValueError):
        PlacementParams(**kwargs)


def test_placement_params_from_mapping():
    params = PlacementParams.from_mapping({'size': '30', 'x': '10', 'y': '90.5'})
    assert params == PlacementParams(30, 10, 90.5)


@pytest.mark.parametrize('value', ['nan', 'inf', '-Infinity'])
def test_placement_params_from_mapping_rejects_non_finite(value):
    with pytest.raises(ValueError):
        PlacementParams.from_mapping({'size': value})
    assert PlacementParams.from_mapping({}) == PlacementParams(15, 75, 80)
    with pytest.raises(ValueError):
        PlacementParams.from_mapping({'size': 'big'})
