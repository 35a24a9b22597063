import pytest
from io import BytesIO
from PIL import Image

CREDENTIAL_VARS = (
    'STABILITY_API_KEY',
    'NEXT_PUBLIC_STABILITY_API_KEY',
    'CLOUDFLARE_ACCOUNT_ID',
    'CLOUDFLARE_API_TOKEN',
    'STABILITY_ENGINE_ID',
    'CLOUDFLARE_INPAINT_MODEL',
    'BACKGROUND_REMOVAL_BACKEND',
    'GENERATION_TIMEOUT',
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for var in CREDENTIAL_VARS:
        monkeypatch.delenv(var, raising=False)


def make_image(size, color):
    return Image.new('RGBA', size, color)


def png_bytes(img):
    buf = BytesIO()
    img.save(buf, format='PNG')
    return buf.getvalue()


class FakeResponse:
    def __init__(self, status_code=200, json_data=None, content=b'', text=''):
        self.status_code = status_code
        self._json = json_data
        self.content = content
        self.text = text

    def json(self):
        return self._json


@pytest.fixture
def red_product():
    return make_image((100, 100), (255, 0, 0, 255))


@pytest.fixture
def blue_logo():
    return make_image((20, 10), (0, 0, 255, 255))
