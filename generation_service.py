"""
Generation service: clients for the external image APIs and the
logo integration pipeline that feeds them.

Credentials are read from the environment on every call so a running
server picks up changes to its .env without code changes.
"""

import os
import base64
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

import requests
from PIL import Image

from canvas_fitter import ALLOWED_DIMENSIONS, DEFAULT_FILL_COLOR, fit_dimensions, letterbox
from overlay_logo import (
    PlacementParams,
    build_logo_mask,
    composite,
    image_to_png_bytes,
    load_image,
    overlay_box,
)

logger = logging.getLogger(__name__)

# ---------- CONFIG ----------

STABILITY_API_HOST = "https://api.stability.ai"
CLOUDFLARE_API_HOST = "https://api.cloudflare.com/client/v4"

DEFAULT_STABILITY_ENGINE = "stable-diffusion-xl-1024-v1-0"
DEFAULT_CLOUDFLARE_MODEL = "@cf/runwayml/stable-diffusion-v1-5-inpainting"

PROVIDERS = ("stability", "cloudflare")

DEFAULT_PROMPT = (
    "Integrate the logo naturally into the background. Match the lighting, texture, "
    "and perspective of the scene. Add a subtle, realistic shadow. The main product "
    "must remain untouched. Do not change the shape or design of the logo."
)


def get_stability_api_key() -> Optional[str]:
    return os.environ.get("STABILITY_API_KEY") or os.environ.get("NEXT_PUBLIC_STABILITY_API_KEY")


def get_cloudflare_credentials() -> Tuple[Optional[str], Optional[str]]:
    return os.environ.get("CLOUDFLARE_ACCOUNT_ID"), os.environ.get("CLOUDFLARE_API_TOKEN")


def get_timeout() -> float:
    return float(os.environ.get("GENERATION_TIMEOUT", 120))


# ---------- ERRORS ----------

class GenerationError(Exception):
    """Base class for failures talking to a generation backend."""


class MissingConfigurationError(GenerationError):
    """A credential or backend needed for the request is not configured."""


class UpstreamAPIError(GenerationError):
    """The upstream API answered with a non-success status."""

    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message


class GenerationFailedError(GenerationError):
    """The upstream call succeeded but produced no usable image."""


# ---------- API HELPERS ----------

def _post(url: str, **kwargs) -> requests.Response:
    """
    POST to an upstream API and turn non-2xx responses into UpstreamAPIError.

    The response body is kept verbatim so the caller can show it to the user.
    """
    resp = requests.post(url, timeout=get_timeout(), **kwargs)
    if resp.status_code >= 400:
        error_text = resp.text or f"HTTP {resp.status_code}"
        logger.warning("Upstream %s returned %s: %s", url, resp.status_code, error_text[:500])
        raise UpstreamAPIError(resp.status_code, error_text)
    return resp


def _stability_headers() -> Dict[str, str]:
    api_key = get_stability_api_key()
    if not api_key:
        raise MissingConfigurationError("Stability AI API key not configured.")
    return {
        "Authorization": f"Bearer {api_key}",
        "Accept": "application/json",
    }


def stability_image_to_image(
    init_png: bytes,
    prompt: str,
    image_strength: float = 0.65,
    cfg_scale: float = 7,
    samples: int = 1,
    steps: int = 30,
) -> bytes:
    """
    Blend the composited image with SDXL image-to-image.

    A higher image_strength keeps more of the init image, which is what
    keeps the logo recognisable.

    Returns:
        PNG bytes of the first artifact
    """
    headers = _stability_headers()
    engine_id = os.environ.get("STABILITY_ENGINE_ID", DEFAULT_STABILITY_ENGINE)
    url = f"{STABILITY_API_HOST}/v1/generation/{engine_id}/image-to-image"
    data = {
        "text_prompts[0][text]": prompt,
        "init_image_mode": "IMAGE_STRENGTH",
        "image_strength": str(image_strength),
        "cfg_scale": str(cfg_scale),
        "samples": str(samples),
        "steps": str(steps),
    }
    files = {"init_image": ("init_image.png", init_png, "image/png")}

    logger.info("Submitting %d byte init image to %s", len(init_png), engine_id)
    result: Dict[str, Any] = _post(url, headers=headers, data=data, files=files).json()

    artifacts = result.get("artifacts") or []
    artifact = artifacts[0] if artifacts else None
    if not artifact or artifact.get("finishReason") != "SUCCESS":
        reason = artifact.get("finishReason") if artifact else "no artifacts"
        raise GenerationFailedError(f"Image integration failed ({reason}).")
    return base64.b64decode(artifact["base64"])


def stability_erase(image_bytes: bytes) -> bytes:
    """Remove the background of a logo with the Stability erase endpoint."""
    headers = _stability_headers()
    url = f"{STABILITY_API_HOST}/v2beta/stable-image/edit/erase"
    files = {"image": ("logo.png", image_bytes, "image/png")}

    try:
        result = _post(url, headers=headers, files=files).json()
    except UpstreamAPIError as e:
        raise UpstreamAPIError(e.status_code, f"Failed to remove logo background. {e.message}") from e

    encoded = result.get("image")
    if not encoded:
        raise GenerationFailedError("Background removal returned no image.")
    return base64.b64decode(encoded)


def cloudflare_inpaint(image_bytes: bytes, mask_bytes: bytes, prompt: str) -> bytes:
    """
    Run Workers AI inpainting on an account-scoped endpoint.

    Returns:
        The raw PNG body returned by Cloudflare
    """
    account_id, api_token = get_cloudflare_credentials()
    if not account_id or not api_token:
        raise MissingConfigurationError("Cloudflare credentials not configured on the server.")

    model = os.environ.get("CLOUDFLARE_INPAINT_MODEL", DEFAULT_CLOUDFLARE_MODEL)
    url = f"{CLOUDFLARE_API_HOST}/accounts/{account_id}/ai/run/{model}"
    headers = {
        "Authorization": f"Bearer {api_token}",
        "Content-Type": "application/json",
    }
    payload = {
        "prompt": prompt,
        "image": list(image_bytes),
        "mask": list(mask_bytes),
    }

    logger.info("Submitting inpaint request to %s", model)
    return _post(url, headers=headers, json=payload).content


# ---------- PIPELINE ----------

@dataclass
class IntegrationResult:
    image_png: bytes
    target_size: Tuple[int, int]
    logo: Image.Image


def integrate_logo(
    product: Image.Image,
    logo: Image.Image,
    params: PlacementParams,
    prompt: str = DEFAULT_PROMPT,
    provider: str = "stability",
    remove_logo_background: bool = True,
    fill_color=DEFAULT_FILL_COLOR,
) -> IntegrationResult:
    """
    Place the logo on the product and have the provider blend it in.

    Steps run strictly in order:
    1. Optionally strip the logo background
    2. Snap the product to the nearest allowed resolution and letterbox it
    3. Composite the logo relative to the drawn product region
    4. Submit the PNG to the chosen provider
    """
    # Imported here to avoid a cycle: background_removal uses stability_erase
    from background_removal import remove_background

    if provider not in PROVIDERS:
        raise ValueError(f"Unknown provider '{provider}'. Expected one of: {', '.join(PROVIDERS)}")

    if remove_logo_background:
        logger.info("Removing logo background")
        logo = load_image(remove_background(image_to_png_bytes(logo)))

    target = fit_dimensions(product.width, product.height, ALLOWED_DIMENSIONS)
    fitted = letterbox(product, target, fill_color)
    logger.info(
        "Fitted %dx%d product into %dx%d (scale=%.4f)",
        product.width, product.height, target[0], target[1], fitted.scale,
    )

    composed = composite(fitted.canvas, logo, params, target, fitted.drawn_region)
    composed_png = image_to_png_bytes(composed)

    if provider == "cloudflare":
        box = overlay_box(target, logo.size, params, fitted.drawn_region)
        mask_png = image_to_png_bytes(build_logo_mask(target, box))
        generated = cloudflare_inpaint(composed_png, mask_png, prompt)
    else:
        generated = stability_image_to_image(composed_png, prompt)

    return IntegrationResult(image_png=generated, target_size=target, logo=logo)
