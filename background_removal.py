"""
Logo background removal.

Always delegated to something outside this codebase: either the Stability
erase endpoint or the rembg package running in-process.
"""

import os
import logging
import importlib.util
from typing import Optional

from generation_service import MissingConfigurationError, stability_erase

logger = logging.getLogger(__name__)

BACKENDS = ('stability', 'rembg')

# rembg is lazy-loaded to avoid slow startup from numba compilation
_rembg_remove = None


def get_rembg_remove():
    global _rembg_remove
    if _rembg_remove is None:
        try:
            from rembg import remove
            _rembg_remove = remove
        except ImportError:
            logger.warning('rembg not available')
    return _rembg_remove


def rembg_installed() -> bool:
    """Check for rembg without importing it."""
    return importlib.util.find_spec('rembg') is not None


def get_backend() -> str:
    return os.environ.get('BACKGROUND_REMOVAL_BACKEND', 'stability').lower()


def remove_background(image_bytes: bytes, backend: Optional[str] = None) -> bytes:
    """
    Remove the background from an image.

    Args:
        image_bytes: The source image as bytes
        backend: 'stability' or 'rembg'; defaults to BACKGROUND_REMOVAL_BACKEND

    Returns:
        PNG bytes with a transparent background
    """
    backend = (backend or get_backend()).lower()

    if backend == 'stability':
        return stability_erase(image_bytes)

    if backend == 'rembg':
        remove_fn = get_rembg_remove()
        if remove_fn is None:
            raise MissingConfigurationError('rembg not available. Install rembg package.')
        return remove_fn(image_bytes)

    raise MissingConfigurationError(
        f"Unknown background removal backend '{backend}'. Expected one of: {', '.join(BACKENDS)}"
    )
