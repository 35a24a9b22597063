"""
Logo placement and blending service.

Upload a product photo and a logo, preview the placement, and have
Stability AI or Cloudflare Workers AI blend the logo into the scene.
Also proxies Cloudflare inpainting so the API token stays on the server.

Install dependencies:
pip install -e .

Run locally:
python app.py

Deploy with Procfile:
web: gunicorn app:app
"""

import os
import logging
from io import BytesIO

import requests
from dotenv import load_dotenv
from flask import Flask, Response, jsonify, request, send_file
from PIL import ImageColor

load_dotenv()

from canvas_fitter import ALLOWED_DIMENSIONS, DEFAULT_FILL_COLOR, fit_dimensions
from overlay_logo import InvalidImageError, PlacementParams, download_image, load_image, overlay_logo_on_image
from background_removal import rembg_installed, remove_background
from generation_service import (
    DEFAULT_PROMPT,
    PROVIDERS,
    GenerationFailedError,
    MissingConfigurationError,
    UpstreamAPIError,
    cloudflare_inpaint,
    get_cloudflare_credentials,
    get_stability_api_key,
    integrate_logo,
)

logging.basicConfig(
    level=os.environ.get('LOG_LEVEL', 'INFO').upper(),
    format='%(asctime)s %(levelname)s [%(name)s] %(message)s',
)
logger = logging.getLogger(__name__)

MAX_FILE_SIZE = int(os.environ.get('MAX_FILE_SIZE_MB', 20)) * 1024 * 1024
UNEXPECTED_ERROR = 'An unexpected error occurred.'

app = Flask(__name__)
app.config['MAX_CONTENT_LENGTH'] = MAX_FILE_SIZE


@app.after_request
def after_request(response):
    response.headers.add('Access-Control-Allow-Origin', os.environ.get('ALLOWED_ORIGIN', '*'))
    response.headers.add('Access-Control-Allow-Headers', 'Content-Type,Authorization')
    response.headers.add('Access-Control-Allow-Methods', 'GET,POST,OPTIONS')
    response.headers.add('Access-Control-Expose-Headers', 'X-Target-Width,X-Target-Height')
    return response


@app.errorhandler(413)
def request_too_large(e):
    limit_mb = app.config['MAX_CONTENT_LENGTH'] // (1024 * 1024)
    return jsonify({'error': f'Upload too large. Maximum size is {limit_mb} MB.'}), 413


def read_upload(field):
    """Return the bytes of an uploaded file, or None if it was not sent."""
    file = request.files.get(field)
    if file is None or file.filename == '':
        return None
    data = file.read()
    return data or None


def read_image_input(field):
    """Uploaded file bytes, falling back to downloading `<field>_url`."""
    data = read_upload(field)
    if data:
        return data
    url = request.form.get(f'{field}_url')
    if url:
        logger.info('Downloading %s from %s', field, url)
        return download_image(url)
    return None


def parse_bool(value, default=True):
    if value is None or value == '':
        return default
    return str(value).strip().lower() in ('1', 'true', 'yes', 'on')


def png_response(png_bytes, headers=None):
    buffer = BytesIO(png_bytes)
    buffer.seek(0)
    response = send_file(buffer, mimetype='image/png')
    for key, value in (headers or {}).items():
        response.headers[key] = value
    return response


def generation_error_response(e):
    """Map the generation error taxonomy onto HTTP responses."""
    if isinstance(e, MissingConfigurationError):
        return jsonify({'error': str(e)}), 500
    if isinstance(e, UpstreamAPIError):
        return jsonify({'error': f'API Error: {e.message}'}), e.status_code
    if isinstance(e, GenerationFailedError):
        return jsonify({'error': str(e)}), 502
    logger.exception('Unexpected error')
    return jsonify({'error': UNEXPECTED_ERROR}), 500


@app.route('/health', methods=['GET'])
def health():
    account_id, api_token = get_cloudflare_credentials()
    return jsonify({
        'status': 'healthy',
        'service': 'logo-placer',
        'capabilities': {
            'rembg': rembg_installed(),
            'stability': bool(get_stability_api_key()),
            'cloudflare': bool(account_id and api_token),
        },
        'providers': list(PROVIDERS),
        'allowed_dimensions': [list(dim) for dim in ALLOWED_DIMENSIONS],
    })


@app.route('/preview', methods=['POST', 'OPTIONS'])
def preview():
    """Composite the logo onto the product at the product's native resolution."""
    if request.method == 'OPTIONS':
        return '', 200

    try:
        product_bytes = read_image_input('product')
        logo_bytes = read_image_input('logo')
    except requests.RequestException as e:
        return jsonify({'error': f'Failed to download image: {e}'}), 400
    if not product_bytes or not logo_bytes:
        return jsonify({'error': 'Please upload both a product image and a logo.'}), 400

    try:
        params = PlacementParams.from_mapping(request.form)
        result_bytes = overlay_logo_on_image(product_bytes, logo_bytes, params)
        return png_response(result_bytes)
    except (InvalidImageError, ValueError) as e:
        return jsonify({'error': str(e)}), 400
    except Exception:
        logger.exception('Error rendering preview')
        return jsonify({'error': UNEXPECTED_ERROR}), 500


@app.route('/fit', methods=['POST', 'OPTIONS'])
def fit():
    """Return the allowed output resolution closest to an image's aspect ratio."""
    if request.method == 'OPTIONS':
        return '', 200

    try:
        image_bytes = read_upload('image')
        if image_bytes:
            width, height = load_image(image_bytes).size
        else:
            data = request.get_json(silent=True) or {}
            if 'width' not in data or 'height' not in data:
                return jsonify({'error': 'Provide an image or width and height'}), 400
            width, height = float(data['width']), float(data['height'])

        target_width, target_height = fit_dimensions(width, height)
        return jsonify({'width': target_width, 'height': target_height})
    except (InvalidImageError, TypeError, ValueError) as e:
        return jsonify({'error': str(e)}), 400
    except Exception:
        logger.exception('Error fitting dimensions')
        return jsonify({'error': UNEXPECTED_ERROR}), 500


@app.route('/remove-background', methods=['POST', 'OPTIONS'])
def remove_background_endpoint():
    """Remove the background from an uploaded logo."""
    if request.method == 'OPTIONS':
        return '', 200

    image_bytes = read_upload('image')
    if not image_bytes:
        return jsonify({'error': 'image is required'}), 400

    try:
        logger.info('Removing background from %d byte upload', len(image_bytes))
        return png_response(remove_background(image_bytes, request.form.get('backend')))
    except Exception as e:
        return generation_error_response(e)


@app.route('/generate', methods=['POST', 'OPTIONS'])
def generate():
    """Composite the logo onto the fitted product and have the AI blend it in."""
    if request.method == 'OPTIONS':
        return '', 200

    try:
        product_bytes = read_image_input('product')
        logo_bytes = read_image_input('logo')
    except requests.RequestException as e:
        return jsonify({'error': f'Failed to download image: {e}'}), 400
    if not product_bytes or not logo_bytes:
        return jsonify({'error': 'Please upload both a product image and a logo.'}), 400

    provider = request.form.get('provider', 'stability').lower()
    if provider not in PROVIDERS:
        return jsonify({'error': f"provider must be one of: {', '.join(PROVIDERS)}"}), 400

    fill_color = request.form.get('fill_color') or DEFAULT_FILL_COLOR
    try:
        params = PlacementParams.from_mapping(request.form)
        ImageColor.getrgb(fill_color)
        product = load_image(product_bytes)
        logo = load_image(logo_bytes)
    except (InvalidImageError, ValueError) as e:
        return jsonify({'error': str(e)}), 400

    prompt = request.form.get('prompt') or DEFAULT_PROMPT
    remove_logo_bg = parse_bool(request.form.get('remove_background'), default=True)

    logger.info(
        'Generating with %s: size=%s x=%s y=%s remove_bg=%s',
        provider, params.size_percent, params.anchor_x_percent, params.anchor_y_percent, remove_logo_bg,
    )

    try:
        result = integrate_logo(
            product,
            logo,
            params,
            prompt=prompt,
            provider=provider,
            remove_logo_background=remove_logo_bg,
            fill_color=fill_color,
        )
    except InvalidImageError as e:
        return jsonify({'error': str(e)}), 502
    except Exception as e:
        return generation_error_response(e)

    target_width, target_height = result.target_size
    return png_response(result.image_png, {
        'X-Target-Width': str(target_width),
        'X-Target-Height': str(target_height),
    })


@app.route('/api/inpaint', methods=['POST', 'OPTIONS'])
def inpaint_proxy():
    """Forward an inpainting request to Cloudflare with the server's credentials."""
    if request.method == 'OPTIONS':
        return '', 200

    image_file = request.files.get('image')
    mask_file = request.files.get('mask')
    prompt = request.form.get('prompt')
    if not image_file or not mask_file or not prompt:
        return jsonify({'error': 'Missing required fields from client'}), 400

    account_id, api_token = get_cloudflare_credentials()
    if not account_id or not api_token:
        logger.error('Cloudflare credentials are not configured')
        return jsonify({'error': 'Server configuration error: missing Cloudflare credentials'}), 500

    try:
        image_png = cloudflare_inpaint(image_file.read(), mask_file.read(), prompt)
    except UpstreamAPIError as e:
        return jsonify({'error': e.message}), e.status_code
    except Exception:
        logger.exception('Error proxying inpaint request')
        return jsonify({'error': 'Internal server error'}), 500

    return Response(image_png, mimetype='image/png')


if __name__ == '__main__':
    port = int(os.environ.get('PORT', 5000))
    debug = os.environ.get('FLASK_DEBUG', 'False').lower() == 'true'
    app.run(host='0.0.0.0', port=port, debug=debug)
