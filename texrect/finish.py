"""Texture finishing and image codecs.

Post-processing applied to a rectified texture before it is stored: white
balance against the paper border, a fixed brightness/contrast/saturation
adjustment, an unsharp mask, and encoding to a compressed format (WebP at
quality 90 by default).
"""

from __future__ import annotations

import logging
from typing import Dict, Optional, Union

import cv2
import numpy as np

from texrect.errors import DecodeError

logger = logging.getLogger(__name__)

ENCODINGS = {
    "webp": (".webp", cv2.IMWRITE_WEBP_QUALITY),
    "jpg": (".jpg", cv2.IMWRITE_JPEG_QUALITY),
    "jpeg": (".jpg", cv2.IMWRITE_JPEG_QUALITY),
    "png": (".png", None),
}


def decode_image(image_bytes: Union[bytes, bytearray, memoryview]) -> np.ndarray:
    """Decode compressed image bytes into a BGR array.

    EXIF orientation is applied by OpenCV while decoding.

    Raises:
        DecodeError: if the bytes are empty or not a decodable image
    """
    if image_bytes is None or len(image_bytes) == 0:
        raise DecodeError("Empty image data")

    buffer = np.frombuffer(image_bytes, dtype=np.uint8)
    try:
        image = cv2.imdecode(buffer, cv2.IMREAD_COLOR)
    except cv2.error as e:
        raise DecodeError(f"Could not decode image: {e}") from e

    if image is None:
        raise DecodeError(f"Could not decode {len(image_bytes)} bytes as an image")

    logger.debug(f"Decoded image: {image.shape[1]}x{image.shape[0]}")
    return image


def encode_image(image: np.ndarray, fmt: str = "webp", quality: int = 90) -> bytes:
    """Encode an image to compressed bytes.

    Args:
        image: BGR or grayscale uint8 image
        fmt: One of "webp", "jpg", "jpeg", "png"
        quality: Lossy quality 0-100 (ignored for PNG)

    Returns:
        Encoded image bytes
    """
    key = fmt.lower()
    if key not in ENCODINGS:
        raise ValueError(f"Unknown output format: {fmt}")

    ext, quality_flag = ENCODINGS[key]
    params = [quality_flag, int(quality)] if quality_flag is not None else []
    ok, encoded = cv2.imencode(ext, image, params)
    if not ok:
        raise ValueError(f"OpenCV could not encode image as {fmt}")

    logger.debug(f"Encoded {image.shape[1]}x{image.shape[0]} image as {key}: {encoded.nbytes} bytes")
    return encoded.tobytes()


def white_balance_background(image: np.ndarray, sample_border: int = 40, white_point: float = 240.0) -> np.ndarray:
    """Scale each channel so the texture's outer border averages white_point.

    The border of a rectified template is mostly blank paper, so its mean
    colour is a good estimate of the illuminant.

    Args:
        image: uint8 image
        sample_border: Width of the sampled border strips in pixels
        white_point: Target value for the border mean

    Returns:
        White-balanced uint8 image
    """
    h, w = image.shape[:2]
    border = max(5, min(sample_border, h // 4, w // 4))

    strips = [
        image[:border, :],
        image[h - border:, :],
        image[:, :border],
        image[:, w - border:],
    ]
    channels = 1 if image.ndim == 2 else image.shape[2]
    means = np.mean([strip.reshape(-1, channels).mean(axis=0) for strip in strips], axis=0) + 1e-6
    scale = white_point / means

    logger.debug(f"White balance: border={border}px, mean={np.round(means, 1).tolist()}, scale={np.round(scale, 3).tolist()}")

    balanced = image.astype(np.float32) * (scale if image.ndim == 3 else scale[0])
    return np.clip(np.round(balanced), 0, 255).astype(np.uint8)


def enhance_color(
    image: np.ndarray,
    brightness: float = 0.95,
    contrast: float = 1.1,
    saturation: float = 1.05,
) -> np.ndarray:
    """Apply fixed brightness, contrast (about mid-grey) and saturation factors."""
    x = image.astype(np.float32) / 255.0
    x = x * brightness
    x = (x - 0.5) * contrast + 0.5
    x = np.clip(x, 0.0, 1.0)

    if saturation != 1.0 and x.ndim == 3 and x.shape[2] == 3:
        hsv = cv2.cvtColor(x, cv2.COLOR_BGR2HSV)
        hsv[:, :, 1] = np.clip(hsv[:, :, 1] * saturation, 0.0, 1.0)
        x = cv2.cvtColor(hsv, cv2.COLOR_HSV2BGR)

    return np.clip(np.round(x * 255.0), 0, 255).astype(np.uint8)


def unsharp_mask(image: np.ndarray, sigma: float = 2.0, amount: float = 0.3) -> np.ndarray:
    """Sharpen as original + amount * (original - gaussian_blur(original))."""
    blurred = cv2.GaussianBlur(image, (0, 0), sigma)
    return cv2.addWeighted(image, 1.0 + amount, blurred, -amount, 0)


def finish_texture(image: np.ndarray, config: Optional[Dict] = None) -> np.ndarray:
    """Run the configured finishing steps on a texture.

    Args:
        image: uint8 image
        config: Finish configuration

    Returns:
        Finished uint8 image of the same size
    """
    if config is None:
        config = {}

    result = image
    if config.get("white_balance", True):
        result = white_balance_background(
            result,
            config.get("white_balance_border", 40),
            config.get("white_point", 240.0),
        )

    brightness = config.get("brightness", 0.95)
    contrast = config.get("contrast", 1.1)
    saturation = config.get("saturation", 1.05)
    if (brightness, contrast, saturation) != (1.0, 1.0, 1.0):
        result = enhance_color(result, brightness, contrast, saturation)

    amount = config.get("sharpen_amount", 0.3)
    if amount > 0:
        result = unsharp_mask(result, config.get("sharpen_sigma", 2.0), amount)

    return result
