"""Perspective rectification and the naive fallback crop.

Coordinates: quadrilaterals come in pixel coordinates with pixel centers at
integers (OpenCV's convention). The homography is solved in edge coordinates
(pixel centers at +0.5), so the target square's corners are exactly
(0, 0), (W, 0), (W, W), (0, W) and the top-left source corner lands on the
outer edge of the first output pixel.
"""

from __future__ import annotations

import logging
import time
from typing import Dict, Optional, Tuple

import cv2
import numpy as np
from scipy import linalg

from texrect import geometry

logger = logging.getLogger(__name__)

PIXEL_CENTER = 0.5


def target_square(size: int) -> np.ndarray:
    """Corners of the canonical output square in edge coordinates."""
    return np.array([[0, 0], [size, 0], [size, size], [0, size]], dtype=np.float64)


def rectifying_homography(quad: np.ndarray, size: int) -> np.ndarray:
    """Homography taking the source quadrilateral onto the target square.

    Args:
        quad: 4x2 source corners (top-left, top-right, bottom-right,
            bottom-left) in pixel-center coordinates
        size: Output side length

    Returns:
        3x3 matrix H with H . (quad + 0.5) ~ target_square(size)
    """
    return geometry.homography_dlt(np.asarray(quad, dtype=np.float64) + PIXEL_CENTER, target_square(size))


def warp_quadrilateral(
    image: np.ndarray,
    quad: np.ndarray,
    size: int,
    config: Optional[Dict] = None,
) -> Tuple[np.ndarray, np.ndarray, int]:
    """Resample the source quadrilateral into a size x size square.

    Every output pixel center is mapped back through H^-1 and sampled from
    the source with bilinear interpolation. Pixels whose source location
    falls outside the image are filled with the background value.

    Args:
        image: Source image (grayscale or colour)
        quad: 4x2 source corners in pixel-center coordinates
        size: Output side length in pixels
        config: Rectify configuration

    Returns:
        Tuple of (rectified_image, H, out_of_bounds_pixel_count)
    """
    if config is None:
        config = {}
    if size <= 0:
        raise ValueError(f"Target size must be positive, got {size}")

    start_time = time.perf_counter()

    H = rectifying_homography(quad, size)
    H_inv = linalg.inv(H)

    # Output pixel centers in edge coordinates, mapped back to source pixel coordinates
    coords = np.arange(size, dtype=np.float64) + PIXEL_CENTER
    xs, ys = np.meshgrid(coords, coords)
    w = H_inv[2, 0] * xs + H_inv[2, 1] * ys + H_inv[2, 2]
    map_x = (H_inv[0, 0] * xs + H_inv[0, 1] * ys + H_inv[0, 2]) / w - PIXEL_CENTER
    map_y = (H_inv[1, 0] * xs + H_inv[1, 1] * ys + H_inv[1, 2]) / w - PIXEL_CENTER

    height, width = image.shape[:2]
    out_of_bounds = int(np.count_nonzero(
        (map_x < -PIXEL_CENTER) | (map_x > width - PIXEL_CENTER)
        | (map_y < -PIXEL_CENTER) | (map_y > height - PIXEL_CENTER)
    ))

    border_value = config.get("border_value", 255)
    if image.ndim == 3:
        border_value = (border_value,) * image.shape[2]

    rectified = cv2.remap(
        image,
        map_x.astype(np.float32),
        map_y.astype(np.float32),
        interpolation=cv2.INTER_LINEAR,
        borderMode=cv2.BORDER_CONSTANT,
        borderValue=border_value,
    )

    elapsed_time = time.perf_counter() - start_time
    if out_of_bounds:
        logger.warning(f"{out_of_bounds} of {size * size} output pixels map outside the source image")
    logger.info(f"Rectified {width}x{height} source to {size}x{size} (elapsed time: {elapsed_time:.3f}s)")

    return rectified, H, out_of_bounds


def center_crop_resize(image: np.ndarray, size: int) -> np.ndarray:
    """Scale the image to cover a size x size square and crop the centre.

    No geometric correction; this is the fallback when markers are missing.

    Args:
        image: Source image
        size: Output side length in pixels

    Returns:
        size x size image
    """
    if size <= 0:
        raise ValueError(f"Target size must be positive, got {size}")

    height, width = image.shape[:2]
    scale = size / min(height, width)
    new_width = max(size, int(round(width * scale)))
    new_height = max(size, int(round(height * scale)))

    interpolation = cv2.INTER_AREA if scale < 1 else cv2.INTER_CUBIC
    resized = cv2.resize(image, (new_width, new_height), interpolation=interpolation)

    x0 = (new_width - size) // 2
    y0 = (new_height - size) // 2
    cropped = resized[y0:y0 + size, x0:x0 + size]

    logger.info(f"Fallback crop: {width}x{height} -> {new_width}x{new_height} -> {size}x{size}")
    return np.ascontiguousarray(cropped)
