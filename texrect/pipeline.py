"""Texture rectification pipeline.

Each uploaded photo moves through:

    decode -> detect markers -> resolve corners -> rectify -> finish -> encode

with a branch to the fallback corrector (centre crop, resize, light sharpen)
when the template's four markers are not all found or their corners do not
form a usable quadrilateral. Only a decode failure is fatal; every decodable
image produces a target_size x target_size texture.

Every invocation is independent and keeps no state between calls, so the
functions here may be called concurrently from several threads.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from texrect import boundary, corners, finish, rectify
from texrect.detect import IdentifiedMarker, detect_markers
from texrect.dictionary import DICTIONARY
from texrect.errors import DegenerateQuadrilateral, MarkerSetIncomplete
from texrect.evaluate import RectificationMetrics, Timer

logger = logging.getLogger(__name__)

DEFAULT_TARGET_SIZE = 2048

# Fallback output is sharpened only
FALLBACK_FINISH = {
    "white_balance": False,
    "brightness": 1.0,
    "contrast": 1.0,
    "saturation": 1.0,
    "sharpen_sigma": 1.0,
    "sharpen_amount": 0.5,
}


@dataclass
class TextureResult:
    """Outcome of one rectification.

    status is "markers", "corners" or "boundary" when the texture was
    perspective-corrected and "fallback" when it was only cropped. buffer holds
    the encoded texture (None for the raster-only correct_* functions).
    """

    status: str
    buffer: Optional[bytes]
    width: int
    height: int
    image: np.ndarray = field(repr=False)
    markers: List[IdentifiedMarker] = field(default_factory=list, repr=False)
    quad: Optional[np.ndarray] = None
    metrics: Dict = field(default_factory=dict, repr=False)


def _section(config: Optional[Dict], name: str) -> Dict:
    if not config:
        return {}
    return config.get(name) or {}


def _resolve_target_size(target_size: Optional[int], config: Optional[Dict]) -> int:
    if target_size is None:
        target_size = _section(config, "output").get("target_size", DEFAULT_TARGET_SIZE)
    if isinstance(target_size, bool) or not isinstance(target_size, (int, np.integer)) or target_size <= 0:
        raise ValueError(f"Target size must be a positive integer, got {target_size!r}")
    return int(target_size)


def _fallback_config(config: Optional[Dict]) -> Dict:
    fallback = dict(FALLBACK_FINISH)
    fallback.update(_section(config, "fallback"))
    return fallback


def _run_fallback(
    image: np.ndarray,
    target_size: int,
    config: Optional[Dict],
    timer: Timer,
    metrics: RectificationMetrics,
) -> np.ndarray:
    cropped = rectify.center_crop_resize(image, target_size)
    metrics.update_stage_timing("fallback", timer.lap("fallback"))

    finished = finish.finish_texture(cropped, _fallback_config(config))
    metrics.update_stage_timing("finish", timer.lap("finish"))
    return finished


def _run_rectification(
    image: np.ndarray,
    quad: np.ndarray,
    target_size: int,
    config: Optional[Dict],
    timer: Timer,
    metrics: RectificationMetrics,
) -> np.ndarray:
    rectified, H, out_of_bounds = rectify.warp_quadrilateral(image, quad, target_size, _section(config, "rectify"))
    metrics.update("out_of_bounds_px", out_of_bounds)
    metrics.compute_rectification_metrics(H, quad + rectify.PIXEL_CENTER, rectify.target_square(target_size))
    metrics.update_stage_timing("rectify", timer.lap("rectify"))

    finished = finish.finish_texture(rectified, _section(config, "finish"))
    metrics.update_stage_timing("finish", timer.lap("finish"))
    return finished


def _build_result(
    status: str,
    image: np.ndarray,
    markers: List[IdentifiedMarker],
    quad: Optional[np.ndarray],
    timer: Timer,
    metrics: RectificationMetrics,
) -> TextureResult:
    metrics.update("status", status)
    metrics.update("n_markers", len(markers))
    metrics.update("marker_ids", [marker.id for marker in markers])
    metrics.update("runtime_s", timer.stop())

    logger.info(f"Texture {image.shape[1]}x{image.shape[0]} produced with status '{status}'")
    logger.debug(metrics.summary())

    return TextureResult(
        status=status,
        buffer=None,
        width=image.shape[1],
        height=image.shape[0],
        image=image,
        markers=markers,
        quad=quad,
        metrics=metrics.to_dict(),
    )


def correct_image(
    image: np.ndarray,
    marker_id_base: int,
    target_size: Optional[int] = None,
    config: Optional[Dict] = None,
) -> TextureResult:
    """Rectify a decoded photo of a template using its four corner markers.

    Args:
        image: BGR photo
        marker_id_base: ID of the template's top-left marker; the others are
            base+1 (top-right), base+2 (bottom-right), base+3 (bottom-left)
        target_size: Output side length (default from config, else 2048)
        config: Full configuration with one section per stage

    Returns:
        TextureResult with status "markers" or "fallback" and buffer None
    """
    target_size = _resolve_target_size(target_size, config)
    if marker_id_base < 0:
        raise ValueError(f"Marker ID base must be non-negative, got {marker_id_base}")

    timer = Timer("correct_image", logger)
    timer.start()
    metrics = RectificationMetrics()

    markers = detect_markers(image, DICTIONARY, _section(config, "detector"))
    metrics.update_stage_timing("detect", timer.lap("detect"))

    try:
        marker_set = corners.select_marker_set(markers, marker_id_base)
        quad = corners.resolve_quadrilateral(marker_set, _section(config, "corners"))
    except (MarkerSetIncomplete, DegenerateQuadrilateral) as e:
        logger.warning(f"Falling back to centre crop: {e}")
        metrics.update_stage_timing("resolve", timer.lap("resolve"))
        texture = _run_fallback(image, target_size, config, timer, metrics)
        return _build_result("fallback", texture, markers, None, timer, metrics)

    metrics.update_stage_timing("resolve", timer.lap("resolve"))
    texture = _run_rectification(image, quad, target_size, config, timer, metrics)
    return _build_result("markers", texture, markers, quad, timer, metrics)


def correct_with_corners(
    image: np.ndarray,
    quad: Sequence[Sequence[float]],
    target_size: Optional[int] = None,
    config: Optional[Dict] = None,
) -> TextureResult:
    """Rectify a decoded photo using four caller-supplied template corners.

    Args:
        image: BGR photo
        quad: Top-left, top-right, bottom-right, bottom-left corners in pixels
        target_size: Output side length
        config: Full configuration

    Returns:
        TextureResult with status "corners"

    Raises:
        DegenerateQuadrilateral: if the corners do not form a valid quadrilateral
    """
    target_size = _resolve_target_size(target_size, config)

    timer = Timer("correct_with_corners", logger)
    timer.start()
    metrics = RectificationMetrics()

    quad = corners.validate_quadrilateral(quad, _section(config, "corners").get("min_area", 1.0))
    metrics.update_stage_timing("resolve", timer.lap("resolve"))

    texture = _run_rectification(image, quad, target_size, config, timer, metrics)
    return _build_result("corners", texture, [], quad, timer, metrics)


def correct_by_boundary(
    image: np.ndarray,
    target_size: Optional[int] = None,
    config: Optional[Dict] = None,
) -> TextureResult:
    """Rectify a decoded photo of a marker-less template from its square outline.

    Returns:
        TextureResult with status "boundary", or "fallback" when no usable
        outline is found
    """
    target_size = _resolve_target_size(target_size, config)

    timer = Timer("correct_by_boundary", logger)
    timer.start()
    metrics = RectificationMetrics()

    found = boundary.detect_square_boundary(image, _section(config, "boundary"))
    metrics.update_stage_timing("boundary", timer.lap("boundary"))

    quad = None
    if found is not None:
        try:
            quad = corners.validate_quadrilateral(found, _section(config, "corners").get("min_area", 1.0))
        except DegenerateQuadrilateral as e:
            logger.warning(f"Boundary unusable: {e}")

    if quad is None:
        logger.warning("Falling back to centre crop: no template boundary")
        texture = _run_fallback(image, target_size, config, timer, metrics)
        return _build_result("fallback", texture, [], None, timer, metrics)

    texture = _run_rectification(image, quad, target_size, config, timer, metrics)
    return _build_result("boundary", texture, [], quad, timer, metrics)


def _encode_result(result: TextureResult, config: Optional[Dict], decode_time: float) -> TextureResult:
    output = _section(config, "output")

    timer = Timer("encode", logger)
    with timer:
        result.buffer = finish.encode_image(result.image, output.get("format", "webp"), output.get("quality", 90))
    encode_time = timer.end_time - timer.start_time

    result.metrics["stage_timings"] = {"decode": decode_time, **result.metrics["stage_timings"], "encode": encode_time}
    result.metrics["runtime_s"] += decode_time + encode_time
    return result


def _decode(image_bytes: bytes) -> Tuple[np.ndarray, float]:
    timer = Timer("decode", logger)
    with timer:
        image = finish.decode_image(image_bytes)
    return image, timer.end_time - timer.start_time


def rectify_texture(
    image_bytes: bytes,
    marker_id_base: int,
    target_size: Optional[int] = None,
    config: Optional[Dict] = None,
) -> TextureResult:
    """Turn an uploaded template photo into an encoded square texture.

    Args:
        image_bytes: Compressed photo (JPEG, PNG, WebP, ...)
        marker_id_base: ID of the template's top-left marker
        target_size: Output side length (default 2048)
        config: Full configuration

    Returns:
        TextureResult with status "markers" or "fallback" and the encoded buffer

    Raises:
        DecodeError: if the bytes are not a decodable image
    """
    target_size = _resolve_target_size(target_size, config)
    image, decode_time = _decode(image_bytes)
    result = correct_image(image, marker_id_base, target_size, config)
    return _encode_result(result, config, decode_time)


def rectify_with_corners(
    image_bytes: bytes,
    quad: Sequence[Sequence[float]],
    target_size: Optional[int] = None,
    config: Optional[Dict] = None,
) -> TextureResult:
    """Encoded texture from explicit template corners (status "corners").

    Raises:
        DecodeError: if the bytes are not a decodable image
        DegenerateQuadrilateral: if the corners do not form a valid quadrilateral
    """
    target_size = _resolve_target_size(target_size, config)
    image, decode_time = _decode(image_bytes)
    result = correct_with_corners(image, quad, target_size, config)
    return _encode_result(result, config, decode_time)


def rectify_by_boundary(
    image_bytes: bytes,
    target_size: Optional[int] = None,
    config: Optional[Dict] = None,
) -> TextureResult:
    """Encoded texture from the template's square outline ("boundary" or "fallback")."""
    target_size = _resolve_target_size(target_size, config)
    image, decode_time = _decode(image_bytes)
    result = correct_by_boundary(image, target_size, config)
    return _encode_result(result, config, decode_time)
