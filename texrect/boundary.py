"""Square boundary detection for templates without markers.

Finds the outline of the printed texture square from edges alone. Three
strategies are tried in order:

1. Hough lines: the extreme horizontal and vertical lines of the closed
   Canny edge map, intersected into four corners.
2. Contours: the largest contour covering enough of the image, approximated
   to four points (or its minimum-area rectangle).
3. Harris corners on a contrast-boosted copy of the image, reduced to a
   quadrilateral through their convex hull.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Tuple

import cv2
import numpy as np

from texrect import geometry
from texrect.detect import to_gray

logger = logging.getLogger(__name__)


def edge_map(gray: np.ndarray, config: Optional[Dict] = None) -> np.ndarray:
    """Blurred Canny edges closed with a 3x3 kernel."""
    if config is None:
        config = {}

    blur = int(config.get("blur", 5))
    blurred = cv2.GaussianBlur(gray, (blur, blur), 0)
    edges = cv2.Canny(blurred, config.get("canny_low", 50), config.get("canny_high", 150), apertureSize=3)
    kernel = np.ones((3, 3), np.uint8)
    return cv2.morphologyEx(edges, cv2.MORPH_CLOSE, kernel, iterations=int(config.get("close_iterations", 2)))


def boost_contrast(gray: np.ndarray, gamma: float = 0.5, gain: float = 1.5) -> np.ndarray:
    """Apply the power curve x^(1/gamma) then a linear gain.

    Dark background is pushed down while the light sheet saturates, which
    sharpens the sheet corners for the Harris detector.
    """
    table = (np.power(np.arange(256) / 255.0, 1.0 / gamma) * 255).astype(np.uint8)
    brightened = cv2.LUT(gray, table)
    return cv2.convertScaleAbs(brightened, alpha=gain, beta=0)


def _normalize_line(rho: float, theta: float) -> Tuple[float, float]:
    # Fold lines near theta = pi onto theta near 0 so rho sorts by position
    if theta > 3 * np.pi / 4:
        return -rho, theta - np.pi
    return rho, theta


def find_square_hough(edges: np.ndarray, config: Optional[Dict] = None) -> Optional[np.ndarray]:
    """Intersect the outermost horizontal and vertical Hough lines.

    Returns:
        4x2 ordered corners, or None unless all four intersections lie inside
        the image
    """
    if config is None:
        config = {}

    lines = cv2.HoughLines(edges, 1, np.pi / 180, int(config.get("hough_threshold", 100)))
    if lines is None:
        logger.debug("Hough: no lines")
        return None

    vertical: List[Tuple[float, float]] = []
    horizontal: List[Tuple[float, float]] = []
    for rho, theta in lines.reshape(-1, 2):
        rho, theta = _normalize_line(float(rho), float(theta))
        if abs(theta) < np.pi / 4:
            vertical.append((rho, theta))
        elif abs(theta - np.pi / 2) < np.pi / 4:
            horizontal.append((rho, theta))

    logger.debug(f"Hough: {len(lines)} lines, {len(horizontal)} horizontal, {len(vertical)} vertical")
    if len(horizontal) < 2 or len(vertical) < 2:
        return None

    horizontal.sort()
    vertical.sort()
    h_lines = [horizontal[0], horizontal[-1]]
    v_lines = [vertical[0], vertical[-1]]

    height, width = edges.shape[:2]
    corners = []
    for h_rho, h_theta in h_lines:
        for v_rho, v_theta in v_lines:
            A = np.array([
                [np.cos(h_theta), np.sin(h_theta)],
                [np.cos(v_theta), np.sin(v_theta)]
            ])
            if abs(np.linalg.det(A)) < 1e-10:
                continue
            x, y = np.linalg.solve(A, np.array([h_rho, v_rho]))
            if 0 <= x < width and 0 <= y < height:
                corners.append((x, y))

    if len(corners) != 4:
        logger.debug(f"Hough: {len(corners)} in-image intersections")
        return None

    return geometry.order_corners_clockwise(np.array(corners))


def find_square_contour(edges: np.ndarray, config: Optional[Dict] = None) -> Optional[np.ndarray]:
    """Largest sufficiently big contour, reduced to four corners."""
    if config is None:
        config = {}

    contours, _ = cv2.findContours(edges, cv2.RETR_TREE, cv2.CHAIN_APPROX_SIMPLE)
    if not contours:
        return None

    min_area = config.get("min_area_rate", 0.02) * edges.shape[0] * edges.shape[1]
    approx_rate = config.get("approx_rate", 0.02)

    best_area = 0.0
    best_corners = None
    for cnt in contours:
        area = cv2.contourArea(cnt)
        if area < min_area or area <= best_area:
            continue

        approx = cv2.approxPolyDP(cnt, approx_rate * cv2.arcLength(cnt, True), True)
        if len(approx) == 4:
            corners = approx.reshape(4, 2).astype(np.float64)
        elif len(approx) > 4:
            corners = cv2.boxPoints(cv2.minAreaRect(cnt)).astype(np.float64)
        else:
            continue

        best_area = area
        best_corners = corners

    if best_corners is None:
        return None

    logger.debug(f"Contour: best area {best_area:.0f}px^2")
    return geometry.order_corners_clockwise(best_corners)


def find_square_harris(gray: np.ndarray, config: Optional[Dict] = None) -> Optional[np.ndarray]:
    """Quadrilateral hull of strong Harris responses on a contrast-boosted image."""
    if config is None:
        config = {}

    detection = boost_contrast(gray, config.get("gamma", 0.5), config.get("gain", 1.5))
    response = cv2.cornerHarris(
        np.float32(detection),
        int(config.get("harris_block", 2)),
        int(config.get("harris_ksize", 3)),
        config.get("harris_k", 0.04),
    )
    response = cv2.dilate(response, np.ones((3, 3), np.uint8))

    peak = float(response.max())
    if peak <= 0:
        return None

    ys, xs = np.nonzero(response > config.get("harris_threshold_rate", 0.01) * peak)
    if len(xs) < 4:
        return None

    points = np.stack([xs, ys], axis=1).astype(np.int32).reshape(-1, 1, 2)
    hull = cv2.convexHull(points)
    if len(hull) < 4:
        return None

    approx = cv2.approxPolyDP(hull, 0.02 * cv2.arcLength(hull, True), True)
    logger.debug(f"Harris: {len(xs)} corner pixels, hull approximated to {len(approx)} points")
    if len(approx) != 4:
        return None

    return geometry.order_corners_clockwise(approx.reshape(4, 2))


def detect_square_boundary(image: np.ndarray, config: Optional[Dict] = None) -> Optional[np.ndarray]:
    """Find the template's square outline.

    Args:
        image: BGR or grayscale photo
        config: Boundary configuration

    Returns:
        4x2 corners ordered top-left, top-right, bottom-right, bottom-left,
        or None if no strategy succeeds
    """
    if config is None:
        config = {}

    gray = to_gray(image)
    edges = edge_map(gray, config)

    for name, finder in (
        ("hough", lambda: find_square_hough(edges, config)),
        ("contour", lambda: find_square_contour(edges, config)),
        ("harris", lambda: find_square_harris(gray, config)),
    ):
        corners = finder()
        if corners is not None:
            logger.info(f"Square boundary found with {name}: {np.round(corners, 1).tolist()}")
            return corners

    logger.info("No square boundary found")
    return None
