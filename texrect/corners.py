"""Template corner resolution.

Turns the four identified template markers into the source quadrilateral
that gets rectified. Marker base+0 is the template's top-left, +1 top-right,
+2 bottom-right and +3 bottom-left; roles come from the IDs, never from where
the markers happen to appear in the photo, so a template photographed upside
down still rectifies the right way up.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

import numpy as np

from texrect import geometry
from texrect.detect import IdentifiedMarker
from texrect.errors import DegenerateQuadrilateral, MarkerSetIncomplete

logger = logging.getLogger(__name__)

ROLES = ("top_left", "top_right", "bottom_right", "bottom_left")


def select_marker_set(markers: List[IdentifiedMarker], marker_id_base: int) -> List[IdentifiedMarker]:
    """Pick the template's four markers in role order.

    Args:
        markers: All markers identified in the image
        marker_id_base: First of the template's four consecutive IDs

    Returns:
        Markers for top-left, top-right, bottom-right, bottom-left

    Raises:
        MarkerSetIncomplete: if any of the four IDs is absent
    """
    expected = [marker_id_base + offset for offset in range(4)]
    by_id: Dict[int, IdentifiedMarker] = {}
    for marker in markers:
        if marker.id not in expected:
            continue
        if marker.id in by_id:
            logger.warning(f"Marker {marker.id} detected more than once, keeping the largest")
            if marker.perimeter <= by_id[marker.id].perimeter:
                continue
        by_id[marker.id] = marker

    missing = [marker_id for marker_id in expected if marker_id not in by_id]
    if missing:
        raise MarkerSetIncomplete(marker_id_base, by_id.keys(), missing)

    return [by_id[marker_id] for marker_id in expected]


def outer_corner(marker: IdentifiedMarker, template_center: np.ndarray) -> np.ndarray:
    """Return the marker corner furthest out along the template diagonal.

    The direction is from the template centre (mean of the four marker
    centres) through the marker's own centre. For an upright top-left marker
    this is the corner with the smallest x + y.
    """
    direction = marker.center - template_center
    norm = np.linalg.norm(direction)
    if norm == 0:
        raise DegenerateQuadrilateral(f"Marker {marker.id} sits at the template centre")
    projections = (marker.corners - template_center) @ (direction / norm)
    return marker.corners[int(np.argmax(projections))]


def validate_quadrilateral(quad: np.ndarray, min_area: float = 1.0) -> np.ndarray:
    """Check that a source quadrilateral is usable for rectification.

    Args:
        quad: 4x2 points ordered top-left, top-right, bottom-right, bottom-left
        min_area: Smallest accepted area in square pixels

    Returns:
        The quadrilateral as a float64 array

    Raises:
        DegenerateQuadrilateral: if it is inverted, self-intersecting,
            non-convex or too small
    """
    quad = np.asarray(quad, dtype=np.float64)
    if quad.shape != (4, 2) or not np.all(np.isfinite(quad)):
        raise DegenerateQuadrilateral(f"Expected four finite points, got shape {quad.shape}")

    area = geometry.signed_area(quad)
    if area <= 0:
        raise DegenerateQuadrilateral(f"Corners are in inverted order (signed area {area:.1f})")
    if not geometry.is_convex_clockwise(quad):
        raise DegenerateQuadrilateral("Corners form a self-intersecting or concave quadrilateral")
    if area < min_area:
        raise DegenerateQuadrilateral(f"Quadrilateral area {area:.2f}px^2 below minimum {min_area}")

    return quad


def resolve_quadrilateral(
    marker_set: List[IdentifiedMarker],
    config: Optional[Dict] = None,
) -> np.ndarray:
    """Resolve the source quadrilateral from the four role-ordered markers.

    Policies:
        "outer": each role takes the marker corner furthest from the
            template centre (robust to in-plane rotation of the template)
        "marker": each role takes the marker's own corner with the same
            role index (top-left marker's top-left corner, and so on)

    Args:
        marker_set: Markers for top-left, top-right, bottom-right, bottom-left
        config: Corner configuration

    Returns:
        4x2 source quadrilateral in pixel coordinates

    Raises:
        DegenerateQuadrilateral: if the corners cannot form a valid quadrilateral
    """
    if config is None:
        config = {}

    if len(marker_set) != 4:
        raise ValueError(f"Expected 4 markers, got {len(marker_set)}")

    policy = config.get("policy", "outer")
    if policy == "outer":
        template_center = np.mean([marker.center for marker in marker_set], axis=0)
        quad = np.array([outer_corner(marker, template_center) for marker in marker_set])
    elif policy == "marker":
        quad = np.array([marker.corners[role] for role, marker in enumerate(marker_set)])
    else:
        raise ValueError(f"Unknown corner policy: {policy}")

    quad = validate_quadrilateral(quad, config.get("min_area", 1.0))

    logger.debug(
        "Source quadrilateral: "
        + ", ".join(f"{role}=({x:.2f}, {y:.2f})" for role, (x, y) in zip(ROLES, quad))
    )
    return quad
