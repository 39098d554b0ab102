"""Visualization utilities for texture rectification.

Debug overlays of detected markers and the resolved source quadrilateral, and
side-by-side before/after figures.
"""

from __future__ import annotations

import logging
from typing import List, Optional

import cv2
import matplotlib.pyplot as plt
import numpy as np

from texrect.corners import ROLES
from texrect.detect import IdentifiedMarker

logger = logging.getLogger(__name__)


def _to_bgr(image: np.ndarray) -> np.ndarray:
    if image.ndim == 2:
        return cv2.cvtColor(image, cv2.COLOR_GRAY2BGR)
    return image.copy()


def draw_markers(
    image: np.ndarray,
    markers: List[IdentifiedMarker],
    quad: Optional[np.ndarray] = None,
) -> np.ndarray:
    """Draw marker outlines, IDs and the source quadrilateral on a copy of image.

    Each marker's own top-left corner is drawn as a filled dot so its decoded
    orientation can be checked by eye.

    Args:
        image: BGR or grayscale photo
        markers: Identified markers
        quad: Optional 4x2 source quadrilateral

    Returns:
        BGR overlay image
    """
    overlay = _to_bgr(image)
    thickness = max(1, int(round(max(overlay.shape[:2]) / 500)))

    for marker in markers:
        pts = np.round(marker.corners).astype(np.int32)
        cv2.polylines(overlay, [pts.reshape(-1, 1, 2)], True, (0, 255, 0), thickness)
        cv2.circle(overlay, tuple(int(v) for v in pts[0]), 3 * thickness, (0, 0, 255), -1)

        center = tuple(int(v) for v in np.round(marker.center))
        cv2.putText(overlay, str(marker.id), center, cv2.FONT_HERSHEY_SIMPLEX,
                    0.5 * thickness, (255, 0, 0), thickness, cv2.LINE_AA)

    if quad is not None:
        pts = np.round(quad).astype(np.int32)
        cv2.polylines(overlay, [pts.reshape(-1, 1, 2)], True, (0, 165, 255), thickness)
        for role, pt in zip(ROLES, pts):
            cv2.putText(overlay, role, tuple(int(v) for v in pt), cv2.FONT_HERSHEY_SIMPLEX,
                        0.4 * thickness, (0, 165, 255), thickness, cv2.LINE_AA)

    return overlay


def save_detection_visualization(
    image: np.ndarray,
    markers: List[IdentifiedMarker],
    output_path: str,
    quad: Optional[np.ndarray] = None,
) -> None:
    """Write the marker overlay of draw_markers to output_path."""
    overlay = draw_markers(image, markers, quad)
    if not cv2.imwrite(str(output_path), overlay):
        raise IOError(f"Could not write detection visualization to {output_path}")

    logger.info(f"Detection visualization saved to {output_path}")


def create_comparison_visualization(
    original: np.ndarray,
    rectified: np.ndarray,
    output_path: str,
    markers: Optional[List[IdentifiedMarker]] = None,
    quad: Optional[np.ndarray] = None,
    title: Optional[str] = None,
) -> None:
    """Create and save a side-by-side figure of the photo and its texture.

    Args:
        original: Input photo
        rectified: Output texture
        output_path: Path to save the figure
        markers: Markers to draw on the photo
        quad: Source quadrilateral to draw on the photo
        title: Figure title
    """
    left = draw_markers(original, markers or [], quad)

    fig, axs = plt.subplots(1, 2, figsize=(16, 8))

    axs[0].imshow(cv2.cvtColor(left, cv2.COLOR_BGR2RGB))
    axs[0].set_title(f"Input ({original.shape[1]}x{original.shape[0]})")

    axs[1].imshow(cv2.cvtColor(_to_bgr(rectified), cv2.COLOR_BGR2RGB))
    axs[1].set_title(f"Texture ({rectified.shape[1]}x{rectified.shape[0]})")

    for ax in axs:
        ax.axis('off')

    if title:
        fig.suptitle(title)

    plt.tight_layout()
    plt.savefig(output_path, dpi=150, bbox_inches='tight')
    plt.close(fig)

    logger.info(f"Comparison visualization saved to {output_path}")
