"""Marker and template artwork.

Renders dictionary markers as rasters and SVG, and composes synthetic
templates with the four corner markers in place. The rasters use exactly the
geometry of the printed artwork: an 8x8-module black square whose inner 6x6
modules are white where the marker bit is set.
"""

from __future__ import annotations

import logging
from typing import Optional

import cv2
import numpy as np

from texrect.dictionary import DICTIONARY, MarkerDictionary

logger = logging.getLogger(__name__)

ROLE_LABELS = ("Top Left", "Top Right", "Bottom Right", "Bottom Left")


def marker_modules(marker_id: int, dictionary: MarkerDictionary = DICTIONARY) -> np.ndarray:
    """Return the full (bits+2)x(bits+2) module grid including the black border.

    Args:
        marker_id: Dictionary ID
        dictionary: Marker dictionary

    Returns:
        uint8 array of 0 (black) and 255 (white) modules
    """
    grid = dictionary.decode(marker_id)
    if grid is None:
        raise ValueError(f"Marker ID {marker_id} not in dictionary (0..{len(dictionary) - 1})")

    n = grid.shape[0] + 2
    modules = np.zeros((n, n), dtype=np.uint8)
    modules[1:-1, 1:-1] = np.where(grid, 255, 0)
    return modules


def render_marker(marker_id: int, size: int = 200, dictionary: MarkerDictionary = DICTIONARY) -> np.ndarray:
    """Render a marker as a square grayscale raster.

    Args:
        marker_id: Dictionary ID
        size: Side length in pixels, border included
        dictionary: Marker dictionary

    Returns:
        size x size uint8 image
    """
    if size < 8:
        raise ValueError(f"Marker size must be at least 8 pixels, got {size}")

    modules = marker_modules(marker_id, dictionary)
    return cv2.resize(modules, (size, size), interpolation=cv2.INTER_NEAREST)


def marker_svg(marker_id: int, size: int = 100, dictionary: MarkerDictionary = DICTIONARY) -> str:
    """Render a marker as an SVG document string.

    Unknown IDs produce a solid black marker labelled "?" so that a template
    with a misconfigured marker base is visibly wrong when printed.
    """
    grid = dictionary.decode(marker_id)
    if grid is None:
        logger.warning(f"Marker ID {marker_id} not in dictionary")
        return (
            f'<svg viewBox="0 0 8 8" width="{size}" height="{size}" xmlns="http://www.w3.org/2000/svg">'
            '<rect width="8" height="8" fill="black"/>'
            '<text x="4" y="5" fill="white" font-size="3" text-anchor="middle">?</text></svg>'
        )

    n = grid.shape[0] + 2
    parts = [
        f'<svg viewBox="0 0 {n} {n}" width="{size}" height="{size}" '
        'xmlns="http://www.w3.org/2000/svg" shape-rendering="crispEdges">',
        f'<rect x="0" y="0" width="{n}" height="{n}" fill="black"/>',
    ]
    for i, j in zip(*np.nonzero(grid)):
        parts.append(f'<rect width="1" height="1" x="{j + 1}" y="{i + 1}" fill="white"/>')
    parts.append("</svg>")
    return "".join(parts)


def marker_sheet_svg(
    marker_id_base: int,
    title: str = "Template markers",
    marker_size: int = 200,
    dictionary: MarkerDictionary = DICTIONARY,
) -> str:
    """Lay out a template's four markers 2x2 with role labels for printing.

    Args:
        marker_id_base: First of the template's four consecutive IDs
        title: Heading printed above the markers
        marker_size: Side of each marker in SVG units
        dictionary: Marker dictionary

    Returns:
        SVG document string
    """
    padding = 20
    label_height = 30
    total_width = marker_size * 2 + padding * 3
    total_height = marker_size * 2 + padding * 3 + label_height * 2 + 60

    # (column, row) of each role in the printed 2x2 sheet
    positions = {0: (0, 0), 1: (1, 0), 2: (1, 1), 3: (0, 1)}

    parts = [
        '<?xml version="1.0" encoding="UTF-8"?>',
        f'<svg xmlns="http://www.w3.org/2000/svg" width="{total_width}" height="{total_height}" '
        f'viewBox="0 0 {total_width} {total_height}">',
        '<rect width="100%" height="100%" fill="white"/>',
        f'<text x="{total_width / 2}" y="30" font-family="Arial, sans-serif" font-size="18" '
        f'font-weight="bold" text-anchor="middle">{_escape(title)}</text>',
    ]
    for offset, (col, row) in positions.items():
        marker_id = marker_id_base + offset
        x = padding + col * (marker_size + padding)
        y = 50 + row * (marker_size + label_height + padding)
        parts.append(f'<g transform="translate({x}, {y})">')
        parts.append(marker_svg(marker_id, marker_size, dictionary))
        parts.append(
            f'<text x="{marker_size / 2}" y="{marker_size + 18}" font-family="Arial, sans-serif" '
            f'font-size="14" text-anchor="middle">{ROLE_LABELS[offset]}</text>'
        )
        parts.append(
            f'<text x="{marker_size / 2}" y="{marker_size + 32}" font-family="Arial, sans-serif" '
            f'font-size="12" fill="#666" text-anchor="middle">ID: {marker_id}</text>'
        )
        parts.append("</g>")
    parts.append("</svg>")
    return "\n".join(parts)


def render_template(
    marker_id_base: int,
    area_size: int = 1900,
    marker_size: int = 190,
    margin: int = 50,
    texture: Optional[np.ndarray] = None,
    dictionary: MarkerDictionary = DICTIONARY,
) -> np.ndarray:
    """Compose a printed template as a BGR raster.

    The texture area is a square of area_size pixels starting at
    (margin, margin). Markers base+0..base+3 sit flush inside its top-left,
    top-right, bottom-right and bottom-left corners, so each marker's outer
    corner coincides with the texture area's corner.

    Args:
        marker_id_base: First of the template's four consecutive IDs
        area_size: Side of the texture area in pixels
        marker_size: Side of each marker in pixels
        margin: White page margin around the texture area
        texture: Optional BGR or grayscale image resized into the texture area
        dictionary: Marker dictionary

    Returns:
        (area_size + 2*margin) square uint8 BGR image
    """
    if marker_size * 2 > area_size:
        raise ValueError("Markers do not fit in the texture area")

    page = area_size + 2 * margin
    image = np.full((page, page, 3), 255, dtype=np.uint8)

    if texture is not None:
        if texture.ndim == 2:
            texture = cv2.cvtColor(texture, cv2.COLOR_GRAY2BGR)
        image[margin:margin + area_size, margin:margin + area_size] = cv2.resize(
            texture, (area_size, area_size), interpolation=cv2.INTER_AREA
        )
    else:
        image[margin:margin + area_size, margin:margin + area_size] = 250

    far = margin + area_size - marker_size
    origins = [(margin, margin), (far, margin), (far, far), (margin, far)]
    for offset, (x, y) in enumerate(origins):
        marker = render_marker(marker_id_base + offset, marker_size, dictionary)
        image[y:y + marker_size, x:x + marker_size] = marker[:, :, None]

    logger.debug(f"Rendered template for markers {marker_id_base}..{marker_id_base + 3}: {page}x{page}px")
    return image


def _escape(text: str) -> str:
    return text.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")
