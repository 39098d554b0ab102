"""Marker-based texture rectification.

Turns a photograph of a hand-coloured paper template into a square,
perspective-corrected texture by locating the four fiducial markers printed
in the template's corners.
"""

from __future__ import annotations

__version__ = "0.1.0"

from texrect.errors import (
    DecodeError,
    DegenerateQuadrilateral,
    MarkerSetIncomplete,
    RectificationError,
)
from texrect.pipeline import (
    TextureResult,
    correct_by_boundary,
    correct_image,
    correct_with_corners,
    rectify_by_boundary,
    rectify_texture,
    rectify_with_corners,
)

__all__ = [
    "DecodeError",
    "DegenerateQuadrilateral",
    "MarkerSetIncomplete",
    "RectificationError",
    "TextureResult",
    "correct_by_boundary",
    "correct_image",
    "correct_with_corners",
    "rectify_by_boundary",
    "rectify_texture",
    "rectify_with_corners",
]
