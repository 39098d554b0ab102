"""Exceptions raised by the rectification pipeline."""

from __future__ import annotations

from typing import Iterable


class RectificationError(Exception):
    """Base class for all texture rectification errors."""


class DecodeError(RectificationError):
    """The input bytes could not be decoded into an image."""


class MarkerSetIncomplete(RectificationError):
    """Fewer than the four expected template markers were found."""

    def __init__(self, marker_id_base: int, found_ids: Iterable[int], missing_ids: Iterable[int]):
        self.marker_id_base = marker_id_base
        self.found_ids = sorted(found_ids)
        self.missing_ids = sorted(missing_ids)
        super().__init__(
            f"Template markers {marker_id_base}..{marker_id_base + 3} incomplete: "
            f"found {self.found_ids}, missing {self.missing_ids}"
        )


class DegenerateQuadrilateral(RectificationError):
    """The source corners do not form a usable, correctly ordered quadrilateral."""
