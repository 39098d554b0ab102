#!/usr/bin/env python3
"""
Marker Artwork

Writes printable artwork for a template's four corner markers: one SVG per
marker, a labelled 2x2 marker sheet, and optionally a synthetic template PNG
useful for testing the rectifier end to end.
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

import cv2

# Add parent directory to path
sys.path.append(str(Path(__file__).resolve().parent.parent))

from texrect import markers  # noqa: E402

logging.basicConfig(
    level=logging.INFO,
    format="[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s",
    handlers=[
        logging.StreamHandler(),
    ],
)
logger = logging.getLogger("markers")


def write_marker_artwork(
    output_dir: str,
    marker_id_base: int,
    marker_size: int = 200,
    title: Optional[str] = None,
    template: bool = False,
    texture_path: Optional[str] = None,
) -> List[str]:
    """Write the marker SVGs, the sheet and optionally a template PNG.

    Returns:
        Paths of the written files
    """
    os.makedirs(output_dir, exist_ok=True)
    written = []

    for offset, label in enumerate(markers.ROLE_LABELS):
        marker_id = marker_id_base + offset
        path = os.path.join(output_dir, f"marker_{marker_id}_{label.lower().replace(' ', '_')}.svg")
        with open(path, "w") as f:
            f.write(markers.marker_svg(marker_id, marker_size))
        written.append(path)

    sheet_path = os.path.join(output_dir, f"markers_{marker_id_base}.svg")
    with open(sheet_path, "w") as f:
        f.write(markers.marker_sheet_svg(marker_id_base, title or f"Template markers {marker_id_base}"))
    written.append(sheet_path)

    if template:
        texture = None
        if texture_path is not None:
            texture = cv2.imread(texture_path)
            if texture is None:
                raise FileNotFoundError(f"Could not read texture {texture_path}")
        page = markers.render_template(marker_id_base, texture=texture)
        template_path = os.path.join(output_dir, f"template_{marker_id_base}.png")
        if not cv2.imwrite(template_path, page):
            raise IOError(f"Could not write {template_path}")
        written.append(template_path)

    logger.info(f"Wrote {len(written)} files for markers {marker_id_base}..{marker_id_base + 3} to {output_dir}")
    return written


def main(argv: Optional[List[str]] = None) -> int:
    """Main function to parse arguments and write the artwork."""
    parser = argparse.ArgumentParser(description="Marker Artwork")
    parser.add_argument(
        "--marker-base", "-m", dest="marker_base", type=int, default=0,
        help="ID of the template's top-left marker"
    )
    parser.add_argument(
        "--output", "-o", dest="output_dir", default="results/markers",
        help="Path to output directory"
    )
    parser.add_argument(
        "--size", "-s", dest="size", type=int, default=200,
        help="Marker size in SVG units"
    )
    parser.add_argument(
        "--title", "-t", dest="title", default=None,
        help="Heading printed on the marker sheet"
    )
    parser.add_argument(
        "--template", dest="template", action="store_true",
        help="Also render a synthetic template PNG"
    )
    parser.add_argument(
        "--texture", dest="texture", default=None,
        help="Image placed in the synthetic template's texture area"
    )

    args = parser.parse_args(argv)

    try:
        write_marker_artwork(
            args.output_dir, args.marker_base, args.size, args.title, args.template, args.texture
        )
    except Exception as e:
        logger.exception(f"Error writing markers: {e}")
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
