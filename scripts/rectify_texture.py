#!/usr/bin/env python3
"""
Texture Rectification

This script turns photos of coloured paper templates into square,
perspective-corrected textures. It accepts a single photo or a directory of
photos, writes one texture per photo and a JSON report of per-file metrics.
"""

from __future__ import annotations

import argparse
import datetime
import json
import logging
import os
import sys
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Dict, List, Optional

import matplotlib
import numpy as np
import yaml
from tqdm import tqdm

# Add parent directory to path
sys.path.append(str(Path(__file__).resolve().parent.parent))

# Figures are only written to files
matplotlib.use("Agg")

from texrect import evaluate, finish, pipeline, visualise  # noqa: E402
from texrect.errors import RectificationError  # noqa: E402

LOG_FORMAT = "[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s"

# Set up logging
logging.basicConfig(
    level=logging.INFO,
    format=LOG_FORMAT,
    handlers=[
        logging.StreamHandler(),
    ],
)
logger = logging.getLogger("rectify")

IMAGE_EXTENSIONS = ["*.jpg", "*.jpeg", "*.png", "*.webp", "*.bmp", "*.tif", "*.tiff"]


def load_config(config_path: Optional[str] = None) -> Dict:
    """Load configuration from YAML file.

    Args:
        config_path: Path to configuration file (defaults to the repository's
            config.yaml)

    Returns:
        Configuration dictionary
    """
    if config_path is None:
        config_path = Path(__file__).resolve().parent.parent / "config.yaml"

    with open(config_path, "r") as f:
        config = yaml.safe_load(f) or {}

    for section in ("output", "detector", "corners", "rectify", "finish", "fallback", "boundary"):
        config.setdefault(section, {})
        if config[section] is None:
            config[section] = {}

    return config


def list_images(path: str) -> List[Path]:
    """Return the photo at path, or every photo in the directory at path."""
    path = Path(path)
    if path.is_file():
        return [path]

    image_files = set()
    for ext in IMAGE_EXTENSIONS:
        image_files.update(path.glob(ext))
        image_files.update(path.glob(ext.upper()))

    return sorted(image_files)


def parse_corners(text: str) -> np.ndarray:
    """Parse "x1,y1,x2,y2,x3,y3,x4,y4" into a 4x2 array."""
    values = [float(v) for v in text.replace(";", ",").split(",") if v.strip()]
    if len(values) != 8:
        raise argparse.ArgumentTypeError(f"Expected 8 comma-separated numbers, got {len(values)}")
    return np.array(values, dtype=np.float64).reshape(4, 2)


def process_file(
    image_file: Path,
    output_dir: str,
    config: Dict,
    mode: str,
    marker_base: int,
    quad: Optional[np.ndarray] = None,
    visualise_results: bool = False,
) -> Dict:
    """Rectify one photo and write its texture.

    Returns:
        Metrics dictionary for the report
    """
    with open(image_file, "rb") as f:
        image_bytes = f.read()

    output_cfg = config["output"]
    if quad is not None:
        result = pipeline.rectify_with_corners(image_bytes, quad, output_cfg.get("target_size"), config)
    elif mode == "boundary":
        result = pipeline.rectify_by_boundary(image_bytes, output_cfg.get("target_size"), config)
    else:
        result = pipeline.rectify_texture(image_bytes, marker_base, output_cfg.get("target_size"), config)

    ext = finish.ENCODINGS[output_cfg.get("format", "webp").lower()][0]
    output_file = os.path.join(output_dir, f"{image_file.stem}_texture{ext}")
    with open(output_file, "wb") as f:
        f.write(result.buffer)

    if visualise_results:
        original = finish.decode_image(image_bytes)
        visualise.save_detection_visualization(
            original, result.markers, os.path.join(output_dir, f"{image_file.stem}_detection.png"), result.quad
        )
        visualise.create_comparison_visualization(
            original, result.image, os.path.join(output_dir, f"{image_file.stem}_comparison.png"),
            result.markers, result.quad, title=f"{image_file.name}: {result.status}"
        )

    metrics = dict(result.metrics)
    metrics["input"] = str(image_file)
    metrics["output"] = output_file
    metrics["width"] = result.width
    metrics["height"] = result.height
    metrics["bytes"] = len(result.buffer)
    return metrics


def run_batch(
    images: str,
    output_dir: str,
    config: Dict,
    mode: str = "markers",
    marker_base: int = 0,
    quad: Optional[np.ndarray] = None,
    workers: int = 4,
    visualise_results: bool = False,
) -> Dict:
    """Rectify every photo under images and write report.json.

    Returns:
        Report dictionary
    """
    batch_timer = evaluate.Timer("Batch")
    batch_timer.start()

    os.makedirs(output_dir, exist_ok=True)

    file_handler = logging.FileHandler(os.path.join(output_dir, "log.txt"))
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logging.getLogger().addHandler(file_handler)

    try:
        image_files = list_images(images)
        if not image_files:
            raise FileNotFoundError(f"No images found in {images}")
        logger.info(f"Rectifying {len(image_files)} images from {images} (mode: {mode})")

        results: Dict[str, Dict] = {}
        failures: Dict[str, str] = {}

        with ThreadPoolExecutor(max_workers=max(1, workers)) as executor:
            futures = {
                executor.submit(
                    process_file, image_file, output_dir, config, mode, marker_base, quad, visualise_results
                ): image_file
                for image_file in image_files
            }
            for future in tqdm(as_completed(futures), total=len(futures), desc="Rectifying"):
                image_file = futures[future]
                try:
                    results[image_file.name] = future.result()
                except (RectificationError, OSError, ValueError) as e:
                    logger.exception(f"Failed to rectify {image_file}: {e}")
                    failures[image_file.name] = str(e)

        statuses: Dict[str, int] = {}
        for metrics in results.values():
            statuses[metrics["status"]] = statuses.get(metrics["status"], 0) + 1

        report = {
            "datetime": datetime.datetime.now().isoformat(),
            "mode": mode,
            "marker_base": marker_base,
            "n_images": len(image_files),
            "statuses": statuses,
            "failures": failures,
            "runtime_s": batch_timer.elapsed,
            "files": {name: results[name] for name in sorted(results)},
        }

        report_file = os.path.join(output_dir, "report.json")
        with open(report_file, "w") as f:
            json.dump(report, f, indent=2)

        logger.info(f"Processed {len(results)} of {len(image_files)} images {statuses}; report saved to {report_file}")
        return report
    finally:
        logging.getLogger().removeHandler(file_handler)
        file_handler.close()


def main(argv: Optional[List[str]] = None) -> int:
    """Main function to parse arguments and run the batch."""
    parser = argparse.ArgumentParser(description="Texture Rectification")
    parser.add_argument(
        "--images", "-i", dest="images", required=True,
        help="Path to a photo or a directory of photos"
    )
    parser.add_argument(
        "--output", "-o", dest="output_dir", default="results/textures",
        help="Path to output directory"
    )
    parser.add_argument(
        "--marker-base", "-m", dest="marker_base", type=int, default=0,
        help="ID of the template's top-left marker"
    )
    parser.add_argument(
        "--size", "-s", dest="size", type=int, default=None,
        help="Output texture side length in pixels"
    )
    parser.add_argument(
        "--format", "-f", dest="format", default=None,
        choices=["webp", "png", "jpg"],
        help="Output image format"
    )
    parser.add_argument(
        "--quality", "-q", dest="quality", type=int, default=None,
        help="Lossy output quality (0-100)"
    )
    parser.add_argument(
        "--config", "-c", dest="config_path", default=None,
        help="Path to configuration file"
    )
    parser.add_argument(
        "--mode", dest="mode", default="markers",
        choices=["markers", "boundary"],
        help="Locate the template by its markers or by its square outline"
    )
    parser.add_argument(
        "--corners", dest="corners", type=parse_corners, default=None,
        help="Explicit template corners x1,y1,...,x4,y4 (top-left, top-right, bottom-right, bottom-left)"
    )
    parser.add_argument(
        "--workers", "-w", dest="workers", type=int, default=4,
        help="Number of photos processed concurrently"
    )
    parser.add_argument(
        "--visualise", "-v", dest="visualise", action="store_true",
        help="Write detection overlays and comparison figures"
    )
    parser.add_argument(
        "--verbose", dest="verbose", action="store_true",
        help="Enable debug logging"
    )

    args = parser.parse_args(argv)

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    config = load_config(args.config_path)
    if args.size is not None:
        config["output"]["target_size"] = args.size
    if args.format is not None:
        config["output"]["format"] = args.format
    if args.quality is not None:
        config["output"]["quality"] = args.quality

    try:
        report = run_batch(
            args.images,
            args.output_dir,
            config,
            args.mode,
            args.marker_base,
            args.corners,
            args.workers,
            args.visualise,
        )
    except Exception as e:
        logger.exception(f"Error running batch: {e}")
        return 1

    return 1 if report["failures"] else 0


if __name__ == "__main__":
    sys.exit(main())
