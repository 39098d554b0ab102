"""Fiducial marker detection.

Markers are found with OpenCV's ArUco detector, run against a custom
dictionary built from the packed marker table so that the printed artwork and
the detector can never disagree. The detector thresholds at several adaptive
window sizes, keeps convex quadrilateral candidates, reads their bit grids
with error correction and returns each marker's corners in its own printed
order (top-left, top-right, bottom-right, bottom-left), refined to sub-pixel
accuracy.
"""

from __future__ import annotations

import functools
import logging
import time
from dataclasses import dataclass
from typing import Dict, List, Optional

import cv2
import numpy as np

from texrect.dictionary import DICTIONARY, MarkerDictionary

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class IdentifiedMarker:
    """A dictionary marker found in an image.

    corners holds the marker's own top-left, top-right, bottom-right and
    bottom-left corners (as printed, whatever the camera orientation) in
    pixel coordinates with pixel centers at integers.
    """

    id: int
    corners: np.ndarray

    @property
    def center(self) -> np.ndarray:
        return self.corners.mean(axis=0)

    @property
    def perimeter(self) -> float:
        return float(np.sum(np.linalg.norm(np.roll(self.corners, -1, axis=0) - self.corners, axis=1)))


def to_gray(image: np.ndarray) -> np.ndarray:
    """Convert a BGR, BGRA or single-channel image to 8-bit grayscale."""
    if image.ndim == 2:
        gray = image
    elif image.ndim == 3 and image.shape[2] == 1:
        gray = image[:, :, 0]
    elif image.ndim == 3 and image.shape[2] == 3:
        gray = cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
    elif image.ndim == 3 and image.shape[2] == 4:
        gray = cv2.cvtColor(image, cv2.COLOR_BGRA2GRAY)
    else:
        raise ValueError(f"Unsupported image shape {image.shape}")

    if gray.dtype != np.uint8:
        gray = cv2.normalize(gray, None, 0, 255, cv2.NORM_MINMAX).astype(np.uint8)
    return np.ascontiguousarray(gray)


@functools.lru_cache(maxsize=None)
def aruco_dictionary(dictionary: MarkerDictionary = DICTIONARY) -> cv2.aruco.Dictionary:
    """Build the ArUco dictionary for a marker table.

    Entry i holds the bits of marker ID i, so detected IDs are dictionary IDs.
    Built once per table and shared read-only between detector calls.
    """
    byte_lists = [
        cv2.aruco.Dictionary.getByteListFromBits(dictionary.decode(marker_id).astype(np.uint8))
        for marker_id in range(len(dictionary))
    ]
    bytes_list = np.concatenate(byte_lists, axis=0)

    max_correction = dictionary.max_correction_bits
    logger.debug(
        f"ArUco dictionary: {len(dictionary)} markers of {dictionary.marker_bits}x{dictionary.marker_bits} bits, "
        f"up to {max_correction} correctable bits"
    )
    return cv2.aruco.Dictionary(bytes_list, dictionary.marker_bits, max_correction)


def detector_parameters(config: Optional[Dict] = None) -> cv2.aruco.DetectorParameters:
    """ArUco detector parameters from the detector configuration section."""
    if config is None:
        config = {}

    params = cv2.aruco.DetectorParameters()

    # Thresholding
    params.adaptiveThreshWinSizeMin = int(config.get("adaptive_win_min", 3))
    params.adaptiveThreshWinSizeMax = int(config.get("adaptive_win_max", 23))
    params.adaptiveThreshWinSizeStep = int(config.get("adaptive_win_step", 10))
    params.adaptiveThreshConstant = float(config.get("adaptive_constant", 7))

    # Candidate filtering
    params.minMarkerPerimeterRate = float(config.get("min_perimeter_rate", 0.03))
    params.maxMarkerPerimeterRate = float(config.get("max_perimeter_rate", 4.0))
    params.polygonalApproxAccuracyRate = float(config.get("polygon_accuracy_rate", 0.03))
    params.minCornerDistanceRate = float(config.get("min_corner_distance_rate", 0.05))
    params.minMarkerDistanceRate = float(config.get("min_marker_distance_rate", 0.05))
    params.minDistanceToBorder = int(config.get("min_distance_to_border", 3))

    # Bit extraction and identification
    params.minOtsuStdDev = float(config.get("min_otsu_std", 5.0))
    params.perspectiveRemovePixelPerCell = int(config.get("cell_pixels", 8))
    params.perspectiveRemoveIgnoredMarginPerCell = float(config.get("cell_margin_rate", 0.13))
    params.maxErroneousBitsInBorderRate = float(config.get("max_border_error_rate", 0.35))
    params.errorCorrectionRate = float(config.get("error_correction_rate", 0.6))

    if config.get("subpixel", True):
        params.cornerRefinementMethod = cv2.aruco.CORNER_REFINE_SUBPIX
        params.cornerRefinementWinSize = int(config.get("subpixel_window", 5))
        params.cornerRefinementMaxIterations = int(config.get("subpixel_iterations", 30))
        params.cornerRefinementMinAccuracy = float(config.get("subpixel_epsilon", 0.01))
    else:
        params.cornerRefinementMethod = cv2.aruco.CORNER_REFINE_NONE

    return params


def suppress_duplicates(markers: List[IdentifiedMarker]) -> List[IdentifiedMarker]:
    """Drop repeated detections of the same marker, keeping the largest outline."""
    kept: List[IdentifiedMarker] = []
    for marker in sorted(markers, key=lambda m: m.perimeter, reverse=True):
        duplicate = False
        for other in kept:
            if other.id != marker.id:
                continue
            if np.linalg.norm(other.center - marker.center) < other.perimeter / 8:
                duplicate = True
                break
        if not duplicate:
            kept.append(marker)
    return sorted(kept, key=lambda m: m.id)


def detect_markers(
    image: np.ndarray,
    dictionary: MarkerDictionary = DICTIONARY,
    config: Optional[Dict] = None,
) -> List[IdentifiedMarker]:
    """Detect and identify dictionary markers in an image.

    Pure function of the pixels, the dictionary and the configuration.

    Args:
        image: BGR, BGRA or grayscale image of any size
        dictionary: Marker dictionary to match against
        config: Detector configuration

    Returns:
        Identified markers sorted by ID (may be empty)
    """
    start_time = time.perf_counter()
    gray = to_gray(image)

    detector = cv2.aruco.ArucoDetector(aruco_dictionary(dictionary), detector_parameters(config))
    corners, ids, rejected = detector.detectMarkers(gray)

    markers: List[IdentifiedMarker] = []
    if ids is not None:
        for quad, marker_id in zip(corners, ids.flatten()):
            marker = IdentifiedMarker(int(marker_id), quad.reshape(4, 2).astype(np.float64))
            markers.append(marker)
            logger.debug(f"Marker {marker.id}: corners={np.round(marker.corners, 1).tolist()}")

    markers = suppress_duplicates(markers)

    elapsed_time = time.perf_counter() - start_time
    logger.info(
        f"Detected {len(markers)} markers {[m.id for m in markers]}, "
        f"{len(rejected)} candidates rejected (elapsed time: {elapsed_time:.3f}s)"
    )
    return markers
