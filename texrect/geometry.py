"""Planar projective geometry.

This module implements the linear algebra behind rectification: point
normalization, direct linear transform (DLT) homography estimation, applying
homographies to points, and the orientation and convexity tests used to reject
degenerate quadrilaterals.

Quadrilaterals are 4x2 arrays ordered top-left, top-right, bottom-right,
bottom-left in image coordinates (x right, y down). In that frame a correctly
ordered quadrilateral turns clockwise on screen, which gives positive cross
products and a positive shoelace area.
"""

from __future__ import annotations

import logging

import numpy as np
from scipy import linalg

logger = logging.getLogger(__name__)


def normalize_points(pts: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """Hartley-normalize 2D points before a DLT solve.

    The returned similarity T moves the centroid to the origin and scales the
    mean distance from it to sqrt(2). Coincident points are only translated.

    Args:
        pts: Nx2 point array

    Returns:
        (normalized Nx2 points, 3x3 matrix T)
    """
    pts = np.asarray(pts, dtype=np.float64)
    if pts.ndim != 2 or pts.shape[1] != 2:
        raise ValueError(f"Expected Nx2 points array, got shape {pts.shape}")

    cx, cy = pts.mean(axis=0)
    spread = np.linalg.norm(pts - (cx, cy), axis=1).mean()
    s = np.sqrt(2) / spread if spread > 0 else 1.0

    T = np.array([
        [s, 0, -s * cx],
        [0, s, -s * cy],
        [0, 0, 1],
    ])
    return apply_homography(T, pts), T


def homography_dlt(src: np.ndarray, dst: np.ndarray) -> np.ndarray:
    """Estimate the homography mapping src points onto dst points.

    Uses the normalized direct linear transform: both point sets are
    Hartley-normalized, each correspondence contributes two rows to a
    homogeneous system A h = 0, and h is the right singular vector of A with
    the smallest singular value. With exactly four points the solution is
    exact; with more it is the algebraic least-squares fit.

    Args:
        src: Nx2 source points (N >= 4)
        dst: Nx2 destination points

    Returns:
        3x3 homography H with H[2, 2] == 1 such that dst ~ H @ src
    """
    src = np.asarray(src, dtype=np.float64)
    dst = np.asarray(dst, dtype=np.float64)
    if src.shape != dst.shape or src.ndim != 2 or src.shape[1] != 2:
        raise ValueError(f"Expected matching Nx2 arrays, got {src.shape} and {dst.shape}")
    if src.shape[0] < 4:
        raise ValueError(f"At least 4 point pairs required, got {src.shape[0]}")

    norm_src, T1 = normalize_points(src)
    norm_dst, T2 = normalize_points(dst)

    n_points = src.shape[0]
    A = np.zeros((2 * n_points, 9))

    # Rows: [-x, -y, -1, 0, 0, 0, u*x, u*y, u] and [0, 0, 0, -x, -y, -1, v*x, v*y, v]
    for i in range(n_points):
        x, y = norm_src[i]
        u, v = norm_dst[i]
        A[2 * i] = [-x, -y, -1, 0, 0, 0, u * x, u * y, u]
        A[2 * i + 1] = [0, 0, 0, -x, -y, -1, v * x, v * y, v]

    _, S, Vt = linalg.svd(A)
    H_norm = Vt[-1].reshape(3, 3)

    # Denormalize: H = T2^-1 @ H_norm @ T1
    H = linalg.inv(T2) @ H_norm @ T1

    if abs(H[2, 2]) < 1e-12:
        raise ValueError("Degenerate homography (points at infinity)")
    H = H / H[2, 2]

    if abs(linalg.det(H)) < 1e-12:
        raise ValueError("Degenerate homography (singular matrix)")

    logger.debug(
        f"Homography from {n_points} points: "
        f"smallest singular values=[{S[-2]:.3e}, {S[-1]:.3e}], "
        f"condition={np.linalg.cond(H):.2f}"
    )
    return H


def apply_homography(H: np.ndarray, pts: np.ndarray) -> np.ndarray:
    """Map Nx2 points through a 3x3 homography.

    Args:
        H: 3x3 projective transform
        pts: Nx2 array of points

    Returns:
        Nx2 array of transformed points
    """
    pts = np.asarray(pts, dtype=np.float64)
    pts_homogeneous = np.hstack((pts, np.ones((pts.shape[0], 1))))
    mapped = (H @ pts_homogeneous.T).T
    return mapped[:, :2] / mapped[:, 2:3]


def signed_area(quad: np.ndarray) -> float:
    """Shoelace area, positive for top-left/top-right/bottom-right/bottom-left order."""
    x = quad[:, 0]
    y = quad[:, 1]
    return 0.5 * float(np.sum(x * np.roll(y, -1) - np.roll(x, -1) * y))


def edge_turns(quad: np.ndarray) -> np.ndarray:
    """Cross product of consecutive edges at each vertex of a closed polygon."""
    edges = np.roll(quad, -1, axis=0) - quad
    nxt = np.roll(edges, -1, axis=0)
    return edges[:, 0] * nxt[:, 1] - edges[:, 1] * nxt[:, 0]


def is_convex_clockwise(quad: np.ndarray) -> bool:
    """True if the polygon is strictly convex and ordered clockwise on screen.

    A self-intersecting (bow-tie) or inverted quadrilateral fails because at
    least one turn changes sign.
    """
    quad = np.asarray(quad, dtype=np.float64)
    return bool(np.all(edge_turns(quad) > 0))


def order_corners_clockwise(pts: np.ndarray) -> np.ndarray:
    """Order four points clockwise on screen starting at the top-left one.

    Points are sorted by angle about their centroid; the start is the point
    with the smallest x + y.
    """
    pts = np.asarray(pts, dtype=np.float64).reshape(-1, 2)
    center = pts.mean(axis=0)
    angles = np.arctan2(pts[:, 1] - center[1], pts[:, 0] - center[0])
    ordered = pts[np.argsort(angles)]
    start = int(np.argmin(ordered.sum(axis=1)))
    return np.roll(ordered, -start, axis=0)
