"""Tests for template corner resolution."""

import sys
import unittest
from pathlib import Path

import numpy as np

# Add parent directory to path
sys.path.append(str(Path(__file__).resolve().parent.parent))

from texrect import corners
from texrect.detect import IdentifiedMarker
from texrect.errors import DegenerateQuadrilateral, MarkerSetIncomplete


def square(x: float, y: float, size: float = 20.0) -> np.ndarray:
    return np.array([[x, y], [x + size, y], [x + size, y + size], [x, y + size]], dtype=np.float64)


class TestCornerResolver(unittest.TestCase):
    """Test marker selection, corner policies and quadrilateral validation."""

    def setUp(self):
        """A 180x180 template from (10, 10) to (190, 190) with 20px markers."""
        self.markers = [
            IdentifiedMarker(4, square(10, 10)),
            IdentifiedMarker(5, square(170, 10)),
            IdentifiedMarker(6, square(170, 170)),
            IdentifiedMarker(7, square(10, 170)),
        ]
        self.expected = np.array([[10, 10], [190, 10], [190, 190], [10, 190]], dtype=np.float64)

    def test_select_marker_set_orders_by_role(self):
        shuffled = [self.markers[2], IdentifiedMarker(40, square(90, 90)), self.markers[0],
                    self.markers[3], self.markers[1]]
        selected = corners.select_marker_set(shuffled, 4)
        self.assertEqual([m.id for m in selected], [4, 5, 6, 7])

    def test_select_marker_set_incomplete(self):
        with self.assertRaises(MarkerSetIncomplete) as ctx:
            corners.select_marker_set(self.markers[:3], 4)

        self.assertEqual(ctx.exception.found_ids, [4, 5, 6])
        self.assertEqual(ctx.exception.missing_ids, [7])
        self.assertEqual(ctx.exception.marker_id_base, 4)

    def test_select_marker_set_wrong_base(self):
        with self.assertRaises(MarkerSetIncomplete) as ctx:
            corners.select_marker_set(self.markers, 0)
        self.assertEqual(ctx.exception.found_ids, [])
        self.assertEqual(ctx.exception.missing_ids, [0, 1, 2, 3])

    def test_select_marker_set_duplicate_keeps_largest(self):
        larger = IdentifiedMarker(5, square(168, 8, 24))
        selected = corners.select_marker_set(self.markers + [larger], 4)
        self.assertIs(selected[1], larger)

    def test_outer_policy(self):
        quad = corners.resolve_quadrilateral(self.markers, {"policy": "outer"})
        np.testing.assert_array_equal(quad, self.expected)

    def test_marker_policy(self):
        quad = corners.resolve_quadrilateral(self.markers, {"policy": "marker"})
        np.testing.assert_array_equal(quad, self.expected)

    def test_upside_down_template(self):
        """Roles follow marker IDs, so a template photographed upside down resolves upside down."""
        rotated = [
            IdentifiedMarker(m.id, 200.0 - m.corners) for m in self.markers
        ]
        expected = 200.0 - self.expected

        for policy in ("outer", "marker"):
            quad = corners.resolve_quadrilateral(rotated, {"policy": policy})
            np.testing.assert_array_equal(quad, expected)

    def test_template_rotated_30_degrees(self):
        """An in-plane rotation that is not a multiple of 90 degrees keeps the outer corners."""
        angle = np.deg2rad(30)
        R = np.array([[np.cos(angle), -np.sin(angle)], [np.sin(angle), np.cos(angle)]])
        center = np.array([100.0, 100.0])

        def turn(points):
            return (points - center) @ R.T + center

        rotated = [IdentifiedMarker(m.id, turn(m.corners)) for m in self.markers]
        for policy in ("outer", "marker"):
            quad = corners.resolve_quadrilateral(rotated, {"policy": policy})
            np.testing.assert_allclose(quad, turn(self.expected), atol=1e-9)

    def test_outer_policy_ignores_marker_rotation(self):
        """The outer policy does not depend on each marker's own corner order."""
        spun = [IdentifiedMarker(m.id, np.roll(m.corners, 1, axis=0)) for m in self.markers]
        quad = corners.resolve_quadrilateral(spun, {"policy": "outer"})
        np.testing.assert_array_equal(quad, self.expected)

    def test_swapped_markers_are_degenerate(self):
        """Markers 0 and 1 in each other's places give a self-intersecting quadrilateral."""
        swapped = [
            IdentifiedMarker(4, square(170, 10)),
            IdentifiedMarker(5, square(10, 10)),
            self.markers[2],
            self.markers[3],
        ]
        with self.assertRaises(DegenerateQuadrilateral):
            corners.resolve_quadrilateral(swapped)

    def test_unknown_policy(self):
        with self.assertRaises(ValueError):
            corners.resolve_quadrilateral(self.markers, {"policy": "nearest"})

    def test_validate_quadrilateral(self):
        np.testing.assert_array_equal(corners.validate_quadrilateral(self.expected.tolist()), self.expected)

        with self.assertRaises(DegenerateQuadrilateral):
            corners.validate_quadrilateral(self.expected[::-1])
        with self.assertRaises(DegenerateQuadrilateral):
            corners.validate_quadrilateral([[0, 0], [10, 0], [20, 0], [30, 0]])
        with self.assertRaises(DegenerateQuadrilateral):
            corners.validate_quadrilateral(self.expected[:3])
        with self.assertRaises(DegenerateQuadrilateral):
            corners.validate_quadrilateral(self.expected * 0.01, min_area=10.0)


if __name__ == "__main__":
    unittest.main()
