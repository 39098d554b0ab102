"""Tests for perspective rectification and the fallback crop."""

import sys
import unittest
from pathlib import Path

import numpy as np

# Add parent directory to path
sys.path.append(str(Path(__file__).resolve().parent.parent))

from texrect import geometry, rectify


class TestRectify(unittest.TestCase):
    """Test homography warping."""

    def setUp(self):
        rng = np.random.default_rng(7)
        self.image = rng.integers(0, 256, size=(64, 64, 3), dtype=np.uint8)
        self.full_quad = np.array([[-0.5, -0.5], [63.5, -0.5], [63.5, 63.5], [-0.5, 63.5]])

    def test_target_square(self):
        np.testing.assert_array_equal(
            rectify.target_square(10), [[0, 0], [10, 0], [10, 10], [0, 10]]
        )

    def test_rectifying_homography_maps_corners(self):
        quad = np.array([[12.0, 8.0], [90.0, 15.0], [85.0, 70.0], [5.0, 60.0]])
        H = rectify.rectifying_homography(quad, 256)
        mapped = geometry.apply_homography(H, quad + rectify.PIXEL_CENTER)
        np.testing.assert_allclose(mapped, rectify.target_square(256), atol=1e-8)

    def test_idempotent_on_square(self):
        """Rectifying an already square image over its own outline returns it unchanged."""
        rectified, H, out_of_bounds = rectify.warp_quadrilateral(self.image, self.full_quad, 64)

        self.assertEqual(rectified.shape, self.image.shape)
        self.assertEqual(out_of_bounds, 0)
        np.testing.assert_allclose(H, np.eye(3), atol=1e-9)
        self.assertLessEqual(int(np.abs(rectified.astype(int) - self.image.astype(int)).max()), 1)

    def test_out_of_bounds_filled(self):
        """Output pixels that map outside the source are background white and counted."""
        quad = np.array([[-20.5, -0.5], [63.5, -0.5], [63.5, 63.5], [-20.5, 63.5]])
        rectified, _, out_of_bounds = rectify.warp_quadrilateral(self.image, quad, 64)

        # Source x < -0.5 for the first 15 output columns
        self.assertEqual(out_of_bounds, 15 * 64)
        self.assertTrue(np.all(rectified[:, :10] == 255))

    def test_custom_border_value(self):
        quad = np.array([[-20.5, -0.5], [63.5, -0.5], [63.5, 63.5], [-20.5, 63.5]])
        gray = self.image[:, :, 0]
        rectified, _, _ = rectify.warp_quadrilateral(gray, quad, 64, {"border_value": 0})
        self.assertTrue(np.all(rectified[:, :10] == 0))

    def test_invalid_size(self):
        with self.assertRaises(ValueError):
            rectify.warp_quadrilateral(self.image, self.full_quad, 0)
        with self.assertRaises(ValueError):
            rectify.center_crop_resize(self.image, -5)


class TestFallbackCrop(unittest.TestCase):
    """Test the centre crop and resize."""

    def test_output_size(self):
        image = np.full((300, 400, 3), 120, dtype=np.uint8)
        for size in (64, 256, 1024):
            self.assertEqual(rectify.center_crop_resize(image, size).shape, (size, size, 3))

    def test_crop_is_centred(self):
        image = np.full((100, 300), 255, dtype=np.uint8)
        image[:, 140:160] = 0

        cropped = rectify.center_crop_resize(image, 100)

        self.assertEqual(cropped.shape, (100, 100))
        self.assertTrue(np.all(cropped[:, 45:55] == 0))
        self.assertTrue(np.all(cropped[:, :30] == 255))
        self.assertTrue(np.all(cropped[:, 70:] == 255))

    def test_deterministic(self):
        rng = np.random.default_rng(3)
        image = rng.integers(0, 256, size=(240, 320, 3), dtype=np.uint8)
        np.testing.assert_array_equal(
            rectify.center_crop_resize(image, 128), rectify.center_crop_resize(image, 128)
        )


if __name__ == "__main__":
    unittest.main()
