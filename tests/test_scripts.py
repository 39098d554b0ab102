"""Tests for the command-line scripts."""

import json
import os
import shutil
import sys
import tempfile
import unittest
from pathlib import Path

import cv2
import numpy as np

# Add parent directory and the scripts directory to path
ROOT = Path(__file__).resolve().parent.parent
sys.path.append(str(ROOT))
sys.path.append(str(ROOT / "scripts"))

import generate_markers
import rectify_texture
from texrect import markers


class TestRectifyScript(unittest.TestCase):
    """Test the batch rectification CLI."""

    @classmethod
    def setUpClass(cls):
        """Write a small batch of template photos."""
        cls.test_dir = tempfile.mkdtemp()
        cls.image_dir = os.path.join(cls.test_dir, "photos")
        os.makedirs(cls.image_dir)

        page = markers.render_template(0, area_size=600, marker_size=60, margin=20)
        cv2.imwrite(os.path.join(cls.image_dir, "template.png"), page)
        cv2.imwrite(os.path.join(cls.image_dir, "blank.jpg"), np.full((240, 320, 3), 200, dtype=np.uint8))

    @classmethod
    def tearDownClass(cls):
        if os.path.exists(cls.test_dir):
            shutil.rmtree(cls.test_dir)

    def test_script_loaded_from_scripts_directory(self):
        self.assertEqual(Path(rectify_texture.__file__).resolve().parent, ROOT / "scripts")
        self.assertFalse((ROOT / "scripts" / "__init__.py").exists())

    def test_load_config(self):
        config = rectify_texture.load_config()

        self.assertEqual(config["output"]["target_size"], 2048)
        self.assertEqual(config["output"]["format"], "webp")
        self.assertEqual(config["corners"]["policy"], "outer")
        self.assertEqual(config["detector"]["adaptive_win_max"], 23)
        self.assertEqual(config["detector"]["error_correction_rate"], 0.6)

    def test_parse_corners(self):
        quad = rectify_texture.parse_corners("1,2,3,4,5,6,7,8")
        np.testing.assert_array_equal(quad, [[1, 2], [3, 4], [5, 6], [7, 8]])

        with self.assertRaises(Exception):
            rectify_texture.parse_corners("1,2,3")

    def test_list_images(self):
        files = rectify_texture.list_images(self.image_dir)
        self.assertEqual([f.name for f in files], ["blank.jpg", "template.png"])

    def test_batch(self):
        output_dir = os.path.join(self.test_dir, "batch")
        code = rectify_texture.main([
            "--images", self.image_dir,
            "--output", output_dir,
            "--size", "256",
            "--format", "png",
            "--workers", "2",
        ])

        self.assertEqual(code, 0)
        with open(os.path.join(output_dir, "report.json")) as f:
            report = json.load(f)

        self.assertEqual(report["n_images"], 2)
        self.assertEqual(report["files"]["template.png"]["status"], "markers")
        self.assertEqual(report["files"]["blank.jpg"]["status"], "fallback")
        self.assertEqual(report["failures"], {})

        texture = cv2.imread(os.path.join(output_dir, "template_texture.png"))
        self.assertEqual(texture.shape, (256, 256, 3))
        self.assertTrue(os.path.exists(os.path.join(output_dir, "log.txt")))

    def test_single_file_with_visualisation(self):
        output_dir = os.path.join(self.test_dir, "single")
        code = rectify_texture.main([
            "--images", os.path.join(self.image_dir, "template.png"),
            "--output", output_dir,
            "--size", "128",
            "--visualise",
        ])

        self.assertEqual(code, 0)
        self.assertTrue(os.path.exists(os.path.join(output_dir, "template_texture.webp")))
        self.assertTrue(os.path.exists(os.path.join(output_dir, "template_detection.png")))
        self.assertTrue(os.path.exists(os.path.join(output_dir, "template_comparison.png")))

    def test_missing_images(self):
        code = rectify_texture.main([
            "--images", os.path.join(self.test_dir, "does_not_exist"),
            "--output", os.path.join(self.test_dir, "missing"),
        ])
        self.assertEqual(code, 1)


class TestGenerateMarkersScript(unittest.TestCase):
    """Test the marker artwork CLI."""

    def setUp(self):
        self.test_dir = tempfile.mkdtemp()

    def tearDown(self):
        shutil.rmtree(self.test_dir)

    def test_writes_artwork(self):
        code = generate_markers.main(["--marker-base", "8", "--output", self.test_dir, "--template"])

        self.assertEqual(code, 0)
        names = sorted(os.listdir(self.test_dir))
        self.assertIn("markers_8.svg", names)
        self.assertIn("marker_8_top_left.svg", names)
        self.assertIn("marker_11_bottom_left.svg", names)
        self.assertIn("template_8.png", names)

        page = cv2.imread(os.path.join(self.test_dir, "template_8.png"))
        self.assertEqual(page.shape, (2000, 2000, 3))


if __name__ == "__main__":
    unittest.main()
