"""Tests for evaluation metrics and visualization output."""

import importlib
import os
import shutil
import sys
import tempfile
import time
import unittest
from pathlib import Path

import matplotlib
import matplotlib.pyplot as plt
import numpy as np

# Add parent directory to path
sys.path.append(str(Path(__file__).resolve().parent.parent))

from texrect import evaluate, visualise
from texrect.detect import IdentifiedMarker


class TestMetrics(unittest.TestCase):
    """Test error measures and the metrics container."""

    def setUp(self):
        self.src = np.array([[0, 0], [10, 0], [10, 10], [0, 10]], dtype=np.float64)

    def test_reprojection_rmse_exact(self):
        self.assertAlmostEqual(evaluate.reprojection_rmse(np.eye(3), self.src, self.src), 0.0)

    def test_reprojection_rmse_offset(self):
        """A uniform 3-4-5 offset has an RMSE of 5 pixels."""
        self.assertAlmostEqual(evaluate.reprojection_rmse(np.eye(3), self.src, self.src + [3, 4]), 5.0)

    def test_reprojection_rmse_empty(self):
        self.assertEqual(evaluate.reprojection_rmse(np.eye(3), np.zeros((0, 2)), np.zeros((0, 2))), float('inf'))

    def test_image_errors(self):
        a = np.full((10, 10), 100, dtype=np.uint8)
        b = np.full((10, 10), 110, dtype=np.uint8)

        self.assertAlmostEqual(evaluate.mean_absolute_error(a, b), 10.0)
        self.assertAlmostEqual(evaluate.psnr(a, b), 10 * np.log10(255.0 ** 2 / 100.0))
        self.assertEqual(evaluate.psnr(a, a), float('inf'))

        with self.assertRaises(ValueError):
            evaluate.mean_absolute_error(a, b[:5])

    def test_metrics_container(self):
        metrics = evaluate.RectificationMetrics()
        metrics.update("status", "markers")
        metrics.update("marker_ids", [0, 1, 2, 3])
        metrics.update("n_markers", 4)
        metrics.update_stage_timing("detect", 0.25)
        metrics.compute_rectification_metrics(np.eye(3), self.src, self.src)

        result = metrics.to_dict()
        self.assertEqual(result["status"], "markers")
        self.assertEqual(result["stage_timings"], {"detect": 0.25})
        self.assertAlmostEqual(result["reprojection_rmse_px"], 0.0)

        # to_dict returns a copy
        result["stage_timings"]["rectify"] = 1.0
        self.assertNotIn("rectify", metrics.metrics["stage_timings"])

        summary = metrics.summary()
        self.assertIn("Status: markers", summary)
        self.assertIn("detect", summary)


class TestTimer(unittest.TestCase):
    """Test the timing utility."""

    def test_context_manager(self):
        with evaluate.Timer("test") as timer:
            time.sleep(0.01)
        self.assertGreater(timer.end_time - timer.start_time, 0.005)

    def test_laps(self):
        timer = evaluate.Timer("laps")
        timer.start()
        timer.lap("first")
        timer.lap("second")

        self.assertEqual(list(timer.timings), ["first", "second"])
        self.assertGreaterEqual(timer.elapsed, 0.0)

    def test_stop_without_start(self):
        self.assertEqual(evaluate.Timer("idle").stop(), 0.0)

    def test_timeit(self):
        timer = evaluate.Timer("wrapped")
        wrapped = timer.timeit(lambda x: x * 2)
        self.assertEqual(wrapped(21), 42)
        self.assertIsNotNone(timer.end_time)


class TestVisualise(unittest.TestCase):
    """Test debug overlays and figures."""

    @classmethod
    def setUpClass(cls):
        cls.test_output_dir = tempfile.mkdtemp()

    @classmethod
    def tearDownClass(cls):
        if os.path.exists(cls.test_output_dir):
            shutil.rmtree(cls.test_output_dir)

    def setUp(self):
        self.image = np.full((200, 200, 3), 255, dtype=np.uint8)
        self.markers = [IdentifiedMarker(0, np.array([[20, 20], [60, 20], [60, 60], [20, 60]], dtype=np.float64))]
        self.quad = np.array([[20, 20], [180, 20], [180, 180], [20, 180]], dtype=np.float64)

    def test_draw_markers(self):
        overlay = visualise.draw_markers(self.image, self.markers, self.quad)

        self.assertEqual(overlay.shape, self.image.shape)
        self.assertFalse(np.array_equal(overlay, self.image))
        # The input is left untouched
        self.assertTrue(np.all(self.image == 255))

    def test_draw_markers_grayscale(self):
        overlay = visualise.draw_markers(self.image[:, :, 0], self.markers)
        self.assertEqual(overlay.shape, (200, 200, 3))

    def test_import_keeps_host_backend(self):
        """Importing the module leaves the application's matplotlib backend alone."""
        previous = matplotlib.get_backend()
        plt.switch_backend("pdf")
        try:
            importlib.reload(visualise)
            self.assertEqual(matplotlib.get_backend().lower(), "pdf")
        finally:
            plt.switch_backend(previous)

    def test_save_visualizations(self):
        detection_path = os.path.join(self.test_output_dir, "detection.png")
        comparison_path = os.path.join(self.test_output_dir, "comparison.png")

        visualise.save_detection_visualization(self.image, self.markers, detection_path, self.quad)
        visualise.create_comparison_visualization(
            self.image, self.image[:100, :100], comparison_path, self.markers, self.quad, title="test"
        )

        self.assertTrue(os.path.exists(detection_path))
        self.assertTrue(os.path.exists(comparison_path))


if __name__ == "__main__":
    unittest.main()
