import tempfile
import threading
import unittest
from pathlib import Path

import numpy as np

from landmark_kit.backends.replay_backend import ReplayBackend
from landmark_kit.decode import OutputLayout
from landmark_kit.errors import (
    DecodeLayoutMismatchError,
    DetectorClosedError,
    InferenceBackendError,
    InvalidImageError,
)
from landmark_kit.runtime import OBJECT_CONFIG, DetectorConfig, LandmarkDetector, load_detector

CONFIG = DetectorConfig(num_classes=2)
NAMES = ["Fort_Alice", "Rumah_Sri_Aman"]


def _output() -> np.ndarray:
    # (1, 4 + 2, 3): two overlapping candidates and one isolated one.
    rows = [
        [0.50, 0.50, 0.2, 0.2, 0.1, 0.9],
        [0.51, 0.50, 0.2, 0.2, 0.8, 0.1],
        [0.15, 0.15, 0.1, 0.1, 0.6, 0.2],
    ]
    return np.array(rows, dtype=np.float32).T[None, ...]


class FailingBackend:
    input_shape = None
    output_shape = None

    def __init__(self) -> None:
        self.closed = False

    def run(self, tensor: np.ndarray) -> np.ndarray:
        raise RuntimeError("delegate crashed")

    def close(self) -> None:
        self.closed = True


class BlockingBackend(ReplayBackend):
    def __init__(self, output: np.ndarray) -> None:
        super().__init__(output)
        self.entered = threading.Event()
        self.release = threading.Event()

    def run(self, tensor: np.ndarray) -> np.ndarray:
        self.entered.set()
        self.release.wait(timeout=5)
        return super().run(tensor)


class TestLandmarkDetector(unittest.TestCase):
    def _image(self, h: int = 480, w: int = 640) -> np.ndarray:
        return np.zeros((h, w, 3), dtype=np.uint8)

    def test_detect_decodes_and_suppresses(self) -> None:
        backend = ReplayBackend(_output(), input_shape=(1, 512, 512, 3))
        detector = LandmarkDetector(backend, CONFIG, NAMES)
        batch = detector.detect(self._image())

        self.assertTrue(batch.ok)
        self.assertEqual(len(batch), 2)
        self.assertEqual([d.class_name for d in batch], ["Rumah_Sri_Aman", "Fort_Alice"])
        self.assertAlmostEqual(batch[0].confidence, 0.9, places=6)
        self.assertAlmostEqual(batch[1].confidence, 0.6, places=6)
        self.assertEqual(backend.calls, 1)

    def test_call_is_detect(self) -> None:
        detector = LandmarkDetector(ReplayBackend(_output()), CONFIG, NAMES)
        self.assertEqual(len(detector(self._image())), 2)

    def test_preprocess_layouts(self) -> None:
        img = np.full((100, 200, 3), 255, dtype=np.uint8)
        nhwc = LandmarkDetector(ReplayBackend(_output()), CONFIG).preprocess(img)
        self.assertEqual(nhwc.tensor.shape, (1, 512, 512, 3))
        self.assertEqual(nhwc.tensor.dtype, np.float32)
        self.assertEqual(float(nhwc.tensor.max()), 1.0)
        self.assertEqual(float(nhwc.tensor.min()), 0.0)

        nchw_cfg = DetectorConfig(num_classes=2, input_layout="nchw")
        nchw = LandmarkDetector(ReplayBackend(_output()), nchw_cfg).preprocess(img)
        self.assertEqual(nchw.tensor.shape, (1, 3, 512, 512))

    def test_rgb_channel_order_reaches_tensor(self) -> None:
        img = np.zeros((64, 64, 3), dtype=np.uint8)
        img[..., 0] = 255
        prep = LandmarkDetector(ReplayBackend(_output()), CONFIG).preprocess(img)
        self.assertEqual(float(prep.tensor[0, 256, 256, 0]), 1.0)
        self.assertEqual(float(prep.tensor[0, 256, 256, 2]), 0.0)

    def test_backend_failure_returns_flagged_empty_batch(self) -> None:
        detector = LandmarkDetector(FailingBackend(), CONFIG)
        with self.assertLogs("landmark_kit.runtime", level="ERROR"):
            batch = detector.detect(self._image())
        self.assertEqual(len(batch), 0)
        self.assertFalse(batch.ok)
        self.assertIsInstance(batch.error, InferenceBackendError)
        self.assertIsInstance(batch.error.__cause__, RuntimeError)

    def test_invalid_image_propagates(self) -> None:
        detector = LandmarkDetector(ReplayBackend(_output()), CONFIG)
        with self.assertRaises(InvalidImageError):
            detector.detect(np.zeros((0, 640, 3), dtype=np.uint8))

    def test_per_frame_shape_drift_returns_error(self) -> None:
        backend = ReplayBackend(np.zeros((1, 9, 3), dtype=np.float32))
        backend.output_shape = None
        detector = LandmarkDetector(backend, CONFIG)
        with self.assertLogs("landmark_kit.runtime", level="ERROR"):
            batch = detector.detect(self._image())
        self.assertIsInstance(batch.error, DecodeLayoutMismatchError)

    def test_output_shape_checked_at_construction(self) -> None:
        with self.assertRaises(DecodeLayoutMismatchError):
            LandmarkDetector(ReplayBackend(np.zeros((1, 14, 5376), dtype=np.float32)), CONFIG)

    def test_input_shape_checked_at_construction(self) -> None:
        with self.assertRaises(InferenceBackendError):
            LandmarkDetector(ReplayBackend(_output(), input_shape=(1, 3, 640, 640)), CONFIG)

    def test_undo_letterbox_maps_to_source(self) -> None:
        # Box covering the visible band of a 2:1 image on the 512 canvas.
        out = np.array([[0.5, 0.5, 1.0, 0.5, 0.9, 0.0]], dtype=np.float32).T
        cfg = DetectorConfig(num_classes=2, undo_letterbox=True)
        batch = LandmarkDetector(ReplayBackend(out), cfg).detect(self._image(500, 1000))
        self.assertEqual(len(batch), 1)
        for got, want in zip(batch[0].as_xyxy(), (0.0, 0.0, 1.0, 1.0)):
            self.assertAlmostEqual(got, want, places=5)

    def test_grid_pixel_boxes(self) -> None:
        g = np.zeros((1, 4, 8), dtype=np.float32)
        g.reshape(-1)[3:10] = [0.9, 0.5, 0.5, 0.2, 0.2, 0.1, 0.4]
        cfg = DetectorConfig(layout=OutputLayout.GRID, num_classes=2, pixel_boxes=True)
        batch = LandmarkDetector(ReplayBackend(g), cfg).detect(self._image(100, 200))
        # 200 x 100 sits in a 512 x 256 band, 128 px down the canvas.
        for got, want in zip(batch[0].as_xyxy(), (80.0, 30.0, 120.0, 70.0)):
            self.assertAlmostEqual(got, want, places=4)

    def test_grid_pixel_boxes_cover_visible_band(self) -> None:
        g = np.zeros((1, 4, 8), dtype=np.float32)
        g.reshape(-1)[3:10] = [0.9, 0.5, 0.5, 1.0, 0.5, 0.1, 0.4]
        cfg = DetectorConfig(layout=OutputLayout.GRID, num_classes=2, pixel_boxes=True, undo_letterbox=True)
        batch = LandmarkDetector(ReplayBackend(g), cfg).detect(self._image(500, 1000))
        self.assertEqual(len(batch), 1)
        for got, want in zip(batch[0].as_xyxy(), (0.0, 0.0, 1000.0, 500.0)):
            self.assertAlmostEqual(got, want, places=3)

    def test_padding_boxes_do_not_use_up_the_cap(self) -> None:
        out = np.array(
            [
                # Highest score, but entirely in the top padding of a 2:1 image.
                [0.5, 0.1, 0.2, 0.1, 0.95, 0.0],
                [0.5, 0.5, 0.2, 0.2, 0.80, 0.0],
            ],
            dtype=np.float32,
        ).T
        cfg = DetectorConfig(num_classes=2, undo_letterbox=True, max_detections=1)
        batch = LandmarkDetector(ReplayBackend(out), cfg).detect(self._image(500, 1000))
        self.assertEqual(len(batch), 1)
        self.assertAlmostEqual(batch[0].confidence, 0.8, places=6)
        for got, want in zip(batch[0].as_xyxy(), (0.4, 0.3, 0.6, 0.7)):
            self.assertAlmostEqual(got, want, places=5)

    def test_object_preset_grid_pipeline(self) -> None:
        g = np.zeros((1, 3, 8, 8), dtype=np.float32)
        flat = g.reshape(-1)
        flat[0:5] = [0.9, 0.5, 0.5, 0.25, 0.25]
        flat[5 + 7] = 0.4
        # Overlapping, lower-scored record further along the buffer.
        flat[100:105] = [0.8, 0.52, 0.5, 0.25, 0.25]
        flat[105 + 3] = 0.3

        detector = LandmarkDetector(ReplayBackend(g), OBJECT_CONFIG)
        batch = detector.detect(self._image(64, 64))

        self.assertTrue(batch.ok)
        self.assertEqual(len(batch), 1)
        self.assertEqual(batch[0].class_index, 7)
        self.assertEqual(batch[0].class_name, "7")
        self.assertAlmostEqual(batch[0].confidence, 0.9, places=6)
        for got, want in zip(batch[0].as_xyxy(), (0.375, 0.375, 0.625, 0.625)):
            self.assertAlmostEqual(got, want, places=6)

    def test_close_releases_backend_once(self) -> None:
        backend = ReplayBackend(_output())
        with LandmarkDetector(backend, CONFIG) as detector:
            detector.detect(self._image())
        self.assertTrue(backend.closed)
        self.assertTrue(detector.closed)
        detector.close()
        with self.assertRaises(DetectorClosedError):
            detector.detect(self._image())

    def test_close_waits_for_in_flight_detect(self) -> None:
        backend = BlockingBackend(_output())
        detector = LandmarkDetector(backend, CONFIG)
        results = []

        worker = threading.Thread(target=lambda: results.append(detector.detect(self._image())))
        worker.start()
        self.assertTrue(backend.entered.wait(timeout=5))

        closer = threading.Thread(target=detector.close)
        closer.start()
        closer.join(timeout=0.2)
        self.assertTrue(closer.is_alive())
        self.assertFalse(backend.closed)

        backend.release.set()
        worker.join(timeout=5)
        closer.join(timeout=5)
        self.assertTrue(backend.closed)
        self.assertEqual(len(results), 1)
        self.assertTrue(results[0].ok)


class TestLoadDetector(unittest.TestCase):
    def setUp(self) -> None:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        self.dir = Path(tmpdir.name)
        self.npy = self.dir / "frame.npy"
        np.save(str(self.npy), _output())

    def test_backend_inferred_from_extension(self) -> None:
        detector = load_detector(self.npy, CONFIG, class_names=NAMES)
        self.assertEqual(detector.backend_name, "replay")
        self.assertEqual(len(detector.detect(np.zeros((48, 64, 3), dtype=np.uint8))), 2)

    def test_missing_model_fails_without_fallback(self) -> None:
        with self.assertRaises(InferenceBackendError):
            load_detector(self.dir / "missing.onnx", CONFIG)

    def test_explicit_fallback_is_logged(self) -> None:
        with self.assertLogs("landmark_kit.runtime", level="WARNING") as logs:
            detector = load_detector(
                self.dir / "missing.onnx",
                CONFIG,
                fallback_backend="replay",
                fallback_model_path=self.npy,
            )
        self.assertEqual(detector.backend_name, "replay")
        self.assertTrue(any("falling back" in line for line in logs.output))

    def test_layout_mismatch_is_fatal_at_load(self) -> None:
        bad = self.dir / "bad.npy"
        np.save(str(bad), np.zeros((1, 9, 100), dtype=np.float32))
        with self.assertRaises(DecodeLayoutMismatchError):
            load_detector(bad, CONFIG)

    def test_unknown_extension_rejected(self) -> None:
        with self.assertRaises(ValueError):
            load_detector(self.dir / "model.bin", CONFIG)


if __name__ == "__main__":
    unittest.main()
