import tempfile
import unittest
from pathlib import Path

import cv2
import numpy as np

from landmark_kit.errors import InvalidImageError
from landmark_kit.frames import bgr_to_rgb, nv21_to_rgb, read_image, yuv_planes_to_nv21
from landmark_kit.labels import LANDMARK_CLASS_NAMES, load_class_names


class TestLabels(unittest.TestCase):
    def setUp(self) -> None:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        self.dir = Path(tmpdir.name)

    def test_labels_txt(self) -> None:
        path = self.dir / "labels.txt"
        path.write_text("Fort_Alice\n\nRumah_Sri_Aman\n", encoding="utf-8")
        self.assertEqual(load_class_names(path), ["Fort_Alice", "Rumah_Sri_Aman"])

    def test_metadata_yaml(self) -> None:
        path = self.dir / "metadata.yaml"
        path.write_text(
            "task: detect\nimgsz: [512, 512]\nnames:\n  1: 'Fort_Alice'\n  0: Bujang_Senang_Statue\n",
            encoding="utf-8",
        )
        self.assertEqual(load_class_names(path), ["Bujang_Senang_Statue", "Fort_Alice"])

    def test_metadata_gaps_rejected(self) -> None:
        path = self.dir / "metadata.yaml"
        path.write_text("names:\n  0: a\n  2: c\n", encoding="utf-8")
        with self.assertRaises(ValueError):
            load_class_names(path)

    def test_missing_file(self) -> None:
        with self.assertRaises(FileNotFoundError):
            load_class_names(self.dir / "nope.txt")

    def test_landmark_table(self) -> None:
        self.assertEqual(len(LANDMARK_CLASS_NAMES), 10)
        self.assertEqual(LANDMARK_CLASS_NAMES[1], "Fort_Alice")


class TestFrames(unittest.TestCase):
    def test_planes_packed_as_nv21(self) -> None:
        y = np.array([1, 2], dtype=np.uint8)
        u = np.array([3], dtype=np.uint8)
        v = np.array([4], dtype=np.uint8)
        self.assertEqual(yuv_planes_to_nv21(y, u, v).tolist(), [1, 2, 4, 3])

    def test_gray_nv21_to_rgb(self) -> None:
        width, height = 4, 2
        buf = np.full(width * height * 3 // 2, 128, dtype=np.uint8)
        rgb = nv21_to_rgb(buf, width, height)
        self.assertEqual(rgb.shape, (2, 4, 3))
        self.assertTrue(np.all(np.abs(rgb.astype(int) - 128) <= 4))

    def test_nv21_rejects_bad_frames(self) -> None:
        with self.assertRaises(InvalidImageError):
            nv21_to_rgb(np.zeros(12, dtype=np.uint8), 3, 2)
        with self.assertRaises(InvalidImageError):
            nv21_to_rgb(np.zeros(5, dtype=np.uint8), 4, 2)
        with self.assertRaises(InvalidImageError):
            nv21_to_rgb(np.zeros(0, dtype=np.uint8), 0, 0)

    def test_bgr_to_rgb(self) -> None:
        img = np.zeros((2, 2, 3), dtype=np.uint8)
        img[..., 0] = 255
        self.assertTrue(np.all(bgr_to_rgb(img)[..., 2] == 255))

    def test_read_image_returns_rgb(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "blue.png"
            bgr = np.zeros((8, 8, 3), dtype=np.uint8)
            bgr[..., 0] = 255
            self.assertTrue(cv2.imwrite(str(path), bgr))
            rgb = read_image(path)
        self.assertEqual(rgb.shape, (8, 8, 3))
        self.assertTrue(np.all(rgb[..., 2] == 255))
        self.assertTrue(np.all(rgb[..., 0] == 0))

    def test_read_image_missing(self) -> None:
        with self.assertRaises(FileNotFoundError):
            read_image("/nonexistent/frame.jpg")


if __name__ == "__main__":
    unittest.main()
