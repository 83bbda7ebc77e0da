import itertools
import unittest

import numpy as np

from detect_kit.letterbox import DEFAULT_FILL, compute_letterbox, letterbox_blit
from detect_kit.types import Rect


class TestComputeLetterbox(unittest.TestCase):
    def test_landscape_into_square(self) -> None:
        t = compute_letterbox(1920, 1080, 640, 640)
        self.assertEqual(t.scale[0], 1.0)
        self.assertAlmostEqual(t.scale[1], 0.5625, places=6)
        self.assertEqual(t.offset[0], 0.0)
        self.assertAlmostEqual(t.offset[1], 0.21875, places=6)

    def test_portrait_into_square(self) -> None:
        t = compute_letterbox(1080, 1920, 640, 640)
        self.assertAlmostEqual(t.scale[0], 0.5625, places=6)
        self.assertEqual(t.scale[1], 1.0)
        self.assertAlmostEqual(t.offset[0], 0.21875, places=6)
        self.assertEqual(t.offset[1], 0.0)

    def test_matching_aspect_is_identity(self) -> None:
        t = compute_letterbox(1280, 1280, 640, 640)
        self.assertEqual(t.scale, (1.0, 1.0))
        self.assertEqual(t.offset, (0.0, 0.0))

    def test_never_upsamples_and_one_axis_is_full(self) -> None:
        sizes = [1, 3, 17, 320, 640, 1080, 1920, 4000]
        targets = [(640, 640), (512, 512), (640, 384), (320, 480)]
        for (sw, sh), (tw, th) in itertools.product(itertools.product(sizes, sizes), targets):
            t = compute_letterbox(sw, sh, tw, th)
            sx, sy = t.scale
            ox, oy = t.offset
            self.assertTrue(0.0 < sx <= 1.0 and 0.0 < sy <= 1.0, (sw, sh, tw, th, t.scale))
            self.assertTrue(sx == 1.0 or sy == 1.0, (sw, sh, tw, th, t.scale))
            self.assertTrue(0.0 <= ox <= 0.5 and 0.0 <= oy <= 0.5)

    def test_rejects_non_positive(self) -> None:
        for args in [(0, 10, 640, 640), (10, -1, 640, 640), (10, 10, 0, 640), (10, 10, 640, -5)]:
            with self.assertRaises(ValueError):
                compute_letterbox(*args)


class TestLetterboxMapping(unittest.TestCase):
    def test_forward_then_inverse_round_trip(self) -> None:
        cases = [(1920, 1080, 640, 640), (720, 1280, 640, 640), (800, 600, 512, 512), (1000, 500, 640, 384)]
        points = [(0.0, 0.0), (13.5, 7.25), (0.5, 0.5)]
        for sw, sh, tw, th in cases:
            t = compute_letterbox(sw, sh, tw, th)
            for fx, fy in points:
                x, y = fx * sw, fy * sh
                mx, my = t.forward(x, y)
                rx, ry = t.inverse(mx, my)
                self.assertAlmostEqual(rx, x, delta=1e-4)
                self.assertAlmostEqual(ry, y, delta=1e-4)

    def test_source_corners_land_inside_padding(self) -> None:
        t = compute_letterbox(1920, 1080, 640, 640)
        x, y = t.forward(0, 0)
        self.assertAlmostEqual(x, 0.0)
        self.assertAlmostEqual(y, 140.0)
        x, y = t.forward(1920, 1080)
        self.assertAlmostEqual(x, 640.0)
        self.assertAlmostEqual(y, 500.0)

    def test_inverse_rect(self) -> None:
        t = compute_letterbox(1280, 720, 640, 640)
        r = t.inverse_rect(Rect(x=288, y=302, width=64, height=36))
        self.assertAlmostEqual(r.x, 576.0, places=4)
        self.assertAlmostEqual(r.y, 324.0, places=4)
        self.assertAlmostEqual(r.width, 128.0, places=4)
        self.assertAlmostEqual(r.height, 72.0, places=4)


class TestLetterboxBlit(unittest.TestCase):
    def test_pads_with_neutral_fill(self) -> None:
        image = np.full((100, 200, 3), 255, dtype=np.uint8)
        out = np.zeros((64, 64, 3), dtype=np.uint8)
        t = compute_letterbox(200, 100, 64, 64)
        self.assertEqual(t.content_region(), (0, 16, 64, 32))

        result = letterbox_blit(image, t, out)
        self.assertIs(result, out)
        self.assertTrue(np.all(out[:16] == DEFAULT_FILL))
        self.assertTrue(np.all(out[48:] == DEFAULT_FILL))
        self.assertTrue(np.all(out[16:48] == 255))

    def test_grayscale_input_is_expanded(self) -> None:
        image = np.full((50, 50), 10, dtype=np.uint8)
        out = np.zeros((32, 32, 3), dtype=np.uint8)
        letterbox_blit(image, compute_letterbox(50, 50, 32, 32), out)
        self.assertTrue(np.all(out == 10))

    def test_single_channel_input_is_expanded(self) -> None:
        image = np.full((720, 1280, 1), 40, dtype=np.uint8)
        out = np.zeros((64, 64, 3), dtype=np.uint8)
        t = compute_letterbox(1280, 720, 64, 64)
        letterbox_blit(image, t, out)
        left, top, w, h = t.content_region()
        self.assertTrue(np.all(out[top : top + h, left : left + w] == 40))
        self.assertTrue(np.all(out[:top] == DEFAULT_FILL))

    def test_rejects_unsupported_channel_count(self) -> None:
        image = np.zeros((10, 10, 2), dtype=np.uint8)
        with self.assertRaises(ValueError):
            letterbox_blit(image, compute_letterbox(10, 10, 32, 32), np.zeros((32, 32, 3), dtype=np.uint8))

    def test_rejects_wrong_scratch_shape(self) -> None:
        image = np.zeros((10, 10, 3), dtype=np.uint8)
        with self.assertRaises(ValueError):
            letterbox_blit(image, compute_letterbox(10, 10, 32, 32), np.zeros((16, 16, 3), dtype=np.uint8))


if __name__ == "__main__":
    unittest.main()
