import math
import unittest

import torch

from fdkct.errors import ConfigurationError
from fdkct.geometry import (
    ARC,
    FLAT,
    detector_topology,
    fov_mask,
    max_radius,
    sample_grids,
    source_angles,
    volume_axes,
    weight1,
)


class TestDetectorTopology(unittest.TestCase):

    def test_selects_flat_and_arc(self):
        self.assertIs(detector_topology(math.inf), FLAT)
        self.assertIs(detector_topology(float("inf")), FLAT)
        self.assertIs(detector_topology(0), ARC)
        self.assertIs(detector_topology(0.0), ARC)

    def test_other_focal_distances_are_rejected(self):
        for dfs in (500.0, -math.inf, 1e-3, None):
            with self.subTest(dfs=dfs):
                with self.assertRaises(ConfigurationError):
                    detector_topology(dfs)

    def test_projection_inverts_detector_positions(self):
        """A point on the ray to a detector sample projects back onto that sample."""
        dsd, dso = 400.0, 250.0
        ss = torch.linspace(-60.0, 60.0, 7, dtype=torch.float64)
        tt = torch.linspace(-20.0, 20.0, 7, dtype=torch.float64)
        for topology, offset_source in ((FLAT, 0.0), (ARC, 0.0), (ARC, 3.5)):
            with self.subTest(topology=topology, offset_source=offset_source):
                px, py, pz = topology.detector_positions(ss, tt, dsd, dso, offset_source)
                lam = 0.6
                xb = offset_source + lam * (px - offset_source)
                yb = dso + lam * (py - dso)
                z = lam * pz
                d_loop = dso - yb
                sprime = topology.project_to_detector(xb, d_loop, dsd, offset_source)
                torch.testing.assert_close(sprime, ss, rtol=1e-12, atol=1e-10)
                if topology is FLAT:
                    # t' = mag * z holds exactly for the flat detector
                    torch.testing.assert_close(dsd / d_loop * z, tt, rtol=1e-12, atol=1e-10)

    def test_back_weight_at_isocenter(self):
        xb = torch.zeros(1, dtype=torch.float64)
        d_loop = torch.full((1,), 200.0, dtype=torch.float64)
        for topology in (FLAT, ARC):
            with self.subTest(topology=topology):
                w = topology.back_weight(xb, d_loop, 500.0)
                torch.testing.assert_close(w, torch.full((1,), 6.25, dtype=torch.float64))


class TestSampleGrids(unittest.TestCase):

    def test_centered_grid(self):
        ss, tt = sample_grids(4, 3, 1.0, 2.0)
        torch.testing.assert_close(ss, torch.tensor([-1.5, -0.5, 0.5, 1.5], dtype=torch.float64))
        torch.testing.assert_close(tt, torch.tensor([-2.0, 0.0, 2.0], dtype=torch.float64))

    def test_odd_grid_center_sample_is_zero(self):
        ss, _ = sample_grids(5, 1, 0.7, 1.0)
        self.assertEqual(ss[2].item(), 0.0)

    def test_fractional_offsets_shift_the_grid(self):
        ss0, tt0 = sample_grids(8, 6, 1.2, 0.8)
        ss, tt = sample_grids(8, 6, 1.2, 0.8, offset_s=0.25, offset_t=-1.0)
        torch.testing.assert_close(ss, ss0 - 0.25 * 1.2)
        torch.testing.assert_close(tt, tt0 + 1.0 * 0.8)


class TestWeight1(unittest.TestCase):

    def setUp(self):
        self.ss = torch.tensor([0.0, 3.0, -3.0], dtype=torch.float64)
        self.tt = torch.tensor([0.0, 4.0], dtype=torch.float64)

    def test_flat_weight(self):
        w = weight1(self.ss, self.tt, 12.0, 6.0, math.inf)
        self.assertEqual(tuple(w.shape), (3, 2))
        self.assertAlmostEqual(w[0, 0].item(), 0.5)
        expected = 6.0 * math.sqrt(1 + (4.0 / 12.0) ** 2) / 13.0
        self.assertAlmostEqual(w[1, 1].item(), expected)
        self.assertAlmostEqual(w[2, 1].item(), expected)

    def test_arc_weight(self):
        w = weight1(self.ss, self.tt, 12.0, 6.0, 0)
        self.assertAlmostEqual(w[0, 0].item(), 0.5)
        self.assertAlmostEqual(w[1, 0].item(), 0.5 * math.cos(3.0 / 12.0))
        expected = 0.5 * math.cos(3.0 / (12.0 * math.sqrt(1 + (4.0 / 12.0) ** 2)))
        self.assertAlmostEqual(w[1, 1].item(), expected)

    def test_unsupported_focal_distance(self):
        with self.assertRaises(ConfigurationError):
            weight1(self.ss, self.tt, 12.0, 6.0, 500.0)


class TestMaxRadius(unittest.TestCase):

    def test_flat(self):
        rmax = max_radius(65, 1.0, 0.0, 400.0, 200.0, math.inf)
        self.assertAlmostEqual(rmax, 200.0 * math.sin(math.atan(32.0 / 400.0)))

    def test_arc(self):
        rmax = max_radius(65, 1.0, 0.0, 400.0, 200.0, 0)
        self.assertAlmostEqual(rmax, 200.0 * math.sin(32.0 / 400.0))

    def test_offset_reduces_radius(self):
        rmax = max_radius(65, 1.0, -2.0, 400.0, 200.0, math.inf)
        self.assertAlmostEqual(rmax, 200.0 * math.sin(math.atan(30.0 / 400.0)))
        self.assertLess(rmax, max_radius(65, 1.0, 0.0, 400.0, 200.0, math.inf))


class TestSourceAngles(unittest.TestCase):

    def test_full_orbit_excludes_endpoint(self):
        betas = source_angles(2 * math.pi, 0.0, 4)
        torch.testing.assert_close(
            betas, torch.tensor([0.0, 0.5, 1.0, 1.5], dtype=torch.float64) * math.pi
        )

    def test_start_and_negative_orbit(self):
        betas = source_angles(-math.pi, 0.25, 2)
        torch.testing.assert_close(
            betas, torch.tensor([0.25, 0.25 - math.pi / 2], dtype=torch.float64)
        )


class TestVolumeAndMask(unittest.TestCase):

    def test_volume_axes(self):
        xs, ys, zs = volume_axes(4, 3, 2, 1.0, 2.0, 0.5, center_xyz=(1.0, 0.0, 0.0))
        torch.testing.assert_close(xs, torch.tensor([-2.5, -1.5, -0.5, 0.5], dtype=torch.float64))
        torch.testing.assert_close(ys, torch.tensor([-2.0, 0.0, 2.0], dtype=torch.float64))
        torch.testing.assert_close(zs, torch.tensor([-0.25, 0.25], dtype=torch.float64))

    def test_mask_is_only_narrowed(self):
        xs, ys, _ = volume_axes(9, 9, 1, 1.0, 1.0, 1.0)
        mask = torch.ones((9, 9), dtype=torch.bool)
        mask[4, 4] = False
        narrowed = fov_mask(mask, xs, ys, rmax=3.0)
        self.assertFalse(narrowed[4, 4].item())
        self.assertTrue(narrowed[4, 7].item())
        self.assertFalse(narrowed[4, 8].item())
        self.assertFalse(narrowed[0, 0].item())
        self.assertFalse((narrowed & ~mask).any().item())


if __name__ == '__main__':
    unittest.main()
