import math
import unittest
from dataclasses import replace

import torch

from fdkct.backprojection import (
    Accumulator,
    NumbaBackprojector,
    TorchBackprojector,
    backproject,
    reconstruction_mask,
)
from fdkct.config import FDKConfig
from fdkct.errors import ShapeMismatch
from fdkct.fdk import fdk_weight_filter
from fdkct.phantoms import sphere_projections


def _config(**overrides):
    options = dict(
        nx=32, nz=4, dx=1.0, ns=48, nt=16, na=36, ds=1.5,
        dis_src_det=300.0, dis_iso_det=150.0,
    )
    options.update(overrides)
    return FDKConfig(**options)


def _filtered_spheres(cfg):
    spheres = [[0.0, 0.0, 0.0, 6.0, 1.0], [5.0, -3.0, 1.0, 2.5, 0.5]]
    return fdk_weight_filter(sphere_projections(cfg, spheres), cfg)


class TestAngleContribution(unittest.TestCase):

    def setUp(self):
        self.x = torch.tensor([0.0, 3.0, -4.0, 0.0], dtype=torch.float64)
        self.y = torch.tensor([0.0, 2.0, 1.0, 0.0], dtype=torch.float64)
        self.zs = torch.tensor([0.0, 1.5, 100.0], dtype=torch.float64)

    def test_isocenter_value_and_out_of_range_slice(self):
        for dfs in (float("inf"), 0):
            with self.subTest(dis_foc_src=dfs):
                cfg = _config(dis_foc_src=dfs)
                view = torch.ones((cfg.ns, cfg.nt), dtype=torch.float64)
                contribution = TorchBackprojector(cfg, self.x, self.y, self.zs)(view, 1.0, 0.0)
                self.assertEqual(tuple(contribution.shape), (4, 3))
                self.assertAlmostEqual(contribution[0, 0].item(), (300.0 / 150.0) ** 2)
                # slice z=100 projects far above the detector
                self.assertTrue(torch.all(contribution[:, 2] == 0).item())

    def test_bilinear_interpolation_of_linear_data(self):
        cfg = _config()
        ii, jj = torch.meshgrid(
            torch.arange(cfg.ns, dtype=torch.float64),
            torch.arange(cfg.nt, dtype=torch.float64),
            indexing="ij",
        )
        view = ii + 2 * jj
        beta = 0.7
        cos_b, sin_b = torch.cos(torch.tensor(beta)).item(), torch.sin(torch.tensor(beta)).item()
        contribution = TorchBackprojector(cfg, self.x, self.y, self.zs[:2])(view, cos_b, sin_b)

        xb = self.x * cos_b + self.y * sin_b
        yb = -self.x * sin_b + self.y * cos_b
        mag = cfg.dsd / (cfg.dso - yb)
        bh = mag * xb / cfg.ds + (cfg.ns - 1) / 2
        bv = mag[:, None] * self.zs[None, :2] / cfg.dt + (cfg.nt - 1) / 2
        expected = (bh[:, None] + 2 * bv) * (mag ** 2)[:, None]
        torch.testing.assert_close(contribution, expected)

    def test_backends_agree(self):
        for dfs, offset_source in ((float("inf"), 0.0), (0, 0.0), (0, 2.0)):
            with self.subTest(dis_foc_src=dfs, offset_source=offset_source):
                cfg = _config(dis_foc_src=dfs, offset_source=offset_source, offset_st=(0.25, -0.5))
                stack = _filtered_spheres(cfg)
                mask, xs, ys, zs = reconstruction_mask(cfg)
                ix, iy = torch.nonzero(mask, as_tuple=True)
                reference = TorchBackprojector(cfg, xs[ix], ys[iy], zs)
                compiled = NumbaBackprojector(cfg, xs[ix], ys[iy], zs)
                for ia in (0, 7, 20):
                    beta = torch.tensor(2 * math.pi * ia / cfg.na, dtype=torch.float64)
                    cos_b, sin_b = torch.cos(beta).item(), torch.sin(beta).item()
                    expected = reference(stack[:, :, ia], cos_b, sin_b)
                    actual = compiled(stack[:, :, ia], cos_b, sin_b)
                    self.assertEqual(actual.dtype, torch.float64)
                    atol = 1e-4 * expected.abs().max().item()
                    torch.testing.assert_close(actual, expected, rtol=1e-3, atol=atol)

    def test_single_sample_axes_contribute_zero(self):
        for ns, nt in ((48, 1), (1, 16)):
            for dfs in (float("inf"), 0):
                with self.subTest(ns=ns, nt=nt, dis_foc_src=dfs):
                    cfg = _config(ns=ns, nt=nt, dis_foc_src=dfs)
                    view = torch.ones((ns, nt), dtype=torch.float64)
                    expected = torch.zeros((4, 3), dtype=torch.float64)
                    for backend in (TorchBackprojector, NumbaBackprojector):
                        contribution = backend(cfg, self.x, self.y, self.zs)(view, 1.0, 0.0)
                        torch.testing.assert_close(contribution, expected, rtol=0, atol=0)


class TestAccumulator(unittest.TestCase):

    def test_scatter_and_scale(self):
        mask = torch.tensor([[True, False], [False, True]])
        acc = Accumulator(2, 3, dtype=torch.float64)
        acc.add(torch.ones((2, 3), dtype=torch.float64))
        acc.add(torch.full((2, 3), 2.0, dtype=torch.float64))
        self.assertEqual(acc.n_views, 2)
        volume = acc.to_volume(mask, 0.5)
        self.assertEqual(tuple(volume.shape), (2, 2, 3))
        torch.testing.assert_close(volume[0, 0], torch.full((3,), 1.5, dtype=torch.float64))
        self.assertTrue(torch.all(volume[0, 1] == 0).item())

    def test_contribution_shape_is_checked(self):
        acc = Accumulator(2, 3, dtype=torch.float64)
        with self.assertRaises(ShapeMismatch):
            acc.add(torch.ones((3, 2), dtype=torch.float64))


class TestBackproject(unittest.TestCase):

    def setUp(self):
        self.cfg = _config()
        self.stack = _filtered_spheres(self.cfg)

    def test_voxels_outside_mask_are_zero(self):
        mask = torch.ones((self.cfg.nx, self.cfg.ny), dtype=torch.bool)
        mask[:, :10] = False
        mask[20:, 16:] = False
        volume = backproject(self.stack, self.cfg, mask)
        self.assertTrue(torch.all(volume[~mask] == 0).item())

        narrowed, _, _, _ = reconstruction_mask(self.cfg, mask)
        self.assertTrue(torch.all(volume[~narrowed] == 0).item())
        self.assertTrue(torch.any(volume[narrowed] != 0).item())
        # corner voxels lie beyond the detector's reach
        self.assertFalse(narrowed[-1, -1].item())

    def test_accumulation_order_independent(self):
        forward = backproject(self.stack, self.cfg)
        backward = backproject(self.stack, self.cfg, reverse=True)
        torch.testing.assert_close(backward, forward, rtol=1e-10, atol=1e-12)

    def test_stack_is_read_only(self):
        before = self.stack.clone()
        backproject(self.stack, self.cfg)
        torch.testing.assert_close(self.stack, before, rtol=0, atol=0)

    def test_alternate_backend(self):
        reference = backproject(self.stack, self.cfg)
        alternate = backproject(self.stack, replace(self.cfg, use_alternate_backend=True))
        atol = 1e-4 * reference.abs().max().item()
        torch.testing.assert_close(alternate, reference, rtol=1e-3, atol=atol)

    def test_processed_views_are_logged(self):
        cfg = replace(self.cfg, ia_skip=4)
        with self.assertLogs("fdkct.backprojection", level="INFO") as logs:
            backproject(self.stack, cfg)
        self.assertTrue(any("9 of 36 views" in line for line in logs.output))

    def test_shape_errors(self):
        with self.assertRaises(ShapeMismatch):
            backproject(self.stack, self.cfg, torch.ones((self.cfg.nx, self.cfg.ny + 1), dtype=torch.bool))
        with self.assertRaises(ShapeMismatch):
            backproject(self.stack[:, :, :-1], self.cfg)


if __name__ == '__main__':
    unittest.main()
