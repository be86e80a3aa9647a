# -*- coding: utf-8 -*-
"""
波前误差单元测试
"""

import numpy as np
import pytest
from numpy.testing import assert_allclose

from optic_graph import Isometry, RayBundle, wavefront_error, wavefront_maps

POSITIONS = [(0.0, 0.0, 5.0), (1.0, 0.0, 5.0), (0.0, 2.0, 5.0)]
DIRECTIONS = [(0.0, 0.0, 1.0)] * 3


def _bundle(path_lengths, wavelengths=1.0, valid=None) -> RayBundle:
    return RayBundle(POSITIONS, DIRECTIONS, wavelengths, 1.0, valid=valid, path_lengths=path_lengths)


class TestWavefrontError:
    """单波长波前误差图"""

    def test_values_relative_to_axial_ray(self):
        wavefront = wavefront_error(_bundle([10.0, 10.001, 9.998]))
        assert_allclose(wavefront.values, [0.0, -1.0, 2.0], atol=1e-9)
        assert wavefront.ptv == pytest.approx(3.0)
        assert wavefront.rms == pytest.approx(np.sqrt(42.0 / 27.0))

    def test_points_in_monitor_frame(self):
        iso = Isometry.new((1.0, 0.0, 5.0), (0.0, 0.0, 0.0))
        wavefront = wavefront_error(_bundle([10.0, 10.0, 10.0]), iso)
        assert_allclose(wavefront.points, [[-1.0, 0.0], [0.0, 0.0], [-1.0, 2.0]])
        # 最靠近轴的光线现在是第二条
        wavefront = wavefront_error(_bundle([10.0, 10.002, 10.0]), iso)
        assert_allclose(wavefront.values, [2.0, 0.0, 2.0], atol=1e-9)

    def test_central_wavelength_is_default(self):
        wavefront = wavefront_error(_bundle([10.0, 10.0, 10.0], wavelengths=[1.0, 0.5, 0.75]))
        assert wavefront.wavelength == pytest.approx(0.75)

    def test_invalid_rays_ignored(self):
        wavefront = wavefront_error(_bundle([10.0, 20.0, 10.0], valid=[True, False, True]))
        assert wavefront.values.size == 2
        assert wavefront.ptv == pytest.approx(0.0)

    def test_no_valid_rays(self):
        with pytest.raises(ValueError):
            wavefront_error(_bundle([0.0, 0.0, 0.0], valid=False))

    def test_summary(self):
        summary = wavefront_error(_bundle([10.0, 10.001, 9.998])).to_dict()
        assert summary["wavelength_um"] == 1.0
        assert summary["ptv_waves"] == pytest.approx(3.0)
        assert summary["nr_of_points"] == 3


class TestWavefrontMaps:
    """按光谱分量计算"""

    def test_one_map_per_wavelength(self):
        maps = wavefront_maps(_bundle([10.0, 10.001, 10.002], wavelengths=[0.5, 0.5, 1.0]))
        assert [m.wavelength for m in maps] == [0.5, 1.0]
        assert_allclose(maps[0].values, [0.0, -2.0], atol=1e-9)
        assert maps[1].values.size == 1
