# -*- coding: utf-8 -*-
"""
孔径、端口、光谱与坐标变换单元测试
"""

import numpy as np
import pytest
from numpy.testing import assert_allclose

from optic_graph import (
    CircleAperture,
    Isometry,
    OpticPorts,
    PolygonAperture,
    PortConnectionError,
    PortDirection,
    RectangleAperture,
    Spectrum,
    SplittingConfig,
    StackedAperture,
    UnrestrictedAperture,
)


class TestApertures:
    """孔径测试"""

    def test_circle(self):
        aperture = CircleAperture(1.0, center=(1.0, 0.0))
        mask = aperture.transmits([[1.0, 0.0], [1.9, 0.0], [-0.5, 0.0]])
        assert list(mask) == [True, True, False]

    def test_circle_rejects_non_positive_radius(self):
        with pytest.raises(ValueError):
            CircleAperture(0.0)

    def test_rectangle(self):
        aperture = RectangleAperture(2.0, 1.0)
        mask = aperture.transmits([[0.9, 0.4], [1.1, 0.0], [0.0, 0.6]])
        assert list(mask) == [True, False, False]

    def test_rectangle_obstruction(self):
        aperture = RectangleAperture(2.0, 1.0, obstruction=True)
        mask = aperture.transmits([[0.0, 0.0], [5.0, 5.0]])
        assert list(mask) == [False, True]

    def test_polygon(self):
        aperture = PolygonAperture(((0.0, 0.0), (2.0, 0.0), (0.0, 2.0)))
        mask = aperture.transmits([[0.5, 0.5], [1.5, 1.5]])
        assert list(mask) == [True, False]

    def test_polygon_needs_three_vertices(self):
        with pytest.raises(ValueError):
            PolygonAperture(((0.0, 0.0), (1.0, 0.0)))

    def test_stacked_aperture_requires_all(self):
        aperture = StackedAperture([CircleAperture(2.0), CircleAperture(0.5, obstruction=True)])
        mask = aperture.transmits([[0.0, 0.0], [1.0, 0.0], [3.0, 0.0]])
        assert list(mask) == [False, True, False]

    def test_unrestricted(self):
        assert UnrestrictedAperture().is_unrestricted
        assert StackedAperture([UnrestrictedAperture()]).is_unrestricted
        assert not CircleAperture(1.0).is_unrestricted
        assert UnrestrictedAperture().transmits(np.zeros((5, 2))).all()


class TestPorts:
    """端口集合测试"""

    def _ports(self) -> OpticPorts:
        ports = OpticPorts()
        ports.add("input_1", PortDirection.INPUT, CircleAperture(1.0))
        ports.add("output_1", PortDirection.OUTPUT)
        return ports

    def test_names(self):
        ports = self._ports()
        assert ports.input_names() == ["input_1"]
        assert ports.output_names() == ["output_1"]

    def test_inverted_view_swaps_roles_and_keeps_apertures(self):
        view = self._ports().view(inverted=True)
        assert view.input_names() == ["output_1"]
        assert view.output_names() == ["input_1"]
        assert view.aperture("input_1") == CircleAperture(1.0)

    def test_duplicate_port_rejected(self):
        ports = self._ports()
        with pytest.raises(PortConnectionError):
            ports.add("input_1", PortDirection.INPUT)

    def test_unknown_port(self):
        with pytest.raises(PortConnectionError):
            self._ports().port("input_2")


class TestSpectrum:
    """光谱测试"""

    def test_laser_lines_energy(self):
        spectrum = Spectrum.from_laser_lines([(1.053, 1.0), (0.532, 0.5)])
        assert spectrum.total_energy() == pytest.approx(1.5)

    def test_gaussian_energy(self):
        spectrum = Spectrum.gaussian(1.053, 0.01, 2.0, resolution=0.0005)
        assert spectrum.total_energy() == pytest.approx(2.0, rel=1e-6)
        assert spectrum.center_wavelength() == pytest.approx(1.053, abs=1e-3)

    def test_split_by_spectrum_conserves_energy(self):
        spectrum = Spectrum.from_laser_lines([(1.053, 1.0), (0.532, 1.0)])
        curve = Spectrum.transmission([0.5, 0.8, 0.81, 1.2], [1.0, 1.0, 0.0, 0.0])
        transmitted, reflected = spectrum.split_by_spectrum(curve)
        assert transmitted.total_energy() + reflected.total_energy() == pytest.approx(2.0)
        assert transmitted.total_energy() == pytest.approx(1.0, rel=1e-6)

    def test_invalid_grid_rejected(self):
        with pytest.raises(ValueError):
            Spectrum([1.0, 0.9], [0.0, 0.0])
        with pytest.raises(ValueError):
            Spectrum([1.0, 1.1], [0.0, -1.0])

    def test_transmission_curve_range(self):
        with pytest.raises(ValueError):
            Spectrum.transmission([1.0, 1.1], [0.5, 1.5])

    def test_merged_spectra_add_energy(self):
        a = Spectrum.from_laser_lines([(1.053, 1.0)])
        b = Spectrum.from_laser_lines([(0.532, 2.0)])
        assert a.merged(b).total_energy() == pytest.approx(3.0, rel=1e-6)

    def test_splitting_config_needs_exactly_one_mode(self):
        with pytest.raises(ValueError):
            SplittingConfig()
        with pytest.raises(ValueError):
            SplittingConfig.ratio(1.2)


class TestIsometry:
    """刚体变换测试"""

    def test_inverse(self):
        iso = Isometry.new((1.0, 2.0, 3.0), (0.1, -0.2, 0.3))
        point = np.array([0.5, -0.5, 2.0])
        assert_allclose(iso.inverse_transform_point(iso.transform_point(point)), point, atol=1e-12)
        assert iso.inverse().append(iso).is_close(Isometry.identity())

    def test_from_view_points_z_axis(self):
        iso = Isometry.from_view((0.0, 0.0, 10.0), (1.0, 0.0, 1.0))
        assert_allclose(iso.z_axis, np.array([1.0, 0.0, 1.0]) / np.sqrt(2.0), atol=1e-12)
        assert_allclose(iso.position, [0.0, 0.0, 10.0])

    def test_from_view_along_up_direction(self):
        iso = Isometry.from_view((0.0, 0.0, 0.0), (0.0, 1.0, 0.0))
        assert_allclose(iso.z_axis, [0.0, 1.0, 0.0], atol=1e-12)

    def test_append_composes_transforms(self):
        outer = Isometry.along_z(100.0)
        inner = Isometry.along_z(5.0)
        assert_allclose(outer.append(inner).position, [0.0, 0.0, 105.0])

    def test_translated_along_own_axis(self):
        iso = Isometry.new((0.0, 0.0, 5.0), (0.0, np.pi / 2, 0.0))
        moved = iso.translated_along_z(2.0)
        assert_allclose(moved.position, [2.0, 0.0, 5.0], atol=1e-12)
        assert_allclose(moved.z_axis, iso.z_axis, atol=1e-12)
        assert Isometry.along_z(10.0).translated_along_z(-4.0).is_close(Isometry.along_z(6.0))
