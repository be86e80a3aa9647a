# -*- coding: utf-8 -*-
"""
光线与光线束单元测试

测试 Ray / RayBundle 的构造、传播、折射、反射、能量操作与统计量。
"""

import numpy as np
import pytest
from numpy.testing import assert_allclose

from optic_graph import (
    AIR,
    CircleAperture,
    ConstantIndex,
    ConstantR,
    Isometry,
    Ray,
    RayBundle,
    SplittingConfig,
    UnrestrictedAperture,
)
from optic_graph.distributions import Hexapolar, UniformEnergy
from optic_graph.surfaces import OpticSurface, Plane, SurfaceKind


def _bundle(radius: float = 2.0, rings: int = 3, energy: float = 1.0) -> RayBundle:
    return RayBundle.collimated(Hexapolar(radius, rings), UniformEnergy(energy), 1.053)


def _glass_plane(z: float = 0.0, coating=None) -> OpticSurface:
    kwargs = {} if coating is None else {"coating": coating}
    return OpticSurface(
        "glass",
        Plane(),
        Isometry.along_z(z),
        kind=SurfaceKind.REFRACTIVE,
        n_neg=AIR,
        n_pos=ConstantIndex(1.5),
        **kwargs,
    )


class TestRay:
    """单条光线测试"""

    def test_direction_is_normalized(self):
        ray = Ray.new((0.0, 0.0, 0.0), (0.0, 3.0, 4.0), wavelength=1.0, energy=1.0)
        assert_allclose(ray.direction, [0.0, 0.6, 0.8])

    def test_propagated_records_history_and_path(self):
        ray = Ray.new((0.0, 0.0, 0.0), (0.0, 0.0, 1.0), wavelength=1.0, energy=1.0)
        moved = ray.propagated(10.0)
        assert_allclose(moved.position, [0.0, 0.0, 10.0])
        assert moved.path_length == pytest.approx(10.0)
        assert moved.position_history().shape == (2, 3)

    def test_invalid_ray_does_not_move(self):
        ray = Ray.new((0.0, 0.0, 0.0), (0.0, 0.0, 1.0), wavelength=1.0, energy=1.0).invalidated()
        assert_allclose(ray.propagated(10.0).position, [0.0, 0.0, 0.0])

    def test_zero_direction_rejected(self):
        with pytest.raises(ValueError):
            Ray.new((0.0, 0.0, 0.0), (0.0, 0.0, 0.0), wavelength=1.0, energy=1.0)

    def test_negative_energy_rejected(self):
        with pytest.raises(ValueError):
            Ray.new((0.0, 0.0, 0.0), (0.0, 0.0, 1.0), wavelength=1.0, energy=-1.0)

    def test_with_energy_returns_new_ray(self):
        ray = Ray.new((0.0, 0.0, 0.0), (0.0, 0.0, 1.0), wavelength=1.0, energy=1.0)
        dimmed = ray.with_energy(0.25)
        assert dimmed.energy == pytest.approx(0.25)
        assert ray.energy == pytest.approx(1.0)
        assert_allclose(dimmed.position, ray.position)


class TestRayBundleConstruction:
    """光线束构造测试"""

    def test_collimated_bundle(self):
        bundle = _bundle()
        assert bundle.nr_of_rays == 37
        assert bundle.nr_of_valid_rays == 37
        assert bundle.total_energy() == pytest.approx(1.0)
        assert_allclose(bundle.directions, np.tile([0.0, 0.0, 1.0], (37, 1)))
        assert_allclose(bundle.positions[:, 2], 0.0)

    def test_collimated_bundle_is_placed_by_isometry(self):
        iso = Isometry.new((0.0, 0.0, 5.0), (0.0, np.pi / 2, 0.0))
        bundle = RayBundle.collimated(Hexapolar(1.0, 1), UniformEnergy(1.0), 1.053, iso=iso)
        assert_allclose(bundle.directions[0], [1.0, 0.0, 0.0], atol=1e-12)
        assert_allclose(bundle.positions[0], [0.0, 0.0, 5.0], atol=1e-12)

    def test_arrays_are_read_only(self):
        bundle = _bundle()
        with pytest.raises(ValueError):
            bundle.positions[0, 0] = 1.0

    def test_caller_arrays_are_not_frozen(self):
        positions = np.zeros((2, 3))
        RayBundle(positions, [[0.0, 0.0, 1.0]] * 2, 1.0, 1.0)
        positions[0, 0] = 1.0

    def test_shape_mismatch_rejected(self):
        with pytest.raises(ValueError):
            RayBundle(np.zeros((2, 3)), np.zeros((3, 3)) + [0.0, 0.0, 1.0], 1.0, 1.0)

    def test_non_positive_wavelength_rejected(self):
        with pytest.raises(ValueError):
            RayBundle(np.zeros((1, 3)), [[0.0, 0.0, 1.0]], 0.0, 1.0)

    def test_from_rays_round_trip_of_attributes(self):
        rays = [
            Ray.new((0.0, 0.0, 0.0), (0.0, 0.0, 1.0), wavelength=1.0, energy=0.5),
            Ray.new((1.0, 0.0, 0.0), (0.0, 0.0, 1.0), wavelength=2.0, energy=0.25),
        ]
        bundle = RayBundle.from_rays(rays)
        assert bundle.nr_of_rays == 2
        assert bundle[1].wavelength == pytest.approx(2.0)
        assert bundle.total_energy() == pytest.approx(0.75)

    def test_point_source_energy(self):
        bundle = RayBundle.point_source(0.2, 2.0, 0.532, nr_of_rings=4)
        assert bundle.total_energy() == pytest.approx(2.0)
        assert_allclose(bundle.positions, 0.0)
        assert np.all(bundle.directions[:, 2] > np.cos(0.1) - 1e-12)

    def test_point_source_rejects_invalid_cone(self):
        with pytest.raises(ValueError):
            RayBundle.point_source(np.pi, 1.0, 1.0)

    def test_concatenate_keeps_order(self):
        a = _bundle(rings=1)
        b = _bundle(rings=2)
        merged = RayBundle.concatenate([a, b])
        assert merged.nr_of_rays == a.nr_of_rays + b.nr_of_rays
        assert_allclose(merged.positions[: a.nr_of_rays], a.positions)


class TestRayBundlePropagation:
    """传播与几何操作测试"""

    def test_propagate(self):
        bundle = _bundle().propagate(10.0)
        assert_allclose(bundle.positions[:, 2], 10.0)
        assert_allclose(bundle.path_lengths, 10.0)
        assert bundle.position_histories()[0].shape == (2, 3)

    def test_propagate_to_plane(self):
        plane = OpticSurface("p", Plane(), Isometry.along_z(25.0))
        bundle = _bundle().propagate_to_surface(plane)
        assert_allclose(bundle.positions[:, 2], 25.0)
        assert bundle.nr_of_valid_rays == 37

    def test_rays_missing_surface_are_invalidated(self):
        # 平面在光线后方
        plane = OpticSurface("p", Plane(), Isometry.along_z(-25.0))
        bundle = _bundle().propagate_to_surface(plane)
        assert bundle.nr_of_valid_rays == 0
        assert bundle.nr_of_rays == 37

    def test_paraxial_lens_focuses_collimated_beam(self):
        bundle = _bundle().refract_paraxial(100.0)
        focus = OpticSurface("focus", Plane(), Isometry.along_z(100.0))
        at_focus = bundle.propagate_to_surface(focus)
        assert_allclose(at_focus.positions[:, :2], 0.0, atol=1e-9)

    def test_paraxial_rejects_zero_focal_length(self):
        with pytest.raises(ValueError):
            _bundle().refract_paraxial(0.0)

    def test_refraction_at_normal_incidence(self):
        refracted, reflected = _bundle().refract_on_surface(_glass_plane(5.0))
        assert_allclose(refracted.directions, np.tile([0.0, 0.0, 1.0], (37, 1)), atol=1e-12)
        assert_allclose(refracted.refractive_indices, 1.5)
        assert np.all(refracted.refractions == 1)
        assert reflected.nr_of_valid_rays == 0
        assert refracted.total_energy() == pytest.approx(1.0)

    def test_snell_law(self):
        theta = np.deg2rad(30.0)
        bundle = RayBundle([[0.0, 0.0, -1.0]], [[np.sin(theta), 0.0, np.cos(theta)]], 1.0, 1.0)
        refracted, _ = bundle.refract_on_surface(_glass_plane())
        assert refracted.directions[0, 0] == pytest.approx(np.sin(theta) / 1.5)

    def test_coating_reflection_splits_energy(self):
        refracted, reflected = _bundle().refract_on_surface(_glass_plane(coating=ConstantR(0.04)))
        assert refracted.total_energy() == pytest.approx(0.96)
        assert reflected.total_energy() == pytest.approx(0.04)
        assert np.all(reflected.bounces == 1)
        assert_allclose(reflected.directions[:, 2], -1.0)

    def test_total_internal_reflection(self):
        theta = np.deg2rad(60.0)
        bundle = RayBundle(
            [[0.0, 0.0, -1.0]],
            [[np.sin(theta), 0.0, np.cos(theta)]],
            1.0,
            1.0,
            refractive_indices=1.5,
        )
        surface = OpticSurface("exit", Plane(), n_neg=ConstantIndex(1.5), n_pos=AIR)
        refracted, reflected = bundle.refract_on_surface(surface)
        assert refracted.directions[0, 2] == pytest.approx(-np.cos(theta))
        assert refracted.total_energy() == pytest.approx(1.0)
        assert refracted.refractions[0] == 0
        assert reflected.nr_of_valid_rays == 0

    def test_mirror_reflection(self):
        mirror = OpticSurface("m", Plane(), Isometry.along_z(10.0), kind=SurfaceKind.MIRROR)
        reflected = _bundle().reflect_on_surface(mirror, reflectivity=0.9)
        assert_allclose(reflected.directions[:, 2], -1.0)
        assert reflected.total_energy() == pytest.approx(0.9)

    def test_invalid_reflectivity_rejected(self):
        mirror = OpticSurface("m", Plane(), kind=SurfaceKind.MIRROR)
        with pytest.raises(ValueError):
            _bundle().reflect_on_surface(mirror, reflectivity=1.5)


class TestRayBundleEnergy:
    """能量操作测试"""

    def test_split_by_ratio(self):
        transmitted, reflected = _bundle().split(SplittingConfig.ratio(0.3))
        assert transmitted.total_energy() == pytest.approx(0.3)
        assert reflected.total_energy() == pytest.approx(0.7)
        assert_allclose(transmitted.positions, reflected.positions)

    def test_filter_energy(self):
        assert _bundle().filter_energy(0.5).total_energy() == pytest.approx(0.5)

    def test_filter_energy_rejects_invalid_value(self):
        with pytest.raises(ValueError):
            _bundle().filter_energy(1.5)

    def test_invalidate_below_keeps_rays(self):
        bundle = _bundle().invalidate_below(0.1)
        assert bundle.nr_of_rays == 37
        assert bundle.nr_of_valid_rays == 0
        assert bundle.total_energy() == 0.0

    def test_apodize_with_circle(self):
        bundle, clipped = _bundle().apodize(CircleAperture(1.0))
        assert clipped
        # 中心点 + 第一环（半径 2/3 mm）
        assert bundle.nr_of_valid_rays == 7
        assert bundle.total_energy() == pytest.approx(7.0 / 37.0)

    def test_unrestricted_apodization_is_noop(self):
        original = _bundle()
        bundle, clipped = original.apodize(UnrestrictedAperture())
        assert bundle is original
        assert not clipped

    def test_obstruction(self):
        bundle, clipped = _bundle().apodize(CircleAperture(0.1, obstruction=True))
        assert clipped
        assert bundle.nr_of_valid_rays == 36

    def test_to_spectrum_conserves_energy(self):
        spectrum = _bundle(energy=3.0).to_spectrum()
        assert spectrum.total_energy() == pytest.approx(3.0)

    def test_statistics(self):
        bundle = _bundle()
        assert_allclose(bundle.centroid(), [0.0, 0.0, 0.0], atol=1e-12)
        assert bundle.beam_radius_geo() == pytest.approx(2.0)
        assert_allclose(bundle.chief_ray()[1], [0.0, 0.0, 1.0], atol=1e-12)

    def test_statistics_of_empty_bundle(self):
        bundle = _bundle().invalidate_below(1.0)
        assert bundle.centroid() is None
        assert bundle.chief_ray() is None
        assert bundle.to_spectrum() is None

    def test_filter_by_bounces(self):
        _, reflected = _bundle().refract_on_surface(_glass_plane(coating=ConstantR(0.1)))
        assert reflected.filter_by_bounces(1).nr_of_rays == 37
        assert reflected.filter_by_bounces(0).nr_of_rays == 0

    def test_filter_by_refractions(self):
        refracted, _ = _bundle().refract_on_surface(_glass_plane(5.0))
        assert refracted.filter_by_refractions(1).nr_of_rays == 37
        assert refracted.filter_by_refractions(0).nr_of_rays == 0
        assert _bundle().filter_by_refractions(0).nr_of_rays == 37

    def test_energy_weighted_statistics(self):
        bundle = RayBundle.from_rays([
            Ray.new((1.0, 0.0, 0.0), (0.0, 0.0, 1.0), wavelength=1.0, energy=3.0),
            Ray.new((-1.0, 0.0, 0.0), (0.0, 0.0, 1.0), wavelength=1.0, energy=1.0),
        ])
        assert_allclose(bundle.energy_weighted_centroid(), [0.5, 0.0, 0.0], atol=1e-12)
        assert bundle.beam_radius_rms() == pytest.approx(1.0)
        # (3·0.25 + 1·2.25) / 4
        assert bundle.energy_weighted_beam_radius_rms() == pytest.approx(np.sqrt(0.75))
        assert bundle.to_dict()["energy_weighted_beam_radius_rms_mm"] == pytest.approx(np.sqrt(0.75))

    def test_merge_keeps_wavelengths(self):
        red = RayBundle.collimated(Hexapolar(1.0, 1), UniformEnergy(1.0), 1.053)
        green = RayBundle.collimated(Hexapolar(1.0, 1), UniformEnergy(0.5), 0.527)
        merged = red.merge(green)
        assert merged.nr_of_rays == red.nr_of_rays + green.nr_of_rays
        assert_allclose(merged.unique_wavelengths(), [0.527, 1.053])
        assert merged.wavelength_range() == pytest.approx((0.527, 1.053))
        assert merged.central_wavelength() == pytest.approx((1.053 * 1.0 + 0.527 * 0.5) / 1.5)
        assert_allclose(merged.wavelengths[: red.nr_of_rays], 1.053)

    def test_central_wavelength_of_empty_bundle(self):
        assert _bundle().invalidate_below(1.0).central_wavelength() is None

    def test_total_energy_does_not_depend_on_ray_order(self):
        energies = [1e16, 1.0, 1.0]
        rays = [
            Ray.new((float(i), 0.0, 0.0), (0.0, 0.0, 1.0), wavelength=1.0, energy=e)
            for i, e in enumerate(energies)
        ]
        forward = RayBundle.from_rays(rays).total_energy()
        backward = RayBundle.from_rays(rays[::-1]).total_energy()
        assert forward == backward == 1e16 + 2.0
