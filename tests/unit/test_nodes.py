# -*- coding: utf-8 -*-
"""
光学节点单元测试

覆盖节点构建校验、端口与反转、能量分析以及单节点光线追迹。
"""

import numpy as np
import pytest
from numpy.testing import assert_allclose

from optic_graph import (
    AnalysisContext,
    AnalysisError,
    AnalyzerKind,
    ApodizationWarning,
    BeamSplitter,
    BuildError,
    CircleAperture,
    ConstantR,
    CylindricLens,
    Dummy,
    EnergyMeter,
    IdealFilter,
    Isometry,
    Lens,
    LightData,
    LightDataTypeError,
    ParabolicMirror,
    ParaxialSurface,
    PortConnectionError,
    ReflectiveGrating,
    Source,
    Spectrometer,
    Spectrum,
    SplittingConfig,
    ThinMirror,
    WavefrontMonitor,
    Wedge,
)
from optic_graph.distributions import Hexapolar, UniformEnergy
from optic_graph.rays import RayBundle
from optic_graph.surfaces import Cylinder, OpticSurface, Plane, Sphere


def _spectral(energy: float) -> LightData:
    return LightData.spectral(Spectrum.from_laser_lines([(1.053, energy)]))


def _beam(radius: float = 2.0, rings: int = 3) -> LightData:
    return LightData.geometric(
        RayBundle.collimated(Hexapolar(radius, rings), UniformEnergy(1.0), 1.053)
    )


class TestNodeConstruction:
    """构建阶段参数校验"""

    def test_empty_name_rejected(self):
        with pytest.raises(BuildError):
            Dummy("")

    def test_lens_zero_curvature_rejected(self):
        with pytest.raises(BuildError):
            Lens("L", front_curvature=0.0)

    def test_lens_negative_thickness_rejected(self):
        with pytest.raises(BuildError):
            Lens("L", center_thickness=-1.0)

    def test_filter_transmission_range(self):
        with pytest.raises(BuildError):
            IdealFilter("F", 1.5)
        with pytest.raises(BuildError):
            IdealFilter("F", Spectrum([1.0, 1.1], [0.5, 2.0]))

    def test_mirror_reflectivity_range(self):
        with pytest.raises(BuildError):
            ThinMirror("M", reflectivity=1.2)

    def test_mirror_zero_curvature_rejected(self):
        with pytest.raises(BuildError):
            ThinMirror("M", curvature=0.0)

    def test_mirror_base_needs_geometry(self):
        from optic_graph.nodes.mirror import _Mirror

        with pytest.raises(TypeError):
            _Mirror("M")

    def test_parabolic_mirror_needs_finite_focal_length(self):
        with pytest.raises(BuildError):
            ParabolicMirror("P", focal_length=np.inf)

    def test_wedge_angle_range(self):
        with pytest.raises(BuildError):
            Wedge("W", wedge_angle=np.pi / 2)

    def test_paraxial_zero_focal_length_rejected(self):
        with pytest.raises(BuildError):
            ParaxialSurface("P", focal_length=0.0)

    def test_spectrometer_resolution(self):
        with pytest.raises(BuildError):
            Spectrometer("S", resolution=0.0)

    def test_beam_splitter_config_type(self):
        with pytest.raises(BuildError):
            BeamSplitter("BS", 0.5)

    def test_set_aperture_on_unknown_port(self):
        with pytest.raises(PortConnectionError):
            Dummy("d").set_aperture("input_7", CircleAperture(1.0))


class TestPortsAndInversion:
    """端口拓扑与反转"""

    def test_source_and_detector_roles(self, collimated_source):
        meter = EnergyMeter("meter")
        assert collimated_source.is_source()
        assert not collimated_source.is_detector()
        assert meter.is_detector()
        assert not meter.is_source()

    def test_source_and_detector_not_invertible(self, collimated_source):
        with pytest.raises(BuildError):
            collimated_source.invert()
        with pytest.raises(BuildError):
            EnergyMeter("meter").invert()

    def test_invert_returns_new_node(self):
        lens = Lens("L", 100.0, -50.0, 5.0)
        inverted = lens.invert()
        assert inverted.inverted
        assert not lens.inverted
        assert inverted.uuid != lens.uuid
        assert inverted.name == lens.name
        assert inverted.ports().input_names() == ["output_1"]
        assert inverted.invert().inverted is False

    def test_inverted_lens_surfaces_are_mirrored(self):
        lens = Lens("L", 100.0, -50.0, 5.0)
        front, rear = lens.surfaces(inverted=True)
        assert front.geometry == Sphere(50.0)
        assert rear.geometry == Sphere(-100.0)
        assert_allclose(rear.isometry.position, [0.0, 0.0, 5.0])

    def test_flat_lens_surfaces_are_planes(self):
        front, rear = Lens("window").surfaces()
        assert isinstance(front.geometry, Plane)
        assert isinstance(rear.geometry, Plane)

    def test_placed_surfaces_follow_isometry(self):
        lens = Lens("L", center_thickness=5.0).set_isometry(Isometry.along_z(50.0))
        front, rear = lens.surfaces()
        assert_allclose(front.isometry.position, [0.0, 0.0, 50.0])
        assert_allclose(rear.isometry.position, [0.0, 0.0, 55.0])

    def test_beam_splitter_ports(self):
        ports = BeamSplitter("BS").ports()
        assert ports.input_names() == ["input_1", "input_2"]
        assert ports.output_names() == ["out1_trans1_refl2", "out2_trans2_refl1"]


class TestEnergyAnalysis:
    """能量分析"""

    def test_source_emits_spectrum(self, collimated_source):
        outputs = collimated_source.analyze({}, AnalyzerKind.ENERGY)
        assert outputs["output_1"].is_spectral
        assert outputs["output_1"].total_energy() == pytest.approx(1.0)

    def test_filter_scales_energy(self):
        outputs = IdealFilter("ND", 0.1).analyze({"input_1": _spectral(1.0)}, AnalyzerKind.ENERGY)
        assert outputs["output_1"].total_energy() == pytest.approx(0.1)

    def test_inverted_filter_uses_swapped_ports(self):
        outputs = IdealFilter("ND", 0.5).analyze(
            {"output_1": _spectral(1.0)}, AnalyzerKind.ENERGY, inverted=True
        )
        assert list(outputs) == ["input_1"]
        assert outputs["input_1"].total_energy() == pytest.approx(0.5)

    def test_mirror_scales_energy(self):
        outputs = ThinMirror("M", reflectivity=0.9).analyze({"input_1": _spectral(2.0)}, AnalyzerKind.ENERGY)
        assert outputs["output_1"].total_energy() == pytest.approx(1.8)

    def test_beam_splitter_single_input(self):
        bs = BeamSplitter("BS", SplittingConfig.ratio(0.3))
        outputs = bs.analyze({"input_1": _spectral(1.0)}, AnalyzerKind.ENERGY)
        assert outputs["out1_trans1_refl2"].total_energy() == pytest.approx(0.3)
        assert outputs["out2_trans2_refl1"].total_energy() == pytest.approx(0.7)

    def test_beam_splitter_combines_both_inputs(self):
        bs = BeamSplitter("BS", SplittingConfig.ratio(0.3))
        outputs = bs.analyze(
            {"input_1": _spectral(1.0), "input_2": _spectral(2.0)}, AnalyzerKind.ENERGY
        )
        assert outputs["out1_trans1_refl2"].total_energy() == pytest.approx(0.3 + 0.7 * 2.0)
        assert outputs["out2_trans2_refl1"].total_energy() == pytest.approx(0.3 * 2.0 + 0.7)

    def test_inverted_beam_splitter(self):
        bs = BeamSplitter("BS", SplittingConfig.ratio(0.3))
        outputs = bs.analyze(
            {"out1_trans1_refl2": _spectral(1.0)}, AnalyzerKind.ENERGY, inverted=True
        )
        assert outputs["input_1"].total_energy() == pytest.approx(0.3)
        assert outputs["input_2"].total_energy() == pytest.approx(0.7)

    def test_spectral_beam_splitter(self):
        curve = Spectrum.transmission([0.5, 0.8, 0.81, 1.2], [1.0, 1.0, 0.0, 0.0])
        bs = BeamSplitter("dichroic", SplittingConfig.spectrum(curve))
        light = LightData.spectral(Spectrum.from_laser_lines([(0.532, 1.0), (1.053, 1.0)]))
        outputs = bs.analyze({"input_1": light}, AnalyzerKind.ENERGY)
        assert outputs["out1_trans1_refl2"].total_energy() == pytest.approx(1.0, rel=1e-6)
        assert outputs["out2_trans2_refl1"].total_energy() == pytest.approx(1.0, rel=1e-6)

    def test_meter_records_energy(self):
        meter = EnergyMeter("meter")
        ctx = AnalysisContext(AnalyzerKind.ENERGY)
        assert meter.analyze({"input_1": _spectral(0.25)}, AnalyzerKind.ENERGY, ctx) == {}
        assert ctx.records[meter.uuid][0].light.total_energy() == pytest.approx(0.25)

    def test_unknown_input_port(self):
        with pytest.raises(PortConnectionError):
            Dummy("d").analyze({"input_2": _spectral(1.0)}, AnalyzerKind.ENERGY)

    def test_output_port_is_not_an_input(self):
        with pytest.raises(PortConnectionError):
            Dummy("d").analyze({"output_1": _spectral(1.0)}, AnalyzerKind.ENERGY)

    def test_geometric_light_in_energy_analysis(self):
        with pytest.raises(LightDataTypeError):
            Dummy("d").analyze({"input_1": _beam()}, AnalyzerKind.ENERGY)

    def test_require_all_inputs(self):
        bs = BeamSplitter("BS")
        bs.require_all_inputs = True
        with pytest.raises(AnalysisError):
            bs.analyze({"input_1": _spectral(1.0)}, AnalyzerKind.ENERGY)

    def test_missing_input_gives_no_output(self):
        assert Lens("L").analyze({}, AnalyzerKind.ENERGY) == {}


class TestRayTracing:
    """单节点光线追迹"""

    def test_spectral_source_in_ray_trace(self):
        source = Source.spectral("lamp", Spectrum.from_laser_lines([(1.053, 1.0)]))
        with pytest.raises(LightDataTypeError):
            source.analyze({}, AnalyzerKind.RAY_TRACE)

    def test_spectral_light_in_ray_trace(self):
        with pytest.raises(LightDataTypeError):
            Dummy("d").analyze({"input_1": _spectral(1.0)}, AnalyzerKind.RAY_TRACE)

    def test_source_placement(self):
        source = Source.collimated(
            "S", Hexapolar(1.0, 2), UniformEnergy(1.0), 1.053, iso=Isometry.along_z(-5.0)
        )
        bundle = source.analyze({}, AnalyzerKind.RAY_TRACE)["output_1"].bundle
        assert_allclose(bundle.positions[:, 2], -5.0)

    def test_dummy_aperture_clips_and_warns(self):
        dummy = Dummy("iris").set_aperture("input_1", CircleAperture(1.0))
        ctx = AnalysisContext(AnalyzerKind.RAY_TRACE)
        bundle = dummy.analyze({"input_1": _beam()}, AnalyzerKind.RAY_TRACE, ctx)["output_1"].bundle
        assert bundle.nr_of_rays == 37
        assert bundle.nr_of_valid_rays == 7
        assert bundle.total_energy() == pytest.approx(7.0 / 37.0)
        assert [w.category for w in ctx.warnings] == [ApodizationWarning]

    def test_filter_attenuates_rays(self):
        outputs = IdealFilter("ND", 0.25).analyze(
            {"input_1": _beam()}, AnalyzerKind.RAY_TRACE, iso=Isometry.along_z(10.0)
        )
        bundle = outputs["output_1"].bundle
        assert bundle.total_energy() == pytest.approx(0.25)
        assert_allclose(bundle.positions[:, 2], 10.0)

    def test_plane_mirror_reverses_beam(self):
        outputs = ThinMirror("M").analyze(
            {"input_1": _beam()}, AnalyzerKind.RAY_TRACE, iso=Isometry.along_z(10.0)
        )
        bundle = outputs["output_1"].bundle
        assert_allclose(bundle.directions, np.tile([0.0, 0.0, -1.0], (37, 1)), atol=1e-12)
        assert_allclose(bundle.positions[:, 2], 10.0)

    def test_parabolic_mirror_focuses_at_focal_point(self):
        outputs = ParabolicMirror("P", focal_length=100.0).analyze(
            {"input_1": _beam()}, AnalyzerKind.RAY_TRACE, iso=Isometry.along_z(10.0)
        )
        bundle = outputs["output_1"].bundle
        pos, dirs = bundle.positions, bundle.directions
        rho = np.hypot(pos[:, 0], pos[:, 1])
        off_axis = rho > 1e-6
        # 反射光线在子午面内与光轴的交点
        d_rho = (pos[:, 0] * dirs[:, 0] + pos[:, 1] * dirs[:, 1])[off_axis] / rho[off_axis]
        s = -rho[off_axis] / d_rho
        z_cross = pos[off_axis, 2] + s * dirs[off_axis, 2]
        assert_allclose(z_cross, 10.0 - 100.0, atol=1e-9)

    def test_paraxial_surface_focus(self):
        outputs = ParaxialSurface("f100", 100.0).analyze(
            {"input_1": _beam()}, AnalyzerKind.RAY_TRACE, iso=Isometry.identity()
        )
        focal_plane = OpticSurface("focus", Plane(), Isometry.along_z(100.0))
        focused = outputs["output_1"].bundle.propagate_to_surface(focal_plane)
        assert_allclose(focused.positions[:, :2], 0.0, atol=1e-12)

    def test_lens_converges_and_counts_refractions(self):
        lens = Lens("L", front_curvature=100.0, center_thickness=5.0)
        outputs = lens.analyze({"input_1": _beam()}, AnalyzerKind.RAY_TRACE, iso=Isometry.along_z(10.0))
        bundle = outputs["output_1"].bundle
        assert bundle.nr_of_valid_rays == 37
        assert bundle.total_energy() == pytest.approx(1.0)
        assert np.all(bundle.refractions == 2)
        assert_allclose(bundle.positions[:, 2], 15.0)
        x, dx = bundle.positions[:, 0], bundle.directions[:, 0]
        assert np.all(dx[x > 1e-9] < 0.0)
        assert np.all(dx[x < -1e-9] > 0.0)

    def test_coated_lens_collects_stray_light(self):
        lens = Lens("L", center_thickness=5.0, coating=ConstantR(0.04))
        ctx = AnalysisContext(AnalyzerKind.GHOST_FOCUS)
        outputs = lens.analyze({"input_1": _beam()}, AnalyzerKind.GHOST_FOCUS, ctx, iso=Isometry.along_z(10.0))
        assert outputs["output_1"].bundle.total_energy() == pytest.approx(0.96 ** 2)
        stray = ctx.stray
        assert [record.surface for record in stray] == ["front", "rear"]
        assert stray[0].bundle.total_energy() == pytest.approx(0.04)
        assert stray[1].bundle.total_energy() == pytest.approx(0.04 * 0.96)
        assert np.all(stray[0].bundle.bounces == 1)

    def test_ray_trace_collects_no_stray_light(self):
        lens = Lens("L", center_thickness=5.0, coating=ConstantR(0.04))
        ctx = AnalysisContext(AnalyzerKind.RAY_TRACE)
        lens.analyze({"input_1": _beam()}, AnalyzerKind.RAY_TRACE, ctx, iso=Isometry.along_z(10.0))
        assert ctx.stray == []

    def test_wedge_deflects_parallel_beam(self):
        wedge = Wedge("W", thickness=5.0, wedge_angle=0.1)
        outputs = wedge.analyze({"input_1": _beam()}, AnalyzerKind.RAY_TRACE, iso=Isometry.along_z(10.0))
        dirs = outputs["output_1"].bundle.directions
        assert abs(dirs[0, 1]) > 1e-3
        assert_allclose(dirs, np.tile(dirs[0], (len(dirs), 1)), atol=1e-12)

    def test_low_energy_rays_are_invalidated(self):
        outputs = IdealFilter("ND", 1e-14).analyze(
            {"input_1": _beam()}, AnalyzerKind.RAY_TRACE, iso=Isometry.along_z(1.0)
        )
        assert outputs["output_1"].bundle.nr_of_valid_rays == 0


class TestReport:
    """节点报告"""

    def test_properties(self):
        lens = Lens("L1", 100.0, -100.0, 5.0).set_aperture("input_1", CircleAperture(10.0))
        report = lens.report()
        assert report.node_type == "lens"
        assert report.name == "L1"
        assert report.properties["front_curvature_mm"] == 100.0
        assert "input_1" in report.properties["apertures"]
        assert report.data == {}


class TestCylindricLens:
    """柱面透镜"""

    def test_default_surfaces_are_cylinders(self):
        surfaces = CylindricLens("C").surfaces()
        assert surfaces[0].geometry == Cylinder(500.0)
        assert surfaces[1].geometry == Cylinder(-500.0)
        assert surfaces[1].isometry.position[2] == pytest.approx(10.0)

    def test_inverted_surfaces_are_mirrored(self):
        lens = CylindricLens("C", front_curvature=200.0, rear_curvature=np.inf).invert()
        front, rear = lens.surfaces()
        assert isinstance(front.geometry, Plane)
        assert rear.geometry == Cylinder(-200.0)

    def test_zero_curvature_rejected(self):
        with pytest.raises(BuildError):
            CylindricLens("C", front_curvature=0.0)

    def test_ray_along_cylinder_axis_misses(self):
        t = Cylinder(50.0).intersect_local(np.array([[0.0, 0.0, -1.0]]), np.array([[1.0, 0.0, 0.0]]), -1e-9)
        assert np.isnan(t[0])

    def test_focuses_only_along_y(self):
        lens = CylindricLens("C", front_curvature=100.0, rear_curvature=np.inf, center_thickness=5.0)
        outputs = lens.analyze({"input_1": _beam()}, AnalyzerKind.RAY_TRACE, iso=Isometry.along_z(10.0))
        bundle = outputs["output_1"].bundle
        assert bundle.nr_of_valid_rays == 37
        assert np.all(bundle.refractions == 2)
        assert_allclose(bundle.directions[:, 0], 0.0, atol=1e-12)
        y, dy = bundle.positions[:, 1], bundle.directions[:, 1]
        assert np.all(dy[y > 1e-9] < 0.0)
        assert np.all(dy[y < -1e-9] > 0.0)


class TestReflectiveGrating:
    """反射式光栅"""

    def test_line_density_must_be_positive(self):
        with pytest.raises(BuildError):
            ReflectiveGrating("G", line_density=0.0)

    def test_littrow_round_trip(self):
        grating = ReflectiveGrating("G")
        assert grating.littrow_wavelength(grating.littrow_angle(0.8)) == pytest.approx(0.8)

    def test_no_littrow_configuration(self):
        with pytest.raises(ValueError):
            ReflectiveGrating("G").littrow_angle(2.0)

    def test_littrow_mounting_retroreflects(self):
        grating = ReflectiveGrating("G")
        iso = grating.littrow_isometry((0.0, 0.0, 10.0), 1.053)
        bundle = grating.analyze({"input_1": _beam()}, AnalyzerKind.RAY_TRACE, iso=iso)["output_1"].bundle
        assert bundle.nr_of_valid_rays == 37
        assert_allclose(bundle.directions, np.tile([0.0, 0.0, -1.0], (37, 1)), atol=1e-9)
        assert np.all(bundle.bounces == 0)

    def test_first_order_at_normal_incidence(self):
        grating = ReflectiveGrating("G", line_density=600.0, diffraction_order=1)
        beam = LightData.geometric(RayBundle.collimated(Hexapolar(2.0, 3), UniformEnergy(1.0), 1.0))
        bundle = grating.analyze({"input_1": beam}, AnalyzerKind.RAY_TRACE, iso=Isometry.along_z(10.0))["output_1"].bundle
        assert_allclose(bundle.directions, np.tile([0.6, 0.0, -0.8], (37, 1)), atol=1e-12)
        # 光程随光栅上的位置线性变化
        offset = bundle.path_lengths - 0.6 * bundle.positions[:, 0]
        assert_allclose(offset, offset[0], atol=1e-12)

    def test_evanescent_order_is_invalidated(self):
        outputs = ReflectiveGrating("G").analyze(
            {"input_1": _beam()}, AnalyzerKind.RAY_TRACE, iso=Isometry.along_z(10.0)
        )
        assert outputs["output_1"].bundle.nr_of_valid_rays == 0

    def test_zero_order_acts_as_mirror(self):
        outputs = ReflectiveGrating("G", diffraction_order=0).analyze(
            {"input_1": _beam()}, AnalyzerKind.RAY_TRACE, iso=Isometry.along_z(10.0)
        )
        assert_allclose(outputs["output_1"].bundle.directions, np.tile([0.0, 0.0, -1.0], (37, 1)), atol=1e-12)

    def test_energy_passes_through(self):
        outputs = ReflectiveGrating("G").analyze({"input_1": _spectral(0.7)}, AnalyzerKind.ENERGY)
        assert outputs["output_1"].total_energy() == pytest.approx(0.7)


class TestWavefrontMonitor:
    """波前监视器"""

    def test_monitor_is_not_a_detector(self):
        monitor = WavefrontMonitor("W")
        assert not monitor.is_detector()
        assert monitor.monitor

    def test_energy_recorded_and_passed_on(self):
        monitor = WavefrontMonitor("W")
        ctx = AnalysisContext(AnalyzerKind.ENERGY)
        outputs = monitor.analyze({"input_1": _spectral(0.5)}, AnalyzerKind.ENERGY, ctx)
        assert outputs["output_1"].total_energy() == pytest.approx(0.5)
        assert ctx.records[monitor.uuid][0].light.total_energy() == pytest.approx(0.5)

    def test_flat_wavefront_of_collimated_beam(self):
        monitor = WavefrontMonitor("W")
        ctx = AnalysisContext(AnalyzerKind.RAY_TRACE)
        outputs = monitor.analyze({"input_1": _beam()}, AnalyzerKind.RAY_TRACE, ctx, iso=Isometry.along_z(10.0))
        assert_allclose(outputs["output_1"].bundle.positions[:, 2], 10.0)
        record = ctx.records[monitor.uuid][0]
        (wavefront,) = monitor.wavefront(record)
        assert wavefront.wavelength == pytest.approx(1.053)
        assert wavefront.ptv == pytest.approx(0.0, abs=1e-9)
        assert monitor.report(record).data["maps"][0]["rms_waves"] == pytest.approx(0.0, abs=1e-9)

    def test_focused_beam_has_curved_wavefront(self):
        focused = ParaxialSurface("f100", 100.0).analyze(
            {"input_1": _beam()}, AnalyzerKind.RAY_TRACE, iso=Isometry.identity()
        )
        monitor = WavefrontMonitor("W")
        ctx = AnalysisContext(AnalyzerKind.RAY_TRACE)
        monitor.analyze({"input_1": focused["output_1"]}, AnalyzerKind.RAY_TRACE, ctx, iso=Isometry.along_z(50.0))
        (wavefront,) = monitor.wavefront(ctx.records[monitor.uuid][0])
        assert wavefront.ptv > 0.0
        assert 0.0 < wavefront.rms < wavefront.ptv

    def test_spectral_record_reports_energy_only(self):
        monitor = WavefrontMonitor("W")
        ctx = AnalysisContext(AnalyzerKind.ENERGY)
        monitor.analyze({"input_1": _spectral(0.5)}, AnalyzerKind.ENERGY, ctx)
        data = monitor.report(ctx.records[monitor.uuid][0]).data
        assert data["total_energy_J"] == pytest.approx(0.5)
        assert "maps" not in data
