# -*- coding: utf-8 -*-
"""
光学图单元测试

覆盖连接规则、拓扑排序、孤立子图检查以及序列传播中的错误归属。
"""

import warnings

import pytest
from numpy.testing import assert_allclose

from optic_graph import (
    AnalysisError,
    AnalyzerKind,
    BeamSplitter,
    BuildError,
    DisconnectedIslandError,
    Dummy,
    EnergyMeter,
    IdealFilter,
    Lens,
    NodeGroup,
    OpticGraph,
    PortConnectionError,
    SequentialAnalyzer,
    Source,
    Spectrum,
    SplittingConfig,
    StaleNodeWarning,
    UnconnectedSubgraphWarning,
)


def _chain(*nodes):
    """依次连接 input_1 / output_1 的直线光路"""
    g = OpticGraph()
    indices = [g.add_node(node) for node in nodes]
    for a, b in zip(indices, indices[1:]):
        g.connect_nodes(a, "output_1", b, "input_1", 10.0)
    return g, indices


class TestConnections:
    """连接规则"""

    def test_add_node_returns_index(self):
        g = OpticGraph()
        assert g.add_node(Dummy("a")) == 0
        assert g.add_node(Dummy("b")) == 1
        assert len(g) == 2

    def test_same_node_twice(self):
        g = OpticGraph()
        node = Dummy("a")
        g.add_node(node)
        with pytest.raises(BuildError):
            g.add_node(node)

    def test_add_non_node(self):
        with pytest.raises(BuildError):
            OpticGraph().add_node("lens")

    def test_unknown_index(self):
        with pytest.raises(BuildError):
            OpticGraph().node(3)

    def test_port_connected_once(self, collimated_source):
        g = OpticGraph()
        s = g.add_node(collimated_source)
        a = g.add_node(Dummy("a"))
        b = g.add_node(Dummy("b"))
        g.connect_nodes(s, "output_1", a, "input_1", 10.0)
        with pytest.raises(PortConnectionError):
            g.connect_nodes(s, "output_1", b, "input_1", 10.0)
        g.disconnect_nodes(s, "output_1")
        edge = g.connect_nodes(s, "output_1", b, "input_1", 10.0)
        assert (edge.src, edge.dst) == (s, b)
        assert len(g.edges) == 1

    def test_input_port_connected_once(self):
        g = OpticGraph()
        a = g.add_node(Dummy("a"))
        b = g.add_node(Dummy("b"))
        c = g.add_node(Dummy("c"))
        g.connect_nodes(a, "output_1", c, "input_1")
        with pytest.raises(PortConnectionError):
            g.connect_nodes(b, "output_1", c, "input_1")

    def test_direction_must_match(self):
        g = OpticGraph()
        a = g.add_node(Dummy("a"))
        b = g.add_node(Dummy("b"))
        with pytest.raises(PortConnectionError):
            g.connect_nodes(a, "input_1", b, "input_1")
        with pytest.raises(PortConnectionError):
            g.connect_nodes(a, "output_1", b, "output_1")

    def test_unknown_port(self):
        g = OpticGraph()
        a = g.add_node(Dummy("a"))
        b = g.add_node(Dummy("b"))
        with pytest.raises(PortConnectionError):
            g.connect_nodes(a, "output_2", b, "input_1")

    def test_self_connection(self):
        g = OpticGraph()
        a = g.add_node(Dummy("a"))
        with pytest.raises(BuildError):
            g.connect_nodes(a, "output_1", a, "input_1")

    def test_cycle_rejected(self):
        g, (a, b, c) = _chain(Dummy("a"), Dummy("b"), Dummy("c"))
        with pytest.raises(BuildError):
            g.connect_nodes(c, "output_1", a, "input_1")

    def test_invalid_distance(self):
        g = OpticGraph()
        a = g.add_node(Dummy("a"))
        b = g.add_node(Dummy("b"))
        with pytest.raises(BuildError):
            g.connect_nodes(a, "output_1", b, "input_1", -1.0)
        with pytest.raises(BuildError):
            g.connect_nodes(a, "output_1", b, "input_1", float("inf"))

    def test_disconnect_unconnected_port(self):
        g = OpticGraph()
        a = g.add_node(Dummy("a"))
        with pytest.raises(PortConnectionError):
            g.disconnect_nodes(a, "output_1")


class TestTopology:
    """拓扑与一致性检查"""

    def test_topological_order(self, collimated_source):
        g = OpticGraph()
        meter = g.add_node(EnergyMeter("meter"))
        lens = g.add_node(Lens("lens"))
        src = g.add_node(collimated_source)
        g.connect_nodes(src, "output_1", lens, "input_1", 10.0)
        g.connect_nodes(lens, "output_1", meter, "input_1", 10.0)
        assert g.topologically_sorted() == [src, lens, meter]
        assert g.topologically_sorted(inverted=True) == [meter, lens, src]

    def test_islands(self, collimated_source):
        g, _ = _chain(collimated_source, EnergyMeter("meter"))
        x = g.add_node(Dummy("x"))
        y = g.add_node(Dummy("y"))
        g.connect_nodes(x, "output_1", y, "input_1")
        assert g.islands() == [{x, y}]

    def test_connected_graph_has_no_islands(self, collimated_source):
        g, _ = _chain(collimated_source, Dummy("d"), EnergyMeter("meter"))
        assert g.islands() == []

    def test_island_warning(self, collimated_source):
        g, _ = _chain(collimated_source, EnergyMeter("meter"))
        g.add_node(Dummy("lonely"))
        with pytest.warns(UnconnectedSubgraphWarning):
            g.check_consistency()

    def test_island_strict(self, collimated_source):
        g, _ = _chain(collimated_source, EnergyMeter("meter"))
        g.add_node(Dummy("lonely"))
        with pytest.raises(DisconnectedIslandError) as excinfo:
            g.check_consistency(strict=True)
        assert excinfo.value.node_name == "lonely"

    def test_parallel_paths_in_group_are_not_islands(self, collimated_source):
        group = NodeGroup("parallel")
        a = group.add_node(Dummy("a"))
        b = group.add_node(Dummy("b"))
        group.map_input_port(a, "input_1", "in1")
        group.map_output_port(a, "output_1", "out1")
        group.map_input_port(b, "input_1", "in2")
        group.map_output_port(b, "output_1", "out2")
        assert group.graph.islands() == []

        g = OpticGraph()
        src = g.add_node(collimated_source)
        bs = g.add_node(BeamSplitter("BS", SplittingConfig.ratio(0.4)))
        grp = g.add_node(group)
        m1 = g.add_node(EnergyMeter("m1"))
        m2 = g.add_node(EnergyMeter("m2"))
        g.connect_nodes(src, "output_1", bs, "input_1", 10.0)
        g.connect_nodes(bs, "out1_trans1_refl2", grp, "in1", 10.0)
        g.connect_nodes(bs, "out2_trans2_refl1", grp, "in2", 10.0)
        g.connect_nodes(grp, "out1", m1, "input_1", 10.0)
        g.connect_nodes(grp, "out2", m2, "input_1", 10.0)
        result = SequentialAnalyzer(AnalyzerKind.ENERGY).analyze(g, strict=True)
        assert result.light(g.node(m1)).total_energy() == pytest.approx(0.4)
        assert result.light(g.node(m2)).total_energy() == pytest.approx(0.6)

    def test_unmapped_node_in_group_is_island(self):
        group = NodeGroup("bench")
        a = group.add_node(Dummy("a"))
        stray = group.add_node(Dummy("stray"))
        group.map_input_port(a, "input_1", "in")
        group.map_output_port(a, "output_1", "out")
        assert group.graph.islands() == [{stray}]

    def test_find_node_recursive(self, collimated_source):
        g, _ = _chain(collimated_source, EnergyMeter("meter"))
        assert g.find_node_recursive(collimated_source.uuid) is collimated_source
        assert g.find_node_recursive("missing") is None


class TestPropagation:
    """序列传播"""

    def test_energy_through_beam_splitter(self, collimated_source):
        g = OpticGraph()
        src = g.add_node(collimated_source)
        bs = g.add_node(BeamSplitter("BS", SplittingConfig.ratio(0.5)))
        m1 = g.add_node(EnergyMeter("m1"))
        m2 = g.add_node(EnergyMeter("m2"))
        g.connect_nodes(src, "output_1", bs, "input_1", 10.0)
        g.connect_nodes(bs, "out1_trans1_refl2", m1, "input_1", 20.0)
        g.connect_nodes(bs, "out2_trans2_refl1", m2, "input_1", 30.0)
        result = SequentialAnalyzer(AnalyzerKind.ENERGY).analyze(g)
        assert result.light(g.node(m1)).total_energy() == pytest.approx(0.5)
        assert result.light(g.node(m2)).total_energy() == pytest.approx(0.5)
        assert result.summary["detected_energy_J"] == pytest.approx(1.0)

    def test_edges_carry_last_light(self, collimated_source):
        g, _ = _chain(collimated_source, Dummy("d"), EnergyMeter("meter"))
        SequentialAnalyzer(AnalyzerKind.ENERGY).analyze(g)
        assert all(edge.light is not None and edge.light.is_spectral for edge in g.edges)

    def test_unplaced_nodes_follow_the_beam(self, collimated_source):
        g = OpticGraph()
        src = g.add_node(collimated_source)
        d = g.add_node(Dummy("d"))
        m = g.add_node(EnergyMeter("meter"))
        g.connect_nodes(src, "output_1", d, "input_1", 50.0)
        g.connect_nodes(d, "output_1", m, "input_1", 150.0)
        result = SequentialAnalyzer(AnalyzerKind.RAY_TRACE).analyze(g)
        assert_allclose(result.placement(g.node(d)).position, [0.0, 0.0, 50.0], atol=1e-12)
        assert_allclose(result.placement(g.node(m)).position, [0.0, 0.0, 200.0], atol=1e-12)
        assert_allclose(result.bundle(g.node(m)).positions[:, 2], 200.0)

    def test_failure_is_attributed_to_node_and_upstream_chain(self, collimated_source):
        g = OpticGraph()
        src = g.add_node(collimated_source)
        nd = g.add_node(IdealFilter("F", 0.5))
        bs = g.add_node(BeamSplitter("BS"))
        m = g.add_node(EnergyMeter("meter"))
        g.connect_nodes(src, "output_1", nd, "input_1", 10.0)
        g.connect_nodes(nd, "output_1", bs, "input_1", 10.0)
        g.connect_nodes(bs, "out1_trans1_refl2", m, "input_1", 10.0)
        g.node(bs).require_all_inputs = True
        with pytest.raises(AnalysisError) as excinfo:
            SequentialAnalyzer(AnalyzerKind.ENERGY).analyze(g)
        err = excinfo.value
        assert err.node_name == "BS"
        assert err.node_id == g.node(bs).uuid
        assert len(err.provenance) == 2
        assert err.provenance[0].startswith("'Laser'")
        assert ":output_1 -> 'F'" in err.provenance[0]
        assert err.provenance[1].startswith("'F'")
        assert ":output_1 -> 'BS'" in err.provenance[1]
        assert all("meter" not in line for line in err.provenance)

    def test_provenance_of_source_is_empty(self):
        g = OpticGraph()
        src = g.add_node(Source.spectral("lamp", Spectrum.from_laser_lines([(1.053, 1.0)])))
        m = g.add_node(EnergyMeter("meter"))
        g.connect_nodes(src, "output_1", m, "input_1", 10.0)
        with pytest.raises(AnalysisError) as excinfo:
            SequentialAnalyzer(AnalyzerKind.RAY_TRACE).analyze(g)
        assert excinfo.value.node_name == "lamp"
        assert excinfo.value.provenance == []

    def test_lonely_node_warned_once(self, collimated_source):
        g, _ = _chain(collimated_source, EnergyMeter("meter"))
        g.add_node(Dummy("lonely"))
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always")
            SequentialAnalyzer(AnalyzerKind.ENERGY).analyze(g)
        categories = [w.category for w in caught]
        assert categories == [UnconnectedSubgraphWarning]

    def test_stale_node_warning(self, collimated_source):
        # 光源自身未连接，而另一段光路与之不连通
        g = OpticGraph()
        g.add_node(collimated_source)
        d = g.add_node(Dummy("d"))
        m = g.add_node(EnergyMeter("meter"))
        g.connect_nodes(d, "output_1", m, "input_1", 10.0)
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always")
            SequentialAnalyzer(AnalyzerKind.ENERGY).analyze(g)
        categories = [w.category for w in caught]
        assert len(categories) == 2
        assert set(categories) == {StaleNodeWarning, UnconnectedSubgraphWarning}

    def test_no_warnings_for_connected_graph(self, collimated_source):
        g, _ = _chain(collimated_source, Dummy("d"), EnergyMeter("meter"))
        with warnings.catch_warnings():
            warnings.simplefilter("error")
            SequentialAnalyzer(AnalyzerKind.ENERGY).analyze(g)

    def test_detector_subset(self, collimated_source):
        g = OpticGraph()
        src = g.add_node(collimated_source)
        bs = g.add_node(BeamSplitter("BS"))
        m1 = g.add_node(EnergyMeter("m1"))
        m2 = g.add_node(EnergyMeter("m2"))
        g.connect_nodes(src, "output_1", bs, "input_1", 10.0)
        g.connect_nodes(bs, "out1_trans1_refl2", m1, "input_1", 10.0)
        g.connect_nodes(bs, "out2_trans2_refl1", m2, "input_1", 10.0)
        result = SequentialAnalyzer(AnalyzerKind.ENERGY).analyze(g, detectors=[g.node(m1)])
        assert result.light(g.node(m1)) is not None
        assert result.light(g.node(m2)) is None

    def test_detector_subset_with_foreign_node(self, collimated_source):
        g, _ = _chain(collimated_source, EnergyMeter("meter"))
        with pytest.raises(BuildError):
            SequentialAnalyzer(AnalyzerKind.ENERGY).analyze(g, detectors=[EnergyMeter("other")])

    def test_parallel_layers_match_serial(self, collimated_source):
        g = OpticGraph()
        src = g.add_node(collimated_source)
        bs = g.add_node(BeamSplitter("BS", SplittingConfig.ratio(0.2)))
        m1 = g.add_node(EnergyMeter("m1"))
        m2 = g.add_node(EnergyMeter("m2"))
        g.connect_nodes(src, "output_1", bs, "input_1", 10.0)
        g.connect_nodes(bs, "out1_trans1_refl2", m1, "input_1", 10.0)
        g.connect_nodes(bs, "out2_trans2_refl1", m2, "input_1", 10.0)
        serial = SequentialAnalyzer(AnalyzerKind.RAY_TRACE).analyze(g)
        parallel = SequentialAnalyzer(AnalyzerKind.RAY_TRACE, max_workers=2).analyze(g)
        for m in (m1, m2):
            assert parallel.light(g.node(m)).total_energy() == pytest.approx(
                serial.light(g.node(m)).total_energy()
            )

    def test_invalid_worker_count(self):
        with pytest.raises(ValueError):
            SequentialAnalyzer(max_workers=0)

    def test_verbose_progress(self, collimated_source, capsys):
        g, _ = _chain(collimated_source, EnergyMeter("meter"))
        SequentialAnalyzer(AnalyzerKind.ENERGY, verbose=True).analyze(g)
        assert "meter" in capsys.readouterr().out

    def test_report(self, collimated_source):
        g, (_, m) = _chain(collimated_source, EnergyMeter("meter"))
        report = SequentialAnalyzer(AnalyzerKind.ENERGY).analyze(g).report(g)
        assert report.analysis_kind == "energy"
        assert len(report.nodes) == 2
        assert report.node("meter").data["total_energy_J"] == pytest.approx(1.0)
        assert report.to_dict()["nodes"][1]["name"] == "meter"
