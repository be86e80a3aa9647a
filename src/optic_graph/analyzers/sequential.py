"""
序列分析器

沿图的边传播光数据，支持三种分析类型：
- ENERGY: 光谱能量流
- RAY_TRACE: 几何光线追迹
- GHOST_FOCUS: 与 RAY_TRACE 相同的追迹，同时收集各折射面膜层反射
  （反射次数在预算内）的杂散光线束

示例:
    >>> from optic_graph import OpticGraph, Source, EnergyMeter, SequentialAnalyzer, AnalyzerKind
    >>> from optic_graph.distributions import Hexapolar, UniformEnergy
    >>> g = OpticGraph()
    >>> s = g.add_node(Source.collimated("S", Hexapolar(1.0, 3), UniformEnergy(1.0), 1.053))
    >>> d = g.add_node(EnergyMeter("D"))
    >>> edge = g.connect_nodes(s, "output_1", d, "input_1", 100.0)
    >>> result = SequentialAnalyzer(AnalyzerKind.RAY_TRACE).analyze(g)
    >>> round(result.light(g.node(d)).total_energy(), 9)
    1.0
"""

from __future__ import annotations

from typing import List, Optional, Sequence, Union

from ..exceptions import BuildError
from ..utils import kahan_sum
from ..nodes.base import OpticNode
from .base import (
    AnalysisContext,
    AnalysisResult,
    Analyzer,
    AnalyzerKind,
    GhostFocusConfig,
    RayTraceConfig,
)


class SequentialAnalyzer(Analyzer):
    """序列分析器

    参数:
        kind: 分析类型
        config: 光线追迹配置
        ghost_config: 鬼像配置（GHOST_FOCUS 模式下的反射次数预算）
        max_workers: 同一拓扑层内并行分析的线程数，None 表示串行
        verbose: 是否输出进度信息
    """

    def __init__(
        self,
        kind: AnalyzerKind = AnalyzerKind.RAY_TRACE,
        config: Optional[RayTraceConfig] = None,
        ghost_config: Optional[GhostFocusConfig] = None,
        max_workers: Optional[int] = None,
        verbose: bool = False,
    ) -> None:
        super().__init__(max_workers, verbose)
        self.kind = kind
        self.config = config or RayTraceConfig()
        self.ghost_config = ghost_config or GhostFocusConfig()

    @staticmethod
    def _target_index(graph, target: Union[int, OpticNode]) -> int:
        if isinstance(target, OpticNode):
            idx = graph.index_of(target.uuid)
            if idx is None:
                raise BuildError(
                    f"节点 {target.label} 不在被分析的图中",
                    node_id=target.uuid,
                    node_name=target.name,
                )
            return idx
        graph.node(target)
        return int(target)

    def analyze(
        self,
        graph,
        detectors: Optional[Sequence[Union[int, OpticNode]]] = None,
        strict: bool = False,
    ) -> AnalysisResult:
        """运行序列分析

        参数:
            graph: 光学图
            detectors: 只计算这些节点（索引或节点）所需的部分；None 表示所有探测器
            strict: 一致性检查是否把孤立子图视为错误

        返回:
            AnalysisResult

        异常:
            ConsistencyError: 一致性检查失败（悬空引用、严格模式下的孤立子图、引用重入）
            AnalysisError: 节点分析失败
        """
        ctx = AnalysisContext(
            self.kind,
            ray_trace_config=self.config,
            ghost_focus_config=self.ghost_config,
            max_workers=self.max_workers,
            verbose=self.verbose,
        )
        ctx.log("开始{}分析：{}", self.kind.value, graph)
        graph.check_consistency(strict, ctx=ctx)
        targets: Optional[List[int]] = None
        if detectors is not None:
            targets = [self._target_index(graph, d) for d in detectors]
        outputs = graph.propagate(None, self.kind, ctx.nested(graph), targets=targets)

        records = ctx.records
        energies = [history[-1].light.total_energy() for history in records.values() if history]
        summary = {
            "nr_of_detectors": len(records),
            "detected_energy_J": kahan_sum(energies) if energies else 0.0,
            "nr_of_stray_bundles": len(ctx.stray),
            "nr_of_warnings": len(ctx.warnings),
        }
        result = AnalysisResult.from_context(ctx, outputs=outputs, summary=summary)
        ctx.log("分析完成：{} 个探测器，{} 条警告", summary["nr_of_detectors"], summary["nr_of_warnings"])
        ctx.emit_warnings()
        return result
