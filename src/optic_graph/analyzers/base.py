"""
分析器基础定义

分析类型、分析配置与运行上下文定义在 optic_graph.context 中，这里重新导出，
并定义所有分析器共用的 Analyzer 基类与 AnalysisResult 结果对象。
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union

from ..context import (
    AnalysisContext,
    AnalyzerKind,
    CollectedWarning,
    DetectorRecord,
    GhostFocusConfig,
    RayTraceConfig,
    StrayRecord,
)
from ..geometry import Isometry
from ..light import LightData, LightResult
from ..nodes.base import NodeType, OpticNode
from ..rays import RayBundle
from ..report import AnalysisReport, NodeReport

__all__ = [
    "AnalysisContext",
    "AnalyzerKind",
    "CollectedWarning",
    "DetectorRecord",
    "GhostFocusConfig",
    "RayTraceConfig",
    "StrayRecord",
    "AnalysisResult",
    "Analyzer",
]


def _node_report(node: OpticNode, records: Dict[str, List[DetectorRecord]]) -> NodeReport:
    history = records.get(node.uuid)
    report = node.report(history[-1] if history else None)
    if node.node_type is NodeType.GROUP:
        report.children = [_node_report(child, records) for child in node.graph]
    return report


@dataclass
class AnalysisResult:
    """一次分析运行的结果

    属性:
        kind: 分析类型
        records: 探测器 uuid -> 探测器记录列表（引用节点多次经过同一探测器时有多条）
        placements: 节点 uuid -> 本次运行中使用的位置
        warnings: 运行中收集的警告
        stray: 序列鬼像分析收集的膜层反射光线束
        outputs: 顶层图外部输出端口的光数据
        hit_maps: (节点 uuid, 表面名称) -> 击中该表面的光线（非序列分析）
        escaped: 没有击中任何表面而离开系统的光线数（非序列分析）
        terminated: 因反射次数或作用次数超限而终止的光线数（非序列分析）
        summary: 汇总信息
    """

    kind: AnalyzerKind
    records: Dict[str, List[DetectorRecord]] = field(default_factory=dict)
    placements: Dict[str, Isometry] = field(default_factory=dict)
    warnings: List[CollectedWarning] = field(default_factory=list)
    stray: List[StrayRecord] = field(default_factory=list)
    outputs: LightResult = field(default_factory=dict)
    hit_maps: Dict[Tuple[str, str], RayBundle] = field(default_factory=dict)
    escaped: int = 0
    terminated: int = 0
    summary: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_context(cls, ctx: AnalysisContext, **kwargs: Any) -> "AnalysisResult":
        return cls(
            kind=ctx.kind,
            records=ctx.records,
            placements=ctx.placements,
            warnings=ctx.warnings,
            stray=ctx.stray,
            **kwargs,
        )

    @staticmethod
    def _node_id(node: Union[OpticNode, str]) -> str:
        return node if isinstance(node, str) else node.uuid

    def detector(self, node: Union[OpticNode, str]) -> Optional[DetectorRecord]:
        """探测器最后一次记录，未记录时返回 None"""
        history = self.records.get(self._node_id(node))
        return history[-1] if history else None

    def light(self, node: Union[OpticNode, str]) -> Optional[LightData]:
        """探测器最后一次记录的（孔径截断后的）光数据"""
        record = self.detector(node)
        return None if record is None else record.light

    def bundle(self, node: Union[OpticNode, str]) -> Optional[RayBundle]:
        light = self.light(node)
        return light.bundle if light is not None and light.is_geometric else None

    def placement(self, node: Union[OpticNode, str]) -> Optional[Isometry]:
        return self.placements.get(self._node_id(node))

    def warning_messages(self, category: Optional[type] = None) -> List[str]:
        return [w.message for w in self.warnings if category is None or issubclass(w.category, category)]

    def report(self, graph) -> AnalysisReport:
        """生成结构化报告（含组节点内部节点）"""
        return AnalysisReport(
            analysis_kind=self.kind.value,
            nodes=[_node_report(node, self.records) for node in graph],
            warnings=[f"{w.category.__name__}: {w.message}" for w in self.warnings],
            summary=dict(self.summary),
        )


class Analyzer(ABC):
    """分析器基类

    参数:
        max_workers: 线程池大小，None 表示串行
        verbose: 是否输出进度信息
    """

    kind: AnalyzerKind

    def __init__(self, max_workers: Optional[int] = None, verbose: bool = False) -> None:
        if max_workers is not None and max_workers < 1:
            raise ValueError(f"max_workers 必须 >= 1，实际为 {max_workers}")
        self.max_workers = max_workers
        self.verbose = verbose

    @abstractmethod
    def analyze(self, graph) -> AnalysisResult:
        """分析光学图，返回分析结果；收集到的警告在返回前通过 warnings 模块发出"""
