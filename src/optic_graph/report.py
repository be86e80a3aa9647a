"""
结构化报告数据

节点的 report() 以及分析结果的 report() 生成纯数据结构，
供外部的报告生成 / 绘图组件使用（本包不负责渲染 PDF 或 HTML）。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List


@dataclass
class NodeReport:
    """单个节点的报告

    属性:
        node_type: 节点类型名称
        name: 节点名称
        uuid: 节点 uuid
        properties: 节点属性（名称、朝向、位置以及节点特有属性）
        data: 分析结果数据（探测器测量值等），未分析时为空
        children: 组节点内部节点的报告
    """

    node_type: str
    name: str
    uuid: str
    properties: Dict[str, Any] = field(default_factory=dict)
    data: Dict[str, Any] = field(default_factory=dict)
    children: List["NodeReport"] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "node_type": self.node_type,
            "name": self.name,
            "uuid": self.uuid,
            "properties": dict(self.properties),
            "data": dict(self.data),
        }
        if self.children:
            result["children"] = [child.to_dict() for child in self.children]
        return result


@dataclass
class AnalysisReport:
    """一次分析运行的报告"""

    analysis_kind: str
    nodes: List[NodeReport] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    summary: Dict[str, Any] = field(default_factory=dict)

    def node(self, name: str) -> NodeReport:
        """按名称查找节点报告（含组内节点）

        异常:
            KeyError: 未找到该名称的节点
        """
        stack = list(self.nodes)
        while stack:
            report = stack.pop(0)
            if report.name == name:
                return report
            stack.extend(report.children)
        raise KeyError(f"报告中不存在名为 '{name}' 的节点")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "analysis_kind": self.analysis_kind,
            "nodes": [n.to_dict() for n in self.nodes],
            "warnings": list(self.warnings),
            "summary": dict(self.summary),
        }
