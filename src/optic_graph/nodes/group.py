"""
组节点

组节点持有一个嵌套的 OpticGraph，并把内部未连接的端口通过 input_map /
output_map 以外部名称暴露出来。组节点的端口完全由映射推导。

反转组节点时，外部端口的输入输出角色互换，内部图以反转的拓扑顺序传播。
只有当所有被映射的内部节点都可以反转时，反转视图才能解析；否则对反转组
节点进行连接会抛出 BuildError。反转后的组节点不允许再修改内部结构。
"""

from __future__ import annotations

import copy
import uuid as uuid_module
from dataclasses import replace
from typing import Any, Dict, Iterator, List, Optional, Tuple

from ..aperture import Aperture
from ..exceptions import BuildError, PortConnectionError
from ..geometry import Isometry
from ..graph import Edge, OpticGraph
from ..light import LightData, LightResult
from ..ports import OpticPorts, PortDirection
from ..report import NodeReport
from ..surfaces import OpticSurface, Plane
from .base import NodeCall, NodeType, OpticNode


class NodeGroup(OpticNode):
    """组节点

    示例:
        >>> from optic_graph import Dummy
        >>> group = NodeGroup("telescope")
        >>> a = group.add_node(Dummy("a"))
        >>> group.map_input_port(a, "input_1", "in")
        >>> group.ports().input_names()
        ['in']
    """

    node_type = NodeType.GROUP
    default_name = "group"

    def __init__(self, name: Optional[str] = None) -> None:
        self.graph = OpticGraph()
        super().__init__(name)

    def _create_ports(self) -> OpticPorts:
        return OpticPorts()

    # ------------------------------------------------------------------
    # 内部结构
    # ------------------------------------------------------------------

    def _check_editable(self) -> None:
        if self.inverted:
            raise BuildError(
                f"组节点 {self.label} 已反转，不能再修改其内部结构",
                node_id=self.uuid,
                node_name=self.name,
            )

    def add_node(self, node: OpticNode) -> int:
        self._check_editable()
        return self.graph.add_node(node)

    def connect_nodes(
        self,
        src: int,
        src_port: str,
        dst: int,
        dst_port: str,
        distance: float = 0.0,
    ) -> Edge:
        self._check_editable()
        return self.graph.connect_nodes(src, src_port, dst, dst_port, distance)

    def disconnect_nodes(self, src: int, src_port: str) -> Edge:
        self._check_editable()
        return self.graph.disconnect_nodes(src, src_port)

    def map_input_port(self, idx: int, port: str, external_name: str) -> None:
        self._check_editable()
        self.graph.map_input_port(idx, port, external_name)

    def map_output_port(self, idx: int, port: str, external_name: str) -> None:
        self._check_editable()
        self.graph.map_output_port(idx, port, external_name)

    # ------------------------------------------------------------------
    # 端口
    # ------------------------------------------------------------------

    def _mapped(self, external_name: str) -> Tuple[OpticNode, str]:
        target = self.graph.input_map.get(external_name) or self.graph.output_map.get(external_name)
        if target is None:
            raise PortConnectionError(
                f"组节点 {self.label} 没有外部端口 '{external_name}'",
                node_id=self.uuid,
                node_name=self.name,
            )
        idx, port = target
        return self.graph.node(idx), port

    def _base_ports(self) -> OpticPorts:
        ports = OpticPorts()
        for name, (idx, port) in self.graph.input_map.items():
            ports.add(name, PortDirection.INPUT, self.graph.node(idx).port_aperture(port))
        for name, (idx, port) in self.graph.output_map.items():
            ports.add(name, PortDirection.OUTPUT, self.graph.node(idx).port_aperture(port))
        return ports

    def unresolved_nodes(self) -> List[OpticNode]:
        """反转视图下无法反转的被映射内部节点"""
        mapped = [idx for _, (idx, _) in self.graph.input_map.items() + self.graph.output_map.items()]
        return [self.graph.node(idx) for idx in sorted(set(mapped)) if not self.graph.node(idx).invertible]

    def ports(self, inverted: Optional[bool] = None) -> OpticPorts:
        inv = self.inverted if inverted is None else bool(inverted)
        if inv:
            blocking = self.unresolved_nodes()
            if blocking:
                names = ", ".join(node.label for node in blocking)
                raise BuildError(
                    f"组节点 {self.label} 的反转视图无法解析：被映射的内部节点 {names} 不可反转",
                    node_id=self.uuid,
                    node_name=self.name,
                )
        return self._base_ports().view(inv)

    def port_aperture(self, port: str) -> Aperture:
        node, internal = self._mapped(port)
        return node.port_aperture(internal)

    def set_aperture(self, port: str, aperture: Aperture) -> "NodeGroup":
        node, internal = self._mapped(port)
        node.set_aperture(internal, aperture)
        return self

    # ------------------------------------------------------------------
    # 反转
    # ------------------------------------------------------------------

    def _copy(self) -> "NodeGroup":
        clone = copy.deepcopy(self)
        clone._attr = replace(self._attr, uuid=str(uuid_module.uuid4()))
        return clone

    # ------------------------------------------------------------------
    # 分析
    # ------------------------------------------------------------------

    def _propagate(self, inputs: LightResult, call: NodeCall) -> LightResult:
        call.ctx.log("进入组节点 {}", self.label)
        base = None
        if call.kind.is_geometric and call.iso is not None:
            # 光线先到达组节点的入口平面，内部未放置节点从这里开始排布
            entry = OpticSurface("entry", Plane(), call.iso)
            inputs = {
                port: LightData.geometric(data.bundle.propagate_to_surface(entry)) if data.is_geometric else data
                for port, data in inputs.items()
            }
            if self.isometry is not None:
                base = call.iso
        return self.graph.propagate(
            inputs,
            call.kind,
            call.ctx.nested(self.graph),
            inverted=call.inverted,
            base=base,
        )

    def _analyze_energy(self, inputs: LightResult, call: NodeCall) -> LightResult:
        return self._propagate(inputs, call)

    def _analyze_rays(self, inputs: LightResult, call: NodeCall) -> LightResult:
        return self._propagate(inputs, call)

    # ------------------------------------------------------------------
    # 三维表面
    # ------------------------------------------------------------------

    def placed_nodes(
        self,
        inverted: Optional[bool] = None,
        iso: Optional[Isometry] = None,
    ) -> Iterator[Tuple[OpticNode, bool, Optional[Isometry]]]:
        """展开嵌套组，依次给出 (叶节点, 朝向, 位置)

        引用节点被跳过（目标节点已在其所在位置参与光线投射）。
        组节点自身有位置时，内部节点的位置相对组节点；未放置的节点位置为 None。
        """
        inv = self.inverted if inverted is None else bool(inverted)
        base = iso if iso is not None else self.isometry
        for node in self.graph:
            node_inv = node.inverted != inv
            if node.isometry is None:
                placement = None
            elif base is not None:
                placement = base.append(node.isometry)
            else:
                placement = node.isometry
            if node.node_type is NodeType.REFERENCE:
                continue
            if node.node_type is NodeType.GROUP:
                yield from node.placed_nodes(node_inv, placement)
            else:
                yield node, node_inv, placement

    def surfaces(
        self,
        inverted: Optional[bool] = None,
        iso: Optional[Isometry] = None,
    ) -> List[OpticSurface]:
        result: List[OpticSurface] = []
        for node, node_inv, placement in self.placed_nodes(inverted, iso):
            result.extend(node.surfaces(inverted=node_inv, iso=placement))
        return result

    # ------------------------------------------------------------------
    # 报告
    # ------------------------------------------------------------------

    def _node_properties(self) -> Dict[str, Any]:
        return {
            "nr_of_nodes": len(self.graph),
            "nr_of_edges": len(self.graph.edges),
            "input_ports": self.graph.input_map.names(),
            "output_ports": self.graph.output_map.names(),
        }

    def report(self, record=None) -> NodeReport:
        report = super().report(record)
        report.children = [node.report() for node in self.graph]
        return report
