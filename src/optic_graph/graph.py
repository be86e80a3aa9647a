"""
光学图

OpticGraph 以整数索引的数组保存节点（arena），边连接一个节点的输出端口与
另一个节点的输入端口，每个端口最多一条边。图必须无环：谐振腔等需要多次
经过同一元件的结构用 NodeReference 表达，而不是真正的环路。

组节点（NodeGroup）内部持有一个 OpticGraph，并通过 input_map / output_map
把未连接的内部端口以外部名称暴露出来。

序列传播（propagate）：
1. 计算依赖锥：从光源（及外部输入）可达、且能到达目标探测器（及外部输出）的节点
2. 按拓扑顺序逐层分析节点，从输入边收集光数据，把输出写回输出边（覆盖旧值）
3. 节点失败时中止，错误中附带该节点以及为其提供输入的整条上游边链

反转传播（inverted=True）时所有边的方向互换，节点以反转朝向分析。
"""

from __future__ import annotations

import warnings
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Sequence, Set, Tuple

import numpy as np

from .context import AnalysisContext, AnalyzerKind
from .dot import graph_to_dot
from .exceptions import (
    AnalysisError,
    BuildError,
    ConsistencyError,
    DisconnectedIslandError,
    OpticGraphError,
    PortConnectionError,
    StaleNodeWarning,
    UnconnectedSubgraphWarning,
)
from .geometry import Isometry
from .light import LightData, LightResult
from .nodes.base import NodeType, OpticNode
from .ports import PortDirection, PortMap


@dataclass
class Edge:
    """有向边：src 节点的输出端口 -> dst 节点的输入端口

    属性:
        distance: 传播距离 (mm)，用于序列光线追迹中放置未定位的下游节点
        light: 最近一次序列分析写入的光数据（每次运行覆盖）
    """

    src: int
    src_port: str
    dst: int
    dst_port: str
    distance: float = 0.0
    light: Optional[LightData] = None


# 数据流方向上的边：(上游节点, 上游端口, 下游节点, 下游端口, 边)
_Flow = Tuple[int, str, int, str, Edge]


class OpticGraph:
    """光学图

    示例:
        >>> from optic_graph import OpticGraph, Source, EnergyMeter
        >>> g = OpticGraph()
        >>> s = g.add_node(Source("S"))
        >>> d = g.add_node(EnergyMeter("D"))
        >>> edge = g.connect_nodes(s, "output_1", d, "input_1", distance=100.0)
        >>> len(g.edges)
        1
    """

    def __init__(self) -> None:
        self._nodes: List[OpticNode] = []
        self._edges: List[Edge] = []
        self.input_map = PortMap()
        self.output_map = PortMap()

    # ------------------------------------------------------------------
    # 节点
    # ------------------------------------------------------------------

    def add_node(self, node: OpticNode) -> int:
        """添加节点并返回其索引

        异常:
            BuildError: 不是 OpticNode，或 uuid 在本图中已存在
        """
        if not isinstance(node, OpticNode):
            raise BuildError(f"只能添加 OpticNode，实际为 {type(node).__name__}")
        if self.node_by_uuid(node.uuid) is not None:
            raise BuildError(
                f"节点 {node.label} 已存在于图中",
                node_id=node.uuid,
                node_name=node.name,
            )
        self._nodes.append(node)
        return len(self._nodes) - 1

    def node(self, idx: int) -> OpticNode:
        if not isinstance(idx, (int, np.integer)) or not (0 <= idx < len(self._nodes)):
            raise BuildError(f"节点索引 {idx} 不存在（图中共有 {len(self._nodes)} 个节点）")
        return self._nodes[idx]

    @property
    def nodes(self) -> List[OpticNode]:
        return list(self._nodes)

    @property
    def edges(self) -> List[Edge]:
        return list(self._edges)

    def __len__(self) -> int:
        return len(self._nodes)

    def __iter__(self) -> Iterator[OpticNode]:
        return iter(list(self._nodes))

    def index_of(self, node_id: str) -> Optional[int]:
        for idx, node in enumerate(self._nodes):
            if node.uuid == node_id:
                return idx
        return None

    def node_by_uuid(self, node_id: str) -> Optional[OpticNode]:
        """在本层图中按 uuid 查找节点"""
        idx = self.index_of(node_id)
        return None if idx is None else self._nodes[idx]

    def find_node_recursive(self, node_id: str) -> Optional[OpticNode]:
        """在本图及所有嵌套组节点中按 uuid 查找节点"""
        found = self.node_by_uuid(node_id)
        if found is not None:
            return found
        for node in self._nodes:
            if node.node_type is NodeType.GROUP:
                found = node.graph.find_node_recursive(node_id)
                if found is not None:
                    return found
        return None

    # ------------------------------------------------------------------
    # 连接
    # ------------------------------------------------------------------

    def edge_at(self, idx: int, port: str) -> Optional[Edge]:
        """连接在 (idx, port) 上的边（作为起点或终点）"""
        for edge in self._edges:
            if (edge.src, edge.src_port) == (idx, port) or (edge.dst, edge.dst_port) == (idx, port):
                return edge
        return None

    def _is_mapped(self, idx: int, port: str) -> bool:
        return (
            self.input_map.external_name(idx, port) is not None
            or self.output_map.external_name(idx, port) is not None
        )

    def _check_port(self, idx: int, port: str, direction: PortDirection) -> None:
        node = self.node(idx)
        ports = node.ports()
        if port not in ports:
            raise PortConnectionError(
                f"节点 {node.label} 没有端口 '{port}'，可用端口：{[p.name for p in ports]}",
                node_id=node.uuid,
                node_name=node.name,
            )
        if ports.direction(port) is not direction:
            raise PortConnectionError(
                f"节点 {node.label} 的端口 '{port}' 不是{'输出' if direction is PortDirection.OUTPUT else '输入'}端口",
                node_id=node.uuid,
                node_name=node.name,
            )
        if self.edge_at(idx, port) is not None:
            raise PortConnectionError(
                f"节点 {node.label} 的端口 '{port}' 已被连接",
                node_id=node.uuid,
                node_name=node.name,
            )
        if self._is_mapped(idx, port):
            raise PortConnectionError(
                f"节点 {node.label} 的端口 '{port}' 已被映射为组的外部端口",
                node_id=node.uuid,
                node_name=node.name,
            )

    def _successors(self, idx: int) -> List[int]:
        return [edge.dst for edge in self._edges if edge.src == idx]

    def _reaches(self, start: int, target: int) -> bool:
        stack, seen = [start], set()
        while stack:
            current = stack.pop()
            if current == target:
                return True
            if current in seen:
                continue
            seen.add(current)
            stack.extend(self._successors(current))
        return False

    def connect_nodes(
        self,
        src: int,
        src_port: str,
        dst: int,
        dst_port: str,
        distance: float = 0.0,
    ) -> Edge:
        """连接 src 的输出端口与 dst 的输入端口

        参数:
            distance: 传播距离 (mm)，非负有限值

        异常:
            PortConnectionError: 端口不存在、方向不符、已被连接或已被映射
            BuildError: 自环、形成环路、距离无效，或组节点处于无法解析的反转状态
        """
        if src == dst:
            node = self.node(src)
            raise BuildError(
                f"不能将节点 {node.label} 连接到自身",
                node_id=node.uuid,
                node_name=node.name,
            )
        if not np.isfinite(distance) or distance < 0.0:
            raise BuildError(f"传播距离必须为非负有限值，实际为 {distance} mm")
        self._check_port(src, src_port, PortDirection.OUTPUT)
        self._check_port(dst, dst_port, PortDirection.INPUT)
        if self._reaches(dst, src):
            raise BuildError(
                f"连接 {self._nodes[src].label} -> {self._nodes[dst].label} 会形成环路，"
                f"需要多次经过同一元件时请使用引用节点",
                node_id=self._nodes[dst].uuid,
                node_name=self._nodes[dst].name,
            )
        edge = Edge(src, src_port, dst, dst_port, float(distance))
        self._edges.append(edge)
        return edge

    def disconnect_nodes(self, src: int, src_port: str) -> Edge:
        """断开从 (src, src_port) 出发的边

        异常:
            PortConnectionError: 该端口上没有出边
        """
        for edge in self._edges:
            if (edge.src, edge.src_port) == (src, src_port):
                self._edges.remove(edge)
                return edge
        node = self.node(src)
        raise PortConnectionError(
            f"节点 {node.label} 的端口 '{src_port}' 没有连接",
            node_id=node.uuid,
            node_name=node.name,
        )

    def _check_mappable(self, idx: int, port: str, direction: PortDirection) -> None:
        node = self.node(idx)
        ports = node.ports()
        if port not in ports or ports.direction(port) is not direction:
            raise PortConnectionError(
                f"节点 {node.label} 没有可映射的{'输入' if direction is PortDirection.INPUT else '输出'}端口 '{port}'",
                node_id=node.uuid,
                node_name=node.name,
            )
        if self.edge_at(idx, port) is not None:
            raise PortConnectionError(
                f"节点 {node.label} 的端口 '{port}' 已被连接，不能再映射为外部端口",
                node_id=node.uuid,
                node_name=node.name,
            )

    def map_input_port(self, idx: int, port: str, external_name: str) -> None:
        """把内部输入端口映射为外部输入端口（组节点使用）"""
        self._check_mappable(idx, port, PortDirection.INPUT)
        if external_name in self.output_map:
            raise PortConnectionError(f"外部端口名 '{external_name}' 已被用作输出端口")
        self.input_map.add(external_name, idx, port)

    def map_output_port(self, idx: int, port: str, external_name: str) -> None:
        """把内部输出端口映射为外部输出端口（组节点使用）"""
        self._check_mappable(idx, port, PortDirection.OUTPUT)
        if external_name in self.input_map:
            raise PortConnectionError(f"外部端口名 '{external_name}' 已被用作输入端口")
        self.output_map.add(external_name, idx, port)

    # ------------------------------------------------------------------
    # 拓扑
    # ------------------------------------------------------------------

    def _flows(self, inverted: bool) -> List[_Flow]:
        if inverted:
            return [(e.dst, e.dst_port, e.src, e.src_port, e) for e in self._edges]
        return [(e.src, e.src_port, e.dst, e.dst_port, e) for e in self._edges]

    def topologically_sorted(self, inverted: bool = False) -> List[int]:
        """按数据流方向的拓扑顺序（同一层按索引升序）"""
        flows = self._flows(inverted)
        indegree = [0] * len(self._nodes)
        for _, _, dst, _, _ in flows:
            indegree[dst] += 1
        ready = sorted(i for i, d in enumerate(indegree) if d == 0)
        order: List[int] = []
        while ready:
            current = ready.pop(0)
            order.append(current)
            for src, _, dst, _, _ in flows:
                if src == current:
                    indegree[dst] -= 1
                    if indegree[dst] == 0:
                        ready.append(dst)
                        ready.sort()
        return order

    def islands(self) -> List[Set[int]]:
        """与主连通分量不相连的子图（按无向连通性）

        映射到外部端口的节点都与一个虚拟的边界节点相连（组节点内部图经由
        外部端口连成一体）。存在端口映射时主分量为边界节点所在分量，
        否则为包含索引最小的光源的分量；都没有时取最大的分量。
        """
        boundary = len(self._nodes)
        parent = list(range(boundary + 1))

        def find(i: int) -> int:
            while parent[i] != i:
                parent[i] = parent[parent[i]]
                i = parent[i]
            return i

        for edge in self._edges:
            parent[find(edge.src)] = find(edge.dst)
        mapped = [idx for _, (idx, _) in self.input_map.items() + self.output_map.items()]
        for idx in mapped:
            parent[find(idx)] = find(boundary)
        components: Dict[int, Set[int]] = {}
        for idx in range(len(self._nodes)):
            components.setdefault(find(idx), set()).add(idx)
        if len(components) <= 1:
            return []

        sources = [i for i, node in enumerate(self._nodes) if node.is_source()]
        if mapped:
            main = find(boundary)
        elif sources:
            main = find(sources[0])
        else:
            main = max(components, key=lambda root: (len(components[root]), -min(components[root])))
        return sorted(
            (members for root, members in components.items() if root != main),
            key=min,
        )

    def check_consistency(
        self,
        strict: bool = False,
        scopes: Sequence["OpticGraph"] = (),
        ctx: Optional[AnalysisContext] = None,
    ) -> List[Set[int]]:
        """分析前的一致性检查

        - 每个孤立子图发出一次 UnconnectedSubgraphWarning（strict=True 时抛出异常）
        - 递归检查组节点内部图
        - 检查引用节点能否解析

        参数:
            scopes: 祖先图（从最外层开始），用于解析引用
            ctx: 分析上下文；提供时警告被收集到上下文中

        返回:
            本层图的孤立子图列表

        异常:
            DisconnectedIslandError: strict=True 且存在孤立子图
            DanglingReferenceError: 存在无法解析的引用节点
        """
        chain = tuple(scopes) + (self,)
        islands = self.islands()
        for island in islands:
            names = ", ".join(self._nodes[i].label for i in sorted(island))
            message = f"图中存在与主光路不连通的子图：{names}"
            if strict:
                first = self._nodes[min(island)]
                raise DisconnectedIslandError(message, node_id=first.uuid, node_name=first.name)
            if ctx is not None:
                ctx.warn(UnconnectedSubgraphWarning, message)
            else:
                warnings.warn(message, UnconnectedSubgraphWarning)
        for node in self._nodes:
            if node.node_type is NodeType.REFERENCE:
                node.resolve(chain)
            elif node.node_type is NodeType.GROUP:
                node.graph.check_consistency(strict, chain, ctx)
        return islands

    def to_dot(self, rankdir: str = "TB") -> str:
        """导出 Graphviz dot 文本（rankdir 为 "TB" 或 "LR"）"""
        return graph_to_dot(self, rankdir)

    # ------------------------------------------------------------------
    # 序列传播
    # ------------------------------------------------------------------

    def _cone(
        self,
        flows: List[_Flow],
        starts: Set[int],
        targets: Set[int],
    ) -> Set[int]:
        down: Dict[int, List[int]] = {}
        up: Dict[int, List[int]] = {}
        for src, _, dst, _, _ in flows:
            down.setdefault(src, []).append(dst)
            up.setdefault(dst, []).append(src)

        def closure(seeds: Set[int], links: Dict[int, List[int]]) -> Set[int]:
            seen = set(seeds)
            stack = list(seeds)
            while stack:
                for nxt in links.get(stack.pop(), []):
                    if nxt not in seen:
                        seen.add(nxt)
                        stack.append(nxt)
            return seen

        return closure(starts, down) & closure(targets, up)

    def _layers(self, order: List[int], flows: List[_Flow]) -> List[List[int]]:
        level: Dict[int, int] = {}
        for idx in order:
            preds = [level[src] for src, _, dst, _, _ in flows if dst == idx and src in level]
            level[idx] = max(preds) + 1 if preds else 0
        layers: List[List[int]] = []
        for idx in order:
            while len(layers) <= level[idx]:
                layers.append([])
            layers[level[idx]].append(idx)
        return layers

    def _provenance(self, flows: List[_Flow], idx: int, inverted: bool) -> List[str]:
        """向失败节点输送光的上游边链（按拓扑顺序）"""
        upstream = {idx}
        stack = [idx]
        while stack:
            current = stack.pop()
            for src, _, dst, _, _ in flows:
                if dst == current and src not in upstream:
                    upstream.add(src)
                    stack.append(src)
        rank = {node: i for i, node in enumerate(self.topologically_sorted(inverted))}
        chain = sorted(
            (flow for flow in flows if flow[2] in upstream),
            key=lambda flow: (rank[flow[2]], rank[flow[0]]),
        )
        return [
            f"{self._nodes[src].label}:{src_port} -> {self._nodes[dst].label}:{dst_port}"
            for src, src_port, dst, dst_port, _ in chain
        ]

    def _placement(
        self,
        node: OpticNode,
        incoming: List[Tuple[LightData, float]],
        kind: AnalyzerKind,
        ctx: AnalysisContext,
        base: Optional[Isometry] = None,
    ) -> Optional[Isometry]:
        """节点在本次运行中的位置

        已放置的节点使用自身位置（base 不为 None 时相对 base）；
        未放置的节点沿入射光束主光线放置在边距离处。
        """
        if not kind.is_geometric:
            return None
        if node.isometry is not None:
            iso = base.append(node.isometry) if base is not None else node.isometry
            ctx.place(node.uuid, iso)
            return iso
        for light, distance in incoming:
            if light is None or not light.is_geometric:
                continue
            chief = light.bundle.chief_ray()
            if chief is None:
                continue
            position, direction = chief
            iso = Isometry.from_view(position + distance * direction, direction)
            ctx.place(node.uuid, iso)
            return iso
        return None

    def _run_node(
        self,
        idx: int,
        flows: List[_Flow],
        feed_map: PortMap,
        incoming: LightResult,
        kind: AnalyzerKind,
        ctx: AnalysisContext,
        inverted: bool,
        base: Optional[Isometry] = None,
    ) -> LightResult:
        node = self._nodes[idx]
        node_inv = node.inverted != inverted
        inputs: LightResult = {}
        upstream: List[Tuple[LightData, float]] = []
        for _, _, dst, dst_port, edge in flows:
            if dst == idx and edge.light is not None:
                inputs[dst_port] = edge.light
                upstream.append((edge.light, edge.distance))
        for name, (target, port) in feed_map.items():
            if target == idx and incoming.get(name) is not None:
                inputs[port] = incoming[name]
                upstream.append((incoming[name], 0.0))

        ctx.log("  分析节点 {} ({})", node.label, node.node_type.value)
        try:
            iso = self._placement(node, upstream, kind, ctx, base)
            return node.analyze(inputs, kind, ctx.entered(node.uuid), inverted=node_inv, iso=iso)
        except ConsistencyError:
            raise
        except AnalysisError as err:
            if err.provenance:
                raise
            raise AnalysisError(
                err.message,
                node_id=err.node_id or node.uuid,
                node_name=err.node_name or node.name,
                provenance=self._provenance(flows, idx, inverted),
            ) from err
        except (OpticGraphError, ValueError) as err:
            message = err.message if isinstance(err, OpticGraphError) else str(err)
            raise AnalysisError(
                f"节点 {node.label} 分析失败：{message}",
                node_id=node.uuid,
                node_name=node.name,
                provenance=self._provenance(flows, idx, inverted),
            ) from err

    def propagate(
        self,
        incoming: Optional[LightResult],
        kind: AnalyzerKind,
        ctx: AnalysisContext,
        inverted: bool = False,
        targets: Optional[Sequence[int]] = None,
        base: Optional[Isometry] = None,
    ) -> LightResult:
        """序列传播

        参数:
            incoming: 外部输入端口名 -> 光数据（组节点内部图使用）
            kind: 分析类型
            ctx: 分析上下文（作用域链应已包含本图）
            inverted: 是否以反转方向传播
            targets: 需要计算的目标节点索引，None 表示所有探测器与外部输出端口
            base: 已放置节点位置的参考坐标系（放置的组节点内部图使用）

        返回:
            外部输出端口名 -> 光数据
        """
        incoming = {k: v for k, v in (incoming or {}).items() if v is not None}
        flows = self._flows(inverted)
        feed_map = self.output_map if inverted else self.input_map
        result_map = self.input_map if inverted else self.output_map

        for edge in self._edges:
            edge.light = None

        starts = {
            i for i, node in enumerate(self._nodes)
            if node.is_source(node.inverted != inverted)
        }
        starts |= {feed_map.get(name)[0] for name in incoming if name in feed_map}
        if targets is None:
            goal = {
                i for i, node in enumerate(self._nodes)
                if node.is_detector(node.inverted != inverted) or node.monitor
            }
            goal |= {idx for _, (idx, _) in result_map.items()}
        else:
            goal = {int(i) for i in targets}
            for i in goal:
                self.node(i)
        cone = self._cone(flows, starts, goal)

        if len(self._nodes) > 1:
            # 孤立子图已在一致性检查中报告过
            reported = set().union(*self.islands())
            for i, node in enumerate(self._nodes):
                if i in cone or i in reported:
                    continue
                if self.edge_at_any(i) is None and not self._maps_node(i):
                    ctx.warn(StaleNodeWarning, f"节点 {node.label} 没有任何连接，已跳过")

        order = [i for i in self.topologically_sorted(inverted) if i in cone]
        ctx.log("序列分析：{} 个节点中 {} 个需要计算", len(self._nodes), len(order))

        outputs: Dict[int, LightResult] = {}

        def run(idx: int) -> Tuple[int, LightResult]:
            return idx, self._run_node(idx, flows, feed_map, incoming, kind, ctx, inverted, base)

        for layer in self._layers(order, flows):
            if ctx.max_workers and len(layer) > 1:
                with ThreadPoolExecutor(max_workers=ctx.max_workers) as pool:
                    results = list(pool.map(run, layer))
            else:
                results = [run(idx) for idx in layer]
            for idx, result in results:
                outputs[idx] = result
                for src, src_port, _, _, edge in flows:
                    if src == idx:
                        edge.light = result.get(src_port)

        external: LightResult = {}
        for name, (idx, port) in result_map.items():
            data = outputs.get(idx, {}).get(port)
            if data is not None:
                external[name] = data
        return external

    def edge_at_any(self, idx: int) -> Optional[Edge]:
        """与节点相连的任意一条边"""
        for edge in self._edges:
            if edge.src == idx or edge.dst == idx:
                return edge
        return None

    def _maps_node(self, idx: int) -> bool:
        return any(target == idx for _, (target, _) in self.input_map.items() + self.output_map.items())

    def __repr__(self) -> str:
        return f"OpticGraph({len(self._nodes)} 个节点, {len(self._edges)} 条边)"
