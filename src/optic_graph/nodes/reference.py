"""
引用节点

引用节点不持有目标节点，只保存目标的 uuid（以及创建时目标端口的快照，
用于在构建阶段检查连接）。分析时在作用域链（当前图及其祖先图）中由内向外
按 uuid 查找目标，并把 analyze 完全委托给目标节点。

谐振腔等需要多次经过同一元件的光路用引用节点表达：同一个目标节点可以被
多个引用在不同朝向下复用，分析过程中目标节点不会被复制或修改。

解析失败抛出 DanglingReferenceError；解析到一个正在分析中的节点（包括引用
自身）抛出 ReferenceReentryError，而不会无限递归。
"""

from __future__ import annotations

from typing import Any, Dict, Optional, Sequence, TYPE_CHECKING

from ..context import AnalysisContext, AnalyzerKind
from ..exceptions import DanglingReferenceError, ReferenceReentryError
from ..geometry import Isometry
from ..light import LightResult
from ..ports import OpticPorts
from .base import NodeType, OpticNode

if TYPE_CHECKING:
    from ..graph import OpticGraph


class NodeReference(OpticNode):
    """引用节点

    参数:
        target: 目标节点（只记录其 uuid 与端口快照）
        name: 名称，默认 "ref: <目标名称>"
    """

    node_type = NodeType.REFERENCE
    default_name = "reference"

    def __init__(self, target: Optional[OpticNode] = None, name: Optional[str] = None) -> None:
        self._target_id: Optional[str] = None
        self._target_ports = OpticPorts()
        self._target_inverted = False
        self._target_name: Optional[str] = None
        super().__init__(name)
        if target is not None:
            self.set_target(target)
            if name is None:
                self.name = f"ref: {target.name}"

    @classmethod
    def from_uuid(
        cls,
        target_id: str,
        ports: OpticPorts,
        name: Optional[str] = None,
        target_inverted: bool = False,
    ) -> "NodeReference":
        """由目标 uuid 与端口快照创建引用（目标可以稍后才加入图中）"""
        ref = cls(name=name)
        ref._target_id = target_id
        ref._target_ports = ports.copy()
        ref._target_inverted = bool(target_inverted)
        return ref

    def set_target(self, target: OpticNode) -> None:
        self._target_id = target.uuid
        self._target_ports = target.ports(inverted=False)
        self._target_inverted = target.inverted
        self._target_name = target.name
        self.invertible = target.invertible

    @property
    def target_id(self) -> Optional[str]:
        return self._target_id

    def _create_ports(self) -> OpticPorts:
        return OpticPorts()

    def ports(self, inverted: Optional[bool] = None) -> OpticPorts:
        inv = self.inverted if inverted is None else bool(inverted)
        return self._target_ports.view(self._target_inverted != inv)

    def port_aperture(self, port: str):
        return self._target_ports.aperture(port)

    # ------------------------------------------------------------------
    # 解析与分析
    # ------------------------------------------------------------------

    def resolve(self, scopes: Sequence["OpticGraph"]) -> OpticNode:
        """在作用域链中由内向外查找目标节点

        参数:
            scopes: 作用域链，从最外层图到当前图

        异常:
            DanglingReferenceError: 未设置目标或目标不存在
        """
        if self._target_id is None:
            raise DanglingReferenceError(
                f"引用节点 {self.label} 没有设置目标",
                node_id=self.uuid,
                node_name=self.name,
            )
        for graph in reversed(tuple(scopes)):
            target = graph.node_by_uuid(self._target_id)
            if target is not None:
                return target
        raise DanglingReferenceError(
            f"引用节点 {self.label} 的目标 {self._target_id} 在所属图及其祖先图中均不存在",
            node_id=self.uuid,
            node_name=self.name,
        )

    def analyze(
        self,
        inputs: Optional[LightResult],
        kind: AnalyzerKind,
        ctx: Optional[AnalysisContext] = None,
        inverted: Optional[bool] = None,
        iso: Optional[Isometry] = None,
    ) -> LightResult:
        """把分析委托给目标节点

        目标节点的朝向为其自身朝向与引用朝向的异或；目标已放置时使用目标自身的位置。

        异常:
            DanglingReferenceError: 目标无法解析
            ReferenceReentryError: 目标正处于分析调用中
        """
        inv = self.inverted if inverted is None else bool(inverted)
        if ctx is None:
            ctx = AnalysisContext(kind)
        target = self.resolve(ctx.scopes)
        if ctx.is_active(target.uuid):
            raise ReferenceReentryError(
                f"引用节点 {self.label} 解析到正在分析中的节点 {target.label}，"
                f"引用不能重入自身的分析调用",
                node_id=self.uuid,
                node_name=self.name,
            )
        ctx.log("  引用节点 {} -> {}", self.label, target.label)
        return target.analyze(
            inputs,
            kind,
            ctx.entered(target.uuid),
            inverted=target.inverted != inv,
            iso=target.isometry if target.isometry is not None else iso,
        )

    def _node_properties(self) -> Dict[str, Any]:
        return {"target_id": self._target_id, "target_name": self._target_name}
