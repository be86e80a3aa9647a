"""
光学网络仿真异常类定义

本模块定义了光学图（OpticGraph）构建与分析中使用的异常类和警告类层次结构。
所有异常都继承自 OpticGraphError 基类，并提供中文错误信息。

异常类层次：
- OpticGraphError（基类）
  - BuildError（构建错误：端口重复连接、端口方向不兼容、属性无效等）
    - PortConnectionError（端口连接错误）
    - LightDataTypeError（光数据类型与当前模式不匹配）
  - ConsistencyError（一致性错误）
    - DisconnectedIslandError（严格模式下的孤立子图）
    - DanglingReferenceError（引用节点的目标不存在）
    - ReferenceReentryError（引用节点循环重入）
    - UnplacedNodeError（三维分析中未放置的节点）
  - AnalysisError（分析错误，归属到具体节点及其上游边）

警告类（均继承自 OpticGraphWarning -> UserWarning）：
- ApodizationWarning: 端口孔径截断了光线
- LowEnergyWarning: 低于能量阈值的光线被标记为无效
- DegenerateCellWarning: Voronoi / 辅助光线单元退化
- UnconnectedSubgraphWarning: 图中存在不连通的子图
- StaleNodeWarning: 完全未连接的节点被跳过
- BounceLimitWarning: 光线超出反射次数预算
- DanglingReferenceWarning: 非分析场景下引用无法解析

使用示例：
    >>> from optic_graph.exceptions import BuildError
    >>> raise BuildError(
    ...     "节点 'lens' (3f2a...) 的输入端口 'input_1' 已被连接。"
    ... )
"""

from __future__ import annotations

from typing import List, Optional, Sequence


class OpticGraphError(Exception):
    """光学图基础异常

    所有光学图相关异常的基类。

    属性:
        message: 错误信息（中文）
        node_id: 相关节点的 uuid（可选）
        node_name: 相关节点的名称（可选）
    """

    def __init__(
        self,
        message: str,
        node_id: Optional[str] = None,
        node_name: Optional[str] = None,
    ) -> None:
        self.message = message
        self.node_id = node_id
        self.node_name = node_name
        super().__init__(message)


class BuildError(OpticGraphError):
    """构建错误

    在构建光学图时参数或拓扑不合法时抛出。

    常见触发条件：
    - 端口已被连接（每个端口最多一条边）
    - 端口方向不兼容（只能从输出端口连接到输入端口）
    - 连接会在图中形成环路
    - 节点属性值无效（例如分光比超出 [0, 1]）
    """
    pass


class PortConnectionError(BuildError):
    """端口连接错误

    连接或映射端口失败时抛出，例如端口不存在、端口已被占用。
    """
    pass


class LightDataTypeError(BuildError):
    """光数据类型错误

    当到达节点的光数据类型不被当前分析模式或节点配置支持时抛出。
    例如：能量分析中分光镜收到光线数据，或光线追迹中收到光谱数据。
    """
    pass


class ConsistencyError(OpticGraphError):
    """一致性错误

    在分析前检查或引用解析时发现结构性问题时抛出。
    """
    pass


class DisconnectedIslandError(ConsistencyError):
    """孤立子图错误

    仅在严格模式的一致性检查中抛出；默认情况下孤立子图只产生警告。
    """
    pass


class DanglingReferenceError(ConsistencyError):
    """悬空引用错误

    引用节点的目标 uuid 在所属图及其祖先图中均不存在时抛出。
    """
    pass


class ReferenceReentryError(ConsistencyError):
    """引用重入错误

    引用节点解析到一个正处于分析调用中的节点（包括自身）时抛出，
    以避免无限递归。
    """
    pass


class UnplacedNodeError(ConsistencyError):
    """节点未放置错误

    三维（非序列）分析要求所有参与的节点都具有空间位置（isometry）。
    """
    pass


class AnalysisError(OpticGraphError):
    """分析错误

    节点在分析过程中失败时抛出，只中止当前分析运行。

    属性:
        provenance: 为该节点提供输入的上游边描述列表，
            例如 ["'source' (1a2b...):output_1 -> 'lens' (3c4d...):input_1"]
    """

    def __init__(
        self,
        message: str,
        node_id: Optional[str] = None,
        node_name: Optional[str] = None,
        provenance: Optional[Sequence[str]] = None,
    ) -> None:
        self.provenance: List[str] = list(provenance or [])
        full_message = message
        if self.provenance:
            chain = "; ".join(self.provenance)
            full_message = f"{message}（上游连接：{chain}）"
        super().__init__(full_message, node_id=node_id, node_name=node_name)


# =============================================================================
# 警告类
# =============================================================================


class OpticGraphWarning(UserWarning):
    """光学图警告基类

    警告不会中断分析，只会被收集并在分析结束后统一发出。
    """
    pass


class ApodizationWarning(OpticGraphWarning):
    """孔径截断警告

    当端口孔径将至少一条光线标记为无效时发出（每次节点分析调用最多一次）。
    """
    pass


class LowEnergyWarning(OpticGraphWarning):
    """低能量光线警告

    当光线能量低于配置的阈值而被标记为无效时发出。
    """
    pass


class DegenerateCellWarning(OpticGraphWarning):
    """退化单元警告

    Voronoi 单元或辅助光线多边形面积为零或无界时发出，对应光线被排除。
    """
    pass


class UnconnectedSubgraphWarning(OpticGraphWarning):
    """不连通子图警告

    一致性检查时每个孤立子图发出一次。
    """
    pass


class StaleNodeWarning(OpticGraphWarning):
    """孤立节点警告

    完全没有连接的节点在分析中被跳过时发出。
    """
    pass


class BounceLimitWarning(OpticGraphWarning):
    """反射次数超限警告

    鬼像（ghost focus）分析中光线超出反射次数预算而被终止时发出。
    """
    pass


class DanglingReferenceWarning(OpticGraphWarning):
    """悬空引用警告

    在导出图表或生成报告等非分析场景下，引用节点无法解析时发出。
    """
    pass


__all__ = [
    "OpticGraphError",
    "BuildError",
    "PortConnectionError",
    "LightDataTypeError",
    "ConsistencyError",
    "DisconnectedIslandError",
    "DanglingReferenceError",
    "ReferenceReentryError",
    "UnplacedNodeError",
    "AnalysisError",
    "OpticGraphWarning",
    "ApodizationWarning",
    "LowEnergyWarning",
    "DegenerateCellWarning",
    "UnconnectedSubgraphWarning",
    "StaleNodeWarning",
    "BounceLimitWarning",
    "DanglingReferenceWarning",
]
