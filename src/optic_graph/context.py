"""
分析运行上下文

本模块定义分析类型、分析配置以及单次分析运行的上下文对象。

AnalysisContext 在一次分析运行中贯穿所有节点的 analyze 调用：
- 收集警告（线程安全），分析结束后统一发出
- 记录探测器数据、节点放置位置、鬼像杂散光线束
- 维护引用解析所需的作用域链（当前图及其祖先图）
- 维护正在分析中的节点栈，用于检测引用重入

子上下文（entered / nested）共享收集到的数据，但各自拥有独立的
作用域链和活动节点栈，因此可以安全地在线程池中并行使用。
"""

from __future__ import annotations

import threading
import warnings
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple, Type

from .exceptions import OpticGraphWarning
from .geometry import Isometry
from .light import LightData
from .rays import RayBundle

if TYPE_CHECKING:
    from .graph import OpticGraph


class AnalyzerKind(Enum):
    """分析类型"""
    ENERGY = "energy"
    RAY_TRACE = "ray_trace"
    GHOST_FOCUS = "ghost_focus"

    @property
    def is_geometric(self) -> bool:
        return self is not AnalyzerKind.ENERGY


@dataclass
class RayTraceConfig:
    """光线追迹配置

    参数:
        min_energy_per_ray: 单条光线最小能量 (J)，低于该值的光线被标记为无效
        max_number_of_refractions: 单条光线最大折射次数
        max_number_of_bounces: 单条光线最大（鬼像）反射次数
    """

    min_energy_per_ray: float = 1e-12
    max_number_of_refractions: int = 1000
    max_number_of_bounces: int = 1000

    def __post_init__(self) -> None:
        if not (self.min_energy_per_ray >= 0.0):
            raise ValueError(f"min_energy_per_ray 必须为非负值，实际为 {self.min_energy_per_ray}")
        if self.max_number_of_refractions < 0 or self.max_number_of_bounces < 0:
            raise ValueError("最大折射 / 反射次数必须为非负整数")


@dataclass
class GhostFocusConfig:
    """鬼像分析配置

    参数:
        max_bounces: 每条光线允许的额外（膜层）反射次数；0 表示不追踪鬼像
        min_energy_per_ray: 单条光线最小能量 (J)
        max_interactions: 单条光线最多与表面作用的次数（防止无限循环）
    """

    max_bounces: int = 1
    min_energy_per_ray: float = 1e-12
    max_interactions: int = 1000

    def __post_init__(self) -> None:
        if self.max_bounces < 0:
            raise ValueError(f"max_bounces 必须为非负整数，实际为 {self.max_bounces}")
        if not (self.min_energy_per_ray >= 0.0):
            raise ValueError(f"min_energy_per_ray 必须为非负值，实际为 {self.min_energy_per_ray}")
        if self.max_interactions < 1:
            raise ValueError(f"max_interactions 必须 >= 1，实际为 {self.max_interactions}")


@dataclass(frozen=True)
class DetectorRecord:
    """探测器记录

    属性:
        node_id: 探测器节点 uuid
        node_name: 探测器名称
        light: 孔径截断后的光数据
        unapodized: 孔径截断前的光数据（能量分析中与 light 相同）
        isometry: 光线追迹中探测器平面的位置
    """

    node_id: str
    node_name: str
    light: LightData
    unapodized: Optional[LightData] = None
    isometry: Optional[Isometry] = None


@dataclass(frozen=True)
class StrayRecord:
    """序列鬼像分析中某个表面膜层反射产生的杂散光线束"""

    node_id: str
    node_name: str
    surface: str
    bundle: RayBundle


@dataclass(frozen=True)
class CollectedWarning:
    category: Type[Warning]
    message: str


class _SharedState:
    """在同一次运行的所有子上下文之间共享的数据"""

    def __init__(self) -> None:
        self.lock = threading.RLock()
        self.warnings: List[CollectedWarning] = []
        self.records: Dict[str, List[DetectorRecord]] = {}
        self.placements: Dict[str, Isometry] = {}
        self.stray: List[StrayRecord] = []


class AnalysisContext:
    """单次分析运行的上下文

    参数:
        kind: 分析类型
        ray_trace_config: 光线追迹配置
        ghost_focus_config: 鬼像分析配置
        max_workers: 并行层的最大线程数，None 表示串行
        verbose: 是否输出进度信息
    """

    def __init__(
        self,
        kind: AnalyzerKind = AnalyzerKind.RAY_TRACE,
        ray_trace_config: Optional[RayTraceConfig] = None,
        ghost_focus_config: Optional[GhostFocusConfig] = None,
        max_workers: Optional[int] = None,
        verbose: bool = False,
    ) -> None:
        self.kind = kind
        self.ray_trace_config = ray_trace_config or RayTraceConfig()
        self.ghost_focus_config = ghost_focus_config or GhostFocusConfig()
        self.max_workers = max_workers
        self.verbose = verbose
        self._shared = _SharedState()
        self._scopes: Tuple["OpticGraph", ...] = ()
        self._active: Tuple[str, ...] = ()

    def _child(self, scopes: Tuple["OpticGraph", ...], active: Tuple[str, ...]) -> "AnalysisContext":
        child = object.__new__(AnalysisContext)
        child.__dict__.update(self.__dict__)
        child._scopes = scopes
        child._active = active
        return child

    # ------------------------------------------------------------------
    # 作用域与活动节点栈
    # ------------------------------------------------------------------

    def nested(self, graph: "OpticGraph") -> "AnalysisContext":
        """进入嵌套图（组节点内部）"""
        return self._child(self._scopes + (graph,), self._active)

    def entered(self, node_id: str) -> "AnalysisContext":
        """进入某个节点的 analyze 调用"""
        return self._child(self._scopes, self._active + (node_id,))

    @property
    def scopes(self) -> Tuple["OpticGraph", ...]:
        """作用域链，从最外层图到当前图"""
        return self._scopes

    @property
    def active_nodes(self) -> Tuple[str, ...]:
        return self._active

    def is_active(self, node_id: str) -> bool:
        return node_id in self._active

    # ------------------------------------------------------------------
    # 收集的数据
    # ------------------------------------------------------------------

    def warn(self, category: Type[OpticGraphWarning], message: str) -> None:
        """收集警告（分析结束后统一发出）"""
        with self._shared.lock:
            self._shared.warnings.append(CollectedWarning(category, message))

    @property
    def warnings(self) -> List[CollectedWarning]:
        with self._shared.lock:
            return list(self._shared.warnings)

    def emit_warnings(self) -> None:
        """通过 warnings 模块发出所有收集到的警告"""
        for item in self.warnings:
            warnings.warn(item.message, item.category, stacklevel=3)

    def record(self, record: DetectorRecord) -> None:
        with self._shared.lock:
            self._shared.records.setdefault(record.node_id, []).append(record)

    @property
    def records(self) -> Dict[str, List[DetectorRecord]]:
        with self._shared.lock:
            return {key: list(value) for key, value in self._shared.records.items()}

    def place(self, node_id: str, iso: Isometry) -> None:
        with self._shared.lock:
            self._shared.placements[node_id] = iso

    def placement(self, node_id: str) -> Optional[Isometry]:
        with self._shared.lock:
            return self._shared.placements.get(node_id)

    @property
    def placements(self) -> Dict[str, Isometry]:
        with self._shared.lock:
            return dict(self._shared.placements)

    def add_stray(self, record: StrayRecord) -> None:
        with self._shared.lock:
            self._shared.stray.append(record)

    @property
    def stray(self) -> List[StrayRecord]:
        with self._shared.lock:
            return list(self._shared.stray)

    def log(self, message: str, *args: Any) -> None:
        """verbose 模式下输出进度信息"""
        if self.verbose:
            print(message.format(*args) if args else message)
