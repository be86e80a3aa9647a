"""
光学节点基类

所有节点类型（NodeType 枚举给出的封闭集合）都实现统一的约定：
- analyze(inputs, kind, ctx, inverted, iso): 由输入端口光数据计算输出端口光数据
- is_source() / is_detector(): 由端口拓扑推导（无输入为光源，无输出为探测器）
- invert(): 返回朝向反转的新节点（不修改原节点）
- ports(inverted): 给定朝向下的端口视图
- surfaces(inverted, iso): 三维光线投射使用的表面
- report(record): 结构化报告数据

朝向（inverted）与位置（iso）在 analyze 调用时显式传入，分析过程中节点本身
不会被修改，因此同一节点可以被多个引用节点在不同朝向下复用。
"""

from __future__ import annotations

import copy
import uuid as uuid_module
from abc import ABC
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional

import numpy as np

from ..aperture import Aperture
from ..context import AnalysisContext, AnalyzerKind, StrayRecord
from ..exceptions import (
    AnalysisError,
    ApodizationWarning,
    BuildError,
    LightDataTypeError,
    LowEnergyWarning,
    PortConnectionError,
)
from ..geometry import Isometry
from ..light import LightData, LightResult
from ..ports import OpticPorts, PortDirection
from ..rays import RayBundle
from ..report import NodeReport
from ..spectrum import Spectrum
from ..surfaces import OpticSurface


class NodeType(Enum):
    """节点类型（封闭集合）"""
    SOURCE = "source"
    DUMMY = "dummy"
    ENERGY_METER = "energy meter"
    SPECTROMETER = "spectrometer"
    SPOT_DIAGRAM = "spot diagram"
    FLUENCE_DETECTOR = "fluence detector"
    RAY_PROPAGATION_VISUALIZER = "ray propagation"
    WAVEFRONT = "wavefront monitor"
    IDEAL_FILTER = "ideal filter"
    BEAM_SPLITTER = "beam splitter"
    LENS = "lens"
    CYLINDRIC_LENS = "cylindric lens"
    PARAXIAL_SURFACE = "paraxial surface"
    WEDGE = "wedge"
    THIN_MIRROR = "thin mirror"
    PARABOLIC_MIRROR = "parabolic mirror"
    REFLECTIVE_GRATING = "reflective grating"
    GROUP = "group"
    REFERENCE = "reference"


@dataclass
class NodeAttributes:
    """节点通用属性集合

    属性:
        name: 节点名称
        uuid: 唯一标识
        inverted: 是否反转
        isometry: 三维位置与姿态，None 表示未放置
        require_all_inputs: 为 True 时任一输入端口缺少数据即视为分析失败
    """

    name: str
    uuid: str = field(default_factory=lambda: str(uuid_module.uuid4()))
    inverted: bool = False
    isometry: Optional[Isometry] = None
    require_all_inputs: bool = False


class NodeCall:
    """单次 analyze 调用的状态

    记录本次调用是否发生了孔径截断（每次调用最多发出一次 ApodizationWarning），
    并提供光数据类型检查、位置解析等辅助方法。
    """

    def __init__(
        self,
        node: "OpticNode",
        ctx: AnalysisContext,
        kind: AnalyzerKind,
        inverted: bool,
        iso: Optional[Isometry],
    ) -> None:
        self.node = node
        self.ctx = ctx
        self.kind = kind
        self.inverted = inverted
        self.iso = iso
        self.clipped = False

    @property
    def in_port(self) -> str:
        """单输入 / 单输出节点在当前朝向下的输入端口名"""
        return "output_1" if self.inverted else "input_1"

    @property
    def out_port(self) -> str:
        return "input_1" if self.inverted else "output_1"

    def placement(self, bundle: Optional[RayBundle] = None) -> Isometry:
        """本次调用中节点的位置

        优先使用调用方传入的 iso，其次使用节点自身的 isometry；
        两者都没有时，放置在入射光束的主光线处（局部 Z 轴沿光束方向）。
        """
        if self.iso is not None:
            return self.iso
        if self.node.isometry is not None:
            return self.node.isometry
        if bundle is not None:
            chief = bundle.chief_ray()
            if chief is not None:
                return Isometry.from_view(chief[0], chief[1])
        return Isometry.identity()

    def apodize(self, bundle: RayBundle, port: str, iso: Isometry) -> RayBundle:
        """用端口孔径截断光线（孔径定义在 iso 的局部 XY 平面）"""
        aperture = self.node.port_aperture(port)
        result, clipped = bundle.apodize(aperture, iso)
        self.clipped = self.clipped or clipped
        return result

    def bundle(self, inputs: LightResult, port: str) -> Optional[RayBundle]:
        """取出几何光数据，类型不符时抛出 LightDataTypeError"""
        data = inputs.get(port)
        if data is None:
            return None
        if not data.is_geometric:
            raise LightDataTypeError(
                f"节点 {self.node.label} 的端口 '{port}' 在 {self.kind.value} 分析中收到了光谱数据，"
                f"需要几何光线数据",
                node_id=self.node.uuid,
                node_name=self.node.name,
            )
        return data.bundle

    def spectrum(self, inputs: LightResult, port: str) -> Optional[Spectrum]:
        """取出光谱光数据，类型不符时抛出 LightDataTypeError"""
        data = inputs.get(port)
        if data is None:
            return None
        if not data.is_spectral:
            raise LightDataTypeError(
                f"节点 {self.node.label} 的端口 '{port}' 在能量分析中收到了几何光线数据，"
                f"需要光谱数据",
                node_id=self.node.uuid,
                node_name=self.node.name,
            )
        return data.spectrum

    def stray(self, surface: str, bundle: RayBundle) -> None:
        """序列鬼像分析中收集膜层反射的杂散光线"""
        if self.kind is not AnalyzerKind.GHOST_FOCUS:
            return
        budget = self.ctx.ghost_focus_config.max_bounces
        usable = bundle.valid & (bundle.bounces <= budget)
        if not np.any(usable):
            return
        self.ctx.add_stray(
            StrayRecord(self.node.uuid, self.node.name, surface, bundle.select(usable))
        )


class OpticNode(ABC):
    """光学节点基类

    子类需要定义 node_type、default_name，并实现 _create_ports()
    以及所支持分析类型对应的 _analyze_energy() / _analyze_rays()。
    """

    node_type: NodeType
    default_name: str = "node"
    invertible: bool = True
    # 带输出端口但记录光数据的节点（如波前监视器）
    monitor: bool = False

    def __init__(self, name: Optional[str] = None) -> None:
        self._attr = NodeAttributes(name=self.default_name)
        if name is not None:
            self.name = name
        self._ports = self._create_ports()

    def _create_ports(self) -> OpticPorts:
        ports = OpticPorts()
        ports.add("input_1", PortDirection.INPUT)
        ports.add("output_1", PortDirection.OUTPUT)
        return ports

    # ------------------------------------------------------------------
    # 属性
    # ------------------------------------------------------------------

    @property
    def uuid(self) -> str:
        return self._attr.uuid

    @property
    def name(self) -> str:
        return self._attr.name

    @name.setter
    def name(self, value: str) -> None:
        if not isinstance(value, str) or not value.strip():
            raise BuildError(f"节点名称必须为非空字符串，实际为 {value!r}")
        self._attr.name = value

    @property
    def label(self) -> str:
        """错误信息中使用的节点标识：'名称' (uuid)"""
        return f"'{self.name}' ({self.uuid})"

    @property
    def inverted(self) -> bool:
        return self._attr.inverted

    @property
    def isometry(self) -> Optional[Isometry]:
        return self._attr.isometry

    @isometry.setter
    def isometry(self, iso: Optional[Isometry]) -> None:
        if iso is not None and not isinstance(iso, Isometry):
            raise BuildError(f"节点 {self.label} 的 isometry 必须为 Isometry 或 None")
        self._attr.isometry = iso

    def set_isometry(self, iso: Optional[Isometry]) -> "OpticNode":
        """设置位置并返回自身，便于链式构建"""
        self.isometry = iso
        return self

    @property
    def require_all_inputs(self) -> bool:
        return self._attr.require_all_inputs

    @require_all_inputs.setter
    def require_all_inputs(self, value: bool) -> None:
        self._attr.require_all_inputs = bool(value)

    @property
    def attributes(self) -> NodeAttributes:
        return self._attr

    @property
    def properties(self) -> Dict[str, Any]:
        """节点属性集合（通用属性 + 节点特有属性）"""
        props: Dict[str, Any] = {
            "name": self.name,
            "uuid": self.uuid,
            "node_type": self.node_type.value,
            "inverted": self.inverted,
            "isometry": None if self.isometry is None else self.isometry.to_dict(),
            "require_all_inputs": self.require_all_inputs,
            "apertures": {
                port.name: port.aperture.to_dict()
                for port in self._ports
                if not port.aperture.is_unrestricted
            },
        }
        props.update(self._node_properties())
        return props

    def _node_properties(self) -> Dict[str, Any]:
        return {}

    # ------------------------------------------------------------------
    # 端口
    # ------------------------------------------------------------------

    def ports(self, inverted: Optional[bool] = None) -> OpticPorts:
        """给定朝向下的端口视图（默认使用节点自身朝向）"""
        inv = self.inverted if inverted is None else bool(inverted)
        return self._ports.view(inv)

    def port_aperture(self, port: str) -> Aperture:
        return self._ports.aperture(port)

    def set_aperture(self, port: str, aperture: Aperture) -> "OpticNode":
        """设置端口孔径

        异常:
            PortConnectionError: 端口不存在
        """
        if port not in self._ports:
            raise PortConnectionError(
                f"节点 {self.label} 没有端口 '{port}'",
                node_id=self.uuid,
                node_name=self.name,
            )
        self._ports.set_aperture(port, aperture)
        return self

    def is_source(self, inverted: Optional[bool] = None) -> bool:
        return len(self.ports(inverted).input_names()) == 0

    def is_detector(self, inverted: Optional[bool] = None) -> bool:
        return len(self.ports(inverted).output_names()) == 0

    # ------------------------------------------------------------------
    # 反转
    # ------------------------------------------------------------------

    def _copy(self) -> "OpticNode":
        clone = copy.copy(self)
        clone._attr = replace(self._attr, uuid=str(uuid_module.uuid4()))
        clone._ports = self._ports.copy()
        return clone

    def invert(self) -> "OpticNode":
        """返回朝向反转的新节点（新的 uuid），原节点不变

        异常:
            BuildError: 节点不可反转（例如光源）
        """
        if not self.invertible:
            raise BuildError(
                f"节点 {self.label}（{self.node_type.value}）不可反转",
                node_id=self.uuid,
                node_name=self.name,
            )
        clone = self._copy()
        clone._attr.inverted = not self.inverted
        return clone

    # ------------------------------------------------------------------
    # 分析
    # ------------------------------------------------------------------

    def analyze(
        self,
        inputs: Optional[LightResult],
        kind: AnalyzerKind,
        ctx: Optional[AnalysisContext] = None,
        inverted: Optional[bool] = None,
        iso: Optional[Isometry] = None,
    ) -> LightResult:
        """分析节点

        参数:
            inputs: 输入端口名 -> 光数据；缺少的端口表示“无数据”
            kind: 分析类型
            ctx: 分析上下文，None 时创建临时上下文
            inverted: 朝向，None 时使用节点自身朝向
            iso: 本次调用中节点的位置，None 时使用节点自身位置

        返回:
            输出端口名 -> 光数据

        异常:
            PortConnectionError: 输入包含不存在的输入端口
            LightDataTypeError: 光数据类型与分析类型不匹配
            AnalysisError: 节点不支持该分析类型，或缺少必需的输入
        """
        inv = self.inverted if inverted is None else bool(inverted)
        if ctx is None:
            ctx = AnalysisContext(kind)
        input_names = self.ports(inv).input_names()
        inputs = {port: data for port, data in (inputs or {}).items() if data is not None}
        for port in inputs:
            if port not in input_names:
                raise PortConnectionError(
                    f"节点 {self.label} 在当前朝向下没有输入端口 '{port}'，可用输入端口：{input_names}",
                    node_id=self.uuid,
                    node_name=self.name,
                )
        if self.require_all_inputs:
            missing = [port for port in input_names if port not in inputs]
            if missing:
                raise AnalysisError(
                    f"节点 {self.label} 要求所有输入端口都有数据，缺少：{missing}",
                    node_id=self.uuid,
                    node_name=self.name,
                )

        call = NodeCall(self, ctx, kind, inv, iso)
        if kind is AnalyzerKind.ENERGY:
            outputs = self._analyze_energy(inputs, call)
        else:
            outputs = self._apply_ray_limits(self._analyze_rays(inputs, call), call)
        if call.clipped:
            ctx.warn(ApodizationWarning, f"节点 {self.label} 的端口孔径截断了光线")
        return outputs

    def _analyze_energy(self, inputs: LightResult, call: NodeCall) -> LightResult:
        raise AnalysisError(
            f"节点 {self.label}（{self.node_type.value}）不支持能量分析",
            node_id=self.uuid,
            node_name=self.name,
        )

    def _analyze_rays(self, inputs: LightResult, call: NodeCall) -> LightResult:
        raise AnalysisError(
            f"节点 {self.label}（{self.node_type.value}）不支持光线追迹分析",
            node_id=self.uuid,
            node_name=self.name,
        )

    def _apply_ray_limits(self, outputs: LightResult, call: NodeCall) -> LightResult:
        """对输出光线应用能量阈值以及折射 / 反射次数上限"""
        config = call.ctx.ray_trace_config
        limited: LightResult = {}
        dropped = 0
        for port, data in outputs.items():
            if data is None or not data.is_geometric:
                limited[port] = data
                continue
            bundle = data.bundle
            before = bundle.nr_of_valid_rays
            bundle = bundle.invalidate_below(config.min_energy_per_ray)
            dropped += before - bundle.nr_of_valid_rays
            over = (
                (bundle.refractions > config.max_number_of_refractions)
                | (bundle.bounces > config.max_number_of_bounces)
            )
            if np.any(over & bundle.valid):
                bundle = bundle.invalidated(over)
            limited[port] = LightData.geometric(bundle)
        if dropped:
            call.ctx.warn(
                LowEnergyWarning,
                f"节点 {self.label} 有 {dropped} 条光线能量低于 "
                f"{config.min_energy_per_ray} J，已标记为无效",
            )
        return limited

    # ------------------------------------------------------------------
    # 三维表面
    # ------------------------------------------------------------------

    def _local_surfaces(self, inverted: bool) -> List[OpticSurface]:
        """节点局部坐标系中的表面（按光线经过的顺序）"""
        return []

    def surfaces(
        self,
        inverted: Optional[bool] = None,
        iso: Optional[Isometry] = None,
    ) -> List[OpticSurface]:
        """放置后的表面列表

        参数:
            inverted: 朝向，None 时使用节点自身朝向
            iso: 节点位置，None 时使用节点自身位置；两者均无时返回局部表面
        """
        inv = self.inverted if inverted is None else bool(inverted)
        placement = iso if iso is not None else self.isometry
        local = self._local_surfaces(inv)
        if placement is None:
            return local
        return [surface.placed(placement) for surface in local]

    # ------------------------------------------------------------------
    # 报告
    # ------------------------------------------------------------------

    def _report_data(self, record) -> Dict[str, Any]:
        return {}

    def report(self, record=None) -> NodeReport:
        """生成节点报告

        参数:
            record: 分析得到的探测器记录（DetectorRecord），None 表示只报告属性
        """
        return NodeReport(
            node_type=self.node_type.value,
            name=self.name,
            uuid=self.uuid,
            properties=self.properties,
            data=self._report_data(record) if record is not None else {},
        )

    def __repr__(self) -> str:
        inv = ", inverted" if self.inverted else ""
        return f"{type(self).__name__}('{self.name}'{inv})"
