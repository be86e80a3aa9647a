"""
光源节点

光源只有一个输出端口 output_1，发出预先配置的光数据：
- 几何光数据（RayBundle）在光源局部坐标系中定义，分析时变换到光源位置
- 光谱光数据（Spectrum）用于能量分析

能量分析中，几何光源自动转换为光谱数据；光线追迹中光谱光源会导致
LightDataTypeError。光源不可反转。
"""

from __future__ import annotations

from typing import Any, Dict, Optional, Sequence, Tuple

from ..distributions import EnergyDistribution, PositionDistribution, UniformEnergy
from ..exceptions import BuildError
from ..geometry import Isometry
from ..light import LightData, LightResult
from ..ports import OpticPorts, PortDirection
from ..rays import RayBundle
from ..spectrum import Spectrum
from .base import NodeCall, NodeType, OpticNode


class Source(OpticNode):
    """光源

    参数:
        name: 名称
        light: 发出的光数据
        iso: 光源位置，None 表示未放置（序列分析中位于全局原点）

    示例:
        >>> from optic_graph.distributions import Hexapolar
        >>> src = Source.collimated("laser", Hexapolar(1.0, 3), UniformEnergy(1.0), 1.053)
        >>> src.is_source()
        True
    """

    node_type = NodeType.SOURCE
    default_name = "source"
    invertible = False

    def __init__(
        self,
        name: Optional[str] = None,
        light: Optional[LightData] = None,
        iso: Optional[Isometry] = None,
    ) -> None:
        super().__init__(name)
        if light is not None and not isinstance(light, LightData):
            raise BuildError(f"光源 {self.label} 的光数据必须为 LightData")
        self._light = light
        self.isometry = iso

    def _create_ports(self) -> OpticPorts:
        ports = OpticPorts()
        ports.add("output_1", PortDirection.OUTPUT)
        return ports

    # ------------------------------------------------------------------
    # 构造
    # ------------------------------------------------------------------

    @classmethod
    def collimated(
        cls,
        name: str,
        distribution: PositionDistribution,
        energy_distribution: EnergyDistribution,
        wavelength: float,
        helper_rays: bool = False,
        iso: Optional[Isometry] = None,
    ) -> "Source":
        """准直光束光源"""
        bundle = RayBundle.collimated(distribution, energy_distribution, wavelength, helper_rays=helper_rays)
        return cls(name, LightData.geometric(bundle), iso)

    @classmethod
    def point(
        cls,
        name: str,
        cone_angle: float,
        total_energy: float,
        wavelength: float,
        nr_of_rings: int = 5,
        iso: Optional[Isometry] = None,
    ) -> "Source":
        """点光源（锥形光束）"""
        bundle = RayBundle.point_source(cone_angle, total_energy, wavelength, nr_of_rings)
        return cls(name, LightData.geometric(bundle), iso)

    @classmethod
    def laser_lines(
        cls,
        name: str,
        lines: Sequence[Tuple[float, float]],
        distribution: PositionDistribution,
        iso: Optional[Isometry] = None,
    ) -> "Source":
        """多谱线准直光源

        参数:
            lines: [(波长 μm, 能量 J), ...]，每条谱线生成一个均匀能量的光线束
        """
        if not lines:
            raise BuildError("多谱线光源至少需要一条谱线")
        bundles = [
            RayBundle.collimated(distribution, UniformEnergy(energy), wavelength)
            for wavelength, energy in lines
        ]
        return cls(name, LightData.geometric(RayBundle.concatenate(bundles)), iso)

    @classmethod
    def spectral(cls, name: str, spectrum: Spectrum) -> "Source":
        """光谱光源（能量分析）"""
        return cls(name, LightData.spectral(spectrum))

    @property
    def light(self) -> Optional[LightData]:
        return self._light

    def set_light(self, light: LightData) -> None:
        self._light = light

    def emitted_bundle(self, iso: Optional[Isometry] = None) -> Optional[RayBundle]:
        """在给定位置（默认光源自身位置）发出的全局光线束"""
        if self._light is None or not self._light.is_geometric:
            return None
        placement = iso or self.isometry or Isometry.identity()
        return self._light.bundle.transformed(placement)

    # ------------------------------------------------------------------
    # 分析
    # ------------------------------------------------------------------

    def _analyze_energy(self, inputs: LightResult, call: NodeCall) -> LightResult:
        if self._light is None:
            return {}
        data = self._light.to_spectral()
        return {} if data is None else {"output_1": data}

    def _analyze_rays(self, inputs: LightResult, call: NodeCall) -> LightResult:
        if self._light is None:
            return {}
        bundle = call.bundle({"output_1": self._light}, "output_1")
        placement = call.placement()
        bundle = call.apodize(bundle.transformed(placement), "output_1", placement)
        return {"output_1": LightData.geometric(bundle)}

    def _node_properties(self) -> Dict[str, Any]:
        if self._light is None:
            return {"light": None}
        return {"light": self._light.to_dict()}
