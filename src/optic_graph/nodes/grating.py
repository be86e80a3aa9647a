"""
反射式光栅

平面光栅位于节点局部 XY 平面，刻线沿局部 Y 轴，光栅矢量沿局部 X 轴。
光线按给定衍射级反射衍射，无法传播的衍射级被标记为无效。
能量分析中光谱原样通过（不考虑衍射效率）。

Littrow 配置下衍射光沿入射方向返回：sin θ = m·λ·ρ / 2，
littrow_isometry() 给出绕局部 Y 轴旋转 θ 的放置位姿。
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import numpy as np

from ..exceptions import BuildError
from ..geometry import Isometry
from ..light import LightData, LightResult
from ..surfaces import OpticSurface, Plane, SurfaceKind
from .base import NodeCall, NodeType, OpticNode


class ReflectiveGrating(OpticNode):
    """反射式平面光栅

    参数:
        name: 名称
        line_density: 线密度 (1/mm)，正值
        diffraction_order: 衍射级次

    示例:
        >>> grating = ReflectiveGrating("G1")
        >>> round(grating.littrow_angle(1.053), 4)
        -1.1583
    """

    node_type = NodeType.REFLECTIVE_GRATING
    default_name = "reflective grating"

    def __init__(
        self,
        name: Optional[str] = None,
        line_density: float = 1740.0,
        diffraction_order: int = -1,
    ) -> None:
        super().__init__(name)
        if not np.isfinite(line_density) or line_density <= 0.0:
            raise BuildError(
                f"光栅 {self.label} 的线密度必须为正的有限值，实际为 {line_density} 1/mm",
                node_id=self.uuid,
                node_name=self.name,
            )
        self.line_density = float(line_density)
        self.diffraction_order = int(diffraction_order)

    def _node_properties(self) -> Dict[str, Any]:
        return {"line_density_per_mm": self.line_density, "diffraction_order": self.diffraction_order}

    # ------------------------------------------------------------------
    # Littrow 配置
    # ------------------------------------------------------------------

    def littrow_angle(self, wavelength: float) -> float:
        """给定波长 (μm) 的 Littrow 角 (rad)

        异常:
            ValueError: 该波长不存在 Littrow 配置
        """
        sin_theta = self.diffraction_order * wavelength * 1e-3 * self.line_density / 2.0
        if abs(sin_theta) > 1.0:
            raise ValueError(
                f"光栅 {self.label} 在波长 {wavelength} μm、衍射级 {self.diffraction_order} 下没有 Littrow 配置"
            )
        return float(np.arcsin(sin_theta))

    def littrow_wavelength(self, angle: float) -> float:
        """Littrow 角 (rad) 对应的波长 (μm)"""
        if self.diffraction_order == 0:
            raise ValueError(f"光栅 {self.label} 的零级衍射没有 Littrow 波长")
        return float(2.0 * np.sin(angle) / (self.diffraction_order * self.line_density) * 1e3)

    def littrow_isometry(self, position, wavelength: float) -> Isometry:
        """沿 +Z 入射、以 Littrow 配置放置光栅的位姿"""
        return Isometry.new(position, (0.0, self.littrow_angle(wavelength), 0.0))

    # ------------------------------------------------------------------
    # 表面与分析
    # ------------------------------------------------------------------

    def _local_surfaces(self, inverted: bool) -> List[OpticSurface]:
        return [
            OpticSurface(
                "grating",
                Plane(),
                kind=SurfaceKind.GRATING,
                aperture=self.port_aperture("output_1" if inverted else "input_1"),
                line_density=self.line_density,
                diffraction_order=self.diffraction_order,
            )
        ]

    def _analyze_energy(self, inputs: LightResult, call: NodeCall) -> LightResult:
        spectrum = call.spectrum(inputs, call.in_port)
        if spectrum is None:
            return {}
        return {call.out_port: LightData.spectral(spectrum)}

    def _analyze_rays(self, inputs: LightResult, call: NodeCall) -> LightResult:
        bundle = call.bundle(inputs, call.in_port)
        if bundle is None:
            return {}
        iso = call.placement(bundle)
        surface = self.surfaces(inverted=call.inverted, iso=iso)[0]
        bundle = bundle.diffract_on_grating(surface)
        bundle = call.apodize(bundle, call.in_port, iso)
        bundle = call.apodize(bundle, call.out_port, iso)
        return {call.out_port: LightData.geometric(bundle)}
