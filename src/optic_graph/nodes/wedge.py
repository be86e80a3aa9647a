"""
光楔

两个平面：第一面垂直于光轴位于原点，第二面位于 z = thickness 处并绕局部
X 轴倾斜 wedge_angle。反转后沿光轴镜像：第一面倾斜 -wedge_angle，第二面垂直于光轴。
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Union

import numpy as np

from ..coatings import Coating, IdealAR
from ..exceptions import BuildError
from ..geometry import Isometry
from ..light import LightData, LightResult
from ..refractive_index import AIR, RefractiveIndex
from ..surfaces import OpticSurface, Plane, SurfaceKind
from .base import NodeCall, NodeType, OpticNode
from .lens import _as_index, trace_refractive_surfaces


class Wedge(OpticNode):
    """光楔

    参数:
        name: 名称
        thickness: 中心厚度 (mm)
        wedge_angle: 楔角 (rad)，|角度| < π/2
        refractive_index: 材料折射率
        coating: 膜层
    """

    node_type = NodeType.WEDGE
    default_name = "wedge"

    def __init__(
        self,
        name: Optional[str] = None,
        thickness: float = 10.0,
        wedge_angle: float = 0.0,
        refractive_index: Union[float, RefractiveIndex] = 1.5,
        coating: Optional[Coating] = None,
    ) -> None:
        super().__init__(name)
        if not np.isfinite(thickness) or thickness < 0.0:
            raise BuildError(
                f"光楔 {self.label} 的厚度必须为非负有限值，实际为 {thickness} mm",
                node_id=self.uuid,
                node_name=self.name,
            )
        if not np.isfinite(wedge_angle) or abs(wedge_angle) >= np.pi / 2:
            raise BuildError(
                f"光楔 {self.label} 的楔角必须位于 (-π/2, π/2)，实际为 {wedge_angle} rad",
                node_id=self.uuid,
                node_name=self.name,
            )
        self.thickness = float(thickness)
        self.wedge_angle = float(wedge_angle)
        self.refractive_index = _as_index(refractive_index)
        self.coating = coating or IdealAR()

    def _node_properties(self) -> Dict[str, Any]:
        return {
            "thickness_mm": self.thickness,
            "wedge_angle_rad": self.wedge_angle,
            "refractive_index": repr(self.refractive_index),
        }

    def _local_surfaces(self, inverted: bool) -> List[OpticSurface]:
        if inverted:
            front_iso = Isometry.new(rotation_angles=(-self.wedge_angle, 0.0, 0.0))
            rear_iso = Isometry.along_z(self.thickness)
            in_port, out_port = "output_1", "input_1"
        else:
            front_iso = Isometry.identity()
            rear_iso = Isometry.new((0.0, 0.0, self.thickness), (self.wedge_angle, 0.0, 0.0))
            in_port, out_port = "input_1", "output_1"
        return [
            OpticSurface(
                "front",
                Plane(),
                front_iso,
                kind=SurfaceKind.REFRACTIVE,
                n_neg=AIR,
                n_pos=self.refractive_index,
                coating=self.coating,
                aperture=self.port_aperture(in_port),
            ),
            OpticSurface(
                "rear",
                Plane(),
                rear_iso,
                kind=SurfaceKind.REFRACTIVE,
                n_neg=self.refractive_index,
                n_pos=AIR,
                coating=self.coating,
                aperture=self.port_aperture(out_port),
            ),
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
        return {call.out_port: LightData.geometric(trace_refractive_surfaces(self, bundle, call, iso))}
