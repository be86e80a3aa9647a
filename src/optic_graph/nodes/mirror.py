"""
反射镜节点

- ThinMirror: 平面或球面反射镜
- ParabolicMirror: 抛物面反射镜（离轴抛物镜可通过 isometry 放置实现）

反射镜表面顶点位于节点局部原点，法向沿局部 +Z。反转后曲率半径（或焦距）取反。
能量分析中按反射率缩放光谱。
"""

from __future__ import annotations

from abc import abstractmethod
from typing import Any, Dict, List, Optional

import numpy as np

from ..exceptions import BuildError
from ..light import LightData, LightResult
from ..surfaces import GeometricSurface, OpticSurface, Parabola, SurfaceKind
from .base import NodeCall, OpticNode, NodeType
from .lens import _sphere_or_plane


class _Mirror(OpticNode):
    """反射镜公共实现"""

    def __init__(self, name: Optional[str] = None, reflectivity: float = 1.0) -> None:
        super().__init__(name)
        if not (0.0 <= reflectivity <= 1.0):
            raise BuildError(
                f"反射镜 {self.label} 的反射率必须位于 [0, 1] 范围内，实际为 {reflectivity}",
                node_id=self.uuid,
                node_name=self.name,
            )
        self.reflectivity = float(reflectivity)

    @abstractmethod
    def _geometry(self, inverted: bool) -> GeometricSurface:
        """局部坐标系中的反射面（inverted 时镜像）"""

    def _local_surfaces(self, inverted: bool) -> List[OpticSurface]:
        return [
            OpticSurface(
                "mirror",
                self._geometry(inverted),
                kind=SurfaceKind.MIRROR,
                reflectivity=self.reflectivity,
                aperture=self.port_aperture("output_1" if inverted else "input_1"),
            )
        ]

    def _analyze_energy(self, inputs: LightResult, call: NodeCall) -> LightResult:
        spectrum = call.spectrum(inputs, call.in_port)
        if spectrum is None:
            return {}
        return {call.out_port: LightData.spectral(spectrum.scaled(self.reflectivity))}

    def _analyze_rays(self, inputs: LightResult, call: NodeCall) -> LightResult:
        bundle = call.bundle(inputs, call.in_port)
        if bundle is None:
            return {}
        iso = call.placement(bundle)
        surface = self.surfaces(inverted=call.inverted, iso=iso)[0]
        bundle = bundle.reflect_on_surface(surface)
        bundle = call.apodize(bundle, call.in_port, iso)
        bundle = call.apodize(bundle, call.out_port, iso)
        return {call.out_port: LightData.geometric(bundle)}


class ThinMirror(_Mirror):
    """平面 / 球面反射镜

    参数:
        name: 名称
        curvature: 曲率半径 (mm)，np.inf 为平面镜；R < 0 为沿 +Z 入射光的凹面镜（焦点位于 z = R/2）
        reflectivity: 能量反射率
    """

    node_type = NodeType.THIN_MIRROR
    default_name = "mirror"

    def __init__(
        self,
        name: Optional[str] = None,
        curvature: float = np.inf,
        reflectivity: float = 1.0,
    ) -> None:
        super().__init__(name, reflectivity)
        if np.isnan(curvature) or curvature == 0.0:
            raise BuildError(
                f"反射镜 {self.label} 的曲率半径必须为非零值或 np.inf，实际为 {curvature}",
                node_id=self.uuid,
                node_name=self.name,
            )
        self.curvature = float(curvature)

    def _geometry(self, inverted: bool) -> GeometricSurface:
        return _sphere_or_plane(-self.curvature if inverted else self.curvature)

    def _node_properties(self) -> Dict[str, Any]:
        return {"curvature_mm": self.curvature, "reflectivity": self.reflectivity}


class ParabolicMirror(_Mirror):
    """抛物面反射镜

    参数:
        name: 名称
        focal_length: 焦距 (mm)，正值为会聚（焦点位于入射一侧）
        reflectivity: 能量反射率
    """

    node_type = NodeType.PARABOLIC_MIRROR
    default_name = "parabolic mirror"

    def __init__(
        self,
        name: Optional[str] = None,
        focal_length: float = 100.0,
        reflectivity: float = 1.0,
    ) -> None:
        super().__init__(name, reflectivity)
        if not np.isfinite(focal_length) or focal_length == 0.0:
            raise BuildError(
                f"抛物面镜 {self.label} 的焦距必须为非零有限值，实际为 {focal_length} mm",
                node_id=self.uuid,
                node_name=self.name,
            )
        self.focal_length = float(focal_length)

    def _geometry(self, inverted: bool) -> GeometricSurface:
        return Parabola(-self.focal_length if inverted else self.focal_length)

    def _node_properties(self) -> Dict[str, Any]:
        return {"focal_length_mm": self.focal_length, "reflectivity": self.reflectivity}
