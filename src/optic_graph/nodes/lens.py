"""
透镜类节点

- Lens: 厚透镜，两个球面（或平面）+ 中心厚度 + 色散折射率
- CylindricLens: 柱面厚透镜，曲率沿局部 Y 方向
- ParaxialSurface: 理想薄透镜（近轴面）

透镜在节点局部坐标系中沿 +Z 排列：第一面顶点位于原点，第二面顶点位于
z = center_thickness。曲率半径符号约定：R > 0 表示曲率中心在 +Z 一侧，
np.inf 表示平面。

反转后透镜沿光轴镜像：第一面半径为 -R2，第二面半径为 -R1。
第一面使用当前朝向下输入端口的孔径，第二面使用输出端口的孔径。
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Union

import numpy as np

from ..coatings import Coating, IdealAR
from ..exceptions import BuildError
from ..geometry import Isometry
from ..light import LightData, LightResult
from ..rays import RayBundle
from ..refractive_index import AIR, ConstantIndex, RefractiveIndex
from ..surfaces import Cylinder, GeometricSurface, OpticSurface, Plane, Sphere, SurfaceKind
from .base import NodeCall, NodeType, OpticNode


def _sphere_or_plane(radius: float) -> GeometricSurface:
    if np.isinf(radius):
        return Plane()
    return Sphere(radius)


def _as_index(value: Union[float, RefractiveIndex]) -> RefractiveIndex:
    if isinstance(value, RefractiveIndex):
        return value
    return ConstantIndex(float(value))


def trace_refractive_surfaces(
    node: OpticNode,
    bundle: RayBundle,
    call: NodeCall,
    iso: Isometry,
) -> RayBundle:
    """按顺序通过节点的折射面

    每个面：折射、收集膜层反射（序列鬼像分析）、按表面孔径截断。
    第一面的截断记入输入端口，最后一面的截断记入输出端口。
    """
    surfaces = node.surfaces(inverted=call.inverted, iso=iso)
    ports = [call.in_port] + [None] * (len(surfaces) - 2) + [call.out_port]
    for surface, port in zip(surfaces, ports):
        bundle, reflected = bundle.refract_on_surface(surface)
        call.stray(surface.name, reflected)
        if port is not None:
            bundle = call.apodize(bundle, port, surface.isometry)
    return bundle


class Lens(OpticNode):
    """厚透镜

    参数:
        name: 名称
        front_curvature: 第一面曲率半径 (mm)，np.inf 为平面
        rear_curvature: 第二面曲率半径 (mm)，np.inf 为平面
        center_thickness: 中心厚度 (mm)
        refractive_index: 透镜材料折射率（常数或色散模型）
        coating: 两个表面的膜层，默认理想增透

    示例:
        >>> lens = Lens("L1", 100.0, -100.0, 5.0, 1.5)
        >>> [s.name for s in lens.surfaces()]
        ['front', 'rear']
    """

    node_type = NodeType.LENS
    default_name = "lens"

    def __init__(
        self,
        name: Optional[str] = None,
        front_curvature: float = np.inf,
        rear_curvature: float = np.inf,
        center_thickness: float = 10.0,
        refractive_index: Union[float, RefractiveIndex] = 1.5,
        coating: Optional[Coating] = None,
    ) -> None:
        super().__init__(name)
        for label, radius in (("front_curvature", front_curvature), ("rear_curvature", rear_curvature)):
            if np.isnan(radius) or radius == 0.0:
                raise BuildError(
                    f"透镜 {self.label} 的 {label} 必须为非零值或 np.inf，实际为 {radius}",
                    node_id=self.uuid,
                    node_name=self.name,
                )
        if not np.isfinite(center_thickness) or center_thickness < 0.0:
            raise BuildError(
                f"透镜 {self.label} 的中心厚度必须为非负有限值，实际为 {center_thickness} mm",
                node_id=self.uuid,
                node_name=self.name,
            )
        self.front_curvature = float(front_curvature)
        self.rear_curvature = float(rear_curvature)
        self.center_thickness = float(center_thickness)
        self.refractive_index = _as_index(refractive_index)
        self.coating = coating or IdealAR()

    def _node_properties(self) -> Dict[str, Any]:
        return {
            "front_curvature_mm": self.front_curvature,
            "rear_curvature_mm": self.rear_curvature,
            "center_thickness_mm": self.center_thickness,
            "refractive_index": repr(self.refractive_index),
            "coating": type(self.coating).__name__,
        }

    def _geometry(self, radius: float) -> GeometricSurface:
        return _sphere_or_plane(radius)

    def _local_surfaces(self, inverted: bool) -> List[OpticSurface]:
        if inverted:
            r1, r2 = -self.rear_curvature, -self.front_curvature
            in_port, out_port = "output_1", "input_1"
        else:
            r1, r2 = self.front_curvature, self.rear_curvature
            in_port, out_port = "input_1", "output_1"
        return [
            OpticSurface(
                "front",
                self._geometry(r1),
                kind=SurfaceKind.REFRACTIVE,
                n_neg=AIR,
                n_pos=self.refractive_index,
                coating=self.coating,
                aperture=self.port_aperture(in_port),
            ),
            OpticSurface(
                "rear",
                self._geometry(r2),
                Isometry.along_z(self.center_thickness),
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


class CylindricLens(Lens):
    """柱面厚透镜

    两个表面为母线沿局部 X 轴的柱面（或平面），只在 Y 方向会聚或发散，
    X 方向的光线不偏折。曲率半径、厚度与折射率约定同 Lens。

    示例:
        >>> lens = CylindricLens("C1")
        >>> lens.surfaces()[0].geometry.to_dict()
        {'type': 'cylinder', 'radius_mm': 500.0}
    """

    node_type = NodeType.CYLINDRIC_LENS
    default_name = "cylindric lens"

    def __init__(
        self,
        name: Optional[str] = None,
        front_curvature: float = 500.0,
        rear_curvature: float = -500.0,
        center_thickness: float = 10.0,
        refractive_index: Union[float, RefractiveIndex] = 1.5,
        coating: Optional[Coating] = None,
    ) -> None:
        super().__init__(name, front_curvature, rear_curvature, center_thickness, refractive_index, coating)

    def _geometry(self, radius: float) -> GeometricSurface:
        if np.isinf(radius):
            return Plane()
        return Cylinder(radius)


class ParaxialSurface(OpticNode):
    """理想薄透镜

    参数:
        name: 名称
        focal_length: 焦距 (mm)，正值为会聚透镜
    """

    node_type = NodeType.PARAXIAL_SURFACE
    default_name = "paraxial surface"

    def __init__(self, name: Optional[str] = None, focal_length: float = 100.0) -> None:
        super().__init__(name)
        if not np.isfinite(focal_length) or focal_length == 0.0:
            raise BuildError(
                f"近轴面 {self.label} 的焦距必须为非零有限值，实际为 {focal_length} mm",
                node_id=self.uuid,
                node_name=self.name,
            )
        self.focal_length = float(focal_length)

    def _node_properties(self) -> Dict[str, Any]:
        return {"focal_length_mm": self.focal_length}

    def _local_surfaces(self, inverted: bool) -> List[OpticSurface]:
        return [
            OpticSurface(
                "paraxial",
                Plane(),
                kind=SurfaceKind.PARAXIAL,
                focal_length=self.focal_length,
                aperture=self.port_aperture("output_1" if inverted else "input_1"),
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
        bundle = bundle.refract_paraxial(self.focal_length, iso)
        bundle = call.apodize(bundle, call.in_port, iso)
        bundle = call.apodize(bundle, call.out_port, iso)
        return {call.out_port: LightData.geometric(bundle)}
