"""
探测器节点

探测器只有一个输入端口 input_1，没有输出端口（因此 is_detector() 为 True）。
分析时把到达的光数据记录到分析上下文中，同时保留孔径截断前后的两份数据：

- EnergyMeter: 能量计
- Spectrometer: 光谱仪
- SpotDiagram: 点列图
- FluenceDetector: 能量密度探测器
- RayPropagationVisualizer: 光线传播路径记录

WavefrontMonitor 是例外：它带有输出端口，记录光数据后让光继续传播。

光线追迹中，光线先被传播到探测器平面（节点局部 XY 平面）再截断和记录。
探测器不可反转。
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import numpy as np

from ..context import DetectorRecord
from ..exceptions import BuildError
from ..fluence import FluenceEstimator, estimate_fluence
from ..light import LightData, LightResult
from ..ports import OpticPorts, PortDirection
from ..surfaces import OpticSurface, Plane, SurfaceKind
from ..wavefront import WavefrontMap, wavefront_error, wavefront_maps
from .base import NodeCall, NodeType, OpticNode


class DetectorNode(OpticNode):
    """探测器基类"""

    invertible = False

    def _create_ports(self) -> OpticPorts:
        ports = OpticPorts()
        ports.add("input_1", PortDirection.INPUT)
        return ports

    def _local_surfaces(self, inverted: bool) -> List[OpticSurface]:
        return [
            OpticSurface(
                "detector",
                Plane(),
                kind=SurfaceKind.DETECTOR,
                aperture=self.port_aperture("input_1"),
            )
        ]

    def _record(self, call: NodeCall, light: LightData, unapodized: LightData, iso=None) -> None:
        call.ctx.record(DetectorRecord(self.uuid, self.name, light, unapodized, iso))

    def _analyze_energy(self, inputs: LightResult, call: NodeCall) -> LightResult:
        data = inputs.get("input_1")
        if data is not None:
            self._record(call, data, data)
        return {}

    def _analyze_rays(self, inputs: LightResult, call: NodeCall) -> LightResult:
        bundle = call.bundle(inputs, "input_1")
        if bundle is None:
            return {}
        iso = call.placement(bundle)
        plane = self.surfaces(inverted=call.inverted, iso=iso)[0]
        arrived = bundle.propagate_to_surface(plane)
        apodized = call.apodize(arrived, "input_1", iso)
        self._record(call, LightData.geometric(apodized), LightData.geometric(arrived), iso)
        return {}

    def _report_data(self, record: DetectorRecord) -> Dict[str, Any]:
        return {"total_energy_J": record.light.total_energy()}


class EnergyMeter(DetectorNode):
    """能量计"""

    node_type = NodeType.ENERGY_METER
    default_name = "energy meter"

    def _report_data(self, record: DetectorRecord) -> Dict[str, Any]:
        return {
            "total_energy_J": record.light.total_energy(),
            "unapodized_energy_J": record.unapodized.total_energy() if record.unapodized is not None else None,
        }


class Spectrometer(DetectorNode):
    """光谱仪

    参数:
        resolution: 由光线转换为光谱时的波长分辨率 (μm)
    """

    node_type = NodeType.SPECTROMETER
    default_name = "spectrometer"

    def __init__(self, name: Optional[str] = None, resolution: float = 0.001) -> None:
        super().__init__(name)
        if not resolution > 0.0:
            raise BuildError(
                f"光谱仪 {self.label} 的分辨率必须为正值，实际为 {resolution} μm",
                node_id=self.uuid,
                node_name=self.name,
            )
        self.resolution = resolution

    def _node_properties(self) -> Dict[str, Any]:
        return {"resolution_um": self.resolution}

    def spectrum(self, record: DetectorRecord):
        data = record.light.to_spectral(self.resolution)
        return None if data is None else data.spectrum

    def _report_data(self, record: DetectorRecord) -> Dict[str, Any]:
        spectrum = self.spectrum(record)
        if spectrum is None:
            return {"spectrum": None}
        return {
            "spectrum": spectrum.to_dict(),
            "wavelengths_um": spectrum.wavelengths.tolist(),
            "values_J_per_um": spectrum.values.tolist(),
        }


class SpotDiagram(DetectorNode):
    """点列图：记录光线在探测器平面上的位置"""

    node_type = NodeType.SPOT_DIAGRAM
    default_name = "spot diagram"

    def _report_data(self, record: DetectorRecord) -> Dict[str, Any]:
        if not record.light.is_geometric:
            return {"total_energy_J": record.light.total_energy()}
        bundle = record.light.bundle
        valid = bundle.valid
        return {
            **bundle.to_dict(),
            "positions_mm": bundle.positions[valid].tolist(),
            "wavelengths_um": bundle.wavelengths[valid].tolist(),
        }


class FluenceDetector(DetectorNode):
    """能量密度探测器

    参数:
        estimator: 能量密度估计方法
        nr_of_points: 网格类估计方法的网格大小
    """

    node_type = NodeType.FLUENCE_DETECTOR
    default_name = "fluence detector"

    def __init__(
        self,
        name: Optional[str] = None,
        estimator: FluenceEstimator = FluenceEstimator.VORONOI,
        nr_of_points=(100, 100),
    ) -> None:
        super().__init__(name)
        self.estimator = estimator
        self.nr_of_points = tuple(nr_of_points)

    def _node_properties(self) -> Dict[str, Any]:
        return {"estimator": self.estimator.value, "nr_of_points": list(self.nr_of_points)}

    def fluence(self, record: DetectorRecord, iso=None):
        """由探测器记录计算能量密度（iso 为探测器平面位置）"""
        if not record.light.is_geometric:
            raise ValueError(f"探测器 {self.label} 记录的不是几何光线数据，无法计算能量密度")
        return estimate_fluence(
            record.light.bundle,
            self.estimator,
            iso=iso if iso is not None else record.isometry,
            nr_of_points=self.nr_of_points,
        )

    def _report_data(self, record: DetectorRecord) -> Dict[str, Any]:
        if not record.light.is_geometric:
            return {"total_energy_J": record.light.total_energy()}
        try:
            return self.fluence(record).to_dict()
        except ValueError as err:
            return {"total_energy_J": record.light.total_energy(), "fluence_error": str(err)}


class RayPropagationVisualizer(DetectorNode):
    """光线传播路径记录：报告每条有效光线的完整位置历史"""

    node_type = NodeType.RAY_PROPAGATION_VISUALIZER
    default_name = "ray propagation"

    def _report_data(self, record: DetectorRecord) -> Dict[str, Any]:
        if not record.light.is_geometric:
            return {"total_energy_J": record.light.total_energy()}
        bundle = record.unapodized.bundle if record.unapodized is not None else record.light.bundle
        histories = bundle.position_histories()
        return {
            "nr_of_rays": bundle.nr_of_rays,
            "paths_mm": [h.tolist() for h, ok in zip(histories, bundle.valid) if ok],
            "wavelengths_um": np.asarray(bundle.wavelengths)[bundle.valid].tolist(),
        }


class WavefrontMonitor(OpticNode):
    """波前监视器

    与探测器不同，监视器带有输出端口：光线在监视器平面上被记录后原样继续传播，
    因此可以放在光路中间。报告中给出波前误差图的峰谷值与均方根（单位：波长数）。

    参数:
        per_wavelength: True 时每个光谱分量单独计算一张波前误差图，
            否则使用能量加权中心波长
    """

    node_type = NodeType.WAVEFRONT
    default_name = "wavefront monitor"
    monitor = True

    def __init__(self, name: Optional[str] = None, per_wavelength: bool = False) -> None:
        super().__init__(name)
        self.per_wavelength = bool(per_wavelength)

    def _node_properties(self) -> Dict[str, Any]:
        return {"per_wavelength": self.per_wavelength}

    def _local_surfaces(self, inverted: bool) -> List[OpticSurface]:
        return [
            OpticSurface(
                "monitor",
                Plane(),
                kind=SurfaceKind.MONITOR,
                aperture=self.port_aperture("output_1" if inverted else "input_1"),
            )
        ]

    def _analyze_energy(self, inputs: LightResult, call: NodeCall) -> LightResult:
        data = inputs.get(call.in_port)
        if data is None:
            return {}
        call.ctx.record(DetectorRecord(self.uuid, self.name, data, data))
        return {call.out_port: data}

    def _analyze_rays(self, inputs: LightResult, call: NodeCall) -> LightResult:
        bundle = call.bundle(inputs, call.in_port)
        if bundle is None:
            return {}
        iso = call.placement(bundle)
        plane = self.surfaces(inverted=call.inverted, iso=iso)[0]
        arrived = bundle.propagate_to_surface(plane)
        apodized = call.apodize(arrived, call.in_port, iso)
        call.ctx.record(
            DetectorRecord(self.uuid, self.name, LightData.geometric(apodized), LightData.geometric(arrived), iso)
        )
        return {call.out_port: LightData.geometric(call.apodize(apodized, call.out_port, iso))}

    def wavefront(self, record: DetectorRecord) -> List[WavefrontMap]:
        """由监视器记录计算波前误差图"""
        if not record.light.is_geometric:
            raise ValueError(f"监视器 {self.label} 记录的不是几何光线数据，无法计算波前误差")
        bundle = record.light.bundle
        if self.per_wavelength:
            return wavefront_maps(bundle, record.isometry)
        return [wavefront_error(bundle, record.isometry)]

    def _report_data(self, record: DetectorRecord) -> Dict[str, Any]:
        if not record.light.is_geometric:
            return {"total_energy_J": record.light.total_energy()}
        try:
            maps = self.wavefront(record)
        except ValueError as err:
            return {"total_energy_J": record.light.total_energy(), "wavefront_error": str(err)}
        return {"total_energy_J": record.light.total_energy(), "maps": [m.to_dict() for m in maps]}
