"""
理想滤光片

按常数透过率或透过率曲线（Spectrum，取值 [0, 1]）衰减光能量，不改变光线方向。
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Union

from ..exceptions import BuildError
from ..light import LightData, LightResult
from ..spectrum import Spectrum
from ..surfaces import OpticSurface, Plane, SurfaceKind
from .base import NodeCall, NodeType, OpticNode


class IdealFilter(OpticNode):
    """理想滤光片

    参数:
        name: 名称
        transmission: 常数透过率 [0, 1] 或透过率曲线

    示例:
        >>> f = IdealFilter("ND", 0.1)
        >>> f.transmission
        0.1
    """

    node_type = NodeType.IDEAL_FILTER
    default_name = "ideal filter"

    def __init__(
        self,
        name: Optional[str] = None,
        transmission: Union[float, Spectrum] = 1.0,
    ) -> None:
        super().__init__(name)
        self.transmission = transmission

    @property
    def transmission(self) -> Union[float, Spectrum]:
        return self._transmission

    @transmission.setter
    def transmission(self, value: Union[float, Spectrum]) -> None:
        if isinstance(value, Spectrum):
            if not value.is_transmission_spectrum():
                raise BuildError(
                    f"滤光片 {self.label} 的透过率曲线取值必须位于 [0, 1] 范围内",
                    node_id=self.uuid,
                    node_name=self.name,
                )
        elif not (0.0 <= float(value) <= 1.0):
            raise BuildError(
                f"滤光片 {self.label} 的透过率必须位于 [0, 1] 范围内，实际为 {value}",
                node_id=self.uuid,
                node_name=self.name,
            )
        else:
            value = float(value)
        self._transmission = value

    def _node_properties(self) -> Dict[str, Any]:
        if isinstance(self._transmission, Spectrum):
            return {"transmission": self._transmission.to_dict()}
        return {"transmission": self._transmission}

    def _local_surfaces(self, inverted: bool) -> List[OpticSurface]:
        return [
            OpticSurface(
                "filter",
                Plane(),
                kind=SurfaceKind.FILTER,
                transmission=self._transmission,
                aperture=self.port_aperture("output_1" if inverted else "input_1"),
            )
        ]

    def _analyze_energy(self, inputs: LightResult, call: NodeCall) -> LightResult:
        spectrum = call.spectrum(inputs, call.in_port)
        if spectrum is None:
            return {}
        if isinstance(self._transmission, Spectrum):
            filtered = spectrum.filtered(self._transmission)
        else:
            filtered = spectrum.scaled(self._transmission)
        return {call.out_port: LightData.spectral(filtered)}

    def _analyze_rays(self, inputs: LightResult, call: NodeCall) -> LightResult:
        bundle = call.bundle(inputs, call.in_port)
        if bundle is None:
            return {}
        iso = call.placement(bundle)
        plane = self.surfaces(inverted=call.inverted, iso=iso)[0]
        bundle = bundle.propagate_to_surface(plane)
        bundle = call.apodize(bundle, call.in_port, iso)
        bundle = bundle.filter_energy(self._transmission)
        bundle = call.apodize(bundle, call.out_port, iso)
        return {call.out_port: LightData.geometric(bundle)}
