"""
Dummy 节点：理想直通元件，只应用端口孔径，不改变光线方向与能量
"""

from __future__ import annotations

from ..light import LightData, LightResult
from ..surfaces import OpticSurface, Plane
from .base import NodeCall, NodeType, OpticNode


class Dummy(OpticNode):
    """理想直通节点（input_1 -> output_1）

    光线追迹时光线被传播到节点局部 XY 平面，再依次应用输入、输出端口孔径。
    Dummy 没有三维表面，非序列分析中不参与光线投射。
    """

    node_type = NodeType.DUMMY
    default_name = "dummy"

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
        bundle = bundle.propagate_to_surface(OpticSurface("dummy", Plane(), iso))
        bundle = call.apodize(bundle, call.in_port, iso)
        bundle = call.apodize(bundle, call.out_port, iso)
        return {call.out_port: LightData.geometric(bundle)}
