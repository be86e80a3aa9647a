"""
分光镜

两个输入端口、两个输出端口：

    input_1 ──┬── out1_trans1_refl2 = 透射(input_1) + 反射(input_2)
    input_2 ──┴── out2_trans2_refl1 = 透射(input_2) + 反射(input_1)

分光方式由 SplittingConfig 给出（固定分光比或透过率曲线）。
反转后输入输出端口互换，输出按同样的规则组合：
    input_1 = 透射(out1_trans1_refl2) + 反射(out2_trans2_refl1)
    input_2 = 透射(out2_trans2_refl1) + 反射(out1_trans1_refl2)

序列光线追迹中分光只改变能量，不改变光线几何；三维光线投射中反射部分按
反射定律偏折（见 ghost_focus 分析器）。
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

from ..exceptions import BuildError
from ..light import LightData, LightResult
from ..ports import OpticPorts, PortDirection
from ..ray import SplittingConfig
from ..rays import RayBundle
from ..spectrum import Spectrum
from ..surfaces import OpticSurface, Plane, SurfaceKind
from .base import NodeCall, NodeType, OpticNode

INPUT_1 = "input_1"
INPUT_2 = "input_2"
OUTPUT_1 = "out1_trans1_refl2"
OUTPUT_2 = "out2_trans2_refl1"


class BeamSplitter(OpticNode):
    """理想分光镜

    参数:
        name: 名称
        config: 分光配置，默认 50:50

    示例:
        >>> bs = BeamSplitter("BS", SplittingConfig.ratio(0.3))
        >>> bs.ports().output_names()
        ['out1_trans1_refl2', 'out2_trans2_refl1']
    """

    node_type = NodeType.BEAM_SPLITTER
    default_name = "beam splitter"

    def __init__(self, name: Optional[str] = None, config: Optional[SplittingConfig] = None) -> None:
        super().__init__(name)
        if config is not None and not isinstance(config, SplittingConfig):
            raise BuildError(
                f"分光镜 {self.label} 的分光配置必须为 SplittingConfig",
                node_id=self.uuid,
                node_name=self.name,
            )
        self.config = config or SplittingConfig.ratio(0.5)

    def _create_ports(self) -> OpticPorts:
        ports = OpticPorts()
        ports.add(INPUT_1, PortDirection.INPUT)
        ports.add(INPUT_2, PortDirection.INPUT)
        ports.add(OUTPUT_1, PortDirection.OUTPUT)
        ports.add(OUTPUT_2, PortDirection.OUTPUT)
        return ports

    def _node_properties(self) -> Dict[str, Any]:
        return {"splitting_config": self.config.to_dict()}

    @staticmethod
    def _port_pairs(inverted: bool) -> Tuple[Tuple[str, str], Tuple[str, str]]:
        """(输入端口, 透射到达的输出端口) 对，反转时互换输入输出"""
        if inverted:
            return (OUTPUT_1, INPUT_1), (OUTPUT_2, INPUT_2)
        return (INPUT_1, OUTPUT_1), (INPUT_2, OUTPUT_2)

    def _local_surfaces(self, inverted: bool) -> List[OpticSurface]:
        return [
            OpticSurface(
                "splitter",
                Plane(),
                kind=SurfaceKind.SPLITTER,
                splitting=self.config,
                aperture=self.port_aperture(self._port_pairs(inverted)[0][0]),
            )
        ]

    # ------------------------------------------------------------------
    # 分析
    # ------------------------------------------------------------------

    def _split_spectrum(self, spectrum: Spectrum) -> Tuple[Spectrum, Spectrum]:
        if self.config.is_ratio:
            ratio = self.config.ratio_value
            return spectrum.scaled(ratio), spectrum.scaled(1.0 - ratio)
        return spectrum.split_by_spectrum(self.config.curve)

    def _analyze_energy(self, inputs: LightResult, call: NodeCall) -> LightResult:
        (in_a, out_a), (in_b, out_b) = self._port_pairs(call.inverted)
        parts: Dict[str, List[Spectrum]] = {out_a: [], out_b: []}
        for in_port, trans_port, refl_port in ((in_a, out_a, out_b), (in_b, out_b, out_a)):
            spectrum = call.spectrum(inputs, in_port)
            if spectrum is None:
                continue
            transmitted, reflected = self._split_spectrum(spectrum)
            parts[trans_port].append(transmitted)
            parts[refl_port].append(reflected)

        outputs: LightResult = {}
        for port, spectra in parts.items():
            if not spectra:
                continue
            merged = spectra[0]
            for other in spectra[1:]:
                merged = merged.merged(other)
            outputs[port] = LightData.spectral(merged)
        return outputs

    def _analyze_rays(self, inputs: LightResult, call: NodeCall) -> LightResult:
        (in_a, out_a), (in_b, out_b) = self._port_pairs(call.inverted)
        bundles = {port: call.bundle(inputs, port) for port in (in_a, in_b)}
        present = [b for b in bundles.values() if b is not None]
        if not present:
            return {}
        iso = call.placement(present[0])
        plane = self.surfaces(inverted=call.inverted, iso=iso)[0]

        parts: Dict[str, List[RayBundle]] = {out_a: [], out_b: []}
        for in_port, trans_port, refl_port in ((in_a, out_a, out_b), (in_b, out_b, out_a)):
            bundle = bundles[in_port]
            if bundle is None:
                continue
            bundle = call.apodize(bundle.propagate_to_surface(plane), in_port, iso)
            transmitted, reflected = bundle.split(self.config)
            parts[trans_port].append(transmitted)
            parts[refl_port].append(reflected)

        outputs: LightResult = {}
        for port, pieces in parts.items():
            if not pieces:
                continue
            merged = pieces[0]
            for other in pieces[1:]:
                merged = merged.merge(other)
            outputs[port] = LightData.geometric(call.apodize(merged, port, iso))
        return outputs
