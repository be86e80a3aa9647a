"""
光学节点

节点类型为封闭集合（见 NodeType）。base 必须最先导入：group 模块依赖 graph，
而 graph 只依赖 base。
"""

from .base import NodeAttributes, NodeCall, NodeType, OpticNode
from .source import Source
from .dummy import Dummy
from .detectors import (
    DetectorNode,
    EnergyMeter,
    FluenceDetector,
    RayPropagationVisualizer,
    Spectrometer,
    SpotDiagram,
    WavefrontMonitor,
)
from .ideal_filter import IdealFilter
from .beam_splitter import BeamSplitter
from .lens import CylindricLens, Lens, ParaxialSurface
from .wedge import Wedge
from .mirror import ParabolicMirror, ThinMirror
from .grating import ReflectiveGrating
from .group import NodeGroup
from .reference import NodeReference

__all__ = [
    "NodeAttributes",
    "NodeCall",
    "NodeType",
    "OpticNode",
    "Source",
    "Dummy",
    "DetectorNode",
    "EnergyMeter",
    "Spectrometer",
    "SpotDiagram",
    "FluenceDetector",
    "RayPropagationVisualizer",
    "WavefrontMonitor",
    "IdealFilter",
    "BeamSplitter",
    "Lens",
    "CylindricLens",
    "ParaxialSurface",
    "Wedge",
    "ThinMirror",
    "ParabolicMirror",
    "ReflectiveGrating",
    "NodeGroup",
    "NodeReference",
]
