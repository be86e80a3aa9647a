"""
光学网络仿真 (Optic Graph)

把光学系统建模为有向图：节点是光学元件（光源、透镜、反射镜、分光镜、
滤光片、探测器……），边是元件端口之间的自由空间传播距离。在同一张图上可以运行：

1. **能量分析**：沿边传播光谱能量
2. **序列光线追迹**：按拓扑顺序传播几何光线束，未放置的元件沿光束主光线放置
3. **非序列鬼像分析**：忽略边，在所有已放置元件的三维表面之间投射光线，
   追踪膜层反射产生的杂散光路径
4. **能量密度估计**：Voronoi / KDE / 分箱 / 辅助光线四种方法

组节点（NodeGroup）把子图封装为单个节点，引用节点（NodeReference）在
不复制元件的前提下多次经过同一元件（例如谐振腔）。

使用示例：
=========

    >>> from optic_graph import (
    ...     OpticGraph, Source, Lens, EnergyMeter, SequentialAnalyzer, AnalyzerKind,
    ... )
    >>> from optic_graph.distributions import Hexapolar, UniformEnergy
    >>> g = OpticGraph()
    >>> src = g.add_node(Source.collimated("Laser", Hexapolar(2.0, 3), UniformEnergy(1.0), 1.064))
    >>> lens = g.add_node(Lens("L1", front_curvature=100.0, center_thickness=5.0))
    >>> det = g.add_node(EnergyMeter("Meter"))
    >>> e1 = g.connect_nodes(src, "output_1", lens, "input_1", 50.0)
    >>> e2 = g.connect_nodes(lens, "output_1", det, "input_1", 150.0)
    >>> result = SequentialAnalyzer(AnalyzerKind.ENERGY).analyze(g)
    >>> round(result.light(g.node(det)).total_energy(), 6)
    1.0

单位约定：长度 mm，波长 μm，能量 J，能量密度 J/mm²，角度 rad。
"""

from .exceptions import (
    OpticGraphError,
    BuildError,
    PortConnectionError,
    LightDataTypeError,
    ConsistencyError,
    DisconnectedIslandError,
    DanglingReferenceError,
    ReferenceReentryError,
    UnplacedNodeError,
    AnalysisError,
    OpticGraphWarning,
    ApodizationWarning,
    LowEnergyWarning,
    DegenerateCellWarning,
    UnconnectedSubgraphWarning,
    StaleNodeWarning,
    BounceLimitWarning,
    DanglingReferenceWarning,
)

from .geometry import Isometry
from .spectrum import Spectrum
from .refractive_index import (
    AIR,
    RefractiveIndex,
    ConstantIndex,
    SellmeierIndex,
    ConradyIndex,
    SchottIndex,
)
from .coatings import Coating, IdealAR, ConstantR, Fresnel
from .ray import Ray, SplittingConfig
from .aperture import (
    Aperture,
    UnrestrictedAperture,
    CircleAperture,
    RectangleAperture,
    PolygonAperture,
    StackedAperture,
)
from .rays import RayBundle
from .light import LightData, LightDataKind
from .ports import OpticPorts, Port, PortDirection, PortMap
from .context import (
    AnalysisContext,
    AnalyzerKind,
    DetectorRecord,
    GhostFocusConfig,
    RayTraceConfig,
    StrayRecord,
)
from .fluence import FluenceData, FluenceEstimator, estimate_fluence
from .wavefront import WavefrontMap, wavefront_error, wavefront_maps
from .report import AnalysisReport, NodeReport

# nodes 必须先于 graph 导入
from .nodes import (
    NodeType,
    OpticNode,
    Source,
    Dummy,
    DetectorNode,
    EnergyMeter,
    Spectrometer,
    SpotDiagram,
    FluenceDetector,
    RayPropagationVisualizer,
    WavefrontMonitor,
    IdealFilter,
    BeamSplitter,
    Lens,
    CylindricLens,
    ParaxialSurface,
    Wedge,
    ThinMirror,
    ParabolicMirror,
    ReflectiveGrating,
    NodeGroup,
    NodeReference,
)
from .graph import Edge, OpticGraph
from .dot import graph_to_dot
from .analyzers import (
    AnalysisResult,
    Analyzer,
    SequentialAnalyzer,
    NonSequentialAnalyzer,
    GhostFocusAnalyzer,
)

__version__ = "0.1.0"

__all__ = [
    # 异常与警告
    "OpticGraphError",
    "BuildError",
    "PortConnectionError",
    "LightDataTypeError",
    "ConsistencyError",
    "DisconnectedIslandError",
    "DanglingReferenceError",
    "ReferenceReentryError",
    "UnplacedNodeError",
    "AnalysisError",
    "OpticGraphWarning",
    "ApodizationWarning",
    "LowEnergyWarning",
    "DegenerateCellWarning",
    "UnconnectedSubgraphWarning",
    "StaleNodeWarning",
    "BounceLimitWarning",
    "DanglingReferenceWarning",
    # 几何与光学基础
    "Isometry",
    "Spectrum",
    "AIR",
    "RefractiveIndex",
    "ConstantIndex",
    "SellmeierIndex",
    "ConradyIndex",
    "SchottIndex",
    "Coating",
    "IdealAR",
    "ConstantR",
    "Fresnel",
    "Ray",
    "SplittingConfig",
    "RayBundle",
    "LightData",
    "LightDataKind",
    # 孔径与端口
    "Aperture",
    "UnrestrictedAperture",
    "CircleAperture",
    "RectangleAperture",
    "PolygonAperture",
    "StackedAperture",
    "OpticPorts",
    "Port",
    "PortDirection",
    "PortMap",
    # 节点
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
    # 图
    "Edge",
    "OpticGraph",
    "graph_to_dot",
    # 分析
    "AnalysisContext",
    "AnalyzerKind",
    "DetectorRecord",
    "GhostFocusConfig",
    "RayTraceConfig",
    "StrayRecord",
    "AnalysisResult",
    "Analyzer",
    "SequentialAnalyzer",
    "NonSequentialAnalyzer",
    "GhostFocusAnalyzer",
    # 能量密度与报告
    "FluenceData",
    "FluenceEstimator",
    "estimate_fluence",
    "WavefrontMap",
    "wavefront_error",
    "wavefront_maps",
    "AnalysisReport",
    "NodeReport",
]
