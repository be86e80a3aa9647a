"""
分析器

- SequentialAnalyzer: 沿图的边按拓扑顺序传播光数据
- NonSequentialAnalyzer / GhostFocusAnalyzer: 忽略边，在三维表面之间投射光线
"""

from .base import (
    AnalysisContext,
    AnalysisResult,
    Analyzer,
    AnalyzerKind,
    CollectedWarning,
    DetectorRecord,
    GhostFocusConfig,
    RayTraceConfig,
    StrayRecord,
)
from .sequential import SequentialAnalyzer
from .ghost_focus import GhostFocusAnalyzer, NonSequentialAnalyzer

__all__ = [
    "AnalysisContext",
    "AnalysisResult",
    "Analyzer",
    "AnalyzerKind",
    "CollectedWarning",
    "DetectorRecord",
    "GhostFocusConfig",
    "RayTraceConfig",
    "StrayRecord",
    "SequentialAnalyzer",
    "NonSequentialAnalyzer",
    "GhostFocusAnalyzer",
]
