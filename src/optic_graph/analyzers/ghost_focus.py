"""
非序列（鬼像）分析器

不使用图的边，只依据已放置节点的三维表面进行光线投射：

1. 收集所有光源发出的光线（在光源位置处按 output_1 孔径截断）
2. 对每条有效光线，在所有表面中寻找沿光线方向最近的交点
3. 按表面类型作用：折射面按 Snell 定律折射（膜层反射产生鬼像光线），
   反射镜反射，理想透镜偏折，滤光片衰减，分光面分为透射与反射两束，
   光栅按衍射级偏折，探测器吸收并记录光线，监视器记录光线后让其继续传播
4. 重复直到没有有效光线

鬼像光线的反射次数受 GhostFocusConfig.max_bounces 限制，超出预算的光线被终止；
不再击中任何表面的光线记为逃逸（不是错误）；与表面作用次数达到
max_interactions 的光线被强制终止。

max_bounces 为 0 时不追踪鬼像，探测器上的结果与序列光线追迹一致。
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Set, Tuple

import numpy as np
from numpy.typing import NDArray

from ..exceptions import (
    ApodizationWarning,
    BounceLimitWarning,
    LightDataTypeError,
    LowEnergyWarning,
    UnplacedNodeError,
)
from ..geometry import Isometry
from ..light import LightData
from ..nodes.base import NodeType, OpticNode
from ..rays import RayBundle
from ..surfaces import NON_SEQUENTIAL_T_MIN, OpticSurface, SurfaceKind
from ..utils import kahan_sum
from .base import (
    AnalysisContext,
    AnalysisResult,
    Analyzer,
    AnalyzerKind,
    DetectorRecord,
    GhostFocusConfig,
)

_SurfaceKey = Tuple[str, str]


@dataclass
class _PlacedSurface:
    node: OpticNode
    surface: OpticSurface

    @property
    def key(self) -> _SurfaceKey:
        return self.node.uuid, self.surface.name


@dataclass
class _ChunkResult:
    """单个光线块的投射结果"""

    detected: Dict[_SurfaceKey, List[Tuple[NDArray, RayBundle, RayBundle]]] = field(default_factory=dict)
    hits: Dict[_SurfaceKey, List[RayBundle]] = field(default_factory=dict)
    clipped: Set[_SurfaceKey] = field(default_factory=set)
    escaped: int = 0
    terminated: int = 0
    low_energy: int = 0
    bounce_limited: int = 0


def _top_level_leaves(graph) -> Iterator[Tuple[OpticNode, bool, Optional[Isometry]]]:
    for node in graph:
        if node.node_type is NodeType.REFERENCE:
            continue
        if node.node_type is NodeType.GROUP:
            yield from node.placed_nodes()
        else:
            yield node, node.inverted, node.isometry


class NonSequentialAnalyzer(Analyzer):
    """非序列光线投射分析器

    参数:
        config: 鬼像分析配置（反射次数预算、能量阈值、作用次数上限）
        max_workers: 光线块并行投射的线程数，None 表示串行
        verbose: 是否输出进度信息
        chunk_size: 每个光线块的光线数

    示例:
        >>> analyzer = NonSequentialAnalyzer(GhostFocusConfig(max_bounces=2))
        >>> analyzer.kind.value
        'ghost_focus'
    """

    kind = AnalyzerKind.GHOST_FOCUS

    def __init__(
        self,
        config: Optional[GhostFocusConfig] = None,
        max_workers: Optional[int] = None,
        verbose: bool = False,
        chunk_size: int = 4096,
    ) -> None:
        super().__init__(max_workers, verbose)
        if chunk_size < 1:
            raise ValueError(f"chunk_size 必须 >= 1，实际为 {chunk_size}")
        self.config = config or GhostFocusConfig()
        self.chunk_size = chunk_size

    # ------------------------------------------------------------------
    # 场景收集
    # ------------------------------------------------------------------

    def _collect(self, graph, ctx: AnalysisContext) -> Tuple[RayBundle, List[_PlacedSurface], Set[str]]:
        """收集发出的光线与所有放置后的表面

        返回:
            (光源光线, 表面列表, 截断了光线的光源 uuid 集合)

        异常:
            UnplacedNodeError: 有节点没有放置
            LightDataTypeError: 光源携带光谱数据
        """
        emitted: List[RayBundle] = []
        surfaces: List[_PlacedSurface] = []
        clipped_sources: Set[str] = set()
        for node, inverted, placement in _top_level_leaves(graph):
            if placement is None:
                raise UnplacedNodeError(
                    f"非序列分析要求所有节点都已放置，节点 {node.label} 没有位置",
                    node_id=node.uuid,
                    node_name=node.name,
                )
            ctx.place(node.uuid, placement)
            if node.node_type is NodeType.SOURCE:
                bundle = node.emitted_bundle(placement)
                if bundle is None:
                    if node.light is None:
                        continue
                    raise LightDataTypeError(
                        f"光源 {node.label} 携带光谱数据，非序列分析需要几何光线数据",
                        node_id=node.uuid,
                        node_name=node.name,
                    )
                bundle, clipped = bundle.apodize(node.port_aperture("output_1"), placement)
                if clipped:
                    clipped_sources.add(node.uuid)
                emitted.append(bundle)
                continue
            for surface in node.surfaces(inverted=inverted, iso=placement):
                surfaces.append(_PlacedSurface(node, surface))
        return RayBundle.concatenate(emitted), surfaces, clipped_sources

    # ------------------------------------------------------------------
    # 表面作用
    # ------------------------------------------------------------------

    def _interact(
        self,
        placed: _PlacedSurface,
        bundle: RayBundle,
        ids: NDArray,
        result: _ChunkResult,
    ) -> List[Tuple[RayBundle, NDArray]]:
        """光线与单个表面作用，返回继续传播的 (光线束, 光线编号) 列表"""
        surface = placed.surface
        t_min = NON_SEQUENTIAL_T_MIN

        def clip(rays: RayBundle) -> RayBundle:
            rays, clipped = rays.apodize(surface.aperture, surface.isometry)
            if clipped:
                result.clipped.add(placed.key)
            return rays

        arrived = bundle.propagate_to_surface(surface, t_min)
        if arrived.nr_of_valid_rays:
            result.hits.setdefault(placed.key, []).append(arrived.select(arrived.valid))

        kind = surface.kind
        if kind is SurfaceKind.DETECTOR:
            result.detected.setdefault(placed.key, []).append((ids, arrived, clip(arrived)))
            return []
        if kind is SurfaceKind.REFRACTIVE:
            refracted, reflected = bundle.refract_on_surface(surface, t_min=t_min)
            over = reflected.valid & (reflected.bounces > self.config.max_bounces)
            result.bounce_limited += int(np.count_nonzero(over))
            reflected = reflected.invalidated(over)
            return [(clip(refracted), ids), (clip(reflected), ids)]
        if kind is SurfaceKind.MIRROR:
            return [(clip(bundle.reflect_on_surface(surface, t_min=t_min)), ids)]
        if kind is SurfaceKind.PARAXIAL:
            return [(clip(bundle.refract_paraxial(surface.focal_length, surface.isometry, t_min)), ids)]
        if kind is SurfaceKind.FILTER:
            return [(clip(arrived).filter_energy(surface.transmission), ids)]
        if kind is SurfaceKind.SPLITTER:
            transmitted = clip(arrived).split(surface.splitting)[0]
            mirrored = clip(bundle.reflect_on_surface(surface, reflectivity=1.0, t_min=t_min))
            return [(transmitted, ids), (mirrored.split(surface.splitting)[1], ids)]
        if kind is SurfaceKind.GRATING:
            return [(clip(bundle.diffract_on_grating(surface, t_min=t_min)), ids)]
        if kind is SurfaceKind.MONITOR:
            passed = clip(arrived)
            result.detected.setdefault(placed.key, []).append((ids, arrived, passed))
            return [(passed, ids)]
        raise ValueError(f"未知的表面类型：{kind}")

    # ------------------------------------------------------------------
    # 光线投射
    # ------------------------------------------------------------------

    def _cast(self, bundle: RayBundle, ids: NDArray, surfaces: List[_PlacedSurface]) -> _ChunkResult:
        """投射一个光线块，直到没有有效光线"""
        result = _ChunkResult()
        keep = bundle.valid
        bundle, ids = bundle.select(keep), ids[keep]
        interactions = 0
        while bundle.nr_of_rays:
            if interactions >= self.config.max_interactions:
                result.terminated += bundle.nr_of_valid_rays
                break
            interactions += 1

            t = np.full((len(surfaces), bundle.nr_of_rays), np.nan)
            for index, placed in enumerate(surfaces):
                t[index] = placed.surface.intersect(bundle.positions, bundle.directions, NON_SEQUENTIAL_T_MIN)[0]
            reached = ~np.all(np.isnan(t), axis=0)
            result.escaped += int(np.count_nonzero(~reached))
            nearest = np.argmin(np.where(np.isnan(t), np.inf, t), axis=0)

            pieces: List[Tuple[RayBundle, NDArray]] = []
            for index, placed in enumerate(surfaces):
                mask = reached & (nearest == index)
                if np.any(mask):
                    pieces.extend(self._interact(placed, bundle.select(mask), ids[mask], result))
            if not pieces:
                break

            bundle = RayBundle.concatenate([piece for piece, _ in pieces])
            ids = np.concatenate([piece_ids for _, piece_ids in pieces])
            before = bundle.nr_of_valid_rays
            bundle = bundle.invalidate_below(self.config.min_energy_per_ray)
            result.low_energy += before - bundle.nr_of_valid_rays
            keep = bundle.valid
            bundle, ids = bundle.select(keep), ids[keep]
        return result

    def _chunks(self, bundle: RayBundle) -> List[Tuple[RayBundle, NDArray]]:
        ids = np.arange(bundle.nr_of_rays)
        return [
            (bundle.select(ids[start:start + self.chunk_size]), ids[start:start + self.chunk_size])
            for start in range(0, bundle.nr_of_rays, self.chunk_size)
        ]

    # ------------------------------------------------------------------
    # 分析入口
    # ------------------------------------------------------------------

    def analyze(self, graph) -> AnalysisResult:
        """运行非序列分析

        参数:
            graph: 光学图（所有非引用节点都必须已放置）

        返回:
            AnalysisResult，包含探测器记录、逃逸 / 终止光线数以及各表面的击中光线

        异常:
            ConsistencyError: 一致性检查失败或有节点未放置
            LightDataTypeError: 光源携带光谱数据
        """
        ctx = AnalysisContext(
            self.kind,
            ghost_focus_config=self.config,
            max_workers=self.max_workers,
            verbose=self.verbose,
        )
        ctx.log("开始非序列分析：{}（反射次数预算 {}）", graph, self.config.max_bounces)
        graph.check_consistency(ctx=ctx)
        emitted, surfaces, clipped_sources = self._collect(graph, ctx)
        for uuid in clipped_sources:
            ctx.warn(ApodizationWarning, f"光源 {graph.find_node_recursive(uuid).label} 的出射孔径截断了光线")
        ctx.log("  {} 条光线，{} 个表面", emitted.nr_of_rays, len(surfaces))

        chunks = self._chunks(emitted)
        if self.max_workers and len(chunks) > 1:
            with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
                parts = list(pool.map(lambda chunk: self._cast(chunk[0], chunk[1], surfaces), chunks))
        else:
            parts = [self._cast(bundle, ids, surfaces) for bundle, ids in chunks]

        escaped = sum(part.escaped for part in parts)
        terminated = sum(part.terminated for part in parts)
        low_energy = sum(part.low_energy for part in parts)
        bounce_limited = sum(part.bounce_limited for part in parts)

        hit_maps: Dict[_SurfaceKey, RayBundle] = {}
        clipped: Set[_SurfaceKey] = set()
        for part in parts:
            clipped |= part.clipped
            for key, bundles in part.hits.items():
                hit_maps[key] = RayBundle.concatenate([hit_maps[key]] + bundles if key in hit_maps else bundles)

        for placed in surfaces:
            if placed.surface.kind not in (SurfaceKind.DETECTOR, SurfaceKind.MONITOR):
                continue
            found = [item for part in parts for item in part.detected.get(placed.key, [])]
            ids = np.concatenate([item[0] for item in found]) if found else np.empty(0, dtype=int)
            order = np.argsort(ids, kind="stable")
            unapodized = RayBundle.concatenate([item[1] for item in found]).select(order)
            light = RayBundle.concatenate([item[2] for item in found]).select(order)
            ctx.record(
                DetectorRecord(
                    placed.node.uuid,
                    placed.node.name,
                    LightData.geometric(light),
                    LightData.geometric(unapodized),
                    placed.surface.isometry,
                )
            )

        for node_id, surface_name in sorted(clipped):
            node = graph.find_node_recursive(node_id)
            ctx.warn(ApodizationWarning, f"节点 {node.label} 的表面 '{surface_name}' 孔径截断了光线")
        if low_energy:
            ctx.warn(
                LowEnergyWarning,
                f"{low_energy} 条光线能量低于 {self.config.min_energy_per_ray} J，已终止",
            )
        if bounce_limited:
            ctx.warn(
                BounceLimitWarning,
                f"{bounce_limited} 条鬼像光线超出反射次数预算 {self.config.max_bounces}，已终止",
            )
        if terminated:
            ctx.warn(
                BounceLimitWarning,
                f"{terminated} 条光线与表面作用次数达到上限 {self.config.max_interactions}，已终止",
            )

        records = ctx.records
        energies = [history[-1].light.total_energy() for history in records.values() if history]
        summary = {
            "nr_of_rays": emitted.nr_of_rays,
            "nr_of_surfaces": len(surfaces),
            "nr_of_detectors": len(records),
            "detected_energy_J": kahan_sum(energies) if energies else 0.0,
            "escaped_rays": escaped,
            "terminated_rays": terminated,
            "nr_of_warnings": len(ctx.warnings),
        }
        result = AnalysisResult.from_context(
            ctx,
            hit_maps=hit_maps,
            escaped=escaped,
            terminated=terminated,
            summary=summary,
        )
        ctx.log("分析完成：{} 条光线逃逸，{} 条光线被终止", escaped, terminated)
        ctx.emit_warnings()
        return result


class GhostFocusAnalyzer(NonSequentialAnalyzer):
    """鬼像分析器（NonSequentialAnalyzer 的别名）"""
