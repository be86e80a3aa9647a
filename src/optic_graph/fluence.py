"""
能量密度（fluence）估计

由探测器处的离散光线重建连续的二维能量密度场（单位 J/mm²）。
光线位置先变换到探测器局部坐标系，取 XY 平面坐标。

估计方法（FluenceEstimator）：
- VORONOI: Voronoi 单元划分，fluence = 光线能量 / 单元面积；
  凸包边界上的无界单元被丢弃
- KDE: 加权高斯核密度估计，带宽默认按 Silverman 规则确定
- BINNING: 规则网格分箱，每格能量和 / 格面积
- HELPER_RAYS: 辅助光线法，fluence = 光线能量 / 4 条辅助光线围成的四边形面积

所有方法都排除无效（被截断）的光线，并满足能量守恒：
FluenceData.integrate() 在容差内等于参与估计的光线总能量。
"""

from __future__ import annotations

import warnings
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple

import numpy as np
from numpy.typing import NDArray
from scipy.interpolate import griddata
from scipy.spatial import QhullError, Voronoi

from .exceptions import DegenerateCellWarning
from .geometry import Isometry
from .rays import HELPERS_PER_RAY, RayBundle
from .utils import kahan_sum, polygon_area

# 面积小于该值（mm²）的单元视为退化
MIN_CELL_AREA = 1e-18


class FluenceEstimator(Enum):
    """能量密度估计方法"""
    VORONOI = "voronoi"
    KDE = "kde"
    BINNING = "binning"
    HELPER_RAYS = "helper_rays"


@dataclass(frozen=True)
class FluenceData:
    """能量密度场

    场由一组“单元”表示：每个单元有代表点、能量密度和面积。
    网格类方法（KDE、BINNING）的单元为规则网格格子，
    此时 grid_x / grid_y 给出网格中心坐标，values 可重排为 (ny, nx)。

    属性:
        estimator: 使用的估计方法
        points: 单元代表点，形状 (M, 2)，单位 mm
        values: 能量密度 (J/mm²)，形状 (M,)
        areas: 单元面积 (mm²)，形状 (M,)
        input_energy: 参与估计的光线总能量 (J)
        excluded_energy: 被丢弃（无界 / 退化单元）的能量 (J)
    """

    estimator: FluenceEstimator
    points: NDArray
    values: NDArray
    areas: NDArray
    input_energy: float
    excluded_energy: float = 0.0
    grid_x: Optional[NDArray] = field(default=None, repr=False)
    grid_y: Optional[NDArray] = field(default=None, repr=False)

    def integrate(self) -> float:
        """在整个定义域上积分能量密度，得到总能量 (J)"""
        return kahan_sum(self.values * self.areas)

    @property
    def peak(self) -> float:
        """峰值能量密度 (J/mm²)"""
        return float(np.max(self.values)) if self.values.size else 0.0

    @property
    def average(self) -> float:
        """按面积平均的能量密度 (J/mm²)"""
        total_area = kahan_sum(self.areas)
        return self.integrate() / total_area if total_area > 0.0 else 0.0

    @property
    def is_gridded(self) -> bool:
        return self.grid_x is not None and self.grid_y is not None

    def rasterized(self, nr_of_points: Tuple[int, int] = (100, 100)) -> Tuple[NDArray, NDArray, NDArray]:
        """在规则网格上表示能量密度场

        网格类方法直接返回自身网格；其余方法用 scipy.interpolate.griddata
        线性插值，凸包外取 0。

        返回:
            (x, y, z)：x 形状 (nx,)，y 形状 (ny,)，z 形状 (ny, nx)
        """
        if self.is_gridded:
            return self.grid_x, self.grid_y, self.values.reshape(len(self.grid_y), len(self.grid_x))
        nx, ny = nr_of_points
        if len(self.points) == 0:
            return np.zeros(nx), np.zeros(ny), np.zeros((ny, nx))
        x = np.linspace(np.min(self.points[:, 0]), np.max(self.points[:, 0]), nx)
        y = np.linspace(np.min(self.points[:, 1]), np.max(self.points[:, 1]), ny)
        xx, yy = np.meshgrid(x, y)
        if len(self.points) < 3:
            return x, y, np.zeros((ny, nx))
        z = griddata(self.points, self.values, (xx, yy), method="linear", fill_value=0.0)
        return x, y, z

    def to_dict(self) -> dict:
        return {
            "estimator": self.estimator.value,
            "peak_J_per_mm2": self.peak,
            "average_J_per_mm2": self.average,
            "integrated_energy_J": self.integrate(),
            "input_energy_J": self.input_energy,
            "excluded_energy_J": self.excluded_energy,
            "nr_of_cells": int(self.values.size),
        }


def _local_xy(bundle: RayBundle, iso: Optional[Isometry]) -> NDArray:
    positions = bundle.positions if iso is None else iso.inverse_transform_point(bundle.positions)
    return positions[:, :2]


def _voronoi(xy: NDArray, energies: NDArray) -> FluenceData:
    # 位置重合的光线合并为一个采样点
    unique_xy, inverse = np.unique(np.round(xy, 12), axis=0, return_inverse=True)
    inverse = np.asarray(inverse).reshape(-1)
    merged = np.zeros(len(unique_xy))
    np.add.at(merged, inverse, energies)
    total = kahan_sum(energies)
    if len(unique_xy) < 4:
        raise ValueError(f"Voronoi 估计至少需要 4 个不同的光线位置，实际为 {len(unique_xy)}")
    try:
        vor = Voronoi(unique_xy)
    except QhullError as err:
        raise ValueError(f"光线位置退化（例如全部共线），无法进行 Voronoi 划分：{err}") from err

    points, values, areas = [], [], []
    excluded = 0.0
    degenerate = 0
    for i, region_index in enumerate(vor.point_region):
        region = vor.regions[region_index]
        if not region or -1 in region:
            excluded += merged[i]
            continue
        # Voronoi 单元为凸多边形，按极角排序顶点
        vertices = vor.vertices[region]
        offset = vertices - vertices.mean(axis=0)
        area = polygon_area(vertices[np.argsort(np.arctan2(offset[:, 1], offset[:, 0]))])
        if area <= MIN_CELL_AREA:
            excluded += merged[i]
            degenerate += 1
            continue
        points.append(unique_xy[i])
        values.append(merged[i] / area)
        areas.append(area)
    if degenerate:
        warnings.warn(
            f"Voronoi 划分中有 {degenerate} 个退化单元被排除",
            DegenerateCellWarning,
            stacklevel=3,
        )
    return FluenceData(
        estimator=FluenceEstimator.VORONOI,
        points=np.asarray(points, dtype=float).reshape(-1, 2),
        values=np.asarray(values, dtype=float),
        areas=np.asarray(areas, dtype=float),
        input_energy=total,
        excluded_energy=excluded,
    )


def silverman_bandwidth(xy: NDArray, energies: Optional[NDArray] = None) -> Tuple[float, float]:
    """二维 Silverman 带宽

    h = σ · n^(-1/6)，n 取有效样本数 (Σw)² / Σw²。
    """
    n = len(xy)
    if energies is None:
        weights = np.ones(n)
    else:
        weights = np.asarray(energies, dtype=float)
    w_sum = float(np.sum(weights))
    n_eff = w_sum ** 2 / float(np.sum(weights ** 2)) if w_sum > 0.0 else float(n)
    mean = np.sum(weights[:, None] * xy, axis=0) / w_sum
    sigma = np.sqrt(np.sum(weights[:, None] * (xy - mean) ** 2, axis=0) / w_sum)
    factor = n_eff ** (-1.0 / 6.0)
    hx, hy = (float(s * factor) for s in sigma)
    # 某一方向上没有展宽时，借用另一方向的带宽
    fallback = max(hx, hy, 1e-6)
    return (hx if hx > 0.0 else fallback, hy if hy > 0.0 else fallback)


def _grid(xy: NDArray, margin: Tuple[float, float], nr_of_points: Tuple[int, int]):
    nx, ny = nr_of_points
    if nx < 1 or ny < 1:
        raise ValueError(f"网格点数必须 >= 1，实际为 {nr_of_points}")
    lo = np.min(xy, axis=0) - np.asarray(margin)
    hi = np.max(xy, axis=0) + np.asarray(margin)
    span = np.maximum(hi - lo, 1e-6)
    hi = lo + span
    x_edges = np.linspace(lo[0], hi[0], nx + 1)
    y_edges = np.linspace(lo[1], hi[1], ny + 1)
    return x_edges, y_edges


def _grid_kernel(centers: NDArray, coords: NDArray, h: float, step: float) -> NDArray:
    """一维高斯核在网格中心上的取值，每条光线的核在网格上归一化

    带宽小于网格间距时直接采样的核积分不为 1，因此逐行归一化；
    核在所有网格中心都下溢为 0 的光线，能量全部放入最近的网格。
    """
    kernel = np.exp(-0.5 * ((centers[None, :] - coords[:, None]) / h) ** 2)
    sums = kernel.sum(axis=1)
    empty = sums <= 0.0
    if np.any(empty):
        nearest = np.argmin(np.abs(centers[None, :] - coords[empty, None]), axis=1)
        kernel[np.flatnonzero(empty), nearest] = 1.0
        sums[empty] = 1.0
    return kernel / (sums[:, None] * step)


def _kde(
    xy: NDArray,
    energies: NDArray,
    nr_of_points: Tuple[int, int],
    bandwidth: Optional[Tuple[float, float]],
) -> FluenceData:
    hx, hy = bandwidth if bandwidth is not None else silverman_bandwidth(xy, energies)
    if hx <= 0.0 or hy <= 0.0:
        raise ValueError(f"KDE 带宽必须为正值，实际为 ({hx}, {hy}) mm")
    x_edges, y_edges = _grid(xy, (4.0 * hx, 4.0 * hy), nr_of_points)
    xc = 0.5 * (x_edges[:-1] + x_edges[1:])
    yc = 0.5 * (y_edges[:-1] + y_edges[1:])
    dx = x_edges[1] - x_edges[0]
    dy = y_edges[1] - y_edges[0]
    cell_area = dx * dy

    # 高斯核在 x、y 方向可分离：field = Ky^T · diag(E) · Kx
    kx = _grid_kernel(xc, xy[:, 0], hx, dx)
    ky = _grid_kernel(yc, xy[:, 1], hy, dy)
    field_values = ky.T @ (energies[:, None] * kx)

    xx, yy = np.meshgrid(xc, yc)
    return FluenceData(
        estimator=FluenceEstimator.KDE,
        points=np.column_stack([xx.ravel(), yy.ravel()]),
        values=field_values.ravel(),
        areas=np.full(field_values.size, cell_area),
        input_energy=kahan_sum(energies),
        grid_x=xc,
        grid_y=yc,
    )


def _binning(xy: NDArray, energies: NDArray, nr_of_points: Tuple[int, int]) -> FluenceData:
    x_edges, y_edges = _grid(xy, (0.0, 0.0), nr_of_points)
    hist, _, _ = np.histogram2d(xy[:, 0], xy[:, 1], bins=[x_edges, y_edges], weights=energies)
    cell_area = (x_edges[1] - x_edges[0]) * (y_edges[1] - y_edges[0])
    xc = 0.5 * (x_edges[:-1] + x_edges[1:])
    yc = 0.5 * (y_edges[:-1] + y_edges[1:])
    # histogram2d 返回 (nx, ny)，转为 (ny, nx)
    values = hist.T / cell_area
    xx, yy = np.meshgrid(xc, yc)
    return FluenceData(
        estimator=FluenceEstimator.BINNING,
        points=np.column_stack([xx.ravel(), yy.ravel()]),
        values=values.ravel(),
        areas=np.full(values.size, cell_area),
        input_energy=kahan_sum(energies),
        grid_x=xc,
        grid_y=yc,
    )


def _helper_rays(bundle: RayBundle, iso: Optional[Isometry]) -> FluenceData:
    helpers = bundle.helpers
    if helpers is None:
        raise ValueError("光线束不包含辅助光线，无法使用辅助光线法")
    helper_xy = _local_xy(helpers, iso).reshape(-1, HELPERS_PER_RAY, 2)
    helper_valid = helpers.valid.reshape(-1, HELPERS_PER_RAY).all(axis=1)
    primary_xy = _local_xy(bundle, iso)

    points, values, areas = [], [], []
    excluded = 0.0
    degenerate = 0
    total = 0.0
    for i in np.flatnonzero(bundle.valid):
        energy = float(bundle.energies[i])
        total += energy
        if not helper_valid[i]:
            excluded += energy
            continue
        area = polygon_area(helper_xy[i])
        if area <= MIN_CELL_AREA:
            excluded += energy
            degenerate += 1
            continue
        points.append(primary_xy[i])
        values.append(energy / area)
        areas.append(area)
    if degenerate:
        warnings.warn(
            f"辅助光线四边形中有 {degenerate} 个退化单元被排除",
            DegenerateCellWarning,
            stacklevel=3,
        )
    return FluenceData(
        estimator=FluenceEstimator.HELPER_RAYS,
        points=np.asarray(points, dtype=float).reshape(-1, 2),
        values=np.asarray(values, dtype=float),
        areas=np.asarray(areas, dtype=float),
        input_energy=total,
        excluded_energy=excluded,
    )


def estimate_fluence(
    bundle: RayBundle,
    estimator: FluenceEstimator = FluenceEstimator.VORONOI,
    iso: Optional[Isometry] = None,
    nr_of_points: Tuple[int, int] = (100, 100),
    bandwidth: Optional[Tuple[float, float]] = None,
) -> FluenceData:
    """估计光线束在探测器平面上的能量密度

    参数:
        bundle: 终端光线束（只使用有效光线）
        estimator: 估计方法
        iso: 探测器平面位姿，None 表示使用全局 XY 平面
        nr_of_points: 网格类方法的网格大小 (nx, ny)
        bandwidth: KDE 带宽 (hx, hy)，单位 mm；None 表示 Silverman 规则

    返回:
        FluenceData

    异常:
        ValueError: 有效光线不足或光线位置退化

    示例:
        >>> from optic_graph.distributions import Grid, UniformEnergy
        >>> bundle = RayBundle.collimated(Grid((21, 21), (2.0, 2.0)), UniformEnergy(1.0), 1.053)
        >>> data = estimate_fluence(bundle, FluenceEstimator.BINNING, nr_of_points=(10, 10))
        >>> round(data.integrate(), 9)
        1.0
    """
    if bundle.nr_of_valid_rays == 0:
        raise ValueError("光线束中没有有效光线，无法估计能量密度")
    if estimator is FluenceEstimator.HELPER_RAYS:
        return _helper_rays(bundle, iso)
    valid = bundle.valid
    xy = _local_xy(bundle, iso)[valid]
    energies = np.asarray(bundle.energies[valid], dtype=float)
    if estimator is FluenceEstimator.VORONOI:
        return _voronoi(xy, energies)
    if estimator is FluenceEstimator.KDE:
        return _kde(xy, energies, nr_of_points, bandwidth)
    if estimator is FluenceEstimator.BINNING:
        return _binning(xy, energies, nr_of_points)
    raise ValueError(f"未知的能量密度估计方法：{estimator}")
