"""
可视化模块

提供分析结果的绘图功能：
- plot_spot_diagram: 探测器平面上的点列图（按波长着色）
- plot_fluence: 能量密度分布
- plot_ray_paths: 光线传播路径的二维投影
"""

from __future__ import annotations

from typing import Optional, Sequence, Tuple

import numpy as np
import matplotlib.pyplot as plt

from .fluence import FluenceData
from .geometry import Isometry
from .rays import RayBundle


def _finish(fig, save_path: Optional[str], show: bool):
    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        print(f"Saved plot to {save_path}")

    if show:
        plt.show()
        return None
    else:
        plt.close(fig)
        return fig


def plot_spot_diagram(
    bundle: RayBundle,
    iso: Optional[Isometry] = None,
    title: str = "Spot Diagram",
    save_path: Optional[str] = None,
    show: bool = True,
) -> Optional[plt.Figure]:
    """绘制点列图

    参数:
        bundle: 探测器记录的光线束
        iso: 探测器平面位姿，光线位置变换到其局部 XY 平面；None 时直接取全局 XY
        title: 图标题
        save_path: 保存路径（可选）
        show: 是否显示图形

    返回:
        show=False 时返回 Figure，否则返回 None
    """
    valid = bundle.valid
    positions = bundle.positions[valid]
    if iso is not None:
        positions = iso.inverse_transform_point(positions)
    wavelengths = bundle.wavelengths[valid]

    fig, ax = plt.subplots(figsize=(6, 6))
    if len(positions):
        sc = ax.scatter(positions[:, 0], positions[:, 1], c=wavelengths, s=4, cmap='jet')
        if len(np.unique(wavelengths)) > 1:
            fig.colorbar(sc, ax=ax, label='Wavelength (μm)')
    ax.set_xlabel('x (mm)')
    ax.set_ylabel('y (mm)')
    ax.set_aspect('equal')
    ax.grid(True, alpha=0.3)
    radius = bundle.beam_radius_geo()
    subtitle = "" if radius is None else f"\nGeo radius = {radius:.4g} mm"
    ax.set_title(f"{title}{subtitle}", fontsize=10)
    return _finish(fig, save_path, show)


def plot_fluence(
    fluence: FluenceData,
    nr_of_points: Tuple[int, int] = (100, 100),
    title: str = "Fluence",
    save_path: Optional[str] = None,
    show: bool = True,
) -> Optional[plt.Figure]:
    """绘制能量密度分布

    网格类估计结果直接绘制；Voronoi 结果先插值到规则网格（见 FluenceData.rasterized）。

    参数:
        fluence: 能量密度场
        nr_of_points: 插值网格大小 (nx, ny)
        title: 图标题
        save_path: 保存路径（可选）
        show: 是否显示图形
    """
    x, y, z = fluence.rasterized(nr_of_points)
    fig, ax = plt.subplots(figsize=(7, 6))
    if x.size and y.size and x[-1] > x[0] and y[-1] > y[0]:
        im = ax.imshow(
            z,
            extent=[x[0], x[-1], y[0], y[-1]],
            origin='lower',
            cmap='inferno',
            aspect='equal',
        )
        fig.colorbar(im, ax=ax, label='Fluence (J/mm²)')
    ax.set_xlabel('x (mm)')
    ax.set_ylabel('y (mm)')
    ax.set_title(
        f"{title} ({fluence.estimator.value})\n"
        f"Peak = {fluence.peak:.4g} J/mm², E = {fluence.integrate():.4g} J",
        fontsize=10,
    )
    return _finish(fig, save_path, show)


def plot_ray_paths(
    bundle: RayBundle,
    axes: Sequence[int] = (2, 1),
    title: str = "Ray Paths",
    save_path: Optional[str] = None,
    show: bool = True,
) -> Optional[plt.Figure]:
    """绘制光线传播路径的二维投影

    参数:
        bundle: 带位置历史的光线束（例如 RayPropagationVisualizer 记录的截断前光线）
        axes: 投影使用的全局坐标轴，默认 (z, y)
        title: 图标题
        save_path: 保存路径（可选）
        show: 是否显示图形
    """
    h, v = axes
    names = "xyz"
    fig, ax = plt.subplots(figsize=(10, 5))
    for path, ok in zip(bundle.position_histories(), bundle.valid):
        if not ok:
            continue
        ax.plot(path[:, h], path[:, v], color='tab:red', linewidth=0.6, alpha=0.7)
    ax.set_xlabel(f'{names[h]} (mm)')
    ax.set_ylabel(f'{names[v]} (mm)')
    ax.set_title(title, fontsize=10)
    ax.grid(True, alpha=0.3)
    return _finish(fig, save_path, show)
