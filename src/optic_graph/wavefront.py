"""
波前误差

由监视器平面上的光线光程重建波前误差图（单位：波长数）：

    W = -(OPL - OPL_ref) / λ

OPL_ref 为最靠近光轴（局部 XY 原点）的有效光线的光程。光程单位 mm，
波长单位 μm。单色分析使用能量加权中心波长，也可以按光谱分量分别计算。
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

import numpy as np
from numpy.typing import NDArray

from .geometry import Isometry
from .rays import RayBundle


@dataclass(frozen=True)
class WavefrontMap:
    """单个波长的波前误差图

    属性:
        wavelength: 计算使用的波长 (μm)
        points: 光线在监视器平面上的位置，形状 (M, 2)，单位 mm
        values: 波前误差 (λ)，形状 (M,)
    """

    wavelength: float
    points: NDArray
    values: NDArray

    @property
    def ptv(self) -> float:
        """峰谷值 (λ)"""
        return float(np.max(self.values) - np.min(self.values)) if self.values.size else 0.0

    @property
    def rms(self) -> float:
        """相对平均值的均方根 (λ)"""
        if not self.values.size:
            return 0.0
        return float(np.sqrt(np.mean((self.values - np.mean(self.values)) ** 2)))

    def to_dict(self) -> dict:
        return {
            "wavelength_um": self.wavelength,
            "ptv_waves": self.ptv,
            "rms_waves": self.rms,
            "nr_of_points": int(self.values.size),
        }


def wavefront_error(
    bundle: RayBundle,
    iso: Optional[Isometry] = None,
    wavelength: Optional[float] = None,
) -> WavefrontMap:
    """计算有效光线的波前误差图

    参数:
        bundle: 到达监视器平面的光线束
        iso: 监视器平面位姿，None 表示全局 XY 平面
        wavelength: 波长 (μm)，None 表示能量加权中心波长

    异常:
        ValueError: 没有有效光线

    示例:
        >>> from optic_graph.distributions import Hexapolar, UniformEnergy
        >>> bundle = RayBundle.collimated(Hexapolar(1.0, 3), UniformEnergy(1.0), 1.0)
        >>> wavefront_error(bundle).ptv
        0.0
    """
    if bundle.nr_of_valid_rays == 0:
        raise ValueError("光线束中没有有效光线，无法计算波前误差")
    if wavelength is None:
        wavelength = bundle.central_wavelength()
    valid = bundle.valid
    positions = bundle.positions[valid]
    local = positions if iso is None else iso.inverse_transform_point(positions)
    xy = local[:, :2]
    path_lengths = bundle.path_lengths[valid]
    reference = path_lengths[np.argmin(np.sum(xy * xy, axis=1))]
    values = -(path_lengths - reference) * 1e3 / wavelength
    return WavefrontMap(float(wavelength), xy, values)


def wavefront_maps(bundle: RayBundle, iso: Optional[Isometry] = None) -> List[WavefrontMap]:
    """按波长分别计算波前误差图（每个光谱分量一张）"""
    maps = []
    for wavelength in bundle.unique_wavelengths():
        mask = bundle.wavelengths == wavelength
        maps.append(wavefront_error(bundle.select(mask), iso, float(wavelength)))
    return maps
