"""
光谱定义模块

Spectrum 在均匀（或给定）波长网格上存储数值，有两种用途：
1. 光谱能量密度（J/μm）：能量分析中沿边传递的 LightData.spectral 数据
2. 透过率曲线（取值 0~1）：滤光片、分光镜的光谱配置

波长单位：μm
"""

from __future__ import annotations

from typing import Iterable, Optional, Sequence, Tuple

import numpy as np
from numpy.typing import ArrayLike, NDArray

from .utils import check_positive, kahan_sum


class Spectrum:
    """光谱

    参数:
        wavelengths: 严格递增的波长网格 (μm)
        values: 与波长网格对应的数值（能量密度 J/μm 或透过率）

    示例:
        >>> spec = Spectrum.from_laser_lines([(1.053, 1.0)], resolution=0.001)
        >>> round(spec.total_energy(), 9)
        1.0
    """

    def __init__(self, wavelengths: ArrayLike, values: ArrayLike) -> None:
        wvl = np.array(wavelengths, dtype=float).reshape(-1)
        vals = np.array(values, dtype=float).reshape(-1)
        if wvl.size < 2:
            raise ValueError("光谱至少需要两个波长采样点")
        if wvl.shape != vals.shape:
            raise ValueError(
                f"波长数组与数值数组长度不一致：{wvl.size} != {vals.size}"
            )
        if not np.all(np.isfinite(wvl)) or np.any(wvl <= 0.0):
            raise ValueError("波长必须为正的有限值")
        if np.any(np.diff(wvl) <= 0.0):
            raise ValueError("波长网格必须严格递增")
        if not np.all(np.isfinite(vals)) or np.any(vals < 0.0):
            raise ValueError("光谱数值必须为非负有限值")
        self._wavelengths = wvl
        self._values = vals
        self._wavelengths.setflags(write=False)
        self._values.setflags(write=False)

    # ------------------------------------------------------------------
    # 构造
    # ------------------------------------------------------------------

    @classmethod
    def new(cls, start: float, end: float, resolution: float) -> "Spectrum":
        """创建指定范围内全零的光谱

        参数:
            start: 起始波长 (μm)
            end: 结束波长 (μm)，不包含
            resolution: 波长分辨率 (μm)
        """
        check_positive(start, "start", " μm")
        check_positive(resolution, "resolution", " μm")
        if end <= start:
            raise ValueError(f"结束波长 ({end} μm) 必须大于起始波长 ({start} μm)")
        n = int(np.ceil((end - start) / resolution - 1e-9))
        wavelengths = start + resolution * np.arange(max(n, 2))
        return cls(wavelengths, np.zeros_like(wavelengths))

    @classmethod
    def from_laser_lines(
        cls,
        lines: Sequence[Tuple[float, float]],
        resolution: float = 0.001,
        margin: float = 0.01,
    ) -> "Spectrum":
        """由一组激光谱线（波长, 能量）创建光谱

        每条谱线的能量放入最近的波长格点，使总能量与谱线能量之和一致。
        """
        if len(lines) == 0:
            raise ValueError("至少需要一条谱线")
        wvls = [float(w) for w, _ in lines]
        start = max(min(wvls) - margin, resolution)
        spec = cls.new(start, max(wvls) + margin, resolution)
        return spec.with_lines(lines)

    @classmethod
    def gaussian(
        cls,
        center: float,
        fwhm: float,
        energy: float,
        resolution: float = 0.001,
        width_factor: float = 3.0,
    ) -> "Spectrum":
        """高斯型光谱

        参数:
            center: 中心波长 (μm)
            fwhm: 半高全宽 (μm)
            energy: 总能量 (J)
        """
        check_positive(center, "center", " μm")
        check_positive(fwhm, "fwhm", " μm")
        check_positive(energy, "energy", " J", allow_zero=True)
        half_range = width_factor * fwhm
        spec = cls.new(max(center - half_range, resolution), center + half_range, resolution)
        sigma = fwhm / (2.0 * np.sqrt(2.0 * np.log(2.0)))
        density = np.exp(-0.5 * ((spec.wavelengths - center) / sigma) ** 2)
        norm = kahan_sum(density * spec.bin_widths)
        return cls(spec.wavelengths, energy * density / norm)

    @classmethod
    def transmission(cls, wavelengths: ArrayLike, values: ArrayLike) -> "Spectrum":
        """创建透过率曲线（取值必须位于 [0, 1]）"""
        spec = cls(wavelengths, values)
        if not spec.is_transmission_spectrum():
            raise ValueError("透过率曲线的取值必须位于 [0, 1] 范围内")
        return spec

    @classmethod
    def flat_transmission(cls, start: float, end: float, value: float) -> "Spectrum":
        """常数透过率曲线"""
        return cls.transmission([start, end], [value, value])

    # ------------------------------------------------------------------
    # 属性
    # ------------------------------------------------------------------

    @property
    def wavelengths(self) -> NDArray:
        return self._wavelengths

    @property
    def values(self) -> NDArray:
        return self._values

    @property
    def bin_widths(self) -> NDArray:
        """每个采样点所代表的波长宽度 (μm)"""
        return np.gradient(self._wavelengths)

    @property
    def range(self) -> Tuple[float, float]:
        return float(self._wavelengths[0]), float(self._wavelengths[-1])

    def is_transmission_spectrum(self) -> bool:
        """所有取值均位于 [0, 1] 时返回 True"""
        return bool(np.all((self._values >= 0.0) & (self._values <= 1.0)))

    def total_energy(self) -> float:
        """总能量（补偿求和）"""
        return kahan_sum(self._values * self.bin_widths)

    def center_wavelength(self) -> Optional[float]:
        """能量加权的中心波长，光谱为零时返回 None"""
        weights = self._values * self.bin_widths
        total = kahan_sum(weights)
        if total <= 0.0:
            return None
        return kahan_sum(weights * self._wavelengths) / total

    def get_value(self, wavelength: float) -> Optional[float]:
        """线性插值得到给定波长处的数值；超出范围返回 None"""
        lo, hi = self.range
        if wavelength < lo or wavelength > hi:
            return None
        return float(np.interp(wavelength, self._wavelengths, self._values))

    def resampled(self, wavelengths: ArrayLike) -> NDArray:
        """在新的波长网格上插值，范围外取 0"""
        return np.interp(
            np.asarray(wavelengths, dtype=float),
            self._wavelengths,
            self._values,
            left=0.0,
            right=0.0,
        )

    # ------------------------------------------------------------------
    # 运算（均返回新对象）
    # ------------------------------------------------------------------

    def with_lines(self, lines: Iterable[Tuple[float, float]]) -> "Spectrum":
        """在最近的格点上叠加谱线能量"""
        values = self._values.copy()
        widths = self.bin_widths
        lo, hi = self.range
        for wavelength, energy in lines:
            check_positive(wavelength, "wavelength", " μm")
            check_positive(energy, "energy", " J", allow_zero=True)
            if wavelength < lo or wavelength > hi:
                raise ValueError(
                    f"谱线波长 {wavelength} μm 超出光谱范围 [{lo}, {hi}] μm"
                )
            idx = int(np.argmin(np.abs(self._wavelengths - wavelength)))
            values[idx] += energy / widths[idx]
        return Spectrum(self._wavelengths, values)

    def scaled(self, factor: float) -> "Spectrum":
        """数值整体缩放"""
        if not np.isfinite(factor) or factor < 0.0:
            raise ValueError(f"缩放因子必须为非负有限值，实际为 {factor}")
        return Spectrum(self._wavelengths, self._values * factor)

    def filtered(self, curve: "Spectrum") -> "Spectrum":
        """乘以透过率曲线（曲线范围外透过率视为 0）"""
        return Spectrum(self._wavelengths, self._values * curve.resampled(self._wavelengths))

    def split_by_spectrum(self, curve: "Spectrum") -> Tuple["Spectrum", "Spectrum"]:
        """按透过率曲线分为透射和反射两部分

        返回:
            (透射光谱, 反射光谱)，两者之和等于原光谱
        """
        transmission = curve.resampled(self._wavelengths)
        transmitted = self._values * transmission
        return (
            Spectrum(self._wavelengths, transmitted),
            Spectrum(self._wavelengths, np.clip(self._values - transmitted, 0.0, None)),
        )

    def merged(self, other: "Spectrum") -> "Spectrum":
        """与另一光谱相加

        波长网格相同时直接相加；否则在覆盖两者范围、取较细分辨率的网格上重采样后相加。
        """
        if (
            self._wavelengths.shape == other.wavelengths.shape
            and np.allclose(self._wavelengths, other.wavelengths)
        ):
            return Spectrum(self._wavelengths, self._values + other.values)
        resolution = min(float(np.min(self.bin_widths)), float(np.min(other.bin_widths)))
        start = min(self.range[0], other.range[0])
        end = max(self.range[1], other.range[1])
        n = int(np.floor((end - start) / resolution + 1e-9)) + 1
        grid = start + resolution * np.arange(max(n, 2))
        return Spectrum(grid, self.resampled(grid) + other.resampled(grid))

    def to_dict(self) -> dict:
        """报告用的摘要信息"""
        return {
            "range_um": list(self.range),
            "total_energy_J": self.total_energy(),
            "center_wavelength_um": self.center_wavelength(),
            "nr_of_points": int(self._wavelengths.size),
        }

    def __repr__(self) -> str:
        lo, hi = self.range
        return (
            f"Spectrum({lo:.4f}-{hi:.4f} μm, {self._wavelengths.size} 点, "
            f"E={self.total_energy():.4g} J)"
        )
