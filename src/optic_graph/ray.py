"""
单条光线与分光配置

Ray 为不可变值对象：所有操作都返回新的 Ray，原对象保持不变。
光线束（RayBundle）内部以数组形式存储，Ray 主要用于单条光线的构造、
遍历与检查。

单位约定：
- 位置、光程：mm
- 波长：μm
- 能量：J
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Optional, Tuple

import numpy as np
from numpy.typing import ArrayLike, NDArray

from .spectrum import Spectrum
from .utils import check_positive


def _vector3(value: ArrayLike, name: str) -> NDArray:
    vec = np.array(value, dtype=float).reshape(-1)
    if vec.shape != (3,) or not np.all(np.isfinite(vec)):
        raise ValueError(f"{name} 必须为有限的三维向量，实际为 {value}")
    vec.setflags(write=False)
    return vec


@dataclass(frozen=True, eq=False)
class Ray:
    """单条几何光线

    参数:
        position: 当前位置 (mm)
        direction: 传播方向（自动归一化）
        wavelength: 波长 (μm)
        energy: 能量 (J)
        valid: 有效标志；无效光线保留在光线束中但不再参与计算
        history: 历史位置（不含当前位置）
        refractive_index: 当前所在介质的折射率
        bounces: 已发生的（鬼像）反射次数
        refractions: 已发生的折射次数
        path_length: 累计光程 (mm)

    示例:
        >>> ray = Ray.new((0.0, 0.0, 0.0), (0.0, 0.0, 1.0), wavelength=1.053, energy=1.0)
        >>> ray.propagated(10.0).position
        array([ 0.,  0., 10.])
    """

    position: NDArray
    direction: NDArray
    wavelength: float
    energy: float
    valid: bool = True
    history: Tuple[Tuple[float, float, float], ...] = ()
    refractive_index: float = 1.0
    bounces: int = 0
    refractions: int = 0
    path_length: float = 0.0

    def __post_init__(self) -> None:
        object.__setattr__(self, "position", _vector3(self.position, "position"))
        direction = _vector3(self.direction, "direction")
        norm = float(np.linalg.norm(direction))
        if norm < 1e-15:
            raise ValueError("光线方向不能为零向量")
        direction = direction / norm
        direction.setflags(write=False)
        object.__setattr__(self, "direction", direction)
        check_positive(self.wavelength, "wavelength", " μm")
        check_positive(self.energy, "energy", " J", allow_zero=True)
        if self.refractive_index < 1.0:
            raise ValueError(f"折射率必须 >= 1，实际为 {self.refractive_index}")

    @classmethod
    def new(
        cls,
        position: ArrayLike,
        direction: ArrayLike,
        wavelength: float,
        energy: float,
    ) -> "Ray":
        """创建位于空气中的有效光线"""
        return cls(position=position, direction=direction, wavelength=wavelength, energy=energy)

    def propagated(self, distance: float) -> "Ray":
        """沿当前方向传播指定几何距离"""
        if not self.valid:
            return self
        new_pos = self.position + float(distance) * self.direction
        return replace(
            self,
            position=new_pos,
            history=self.history + (tuple(float(v) for v in self.position),),
            path_length=self.path_length + float(distance) * self.refractive_index,
        )

    def with_energy(self, energy: float) -> "Ray":
        return replace(self, energy=energy)

    def invalidated(self) -> "Ray":
        return replace(self, valid=False)

    def position_history(self) -> NDArray:
        """所有历史位置加当前位置，形状 (k+1, 3)"""
        points = list(self.history) + [tuple(self.position)]
        return np.asarray(points, dtype=float)

    def __repr__(self) -> str:
        p = ", ".join(f"{v:.4f}" for v in self.position)
        d = ", ".join(f"{v:.4f}" for v in self.direction)
        state = "" if self.valid else ", invalid"
        return (
            f"Ray(pos=({p}) mm, dir=({d}), λ={self.wavelength:.4f} μm, "
            f"E={self.energy:.4g} J{state})"
        )


@dataclass(frozen=True)
class SplittingConfig:
    """分光配置

    两种模式：
    - 固定分光比：ratio 为透射能量比例，范围 [0, 1]
    - 光谱分光：curve 为透过率曲线，透射部分按波长取值

    示例:
        >>> SplittingConfig.ratio(0.6).transmission(1.053)
        0.6
    """

    ratio_value: Optional[float] = None
    curve: Optional[Spectrum] = field(default=None, repr=False)

    def __post_init__(self) -> None:
        if (self.ratio_value is None) == (self.curve is None):
            raise ValueError("分光配置必须且只能指定分光比或透过率曲线之一")
        if self.ratio_value is not None and not (0.0 <= self.ratio_value <= 1.0):
            raise ValueError(f"分光比必须位于 [0, 1] 范围内，实际为 {self.ratio_value}")
        if self.curve is not None and not self.curve.is_transmission_spectrum():
            raise ValueError("分光透过率曲线的取值必须位于 [0, 1] 范围内")

    @classmethod
    def ratio(cls, value: float) -> "SplittingConfig":
        return cls(ratio_value=float(value))

    @classmethod
    def spectrum(cls, curve: Spectrum) -> "SplittingConfig":
        return cls(curve=curve)

    @property
    def is_ratio(self) -> bool:
        return self.ratio_value is not None

    def transmission(self, wavelength: ArrayLike):
        """给定波长（标量或数组）处的透射比例"""
        if self.ratio_value is not None:
            if np.ndim(wavelength) == 0:
                return self.ratio_value
            return np.full(np.shape(wavelength), self.ratio_value)
        values = self.curve.resampled(np.atleast_1d(wavelength))
        if np.ndim(wavelength) == 0:
            return float(values[0])
        return values

    def to_dict(self) -> dict:
        if self.ratio_value is not None:
            return {"type": "ratio", "ratio": self.ratio_value}
        return {"type": "spectrum", "range_um": list(self.curve.range)}
