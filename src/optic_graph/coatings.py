"""
表面膜层（Coating）

膜层决定光线在两种介质界面上被反射的能量比例。折射光线携带剩余能量，
反射部分用于鬼像（ghost focus）分析。

- IdealAR: 理想增透膜，反射率恒为 0（默认）
- ConstantR: 恒定反射率
- Fresnel: 未镀膜界面，按菲涅尔公式计算（s、p 偏振平均）
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass

import numpy as np
from numpy.typing import ArrayLike, NDArray


class Coating(ABC):
    """膜层基类"""

    @abstractmethod
    def reflectivity(
        self,
        cos_incidence: ArrayLike,
        n1: ArrayLike,
        n2: ArrayLike,
    ) -> NDArray:
        """计算能量反射率

        参数:
            cos_incidence: 入射角余弦（>= 0）
            n1: 入射侧折射率
            n2: 出射侧折射率

        返回:
            与输入同形状的反射率数组，取值 [0, 1]
        """


@dataclass(frozen=True)
class IdealAR(Coating):
    """理想增透膜"""

    def reflectivity(self, cos_incidence, n1, n2) -> NDArray:
        return np.zeros_like(np.asarray(cos_incidence, dtype=float))


@dataclass(frozen=True)
class ConstantR(Coating):
    """恒定反射率膜层

    参数:
        reflectivity_value: 反射率，范围 [0, 1]
    """

    reflectivity_value: float = 0.0

    def __post_init__(self) -> None:
        if not (0.0 <= self.reflectivity_value <= 1.0):
            raise ValueError(
                f"反射率必须位于 [0, 1] 范围内，实际为 {self.reflectivity_value}"
            )

    def reflectivity(self, cos_incidence, n1, n2) -> NDArray:
        cos_i = np.asarray(cos_incidence, dtype=float)
        return np.full_like(cos_i, self.reflectivity_value)


@dataclass(frozen=True)
class Fresnel(Coating):
    """未镀膜界面的菲涅尔反射（非偏振光）"""

    def reflectivity(self, cos_incidence, n1, n2) -> NDArray:
        cos_i = np.clip(np.asarray(cos_incidence, dtype=float), 0.0, 1.0)
        n1 = np.asarray(n1, dtype=float)
        n2 = np.asarray(n2, dtype=float)
        sin_t2 = (n1 / n2) ** 2 * (1.0 - cos_i ** 2)
        tir = sin_t2 >= 1.0
        cos_t = np.sqrt(np.clip(1.0 - sin_t2, 0.0, None))
        with np.errstate(divide="ignore", invalid="ignore"):
            rs = (n1 * cos_i - n2 * cos_t) / (n1 * cos_i + n2 * cos_t)
            rp = (n2 * cos_i - n1 * cos_t) / (n2 * cos_i + n1 * cos_t)
        r = 0.5 * (rs ** 2 + rp ** 2)
        r = np.where(tir, 1.0, np.nan_to_num(r, nan=1.0))
        return np.clip(r, 0.0, 1.0)
