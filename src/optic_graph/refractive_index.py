"""
折射率模型

支持的色散模型（波长单位 μm）：
- ConstantIndex: 常数折射率
- SellmeierIndex: Sellmeier 公式 n² = 1 + Σ Bᵢλ²/(λ² - Cᵢ)
- ConradyIndex: Conrady 公式 n = n₀ + A/λ + B/λ^3.5
- SchottIndex: Schott 公式 n² = a₀ + a₁λ² + a₂λ⁻² + a₃λ⁻⁴ + a₄λ⁻⁶ + a₅λ⁻⁸
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np

from .utils import check_finite, check_positive


class RefractiveIndex(ABC):
    """折射率基类"""

    @abstractmethod
    def _evaluate(self, wavelength: float) -> float:
        ...

    @property
    def valid_range(self) -> Optional[Tuple[float, float]]:
        """模型适用的波长范围 (μm)，None 表示不限"""
        return None

    def index(self, wavelength: float) -> float:
        """给定波长处的折射率

        异常:
            ValueError: 波长超出适用范围，或折射率 < 1 / 非有限值
        """
        check_positive(wavelength, "wavelength", " μm")
        rng = self.valid_range
        if rng is not None and not (rng[0] <= wavelength <= rng[1]):
            raise ValueError(
                f"波长 {wavelength} μm 超出折射率模型的适用范围 [{rng[0]}, {rng[1]}] μm"
            )
        n = self._evaluate(wavelength)
        if not np.isfinite(n) or n < 1.0:
            raise ValueError(f"折射率必须为 >= 1 的有限值，实际为 {n}（λ={wavelength} μm）")
        return float(n)


@dataclass(frozen=True)
class ConstantIndex(RefractiveIndex):
    """常数折射率（无色散）"""

    n: float = 1.0

    def __post_init__(self) -> None:
        check_finite(self.n, "n")
        if self.n < 1.0:
            raise ValueError(f"折射率必须 >= 1，实际为 {self.n}")

    def _evaluate(self, wavelength: float) -> float:
        return self.n


@dataclass(frozen=True)
class SellmeierIndex(RefractiveIndex):
    """Sellmeier 色散模型

    示例（N-BK7）:
        >>> nbk7 = SellmeierIndex(
        ...     b=(1.03961212, 0.231792344, 1.01046945),
        ...     c=(0.00600069867, 0.0200179144, 103.560653),
        ... )
        >>> round(nbk7.index(0.5876), 4)
        1.5168
    """

    b: Tuple[float, float, float]
    c: Tuple[float, float, float]
    wavelength_range: Tuple[float, float] = (0.3, 2.5)

    def __post_init__(self) -> None:
        if len(self.b) != 3 or len(self.c) != 3:
            raise ValueError("Sellmeier 系数 b、c 必须各包含 3 个值")

    @property
    def valid_range(self) -> Optional[Tuple[float, float]]:
        return self.wavelength_range

    def _evaluate(self, wavelength: float) -> float:
        l2 = wavelength * wavelength
        n2 = 1.0 + sum(bi * l2 / (l2 - ci) for bi, ci in zip(self.b, self.c))
        return float(np.sqrt(n2)) if n2 > 0.0 else float("nan")


@dataclass(frozen=True)
class ConradyIndex(RefractiveIndex):
    """Conrady 色散模型"""

    n0: float
    a: float
    b: float
    wavelength_range: Tuple[float, float] = (0.3, 2.5)

    @property
    def valid_range(self) -> Optional[Tuple[float, float]]:
        return self.wavelength_range

    def _evaluate(self, wavelength: float) -> float:
        return self.n0 + self.a / wavelength + self.b / wavelength ** 3.5


@dataclass(frozen=True)
class SchottIndex(RefractiveIndex):
    """Schott 色散模型"""

    coefficients: Tuple[float, float, float, float, float, float]
    wavelength_range: Tuple[float, float] = (0.3, 2.5)

    def __post_init__(self) -> None:
        if len(self.coefficients) != 6:
            raise ValueError("Schott 公式需要 6 个系数")

    @property
    def valid_range(self) -> Optional[Tuple[float, float]]:
        return self.wavelength_range

    def _evaluate(self, wavelength: float) -> float:
        a0, a1, a2, a3, a4, a5 = self.coefficients
        l2 = wavelength * wavelength
        n2 = a0 + a1 * l2 + a2 / l2 + a3 / l2 ** 2 + a4 / l2 ** 3 + a5 / l2 ** 4
        return float(np.sqrt(n2)) if n2 > 0.0 else float("nan")


AIR = ConstantIndex(1.0)

N_BK7 = SellmeierIndex(
    b=(1.03961212, 0.231792344, 1.01046945),
    c=(0.00600069867, 0.0200179144, 103.560653),
)
