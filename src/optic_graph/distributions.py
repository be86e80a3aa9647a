"""
光线位置分布与能量分布

位置分布在光源局部坐标系的 XY 平面内生成采样点（单位 mm），
能量分布为每个采样点分配能量（单位 J），总能量守恒。

位置分布：
- Grid: 规则矩形网格
- Hexapolar: 六角极坐标环形分布
- FibonacciRectangle / FibonacciEllipse: 斐波那契（黄金角）分布
- RandomUniform: 均匀随机分布
- Sobol: Sobol 低差异序列（scipy.stats.qmc）

能量分布：
- UniformEnergy: 均匀能量
- GeneralGaussian: 广义（超）高斯能量分布
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np
from numpy.typing import NDArray
from scipy.stats import qmc

from .utils import check_positive

GOLDEN_ANGLE = np.pi * (3.0 - np.sqrt(5.0))


class PositionDistribution(ABC):
    """位置分布基类"""

    @abstractmethod
    def generate(self) -> NDArray:
        """生成采样点，形状 (N, 2)，单位 mm"""

    @abstractmethod
    def area(self) -> float:
        """分布覆盖的面积 (mm²)，用于辅助光线的单元大小"""


@dataclass(frozen=True)
class Grid(PositionDistribution):
    """规则矩形网格

    参数:
        nr_of_points: (nx, ny) 每个方向的点数
        side_length: (lx, ly) 每个方向的边长 (mm)；点数为 1 的方向取 0 位置
    """

    nr_of_points: Tuple[int, int] = (11, 11)
    side_length: Tuple[float, float] = (1.0, 1.0)

    def __post_init__(self) -> None:
        nx, ny = self.nr_of_points
        if nx < 1 or ny < 1:
            raise ValueError(f"网格点数必须 >= 1，实际为 {self.nr_of_points}")
        check_positive(self.side_length[0], "side_length[0]", " mm", allow_zero=True)
        check_positive(self.side_length[1], "side_length[1]", " mm", allow_zero=True)

    def generate(self) -> NDArray:
        nx, ny = self.nr_of_points
        lx, ly = self.side_length
        xs = np.linspace(-lx / 2.0, lx / 2.0, nx) if nx > 1 else np.zeros(1)
        ys = np.linspace(-ly / 2.0, ly / 2.0, ny) if ny > 1 else np.zeros(1)
        xx, yy = np.meshgrid(xs, ys, indexing="xy")
        return np.column_stack([xx.ravel(), yy.ravel()])

    def area(self) -> float:
        return float(self.side_length[0] * self.side_length[1])


@dataclass(frozen=True)
class Hexapolar(PositionDistribution):
    """六角极坐标分布

    中心一个点，第 i 环有 6·i 个点，环半径等间距。

    参数:
        radius: 最外环半径 (mm)
        nr_of_rings: 环数（不含中心点）
    """

    radius: float = 1.0
    nr_of_rings: int = 5

    def __post_init__(self) -> None:
        check_positive(self.radius, "radius", " mm", allow_zero=True)
        if self.nr_of_rings < 0:
            raise ValueError(f"环数必须 >= 0，实际为 {self.nr_of_rings}")

    def generate(self) -> NDArray:
        points = [np.zeros((1, 2))]
        for ring in range(1, self.nr_of_rings + 1):
            r = self.radius * ring / self.nr_of_rings
            phi = np.linspace(0.0, 2.0 * np.pi, 6 * ring, endpoint=False)
            points.append(np.column_stack([r * np.cos(phi), r * np.sin(phi)]))
        return np.vstack(points)

    def area(self) -> float:
        return float(np.pi * self.radius ** 2)


@dataclass(frozen=True)
class FibonacciRectangle(PositionDistribution):
    """矩形区域内的斐波那契分布"""

    side_length_x: float = 1.0
    side_length_y: float = 1.0
    nr_of_points: int = 100

    def __post_init__(self) -> None:
        check_positive(self.side_length_x, "side_length_x", " mm")
        check_positive(self.side_length_y, "side_length_y", " mm")
        if self.nr_of_points < 1:
            raise ValueError("采样点数必须 >= 1")

    def generate(self) -> NDArray:
        n = self.nr_of_points
        idx = np.arange(n)
        golden_ratio = (1.0 + np.sqrt(5.0)) / 2.0
        x = ((idx / golden_ratio) % 1.0 - 0.5) * self.side_length_x
        y = ((idx + 0.5) / n - 0.5) * self.side_length_y
        return np.column_stack([x, y])

    def area(self) -> float:
        return float(self.side_length_x * self.side_length_y)


@dataclass(frozen=True)
class FibonacciEllipse(PositionDistribution):
    """椭圆区域内的斐波那契（向日葵）分布"""

    radius_x: float = 1.0
    radius_y: float = 1.0
    nr_of_points: int = 100

    def __post_init__(self) -> None:
        check_positive(self.radius_x, "radius_x", " mm")
        check_positive(self.radius_y, "radius_y", " mm")
        if self.nr_of_points < 1:
            raise ValueError("采样点数必须 >= 1")

    def generate(self) -> NDArray:
        n = self.nr_of_points
        idx = np.arange(n)
        r = np.sqrt((idx + 0.5) / n)
        phi = idx * GOLDEN_ANGLE
        return np.column_stack([
            self.radius_x * r * np.cos(phi),
            self.radius_y * r * np.sin(phi),
        ])

    def area(self) -> float:
        return float(np.pi * self.radius_x * self.radius_y)


@dataclass(frozen=True)
class RandomUniform(PositionDistribution):
    """矩形区域内的均匀随机分布（可指定随机种子）"""

    side_length_x: float = 1.0
    side_length_y: float = 1.0
    nr_of_points: int = 100
    seed: Optional[int] = None

    def __post_init__(self) -> None:
        check_positive(self.side_length_x, "side_length_x", " mm")
        check_positive(self.side_length_y, "side_length_y", " mm")
        if self.nr_of_points < 1:
            raise ValueError("采样点数必须 >= 1")

    def generate(self) -> NDArray:
        rng = np.random.default_rng(self.seed)
        unit = rng.random((self.nr_of_points, 2)) - 0.5
        return unit * np.array([self.side_length_x, self.side_length_y])

    def area(self) -> float:
        return float(self.side_length_x * self.side_length_y)


@dataclass(frozen=True)
class Sobol(PositionDistribution):
    """矩形区域内的 Sobol 低差异序列

    scipy 的 Sobol 序列在 2 的幂个点时平衡性最好，因此先生成
    2^m >= N 个点，再取前 N 个。
    """

    side_length_x: float = 1.0
    side_length_y: float = 1.0
    nr_of_points: int = 128
    seed: Optional[int] = 0

    def __post_init__(self) -> None:
        check_positive(self.side_length_x, "side_length_x", " mm")
        check_positive(self.side_length_y, "side_length_y", " mm")
        if self.nr_of_points < 1:
            raise ValueError("采样点数必须 >= 1")

    def generate(self) -> NDArray:
        m = int(np.ceil(np.log2(max(self.nr_of_points, 1))))
        sampler = qmc.Sobol(d=2, scramble=True, seed=self.seed)
        unit = sampler.random_base2(m)[: self.nr_of_points] - 0.5
        return unit * np.array([self.side_length_x, self.side_length_y])

    def area(self) -> float:
        return float(self.side_length_x * self.side_length_y)


# =============================================================================
# 能量分布
# =============================================================================


class EnergyDistribution(ABC):
    """能量分布基类"""

    total_energy: float

    @abstractmethod
    def weights(self, points: NDArray) -> NDArray:
        """未归一化的权重，形状 (N,)"""

    def apply(self, points: NDArray) -> NDArray:
        """为每个采样点分配能量，总和等于 total_energy"""
        w = np.asarray(self.weights(points), dtype=float)
        total = float(np.sum(w))
        if total <= 0.0:
            raise ValueError("能量分布在所有采样点上的权重均为零")
        return self.total_energy * w / total


@dataclass(frozen=True)
class UniformEnergy(EnergyDistribution):
    """均匀能量分布"""

    total_energy: float = 1.0

    def __post_init__(self) -> None:
        check_positive(self.total_energy, "total_energy", " J")

    def weights(self, points: NDArray) -> NDArray:
        return np.ones(len(points))


@dataclass(frozen=True)
class GeneralGaussian(EnergyDistribution):
    """广义高斯能量分布

    w = exp(-2 · ((x-x0)²/wx² + (y-y0)²/wy²)^p)

    参数:
        total_energy: 总能量 (J)
        waist: (wx, wy) 1/e² 半径 (mm)
        center: 中心位置 (mm)
        power: 超高斯阶数 p，p=1 为普通高斯
    """

    total_energy: float = 1.0
    waist: Tuple[float, float] = (1.0, 1.0)
    center: Tuple[float, float] = (0.0, 0.0)
    power: float = 1.0

    def __post_init__(self) -> None:
        check_positive(self.total_energy, "total_energy", " J")
        check_positive(self.waist[0], "waist[0]", " mm")
        check_positive(self.waist[1], "waist[1]", " mm")
        check_positive(self.power, "power")

    def weights(self, points: NDArray) -> NDArray:
        pts = np.asarray(points, dtype=float)
        rx = (pts[:, 0] - self.center[0]) / self.waist[0]
        ry = (pts[:, 1] - self.center[1]) / self.waist[1]
        return np.exp(-2.0 * (rx ** 2 + ry ** 2) ** self.power)
