"""
光学表面定义

几何表面在自身局部坐标系中定义，顶点位于原点，局部 +Z 为光轴方向；
所有表面的法向量在顶点处都指向 +Z。

- Plane: 平面 z = 0
- Sphere: 球面，球心位于 (0, 0, R)。R > 0 时曲率中心在 +Z 一侧
- Cylinder: 柱面，母线沿局部 X 轴，曲率沿局部 Y 方向
- Parabola: 抛物面 z = -(x² + y²) / (4f)，焦点位于 (0, 0, -f)

OpticSurface 将几何表面、全局位姿、表面作用类型（折射 / 反射 / 探测等）、
两侧介质、膜层与孔径组合在一起，供序列分析和非序列（三维）光线投射共用。
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Optional, Tuple, Union

import numpy as np
from numpy.typing import NDArray

from .aperture import Aperture, UnrestrictedAperture
from .coatings import Coating, IdealAR
from .geometry import Isometry
from .ray import SplittingConfig
from .refractive_index import AIR, RefractiveIndex
from .spectrum import Spectrum

# 序列分析允许光线恰好位于表面上（t ≈ 0）
SEQUENTIAL_T_MIN = -1e-9
# 非序列分析中排除刚离开的表面
NON_SEQUENTIAL_T_MIN = 1e-9


class GeometricSurface(ABC):
    """几何表面基类（局部坐标系）"""

    @abstractmethod
    def intersect_local(self, positions: NDArray, directions: NDArray, t_min: float) -> NDArray:
        """计算光线与表面交点的参数 t

        返回:
            形状 (N,) 的数组，未相交处为 nan
        """

    @abstractmethod
    def normal_local(self, points: NDArray) -> NDArray:
        """表面上各点的单位法向量，形状 (N, 3)"""

    @abstractmethod
    def to_dict(self) -> dict:
        ...


class Plane(GeometricSurface):
    """平面 z = 0"""

    def intersect_local(self, positions, directions, t_min):
        dz = directions[:, 2]
        t = np.full(len(positions), np.nan)
        ok = np.abs(dz) > 1e-15
        t[ok] = -positions[ok, 2] / dz[ok]
        t[~(t > t_min)] = np.nan
        return t

    def normal_local(self, points):
        normals = np.zeros((len(points), 3))
        normals[:, 2] = 1.0
        return normals

    def to_dict(self) -> dict:
        return {"type": "plane"}

    def __repr__(self) -> str:
        return "Plane()"


@dataclass(frozen=True)
class Sphere(GeometricSurface):
    """球面

    参数:
        radius: 曲率半径 (mm)，非零有限值
    """

    radius: float

    def __post_init__(self) -> None:
        if not np.isfinite(self.radius) or self.radius == 0.0:
            raise ValueError(f"球面曲率半径必须为非零有限值，实际为 {self.radius}")

    def intersect_local(self, positions, directions, t_min):
        r = self.radius
        oc = positions - np.array([0.0, 0.0, r])
        b = np.einsum("ij,ij->i", directions, oc)
        c = np.einsum("ij,ij->i", oc, oc) - r * r
        disc = b * b - c
        t = np.full(len(positions), np.nan)
        ok = disc >= 0.0
        sqrt_disc = np.sqrt(np.where(ok, disc, 0.0))
        for sign in (-1.0, 1.0):
            root = -b + sign * sqrt_disc
            z = positions[:, 2] + root * directions[:, 2]
            # 只取顶点所在的半球
            usable = ok & (root > t_min) & (r * z < r * r)
            better = usable & (np.isnan(t) | (root < t))
            t[better] = root[better]
        return t

    def normal_local(self, points):
        center = np.array([0.0, 0.0, self.radius])
        return (center - points) / self.radius

    def to_dict(self) -> dict:
        return {"type": "sphere", "radius_mm": self.radius}


@dataclass(frozen=True)
class Cylinder(GeometricSurface):
    """柱面，母线沿局部 X 轴，曲率沿局部 Y 方向

    轴线经过 (·, 0, R)；R > 0 时曲率中心在 +Z 一侧。
    """

    radius: float

    def __post_init__(self) -> None:
        if not np.isfinite(self.radius) or self.radius == 0.0:
            raise ValueError(f"柱面曲率半径必须为非零有限值，实际为 {self.radius}")

    def intersect_local(self, positions, directions, t_min):
        r = self.radius
        y0, z0 = positions[:, 1], positions[:, 2] - r
        dy, dz = directions[:, 1], directions[:, 2]
        a = dy * dy + dz * dz
        b = y0 * dy + z0 * dz
        c = y0 * y0 + z0 * z0 - r * r
        t = np.full(len(positions), np.nan)
        # 平行于母线的光线不相交
        ok = a > 1e-15
        safe_a = np.where(ok, a, 1.0)
        disc = b * b - a * c
        ok &= disc >= 0.0
        sqrt_disc = np.sqrt(np.where(ok, disc, 0.0))
        for sign in (-1.0, 1.0):
            root = (-b + sign * sqrt_disc) / safe_a
            z = positions[:, 2] + root * directions[:, 2]
            usable = ok & (root > t_min) & (r * z < r * r)
            better = usable & (np.isnan(t) | (root < t))
            t[better] = root[better]
        return t

    def normal_local(self, points):
        normals = np.zeros((len(points), 3))
        normals[:, 1] = -points[:, 1] / self.radius
        normals[:, 2] = (self.radius - points[:, 2]) / self.radius
        return normals

    def to_dict(self) -> dict:
        return {"type": "cylinder", "radius_mm": self.radius}


@dataclass(frozen=True)
class Parabola(GeometricSurface):
    """抛物面 z = -(x² + y²) / (4f)

    f > 0 时为沿 +Z 入射光的凹面（焦点在 -Z 一侧）。
    """

    focal_length: float

    def __post_init__(self) -> None:
        if not np.isfinite(self.focal_length) or self.focal_length == 0.0:
            raise ValueError(f"抛物面焦距必须为非零有限值，实际为 {self.focal_length}")

    def intersect_local(self, positions, directions, t_min):
        f = self.focal_length
        x0, y0, z0 = positions[:, 0], positions[:, 1], positions[:, 2]
        dx, dy, dz = directions[:, 0], directions[:, 1], directions[:, 2]
        a = (dx * dx + dy * dy) / (4.0 * f)
        b = dz + (x0 * dx + y0 * dy) / (2.0 * f)
        c = z0 + (x0 * x0 + y0 * y0) / (4.0 * f)
        t = np.full(len(positions), np.nan)

        linear = np.abs(a) < 1e-15
        with np.errstate(divide="ignore", invalid="ignore"):
            t_lin = np.where(np.abs(b) > 1e-15, -c / b, np.nan)
        good = linear & (t_lin > t_min)
        t[good] = t_lin[good]

        disc = b * b - 4.0 * a * c
        quad = ~linear & (disc >= 0.0)
        sqrt_disc = np.sqrt(np.where(quad, disc, 0.0))
        safe_a = np.where(quad, a, 1.0)
        for sign in (-1.0, 1.0):
            root = (-b + sign * sqrt_disc) / (2.0 * safe_a)
            usable = quad & (root > t_min)
            better = usable & (np.isnan(t) | (root < t))
            t[better] = root[better]
        return t

    def normal_local(self, points):
        f = self.focal_length
        grad = np.column_stack([
            points[:, 0] / (2.0 * f),
            points[:, 1] / (2.0 * f),
            np.ones(len(points)),
        ])
        return grad / np.linalg.norm(grad, axis=1, keepdims=True)

    def to_dict(self) -> dict:
        return {"type": "parabola", "focal_length_mm": self.focal_length}


class SurfaceKind(Enum):
    """表面对光线的作用类型"""
    REFRACTIVE = "refractive"
    MIRROR = "mirror"
    PARAXIAL = "paraxial"
    FILTER = "filter"
    SPLITTER = "splitter"
    DETECTOR = "detector"
    GRATING = "grating"
    MONITOR = "monitor"


@dataclass(frozen=True, eq=False)
class OpticSurface:
    """带位姿与光学属性的表面

    参数:
        name: 表面名称（如 "front"、"back"）
        geometry: 几何表面
        isometry: 表面局部坐标系（节点内定义时为相对节点，放置后为全局）
        kind: 表面作用类型
        n_neg: 局部 -Z 一侧介质的折射率
        n_pos: 局部 +Z 一侧介质的折射率
        coating: 膜层（决定鬼像反射的能量比例）
        aperture: 孔径（表面局部 XY 平面）
        focal_length: 理想薄透镜焦距 (mm)，仅 PARAXIAL 使用
        reflectivity: 反射镜能量反射率，仅 MIRROR 使用
        transmission: 滤光透过率（常数或透过率曲线），仅 FILTER 使用
        splitting: 分光配置，仅 SPLITTER 使用
        line_density: 光栅线密度 (1/mm)，仅 GRATING 使用
        diffraction_order: 衍射级次，仅 GRATING 使用
    """

    name: str
    geometry: GeometricSurface
    isometry: Isometry = field(default_factory=Isometry.identity)
    kind: SurfaceKind = SurfaceKind.REFRACTIVE
    n_neg: RefractiveIndex = AIR
    n_pos: RefractiveIndex = AIR
    coating: Coating = field(default_factory=IdealAR)
    aperture: Aperture = field(default_factory=UnrestrictedAperture)
    focal_length: Optional[float] = None
    reflectivity: float = 1.0
    transmission: Union[float, Spectrum, None] = None
    splitting: Optional[SplittingConfig] = None
    line_density: Optional[float] = None
    diffraction_order: int = 0

    def placed(self, iso: Isometry) -> "OpticSurface":
        """将节点内的表面放置到全局位姿 iso 下"""
        return replace(self, isometry=iso.append(self.isometry))

    def intersect(
        self,
        positions: NDArray,
        directions: NDArray,
        t_min: float = SEQUENTIAL_T_MIN,
    ) -> Tuple[NDArray, NDArray, NDArray]:
        """计算全局坐标下光线与表面的交点

        返回:
            (t, points, normals)：t 为 nan 表示未相交；
            points 与 normals 为全局坐标，未相交处为 nan
        """
        positions = np.asarray(positions, dtype=float).reshape(-1, 3)
        directions = np.asarray(directions, dtype=float).reshape(-1, 3)
        local_p = self.isometry.inverse_transform_point(positions)
        local_d = self.isometry.inverse_transform_vector(directions)
        t = self.geometry.intersect_local(local_p, local_d, t_min)
        hit = ~np.isnan(t)
        points = np.full_like(positions, np.nan)
        normals = np.full_like(positions, np.nan)
        if np.any(hit):
            local_hits = local_p[hit] + t[hit, None] * local_d[hit]
            points[hit] = self.isometry.transform_point(local_hits)
            normals[hit] = self.isometry.transform_vector(self.geometry.normal_local(local_hits))
        return t, points, normals

    def local_xy(self, points: NDArray) -> NDArray:
        """全局点在表面局部 XY 平面上的坐标，形状 (N, 2)"""
        local = self.isometry.inverse_transform_point(np.asarray(points, dtype=float).reshape(-1, 3))
        return local[:, :2]

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "kind": self.kind.value,
            "geometry": self.geometry.to_dict(),
            "isometry": self.isometry.to_dict(),
            "aperture": self.aperture.to_dict(),
        }

    def __repr__(self) -> str:
        return f"OpticSurface('{self.name}', {self.kind.value}, {self.geometry!r})"
