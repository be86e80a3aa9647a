"""
端口孔径定义

孔径在端口所在表面的局部 XY 平面内定义（单位 mm）。
每种形状都可以作为“通光孔”（hole，形状内通过）或“遮挡”（obstruction，
形状内被挡住）使用。被挡住的光线只被标记为无效，不会从光线束中删除。

- UnrestrictedAperture: 不限制（默认）
- CircleAperture: 圆形
- RectangleAperture: 矩形
- PolygonAperture: 任意多边形（matplotlib.path.Path）
- StackedAperture: 多个孔径叠加，光线必须同时通过所有孔径
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Sequence, Tuple

import numpy as np
from matplotlib.path import Path
from numpy.typing import ArrayLike, NDArray

from .utils import check_positive


class Aperture(ABC):
    """孔径基类"""

    obstruction: bool = False

    @abstractmethod
    def _inside(self, xy: NDArray) -> NDArray:
        """形状内部的点（布尔掩码）"""

    def transmits(self, xy: ArrayLike) -> NDArray:
        """判断点是否通过孔径

        参数:
            xy: 局部坐标点，形状 (N, 2)

        返回:
            布尔数组，True 表示通过
        """
        pts = np.asarray(xy, dtype=float).reshape(-1, 2)
        inside = self._inside(pts)
        return ~inside if self.obstruction else inside

    @property
    def is_unrestricted(self) -> bool:
        return False

    @staticmethod
    def unrestricted() -> "UnrestrictedAperture":
        return UnrestrictedAperture()

    def to_dict(self) -> dict:
        return {"type": type(self).__name__, "obstruction": self.obstruction}


@dataclass(frozen=True)
class UnrestrictedAperture(Aperture):
    """不限制孔径"""

    def _inside(self, xy: NDArray) -> NDArray:
        return np.ones(len(xy), dtype=bool)

    def transmits(self, xy: ArrayLike) -> NDArray:
        pts = np.asarray(xy, dtype=float).reshape(-1, 2)
        return np.ones(len(pts), dtype=bool)

    @property
    def is_unrestricted(self) -> bool:
        return True


@dataclass(frozen=True)
class CircleAperture(Aperture):
    """圆形孔径

    参数:
        radius: 半径 (mm)
        center: 圆心 (mm)
        obstruction: True 表示圆形遮挡
    """

    radius: float
    center: Tuple[float, float] = (0.0, 0.0)
    obstruction: bool = False

    def __post_init__(self) -> None:
        check_positive(self.radius, "radius", " mm")

    def _inside(self, xy: NDArray) -> NDArray:
        dx = xy[:, 0] - self.center[0]
        dy = xy[:, 1] - self.center[1]
        return dx * dx + dy * dy <= self.radius * self.radius

    def to_dict(self) -> dict:
        d = super().to_dict()
        d.update({"radius_mm": self.radius, "center_mm": list(self.center)})
        return d


@dataclass(frozen=True)
class RectangleAperture(Aperture):
    """矩形孔径（边与局部坐标轴平行）"""

    width: float
    height: float
    center: Tuple[float, float] = (0.0, 0.0)
    obstruction: bool = False

    def __post_init__(self) -> None:
        check_positive(self.width, "width", " mm")
        check_positive(self.height, "height", " mm")

    def _inside(self, xy: NDArray) -> NDArray:
        return (
            (np.abs(xy[:, 0] - self.center[0]) <= self.width / 2.0)
            & (np.abs(xy[:, 1] - self.center[1]) <= self.height / 2.0)
        )

    def to_dict(self) -> dict:
        d = super().to_dict()
        d.update({"width_mm": self.width, "height_mm": self.height, "center_mm": list(self.center)})
        return d


@dataclass(frozen=True)
class PolygonAperture(Aperture):
    """多边形孔径

    参数:
        vertices: 顶点序列 [(x, y), ...]，至少 3 个点
    """

    vertices: Tuple[Tuple[float, float], ...]
    obstruction: bool = False
    _path: Path = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        verts = np.asarray(self.vertices, dtype=float)
        if verts.ndim != 2 or verts.shape[1] != 2 or verts.shape[0] < 3:
            raise ValueError("多边形孔径至少需要 3 个二维顶点")
        object.__setattr__(self, "vertices", tuple(map(tuple, verts)))
        object.__setattr__(self, "_path", Path(verts, closed=False))

    def _inside(self, xy: NDArray) -> NDArray:
        return self._path.contains_points(xy)

    def to_dict(self) -> dict:
        d = super().to_dict()
        d["vertices_mm"] = [list(v) for v in self.vertices]
        return d


@dataclass(frozen=True)
class StackedAperture(Aperture):
    """叠加孔径：光线必须通过所有子孔径"""

    apertures: Sequence[Aperture] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "apertures", tuple(self.apertures))

    def _inside(self, xy: NDArray) -> NDArray:
        return self.transmits(xy)

    def transmits(self, xy: ArrayLike) -> NDArray:
        pts = np.asarray(xy, dtype=float).reshape(-1, 2)
        mask = np.ones(len(pts), dtype=bool)
        for aperture in self.apertures:
            mask &= aperture.transmits(pts)
        return mask

    @property
    def is_unrestricted(self) -> bool:
        return all(a.is_unrestricted for a in self.apertures)

    def to_dict(self) -> dict:
        return {"type": "StackedAperture", "apertures": [a.to_dict() for a in self.apertures]}
