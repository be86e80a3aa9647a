"""
三维刚体变换（Isometry）

本模块定义节点与表面在全局坐标系中的位置和姿态。

坐标系约定：
- 全局坐标系：右手系，Z 轴为默认光轴方向
- 局部坐标系：每个节点 / 表面有自己的局部坐标系，局部 Z 轴为其光轴
- Isometry 将局部坐标变换为全局坐标：p_global = R @ p_local + t

长度单位：mm；角度单位：rad
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Sequence

import numpy as np
from numpy.typing import ArrayLike, NDArray
from scipy.spatial.transform import Rotation


def _as_vector(value: ArrayLike, name: str) -> NDArray:
    vec = np.asarray(value, dtype=float).reshape(-1)
    if vec.shape != (3,):
        raise ValueError(f"{name} 必须为三维向量，实际形状为 {vec.shape}")
    if not np.all(np.isfinite(vec)):
        raise ValueError(f"{name} 必须为有限值，实际为 {vec}")
    return vec


@dataclass(frozen=True, eq=False)
class Isometry:
    """三维刚体变换（旋转 + 平移）

    参数:
        translation: 平移向量 (mm)
        rotation: scipy Rotation 对象

    示例:
        >>> iso = Isometry.new(translation=(0.0, 0.0, 100.0), rotation_angles=(0.0, 0.1, 0.0))
        >>> iso.transform_point((0.0, 0.0, 0.0))
        array([  0.,   0., 100.])
    """

    translation: NDArray = field(default_factory=lambda: np.zeros(3))
    rotation: Rotation = field(default_factory=Rotation.identity)

    def __post_init__(self) -> None:
        object.__setattr__(self, "translation", _as_vector(self.translation, "translation"))

    # ------------------------------------------------------------------
    # 构造
    # ------------------------------------------------------------------

    @classmethod
    def identity(cls) -> "Isometry":
        """单位变换（坐标原点，光轴沿 +Z）"""
        return cls()

    @classmethod
    def new(
        cls,
        translation: ArrayLike = (0.0, 0.0, 0.0),
        rotation_angles: ArrayLike = (0.0, 0.0, 0.0),
    ) -> "Isometry":
        """由平移向量和绕 X、Y、Z 轴的旋转角创建变换

        参数:
            translation: 平移 (mm)
            rotation_angles: 依次绕外旋 X、Y、Z 轴的角度 (rad)
        """
        angles = _as_vector(rotation_angles, "rotation_angles")
        return cls(
            translation=translation,
            rotation=Rotation.from_euler("xyz", angles),
        )

    @classmethod
    def along_z(cls, z: float) -> "Isometry":
        """位于光轴 z 处、不旋转的变换"""
        return cls(translation=(0.0, 0.0, float(z)))

    @classmethod
    def from_view(
        cls,
        position: ArrayLike,
        direction: ArrayLike,
        up: ArrayLike = (0.0, 1.0, 0.0),
    ) -> "Isometry":
        """创建局部 Z 轴指向给定方向的变换

        参数:
            position: 原点位置 (mm)
            direction: 局部 Z 轴方向（无需归一化）
            up: 参考“上”方向，用于确定局部 Y 轴
        """
        z_axis = _as_vector(direction, "direction")
        norm = np.linalg.norm(z_axis)
        if norm < 1e-15:
            raise ValueError("方向向量不能为零向量")
        z_axis = z_axis / norm
        up_vec = _as_vector(up, "up")
        x_axis = np.cross(up_vec, z_axis)
        if np.linalg.norm(x_axis) < 1e-12:
            # 方向与参考上方向平行
            x_axis = np.cross(np.array([0.0, 0.0, 1.0]), z_axis)
            if np.linalg.norm(x_axis) < 1e-12:
                x_axis = np.array([1.0, 0.0, 0.0])
        x_axis = x_axis / np.linalg.norm(x_axis)
        y_axis = np.cross(z_axis, x_axis)
        matrix = np.column_stack([x_axis, y_axis, z_axis])
        return cls(translation=position, rotation=Rotation.from_matrix(matrix))

    # ------------------------------------------------------------------
    # 属性
    # ------------------------------------------------------------------

    @property
    def matrix(self) -> NDArray:
        """3x3 旋转矩阵"""
        return self.rotation.as_matrix()

    @property
    def position(self) -> NDArray:
        """局部原点的全局坐标 (mm)"""
        return self.translation.copy()

    @property
    def z_axis(self) -> NDArray:
        """局部光轴方向（全局坐标）"""
        return self.matrix[:, 2].copy()

    # ------------------------------------------------------------------
    # 变换
    # ------------------------------------------------------------------

    def transform_point(self, point: ArrayLike) -> NDArray:
        """局部坐标点 -> 全局坐标点，支持形状 (3,) 或 (N, 3)"""
        pts = np.asarray(point, dtype=float)
        return pts @ self.matrix.T + self.translation

    def transform_vector(self, vector: ArrayLike) -> NDArray:
        """局部方向向量 -> 全局方向向量（只旋转）"""
        vec = np.asarray(vector, dtype=float)
        return vec @ self.matrix.T

    def inverse_transform_point(self, point: ArrayLike) -> NDArray:
        """全局坐标点 -> 局部坐标点"""
        pts = np.asarray(point, dtype=float)
        return (pts - self.translation) @ self.matrix

    def inverse_transform_vector(self, vector: ArrayLike) -> NDArray:
        """全局方向向量 -> 局部方向向量"""
        vec = np.asarray(vector, dtype=float)
        return vec @ self.matrix

    def inverse(self) -> "Isometry":
        """逆变换"""
        inv_rot = self.rotation.inv()
        return Isometry(translation=-inv_rot.apply(self.translation), rotation=inv_rot)

    def append(self, local: "Isometry") -> "Isometry":
        """复合变换：先应用 local，再应用 self

        用于将表面在节点内的局部位置转换为全局位置。
        """
        return Isometry(
            translation=self.transform_point(local.translation),
            rotation=self.rotation * local.rotation,
        )

    def translated_along_z(self, distance: float) -> "Isometry":
        """沿自身局部光轴平移指定距离"""
        return Isometry(
            translation=self.translation + float(distance) * self.z_axis,
            rotation=self.rotation,
        )

    def is_close(self, other: "Isometry", atol: float = 1e-9) -> bool:
        """判断两个变换是否近似相等"""
        return bool(
            np.allclose(self.translation, other.translation, atol=atol)
            and np.allclose(self.matrix, other.matrix, atol=atol)
        )

    def to_dict(self) -> dict:
        """转换为可序列化的字典（供报告使用）"""
        return {
            "translation": [float(v) for v in self.translation],
            "rotation_angles": [float(v) for v in self.rotation.as_euler("xyz")],
        }

    def __repr__(self) -> str:
        t = ", ".join(f"{v:.3f}" for v in self.translation)
        angles = ", ".join(f"{v:.4f}" for v in self.rotation.as_euler("xyz"))
        return f"Isometry(translation=({t}) mm, rotation=({angles}) rad)"


def unit_vector(vector: Sequence[float]) -> NDArray:
    """归一化向量

    异常:
        ValueError: 零向量
    """
    vec = np.asarray(vector, dtype=float)
    norm = np.linalg.norm(vec)
    if norm < 1e-15:
        raise ValueError("方向向量不能为零向量")
    return vec / norm
