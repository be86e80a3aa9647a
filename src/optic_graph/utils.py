"""
数值工具函数

- kahan_sum: 补偿求和（math.fsum 精确求和），能量累加结果与顺序无关
- polygon_area: 闭合多边形面积（鞋带公式）
- check_finite / check_positive: 参数校验辅助函数
"""

from __future__ import annotations

import math
from typing import Iterable, Union

import numpy as np
from numpy.typing import ArrayLike, NDArray


def kahan_sum(values: Union[Iterable[float], ArrayLike]) -> float:
    """补偿求和

    对大量数量级相差悬殊的光线能量求和时，普通求和会丢失低位精度。
    使用 math.fsum（Shewchuk 精确求和）：结果为精确和的正确舍入，
    因此与求和顺序无关。

    参数:
        values: 待求和的数值序列

    返回:
        求和结果（float）

    示例:
        >>> kahan_sum([1e16, 1.0, -1e16])
        1.0
        >>> kahan_sum([1e16, -1e16, 1.0])
        1.0
    """
    if not isinstance(values, np.ndarray):
        values = list(values)
    return math.fsum(np.asarray(values, dtype=float).ravel().tolist())


def polygon_area(points: NDArray) -> float:
    """计算闭合多边形面积（鞋带公式）

    参数:
        points: 形状为 (N, 2) 的顶点数组，按顺时针或逆时针排列

    返回:
        多边形面积（非负）
    """
    pts = np.asarray(points, dtype=float)
    if pts.ndim != 2 or pts.shape[0] < 3:
        return 0.0
    x = pts[:, 0]
    y = pts[:, 1]
    return 0.5 * abs(float(np.dot(x, np.roll(y, -1)) - np.dot(y, np.roll(x, -1))))


def check_finite(value: float, name: str, unit: str = "") -> float:
    """检查参数为有限实数

    异常:
        ValueError: 参数不是数值或不是有限值
    """
    if not isinstance(value, (int, float, np.integer, np.floating)):
        raise ValueError(
            f"参数 '{name}' 必须为数值类型，实际类型为 {type(value).__name__}"
        )
    if not np.isfinite(value):
        raise ValueError(f"参数 '{name}' 必须为有限实数，实际值为 {value}{unit}")
    return float(value)


def check_positive(value: float, name: str, unit: str = "", allow_zero: bool = False) -> float:
    """检查参数为正的有限实数

    异常:
        ValueError: 参数不是正的有限值
    """
    value = check_finite(value, name, unit)
    if value < 0.0 or (value == 0.0 and not allow_zero):
        bound = "非负值" if allow_zero else "正值"
        raise ValueError(f"参数 '{name}' 必须为{bound}，实际值为 {value}{unit}")
    return value
