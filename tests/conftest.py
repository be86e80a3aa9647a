"""
pytest 配置文件

本文件包含 pytest 的全局配置和 fixtures。
"""

import sys
from pathlib import Path

import matplotlib

# 测试中不打开图形窗口
matplotlib.use("Agg")

# 将 src 目录添加到 Python 路径
src_path = Path(__file__).parent.parent / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))

import pytest

from optic_graph import Isometry, Source
from optic_graph.distributions import Grid, Hexapolar, UniformEnergy


FIXTURES_DIR = Path(__file__).parent / "fixtures"


@pytest.fixture
def fixtures_dir() -> Path:
    return FIXTURES_DIR


@pytest.fixture
def collimated_source() -> Source:
    """沿 +Z 的准直光源：37 条光线，半径 2 mm，总能量 1 J，波长 1.053 μm"""
    return Source.collimated("Laser", Hexapolar(2.0, 3), UniformEnergy(1.0), 1.053)


@pytest.fixture
def placed_source() -> Source:
    """放置在全局原点的准直光源（非序列分析使用）"""
    return Source.collimated(
        "Laser",
        Hexapolar(2.0, 3),
        UniformEnergy(1.0),
        1.053,
        iso=Isometry.identity(),
    )


@pytest.fixture
def grid_source() -> Source:
    """21x21 规则网格光源，边长 4 mm，带辅助光线"""
    return Source.collimated(
        "Grid laser",
        Grid((21, 21), (4.0, 4.0)),
        UniformEnergy(1.0),
        1.053,
        helper_rays=True,
    )
