# -*- coding: utf-8 -*-
"""
数值工具函数单元测试
"""

import itertools

import numpy as np
import pytest

from optic_graph.utils import check_positive, kahan_sum, polygon_area


class TestKahanSum:
    """补偿求和"""

    def test_cancellation(self):
        assert kahan_sum([1e16, 1.0, -1e16]) == 1.0

    def test_result_does_not_depend_on_order(self):
        values = [1e16, 1.0, -1e16, 0.5, 3e-8]
        results = {kahan_sum(p) for p in itertools.permutations(values)}
        assert results == {1.5 + 3e-8}

    def test_accepts_arrays_and_generators(self):
        assert kahan_sum(np.full((10, 10), 0.1)) == 10.0
        assert kahan_sum(x for x in (0.25, 0.25)) == 0.5

    def test_empty(self):
        assert kahan_sum([]) == 0.0


class TestPolygonArea:
    """鞋带公式"""

    def test_square_either_orientation(self):
        square = np.array([[0.0, 0.0], [2.0, 0.0], [2.0, 2.0], [0.0, 2.0]])
        assert polygon_area(square) == pytest.approx(4.0)
        assert polygon_area(square[::-1]) == pytest.approx(4.0)

    def test_degenerate(self):
        assert polygon_area(np.array([[0.0, 0.0], [1.0, 1.0]])) == 0.0


class TestValidators:
    """参数校验"""

    def test_check_positive(self):
        assert check_positive(2.0, "焦距", "mm") == 2.0
        assert check_positive(0.0, "距离", allow_zero=True) == 0.0
        with pytest.raises(ValueError):
            check_positive(0.0, "焦距", "mm")
