"""
光线束（RayBundle）

RayBundle 是有序、不可变的光线集合，内部以 numpy 数组存储：
- 所有操作返回新的光线束，原对象不变
- 无效光线只被标记（valid = False），不会被删除，保证索引对应关系
- 几何操作只作用于有效光线，无效光线停留在被标记时的位置
- 可选的辅助光线束（每条主光线对应 4 条辅助光线）随主光线一起传播，
  用于辅助光线法的能量密度估计

单位约定：位置 mm，波长 μm，能量 J。
"""

from __future__ import annotations

from typing import Dict, Iterator, List, Optional, Sequence, Tuple, Union

import numpy as np
from numpy.typing import ArrayLike, NDArray

from .aperture import Aperture
from .distributions import EnergyDistribution, Hexapolar, PositionDistribution, UniformEnergy
from .geometry import Isometry
from .ray import Ray, SplittingConfig
from .refractive_index import RefractiveIndex
from .spectrum import Spectrum
from .surfaces import SEQUENTIAL_T_MIN, OpticSurface, Plane
from .utils import check_positive, kahan_sum

# 每条主光线对应的辅助光线数
HELPERS_PER_RAY = 4

_ARRAY_FIELDS = (
    "_positions",
    "_directions",
    "_wavelengths",
    "_energies",
    "_valid",
    "_indices",
    "_bounces",
    "_refractions",
    "_path_lengths",
)


def _frozen(array: NDArray) -> NDArray:
    array.setflags(write=False)
    return array


def _evaluate_index(index: RefractiveIndex, wavelengths: NDArray) -> NDArray:
    """按波长计算折射率（相同波长只计算一次）"""
    result = np.empty(len(wavelengths))
    cache: Dict[float, float] = {}
    for i, wvl in enumerate(wavelengths):
        key = float(wvl)
        if key not in cache:
            cache[key] = index.index(key)
        result[i] = cache[key]
    return result


class RayBundle:
    """光线束

    参数:
        positions: 位置，形状 (N, 3)，单位 mm
        directions: 方向，形状 (N, 3)，自动归一化
        wavelengths: 波长 (μm)，标量或形状 (N,)
        energies: 能量 (J)，标量或形状 (N,)
        valid: 有效标志，默认全部有效
        refractive_indices: 当前介质折射率，默认 1.0
        bounces: 鬼像反射次数
        refractions: 折射次数
        path_lengths: 累计光程 (mm)
        histories: 每条光线的历史位置，形状 (k, 3) 的数组序列
        helpers: 辅助光线束，长度必须为 4N

    示例:
        >>> from optic_graph.distributions import Grid, UniformEnergy
        >>> bundle = RayBundle.collimated(Grid((3, 3), (2.0, 2.0)), UniformEnergy(1.0), 1.053)
        >>> len(bundle), round(bundle.total_energy(), 12)
        (9, 1.0)
    """

    def __init__(
        self,
        positions: ArrayLike,
        directions: ArrayLike,
        wavelengths: ArrayLike,
        energies: ArrayLike,
        valid: Optional[ArrayLike] = None,
        refractive_indices: Optional[ArrayLike] = None,
        bounces: Optional[ArrayLike] = None,
        refractions: Optional[ArrayLike] = None,
        path_lengths: Optional[ArrayLike] = None,
        histories: Optional[Sequence[NDArray]] = None,
        helpers: Optional["RayBundle"] = None,
    ) -> None:
        pos = np.array(positions, dtype=float).reshape(-1, 3)
        n = len(pos)
        dirs = np.array(directions, dtype=float).reshape(-1, 3)
        if dirs.shape != pos.shape:
            raise ValueError(f"方向数组形状 {dirs.shape} 与位置数组形状 {pos.shape} 不一致")
        if not (np.all(np.isfinite(pos)) and np.all(np.isfinite(dirs))):
            raise ValueError("光线位置和方向必须为有限值")
        norms = np.linalg.norm(dirs, axis=1)
        if np.any(norms < 1e-15):
            raise ValueError("光线方向不能为零向量")
        dirs = dirs / norms[:, None]

        wvl = np.array(np.broadcast_to(np.asarray(wavelengths, dtype=float), (n,)))
        if np.any(~np.isfinite(wvl)) or np.any(wvl <= 0.0):
            raise ValueError("波长必须为正的有限值")
        en = np.array(np.broadcast_to(np.asarray(energies, dtype=float), (n,)))
        if np.any(~np.isfinite(en)) or np.any(en < 0.0):
            raise ValueError("光线能量必须为非负有限值")

        def column(value, default, dtype):
            if value is None:
                return np.full(n, default, dtype=dtype)
            return np.array(np.broadcast_to(np.asarray(value, dtype=dtype), (n,)))

        if histories is None:
            hist = tuple(np.empty((0, 3)) for _ in range(n))
        else:
            hist = tuple(np.asarray(h, dtype=float).reshape(-1, 3) for h in histories)
            if len(hist) != n:
                raise ValueError("历史位置数量与光线数量不一致")
        if helpers is not None and len(helpers) != HELPERS_PER_RAY * n:
            raise ValueError(
                f"辅助光线数量 ({len(helpers)}) 必须为主光线数量的 {HELPERS_PER_RAY} 倍"
            )

        self._positions = _frozen(pos)
        self._directions = _frozen(dirs)
        self._wavelengths = _frozen(wvl)
        self._energies = _frozen(en)
        self._valid = _frozen(column(valid, True, bool))
        self._indices = _frozen(column(refractive_indices, 1.0, float))
        self._bounces = _frozen(column(bounces, 0, int))
        self._refractions = _frozen(column(refractions, 0, int))
        self._path_lengths = _frozen(column(path_lengths, 0.0, float))
        self._histories = hist
        self._helpers = helpers

    # ------------------------------------------------------------------
    # 构造
    # ------------------------------------------------------------------

    @classmethod
    def empty(cls) -> "RayBundle":
        return cls(np.empty((0, 3)), np.empty((0, 3)), np.empty(0), np.empty(0))

    @classmethod
    def from_rays(cls, rays: Sequence[Ray]) -> "RayBundle":
        """由 Ray 对象序列创建光线束"""
        rays = list(rays)
        if not rays:
            return cls.empty()
        return cls(
            positions=[r.position for r in rays],
            directions=[r.direction for r in rays],
            wavelengths=[r.wavelength for r in rays],
            energies=[r.energy for r in rays],
            valid=[r.valid for r in rays],
            refractive_indices=[r.refractive_index for r in rays],
            bounces=[r.bounces for r in rays],
            refractions=[r.refractions for r in rays],
            path_lengths=[r.path_length for r in rays],
            histories=[np.asarray(r.history, dtype=float).reshape(-1, 3) for r in rays],
        )

    @classmethod
    def collimated(
        cls,
        distribution: PositionDistribution,
        energy_distribution: EnergyDistribution,
        wavelength: float,
        iso: Optional[Isometry] = None,
        helper_rays: bool = False,
    ) -> "RayBundle":
        """准直光线束

        光线在局部 XY 平面内按位置分布排列，沿局部 +Z 传播，
        再由 iso 变换到全局坐标系。

        参数:
            distribution: 位置分布
            energy_distribution: 能量分布
            wavelength: 波长 (μm)
            iso: 光源位姿，None 表示全局原点
            helper_rays: 是否生成辅助光线
        """
        check_positive(wavelength, "wavelength", " μm")
        points = distribution.generate()
        energies = energy_distribution.apply(points)
        n = len(points)
        positions = np.column_stack([points, np.zeros(n)])
        directions = np.tile([0.0, 0.0, 1.0], (n, 1))
        helpers = None
        if helper_rays:
            cell_area = distribution.area() / n
            if cell_area <= 0.0:
                raise ValueError("位置分布面积为零，无法生成辅助光线")
            delta = np.sqrt(cell_area / 2.0)
            offsets = delta * np.array([[1.0, 0.0, 0.0], [0.0, 1.0, 0.0], [-1.0, 0.0, 0.0], [0.0, -1.0, 0.0]])
            helper_pos = (positions[:, None, :] + offsets[None, :, :]).reshape(-1, 3)
            helpers = cls(
                helper_pos,
                np.repeat(directions, HELPERS_PER_RAY, axis=0),
                wavelength,
                np.repeat(energies, HELPERS_PER_RAY),
            )
        bundle = cls(positions, directions, wavelength, energies, helpers=helpers)
        return bundle.transformed(iso) if iso is not None else bundle

    @classmethod
    def point_source(
        cls,
        cone_angle: float,
        total_energy: float,
        wavelength: float,
        nr_of_rings: int = 5,
        iso: Optional[Isometry] = None,
        helper_rays: bool = False,
    ) -> "RayBundle":
        """点光源发出的锥形光线束

        参数:
            cone_angle: 锥体全角 (rad)，范围 [0, π)
            total_energy: 总能量 (J)
            wavelength: 波长 (μm)
            nr_of_rings: 六角极坐标分布的环数
        """
        if not (0.0 <= cone_angle < np.pi):
            raise ValueError(f"锥角必须位于 [0, π) 范围内，实际为 {cone_angle} rad")
        tan_half = np.tan(cone_angle / 2.0)
        distribution = Hexapolar(radius=tan_half, nr_of_rings=nr_of_rings if tan_half > 0 else 0)
        slopes = distribution.generate()
        n = len(slopes)
        directions = np.column_stack([slopes, np.ones(n)])
        positions = np.zeros((n, 3))
        energies = UniformEnergy(total_energy).apply(slopes)
        helpers = None
        if helper_rays:
            if tan_half <= 0.0:
                raise ValueError("锥角为零的点光源无法生成辅助光线")
            delta = np.sqrt(distribution.area() / n / 2.0)
            offsets = delta * np.array([[1.0, 0.0, 0.0], [0.0, 1.0, 0.0], [-1.0, 0.0, 0.0], [0.0, -1.0, 0.0]])
            helper_dirs = (directions[:, None, :] + offsets[None, :, :]).reshape(-1, 3)
            helpers = cls(
                np.zeros_like(helper_dirs),
                helper_dirs,
                wavelength,
                np.repeat(energies, HELPERS_PER_RAY),
            )
        bundle = cls(positions, directions, wavelength, energies, helpers=helpers)
        return bundle.transformed(iso) if iso is not None else bundle

    @classmethod
    def concatenate(cls, bundles: Sequence["RayBundle"]) -> "RayBundle":
        """依次合并多个光线束"""
        result = cls.empty()
        for index, bundle in enumerate(bundles):
            result = bundle if index == 0 else result.merge(bundle)
        return result

    # ------------------------------------------------------------------
    # 内部辅助
    # ------------------------------------------------------------------

    def _evolve(self, **changes) -> "RayBundle":
        """复制当前光线束并替换部分数组（不重复校验）"""
        new = object.__new__(RayBundle)
        for name in _ARRAY_FIELDS:
            value = changes.get(name.lstrip("_"), getattr(self, name))
            if value is not getattr(self, name):
                value = _frozen(np.array(value))
            setattr(new, name, value)
        new._histories = changes.get("histories", self._histories)
        new._helpers = changes.get("helpers", self._helpers)
        return new

    def _appended_histories(self, mask: NDArray) -> Tuple[NDArray, ...]:
        """在掩码选中的光线的历史中追加当前位置"""
        return tuple(
            np.vstack([hist, self._positions[i]]) if mask[i] else hist
            for i, hist in enumerate(self._histories)
        )

    def _move(self, mask: NDArray, t: NDArray) -> Dict[str, object]:
        """将掩码选中的光线沿自身方向移动 t，返回变化的字段"""
        positions = self._positions.copy()
        path_lengths = self._path_lengths.copy()
        positions[mask] += t[mask, None] * self._directions[mask]
        path_lengths[mask] += t[mask] * self._indices[mask]
        return {
            "positions": positions,
            "path_lengths": path_lengths,
            "histories": self._appended_histories(mask),
        }

    def _helper_map(self, method: str, *args, **kwargs):
        if self._helpers is None:
            return None
        return getattr(self._helpers, method)(*args, **kwargs)

    # ------------------------------------------------------------------
    # 属性与访问
    # ------------------------------------------------------------------

    @property
    def positions(self) -> NDArray:
        return self._positions

    @property
    def directions(self) -> NDArray:
        return self._directions

    @property
    def wavelengths(self) -> NDArray:
        return self._wavelengths

    @property
    def energies(self) -> NDArray:
        return self._energies

    @property
    def valid(self) -> NDArray:
        return self._valid

    @property
    def refractive_indices(self) -> NDArray:
        return self._indices

    @property
    def bounces(self) -> NDArray:
        return self._bounces

    @property
    def refractions(self) -> NDArray:
        return self._refractions

    @property
    def path_lengths(self) -> NDArray:
        return self._path_lengths

    @property
    def helpers(self) -> Optional["RayBundle"]:
        return self._helpers

    @property
    def nr_of_rays(self) -> int:
        return len(self._positions)

    @property
    def nr_of_valid_rays(self) -> int:
        return int(np.count_nonzero(self._valid))

    def is_empty(self) -> bool:
        return self.nr_of_rays == 0

    def __len__(self) -> int:
        return self.nr_of_rays

    def __getitem__(self, index: int) -> Ray:
        return Ray(
            position=self._positions[index],
            direction=self._directions[index],
            wavelength=float(self._wavelengths[index]),
            energy=float(self._energies[index]),
            valid=bool(self._valid[index]),
            history=tuple(tuple(float(v) for v in p) for p in self._histories[index]),
            refractive_index=float(self._indices[index]),
            bounces=int(self._bounces[index]),
            refractions=int(self._refractions[index]),
            path_length=float(self._path_lengths[index]),
        )

    def __iter__(self) -> Iterator[Ray]:
        for index in range(self.nr_of_rays):
            yield self[index]

    def select(self, mask: ArrayLike) -> "RayBundle":
        """按布尔掩码或索引选取子光线束（辅助光线一并选取）"""
        mask = np.asarray(mask)
        if mask.dtype != bool:
            mask = mask.astype(int)
        idx = np.arange(self.nr_of_rays)[mask]
        helpers = None
        if self._helpers is not None:
            helper_idx = (idx[:, None] * HELPERS_PER_RAY + np.arange(HELPERS_PER_RAY)).ravel()
            helpers = self._helpers.select(helper_idx)
        new = object.__new__(RayBundle)
        for name in _ARRAY_FIELDS:
            setattr(new, name, _frozen(getattr(self, name)[idx]))
        new._histories = tuple(self._histories[i] for i in idx)
        new._helpers = helpers
        return new

    # ------------------------------------------------------------------
    # 传播与变换
    # ------------------------------------------------------------------

    def propagate(self, distance: float) -> "RayBundle":
        """所有有效光线沿各自方向传播指定几何距离 (mm)"""
        if not np.isfinite(distance):
            raise ValueError(f"传播距离必须为有限值，实际为 {distance}")
        t = np.full(self.nr_of_rays, float(distance))
        return self._evolve(**self._move(self._valid, t), helpers=self._helper_map("propagate", distance))

    def transformed(self, iso: Isometry) -> "RayBundle":
        """将光线束（含历史位置）从局部坐标变换到 iso 描述的坐标系"""
        histories = tuple(
            iso.transform_point(h) if len(h) else h for h in self._histories
        )
        return self._evolve(
            positions=iso.transform_point(self._positions),
            directions=iso.transform_vector(self._directions),
            histories=histories,
            helpers=self._helper_map("transformed", iso),
        )

    def propagate_to_surface(
        self,
        surface: OpticSurface,
        t_min: float = SEQUENTIAL_T_MIN,
    ) -> "RayBundle":
        """将有效光线传播到表面交点；未相交的光线标记为无效"""
        t, _, _ = surface.intersect(self._positions, self._directions, t_min)
        hit = self._valid & ~np.isnan(t)
        changes = self._move(hit, np.nan_to_num(t))
        changes["valid"] = hit
        return self._evolve(**changes, helpers=self._helper_map("propagate_to_surface", surface, t_min))

    def refract_paraxial(
        self,
        focal_length: float,
        iso: Optional[Isometry] = None,
        t_min: float = SEQUENTIAL_T_MIN,
    ) -> "RayBundle":
        """理想薄透镜折射

        先将光线传播到 iso 的局部 XY 平面，再按理想透镜改变方向：
        局部斜率 (u, v) -> (u - x/f, v - y/f)。

        参数:
            focal_length: 焦距 (mm)，非零有限值
            iso: 透镜平面位姿，None 表示全局原点
        """
        if not np.isfinite(focal_length) or focal_length == 0.0:
            raise ValueError(f"焦距必须为非零有限值，实际为 {focal_length} mm")
        plane = OpticSurface("paraxial", Plane(), iso or Isometry.identity())
        moved = self.propagate_to_surface(plane, t_min)
        hit = moved._valid
        directions = moved._directions.copy()
        path_lengths = moved._path_lengths.copy()
        if np.any(hit):
            local_p = plane.isometry.inverse_transform_point(moved._positions[hit])
            local_d = plane.isometry.inverse_transform_vector(moved._directions[hit])
            dz = local_d[:, 2]
            ok = np.abs(dz) > 1e-15
            scaled = local_d / np.where(ok, np.abs(dz), 1.0)[:, None]
            scaled[:, 0] -= local_p[:, 0] / focal_length
            scaled[:, 1] -= local_p[:, 1] / focal_length
            new_local = scaled / np.linalg.norm(scaled, axis=1, keepdims=True)
            new_local[~ok] = local_d[~ok]
            directions[hit] = plane.isometry.transform_vector(new_local)
            # 理想透镜的光程修正
            r2 = local_p[:, 0] ** 2 + local_p[:, 1] ** 2
            path_lengths[hit] -= r2 / (2.0 * focal_length)
        return moved._evolve(
            directions=directions,
            path_lengths=path_lengths,
            helpers=self._helper_map("refract_paraxial", focal_length, iso, t_min),
        )

    def refract_on_surface(
        self,
        surface: OpticSurface,
        refractive_index: Optional[RefractiveIndex] = None,
        t_min: float = SEQUENTIAL_T_MIN,
    ) -> Tuple["RayBundle", "RayBundle"]:
        """在表面上按 Snell 定律折射

        参数:
            surface: 折射表面
            refractive_index: 出射侧介质折射率；None 时根据光线相对表面法向的
                传播方向，从表面的 n_neg / n_pos 中选取

        返回:
            (折射光线束, 膜层反射光线束)。反射光线束与原光线束索引对应，
            只有反射率 > 0 的光线有效，反射次数 +1。
            发生全反射的光线在折射光线束中以全部能量反射。
        """
        t, points, normals = surface.intersect(self._positions, self._directions, t_min)
        hit = self._valid & ~np.isnan(t)
        n = self.nr_of_rays

        moved = self._move(hit, np.nan_to_num(t))
        positions = moved["positions"]

        refr_dirs = self._directions.copy()
        refl_dirs = self._directions.copy()
        refr_energies = self._energies.copy()
        refl_energies = np.zeros(n)
        new_indices = self._indices.copy()
        refractions = self._refractions.copy()
        refl_valid = np.zeros(n, dtype=bool)

        if np.any(hit):
            s1 = self._directions[hit]
            normal = normals[hit]
            cos_i = -np.einsum("ij,ij->i", normal, s1)
            forward = cos_i < 0.0
            normal[forward] *= -1.0
            cos_i = np.abs(cos_i)

            n1 = self._indices[hit]
            if refractive_index is not None:
                n2 = _evaluate_index(refractive_index, self._wavelengths[hit])
            else:
                n_pos = _evaluate_index(surface.n_pos, self._wavelengths[hit])
                n_neg = _evaluate_index(surface.n_neg, self._wavelengths[hit])
                n2 = np.where(forward, n_pos, n_neg)

            mu = n1 / n2
            k = 1.0 - mu * mu * (1.0 - cos_i * cos_i)
            tir = k < 0.0
            refracted = mu[:, None] * s1 + (mu * cos_i - np.sqrt(np.clip(k, 0.0, None)))[:, None] * normal
            reflected = s1 + 2.0 * cos_i[:, None] * normal
            refracted /= np.linalg.norm(refracted, axis=1, keepdims=True)
            reflected /= np.linalg.norm(reflected, axis=1, keepdims=True)

            refl = np.asarray(surface.coating.reflectivity(cos_i, n1, n2), dtype=float)
            refl = np.where(tir, 1.0, refl)
            energies = self._energies[hit]

            refr_dirs[hit] = np.where(tir[:, None], reflected, refracted)
            refl_dirs[hit] = reflected
            refr_energies[hit] = np.where(tir, energies, energies * (1.0 - refl))
            refl_energies[hit] = np.where(tir, 0.0, energies * refl)
            new_indices[hit] = np.where(tir, n1, n2)
            refractions[hit] += (~tir).astype(int)
            refl_valid[hit] = ~tir & (refl > 0.0)

        helpers = self._helper_map("refract_on_surface", surface, refractive_index, t_min)
        refracted_bundle = self._evolve(
            positions=positions,
            path_lengths=moved["path_lengths"],
            histories=moved["histories"],
            directions=refr_dirs,
            energies=refr_energies,
            indices=new_indices,
            refractions=refractions,
            valid=hit,
            helpers=helpers[0] if helpers is not None else None,
        )
        bounces = self._bounces.copy()
        bounces[hit] += 1
        reflected_bundle = self._evolve(
            positions=positions,
            path_lengths=moved["path_lengths"],
            histories=moved["histories"],
            directions=refl_dirs,
            energies=np.where(hit, refl_energies, self._energies),
            bounces=bounces,
            valid=refl_valid,
            helpers=helpers[1] if helpers is not None else None,
        )
        return refracted_bundle, reflected_bundle

    def reflect_on_surface(
        self,
        surface: OpticSurface,
        reflectivity: Optional[float] = None,
        t_min: float = SEQUENTIAL_T_MIN,
    ) -> "RayBundle":
        """在表面上按反射定律反射

        参数:
            surface: 反射表面
            reflectivity: 能量反射率，None 时使用表面的 reflectivity
        """
        r = surface.reflectivity if reflectivity is None else reflectivity
        if not (0.0 <= r <= 1.0):
            raise ValueError(f"反射率必须位于 [0, 1] 范围内，实际为 {r}")
        t, _, normals = surface.intersect(self._positions, self._directions, t_min)
        hit = self._valid & ~np.isnan(t)
        changes = self._move(hit, np.nan_to_num(t))
        directions = self._directions.copy()
        energies = self._energies.copy()
        if np.any(hit):
            s1 = self._directions[hit]
            normal = normals[hit]
            cos_i = -np.einsum("ij,ij->i", normal, s1)
            reflected = s1 + 2.0 * cos_i[:, None] * normal
            directions[hit] = reflected / np.linalg.norm(reflected, axis=1, keepdims=True)
            energies[hit] *= r
        return self._evolve(
            **changes,
            directions=directions,
            energies=energies,
            valid=hit,
            helpers=self._helper_map("reflect_on_surface", surface, reflectivity, t_min),
        )

    def diffract_on_grating(
        self,
        surface: OpticSurface,
        t_min: float = SEQUENTIAL_T_MIN,
    ) -> "RayBundle":
        """在反射式光栅表面上衍射

        光栅矢量沿表面局部 X 轴，大小为 2π·line_density。局部方向余弦的 X 分量
        增加 order·λ·line_density / n，Z 分量由归一化条件确定并反号（反射）。
        无法传播的衍射级（倏逝波）标记为无效。光程增加 order·line_density·x·λ。
        与反射镜相同，光栅反射不计入鬼像反射次数。

        参数:
            surface: GRATING 类型的表面（平面）
        """
        if surface.line_density is None:
            raise ValueError(f"表面 {surface.name} 没有光栅线密度")
        t, _, _ = surface.intersect(self._positions, self._directions, t_min)
        hit = self._valid & ~np.isnan(t)
        changes = self._move(hit, np.nan_to_num(t))
        directions = self._directions.copy()
        path_lengths = changes.pop("path_lengths")
        valid = hit.copy()
        if np.any(hit):
            order = surface.diffraction_order
            # 波长 μm -> mm
            wavelengths = self._wavelengths[hit] * 1e-3
            local_p = surface.isometry.inverse_transform_point(changes["positions"][hit])
            local_d = surface.isometry.inverse_transform_vector(self._directions[hit])
            kx = local_d[:, 0] + order * surface.line_density * wavelengths / self._indices[hit]
            ky = local_d[:, 1]
            kz2 = 1.0 - kx * kx - ky * ky
            propagating = kz2 >= 0.0
            kz = -np.sign(local_d[:, 2]) * np.sqrt(np.clip(kz2, 0.0, None))
            directions[hit] = surface.isometry.transform_vector(np.column_stack([kx, ky, kz]))
            path_lengths[hit] += order * surface.line_density * local_p[:, 0] * wavelengths
            valid[np.flatnonzero(hit)[~propagating]] = False
        return self._evolve(
            **changes,
            path_lengths=path_lengths,
            directions=directions,
            valid=valid,
            helpers=self._helper_map("diffract_on_grating", surface, t_min),
        )

    # ------------------------------------------------------------------
    # 能量操作
    # ------------------------------------------------------------------

    def split(self, config: SplittingConfig) -> Tuple["RayBundle", "RayBundle"]:
        """按分光配置分为透射和反射两个光线束（能量加权，几何不变）"""
        transmission = np.asarray(config.transmission(self._wavelengths), dtype=float)
        transmitted = self._evolve(energies=self._energies * transmission)
        reflected = self._evolve(energies=self._energies * (1.0 - transmission))
        return transmitted, reflected

    def filter_energy(self, transmission: Union[float, Spectrum]) -> "RayBundle":
        """按透过率（常数或透过率曲线）衰减有效光线的能量"""
        if isinstance(transmission, Spectrum):
            factor = transmission.resampled(self._wavelengths)
        else:
            if not (0.0 <= transmission <= 1.0):
                raise ValueError(f"透过率必须位于 [0, 1] 范围内，实际为 {transmission}")
            factor = np.full(self.nr_of_rays, float(transmission))
        energies = np.where(self._valid, self._energies * factor, self._energies)
        return self._evolve(energies=energies)

    def invalidate_below(self, threshold: float) -> "RayBundle":
        """将能量低于阈值的有效光线标记为无效（不删除）"""
        check_positive(threshold, "threshold", " J", allow_zero=True)
        return self._evolve(valid=self._valid & ~(self._energies < threshold))

    def invalidated(self, mask: ArrayLike) -> "RayBundle":
        """将掩码选中的光线标记为无效"""
        return self._evolve(valid=self._valid & ~np.asarray(mask, dtype=bool))

    def apodize(self, aperture: Aperture, iso: Optional[Isometry] = None) -> Tuple["RayBundle", bool]:
        """孔径截断

        光线位置变换到 iso 的局部坐标系后，在 XY 平面内判断是否通过孔径。

        返回:
            (新光线束, 是否有光线被截断)
        """
        if aperture.is_unrestricted or self.nr_of_valid_rays == 0:
            return self, False
        positions = self._positions if iso is None else iso.inverse_transform_point(self._positions)
        passes = aperture.transmits(positions[:, :2])
        clipped = self._valid & ~passes
        if not np.any(clipped):
            return self, False
        return self._evolve(valid=self._valid & passes), True

    def merge(self, other: "RayBundle") -> "RayBundle":
        """合并两个光线束（顺序拼接，保留各自波长）"""
        if other.is_empty():
            return self
        if self.is_empty():
            return other
        new = object.__new__(RayBundle)
        for name in _ARRAY_FIELDS:
            setattr(new, name, _frozen(np.concatenate([getattr(self, name), getattr(other, name)])))
        new._histories = self._histories + other._histories
        if self._helpers is not None and other._helpers is not None:
            new._helpers = self._helpers.merge(other._helpers)
        else:
            new._helpers = None
        return new

    def filter_by_bounces(self, bounces: int) -> "RayBundle":
        """选取反射次数等于给定值的光线"""
        return self.select(self._bounces == bounces)

    def filter_by_refractions(self, refractions: int) -> "RayBundle":
        """选取折射次数等于给定值的光线"""
        return self.select(self._refractions == refractions)

    # ------------------------------------------------------------------
    # 统计量（只统计有效光线）
    # ------------------------------------------------------------------

    def total_energy(self) -> float:
        """有效光线总能量（Kahan 补偿求和）"""
        return kahan_sum(self._energies[self._valid])

    def centroid(self) -> Optional[NDArray]:
        """几何中心，无有效光线时返回 None"""
        if self.nr_of_valid_rays == 0:
            return None
        return np.mean(self._positions[self._valid], axis=0)

    def energy_weighted_centroid(self) -> Optional[NDArray]:
        """能量加权中心，无有效光线或总能量为零时返回 None"""
        energies = self._energies[self._valid]
        total = kahan_sum(energies)
        if total <= 0.0:
            return None
        return np.array([
            kahan_sum(energies * self._positions[self._valid, axis]) / total for axis in range(3)
        ])

    def beam_radius_geo(self) -> Optional[float]:
        """几何光束半径：有效光线到几何中心的最大距离"""
        center = self.centroid()
        if center is None:
            return None
        return float(np.max(np.linalg.norm(self._positions[self._valid] - center, axis=1)))

    def beam_radius_rms(self) -> Optional[float]:
        """均方根光束半径"""
        center = self.centroid()
        if center is None:
            return None
        d2 = np.sum((self._positions[self._valid] - center) ** 2, axis=1)
        return float(np.sqrt(np.mean(d2)))

    def energy_weighted_beam_radius_rms(self) -> Optional[float]:
        """能量加权均方根光束半径"""
        center = self.energy_weighted_centroid()
        if center is None:
            return None
        energies = self._energies[self._valid]
        d2 = np.sum((self._positions[self._valid] - center) ** 2, axis=1)
        return float(np.sqrt(kahan_sum(energies * d2) / kahan_sum(energies)))

    def chief_ray(self) -> Optional[Tuple[NDArray, NDArray]]:
        """有效光线的平均位置与平均方向，用于沿光束轴放置节点"""
        if self.nr_of_valid_rays == 0:
            return None
        direction = np.mean(self._directions[self._valid], axis=0)
        norm = np.linalg.norm(direction)
        if norm < 1e-12:
            return None
        return self.centroid(), direction / norm

    def wavelength_range(self) -> Optional[Tuple[float, float]]:
        if self.nr_of_valid_rays == 0:
            return None
        wvl = self._wavelengths[self._valid]
        return float(np.min(wvl)), float(np.max(wvl))

    def unique_wavelengths(self) -> NDArray:
        return np.unique(self._wavelengths[self._valid])

    def central_wavelength(self) -> Optional[float]:
        """能量加权中心波长"""
        energies = self._energies[self._valid]
        total = kahan_sum(energies)
        if total <= 0.0:
            return None
        return kahan_sum(energies * self._wavelengths[self._valid]) / total

    def to_spectrum(self, resolution: float = 0.001) -> Optional[Spectrum]:
        """将有效光线按波长累加为光谱，无有效光线时返回 None"""
        wavelengths = self.unique_wavelengths()
        if wavelengths.size == 0:
            return None
        energies = self._energies[self._valid]
        lines = [
            (float(w), kahan_sum(energies[self._wavelengths[self._valid] == w]))
            for w in wavelengths
        ]
        return Spectrum.from_laser_lines(lines, resolution=resolution)

    def position_histories(self) -> List[NDArray]:
        """每条光线的完整路径（历史位置 + 当前位置），形状 (k+1, 3)"""
        return [np.vstack([h, p]) for h, p in zip(self._histories, self._positions)]

    def to_dict(self) -> dict:
        """报告用的摘要信息"""
        centroid = self.energy_weighted_centroid()
        return {
            "nr_of_rays": self.nr_of_rays,
            "nr_of_valid_rays": self.nr_of_valid_rays,
            "total_energy_J": self.total_energy(),
            "energy_weighted_centroid_mm": None if centroid is None else [float(v) for v in centroid],
            "beam_radius_geo_mm": self.beam_radius_geo(),
            "beam_radius_rms_mm": self.beam_radius_rms(),
            "energy_weighted_beam_radius_rms_mm": self.energy_weighted_beam_radius_rms(),
            "wavelength_range_um": self.wavelength_range(),
            "central_wavelength_um": self.central_wavelength(),
        }

    def __repr__(self) -> str:
        return (
            f"RayBundle({self.nr_of_valid_rays}/{self.nr_of_rays} 条有效光线, "
            f"E={self.total_energy():.4g} J)"
        )
