"""
光数据（LightData）

沿图中边传递的数据，为带标签的变体：
- GEOMETRIC: 几何光线束（RayBundle），用于光线追迹与鬼像分析
- SPECTRAL: 光谱（Spectrum），用于能量 / 光谱分析

“无数据”用端口不在结果字典中（或值为 None）表示。
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional

from .rays import RayBundle
from .spectrum import Spectrum


class LightDataKind(Enum):
    GEOMETRIC = "geometric"
    SPECTRAL = "spectral"


@dataclass(frozen=True)
class LightData:
    """光数据

    示例:
        >>> data = LightData.spectral(Spectrum.from_laser_lines([(1.053, 2.0)]))
        >>> data.is_spectral, round(data.total_energy(), 9)
        (True, 2.0)
    """

    kind: LightDataKind
    bundle: Optional[RayBundle] = None
    spectrum: Optional[Spectrum] = None

    def __post_init__(self) -> None:
        if self.kind is LightDataKind.GEOMETRIC and not isinstance(self.bundle, RayBundle):
            raise TypeError("几何光数据必须包含 RayBundle")
        if self.kind is LightDataKind.SPECTRAL and not isinstance(self.spectrum, Spectrum):
            raise TypeError("光谱光数据必须包含 Spectrum")

    @classmethod
    def geometric(cls, bundle: RayBundle) -> "LightData":
        return cls(LightDataKind.GEOMETRIC, bundle=bundle)

    @classmethod
    def spectral(cls, spectrum: Spectrum) -> "LightData":
        return cls(LightDataKind.SPECTRAL, spectrum=spectrum)

    @property
    def is_geometric(self) -> bool:
        return self.kind is LightDataKind.GEOMETRIC

    @property
    def is_spectral(self) -> bool:
        return self.kind is LightDataKind.SPECTRAL

    def total_energy(self) -> float:
        if self.is_geometric:
            return self.bundle.total_energy()
        return self.spectrum.total_energy()

    def to_spectral(self, resolution: float = 0.001) -> Optional["LightData"]:
        """转换为光谱光数据；几何光数据中没有有效光线时返回 None"""
        if self.is_spectral:
            return self
        spectrum = self.bundle.to_spectrum(resolution)
        return None if spectrum is None else LightData.spectral(spectrum)

    def to_dict(self) -> dict:
        payload = self.bundle.to_dict() if self.is_geometric else self.spectrum.to_dict()
        return {"kind": self.kind.value, **payload}

    def __repr__(self) -> str:
        inner = self.bundle if self.is_geometric else self.spectrum
        return f"LightData.{self.kind.value}({inner!r})"


# 端口名 -> 光数据
LightResult = Dict[str, LightData]
