"""
光学端口定义

端口是节点上具有名称和方向的连接点。每个端口可以带一个孔径，
在光线进入（输入端口）或离开（输出端口）节点时对光线进行截断。

- PortDirection: 端口方向（输入 / 输出）
- Port: 单个端口
- OpticPorts: 节点的端口集合，支持反转视图（输入输出互换）
- PortMap: 组节点的外部端口名到内部（节点索引, 端口名）的映射
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, Iterator, List, Optional, Tuple

from .aperture import Aperture, UnrestrictedAperture
from .exceptions import PortConnectionError


class PortDirection(Enum):
    """端口方向"""
    INPUT = "input"
    OUTPUT = "output"

    def swapped(self) -> "PortDirection":
        return PortDirection.OUTPUT if self is PortDirection.INPUT else PortDirection.INPUT


@dataclass(frozen=True)
class Port:
    """光学端口

    参数:
        name: 端口名称，如 "input_1"
        direction: 端口方向
        aperture: 端口孔径，默认不限制
    """

    name: str
    direction: PortDirection
    aperture: Aperture = field(default_factory=UnrestrictedAperture)

    @property
    def is_input(self) -> bool:
        return self.direction is PortDirection.INPUT


class OpticPorts:
    """节点的端口集合

    端口按添加顺序保存。反转视图中所有端口方向互换，端口名称和孔径不变。

    示例:
        >>> ports = OpticPorts()
        >>> ports.add("input_1", PortDirection.INPUT)
        >>> ports.add("output_1", PortDirection.OUTPUT)
        >>> ports.names(PortDirection.INPUT, inverted=True)
        ['output_1']
    """

    def __init__(self, ports: Optional[List[Port]] = None) -> None:
        self._ports: Dict[str, Port] = {}
        for port in ports or []:
            self._add_port(port)

    def _add_port(self, port: Port) -> None:
        if port.name in self._ports:
            raise PortConnectionError(f"端口 '{port.name}' 已存在")
        self._ports[port.name] = port

    def add(self, name: str, direction: PortDirection, aperture: Optional[Aperture] = None) -> None:
        """添加端口"""
        self._add_port(Port(name, direction, aperture or UnrestrictedAperture()))

    def copy(self) -> "OpticPorts":
        return OpticPorts(list(self._ports.values()))

    def view(self, inverted: bool = False) -> "OpticPorts":
        """给定朝向下的端口副本（反转时所有端口方向互换）"""
        if not inverted:
            return self.copy()
        return OpticPorts([replace(p, direction=p.direction.swapped()) for p in self._ports.values()])

    def __contains__(self, name: str) -> bool:
        return name in self._ports

    def __iter__(self) -> Iterator[Port]:
        return iter(self._ports.values())

    def __len__(self) -> int:
        return len(self._ports)

    def port(self, name: str) -> Port:
        try:
            return self._ports[name]
        except KeyError:
            raise PortConnectionError(
                f"端口 '{name}' 不存在，可用端口：{list(self._ports)}"
            ) from None

    def direction(self, name: str, inverted: bool = False) -> PortDirection:
        """端口在给定朝向下的方向"""
        direction = self.port(name).direction
        return direction.swapped() if inverted else direction

    def names(self, direction: PortDirection, inverted: bool = False) -> List[str]:
        """给定朝向下指定方向的端口名称列表"""
        return [p.name for p in self._ports.values() if self.direction(p.name, inverted) is direction]

    def input_names(self, inverted: bool = False) -> List[str]:
        return self.names(PortDirection.INPUT, inverted)

    def output_names(self, inverted: bool = False) -> List[str]:
        return self.names(PortDirection.OUTPUT, inverted)

    def aperture(self, name: str) -> Aperture:
        return self.port(name).aperture

    def set_aperture(self, name: str, aperture: Aperture) -> None:
        """设置端口孔径（构建阶段使用）"""
        self._ports[name] = replace(self.port(name), aperture=aperture)

    def to_dict(self) -> dict:
        return {
            "inputs": self.input_names(),
            "outputs": self.output_names(),
        }

    def __repr__(self) -> str:
        return f"OpticPorts(inputs={self.input_names()}, outputs={self.output_names()})"


class PortMap:
    """组节点的外部端口映射

    将外部端口名映射到内部节点索引与端口名。一个内部端口最多映射一次。
    """

    def __init__(self) -> None:
        self._map: Dict[str, Tuple[int, str]] = {}

    def add(self, external_name: str, node_idx: int, internal_port: str) -> None:
        if external_name in self._map:
            raise PortConnectionError(f"外部端口 '{external_name}' 已被映射")
        if self.external_name(node_idx, internal_port) is not None:
            raise PortConnectionError(
                f"内部端口 '{internal_port}'（节点索引 {node_idx}）已被映射"
            )
        self._map[external_name] = (node_idx, internal_port)

    def remove(self, external_name: str) -> None:
        if self._map.pop(external_name, None) is None:
            raise PortConnectionError(f"外部端口 '{external_name}' 未被映射")

    def get(self, external_name: str) -> Optional[Tuple[int, str]]:
        return self._map.get(external_name)

    def external_name(self, node_idx: int, internal_port: str) -> Optional[str]:
        for name, target in self._map.items():
            if target == (node_idx, internal_port):
                return name
        return None

    def names(self) -> List[str]:
        return list(self._map)

    def items(self) -> List[Tuple[str, Tuple[int, str]]]:
        return list(self._map.items())

    def __contains__(self, external_name: str) -> bool:
        return external_name in self._map

    def __len__(self) -> int:
        return len(self._map)
