"""
Graphviz dot 导出

每个节点渲染为一个 plaintext 节点，标签为 HTML 表格：
    第一行：输入端口单元格（浅绿色）
    第二行：节点名称（浅灰色，反转节点带 " (inv)" 后缀）
    第三行：输出端口单元格（浅蓝色）
边从输出端口单元格指向输入端口单元格，并标注传播距离。
组节点渲染为 cluster 子图，连接组节点外部端口的边被解析到对应的内部端口。

输出文本是确定性的（节点按索引、端口按定义顺序），可以与固定的参考文件逐字比较。
"""

from __future__ import annotations

import html
import warnings
from typing import List, Optional, Tuple

from .exceptions import DanglingReferenceWarning
from .nodes.base import NodeType

_RANKDIRS = ("TB", "LR")
_FONT = "Helvetica,Arial,sans-serif"


def _port_cells(names: List[str], is_input: bool, indent: str) -> List[str]:
    color = "lightgreen" if is_input else "lightblue"
    kind = "Input" if is_input else "Output"
    lines = [f"{indent}<TR>"]
    for number, name in enumerate(names, start=1):
        port = html.escape(name)
        lines.append(
            f'{indent}\t<TD PORT="{port}" BORDER="1" BGCOLOR="{color}" HEIGHT="16" WIDTH="16" '
            f'TOOLTIP="{kind} port {number}: {port}">{number}</TD>'
        )
    lines.append(f"{indent}</TR>")
    return lines


def _node_lines(node, ident: str, indent: str, dangling: bool) -> List[str]:
    ports = node.ports()
    inputs = ports.input_names()
    outputs = ports.output_names()
    span = max(len(inputs), len(outputs), 1)
    title = html.escape(node.name) + (" (inv)" if node.inverted else "")
    style = "ROUNDED,DASHED" if dangling else "ROUNDED"
    inner = indent + "\t\t"
    lines = [
        f"{indent}{ident} [",
        f"{indent}\tshape=plaintext",
        f"{indent}\tlabel=<",
        f'{inner}<TABLE BORDER="0" CELLBORDER="0" CELLSPACING="0" CELLPADDING="0">',
    ]
    if inputs:
        lines.extend(_port_cells(inputs, True, inner + "\t"))
    lines.extend([
        f"{inner}\t<TR>",
        f'{inner}\t\t<TD COLSPAN="{span}" BORDER="1" BGCOLOR="lightgray" CELLPADDING="10" '
        f'STYLE="{style}">{title}</TD>',
        f"{inner}\t</TR>",
    ])
    if outputs:
        lines.extend(_port_cells(outputs, False, inner + "\t"))
    lines.append(f"{inner}</TABLE>>];")
    return lines


def _endpoint(graph, prefix: str, idx: int, port: str) -> Tuple[str, str]:
    """边端点的 dot 标识；组节点的外部端口解析到内部端口"""
    node = graph.node(idx)
    ident = f"{prefix}i{idx}"
    if node.node_type is NodeType.GROUP:
        target = node.graph.input_map.get(port) or node.graph.output_map.get(port)
        if target is not None:
            return _endpoint(node.graph, ident + "_", target[0], target[1])
    return ident, port


def _graph_lines(graph, root, prefix: str, indent: str, rankdir: str) -> List[str]:
    lines: List[str] = []
    for idx, node in enumerate(graph.nodes):
        ident = f"{prefix}i{idx}"
        if node.node_type is NodeType.GROUP:
            title = html.escape(node.name) + (" (inv)" if node.inverted else "")
            lines.append(f"{indent}subgraph cluster_{ident} {{")
            lines.append(f'{indent}\tlabel="{title}";')
            lines.append(f'{indent}\tstyle="rounded";')
            lines.extend(_graph_lines(node.graph, root, ident + "_", indent + "\t", rankdir))
            lines.append(f"{indent}}}")
            continue
        dangling = False
        if node.node_type is NodeType.REFERENCE:
            target_id = node.target_id
            if target_id is None or root.find_node_recursive(target_id) is None:
                dangling = True
                warnings.warn(
                    f"引用节点 {node.label} 的目标无法解析，图表中以虚线显示",
                    DanglingReferenceWarning,
                )
        lines.extend(_node_lines(node, ident, indent, dangling))

    out_side, in_side = ("e", "w") if rankdir == "LR" else ("s", "n")
    for edge in graph.edges:
        src, src_port = _endpoint(graph, prefix, edge.src, edge.src_port)
        dst, dst_port = _endpoint(graph, prefix, edge.dst, edge.dst_port)
        lines.append(
            f'{indent}{src}:"{src_port}":{out_side} -> {dst}:"{dst_port}":{in_side} '
            f'[label="{edge.distance:g} mm"]'
        )
    return lines


def graph_to_dot(graph, rankdir: str = "TB", label: Optional[str] = None) -> str:
    """把光学图导出为 Graphviz dot 文本

    参数:
        graph: OpticGraph
        rankdir: "TB"（自上而下）或 "LR"（自左向右）
        label: 图标题

    异常:
        ValueError: rankdir 无效
    """
    if rankdir not in _RANKDIRS:
        raise ValueError(f"rankdir 必须为 {_RANKDIRS} 之一，实际为 {rankdir!r}")
    lines = [
        "digraph {",
        "\tfontsize = 8;",
        "\tcompound = true;",
        f'\trankdir = "{rankdir}";',
        f'\tlabel = "{html.escape(label or "")}";',
        f'\tfontname = "{_FONT}";',
        f'\tnode [fontname = "{_FONT}" fontsize = 10];',
        f'\tedge [fontname = "{_FONT}"];',
        "",
    ]
    lines.extend(_graph_lines(graph, graph, "", "\t", rankdir))
    lines.append("}")
    return "\n".join(lines) + "\n"
