"""Gradient-graph inspection and export as an interactive HTML page."""

from __future__ import annotations

import json
import os
from typing import Any, Iterator, Sequence, Union

import numpy as np

from mtensor.tensor import Tensor

__all__ = ["GradGraph", "shape_to_str", "mem_to_human", "render_html"]

_SUFFIXES = ("B", "KB", "MB", "GB", "TB")
_END = object()

# The page loads these scripts from paths relative to the exported file.
_SCRIPT_SOURCES = ("cytoscape.min.js", "dagre.min.js", "cytoscape-dagre.min.js")


def shape_to_str(shape: Sequence[int]) -> str:
    """Format a shape or stride as ``(d0, d1 )``."""
    last = len(shape) - 1
    return "(" + "".join(
        f"{int(dim)}" + (", " if i < last else " )") for i, dim in enumerate(shape)
    )


def mem_to_human(size_in_bytes: int) -> str:
    """Format a byte count with two decimals and a binary unit suffix."""
    if size_in_bytes == 0:
        return "0 B"
    size = float(size_in_bytes)
    index = 0
    while size >= 1024 and index < len(_SUFFIXES) - 1:
        size /= 1024
        index += 1
    return f"{size:.2f} {_SUFFIXES[index]}"


def _storage_root(storage: np.ndarray) -> np.ndarray:
    """Return the array that owns the memory behind ``storage``."""
    root = storage
    while isinstance(root.base, np.ndarray):
        root = root.base
    return root


def _allocated_bytes(tensor: Tensor) -> int:
    return int(_storage_root(tensor.storage).nbytes)


def _memory_pointer(tensor: Tensor) -> int:
    return int(_storage_root(tensor.storage).__array_interface__["data"][0])


class GradGraph:
    """The graph of tensors and operations reachable from a root tensor."""

    def __init__(self, root: Tensor) -> None:
        self.root = root

    def to_json(self) -> dict[str, Any]:
        """Collect nodes, edges and summary figures of the graph."""
        nodes: list[dict[str, Any]] = []
        edges: list[dict[str, Any]] = []
        visited: set[int] = set()
        counted_storage: set[int] = set()
        total_memory = 0
        total_memory_all_nodes = 0
        number_of_tensors = 0
        number_of_ops = 0
        number_require_grad = 0
        stack: list[tuple[str, Iterator[Tensor]]] = []

        def enter(node: Tensor) -> None:
            nonlocal total_memory, total_memory_all_nodes
            nonlocal number_of_tensors, number_of_ops, number_require_grad
            if id(node) in visited:
                return
            visited.add(id(node))
            number_of_tensors += 1
            if node.requires_grad:
                number_require_grad += 1

            allocated = _allocated_bytes(node)
            total_memory_all_nodes += allocated
            storage_id = id(_storage_root(node.storage))
            if storage_id not in counted_storage:
                counted_storage.add(storage_id)
                total_memory += allocated

            tensor_id = str(id(node))
            shape = shape_to_str(node.shape)
            nodes.append(
                {
                    "data": {
                        "id": tensor_id,
                        "label": f"{node.name}\n{shape}",
                        "details": {
                            "shape": shape,
                            "stride": shape_to_str(node.stride),
                            "number of elements": node.numel(),
                            "is contiguous": node.is_contiguous,
                            "requires grad": node.requires_grad,
                            "grad function": node.grad_fn.name
                            if node.grad_fn is not None
                            else "Init",
                            "allocated memory": mem_to_human(allocated),
                            "memory pointer": _memory_pointer(node),
                        },
                    },
                    "classes": "tensor",
                }
            )

            op = node.grad_fn
            if op is None:
                return
            number_of_ops += 1
            op_id = str(id(op))
            nodes.append({"data": {"id": op_id, "label": op.name}, "classes": "op"})
            edges.append(
                {"data": {"source": tensor_id, "target": op_id}, "classes": "edge"}
            )
            stack.append((op_id, iter(list(op.operands))))

        enter(self.root)
        while stack:
            op_id, operands = stack[-1]
            operand = next(operands, _END)
            if operand is _END:
                stack.pop()
                continue
            edges.append({"data": {"source": op_id, "target": str(id(operand))}})
            enter(operand)

        return {
            "graph_data": {"nodes": nodes, "edges": edges},
            "general": {
                "total allocated memory": mem_to_human(total_memory),
                "total memory saved by tensor view": mem_to_human(
                    total_memory_all_nodes - total_memory
                ),
                "number of tensors": number_of_tensors,
                "number of tensors require grad": number_require_grad,
                "number of ops": number_of_ops,
            },
        }

    def export_to(self, file: Union[str, "os.PathLike[str]"]) -> None:
        """Write the graph as a standalone HTML page to ``file``."""
        with open(file, "w", encoding="utf-8") as out:
            out.write(render_html(self.to_json()))


def _script_json(value: Any) -> str:
    return json.dumps(value, indent=2).replace("</", "<\\/")


_PANEL_BASE = {
    "font-family": "system-ui, sans-serif",
    "background-color": "#fff",
    "box-shadow": "0 8px 30px rgba(0, 0, 0, 0.12)",
    "border-radius": "12px",
    "border": "1px solid #e6e6e6",
    "color": "#333",
    "padding": "20px 25px",
    "position": "absolute",
    "top": "20px",
    "width": "320px",
    "z-index": "10",
}

_CSS_RULES: dict[str, dict[str, str]] = {
    "html, body": {"width": "100%", "height": "100%", "margin": "0", "padding": "0"},
    "#cy": {"width": "95%", "height": "95vh", "margin": "auto"},
    "#info-panel *": {"box-sizing": "border-box"},
    "#info-panel": {**_PANEL_BASE, "right": "20px", "display": "none"},
    "#general-info-panel": {**_PANEL_BASE, "left": "20px", "display": "block"},
    ".panel h3": {
        "margin": "0 0 20px",
        "font-size": "18px",
        "color": "#000",
        "text-align": "center",
    },
    ".panel p": {"margin": "0 0 10px", "line-height": "1.6", "font-size": "14px"},
    ".panel strong": {"color": "#555", "font-weight": "600"},
    "#close-button": {
        "position": "absolute",
        "top": "15px",
        "right": "15px",
        "width": "28px",
        "height": "28px",
        "border": "none",
        "border-radius": "50%",
        "background": "#f1f1f1",
        "color": "#555",
        "cursor": "pointer",
    },
    "#close-button:hover": {"background-color": "#e6e6e6", "color": "#000"},
}

_NODE_TEXT = {
    "label": "data(label)",
    "text-valign": "center",
    "text-halign": "center",
    "shape": "roundrectangle",
}

_GRAPH_STYLE = [
    {
        "selector": "node.op",
        "style": {
            **_NODE_TEXT,
            "background-color": "red",
            "width": "120px",
            "height": "40px",
            "color": "#fff",
            "font-size": "12px",
        },
    },
    {
        "selector": "node.tensor",
        "style": {
            **_NODE_TEXT,
            "background-color": "#3498db",
            "width": "200px",
            "height": "auto",
            "color": "white",
            "font-size": "13px",
            "text-wrap": "wrap",
            "text-max-width": "180px",
            "padding": "10px",
        },
    },
    {
        "selector": "edge",
        "style": {
            "width": 2,
            "line-color": "#ccc",
            "target-arrow-color": "#ccc",
            "target-arrow-shape": "triangle",
        },
    },
]

_GRAPH_LAYOUT = {
    "name": "dagre",
    "rankDir": "TB",
    "nodeSep": 40,
    "edgeSep": 10,
    "rankSep": 50,
}

_BEHAVIOUR = """
const graph = cytoscape({
  container: document.getElementById("cy"),
  elements: data,
  style: graphStyle,
  layout: graphLayout
});
const panel = document.getElementById("info-panel");
const panelBody = document.getElementById("info-content");
const summary = document.getElementById("general-info-content");

function row(key, value) {
  return "<p><strong>" + key + " : </strong> " + value + "</p>";
}
function rows(entries) {
  return Object.entries(entries).map(([k, v]) => row(k, v)).join("");
}

graph.on("tap", "node.tensor", (evt) => {
  const info = evt.target.data();
  const details = info.details ? rows(info.details) : "No additional details available.";
  panelBody.innerHTML = row("ID", info.id) + row("Label", info.label) + row("Details", details);
  panel.style.display = "block";
});
graph.on("tap", (evt) => {
  if (evt.target === graph) {
    panel.style.display = "none";
  }
});
document.getElementById("close-button").addEventListener("click", () => {
  panel.style.display = "none";
});
summary.innerHTML = rows(general_info);
"""


def _css(rules: dict[str, dict[str, str]]) -> str:
    blocks = []
    for selector, properties in rules.items():
        body = "".join(f"  {key}: {value};\n" for key, value in properties.items())
        blocks.append(f"{selector} {{\n{body}}}")
    return "\n".join(blocks)


def render_html(data: dict[str, Any]) -> str:
    """Render graph data from :meth:`GradGraph.to_json` as an HTML page."""
    scripts = "\n".join(
        f'<script src="{source}"></script>' for source in _SCRIPT_SOURCES
    )
    variables = "\n".join(
        [
            f"const general_info = {_script_json(data['general'])};",
            f"const data = {_script_json(data['graph_data'])};",
            f"const graphStyle = {_script_json(_GRAPH_STYLE)};",
            f"const graphLayout = {_script_json(_GRAPH_LAYOUT)};",
        ]
    )
    parts = [
        "<!DOCTYPE html>",
        "<html>",
        "<head>",
        '<meta charset="utf-8" />',
        "<title>Gradient Graph</title>",
        scripts,
        "<style>",
        _css(_CSS_RULES),
        "</style>",
        "</head>",
        "<body>",
        '<div id="cy"></div>',
        '<div id="info-panel" class="panel">',
        '<button id="close-button">X</button>',
        '<div id="info-content"></div>',
        "</div>",
        '<div id="general-info-panel" class="panel">',
        "<h3>general information</h3>",
        '<div id="general-info-content"></div>',
        "</div>",
        "<script>",
        variables,
        _BEHAVIOUR,
        "</script>",
        "</body>",
        "</html>",
    ]
    return "\n".join(parts)