# Copyright (c) 2023-2025 Datalayer, Inc.
# Distributed under the terms of the MIT License.

"""
Canonical markup serialization.

The canonical form is what the parser reads back without loss, so
``parse_markup(document_to_markup(doc)) == doc`` for every document. Text
offsets used by positional previews are measured over this form: the size
of a node is the length of its canonical markup.
"""

import html
from typing import Iterable, List, Optional

from .nodes import GeoStatus, NodeType


def _attr(name: str, value) -> str:
    return f' {name}="{html.escape(str(value), quote=True)}"'


def _id_attr(node_id: Optional[str]) -> str:
    return _attr("id", node_id) if node_id is not None else ""


def _format_coordinate(value: float) -> str:
    # repr() of a float is the shortest string that reads back to the same value
    return repr(float(value))


def _inline_markup(children: Iterable) -> str:
    return "".join(to_markup(child) for child in children)


def to_markup(node) -> str:
    """Serialize a single node (and its subtree) to canonical markup."""
    node_type = node.node_type
    if node_type == NodeType.TEXT:
        return html.escape(node.text, quote=False)
    if node_type == NodeType.PLACE_MARK:
        attrs = ""
        if node.color_index is not None:
            attrs += _attr("color", node.color_index)
        status = node.status
        if status is None:
            attrs += _attr("lat", _format_coordinate(node.latitude))
            attrs += _attr("lng", _format_coordinate(node.longitude))
        elif status == GeoStatus.UNRESOLVED:
            attrs += _attr("geo", GeoStatus.UNRESOLVED.value)
        return f"<mark{attrs}>{html.escape(node.display_name, quote=False)}</mark>"
    if node_type == NodeType.HEADING:
        tag = f"h{node.level}"
        return f"<{tag}{_id_attr(node.id)}>{_inline_markup(node.children)}</{tag}>"
    if node_type == NodeType.PARAGRAPH:
        return f"<p{_id_attr(node.id)}>{_inline_markup(node.children)}</p>"
    if node_type == NodeType.LIST_ITEM:
        return f"<li{_id_attr(node.id)}>{_inline_markup(node.children)}</li>"
    if node_type == NodeType.LIST:
        tag = "ol" if node.ordered else "ul"
        items = "".join(to_markup(item) for item in node.items)
        return f"<{tag}{_id_attr(node.id)}>{items}</{tag}>"
    if node_type == NodeType.DOCUMENT:
        return blocks_to_markup(node.children)
    raise TypeError(f"Cannot serialize node of type {node_type}")


def blocks_to_markup(blocks: Iterable) -> str:
    return "".join(to_markup(block) for block in blocks)


def node_size(node) -> int:
    """Length of the node's canonical markup"""
    return len(to_markup(node))


def blocks_size(blocks: Iterable) -> int:
    return sum(node_size(block) for block in blocks)


def plain_text(node) -> str:
    """Visible text of a node, without markup"""
    node_type = node.node_type
    if node_type == NodeType.TEXT:
        return node.text
    if node_type == NodeType.PLACE_MARK:
        return node.display_name
    if node_type in (NodeType.HEADING, NodeType.PARAGRAPH, NodeType.LIST_ITEM):
        return "".join(plain_text(child) for child in node.children)
    if node_type == NodeType.LIST:
        return "\n".join(plain_text(item) for item in node.items)
    if node_type == NodeType.DOCUMENT:
        parts: List[str] = [plain_text(block) for block in node.children]
        return "\n".join(parts)
    raise TypeError(f"Cannot extract text from node of type {node_type}")
