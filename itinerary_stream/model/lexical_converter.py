# Copyright (c) 2023-2025 Datalayer, Inc.
# Distributed under the terms of the MIT License.

"""
Bidirectional conversion between itinerary documents and Lexical JSON

Rich-text surfaces consume documents as Lexical editor state. Place marks
are exported as ``place-mark`` element nodes wrapping a single text node,
and StableIds travel in ``__key`` so that edit instructions issued against
the editor state address the same nodes as the markup.

CONVERSION ARCHITECTURE:
=======================

{
  "root": {
    "type": "root",
    "children": [
      {"type": "heading", "tag": "h1", "__key": "n1", "children": [...]},
      {"type": "paragraph", "__key": "n2", "children": [
        {"type": "text", "text": "Visit "},
        {"type": "place-mark", "placeName": "Eiffel Tower", "status": "resolved",
         "lat": 48.8584, "lng": 2.2945, "colorIndex": 0,
         "children": [{"type": "text", "text": "Eiffel Tower"}]}
      ]},
      {"type": "list", "listType": "bullet", "tag": "ul", "__key": "n3",
       "children": [{"type": "listitem", "value": 1, "children": [...]}]}
    ]
  }
}
"""

import json
import logging
from typing import Any, Dict, List, Optional, Union

from .document import Document
from .nodes import (
    PENDING,
    UNRESOLVED,
    HeadingNode,
    ListItemNode,
    ListNode,
    NodeType,
    ParagraphNode,
    PlaceMark,
    TextNode,
)

logger = logging.getLogger(__name__)

_STATUS_RESOLVED = "resolved"


def _element(node_type: str, children: List[Dict[str, Any]], key: Optional[str]) -> Dict[str, Any]:
    element = {
        "children": children,
        "direction": None,
        "format": "",
        "indent": 0,
        "type": node_type,
        "version": 1,
    }
    if key is not None:
        element["__key"] = key
    return element


def _text(text: str) -> Dict[str, Any]:
    return {
        "detail": 0,
        "format": 0,
        "mode": "normal",
        "style": "",
        "text": text,
        "type": "text",
        "version": 1,
    }


def node_to_lexical(node) -> Dict[str, Any]:
    """Convert one node to its Lexical JSON form"""
    node_type = node.node_type
    if node_type == NodeType.TEXT:
        return _text(node.text)
    if node_type == NodeType.PLACE_MARK:
        status = node.status
        return {
            "type": "place-mark",
            "version": 1,
            "placeName": node.display_name,
            "status": status.value if status else _STATUS_RESOLVED,
            "lat": None if status else node.latitude,
            "lng": None if status else node.longitude,
            "colorIndex": node.color_index,
            "children": [_text(node.display_name)],
        }
    if node_type == NodeType.HEADING:
        element = _element("heading", [node_to_lexical(c) for c in node.children], node.id)
        element["tag"] = f"h{node.level}"
        return element
    if node_type == NodeType.PARAGRAPH:
        element = _element("paragraph", [node_to_lexical(c) for c in node.children], node.id)
        element["textFormat"] = 0
        element["textStyle"] = ""
        return element
    if node_type == NodeType.LIST:
        children = []
        for position, item in enumerate(node.items, start=1):
            child = node_to_lexical(item)
            child["value"] = position
            children.append(child)
        element = _element("list", children, node.id)
        element["listType"] = "number" if node.ordered else "bullet"
        element["tag"] = "ol" if node.ordered else "ul"
        element["start"] = 1
        return element
    if node_type == NodeType.LIST_ITEM:
        return _element("listitem", [node_to_lexical(c) for c in node.children], node.id)
    raise TypeError(f"Cannot convert node of type {node_type} to Lexical JSON")


def document_to_lexical(document: Document) -> Dict[str, Any]:
    """Export a document as Lexical editor state"""
    root = _element("root", [node_to_lexical(block) for block in document.children], None)
    return {"root": root}


def _inline_from_lexical(children: List[Dict[str, Any]]) -> List:
    nodes: List = []
    for child in children:
        child_type = child.get("type")
        if child_type == "text":
            text = child.get("text", "")
            if nodes and isinstance(nodes[-1], TextNode):
                nodes[-1].text += text
            elif text:
                nodes.append(TextNode(text))
        elif child_type == "place-mark":
            mark = PlaceMark(display_name=child["placeName"], color_index=child.get("colorIndex"))
            status = child.get("status", PENDING.value)
            if status == _STATUS_RESOLVED:
                mark.latitude = float(child["lat"])
                mark.longitude = float(child["lng"])
            elif status == UNRESOLVED.value:
                mark.set_status(UNRESOLVED)
            nodes.append(mark)
        elif child_type == "linebreak":
            nodes.append(TextNode("\n"))
        else:
            raise ValueError(f"Unsupported inline node type: {child_type}")
    return nodes


def node_from_lexical(data: Dict[str, Any]):
    """Convert one top-level Lexical element back into a block node"""
    node_type = data.get("type")
    children = data.get("children", [])
    key = data.get("__key")
    if node_type == "heading":
        tag = data.get("tag", "h1")
        return HeadingNode(level=int(tag[1:]), children=_inline_from_lexical(children), id=key)
    if node_type == "paragraph":
        return ParagraphNode(children=_inline_from_lexical(children), id=key)
    if node_type == "list":
        items = []
        for child in children:
            if child.get("type") != "listitem":
                raise ValueError(f"Unsupported list child type: {child.get('type')}")
            items.append(ListItemNode(children=_inline_from_lexical(child.get("children", [])),
                                      id=child.get("__key")))
        ordered = data.get("listType") == "number" or data.get("tag") == "ol"
        return ListNode(items=items, ordered=ordered, id=key)
    raise ValueError(f"Unsupported block node type: {node_type}")


def document_from_lexical(lexical_json: Union[str, Dict[str, Any]]) -> Document:
    """Import Lexical editor state.

    Args:
        lexical_json: Lexical state as JSON string or dict

    Returns:
        Document whose blocks keep the ``__key`` values as ids; blocks
        without a key get freshly minted ids

    Raises:
        ValueError: If the state is invalid or holds unsupported node types
    """
    if isinstance(lexical_json, str):
        try:
            lexical_json = json.loads(lexical_json)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON format: {e}")

    if not isinstance(lexical_json, dict) or "root" not in lexical_json:
        raise ValueError("Lexical state must contain 'root' property")

    document = Document()
    live = set()
    for child in lexical_json["root"].get("children", []):
        block = node_from_lexical(child)
        document.assign_ids(block, live)
        document.children.append(block)
    logger.debug(f"[Converter] Imported {len(document.children)} blocks from Lexical state")
    return document
