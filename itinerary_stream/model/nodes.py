# Copyright (c) 2023-2025 Datalayer, Inc.
# Distributed under the terms of the MIT License.

"""
Node vocabulary for itinerary documents.

The vocabulary is closed: a document holds headings, paragraphs and lists at
the top level, lists hold list items, and inline content is a sequence of
text runs and place marks. Every node class carries a ``node_type`` so that
dispatch over nodes is an explicit match on ``NodeType`` rather than a chain
of hasattr checks.

ARCHITECTURE OVERVIEW:
=====================

Document
├── HeadingNode(level)      ── inline: TextNode | PlaceMark
├── ParagraphNode           ── inline: TextNode | PlaceMark
└── ListNode(ordered)
    └── ListItemNode        ── inline: TextNode | PlaceMark

Block nodes (heading, paragraph, list, list item) carry an optional StableId.
Ids are the only way to address nodes from outside the tree.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator, List, NamedTuple, Optional, Union


class NodeType(Enum):
    """Kinds of nodes in an itinerary document"""
    DOCUMENT = "document"
    HEADING = "heading"
    PARAGRAPH = "paragraph"
    LIST = "list"
    LIST_ITEM = "listitem"
    PLACE_MARK = "place-mark"
    TEXT = "text"


class GeoStatus(Enum):
    """Coordinate sentinels for place marks without a resolved value"""
    PENDING = "pending"
    UNRESOLVED = "unresolved"


PENDING = GeoStatus.PENDING
UNRESOLVED = GeoStatus.UNRESOLVED


class Coordinate(NamedTuple):
    latitude: float
    longitude: float


CoordinateValue = Union[float, GeoStatus]


@dataclass
class TextNode:
    text: str

    @property
    def node_type(self) -> NodeType:
        return NodeType.TEXT


@dataclass
class PlaceMark:
    """An inline reference to a real-world place.

    ``latitude``/``longitude`` hold floats once resolved, otherwise the
    PENDING or UNRESOLVED sentinel. ``color_index`` is None until the
    place registry assigns one.
    """
    display_name: str
    latitude: CoordinateValue = PENDING
    longitude: CoordinateValue = PENDING
    color_index: Optional[int] = None

    @property
    def node_type(self) -> NodeType:
        return NodeType.PLACE_MARK

    @property
    def status(self) -> Optional[GeoStatus]:
        """PENDING/UNRESOLVED, or None when the mark holds real coordinates"""
        if isinstance(self.latitude, GeoStatus):
            return self.latitude
        if isinstance(self.longitude, GeoStatus):
            return self.longitude
        return None

    @property
    def coordinate(self) -> Optional[Coordinate]:
        if self.status is not None:
            return None
        return Coordinate(self.latitude, self.longitude)

    def set_coordinate(self, coordinate: Coordinate) -> None:
        self.latitude = coordinate.latitude
        self.longitude = coordinate.longitude

    def set_status(self, status: GeoStatus) -> None:
        self.latitude = status
        self.longitude = status


InlineNode = Union[TextNode, PlaceMark]


@dataclass
class HeadingNode:
    level: int = 1
    children: List[InlineNode] = field(default_factory=list)
    id: Optional[str] = None

    @property
    def node_type(self) -> NodeType:
        return NodeType.HEADING


@dataclass
class ParagraphNode:
    children: List[InlineNode] = field(default_factory=list)
    id: Optional[str] = None

    @property
    def node_type(self) -> NodeType:
        return NodeType.PARAGRAPH


@dataclass
class ListItemNode:
    children: List[InlineNode] = field(default_factory=list)
    id: Optional[str] = None

    @property
    def node_type(self) -> NodeType:
        return NodeType.LIST_ITEM


@dataclass
class ListNode:
    items: List[ListItemNode] = field(default_factory=list)
    ordered: bool = False
    id: Optional[str] = None

    @property
    def node_type(self) -> NodeType:
        return NodeType.LIST


BlockNode = Union[HeadingNode, ParagraphNode, ListNode]

BLOCK_TYPES = (NodeType.HEADING, NodeType.PARAGRAPH, NodeType.LIST)


def is_block(node) -> bool:
    """True for nodes allowed directly under the document root"""
    return getattr(node, "node_type", None) in BLOCK_TYPES


def inline_children(node) -> List[InlineNode]:
    """Inline content of a heading, paragraph or list item"""
    node_type = node.node_type
    if node_type in (NodeType.HEADING, NodeType.PARAGRAPH, NodeType.LIST_ITEM):
        return node.children
    raise TypeError(f"{node_type} has no inline content")


def iter_place_marks(blocks) -> Iterator[PlaceMark]:
    """Yield every place mark in document order"""
    for block in blocks:
        node_type = block.node_type
        if node_type in (NodeType.HEADING, NodeType.PARAGRAPH):
            containers = [block]
        elif node_type == NodeType.LIST:
            containers = block.items
        else:
            raise TypeError(f"Unexpected top-level node: {node_type}")
        for container in containers:
            for child in container.children:
                if child.node_type == NodeType.PLACE_MARK:
                    yield child


def iter_ids(blocks) -> Iterator[str]:
    """Yield the StableIds of blocks and their list items"""
    for block in blocks:
        if block.id is not None:
            yield block.id
        if block.node_type == NodeType.LIST:
            for item in block.items:
                if item.id is not None:
                    yield item.id


def normalize_place_name(name: str) -> str:
    """Key used for place identity, color assignment and geocode caching"""
    return name.strip().casefold()
