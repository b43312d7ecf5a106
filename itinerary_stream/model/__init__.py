# Copyright (c) 2023-2025 Datalayer, Inc.
# Distributed under the terms of the MIT License.

from .document import Document
from .lexical_converter import document_from_lexical, document_to_lexical
from .markup import blocks_to_markup, node_size, to_markup
from .nodes import (
    PENDING,
    UNRESOLVED,
    Coordinate,
    GeoStatus,
    HeadingNode,
    ListItemNode,
    ListNode,
    NodeType,
    ParagraphNode,
    PlaceMark,
    TextNode,
)
from .parser import DocumentDelta, StreamingParser, parse_fragment, parse_markup

__all__ = [
    'Document', 'DocumentDelta', 'StreamingParser', 'parse_markup', 'parse_fragment',
    'to_markup', 'blocks_to_markup', 'node_size', 'document_to_lexical', 'document_from_lexical',
    'NodeType', 'GeoStatus', 'PENDING', 'UNRESOLVED', 'Coordinate',
    'HeadingNode', 'ParagraphNode', 'ListNode', 'ListItemNode', 'PlaceMark', 'TextNode',
]
