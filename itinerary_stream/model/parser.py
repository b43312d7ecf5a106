# Copyright (c) 2023-2025 Datalayer, Inc.
# Distributed under the terms of the MIT License.

"""
StreamingParser: incremental tag buffer and structural parser

Turns a stream of arbitrarily split markup fragments into a document tree.
Fragments may cut through tag names, attribute values, closing tags or the
content of a block; the parser only ever turns *complete* top-level
constructs into nodes and keeps the unfinished tail buffered.

ARCHITECTURE OVERVIEW:
=====================

Buffer Handling:
- ``_tail`` holds raw text that does not yet form a complete construct
- each ``consume()`` appends to the tail and scans it for complete blocks
- completed blocks are converted to nodes once and appended to the document

Grammar:
- blocks: <h1>..<h6>, <heading level>, <p>, <paragraph>, <ul>, <ol>, <list>
- list items: <li> inside a list
- place marks: <mark ...> or <span class="geo-mark" ...> inside inline content
- <itinerary> wrapper tags are transparent
- anything else is literal text

KEY DESIGN PRINCIPLES:
=====================

1. **Split invariance**:
   - a construct is complete once its end marker has been seen, so feeding
     the same text in any split produces the same tree
   - ids of blocks without an explicit id are minted in document order

2. **Never fail**:
   - malformed input is recovered from and reported as ParseDegraded issues
   - flush() auto-closes whatever is still open

USAGE PATTERNS:
==============

parser = StreamingParser()
delta = parser.consume("<h1>Day 1</h1><p>Visit <mark>Eif")
delta = parser.consume("fel Tower</mark></p>")
document = parser.flush()
"""

import html
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, NamedTuple, Optional, Tuple, Union

from ..constants import COLOR_PALETTE_SIZE, WRAPPER_TAG
from ..errors import ParseDegraded
from .document import Document
from .nodes import (
    PENDING,
    UNRESOLVED,
    GeoStatus,
    HeadingNode,
    ListItemNode,
    ListNode,
    ParagraphNode,
    PlaceMark,
    TextNode,
)

logger = logging.getLogger(__name__)

HEADING_NAMES = {"h1", "h2", "h3", "h4", "h5", "h6", "heading"}
PARAGRAPH_NAMES = {"p", "paragraph"}
LIST_NAMES = {"ul", "ol", "list"}
BLOCK_NAMES = HEADING_NAMES | PARAGRAPH_NAMES | LIST_NAMES

_NAME_RE = re.compile(r"[A-Za-z][A-Za-z0-9-]*")
_ATTR_NAME_RE = re.compile(r"[A-Za-z_:][-A-Za-z0-9_:.]*")
_UNQUOTED_VALUE_RE = re.compile(r"[^\s\"'=<>`]+")


class TagScan(Enum):
    INCOMPLETE = "incomplete"
    NOT_A_TAG = "not-a-tag"


class Tag(NamedTuple):
    name: str
    attrs: Dict[str, str]
    closing: bool
    self_closing: bool
    start: int
    end: int


TagResult = Union[Tag, TagScan]


def _skip_whitespace(text: str, pos: int) -> int:
    while pos < len(text) and text[pos].isspace():
        pos += 1
    return pos


def read_tag(text: str, pos: int) -> TagResult:
    """Read the tag starting at ``text[pos] == '<'``.

    Returns:
        Tag when a well-formed tag is complete, TagScan.INCOMPLETE when the
        text ends before the tag does (a later fragment may complete it), or
        TagScan.NOT_A_TAG when the '<' cannot start a tag.
    """
    length = len(text)
    i = pos + 1
    if i >= length:
        return TagScan.INCOMPLETE
    closing = text[i] == "/"
    if closing:
        i += 1
        if i >= length:
            return TagScan.INCOMPLETE
    match = _NAME_RE.match(text, i)
    if not match:
        return TagScan.NOT_A_TAG
    if match.end() >= length:
        return TagScan.INCOMPLETE
    name = match.group(0).lower()
    i = match.end()

    if closing:
        i = _skip_whitespace(text, i)
        if i >= length:
            return TagScan.INCOMPLETE
        if text[i] == ">":
            return Tag(name, {}, True, False, pos, i + 1)
        return TagScan.NOT_A_TAG

    attrs: Dict[str, str] = {}
    while True:
        j = _skip_whitespace(text, i)
        if j >= length:
            return TagScan.INCOMPLETE
        char = text[j]
        if char == ">":
            return Tag(name, attrs, False, False, pos, j + 1)
        if char == "/":
            if j + 1 >= length:
                return TagScan.INCOMPLETE
            if text[j + 1] == ">":
                return Tag(name, attrs, False, True, pos, j + 2)
            return TagScan.NOT_A_TAG
        if j == i:
            # attributes must be separated from the name and from each other
            return TagScan.NOT_A_TAG
        attr_match = _ATTR_NAME_RE.match(text, j)
        if not attr_match:
            return TagScan.NOT_A_TAG
        if attr_match.end() >= length:
            return TagScan.INCOMPLETE
        attr_name = attr_match.group(0).lower()
        k = _skip_whitespace(text, attr_match.end())
        if k >= length:
            return TagScan.INCOMPLETE
        if text[k] != "=":
            attrs[attr_name] = ""
            i = attr_match.end()
            continue
        k = _skip_whitespace(text, k + 1)
        if k >= length:
            return TagScan.INCOMPLETE
        quote = text[k]
        if quote in ('"', "'"):
            close = text.find(quote, k + 1)
            if close == -1:
                return TagScan.INCOMPLETE
            value = text[k + 1:close]
            i = close + 1
        else:
            value_match = _UNQUOTED_VALUE_RE.match(text, k)
            if not value_match:
                return TagScan.NOT_A_TAG
            if value_match.end() >= length:
                return TagScan.INCOMPLETE
            value = value_match.group(0)
            i = value_match.end()
        attrs[attr_name] = html.unescape(value)


def _family(name: str) -> set:
    if name in HEADING_NAMES:
        return HEADING_NAMES
    if name in PARAGRAPH_NAMES:
        return PARAGRAPH_NAMES
    if name in LIST_NAMES:
        return LIST_NAMES
    return {name}


class _End(NamedTuple):
    content_end: int
    end: int
    implicit: bool


def _find_end(text: str, start: int, close_names: set, stop_names: set,
              final: bool) -> Optional[_End]:
    """Find where the construct whose content begins at ``start`` ends.

    The construct ends at a closing tag named in ``close_names``, or
    implicitly before an opening tag named in ``stop_names`` (or a closing
    wrapper tag). Returns None when the end has not arrived yet; with
    ``final`` the construct is closed at the end of the text instead.
    """
    pos = start
    while True:
        idx = text.find("<", pos)
        if idx == -1:
            break
        tag = read_tag(text, idx)
        if isinstance(tag, Tag):
            if tag.closing and tag.name in close_names:
                return _End(idx, tag.end, False)
            if (not tag.closing and tag.name in stop_names) or \
                    (tag.closing and tag.name == WRAPPER_TAG):
                return _End(idx, idx, True)
            pos = tag.end
        elif tag == TagScan.INCOMPLETE and not final:
            return None
        else:
            pos = idx + 1
    if final:
        return _End(len(text), len(text), True)
    return None


@dataclass
class _RawBlock:
    tag: Optional[Tag]
    content: str
    offset: int


@dataclass
class DocumentDelta:
    """Result of one consume() call"""
    document: Document
    added: List = field(default_factory=list)
    pending: int = 0
    issues: List[ParseDegraded] = field(default_factory=list)


class _Scanner:
    """Splits raw text into complete top-level constructs."""

    def __init__(self, base_offset: int = 0):
        self.base_offset = base_offset
        self.issues: List[ParseDegraded] = []

    def _issue(self, reason: str, offset: int, excerpt: str) -> None:
        issue = ParseDegraded(reason, self.base_offset + offset, excerpt)
        logger.warning(f"⚠️ [Parser] {issue}")
        self.issues.append(issue)

    def _stray(self, text: str, start: int, end: int, blocks: List[_RawBlock]) -> None:
        stray = text[start:end]
        if stray.strip():
            blocks.append(_RawBlock(None, stray.strip(), self.base_offset + start))

    def scan(self, text: str, final: bool) -> Tuple[List[_RawBlock], int]:
        """Return the complete constructs in ``text`` and how much of it they cover."""
        blocks: List[_RawBlock] = []
        consumed = 0
        pos = 0
        while True:
            idx = text.find("<", pos)
            if idx == -1:
                break
            tag = read_tag(text, idx)
            if tag == TagScan.INCOMPLETE:
                if not final:
                    return blocks, consumed
                pos = idx + 1
                continue
            if tag == TagScan.NOT_A_TAG:
                pos = idx + 1
                continue

            if tag.name in BLOCK_NAMES and not tag.closing:
                if tag.self_closing:
                    self._stray(text, consumed, idx, blocks)
                    blocks.append(_RawBlock(tag, "", self.base_offset + idx))
                    consumed = pos = tag.end
                    continue
                found = _find_end(text, tag.end, _family(tag.name),
                                  BLOCK_NAMES | {WRAPPER_TAG}, final)
                if found is None:
                    return blocks, consumed
                self._stray(text, consumed, idx, blocks)
                if found.implicit:
                    self._issue(f"unterminated <{tag.name}> closed implicitly",
                                idx, text[idx:found.end])
                blocks.append(_RawBlock(tag, text[tag.end:found.content_end],
                                        self.base_offset + idx))
                consumed = pos = found.end
                continue

            if tag.name == WRAPPER_TAG or (tag.closing and tag.name in BLOCK_NAMES):
                self._stray(text, consumed, idx, blocks)
                if tag.name != WRAPPER_TAG:
                    self._issue(f"stray </{tag.name}> dropped", idx, text[idx:tag.end])
                consumed = pos = tag.end
                continue

            # any other tag is literal text of an implicit paragraph
            pos = tag.end

        if final:
            self._stray(text, consumed, len(text), blocks)
            consumed = len(text)
        return blocks, consumed


class _Builder:
    """Converts raw constructs into nodes."""

    def __init__(self, issues: List[ParseDegraded]):
        self.issues = issues

    def _issue(self, reason: str, offset: int, excerpt: str) -> None:
        issue = ParseDegraded(reason, offset, excerpt)
        logger.warning(f"⚠️ [Parser] {issue}")
        self.issues.append(issue)

    def block(self, raw: _RawBlock):
        tag = raw.tag
        if tag is None:
            return ParagraphNode(children=self.inline(raw.content, raw.offset))
        node_id = tag.attrs.get("id") or None
        if tag.name in HEADING_NAMES:
            return HeadingNode(level=self._heading_level(tag, raw.offset),
                               children=self.inline(raw.content, raw.offset), id=node_id)
        if tag.name in PARAGRAPH_NAMES:
            return ParagraphNode(children=self.inline(raw.content, raw.offset), id=node_id)
        if tag.name in LIST_NAMES:
            ordered = tag.name == "ol" or \
                tag.attrs.get("ordered", "").lower() in ("true", "1", "ordered")
            return ListNode(items=self.list_items(raw.content, raw.offset),
                            ordered=ordered, id=node_id)
        raise TypeError(f"Unexpected block tag: {tag.name}")

    def _heading_level(self, tag: Tag, offset: int) -> int:
        if tag.name != "heading":
            return int(tag.name[1])
        raw_level = tag.attrs.get("level", "1")
        try:
            level = int(raw_level)
        except ValueError:
            self._issue(f"invalid heading level {raw_level!r}", offset, raw_level)
            return 1
        if not 1 <= level <= 6:
            self._issue(f"heading level {level} out of range", offset, raw_level)
            return min(max(level, 1), 6)
        return level

    def list_items(self, content: str, offset: int) -> List[ListItemNode]:
        items: List[ListItemNode] = []
        pos = 0
        segment_start = 0
        while True:
            idx = content.find("<", pos)
            if idx == -1:
                break
            tag = read_tag(content, idx)
            if not isinstance(tag, Tag):
                pos = idx + 1
                continue
            if tag.name == "li" and not tag.closing:
                self._stray_item(content[segment_start:idx], offset + segment_start, items)
                if tag.self_closing:
                    items.append(ListItemNode(id=tag.attrs.get("id") or None))
                    segment_start = pos = tag.end
                    continue
                found = _find_end(content, tag.end, {"li"}, {"li"}, final=True)
                if found.implicit:
                    self._issue("unterminated <li> closed implicitly", offset + idx,
                                content[idx:found.end])
                items.append(ListItemNode(
                    children=self.inline(content[tag.end:found.content_end], offset + tag.end),
                    id=tag.attrs.get("id") or None,
                ))
                segment_start = pos = found.end
                continue
            if tag.name == "li" and tag.closing:
                self._stray_item(content[segment_start:idx], offset + segment_start, items)
                self._issue("stray </li> dropped", offset + idx, content[idx:tag.end])
                segment_start = pos = tag.end
                continue
            pos = tag.end
        self._stray_item(content[segment_start:], offset + segment_start, items)
        return items

    def _stray_item(self, text: str, offset: int, items: List[ListItemNode]) -> None:
        if text.strip():
            self._issue("text outside <li> wrapped in a list item", offset, text)
            items.append(ListItemNode(children=self.inline(text.strip(), offset)))

    def inline(self, content: str, offset: int) -> List:
        nodes: List = []
        literal: List[str] = []

        def flush_text():
            text = html.unescape("".join(literal))
            literal.clear()
            if not text:
                return
            if nodes and isinstance(nodes[-1], TextNode):
                nodes[-1].text += text
            else:
                nodes.append(TextNode(text))

        pos = 0
        while True:
            idx = content.find("<", pos)
            if idx == -1:
                literal.append(content[pos:])
                break
            tag = read_tag(content, idx)
            if isinstance(tag, Tag) and not tag.closing and not tag.self_closing \
                    and _is_place_mark(tag):
                literal.append(content[pos:idx])
                found = _find_end(content, tag.end, {tag.name}, set(), final=True)
                if found.implicit:
                    self._issue(f"unterminated <{tag.name}> closed implicitly",
                                offset + idx, content[idx:found.end])
                mark = self.place_mark(tag, content[tag.end:found.content_end], offset + idx)
                if mark is None:
                    literal.append(content[tag.end:found.content_end])
                else:
                    flush_text()
                    nodes.append(mark)
                pos = found.end
                continue
            end = tag.end if isinstance(tag, Tag) else idx + 1
            literal.append(content[pos:end])
            pos = end
        flush_text()
        return nodes

    def place_mark(self, tag: Tag, inner: str, offset: int) -> Optional[PlaceMark]:
        attrs = tag.attrs
        name = html.unescape(inner).strip()
        if not name:
            name = (attrs.get("data-place-name") or attrs.get("name") or "").strip()
        if not name:
            self._issue("place mark without a name kept as text", offset, inner)
            return None
        mark = PlaceMark(display_name=name)

        status = attrs.get("geo", "").lower()
        lat_raw = attrs.get("lat", attrs.get("data-lat"))
        lng_raw = attrs.get("lng", attrs.get("data-lng", attrs.get("lon")))
        if status == GeoStatus.UNRESOLVED.value:
            mark.set_status(UNRESOLVED)
        elif lat_raw is not None and lng_raw is not None:
            try:
                latitude, longitude = float(lat_raw), float(lng_raw)
            except ValueError:
                self._issue("invalid place mark coordinates", offset, f"{lat_raw},{lng_raw}")
            else:
                if -90.0 <= latitude <= 90.0 and -180.0 <= longitude <= 180.0:
                    mark.latitude, mark.longitude = latitude, longitude
                else:
                    self._issue("place mark coordinates out of range", offset,
                                f"{lat_raw},{lng_raw}")
        else:
            mark.set_status(PENDING)

        color_raw = attrs.get("color", attrs.get("data-color-index"))
        if color_raw is not None:
            try:
                color = int(color_raw)
            except ValueError:
                color = -1
            if 0 <= color < COLOR_PALETTE_SIZE:
                mark.color_index = color
            else:
                self._issue(f"invalid color index {color_raw!r}", offset, color_raw)
        return mark


def _is_place_mark(tag: Tag) -> bool:
    if tag.name == "mark":
        return True
    return tag.name == "span" and "geo-mark" in tag.attrs.get("class", "").split()


class StreamingParser:
    """Incremental parser for one stream of itinerary markup.

    Each instance owns its buffer and document; nothing is shared between
    streams.
    """

    def __init__(self):
        self._document = Document()
        self._tail = ""
        self._offset = 0
        self._live_ids = set()

    @property
    def document(self) -> Document:
        return self._document

    @property
    def pending_text(self) -> str:
        """Buffered text that does not yet form a complete construct"""
        return self._tail

    def consume(self, fragment: str) -> DocumentDelta:
        """Append a fragment and parse every construct it completes.

        Args:
            fragment: next piece of the stream, split at any character

        Returns:
            DocumentDelta with the current document and the newly completed blocks
        """
        self._tail += fragment
        scanner = _Scanner(self._offset)
        raw_blocks, consumed = scanner.scan(self._tail, final=False)
        added = self._append(raw_blocks, scanner.issues)
        self._tail = self._tail[consumed:]
        self._offset += consumed
        if added:
            logger.debug(f"[Parser] Completed {len(added)} block(s), {len(self._tail)} chars pending")
        return DocumentDelta(self._document, added, len(self._tail), scanner.issues)

    def _append(self, raw_blocks: List[_RawBlock], issues: List[ParseDegraded]) -> List:
        builder = _Builder(issues)
        added = []
        for raw in raw_blocks:
            block = builder.block(raw)
            self._document.assign_ids(block, self._live_ids)
            self._document.children.append(block)
            added.append(block)
        return added

    def flush(self) -> Document:
        """Parse completed prefix and buffered tail as a finished document.

        Open constructs are closed at the end of the text. The buffer is left
        in place, so calling flush() again returns an equal document and
        streaming may continue afterwards.
        """
        scanner = _Scanner(self._offset)
        raw_blocks, _ = scanner.scan(self._tail, final=True)
        builder = _Builder(scanner.issues)
        document = self._document.copy()
        live = document.live_ids()
        for raw in raw_blocks:
            block = builder.block(raw)
            document.assign_ids(block, live)
            document.children.append(block)
        if raw_blocks:
            logger.info(f"[Parser] Flush closed {len(raw_blocks)} trailing block(s)")
        return document

    def reset(self) -> None:
        """Drop all buffered and parsed state"""
        self._document = Document()
        self._tail = ""
        self._offset = 0
        self._live_ids = set()


def parse_markup(text: str) -> Document:
    """Parse a complete markup string"""
    parser = StreamingParser()
    parser.consume(text)
    return parser.flush()


def parse_fragment(text: str) -> List:
    """Parse complete markup into top-level blocks without minting ids.

    Explicit ``id`` attributes are kept as they are; the receiving document
    decides whether they can be used.
    """
    scanner = _Scanner()
    raw_blocks, _ = scanner.scan(text, final=True)
    builder = _Builder(scanner.issues)
    return [builder.block(raw) for raw in raw_blocks]
