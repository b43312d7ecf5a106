# Copyright (c) 2023-2025 Datalayer, Inc.
# Distributed under the terms of the MIT License.

"""
Document: root of an itinerary tree and owner of its StableIds.

A document remembers every id it has ever handed out, including ids of
nodes that were later removed, so that minted ids are never reused during
the document's lifetime. Equality compares content only; id bookkeeping
does not take part in it.
"""

import copy
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Set, Tuple

from ..constants import STABLE_ID_PREFIX
from .markup import blocks_to_markup
from .nodes import NodeType, iter_ids, iter_place_marks

logger = logging.getLogger(__name__)


@dataclass
class Document:
    children: List = field(default_factory=list)
    issued_ids: Set[str] = field(default_factory=set, compare=False, repr=False)
    next_ordinal: int = field(default=1, compare=False, repr=False)

    def __post_init__(self):
        self.issued_ids.update(iter_ids(self.children))

    @property
    def node_type(self) -> NodeType:
        return NodeType.DOCUMENT

    def copy(self) -> "Document":
        """Deep copy, bookkeeping included"""
        return copy.deepcopy(self)

    def live_ids(self) -> Set[str]:
        return set(iter_ids(self.children))

    def mint_id(self) -> str:
        """Return an id that has never been issued in this document"""
        while True:
            candidate = f"{STABLE_ID_PREFIX}{self.next_ordinal}"
            self.next_ordinal += 1
            if candidate not in self.issued_ids:
                self.issued_ids.add(candidate)
                return candidate

    def assign_ids(self, block, live: Set[str], keep_carried: bool = True) -> None:
        """Give ``block`` and its list items usable ids.

        With ``keep_carried`` an id already carried by a node is kept when no
        live node uses it; parsed markup and reverted nodes keep their ids
        this way. Otherwise, and for missing or colliding ids, a fresh id is
        minted. ``live`` is updated with every id assigned.
        """
        nodes = [block]
        if block.node_type == NodeType.LIST:
            nodes.extend(block.items)
        for node in nodes:
            if not keep_carried:
                node.id = self.mint_id()
            elif node.id is None or node.id in live:
                if node.id is not None:
                    logger.debug(f"[Document] Id '{node.id}' already live, minting a new one")
                node.id = self.mint_id()
            else:
                self.issued_ids.add(node.id)
            live.add(node.id)

    def index_of(self, node_id: str) -> List[int]:
        """Top-level positions holding ``node_id``"""
        return [i for i, block in enumerate(self.children) if block.id == node_id]

    def find(self, node_id: str) -> Optional[Tuple[object, Optional[object]]]:
        """Locate a block or list item by id.

        Returns:
            (node, parent_list) where parent_list is None for top-level
            blocks, or None when the id is not in the document
        """
        for block in self.children:
            if block.id == node_id:
                return block, None
            if block.node_type == NodeType.LIST:
                for item in block.items:
                    if item.id == node_id:
                        return item, block
        return None

    def place_marks(self) -> List:
        return list(iter_place_marks(self.children))

    def to_markup(self) -> str:
        return blocks_to_markup(self.children)
