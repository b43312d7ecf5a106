# Copyright (c) 2023-2025 Datalayer, Inc.
# Distributed under the terms of the MIT License.

"""
Boundary-anchored diff and revert engine

Edits are addressed by the StableIds of the two top-level blocks that
bound them, never by offsets. A ReplaceOp removes every block strictly
between ``from_id`` and ``to_id`` and inserts its content there; a None
anchor stands for the start (``from_id``) or end (``to_id``) of the
document.

ARCHITECTURE OVERVIEW:
=====================

compute_proposal(document, from_id, to_id, content)
    -> Proposal(operations, inverse_operations)

apply(document, proposal)
    -> (new_document, applied_inverse)      # document itself is untouched

revert(new_document, applied_inverse)
    -> document with the original blocks, ids and place state

text_range(document, op)
    -> TextRange(start, end, inserted_size) over the canonical markup

KEY DESIGN PRINCIPLES:
=====================

1. **Atomic**: every operation works on a deep copy; a failing anchor
   raises before anything is returned.
2. **Exact revert**: removed blocks are kept verbatim (ids, coordinates and
   colors included) in operations marked ``restore_ids`` and re-inserted
   with their original ids.
3. **Fresh ids**: every other inserted block gets an id that was never
   issued in the document, whatever id its content carried.
"""

import copy
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, NamedTuple, Optional, Sequence, Tuple

from ..errors import BoundaryNotFound, BoundaryOrderError, InvalidProposal
from ..model.document import Document
from ..model.markup import blocks_size, blocks_to_markup
from ..model.nodes import NodeType, is_block
from ..model.parser import parse_fragment

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReplaceOp:
    from_id: Optional[str]
    to_id: Optional[str]
    content: Tuple = ()
    # inverse and as-applied records only; their content keeps the ids it carries
    restore_ids: bool = False


@dataclass(frozen=True)
class Proposal:
    operations: Tuple[ReplaceOp, ...]
    inverse_operations: Tuple[ReplaceOp, ...] = ()
    proposal_id: str = field(default_factory=lambda: uuid.uuid4().hex, compare=False)


class TextRange(NamedTuple):
    """Position of an applied operation in the canonical markup"""
    start: int
    end: int
    inserted_size: int


def strip_ids(block):
    """Deep copy of ``block`` with every id cleared"""
    clone = copy.deepcopy(block)
    clone.id = None
    if clone.node_type == NodeType.LIST:
        for item in clone.items:
            item.id = None
    return clone


def _validate_content(content: Sequence) -> None:
    for node in content:
        if not is_block(node):
            raise InvalidProposal(
                f"Only headings, paragraphs and lists can be inserted, got {type(node).__name__}")


def top_level_index(document: Document, anchor_id: str) -> int:
    positions = document.index_of(anchor_id)
    if len(positions) == 1:
        return positions[0]
    if len(positions) > 1:
        raise BoundaryNotFound(anchor_id, "is ambiguous")
    if document.find(anchor_id) is not None:
        raise BoundaryNotFound(anchor_id, "is not a top-level node")
    raise BoundaryNotFound(anchor_id, "not found")


def resolve_range(document: Document, from_id: Optional[str],
                  to_id: Optional[str]) -> Tuple[int, int]:
    """Return the slice of top-level blocks strictly between the anchors.

    Raises:
        BoundaryNotFound: If an anchor does not resolve to exactly one top-level block
        BoundaryOrderError: If ``from_id`` does not precede ``to_id``
    """
    start = 0
    stop = len(document.children)
    if from_id is not None:
        start = top_level_index(document, from_id) + 1
    if to_id is not None:
        stop = top_level_index(document, to_id)
    if from_id is not None and to_id is not None and start > stop:
        raise BoundaryOrderError(from_id, to_id)
    return start, stop


def compute_proposal(document: Document, from_id: Optional[str], to_id: Optional[str],
                     new_content: Sequence) -> Proposal:
    """Build the proposal replacing everything between two anchors.

    Args:
        document: Frozen snapshot the proposal is computed against
        from_id: Block after which the edit starts, None for the document start
        to_id: Block before which the edit ends, None for the document end
        new_content: Block nodes to insert; their ids are discarded

    Returns:
        Proposal whose inverse restores the removed blocks
    """
    _validate_content(new_content)
    start, stop = resolve_range(document, from_id, to_id)
    removed = tuple(copy.deepcopy(document.children[start:stop]))
    content = tuple(strip_ids(node) for node in new_content)
    logger.debug(f"[Diff] Proposal between {from_id!r} and {to_id!r}: "
                 f"-{len(removed)} +{len(content)} blocks")
    return Proposal(
        operations=(ReplaceOp(from_id, to_id, content),),
        inverse_operations=(ReplaceOp(from_id, to_id, removed, restore_ids=True),),
    )


def apply(document: Document, proposal: Proposal) -> Tuple[Document, Proposal]:
    """Apply every operation of ``proposal`` in order.

    Returns:
        (new_document, applied_inverse). ``applied_inverse.operations`` undo
        the change; ``applied_inverse.inverse_operations`` record the
        operations as applied, with the ids that were minted.

    Raises:
        BoundaryNotFound: If an anchor cannot be resolved; ``document`` is unchanged
        InvalidProposal: If content holds non-block nodes
    """
    working = document.copy()
    undo: List[ReplaceOp] = []
    applied: List[ReplaceOp] = []
    for op in proposal.operations:
        _validate_content(op.content)
        start, stop = resolve_range(working, op.from_id, op.to_id)
        removed = working.children[start:stop]
        del working.children[start:stop]
        live = working.live_ids()
        inserted = [copy.deepcopy(node) for node in op.content]
        for node in inserted:
            working.assign_ids(node, live, keep_carried=op.restore_ids)
        working.children[start:start] = inserted
        undo.append(ReplaceOp(op.from_id, op.to_id, tuple(removed), restore_ids=True))
        applied.append(ReplaceOp(op.from_id, op.to_id, tuple(copy.deepcopy(inserted)),
                                 restore_ids=True))
        logger.info(f"✏️ [Diff] Replaced {len(removed)} block(s) with {len(inserted)} "
                    f"between {op.from_id!r} and {op.to_id!r}")
    undo.reverse()
    return working, Proposal(operations=tuple(undo), inverse_operations=tuple(applied))


def revert(document: Document, inverse: Proposal) -> Document:
    """Undo an applied proposal using the inverse returned by apply()"""
    reverted, _ = apply(document, inverse)
    return reverted


def text_range(document: Document, op: ReplaceOp) -> TextRange:
    """Where ``op`` lands in the canonical markup of ``document``.

    ``op`` should carry its content as it will be inserted (with ids), as
    recorded in ``applied_inverse.inverse_operations``. Replacing
    ``markup[start:end]`` with the content's markup yields the markup of
    the document after the operation.
    """
    start_index, stop_index = resolve_range(document, op.from_id, op.to_id)
    start = blocks_size(document.children[:start_index])
    end = start + blocks_size(document.children[start_index:stop_index])
    return TextRange(start, end, blocks_size(op.content))


def preview_ranges(document: Document, applied_inverse: Proposal) -> List[TextRange]:
    """Text ranges of every applied operation, each measured after the ones before it"""
    ranges = []
    working = document
    for op in applied_inverse.inverse_operations:
        ranges.append(text_range(working, op))
        working, _ = apply(working, Proposal(operations=(op,)))
    return ranges


###############################################################################
# Wire format

def op_to_dict(op: ReplaceOp) -> Dict[str, Any]:
    data = {
        "from_id": op.from_id,
        "to_id": op.to_id,
        "content": blocks_to_markup(op.content),
    }
    if op.restore_ids:
        data["restore_ids"] = True
    return data


def op_from_dict(data: Dict[str, Any]) -> ReplaceOp:
    try:
        from_id = data.get("from_id")
        to_id = data.get("to_id")
        content = data.get("content", "")
        restore_ids = bool(data.get("restore_ids", False))
    except AttributeError:
        raise InvalidProposal(f"Operation must be an object, got {type(data).__name__}")
    if not isinstance(content, str):
        raise InvalidProposal("Operation content must be a markup string")
    return ReplaceOp(from_id, to_id, tuple(parse_fragment(content)), restore_ids)


def proposal_to_dict(proposal: Proposal) -> Dict[str, Any]:
    """JSON-safe form of a proposal; nodes travel as canonical markup"""
    return {
        "proposal_id": proposal.proposal_id,
        "operations": [op_to_dict(op) for op in proposal.operations],
        "inverse_operations": [op_to_dict(op) for op in proposal.inverse_operations],
    }


def proposal_from_dict(data: Dict[str, Any]) -> Proposal:
    if not isinstance(data, dict) or "operations" not in data:
        raise InvalidProposal("Proposal payload must contain 'operations'")
    kwargs = {}
    if data.get("proposal_id"):
        kwargs["proposal_id"] = data["proposal_id"]
    return Proposal(
        operations=tuple(op_from_dict(op) for op in data["operations"]),
        inverse_operations=tuple(op_from_dict(op) for op in data.get("inverse_operations", [])),
        **kwargs,
    )
