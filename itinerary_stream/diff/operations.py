# Copyright (c) 2023-2025 Datalayer, Inc.
# Distributed under the terms of the MIT License.

"""
Edit instructions and snapshot diffs expressed as boundary-anchored proposals.

Planners usually describe an edit relative to one block ("insert after n4",
"replace n2"); ``proposal_for_instruction`` turns that into the pair of
anchors the engine works with. ``diff_snapshots`` does the same for two
whole documents.
"""

import logging
from enum import Enum
from typing import Optional, Sequence, Tuple

from ..errors import BoundaryNotFound, InvalidProposal
from ..model.document import Document
from .engine import Proposal, top_level_index, compute_proposal, strip_ids

logger = logging.getLogger(__name__)


class EditOperation(Enum):
    INSERT_BEFORE = "insert_before"
    INSERT_AFTER = "insert_after"
    REPLACE = "replace"
    DELETE = "delete"


def _neighbor_id(document: Document, index: int) -> Optional[str]:
    if index < 0 or index >= len(document.children):
        return None
    neighbor_id = document.children[index].id
    if neighbor_id is None:
        raise BoundaryNotFound(None, f"block at position {index} has no id to anchor on")
    return neighbor_id


def anchors_for(document: Document, operation, target_id: str) -> Tuple[Optional[str], Optional[str]]:
    """Translate an operation on ``target_id`` into (from_id, to_id) anchors.

    Raises:
        BoundaryNotFound: If ``target_id`` is not a top-level block
        InvalidProposal: If ``operation`` is not a known edit operation
    """
    try:
        operation = EditOperation(operation)
    except ValueError:
        raise InvalidProposal(f"Unknown edit operation: {operation!r}")
    index = top_level_index(document, target_id)
    if operation == EditOperation.INSERT_BEFORE:
        return _neighbor_id(document, index - 1), target_id
    if operation == EditOperation.INSERT_AFTER:
        return target_id, _neighbor_id(document, index + 1)
    # replace and delete both cover exactly the target block
    return _neighbor_id(document, index - 1), _neighbor_id(document, index + 1)


def proposal_for_instruction(document: Document, operation, target_id: str,
                             content: Sequence = ()) -> Proposal:
    """Build a proposal from an insert_before/insert_after/replace/delete instruction"""
    from_id, to_id = anchors_for(document, operation, target_id)
    if EditOperation(operation) == EditOperation.DELETE:
        content = ()
    return compute_proposal(document, from_id, to_id, content)


def diff_snapshots(old: Document, new: Document) -> Optional[Proposal]:
    """Single proposal turning ``old`` into ``new``, or None when they match.

    Blocks are compared ignoring ids. The edited region is everything
    between the longest common prefix and the longest common suffix.
    """
    old_blocks = [strip_ids(block) for block in old.children]
    new_blocks = [strip_ids(block) for block in new.children]
    limit = min(len(old_blocks), len(new_blocks))

    prefix = 0
    while prefix < limit and old_blocks[prefix] == new_blocks[prefix]:
        prefix += 1
    suffix = 0
    while suffix < limit - prefix and \
            old_blocks[-1 - suffix] == new_blocks[-1 - suffix]:
        suffix += 1

    if prefix == len(old_blocks) == len(new_blocks):
        return None

    from_id = _neighbor_id(old, prefix - 1)
    to_id = _neighbor_id(old, len(old_blocks) - suffix) if suffix else None
    content = new.children[prefix:len(new_blocks) - suffix]
    logger.debug(f"[Diff] Snapshot diff: {prefix} common leading, {suffix} common trailing blocks")
    return compute_proposal(old, from_id, to_id, content)
