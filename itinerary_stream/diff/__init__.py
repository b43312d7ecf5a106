# Copyright (c) 2023-2025 Datalayer, Inc.
# Distributed under the terms of the MIT License.

from .engine import (
    Proposal,
    ReplaceOp,
    TextRange,
    apply,
    compute_proposal,
    preview_ranges,
    proposal_from_dict,
    proposal_to_dict,
    revert,
    text_range,
)
from .operations import EditOperation, anchors_for, diff_snapshots, proposal_for_instruction

__all__ = [
    'Proposal', 'ReplaceOp', 'TextRange', 'compute_proposal', 'apply', 'revert',
    'text_range', 'preview_ranges', 'proposal_to_dict', 'proposal_from_dict',
    'EditOperation', 'anchors_for', 'proposal_for_instruction', 'diff_snapshots',
]
