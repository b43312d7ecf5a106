# Copyright (c) 2023-2025 Datalayer, Inc.
# Distributed under the terms of the MIT License.

import pytest

from itinerary_stream.diff.engine import apply, strip_ids
from itinerary_stream.diff.operations import anchors_for, diff_snapshots, proposal_for_instruction
from itinerary_stream.errors import BoundaryNotFound, InvalidProposal
from itinerary_stream.model.nodes import ParagraphNode, TextNode
from itinerary_stream.model.parser import parse_markup


@pytest.fixture
def document():
    return parse_markup("<h1>Day 1</h1><p>Breakfast</p><p>Lunch</p><ul><li>Dinner</li></ul>")


class TestAnchorsFor:

    @pytest.mark.parametrize("operation,target,expected", [
        ("insert_before", "n1", (None, "n1")),
        ("insert_before", "n3", ("n2", "n3")),
        ("insert_after", "n2", ("n2", "n3")),
        ("insert_after", "n4", ("n4", None)),
        ("replace", "n2", ("n1", "n3")),
        ("delete", "n1", (None, "n2")),
        ("delete", "n4", ("n3", None)),
    ])
    def test_translation(self, document, operation, target, expected):
        assert anchors_for(document, operation, target) == expected

    def test_unknown_operation(self, document):
        with pytest.raises(InvalidProposal):
            anchors_for(document, "move", "n1")

    def test_target_must_be_top_level(self, document):
        with pytest.raises(BoundaryNotFound):
            anchors_for(document, "replace", "n5")


class TestProposalForInstruction:

    def test_replace(self, document):
        proposal = proposal_for_instruction(document, "replace", "n3",
                                            [ParagraphNode([TextNode("Picnic")])])
        applied, _ = apply(document, proposal)
        assert [b.id for b in applied.children] == ["n1", "n2", "n6", "n4"]

    def test_delete_ignores_content(self, document):
        proposal = proposal_for_instruction(document, "delete", "n2",
                                            [ParagraphNode([TextNode("ignored")])])
        assert proposal.operations[0].content == ()
        applied, _ = apply(document, proposal)
        assert [b.id for b in applied.children] == ["n1", "n3", "n4"]


class TestDiffSnapshots:

    def test_identical_documents(self, document):
        assert diff_snapshots(document, parse_markup(document.to_markup())) is None

    def test_changed_middle_block(self, document):
        new = parse_markup("<h1>Day 1</h1><p>Brunch</p><p>Lunch</p><ul><li>Dinner</li></ul>")
        proposal = diff_snapshots(document, new)
        (op,) = proposal.operations
        assert (op.from_id, op.to_id) == ("n1", "n3")
        applied, _ = apply(document, proposal)
        assert [strip_ids(b) for b in applied.children] == [strip_ids(b) for b in new.children]

    def test_appended_block(self, document):
        new = parse_markup(document.to_markup() + "<p>Night walk</p>")
        (op,) = diff_snapshots(document, new).operations
        assert (op.from_id, op.to_id) == ("n4", None)
        assert [b.children[0].text for b in op.content] == ["Night walk"]

    def test_everything_removed(self, document):
        (op,) = diff_snapshots(document, parse_markup("")).operations
        assert (op.from_id, op.to_id, op.content) == (None, None, ())
