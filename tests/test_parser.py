# Copyright (c) 2023-2025 Datalayer, Inc.
# Distributed under the terms of the MIT License.

"""
Tests for the streaming tag buffer and structural parser
"""

import copy

import pytest
from hypothesis import given, settings, strategies as st

from itinerary_stream.model.markup import blocks_to_markup
from itinerary_stream.model.nodes import (
    PENDING,
    UNRESOLVED,
    HeadingNode,
    ListNode,
    ParagraphNode,
    PlaceMark,
    TextNode,
)
from itinerary_stream.model.parser import (
    StreamingParser,
    TagScan,
    parse_fragment,
    parse_markup,
    read_tag,
)


def feed(fragments):
    parser = StreamingParser()
    for fragment in fragments:
        parser.consume(fragment)
    return parser


class TestReadTag:

    def test_complete_tag_with_attributes(self):
        tag = read_tag('<mark lat="48.85" color=2>', 0)
        assert tag.name == "mark"
        assert tag.attrs == {"lat": "48.85", "color": "2"}
        assert tag.end == len('<mark lat="48.85" color=2>')

    @pytest.mark.parametrize("text", ["<", "<hea", "</", "</p", '<mark lat="48.', "<p a=", "<p/"])
    def test_incomplete_tags(self, text):
        assert read_tag(text, 0) == TagScan.INCOMPLETE

    @pytest.mark.parametrize("text", ["< p>", "<3 days", "<p!x>", "</p x>"])
    def test_not_a_tag(self, text):
        assert read_tag(text, 0) == TagScan.NOT_A_TAG

    def test_quoted_value_may_contain_angle_bracket(self):
        tag = read_tag('<mark data-place-name="A > B">', 0)
        assert tag.attrs["data-place-name"] == "A > B"


class TestStreamingParser:
    """Streaming behaviour of StreamingParser"""

    def test_heading_and_paragraph_from_split_fragments(self):
        """Fragments may cut through tag names and block content"""
        parser = StreamingParser()
        first = parser.consume("<head")
        assert first.added == []
        assert first.pending == len("<head")

        second = parser.consume("ing>Day 1</heading><p>Visit ")
        assert [type(block) for block in second.added] == [HeadingNode]

        third = parser.consume("<mark>Eiffel Tower</mark></p>")
        assert [type(block) for block in third.added] == [ParagraphNode]
        assert third.pending == 0

        document = parser.flush()
        heading, paragraph = document.children
        assert heading.level == 1
        assert heading.children == [TextNode("Day 1")]
        assert paragraph.children == [TextNode("Visit "), PlaceMark("Eiffel Tower")]
        assert paragraph.children[1].latitude is PENDING

    def test_ids_are_minted_in_document_order(self):
        document = parse_markup("<h1>Day 1</h1><p>Morning</p><ul><li>Louvre</li></ul>")
        assert [block.id for block in document.children] == ["n1", "n2", "n3"]
        assert document.children[2].items[0].id == "n4"

    def test_explicit_ids_are_kept_and_duplicates_reminted(self):
        document = parse_markup('<p id="intro">a</p><p id="intro">b</p><p>c</p>')
        ids = [block.id for block in document.children]
        assert ids[0] == "intro"
        assert ids[1] not in ("intro", None)
        assert len(set(ids)) == 3

    def test_attribute_value_split_mid_string(self):
        parser = feed(['<p><mark lat="48.8', '584" lng="2.2945">Eiffel Tower</mark></p>'])
        mark = parser.document.children[0].children[0]
        assert mark.latitude == 48.8584
        assert mark.longitude == 2.2945

    def test_dangling_closing_tag_prefix_waits(self):
        parser = StreamingParser()
        delta = parser.consume("<p>Lunch</")
        assert delta.added == []
        delta = parser.consume("p>")
        assert len(delta.added) == 1
        assert delta.added[0].children == [TextNode("Lunch")]

    def test_unknown_tags_pass_through_as_text(self):
        document = parse_markup("<p>Try the <b>croissants</b></p>")
        assert document.children[0].children == [TextNode("Try the <b>croissants</b>")]

    def test_stray_angle_bracket_is_text(self):
        document = parse_markup("<p>Budget < 50 EUR &amp; tips</p>")
        assert document.children[0].children == [TextNode("Budget < 50 EUR & tips")]

    def test_wrapper_tags_are_transparent(self):
        document = parse_markup("<itinerary>\n<h2>Day 1</h2>\n<p>Walk</p>\n</itinerary>")
        assert [type(block) for block in document.children] == [HeadingNode, ParagraphNode]
        assert document.children[0].level == 2

    def test_top_level_text_becomes_paragraph_once_a_block_follows(self):
        parser = StreamingParser()
        assert parser.consume("Here is your trip: ").added == []
        delta = parser.consume("<h1>Paris</h1>")
        assert len(delta.added) == 2
        assert delta.added[0].children == [TextNode("Here is your trip:")]

    def test_lists(self):
        document = parse_markup("<ol><li>Eiffel</li>\n<li>Louvre</li></ol><ul><li>a</li></ul>")
        ordered, bullets = document.children
        assert isinstance(ordered, ListNode) and ordered.ordered
        assert [item.children for item in ordered.items] == [[TextNode("Eiffel")], [TextNode("Louvre")]]
        assert not bullets.ordered

    def test_place_mark_attributes(self):
        document = parse_markup(
            '<p><mark color="3" lat="41.9" lng="12.5">Rome</mark>'
            '<mark geo="unresolved">Atlantis</mark>'
            '<span class="geo-mark" data-lat="48.86" data-lng="2.33" data-color-index="1">Louvre</span></p>'
        )
        rome, atlantis, louvre = document.children[0].children
        assert (rome.latitude, rome.longitude, rome.color_index) == (41.9, 12.5, 3)
        assert atlantis.latitude is UNRESOLVED
        assert (louvre.display_name, louvre.latitude, louvre.color_index) == ("Louvre", 48.86, 1)

    @pytest.mark.parametrize("color", ["-1", "10", "42", "red"])
    def test_color_outside_palette_is_dropped(self, color):
        parser = StreamingParser()
        delta = parser.consume(f'<p><mark color="{color}">Paris</mark></p>')
        (mark,) = delta.document.children[0].children
        assert mark.color_index is None
        assert any("invalid color index" in str(issue) for issue in delta.issues)

    def test_heading_level_attribute(self):
        document = parse_markup('<heading level="3">Day 3</heading><heading level="x">?</heading>')
        assert [block.level for block in document.children] == [3, 1]

    def test_flush_closes_open_constructs(self):
        parser = feed(["<h1>Day 1</h1><p>Visit the <mark>Lou"])
        document = parser.flush()
        paragraph = document.children[1]
        assert paragraph.children == [TextNode("Visit the "), PlaceMark("Lou")]

    def test_flush_is_idempotent_and_keeps_buffer(self):
        parser = feed(["<p>one</p><p>tw"])
        assert parser.flush() == parser.flush()
        assert parser.pending_text == "<p>tw"
        parser.consume("o</p>")
        assert len(parser.flush().children) == 2

    def test_degraded_input_never_raises(self):
        parser = StreamingParser()
        delta = parser.consume("</p><p>a<h2>b</h2>")
        assert delta.issues
        document = parser.flush()
        assert [type(block) for block in document.children] == [ParagraphNode, HeadingNode]

    def test_unterminated_attribute_degrades_to_text_on_flush(self):
        document = feed(['<p>ok</p><mark lat="4']).flush()
        assert document.children[1].children == [TextNode('<mark lat="4')]

    def test_reset_discards_everything(self):
        parser = feed(["<p>a</p><p>b"])
        parser.reset()
        assert parser.document.children == []
        assert parser.pending_text == ""

    def test_parse_fragment_keeps_ids_without_minting(self):
        blocks = parse_fragment('<p id="n7">kept</p><p>no id</p>')
        assert [block.id for block in blocks] == ["n7", None]


class TestRoundTrip:

    def test_canonical_markup_reads_back_identically(self):
        document = parse_markup(
            '<h2>Day 1 &amp; 2</h2><p>See <mark color="0" lat="48.8584" lng="2.2945">Eiffel Tower</mark>'
            ' then <mark geo="unresolved">Nowhere</mark> and <mark>Louvre</mark></p>'
            '<ol><li>a &lt; b</li></ol>'
        )
        again = parse_markup(document.to_markup())
        assert again == document
        assert again.to_markup() == document.to_markup()
        assert [block.id for block in again.children] == [block.id for block in document.children]


###############################################################################
# Split invariance

_words = st.text(alphabet="abcdefghij XYZ,.", min_size=1, max_size=12).filter(lambda s: s.strip())


@st.composite
def blocks(draw):
    kind = draw(st.sampled_from(["heading", "paragraph", "list", "wrapped", "stray"]))
    word = draw(_words)
    if kind == "heading":
        level = draw(st.integers(min_value=1, max_value=3))
        return f"<h{level}>{word}</h{level}>"
    if kind == "paragraph":
        place = draw(_words)
        return f'<p>{word} <mark lat="1.5" lng="2.25">{place}</mark> {word}</p>'
    if kind == "list":
        items = draw(st.lists(_words, min_size=1, max_size=3))
        return "<ul>" + "".join(f"<li>{item}</li>" for item in items) + "</ul>"
    if kind == "wrapped":
        return f"<itinerary><p>{word}</p></itinerary>"
    return f"{word}<p>{word}</p>"


@st.composite
def split_markup(draw):
    text = "".join(draw(st.lists(blocks(), min_size=1, max_size=6)))
    cuts = sorted(draw(st.lists(st.integers(min_value=0, max_value=len(text)), max_size=12)))
    fragments = []
    previous = 0
    for cut in cuts:
        fragments.append(text[previous:cut])
        previous = cut
    fragments.append(text[previous:])
    return text, fragments


class TestSplitInvariance:

    @settings(max_examples=200, deadline=None)
    @given(split_markup())
    def test_any_split_yields_the_same_document(self, sample):
        text, fragments = sample
        whole = parse_markup(text)
        streamed = feed(fragments).flush()
        assert streamed == whole
        assert blocks_to_markup(streamed.children) == blocks_to_markup(whole.children)

    @settings(max_examples=100, deadline=None)
    @given(split_markup())
    def test_completed_blocks_never_change(self, sample):
        _, fragments = sample
        parser = StreamingParser()
        seen = []
        for fragment in fragments:
            parser.consume(fragment)
            assert parser.document.children[:len(seen)] == seen
            seen = copy.deepcopy(parser.document.children)
