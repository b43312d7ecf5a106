# Copyright (c) 2023-2025 Datalayer, Inc.
# Distributed under the terms of the MIT License.

"""
Tests for place deduplication and color assignment
"""

import pytest

from itinerary_stream.model.nodes import PENDING, UNRESOLVED, Coordinate, PlaceMark
from itinerary_stream.model.parser import StreamingParser, parse_markup
from itinerary_stream.places.registry import PlaceRegistry


def colors(document):
    return [(mark.display_name, mark.color_index) for mark in document.place_marks()]


class TestColorAssignment:

    def test_distinct_places_get_distinct_colors(self):
        """A repeated place keeps the color of its first mention"""
        registry = PlaceRegistry()
        document = parse_markup(
            "<p>Visit <mark>Eiffel Tower</mark>, then <mark>Louvre</mark>.</p>"
            "<p>Back to the <mark>Eiffel Tower</mark> at night.</p>"
        )
        registry.scan(document)
        assert colors(document) == [("Eiffel Tower", 0), ("Louvre", 1), ("Eiffel Tower", 0)]

    def test_colors_survive_streaming(self):
        registry = PlaceRegistry()
        parser = StreamingParser()
        parser.consume("<p>Visit <mark>Eiffel Tower</mark></p>")
        registry.scan(parser.document)
        parser.consume("<p><mark>Louvre</mark> and <mark>Eiffel Tower</mark></p>")
        registry.scan(parser.document)
        assert colors(parser.document) == [("Eiffel Tower", 0), ("Louvre", 1), ("Eiffel Tower", 0)]

    def test_names_are_matched_case_insensitively(self):
        registry = PlaceRegistry()
        assert registry.assign_color(PlaceMark("Louvre")) == 0
        assert registry.assign_color(PlaceMark("  louvre ")) == 0
        assert registry.color_of("LOUVRE") == 0

    def test_scan_is_idempotent(self):
        registry = PlaceRegistry()
        document = parse_markup("<p><mark>Rome</mark> <mark>Florence</mark></p>")
        registry.scan(document)
        before = document.copy()
        registry.scan(document)
        assert document == before
        assert registry.assignments == {"rome": 0, "florence": 1}

    def test_palette_wraps_round_robin(self):
        registry = PlaceRegistry(palette_size=3)
        indices = [registry.assign_color(PlaceMark(name)) for name in "ABCDE"]
        assert indices == [0, 1, 2, 0, 1]

    def test_eleventh_place_reuses_first_color(self):
        registry = PlaceRegistry()
        indices = [registry.assign_color(PlaceMark(f"Place {i}")) for i in range(11)]
        assert indices == list(range(10)) + [0]

    def test_explicit_colors_are_reserved(self):
        registry = PlaceRegistry()
        document = parse_markup('<p><mark>Eiffel Tower</mark> <mark color="0">Louvre</mark></p>')
        registry.scan(document)
        assert colors(document) == [("Eiffel Tower", 1), ("Louvre", 0)]

    def test_held_color_wins_over_later_explicit_color(self):
        registry = PlaceRegistry()
        parser = StreamingParser()
        parser.consume("<p><mark>Paris</mark></p>")
        registry.scan(parser.document)
        parser.consume('<p><mark color="3">Paris</mark> and <mark>Lyon</mark></p>')
        registry.scan(parser.document)
        assert colors(parser.document) == [("Paris", 0), ("Paris", 0), ("Lyon", 1)]
        assert registry.assignments == {"paris": 0, "lyon": 1}

    def test_first_explicit_color_of_a_name_is_shared(self):
        registry = PlaceRegistry()
        document = parse_markup(
            '<p><mark>Paris</mark> <mark color="3">paris</mark> <mark color="5">Paris</mark></p>')
        registry.scan(document)
        assert [mark.color_index for mark in document.place_marks()] == [3, 3, 3]

    def test_color_outside_palette_is_reassigned(self):
        registry = PlaceRegistry(palette_size=4)
        mark = PlaceMark("Paris", color_index=7)
        document = parse_markup("<p>x</p>")
        document.children[0].children.append(mark)
        registry.scan(document)
        assert mark.color_index == 0
        assert registry.assignments == {"paris": 0}

    def test_invalid_palette_size(self):
        with pytest.raises(ValueError):
            PlaceRegistry(palette_size=0)


class TestResolutions:

    def test_known_resolution_applies_to_new_marks(self):
        registry = PlaceRegistry()
        registry.record_resolution("Colosseum", Coordinate(41.8902, 12.4922))
        registry.record_resolution("Atlantis", UNRESOLVED)
        document = parse_markup("<p><mark>Colosseum</mark><mark>Atlantis</mark><mark>Trevi</mark></p>")
        colosseum, atlantis, trevi = registry.scan(document)
        assert colosseum.coordinate == Coordinate(41.8902, 12.4922)
        assert atlantis.status is UNRESOLVED
        assert trevi.status is PENDING
        assert registry.resolution_of("trevi") is PENDING

    def test_marks_with_coordinates_are_left_alone(self):
        registry = PlaceRegistry()
        registry.record_resolution("Louvre", Coordinate(1.0, 2.0))
        document = parse_markup('<p><mark lat="48.8606" lng="2.3376">Louvre</mark></p>')
        (mark,) = registry.scan(document)
        assert mark.coordinate == Coordinate(48.8606, 2.3376)


class TestUniquePlaces:

    def test_mentions_are_counted_in_first_mention_order(self):
        registry = PlaceRegistry()
        document = parse_markup(
            "<p><mark>Louvre</mark> <mark>Eiffel Tower</mark> <mark>louvre</mark></p>")
        registry.scan(document)
        places = registry.unique_places(document)
        assert [(p.name, p.color_index, p.mentions) for p in places] == [
            ("Louvre", 0, 2), ("Eiffel Tower", 1, 1)]
        assert places[0].coordinate is None

    def test_same_name_different_coordinates_are_distinct(self):
        registry = PlaceRegistry()
        document = parse_markup(
            '<p><mark lat="44.98" lng="-93.26">Paris</mark>'
            '<mark lat="48.85" lng="2.35">Paris</mark></p>')
        registry.scan(document)
        places = registry.unique_places(document)
        assert len(places) == 2
        assert {p.color_index for p in places} == {0}

    def test_clear(self):
        registry = PlaceRegistry()
        registry.assign_color(PlaceMark("Rome"))
        registry.clear()
        assert registry.assignments == {}
        assert registry.assign_color(PlaceMark("Florence")) == 0
