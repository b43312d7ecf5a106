# Copyright (c) 2023-2025 Datalayer, Inc.
# Distributed under the terms of the MIT License.

"""
PlaceRegistry: place mention deduplication and color assignment

Every distinct place name in a session gets one color index in [0, K).
Names keep their index for the whole session, so a document that is
re-derived from a growing stream shows the same colors as before.

Color policy:
- a name seen before reuses its index, even over a color given in markup
- a new name takes the smallest index nobody holds yet
- once all K indices are held, new names wrap round-robin:
  ``count_assigned_so_far mod K``

The registry also remembers how each name resolved (coordinates or
unresolved) and applies that state to freshly parsed marks.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Set, Union

from ..constants import COLOR_PALETTE_SIZE
from ..model.nodes import (
    PENDING,
    UNRESOLVED,
    Coordinate,
    GeoStatus,
    PlaceMark,
    normalize_place_name,
)

logger = logging.getLogger(__name__)

Resolution = Union[Coordinate, GeoStatus]


@dataclass(frozen=True)
class PlaceRef:
    """A deduplicated place: name, color and coordinates when known"""
    name: str
    color_index: Optional[int]
    coordinate: Optional[Coordinate]
    mentions: int


class PlaceRegistry:
    def __init__(self, palette_size: int = COLOR_PALETTE_SIZE):
        if palette_size < 1:
            raise ValueError("palette_size must be at least 1")
        self.palette_size = palette_size
        self._colors: Dict[str, int] = {}
        self._used: Set[int] = set()
        self._resolutions: Dict[str, Resolution] = {}

    @property
    def assignments(self) -> Dict[str, int]:
        """Normalized name -> color index"""
        return dict(self._colors)

    def color_of(self, name: str) -> Optional[int]:
        return self._colors.get(normalize_place_name(name))

    def scan(self, document) -> List[PlaceMark]:
        """Assign colors to every uncolored place mark of ``document``.

        A color given in the markup is reserved for its name when the name
        has no color yet. A name that already holds a color imposes it on
        every mark, and colors outside the palette are dropped. Calling scan
        again on the same document changes nothing.

        Returns:
            All place marks in document order
        """
        marks = document.place_marks()
        for mark in marks:
            if mark.color_index is not None:
                self._reserve(mark)
        for mark in marks:
            if mark.color_index is None:
                mark.color_index = self.assign_color(mark)
            self._apply_resolution(mark)
        return marks

    def _reserve(self, mark: PlaceMark) -> None:
        key = normalize_place_name(mark.display_name)
        held = self._colors.get(key)
        if held is not None:
            if mark.color_index != held:
                logger.debug(f"[Registry] '{mark.display_name}' already has color {held}, "
                             f"ignoring {mark.color_index}")
                mark.color_index = held
            return
        if not 0 <= mark.color_index < self.palette_size:
            logger.debug(f"[Registry] Color {mark.color_index} of '{mark.display_name}' "
                         f"is outside the palette")
            mark.color_index = None
            return
        self._used.add(mark.color_index)
        self._colors[key] = mark.color_index

    def assign_color(self, mark: PlaceMark) -> int:
        """Return the color index for ``mark``'s name, assigning one if needed"""
        key = normalize_place_name(mark.display_name)
        if key in self._colors:
            return self._colors[key]
        free = [i for i in range(self.palette_size) if i not in self._used]
        if free:
            index = free[0]
        else:
            index = len(self._colors) % self.palette_size
            logger.debug(f"[Registry] Palette exhausted, '{mark.display_name}' wraps to {index}")
        self._colors[key] = index
        self._used.add(index)
        return index

    def _apply_resolution(self, mark: PlaceMark) -> None:
        if mark.status is None:
            return
        resolution = self._resolutions.get(normalize_place_name(mark.display_name))
        if isinstance(resolution, Coordinate):
            mark.set_coordinate(resolution)
        elif resolution == UNRESOLVED:
            mark.set_status(UNRESOLVED)

    def record_resolution(self, name: str, resolution: Resolution) -> None:
        """Remember how ``name`` resolved"""
        self._resolutions[normalize_place_name(name)] = resolution

    def resolution_of(self, name: str) -> Resolution:
        """Coordinate, UNRESOLVED, or PENDING when nothing is known yet"""
        return self._resolutions.get(normalize_place_name(name), PENDING)

    def unique_places(self, document) -> List[PlaceRef]:
        """Deduplicated places of ``document`` in order of first mention.

        Identity is the normalized name plus coordinates once they are known.
        """
        places: Dict[tuple, PlaceRef] = {}
        for mark in document.place_marks():
            identity = (normalize_place_name(mark.display_name), mark.coordinate)
            existing = places.get(identity)
            if existing is None:
                places[identity] = PlaceRef(mark.display_name, mark.color_index,
                                            mark.coordinate, 1)
            else:
                places[identity] = PlaceRef(existing.name, existing.color_index,
                                            existing.coordinate, existing.mentions + 1)
        return list(places.values())

    def clear(self) -> None:
        self._colors.clear()
        self._used.clear()
        self._resolutions.clear()
