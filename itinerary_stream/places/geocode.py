# Copyright (c) 2023-2025 Datalayer, Inc.
# Distributed under the terms of the MIT License.

"""
Geocode cache and enricher

ARCHITECTURE OVERVIEW:
=====================

GeocodeCache:
- normalized place name -> CacheEntry(coordinate or NOT_FOUND, inserted_at)
- entries expire after a TTL and are reaped lazily when looked up
- entries are replaced wholesale, never mutated

GeocodeEnricher:
- resolve(name, context): cache hit, or exactly one outstanding lookup per
  key that every concurrent caller awaits
- the query sent to the geocoder is "name, context" when the itinerary's
  destination is known (see extract_context), and the cache is keyed on it
- enrich_document(document): schedules resolution of pending marks without
  blocking and writes results back into every mark with the same name
- transport errors are reported as EnrichmentUnresolved and are not cached,
  so the next pass retries them; a not-found answer is cached like a hit

USAGE PATTERNS:
==============

enricher = GeocodeEnricher(geocoder, cache=GeocodeCache())
coordinate = await enricher.resolve("Eiffel Tower", context="Paris")
enrichment = enricher.enrich_document(document, on_result=callback,
                                      context=extract_context(document))
await enrichment.wait()
"""

import asyncio
import logging
import re
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional, Protocol, Union

from ..constants import GEOCODE_CACHE_TTL_SECONDS
from ..errors import EnrichmentUnresolved
from ..model.markup import plain_text
from ..model.nodes import (
    PENDING,
    UNRESOLVED,
    Coordinate,
    GeoStatus,
    NodeType,
    normalize_place_name,
)

logger = logging.getLogger(__name__)


class LookupResult(Enum):
    NOT_FOUND = "not-found"


NOT_FOUND = LookupResult.NOT_FOUND

GeocodeResult = Union[Coordinate, LookupResult]


class Geocoder(Protocol):
    """External query -> coordinate lookup.

    The query is a place name, possibly followed by ", <context>". Returns
    None when the place is unknown; raises on transport failure.
    """

    async def lookup(self, query: str) -> Optional[Coordinate]:
        ...


_PLACE = r"([A-Z][^\W\d_]+(?:\s+[A-Z][^\W\d_]+)?)"

# Tried in order against the itinerary's headings
_CONTEXT_PATTERNS = [
    # "Oslo 2-Day Itinerary"
    re.compile(_PLACE + r"\s+\d*-?(?i:day)s?\s+(?i:trip|itinerary)\b"),
    # "3-Day Lisbon Trip"
    re.compile(r"\d*-?(?i:day)s?\s+" + _PLACE + r"\s+(?i:trip|itinerary)\b"),
    # "Itinerary for Kyoto", "Two days in Paris", "Weekend in Porto, Portugal"
    re.compile(r"\b(?i:itinerary for|trip to|visiting|exploring|in|to)\s+" + _PLACE
               + r"(?:,\s*([A-Z][^\W\d_]+))?"),
]

# Headings further down describe days, not the destination
CONTEXT_HEADING_LIMIT = 3


def extract_context(document) -> Optional[str]:
    """Destination of an itinerary, from its first headings.

    Returns:
        "City" or "City, Country", or None when no heading names one
    """
    headings = [block for block in document.children
                if block.node_type == NodeType.HEADING][:CONTEXT_HEADING_LIMIT]
    for heading in headings:
        text = " ".join(plain_text(heading).split())
        for pattern in _CONTEXT_PATTERNS:
            match = pattern.search(text)
            if match:
                groups = [g for g in match.groups() if g]
                return ", ".join(groups)
    return None


def query_for(name: str, context: Optional[str] = None) -> str:
    name = name.strip()
    return f"{name}, {context}" if context else name


@dataclass(frozen=True)
class CacheEntry:
    key: str
    result: GeocodeResult
    inserted_at: float


class GeocodeCache:
    """TTL cache of geocoding results, safe to share between sessions"""

    def __init__(self, ttl_seconds: float = GEOCODE_CACHE_TTL_SECONDS,
                 clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, name: str) -> Optional[CacheEntry]:
        """Return the live entry for ``name``, dropping it if it expired"""
        key = normalize_place_name(name)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._clock() - entry.inserted_at >= self.ttl_seconds:
                del self._entries[key]
                logger.debug(f"[GeocodeCache] Entry for '{key}' expired")
                return None
            return entry

    def put(self, name: str, result: GeocodeResult) -> CacheEntry:
        key = normalize_place_name(name)
        entry = CacheEntry(key, result, self._clock())
        with self._lock:
            self._entries[key] = entry
        return entry

    def __contains__(self, name: str) -> bool:
        return self.get(name) is not None

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


def _retrieve_exception(task: asyncio.Task) -> None:
    # waiters may all have been cancelled; the outcome is still observed here
    if not task.cancelled():
        task.exception()


ResultCallback = Callable[[str, GeocodeResult, Optional[EnrichmentUnresolved]], Awaitable[None]]


class GeocodeEnricher:
    """Resolves place names through a geocoder, one lookup per name at a time"""

    def __init__(self, geocoder: Geocoder, cache: Optional[GeocodeCache] = None):
        self.geocoder = geocoder
        self.cache = cache if cache is not None else GeocodeCache()
        self._inflight: Dict[str, asyncio.Task] = {}
        self.lookups = 0

    async def resolve(self, name: str, context: Optional[str] = None) -> GeocodeResult:
        """Resolve ``name`` to a coordinate or NOT_FOUND.

        Args:
            name: Place name as written in the itinerary
            context: Destination the itinerary is about, e.g. "Oslo, Norway"

        Raises:
            EnrichmentUnresolved: If the geocoder failed to answer
        """
        query = query_for(name, context)
        entry = self.cache.get(query)
        if entry is not None:
            return entry.result
        key = normalize_place_name(query)
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._lookup(key, name.strip(), query))
            task.add_done_callback(_retrieve_exception)
            self._inflight[key] = task
        # shield so that one cancelled caller does not cancel the shared lookup
        return await asyncio.shield(task)

    async def _lookup(self, key: str, name: str, query: str) -> GeocodeResult:
        try:
            self.lookups += 1
            logger.info(f"🌍 [Geocode] Looking up '{query}'")
            try:
                coordinate = await self.geocoder.lookup(query)
            except Exception as e:
                logger.warning(f"⚠️ [Geocode] Lookup for '{query}' failed: {e}")
                raise EnrichmentUnresolved(name, e) from e
            result = NOT_FOUND if coordinate is None else Coordinate(*coordinate)
            self.cache.put(key, result)
            logger.debug(f"[Geocode] '{query}' -> {result}")
            return result
        finally:
            self._inflight.pop(key, None)

    def enrich_document(self, document, on_result: Optional[ResultCallback] = None,
                        retry_unresolved: bool = False,
                        context: Optional[str] = None) -> "EnrichmentPass":
        """Resolve the place marks of ``document`` without blocking.

        Marks whose name is cached are updated immediately. The others are
        set to PENDING and a follow-up task is scheduled per name. When the
        lookup completes the follow-up writes the result into ``document``,
        or hands it to ``on_result`` which then owns updating the marks.
        Must be called from a running event loop.

        Args:
            document: Document whose marks to resolve
            on_result: Coroutine called as (name, result, error) per completed name
            retry_unresolved: Also retry marks that previously failed
            context: Destination appended to every lookup, see extract_context
        """
        wanted = {PENDING, UNRESOLVED} if retry_unresolved else {PENDING}
        names: Dict[str, str] = {}
        for mark in document.place_marks():
            if mark.status in wanted:
                names.setdefault(normalize_place_name(mark.display_name), mark.display_name)

        enrichment = EnrichmentPass()
        for key, name in names.items():
            entry = self.cache.get(query_for(name, context))
            if entry is not None:
                apply_result(document, name, entry.result)
                enrichment.cached[name] = entry.result
                continue
            set_status(document, name, PENDING)
            enrichment.tasks.append(
                asyncio.ensure_future(self._resolve_into(document, name, on_result, context)))
        if enrichment.tasks:
            logger.debug(f"[Geocode] Scheduled {len(enrichment.tasks)} lookup(s), "
                         f"{len(enrichment.cached)} served from cache")
        return enrichment

    async def _resolve_into(self, document, name: str, on_result: Optional[ResultCallback],
                            context: Optional[str] = None) -> None:
        error = None
        try:
            result = await self.resolve(name, context)
        except EnrichmentUnresolved as e:
            result, error = NOT_FOUND, e
        if result is NOT_FOUND and error is None:
            error = EnrichmentUnresolved(name)
        if on_result is None:
            apply_result(document, name, result)
        else:
            await on_result(name, result, error)


@dataclass
class EnrichmentPass:
    """Outcome of one enrich_document() call"""
    cached: Dict[str, GeocodeResult] = field(default_factory=dict)
    tasks: List[asyncio.Task] = field(default_factory=list)

    async def wait(self) -> None:
        if self.tasks:
            await asyncio.gather(*self.tasks, return_exceptions=True)


def apply_result(document, name: str, result: GeocodeResult) -> int:
    """Write a lookup result into every mark named ``name``; returns the count"""
    if isinstance(result, Coordinate):
        return _update_marks(document, name, lambda mark: mark.set_coordinate(result))
    return set_status(document, name, UNRESOLVED)


def set_status(document, name: str, status: GeoStatus) -> int:
    return _update_marks(document, name, lambda mark: mark.set_status(status))


def _update_marks(document, name: str, update) -> int:
    key = normalize_place_name(name)
    count = 0
    for mark in document.place_marks():
        if normalize_place_name(mark.display_name) == key:
            update(mark)
            count += 1
    return count
