# Copyright (c) 2023-2025 Datalayer, Inc.
# Distributed under the terms of the MIT License.

"""
Itinerary Stream - streaming travel-markup parsing, place enrichment and
boundary-anchored edit proposals
"""

from .model.document import Document
from .model.parser import StreamingParser, parse_markup
from .places.geocode import GeocodeCache, GeocodeEnricher
from .places.registry import PlaceRegistry
from .session import ItinerarySession, SessionEventType, SessionManager

__version__ = "0.1.0"

__all__ = [
    "Document", "StreamingParser", "parse_markup", "PlaceRegistry",
    "GeocodeCache", "GeocodeEnricher", "ItinerarySession", "SessionEventType",
    "SessionManager",
]
