# Copyright (c) 2023-2025 Datalayer, Inc.
# Distributed under the terms of the MIT License.

from .geocode import (
    NOT_FOUND,
    CacheEntry,
    EnrichmentPass,
    GeocodeCache,
    GeocodeEnricher,
    Geocoder,
    apply_result,
    extract_context,
)
from .registry import PlaceRef, PlaceRegistry

__all__ = [
    'PlaceRegistry', 'PlaceRef', 'GeocodeCache', 'GeocodeEnricher', 'Geocoder',
    'CacheEntry', 'EnrichmentPass', 'NOT_FOUND', 'apply_result', 'extract_context',
]
