# Copyright (c) 2023-2025 Datalayer, Inc.
# Distributed under the terms of the MIT License.

"""
Geocoder backed by the OpenStreetMap Nominatim search API.

Nominatim's usage policy requires an identifying User-Agent and at most
one request per second; callers are expected to go through GeocodeEnricher
so that repeated names are served from its cache. Ambiguous names are
disambiguated by the enricher, which appends the itinerary's destination
to the query ("Old Town, Tallinn").
"""

import logging
from typing import Any, Dict, List, Optional

import aiohttp

from ..model.nodes import Coordinate
from ..settings import settings

logger = logging.getLogger(__name__)


def first_coordinate(results: List[Dict[str, Any]]) -> Optional[Coordinate]:
    """Coordinate of the best ranked well-formed search result"""
    for result in results:
        try:
            return Coordinate(float(result["lat"]), float(result["lon"]))
        except (KeyError, TypeError, ValueError):
            logger.debug(f"[Nominatim] Skipping malformed result: {result}")
    return None


class NominatimGeocoder:
    def __init__(self, base_url: str = "https://nominatim.openstreetmap.org/search",
                 user_agent: str = "itinerary-stream/0.1",
                 timeout_s: float = 10.0,
                 language: Optional[str] = None,
                 session: Optional[aiohttp.ClientSession] = None):
        self.base_url = base_url
        self.user_agent = user_agent
        self.timeout = aiohttp.ClientTimeout(total=timeout_s)
        self.language = language
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers={"User-Agent": self.user_agent}, timeout=self.timeout)
            self._owns_session = True
        return self._session

    def _params(self, query: str) -> Dict[str, str]:
        params = {"q": query, "format": "json", "limit": "3"}
        if self.language:
            params["accept-language"] = self.language
        return params

    async def lookup(self, query: str) -> Optional[Coordinate]:
        """Geocode ``query``.

        Args:
            query: Place name, optionally followed by its context,
                e.g. "Tivoli Gardens, Copenhagen"

        Returns:
            The coordinate, or None when Nominatim knows no such place

        Raises:
            aiohttp.ClientError: On transport failures and non-2xx responses
        """
        session = await self._get_session()
        async with session.get(self.base_url, params=self._params(query)) as response:
            response.raise_for_status()
            results = await response.json()
        coordinate = first_coordinate(results or [])
        if coordinate is None:
            logger.info(f"[Nominatim] No results for '{query}'")
        else:
            logger.info(f"[Nominatim] '{query}' -> {coordinate.latitude}, {coordinate.longitude}")
        return coordinate

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()

    async def __aenter__(self) -> "NominatimGeocoder":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()


def build_geocoder(name: str) -> Optional[NominatimGeocoder]:
    """Geocoder selected by name ("nominatim" or "none"), configured from settings"""
    if name == "none":
        return None
    if name == "nominatim":
        return NominatimGeocoder(base_url=settings.nominatim_url,
                                 user_agent=settings.user_agent,
                                 timeout_s=settings.request_timeout_s)
    raise ValueError(f"Unknown geocoder: {name}")
