# Copyright (c) 2023-2025 Datalayer, Inc.
# Distributed under the terms of the MIT License.

from pydantic_settings import BaseSettings, SettingsConfigDict

from .constants import COLOR_PALETTE_SIZE, GEOCODE_CACHE_TTL_SECONDS


class ItinerarySettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="ITINERARY_", extra="ignore")

    color_palette_size: int = COLOR_PALETTE_SIZE
    geocode_ttl_s: float = GEOCODE_CACHE_TTL_SECONDS
    # "nominatim" or "none"
    geocoder: str = "nominatim"
    nominatim_url: str = "https://nominatim.openstreetmap.org/search"
    user_agent: str = "itinerary-stream/0.1 (travel itinerary geocoding)"
    request_timeout_s: float = 10.0
    websocket_host: str = "localhost"
    websocket_port: int = 3002
    log_level: str = "INFO"


settings = ItinerarySettings()
