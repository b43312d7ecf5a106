# Copyright (c) 2023-2025 Datalayer, Inc.
# Distributed under the terms of the MIT License.

# Number of distinct place colors before assignment wraps around
COLOR_PALETTE_SIZE = 10

# Geocode cache entries live for one day
GEOCODE_CACHE_TTL_SECONDS = 24 * 60 * 60

# Prefix for minted block ids (n1, n2, ...)
STABLE_ID_PREFIX = "n"

# Top-level wrapper emitted around streamed itineraries
WRAPPER_TAG = "itinerary"

# Websocket message types
MESSAGE_CHUNK = "chunk"
MESSAGE_END = "end"
MESSAGE_CANCEL = "cancel"
MESSAGE_QUERY_SNAPSHOT = "query-snapshot"
MESSAGE_PROPOSE = "propose"
MESSAGE_APPLY = "apply"
MESSAGE_REVERT = "revert"
MESSAGE_ACCEPT = "accept"
MESSAGE_KEEPALIVE = "keepalive"
MESSAGE_DOCUMENT_UPDATE = "document-update"
MESSAGE_PROPOSAL = "proposal"
MESSAGE_ERROR = "error"
