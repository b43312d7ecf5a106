# Copyright (c) 2023-2025 Datalayer, Inc.
# Distributed under the terms of the MIT License.

from .server import ItineraryWebSocketServer, Room, main

__all__ = ['ItineraryWebSocketServer', 'Room', 'main']
