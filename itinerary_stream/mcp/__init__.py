# Copyright (c) 2023-2025 Datalayer, Inc.
# Distributed under the terms of the MIT License.

from .server import ItineraryMCPServer, main

__all__ = ['ItineraryMCPServer', 'main']
