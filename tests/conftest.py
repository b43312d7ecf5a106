# Copyright (c) 2023-2025 Datalayer, Inc.
# Distributed under the terms of the MIT License.

import asyncio

import pytest

from itinerary_stream.model.nodes import Coordinate

PLACES = {
    "Eiffel Tower": Coordinate(48.8584, 2.2945),
    "Louvre": Coordinate(48.8606, 2.3376),
    "Colosseum": Coordinate(41.8902, 12.4922),
}


class FakeGeocoder:
    """In-memory geocoder recording every lookup.

    Names listed in ``failing`` raise a transport error. When ``gate`` is
    set, lookups block until it is released.
    """

    def __init__(self, places=None, failing=(), gate=None):
        self.places = dict(PLACES if places is None else places)
        self.failing = set(failing)
        self.gate = gate
        self.calls = []

    async def lookup(self, name):
        self.calls.append(name)
        if self.gate is not None:
            await self.gate.wait()
        else:
            await asyncio.sleep(0)
        if name in self.failing:
            raise ConnectionError(f"geocoder unreachable for {name}")
        return self.places.get(name)


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def geocoder():
    return FakeGeocoder()


@pytest.fixture
def clock():
    return FakeClock()
