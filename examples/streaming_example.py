#!/usr/bin/env python3
"""
ItinerarySession Example: Streaming, Enrichment and Edit Previews

This example feeds an itinerary to a session in small, arbitrarily split
chunks (as a language model would produce it), lets an in-memory geocoder
resolve the places, then previews, reverts and accepts an edit.
"""

import asyncio

from itinerary_stream.model.nodes import Coordinate
from itinerary_stream.places.geocode import GeocodeEnricher
from itinerary_stream.session import ItinerarySession

STREAM = (
    '<itinerary><h1>Two days in Paris</h1><h2>Day 1</h2><p>Morning at the '
    '<mark>Eiffel Tower</mark>, lunch near the <mark>Louvre</mark>.</p>'
    '<h2>Day 2</h2><ul><li>Walk to <mark>Montmartre</mark></li>'
    '<li>Evening cruise past the <mark>Eiffel Tower</mark></li></ul></itinerary>'
)


class DemoGeocoder:
    """Answers from a fixed table of Paris sights after a short delay"""

    PLACES = {
        "Eiffel Tower, Paris": Coordinate(48.8584, 2.2945),
        "Louvre, Paris": Coordinate(48.8606, 2.3376),
        "Montmartre, Paris": Coordinate(48.8867, 2.3431),
        "Musée d'Orsay, Paris": Coordinate(48.8600, 2.3266),
    }

    async def lookup(self, query):
        await asyncio.sleep(0.05)
        print(f"   🌍 lookup: {query}")
        return self.PLACES.get(query)


def show_event(event_type, data):
    extra = {k: v for k, v in data.items() if k not in ("doc_id", "document", "ranges")}
    print(f"   📣 {event_type.value} {extra if extra else ''}")


async def main():
    print("🧭 ItinerarySession Streaming Example")
    print("=" * 60)

    session = ItinerarySession("paris-trip", enricher=GeocodeEnricher(DemoGeocoder()),
                               event_handler=show_event)

    print("\n📡 Streaming in chunks of 17 characters...")
    for start in range(0, len(STREAM), 17):
        delta = await session.consume(STREAM[start:start + 17])
        if delta.added:
            print(f"   ✅ {len(delta.added)} block(s) completed, {delta.pending} chars pending")

    document = await session.end_stream()
    await session.drain()
    print(f"\n🧭 Destination: {session.context}")

    print("\n📍 Places:")
    for place in session.registry.unique_places(document):
        print(f"   🎨 color {place.color_index}: {place.name} x{place.mentions} -> {place.coordinate}")

    print("\n📄 Canonical markup:")
    print(f"   {document.to_markup()}")

    print("\n✏️ Proposing to insert a paragraph after n2...")
    proposal = session.propose("n2", "n3", "<p>Coffee break at <mark>Musée d'Orsay</mark>.</p>")
    preview = session.apply_preview(proposal)
    for text_range in preview.ranges:
        print(f"   🔍 markup[{text_range.start}:{text_range.end}] replaced by "
              f"{text_range.inserted_size} chars")
    await session.drain()

    before = document.to_markup()
    restored = session.revert_preview()
    print(f"   ↩️ Reverted, identical to before: {restored.to_markup() == before}")

    session.apply_preview(proposal)
    accepted = session.accept_preview()
    print(f"   ✅ Accepted, document now has {len(accepted.children)} blocks")


if __name__ == "__main__":
    asyncio.run(main())
