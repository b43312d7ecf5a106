# Copyright (c) 2023-2025 Datalayer, Inc.
# Distributed under the terms of the MIT License.

import json

import pytest
from mcp.types import TextContent

from itinerary_stream.mcp.server import TOOLS, ItineraryMCPServer
from itinerary_stream.model.nodes import Coordinate


class StaticGeocoder:
    async def lookup(self, name):
        return {"Louvre": Coordinate(48.8606, 2.3376)}.get(name)


def payload(result):
    assert len(result) == 1
    assert isinstance(result[0], TextContent)
    return json.loads(result[0].text)


class TestItineraryMCPServer:
    """Test suite for the Itinerary MCP Server"""

    @pytest.fixture
    def server(self):
        """Create a fresh MCP server instance for each test"""
        return ItineraryMCPServer()

    async def stream(self, server, doc_id, *chunks):
        for chunk in chunks:
            await server.call_tool("stream_chunk", {"doc_id": doc_id, "text": chunk})
        return payload(await server.call_tool("end_stream", {"doc_id": doc_id}))

    @pytest.mark.asyncio
    async def test_server_initialization(self, server):
        """Test that the server initializes correctly"""
        assert server.server.name == "Itinerary MCP Server"
        assert server.session_manager is not None
        assert {tool.name for tool in TOOLS} == set(server._handlers)

    @pytest.mark.asyncio
    async def test_get_new_document(self, server):
        """Test getting a document that does not exist yet"""
        data = payload(await server.call_tool("get_document", {"doc_id": "trip-new"}))
        assert data["success"] is True
        assert data["doc_id"] == "trip-new"
        assert data["lexical_json"]["root"]["children"] == []
        assert data["markup"] == ""
        assert data["ended"] is False

    @pytest.mark.asyncio
    async def test_stream_chunks(self, server):
        """Test streaming a document split inside a tag"""
        first = payload(await server.call_tool("stream_chunk", {"doc_id": "trip", "text": "<h1>Day"}))
        assert first["added_ids"] == []
        assert first["pending"] == len("<h1>Day")

        second = payload(await server.call_tool(
            "stream_chunk", {"doc_id": "trip", "text": " 1</h1><p>Visit <mark>Louvre</mark></p>"}))
        assert second["added_ids"] == ["n1", "n2"]

        data = payload(await server.call_tool("end_stream", {"doc_id": "trip"}))
        assert data["ended"] is True
        assert data["markup"] == '<h1 id="n1">Day 1</h1><p id="n2">Visit <mark color="0">Louvre</mark></p>'

    @pytest.mark.asyncio
    async def test_propose_apply_revert(self, server):
        """Test the preview lifecycle through the tools"""
        before = (await self.stream(server, "trip", "<p>a</p><p>b</p><p>c</p>"))["markup"]

        proposal = payload(await server.call_tool("propose_edit", {
            "doc_id": "trip", "from_id": "n1", "to_id": "n3", "content": "<p>B</p>"}))
        assert proposal["success"] is True
        proposal_id = proposal["proposal"]["proposal_id"]
        assert proposal["proposal"]["inverse_operations"][0]["content"] == '<p id="n2">b</p>'

        applied = payload(await server.call_tool("apply_proposal",
                                                 {"doc_id": "trip", "proposal_id": proposal_id}))
        assert applied["preview_active"] is True
        assert applied["ranges"] == [{"start": len('<p id="n1">a</p>'),
                                      "end": len('<p id="n1">a</p><p id="n2">b</p>'),
                                      "inserted_size": len('<p id="n4">B</p>')}]

        reverted = payload(await server.call_tool("revert_proposal", {"doc_id": "trip"}))
        assert reverted["markup"] == before
        assert reverted["preview_active"] is False

    @pytest.mark.asyncio
    async def test_instruction_and_accept(self, server):
        """Test an instruction-style proposal that is accepted"""
        await self.stream(server, "trip", "<p>a</p><p>b</p>")
        proposal = payload(await server.call_tool("propose_edit", {
            "doc_id": "trip", "operation": "insert_before", "target_id": "n1",
            "content": "<h1>Intro</h1>"}))
        await server.call_tool("apply_proposal", {
            "doc_id": "trip", "proposal_id": proposal["proposal"]["proposal_id"]})

        data = payload(await server.call_tool("accept_proposal", {"doc_id": "trip"}))
        assert data["markup"].startswith('<h1 id="n3">Intro</h1>')

    @pytest.mark.asyncio
    async def test_errors_are_reported(self, server):
        """Test that failures come back as error payloads"""
        await self.stream(server, "trip", "<p>a</p>")

        data = payload(await server.call_tool("propose_edit",
                                              {"doc_id": "trip", "from_id": "n9", "to_id": None}))
        assert data["success"] is False
        assert data["error_type"] == "BoundaryNotFound"

        data = payload(await server.call_tool("apply_proposal",
                                              {"doc_id": "trip", "proposal_id": "missing"}))
        assert data["error_type"] == "UnknownProposal"

        data = payload(await server.call_tool("revert_proposal", {"doc_id": "trip"}))
        assert data["error_type"] == "PreviewConflict"

        data = payload(await server.call_tool("stream_chunk", {"doc_id": "trip", "text": "<p>x</p>"}))
        assert data["error_type"] == "StreamEnded"

        data = payload(await server.call_tool("no_such_tool", {}))
        assert data["error_type"] == "UnknownTool"

    @pytest.mark.asyncio
    async def test_list_places(self):
        """Test listing places after enrichment"""
        server = ItineraryMCPServer(geocoder=StaticGeocoder())
        await self.stream(server, "trip",
                          "<p><mark>Louvre</mark> then <mark>Atlantis</mark> and the <mark>louvre</mark></p>")
        await server.session_manager.get_session("trip").drain()

        data = payload(await server.call_tool("list_places", {"doc_id": "trip"}))
        assert data["places"] == [
            {"name": "Louvre", "color_index": 0, "latitude": 48.8606, "longitude": 2.3376,
             "mentions": 2},
            {"name": "Atlantis", "color_index": 1, "latitude": None, "longitude": None,
             "mentions": 1},
        ]

    @pytest.mark.asyncio
    async def test_multiple_documents(self, server):
        """Test that multiple documents are handled independently"""
        await self.stream(server, "trip-1", "<p>One</p>")
        await self.stream(server, "trip-2", "<p>Two</p><p>Three</p>")
        first = payload(await server.call_tool("get_document", {"doc_id": "trip-1"}))
        second = payload(await server.call_tool("get_document", {"doc_id": "trip-2"}))
        assert len(first["lexical_json"]["root"]["children"]) == 1
        assert len(second["lexical_json"]["root"]["children"]) == 2
