# Copyright (c) 2023-2025 Datalayer, Inc.
# Distributed under the terms of the MIT License.

"""
MCP Server for streamed itineraries

This module exposes itinerary sessions as MCP (Model Context Protocol) tools
so that a planning agent can stream a document and then edit it through
boundary-anchored proposals.

KEY FEATURES:
============

Streaming:
- stream_chunk: Feed the next markup fragment of a document
- end_stream: Flush and freeze the document
- get_document: Document as Lexical JSON and canonical markup

Editing:
- propose_edit: Proposal between two anchors, or from an
  insert_before/insert_after/replace/delete instruction
- apply_proposal / revert_proposal / accept_proposal: preview lifecycle

Places:
- list_places: Deduplicated places with colors and coordinates

Every tool answers with a single JSON TextContent carrying ``success``;
failures add ``error`` and ``error_type``.
"""

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional

import click
from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool

from ..diff.engine import proposal_to_dict
from ..errors import ItineraryError
from ..model.lexical_converter import document_to_lexical
from ..model.markup import blocks_to_markup
from ..places.geocode import GeocodeCache, Geocoder
from ..places.nominatim import build_geocoder
from ..session import ItinerarySession, SessionManager
from ..settings import settings

logger = logging.getLogger(__name__)

###############################################################################
# Tool schemas

_DOC_ID = {"type": "string", "description": "The unique identifier of the document"}
_ANCHOR = {"type": ["string", "null"],
           "description": "StableId of the bounding block, null for the document edge"}

TOOLS = [
    Tool(
        name="get_document",
        description="Get the document as Lexical JSON and canonical markup",
        inputSchema={"type": "object", "properties": {"doc_id": _DOC_ID},
                     "required": ["doc_id"]},
    ),
    Tool(
        name="stream_chunk",
        description="Feed the next fragment of streamed itinerary markup",
        inputSchema={"type": "object",
                     "properties": {"doc_id": _DOC_ID,
                                    "text": {"type": "string", "description": "Markup fragment"}},
                     "required": ["doc_id", "text"]},
    ),
    Tool(
        name="end_stream",
        description="Signal the end of the stream and freeze the document",
        inputSchema={"type": "object", "properties": {"doc_id": _DOC_ID},
                     "required": ["doc_id"]},
    ),
    Tool(
        name="propose_edit",
        description=("Compute an edit proposal. Either give from_id/to_id anchors, or an "
                     "operation (insert_before, insert_after, replace, delete) and target_id"),
        inputSchema={"type": "object",
                     "properties": {
                         "doc_id": _DOC_ID,
                         "from_id": _ANCHOR,
                         "to_id": _ANCHOR,
                         "operation": {"type": "string",
                                       "enum": ["insert_before", "insert_after", "replace", "delete"]},
                         "target_id": {"type": "string"},
                         "content": {"type": "string", "description": "Markup of the new blocks"},
                     },
                     "required": ["doc_id"]},
    ),
    Tool(
        name="apply_proposal",
        description="Apply a proposal as a preview",
        inputSchema={"type": "object",
                     "properties": {"doc_id": _DOC_ID, "proposal_id": {"type": "string"}},
                     "required": ["doc_id", "proposal_id"]},
    ),
    Tool(
        name="revert_proposal",
        description="Revert the active preview",
        inputSchema={"type": "object", "properties": {"doc_id": _DOC_ID},
                     "required": ["doc_id"]},
    ),
    Tool(
        name="accept_proposal",
        description="Keep the active preview as the document",
        inputSchema={"type": "object", "properties": {"doc_id": _DOC_ID},
                     "required": ["doc_id"]},
    ),
    Tool(
        name="list_places",
        description="List the places mentioned in the document",
        inputSchema={"type": "object", "properties": {"doc_id": _DOC_ID},
                     "required": ["doc_id"]},
    ),
]


def document_payload(session: ItinerarySession) -> Dict[str, Any]:
    document = session.document
    return {
        "lexical_json": document_to_lexical(document),
        "markup": blocks_to_markup(document.children),
        "ended": session.ended,
        "preview_active": session.preview_active,
    }


class ItineraryMCPServer:
    """MCP tool surface over a SessionManager"""

    def __init__(self, geocoder: Optional[Geocoder] = None,
                 session_manager: Optional[SessionManager] = None):
        self.server = Server("Itinerary MCP Server")
        self.session_manager = session_manager or SessionManager(
            geocoder=geocoder,
            cache=GeocodeCache(ttl_seconds=settings.geocode_ttl_s),
            palette_size=settings.color_palette_size,
        )
        self._handlers = {
            "get_document": self._get_document,
            "stream_chunk": self._stream_chunk,
            "end_stream": self._end_stream,
            "propose_edit": self._propose_edit,
            "apply_proposal": self._apply_proposal,
            "revert_proposal": self._revert_proposal,
            "accept_proposal": self._accept_proposal,
            "list_places": self._list_places,
        }
        self._setup_handlers()

    def _setup_handlers(self):
        @self.server.list_tools()
        async def list_tools() -> List[Tool]:
            return TOOLS

        @self.server.call_tool()
        async def call_tool(name: str, arguments: Dict[str, Any]) -> List[TextContent]:
            return await self.call_tool(name, arguments)

    async def call_tool(self, name: str, arguments: Dict[str, Any]) -> List[TextContent]:
        handler = self._handlers.get(name)
        if handler is None:
            return self._respond({"success": False, "error": f"Unknown tool: {name}",
                                  "error_type": "UnknownTool"})
        return await handler(arguments or {})

    def _respond(self, payload: Dict[str, Any]) -> List[TextContent]:
        return [TextContent(type="text", text=json.dumps(payload))]

    def _failure(self, doc_id: Optional[str], error: Exception) -> List[TextContent]:
        if isinstance(error, ItineraryError):
            logger.warning(f"⚠️ MCP SERVER: {type(error).__name__} on {doc_id}: {error}")
        else:
            logger.error(f"❌ MCP SERVER: Unexpected error on {doc_id}: {error}")
        return self._respond({
            "success": False,
            "doc_id": doc_id,
            "error": str(error),
            "error_type": type(error).__name__,
        })

    ###########################################################################
    # Tool implementations

    async def _get_document(self, arguments: Dict[str, Any]) -> List[TextContent]:
        doc_id = arguments.get("doc_id", "default")
        try:
            session = self.session_manager.get_or_create(doc_id)
            payload = {"success": True, "doc_id": doc_id}
            payload.update(document_payload(session))
            return self._respond(payload)
        except Exception as e:
            return self._failure(doc_id, e)

    async def _stream_chunk(self, arguments: Dict[str, Any]) -> List[TextContent]:
        doc_id = arguments.get("doc_id", "default")
        try:
            session = self.session_manager.get_or_create(doc_id)
            delta = await session.consume(arguments.get("text", ""))
            return self._respond({
                "success": True,
                "doc_id": doc_id,
                "added_ids": [block.id for block in delta.added],
                "pending": delta.pending,
                "issues": [str(issue) for issue in delta.issues],
            })
        except Exception as e:
            return self._failure(doc_id, e)

    async def _end_stream(self, arguments: Dict[str, Any]) -> List[TextContent]:
        doc_id = arguments.get("doc_id", "default")
        try:
            session = self.session_manager.get_or_create(doc_id)
            await session.end_stream()
            payload = {"success": True, "doc_id": doc_id}
            payload.update(document_payload(session))
            return self._respond(payload)
        except Exception as e:
            return self._failure(doc_id, e)

    async def _propose_edit(self, arguments: Dict[str, Any]) -> List[TextContent]:
        doc_id = arguments.get("doc_id", "default")
        try:
            session = self.session_manager.get_or_create(doc_id)
            content = arguments.get("content", "")
            if arguments.get("operation"):
                proposal = session.propose_instruction(
                    arguments["operation"], arguments.get("target_id"), content)
            else:
                proposal = session.propose(arguments.get("from_id"), arguments.get("to_id"), content)
            return self._respond({"success": True, "doc_id": doc_id,
                                  "proposal": proposal_to_dict(proposal)})
        except Exception as e:
            return self._failure(doc_id, e)

    async def _apply_proposal(self, arguments: Dict[str, Any]) -> List[TextContent]:
        doc_id = arguments.get("doc_id", "default")
        try:
            session = self.session_manager.get_or_create(doc_id)
            preview = session.apply_preview(arguments.get("proposal_id", ""))
            payload = {
                "success": True,
                "doc_id": doc_id,
                "proposal_id": preview.proposal.proposal_id,
                "ranges": [r._asdict() for r in preview.ranges],
            }
            payload.update(document_payload(session))
            return self._respond(payload)
        except Exception as e:
            return self._failure(doc_id, e)

    async def _revert_proposal(self, arguments: Dict[str, Any]) -> List[TextContent]:
        doc_id = arguments.get("doc_id", "default")
        try:
            session = self.session_manager.get_or_create(doc_id)
            session.revert_preview()
            payload = {"success": True, "doc_id": doc_id}
            payload.update(document_payload(session))
            return self._respond(payload)
        except Exception as e:
            return self._failure(doc_id, e)

    async def _accept_proposal(self, arguments: Dict[str, Any]) -> List[TextContent]:
        doc_id = arguments.get("doc_id", "default")
        try:
            session = self.session_manager.get_or_create(doc_id)
            session.accept_preview()
            payload = {"success": True, "doc_id": doc_id}
            payload.update(document_payload(session))
            return self._respond(payload)
        except Exception as e:
            return self._failure(doc_id, e)

    async def _list_places(self, arguments: Dict[str, Any]) -> List[TextContent]:
        doc_id = arguments.get("doc_id", "default")
        try:
            session = self.session_manager.get_or_create(doc_id)
            places = []
            for place in session.registry.unique_places(session.document):
                places.append({
                    "name": place.name,
                    "color_index": place.color_index,
                    "latitude": place.coordinate.latitude if place.coordinate else None,
                    "longitude": place.coordinate.longitude if place.coordinate else None,
                    "mentions": place.mentions,
                })
            return self._respond({"success": True, "doc_id": doc_id, "places": places})
        except Exception as e:
            return self._failure(doc_id, e)

    async def run_stdio(self) -> None:
        try:
            async with stdio_server() as (read_stream, write_stream):
                await self.server.run(read_stream, write_stream,
                                      self.server.create_initialization_options())
        finally:
            await self.session_manager.close()


###############################################################################
# CLI

@click.group()
def main():
    """Itinerary MCP server"""


@main.command()
@click.option("--transport", type=click.Choice(["stdio"]), default="stdio",
              help="MCP transport")
@click.option("--geocoder", type=click.Choice(["nominatim", "none"]),
              default=settings.geocoder, help="Place geocoding backend")
@click.option("--log-level", default=settings.log_level,
              type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False))
def start(transport: str, geocoder: str, log_level: str):
    """Start the MCP server"""
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logger.info(f"🚀 Starting itinerary MCP server ({transport}, geocoder={geocoder})")
    mcp_server = ItineraryMCPServer(geocoder=build_geocoder(geocoder))
    try:
        asyncio.run(mcp_server.run_stdio())
    except KeyboardInterrupt:
        logger.info("🛑 MCP server stopped")


if __name__ == "__main__":
    main()
