# Copyright (c) 2023-2025 Datalayer, Inc.
# Distributed under the terms of the MIT License.

"""
Websocket surface for streamed itineraries.

Each connection path names a document room. Clients in a room share one
ItinerarySession: any of them may stream chunks or drive proposals, and
every session event is broadcast to all of them as a ``document-update``
message carrying the document as Lexical JSON and canonical markup.
"""

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional, Set

import click
from websockets.asyncio.server import serve
from websockets.exceptions import ConnectionClosed

from ..constants import (
    MESSAGE_ACCEPT,
    MESSAGE_APPLY,
    MESSAGE_CANCEL,
    MESSAGE_CHUNK,
    MESSAGE_DOCUMENT_UPDATE,
    MESSAGE_END,
    MESSAGE_ERROR,
    MESSAGE_KEEPALIVE,
    MESSAGE_PROPOSAL,
    MESSAGE_PROPOSE,
    MESSAGE_QUERY_SNAPSHOT,
    MESSAGE_REVERT,
)
from ..diff.engine import proposal_to_dict
from ..errors import ItineraryError
from ..model.lexical_converter import document_to_lexical
from ..model.markup import blocks_to_markup
from ..places.geocode import GeocodeCache, Geocoder
from ..places.nominatim import build_geocoder
from ..session import ItinerarySession, SessionEventType, SessionManager
from ..settings import settings

logger = logging.getLogger(__name__)


def conn_label(conn) -> str:
    address = getattr(conn, "remote_address", None)
    return f"conn-{address[0]}:{address[1]}" if address else "unknown"


class Room:
    """Connections sharing one document session"""

    def __init__(self, name: str, session: ItinerarySession):
        self.name = name
        self.session = session
        self.conns: List[Any] = []
        self.pending_events: List[Dict[str, Any]] = []


def update_message(session: ItinerarySession, event: Optional[str] = None,
                   extra: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    document = session.document
    message = {
        "type": MESSAGE_DOCUMENT_UPDATE,
        "docId": session.doc_id,
        "event": event,
        "lexical_json": document_to_lexical(document),
        "markup": blocks_to_markup(document.children),
        "ended": session.ended,
        "preview_active": session.preview_active,
    }
    if extra:
        message.update(extra)
    return message


def _event_extra(data: Dict[str, Any]) -> Dict[str, Any]:
    extra = {}
    for key, value in data.items():
        if key in ("doc_id", "document"):
            continue
        if key == "ranges":
            value = [r._asdict() for r in value]
        elif key == "error":
            value = str(value)
        extra[key] = value
    return extra


class ItineraryWebSocketServer:
    """Websocket server hosting one session per document path"""

    def __init__(self, host: str = "localhost", port: int = 3002,
                 geocoder: Optional[Geocoder] = None,
                 cache: Optional[GeocodeCache] = None):
        self.host = host
        self.port = port
        self.server = None
        self.running = False
        self.rooms: Dict[str, Room] = {}
        self._flush_tasks: Set[asyncio.Task] = set()
        self.session_manager = SessionManager(
            geocoder=geocoder,
            cache=cache if cache is not None else GeocodeCache(ttl_seconds=settings.geocode_ttl_s),
            palette_size=settings.color_palette_size,
            event_handler=self._on_session_event,
        )

    def get_room(self, name: str) -> Room:
        room = self.rooms.get(name)
        if room is None:
            room = Room(name, self.session_manager.get_or_create(name))
            self.rooms[name] = room
        return room

    ###########################################################################
    # Events

    def _on_session_event(self, event_type: SessionEventType, data: Dict[str, Any]) -> None:
        room = self.rooms.get(data["doc_id"])
        if room is None:
            return
        room.pending_events.append(
            update_message(room.session, event_type.value, _event_extra(data)))
        # enrichment results arrive outside of any client message
        try:
            task = asyncio.get_running_loop().create_task(self.flush_events(room))
        except RuntimeError:
            logger.debug(f"[Server] No running loop, {event_type.value} stays queued")
            return
        self._flush_tasks.add(task)
        task.add_done_callback(self._flush_tasks.discard)

    async def flush_events(self, room: Room) -> None:
        while room.pending_events:
            message = room.pending_events.pop(0)
            await self.broadcast(room, message)

    async def broadcast(self, room: Room, message: Dict[str, Any]) -> None:
        payload = json.dumps(message)
        for conn in list(room.conns):
            try:
                await conn.send(payload)
            except ConnectionClosed:
                logger.debug(f"[Server] Dropping closed connection {conn_label(conn)}")
                self.close_conn(room, conn)

    ###########################################################################
    # Messages

    async def handle_message(self, conn, room: Room, raw) -> None:
        if isinstance(raw, bytes):
            try:
                raw = raw.decode("utf-8")
            except UnicodeDecodeError:
                await self.send_error(conn, None, ValueError("Binary messages are not supported"))
                return
        try:
            message = json.loads(raw)
            message_type = message["type"]
        except (ValueError, KeyError, TypeError) as e:
            await self.send_error(conn, None, ValueError(f"Invalid message: {e}"))
            return

        handler = self._handlers().get(message_type)
        if handler is None:
            await self.send_error(conn, message_type, ValueError(f"Unknown message type: {message_type}"))
            return
        try:
            await handler(conn, room, message)
        except ItineraryError as e:
            logger.warning(f"⚠️ [Server] {message_type} on {room.name} failed: {e}")
            await self.send_error(conn, message_type, e)
        except (ValueError, TypeError) as e:
            logger.warning(f"⚠️ [Server] Bad {message_type} request on {room.name}: {e}")
            await self.send_error(conn, message_type, e)
        await self.flush_events(room)

    def _handlers(self):
        return {
            MESSAGE_CHUNK: self.handle_chunk,
            MESSAGE_END: self.handle_end,
            MESSAGE_CANCEL: self.handle_cancel,
            MESSAGE_QUERY_SNAPSHOT: self.handle_query_snapshot,
            MESSAGE_PROPOSE: self.handle_propose,
            MESSAGE_APPLY: self.handle_apply,
            MESSAGE_REVERT: self.handle_revert,
            MESSAGE_ACCEPT: self.handle_accept,
            MESSAGE_KEEPALIVE: self.handle_keepalive,
        }

    async def send_error(self, conn, request: Optional[str], error: Exception) -> None:
        await conn.send(json.dumps({
            "type": MESSAGE_ERROR,
            "request": request,
            "error": str(error),
            "error_type": type(error).__name__,
        }))

    async def handle_chunk(self, conn, room: Room, message: Dict[str, Any]) -> None:
        delta = await room.session.consume(message.get("text", ""))
        logger.debug(f"[Server] {room.name}: +{len(delta.added)} blocks, {delta.pending} pending")

    async def handle_end(self, conn, room: Room, message: Dict[str, Any]) -> None:
        await room.session.end_stream()

    async def handle_cancel(self, conn, room: Room, message: Dict[str, Any]) -> None:
        room.session.cancel()

    async def handle_query_snapshot(self, conn, room: Room, message: Dict[str, Any]) -> None:
        await conn.send(json.dumps(update_message(room.session, "snapshot")))

    async def handle_propose(self, conn, room: Room, message: Dict[str, Any]) -> None:
        session = room.session
        content = message.get("content", "")
        if message.get("operation"):
            proposal = session.propose_instruction(message["operation"],
                                                   message.get("target_id"), content)
        else:
            proposal = session.propose(message.get("from_id"), message.get("to_id"), content)
        await conn.send(json.dumps({
            "type": MESSAGE_PROPOSAL,
            "docId": room.name,
            "proposal": proposal_to_dict(proposal),
        }))

    async def handle_apply(self, conn, room: Room, message: Dict[str, Any]) -> None:
        room.session.apply_preview(message.get("proposal_id", ""))

    async def handle_revert(self, conn, room: Room, message: Dict[str, Any]) -> None:
        room.session.revert_preview()

    async def handle_accept(self, conn, room: Room, message: Dict[str, Any]) -> None:
        room.session.accept_preview()

    async def handle_keepalive(self, conn, room: Room, message: Dict[str, Any]) -> None:
        await conn.send(json.dumps({"type": MESSAGE_KEEPALIVE, "docId": room.name}))

    ###########################################################################
    # Connections

    def close_conn(self, room: Room, conn) -> None:
        if conn in room.conns:
            room.conns.remove(conn)
            logger.info(f"💔 [Server] {conn_label(conn)} left {room.name}, "
                        f"{len(room.conns)} remaining")

    async def setup_connection(self, conn) -> None:
        name = conn.request.path.strip("/") or "default"
        room = self.get_room(name)
        room.conns.append(conn)
        logger.info(f"🔗 [Server] {conn_label(conn)} joined {room.name}")
        try:
            await conn.send(json.dumps(update_message(room.session, "snapshot")))
            async for raw in conn:
                await self.handle_message(conn, room, raw)
        except ConnectionClosed:
            logger.debug(f"[Server] Connection {conn_label(conn)} closed")
        finally:
            self.close_conn(room, conn)

    async def start(self) -> None:
        """Start serving and block until the server is closed"""
        logger.info(f"🚀 Starting itinerary websocket server on ws://{self.host}:{self.port}")
        self.running = True
        self.server = await serve(self.setup_connection, self.host, self.port)
        try:
            await self.server.wait_closed()
        finally:
            await self.stop()

    async def stop(self) -> None:
        if not self.running:
            return
        logger.info("🛑 Stopping itinerary websocket server...")
        self.running = False
        if self._flush_tasks:
            await asyncio.gather(*list(self._flush_tasks), return_exceptions=True)
        self.rooms.clear()
        await self.session_manager.close()
        if self.server:
            self.server.close()
            await self.server.wait_closed()


@click.command()
@click.option("--host", default=settings.websocket_host, help="Host to bind")
@click.option("--port", default=settings.websocket_port, type=int, help="Port to bind")
@click.option("--geocoder", type=click.Choice(["nominatim", "none"]),
              default=settings.geocoder, help="Place geocoding backend")
@click.option("--log-level", default=settings.log_level,
              type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False))
def main(host: str, port: int, geocoder: str, log_level: str):
    """Start the itinerary websocket server"""
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    server = ItineraryWebSocketServer(host, port, geocoder=build_geocoder(geocoder))
    try:
        asyncio.run(server.start())
    except KeyboardInterrupt:
        logger.info("✅ Server shutdown complete")


if __name__ == "__main__":
    main()
