# Copyright (c) 2023-2025 Datalayer, Inc.
# Distributed under the terms of the MIT License.

"""
ItinerarySession: one streamed itinerary, from raw chunks to edit previews

ARCHITECTURE OVERVIEW:
=====================

Streaming phase:
- consume(fragment) feeds the StreamingParser
- every completed block is colored by the PlaceRegistry and handed to the
  GeocodeEnricher, which resolves coordinates in the background
- end_stream() flushes the parser and freezes the document

Editing phase:
- propose(...) computes a Proposal against the current snapshot
- apply_preview(...) shows the proposal; only one preview at a time
- revert_preview() restores the exact snapshot; accept_preview() keeps it

KEY DESIGN PRINCIPLES:
=====================

1. **Owned state**: parser, registry and previews belong to one session;
   the geocode cache is passed in and may be shared.

2. **Preview guard**: while a preview is active neither streamed content
   nor a second proposal may touch the document (PreviewConflict).

3. **Observable**: every change is reported through ``event_handler`` as
   (SessionEventType, data); handler failures are logged, never raised.

USAGE PATTERNS:
==============

session = ItinerarySession("trip-1", enricher=GeocodeEnricher(geocoder))
await session.consume("<h1>Day 1</h1><p>Visit <mark>Eiffel")
await session.consume(" Tower</mark></p>")
document = await session.end_stream()
proposal = session.propose("n1", None, "<p>Dinner at <mark>Le Train Bleu</mark></p>")
preview = session.apply_preview(proposal)
session.revert_preview()
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Set, Union

from .constants import COLOR_PALETTE_SIZE
from .diff.engine import (
    Proposal,
    TextRange,
    apply,
    compute_proposal,
    preview_ranges,
    revert,
)
from .diff.operations import proposal_for_instruction
from .errors import (
    EnrichmentUnresolved,
    ParseDegraded,
    PreviewConflict,
    StreamEnded,
    UnknownProposal,
)
from .model.document import Document
from .model.nodes import UNRESOLVED, Coordinate
from .model.parser import DocumentDelta, StreamingParser, parse_fragment
from .places.geocode import (
    GeocodeCache,
    GeocodeEnricher,
    GeocodeResult,
    Geocoder,
    apply_result,
    extract_context,
)
from .places.registry import PlaceRegistry

logger = logging.getLogger(__name__)


class SessionEventType(Enum):
    """Events reported by an itinerary session"""
    DOCUMENT_CHANGED = "document_changed"
    PLACE_RESOLVED = "place_resolved"
    ENRICHMENT_UNRESOLVED = "enrichment_unresolved"
    PREVIEW_APPLIED = "preview_applied"
    PREVIEW_REVERTED = "preview_reverted"
    PREVIEW_ACCEPTED = "preview_accepted"
    STREAM_ENDED = "stream_ended"
    STREAM_CANCELLED = "stream_cancelled"


EventHandler = Callable[[SessionEventType, Dict[str, Any]], None]


@dataclass
class Preview:
    """An applied, not yet reverted or accepted proposal"""
    proposal: Proposal
    inverse: Proposal
    base: Document
    document: Document
    ranges: List[TextRange] = field(default_factory=list)


class ItinerarySession:
    def __init__(self, doc_id: str,
                 enricher: Optional[GeocodeEnricher] = None,
                 registry: Optional[PlaceRegistry] = None,
                 palette_size: int = COLOR_PALETTE_SIZE,
                 event_handler: Optional[EventHandler] = None):
        self.doc_id = doc_id
        self.parser = StreamingParser()
        self.registry = registry if registry is not None else PlaceRegistry(palette_size)
        self.enricher = enricher
        self.event_handler = event_handler
        self.issues: List[ParseDegraded] = []
        self.enrichment_errors: List[EnrichmentUnresolved] = []
        # destination appended to lookups once a heading names it
        self.context: Optional[str] = None
        self._frozen: Optional[Document] = None
        self._preview: Optional[Preview] = None
        self._proposals: Dict[str, Proposal] = {}
        self._tasks: Set[asyncio.Task] = set()

    ###########################################################################
    # State

    @property
    def ended(self) -> bool:
        return self._frozen is not None

    @property
    def preview(self) -> Optional[Preview]:
        return self._preview

    @property
    def preview_active(self) -> bool:
        return self._preview is not None

    @property
    def document(self) -> Document:
        """The document as currently shown: preview, frozen, or still streaming"""
        if self._preview is not None:
            return self._preview.document
        if self._frozen is not None:
            return self._frozen
        return self.parser.document

    @property
    def outstanding_lookups(self) -> int:
        return len(self._tasks)

    def _emit(self, event_type: SessionEventType, **data) -> None:
        if not self.event_handler:
            return
        payload = {"doc_id": self.doc_id, "document": self.document}
        payload.update(data)
        try:
            self.event_handler(event_type, payload)
        except Exception as e:
            logger.error(f"❌ [Session] Event handler failed for {event_type.value} on {self.doc_id}: {e}")

    ###########################################################################
    # Streaming

    async def consume(self, fragment: str) -> DocumentDelta:
        """Feed the next fragment of the stream.

        Raises:
            PreviewConflict: If a preview is active
            StreamEnded: If end_stream() or cancel() was called
        """
        if self._preview is not None:
            raise PreviewConflict("Revert the active preview before streaming more content")
        if self._frozen is not None:
            raise StreamEnded(f"Stream for '{self.doc_id}' has already ended")
        delta = self.parser.consume(fragment)
        self.issues.extend(delta.issues)
        if delta.added:
            self._refresh_places(delta.document)
            self._emit(SessionEventType.DOCUMENT_CHANGED, added=len(delta.added))
        return delta

    async def end_stream(self) -> Document:
        """Flush the parser and freeze the document; idempotent"""
        if self._preview is not None:
            raise PreviewConflict("Revert the active preview before ending the stream")
        if self._frozen is not None:
            return self._frozen
        self._frozen = self.parser.flush()
        self._refresh_places(self._frozen, retry_unresolved=True)
        logger.info(f"🏁 [Session] Stream for {self.doc_id} ended with "
                    f"{len(self._frozen.children)} blocks")
        self._emit(SessionEventType.STREAM_ENDED)
        return self._frozen

    def cancel(self) -> Document:
        """Abort the stream.

        The buffered, incomplete tail is discarded and the completed blocks
        are kept as the final document. Pending enrichment follow-ups are
        stopped; lookups already running still complete into the cache.
        """
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()
        if self._frozen is None:
            self._frozen = self.parser.document.copy()
            discarded = len(self.parser.pending_text)
            self.parser.reset()
            logger.info(f"🛑 [Session] Stream for {self.doc_id} cancelled, "
                        f"{discarded} buffered chars discarded")
            self._emit(SessionEventType.STREAM_CANCELLED, discarded=discarded)
        return self._frozen

    async def enrich(self, retry_unresolved: bool = True) -> int:
        """Run an enrichment pass over the current document.

        Returns:
            Number of names scheduled for an external lookup
        """
        return self._refresh_places(self.document, retry_unresolved=retry_unresolved)

    async def drain(self) -> None:
        """Wait until every scheduled lookup has been written back"""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _refresh_places(self, document: Document, retry_unresolved: bool = False) -> int:
        self.registry.scan(document)
        if self.enricher is None:
            return 0
        if self.context is None:
            self.context = extract_context(document)
            if self.context is not None:
                logger.info(f"🧭 [Session] {self.doc_id} is about '{self.context}'")
        enrichment = self.enricher.enrich_document(
            document, on_result=self._on_place_result, retry_unresolved=retry_unresolved,
            context=self.context)
        for name, result in enrichment.cached.items():
            self.registry.record_resolution(name, _as_resolution(result))
        for task in enrichment.tasks:
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        return len(enrichment.tasks)

    def _documents(self) -> List[Document]:
        documents = [self.parser.document]
        if self._frozen is not None:
            documents.append(self._frozen)
        if self._preview is not None:
            documents.extend([self._preview.base, self._preview.document])
        unique = []
        for document in documents:
            if not any(document is seen for seen in unique):
                unique.append(document)
        return unique

    async def _on_place_result(self, name: str, result: GeocodeResult,
                               error: Optional[EnrichmentUnresolved]) -> None:
        self.registry.record_resolution(name, _as_resolution(result))
        updated = sum(apply_result(document, name, result) for document in self._documents())
        if error is not None:
            self.enrichment_errors.append(error)
            logger.warning(f"⚠️ [Session] {error}")
            self._emit(SessionEventType.ENRICHMENT_UNRESOLVED, place_name=name, error=error)
        else:
            logger.debug(f"[Session] '{name}' resolved, {updated} mark(s) updated")
            self._emit(SessionEventType.PLACE_RESOLVED, place_name=name,
                       latitude=result.latitude, longitude=result.longitude)

    ###########################################################################
    # Editing

    def _content(self, content: Union[str, Sequence]) -> List:
        if isinstance(content, str):
            return parse_fragment(content)
        return list(content)

    def propose(self, from_id: Optional[str], to_id: Optional[str],
                content: Union[str, Sequence] = ()) -> Proposal:
        """Compute a proposal replacing everything between two anchors.

        Args:
            from_id: Anchor before the edit, None for the document start
            to_id: Anchor after the edit, None for the document end
            content: Block nodes or markup to insert

        Raises:
            PreviewConflict: If a preview is active
            BoundaryNotFound: If an anchor does not resolve
        """
        if self._preview is not None:
            raise PreviewConflict("A preview is already active; revert it first")
        proposal = compute_proposal(self.document, from_id, to_id, self._content(content))
        self._proposals[proposal.proposal_id] = proposal
        return proposal

    def propose_instruction(self, operation: str, target_id: str,
                            content: Union[str, Sequence] = ()) -> Proposal:
        """Compute a proposal from an insert_before/insert_after/replace/delete instruction"""
        if self._preview is not None:
            raise PreviewConflict("A preview is already active; revert it first")
        proposal = proposal_for_instruction(self.document, operation, target_id,
                                            self._content(content))
        self._proposals[proposal.proposal_id] = proposal
        return proposal

    def get_proposal(self, proposal_id: str) -> Proposal:
        try:
            return self._proposals[proposal_id]
        except KeyError:
            raise UnknownProposal(proposal_id)

    def apply_preview(self, proposal: Union[Proposal, str]) -> Preview:
        """Apply a proposal as a preview.

        Raises:
            PreviewConflict: If another preview is still active
            BoundaryNotFound: If the proposal no longer fits the document
        """
        if self._preview is not None:
            raise PreviewConflict("A preview is already active; revert it first")
        if isinstance(proposal, str):
            proposal = self.get_proposal(proposal)
        base = self.document
        new_document, inverse = apply(base, proposal)
        preview = Preview(proposal, inverse, base, new_document, preview_ranges(base, inverse))
        self._preview = preview

        inserted_ids = {block.id for op in inverse.inverse_operations for block in op.content}
        inserted = Document([block for block in new_document.children if block.id in inserted_ids])
        self._refresh_places(inserted)
        logger.info(f"👁️ [Session] Preview {proposal.proposal_id} applied to {self.doc_id}")
        self._emit(SessionEventType.PREVIEW_APPLIED, proposal_id=proposal.proposal_id,
                   ranges=preview.ranges)
        return preview

    def revert_preview(self) -> Document:
        """Undo the active preview; returns the restored snapshot"""
        if self._preview is None:
            raise PreviewConflict("No preview to revert")
        preview = self._preview
        restored = revert(preview.document, preview.inverse)
        self._preview = None
        if self._frozen is not None:
            self._frozen = restored
        # restored blocks missed any lookup that completed during the preview
        self._refresh_places(restored)
        logger.info(f"↩️ [Session] Preview {preview.proposal.proposal_id} reverted on {self.doc_id}")
        self._emit(SessionEventType.PREVIEW_REVERTED, proposal_id=preview.proposal.proposal_id)
        return restored

    def accept_preview(self) -> Document:
        """Keep the active preview as the document"""
        if self._preview is None:
            raise PreviewConflict("No preview to accept")
        if self._frozen is None:
            raise PreviewConflict("A preview can only be accepted after the stream has ended")
        preview = self._preview
        self._frozen = preview.document
        self._preview = None
        self._proposals.pop(preview.proposal.proposal_id, None)
        logger.info(f"✅ [Session] Preview {preview.proposal.proposal_id} accepted on {self.doc_id}")
        self._emit(SessionEventType.PREVIEW_ACCEPTED, proposal_id=preview.proposal.proposal_id)
        return self._frozen


def _as_resolution(result: GeocodeResult):
    return result if isinstance(result, Coordinate) else UNRESOLVED


class SessionManager:
    """Owns the sessions of one server and the geocode cache they share"""

    def __init__(self, geocoder: Optional[Geocoder] = None,
                 cache: Optional[GeocodeCache] = None,
                 palette_size: int = COLOR_PALETTE_SIZE,
                 event_handler: Optional[EventHandler] = None):
        self.cache = cache if cache is not None else GeocodeCache()
        self.enricher = GeocodeEnricher(geocoder, self.cache) if geocoder is not None else None
        self.palette_size = palette_size
        self.event_handler = event_handler
        self.sessions: Dict[str, ItinerarySession] = {}

    def get_session(self, doc_id: str) -> Optional[ItinerarySession]:
        return self.sessions.get(doc_id)

    def get_or_create(self, doc_id: str) -> ItinerarySession:
        session = self.sessions.get(doc_id)
        if session is None:
            session = ItinerarySession(doc_id, enricher=self.enricher,
                                       palette_size=self.palette_size,
                                       event_handler=self.event_handler)
            self.sessions[doc_id] = session
            logger.info(f"📄 [SessionManager] Created session {doc_id}")
        return session

    def remove(self, doc_id: str) -> bool:
        session = self.sessions.pop(doc_id, None)
        if session is None:
            return False
        session.cancel()
        logger.info(f"🗑️ [SessionManager] Removed session {doc_id}")
        return True

    def list_sessions(self) -> List[str]:
        return list(self.sessions.keys())

    async def close(self) -> None:
        """Cancel every session and release the geocoder's resources"""
        for doc_id in list(self.sessions):
            self.remove(doc_id)
        close = getattr(self.enricher.geocoder, "close", None) if self.enricher else None
        if close is not None:
            await close()
            logger.info("🔌 [SessionManager] Geocoder closed")
