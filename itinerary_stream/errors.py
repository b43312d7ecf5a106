# Copyright (c) 2023-2025 Datalayer, Inc.
# Distributed under the terms of the MIT License.

"""
Error taxonomy for the itinerary pipeline.

Recoverable conditions (ParseDegraded, EnrichmentUnresolved) are reported
alongside results and never abort the stream. Boundary and preview errors
abort the request that raised them and leave the document untouched.
"""

from typing import Optional


class ItineraryError(Exception):
    """Base class for all itinerary pipeline errors"""


class ParseDegraded(ItineraryError):
    """Malformed markup was recovered from instead of parsed exactly."""

    def __init__(self, reason: str, offset: int = 0, excerpt: str = ""):
        self.reason = reason
        self.offset = offset
        self.excerpt = excerpt
        super().__init__(f"{reason} at offset {offset}: {excerpt[:40]!r}")


class EnrichmentUnresolved(ItineraryError):
    """A place name could not be resolved to coordinates."""

    def __init__(self, place_name: str, cause: Optional[BaseException] = None):
        self.place_name = place_name
        self.cause = cause
        detail = f" ({cause})" if cause else ""
        super().__init__(f"Could not resolve place '{place_name}'{detail}")


class BoundaryNotFound(ItineraryError):
    """An anchor id does not resolve to exactly one top-level node."""

    def __init__(self, anchor_id: Optional[str], reason: str = "not found"):
        self.anchor_id = anchor_id
        self.reason = reason
        super().__init__(f"Boundary '{anchor_id}' {reason}")


class BoundaryOrderError(BoundaryNotFound):
    """Both anchors resolve but the start anchor does not precede the end."""

    def __init__(self, from_id: Optional[str], to_id: Optional[str]):
        self.from_id = from_id
        self.to_id = to_id
        super().__init__(from_id, f"does not precede '{to_id}'")


class PreviewConflict(ItineraryError):
    """An operation is not allowed in the current preview state."""


class InvalidProposal(ItineraryError):
    """Proposal content or wire payload is outside the node vocabulary."""


class UnknownProposal(ItineraryError):
    """A proposal id was not issued by this session."""

    def __init__(self, proposal_id: str):
        self.proposal_id = proposal_id
        super().__init__(f"Unknown proposal '{proposal_id}'")


class StreamEnded(ItineraryError):
    """Content arrived after the stream was explicitly ended."""
