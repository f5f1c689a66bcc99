"""
Observable progress of a payment negotiation.

The negotiator never logs directly. It emits :class:`NegotiationEvent` objects
to an :class:`EventSink`, and the sink decides how (or whether) to render them.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from enum import Enum
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol

from loguru import logger
from pydantic import BaseModel, Field


class NegotiationState(str, Enum):
    UNPAID_REQUEST = "unpaid_request"
    QUOTE_RECEIVED = "quote_received"
    WALLET_RESOLVED = "wallet_resolved"
    ARTIFACT_SIGNED = "artifact_signed"
    PAID_REQUEST = "paid_request"
    DONE = "done"
    FAILED = "failed"


class NegotiationEventType(str, Enum):
    REQUEST_SENT = "request_sent"
    QUOTE_RECEIVED = "quote_received"
    WALLET_RESOLVED = "wallet_resolved"
    WALLET_SUBSTITUTED = "wallet_substituted"
    ARTIFACT_SIGNED = "artifact_signed"
    PAID_REQUEST_SENT = "paid_request_sent"
    RECEIPT_ESTIMATED = "receipt_estimated"
    COMPLETED = "completed"
    FAILED = "failed"


class NegotiationEvent(BaseModel):
    event_type: NegotiationEventType
    state: NegotiationState
    url: Optional[str] = None
    message: str = ""
    data: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class EventSink(Protocol):
    """Receives negotiation events. Implementations must not raise."""

    async def emit(self, event: NegotiationEvent) -> None:
        ...


class NullEventSink:
    async def emit(self, event: NegotiationEvent) -> None:
        return


class LoguruEventSink:
    """
    Renders events through loguru.

    Milestones go to INFO, substitutions and estimated receipts to WARNING,
    failures to ERROR. Protocol detail (event data) is logged at DEBUG only
    when ``verbose`` is set.
    """

    _LEVELS = {
        NegotiationEventType.WALLET_SUBSTITUTED: "WARNING",
        NegotiationEventType.RECEIPT_ESTIMATED: "WARNING",
        NegotiationEventType.FAILED: "ERROR",
        NegotiationEventType.REQUEST_SENT: "DEBUG",
        NegotiationEventType.WALLET_RESOLVED: "DEBUG",
    }

    def __init__(self, verbose: bool = False):
        self.verbose = verbose

    async def emit(self, event: NegotiationEvent) -> None:
        level = self._LEVELS.get(event.event_type, "INFO")
        logger.log(level, f"[x402 {event.state.value}] {event.message}")
        if self.verbose and event.data:
            logger.debug(f"[x402 {event.event_type.value}] {event.data}")


class MemoryEventSink:
    """Collects events in order; ``stream()`` yields them as they arrive."""

    def __init__(self) -> None:
        self.events: List[NegotiationEvent] = []
        self._queue: asyncio.Queue[Optional[NegotiationEvent]] = asyncio.Queue()
        self._closed = False

    async def emit(self, event: NegotiationEvent) -> None:
        self.events.append(event)
        if self._closed:
            return
        await self._queue.put(event)
        if event.event_type in {
            NegotiationEventType.COMPLETED,
            NegotiationEventType.FAILED,
        }:
            await self.close()

    async def close(self) -> None:
        if not self._closed:
            self._closed = True
            await self._queue.put(None)

    async def stream(self) -> AsyncIterator[NegotiationEvent]:
        while True:
            event = await self._queue.get()
            if event is None:
                break
            yield event

    def types(self) -> List[NegotiationEventType]:
        return [e.event_type for e in self.events]
