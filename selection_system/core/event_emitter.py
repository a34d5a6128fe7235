#!/usr/bin/env python3
"""
event_emitter.py - Outbound event hub for the selection system

Every event the coordinator produces (objectsSelected, updateWorkspace,
searchByEntity, clipboardSet, ...) goes through one EventEmitter. UI panels,
the clipboard bridge and tests subscribe as listeners.

Tiers decide who sees what:
    CRITICAL  selection changes and commands other components act on
    SYSTEM    re-dispatches, clipboard and publication side effects
    DEBUG     raw selection mirrors and no-op notices, hidden by default

Everything is kept in a bounded history regardless of tier.

    emitter = EventEmitter()
    emitter.add_listener(lambda event: print(event.event_type))
    emitter.emit("objectsSelected", {"vertices": [], "edges": []})
"""

import asyncio
import itertools
import logging
from collections import Counter, deque
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional, Set

logger = logging.getLogger(__name__)


class EventTier(Enum):
    CRITICAL = 1
    SYSTEM = 2
    DEBUG = 3


DEFAULT_STREAM_TIERS = frozenset({EventTier.CRITICAL, EventTier.SYSTEM})

EVENT_TIER_MAP: Dict[str, EventTier] = {
    # Selection state and commands
    "objectsSelected": EventTier.CRITICAL,
    "updateWorkspace": EventTier.CRITICAL,
    "searchByEntity": EventTier.CRITICAL,
    "searchByRelatedEntity": EventTier.CRITICAL,

    # Re-dispatches and side effects
    "selectObjects": EventTier.SYSTEM,
    "deleteEdges": EventTier.SYSTEM,
    "clipboardSet": EventTier.SYSTEM,
    "clipboardClear": EventTier.SYSTEM,
    "selectedObjectsPublished": EventTier.SYSTEM,

    # Diagnostics
    "selectionDebug": EventTier.DEBUG,
    "selectionUnchanged": EventTier.DEBUG,
}


@dataclass(frozen=True)
class SelectionEvent:
    """A single outbound event."""
    sequence: int
    timestamp: str
    event_type: str
    payload: Dict[str, Any]
    tier: EventTier
    request_id: str = "unknown"   # Dispatched intent that caused it

    def to_dict(self) -> Dict[str, Any]:
        """Wire shape for JSON transports."""
        return {
            "type": self.event_type,
            "payload": self.payload,
            "sequence": self.sequence,
            "timestamp": self.timestamp,
            "tier": self.tier.name.lower(),
            "requestId": self.request_id,
        }


class EventEmitter:
    """Sequences, classifies, records and delivers outbound events."""

    def __init__(self, stream_tiers: Optional[Set[EventTier]] = None, buffer_max_size: int = 1000):
        self._counter = itertools.count(1)
        self._emitted = 0
        self._stream_tiers = set(stream_tiers or DEFAULT_STREAM_TIERS)
        self._overrides: Dict[str, EventTier] = {}

        self._listeners: List[Callable[[SelectionEvent], None]] = []
        self._async_listeners: List[Callable[[SelectionEvent], Any]] = []
        self._pending_tasks: Set[asyncio.Task] = set()

        self._history: Deque[SelectionEvent] = deque(maxlen=buffer_max_size)

    # =========================================================================
    # CLASSIFICATION
    # =========================================================================

    def classify(self, event_type: str) -> EventTier:
        """Tier for an event type; unmapped types are DEBUG."""
        return self._overrides.get(event_type) or EVENT_TIER_MAP.get(event_type, EventTier.DEBUG)

    def set_tier_override(self, event_type: str, tier: EventTier) -> None:
        self._overrides[event_type] = tier

    def clear_tier_override(self, event_type: str) -> None:
        self._overrides.pop(event_type, None)

    def set_stream_tiers(self, tiers: Set[EventTier]) -> None:
        self._stream_tiers = set(tiers)

    # =========================================================================
    # LISTENERS
    # =========================================================================

    def add_listener(self, callback: Callable[[SelectionEvent], None]) -> None:
        self._listeners.append(callback)

    def add_async_listener(self, callback: Callable[[SelectionEvent], Any]) -> None:
        """Coroutine listener, scheduled on the running loop for each streamed event."""
        self._async_listeners.append(callback)

    def remove_listener(self, callback: Callable) -> None:
        for registry in (self._listeners, self._async_listeners):
            if callback in registry:
                registry.remove(callback)

    def clear_listeners(self) -> None:
        self._listeners.clear()
        self._async_listeners.clear()

    # =========================================================================
    # EMIT
    # =========================================================================

    def emit(self, event_type: str, payload: Optional[Dict[str, Any]] = None,
             request_id: str = "unknown", tier_override: Optional[EventTier] = None) -> SelectionEvent:
        """Record an event and deliver it if its tier is streamed."""
        event = SelectionEvent(
            sequence=next(self._counter),
            timestamp=datetime.now(timezone.utc).isoformat(),
            event_type=event_type,
            payload=payload if payload is not None else {},
            tier=tier_override or self.classify(event_type),
            request_id=request_id,
        )
        self._emitted += 1
        self._history.append(event)

        if event.tier in self._stream_tiers:
            self._deliver(event)
        return event

    def _deliver(self, event: SelectionEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                # Observers must not break the selection flow
                logger.error(f"[{event.request_id}] Listener failed on {event.event_type}: {e}")

        if not self._async_listeners:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug(f"No running loop, async listeners skipped for {event.event_type}")
            return

        for listener in list(self._async_listeners):
            task = loop.create_task(listener(event))
            self._pending_tasks.add(task)
            task.add_done_callback(self._async_listener_done)

    def _async_listener_done(self, task: asyncio.Task) -> None:
        self._pending_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Async listener failed: {task.exception()}")

    async def drain(self) -> None:
        """Wait until every scheduled async listener has finished."""
        while self._pending_tasks:
            await asyncio.gather(*list(self._pending_tasks), return_exceptions=True)

    # =========================================================================
    # INSPECTION
    # =========================================================================

    def get_recent_events(self, count: int = 100, tier: Optional[EventTier] = None,
                          event_type: Optional[str] = None) -> List[SelectionEvent]:
        """Newest-last slice of the history, optionally filtered."""
        matching = [
            e for e in self._history
            if (tier is None or e.tier == tier) and (event_type is None or e.event_type == event_type)
        ]
        return matching[-count:]

    def stats(self) -> Dict[str, Any]:
        by_tier = Counter(e.tier.name.lower() for e in self._history)
        return {
            "emitted": self._emitted,
            "buffered": len(self._history),
            "buffer_max": self._history.maxlen,
            "streamed_tiers": sorted(t.name.lower() for t in self._stream_tiers),
            "listeners": len(self._listeners) + len(self._async_listeners),
            "by_tier": {tier.name.lower(): by_tier.get(tier.name.lower(), 0) for tier in EventTier},
            "by_type": dict(Counter(e.event_type for e in self._history)),
            "overrides": {k: v.name for k, v in self._overrides.items()},
        }
