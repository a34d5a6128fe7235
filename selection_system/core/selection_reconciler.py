#!/usr/bin/env python3
"""
Selection Reconciler - single owner of the current selection

Resolving and committing are separate steps:

    resolve(request)  async, talks to the data facade, builds a Selection
    apply(selection)  sync, deep-equality gate, commits and reports change

Two overlapping resolve() calls both reach apply() in completion order.
apply() compares against the last committed snapshot, so a result equal
to what is already published never produces a second notification.

With discard_stale enabled, each resolution carries a token from
begin_resolution() and apply() rejects tokens older than the newest one
already applied.

State machine:
    IDLE -> RESOLVING -> COMMITTED_CHANGED | COMMITTED_UNCHANGED -> IDLE
"""

import asyncio
import logging
import threading
from typing import Any, Dict, List, Optional, Union

from selection_system.core.data_access import DataAccess
from selection_system.core.datashapes import (
    ChangeOutcome,
    Edge,
    ReconcilerState,
    Selection,
    SelectionRequest,
    Vertex,
)
from selection_system.core.error_handler import FetchFailed
from selection_system.core.request_context import get_request_id

logger = logging.getLogger(__name__)


async def _no_lookup():
    return None


class SelectionReconciler:
    """Holds current/previous selection snapshots and the commit gate."""

    def __init__(self, data_access: DataAccess, discard_stale: bool = False):
        self._data_access = data_access
        self._discard_stale = discard_stale

        # Guards _current, _previous and the token counters
        self._lock = threading.RLock()
        self._current = Selection()
        self._previous: Optional[Selection] = None

        self._issued_token = 0
        self._newest_applied_token = 0
        # Tokens at or below this were issued before the last reset()
        self._session_floor = 0

        self._in_flight = 0
        self.last_commit_state = ReconcilerState.IDLE

    # =========================================================================
    # STATE
    # =========================================================================

    @property
    def state(self) -> ReconcilerState:
        if self._in_flight:
            return ReconcilerState.RESOLVING
        return ReconcilerState.IDLE

    @property
    def in_flight(self) -> int:
        return self._in_flight

    def begin_resolution(self) -> int:
        """Issue a monotonic token for a resolution about to start."""
        with self._lock:
            self._issued_token += 1
            return self._issued_token

    def current_as_public_view(self) -> Selection:
        """Deep copy of the committed selection; observers cannot reach internal state."""
        with self._lock:
            return self._current.copy()

    def reset(self) -> None:
        """Teardown: back to an empty selection with no dedup history."""
        with self._lock:
            self._current = Selection()
            self._previous = None
            # Anything still in flight belongs to the old session
            self._session_floor = self._issued_token
            self._newest_applied_token = self._issued_token
            self.last_commit_state = ReconcilerState.IDLE
        logger.debug("Selection state reset")

    # =========================================================================
    # RESOLVE
    # =========================================================================

    async def resolve(self, request: Union[SelectionRequest, Dict[str, Any], None]) -> Selection:
        """
        Turn a selection request into a canonical Selection.

        At most one vertex lookup and one edge lookup are issued, and they
        run concurrently. Vertex results always win over edge results.

        Raises:
            FetchFailed: any lookup rejected; nothing is committed.
        """
        request = SelectionRequest.from_payload(request)

        vertex_lookup = self._lookup_vertices(request) if request.wants_vertices else _no_lookup()
        edge_lookup = self._lookup_edge(request) if request.wants_edges else _no_lookup()

        self._in_flight += 1
        try:
            results = await asyncio.gather(vertex_lookup, edge_lookup, return_exceptions=True)
        finally:
            self._in_flight -= 1

        # Both lookups have settled; surface the first failure, if any
        for result in results:
            if isinstance(result, BaseException):
                raise result
        vertex_result, edge_result = results

        vertices = list(vertex_result or [])
        edges = [] if vertices else ([edge_result] if edge_result else [])
        return Selection(vertices=vertices, edges=edges)

    async def _lookup_vertices(self, request: SelectionRequest) -> List[Vertex]:
        if request.vertex_ids is not None:
            vertex_ids = request.vertex_ids
            if isinstance(vertex_ids, str):
                vertex_ids = [vertex_ids]
            vertex_ids = list(vertex_ids)
            if not vertex_ids:
                return []

            try:
                vertices = await self._data_access.fetch_vertices(vertex_ids)
            except FetchFailed:
                raise
            except Exception as e:
                raise FetchFailed(f"Vertex lookup failed for {len(vertex_ids)} id(s): {e}",
                                  lookup="vertex") from e
            return list(vertices or [])

        return list(request.vertices or [])

    async def _lookup_edge(self, request: SelectionRequest) -> Optional[Edge]:
        edge_ids = request.edge_ids
        if edge_ids is not None and len(edge_ids) > 0:
            if isinstance(edge_ids, str):
                edge_id = edge_ids
            else:
                edge_ids = list(edge_ids)
                if len(edge_ids) > 1:
                    logger.warning(
                        f"[{get_request_id()}] Multi-edge selection unsupported, "
                        f"keeping {edge_ids[0]} of {len(edge_ids)} edges"
                    )
                edge_id = edge_ids[0]

            try:
                return await self._data_access.fetch_edge(edge_id)
            except FetchFailed:
                raise
            except Exception as e:
                raise FetchFailed(f"Edge lookup failed for {edge_id}: {e}", lookup="edge") from e

        edges = request.edges or []
        if len(edges) > 1:
            logger.warning(
                f"[{get_request_id()}] Multi-edge selection unsupported, "
                f"keeping {edges[0].id} of {len(edges)} edges"
            )
        return edges[0] if edges else None

    # =========================================================================
    # APPLY
    # =========================================================================

    def apply(self, selection: Selection, token: Optional[int] = None) -> ChangeOutcome:
        """
        Commit a resolved selection if it differs from the last committed one.

        Returns:
            ChangeOutcome.changed_to(copy) on change, ChangeOutcome.unchanged() otherwise.
            Callers must not emit objectsSelected on an unchanged outcome.
        """
        with self._lock:
            if token is not None:
                if token <= self._session_floor:
                    logger.info(
                        f"[{get_request_id()}] Dropped resolution #{token} "
                        f"from before the last reset (floor #{self._session_floor})"
                    )
                    return ChangeOutcome.unchanged(stale=True)
                if self._discard_stale and token < self._newest_applied_token:
                    logger.info(
                        f"[{get_request_id()}] Discarded stale resolution #{token} "
                        f"(newest applied #{self._newest_applied_token})"
                    )
                    return ChangeOutcome.unchanged(stale=True)
                self._newest_applied_token = max(self._newest_applied_token, token)

            if self._previous is not None and self._previous == selection:
                self.last_commit_state = ReconcilerState.COMMITTED_UNCHANGED
                return ChangeOutcome.unchanged()

            committed = selection.copy()
            self._previous = committed
            self._current = committed
            self.last_commit_state = ReconcilerState.COMMITTED_CHANGED

            logger.debug(
                f"[{get_request_id()}] Selection committed: "
                f"{len(committed.vertices)} vertices, {len(committed.edges)} edges"
            )
            return ChangeOutcome.changed_to(committed.copy())
