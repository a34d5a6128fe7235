#!/usr/bin/env python3
"""
Action Router - maps user intents onto the reconciler and outbound events

Every Intent member has exactly one handler in the dispatch table; the
router refuses to start if one is missing. Each dispatch runs inside an
ErrorContext:

    FetchFailed           recorded as a DATA_ACCESS alert, nothing committed
    UnsupportedOperation  recorded at debug level, no action taken
    UnresolvableTarget    silent no-op (nothing selected is a normal case)

Intents that fall back to "the one selected vertex" re-read the committed
selection on every call.
"""

import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from selection_system.core.data_access import DataAccess
from selection_system.core.datashapes import (
    ChangeOutcome,
    Edge,
    Intent,
    Selection,
    SelectionRequest,
    SessionContext,
    Vertex,
)
from selection_system.core.error_handler import (
    ErrorCategory,
    ErrorHandler,
    ErrorSeverity,
    FetchFailed,
    UnresolvableTarget,
    UnsupportedOperation,
)
from selection_system.core.event_emitter import EventEmitter
from selection_system.core.formatters import format_vertex_title
from selection_system.core.related_items import RelatedItemsPopovers
from selection_system.core.request_context import get_request_id, new_request_id, request_id_var
from selection_system.core.selection_reconciler import SelectionReconciler
from selection_system.core.side_effect_notifier import SideEffectNotifier

logger = logging.getLogger(__name__)

Handler = Callable[[Dict[str, Any], Any], Awaitable[Any]]


def _selection_from_payload(data: Union[Selection, Dict[str, Any]]) -> Selection:
    if isinstance(data, Selection):
        return data
    request = SelectionRequest.from_payload(data)
    return Selection(vertices=request.vertices or [], edges=request.edges or [])


class ActionRouter:
    """Explicit dispatch table from Intent to handler."""

    def __init__(
        self,
        reconciler: SelectionReconciler,
        data_access: DataAccess,
        emitter: EventEmitter,
        notifier: SideEffectNotifier,
        session: SessionContext,
        error_handler: ErrorHandler,
        title_formatter: Optional[Callable[[Vertex], str]] = None,
        popovers: Optional[RelatedItemsPopovers] = None,
        suppress_duplicate_minutes: int = 5
    ):
        self.reconciler = reconciler
        self.data_access = data_access
        self.emitter = emitter
        self.notifier = notifier
        self.session = session
        self.error_handler = error_handler
        self.title_formatter = title_formatter or format_vertex_title
        self.popovers = popovers or RelatedItemsPopovers()
        self.suppress_duplicate_minutes = suppress_duplicate_minutes

        self._handlers: Dict[Intent, Handler] = {
            Intent.SELECT_OBJECTS: self._on_select_objects,
            Intent.SELECT_ALL: self._on_select_all,
            Intent.DELETE_SELECTED: self._on_delete_selected,
            Intent.DELETE_EDGES: self._on_delete_edges,
            Intent.EDGES_DELETED: self._on_edges_deleted,
            Intent.SEARCH_TITLE: self._on_search_title,
            Intent.SEARCH_RELATED: self._on_search_related,
            Intent.ADD_RELATED_ITEMS: self._on_add_related_items,
            Intent.OBJECTS_SELECTED: self._on_objects_selected,
        }
        missing = [intent.value for intent in Intent if intent not in self._handlers]
        if missing:
            raise UnsupportedOperation(f"No handler for intents: {', '.join(missing)}")

    # =========================================================================
    # DISPATCH
    # =========================================================================

    async def dispatch(self, intent: Union[Intent, str], data: Any = None, trigger: Any = None) -> Any:
        """
        Run the handler for an intent.

        Args:
            intent: Intent member or its wire name ("selectObjects", ...)
            data: Intent payload (dict), may be None
            trigger: The UI element/event that raised the intent (popover anchor)

        Returns:
            Whatever the handler returns (ChangeOutcome for selectObjects),
            or None when the intent was absorbed as a no-op or error.
        """
        # Re-dispatches keep the request id of the intent that caused them
        token = None
        if request_id_var.get() is None:
            token = request_id_var.set(new_request_id())

        try:
            name = intent.value if isinstance(intent, Intent) else str(intent)
            with self.error_handler.create_context_manager(
                ErrorCategory.ACTION_ROUTING,
                ErrorSeverity.MEDIUM_ALERT,
                operation=name,
                context=f"request {get_request_id()}",
                suppress_duplicate_minutes=self.suppress_duplicate_minutes
            ):
                try:
                    resolved_intent = intent if isinstance(intent, Intent) else Intent(intent)
                except ValueError:
                    raise UnsupportedOperation(f"Unknown intent '{intent}'") from None

                logger.debug(f"[{get_request_id()}] Dispatching {resolved_intent.value}")
                try:
                    return await self._handlers[resolved_intent](data if data is not None else {}, trigger)
                except UnresolvableTarget as e:
                    logger.debug(f"[{get_request_id()}] {resolved_intent.value} skipped: {e}")
                    return None
            return None
        finally:
            if token is not None:
                request_id_var.reset(token)

    # =========================================================================
    # SELECTION
    # =========================================================================

    async def _on_select_objects(self, data: Any, trigger: Any) -> ChangeOutcome:
        resolution = self.reconciler.begin_resolution()
        selection = await self.reconciler.resolve(SelectionRequest.from_payload(data or None))
        outcome = self.reconciler.apply(selection, token=resolution)

        if not outcome.changed:
            self.emitter.emit("selectionUnchanged", {"stale": outcome.stale}, request_id=get_request_id())
            return outcome

        self.emitter.emit("objectsSelected", outcome.selection.to_dict(), request_id=get_request_id())
        await self.dispatch(Intent.OBJECTS_SELECTED, outcome.selection)
        return outcome

    async def _on_select_all(self, data: Dict[str, Any], trigger: Any) -> Optional[ChangeOutcome]:
        try:
            store = await self.data_access.fetch_workspace_vertex_store(self.session.workspace_id)
        except FetchFailed:
            raise
        except Exception as e:
            raise FetchFailed(f"Workspace store lookup failed: {e}", lookup="workspace") from e

        payload = {"vertexIds": list(store.keys())}
        self.emitter.emit("selectObjects", payload, request_id=get_request_id())
        return await self.dispatch(Intent.SELECT_OBJECTS, payload)

    async def _on_edges_deleted(self, data: Dict[str, Any], trigger: Any) -> Optional[ChangeOutcome]:
        edge_id = data.get("edgeId")
        current = self.reconciler.current_as_public_view()
        if not edge_id or not current.has_edge(edge_id):
            return None

        logger.info(f"[{get_request_id()}] Selected edge {edge_id} was deleted, re-evaluating selection")
        self.emitter.emit("selectObjects", {}, request_id=get_request_id())
        return await self.dispatch(Intent.SELECT_OBJECTS, {})

    async def _on_objects_selected(self, data: Any, trigger: Any) -> None:
        self.notifier.notify(_selection_from_payload(data))

    # =========================================================================
    # DELETION
    # =========================================================================

    async def _on_delete_selected(self, data: Dict[str, Any], trigger: Any) -> None:
        vertex_id = data.get("vertexId")
        if vertex_id:
            self.emitter.emit("updateWorkspace", {"entityDeletes": [vertex_id]}, request_id=get_request_id())
            return

        current = self.reconciler.current_as_public_view()
        if current.vertices:
            self.emitter.emit(
                "updateWorkspace",
                {"entityDeletes": current.vertex_ids()},
                request_id=get_request_id()
            )
        elif current.edges and self.session.user_can_edit():
            self.emitter.emit(
                "deleteEdges",
                {"edges": [e.to_dict() for e in current.edges]},
                request_id=get_request_id()
            )
            await self.dispatch(Intent.DELETE_EDGES, {"edges": current.edges})
        else:
            logger.debug(f"[{get_request_id()}] deleteSelected: nothing deletable")

    async def _on_delete_edges(self, data: Dict[str, Any], trigger: Any) -> None:
        edges = data.get("edges") or []
        if len(edges) != 1:
            # Single-edge policy: deleting several edges at once is not supported
            raise UnsupportedOperation(f"Only one edge can be deleted at a time (got {len(edges)})")

        edge = edges[0] if isinstance(edges[0], Edge) else Edge.from_dict(edges[0])
        try:
            await self.data_access.delete_edge(edge.id, edge.source_id, edge.target_id)
        except FetchFailed:
            raise
        except Exception as e:
            raise FetchFailed(f"Edge delete failed for {edge.id}: {e}", lookup="edge") from e

        logger.info(f"[{get_request_id()}] Deleted edge {edge.id} ({edge.source_id} -> {edge.target_id})")

    # =========================================================================
    # SEARCH / RELATED
    # =========================================================================

    def _target_vertex_id(self, data: Dict[str, Any], explicit_if_present: bool = False) -> str:
        """
        Explicit vertexId, else the single selected vertex.

        With explicit_if_present a vertexId key is used as given, even when
        blank; only a missing key falls back to the selection.
        """
        if explicit_if_present and "vertexId" in data:
            return data["vertexId"]
        vertex_id = data.get("vertexId")
        if vertex_id:
            return vertex_id

        vertex_id = self.reconciler.current_as_public_view().singleton_vertex_id()
        if vertex_id is None:
            raise UnresolvableTarget("No vertexId given and selection is not a single vertex")
        return vertex_id

    async def _fetch_vertex(self, vertex_id: str) -> Vertex:
        try:
            vertex = await self.data_access.fetch_vertex(vertex_id)
        except FetchFailed:
            raise
        except Exception as e:
            raise FetchFailed(f"Vertex lookup failed for {vertex_id}: {e}", lookup="vertex") from e

        if vertex is None:
            raise UnresolvableTarget(f"Vertex {vertex_id} not found")
        return vertex

    async def _on_search_title(self, data: Dict[str, Any], trigger: Any) -> None:
        vertex = await self._fetch_vertex(self._target_vertex_id(data))
        title = self.title_formatter(vertex)
        self.emitter.emit("searchByEntity", {"query": title}, request_id=get_request_id())

    async def _on_search_related(self, data: Dict[str, Any], trigger: Any) -> None:
        vertex_id = self._target_vertex_id(data)
        self.emitter.emit("searchByRelatedEntity", {"vertexId": vertex_id}, request_id=get_request_id())

    async def _on_add_related_items(self, data: Dict[str, Any], trigger: Any) -> None:
        vertex_id = self._target_vertex_id(data, explicit_if_present=True)
        vertex = await self._fetch_vertex(vertex_id)

        self.popovers.teardown_all()
        self.popovers.attach_to(
            trigger,
            vertex=vertex,
            related_to_vertex_id=vertex_id,
            anchor_to={"vertexId": vertex_id},
        )
