#!/usr/bin/env python3
"""
Side-Effect Notifier - downstream effects of a committed selection

Runs only after the reconciler reports a change. Everything here is a
projection of the committed Selection:

    vertices selected   -> clipboardSet{text: shareable url}
    edges / nothing     -> clipboardClear
    always              -> publish a deep-copied public view
    debug mode          -> mirror the raw payload into DEBUG_SLOTS
"""

import copy
import logging
from typing import Any, Callable, Dict, Optional, Sequence

from rich.table import Table

from selection_system.core.datashapes import Selection, SessionContext, Vertex
from selection_system.core.event_emitter import EventEmitter
from selection_system.core.formatters import build_shareable_url
from selection_system.core.request_context import get_request_id

logger = logging.getLogger(__name__)

# Globally inspectable debug mirror. Diagnostic only; nothing reads it back.
DEBUG_SLOTS: Dict[str, Any] = {}


def _empty_public_view() -> Dict[str, Any]:
    return Selection().to_public_dict()


class SideEffectNotifier:
    """Derives clipboard and publication effects from a committed selection."""

    def __init__(
        self,
        emitter: EventEmitter,
        session: SessionContext,
        url_builder: Optional[Callable[[Sequence[Vertex], Optional[str]], str]] = None,
        debug_mode: bool = False,
        console=None
    ):
        self.emitter = emitter
        self.session = session
        self.url_builder = url_builder or build_shareable_url
        self.debug_mode = debug_mode
        self.console = console
        self._published: Dict[str, Any] = _empty_public_view()

    @property
    def selected_objects(self) -> Dict[str, Any]:
        """The externally visible selection (a fresh copy on every read)."""
        return copy.deepcopy(self._published)

    def reset(self) -> None:
        self._published = _empty_public_view()
        DEBUG_SLOTS.pop("selectedObjects", None)

    def notify(self, selection: Selection) -> None:
        """Apply all side effects for a newly committed selection."""
        request_id = get_request_id()

        if selection.vertices:
            text = self.url_builder(selection.vertices, self.session.workspace_id)
            self.emitter.emit("clipboardSet", {"text": text}, request_id=request_id)
        else:
            self.emitter.emit("clipboardClear", {}, request_id=request_id)

        self._published = selection.copy().to_public_dict()
        self.emitter.emit(
            "selectedObjectsPublished",
            {"vertexIds": selection.vertex_ids(), "edgeIds": selection.edge_ids()},
            request_id=request_id
        )

        if self.debug_mode:
            raw = selection.to_dict()
            DEBUG_SLOTS["selectedObjects"] = raw
            self.emitter.emit("selectionDebug", raw, request_id=request_id)
            if self.console:
                self.console.print(self._render_debug_table(selection))

    def _render_debug_table(self, selection: Selection) -> Table:
        table = Table(title=f"Selection [{get_request_id()}]")
        table.add_column("Kind", style="cyan")
        table.add_column("Id")
        table.add_column("Detail", style="dim")

        for vertex in selection.vertices:
            table.add_row("vertex", vertex.id, ", ".join(sorted(vertex.properties)))
        for edge in selection.edges:
            table.add_row("edge", edge.id, f"{edge.source_id} -> {edge.target_id}")
        if selection.is_empty:
            table.add_row("-", "(nothing selected)", "")
        return table
