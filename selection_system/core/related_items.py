"""
Related-items popover registry

Headless stand-in for the "add related items" popover: the router tears
down whatever is open and attaches a new one anchored to the UI element
that triggered the intent. A rendering layer can subclass and draw.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from selection_system.core.datashapes import Vertex

logger = logging.getLogger(__name__)


@dataclass
class RelatedItemsPopover:
    anchor: Any
    vertex: Vertex
    related_to_vertex_id: str
    anchor_to: Dict[str, str] = field(default_factory=dict)


class RelatedItemsPopovers:
    """Tracks the open related-items popovers."""

    def __init__(self):
        self.open_popovers: List[RelatedItemsPopover] = []

    def teardown_all(self) -> int:
        """Close every open popover. Returns how many were closed."""
        closed = len(self.open_popovers)
        self.open_popovers.clear()
        if closed:
            logger.debug(f"Tore down {closed} related-items popover(s)")
        return closed

    def attach_to(self, anchor: Any, vertex: Vertex, related_to_vertex_id: str,
                  anchor_to: Optional[Dict[str, str]] = None) -> RelatedItemsPopover:
        popover = RelatedItemsPopover(
            anchor=anchor,
            vertex=vertex,
            related_to_vertex_id=related_to_vertex_id,
            anchor_to=anchor_to or {},
        )
        self.open_popovers.append(popover)
        return popover

    @property
    def current(self) -> Optional[RelatedItemsPopover]:
        return self.open_popovers[-1] if self.open_popovers else None
