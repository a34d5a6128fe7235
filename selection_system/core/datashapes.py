#!/usr/bin/env python3
"""
datashapes.py - Centralized Data Shape Definitions

All dataclasses and enums used across the selection system live here.
No fetching, no events - just definitions of what data looks like.

Other files import from here to ensure consistent structures:
    from selection_system.core.datashapes import Selection, SelectionRequest, Vertex

Vertices and edges are owned by the workspace services. The reconciler
holds references to them but never mutates them; anything handed to an
observer is a deep copy.
"""

import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Union


# =============================================================================
# ENUMS
# =============================================================================

class Intent(Enum):
    """
    Inbound intents consumed by the ActionRouter.
    Values are the event names used on the wire.
    """
    SELECT_OBJECTS = "selectObjects"
    SELECT_ALL = "selectAll"
    DELETE_SELECTED = "deleteSelected"
    DELETE_EDGES = "deleteEdges"
    EDGES_DELETED = "edgesDeleted"
    SEARCH_TITLE = "searchTitle"
    SEARCH_RELATED = "searchRelated"
    ADD_RELATED_ITEMS = "addRelatedItems"
    OBJECTS_SELECTED = "objectsSelected"   # Self-consumed for side effects


class ReconcilerState(Enum):
    """Lifecycle of a single selection reconciliation."""
    IDLE = "idle"
    RESOLVING = "resolving"
    COMMITTED_CHANGED = "committed_changed"
    COMMITTED_UNCHANGED = "committed_unchanged"


# =============================================================================
# GRAPH RECORDS - owned by the workspace services
# =============================================================================

def _properties_from(raw: Any) -> Dict[str, Any]:
    """Accept either a {name: value} dict or a [{name, value}, ...] list."""
    if raw is None:
        return {}
    if isinstance(raw, dict):
        return dict(raw)
    properties = {}
    for prop in raw:
        name = prop.get("name") or prop.get("key")
        if name is not None:
            properties[name] = prop.get("value")
    return properties


@dataclass
class Vertex:
    """A graph vertex as returned by the vertex store."""
    id: str
    properties: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Vertex":
        vertex_id = data.get("id") or data.get("vertexId") or data.get("graphVertexId")
        if vertex_id is None:
            raise ValueError(f"Vertex payload has no id: {data!r}")
        return cls(id=str(vertex_id), properties=_properties_from(data.get("properties")))

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "properties": copy.deepcopy(self.properties)}


@dataclass
class Edge:
    """
    A graph edge as returned by the edge store.

    source_id / target_id are the ids of the endpoint vertices; deleting
    an edge is keyed by (id, source_id, target_id).
    """
    id: str
    source_id: str
    target_id: str
    label: Optional[str] = None
    properties: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Edge":
        edge_id = data.get("id") or data.get("edgeId") or data.get("graphEdgeId")
        if edge_id is None:
            raise ValueError(f"Edge payload has no id: {data!r}")

        source = data.get("source")
        target = data.get("target")
        source_id = source.get("id") if isinstance(source, dict) else source
        target_id = target.get("id") if isinstance(target, dict) else target
        source_id = source_id or data.get("sourceId") or data.get("sourceVertexId")
        target_id = target_id or data.get("targetId") or data.get("destVertexId") or data.get("targetVertexId")

        return cls(
            id=str(edge_id),
            source_id=str(source_id) if source_id is not None else "",
            target_id=str(target_id) if target_id is not None else "",
            label=data.get("label"),
            properties=_properties_from(data.get("properties")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "source": {"id": self.source_id},
            "target": {"id": self.target_id},
            "label": self.label,
            "properties": copy.deepcopy(self.properties),
        }


# =============================================================================
# SELECTION STRUCTURES
# =============================================================================

@dataclass
class Selection:
    """
    The canonical current selection.

    Invariant: vertices XOR edges. A non-empty vertex list always comes
    with an empty edge list.
    """
    vertices: List[Vertex] = field(default_factory=list)
    edges: List[Edge] = field(default_factory=list)

    def __post_init__(self):
        if self.vertices and self.edges:
            raise ValueError("Selection cannot contain both vertices and edges")

    @property
    def is_empty(self) -> bool:
        return not self.vertices and not self.edges

    def vertex_ids(self) -> List[str]:
        return [v.id for v in self.vertices]

    def edge_ids(self) -> List[str]:
        return [e.id for e in self.edges]

    def singleton_vertex_id(self) -> Optional[str]:
        """Id of the only selected vertex, or None unless exactly one is selected."""
        if len(self.vertices) == 1:
            return self.vertices[0].id
        return None

    def has_edge(self, edge_id: str) -> bool:
        return any(e.id == edge_id for e in self.edges)

    def copy(self) -> "Selection":
        """Deep copy, safe to hand to observers."""
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "vertices": [v.to_dict() for v in self.vertices],
            "edges": [e.to_dict() for e in self.edges],
        }

    def to_public_dict(self) -> Dict[str, Any]:
        """Selection plus id indexes, the shape published as selectedObjects."""
        vertices = [v.to_dict() for v in self.vertices]
        edges = [e.to_dict() for e in self.edges]
        return {
            "vertices": vertices,
            "edges": edges,
            "vertexIds": {v["id"]: v for v in vertices},
            "edgeIds": {e["id"]: e for e in edges},
        }


IdOrIds = Union[str, Sequence[str]]


@dataclass
class SelectionRequest:
    """
    Inbound ask for a new selection.

    Any combination of fields may be set. Edge fields only matter when
    the vertex side resolves to nothing.
    """
    vertex_ids: Optional[IdOrIds] = None
    vertices: Optional[List[Vertex]] = None
    edge_ids: Optional[IdOrIds] = None
    edges: Optional[List[Edge]] = None

    @classmethod
    def from_payload(cls, data: Optional[Union[Dict[str, Any], "SelectionRequest"]]) -> "SelectionRequest":
        """Build a request from a selectObjects event payload (camelCase keys)."""
        if data is None:
            return cls()
        if isinstance(data, SelectionRequest):
            return data

        vertices = data.get("vertices")
        if vertices is not None:
            vertices = [v if isinstance(v, Vertex) else Vertex.from_dict(v) for v in vertices]

        edges = data.get("edges")
        if edges is not None:
            edges = [e if isinstance(e, Edge) else Edge.from_dict(e) for e in edges]

        return cls(
            vertex_ids=data.get("vertexIds"),
            vertices=vertices,
            edge_ids=data.get("edgeIds"),
            edges=edges,
        )

    @property
    def wants_vertices(self) -> bool:
        return self.vertex_ids is not None or self.vertices is not None

    @property
    def wants_edges(self) -> bool:
        has_edge_ids = self.edge_ids is not None and len(self.edge_ids) > 0
        return has_edge_ids or self.edges is not None


@dataclass
class ChangeOutcome:
    """
    Result of Reconciler.apply().

    changed=False means nothing was committed and nothing may be emitted.
    stale=True marks a resolution discarded because a newer one already
    committed (only when stale discarding is enabled).
    """
    changed: bool
    selection: Optional[Selection] = None
    stale: bool = False

    @classmethod
    def unchanged(cls, stale: bool = False) -> "ChangeOutcome":
        return cls(changed=False, selection=None, stale=stale)

    @classmethod
    def changed_to(cls, selection: Selection) -> "ChangeOutcome":
        return cls(changed=True, selection=selection)


# =============================================================================
# SESSION CONTEXT
# =============================================================================

def _never_editable() -> bool:
    return False


@dataclass
class SessionContext:
    """
    Per-workspace-session values that operations need.

    Passed explicitly to the router, notifier and service connector
    instead of being read from a global.
    """
    workspace_id: str
    user_can_edit: Callable[[], bool] = _never_editable
    user_id: Optional[str] = None
