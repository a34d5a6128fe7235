"""
Data Access Facade - the lookups the selection system depends on

The reconciler and router only ever talk to this interface. The HTTP
implementation lives in service_connector.py; tests substitute fakes.
Implementations raise FetchFailed for any lookup that rejects.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Sequence

from selection_system.core.datashapes import Edge, Vertex


class DataAccess(ABC):
    """Async point lookups against the workspace, vertex and edge stores."""

    @abstractmethod
    async def fetch_vertices(self, vertex_ids: Sequence[str]) -> List[Vertex]:
        """Vertices for the given ids, in request order."""

    @abstractmethod
    async def fetch_edge(self, edge_id: str) -> Optional[Edge]:
        """The edge with this id, or None if the store has no such edge."""

    @abstractmethod
    async def delete_edge(self, edge_id: str, source_id: str, target_id: str) -> None:
        """Delete a single edge, keyed by its id and both endpoint ids."""

    @abstractmethod
    async def fetch_workspace_vertex_store(self, workspace_id: Optional[str] = None) -> Dict[str, Vertex]:
        """Every vertex in the workspace, indexed by vertex id."""

    async def fetch_vertex(self, vertex_id: str) -> Optional[Vertex]:
        vertices = await self.fetch_vertices([vertex_id])
        return vertices[0] if vertices else None
