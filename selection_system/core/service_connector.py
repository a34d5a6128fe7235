#!/usr/bin/env python3
"""
Service Connector - HTTP implementation of the data access facade

Talks to the workspace service over HTTP:

    GET    /vertex/multiple        vertex store lookups
    GET    /edge/properties        single edge lookup
    DELETE /edge                   edge delete keyed by (edgeId, sourceId, targetId)
    GET    /workspace              workspace with vertices (indexed by vertexId)
    GET    /workspace/diff, /workspace/all, /workspace/vertices, /workspace/edges
    POST   /workspace/update, /workspace/create
    DELETE /workspace

Every workspace call takes an explicit workspace id and falls back to the
injected SessionContext, never to a global. Transport and HTTP errors
surface as FetchFailed.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence

import httpx

from selection_system.core.config import SelectionConfig
from selection_system.core.data_access import DataAccess
from selection_system.core.datashapes import Edge, SessionContext, Vertex
from selection_system.core.error_handler import FetchFailed
from selection_system.core.request_context import get_request_id

logger = logging.getLogger(__name__)


class ServiceConnector(DataAccess):
    def __init__(self, session: SessionContext, base_url: Optional[str] = None,
                 timeout: Optional[float] = None, client: Optional[httpx.AsyncClient] = None):
        self.session = session
        self.base_url = (base_url or SelectionConfig.SERVICE_URL).rstrip('/')
        self.timeout = timeout or SelectionConfig.REQUEST_TIMEOUT_SECONDS
        self._client = client
        self._owns_client = client is None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout)
        return self._client

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    def _workspace(self, workspace_id: Optional[str]) -> str:
        return workspace_id or self.session.workspace_id

    async def _request(self, method: str, path: str, params: Optional[Dict[str, Any]] = None,
                       json: Optional[Dict[str, Any]] = None, lookup: str = "") -> Any:
        """Issue one request; return decoded JSON (or None for empty bodies)."""
        client = await self._get_client()
        headers = {"X-Request-Id": get_request_id()}
        try:
            response = await client.request(method, path, params=params, json=json, headers=headers)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise FetchFailed(
                f"{method} {path} returned HTTP {e.response.status_code}", lookup=lookup
            ) from e
        except httpx.HTTPError as e:
            raise FetchFailed(f"{method} {path} failed: {e}", lookup=lookup) from e

        logger.debug(f"[{get_request_id()}] {method} {path} -> {response.status_code}")
        if not response.content:
            return None
        return response.json()

    # =========================================================================
    # DATA ACCESS FACADE
    # =========================================================================

    async def fetch_vertices(self, vertex_ids: Sequence[str]) -> List[Vertex]:
        if not vertex_ids:
            return []
        result = await self._request(
            "GET", "/vertex/multiple",
            params={"vertexIds[]": list(vertex_ids), "workspaceId": self.session.workspace_id},
            lookup="vertex"
        )
        raw_vertices = result.get("vertices", []) if isinstance(result, dict) else (result or [])
        by_id = {}
        for raw in raw_vertices:
            vertex = Vertex.from_dict(raw)
            by_id[vertex.id] = vertex
        # Keep request order; ids the store does not know are dropped
        return [by_id[v_id] for v_id in vertex_ids if v_id in by_id]

    async def fetch_edge(self, edge_id: str) -> Optional[Edge]:
        result = await self._request(
            "GET", "/edge/properties",
            params={"graphEdgeId": edge_id, "workspaceId": self.session.workspace_id},
            lookup="edge"
        )
        if not result:
            return None
        return Edge.from_dict(result)

    async def delete_edge(self, edge_id: str, source_id: str, target_id: str) -> None:
        await self._request(
            "DELETE", "/edge",
            params={
                "edgeId": edge_id,
                "sourceId": source_id,
                "targetId": target_id,
                "workspaceId": self.session.workspace_id,
            },
            lookup="edge"
        )

    async def fetch_workspace_vertex_store(self, workspace_id: Optional[str] = None) -> Dict[str, Vertex]:
        workspace = await self.get(workspace_id)
        return {
            vertex_id: Vertex.from_dict({"id": vertex_id, **raw})
            for vertex_id, raw in workspace.get("vertices", {}).items()
        }

    # =========================================================================
    # WORKSPACE SERVICE
    # =========================================================================

    async def diff(self, workspace_id: Optional[str] = None) -> Any:
        return await self._request("GET", "/workspace/diff",
                                   params={"workspaceId": self._workspace(workspace_id)},
                                   lookup="workspace")

    async def all(self) -> Any:
        return await self._request("GET", "/workspace/all", lookup="workspace")

    async def get(self, workspace_id: Optional[str] = None) -> Dict[str, Any]:
        """Workspace payload with vertices indexed by vertexId."""
        workspace = await self._request("GET", "/workspace",
                                        params={"workspaceId": self._workspace(workspace_id)},
                                        lookup="workspace") or {}
        vertices = workspace.get("vertices") or []
        if isinstance(vertices, list):
            workspace["vertices"] = {v["vertexId"]: v for v in vertices if "vertexId" in v}
        return workspace

    async def delete(self, workspace_id: str) -> Any:
        return await self._request("DELETE", "/workspace",
                                   params={"workspaceId": workspace_id},
                                   lookup="workspace")

    async def save(self, workspace_id: Optional[str] = None,
                   entity_deletes: Optional[List[str]] = None) -> Any:
        """Post a workspace change set. Only entity deletes are produced here."""
        return await self._request("POST", "/workspace/update", json={
            "workspaceId": self._workspace(workspace_id),
            "data": {
                "entityUpdates": [],
                "entityDeletes": list(entity_deletes or []),
                "userUpdates": [],
                "userDeletes": []
            }
        }, lookup="workspace")

    async def vertices(self, workspace_id: Optional[str] = None) -> Any:
        return await self._request("GET", "/workspace/vertices",
                                   params={"workspaceId": self._workspace(workspace_id)},
                                   lookup="workspace")

    async def edges(self, workspace_id: Optional[str] = None) -> List[Edge]:
        result = await self._request("GET", "/workspace/edges",
                                     params={"workspaceId": self._workspace(workspace_id)},
                                     lookup="workspace") or {}
        return [Edge.from_dict(raw) for raw in result.get("edges", [])]

    async def create(self, options: Optional[Dict[str, Any]] = None) -> Any:
        return await self._request("POST", "/workspace/create", json=options or {},
                                   lookup="workspace")
