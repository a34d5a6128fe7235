"""
Selection System Test Configuration and Fixtures

Shared fixtures for reconciler, router, notifier, emitter and error flow
tests. The data facade is replaced by FakeDataAccess, which records every
call and can be told to fail or to hold a lookup until released.
"""

import asyncio
from typing import Dict, List, Optional

import pytest
from unittest.mock import MagicMock

from selection_system.core.config import TestConfig
from selection_system.core.data_access import DataAccess
from selection_system.core.datashapes import Edge, SessionContext, Vertex
from selection_system.core.error_handler import ErrorHandler, FetchFailed
from selection_system.core.event_emitter import EventEmitter, EventTier
from selection_system.core.selection_coordinator import SelectionCoordinator
from selection_system.core.selection_reconciler import SelectionReconciler


# =============================================================================
# PYTEST MARKERS
# =============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "concurrency: overlapping resolutions")
    config.addinivalue_line("markers", "critical: must-pass selection contract tests")


# =============================================================================
# FAKE DATA ACCESS
# =============================================================================

class FakeDataAccess(DataAccess):
    """
    In-memory data facade.

    fail_on: lookups that raise FetchFailed ("vertex", "edge", "workspace", "delete")
    gates: {key: asyncio.Event} - a lookup whose key has a gate waits for it.
           Vertex keys are the comma-joined ids, edge keys the edge id.
    """

    def __init__(self, vertices: Optional[List[Vertex]] = None, edges: Optional[List[Edge]] = None):
        self.vertices: Dict[str, Vertex] = {v.id: v for v in vertices or []}
        self.edges: Dict[str, Edge] = {e.id: e for e in edges or []}
        self.calls: List[tuple] = []
        self.deleted_edges: List[tuple] = []
        self.fail_on: set = set()
        self.gates: Dict[str, asyncio.Event] = {}

    async def _wait(self, key: str):
        gate = self.gates.get(key)
        if gate is not None:
            await gate.wait()

    async def fetch_vertices(self, vertex_ids):
        vertex_ids = list(vertex_ids)
        self.calls.append(("fetch_vertices", vertex_ids))
        await self._wait(",".join(vertex_ids))
        if "vertex" in self.fail_on:
            raise FetchFailed("vertex store unavailable", lookup="vertex")
        return [self.vertices[v_id] for v_id in vertex_ids if v_id in self.vertices]

    async def fetch_edge(self, edge_id):
        self.calls.append(("fetch_edge", edge_id))
        await self._wait(edge_id)
        if "edge" in self.fail_on:
            raise FetchFailed("edge store unavailable", lookup="edge")
        return self.edges.get(edge_id)

    async def delete_edge(self, edge_id, source_id, target_id):
        self.calls.append(("delete_edge", edge_id, source_id, target_id))
        if "delete" in self.fail_on:
            raise FetchFailed("edge delete rejected", lookup="edge")
        self.deleted_edges.append((edge_id, source_id, target_id))

    async def fetch_workspace_vertex_store(self, workspace_id=None):
        self.calls.append(("fetch_workspace_vertex_store", workspace_id))
        if "workspace" in self.fail_on:
            raise FetchFailed("workspace unavailable", lookup="workspace")
        return dict(self.vertices)

    def call_names(self) -> List[str]:
        return [call[0] for call in self.calls]


# =============================================================================
# GRAPH FIXTURES
# =============================================================================

@pytest.fixture
def v1():
    return Vertex(id="v1", properties={"title": "Alice"})


@pytest.fixture
def v2():
    return Vertex(id="v2", properties={"title": "Bob"})


@pytest.fixture
def v3():
    return Vertex(id="v3", properties={})


@pytest.fixture
def e1():
    return Edge(id="e1", source_id="v1", target_id="v2", label="knows")


@pytest.fixture
def e2():
    return Edge(id="e2", source_id="v2", target_id="v3", label="knows")


@pytest.fixture
def data_access(v1, v2, v3, e1, e2):
    return FakeDataAccess(vertices=[v1, v2, v3], edges=[e1, e2])


@pytest.fixture
def session():
    return SessionContext(workspace_id="ws-1")


@pytest.fixture
def editor_session():
    return SessionContext(workspace_id="ws-1", user_can_edit=lambda: True)


# =============================================================================
# COMPONENT FIXTURES
# =============================================================================

@pytest.fixture
def reconciler(data_access):
    return SelectionReconciler(data_access)


@pytest.fixture
def mock_console():
    """Mock Rich console for testing output."""
    console = MagicMock()
    console.print = MagicMock()
    return console


@pytest.fixture
def error_handler(mock_console):
    return ErrorHandler(console=mock_console, debug_mode=True)


@pytest.fixture
def emitter():
    return EventEmitter(stream_tiers={EventTier.CRITICAL, EventTier.SYSTEM, EventTier.DEBUG})


@pytest.fixture
def events(emitter):
    """Every event the emitter streams, in order."""
    received = []
    emitter.add_listener(received.append)
    return received


def make_coordinator(data_access, session, emitter, error_handler, config=TestConfig, **kwargs):
    coordinator = SelectionCoordinator(
        data_access,
        session,
        config=config,
        emitter=emitter,
        error_handler=error_handler,
        **kwargs
    )
    coordinator.initialize()
    return coordinator


@pytest.fixture
def coordinator(data_access, session, emitter, error_handler):
    """Initialized coordinator for a read-only user."""
    return make_coordinator(data_access, session, emitter, error_handler)


@pytest.fixture
def editor_coordinator(data_access, editor_session, emitter, error_handler):
    """Initialized coordinator for a user with edit privilege."""
    return make_coordinator(data_access, editor_session, emitter, error_handler)


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def of_type(events, event_type: str) -> List:
    """Events of one type, in emission order."""
    return [e for e in events if e.event_type == event_type]
