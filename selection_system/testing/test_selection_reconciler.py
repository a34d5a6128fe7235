"""
Selection Reconciler Tests

Covers resolve (lookup policy, vertex/edge tie-break, failure handling),
apply (dedup gate, atomic commit, copies handed out) and the stale
resolution token.
"""

import asyncio
import logging

import pytest

from selection_system.core.datashapes import (
    ReconcilerState,
    Selection,
    SelectionRequest,
    Vertex,
)
from selection_system.core.error_handler import FetchFailed
from selection_system.core.selection_reconciler import SelectionReconciler


# =============================================================================
# RESOLVE
# =============================================================================

class TestResolve:
    """Turning requests into canonical selections."""

    @pytest.mark.asyncio
    async def test_vertex_ids_are_looked_up(self, reconciler, data_access, v1, v2):
        """HAPPY PATH: vertexIds go through one vertex lookup."""
        selection = await reconciler.resolve({"vertexIds": ["v1", "v2"]})

        assert selection == Selection(vertices=[v1, v2], edges=[])
        assert data_access.calls == [("fetch_vertices", ["v1", "v2"])]

    @pytest.mark.asyncio
    async def test_scalar_vertex_id_is_normalized(self, reconciler, data_access, v1):
        """EDGE: a single id instead of a list is wrapped."""
        selection = await reconciler.resolve({"vertexIds": "v1"})

        assert selection.vertices == [v1]
        assert data_access.calls == [("fetch_vertices", ["v1"])]

    @pytest.mark.asyncio
    async def test_explicit_vertices_skip_the_facade(self, reconciler, data_access):
        """HAPPY PATH: already-fetched vertices are used as-is."""
        vertex = Vertex(id="v9", properties={"title": "Given"})

        selection = await reconciler.resolve(SelectionRequest(vertices=[vertex]))

        assert selection.vertices == [vertex]
        assert data_access.calls == []

    @pytest.mark.asyncio
    async def test_edge_id_lookup(self, reconciler, data_access, e1):
        """HAPPY PATH: an edge id selects that edge."""
        selection = await reconciler.resolve({"edgeIds": "e1"})

        assert selection == Selection(vertices=[], edges=[e1])
        assert data_access.calls == [("fetch_edge", "e1")]

    @pytest.mark.asyncio
    async def test_multiple_edge_ids_keep_first(self, reconciler, data_access, e1, caplog):
        """EDGE: multi-edge selection is unsupported; only the first edge is used."""
        with caplog.at_level(logging.WARNING):
            selection = await reconciler.resolve({"edgeIds": ["e1", "e2"]})

        assert selection.edges == [e1]
        assert data_access.calls == [("fetch_edge", "e1")]
        assert "Multi-edge selection unsupported" in caplog.text

    @pytest.mark.asyncio
    async def test_explicit_edges_keep_first(self, reconciler, data_access, e1, e2):
        """EDGE: explicit edge lists are held to the same single-edge policy."""
        selection = await reconciler.resolve(SelectionRequest(edges=[e1, e2]))

        assert selection.edges == [e1]
        assert data_access.calls == []

    @pytest.mark.asyncio
    async def test_vertices_win_over_edges(self, reconciler, data_access, v1):
        """CRITICAL: when both sides resolve, the edge result is dropped."""
        selection = await reconciler.resolve({"vertexIds": ["v1"], "edgeIds": "e1"})

        assert selection.vertices == [v1]
        assert selection.edges == []
        # Both lookups were still issued
        assert sorted(data_access.call_names()) == ["fetch_edge", "fetch_vertices"]

    @pytest.mark.asyncio
    async def test_edges_used_when_vertices_resolve_empty(self, reconciler, e1):
        """EDGE: unknown vertex ids resolve to nothing, so the edge stands."""
        selection = await reconciler.resolve({"vertexIds": ["missing"], "edgeIds": "e1"})

        assert selection.vertices == []
        assert selection.edges == [e1]

    @pytest.mark.asyncio
    async def test_empty_request_issues_no_lookups(self, reconciler, data_access):
        """EDGE: no fields means an empty selection and no facade traffic."""
        selection = await reconciler.resolve(None)

        assert selection.is_empty
        assert data_access.calls == []

    @pytest.mark.asyncio
    async def test_empty_edge_id_list_is_ignored(self, reconciler, data_access):
        """EDGE: an empty edgeIds list does not trigger an edge lookup."""
        selection = await reconciler.resolve({"edgeIds": []})

        assert selection.is_empty
        assert data_access.calls == []

    @pytest.mark.asyncio
    async def test_unknown_edge_resolves_empty(self, reconciler):
        selection = await reconciler.resolve({"edgeIds": "nope"})

        assert selection.is_empty

    @pytest.mark.asyncio
    async def test_failed_lookup_raises_fetch_failed(self, reconciler, data_access, v1):
        """CRITICAL: lookup failure propagates and nothing is committed."""
        reconciler.apply(Selection(vertices=[v1]))
        data_access.fail_on.add("edge")

        with pytest.raises(FetchFailed):
            await reconciler.resolve({"vertexIds": ["v2"], "edgeIds": "e1"})

        assert reconciler.current_as_public_view() == Selection(vertices=[v1])

    @pytest.mark.asyncio
    async def test_unexpected_lookup_error_is_wrapped(self, data_access):
        """EDGE: facade errors that are not FetchFailed are wrapped, with the cause kept."""
        async def broken(vertex_ids):
            raise ConnectionError("socket closed")

        data_access.fetch_vertices = broken
        reconciler = SelectionReconciler(data_access)

        with pytest.raises(FetchFailed) as excinfo:
            await reconciler.resolve({"vertexIds": ["v1"]})

        assert excinfo.value.lookup == "vertex"
        assert isinstance(excinfo.value.__cause__, ConnectionError)

    @pytest.mark.asyncio
    @pytest.mark.concurrency
    async def test_vertex_and_edge_lookups_run_concurrently(self, reconciler, data_access, v1):
        """HAPPY PATH: both lookups are in flight before either completes."""
        data_access.gates["v1"] = asyncio.Event()
        data_access.gates["e1"] = asyncio.Event()

        task = asyncio.create_task(reconciler.resolve({"vertexIds": ["v1"], "edgeIds": "e1"}))
        for _ in range(5):
            await asyncio.sleep(0)

        assert sorted(data_access.call_names()) == ["fetch_edge", "fetch_vertices"]
        assert reconciler.state == ReconcilerState.RESOLVING
        assert not task.done()

        data_access.gates["v1"].set()
        data_access.gates["e1"].set()
        selection = await task

        assert selection.vertices == [v1]
        assert reconciler.state == ReconcilerState.IDLE


# =============================================================================
# APPLY
# =============================================================================

class TestApply:
    """The equality-gated commit."""

    def test_first_apply_is_a_change(self, reconciler, v1):
        outcome = reconciler.apply(Selection(vertices=[v1]))

        assert outcome.changed is True
        assert outcome.selection == Selection(vertices=[v1])
        assert reconciler.last_commit_state == ReconcilerState.COMMITTED_CHANGED

    @pytest.mark.critical
    def test_apply_is_idempotent(self, reconciler, v1):
        """CRITICAL: equal selections twice -> one Changed, then Unchanged."""
        first = reconciler.apply(Selection(vertices=[v1]))
        second = reconciler.apply(Selection(vertices=[v1]))

        assert first.changed is True
        assert second.changed is False
        assert second.selection is None
        assert reconciler.last_commit_state == ReconcilerState.COMMITTED_UNCHANGED

    @pytest.mark.asyncio
    @pytest.mark.critical
    async def test_resolving_the_committed_selection_is_unchanged(self, reconciler):
        """CRITICAL: previous={v1}; resolve(vertexIds=[v1]) then apply -> Unchanged."""
        reconciler.apply(Selection(vertices=[Vertex(id="v1", properties={"title": "Alice"})]))

        outcome = reconciler.apply(await reconciler.resolve({"vertexIds": ["v1"]}))

        assert outcome.changed is False

    def test_different_selection_replaces_current(self, reconciler, v1, v2):
        reconciler.apply(Selection(vertices=[v1]))
        outcome = reconciler.apply(Selection(vertices=[v2]))

        assert outcome.changed is True
        assert reconciler.current_as_public_view().vertex_ids() == ["v2"]

    def test_order_matters_for_equality(self, reconciler, v1, v2):
        """EDGE: selections are ordered sequences."""
        reconciler.apply(Selection(vertices=[v1, v2]))

        assert reconciler.apply(Selection(vertices=[v2, v1])).changed is True

    def test_first_empty_selection_is_a_change(self, reconciler):
        """EDGE: with no history, even an empty selection is published once."""
        assert reconciler.apply(Selection()).changed is True
        assert reconciler.apply(Selection()).changed is False

    def test_public_view_is_a_copy(self, reconciler, v1):
        """HAPPY PATH: observers cannot mutate committed state."""
        reconciler.apply(Selection(vertices=[v1]))

        view = reconciler.current_as_public_view()
        view.vertices[0].properties["title"] = "Mallory"
        view.vertices.append(Vertex(id="intruder"))

        fresh = reconciler.current_as_public_view()
        assert fresh.vertex_ids() == ["v1"]
        assert fresh.vertices[0].properties["title"] == "Alice"

    def test_caller_mutation_after_apply_does_not_leak(self, reconciler, v1):
        selection = Selection(vertices=[v1])
        reconciler.apply(selection)

        selection.vertices.clear()

        assert reconciler.current_as_public_view().vertex_ids() == ["v1"]

    def test_reset_clears_state_and_history(self, reconciler, v1):
        reconciler.apply(Selection(vertices=[v1]))
        reconciler.reset()

        assert reconciler.current_as_public_view().is_empty
        # History gone, so the same selection counts as a change again
        assert reconciler.apply(Selection(vertices=[v1])).changed is True


class TestSelectionInvariant:
    """Vertices XOR edges."""

    def test_mixed_selection_is_rejected(self, v1, e1):
        with pytest.raises(ValueError):
            Selection(vertices=[v1], edges=[e1])

    @pytest.mark.asyncio
    @pytest.mark.parametrize("request_data", [
        {"vertexIds": ["v1"], "edgeIds": "e1"},
        {"vertexIds": ["v1", "v2"], "edges": [{"id": "e2", "source": {"id": "v2"}, "target": {"id": "v3"}}]},
        {"vertexIds": [], "edgeIds": ["e1", "e2"]},
        {"edgeIds": "e2"},
    ])
    async def test_resolved_selections_never_mix(self, reconciler, request_data):
        selection = await reconciler.resolve(request_data)

        assert not (selection.vertices and selection.edges)


# =============================================================================
# STALE RESOLUTIONS
# =============================================================================

@pytest.mark.concurrency
class TestStaleResolutions:
    """Token ordering across overlapping resolutions."""

    def test_tokens_are_monotonic(self, reconciler):
        first = reconciler.begin_resolution()
        second = reconciler.begin_resolution()

        assert second > first

    def test_older_token_commits_by_default(self, reconciler, v1, v2):
        """Completion order wins when stale discarding is off."""
        older = reconciler.begin_resolution()
        newer = reconciler.begin_resolution()

        reconciler.apply(Selection(vertices=[v2]), token=newer)
        outcome = reconciler.apply(Selection(vertices=[v1]), token=older)

        assert outcome.changed is True
        assert reconciler.current_as_public_view().vertex_ids() == ["v1"]

    def test_older_token_discarded_when_enabled(self, data_access, v1, v2):
        reconciler = SelectionReconciler(data_access, discard_stale=True)
        older = reconciler.begin_resolution()
        newer = reconciler.begin_resolution()

        reconciler.apply(Selection(vertices=[v2]), token=newer)
        outcome = reconciler.apply(Selection(vertices=[v1]), token=older)

        assert outcome.changed is False
        assert outcome.stale is True
        assert reconciler.current_as_public_view().vertex_ids() == ["v2"]

    def test_unchanged_newer_result_still_fences_older(self, data_access, v1, v2):
        """EDGE: a newer result equal to the current one still makes older ones stale."""
        reconciler = SelectionReconciler(data_access, discard_stale=True)
        reconciler.apply(Selection(vertices=[v2]), token=reconciler.begin_resolution())

        older = reconciler.begin_resolution()
        newer = reconciler.begin_resolution()
        assert reconciler.apply(Selection(vertices=[v2]), token=newer).changed is False

        assert reconciler.apply(Selection(vertices=[v1]), token=older).stale is True

    def test_reset_makes_in_flight_tokens_stale(self, data_access, v1):
        reconciler = SelectionReconciler(data_access, discard_stale=True)
        in_flight = reconciler.begin_resolution()
        reconciler.begin_resolution()

        reconciler.reset()

        assert reconciler.apply(Selection(vertices=[v1]), token=in_flight).stale is True

    def test_reset_drops_in_flight_tokens_by_default(self, reconciler, v1, v2):
        """Completion order only applies within a session; reset() fences the old one off."""
        in_flight = reconciler.begin_resolution()

        reconciler.reset()
        outcome = reconciler.apply(Selection(vertices=[v1]), token=in_flight)

        assert outcome.changed is False
        assert outcome.stale is True
        assert reconciler.current_as_public_view().is_empty

        fresh = reconciler.begin_resolution()
        assert reconciler.apply(Selection(vertices=[v2]), token=fresh).changed is True
