"""
Diff Engine Tests
=================

Incremental projections seeded by a consumer's old frontier. Outputs are
the newly reachable nodes (seeds excluded) plus every incident edge.
"""

from roomdag.diff import DiffEngine
from roomdag.projection import ProjectionBuilder, ProjectionConfig
from tests.fixtures import (
    LOCAL_SERVER, chain, fresh_graph, ingest_backfill, ingest_timeline, make_raw_event,
)


def diff_engine(graph) -> DiffEngine:
    builder = ProjectionBuilder(LOCAL_SERVER, ProjectionConfig().default_fields)
    return DiffEngine(graph.store, builder)


class TestSnapshot:

    def test_snapshot_of_empty_graph(self):
        assert diff_engine(fresh_graph()).snapshot().is_empty

    def test_snapshot_contains_everything(self):
        graph = fresh_graph()
        ingest_timeline(graph, chain("$a", "$b", "$c"))
        snapshot = diff_engine(graph).snapshot()

        assert snapshot.node_ids == ("$a", "$b", "$c")
        assert set(snapshot.edge_pairs) == {("$b", "$a"), ("$c", "$b")}

    def test_snapshot_nodes_in_causal_order(self):
        graph = fresh_graph()
        ingest_timeline(graph, [
            make_raw_event("$late", 3, ts=1),
            make_raw_event("$early", 1, ts=9),
            make_raw_event("$mid2", 2, ts=5),
            make_raw_event("$mid1", 2, ts=4),
        ])
        assert diff_engine(graph).snapshot().node_ids == ("$early", "$mid1", "$mid2", "$late")


class TestDiffSinceTail:

    def test_backfilled_chain_is_exactly_the_new_part(self):
        graph = fresh_graph()
        ingest_timeline(graph, [make_raw_event("$d", 4, ["$c"])])
        old_tails = sorted(graph.frontier.state.tails)

        ingest_backfill(graph, [
            make_raw_event("$c", 3, ["$b"]),
            make_raw_event("$b", 2, ["$a"]),
            make_raw_event("$a", 1),
        ])
        delta = diff_engine(graph).diff_since_tail(old_tails)

        assert delta.node_ids == ("$a", "$b", "$c")
        assert set(delta.edge_pairs) == {("$d", "$c"), ("$c", "$b"), ("$b", "$a")}

    def test_seeds_are_not_returned(self):
        graph = fresh_graph()
        ingest_timeline(graph, chain("$a", "$b"))
        delta = diff_engine(graph).diff_since_tail(["$b"])

        assert "$b" not in delta.node_ids
        assert delta.node_ids == ("$a",)

    def test_nothing_new_is_empty(self):
        graph = fresh_graph()
        ingest_timeline(graph, chain("$a", "$b"))
        assert diff_engine(graph).diff_since_tail(["$a"]).is_empty

    def test_unknown_seeds_are_ignored(self):
        graph = fresh_graph()
        ingest_timeline(graph, chain("$a", "$b"))
        engine = diff_engine(graph)

        assert engine.diff_since_tail(["$ghost"]).is_empty
        assert engine.diff_since_tail([]).is_empty
        assert engine.diff_since_tail(["$ghost", "$b"]).node_ids == ("$a",)

    def test_incident_edges_include_side_branches(self):
        # $a is new; $side (already known) also cites it
        graph = fresh_graph()
        ingest_timeline(graph, [
            make_raw_event("$b", 2, ["$a"]),
            make_raw_event("$side", 2, ["$a"]),
        ])
        ingest_backfill(graph, [make_raw_event("$a", 1)])

        delta = diff_engine(graph).diff_since_tail(["$b"])
        assert delta.node_ids == ("$a",)
        assert set(delta.edge_pairs) == {("$b", "$a"), ("$side", "$a")}

    def test_does_not_mutate_graph(self):
        graph = fresh_graph()
        ingest_timeline(graph, chain("$a", "$b", "$c"))
        edges_before = sorted(graph.store.edges())

        diff_engine(graph).diff_since_tail(["$c"])
        diff_engine(graph).diff_since_head(["$a"])

        assert sorted(graph.store.edges()) == edges_before


class TestDiffSinceHead:

    def test_new_descendants(self):
        graph = fresh_graph()
        ingest_timeline(graph, chain("$a", "$b"))
        old_heads = sorted(graph.frontier.state.heads)

        ingest_timeline(graph, [
            make_raw_event("$c", 3, ["$b"]),
            make_raw_event("$d", 4, ["$c"]),
        ])
        delta = diff_engine(graph).diff_since_head(old_heads)

        assert delta.node_ids == ("$c", "$d")
        assert set(delta.edge_pairs) == {("$c", "$b"), ("$d", "$c")}

    def test_multiple_seeds(self):
        graph = fresh_graph()
        ingest_timeline(graph, [
            make_raw_event("$l", 1),
            make_raw_event("$r", 1),
            make_raw_event("$merge", 2, ["$l", "$r"]),
        ])
        delta = diff_engine(graph).diff_since_head(["$l", "$r"])

        assert delta.node_ids == ("$merge",)
        assert set(delta.edge_pairs) == {("$merge", "$l"), ("$merge", "$r")}

    def test_edges_render_child_to_parent(self):
        graph = fresh_graph()
        ingest_timeline(graph, chain("$a", "$b"))
        edge = diff_engine(graph).diff_since_head(["$a"]).edges[0]

        assert edge.to_dict() == {"from": "$b", "to": "$a"}
