r"""
Tests for ``seglink.linker``.
"""

from __future__ import annotations

import math

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from seglink import (
    Detection,
    LinkerState,
    RecordingLogger,
    SegmentCostMatrix,
    SegmentLinker,
    TrackGraph,
    default_settings,
    extract_segments,
    validate_settings,
)
from seglink.assignment import BipartiteMatching, Jonker
from seglink.consts import KEY_ALLOW_GAP_CLOSING


def _edges(graph: TrackGraph) -> set[frozenset[Detection]]:
    return {frozenset((a, b)) for a, b, _ in graph.edges()}


def test_gap_closing(graph, segment_factory, settings):
    s1 = segment_factory(graph, range(0, 3), x=0.0)
    s2 = segment_factory(graph, range(3, 6), x=2.0)
    before = _edges(graph)

    linker = SegmentLinker(graph, settings)
    assert linker.process(), linker.error_message

    assert linker.state == LinkerState.DONE
    assert linker.result is graph
    assert _edges(graph) - before == {frozenset((s1[-1], s2[0]))}
    assert graph.edge_weight(s1[-1], s2[0]) == pytest.approx(4.0)
    assert linker.assignment == {s1[-1]: s2[0]}
    assert linker.costs == {s1[-1]: pytest.approx(4.0)}
    assert linker.error_message == ""
    assert linker.processing_time >= 0.0


@pytest.mark.parametrize("allow_splitting", [True, False])
def test_splitting(graph, segment_factory, settings, allow_splitting):
    s1 = segment_factory(graph, range(0, 5), x=0.0)
    s2 = segment_factory(graph, range(3, 6), x=1.0)
    before = _edges(graph)

    settings["allow_track_splitting"] = allow_splitting
    linker = SegmentLinker(graph, settings)
    assert linker.process(), linker.error_message

    added = _edges(graph) - before
    if allow_splitting:
        assert added == {frozenset((s1[2], s2[0]))}
        assert graph.edge_weight(s1[2], s2[0]) == pytest.approx(1.0)
        assert len(graph.track_ids()) == 1
    else:
        assert added == set()
        assert linker.costs == {}
        assert len(graph.track_ids()) == 2


def test_merging(graph, segment_factory, settings):
    s1 = segment_factory(graph, range(0, 5), x=0.0)
    s2 = segment_factory(graph, range(0, 2), x=1.0)
    before = _edges(graph)

    settings["allow_track_merging"] = True
    linker = SegmentLinker(graph, settings)
    assert linker.process(), linker.error_message

    assert _edges(graph) - before == {frozenset((s2[-1], s1[2]))}


def test_alternative_cost_threshold(graph):
    """
    Ten independent candidate links with costs 1, 4, ..., 100. With a median
    cutoff and a factor of one, the alternative cost is 30.5 and exactly the
    five cheapest links are made.
    """
    tails = []
    heads = []
    with graph.updating():
        for i in range(10):
            tails.append(graph.add_node(Detection(1000.0 * i, frame=0)))
            heads.append(graph.add_node(Detection(1000.0 * i + i + 1, frame=1)))

    cfg = default_settings()
    cfg.update(cutoff_percentile=0.5, alternative_linking_cost_factor=1.0)
    linker = SegmentLinker(graph, cfg)
    assert linker.process(), linker.error_message

    assert linker.assignment == {tails[i]: heads[i] for i in range(5)}
    assert sorted(linker.costs.values()) == [1.0, 4.0, 9.0, 16.0, 25.0]
    assert graph.num_edges() == 5


def test_missing_setting(graph, segment_factory, settings):
    segment_factory(graph, range(0, 3), x=0.0)
    segment_factory(graph, range(3, 6), x=2.0)
    before = _edges(graph)

    del settings[KEY_ALLOW_GAP_CLOSING]
    linker = SegmentLinker(graph, settings)

    assert not linker.process()
    assert linker.state == LinkerState.REJECTED
    assert linker.error_message.startswith("[SegmentLinker] ")
    assert KEY_ALLOW_GAP_CLOSING in linker.error_message
    assert _edges(graph) == before


@pytest.mark.parametrize(
    ["key", "value"],
    [
        ("gap_closing_max_distance", True),
        ("gap_closing_max_frame_gap", 2.0),
        ("cutoff_percentile", 1.5),
        ("unexpected_parameter", 1),
    ],
)
def test_invalid_setting(graph, segment_factory, settings, key, value):
    segment_factory(graph, range(0, 3), x=0.0)
    segment_factory(graph, range(3, 6), x=2.0)
    before = _edges(graph)

    settings[key] = value
    linker = SegmentLinker(graph, settings)

    assert not linker.process()
    assert linker.state == LinkerState.REJECTED
    assert key in linker.error_message
    assert _edges(graph) == before


def test_null_input(settings):
    linker = SegmentLinker(None, settings)
    assert not linker.process()
    assert linker.state == LinkerState.REJECTED
    assert "graph" in linker.error_message

    linker = SegmentLinker(TrackGraph(), None)
    assert not linker.process()
    assert linker.state == LinkerState.REJECTED


def test_solver_failure(graph, segment_factory, settings):
    segment_factory(graph, range(0, 3), x=0.0)
    segment_factory(graph, range(3, 6), x=2.0)
    before = _edges(graph)

    class Broken(BipartiteMatching):
        def _assign(self, cost_matrix):
            raise RuntimeError("solver exploded")

    # A single link yields a 2 x 2 component, which reaches the solver
    linker = SegmentLinker(graph, settings, assignment=Broken())
    assert not linker.process()
    assert linker.state == LinkerState.FAILED
    assert "solver exploded" in linker.error_message
    assert linker.error_message.startswith("[SegmentLinker] ")
    assert _edges(graph) == before


def test_nothing_to_link(graph, segment_factory, settings):
    segment_factory(graph, range(0, 3), x=0.0)
    segment_factory(graph, range(0, 3), x=100.0)
    before = _edges(graph)

    linker = SegmentLinker(graph, settings)
    assert linker.process(), linker.error_message
    assert linker.state == LinkerState.DONE
    assert linker.costs == {}
    assert _edges(graph) == before


def test_empty_graph(settings):
    linker = SegmentLinker(TrackGraph(), settings)
    assert linker.process(), linker.error_message


def test_num_threads(settings):
    linker = SegmentLinker(TrackGraph(), settings)
    assert linker.num_threads >= 1
    linker.num_threads = 3
    assert linker.num_threads == 3
    with pytest.raises(ValueError):
        linker.num_threads = 0


def test_progress(graph, segment_factory, settings):
    segment_factory(graph, range(0, 3), x=0.0)
    segment_factory(graph, range(3, 6), x=2.0)

    logger = RecordingLogger()
    linker = SegmentLinker(graph, settings)
    linker.set_logger(logger)
    assert linker.process(), linker.error_message

    assert logger.progress == sorted(logger.progress)
    assert logger.progress[-1] == pytest.approx(1.0)
    assert any(0.9 <= p < 1.0 + 1e-9 for p in logger.progress)
    assert logger.status


def test_from_full_settings(graph, segment_factory, settings):
    s1 = segment_factory(graph, range(0, 3), x=0.0)
    s2 = segment_factory(graph, range(3, 6), x=2.0)

    full = dict(settings, linking_max_distance=10.0, max_frame_gap_other=4)
    logger = RecordingLogger()
    linker = SegmentLinker.from_full_settings(graph, full, logger)
    assert linker.process(), linker.error_message

    assert graph.has_edge(s1[-1], s2[0])
    assert all(0.5 - 1e-9 <= p <= 1.0 + 1e-9 for p in logger.progress)
    assert logger.progress[-1] == pytest.approx(1.0)


def test_from_full_settings_missing_key(graph):
    linker = SegmentLinker.from_full_settings(graph, {"linking_max_distance": 10.0})
    assert not linker.process()
    assert KEY_ALLOW_GAP_CLOSING in linker.error_message


def _build(layout):
    graph = TrackGraph()
    with graph.updating():
        for start, length, x, dx in layout:
            previous = None
            for k in range(length):
                node = graph.add_node(Detection(x + dx * k, frame=start + k))
                if previous is not None:
                    graph.add_edge(previous, node)
                previous = node
    return graph


def _layout_key(graph):
    return sorted(
        (*sorted([(a.frame, a.position), (b.frame, b.position)]), w)
        for a, b, w in graph.edges()
    )


_LAYOUTS = st.lists(
    st.tuples(
        st.integers(0, 4),
        st.integers(1, 4),
        st.integers(0, 6).map(float),
        st.integers(-1, 1).map(float),
    ),
    min_size=1,
    max_size=5,
)


def _all_events_settings():
    cfg = default_settings()
    cfg.update(
        allow_track_splitting=True,
        allow_track_merging=True,
        gap_closing_max_distance=3.0,
        splitting_max_distance=3.0,
        merging_max_distance=3.0,
    )
    return cfg


def _brute_force(linking, alternative) -> float:
    """
    Enumerate every one-to-one set of links. Choosing ``k`` links replaces
    ``k`` terminations and ``k`` initiations by ``k`` auxiliary cells, so the
    objective is the sum of link costs plus ``(n + m - k)`` alternative costs.
    """
    by_row: dict[int, list[tuple[int, float]]] = {}
    for r, c, cost in zip(linking.rows.tolist(), linking.cols.tolist(), linking.costs.tolist()):
        by_row.setdefault(r, []).append((c, cost))
    rows = sorted(by_row)

    def best(i: int, used: frozenset[int]) -> float:
        if i == len(rows):
            return 0.0
        out = best(i + 1, used)
        for c, cost in by_row[rows[i]]:
            if c not in used:
                out = min(out, cost - alternative + best(i + 1, used | {c}))
        return out

    return best(0, frozenset()) + (linking.num_rows + linking.num_cols) * alternative


@settings(deadline=None, max_examples=40, suppress_health_check=[HealthCheck.too_slow])
@given(layout=_LAYOUTS, jonker=st.booleans())
def test_optimal_linking(layout, jonker):
    cfg = _all_events_settings()
    graph = _build(layout)

    matrix = SegmentCostMatrix(validate_settings(cfg))(extract_segments(graph))
    before = {frozenset((a, b)) for a, b, _ in graph.edges()}

    linker = SegmentLinker(graph, cfg, assignment=Jonker() if jonker else BipartiteMatching())
    assert linker.process(), linker.error_message

    added = {frozenset((a, b)) for a, b, _ in graph.edges()} - before
    assert len(added) == len(linker.costs)

    if matrix is None:
        assert linker.costs == {}
        return

    n = matrix.linking.num_rows
    m = matrix.linking.num_cols
    k = len(linker.costs)
    objective = sum(linker.costs.values()) + (n + m - k) * matrix.alternative
    assert objective == pytest.approx(_brute_force(matrix.linking, matrix.alternative))

    # Every link is a feasible candidate with its realized cost
    candidates = {(s, t): cost for s, t, cost, _ in matrix.linking.cells()}
    for source, target in linker.assignment.items():
        assert linker.costs[source] == pytest.approx(candidates[(source, target)])
        assert linker.costs[source] <= 9.0
        assert not math.isinf(linker.costs[source])


@settings(deadline=None, max_examples=20)
@given(layout=_LAYOUTS)
def test_deterministic(layout):
    cfg = _all_events_settings()
    results = []
    for _ in range(2):
        graph = _build(layout)
        linker = SegmentLinker(graph, cfg)
        assert linker.process(), linker.error_message
        results.append(_layout_key(graph))
    assert results[0] == results[1]


@pytest.mark.parametrize("solver", [BipartiteMatching, Jonker])
def test_zero_cost_ties_terminate(graph, solver):
    """
    Coincident detections make every link cost zero, and with it the
    alternative cost. Links then tie with terminating and initiating, and are
    not made.
    """
    with graph.updating():
        for frame in (0, 1, 1, 2):
            graph.add_node(Detection(0.0, frame=frame))

    linker = SegmentLinker(graph, default_settings(), assignment=solver())
    assert linker.process(), linker.error_message
    assert linker.assignment == {}
    assert linker.costs == {}
    assert graph.num_edges() == 0


def test_given_solver_keeps_thread_count(graph, segment_factory, settings):
    segment_factory(graph, range(0, 3), x=0.0)
    segment_factory(graph, range(3, 6), x=2.0)

    solver = Jonker(num_threads=2)
    linker = SegmentLinker(graph, settings, assignment=solver)
    linker.num_threads = 5
    assert linker.process(), linker.error_message
    assert solver.num_threads == 2


class FailingGraph(TrackGraph):
    """
    Graph that refuses to add edges after a given number of them.
    """

    def __init__(self) -> None:
        super().__init__()
        self.remaining: int | None = None

    def add_edge(self, a, b, weight=1.0):
        if self.remaining is not None:
            if self.remaining == 0:
                raise RuntimeError("graph is read-only")
            self.remaining -= 1
        super().add_edge(a, b, weight)


def test_failed_application_leaves_graph_untouched(segment_factory, settings):
    graph = FailingGraph()
    s1 = segment_factory(graph, range(0, 3), x=0.0)
    s2 = segment_factory(graph, range(3, 6), x=1.0)
    s3 = segment_factory(graph, range(0, 3), x=100.0)
    s4 = segment_factory(graph, range(3, 6), x=101.0)
    before = _edges(graph)

    # The first of the two gap closing links is added, the second fails
    graph.remaining = 1
    linker = SegmentLinker(graph, settings)
    assert not linker.process()
    assert linker.state == LinkerState.FAILED
    assert "read-only" in linker.error_message
    assert graph.remaining == 0
    assert _edges(graph) == before
    assert not graph.has_edge(s1[-1], s2[0])
    assert not graph.has_edge(s3[-1], s4[0])
