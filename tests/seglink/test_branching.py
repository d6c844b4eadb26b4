r"""
Tests for ``seglink.branching``.
"""

from __future__ import annotations

import typing as T

import pytest

from seglink import BranchingAnalyzer, Detection, TrackGraph, frame_order

N_LINEAR_TRACKS = 5
N_TRACKS_WITH_GAPS = 7
N_TRACKS_WITH_SPLITS = 9
N_TRACKS_WITH_MERGES = 11
DEPTH = 9


class Model(T.NamedTuple):
    graph: TrackGraph
    split: Detection
    first_spot: Detection
    last_spot_1: Detection
    last_spot_2: Detection


def _chain(graph: TrackGraph, frames: T.Iterable[int], previous: Detection | None = None):
    for frame in frames:
        spot = graph.add_node(Detection(0.0, frame=frame))
        if previous is not None:
            graph.add_edge(previous, spot)
        previous = spot
    return previous


@pytest.fixture()
def model() -> Model:
    graph = TrackGraph()
    with graph.updating():
        for _ in range(N_LINEAR_TRACKS):
            _chain(graph, range(DEPTH))

        for _ in range(N_TRACKS_WITH_GAPS):
            _chain(graph, (j for j in range(DEPTH) if j != DEPTH // 2))

        for _ in range(N_TRACKS_WITH_SPLITS):
            first_spot = graph.add_node(Detection(0.0, frame=0))
            split = _chain(graph, range(1, DEPTH // 2 + 1), first_spot)
            last_spot_1 = _chain(graph, range(DEPTH // 2 + 1, DEPTH), split)
            last_spot_2 = _chain(graph, range(DEPTH // 2 + 1, DEPTH), split)

        for _ in range(N_TRACKS_WITH_MERGES):
            merge = _chain(graph, range(DEPTH // 2 + 1))
            _chain(graph, range(DEPTH // 2 + 1, DEPTH), merge)
            other = _chain(graph, range(DEPTH // 2))
            graph.add_edge(other, merge)

    return Model(graph, split, first_spot, last_spot_1, last_spot_2)


class RecordingAnalyzer(BranchingAnalyzer):
    def __init__(self) -> None:
        super().__init__()
        self.keys: set[int] | None = None

    def process(self, track_ids, graph) -> None:
        self.keys = set(track_ids)
        super().process(self.keys, graph)


def test_process(model):
    graph = model.graph
    analyzer = BranchingAnalyzer()
    analyzer.process(graph.track_ids(), graph)

    features = [analyzer[t] for t in graph.track_ids()]
    assert sum(f.gaps for f in features) == N_TRACKS_WITH_GAPS
    assert sum(f.splits for f in features) == N_TRACKS_WITH_SPLITS
    assert sum(f.merges for f in features) == N_TRACKS_WITH_MERGES
    assert sum(f.complex for f in features) == 0
    assert sum(f.is_linear for f in features) == N_LINEAR_TRACKS
    assert max(f.longest_gap for f in features) == 2
    assert sorted(f.spots for f in features)[:N_TRACKS_WITH_GAPS] == [DEPTH - 1] * N_TRACKS_WITH_GAPS


def test_model_changed(model):
    graph = model.graph
    old_keys = set(graph.track_ids())

    analyzer = RecordingAnalyzer()
    analyzer.process(old_keys, graph)
    analyzer.keys = None
    analyzer.attach(graph)

    # A new track leaves the old tracks untouched
    with graph.updating():
        spot_1 = graph.add_node(Detection(0.0, frame=0))
        spot_2 = graph.add_node(Detection(0.0, frame=1))
        graph.add_edge(spot_1, spot_2)

    assert analyzer.keys
    assert not analyzer.keys & old_keys
    analyzer.keys = None

    # Grafting a spot on a track re-analyzes that track only
    first_key = min(old_keys)
    first_spot = next(iter(graph.track_nodes(first_key)))
    with graph.updating():
        new_spot = graph.add_node(Detection(0.0, frame=first_spot.frame + 1))
        graph.add_edge(first_spot, new_spot)

    assert analyzer.keys is not None
    assert len(analyzer.keys) == 1
    (key,) = analyzer.keys
    assert {first_spot, new_spot} <= graph.track_nodes(key)


def test_model_changed_move(model):
    graph = model.graph
    analyzer = RecordingAnalyzer()
    analyzer.process(graph.track_ids(), graph)
    analyzer.attach(graph)
    analyzer.keys = None

    split_id = next(t for t in graph.track_ids() if analyzer[t].splits > 0)
    last_spot = max(graph.track_nodes(split_id), key=frame_order)

    # Moving the last spot to the first frame turns its branch into a merge
    graph.move_node(last_spot, 0)

    assert analyzer.keys == {split_id}
    assert analyzer[split_id].splits == 1
    assert analyzer[split_id].merges == 1


def test_model_changed_remove(model):
    graph = model.graph
    analyzer = RecordingAnalyzer()
    analyzer.process(graph.track_ids(), graph)
    analyzer.attach(graph)
    analyzer.keys = None

    # Removing the branching spot yields three linear tracks
    graph.remove_node(model.split)

    assert analyzer.keys is not None
    assert len(analyzer.keys) == 3
    assert analyzer.keys == {
        graph.track_of(model.first_spot),
        graph.track_of(model.last_spot_1),
        graph.track_of(model.last_spot_2),
    }
    for key in analyzer.keys:
        assert analyzer[key].splits == 0
        assert analyzer[key].merges == 0
        assert analyzer[key].complex == 0


def test_removed_tracks_are_forgotten(model):
    graph = model.graph
    analyzer = BranchingAnalyzer()
    analyzer.process(graph.track_ids(), graph)
    listener = analyzer.attach(graph)

    spot = graph.add_node(Detection(0.0, frame=0))
    track_id = graph.track_of(spot)
    assert track_id in analyzer
    assert analyzer[track_id].spots == 1

    graph.remove_node(spot)
    assert track_id not in analyzer

    assert graph.remove_listener(listener)
