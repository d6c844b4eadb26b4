r"""
Common set-up for all tests.

Defines fixtures that build graphs of segments.
"""

from __future__ import annotations

import typing as T

import pytest

from seglink import Detection, TrackGraph, default_settings


def add_segment(
    graph: TrackGraph,
    frames: T.Iterable[int],
    x: float | T.Callable[[int], float] = 0.0,
    y: float = 0.0,
    **features: float,
) -> list[Detection]:
    """
    Add a chain of detections, one per frame, linked in frame order.
    """
    nodes = []
    with graph.updating():
        for frame in frames:
            pos = x(frame) if callable(x) else x
            node = graph.add_node(Detection(pos, y, frame=frame, features=features))
            if nodes:
                graph.add_edge(nodes[-1], node)
            nodes.append(node)
    return nodes


def edge_set(graph: TrackGraph) -> set[frozenset[Detection]]:
    return {frozenset((a, b)) for a, b, _ in graph.edges()}


@pytest.fixture()
def graph() -> TrackGraph:
    return TrackGraph()


@pytest.fixture()
def segment_factory() -> T.Callable[..., list[Detection]]:
    return add_segment


@pytest.fixture()
def settings() -> dict[str, T.Any]:
    return default_settings()
