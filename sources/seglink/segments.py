r"""
Extraction of track segments from a graph.

A segment is a maximal simple path of detections. The segment linker expects
the input graph to consist of such paths only; branching components are
reported and decomposed by ordering their detections in time.
"""

from __future__ import annotations

import dataclasses as D
import logging
import typing as T

from .detections import Detection, frame_order

if T.TYPE_CHECKING:
    from .graph import TrackGraph

__all__ = ["Segment", "extract_segments", "is_simple_path"]

_logger = logging.getLogger(__name__)


@D.dataclass(frozen=True, slots=True)
class Segment:
    """
    Read-only view of a segment, with its detections ordered by frame.
    """

    detections: tuple[Detection, ...]

    def __post_init__(self) -> None:
        if len(self.detections) == 0:
            msg = "A segment must contain at least one detection"
            raise ValueError(msg)

    def __len__(self) -> int:
        return len(self.detections)

    def __iter__(self) -> T.Iterator[Detection]:
        return iter(self.detections)

    @property
    def head(self) -> Detection:
        return self.detections[0]

    @property
    def tail(self) -> Detection:
        return self.detections[-1]

    @property
    def middles(self) -> tuple[Detection, ...]:
        return self.detections[1:-1]

    @property
    def first_frame(self) -> int:
        return self.head.frame

    @property
    def last_frame(self) -> int:
        return self.tail.frame


def is_simple_path(graph: TrackGraph, nodes: T.Collection[Detection]) -> bool:
    """
    Check whether a connected set of nodes forms a simple path, i.e. has no node
    with more than two neighbours and no cycle.
    """
    num_edges = 0
    for node in nodes:
        degree = graph.degree(node)
        if degree > 2:
            return False
        num_edges += degree
    return num_edges // 2 == len(nodes) - 1


def extract_segments(graph: TrackGraph) -> list[Segment]:
    """
    Derive the segments of a graph. Single, unconnected detections yield
    one-node segments.

    Parameters
    ----------
    graph
        Graph whose connected components are expected to be simple paths.

    Returns
    -------
    list[Segment]
        Segments sorted by the frame and identifier of their head.
    """
    segments: list[Segment] = []
    num_branching = 0
    for component in graph.connected_components():
        if not is_simple_path(graph, component):
            num_branching += 1
        segments.append(Segment(tuple(sorted(component, key=frame_order))))

    if num_branching > 0:
        _logger.warning(
            "%d of %d connected components are not simple paths; their "
            "detections are ordered by frame to form segments",
            num_branching,
            len(segments),
        )

    segments.sort(key=lambda s: frame_order(s.head))
    return segments
