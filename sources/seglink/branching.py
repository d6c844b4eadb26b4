"""
Branching statistics of tracks: how many gaps, splits and merges a track
contains. Useful to inspect the outcome of segment linking.
"""

from __future__ import annotations

import dataclasses as D
import typing as T

from .detections import Detection
from .graph import GraphChangeEvent, TrackGraph

__all__ = ["TrackBranching", "BranchingAnalyzer", "analyze_track"]


@D.dataclass(frozen=True, slots=True)
class TrackBranching:
    """
    Attributes
    ----------
    gaps
        Number of links that span more than one frame.
    longest_gap
        Largest frame span of a link, zero if the track has no gap.
    splits
        Number of detections with more than one neighbour in later frames.
    merges
        Number of detections with more than one neighbour in earlier frames.
    complex
        Number of detections that are both a split and a merge.
    spots
        Number of detections in the track.
    """

    gaps: int = 0
    longest_gap: int = 0
    splits: int = 0
    merges: int = 0
    complex: int = 0
    spots: int = 0

    @property
    def is_linear(self) -> bool:
        return self.gaps == 0 and self.splits == 0 and self.merges == 0


class BranchingAnalyzer:
    """
    Computes :class:`TrackBranching` per track ID and keeps the results in
    :attr:`features`.
    """

    def __init__(self) -> None:
        self.features: dict[int, TrackBranching] = {}

    def __getitem__(self, track_id: int) -> TrackBranching:
        return self.features[track_id]

    def __contains__(self, track_id: object) -> bool:
        return track_id in self.features

    def process(self, track_ids: T.Iterable[int], graph: TrackGraph) -> None:
        """
        Recompute the statistics of the given tracks. Other tracks keep their
        previous results.
        """
        for track_id in track_ids:
            self.features[track_id] = analyze_track(graph, graph.track_nodes(track_id))

    def forget(self, track_ids: T.Iterable[int]) -> None:
        for track_id in track_ids:
            self.features.pop(track_id, None)

    def attach(self, graph: TrackGraph) -> T.Callable[[GraphChangeEvent], None]:
        """
        Keep the results up to date with the edits made to a graph.

        Returns
        -------
            The registered listener, which can be passed to
            :meth:`TrackGraph.remove_listener`.
        """

        def listener(event: GraphChangeEvent) -> None:
            self.forget(event.tracks_removed)
            self.process(event.tracks_updated, graph)

        graph.add_listener(listener)
        return listener


def analyze_track(graph: TrackGraph, nodes: T.Collection[Detection]) -> TrackBranching:
    gaps = 0
    longest_gap = 0
    splits = 0
    merges = 0
    complex_ = 0
    for node in nodes:
        later = 0
        earlier = 0
        for other in graph.neighbors(node):
            if other.frame > node.frame:
                later += 1
                span = other.frame - node.frame
                if span > 1:
                    gaps += 1
                    longest_gap = max(longest_gap, span)
            elif other.frame < node.frame:
                earlier += 1

        if later > 1:
            splits += 1
        if earlier > 1:
            merges += 1
        if later > 1 and earlier > 1:
            complex_ += 1

    return TrackBranching(
        gaps=gaps,
        longest_gap=longest_gap,
        splits=splits,
        merges=merges,
        complex=complex_,
        spots=len(nodes),
    )
