r"""
This module defines :class:`TrackGraph`, the container that holds detections
(nodes) and links (weighted, undirected edges) between them.

Connected components of the graph are *tracks*. Tracks are kept in an arena
keyed by stable integer IDs, such that consumers can re-validate only the
tracks that a batch of edits touched. Edits are grouped in batches via
:meth:`TrackGraph.updating`, and every batch results in a single
:class:`GraphChangeEvent` delivered to the registered listeners.
"""

from __future__ import annotations

import contextlib
import dataclasses as D
import itertools
import typing as T

from .detections import Detection

__all__ = ["TrackGraph", "GraphChangeEvent", "GraphListener"]


@D.dataclass(frozen=True, slots=True)
class GraphChangeEvent:
    """
    Summary of one batch of edits.

    Attributes
    ----------
    tracks_updated
        IDs of tracks whose contents changed or that were created.
    tracks_removed
        IDs of tracks that no longer exist.
    """

    tracks_updated: frozenset[int]
    tracks_removed: frozenset[int]
    nodes_added: frozenset[Detection]
    nodes_removed: frozenset[Detection]
    edges_added: frozenset[frozenset[Detection]]
    edges_removed: frozenset[frozenset[Detection]]

    def __bool__(self) -> bool:
        return bool(
            self.tracks_updated
            or self.tracks_removed
            or self.nodes_added
            or self.nodes_removed
            or self.edges_added
            or self.edges_removed
        )


GraphListener: T.TypeAlias = T.Callable[[GraphChangeEvent], None]


class _Batch:
    def __init__(self) -> None:
        self.touched: set[Detection] = set()
        self.old_tracks: set[int] = set()
        self.nodes_added: set[Detection] = set()
        self.nodes_removed: set[Detection] = set()
        self.edges_added: set[frozenset[Detection]] = set()
        self.edges_removed: set[frozenset[Detection]] = set()


class TrackGraph:
    """
    Undirected weighted simple graph of :class:`~seglink.detections.Detection`
    objects.
    """

    def __init__(self, nodes: T.Iterable[Detection] = ()) -> None:
        self._adj: dict[Detection, dict[Detection, float]] = {}
        self._node_track: dict[Detection, int] = {}
        self._tracks: dict[int, set[Detection]] = {}
        self._track_ids = itertools.count()
        self._listeners: list[GraphListener] = []
        self._batch: _Batch | None = None
        self._depth = 0

        with self.updating():
            for node in nodes:
                self.add_node(node)

    # ---------- #
    # Read view  #
    # ---------- #

    def __len__(self) -> int:
        return len(self._adj)

    def __contains__(self, node: object) -> bool:
        return node in self._adj

    def __iter__(self) -> T.Iterator[Detection]:
        return iter(self._adj)

    def nodes(self) -> list[Detection]:
        return list(self._adj)

    def edges(self) -> T.Iterator[tuple[Detection, Detection, float]]:
        """
        Iterate over all edges as ``(a, b, weight)`` triplets, where ``a`` is the
        endpoint that was visited first.
        """
        seen: set[Detection] = set()
        for a, nbrs in self._adj.items():
            for b, w in nbrs.items():
                if b in seen:
                    continue
                yield a, b, w
            seen.add(a)

    def num_edges(self) -> int:
        return sum(len(nbrs) for nbrs in self._adj.values()) // 2

    def has_edge(self, a: Detection, b: Detection) -> bool:
        return a in self._adj and b in self._adj[a]

    def edge_weight(self, a: Detection, b: Detection) -> float:
        try:
            return self._adj[a][b]
        except KeyError:
            msg = f"No edge between {a!r} and {b!r}"
            raise KeyError(msg) from None

    def neighbors(self, node: Detection) -> list[Detection]:
        return list(self._adj[node])

    def degree(self, node: Detection) -> int:
        return len(self._adj[node])

    def connected_components(self) -> list[set[Detection]]:
        return [set(nodes) for nodes in self._tracks.values()]

    def track_ids(self) -> list[int]:
        return sorted(self._tracks)

    def track_of(self, node: Detection) -> int:
        return self._node_track[node]

    def track_nodes(self, track_id: int) -> set[Detection]:
        return set(self._tracks[track_id])

    # ------- #
    # Batches #
    # ------- #

    def add_listener(self, listener: GraphListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: GraphListener) -> bool:
        try:
            self._listeners.remove(listener)
        except ValueError:
            return False
        return True

    def begin_update(self) -> None:
        if self._depth == 0:
            self._batch = _Batch()
        self._depth += 1

    def end_update(self) -> GraphChangeEvent | None:
        """
        Close the current batch. When the outermost batch is closed, the track
        arena is updated and the listeners are notified.

        Returns
        -------
        GraphChangeEvent | None
            The event of the batch, or ``None`` if an inner batch was closed.
        """
        if self._depth == 0:
            msg = "end_update() called without matching begin_update()"
            raise RuntimeError(msg)
        self._depth -= 1
        if self._depth > 0:
            return None

        batch = self._batch
        self._batch = None
        assert batch is not None

        updated, removed = self._refresh_tracks(batch)
        event = GraphChangeEvent(
            tracks_updated=frozenset(updated),
            tracks_removed=frozenset(removed),
            nodes_added=frozenset(batch.nodes_added),
            nodes_removed=frozenset(batch.nodes_removed),
            edges_added=frozenset(batch.edges_added),
            edges_removed=frozenset(batch.edges_removed),
        )
        if event:
            for listener in list(self._listeners):
                listener(event)
        return event

    @contextlib.contextmanager
    def updating(self) -> T.Iterator[TrackGraph]:
        """
        Context manager that groups all edits made inside it into one batch.
        """
        self.begin_update()
        try:
            yield self
        finally:
            self.end_update()

    def _touch(self, *nodes: Detection) -> _Batch:
        batch = self._batch
        assert batch is not None, "edits must happen inside a batch"
        for node in nodes:
            batch.touched.add(node)
            track_id = self._node_track.get(node)
            if track_id is not None:
                batch.old_tracks.add(track_id)
        return batch

    # ----- #
    # Edits #
    # ----- #

    def add_node(self, node: Detection) -> Detection:
        with self.updating():
            if node in self._adj:
                return node
            self._adj[node] = {}
            batch = self._touch(node)
            if node in batch.nodes_removed:
                batch.nodes_removed.discard(node)
            else:
                batch.nodes_added.add(node)
        return node

    def remove_node(self, node: Detection) -> bool:
        if node not in self._adj:
            return False
        with self.updating():
            for other in list(self._adj[node]):
                self.remove_edge(node, other)
            batch = self._touch(node)
            del self._adj[node]
            if node in batch.nodes_added:
                batch.nodes_added.discard(node)
            else:
                batch.nodes_removed.add(node)
        return True

    def move_node(self, node: Detection, frame: int) -> None:
        """
        Change the frame of a detection that is part of the graph.
        """
        if node not in self._adj:
            msg = f"{node!r} is not part of the graph"
            raise KeyError(msg)
        with self.updating():
            self._touch(node)
            node.frame = int(frame)

    def add_edge(self, a: Detection, b: Detection, weight: float = 1.0) -> None:
        if a is b:
            msg = f"Self loops are not allowed: {a!r}"
            raise ValueError(msg)
        if self.has_edge(a, b):
            msg = f"Edge between {a!r} and {b!r} already exists"
            raise ValueError(msg)
        with self.updating():
            self.add_node(a)
            self.add_node(b)
            self._adj[a][b] = float(weight)
            self._adj[b][a] = float(weight)
            batch = self._touch(a, b)
            key = frozenset((a, b))
            if key in batch.edges_removed:
                batch.edges_removed.discard(key)
            else:
                batch.edges_added.add(key)

    def set_edge_weight(self, a: Detection, b: Detection, weight: float) -> None:
        if not self.has_edge(a, b):
            msg = f"No edge between {a!r} and {b!r}"
            raise KeyError(msg)
        self._adj[a][b] = float(weight)
        self._adj[b][a] = float(weight)

    def remove_edge(self, a: Detection, b: Detection) -> bool:
        if not self.has_edge(a, b):
            return False
        with self.updating():
            del self._adj[a][b]
            del self._adj[b][a]
            batch = self._touch(a, b)
            key = frozenset((a, b))
            if key in batch.edges_added:
                batch.edges_added.discard(key)
            else:
                batch.edges_removed.add(key)
        return True

    # ----------- #
    # Track arena #
    # ----------- #

    def _refresh_tracks(self, batch: _Batch) -> tuple[set[int], set[int]]:
        """
        Recompute the tracks that contain a touched node. Only nodes of those
        tracks can have changed component, because every edit touches both of
        the endpoints it affects.
        """
        scope: set[Detection] = {n for n in batch.touched if n in self._adj}
        for track_id in batch.old_tracks:
            scope.update(n for n in self._tracks.get(track_id, ()) if n in self._adj)

        old_ids = set(batch.old_tracks)
        previous: dict[Detection, int] = {}
        for track_id in old_ids:
            for node in self._tracks.pop(track_id, ()):
                previous[node] = track_id
                self._node_track.pop(node, None)
        for node in batch.nodes_removed:
            self._node_track.pop(node, None)

        components = _components(scope, self._adj)
        # Larger components claim their previous ID first
        components.sort(key=lambda c: (-len(c), min(n.id for n in c)))

        updated: set[int] = set()
        taken: set[int] = set()
        for component in components:
            votes: dict[int, int] = {}
            for node in component:
                if node in previous:
                    votes[previous[node]] = votes.get(previous[node], 0) + 1
            candidates = sorted(
                (t for t in votes if t not in taken), key=lambda t: (-votes[t], t)
            )
            track_id = candidates[0] if candidates else next(self._track_ids)
            taken.add(track_id)
            self._tracks[track_id] = component
            for node in component:
                self._node_track[node] = track_id
            updated.add(track_id)

        return updated, old_ids - taken


def _components(
    scope: set[Detection], adj: T.Mapping[Detection, T.Mapping[Detection, float]]
) -> list[set[Detection]]:
    remaining = set(scope)
    out: list[set[Detection]] = []
    while remaining:
        seed = remaining.pop()
        component = {seed}
        stack = [seed]
        while stack:
            node = stack.pop()
            for other in adj[node]:
                if other not in component:
                    component.add(other)
                    stack.append(other)
        remaining -= component
        out.append(component)
    return out
