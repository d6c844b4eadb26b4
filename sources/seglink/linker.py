"""
The segment linker: links track segments by gap closing, splitting and merging
through a single global linear assignment problem.
"""

from __future__ import annotations

import enum as E
import os
import time
import typing as T

import torch

from .assignment import Assignment, BipartiteMatching
from .debug import check_debug_enabled
from .detections import Detection
from .matrix import DEFAULT_CHUNK_SIZE, SegmentCostMatrix, SparseCostMatrix
from .progress import ProgressLogger, SubLogger, VoidLogger
from .segments import extract_segments
from .settings import LinkerSettings, check_settings, select_settings, validate_settings

if T.TYPE_CHECKING:
    from .graph import TrackGraph

__all__ = ["SegmentLinker", "LinkerState", "apply_assignment", "ERROR_PREFIX"]

ERROR_PREFIX: T.Final = "[SegmentLinker] "


class LinkerState(E.Enum):
    IDLE = E.auto()
    VALIDATING = E.auto()
    REJECTED = E.auto()
    EXTRACTING = E.auto()
    COST_MODELING = E.auto()
    MATRIX_BUILDING = E.auto()
    SOLVING = E.auto()
    APPLYING = E.auto()
    DONE = E.auto()
    FAILED = E.auto()


def apply_assignment(
    graph: TrackGraph,
    matrix: SparseCostMatrix,
    matches: torch.Tensor,
    logger: ProgressLogger | None = None,
) -> tuple[dict[Detection, Detection], dict[Detection, float]]:
    """
    Add an edge for every match that falls in the linking block of the matrix
    and costs strictly less than the alternative cost. All edges are added in a
    single update batch of the graph, and none are kept if adding one fails.

    Parameters
    ----------
    graph
        Graph to add the links to.
    matrix
        Cost matrix that was solved.
    matches
        Matched ``(row, col)`` pairs (K x 2).
    logger
        Receives progress in ``[0, 1]``.

    Returns
    -------
        Mapping of each linked source to its target, and of each linked source
        to the cost of its link.
    """
    if logger is None:
        logger = VoidLogger()

    linking = matrix.linking
    lookup = linking.lookup()

    # A link that costs as much as terminating and initiating is not made
    links = []
    for r, c in matches.tolist():
        if not matrix.is_link(r, c):
            continue
        cost, _ = lookup[(r, c)]
        if cost < matrix.alternative:
            links.append((linking.sources[r], linking.targets[c], cost))

    assignment: dict[Detection, Detection] = {}
    costs: dict[Detection, float] = {}
    added: list[tuple[Detection, Detection]] = []
    with graph.updating():
        try:
            for i, (source, target, cost) in enumerate(links):
                graph.add_edge(source, target, cost)
                added.append((source, target))
                assignment[source] = target
                costs[source] = cost
                logger.set_progress((i + 1) / len(links))
        except Exception:
            for source, target in added:
                graph.remove_edge(source, target)
            raise

    return assignment, costs


class SegmentLinker:
    """
    Links the segments of a graph of detections.

    Parameters
    ----------
    graph
        Graph of detections whose connected components are segments. Links
        are added to it in place.
    settings
        Settings mapping, see :mod:`seglink.settings`.
    logger
        Progress sink.
    assignment
        Solver of the assignment problem, defaults to
        :class:`~seglink.assignment.BipartiteMatching`.
    chunk_size
        Number of candidate sources evaluated at once while building the cost
        matrix.
    """

    def __init__(
        self,
        graph: TrackGraph | None,
        settings: T.Mapping[str, T.Any] | None,
        logger: ProgressLogger | None = None,
        assignment: Assignment | None = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ):
        self.graph = graph
        self.settings = settings
        self.logger: ProgressLogger = logger or VoidLogger()
        self.solver = assignment
        self.chunk_size = chunk_size

        self._num_threads = os.cpu_count() or 1
        self._state = LinkerState.IDLE
        self._error_message = ""
        self._costs: dict[Detection, float] = {}
        self._assignment: dict[Detection, Detection] = {}
        self._processing_time = 0.0

    @classmethod
    def from_full_settings(
        cls,
        graph: TrackGraph | None,
        settings: T.Mapping[str, T.Any],
        logger: ProgressLogger | None = None,
        **kwargs: T.Any,
    ) -> SegmentLinker:
        """
        Create a linker from a settings mapping that configures more than the
        segment linker alone. Only the recognized keys are kept, and progress
        is reported in the upper half of the range of ``logger``.
        """
        sub = SubLogger(logger or VoidLogger(), 0.5, 0.5)
        return cls(graph, select_settings(settings), sub, **kwargs)

    @property
    def state(self) -> LinkerState:
        return self._state

    @property
    def result(self) -> TrackGraph | None:
        return self.graph

    @property
    def error_message(self) -> str:
        return self._error_message

    @property
    def costs(self) -> dict[Detection, float]:
        """
        Cost of every link that was created, keyed by its source.
        """
        return self._costs

    @property
    def assignment(self) -> dict[Detection, Detection]:
        return self._assignment

    @property
    def processing_time(self) -> float:
        """
        Wall clock time of the last :meth:`process` call, in milliseconds.
        """
        return self._processing_time

    @property
    def num_threads(self) -> int:
        return self._num_threads

    @num_threads.setter
    def num_threads(self, value: int) -> None:
        if value < 1:
            msg = f"Number of threads must be positive, got {value}"
            raise ValueError(msg)
        self._num_threads = int(value)

    def set_logger(self, logger: ProgressLogger | None) -> None:
        self.logger = logger or VoidLogger()

    def check_input(self) -> bool:
        self._state = LinkerState.VALIDATING
        violations = []
        if self.graph is None:
            violations.append("The input graph is null.")
        violations += check_settings(self.settings)

        if violations:
            self._state = LinkerState.REJECTED
            self._error_message = ERROR_PREFIX + "\n".join(violations)
            return False
        return True

    def process(self) -> bool:
        """
        Run the linker.

        Returns
        -------
        bool
            Whether linking succeeded. On failure, :attr:`error_message`
            tells why and the graph is left untouched.
        """
        start = time.perf_counter()
        self._error_message = ""
        self._costs = {}
        self._assignment = {}
        try:
            return self._process()
        finally:
            self._processing_time = (time.perf_counter() - start) * 1000.0

    def _process(self) -> bool:
        if not self.check_input():
            return False
        assert self.graph is not None
        settings = validate_settings(self.settings)

        try:
            self._link(self.graph, settings)
        except Exception as err:
            self._state = LinkerState.FAILED
            self._error_message = f"{ERROR_PREFIX}{type(err).__name__}: {err}"
            return False

        self._state = LinkerState.DONE
        return True

    def _link(self, graph: TrackGraph, settings: LinkerSettings) -> None:
        self._state = LinkerState.EXTRACTING
        self.logger.set_status("Extracting segments...")
        segments = extract_segments(graph)

        self._state = LinkerState.COST_MODELING
        builder = SegmentCostMatrix(settings, self.num_threads, self.chunk_size)

        self._state = LinkerState.MATRIX_BUILDING
        self.logger.set_status("Creating the segment linking cost matrix...")
        matrix = builder(segments, SubLogger(self.logger, 0.0, 0.9))

        if matrix is None:
            if check_debug_enabled():
                print(f"{type(self).__name__}: no candidate links in {len(segments)} segments")
            self.logger.set_progress(1.0)
            self.logger.set_status("")
            return

        self._state = LinkerState.SOLVING
        self.logger.set_status("Solving for segment links...")
        solver = self.solver
        if solver is None:
            solver = BipartiteMatching(self.num_threads)
        matches, _, _ = solver(matrix.to_sparse())

        self._state = LinkerState.APPLYING
        self.logger.set_status("Creating links...")
        self._assignment, self._costs = apply_assignment(
            graph, matrix, matches, SubLogger(self.logger, 0.9, 0.1)
        )

        if check_debug_enabled():
            print(
                f"{type(self).__name__}: linked {len(self._assignment)} of "
                f"{len(segments)} segments (alternative cost {matrix.alternative:g})"
            )

        self.logger.set_progress(1.0)
        self.logger.set_status("")
