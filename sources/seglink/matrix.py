r"""
Sparse cost matrix of the segment linking problem.

Given segments, every allowed linking event yields a candidate cell:

- gap closing: the tail of a segment to the head of another segment,
- merging: the tail of a segment to a middle detection of another segment,
- splitting: a middle detection of a segment to the head of another segment.

With :math:`n` rows (link sources) and :math:`m` columns (link targets), the
square :math:`(n + m) \times (n + m)` matrix reads

.. math::

    \begin{bmatrix} L & T \\ I & A \end{bmatrix}

where :math:`L` holds the feasible linking costs, the diagonals of :math:`T`
and :math:`I` hold the alternative cost of terminating a source or initiating
a target, and :math:`A` stores the alternative cost at the transposed pattern
of :math:`L`.
"""

from __future__ import annotations

import dataclasses as D
import typing as T
from concurrent.futures import ThreadPoolExecutor

import numpy as np
import torch
import typing_extensions as TX
from tensordict import TensorDictBase

from .costs import Cost, EventKind, alternative_cost, event_cost
from .debug import check_debug_enabled
from .detections import Detection, collate, frame_order
from .progress import ProgressLogger, VoidLogger
from .segments import Segment
from .settings import LinkerSettings

__all__ = ["LinkingCosts", "SparseCostMatrix", "SegmentCostMatrix", "DEFAULT_CHUNK_SIZE"]

DEFAULT_CHUNK_SIZE: T.Final = 256


@D.dataclass(frozen=True)
class LinkingCosts:
    """
    Feasible cells of the linking block.

    Rows index ``sources`` and columns index ``targets``. Cells are sorted by
    ``(row, col)``.
    """

    sources: list[Detection]
    targets: list[Detection]
    rows: torch.Tensor
    cols: torch.Tensor
    costs: torch.Tensor
    kinds: torch.Tensor

    @classmethod
    def empty(cls) -> LinkingCosts:
        long = torch.empty((0,), dtype=torch.long)
        return cls([], [], long, long.clone(), torch.empty((0,), dtype=torch.float64), long.clone())

    def __len__(self) -> int:
        return int(self.costs.shape[0])

    @property
    def num_rows(self) -> int:
        return len(self.sources)

    @property
    def num_cols(self) -> int:
        return len(self.targets)

    def cells(self) -> T.Iterator[tuple[Detection, Detection, float, EventKind]]:
        for r, c, cost, kind in zip(
            self.rows.tolist(), self.cols.tolist(), self.costs.tolist(), self.kinds.tolist()
        ):
            yield self.sources[r], self.targets[c], cost, EventKind(kind)

    def lookup(self) -> dict[tuple[int, int], tuple[float, EventKind]]:
        """
        Map ``(row, col)`` of each cell to its cost and event kind.
        """
        return {
            (r, c): (cost, EventKind(kind))
            for r, c, cost, kind in zip(
                self.rows.tolist(),
                self.cols.tolist(),
                self.costs.tolist(),
                self.kinds.tolist(),
            )
        }


@D.dataclass(frozen=True)
class SparseCostMatrix:
    """
    The full square block matrix, with the event kind of every stored cell.
    """

    linking: LinkingCosts
    alternative: float
    indices: torch.Tensor
    values: torch.Tensor
    kinds: torch.Tensor

    @property
    def size(self) -> int:
        return self.linking.num_rows + self.linking.num_cols

    @property
    def shape(self) -> tuple[int, int]:
        return self.size, self.size

    @property
    def nnz(self) -> int:
        return int(self.values.shape[0])

    def is_link(self, row: int, col: int) -> bool:
        return row < self.linking.num_rows and col < self.linking.num_cols

    def to_sparse(self) -> torch.Tensor:
        """
        Return the matrix as a coalesced sparse COO tensor.
        """
        return torch.sparse_coo_tensor(
            self.indices, self.values, self.shape, dtype=torch.float64
        ).coalesce()

    def to_dense(self, fill: float = float("inf")) -> torch.Tensor:
        dense = torch.full(self.shape, fill, dtype=torch.float64)
        dense[self.indices[0], self.indices[1]] = self.values
        return dense

    @classmethod
    def from_linking(cls, linking: LinkingCosts, alternative: float) -> SparseCostMatrix:
        """
        Complete a linking block into the square block matrix.
        """
        n, m = linking.num_rows, linking.num_cols
        k = len(linking)
        rows_n = torch.arange(n, dtype=torch.long)
        cols_m = torch.arange(m, dtype=torch.long)

        def block(rows, cols, kind, values=None):
            num = rows.shape[0]
            if values is None:
                values = torch.full((num,), alternative, dtype=torch.float64)
            return rows, cols, values, torch.full((num,), int(kind), dtype=torch.long)

        blocks = [
            (linking.rows, linking.cols, linking.costs.to(torch.float64), linking.kinds),
            block(rows_n, m + rows_n, EventKind.TERMINATION),
            block(n + cols_m, cols_m, EventKind.INITIATION),
            block(n + linking.cols, m + linking.rows, EventKind.AUXILIARY),
        ]
        rows = torch.cat([b[0] for b in blocks])
        cols = torch.cat([b[1] for b in blocks])
        values = torch.cat([b[2] for b in blocks])
        kinds = torch.cat([b[3] for b in blocks])

        order = torch.from_numpy(np.lexsort((cols.numpy(), rows.numpy())))
        indices = torch.stack((rows[order], cols[order]))

        assert values.shape[0] == 2 * k + n + m
        return cls(linking, float(alternative), indices, values[order], kinds[order])


class _Chunk(T.NamedTuple):
    rows: torch.Tensor
    cols: torch.Tensor
    costs: torch.Tensor
    kinds: torch.Tensor


class SegmentCostMatrix(torch.nn.Module):
    """
    Builds the sparse cost matrix for linking segments, following the
    settings that select which events are allowed and how far they may reach.

    Parameters
    ----------
    settings
        Validated linker settings.
    num_threads
        Number of worker threads that evaluate candidate chunks.
    chunk_size
        Number of candidate sources evaluated at once. Each chunk is a dense
        block of ``chunk_size`` by the number of candidate targets.
    """

    def __init__(
        self,
        settings: LinkerSettings,
        num_threads: int = 1,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ):
        super().__init__()

        if chunk_size < 1:
            msg = f"Chunk size must be positive, got {chunk_size}"
            raise ValueError(msg)

        self.settings = settings
        self.num_threads = max(1, int(num_threads))
        self.chunk_size = int(chunk_size)

        s = settings
        self.gap_closing = event_cost(
            s.gap_closing_max_distance,
            s.gap_closing_feature_penalties,
            min_gap=1,
            max_gap=s.gap_closing_max_frame_gap,
            blocking_value=s.blocking_value,
        )
        self.merging = event_cost(
            s.merging_max_distance,
            s.merging_feature_penalties,
            blocking_value=s.blocking_value,
        )
        self.splitting = event_cost(
            s.splitting_max_distance,
            s.splitting_feature_penalties,
            blocking_value=s.blocking_value,
        )

    @TX.override
    def extra_repr(self) -> str:
        s = self.settings
        return (
            f"gap_closing={s.allow_gap_closing}, merging={s.allow_track_merging}, "
            f"splitting={s.allow_track_splitting}, chunk_size={self.chunk_size}"
        )

    def forward(
        self, segments: T.Sequence[Segment], logger: ProgressLogger | None = None
    ) -> SparseCostMatrix | None:
        """
        Build the cost matrix.

        Parameters
        ----------
        segments
            Segments to link.
        logger
            Receives progress in ``[0, 1]``, one update per chunk.

        Returns
        -------
        SparseCostMatrix | None
            The block matrix, or ``None`` if no feasible linking candidate
            exists.
        """
        linking = self.linking_costs(segments, logger)
        if len(linking) == 0:
            return None

        alt = alternative_cost(
            linking.costs,
            self.settings.cutoff_percentile,
            self.settings.alternative_linking_cost_factor,
        )
        matrix = SparseCostMatrix.from_linking(linking, alt)

        if check_debug_enabled():
            counts = torch.bincount(linking.kinds, minlength=len(EventKind)).tolist()
            print(
                f"{type(self).__name__}: {linking.num_rows} sources, "
                f"{linking.num_cols} targets, {len(linking)} links "
                f"(gap closing {counts[EventKind.GAP_CLOSING]}, "
                f"splitting {counts[EventKind.SPLITTING]}, "
                f"merging {counts[EventKind.MERGING]}), "
                f"alternative cost {alt:g}"
            )

        return matrix

    def linking_costs(
        self, segments: T.Sequence[Segment], logger: ProgressLogger | None = None
    ) -> LinkingCosts:
        """
        Evaluate every allowed candidate event and keep the feasible ones.
        Sources and targets without any feasible candidate are dropped.
        """
        if logger is None:
            logger = VoidLogger()
        s = self.settings

        tails = sorted((seg.tail for seg in segments), key=frame_order)
        heads = sorted((seg.head for seg in segments), key=frame_order)
        middles = sorted((d for seg in segments for d in seg.middles), key=frame_order)

        # Sources: tails, then middles. Targets: heads, then middles.
        use_tails = s.allow_gap_closing or s.allow_track_merging
        use_heads = s.allow_gap_closing or s.allow_track_splitting
        sources = (tails if use_tails else []) + (middles if s.allow_track_splitting else [])
        targets = (heads if use_heads else []) + (middles if s.allow_track_merging else [])
        num_tails = len(tails) if use_tails else 0
        num_heads = len(heads) if use_heads else 0

        if len(sources) == 0 or len(targets) == 0:
            return LinkingCosts.empty()

        features = s.feature_names
        cs = collate(sources, features)
        ds = collate(targets, features)

        # Chunks never straddle the boundary between tails and middles
        bounds = [
            (start, min(start + self.chunk_size, stop))
            for lo, stop in ((0, num_tails), (num_tails, len(sources)))
            for start in range(lo, stop, self.chunk_size)
        ]

        logger.set_progress(0.0)
        done = 0

        def evaluate(bound: tuple[int, int]) -> _Chunk:
            start, stop = bound
            return self._evaluate_chunk(
                cs[start:stop], ds, start, start < num_tails, num_heads
            )

        chunks: list[_Chunk] = []
        workers = max(1, min(self.num_threads, len(bounds)))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            for chunk in pool.map(evaluate, bounds):
                chunks.append(chunk)
                done += 1
                logger.set_progress(done / len(bounds))

        rows = torch.cat([c.rows for c in chunks])
        if rows.numel() == 0:
            return LinkingCosts.empty()
        cols = torch.cat([c.cols for c in chunks])
        costs = torch.cat([c.costs for c in chunks])
        kinds = torch.cat([c.kinds for c in chunks])

        # Keep only sources and targets with a feasible candidate, in order
        used_rows, rows = torch.unique(rows, sorted=True, return_inverse=True)
        used_cols, cols = torch.unique(cols, sorted=True, return_inverse=True)

        order = torch.from_numpy(np.lexsort((cols.numpy(), rows.numpy())))
        return LinkingCosts(
            sources=[sources[i] for i in used_rows.tolist()],
            targets=[targets[j] for j in used_cols.tolist()],
            rows=rows[order],
            cols=cols[order],
            costs=costs[order],
            kinds=kinds[order],
        )

    def _evaluate_chunk(
        self,
        cs: TensorDictBase,
        ds: TensorDictBase,
        offset: int,
        from_tails: bool,
        num_heads: int,
    ) -> _Chunk:
        s = self.settings
        costs = torch.full(
            (cs.batch_size[0], ds.batch_size[0]), torch.inf, dtype=torch.float64
        )
        kinds = torch.full(costs.shape, -1, dtype=torch.long)

        heads = ds[:num_heads]
        middles = ds[num_heads:]

        def fill(cost: Cost, targets: TensorDictBase, start: int, kind: EventKind) -> None:
            if targets.batch_size[0] == 0:
                return
            block = cost(cs, targets)
            stop = start + targets.batch_size[0]
            costs[:, start:stop] = block
            kinds[:, start:stop] = int(kind)

        if from_tails:
            if s.allow_gap_closing:
                fill(self.gap_closing, heads, 0, EventKind.GAP_CLOSING)
            if s.allow_track_merging:
                fill(self.merging, middles, num_heads, EventKind.MERGING)
        elif s.allow_track_splitting:
            fill(self.splitting, heads, 0, EventKind.SPLITTING)

        feasible = torch.isfinite(costs)
        rows, cols = torch.nonzero(feasible, as_tuple=True)
        return _Chunk(rows + offset, cols, costs[rows, cols], kinds[rows, cols])
