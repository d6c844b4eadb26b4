from __future__ import annotations

import os
from abc import abstractmethod
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional, Tuple

import numpy as np
import numpy.typing as NP
import scipy.sparse as sp
import torch
from scipy.sparse.csgraph import connected_components

from ..debug import check_debug_enabled

__all__ = [
    "Assignment",
    "InfeasibleAssignmentError",
    "split_components",
    "to_scipy_sparse",
]


class InfeasibleAssignmentError(RuntimeError):
    """
    Raised when a cost matrix does not admit a full one-to-one assignment.
    """


class Assignment(torch.nn.Module):
    """
    Solves a linear assignment problem (LAP) over a square sparse cost matrix.

    Only the stored cells of the matrix are candidates for assignment. The
    matrix is split into the connected components of its bipartite graph, which
    are independent sub-problems and are solved concurrently.
    """

    num_threads: int

    def __init__(self, num_threads: Optional[int] = None):
        super().__init__()

        self.num_threads = num_threads or os.cpu_count() or 1

    def forward(
        self, cost_matrix: torch.Tensor
    ) -> Tuple[torch.Tensor, torch.Tensor, torch.Tensor]:
        """
        Solve the cost matrix

        Parameters
        ----------
        cost_matrix
            Sparse COO cost matrix (N x N) to solve

        Returns
        -------
            Tuple of matches (N x 2), sorted by row, unmatched rows and
            unmatched columns. For a full assignment both of the latter are
            empty.

        Raises
        ------
        InfeasibleAssignmentError
            If the matrix is not square or no full assignment exists.
        """
        if min(cost_matrix.shape) == 0:
            return self._no_match(cost_matrix)

        if cost_matrix.shape[0] != cost_matrix.shape[1]:
            msg = f"Cost matrix must be square, got shape {tuple(cost_matrix.shape)}"
            raise InfeasibleAssignmentError(msg)

        csr = to_scipy_sparse(cost_matrix)
        subproblems = _subproblems(csr, split_components(csr))

        if check_debug_enabled():
            print(
                f"{type(self).__name__}: solving {csr.shape[0]} x {csr.shape[1]} "
                f"matrix ({csr.nnz} cells) in {len(subproblems)} components"
            )

        workers = max(1, min(self.num_threads, len(subproblems)))
        if workers == 1:
            results = [self._solve_component(*sub) for sub in subproblems]
        else:
            with ThreadPoolExecutor(max_workers=workers) as pool:
                results = list(pool.map(lambda sub: self._solve_component(*sub), subproblems))

        rows = np.concatenate([r for r, _ in results])
        cols = np.concatenate([c for _, c in results])
        order = np.argsort(rows, kind="stable")
        matches = torch.from_numpy(np.column_stack((rows[order], cols[order]))).long()
        empty = torch.empty((0,), dtype=torch.long)

        return matches, empty, empty.clone()

    def _solve_component(
        self,
        rows: NP.NDArray[np.int64],
        cols: NP.NDArray[np.int64],
        sub: sp.csr_matrix,
    ) -> Tuple[NP.NDArray[np.int64], NP.NDArray[np.int64]]:
        if len(rows) != len(cols):
            msg = (
                f"Independent block with {len(rows)} rows and {len(cols)} columns "
                "admits no full assignment"
            )
            raise InfeasibleAssignmentError(msg)

        if len(rows) == 1:
            x = np.zeros(1, dtype=np.int64)
        else:
            x = np.asarray(self._assign(sub), dtype=np.int64)

        _check_full_assignment(sub, x)
        return rows, cols[x]

    @staticmethod
    def _no_match(
        cost_matrix: torch.Tensor,
    ) -> Tuple[torch.Tensor, torch.Tensor, torch.Tensor]:
        cs_num, ds_num = cost_matrix.shape
        return (
            torch.empty((0, 2), dtype=torch.long),
            torch.arange(cs_num, dtype=torch.long),
            torch.arange(ds_num, dtype=torch.long),
        )

    @abstractmethod
    def _assign(self, cost_matrix: sp.csr_matrix) -> NP.NDArray[np.int64]:
        """
        Solve a square, connected sparse sub-problem.

        Returns
        -------
            Array ``x`` such that row ``i`` is assigned to column ``x[i]``.
        """
        raise NotImplementedError


def to_scipy_sparse(cost_matrix: torch.Tensor) -> sp.csr_matrix:
    """
    Convert a sparse COO tensor to a SciPy CSR matrix with sorted indices.
    Only finite values may be stored.
    """
    if cost_matrix.layout != torch.sparse_coo:
        msg = f"Expected a sparse COO tensor, got layout {cost_matrix.layout}"
        raise TypeError(msg)

    cm = cost_matrix.detach().cpu().coalesce()
    idx = cm.indices().numpy()
    values = cm.values().numpy().astype(np.float64)
    if not np.all(np.isfinite(values)):
        raise ValueError("Sparse cost matrix stores non-finite values!")

    csr = sp.csr_matrix((values, (idx[0], idx[1])), shape=tuple(cm.shape))
    csr.sort_indices()
    return csr


def split_components(
    csr: sp.csr_matrix,
) -> List[Tuple[NP.NDArray[np.int64], NP.NDArray[np.int64]]]:
    """
    Split a sparse matrix in the connected components of its bipartite graph,
    where rows and columns are vertices and stored cells are edges.

    Returns
    -------
        List of ``(rows, cols)`` index arrays, one entry per component, ordered
        by the lowest row (or column) index of the component.
    """
    n, m = csr.shape
    pattern = csr.copy()
    pattern.data = np.ones_like(pattern.data)
    graph = sp.bmat([[None, pattern], [pattern.T, None]], format="csr")
    num, labels = connected_components(graph, directed=False)

    row_groups = _group(labels[:n], num)
    col_groups = _group(labels[n:], num)

    return [(r.astype(np.int64), c.astype(np.int64)) for r, c in zip(row_groups, col_groups)]


def _group(labels: NP.NDArray[np.int32], num: int) -> List[NP.NDArray[np.int64]]:
    order = np.argsort(labels, kind="stable")
    counts = np.bincount(labels, minlength=num)
    return np.split(order, np.cumsum(counts)[:-1])


def _check_full_assignment(sub: sp.csr_matrix, x: NP.NDArray[np.int64]) -> None:
    n = sub.shape[0]
    if x.shape != (n,) or np.any(x < 0) or len(np.unique(x)) != n:
        raise InfeasibleAssignmentError("Solver did not return a full assignment")

    pattern = sub.copy()
    pattern.data = np.ones_like(pattern.data)
    stored = np.asarray(pattern[np.arange(n), x]).ravel()
    if not np.all(stored == 1):
        raise InfeasibleAssignmentError("Solver assigned a cell that is not stored")


def _subproblems(
    csr: sp.csr_matrix,
    components: List[Tuple[NP.NDArray[np.int64], NP.NDArray[np.int64]]],
) -> List[Tuple[NP.NDArray[np.int64], NP.NDArray[np.int64], sp.csr_matrix]]:
    """
    Cut the matrix into one sub-matrix per component. Sub-matrices are built
    from the stored triplets, such that explicitly stored zeros are kept.
    """
    n, m = csr.shape
    local_row = np.zeros(n, dtype=np.int64)
    local_col = np.zeros(m, dtype=np.int64)
    row_comp = np.zeros(n, dtype=np.int64)
    for k, (rows, cols) in enumerate(components):
        row_comp[rows] = k
        local_row[rows] = np.arange(len(rows))
        local_col[cols] = np.arange(len(cols))

    coo = csr.tocoo()
    entries = _group(row_comp[coo.row], len(components))

    out = []
    for (rows, cols), idx in zip(components, entries):
        sub = sp.csr_matrix(
            (coo.data[idx], (local_row[coo.row[idx]], local_col[coo.col[idx]])),
            shape=(len(rows), len(cols)),
        )
        sub.sort_indices()
        out.append((rows, cols, sub))
    return out
