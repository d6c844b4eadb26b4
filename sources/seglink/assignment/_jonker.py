from __future__ import annotations

import numpy as np
import numpy.typing as NP
import scipy.sparse as sp
import typing_extensions as TX

from ._base import Assignment

__all__ = ["Jonker", "jonker_volgenant_assignment"]


class Jonker(Assignment):
    """
    Uses the sparse Jonker-Volgenant algorithm (LAPMOD) to solve the linear
    assignment problem.
    """

    @TX.override
    def _assign(self, cost_matrix: sp.csr_matrix) -> NP.NDArray[np.int64]:
        return jonker_volgenant_assignment(cost_matrix)


def jonker_volgenant_assignment(cost_matrix: sp.csr_matrix) -> NP.NDArray[np.int64]:
    """
    Perform linear assignment on a square sparse matrix with non-negative
    costs, where every row stores at least one cell.

    Returns
    -------
        Array ``x`` such that row ``i`` is assigned to column ``x[i]``.
    """

    from lap import lapmod

    n = cost_matrix.shape[0]
    cm = cost_matrix.tocsr()
    cm.sort_indices()

    cc = np.ascontiguousarray(cm.data, dtype=np.float64)
    ii = np.ascontiguousarray(cm.indptr, dtype=np.int32)
    kk = np.ascontiguousarray(cm.indices, dtype=np.int32)

    x, _ = lapmod(n, cc, ii, kk, return_cost=False)

    return np.asarray(x, dtype=np.int64)
