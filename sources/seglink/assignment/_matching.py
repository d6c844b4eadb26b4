"""
Minimum-weight full bipartite matching, as implemented by SciPy (LAPJVsp).
"""

from __future__ import annotations

import numpy as np
import numpy.typing as NP
import scipy.sparse as sp
import typing_extensions as TX
from scipy.sparse.csgraph import min_weight_full_bipartite_matching

from ._base import Assignment, InfeasibleAssignmentError

__all__ = ["BipartiteMatching", "bipartite_matching_assignment"]


class BipartiteMatching(Assignment):
    r"""
    Solves the linear assignment problem as a minimum-weight full matching of
    the bipartite graph that the sparse cost matrix describes.
    """

    @TX.override
    def _assign(self, cost_matrix: sp.csr_matrix) -> NP.NDArray[np.int64]:
        return bipartite_matching_assignment(cost_matrix)


def bipartite_matching_assignment(cost_matrix: sp.csr_matrix) -> NP.NDArray[np.int64]:
    """
    Perform linear assignment using the SciPy implementation

    Returns
    -------
        Array ``x`` such that row ``i`` is assigned to column ``x[i]``.
    """

    n = cost_matrix.shape[0]

    # Full matchings have exactly n cells: the offset keeps the optimum and
    # stores zero costs as positive weights
    weights = cost_matrix.tocsr().astype(np.float64, copy=True)
    weights.data += 1.0

    try:
        row_ind, col_ind = min_weight_full_bipartite_matching(weights)
    except ValueError as err:
        raise InfeasibleAssignmentError(str(err)) from err

    x = np.full(n, -1, dtype=np.int64)
    x[row_ind] = col_ind
    return x
