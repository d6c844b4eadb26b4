r"""
Various utilities for working with assignment problems.
"""

from __future__ import annotations

import numpy as np
import torch
from torch import Tensor

from ._base import to_scipy_sparse

__all__ = ["gather_costs", "gather_total_cost"]


def gather_costs(cost_matrix: Tensor, assignment: Tensor) -> Tensor:
    """
    Gather the cost of every assigned cell.

    Parameters
    ----------
    cost_matrix: Tensor[N, M]
        The cost matrix, dense or sparse COO.
    assignment: Tensor[K, 2]
        The assignment tensor of row-column pairs.

    Returns
    -------
    Tensor[K]
        The cost of each assigned pair.
    """
    if assignment.shape[0] == 0:
        return torch.empty((0,), dtype=torch.float64)
    if cost_matrix.layout != torch.sparse_coo:
        return cost_matrix[assignment[:, 0], assignment[:, 1]].to(torch.float64)

    csr = to_scipy_sparse(cost_matrix)
    rows = assignment[:, 0].cpu().numpy()
    cols = assignment[:, 1].cpu().numpy()
    values = np.asarray(csr[rows, cols]).ravel()
    return torch.from_numpy(values.astype(np.float64))


def gather_total_cost(cost_matrix: Tensor, assignment: Tensor) -> Tensor:
    """
    Sum of the costs of all assigned cells, see :func:`gather_costs`.
    """
    return gather_costs(cost_matrix, assignment).sum()
