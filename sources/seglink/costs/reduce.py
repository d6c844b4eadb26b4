from __future__ import annotations

import itertools
from enum import Enum
from typing import Optional, Sequence

import torch
import torch.nn as nn
import typing_extensions as TX
from tensordict import TensorDictBase
from torch import Tensor

from .base_cost import Cost

__all__ = ["Reduce", "Reduction"]


class Reduction(Enum):
    """
    Reduction method for :class:`.Reduce` cost module.
    """

    SUM = "sum"
    MEAN = "mean"
    MIN = "min"
    MAX = "max"
    PRODUCT = "product"


class Reduce(Cost):
    """
    A cost reduction module.
    """

    weights: torch.Tensor
    method: Reduction

    def __init__(
        self,
        costs: Sequence[Cost],
        method: Reduction | str,
        weights: Optional[Sequence[float]] = None,
    ):
        super().__init__(
            required_fields=itertools.chain(*(c.required_fields for c in costs))
        )

        if len(costs) == 0:
            raise ValueError("At least one cost module is required!")
        if isinstance(method, str):
            method = Reduction(method)

        self.method = method
        self.costs = nn.ModuleList(costs)
        if weights is None:
            weights = [1.0] * len(costs)
        if len(weights) != len(costs):
            msg = f"Expected {len(costs)} weights, got {len(weights)}"
            raise ValueError(msg)

        self.register_buffer(
            "weights",
            torch.tensor(weights, dtype=torch.float64).unsqueeze_(-1).unsqueeze_(-1),
        )

    @TX.override
    def forward(self, cs: TensorDictBase, ds: TensorDictBase) -> torch.Tensor:
        costs = torch.stack([cost(cs, ds).to(torch.float64) for cost in self.costs])
        if self.method != Reduction.PRODUCT:
            costs = costs * self.weights

        return _reduce_stack(costs, self.method)


def _reduce_stack(costs: Tensor, method: Reduction) -> Tensor:
    if method == Reduction.SUM:
        return costs.sum(dim=0)
    if method == Reduction.MEAN:
        return costs.mean(dim=0)
    if method == Reduction.MIN:
        return costs.min(dim=0).values
    if method == Reduction.MAX:
        return costs.max(dim=0).values
    if method == Reduction.PRODUCT:
        return costs.prod(dim=0)
    raise NotImplementedError(f"Reduction method '{method}' not implemented!")
