"""
Costs of the linking events between segments, and the alternative cost that
is paid to *not* link.
"""

from __future__ import annotations

import enum as E
import typing as T

import numpy as np
import torch
import typing_extensions as TX
from tensordict import TensorDictBase

from .base_cost import Cost
from .category import FrameGate
from .penalty import FeaturePenalty
from .reduce import Reduce, Reduction
from .wrap import SquareDistance

__all__ = ["EventKind", "EventCost", "event_cost", "alternative_cost"]


class EventKind(E.IntEnum):
    """
    Kind of event that a cell of the segment cost matrix represents.
    """

    GAP_CLOSING = 0
    SPLITTING = 1
    MERGING = 2
    TERMINATION = 3
    INITIATION = 4
    AUXILIARY = 5

    @property
    def is_link(self) -> bool:
        return self in (EventKind.GAP_CLOSING, EventKind.SPLITTING, EventKind.MERGING)


class EventCost(Cost):
    """
    Cost of a single event kind, with a feasibility gate: every pair whose cost
    exceeds ``max_cost`` or reaches ``blocking_value`` is set to `inf`.
    """

    max_cost: float
    blocking_value: float

    def __init__(self, cost: Cost, max_cost: float, blocking_value: float = float("inf")):
        super().__init__(required_fields=cost.required_fields)

        self.cost = cost
        self.max_cost = float(max_cost)
        self.blocking_value = float(blocking_value)

    @TX.override
    def forward(self, cs: TensorDictBase, ds: TensorDictBase) -> torch.Tensor:
        costs = self.cost(cs, ds)
        feasible = (
            torch.isfinite(costs)
            & (costs <= self.max_cost)
            & (costs < self.blocking_value)
        )
        return torch.where(feasible, costs, torch.inf)

    @TX.override
    def extra_repr(self) -> str:
        return f"max_cost={self.max_cost:g}, blocking_value={self.blocking_value:g}"


def event_cost(
    max_distance: float,
    penalties: T.Mapping[str, float] | None = None,
    *,
    min_gap: int = 1,
    max_gap: int = 1,
    blocking_value: float = float("inf"),
) -> EventCost:
    """
    Build the cost module of a linking event: the squared distance between
    source and target, inflated by feature penalties, for pairs that are
    ``min_gap`` to ``max_gap`` frames apart and no further apart than
    ``max_distance``.
    """
    distance: Cost = SquareDistance()
    if penalties:
        distance = Reduce([distance, FeaturePenalty(penalties)], Reduction.PRODUCT)

    cost = Reduce([FrameGate(min_gap, max_gap), distance], Reduction.SUM)
    return EventCost(cost, max_cost=max_distance**2, blocking_value=blocking_value)


def alternative_cost(
    costs: T.Sequence[float] | np.ndarray | torch.Tensor,
    percentile: float,
    factor: float,
) -> float:
    """
    Compute the cost of terminating or initiating a segment instead of linking
    it, as the value at ``percentile`` of the distribution of linking costs,
    multiplied by ``factor``.

    Parameters
    ----------
    costs
        All feasible linking costs.
    percentile
        Cutoff percentile in ``(0, 1]``, interpolated linearly between ranks,
        such that ``0.5`` yields the median.
    factor
        Multiplication factor.

    Returns
    -------
    float
        The alternative cost.
    """
    if isinstance(costs, torch.Tensor):
        costs = costs.detach().cpu().numpy()
    values = np.asarray(costs, dtype=np.float64)
    if values.size == 0:
        raise ValueError("Cannot derive an alternative cost without linking costs!")
    if not 0.0 < percentile <= 1.0:
        msg = f"Percentile must be in (0, 1], got {percentile}"
        raise ValueError(msg)

    return float(np.quantile(values, percentile)) * float(factor)
