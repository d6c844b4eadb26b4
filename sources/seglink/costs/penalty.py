r"""
Feature penalties inflate a linking cost when the linked detections differ in
their numeric features.

For a set of features :math:`f` with weights :math:`w_f`, the penalty
multiplier between a source :math:`a` and a target :math:`b` reads

.. math::

    P(a, b) = \max\left(1, 1 + \sum_f w_f \frac{|a_f - b_f|}{(a_f + b_f) / 2}\right)

A feature that is missing (``NaN``) on either side does not contribute.
"""

from __future__ import annotations

import typing as T

import torch
import typing_extensions as TX
from tensordict import TensorDictBase

from ..consts import KEY_FEATURES
from .base_cost import Cost

__all__ = ["FeaturePenalty", "normalized_difference"]

MIN_MULTIPLIER: T.Final = 1.0


def normalized_difference(a: torch.Tensor, b: torch.Tensor) -> torch.Tensor:
    """
    Pairwise difference of two feature vectors (N) and (M), normalized by their
    mean. Pairs with ``a == -b`` have a zero difference.

    Returns
    -------
        Tensor (N x M), ``NaN`` where either value is ``NaN``.
    """
    a = a[:, None]
    b = b[None, :]
    mean = (a + b) / 2.0
    diff = (a - b).abs() / mean
    return torch.where(mean == 0, torch.zeros_like(diff), diff)


class FeaturePenalty(Cost):
    """
    Computes the penalty multiplier matrix for a mapping of feature names to
    weights. The multiplier never drops below one.
    """

    penalties: dict[str, float]

    def __init__(self, penalties: T.Mapping[str, float]):
        super().__init__(required_fields=[(KEY_FEATURES, name) for name in penalties])

        self.penalties = {str(k): float(v) for k, v in penalties.items()}

    @TX.override
    def forward(self, cs: TensorDictBase, ds: TensorDictBase) -> torch.Tensor:
        factor = torch.ones((cs.batch_size[0], ds.batch_size[0]), dtype=torch.float64)
        for name, weight in self.penalties.items():
            ndiff = normalized_difference(
                cs.get((KEY_FEATURES, name)).to(torch.float64),
                ds.get((KEY_FEATURES, name)).to(torch.float64),
            )
            factor = factor + weight * torch.nan_to_num(ndiff, nan=0.0)

        return factor.clamp(min=MIN_MULTIPLIER)

    @TX.override
    def extra_repr(self) -> str:
        return ", ".join(f"{k}={v:g}" for k, v in self.penalties.items())
