from typing import List, Optional

import torch
import typing_extensions as TX
from tensordict.utils import NestedKey

from ..consts import KEY_POSITION
from .base_cost import FieldCost

__all__ = ["SquareDistance"]


class SquareDistance(FieldCost):
    """
    Cost function that computes the squared Euclidean distance between vector
    fields of sources and targets.
    """

    select: List[int]

    def __init__(
        self,
        field: NestedKey = KEY_POSITION,
        select: Optional[List[int]] = None,
    ):
        """
        Parameters
        ----------
        field
            Name of the field to read the (N x D) vectors from.
        select
            List of indices to select from the field.
        """
        super().__init__(field=field)

        if select is None:
            select = []

        self.select = list(select)

    @TX.override
    def compute(self, cs: torch.Tensor, ds: torch.Tensor) -> torch.Tensor:
        if len(self.select) > 0:
            assert cs.shape[1] > max(self.select)
            assert ds.shape[1] > max(self.select)

            cs = cs[:, self.select]
            ds = ds[:, self.select]

        # NOTE: not torch.cdist, its matmul path is inexact for squared distances
        diff = cs[:, None, :] - ds[None, :, :]
        return diff.square().sum(dim=-1)
