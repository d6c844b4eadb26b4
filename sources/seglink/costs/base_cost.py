from __future__ import annotations

from abc import abstractmethod
from typing import Iterable

import torch
import typing_extensions as TX
from tensordict import TensorDictBase
from tensordict.utils import NestedKey

__all__ = ["Cost", "FieldCost"]


class Cost(torch.nn.Module):
    """
    A cost module maps a batch of link sources and a batch of link targets to
    a matrix of linking costs. Pairs that may never be linked have cost `inf`.
    """

    required_fields: list[NestedKey]

    def __init__(self, required_fields: Iterable[NestedKey]):
        super().__init__()

        # Ordered and without duplicates
        self.required_fields = list(dict.fromkeys(required_fields))

    @abstractmethod
    @TX.override
    def forward(self, cs: TensorDictBase, ds: TensorDictBase) -> torch.Tensor:
        """
        Parameters
        ----------
        cs
            Link sources (N), e.g. segment tails.
        ds
            Link targets (M), e.g. segment heads.

        Returns
        -------
            Linking costs (N x M), as double precision.
        """
        raise NotImplementedError


class FieldCost(Cost):
    """
    Cost that depends on a single (possibly nested) field of sources and
    targets.
    """

    field: NestedKey

    def __init__(self, field: NestedKey):
        super().__init__(required_fields=[field])

        self.field = field

    @TX.override
    def forward(self, cs: TensorDictBase, ds: TensorDictBase) -> torch.Tensor:
        return self.compute(cs.get(self.field), ds.get(self.field))

    @TX.override
    def extra_repr(self) -> str:
        return f"field={self.field!r}"

    @abstractmethod
    def compute(self, cs: torch.Tensor, ds: torch.Tensor) -> torch.Tensor:
        """
        Parameters
        ----------
        cs
            Values of the field for the link sources (N, ...).
        ds
            Values of the field for the link targets (M, ...).

        Returns
        -------
            Linking costs (N x M).
        """
        raise NotImplementedError
