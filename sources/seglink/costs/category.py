import torch
import typing_extensions as TX
from tensordict.utils import NestedKey

from ..consts import KEY_FRAME
from .base_cost import FieldCost

__all__ = ["FrameGate"]


class FrameGate(FieldCost):
    """
    Returns a matrix where each source/target pair whose frame difference
    ``frame(target) - frame(source)`` lies in ``[min_gap, max_gap]`` is set to
    `0` and every other pair is set to `inf`.
    """

    min_gap: int
    max_gap: int

    def __init__(self, min_gap: int = 1, max_gap: int = 1, field: NestedKey = KEY_FRAME):
        super().__init__(field=field)

        if min_gap > max_gap:
            msg = f"Expected min_gap <= max_gap, got {min_gap} > {max_gap}"
            raise ValueError(msg)

        self.min_gap = int(min_gap)
        self.max_gap = int(max_gap)

    @TX.override
    def compute(self, cs_frames: torch.Tensor, ds_frames: torch.Tensor) -> torch.Tensor:
        gap = ds_frames[None, :] - cs_frames[:, None]
        allowed = (gap >= self.min_gap) & (gap <= self.max_gap)

        out = torch.full(gap.shape, torch.inf, dtype=torch.float64)
        return out.masked_fill(allowed, 0.0)
