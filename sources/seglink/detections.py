from __future__ import annotations

import itertools
import math
import typing as T

import torch
from tensordict import TensorDict

from .consts import KEY_FEATURES, KEY_FRAME, KEY_INDEX, KEY_POSITION

__all__ = ["Detection", "collate", "frame_order"]

_ID_COUNTER = itertools.count()


class Detection:
    """
    A detected object at a single frame. Detections are nodes of a
    :class:`~seglink.graph.TrackGraph` and are compared by identity, never by
    value.

    Parameters
    ----------
    x, y, z
        Position of the detection.
    radius
        Size of the detection.
    frame
        Frame index, i.e. the time coordinate.
    features
        Named numeric features, used for feature penalties.
    """

    __slots__ = ("id", "position", "radius", "frame", "features")

    def __init__(
        self,
        x: float,
        y: float = 0.0,
        z: float = 0.0,
        *,
        radius: float = 1.0,
        frame: int = 0,
        features: T.Mapping[str, float] | None = None,
    ):
        self.id: int = next(_ID_COUNTER)
        self.position: tuple[float, float, float] = (float(x), float(y), float(z))
        self.radius = float(radius)
        self.frame = int(frame)
        self.features: dict[str, float] = dict(features or {})

    def feature(self, name: str) -> float:
        """
        Return the value of a feature, or ``NaN`` when the detection does not
        carry it.
        """
        return float(self.features.get(name, math.nan))

    def square_distance_to(self, other: Detection) -> float:
        return sum((a - b) ** 2 for a, b in zip(self.position, other.position))

    def __repr__(self) -> str:
        x, y, z = self.position
        return f"Detection(id={self.id}, frame={self.frame}, x={x:g}, y={y:g}, z={z:g})"


def frame_order(detection: Detection) -> tuple[int, int]:
    """
    Sort key that orders detections by frame, then by identifier.
    """
    return detection.frame, detection.id


def collate(
    detections: T.Sequence[Detection],
    features: T.Iterable[str] = (),
    *,
    dtype: torch.dtype = torch.float64,
) -> TensorDict:
    """
    Gather a sequence of detections into a batch that can be passed to the
    :mod:`seglink.costs` modules.

    Parameters
    ----------
    detections
        Detections to gather, the batch follows their order.
    features
        Names of features to include under the ``features`` sub-dict. Missing
        values are stored as ``NaN``.
    dtype
        Floating point type of positions and features.

    Returns
    -------
    TensorDict[N]
        Batch with ``position`` (N x 3), ``frame`` (N), ``_index`` (N) and
        ``features`` entries.
    """
    num = len(detections)
    features = list(dict.fromkeys(features))

    position = torch.tensor(
        [d.position for d in detections], dtype=dtype
    ).reshape(num, 3)
    frame = torch.tensor([d.frame for d in detections], dtype=torch.long)
    feats = TensorDict(
        {
            name: torch.tensor([d.feature(name) for d in detections], dtype=dtype)
            for name in features
        },
        batch_size=[num],
    )

    return TensorDict(
        {
            KEY_POSITION: position,
            KEY_FRAME: frame,
            KEY_INDEX: torch.arange(num, dtype=torch.long),
            KEY_FEATURES: feats,
        },
        batch_size=[num],
    )
