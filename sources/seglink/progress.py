"""
Progress sinks. Long-running operations report a fraction in ``[0, 1]`` and a
short status text to a :class:`ProgressLogger`.
"""

from __future__ import annotations

import typing as T

__all__ = ["ProgressLogger", "VoidLogger", "SubLogger", "RecordingLogger"]


@T.runtime_checkable
class ProgressLogger(T.Protocol):
    def set_progress(self, progress: float) -> None:
        ...

    def set_status(self, status: str) -> None:
        ...


class VoidLogger:
    """
    Discards everything.
    """

    def set_progress(self, progress: float) -> None:
        pass

    def set_status(self, status: str) -> None:
        pass


class SubLogger:
    """
    Rescales the progress of a sub-task into the range
    ``[offset, offset + scale]`` of a parent logger. Status messages are
    forwarded unchanged.

    Parameters
    ----------
    parent
        Logger that receives the rescaled progress.
    offset
        Parent progress at the start of the sub-task.
    scale
        Parent progress span of the sub-task.
    """

    def __init__(self, parent: ProgressLogger, offset: float, scale: float):
        self.parent = parent
        self.offset = float(offset)
        self.scale = float(scale)

    def set_progress(self, progress: float) -> None:
        self.parent.set_progress(self.offset + self.scale * progress)

    def set_status(self, status: str) -> None:
        self.parent.set_status(status)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.parent!r}, offset={self.offset:g}, scale={self.scale:g})"


class RecordingLogger:
    """
    Keeps every reported progress value and status message.
    """

    def __init__(self) -> None:
        self.progress: list[float] = []
        self.status: list[str] = []

    def set_progress(self, progress: float) -> None:
        self.progress.append(float(progress))

    def set_status(self, status: str) -> None:
        self.status.append(status)
