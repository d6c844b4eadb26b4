r"""
SegLink
=======

This module implements a linker that joins track segments into full tracks.

.. math::

    Linker: Segments \rightarrow Tracks

Segments are produced by a frame-to-frame linker and may be interrupted by
missed detections, or miss the division and fusion of objects. The linker
fixes this by solving a single linear assignment problem over all segments.

Terminology
-----------

- **Segment**: A maximal simple path of detections, from its *head* (earliest
    detection) to its *tail* (latest detection).

- **Gap closing**: Linking the tail of a segment to the head of a segment that
    starts a few frames later.

- **Splitting**: Linking a middle detection of a segment to the head of a
    segment that starts one frame later.

- **Merging**: Linking the tail of a segment to a middle detection of a segment,
    one frame later.

- **Alternative cost**: The cost of *not* linking a segment end.
"""

from __future__ import annotations

__version__ = "1.0.0"

from . import assignment, consts, costs, debug, settings
from .branching import *
from .detections import *
from .graph import *
from .linker import *
from .matrix import *
from .progress import *
from .segments import *
from .settings import (
    InvalidSettingsError,
    LinkerSettings,
    check_settings,
    default_settings,
    validate_settings,
)
