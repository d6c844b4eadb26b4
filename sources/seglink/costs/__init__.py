"""
This module defines cost functions that yield a linking cost matrix between
the ends and starts of track segments.
"""

from .base_cost import *
from .category import *
from .events import *
from .penalty import *
from .reduce import *
from .wrap import *
