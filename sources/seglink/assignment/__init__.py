"""
This package implements modules that solve a Linear Assignment Problem (LAP), 
where the minimum cost must be computed over a sparse cost-matrix.
"""

from __future__ import annotations

from ._base import *
from ._jonker import *
from ._matching import *
from ._utils import *
