"""
Simple system to debug linking modules via process output messages
"""

from __future__ import annotations

import functools

__all__ = ["check_debug_enabled", "ENV_DEBUG"]

ENV_DEBUG = "SEGLINK_DEBUG"


@functools.cache
def check_debug_enabled() -> bool:
    """
    Check whether debugging is enabled by reading the environment
    variable ``SEGLINK_DEBUG``.
    """
    from unipercept.config.env import get_env

    return get_env(bool, ENV_DEBUG, default=False)
