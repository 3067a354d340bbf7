"""
Repositories module.
"""

from .stop_time_repo import StopTimeRepository

__all__ = [
    "StopTimeRepository",
]
