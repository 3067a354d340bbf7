"""
Data sources module.
Exports the static table reader and the realtime feed client.
"""

from .static_files import StaticFileSource
from .realtime_feed import RealtimeFeedClient, decode_feed

__all__ = [
    "StaticFileSource",
    "RealtimeFeedClient",
    "decode_feed",
]
