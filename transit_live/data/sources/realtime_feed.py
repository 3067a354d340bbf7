"""
GTFS-RT vehicle position feed source.
Fetches the binary realtime feed over HTTP and decodes it. No retries here:
the hub's next poll tick is the retry.
"""

import asyncio
import gzip
import logging
import zlib
from typing import Optional

import aiohttp
from google.protobuf.message import DecodeError
from google.transit import gtfs_realtime_pb2

from ...core.errors import FeedFetchError

logger = logging.getLogger(__name__)

GZIP_MAGIC = b"\x1f\x8b"


def decode_feed(payload: bytes) -> gtfs_realtime_pb2.FeedMessage:
    """Decode a (possibly gzipped) GTFS-RT payload"""
    try:
        if payload[:2] == GZIP_MAGIC:
            payload = gzip.decompress(payload)
        feed = gtfs_realtime_pb2.FeedMessage()
        feed.ParseFromString(payload)
    except (DecodeError, OSError, EOFError, zlib.error) as e:
        raise FeedFetchError(f"Malformed feed payload: {e}", cause=e, is_transient=False) from e
    return feed


class RealtimeFeedClient:
    """HTTP client for the realtime vehicle position feed"""

    def __init__(self, feed_url: str, timeout_seconds: float = 10.0,
                 session: Optional[aiohttp.ClientSession] = None):
        self.feed_url = feed_url
        self.timeout_seconds = timeout_seconds
        self.headers = {
            'Accept': 'application/x-protobuf, application/octet-stream, */*',
            'User-Agent': 'transit-live/0.1',
        }
        self._session = session
        self._owns_session = session is None
        self._session_lock = asyncio.Lock()

    async def __aenter__(self):
        await self._get_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def _get_session(self) -> aiohttp.ClientSession:
        async with self._session_lock:
            if self._session is None or self._session.closed:
                timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
                self._session = aiohttp.ClientSession(timeout=timeout)
                self._owns_session = True
            return self._session

    async def close(self):
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def fetch(self) -> gtfs_realtime_pb2.FeedMessage:
        """GET the feed once. Raises FeedFetchError on any failure."""
        session = await self._get_session()
        timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
        try:
            async with session.get(self.feed_url, headers=self.headers, timeout=timeout) as response:
                if response.status != 200:
                    transient = response.status >= 500 or response.status == 429
                    raise FeedFetchError(
                        f"Feed returned HTTP {response.status}",
                        is_transient=transient,
                        status=response.status,
                    )
                payload = await response.read()
        except asyncio.TimeoutError as e:
            raise FeedFetchError(f"Feed request timed out after {self.timeout_seconds}s", cause=e) from e
        except aiohttp.ClientError as e:
            raise FeedFetchError(f"Feed request failed: {e}", cause=e) from e

        loop = asyncio.get_running_loop()
        feed = await loop.run_in_executor(None, decode_feed, payload)
        logger.debug(f"Decoded feed with {len(feed.entity)} entities")
        return feed
