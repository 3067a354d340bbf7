"""
Stop time repository.
Keyed lookup store for the large stop_times table, bulk-loaded into SQLite
once and queried by trip id or by stop id + minimum departure time.
"""

import asyncio
import logging
from pathlib import Path
from typing import Dict, List, Optional

import aiosqlite

from ..sources.static_files import StaticFileSource

logger = logging.getLogger(__name__)

STOP_TIMES_FILE = "stop_times.txt"
BATCH_SIZE = 10000

SCHEMA = '''
    CREATE TABLE IF NOT EXISTS stop_times (
        trip_id TEXT,
        arrival_time TEXT,
        departure_time TEXT,
        stop_id TEXT,
        stop_sequence INTEGER,
        pickup_type INTEGER,
        drop_off_type INTEGER
    );
    CREATE INDEX IF NOT EXISTS idx_stop_times_trip ON stop_times(trip_id);
    CREATE INDEX IF NOT EXISTS idx_stop_times_stop ON stop_times(stop_id);
    CREATE TABLE IF NOT EXISTS load_state (
        table_name TEXT PRIMARY KEY,
        row_count INTEGER,
        completed_at TEXT
    );
'''


def _nullable_int(value) -> Optional[int]:
    text = str(value).strip() if value is not None else ""
    if not text:
        return None
    return int(float(text))


class StopTimeRepository:
    """SQLite-backed stop time lookups"""

    def __init__(self, db_path: Path, source: StaticFileSource):
        self.db_path = Path(db_path)
        self.source = source
        self._conn: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()

    async def start(self):
        """Open the database and bulk-load stop_times unless a completed load is recorded"""
        if self._conn is not None:
            return
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = await aiosqlite.connect(str(self.db_path))
        self._conn.row_factory = aiosqlite.Row
        await self._conn.execute("PRAGMA journal_mode=WAL")
        await self._conn.executescript(SCHEMA)
        await self._conn.commit()

        async with self._conn.execute(
            "SELECT row_count FROM load_state WHERE table_name = ?", ("stop_times",)
        ) as cursor:
            marker = await cursor.fetchone()
        if marker is not None:
            logger.info(f"stop_times already loaded in database ({marker[0]} rows)")
            return

        # Rows without a completion marker are left over from an interrupted load
        await self._conn.execute("DELETE FROM stop_times")
        await self._conn.commit()

        if not self.source.exists(STOP_TIMES_FILE):
            logger.warning(f"{STOP_TIMES_FILE} not found, departures will be empty")
            return
        await self._bulk_load()

    async def stop(self):
        if self._conn is not None:
            await self._conn.close()
            self._conn = None

    async def _bulk_load(self):
        logger.info("Loading stop_times into database...")
        loaded = 0
        loop = asyncio.get_running_loop()
        chunks = self.source.iter_table_chunks(STOP_TIMES_FILE, chunk_size=BATCH_SIZE)
        async with self._lock:
            while True:
                # CSV parsing runs off the event loop
                batch = await loop.run_in_executor(None, next, chunks, None)
                if batch is None:
                    break
                rows = [
                    (
                        row.get("trip_id", ""),
                        row.get("arrival_time", ""),
                        row.get("departure_time", ""),
                        row.get("stop_id", ""),
                        _nullable_int(row.get("stop_sequence")),
                        _nullable_int(row.get("pickup_type")),
                        _nullable_int(row.get("drop_off_type")),
                    )
                    for row in batch
                ]
                await self._conn.executemany(
                    "INSERT INTO stop_times (trip_id, arrival_time, departure_time, stop_id, "
                    "stop_sequence, pickup_type, drop_off_type) VALUES (?, ?, ?, ?, ?, ?, ?)",
                    rows,
                )
                await self._conn.commit()
                loaded += len(rows)
                if loaded % 100000 < BATCH_SIZE:
                    logger.info(f"Loaded {loaded} stop_times...")
            await self._conn.execute(
                "INSERT OR REPLACE INTO load_state (table_name, row_count, completed_at) "
                "VALUES (?, ?, datetime('now'))",
                ("stop_times", loaded),
            )
            await self._conn.commit()
        logger.info(f"Loaded {loaded} stop_times into database")

    async def _query(self, sql: str, params: tuple) -> List[Dict[str, object]]:
        if self._conn is None:
            return []
        async with self._lock:
            async with self._conn.execute(sql, params) as cursor:
                rows = await cursor.fetchall()
        return [dict(row) for row in rows]

    async def stop_times_for_trip(self, trip_id: str) -> List[Dict[str, object]]:
        return await self._query(
            "SELECT * FROM stop_times WHERE trip_id = ? ORDER BY stop_sequence",
            (trip_id,),
        )

    async def departures_from(self, stop_id: str, min_departure_time: str) -> List[Dict[str, object]]:
        """Stop times at stop_id departing at or after min_departure_time (HH:MM:SS)"""
        return await self._query(
            "SELECT * FROM stop_times WHERE stop_id = ? AND departure_time >= ? ORDER BY departure_time",
            (stop_id, min_departure_time),
        )
