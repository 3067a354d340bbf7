"""
Static file data source.
Reads the flat GTFS reference tables from the static data directory.
"""

import logging
from pathlib import Path
from typing import Dict, Iterator, List, Optional

import pandas as pd

from ...core.errors import ReferenceLoadFailure

logger = logging.getLogger(__name__)


class StaticFileSource:
    """Reads GTFS text tables as lists of string-valued rows"""

    def __init__(self, gtfs_dir: Path):
        self.gtfs_dir = Path(gtfs_dir)

    def path_for(self, file_name: str) -> Path:
        return self.gtfs_dir / file_name

    def exists(self, file_name: str) -> bool:
        return self.path_for(file_name).exists()

    def read_table(self, file_name: str, required: bool = True) -> Optional[List[Dict[str, str]]]:
        """Load one table. Missing required tables raise ReferenceLoadFailure,
        missing optional ones return None."""
        file_path = self.path_for(file_name)
        if not file_path.exists():
            if required:
                raise ReferenceLoadFailure(file_name, str(file_path), "file not found")
            logger.warning(f"Optional table {file_name} not found at {file_path}")
            return None

        try:
            frame = self._read_csv(file_path)
        except (pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError, OSError) as e:
            raise ReferenceLoadFailure(file_name, str(file_path), str(e)) from e

        rows = frame.to_dict("records")
        logger.debug(f"Read {len(rows)} rows from {file_name}")
        return rows

    def iter_table_chunks(self, file_name: str, chunk_size: int = 10000) -> Iterator[List[Dict[str, str]]]:
        """Stream a large table in row batches"""
        file_path = self.path_for(file_name)
        reader = pd.read_csv(
            file_path,
            dtype=str,
            keep_default_na=False,
            skipinitialspace=True,
            encoding="utf-8-sig",
            chunksize=chunk_size,
        )
        with reader:
            for chunk in reader:
                chunk.columns = [str(c).strip() for c in chunk.columns]
                yield chunk.to_dict("records")

    @staticmethod
    def _read_csv(file_path: Path) -> pd.DataFrame:
        frame = pd.read_csv(
            file_path,
            dtype=str,
            keep_default_na=False,
            skipinitialspace=True,
            encoding="utf-8-sig",
        )
        frame.columns = [str(c).strip() for c in frame.columns]
        return frame
