"""
Crash Pulse - Local Data I/O

Utilities for reading and writing the pipeline's flat files:
- Delimited tables (CSV / pipe-delimited)
- Polygon layers (shapefile, GeoJSON, GeoPackage via geopandas)
- JSON diagnostics
- Content fingerprints for reproducibility checks

Usage:
    from crash_pulse.shared.io import LocalDataIO

    io = LocalDataIO()
    df = io.read_table(io.get_path("raw", "mvc.csv"))
    io.write_table(df, io.get_path("processed", "mvc_tract_agg.csv"))
"""

from __future__ import annotations

import hashlib
import json
import logging
from pathlib import Path
from typing import Any

import geopandas as gpd
import pandas as pd

from crash_pulse.shared.config import Settings, get_config, get_data_path

logger = logging.getLogger(__name__)


class LocalDataIO:
    """
    File I/O handler for the Crash Pulse pipeline.

    Writes are deterministic: the same DataFrame always produces the same bytes,
    so a re-run on identical inputs yields identical files.
    """

    def __init__(self, config: Settings | None = None):
        """
        Initialize I/O handler.

        Args:
            config: Configuration object (uses default if not provided)
        """
        self.config = config or get_config()

    def get_path(self, layer: str, filename: str) -> Path:
        """Path of ``filename`` inside a storage layer."""
        return get_data_path(layer, filename, self.config)

    def read_table(
        self,
        path: str | Path,
        string_columns: list[str] | None = None,
        delimiter: str | None = None,
    ) -> pd.DataFrame:
        """
        Read a delimited table.

        Args:
            path: File path
            string_columns: Columns read as strings (identifiers keep leading zeros)
            delimiter: Field delimiter (defaults to storage.delimiter)

        Returns:
            DataFrame with the data

        Raises:
            FileNotFoundError: If the file doesn't exist
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Input file not found: {path}")

        sep = delimiter or self.config.storage.delimiter
        dtype = {col: str for col in string_columns} if string_columns else None
        df = pd.read_csv(path, sep=sep, dtype=dtype, low_memory=False)

        logger.info(
            f"Read {len(df)} rows from {path}",
            extra={"path": str(path), "rows": len(df), "columns": len(df.columns)},
        )
        return df

    def read_polygons(self, path: str | Path) -> gpd.GeoDataFrame:
        """Read a polygon layer in any format geopandas understands."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Polygon layer not found: {path}")

        gdf = gpd.read_file(path)
        logger.info(
            f"Read {len(gdf)} features from {path}",
            extra={"path": str(path), "rows": len(gdf), "crs": str(gdf.crs)},
        )
        return gdf

    def write_table(self, df: pd.DataFrame, path: str | Path) -> str:
        """
        Write a DataFrame as a delimited table.

        Missing values are written as empty fields.

        Returns:
            MD5 fingerprint of the written file
        """
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        df.to_csv(
            path,
            sep=self.config.storage.delimiter,
            index=False,
            na_rep="",
            lineterminator="\n",
        )
        fingerprint = file_fingerprint(path)

        logger.info(
            f"Wrote {len(df)} rows to {path}",
            extra={"path": str(path), "rows": len(df), "md5": fingerprint},
        )
        return fingerprint

    def read_json(self, path: str | Path) -> dict[str, Any]:
        """Read a JSON file."""
        with open(path) as f:
            return json.load(f)

    def write_json(self, data: dict[str, Any], path: str | Path) -> str:
        """Write a JSON file with stable key order."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(data, f, indent=2, sort_keys=True, default=str)
            f.write("\n")
        return str(path)


def file_fingerprint(path: str | Path) -> str:
    """MD5 hex digest of a file's bytes."""
    digest = hashlib.md5()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(1 << 20), b""):
            digest.update(chunk)
    return digest.hexdigest()


def frame_fingerprint(df: pd.DataFrame) -> str:
    """MD5 digest of a DataFrame's values, index excluded."""
    hashed = pd.util.hash_pandas_object(df, index=False).to_numpy()
    digest = hashlib.md5(hashed.tobytes())
    digest.update("|".join(map(str, df.columns)).encode())
    return digest.hexdigest()
