"""Shared utility helpers."""

from flakeguard.utils.paths import (
    atomic_temp_path,
    write_json_atomically,
    write_parquet_atomically,
)
from flakeguard.utils.time_utils import now_utc

__all__ = [
    "atomic_temp_path",
    "write_json_atomically",
    "write_parquet_atomically",
    "now_utc",
]
