"""
headers.py
Tar header synthesis via the standard library's tarfile encoder.

Names that fit the 100-byte ustar field produce exactly one 512-byte block;
longer names add GNU long-name (or pax) blocks, so callers must use
len(header) rather than assuming BLOCK_SIZE.
"""

from __future__ import annotations
import tarfile, time
from typing import Optional
from .errors import ConfigurationError
from .types import Entry

FORMATS = {
    "gnu": tarfile.GNU_FORMAT,
    "pax": tarfile.PAX_FORMAT,
}


def synthesize(
    name: str,
    size: int,
    mtime: Optional[float] = None,
    mode: int = 0o644,
    tar_format: str = "gnu",
) -> bytes:
    if tar_format not in FORMATS:
        raise ConfigurationError(f"unsupported tar format {tar_format!r} (expected one of {sorted(FORMATS)})")
    if size < 0:
        raise ConfigurationError(f"entry size must be non-negative, got {size}")
    info = tarfile.TarInfo(name)
    info.size = size
    info.mtime = int(time.time() if mtime is None else mtime)
    info.mode = mode
    info.type = tarfile.REGTYPE
    return info.tobuf(format=FORMATS[tar_format], encoding="utf-8", errors="surrogateescape")


def entry_header(entry: Entry, tar_format: str = "gnu") -> bytes:
    return synthesize(entry.name, entry.size, entry.last_modified, tar_format=tar_format)
