"""
manifest.py
The manifest is the first member of every archive: a CSV named manifest.csv
with one `name,offset,size,etag` record per entry, where offset is the
absolute position of the entry's header block in the archive.

Also reads source manifests (`bucket,key,size[,etag]`) listing the objects
an archive should be built from.
"""

from __future__ import annotations
import csv, hashlib, io
from typing import IO, Iterable, List, Optional, Tuple
from .errors import ConfigurationError, ConvergenceError
from .headers import synthesize
from .types import Entry, Layout, LayoutRecord
from .util import BLOCK_SIZE, padding

MANIFEST_NAME = "manifest.csv"
MANIFEST_FIELDS = ("name", "offset", "size", "etag")
MANIFEST_MODE = 0o600


def manifest_padding(n: int) -> int:
    """Like padding(), but an aligned manifest still gets one full pad block."""
    return padding(n) or BLOCK_SIZE


def serialize_records(records: Iterable[LayoutRecord], header_row: bool = False) -> bytes:
    buf = io.StringIO()
    w = csv.writer(buf, lineterminator="\n")
    if header_row:
        w.writerow(MANIFEST_FIELDS)
    for r in records:
        w.writerow([r.name, str(r.offset), str(r.size), r.checksum])
    return buf.getvalue().encode("utf-8")


def parse_manifest(body: bytes) -> List[LayoutRecord]:
    # trailing NULs appear when the body is read back with its pad block
    text = body.rstrip(b"\0").decode("utf-8")
    rows = list(csv.reader(io.StringIO(text, newline="")))
    if rows and tuple(rows[0]) == MANIFEST_FIELDS:
        rows = rows[1:]
    out = []
    for lineno, row in enumerate(rows, 1):
        if len(row) != 4:
            raise ValueError(f"manifest line {lineno}: expected 4 fields, got {len(row)}")
        name, offset, size, checksum = row
        out.append(LayoutRecord(name, int(offset), int(size), checksum))
    return out


def build_first_part(body: bytes, tar_format: str = "gnu", mtime: Optional[float] = None) -> bytes:
    """Manifest header + body + trailing pad, ready to be the archive's first bytes."""
    header = synthesize(MANIFEST_NAME, len(body), mtime, mode=MANIFEST_MODE, tar_format=tar_format)
    return header + body + bytes(manifest_padding(len(body)))


def build_manifest(
    layout: Layout,
    bucket: str,
    tar_format: str = "gnu",
    mtime: Optional[float] = None,
) -> Tuple[Entry, bytes]:
    """
    Return the manifest Entry (in-memory data, bound to `bucket`) and the
    first-part bytes. The first part must be exactly layout.manifest_size
    long, otherwise every recorded offset would be wrong.
    """
    first = build_first_part(layout.manifest_body, tar_format, mtime)
    if len(first) != layout.manifest_size:
        raise ConvergenceError(
            f"manifest occupies {len(first)} bytes but the layout reserved {layout.manifest_size}"
        )
    body = layout.manifest_body
    entry = Entry(
        name=MANIFEST_NAME,
        size=len(body),
        checksum=hashlib.md5(body).hexdigest(),
        bucket=bucket,
        key=MANIFEST_NAME,
        index=0,
        last_modified=0.0 if mtime is None else mtime,
        data=body,
    )
    return entry, first


def load_source_manifest(stream: IO[str], skip_header: bool = False) -> List[Entry]:
    """Read `bucket,key,size[,etag]` rows into entries, indexed from 1 in row order."""
    entries = []
    reader = csv.reader(stream)
    if skip_header:
        next(reader, None)
    for lineno, row in enumerate(reader, 1):
        if not row or not any(c.strip() for c in row):
            continue
        if len(row) < 3:
            raise ConfigurationError(f"source manifest line {lineno}: expected bucket,key,size[,etag]")
        bucket, key, size = row[0].strip(), row[1].strip(), row[2].strip()
        etag = row[3].strip().strip('"') if len(row) > 3 else ""
        try:
            n = int(size)
        except ValueError:
            raise ConfigurationError(f"source manifest line {lineno}: size {size!r} is not an integer")
        if n < 0:
            raise ConfigurationError(f"source manifest line {lineno}: negative size {n}")
        entries.append(
            Entry(name=key, size=n, checksum=etag, bucket=bucket, key=key, index=len(entries) + 1)
        )
    return entries
