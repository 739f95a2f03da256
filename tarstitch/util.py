"""
util.py
Cross-cutting utilities:
- Block alignment (tar pads every member to 512-byte blocks)
- S3 URL parsing
- Small helpers: clamp, time, JSON writing, random tokens
"""

from __future__ import annotations
import json, re, secrets
from datetime import datetime, timezone
from pathlib import Path
from typing import Tuple

BLOCK_SIZE = 512
END_OF_ARCHIVE = BLOCK_SIZE * 2

_S3_URL = re.compile(r"s3://([^/]*)/?(.*)")


def padding(offset: int) -> int:
    """
    Bytes needed to bring `offset` up to the next block boundary.
    BLOCK_SIZE is a power of two, so the mask keeps the result in [0, 511].
    """
    return -offset & (BLOCK_SIZE - 1)


def random_hex(n: int) -> str:
    """Cryptographically random hex string built from n random bytes."""
    if n < 0:
        raise ValueError(f"byte count must be non-negative, got {n}")
    return secrets.token_hex(n)


def extract_bucket_and_path(url: str) -> Tuple[str, str]:
    """Split s3://bucket/prefix/key into (bucket, 'prefix/key'); ('', '') if not an S3 URL."""
    m = _S3_URL.match(url)
    if not m:
        return "", ""
    return m.group(1), m.group(2)


def s3_url(bucket: str, key: str = "") -> str:
    return f"s3://{bucket}/{key}"


def clamp(lo, x, hi):
    return max(lo, min(x, hi))


def utc_datestr(fmt):
    return datetime.now(timezone.utc).strftime(fmt)


def ensure_dir(p: Path):
    """Create directory with better error reporting."""
    try:
        p.mkdir(parents=True, exist_ok=True)
    except PermissionError:
        raise PermissionError(f"Cannot create directory {p} - insufficient permissions")
    except OSError as e:
        raise OSError(f"Cannot create directory {p}: {e}")


def write_json(path: Path, obj):
    ensure_dir(path.parent)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(obj, indent=2, sort_keys=True))
    tmp.replace(path)
