"""
Pytest configuration and shared fixtures.
"""
import hashlib
import io
import tempfile
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from tarstitch.errors import DriftError, TransientStoreError
from tarstitch.types import Config, ObjectInfo, PartLimits

SMALL_LIMITS = PartLimits(min_size=4096, max_size=16384, max_count=10000)
MTIME = 1700000000.0


def _md5(data: bytes) -> str:
    return hashlib.md5(data).hexdigest()


class MemoryStore:
    """
    In-memory ObjectStore that enforces multipart rules the way S3 does:
    non-final parts must reach limits.min_size, no part may exceed max_size,
    and completion needs every listed part with a matching ETag.
    """

    def __init__(self, limits: PartLimits = SMALL_LIMITS):
        self.limits = limits
        self.objects = {}
        self.uploads = {}
        self.delete_calls = []
        self.fail_keys = set()
        self.calls = []
        self._next_upload = 0
        self._lock = threading.Lock()

    # helpers for tests
    def add(self, bucket, key, data, mtime=MTIME):
        self.objects[(bucket, key)] = (bytes(data), _md5(data), mtime)

    def read(self, bucket, key):
        return self.objects[(bucket, key)][0]

    def keys(self, bucket):
        return sorted(k for b, k in self.objects if b == bucket)

    def _get(self, op, bucket, key):
        try:
            return self.objects[(bucket, key)]
        except KeyError:
            raise TransientStoreError("NoSuchKey", op, bucket, key)

    def _check_etag(self, op, bucket, key, etag, if_match):
        if if_match and if_match.strip('"') != etag:
            raise DriftError("precondition failed", op, bucket, key)

    # ObjectStore protocol
    def list_objects(self, bucket, prefix):
        self.calls.append(("list_objects", bucket, prefix))
        out = []
        for (b, k), (data, etag, mtime) in sorted(self.objects.items()):
            if b == bucket and k.startswith(prefix):
                out.append(ObjectInfo(b, k, len(data), etag, mtime))
        return out

    def head_object(self, bucket, key):
        data, etag, mtime = self._get("head_object", bucket, key)
        return ObjectInfo(bucket, key, len(data), etag, mtime)

    def get_object_range(self, bucket, key, start, end=None, if_match=None):
        self.calls.append(("get_object", bucket, key, start, end))
        data, etag, _ = self._get("get_object", bucket, key)
        self._check_etag("get_object", bucket, key, etag, if_match)
        stop = len(data) if end is None else end + 1
        return io.BytesIO(data[start:stop])

    def put_object(self, bucket, key, data):
        self.calls.append(("put_object", bucket, key))
        with self._lock:
            self.add(bucket, key, data)
        return _md5(data)

    def create_multipart_upload(self, bucket, key):
        with self._lock:
            self._next_upload += 1
            upload_id = f"upload-{self._next_upload}"
            self.uploads[upload_id] = {
                "bucket": bucket,
                "key": key,
                "parts": {},
                "initiated": datetime.now(timezone.utc),
            }
        self.calls.append(("create_multipart_upload", bucket, key))
        return upload_id

    def _store_part(self, op, bucket, key, upload_id, part_number, data):
        if not 1 <= part_number <= self.limits.max_count:
            raise TransientStoreError(f"InvalidArgument: part number {part_number}", op, bucket, key)
        if len(data) > self.limits.max_size:
            raise TransientStoreError(f"EntityTooLarge: {len(data)} bytes", op, bucket, key)
        with self._lock:
            upload = self.uploads.get(upload_id)
            if upload is None:
                raise TransientStoreError("NoSuchUpload", op, bucket, key)
            etag = _md5(data)
            upload["parts"][part_number] = (data, etag)
        return etag

    def upload_part(self, bucket, key, upload_id, part_number, data):
        self.calls.append(("upload_part", bucket, key, part_number, len(data)))
        return self._store_part("upload_part", bucket, key, upload_id, part_number, data)

    def upload_part_copy(self, bucket, key, upload_id, part_number, src_bucket, src_key, start, end, if_match=None):
        self.calls.append(("upload_part_copy", src_bucket, src_key, start, end))
        data, etag, _ = self._get("upload_part_copy", src_bucket, src_key)
        self._check_etag("upload_part_copy", src_bucket, src_key, etag, if_match)
        if start < 0 or end < start or end >= len(data):
            raise TransientStoreError(f"InvalidRange: bytes={start}-{end}", "upload_part_copy", src_bucket, src_key)
        return self._store_part("upload_part_copy", bucket, key, upload_id, part_number, data[start : end + 1])

    def complete_multipart_upload(self, bucket, key, upload_id, parts):
        with self._lock:
            upload = self.uploads.get(upload_id)
            if upload is None:
                raise TransientStoreError("NoSuchUpload", "complete_multipart_upload", bucket, key)
            numbers = [n for n, _ in parts]
            if numbers != sorted(set(numbers)):
                raise TransientStoreError("InvalidPartOrder", "complete_multipart_upload", bucket, key)
            chunks = []
            for i, (n, etag) in enumerate(parts):
                if n not in upload["parts"] or upload["parts"][n][1] != etag:
                    raise TransientStoreError(f"InvalidPart {n}", "complete_multipart_upload", bucket, key)
                data = upload["parts"][n][0]
                if i < len(parts) - 1 and len(data) < self.limits.min_size:
                    raise TransientStoreError(f"EntityTooSmall: part {n} is {len(data)} bytes", "complete_multipart_upload", bucket, key)
                chunks.append(data)
            del self.uploads[upload_id]
            body = b"".join(chunks)
            self.objects[(bucket, key)] = (body, f"{_md5(body)}-{len(parts)}", MTIME)
        self.calls.append(("complete_multipart_upload", bucket, key, len(parts)))
        return self.objects[(bucket, key)][1]

    def abort_multipart_upload(self, bucket, key, upload_id):
        self.calls.append(("abort_multipart_upload", bucket, key, upload_id))
        with self._lock:
            if self.uploads.pop(upload_id, None) is None:
                raise TransientStoreError("NoSuchUpload", "abort_multipart_upload", bucket, key)

    def list_multipart_uploads(self, bucket, prefix=""):
        return [
            (u["key"], uid, u["initiated"])
            for uid, u in sorted(self.uploads.items())
            if u["bucket"] == bucket and u["key"].startswith(prefix)
        ]

    def delete_objects(self, bucket, keys):
        self.delete_calls.append(list(keys))
        failed = []
        with self._lock:
            for k in keys:
                if k in self.fail_keys:
                    failed.append((k, "AccessDenied"))
                else:
                    self.objects.pop((bucket, k), None)
        return failed


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def source_store():
    """Store with a mix of tiny, empty, mid-sized and multi-part objects under src/data/."""
    s = MemoryStore()
    s.add("src", "data/a.txt", b"hello tar\n" * 10)
    s.add("src", "data/big.bin", bytes(range(256)) * 156 + b"x" * 64)
    s.add("src", "data/dir/", b"")
    s.add("src", "data/empty", b"")
    s.add("src", "data/mid.bin", b"m" * 5000)
    s.add("src", "data/small.bin", b"s" * 3000)
    return s


@pytest.fixture
def old_upload_time():
    return datetime.now(timezone.utc) - timedelta(days=3)


@pytest.fixture
def temp_config_file():
    """Create a temporary configuration file for testing."""
    toml_content = """
[store]
region = "eu-west-1"
endpoint_url = "http://localhost:9000"
connect_timeout = 5
read_timeout = 30

[archive]
tar_format = "pax"
manifest_header = true
external_toc = "s3://toc-bucket/toc.csv"
delete_source = true
strict = false

[parts]
min_size_mb = 8
max_size_mb = 1024
max_count = 5000
split = "min"

[runtime]
workers = 12
log_level = "DEBUG"

[output]
run_summary_dir = "/tmp/tarstitch-test-logs"
"""

    with tempfile.NamedTemporaryFile(mode='w', suffix='.toml', delete=False) as f:
        f.write(toml_content)
        f.flush()
        yield Path(f.name)

    # Cleanup
    Path(f.name).unlink(missing_ok=True)


@pytest.fixture
def sample_config():
    """Create a sample configuration object for testing."""
    return Config(
        region="us-east-1",
        tar_format="gnu",
        manifest_header=False,
        strict=True,
        workers=4,
        log_level="INFO",
    )
