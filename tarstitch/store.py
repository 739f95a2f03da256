"""
store.py
Object-store access:
- ObjectStore: the operations the assembler and orchestrator need
- Boto3Store: adapter over a boto3 S3 client, translating botocore errors
- Helpers built on the protocol: list_entries, delete_keys, sweep_multipart_uploads

The client is always passed in explicitly; nothing here keeps global state.
"""

from __future__ import annotations
from contextlib import contextmanager
from datetime import datetime
from typing import IO, Iterator, List, Optional, Protocol, Sequence, Tuple

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from .errors import DriftError, PartialBatchDeleteError, TransientStoreError
from .types import Config, Entry, ObjectInfo

DELETE_BATCH = 1000
PRECONDITION_CODES = {"PreconditionFailed", "412"}


class ObjectStore(Protocol):
    def list_objects(self, bucket: str, prefix: str) -> List[ObjectInfo]: ...

    def head_object(self, bucket: str, key: str) -> ObjectInfo: ...

    def get_object_range(
        self, bucket: str, key: str, start: int, end: Optional[int] = None, if_match: Optional[str] = None
    ) -> IO[bytes]: ...

    def put_object(self, bucket: str, key: str, data: bytes) -> str: ...

    def create_multipart_upload(self, bucket: str, key: str) -> str: ...

    def upload_part(self, bucket: str, key: str, upload_id: str, part_number: int, data: bytes) -> str: ...

    def upload_part_copy(
        self,
        bucket: str,
        key: str,
        upload_id: str,
        part_number: int,
        src_bucket: str,
        src_key: str,
        start: int,
        end: int,
        if_match: Optional[str] = None,
    ) -> str: ...

    def complete_multipart_upload(
        self, bucket: str, key: str, upload_id: str, parts: Sequence[Tuple[int, str]]
    ) -> str: ...

    def abort_multipart_upload(self, bucket: str, key: str, upload_id: str) -> None: ...

    def list_multipart_uploads(self, bucket: str, prefix: str = "") -> List[Tuple[str, str, Optional[datetime]]]: ...

    def delete_objects(self, bucket: str, keys: Sequence[str]) -> List[Tuple[str, str]]: ...


def _etag(raw: Optional[str]) -> str:
    return (raw or "").strip('"')


def _quoted(etag: str) -> str:
    return etag if etag.startswith('"') else f'"{etag}"'


def _ts(dt: Optional[datetime]) -> float:
    return dt.timestamp() if dt is not None else 0.0


@contextmanager
def _translate(operation: str, bucket: str, key: Optional[str] = None) -> Iterator[None]:
    try:
        yield
    except ClientError as e:
        err = e.response.get("Error", {})
        code = str(err.get("Code", ""))
        msg = err.get("Message") or str(e)
        if code in PRECONDITION_CODES:
            raise DriftError(f"source changed since layout ({msg})", operation, bucket, key) from e
        raise TransientStoreError(f"{code}: {msg}", operation, bucket, key) from e
    except BotoCoreError as e:
        raise TransientStoreError(str(e), operation, bucket, key) from e


def make_client(cfg: Config, workers: int = 10):
    """Build a boto3 S3 client honoring region, endpoint and timeouts from config."""
    boto_cfg = BotoConfig(
        connect_timeout=cfg.connect_timeout,
        read_timeout=cfg.read_timeout,
        max_pool_connections=max(10, workers),
    )
    return boto3.client(
        "s3",
        region_name=cfg.region or None,
        endpoint_url=cfg.endpoint_url or None,
        config=boto_cfg,
    )


class Boto3Store:
    def __init__(self, client):
        self.client = client

    def list_objects(self, bucket: str, prefix: str) -> List[ObjectInfo]:
        out = []
        with _translate("list_objects", bucket, prefix):
            pages = self.client.get_paginator("list_objects_v2").paginate(Bucket=bucket, Prefix=prefix)
            for page in pages:
                for o in page.get("Contents", []):
                    out.append(
                        ObjectInfo(bucket, o["Key"], int(o["Size"]), _etag(o.get("ETag")), _ts(o.get("LastModified")))
                    )
        return out

    def head_object(self, bucket: str, key: str) -> ObjectInfo:
        with _translate("head_object", bucket, key):
            r = self.client.head_object(Bucket=bucket, Key=key)
        return ObjectInfo(bucket, key, int(r["ContentLength"]), _etag(r.get("ETag")), _ts(r.get("LastModified")))

    def get_object_range(self, bucket, key, start, end=None, if_match=None):
        params = {"Bucket": bucket, "Key": key}
        # S3 rejects bytes=0- on an empty object with 416
        if start or end is not None:
            params["Range"] = f"bytes={start}-{'' if end is None else end}"
        if if_match:
            params["IfMatch"] = _quoted(if_match)
        with _translate("get_object", bucket, key):
            return self.client.get_object(**params)["Body"]

    def put_object(self, bucket, key, data):
        with _translate("put_object", bucket, key):
            r = self.client.put_object(Bucket=bucket, Key=key, Body=data, ContentLength=len(data))
        return r["ETag"]

    def create_multipart_upload(self, bucket, key):
        with _translate("create_multipart_upload", bucket, key):
            return self.client.create_multipart_upload(Bucket=bucket, Key=key)["UploadId"]

    def upload_part(self, bucket, key, upload_id, part_number, data):
        with _translate("upload_part", bucket, key):
            r = self.client.upload_part(
                Bucket=bucket, Key=key, UploadId=upload_id, PartNumber=part_number,
                Body=data, ContentLength=len(data),
            )
        return r["ETag"]

    def upload_part_copy(self, bucket, key, upload_id, part_number, src_bucket, src_key, start, end, if_match=None):
        params = {
            "Bucket": bucket,
            "Key": key,
            "UploadId": upload_id,
            "PartNumber": part_number,
            "CopySource": {"Bucket": src_bucket, "Key": src_key},
            "CopySourceRange": f"bytes={start}-{end}",
        }
        if if_match:
            params["CopySourceIfMatch"] = _quoted(if_match)
        with _translate("upload_part_copy", src_bucket, src_key):
            r = self.client.upload_part_copy(**params)
        return r["CopyPartResult"]["ETag"]

    def complete_multipart_upload(self, bucket, key, upload_id, parts):
        with _translate("complete_multipart_upload", bucket, key):
            r = self.client.complete_multipart_upload(
                Bucket=bucket,
                Key=key,
                UploadId=upload_id,
                MultipartUpload={"Parts": [{"PartNumber": n, "ETag": t} for n, t in parts]},
            )
        return r.get("ETag", "")

    def abort_multipart_upload(self, bucket, key, upload_id):
        with _translate("abort_multipart_upload", bucket, key):
            self.client.abort_multipart_upload(Bucket=bucket, Key=key, UploadId=upload_id)

    def list_multipart_uploads(self, bucket, prefix=""):
        out = []
        with _translate("list_multipart_uploads", bucket):
            pages = self.client.get_paginator("list_multipart_uploads").paginate(Bucket=bucket, Prefix=prefix)
            for page in pages:
                for u in page.get("Uploads", []):
                    out.append((u["Key"], u["UploadId"], u.get("Initiated")))
        return out

    def delete_objects(self, bucket, keys):
        with _translate("delete_objects", bucket):
            r = self.client.delete_objects(
                Bucket=bucket,
                Delete={"Objects": [{"Key": k} for k in keys], "Quiet": True},
            )
        return [(e.get("Key", ""), e.get("Message") or e.get("Code", "")) for e in r.get("Errors", [])]


def list_entries(store: ObjectStore, bucket: str, prefix: str) -> List[Entry]:
    """Objects under `prefix` in listing order, pseudo-directories dropped, indexed from 1."""
    objs = [o for o in store.list_objects(bucket, prefix) if not o.key.endswith("/")]
    return [Entry.from_object(o, i) for i, o in enumerate(objs, 1)]


def delete_keys(store: ObjectStore, bucket: str, keys: Sequence[str], batch: int = DELETE_BATCH) -> int:
    """
    Delete `keys` in batches of at most `batch`. Stops at the first batch that
    reports per-key failures and raises PartialBatchDeleteError listing them.
    """
    done = 0
    for i in range(0, len(keys), batch):
        chunk = list(keys[i : i + batch])
        failed = store.delete_objects(bucket, chunk)
        if failed:
            raise PartialBatchDeleteError(failed, bucket=bucket)
        done += len(chunk)
    return done


def sweep_multipart_uploads(
    store: ObjectStore,
    bucket: str,
    prefix: str = "",
    older_than: Optional[datetime] = None,
) -> List[Tuple[str, str]]:
    """Abort incomplete multipart uploads in `bucket`, optionally only those initiated before `older_than`."""
    aborted = []
    for key, upload_id, initiated in store.list_multipart_uploads(bucket, prefix):
        if older_than is not None and initiated is not None and initiated >= older_than:
            continue
        store.abort_multipart_upload(bucket, key, upload_id)
        aborted.append((key, upload_id))
    return aborted
