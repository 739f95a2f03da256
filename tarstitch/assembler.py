"""
assembler.py
Turn a computed layout into an archive object.

plan_assembly() is pure: it walks the archive byte sequence and decides how
every byte reaches the destination multipart upload.
  - Buffer parts: in-memory bytes (manifest, headers, pads, trailer) plus
    small entries read by range, flushed once they reach min_size.
  - Copy parts: server-side copies of object ranges.
  - Staging: a header has to sit directly before its entry's data, but a
    header alone is far below min_size. When the pending buffer is too small
    to close a part, the entry is staged first into a temporary object
    [zero filler][pending bytes + header][entry data] whose first part is
    exactly min_size; the archive then copies everything after the filler.

Assembler executes a plan on a thread pool and completes the upload only
when PartTracker has an acknowledgement for every planned part number.
"""

from __future__ import annotations
import sys, threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import replace
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union
from .errors import AssemblyError, ConfigurationError, ConvergenceError, DriftError, StoreError
from .parts import DEFAULT_LIMITS, plan_parts, split_range
from .store import ObjectStore, delete_keys
from .types import (
    AssemblyPlan,
    BufferPart,
    CopyPart,
    Entry,
    Layout,
    Part,
    PartLimits,
    Piece,
    SourceRange,
    Staging,
)
from .util import END_OF_ARCHIVE, padding, random_hex, s3_url


def staging_key(dst_key: str, token: str, index: int) -> str:
    return f"{dst_key}.stage-{token}/{index:06d}"


def plan_assembly(
    entries: Sequence[Entry],
    headers: Sequence[bytes],
    layout: Layout,
    first_part: bytes,
    dst_bucket: str,
    dst_key: str,
    limits: PartLimits = DEFAULT_LIMITS,
    split: str = "mid",
    strict: bool = True,
    token: Optional[str] = None,
) -> AssemblyPlan:
    token = token or random_hex(8)
    parts: List[Part] = []
    stagings: List[Staging] = []
    pending: List[Piece] = [first_part]
    pending_len = len(first_part)

    # copies stay unsplit until the whole archive has been walked
    slots: List[Union[BufferPart, Tuple[SourceRange, int, int]]] = []

    def flush():
        nonlocal pending, pending_len
        if pending_len > limits.max_size:
            raise ConfigurationError(
                f"buffered part of {pending_len} bytes exceeds max part size {limits.max_size}"
            )
        slots.append(BufferPart(0, pending))
        pending, pending_len = [], 0

    def add_copies(src: SourceRange):
        fewest = plan_parts(src.length, limits, "min").chosen
        preferred = plan_parts(src.length, limits, split).chosen
        slots.append((src, fewest, preferred))

    pos = len(first_part)
    for entry, header, record in zip(entries, headers, layout.records):
        if pos != record.offset:
            raise ConvergenceError(
                f"{entry.name!r} would land at {pos} but the manifest records {record.offset}"
            )
        etag = entry.checksum if strict and entry.checksum else None
        source = SourceRange(entry.bucket, entry.key, 0, entry.size, etag)
        pending.append(header)
        pending_len += len(header)

        if entry.data is not None or entry.size < limits.min_size:
            if entry.size:
                pending.append(entry.data if entry.data is not None else source)
                pending_len += entry.size
        elif pending_len >= limits.min_size:
            flush()
            add_copies(source)
        else:
            key = staging_key(dst_key, token, entry.index)
            filler = limits.min_size - pending_len
            stagings.append(Staging(key, filler, pending, source))
            add_copies(SourceRange(dst_bucket, key, filler, pending_len + entry.size))
            pending, pending_len = [], 0

        pad = padding(entry.size)
        if pad:
            pending.append(bytes(pad))
            pending_len += pad
        if pending_len >= limits.min_size:
            flush()
        pos += len(header) + entry.size + pad

    pending.append(bytes(END_OF_ARCHIVE))
    pending_len += END_OF_ARCHIVE
    flush()

    needed = sum(1 if isinstance(s, BufferPart) else s[1] for s in slots)
    if needed > limits.max_count:
        raise ConfigurationError(
            f"archive needs at least {needed} parts, more than the limit of {limits.max_count}"
        )
    # parts beyond the minimum are handed out in archive order until the budget runs out
    spare = limits.max_count - needed
    for slot in slots:
        if isinstance(slot, BufferPart):
            slot.number = len(parts) + 1
            parts.append(slot)
            continue
        src, fewest, preferred = slot
        extra = min(preferred - fewest, spare)
        spare -= extra
        for start, n in split_range(src.start, src.length, fewest + extra):
            parts.append(CopyPart(len(parts) + 1, replace(src, start=start, length=n)))

    size = sum(p.size for p in parts)
    if pos != layout.data_end or size != layout.archive_size:
        raise ConvergenceError(
            f"plan covers {size} bytes (data end {pos}) but the layout expects "
            f"{layout.archive_size} (data end {layout.data_end})"
        )
    return AssemblyPlan(parts=parts, stagings=stagings, size=size)


class PartTracker:
    """Collects part acknowledgements by number; duplicates and strangers are errors."""

    def __init__(self, expected: Iterable[int]):
        self.expected = set(expected)
        self.received: Dict[int, str] = {}
        self._lock = threading.Lock()

    def record(self, number: int, etag: str) -> None:
        with self._lock:
            if number not in self.expected:
                raise AssemblyError(f"acknowledgement for unplanned part {number}")
            if number in self.received:
                raise AssemblyError(f"duplicate acknowledgement for part {number}")
            self.received[number] = etag

    def missing(self) -> List[int]:
        with self._lock:
            return sorted(self.expected - self.received.keys())

    def completed(self) -> List[Tuple[int, str]]:
        gaps = self.missing()
        if gaps:
            raise AssemblyError(f"{len(gaps)} part(s) never acknowledged: {gaps[:10]}")
        return sorted(self.received.items())


class Assembler:
    def __init__(
        self,
        store: ObjectStore,
        workers: int = 4,
        limits: PartLimits = DEFAULT_LIMITS,
        split: str = "mid",
        debug: bool = False,
    ):
        if workers < 1:
            raise ConfigurationError(f"workers must be positive, got {workers}")
        self.store = store
        self.workers = workers
        self.limits = limits
        self.split = split
        self.debug = debug
        self._staged: List[str] = []
        self._staging_uploads: Dict[str, str] = {}
        self._lock = threading.Lock()

    def _log(self, msg: str) -> None:
        if self.debug:
            print(f"[debug] {msg}")

    def _run(self, fn: Callable, items: Sequence) -> List:
        """Run fn over items on the pool; the first failure cancels whatever has not started."""
        results = []
        with ThreadPoolExecutor(max_workers=self.workers) as ex:
            futs = [ex.submit(fn, it) for it in items]
            try:
                for f in as_completed(futs):
                    results.append(f.result())
            except BaseException:
                for f in futs:
                    f.cancel()
                raise
        return results

    def materialize(self, pieces: Sequence[Piece]) -> bytes:
        out = []
        for p in pieces:
            if isinstance(p, bytes):
                out.append(p)
                continue
            body = self.store.get_object_range(p.bucket, p.key, p.start, p.end, if_match=p.etag)
            try:
                data = body.read()
            finally:
                body.close()
            if len(data) != p.length:
                raise DriftError(
                    f"expected {p.length} bytes at {p.start}, read {len(data)}",
                    "get_object", p.bucket, p.key,
                )
            out.append(data)
        return b"".join(out)

    def _build_staging(self, bucket: str, s: Staging) -> str:
        upload_id = self.store.create_multipart_upload(bucket, s.key)
        with self._lock:
            self._staging_uploads[s.key] = upload_id
        etags = [(1, self.store.upload_part(bucket, s.key, upload_id, 1, bytes(s.filler) + self.materialize(s.prefix)))]
        # part 1 is the filler + prefix, leaving one fewer part for the data
        limits = replace(self.limits, max_count=self.limits.max_count - 1)
        plan = plan_parts(s.source.length, limits, self.split)
        for n, (start, length) in enumerate(split_range(0, s.source.length, plan.chosen), 2):
            etags.append((n, self.store.upload_part_copy(
                bucket, s.key, upload_id, n,
                s.source.bucket, s.source.key, start, start + length - 1,
                if_match=s.source.etag,
            )))
        self.store.complete_multipart_upload(bucket, s.key, upload_id, etags)
        with self._lock:
            del self._staging_uploads[s.key]
            self._staged.append(s.key)
        self._log(f"staged {s3_url(s.source.bucket, s.source.key)} -> {s3_url(bucket, s.key)}")
        return s.key

    def _upload(self, bucket: str, key: str, upload_id: str, part: Part) -> Tuple[int, str]:
        if isinstance(part, CopyPart):
            src = part.source
            self._log(f"part {part.number}: copy {s3_url(src.bucket, src.key)} bytes={src.start}-{src.end}")
            etag = self.store.upload_part_copy(
                bucket, key, upload_id, part.number, src.bucket, src.key, src.start, src.end, if_match=src.etag
            )
        else:
            self._log(f"part {part.number}: upload {part.size} buffered bytes")
            etag = self.store.upload_part(bucket, key, upload_id, part.number, self.materialize(part.pieces))
        return part.number, etag

    def _cleanup(self, bucket: str, key: Optional[str], upload_id: Optional[str], quiet: bool) -> None:
        pending = []
        if upload_id:
            pending.append((key, upload_id))
        pending.extend(self._staging_uploads.items())
        for k, uid in pending:
            try:
                self.store.abort_multipart_upload(bucket, k, uid)
            except StoreError as e:
                print(f"[warn] could not abort upload {uid} for {s3_url(bucket, k)}: {e}", file=sys.stderr)
        self._staging_uploads.clear()
        staged, self._staged = self._staged, []
        if not staged:
            return
        try:
            delete_keys(self.store, bucket, staged)
        except StoreError as e:
            if not quiet:
                raise
            print(f"[warn] staging objects left behind in {s3_url(bucket)}: {e}", file=sys.stderr)

    def assemble(self, plan: AssemblyPlan, bucket: str, key: str) -> str:
        """Write the planned archive to s3://bucket/key and return its ETag."""
        if len(plan.parts) == 1 and not plan.stagings:
            part = plan.parts[0]
            if isinstance(part, BufferPart):
                return self.store.put_object(bucket, key, self.materialize(part.pieces))

        upload_id = None
        try:
            if plan.stagings:
                self._run(lambda s: self._build_staging(bucket, s), plan.stagings)
            upload_id = self.store.create_multipart_upload(bucket, key)
            tracker = PartTracker(p.number for p in plan.parts)
            for number, etag in self._run(lambda p: self._upload(bucket, key, upload_id, p), plan.parts):
                tracker.record(number, etag)
            etag = self.store.complete_multipart_upload(bucket, key, upload_id, tracker.completed())
        except BaseException:
            self._cleanup(bucket, key, upload_id, quiet=True)
            raise
        self._cleanup(bucket, key, None, quiet=False)
        return etag
