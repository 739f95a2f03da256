"""
orchestrator.py
Coordinates the end-to-end flow:
  - Enumerate entries (prefix listing or source manifest)
  - Synthesize headers, solve the layout, build the manifest
  - Plan and assemble the archive with a worker pool
  - Optional external TOC and source deletion
  - Write the run summary JSON
"""

from __future__ import annotations
import io, os, sys, time
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime, timezone
from typing import List, Optional, Tuple
from .assembler import Assembler, plan_assembly
from .errors import ConfigurationError, DriftError
from .headers import entry_header, synthesize
from .layout import compute_layout
from .manifest import MANIFEST_MODE, MANIFEST_NAME, build_manifest, load_source_manifest
from .store import ObjectStore, delete_keys, list_entries, sweep_multipart_uploads
from .types import Config, Entry, Layout, RunResult
from .util import clamp, extract_bucket_and_path, s3_url, utc_datestr, write_json


def auto_workers(explicit: int) -> int:
    if explicit and explicit > 0:
        return explicit
    cpu = os.cpu_count() or 2
    return clamp(2, cpu * 2, 32)


def parse_s3(url: str, what: str) -> Tuple[str, str]:
    bucket, path = extract_bucket_and_path(url)
    if not bucket:
        raise ConfigurationError(f"{what} must be an s3://bucket/... URL, got {url!r}")
    return bucket, path


def read_source_manifest(store: ObjectStore, path: str, skip_header: bool) -> List[Entry]:
    """Source manifests may live locally or in the store."""
    if path.startswith("s3://"):
        bucket, key = parse_s3(path, "source manifest")
        body = store.get_object_range(bucket, key, 0)
        try:
            text = body.read().decode("utf-8")
        finally:
            body.close()
        return load_source_manifest(io.StringIO(text, newline=""), skip_header)
    with open(path, newline="", encoding="utf-8") as f:
        return load_source_manifest(f, skip_header)


def collect_entries(
    store: ObjectStore, src: Optional[str], src_manifest: Optional[str], skip_header: bool = False
) -> List[Entry]:
    if src_manifest:
        return read_source_manifest(store, src_manifest, skip_header)
    if not src:
        raise ConfigurationError("either a source prefix or a source manifest is required")
    bucket, prefix = parse_s3(src, "source")
    return list_entries(store, bucket, prefix)


def fill_checksums(store: ObjectStore, entries: List[Entry], workers: int) -> int:
    """
    Look up source-manifest rows that carry no ETag so strict copies can still
    be checked. A row whose size disagrees with the object is drift.
    """
    missing = [e for e in entries if not e.checksum]

    def head(e: Entry) -> None:
        info = store.head_object(e.bucket, e.key)
        if info.size != e.size:
            raise DriftError(f"source manifest lists {e.size} bytes, object has {info.size}", "head_object", e.bucket, e.key)
        e.checksum = info.etag
        e.last_modified = info.last_modified

    with ThreadPoolExecutor(max_workers=workers) as ex:
        for f in as_completed([ex.submit(head, e) for e in missing]):
            f.result()
    return len(missing)


def solve(entries: List[Entry], cfg: Config, mtime: Optional[float] = None) -> Tuple[List[bytes], Layout]:
    """Headers and converged layout for `entries`; pure, no store calls."""
    names = set()
    for e in entries:
        if e.name in names:
            raise ConfigurationError(f"duplicate entry name {e.name!r}")
        names.add(e.name)
    headers = [entry_header(e, cfg.tar_format) for e in entries]
    manifest_header = synthesize(MANIFEST_NAME, 0, mtime, mode=MANIFEST_MODE, tar_format=cfg.tar_format)
    layout = compute_layout(
        entries,
        [len(h) for h in headers],
        manifest_header_size=len(manifest_header),
        header_row=cfg.manifest_header,
    )
    return headers, layout


def print_plan(layout: Layout) -> None:
    """Human-readable summary for --list."""
    print(f"{'OFFSET':>14} {'SIZE':>14}  {'NAME'}")
    print(f"{0:>14} {layout.manifest_size:>14}  {MANIFEST_NAME}")
    for r in layout.records:
        print(f"{r.offset:>14} {r.size:>14}  {r.name}")
    print(f"[info] archive_size={layout.archive_size} iterations={layout.iterations}")


def run_plan(
    cfg: Config,
    store: ObjectStore,
    src: Optional[str],
    dst: str,
    src_manifest: Optional[str] = None,
    skip_manifest_header: bool = False,
    list_only: bool = False,
    workers_override: Optional[int] = None,
    dry: bool = False,
) -> int:
    dst_bucket, dst_key = parse_s3(dst, "destination")
    if not dst_key:
        raise ConfigurationError(f"destination {dst!r} has no object key")

    entries = collect_entries(store, src, src_manifest, skip_manifest_header)
    if not entries:
        print(f"[warn] nothing to archive under {src or src_manifest}", file=sys.stderr)
        return 1

    workers = auto_workers(workers_override if workers_override is not None else cfg.workers)
    if src_manifest and cfg.strict:
        n = fill_checksums(store, entries, workers)
        if n and cfg.debug:
            print(f"[debug] looked up ETags for {n} source manifest row(s)")

    now = time.time()
    headers, layout = solve(entries, cfg, mtime=now)
    manifest_entry, first_part = build_manifest(layout, dst_bucket, cfg.tar_format, mtime=now)
    if cfg.debug:
        print(f"[debug] layout converged after {layout.iterations} iteration(s), manifest={manifest_entry.size} bytes")

    if list_only:
        print_plan(layout)
        return 0

    plan = plan_assembly(
        entries, headers, layout, first_part, dst_bucket, dst_key,
        limits=cfg.limits, split=cfg.split, strict=cfg.strict,
    )
    print(
        f"[info] entries={len(entries)} size={layout.archive_size} parts={len(plan.parts)} "
        f"staged={len(plan.stagings)} workers={workers} strict={cfg.strict}"
    )
    if dry:
        print(f"[dry-run] would write {s3_url(dst_bucket, dst_key)}")
        return 0

    started = time.time()
    result = RunResult(
        destination=s3_url(dst_bucket, dst_key),
        entries=len(entries),
        archive_size=layout.archive_size,
        manifest_size=layout.manifest_size,
        parts=len(plan.parts),
        staged=len(plan.stagings),
        status="ok",
        duration_sec=0.0,
    )
    try:
        assembler = Assembler(store, workers=workers, limits=cfg.limits, split=cfg.split, debug=cfg.debug)
        result.etag = assembler.assemble(plan, dst_bucket, dst_key)

        if cfg.external_toc:
            toc_bucket, toc_key = parse_s3(cfg.external_toc, "external TOC")
            store.put_object(toc_bucket, toc_key, manifest_entry.data)
            print(f"[info] wrote table of contents to {s3_url(toc_bucket, toc_key)}")

        if cfg.delete_source:
            by_bucket = {}
            for e in entries:
                by_bucket.setdefault(e.bucket, []).append(e.key)
            for bucket, keys in by_bucket.items():
                n = delete_keys(store, bucket, keys)
                print(f"[info] deleted {n} source object(s) from {s3_url(bucket)}")
    except Exception as e:
        result.status = "failed"
        result.error = str(e)
        raise
    finally:
        result.duration_sec = round(time.time() - started, 2)
        if cfg.run_summary_dir:
            ts = utc_datestr("%Y%m%d-%H%M%S")
            write_json(cfg.run_summary_dir / f"run-{ts}.json", result.__dict__)

    print(f"[ok] {result.destination} ({layout.archive_size} bytes, {len(entries)} entries)")
    return 0


def run_sweep(store: ObjectStore, url: str, older_than_hours: Optional[float] = None) -> int:
    """Abort incomplete multipart uploads left by failed runs."""
    bucket, prefix = parse_s3(url, "bucket")
    cutoff = None
    if older_than_hours is not None:
        cutoff = datetime.fromtimestamp(time.time() - older_than_hours * 3600, timezone.utc)
    aborted = sweep_multipart_uploads(store, bucket, prefix, cutoff)
    for key, upload_id in aborted:
        print(f"[info] aborted {upload_id} for {s3_url(bucket, key)}")
    print(f"[ok] aborted {len(aborted)} incomplete upload(s) in {s3_url(bucket)}")
    return 0
