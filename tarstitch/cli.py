#!/usr/bin/env python3
"""
cli.py
Command-line interface for tarstitch.
Parses arguments, loads config, builds the S3 client and invokes the orchestrator.
"""
from __future__ import annotations
import argparse, sys
from .config import find_config, load_config, validate_config
from .errors import ConfigurationError, TarStitchError
from .orchestrator import run_plan, run_sweep
from .store import Boto3Store, make_client


def validate_arguments(args) -> None:
    """Validate CLI arguments and provide helpful error messages."""
    if args.workers is not None and args.workers < 1:
        print(f"❌ Error: --workers must be a positive integer, got {args.workers}")
        print(f"💡 Hint: Try --workers 16 for example")
        sys.exit(1)

    if args.abort_incomplete:
        if not args.abort_incomplete.startswith("s3://"):
            print(f"❌ Error: --abort-incomplete expects s3://bucket[/prefix], got {args.abort_incomplete}")
            sys.exit(1)
        return

    if not args.dst:
        print(f"❌ Error: --dst is required")
        print(f"💡 Hint: Try --dst s3://my-bucket/archives/backup.tar")
        sys.exit(1)

    if bool(args.src) == bool(args.src_manifest):
        print(f"❌ Error: give exactly one of --src or --src-manifest")
        print(f"💡 Hint: Try --src s3://my-bucket/logs/2024/")
        sys.exit(1)

    for flag, value in (("--src", args.src), ("--dst", args.dst), ("--external-toc", args.external_toc)):
        if value and not value.startswith("s3://"):
            print(f"❌ Error: {flag} must be an s3:// URL, got {value}")
            sys.exit(1)


def apply_overrides(cfg, args):
    if args.region:
        cfg.region = args.region
    if args.endpoint_url:
        cfg.endpoint_url = args.endpoint_url
    if args.tar_format:
        cfg.tar_format = args.tar_format
    if args.manifest_header:
        cfg.manifest_header = True
    if args.external_toc:
        cfg.external_toc = args.external_toc
    if args.delete_source:
        cfg.delete_source = True
    if args.no_strict:
        cfg.strict = False
    return validate_config(cfg)


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        description="tarstitch: assemble a tar archive from objects already in S3, server-side",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="\nThe first archive member is manifest.csv: name,offset,size,etag for every entry.",
    )
    ap.add_argument("--config", default=None, help="path to tarstitch.toml (default: ./tarstitch.toml then /etc/tarstitch.toml)")
    ap.add_argument("--src", help="source prefix, e.g. s3://bucket/prefix/")
    ap.add_argument("--src-manifest", help="CSV of bucket,key,size[,etag] rows (local path or s3:// URL)")
    ap.add_argument("--skip-manifest-header", action="store_true", help="source manifest starts with a header row")
    ap.add_argument("--dst", help="destination archive, e.g. s3://bucket/archive.tar")
    ap.add_argument("--workers", type=int, default=None, help="override concurrency (must be positive)")
    ap.add_argument("--list", action="store_true", help="print the computed layout and exit")
    ap.add_argument("--dry-run", action="store_true", help="plan the assembly without writing anything")
    ap.add_argument("--manifest-header", action="store_true", help="emit a header row in manifest.csv")
    ap.add_argument("--external-toc", help="also write manifest.csv to this s3:// URL")
    ap.add_argument("--delete-source", action="store_true", help="delete source objects after a successful build")
    ap.add_argument("--no-strict", action="store_true", help="do not verify source ETags at copy time")
    ap.add_argument("--tar-format", choices=["gnu", "pax"], default=None)
    ap.add_argument("--region", default=None)
    ap.add_argument("--endpoint-url", default=None, help="S3-compatible endpoint")
    ap.add_argument("--abort-incomplete", metavar="S3_URL", help="abort incomplete multipart uploads in a bucket and exit")
    ap.add_argument("--older-than-hours", type=float, default=None, help="with --abort-incomplete: only uploads older than this")
    return ap


def main(argv=None) -> int:
    try:
        args = build_parser().parse_args(argv)

        # Validate arguments early
        validate_arguments(args)

        cfg_path = args.config
        try:
            cfg_path = find_config(args.config)
            cfg = apply_overrides(load_config(cfg_path), args)
        except FileNotFoundError as e:
            print(f"❌ Error: {e}")
            print(f"💡 Hint: Check the path, or drop --config to run with defaults")
            return 1
        except ConfigurationError as e:
            print(f"❌ Error: Invalid configuration: {e}")
            return 1
        except Exception as e:
            print(f"❌ Error: Invalid configuration file {cfg_path}: {e}")
            print(f"💡 Hint: Check TOML syntax with 'python3 -c \"import tomllib; tomllib.load(open(\"{cfg_path}\", \"rb\"))\"'")
            return 1

        workers = args.workers if args.workers is not None else cfg.workers
        store = Boto3Store(make_client(cfg, workers))

        if args.abort_incomplete:
            return run_sweep(store, args.abort_incomplete, args.older_than_hours)

        return run_plan(
            cfg,
            store,
            args.src,
            args.dst,
            src_manifest=args.src_manifest,
            skip_manifest_header=args.skip_manifest_header,
            list_only=args.list,
            workers_override=args.workers,
            dry=args.dry_run,
        )

    except KeyboardInterrupt:
        print(f"\n\n⚡ Interrupted by user. Run --abort-incomplete to clean up partial uploads.")
        return 130
    except TarStitchError as e:
        print(f"❌ Error: {e}")
        print(f"💡 Hint: Run with --list or --dry-run first to check the layout")
        return 1
    except Exception as e:
        print(f"❌ Unexpected error: {e}")
        print(f"💡 Hint: Run with --dry-run or --list first to check configuration")
        return 1


if __name__ == "__main__":
    sys.exit(main())
