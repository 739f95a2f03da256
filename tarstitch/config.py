"""
config.py
Load and validate configuration from TOML (Python 3.11+ tomllib).
Search order:
  1) explicit --config path
  2) ./tarstitch.toml
  3) /etc/tarstitch.toml
If none exists the built-in defaults apply.
"""

from __future__ import annotations
import tomllib
from pathlib import Path
from typing import Any, Dict, Optional
from .errors import ConfigurationError
from .headers import FORMATS
from .parts import SPLITS
from .types import Config

DEFAULT_CONFIG_PATHS = (Path("tarstitch.toml"), Path("/etc/tarstitch.toml"))


def _gv(d: Dict[str, Any], path: list[str], default=None):
    cur = d
    for k in path:
        if not isinstance(cur, dict) or k not in cur:
            return default
        cur = cur[k]
    return cur


def _load_toml(path: Path) -> Dict[str, Any]:
    with open(path, "rb") as f:
        return tomllib.load(f)


def find_config(path_arg: str | None) -> Optional[Path]:
    """Pick the best config path based on CLI arg and availability."""
    if path_arg:
        # User explicitly specified a config - it must exist
        p = Path(path_arg)
        if not p.exists():
            raise FileNotFoundError(f"Specified config file does not exist: {path_arg}")
        return p
    for p in DEFAULT_CONFIG_PATHS:
        if p.exists():
            return p
    return None


def validate_config(cfg: Config) -> Config:
    if cfg.tar_format not in FORMATS:
        raise ConfigurationError(f"archive.tar_format must be one of {sorted(FORMATS)}, got {cfg.tar_format!r}")
    if cfg.split not in SPLITS:
        raise ConfigurationError(f"parts.split must be one of {list(SPLITS)}, got {cfg.split!r}")
    if cfg.part_min_size_mb < 1 or cfg.part_max_size_mb < cfg.part_min_size_mb:
        raise ConfigurationError(
            f"parts.min_size_mb={cfg.part_min_size_mb} and parts.max_size_mb={cfg.part_max_size_mb} are inconsistent"
        )
    if cfg.part_max_count < 2:
        raise ConfigurationError(f"parts.max_count must be at least 2, got {cfg.part_max_count}")
    if cfg.workers < 0:
        raise ConfigurationError(f"runtime.workers must not be negative, got {cfg.workers}")
    return cfg


def load_config(path: Optional[Path]) -> Config:
    cfg = _load_toml(path) if path is not None else {}

    def gv(keys, default=None):
        return _gv(cfg, keys, default)

    summary_dir = gv(["output", "run_summary_dir"], "")
    return validate_config(Config(
        region=gv(["store", "region"], ""),
        endpoint_url=gv(["store", "endpoint_url"], ""),
        connect_timeout=int(gv(["store", "connect_timeout"], 10)),
        read_timeout=int(gv(["store", "read_timeout"], 60)),
        tar_format=gv(["archive", "tar_format"], "gnu"),
        manifest_header=bool(gv(["archive", "manifest_header"], False)),
        external_toc=gv(["archive", "external_toc"], ""),
        delete_source=bool(gv(["archive", "delete_source"], False)),
        strict=bool(gv(["archive", "strict"], True)),
        part_min_size_mb=int(gv(["parts", "min_size_mb"], 5)),
        part_max_size_mb=int(gv(["parts", "max_size_mb"], 5120)),
        part_max_count=int(gv(["parts", "max_count"], 10000)),
        split=gv(["parts", "split"], "mid"),
        workers=int(gv(["runtime", "workers"], 0)),
        log_level=gv(["runtime", "log_level"], "INFO"),
        run_summary_dir=Path(summary_dir) if summary_dir else None,
    ))
