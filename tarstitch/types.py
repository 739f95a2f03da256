"""
types.py
Dataclasses used across modules: Config, PartLimits, Entry, ObjectInfo,
LayoutRecord, Layout, PartPlan and the assembly plan pieces.

Layout values are plain integers so they serialize straight into run summaries.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, List, Union

KB = 1024


@dataclass(frozen=True)
class PartLimits:
    min_size: int = 5 * KB * KB
    max_size: int = 5 * KB * KB * KB
    max_count: int = 10000


@dataclass
class Config:
    # store
    region: str = ""
    endpoint_url: str = ""
    connect_timeout: int = 10
    read_timeout: int = 60
    # archive
    tar_format: str = "gnu"
    manifest_header: bool = False
    external_toc: str = ""
    delete_source: bool = False
    strict: bool = True
    # parts
    part_min_size_mb: int = 5
    part_max_size_mb: int = 5120
    part_max_count: int = 10000
    split: str = "mid"
    # runtime
    workers: int = 0
    log_level: str = "INFO"
    # output
    run_summary_dir: Optional[Path] = None

    @property
    def limits(self) -> PartLimits:
        return PartLimits(
            min_size=self.part_min_size_mb * KB * KB,
            max_size=self.part_max_size_mb * KB * KB,
            max_count=self.part_max_count,
        )

    @property
    def debug(self) -> bool:
        return self.log_level.upper() == "DEBUG"


@dataclass
class ObjectInfo:
    bucket: str
    key: str
    size: int
    etag: str
    last_modified: float = 0.0


@dataclass
class Entry:
    name: str
    size: int
    checksum: str
    bucket: str = ""
    key: str = ""
    index: int = 0
    last_modified: float = 0.0
    data: Optional[bytes] = None

    @classmethod
    def from_object(cls, obj: ObjectInfo, index: int) -> "Entry":
        return cls(
            name=obj.key,
            size=obj.size,
            checksum=obj.etag,
            bucket=obj.bucket,
            key=obj.key,
            index=index,
            last_modified=obj.last_modified,
        )


@dataclass(frozen=True)
class LayoutRecord:
    name: str
    offset: int
    size: int
    checksum: str


@dataclass
class Layout:
    records: List[LayoutRecord]
    manifest_body: bytes
    manifest_size: int
    data_end: int
    archive_size: int
    iterations: int


@dataclass(frozen=True)
class PartPlan:
    min_parts: int
    max_parts: int
    chosen: int


@dataclass(frozen=True)
class SourceRange:
    """`length` bytes of an object starting at `start`."""
    bucket: str
    key: str
    start: int
    length: int
    etag: Optional[str] = None

    @property
    def end(self) -> int:
        """Inclusive last byte, as used by HTTP Range headers."""
        return self.start + self.length - 1


Piece = Union[bytes, SourceRange]


@dataclass
class BufferPart:
    number: int
    pieces: List[Piece]

    @property
    def size(self) -> int:
        return sum(len(p) if isinstance(p, bytes) else p.length for p in self.pieces)


@dataclass
class CopyPart:
    number: int
    source: SourceRange

    @property
    def size(self) -> int:
        return self.source.length


Part = Union[BufferPart, CopyPart]


@dataclass
class Staging:
    """Temporary object holding filler + header prefix + an entry's data."""
    key: str
    filler: int
    prefix: List[Piece]
    source: SourceRange

    @property
    def prefix_size(self) -> int:
        return sum(len(p) if isinstance(p, bytes) else p.length for p in self.prefix)


@dataclass
class AssemblyPlan:
    parts: List[Part]
    stagings: List[Staging] = field(default_factory=list)
    size: int = 0


@dataclass
class RunResult:
    destination: str
    entries: int
    archive_size: int
    manifest_size: int
    parts: int
    staged: int
    status: str
    duration_sec: float
    etag: Optional[str] = None
    error: Optional[str] = None
