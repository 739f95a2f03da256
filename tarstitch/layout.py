"""
layout.py
Absolute offsets for every archive member.

The manifest is the first member and lists each entry's offset, so its own
length shifts every offset it records; longer offsets need more digits,
which can lengthen the manifest again. compute_layout() resolves this with a
bounded fixed-point iteration:

    estimate_0     = span(manifest with entries placed at offset 0)
    estimate_{k+1} = span(manifest with entries placed after estimate_k)

Placing entries later never shortens any offset's decimal form, so the
estimates are non-decreasing; they are bounded by the widest possible
manifest for the entry count, so the loop stops once two agree.
"""

from __future__ import annotations
from typing import List, Optional, Sequence
from .errors import ConfigurationError, ConvergenceError
from .manifest import manifest_padding, serialize_records
from .types import Entry, Layout, LayoutRecord
from .util import BLOCK_SIZE, END_OF_ARCHIVE, padding

MAX_ITERATIONS = 64


def entry_span(header_size: int, size: int) -> int:
    """Header + data + pad. A zero-byte entry is just its header."""
    return header_size + size + padding(size)


def manifest_span(body_len: int, header_size: int = BLOCK_SIZE) -> int:
    return header_size + body_len + manifest_padding(body_len)


def place_entries(
    start: int, entries: Sequence[Entry], header_sizes: Sequence[int]
) -> List[LayoutRecord]:
    loc = start + padding(start)
    records = []
    for e, hsize in zip(entries, header_sizes):
        records.append(LayoutRecord(e.name, loc, e.size, e.checksum))
        loc += entry_span(hsize, e.size)
    return records


def compute_layout(
    entries: Sequence[Entry],
    header_sizes: Sequence[int],
    manifest_header_size: int = BLOCK_SIZE,
    header_row: bool = False,
    seed: Optional[int] = None,
    max_iterations: int = MAX_ITERATIONS,
) -> Layout:
    """
    Place `entries` after a manifest describing them.

    `seed` replaces the trial-serialization estimate; feeding back a previous
    layout's manifest_size converges in one iteration to the same offsets.
    """
    if len(header_sizes) != len(entries):
        raise ConfigurationError(
            f"{len(entries)} entries but {len(header_sizes)} header sizes"
        )
    for e, hsize in zip(entries, header_sizes):
        if e.size < 0:
            raise ConfigurationError(f"entry {e.name!r} has negative size {e.size}")
        if hsize <= 0 or hsize % BLOCK_SIZE:
            raise ConfigurationError(f"entry {e.name!r} header size {hsize} is not a whole number of blocks")

    if seed is None:
        trial = serialize_records(place_entries(0, entries, header_sizes), header_row)
        estimate = manifest_span(len(trial), manifest_header_size)
    else:
        estimate = seed

    for i in range(1, max_iterations + 1):
        records = place_entries(estimate, entries, header_sizes)
        body = serialize_records(records, header_row)
        span = manifest_span(len(body), manifest_header_size)
        if span == estimate:
            data_end = estimate
            if records:
                last = records[-1]
                data_end = last.offset + entry_span(header_sizes[-1], last.size)
            return Layout(
                records=records,
                manifest_body=body,
                manifest_size=span,
                data_end=data_end,
                archive_size=data_end + END_OF_ARCHIVE,
                iterations=i,
            )
        if span < estimate:
            raise ConvergenceError(
                f"manifest shrank from {estimate} to {span} bytes; seed is larger than the fixed point"
            )
        estimate = span

    raise ConvergenceError(
        f"manifest size did not stabilize after {max_iterations} iterations (last estimate {estimate})"
    )
