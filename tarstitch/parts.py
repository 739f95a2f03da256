"""
parts.py
Multipart sizing for server-side copies.

A multipart upload accepts at most `max_count` parts; every part except the
last must be at least `min_size` bytes and no part may exceed `max_size`.
solve_part_range() finds the range of part counts that satisfy both bounds
for an equal split of one object.
"""

from __future__ import annotations
from typing import List, Tuple
from .errors import ConfigurationError
from .types import PartLimits, PartPlan
from .util import clamp

DEFAULT_LIMITS = PartLimits()
SPLITS = ("mid", "min")


def solve_part_range(size: int, limits: PartLimits = DEFAULT_LIMITS) -> Tuple[int, int, int]:
    """
    Return (min_parts, max_parts, midpoint) for an object of `size` bytes.

    max_parts is the largest count <= max_count whose equal-split part size is
    still >= min_size; min_parts the smallest count whose part size is
    <= max_size. Objects smaller than min_size yield (1, 1, 0).
    """
    if size < 0:
        raise ConfigurationError(f"object size must be non-negative, got {size}")
    if limits.max_count < 1 or limits.min_size < 1 or limits.max_size < limits.min_size:
        raise ConfigurationError(f"invalid part limits: {limits}")

    n_max = limits.max_count
    while n_max > 1 and size // n_max < limits.min_size:
        n_max -= 1

    n_min = 1
    while size // n_min > limits.max_size:
        n_min += 1
        if n_min > limits.max_count:
            raise ConfigurationError(
                f"object of {size} bytes does not fit in {limits.max_count} parts "
                f"of at most {limits.max_size} bytes"
            )

    if n_min > n_max:
        raise ConfigurationError(
            f"no part count satisfies min_size={limits.min_size} and max_size={limits.max_size} "
            f"for {size} bytes"
        )
    return n_min, n_max, n_max // 2


def plan_parts(size: int, limits: PartLimits = DEFAULT_LIMITS, split: str = "mid") -> PartPlan:
    if split not in SPLITS:
        raise ConfigurationError(f"unknown split strategy {split!r} (expected one of {SPLITS})")
    n_min, n_max, mid = solve_part_range(size, limits)
    chosen = clamp(n_min, mid, n_max) if split == "mid" else n_min
    # split_range hands the remainder out one byte at a time
    while chosen < n_max and -(-size // chosen) > limits.max_size:
        chosen += 1
    return PartPlan(n_min, n_max, chosen)


def split_range(start: int, length: int, count: int) -> List[Tuple[int, int]]:
    """Cut [start, start+length) into `count` contiguous (start, length) pieces differing by at most one byte."""
    if count < 1:
        raise ConfigurationError(f"part count must be positive, got {count}")
    if length < count:
        raise ConfigurationError(f"cannot split {length} bytes into {count} parts")
    base, extra = divmod(length, count)
    out = []
    pos = start
    for i in range(count):
        n = base + 1 if i < extra else base
        out.append((pos, n))
        pos += n
    return out
