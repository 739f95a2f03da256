"""
errors.py
Exception hierarchy. Pure computations raise ConfigurationError or
ConvergenceError before any store call; store adapters raise StoreError
subclasses carrying the operation and object they were working on.
"""

from __future__ import annotations
from typing import List, Optional, Tuple


class TarStitchError(Exception):
    """Base class for every error raised by tarstitch."""


class ConfigurationError(TarStitchError, ValueError):
    """Invalid sizes, limits or options."""


class ConvergenceError(TarStitchError, RuntimeError):
    """The manifest fixed point did not stabilize, or a plan disagrees with its layout."""


class AssemblyError(TarStitchError, RuntimeError):
    """Part acknowledgements do not match the expected part numbers."""


class StoreError(TarStitchError):
    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        bucket: Optional[str] = None,
        key: Optional[str] = None,
    ):
        super().__init__(message)
        self.operation = operation
        self.bucket = bucket
        self.key = key

    def __str__(self) -> str:
        msg = super().__str__()
        if self.operation:
            where = f"s3://{self.bucket}/{self.key}" if self.key else f"s3://{self.bucket}"
            return f"{self.operation} {where}: {msg}"
        return msg


class TransientStoreError(StoreError):
    """Network or API failure; retry policy belongs to the caller."""


class DriftError(StoreError):
    """A source object changed between layout and copy."""


class PartialBatchDeleteError(StoreError):
    def __init__(self, failed: List[Tuple[str, str]], bucket: Optional[str] = None):
        keys = ", ".join(k for k, _ in failed[:5])
        more = f" (+{len(failed) - 5} more)" if len(failed) > 5 else ""
        super().__init__(
            f"{len(failed)} object(s) not deleted: {keys}{more}",
            operation="delete_objects",
            bucket=bucket,
        )
        self.failed = failed

    @property
    def keys(self) -> List[str]:
        return [k for k, _ in self.failed]
