"""
Exception hierarchy for branch synchronization.

Fatal errors abort a single reconciliation pass; per-child errors are
recorded against the child and never propagate past the per-child step.
"""

from pathlib import Path
from typing import Optional, Union


class MultiBranchError(Exception):
    """Base class for all multi-branch project errors."""

    pass


class FatalFetchError(MultiBranchError):
    """Raised when branch heads cannot be fetched; aborts the whole pass."""

    pass


class PerChildError(MultiBranchError):
    """Raised when an operation on a single child job fails."""

    def __init__(self, child_name: str, operation: str, message: str):
        self.child_name = child_name
        self.operation = operation
        super().__init__(f"{operation} failed for '{child_name}': {message}")


class ConfigCorruptionError(MultiBranchError):
    """Raised when a persisted configuration cannot be read or validated."""

    def __init__(self, path: Union[str, Path], reason: Optional[str] = None):
        self.path = Path(path)
        message = f"Unreadable configuration at {self.path}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class ConcurrencyError(MultiBranchError):
    """Raised when the project lock is busy; resolved by coalescing."""

    pass


class ProjectNotFoundError(MultiBranchError, LookupError):
    """Raised when a named project does not exist."""

    pass
