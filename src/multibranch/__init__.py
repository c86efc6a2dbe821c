"""
Multibranch - keeps one generated job per source-control branch.

A multi-branch project owns a template configuration and reconciles a set
of child jobs against the branches its source reports: new branches get a
job, vanished branches lose theirs, and every job follows the template.
"""

__version__ = "1.0.0"

from .errors import (
    ConcurrencyError,
    ConfigCorruptionError,
    FatalFetchError,
    MultiBranchError,
    PerChildError,
    ProjectNotFoundError,
)
from .naming import decode, encode
from .project import MultiBranchProject
from .catalog import ProjectCatalog
from .reconciler import ReconciliationEngine
from .report import SyncReport
from .scheduler import SyncScheduler, SyncTrigger

__all__ = [
    "ConcurrencyError",
    "ConfigCorruptionError",
    "FatalFetchError",
    "MultiBranchError",
    "MultiBranchProject",
    "PerChildError",
    "ProjectCatalog",
    "ProjectNotFoundError",
    "ReconciliationEngine",
    "SyncReport",
    "SyncScheduler",
    "SyncTrigger",
    "decode",
    "encode",
]
