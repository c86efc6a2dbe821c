"""
Retention policies for orphaned children.

A child becomes an orphan when its branch is no longer reported by the
source. The policy is asked once per orphan per pass whether to delete it
now or keep it for a while.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from enum import Enum
from typing import Optional

from .config import RetentionConfig
from .models import Child


logger = logging.getLogger(__name__)


class RetentionDecision(str, Enum):
    DELETE = "delete"
    RETAIN = "retain"


class RetentionPolicy(ABC):
    """Decides the fate of a child whose branch disappeared."""

    @abstractmethod
    def decide(self, child: Child, now: datetime) -> RetentionDecision:
        """
        Decide whether an orphan is deleted in this pass.

        Called after the child's orphan markers were updated for this pass,
        so ``child.missed_passes`` counts the current pass.
        """
        pass


class ImmediateDeletion(RetentionPolicy):
    """Delete orphans in the pass that notices them."""

    def decide(self, child: Child, now: datetime) -> RetentionDecision:
        return RetentionDecision.DELETE


class GracePeriodRetention(RetentionPolicy):
    """
    Keep orphans for a number of passes and/or an amount of time.

    The orphan is deleted as soon as any configured limit is exceeded.
    With no limit configured, orphans are kept until deleted explicitly.
    """

    def __init__(
        self,
        max_missed_passes: Optional[int] = None,
        max_age_seconds: Optional[float] = None,
    ):
        self.max_missed_passes = max_missed_passes
        self.max_age_seconds = max_age_seconds

    def decide(self, child: Child, now: datetime) -> RetentionDecision:
        if (
            self.max_missed_passes is not None
            and child.missed_passes > self.max_missed_passes
        ):
            return RetentionDecision.DELETE

        if self.max_age_seconds is not None and child.orphaned_since is not None:
            age = (now - child.orphaned_since).total_seconds()
            if age > self.max_age_seconds:
                return RetentionDecision.DELETE

        return RetentionDecision.RETAIN


def build_retention_policy(config: RetentionConfig) -> RetentionPolicy:
    """Create the policy described by the retention settings."""
    if config.policy == "grace":
        return GracePeriodRetention(
            max_missed_passes=config.max_missed_passes,
            max_age_seconds=config.max_age_seconds,
        )
    return ImmediateDeletion()
