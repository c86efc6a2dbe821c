"""
Git Branch Source - lists branch heads of a remote with git ls-remote.

Implements BranchSource for git remotes. Listing is read-only; no clone
or checkout is made.
"""

import logging
import subprocess
from pathlib import Path
from typing import Optional, Set

from .config import SourceConfig
from .git_runner import run_git_command
from .interfaces import BranchSource
from .models import BranchHead, SourceBinding


logger = logging.getLogger(__name__)

HEADS_PREFIX = "refs/heads/"


class GitBranchSource(BranchSource):
    """
    Branch source for git remotes.

    Every ref under refs/heads/ on the remote is a branch head.
    """

    def __init__(
        self,
        source: SourceConfig,
        git_binary: str = "git",
        timeout: Optional[float] = 60.0,
    ):
        """
        Initialize git branch source.

        Args:
            source: Source configuration with the remote location
            git_binary: git executable to run
            timeout: Timeout in seconds for one ls-remote call
        """
        self.source = source
        self.git_binary = git_binary
        self.timeout = timeout

    def _local_remote(self) -> Optional[Path]:
        path = Path(self.source.remote).expanduser()
        return path if path.exists() else None

    def fetch_heads(self) -> Set[BranchHead]:
        """
        List branch heads of the remote.

        Returns:
            Set of branch heads

        Raises:
            RuntimeError: If git fails or times out
        """
        cmd = [self.git_binary, "ls-remote", "--heads", self.source.remote]
        try:
            result = run_git_command(
                cmd,
                timeout=self.timeout,
                safe_directory=self._local_remote(),
            )
        except subprocess.TimeoutExpired:
            raise RuntimeError(
                f"git ls-remote timed out after {self.timeout}s for {self.source.remote}"
            )
        except subprocess.CalledProcessError as e:
            raise RuntimeError(
                f"git ls-remote failed for {self.source.remote}: {(e.stderr or '').strip()}"
            )
        except OSError as e:
            raise RuntimeError(f"Unable to run {self.git_binary}: {e}")

        heads = parse_ls_remote(result.stdout)
        logger.debug(f"Found {len(heads)} branch(es) on {self.source.remote}")
        return heads

    def build_binding(self, head: BranchHead) -> SourceBinding:
        return SourceBinding(
            kind="git",
            remote=self.source.remote,
            branch=head.name,
            revision=head.revision,
            source_id=self.source.source_id,
        )


def parse_ls_remote(output: str) -> Set[BranchHead]:
    """Parse `git ls-remote --heads` output into branch heads."""
    heads: Set[BranchHead] = set()
    for line in output.splitlines():
        line = line.strip()
        if not line:
            continue
        parts = line.split("\t", 1)
        if len(parts) != 2:
            logger.debug(f"Ignoring unexpected ls-remote line: {line}")
            continue
        revision, ref = parts
        if not ref.startswith(HEADS_PREFIX):
            continue
        heads.add(BranchHead(name=ref[len(HEADS_PREFIX):], revision=revision))
    return heads
