"""
Git command runner used by the git branch source.

Runs git non-interactively (credential prompts would otherwise hang a
sync pass) and handles the "dubious ownership" error that occurs when a
local remote is owned by a different user. Provides one retry for
transient failures.
"""

import logging
import os
import subprocess
import time
from pathlib import Path
from typing import Dict, List, Optional


logger = logging.getLogger(__name__)

MAX_RETRIES = 1
RETRY_DELAY_SECONDS = 1


def get_git_environment(safe_directory: Optional[Path] = None) -> Dict[str, str]:
    """
    Get environment variables for running git non-interactively.

    Args:
        safe_directory: Local repository to mark as safe.directory, if any

    Returns:
        Dictionary of environment variables for git commands
    """
    env = os.environ.copy()
    env["GIT_TERMINAL_PROMPT"] = "0"

    if safe_directory is not None:
        # Shift any existing GIT_CONFIG_* entries to make room at index 0
        existing = int(os.environ.get("GIT_CONFIG_COUNT", "0") or 0)
        for idx in range(existing - 1, -1, -1):
            key = os.environ.get(f"GIT_CONFIG_KEY_{idx}")
            value = os.environ.get(f"GIT_CONFIG_VALUE_{idx}")
            if key is not None:
                env[f"GIT_CONFIG_KEY_{idx + 1}"] = key
                env[f"GIT_CONFIG_VALUE_{idx + 1}"] = value or ""
        env["GIT_CONFIG_KEY_0"] = "safe.directory"
        env["GIT_CONFIG_VALUE_0"] = str(safe_directory.resolve())
        env["GIT_CONFIG_COUNT"] = str(existing + 1)

    return env


def run_git_command(
    cmd: List[str],
    cwd: Optional[Path] = None,
    check: bool = True,
    timeout: Optional[float] = None,
    safe_directory: Optional[Path] = None,
) -> subprocess.CompletedProcess:
    """
    Run a git command with one retry for transient failures.

    Args:
        cmd: Git command as a list (e.g., ["git", "ls-remote", url])
        cwd: Working directory for the command
        check: Whether to raise CalledProcessError on non-zero exit
        timeout: Optional timeout in seconds
        safe_directory: Local repository to trust despite ownership

    Returns:
        CompletedProcess instance with the command result

    Raises:
        subprocess.CalledProcessError: If check=True and command fails after retries
        subprocess.TimeoutExpired: If timeout is exceeded (not retried)
    """
    if not cmd:
        raise ValueError("Empty git command")

    env = get_git_environment(safe_directory)
    attempt = 0

    while True:
        try:
            return subprocess.run(
                cmd,
                cwd=str(cwd) if cwd else None,
                check=check,
                capture_output=True,
                text=True,
                timeout=timeout,
                env=env,
            )
        except subprocess.CalledProcessError as e:
            logger.warning(
                f"Git command failed (attempt {attempt + 1}/{MAX_RETRIES + 1}): "
                f"{' '.join(cmd)}: {(e.stderr or '').strip()}"
            )
            if attempt >= MAX_RETRIES:
                raise
            time.sleep(RETRY_DELAY_SECONDS)
            attempt += 1
        except subprocess.TimeoutExpired:
            logger.error(f"Git command timed out after {timeout}s: {' '.join(cmd)}")
            raise
