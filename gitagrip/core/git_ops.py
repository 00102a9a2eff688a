"""Read-only git views (log, diff) and external tool command lines."""

import os
import shutil
import subprocess

import logbook

from .git_service import CommandResult, GitService

log = logbook.Logger(__name__)

LAZYGIT_ENV = "GITAGRIP_LAZYGIT_BIN"

LOG_ARGS = ["log", "--oneline", "-20", "--decorate", "--color=always"]
DIFF_ARGS = ["diff", "--color=always"]


def capture_log(git: GitService, path: str) -> CommandResult:
    """Recent commits of a repository, colored for a terminal."""
    return git.run_readonly(path, LOG_ARGS)


def capture_diff(git: GitService, path: str) -> CommandResult:
    """Unstaged changes of a repository, colored for a terminal.

    ``git diff`` exits with 1 when differences exist; that is not a failure.
    """
    return git.run_readonly(path, DIFF_ARGS, ok_codes=(0, 1))


def lazygit_command(path: str) -> list[str] | None:
    """Command line opening lazygit on ``path``, or None if unavailable."""
    binary = os.environ.get(LAZYGIT_ENV) or shutil.which("lazygit")
    if not binary:
        return None
    return [binary, "-p", path]


def pager_command() -> list[str] | None:
    """``less -R`` when installed."""
    less = shutil.which("less")
    if less is None:
        return None
    return [less, "-R"]


def run_pager(text: str, command: list[str]) -> int:
    """Feed ``text`` to a pager in the foreground terminal."""
    try:
        completed = subprocess.run(command, input=text, text=True)
    except OSError as e:
        log.error("Failed to start pager {}: {}", command[0], e)
        return -1
    return completed.returncode


def run_interactive(command: list[str], cwd: str) -> int:
    """Run an interactive program in the foreground terminal."""
    try:
        completed = subprocess.run(command, cwd=cwd)
    except OSError as e:
        log.error("Failed to start {}: {}", command[0], e)
        return -1
    return completed.returncode
