"""Shared utility functions for wasmdeploy.

Provides async command execution, file-system helpers, the ordered
first-match helper used by the artifact resolver, and Rich-based console
output shared by every stage.
"""

from __future__ import annotations

import asyncio
import os
import shlex
import shutil
from collections.abc import Callable, Iterable, Mapping
from pathlib import Path
from typing import TypeVar

from rich.console import Console
from rich.markup import escape
from rich.rule import Rule
from rich.table import Table

console = Console()

T = TypeVar("T")

# ---------------------------------------------------------------------------
# Async command execution
# ---------------------------------------------------------------------------


async def run_command(
    cmd: list[str],
    cwd: str | Path | None = None,
    timeout: float | None = None,
    capture: bool = False,
    env: Mapping[str, str] | None = None,
) -> tuple[int, str, str]:
    """Run a command and wait for it to exit.

    Stdin is always closed so installers and build tools can never block on
    a prompt.

    Args:
        cmd: Program and arguments.
        cwd: Working directory for the child process.
        timeout: Seconds before the process is killed.  ``None`` waits
            indefinitely; cancellation is left to the caller's orchestrator.
        capture: Capture stdout/stderr instead of inheriting the parent's
            streams.
        env: Complete environment for the child.  ``None`` inherits
            ``os.environ``.

    Returns:
        A ``(returncode, stdout, stderr)`` tuple.  If *capture* is ``False``
        the stdout/stderr strings will be empty.  A program that cannot be
        started yields return code 127 with the reason in stderr.
    """
    stdout_pipe = asyncio.subprocess.PIPE if capture else None
    stderr_pipe = asyncio.subprocess.PIPE if capture else None

    try:
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=stdout_pipe,
            stderr=stderr_pipe,
            cwd=str(cwd) if cwd else None,
            env=dict(env) if env is not None else None,
        )
    except (FileNotFoundError, PermissionError) as exc:
        return (127, "", f"Cannot execute {cmd[0]}: {exc}")

    try:
        stdout_bytes, stderr_bytes = await asyncio.wait_for(
            process.communicate(), timeout=timeout
        )
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        return (-1, "", f"Command timed out after {timeout}s: {format_command(cmd)}")

    stdout_str = (stdout_bytes or b"").decode("utf-8", errors="replace").strip()
    stderr_str = (stderr_bytes or b"").decode("utf-8", errors="replace").strip()
    return (process.returncode or 0, stdout_str, stderr_str)


def format_command(cmd: Iterable[str]) -> str:
    """Render a command list as a copy-pasteable shell string."""
    return " ".join(shlex.quote(str(part)) for part in cmd)


# ---------------------------------------------------------------------------
# Ordered lookup
# ---------------------------------------------------------------------------


def first_match(candidates: Iterable[T], predicate: Callable[[T], bool]) -> T | None:
    """Return the first candidate satisfying *predicate*, or ``None``."""
    for candidate in candidates:
        if predicate(candidate):
            return candidate
    return None


# ---------------------------------------------------------------------------
# File-system helpers
# ---------------------------------------------------------------------------


def ensure_dir(path: str | Path) -> Path:
    """Create a directory (and parents) if it does not exist.

    Args:
        path: Directory path.

    Returns:
        The resolved ``Path`` object.
    """
    dir_path = Path(path)
    dir_path.mkdir(parents=True, exist_ok=True)
    return dir_path.resolve()


def list_files(root: str | Path) -> list[str]:
    """Return the sorted POSIX paths of all files below *root*, relative to it.

    Symlinks count as files.  A missing directory yields an empty list.
    """
    base = Path(root)
    if not base.is_dir():
        return []
    files: list[str] = []
    for dirpath, dirnames, filenames in os.walk(base):
        current = Path(dirpath)
        for name in filenames:
            files.append((current / name).relative_to(base).as_posix())
        for name in dirnames:
            if (current / name).is_symlink():
                files.append((current / name).relative_to(base).as_posix())
    return sorted(files)


def has_files(path: str | Path) -> bool:
    """``True`` if *path* is a directory containing at least one file."""
    base = Path(path)
    if not base.is_dir():
        return False
    for dirpath, dirnames, filenames in os.walk(base):
        if filenames:
            return True
        # os.walk lists a symlinked directory as a dir but never follows it.
        if any((Path(dirpath) / name).is_symlink() for name in dirnames):
            return True
    return False


def clear_directory(path: str | Path) -> list[str]:
    """Delete everything inside *path*, keeping the directory itself.

    Returns:
        The relative paths of the files that were removed.
    """
    base = Path(path)
    removed = list_files(base)
    if not base.is_dir():
        return []
    for child in base.iterdir():
        if child.is_dir() and not child.is_symlink():
            shutil.rmtree(child)
        else:
            child.unlink()
    return removed


# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------


def format_duration(seconds: float) -> str:
    """Format a duration in seconds to a human-readable string.

    Examples::

        format_duration(3.7)    -> "3.7s"
        format_duration(65.2)   -> "1m 5s"
        format_duration(3661.0) -> "1h 1m 1s"
    """
    if seconds < 0:
        return "0.0s"

    hours = int(seconds // 3600)
    minutes = int((seconds % 3600) // 60)
    secs = seconds % 60

    parts: list[str] = []
    if hours > 0:
        parts.append(f"{hours}h")
    if minutes > 0:
        parts.append(f"{minutes}m")

    if hours > 0 or minutes > 0:
        parts.append(f"{int(secs)}s")
    else:
        parts.append(f"{secs:.1f}s")

    return " ".join(parts)


# ---------------------------------------------------------------------------
# Rich output helpers
# ---------------------------------------------------------------------------


STAGE_NAMES: dict[int, str] = {
    1: "LOCATE",
    2: "ISOLATE",
    3: "PROVISION",
    4: "BUILD",
    5: "RESOLVE",
    6: "PUBLISH",
}

STAGE_COLORS: dict[int, str] = {
    1: "bright_cyan",
    2: "bright_green",
    3: "bright_yellow",
    4: "bright_magenta",
    5: "bright_red",
    6: "bright_blue",
}


def print_stage_header(stage: int, name: str) -> None:
    """Print a full-width rule announcing a pipeline stage."""
    color = STAGE_COLORS.get(stage, "white")
    console.print()
    console.print(
        Rule(
            f"[bold {color}] Stage {stage}: {name.upper()} [/bold {color}]",
            style=color,
        )
    )


def print_summary_table(data: Mapping[str, str], title: str = "Summary") -> None:
    """Print a two-column key/value summary table.

    Args:
        data: Mapping of label -> value.
        title: Table title.
    """
    table = Table(title=title, show_header=True, header_style="bold cyan")
    table.add_column("Item", style="dim", no_wrap=True)
    table.add_column("Value")

    for key, value in data.items():
        table.add_row(key, str(value))

    console.print(table)


def print_success(message: str) -> None:
    """Print a green success message."""
    console.print(f"[bold green]{escape(message)}[/bold green]")


def print_error(message: str) -> None:
    """Print a red error message."""
    console.print(f"[bold red]{escape(message)}[/bold red]")


def print_warning(message: str) -> None:
    """Print a yellow warning message."""
    console.print(f"[bold yellow]{escape(message)}[/bold yellow]")
