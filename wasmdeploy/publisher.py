"""Artifact publishing with mirror semantics.

After ``Publisher.publish(src, dst)`` the destination holds exactly the files
of the source; anything else that was there is gone.  The copy is performed by
the first working tier:

1. ``RsyncMirror``   - ``rsync -av --delete``
2. ``ClearAndCopy``  - empty the destination, then ``cp -a``
3. ``ArchiveStream`` - stream the source through a tar archive with
   :mod:`tarfile`; needs nothing but file I/O

Unavailable tiers are skipped and failing tiers are recorded before the next
one is tried.  The result is verified against the source file set.
"""

from __future__ import annotations

import shutil
import tarfile
import tempfile
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Sequence

from rich.table import Table

from wasmdeploy.errors import ConfigurationError, NoCopyMechanism, PublishVerificationFailed
from wasmdeploy.utils import clear_directory, console, ensure_dir, format_command, list_files, run_command


class CopyFailed(Exception):
    """A single copy tier failed; the publisher moves on to the next one."""


@dataclass
class PublishReport:
    """What a publish did.  Diagnostics only."""

    mechanism: str
    source: Path | None
    destination: Path
    files: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    attempts: list[tuple[str, str]] = field(default_factory=list)
    duration_seconds: float = 0.0

    def summary(self) -> str:
        lines = [
            f"Mechanism: {self.mechanism}",
            f"Destination: {self.destination}",
            f"Files: {len(self.files)}",
        ]
        if self.removed:
            lines.append(f"Removed: {len(self.removed)}")
        for name, reason in self.attempts:
            lines.append(f"  skipped {name}: {reason}")
        return "\n".join(lines)


class CopyMechanism:
    """One way of mirroring a directory."""

    name = "copy"

    def __init__(self, env: Mapping[str, str] | None = None) -> None:
        self.env = dict(env) if env is not None else None

    def available(self) -> bool:
        return True

    async def attempt(self, src: Path, dst: Path) -> None:
        """Make *dst* mirror *src*.

        Raises:
            CopyFailed: The mechanism ran but did not succeed.
        """
        raise NotImplementedError

    def _which(self, program: str) -> str | None:
        path = self.env.get("PATH") if self.env else None
        return shutil.which(program, path=path)


class RsyncMirror(CopyMechanism):
    name = "rsync"

    def available(self) -> bool:
        return self._which("rsync") is not None

    async def attempt(self, src: Path, dst: Path) -> None:
        ensure_dir(dst)
        cmd = [self._which("rsync") or "rsync", "-av", "--delete", f"{src}/", f"{dst}/"]
        returncode, _, _ = await run_command(cmd, env=self.env)
        if returncode != 0:
            raise CopyFailed(f"{format_command(cmd)} exited with code {returncode}")


class ClearAndCopy(CopyMechanism):
    name = "cp -a"

    def available(self) -> bool:
        return self._which("cp") is not None

    async def attempt(self, src: Path, dst: Path) -> None:
        ensure_dir(dst)
        clear_directory(dst)
        cmd = [self._which("cp") or "cp", "-a", f"{src}/.", f"{dst}/"]
        returncode, _, stderr = await run_command(cmd, capture=True, env=self.env)
        if returncode != 0:
            raise CopyFailed(
                f"{format_command(cmd)} exited with code {returncode}: {stderr or 'no output'}"
            )


class ArchiveStream(CopyMechanism):
    """Streams the tree through a tar archive held in a spooled buffer."""

    name = "tar stream"

    def __init__(self, env: Mapping[str, str] | None = None, spool_limit: int = 64 * 1024 * 1024) -> None:
        super().__init__(env)
        self.spool_limit = spool_limit

    async def attempt(self, src: Path, dst: Path) -> None:
        try:
            with tempfile.SpooledTemporaryFile(max_size=self.spool_limit) as buffer:
                with tarfile.open(fileobj=buffer, mode="w|") as archive:
                    for child in sorted(src.iterdir(), key=lambda p: p.name):
                        archive.add(child, arcname=child.name)
                buffer.seek(0)
                ensure_dir(dst)
                clear_directory(dst)
                with tarfile.open(fileobj=buffer, mode="r|") as archive:
                    archive.extractall(dst, filter="fully_trusted")
        except (OSError, tarfile.TarError) as exc:
            raise CopyFailed(f"tar stream failed: {exc}") from exc


def default_mechanisms(env: Mapping[str, str] | None = None) -> list[CopyMechanism]:
    return [RsyncMirror(env), ClearAndCopy(env), ArchiveStream(env)]


class Publisher:
    """Mirrors build artifacts into the deployment directory."""

    def __init__(
        self,
        mechanisms: Sequence[CopyMechanism] | None = None,
        env: Mapping[str, str] | None = None,
    ) -> None:
        self.mechanisms = list(mechanisms) if mechanisms is not None else default_mechanisms(env)

    async def publish(self, src: Path, dst: Path) -> PublishReport:
        """Mirror *src* into *dst* and verify the result.

        Raises:
            ConfigurationError: One directory lies inside the other.
            NoCopyMechanism: Every tier was unavailable or failed.
            PublishVerificationFailed: *dst* does not match *src* afterwards.
        """
        src = src.resolve()
        dst = dst.resolve()
        start = time.monotonic()

        if src == dst:
            console.print("  Source and destination are the same directory; nothing to copy.")
            return PublishReport(
                mechanism="in-place",
                source=src,
                destination=dst,
                files=list_files(src),
                duration_seconds=time.monotonic() - start,
            )
        if dst.is_relative_to(src):
            raise ConfigurationError(
                f"Deployment directory {dst} is inside the artifact directory {src}",
                stage="publish",
            )
        if src.is_relative_to(dst):
            raise ConfigurationError(
                f"Artifact directory {src} is inside the deployment directory {dst}",
                stage="publish",
            )

        before = set(list_files(dst))
        expected = list_files(src)
        attempts: list[tuple[str, str]] = []

        for mechanism in self.mechanisms:
            if not mechanism.available():
                attempts.append((mechanism.name, "not available"))
                continue
            console.print(f"  Copying with [bold]{mechanism.name}[/bold]...")
            try:
                await mechanism.attempt(src, dst)
            except CopyFailed as exc:
                attempts.append((mechanism.name, str(exc)))
                console.print(f"  [yellow]{mechanism.name} failed:[/yellow] {exc}")
                continue

            verify_mirror(expected, dst)
            return PublishReport(
                mechanism=mechanism.name,
                source=src,
                destination=dst,
                files=expected,
                removed=sorted(before - set(expected)),
                attempts=attempts,
                duration_seconds=time.monotonic() - start,
            )

        raise NoCopyMechanism(attempts)

    async def publish_empty(self, dst: Path) -> PublishReport:
        """Leave *dst* existing and empty."""
        start = time.monotonic()
        ensure_dir(dst)
        removed = clear_directory(dst)
        return PublishReport(
            mechanism="clear",
            source=None,
            destination=dst.resolve(),
            removed=removed,
            duration_seconds=time.monotonic() - start,
        )


def verify_mirror(expected: Sequence[str], dst: Path) -> None:
    """Check that *dst* holds exactly the *expected* relative file paths.

    Raises:
        PublishVerificationFailed: Files are missing or extraneous.
    """
    actual = set(list_files(dst))
    wanted = set(expected)
    missing = sorted(wanted - actual)
    extra = sorted(actual - wanted)
    if missing or extra:
        raise PublishVerificationFailed(missing, extra)


def files_table(report: PublishReport) -> Table:
    """Render the published files as a table."""
    table = Table(title=f"Files in {report.destination}", show_header=True, header_style="bold cyan")
    table.add_column("File")
    table.add_column("Size", justify="right")
    for name in report.files:
        path = report.destination / name
        size = path.lstat().st_size if path.exists() or path.is_symlink() else 0
        table.add_row(name, f"{size:,} B")
    return table
