"""Project locator.

Finds the one ``Cargo.toml`` to build.  The workspace is walked breadth-first
with entries sorted by name, so the shallowest manifest wins and ties are
broken lexicographically; the same tree always yields the same crate.
Output, deployment, toolchain-state and configured exclusion directories are
never entered, which keeps the search from discovering the crates vendored
into ``CARGO_HOME`` or copies left in build output.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from pathlib import Path

from wasmdeploy.config import Config
from wasmdeploy.errors import ConfigurationError, NoManifestFound

MANIFEST_NAME = "Cargo.toml"


@dataclass(frozen=True)
class BuildManifest:
    """The selected crate manifest."""

    path: Path

    @property
    def directory(self) -> Path:
        return self.path.parent


class _Exclusions:
    """Matches directories that must not be searched."""

    def __init__(self, config: Config) -> None:
        self.workspace = config.workspace.resolve()
        self.names: set[str] = set()
        self.paths: set[Path] = {
            config.out_path,
            config.public_path,
            config.state_path,
        }
        for entry in config.exclude_dirs:
            cleaned = entry.strip().strip("/")
            if not cleaned:
                continue
            if "/" in cleaned:
                self.paths.add((self.workspace / cleaned).resolve())
            else:
                self.names.add(cleaned)

    def __contains__(self, directory: Path) -> bool:
        return directory.name in self.names or directory.resolve() in self.paths


def locate_manifest(config: Config) -> BuildManifest:
    """Select the crate manifest for this run.

    Raises:
        ConfigurationError: An explicit ``crate_path`` has no ``Cargo.toml``.
        NoManifestFound: The search found nothing.
    """
    if config.crate_path is not None:
        return _explicit_manifest(config)

    found = find_manifests(config, limit=1)
    if not found:
        raise NoManifestFound(config.workspace)
    return BuildManifest(path=found[0])


def find_manifests(config: Config, limit: int | None = None) -> list[Path]:
    """Return manifests in search order, stopping after *limit* matches."""
    root = config.workspace.resolve()
    exclusions = _Exclusions(config)
    found: list[Path] = []

    queue: deque[Path] = deque([root])
    while queue:
        directory = queue.popleft()
        try:
            entries = sorted(directory.iterdir(), key=lambda p: p.name)
        except (PermissionError, FileNotFoundError):
            continue

        for entry in entries:
            if entry.name == MANIFEST_NAME and entry.is_file():
                found.append(entry.resolve())
                if limit is not None and len(found) >= limit:
                    return found

        for entry in entries:
            if entry.is_dir() and not entry.is_symlink() and entry not in exclusions:
                queue.append(entry)

    return found


def _explicit_manifest(config: Config) -> BuildManifest:
    target = config.resolve(config.crate_path)
    manifest = target if target.name == MANIFEST_NAME else target / MANIFEST_NAME
    if not manifest.is_file():
        raise ConfigurationError(
            f"Provided crate path '{config.crate_path}' does not contain {MANIFEST_NAME}",
            stage="locate",
        )
    return BuildManifest(path=manifest)
