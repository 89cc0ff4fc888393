"""Artifact resolution.

wasm-pack versions and flag combinations have disagreed about where output
lands: the configured directory, the same path relative to the crate, the
crate's ``pkg/``, or a ``pkg/`` under cargo's per-target directory.  The
candidates live in ``Config.artifact_candidates`` as format templates and are
tried in order; the first existing, non-empty directory wins.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from wasmdeploy.config import Config
from wasmdeploy.errors import ArtifactNotFound, ConfigurationError
from wasmdeploy.locator import BuildManifest
from wasmdeploy.utils import console, first_match, has_files, list_files


@dataclass
class ArtifactSet:
    """A non-empty directory of build output."""

    directory: Path
    files: list[str] = field(default_factory=list)
    candidate_index: int = 0


def candidate_dirs(config: Config, manifest: BuildManifest) -> list[Path]:
    """Expand the configured candidate templates, dropping duplicates.

    Raises:
        ConfigurationError: A template uses an unknown placeholder.
    """
    crate_dir = manifest.directory
    values = {
        "out_dir": config.out_dir.as_posix(),
        "crate_dir": crate_dir.as_posix(),
        "target_dir": config.cargo_target_dir(crate_dir).as_posix(),
        "target": config.target,
        "mode": config.mode.value,
    }

    seen: set[Path] = set()
    candidates: list[Path] = []
    for template in config.artifact_candidates:
        try:
            raw = template.format(**values)
        except (KeyError, IndexError) as exc:
            raise ConfigurationError(
                f"Unknown placeholder {exc} in artifact candidate '{template}'",
                stage="resolve",
            ) from exc
        path = config.resolve(Path(raw))
        if path not in seen:
            seen.add(path)
            candidates.append(path)
    return candidates


def resolve_artifacts(config: Config, manifest: BuildManifest) -> ArtifactSet:
    """Return the first candidate directory holding build output.

    Raises:
        ArtifactNotFound: No candidate exists with at least one file.
    """
    candidates = candidate_dirs(config, manifest)
    for index, candidate in enumerate(candidates, start=1):
        state = "ok" if has_files(candidate) else ("empty" if candidate.is_dir() else "missing")
        console.print(f"  {index}. {candidate} [dim]({state})[/dim]")

    chosen = first_match(candidates, has_files)
    if chosen is None:
        raise ArtifactNotFound(candidates)

    files = list_files(chosen)
    console.print(f"  [green]+[/green] Using {chosen} ({len(files)} file(s))")
    return ArtifactSet(
        directory=chosen,
        files=files,
        candidate_index=candidates.index(chosen),
    )
