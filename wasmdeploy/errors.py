"""Error taxonomy for the wasmdeploy pipeline.

Every error carries the pipeline stage it was raised in so the CLI can print a
diagnostic of the form ``[STAGE] message``.  ``NoManifestFound`` and
``ArtifactNotFound`` are signals rather than hard failures: the pipeline
decides whether they end the run.
"""

from __future__ import annotations

from pathlib import Path
from typing import Sequence


class DeployError(Exception):
    """Base class for every failure raised by the pipeline."""

    fatal: bool = True

    def __init__(self, stage: str, message: str) -> None:
        self.stage = stage
        self.message = message
        super().__init__(f"[{stage.upper()}] {message}")


class ConfigurationError(DeployError):
    """Raised when an explicit setting or override is invalid."""

    def __init__(self, message: str, stage: str = "configure") -> None:
        super().__init__(stage, message)


class NoManifestFound(DeployError):
    """No ``Cargo.toml`` was found in the workspace."""

    fatal = False

    def __init__(self, workspace: Path) -> None:
        self.workspace = workspace
        super().__init__("locate", f"No Cargo.toml found under {workspace}")


class StrictFailure(DeployError):
    """``NoManifestFound`` promoted to a fatal error by the strict-fail flag."""

    def __init__(self, workspace: Path) -> None:
        self.workspace = workspace
        super().__init__(
            "locate",
            f"No Cargo.toml found under {workspace} and strict-fail (--force) is set",
        )


class ToolchainMissing(DeployError):
    """A required tool is absent and installs are suppressed."""

    def __init__(self, tool: str, stage: str = "provision") -> None:
        self.tool = tool
        super().__init__(
            stage,
            f"'{tool}' not found and auto-install is disabled (--skip-install)",
        )


class ProvisioningFailed(DeployError):
    """An installer ran but did not leave the requested tool behind."""

    def __init__(
        self,
        tool: str,
        reason: str,
        command: str = "",
        exit_code: int | None = None,
        stage: str = "provision",
    ) -> None:
        self.tool = tool
        self.command = command
        self.exit_code = exit_code
        super().__init__(stage, f"Failed to install '{tool}': {reason}")


class AmbiguousArtifact(DeployError):
    """The fallback compile step did not produce exactly one ``.wasm`` file."""

    def __init__(self, directory: Path, candidates: Sequence[Path], crate_name: str | None = None) -> None:
        self.directory = directory
        self.candidates = list(candidates)
        self.crate_name = crate_name
        if crate_name:
            detail = f"no artifact for crate '{crate_name}' in {directory}"
        elif not self.candidates:
            detail = f"no .wasm artifact found in {directory}"
        else:
            names = ", ".join(p.name for p in self.candidates)
            detail = f"{len(self.candidates)} .wasm artifacts in {directory} ({names})"
        super().__init__(
            "build",
            f"{detail}; set CRATE_NAME / --crate-name to pick one",
        )


class BuildFailed(DeployError):
    """A build subprocess exited non-zero."""

    def __init__(self, command: str, exit_code: int, stage: str = "build") -> None:
        self.command = command
        self.exit_code = exit_code
        super().__init__(stage, f"Command failed (exit {exit_code}): {command}")


class ArtifactNotFound(DeployError):
    """None of the candidate output directories holds any file."""

    fatal = False

    def __init__(self, candidates: Sequence[Path]) -> None:
        self.candidates = list(candidates)
        listed = ", ".join(str(p) for p in self.candidates)
        super().__init__("resolve", f"No build output found in: {listed}")


class NoCopyMechanism(DeployError):
    """Every copy tier was unavailable or failed."""

    def __init__(self, attempts: Sequence[tuple[str, str]]) -> None:
        self.attempts = list(attempts)
        detail = "; ".join(f"{name}: {reason}" for name, reason in self.attempts) or "no tiers configured"
        super().__init__("publish", f"No copy mechanism succeeded ({detail})")


class PublishVerificationFailed(DeployError):
    """The destination does not mirror the source after publishing."""

    def __init__(self, missing: Sequence[str], extra: Sequence[str]) -> None:
        self.missing = list(missing)
        self.extra = list(extra)
        super().__init__(
            "publish",
            f"Destination does not mirror the artifacts "
            f"(missing: {len(self.missing)}, extraneous: {len(self.extra)})",
        )
