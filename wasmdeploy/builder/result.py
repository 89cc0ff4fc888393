"""Build result types shared by both strategies."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path


class BuildMethod(str, Enum):
    """Strategy used to build the crate."""

    WASM_PACK = "wasm-pack"
    CARGO_BINDGEN = "cargo+wasm-bindgen"


@dataclass
class BuildResult:
    """Outcome of a successful build.

    Failures are raised as ``BuildFailed`` / ``AmbiguousArtifact`` /
    ``ToolchainMissing`` / ``ProvisioningFailed`` rather than returned.
    """

    method: BuildMethod
    out_dir: Path
    commands: list[str] = field(default_factory=list)
    artifact: Path | None = None
    duration_seconds: float = 0.0

    def summary(self) -> str:
        """Return a human-readable summary of the build result."""
        lines = [
            f"Method: {self.method.value}",
            f"Output: {self.out_dir}",
            f"Duration: {self.duration_seconds:.1f}s",
        ]
        if self.artifact is not None:
            lines.append(f"Artifact: {self.artifact}")
        for command in self.commands:
            lines.append(f"  $ {command}")
        return "\n".join(lines)
