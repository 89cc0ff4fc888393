"""Fallback build strategy: ``cargo build`` followed by ``wasm-bindgen``.

Used when wasm-pack is missing or unusable.  The compile step leaves one
``.wasm`` per cdylib in ``<target_dir>/wasm32-unknown-unknown/<mode>``; the
bindings generator then turns the selected artifact into web-target output.
"""

from __future__ import annotations

import time
from pathlib import Path

from wasmdeploy.config import Config
from wasmdeploy.errors import AmbiguousArtifact, BuildFailed, ProvisioningFailed
from wasmdeploy.locator import BuildManifest
from wasmdeploy.toolchain import CARGO, Provisioner
from wasmdeploy.utils import console, ensure_dir, format_command, run_command

from .result import BuildMethod, BuildResult


def find_wasm_artifact(directory: Path, crate_name: str | None = None) -> Path:
    """Select the compiled ``.wasm`` file in *directory*.

    With *crate_name*, the file named after the crate (hyphens become
    underscores, as cargo does) is required.  Without it, exactly one
    ``.wasm`` file must exist.

    Raises:
        AmbiguousArtifact: Zero or several candidates, or the named crate's
            artifact is missing.
    """
    candidates = sorted(p for p in directory.glob("*.wasm") if p.is_file()) if directory.is_dir() else []

    if crate_name:
        expected = directory / f"{crate_name.replace('-', '_')}.wasm"
        if expected.is_file():
            return expected
        raise AmbiguousArtifact(directory, candidates, crate_name=crate_name)

    if len(candidates) != 1:
        raise AmbiguousArtifact(directory, candidates)
    return candidates[0]


class BindgenBuilder:
    """Compiles with cargo and generates bindings with wasm-bindgen."""

    def __init__(self, config: Config, provisioner: Provisioner) -> None:
        self.config = config
        self.provisioner = provisioner

    def artifact_dir(self, manifest: BuildManifest) -> Path:
        """Cargo's per-target, per-profile output directory."""
        target_dir = self.config.cargo_target_dir(manifest.directory)
        return target_dir / self.config.target / self.config.mode.value

    def cargo_command(self, cargo: Path | str, manifest: BuildManifest) -> list[str]:
        cmd = [
            str(cargo),
            "build",
            "--target", self.config.target,
            "--manifest-path", str(manifest.path),
            "--target-dir", str(self.config.cargo_target_dir(manifest.directory)),
        ]
        if self.config.release:
            cmd.append("--release")
        return cmd

    def bindgen_command(self, bindgen: Path | str, artifact: Path) -> list[str]:
        return [
            str(bindgen),
            str(artifact),
            "--out-dir", str(self.config.out_path),
            "--target", "web",
        ]

    async def build(self, manifest: BuildManifest) -> BuildResult:
        """Run the compile and bindings steps.

        Raises:
            ToolchainMissing: wasm-bindgen is absent and installs are disabled.
            ProvisioningFailed: wasm-bindgen or cargo could not be made available.
            BuildFailed: cargo or wasm-bindgen exited non-zero.
            AmbiguousArtifact: The compiled artifact could not be singled out.
        """
        start = time.monotonic()
        console.print("[magenta]Building with cargo + wasm-bindgen fallback[/magenta]")

        bindgen = await self.provisioner.ensure_bindgen(manifest.directory)
        cargo = self.provisioner.lookup(CARGO)
        if not cargo.present:
            raise ProvisioningFailed(CARGO, "cargo is not on PATH", stage="build")

        env = self.provisioner.env.as_env()
        commands: list[str] = []

        cargo_cmd = self.cargo_command(cargo.path, manifest)
        command = format_command(cargo_cmd)
        commands.append(command)
        console.print(f"  [dim]$ {command}[/dim]")
        returncode, _, _ = await run_command(cargo_cmd, cwd=self.config.workspace, env=env)
        if returncode != 0:
            raise BuildFailed(command, returncode)

        artifact = find_wasm_artifact(self.artifact_dir(manifest), self.config.crate_name)
        console.print(f"  [green]+[/green] Found wasm artifact: {artifact}")

        ensure_dir(self.config.out_path)
        bindgen_cmd = self.bindgen_command(bindgen.path, artifact)
        command = format_command(bindgen_cmd)
        commands.append(command)
        console.print(f"  [dim]$ {command}[/dim]")
        returncode, _, _ = await run_command(bindgen_cmd, cwd=self.config.workspace, env=env)
        if returncode != 0:
            raise BuildFailed(command, returncode)

        console.print(f"  wasm-bindgen output in {self.config.out_path}")
        return BuildResult(
            method=BuildMethod.CARGO_BINDGEN,
            out_dir=self.config.out_path,
            commands=commands,
            artifact=artifact,
            duration_seconds=time.monotonic() - start,
        )
