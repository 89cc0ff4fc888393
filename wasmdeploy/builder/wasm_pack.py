"""Primary build strategy: ``wasm-pack build --target web``."""

from __future__ import annotations

import time
from pathlib import Path

from wasmdeploy.config import Config
from wasmdeploy.environment import ToolchainEnvironment
from wasmdeploy.errors import BuildFailed
from wasmdeploy.locator import BuildManifest
from wasmdeploy.utils import console, format_command, run_command

from .result import BuildMethod, BuildResult


class WasmPackBuilder:
    """Builds the crate and its JS bindings with a single wasm-pack call.

    ``--out-dir`` is always passed as an absolute path: wasm-pack resolves a
    relative one against the crate directory, not the working directory.
    """

    def __init__(
        self,
        config: Config,
        env: ToolchainEnvironment,
        wasm_pack: Path | str = "wasm-pack",
    ) -> None:
        self.config = config
        self.env = env
        self.wasm_pack = wasm_pack

    def command(self, manifest: BuildManifest) -> list[str]:
        cmd = [
            str(self.wasm_pack),
            "build",
            str(manifest.directory),
            "--target", "web",
            "--out-dir", str(self.config.out_path),
        ]
        cmd.append("--release" if self.config.release else "--dev")
        return cmd

    async def build(self, manifest: BuildManifest) -> BuildResult:
        """Run wasm-pack.

        Raises:
            BuildFailed: wasm-pack exited non-zero.
        """
        cmd = self.command(manifest)
        command = format_command(cmd)
        console.print(f"[cyan]Building with wasm-pack[/cyan] ({self.config.mode.value})")
        console.print(f"  [dim]$ {command}[/dim]")

        start = time.monotonic()
        returncode, _, _ = await run_command(
            cmd, cwd=self.config.workspace, env=self.env.as_env()
        )
        if returncode != 0:
            raise BuildFailed(command, returncode)

        return BuildResult(
            method=BuildMethod.WASM_PACK,
            out_dir=self.config.out_path,
            commands=[command],
            duration_seconds=time.monotonic() - start,
        )
