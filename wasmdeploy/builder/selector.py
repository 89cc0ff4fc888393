"""Build strategy selection.

Two states only: wasm-pack when the provisioner found a usable one, the cargo
+ wasm-bindgen pair otherwise.  The switch is automatic.  A failing build is
never retried with the other strategy: a compile error is deterministic and
must be fixed by the operator.
"""

from __future__ import annotations

from rich.panel import Panel

from wasmdeploy.config import Config
from wasmdeploy.locator import BuildManifest
from wasmdeploy.toolchain import Provisioner, ToolchainState
from wasmdeploy.utils import console

from .bindgen import BindgenBuilder
from .result import BuildMethod, BuildResult
from .wasm_pack import WasmPackBuilder


class BuildStrategySelector:
    """Chooses and runs the build strategy for a crate."""

    def __init__(self, config: Config, provisioner: Provisioner) -> None:
        self.config = config
        self.provisioner = provisioner

    def choose(self, state: ToolchainState) -> BuildMethod:
        if state.primary_available:
            return BuildMethod.WASM_PACK
        return BuildMethod.CARGO_BINDGEN

    async def build(self, manifest: BuildManifest, state: ToolchainState) -> BuildResult:
        """Build *manifest* with the strategy *state* allows."""
        method = self.choose(state)
        reason = (
            f"wasm-pack available ({state.packager_version or state.packager.path})"
            if method is BuildMethod.WASM_PACK
            else "wasm-pack unavailable -- using fallback"
        )
        console.print(
            Panel(
                f"[bold cyan]Strategy:[/bold cyan] {method.value}\n"
                f"  Reason: {reason}\n"
                f"  Crate:  {manifest.path}\n"
                f"  Mode:   {self.config.mode.value}\n"
                f"  Output: {self.config.out_path}",
                title="Build",
                border_style="cyan",
            )
        )

        if method is BuildMethod.WASM_PACK:
            builder = WasmPackBuilder(
                self.config, self.provisioner.env, wasm_pack=state.packager.path
            )
            return await builder.build(manifest)

        return await BindgenBuilder(self.config, self.provisioner).build(manifest)
