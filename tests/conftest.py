"""Shared pytest fixtures for the wasmdeploy test suite.

Provides reusable fixtures for:
- Temporary workspaces with crates at chosen paths
- Config construction pointed at the workspace
- A fake toolbox (tool lookup) and fake installer
- A fake ``run_command`` that plays the part of cargo, wasm-pack,
  wasm-bindgen and rustup by writing the files they would produce
"""

from __future__ import annotations

import os
import textwrap
from pathlib import Path
from typing import Any, Callable
from unittest.mock import patch

import pytest

from wasmdeploy.config import Config
from wasmdeploy.environment import ToolchainEnvironment
from wasmdeploy.toolchain import ToolAvailability, ToolInstaller


# ---------------------------------------------------------------------------
# Paths & Directories
# ---------------------------------------------------------------------------

@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    """Empty repository root (auto-cleanup)."""
    root = tmp_path / "repo"
    root.mkdir()
    yield root


def write_crate(root: Path, relative: str = ".", name: str = "game-engine") -> Path:
    """Create a minimal cdylib crate under *root* and return its Cargo.toml."""
    crate_dir = (root / relative).resolve()
    crate_dir.mkdir(parents=True, exist_ok=True)
    manifest = crate_dir / "Cargo.toml"
    manifest.write_text(
        textwrap.dedent(
            f"""\
            [package]
            name = "{name}"
            version = "0.1.0"
            edition = "2021"

            [lib]
            crate-type = ["cdylib"]

            [dependencies]
            wasm-bindgen = "0.2"
            """
        ),
        encoding="utf-8",
    )
    (crate_dir / "src").mkdir(exist_ok=True)
    (crate_dir / "src" / "lib.rs").write_text("// engine\n", encoding="utf-8")
    return manifest


@pytest.fixture
def make_crate(workspace: Path) -> Callable[..., Path]:
    def _make(relative: str = ".", name: str = "game-engine") -> Path:
        return write_crate(workspace, relative, name)
    return _make


@pytest.fixture
def make_config(workspace: Path) -> Callable[..., Config]:
    """Factory for a Config rooted at the test workspace."""
    def _make(**overrides: Any) -> Config:
        return Config(workspace=workspace, **overrides)
    return _make


@pytest.fixture
def base_env(tmp_path: Path) -> dict[str, str]:
    """Minimal ambient environment with a throwaway HOME."""
    home = tmp_path / "home"
    home.mkdir(exist_ok=True)
    return {"PATH": os.environ.get("PATH", "/usr/bin:/bin"), "HOME": str(home)}


# ---------------------------------------------------------------------------
# Fake toolchain
# ---------------------------------------------------------------------------

class FakeToolbox:
    """Tool lookup backed by a set of names."""

    def __init__(self, *tools: str) -> None:
        self.tools: set[str] = set(tools)
        self.lookups: list[str] = []

    def __call__(self, name: str, env: ToolchainEnvironment) -> ToolAvailability:
        self.lookups.append(name)
        if name in self.tools:
            return ToolAvailability(name=name, path=Path("/fake/bin") / name)
        return ToolAvailability.absent(name)

    def add(self, *tools: str) -> None:
        self.tools.update(tools)


class FakeInstaller(ToolInstaller):
    """Installer that adds tools to a ``FakeToolbox`` instead of downloading."""

    def __init__(
        self,
        config: Config,
        toolbox: FakeToolbox,
        returncode: int = 0,
        produces: bool = True,
    ) -> None:
        super().__init__(config)
        self.toolbox = toolbox
        self.returncode = returncode
        self.produces = produces
        self.calls: list[tuple[str, dict[str, Any]]] = []

    def _install(self, label: str, tools: tuple[str, ...], **details: Any) -> tuple[int, str]:
        self.calls.append((label, details))
        if self.returncode == 0 and self.produces:
            self.toolbox.add(*tools)
        return self.returncode, f"fake-install {label}"

    async def install_rustup(self, env: ToolchainEnvironment) -> tuple[int, str]:
        return self._install("rustup", ("rustc", "cargo", "rustup"))

    async def install_wasm_pack(self, env: ToolchainEnvironment) -> tuple[int, str]:
        return self._install("wasm-pack", ("wasm-pack",))

    async def install_wasm_bindgen(self, env, cargo="cargo", version=None) -> tuple[int, str]:
        return self._install("wasm-bindgen", ("wasm-bindgen",), version=version)


@pytest.fixture
def toolbox() -> FakeToolbox:
    return FakeToolbox()


# ---------------------------------------------------------------------------
# Fake subprocesses
# ---------------------------------------------------------------------------

def _option(cmd: list[str], flag: str) -> str | None:
    if flag in cmd:
        return cmd[cmd.index(flag) + 1]
    return None


class FakeRunner:
    """Async stand-in for ``run_command``.

    Behaviour per program (matched on the basename of ``cmd[0]``):
        wasm-pack     writes ``<name>.js`` / ``<name>_bg.wasm`` / ``package.json``
                      into ``--out-dir``
        cargo         writes ``wasm_names`` into
                      ``<target-dir>/<target>/<profile>``
        wasm-bindgen  writes ``<stem>.js`` / ``<stem>_bg.wasm`` into ``--out-dir``
        anything else succeeds silently
    ``fail`` maps a program name to the exit code it should return.
    """

    def __init__(
        self,
        wasm_names: tuple[str, ...] = ("game_engine.wasm",),
        fail: dict[str, int] | None = None,
        stdout: dict[str, str] | None = None,
    ) -> None:
        self.wasm_names = wasm_names
        self.fail = fail or {}
        self.stdout = stdout or {}
        self.calls: list[list[str]] = []

    def programs(self) -> list[str]:
        return [Path(cmd[0]).name for cmd in self.calls]

    async def __call__(
        self,
        cmd: list[str],
        cwd: Any = None,
        timeout: float | None = None,
        capture: bool = False,
        env: Any = None,
    ) -> tuple[int, str, str]:
        cmd = [str(part) for part in cmd]
        self.calls.append(cmd)
        program = Path(cmd[0]).name
        if program in self.fail:
            return (self.fail[program], "", f"{program} failed")

        if program == "wasm-pack" and "build" in cmd:
            out = Path(_option(cmd, "--out-dir"))
            out.mkdir(parents=True, exist_ok=True)
            for name in ("game_engine.js", "game_engine_bg.wasm", "package.json"):
                (out / name).write_text(name, encoding="utf-8")
        elif program == "cargo" and "build" in cmd:
            profile = "release" if "--release" in cmd else "debug"
            artifacts = Path(_option(cmd, "--target-dir")) / _option(cmd, "--target") / profile
            artifacts.mkdir(parents=True, exist_ok=True)
            for name in self.wasm_names:
                (artifacts / name).write_bytes(b"\0asm")
        elif program == "wasm-bindgen":
            out = Path(_option(cmd, "--out-dir"))
            out.mkdir(parents=True, exist_ok=True)
            stem = Path(cmd[1]).stem
            (out / f"{stem}.js").write_text("bindings", encoding="utf-8")
            (out / f"{stem}_bg.wasm").write_bytes(b"\0asm")

        return (0, self.stdout.get(program, f"{program} 0.12.1" if capture else ""), "")


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def patch_subprocesses():
    """Route toolchain and builder subprocesses through a ``FakeRunner``.

    The publisher keeps the real ``run_command`` so copies really happen.
    """
    def _patch(runner: FakeRunner):
        from contextlib import ExitStack

        stack = ExitStack()
        for target in (
            "wasmdeploy.toolchain.run_command",
            "wasmdeploy.builder.wasm_pack.run_command",
            "wasmdeploy.builder.bindgen.run_command",
        ):
            stack.enter_context(patch(target, runner))
        return stack
    return _patch


@pytest.fixture
def make_runner() -> Callable[..., FakeRunner]:
    """Factory for a ``FakeRunner`` with custom artifacts or failures."""
    return FakeRunner


@pytest.fixture
def make_installer(toolbox: FakeToolbox) -> Callable[..., FakeInstaller]:
    """Factory for a ``FakeInstaller`` bound to the ``toolbox`` fixture."""
    def _make(config: Config, returncode: int = 0, produces: bool = True) -> FakeInstaller:
        return FakeInstaller(config, toolbox, returncode=returncode, produces=produces)
    return _make
