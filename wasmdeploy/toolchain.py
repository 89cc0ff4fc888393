"""Toolchain provisioning.

Makes sure ``rustc``/``cargo``, the wasm target, ``wasm-pack`` and (for the
fallback build) ``wasm-bindgen`` are available, installing them into the
isolated state directory when allowed.

Tool presence is always answered by a lookup function over an explicit
environment, and is asked again after every install step.  Tests swap in a
fake lookup and a fake installer so no real installer is ever spawned.
"""

from __future__ import annotations

import os
import shutil
import tomllib
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Callable

import httpx
from rich.panel import Panel

from wasmdeploy.config import Config
from wasmdeploy.environment import ToolchainEnvironment, prepend_path
from wasmdeploy.errors import ProvisioningFailed, ToolchainMissing
from wasmdeploy.utils import console, format_command, print_warning, run_command

COMPILER = "rustc"
CARGO = "cargo"
RUSTUP = "rustup"
PACKAGER = "wasm-pack"
BINDGEN = "wasm-bindgen"
BINDGEN_CRATE = "wasm-bindgen-cli"


@dataclass(frozen=True)
class ToolAvailability:
    """Result of looking a tool up on the active ``PATH``."""

    name: str
    path: Path | None = None

    @property
    def present(self) -> bool:
        return self.path is not None

    @classmethod
    def absent(cls, name: str) -> "ToolAvailability":
        return cls(name=name, path=None)

    def __str__(self) -> str:
        return str(self.path) if self.path else "(absent)"


ToolLookup = Callable[[str, ToolchainEnvironment], ToolAvailability]


def lookup_tool(name: str, env: ToolchainEnvironment) -> ToolAvailability:
    """Find *name* on the ``PATH`` of *env*."""
    found = shutil.which(name, path=env.path or None)
    if found is None:
        return ToolAvailability.absent(name)
    return ToolAvailability(name=name, path=Path(found))


@dataclass
class ToolchainState:
    """What the provisioner found or installed during this run."""

    compiler: ToolAvailability
    rustup: ToolAvailability = field(default_factory=lambda: ToolAvailability.absent(RUSTUP))
    packager: ToolAvailability = field(default_factory=lambda: ToolAvailability.absent(PACKAGER))
    bindgen: ToolAvailability = field(default_factory=lambda: ToolAvailability.absent(BINDGEN))
    compiler_version: str = ""
    target_ready: bool = False
    packager_usable: bool = False
    packager_version: str = ""
    installed: list[str] = field(default_factory=list)

    @property
    def primary_available(self) -> bool:
        """``True`` when the packaging tool can run the primary build."""
        return self.packager.present and self.packager_usable

    def describe(self) -> dict[str, str]:
        data = {
            "rustc": self.compiler_version or str(self.compiler),
            "rustup": str(self.rustup),
            "wasm target": "ready" if self.target_ready else "unconfirmed",
            "wasm-pack": self.packager_version or str(self.packager),
        }
        if self.bindgen.present:
            data["wasm-bindgen"] = str(self.bindgen)
        if self.installed:
            data["Installed this run"] = ", ".join(self.installed)
        return data


class ToolInstaller:
    """Runs the non-interactive installers against the isolated homes.

    Installer scripts are downloaded with httpx into the state directory and
    executed with ``sh``; none of them is allowed to touch shell profiles.
    """

    def __init__(self, config: Config, download_timeout: float = 60.0) -> None:
        self.config = config
        self.download_timeout = download_timeout

    async def fetch_script(self, url: str, name: str) -> Path:
        """Download an installer script and return its local path.

        Raises:
            ProvisioningFailed: On any HTTP or network error.
        """
        target_dir = self.config.installers_path
        target_dir.mkdir(parents=True, exist_ok=True)
        target = target_dir / name
        try:
            async with httpx.AsyncClient(
                timeout=httpx.Timeout(self.download_timeout, connect=10.0),
                follow_redirects=True,
            ) as client:
                response = await client.get(url)
                response.raise_for_status()
        except httpx.HTTPError as exc:
            raise ProvisioningFailed(name, f"could not download {url}: {exc}") from exc
        target.write_bytes(response.content)
        target.chmod(0o755)
        return target

    async def install_rustup(self, env: ToolchainEnvironment) -> tuple[int, str]:
        script = await self.fetch_script(self.config.rustup_installer_url, "rustup-init.sh")
        cmd = [
            "sh", str(script),
            "-y",
            "--no-modify-path",
            "--profile", "minimal",
            "--default-toolchain", "stable",
        ]
        return await self._run(cmd, env)

    async def install_wasm_pack(self, env: ToolchainEnvironment) -> tuple[int, str]:
        script = await self.fetch_script(self.config.wasm_pack_installer_url, "wasm-pack-init.sh")
        return await self._run(["sh", str(script)], env)

    async def install_wasm_bindgen(
        self,
        env: ToolchainEnvironment,
        cargo: Path | str = CARGO,
        version: str | None = None,
    ) -> tuple[int, str]:
        cmd = [str(cargo), "install", "-f", BINDGEN_CRATE]
        if version:
            cmd += ["--version", version]
        return await self._run(cmd, env)

    async def _run(self, cmd: list[str], env: ToolchainEnvironment) -> tuple[int, str]:
        command = format_command(cmd)
        console.print(f"  [dim]$ {command}[/dim]")
        returncode, _, stderr = await run_command(
            cmd, cwd=self.config.workspace, env=env.as_env()
        )
        if returncode == 127 and stderr:
            print_warning(f"  {stderr}")
        return returncode, command


class Provisioner:
    """Ensures every tool the build needs is present.

    Attributes:
        config: Run configuration.
        env: Active toolchain environment; replaced when an install adds a
            new binary directory to ``PATH``.
        state: Accumulated ``ToolchainState``.
    """

    def __init__(
        self,
        config: Config,
        env: ToolchainEnvironment,
        lookup: ToolLookup | None = None,
        installer: ToolInstaller | None = None,
    ) -> None:
        self.config = config
        self.env = env
        self._lookup = lookup or lookup_tool
        self.installer = installer or ToolInstaller(config)
        self.state = ToolchainState(compiler=ToolAvailability.absent(COMPILER))

    def lookup(self, name: str) -> ToolAvailability:
        return self._lookup(name, self.env)

    async def provision(self) -> ToolchainState:
        """Run the compiler, target and packager steps in order."""
        await self.ensure_compiler()
        await self.ensure_target()
        await self.ensure_packager()
        return self.state

    # ------------------------------------------------------------------
    # Compiler
    # ------------------------------------------------------------------

    async def ensure_compiler(self) -> ToolAvailability:
        """Make ``rustc`` available.

        Raises:
            ToolchainMissing: Absent and installs are suppressed.
            ProvisioningFailed: The rustup installer failed or left no compiler.
        """
        compiler = self.lookup(COMPILER)
        if compiler.present:
            usable, version = await self._check_version(compiler)
            if usable:
                console.print(f"  [green]+[/green] rustc found: {version} ({compiler.path})")
                self.state.compiler = compiler
                self.state.compiler_version = version
                return compiler
            # A rustup proxy with no toolchain under the isolated RUSTUP_HOME.
            print_warning(f"  rustc at {compiler.path} is not usable in this environment.")

        if self.config.skip_install:
            raise ToolchainMissing(COMPILER)

        console.print("  [yellow]rustc not available[/yellow] -- installing rustup (non-interactive)...")
        returncode, command = await self.installer.install_rustup(self.env)
        if returncode != 0:
            raise ProvisioningFailed(
                COMPILER,
                f"rustup installer exited with code {returncode}",
                command=command,
                exit_code=returncode,
            )

        self._rederive_path()
        compiler = self.lookup(COMPILER)
        if not compiler.present:
            raise ProvisioningFailed(
                COMPILER,
                "rustup installer finished but rustc is still not on PATH",
                command=command,
                exit_code=returncode,
            )
        usable, version = await self._check_version(compiler)
        if not usable:
            raise ProvisioningFailed(
                COMPILER,
                f"rustup installer finished but {compiler.path} --version fails",
                command=command,
                exit_code=returncode,
            )
        console.print(f"  [green]+[/green] rustc installed: {version} ({compiler.path})")
        self.state.compiler = compiler
        self.state.compiler_version = version
        self.state.installed.append(COMPILER)
        return compiler

    # ------------------------------------------------------------------
    # Target registration
    # ------------------------------------------------------------------

    async def ensure_target(self) -> bool:
        """Register the wasm target with rustup.

        Adding an already-installed target succeeds, and "already present" is
        indistinguishable from "added", so failures only produce a warning.
        """
        rustup = self.lookup(RUSTUP)
        self.state.rustup = rustup
        if not rustup.present:
            print_warning(
                f"  rustup not found; assuming {self.config.target} is provided by the toolchain."
            )
            self.state.target_ready = False
            return False

        console.print(f"  Ensuring {self.config.target} target...")
        returncode, _, stderr = await run_command(
            [str(rustup.path), "target", "add", self.config.target],
            cwd=self.config.workspace,
            capture=True,
            env=self.env.as_env(),
        )
        if returncode != 0:
            print_warning(
                f"  rustup target add {self.config.target} exited with code {returncode} "
                f"(ignored): {stderr.splitlines()[-1] if stderr else 'no output'}"
            )
            self.state.target_ready = False
            return False

        console.print(f"  [green]+[/green] {self.config.target} target ready")
        self.state.target_ready = True
        return True

    # ------------------------------------------------------------------
    # Packaging tool (primary strategy)
    # ------------------------------------------------------------------

    async def ensure_packager(self) -> ToolAvailability:
        """Make ``wasm-pack`` available if possible.

        Never raises for a missing packager: the build selector falls back to
        ``cargo`` + ``wasm-bindgen`` instead.
        """
        packager = self.lookup(PACKAGER)

        if not packager.present:
            if self.config.skip_install:
                print_warning("  wasm-pack not found and installs are disabled; will use the fallback build.")
                self.state.packager = packager
                return packager

            console.print("  [yellow]wasm-pack not found[/yellow] -- installing wasm-pack...")
            try:
                returncode, _command = await self.installer.install_wasm_pack(self.env)
            except ProvisioningFailed as exc:
                print_warning(f"  {exc.message}; will use the fallback build.")
                self.state.packager = packager
                return packager

            self._rederive_path()
            packager = self.lookup(PACKAGER)
            if returncode != 0 or not packager.present:
                print_warning(
                    f"  wasm-pack installer did not produce a binary (exit {returncode}); "
                    "will use the fallback build."
                )
                self.state.packager = ToolAvailability.absent(PACKAGER)
                return self.state.packager
            self.state.installed.append(PACKAGER)

        self.state.packager = packager
        usable, version = await self._check_version(packager)
        self.state.packager_usable = usable
        if usable:
            self.state.packager_version = version
            console.print(f"  [green]+[/green] wasm-pack found: {version}")
        else:
            print_warning(
                f"  wasm-pack at {packager.path} is not usable; will use the fallback build."
            )
        return packager

    # ------------------------------------------------------------------
    # Bindings generator (fallback strategy)
    # ------------------------------------------------------------------

    async def ensure_bindgen(self, crate_dir: Path | None = None) -> ToolAvailability:
        """Make ``wasm-bindgen`` available for the fallback build.

        When the crate's ``Cargo.lock`` pins ``wasm-bindgen`` the matching CLI
        version is installed, since the two must agree.

        Raises:
            ToolchainMissing: Absent and installs are suppressed.
            ProvisioningFailed: ``cargo install`` failed or left no binary.
        """
        bindgen = self.lookup(BINDGEN)
        if bindgen.present:
            self.state.bindgen = bindgen
            return bindgen

        if self.config.skip_install:
            raise ToolchainMissing(BINDGEN, stage="build")

        cargo = self.lookup(CARGO)
        if not cargo.present:
            raise ProvisioningFailed(BINDGEN, "cargo is not available to install it", stage="build")

        version = locked_bindgen_version(crate_dir, self.config.workspace) if crate_dir else None
        suffix = f" {version}" if version else ""
        console.print(f"  [yellow]wasm-bindgen not found[/yellow] -- installing {BINDGEN_CRATE}{suffix}...")
        returncode, command = await self.installer.install_wasm_bindgen(
            self.env, cargo=cargo.path, version=version
        )
        if returncode != 0:
            raise ProvisioningFailed(
                BINDGEN,
                f"cargo install exited with code {returncode}",
                command=command,
                exit_code=returncode,
                stage="build",
            )

        self._rederive_path()
        bindgen = self.lookup(BINDGEN)
        if not bindgen.present:
            raise ProvisioningFailed(
                BINDGEN,
                "cargo install finished but wasm-bindgen is still not on PATH",
                command=command,
                exit_code=returncode,
                stage="build",
            )
        self.state.bindgen = bindgen
        self.state.installed.append(BINDGEN)
        return bindgen

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _check_version(self, tool: ToolAvailability) -> tuple[bool, str]:
        """Run ``<tool> --version`` in the active environment.

        Returns:
            ``(usable, first line of output)``.
        """
        returncode, stdout, _ = await run_command(
            [str(tool.path), "--version"],
            capture=True,
            env=self.env.as_env(),
        )
        if returncode != 0:
            return False, ""
        return True, stdout.splitlines()[0] if stdout else tool.name

    def _rederive_path(self) -> None:
        """Put the cargo ``bin`` directory at the front of ``PATH``."""
        variables = dict(self.env.variables)
        if self.env.cargo_bin is not None:
            cargo_bin = self.env.cargo_bin
        else:
            cargo_home = variables.get("CARGO_HOME") or os.path.join(
                variables.get("HOME", str(Path.home())), ".cargo"
            )
            cargo_bin = Path(cargo_home) / "bin"
        variables["PATH"] = prepend_path(str(cargo_bin), variables.get("PATH", ""))
        self.env = replace(self.env, variables=variables)


def locked_bindgen_version(crate_dir: Path, workspace: Path) -> str | None:
    """Return the ``wasm-bindgen`` version pinned in the nearest ``Cargo.lock``.

    Looks in *crate_dir* and its parents, stopping at *workspace*.
    """
    workspace = workspace.resolve()
    directory = crate_dir.resolve()
    while True:
        lock = directory / "Cargo.lock"
        if lock.is_file():
            try:
                data = tomllib.loads(lock.read_text(encoding="utf-8"))
            except (OSError, tomllib.TOMLDecodeError):
                return None
            for package in data.get("package", []):
                if package.get("name") == "wasm-bindgen":
                    return package.get("version")
            return None
        if directory == workspace or directory.parent == directory:
            return None
        directory = directory.parent


def describe_state(state: ToolchainState) -> Panel:
    """Render the toolchain state as a panel."""
    lines = [f"{key:<20}: {value}" for key, value in state.describe().items()]
    return Panel("\n".join(lines), title="Toolchain", border_style="yellow")
