"""Environment isolation for toolchain state.

The ambient ``$HOME`` on CI hosts is not always owned by the effective user,
and rustup refuses to run when it is not.  ``isolate`` therefore points
``RUSTUP_HOME`` and ``CARGO_HOME`` at directories inside the workspace and
returns the resulting environment as an explicit mapping.  Every subprocess
receives that mapping; ``os.environ`` is never modified.

The state directory is created on first use, never cleaned up here, and may be
deleted at any time to force a fresh toolchain install.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping

from wasmdeploy.config import Config
from wasmdeploy.utils import console, ensure_dir


@dataclass(frozen=True)
class ToolchainEnvironment:
    """The environment every toolchain subprocess runs with."""

    variables: Mapping[str, str] = field(default_factory=dict)
    rustup_home: Path | None = None
    cargo_home: Path | None = None

    @property
    def isolated(self) -> bool:
        return self.cargo_home is not None

    @property
    def path(self) -> str:
        """The ``PATH`` tools are looked up on."""
        return self.variables.get("PATH", "")

    @property
    def cargo_bin(self) -> Path | None:
        if self.cargo_home is None:
            return None
        return self.cargo_home / "bin"

    def as_env(self) -> dict[str, str]:
        """Copy of the variables, suitable for ``run_command(env=...)``."""
        return dict(self.variables)


def isolate(config: Config, base_env: Mapping[str, str] | None = None) -> ToolchainEnvironment:
    """Create the isolated state directories and derive the child environment.

    Calling this repeatedly is safe: existing directories are reused.
    """
    env = dict(os.environ if base_env is None else base_env)

    if not config.isolate:
        console.print("  Using the ambient toolchain environment (isolation disabled)")
        return ToolchainEnvironment(variables=env)

    rustup_home = ensure_dir(config.rustup_home)
    cargo_home = ensure_dir(config.cargo_home)
    cargo_bin = ensure_dir(cargo_home / "bin")
    ensure_dir(config.installers_path)

    env["RUSTUP_HOME"] = str(rustup_home)
    env["CARGO_HOME"] = str(cargo_home)
    env["RUSTUP_INIT_SKIP_PATH_CHECK"] = "yes"
    env["PATH"] = prepend_path(str(cargo_bin), env.get("PATH", ""))

    console.print(f"  RUSTUP_HOME = {rustup_home}")
    console.print(f"  CARGO_HOME  = {cargo_home}")

    return ToolchainEnvironment(
        variables=env,
        rustup_home=rustup_home,
        cargo_home=cargo_home,
    )


def prepend_path(entry: str, current: str) -> str:
    parts = [p for p in current.split(os.pathsep) if p and p != entry]
    return os.pathsep.join([entry, *parts])
