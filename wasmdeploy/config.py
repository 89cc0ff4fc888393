"""wasmdeploy configuration.

A single frozen Pydantic v2 model describes one run.  It is built once, from
environment variables (``Config.from_env``) and CLI overrides, and is read-only
for the rest of the pipeline.  All relative paths are resolved against the
workspace root.
"""

from __future__ import annotations

import os
from enum import Enum
from pathlib import Path
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from wasmdeploy.errors import ConfigurationError

WASM_TARGET = "wasm32-unknown-unknown"

RUSTUP_INSTALLER_URL = "https://sh.rustup.rs"
WASM_PACK_INSTALLER_URL = "https://rustwasm.github.io/wasm-pack/installer/init.sh"

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}


class BuildMode(str, Enum):
    """Cargo optimisation profile."""

    RELEASE = "release"
    DEBUG = "debug"


class Config(BaseModel):
    """Configuration of a single build-and-publish run."""

    model_config = ConfigDict(frozen=True)

    workspace: Path = Field(default_factory=Path.cwd)
    out_dir: Path = Field(default=Path("wasm/pkg"))
    public_dir: Path = Field(default=Path("public/wasm/pkg"))
    mode: BuildMode = Field(default=BuildMode.RELEASE)
    crate_path: Path | None = Field(default=None, description="Crate directory or Cargo.toml")
    crate_name: str | None = Field(default=None, description="Picks the .wasm artifact in the fallback build")
    skip_install: bool = False
    force: bool = Field(default=False, description="Fail instead of skipping when no crate is found")

    isolate: bool = True
    state_dir: str = Field(default=".wasm-toolchain", min_length=1)
    target: str = Field(default=WASM_TARGET)
    target_dir: Path | None = Field(default=None, description="Cargo target dir; <crate>/target if unset")

    exclude_dirs: list[str] = Field(
        default=["public/wasm", "wasm/pkg", "target", "node_modules", ".git"]
    )

    # Ordered; formatted with out_dir, crate_dir, target_dir, target, mode.
    artifact_candidates: list[str] = Field(
        default=[
            "{out_dir}",
            "{crate_dir}/{out_dir}",
            "{crate_dir}/pkg",
            "{target_dir}/{target}/{mode}/pkg",
        ]
    )

    rustup_installer_url: str = RUSTUP_INSTALLER_URL
    wasm_pack_installer_url: str = WASM_PACK_INSTALLER_URL

    # ------------------------------------------------------------------
    # Derived paths
    # ------------------------------------------------------------------

    def resolve(self, path: Path) -> Path:
        """Resolve *path* against the workspace unless it is absolute."""
        path = Path(path)
        if not path.is_absolute():
            path = self.workspace / path
        return path.resolve()

    @property
    def out_path(self) -> Path:
        """Absolute build output directory."""
        return self.resolve(self.out_dir)

    @property
    def public_path(self) -> Path:
        """Absolute deployment directory."""
        return self.resolve(self.public_dir)

    @property
    def state_path(self) -> Path:
        """Root of the isolated toolchain state."""
        return self.resolve(Path(self.state_dir))

    @property
    def rustup_home(self) -> Path:
        return self.state_path / "rustup"

    @property
    def cargo_home(self) -> Path:
        return self.state_path / "cargo"

    @property
    def installers_path(self) -> Path:
        """Where downloaded installer scripts are kept."""
        return self.state_path / "installers"

    @property
    def release(self) -> bool:
        return self.mode is BuildMode.RELEASE

    def cargo_target_dir(self, crate_dir: Path) -> Path:
        """Cargo target directory for the crate at *crate_dir*."""
        if self.target_dir is not None:
            return self.resolve(self.target_dir)
        return crate_dir / "target"

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def from_env(
        cls,
        environ: Mapping[str, str] | None = None,
        **overrides: Any,
    ) -> "Config":
        """Build a ``Config`` from environment variables plus explicit overrides.

        Recognised variables (all optional):
            OUT_DIR, PUBLIC_WASM_DIR, BUILD_MODE, CRATE_PATH, CRATE_NAME,
            SKIP_INSTALL, FORCE_FAIL, WASMDEPLOY_WORKSPACE,
            WASMDEPLOY_NO_ISOLATE.

        Overrides whose value is ``None`` are ignored, so CLI flags that were
        not given fall through to the environment.

        Raises:
            ConfigurationError: If a value does not validate.
        """
        env = os.environ if environ is None else environ
        kwargs: dict[str, Any] = {}

        if env.get("WASMDEPLOY_WORKSPACE"):
            kwargs["workspace"] = Path(env["WASMDEPLOY_WORKSPACE"])
        if env.get("OUT_DIR"):
            kwargs["out_dir"] = Path(env["OUT_DIR"])
        if env.get("PUBLIC_WASM_DIR"):
            kwargs["public_dir"] = Path(env["PUBLIC_WASM_DIR"])
        if env.get("BUILD_MODE"):
            kwargs["mode"] = env["BUILD_MODE"].strip().lower()
        if env.get("CRATE_PATH"):
            kwargs["crate_path"] = Path(env["CRATE_PATH"])
        if env.get("CRATE_NAME"):
            kwargs["crate_name"] = env["CRATE_NAME"]
        if "SKIP_INSTALL" in env:
            kwargs["skip_install"] = _parse_bool("SKIP_INSTALL", env["SKIP_INSTALL"])
        if "FORCE_FAIL" in env:
            kwargs["force"] = _parse_bool("FORCE_FAIL", env["FORCE_FAIL"])
        if "WASMDEPLOY_NO_ISOLATE" in env:
            kwargs["isolate"] = not _parse_bool("WASMDEPLOY_NO_ISOLATE", env["WASMDEPLOY_NO_ISOLATE"])

        kwargs.update({key: value for key, value in overrides.items() if value is not None})

        try:
            config = cls(**kwargs)
        except ValidationError as exc:
            raise ConfigurationError(_format_validation_error(exc)) from exc
        return config.model_copy(update={"workspace": config.workspace.resolve()})

    def describe(self) -> dict[str, str]:
        """Key/value view used for the start-of-run summary."""
        data = {
            "Workspace": str(self.workspace),
            "Output dir": str(self.out_dir),
            "Public dir": str(self.public_dir),
            "Mode": self.mode.value,
            "Isolated state": str(self.state_path) if self.isolate else "(ambient)",
        }
        if self.crate_path:
            data["Crate path"] = str(self.crate_path)
        if self.crate_name:
            data["Crate name"] = self.crate_name
        if self.skip_install:
            data["Skip install"] = "yes"
        if self.force:
            data["Strict"] = "yes"
        return data


def _parse_bool(name: str, raw: str) -> bool:
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ConfigurationError(f"{name} must be a boolean (got {raw!r})")


def _format_validation_error(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(item) for item in error.get("loc", ())) or "config"
        parts.append(f"{location}: {error.get('msg', 'invalid value')}")
    return "Invalid configuration: " + "; ".join(parts)
