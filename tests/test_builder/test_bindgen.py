"""Unit tests for the cargo + wasm-bindgen strategy (wasmdeploy.builder.bindgen).

Tests cover:
- find_wasm_artifact with one, zero, several and a named artifact
- cargo / wasm-bindgen command construction
- Full fallback build with the fake runner
- wasm-bindgen provisioning during the build
- Failures of either step
"""

from __future__ import annotations

from pathlib import Path

import pytest

from wasmdeploy.builder import BindgenBuilder, BuildMethod, find_wasm_artifact
from wasmdeploy.environment import isolate
from wasmdeploy.errors import AmbiguousArtifact, BuildFailed, ProvisioningFailed, ToolchainMissing
from wasmdeploy.locator import BuildManifest
from wasmdeploy.toolchain import Provisioner


@pytest.fixture
def manifest(make_crate) -> BuildManifest:
    return BuildManifest(path=make_crate("engine"))


@pytest.fixture
def builder_for(make_config, base_env, toolbox, make_installer):
    def _make(**overrides) -> BindgenBuilder:
        config = make_config(**overrides)
        provisioner = Provisioner(
            config, isolate(config, base_env), lookup=toolbox, installer=make_installer(config)
        )
        return BindgenBuilder(config, provisioner)
    return _make


# ---------------------------------------------------------------------------
# find_wasm_artifact
# ---------------------------------------------------------------------------


class TestFindWasmArtifact:
    @pytest.mark.unit
    def test_single(self, tmp_path: Path):
        (tmp_path / "game_engine.wasm").write_bytes(b"\0asm")
        (tmp_path / "game_engine.d").write_text("deps")
        assert find_wasm_artifact(tmp_path) == tmp_path / "game_engine.wasm"

    @pytest.mark.unit
    def test_none(self, tmp_path: Path):
        with pytest.raises(AmbiguousArtifact) as exc_info:
            find_wasm_artifact(tmp_path)
        assert exc_info.value.candidates == []

    @pytest.mark.unit
    def test_missing_directory(self, tmp_path: Path):
        with pytest.raises(AmbiguousArtifact):
            find_wasm_artifact(tmp_path / "missing")

    @pytest.mark.unit
    def test_several(self, tmp_path: Path):
        (tmp_path / "a.wasm").write_bytes(b"\0asm")
        (tmp_path / "b.wasm").write_bytes(b"\0asm")
        with pytest.raises(AmbiguousArtifact) as exc_info:
            find_wasm_artifact(tmp_path)
        assert [p.name for p in exc_info.value.candidates] == ["a.wasm", "b.wasm"]

    @pytest.mark.unit
    def test_crate_name_disambiguates(self, tmp_path: Path):
        (tmp_path / "helper.wasm").write_bytes(b"\0asm")
        (tmp_path / "game_engine.wasm").write_bytes(b"\0asm")
        assert find_wasm_artifact(tmp_path, "game-engine") == tmp_path / "game_engine.wasm"

    @pytest.mark.unit
    def test_crate_name_not_found(self, tmp_path: Path):
        (tmp_path / "helper.wasm").write_bytes(b"\0asm")
        with pytest.raises(AmbiguousArtifact) as exc_info:
            find_wasm_artifact(tmp_path, "game-engine")
        assert exc_info.value.crate_name == "game-engine"


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


class TestCommands:
    @pytest.mark.unit
    def test_cargo_release(self, builder_for, manifest):
        builder = builder_for()
        target_dir = manifest.directory / "target"
        assert builder.cargo_command("cargo", manifest) == [
            "cargo", "build",
            "--target", "wasm32-unknown-unknown",
            "--manifest-path", str(manifest.path),
            "--target-dir", str(target_dir),
            "--release",
        ]
        assert builder.artifact_dir(manifest) == target_dir / "wasm32-unknown-unknown" / "release"

    @pytest.mark.unit
    def test_cargo_debug(self, builder_for, manifest):
        builder = builder_for(mode="debug")
        assert "--release" not in builder.cargo_command("cargo", manifest)
        assert builder.artifact_dir(manifest).name == "debug"

    @pytest.mark.unit
    def test_bindgen(self, builder_for):
        builder = builder_for()
        artifact = Path("/t/game_engine.wasm")
        assert builder.bindgen_command("wasm-bindgen", artifact) == [
            "wasm-bindgen", str(artifact),
            "--out-dir", str(builder.config.out_path),
            "--target", "web",
        ]


# ---------------------------------------------------------------------------
# build()
# ---------------------------------------------------------------------------


class TestBuild:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_success(self, builder_for, manifest, toolbox, fake_runner, patch_subprocesses):
        toolbox.add("cargo", "wasm-bindgen")
        builder = builder_for()
        with patch_subprocesses(fake_runner):
            result = await builder.build(manifest)

        assert fake_runner.programs() == ["cargo", "wasm-bindgen"]
        assert result.method is BuildMethod.CARGO_BINDGEN
        assert result.artifact.name == "game_engine.wasm"
        assert sorted(p.name for p in builder.config.out_path.iterdir()) == [
            "game_engine.js",
            "game_engine_bg.wasm",
        ]
        assert len(result.commands) == 2

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_installs_bindgen_first(self, builder_for, manifest, toolbox, fake_runner, patch_subprocesses):
        toolbox.add("cargo")
        builder = builder_for()
        with patch_subprocesses(fake_runner):
            await builder.build(manifest)
        assert builder.provisioner.state.installed == ["wasm-bindgen"]
        assert builder.provisioner.installer.calls[0][0] == "wasm-bindgen"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_bindgen_missing_and_skip_install(self, builder_for, manifest, toolbox, fake_runner, patch_subprocesses):
        toolbox.add("cargo")
        builder = builder_for(skip_install=True)
        with patch_subprocesses(fake_runner):
            with pytest.raises(ToolchainMissing):
                await builder.build(manifest)
        assert fake_runner.calls == []

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_cargo_missing(self, builder_for, manifest, toolbox, fake_runner, patch_subprocesses):
        toolbox.add("wasm-bindgen")
        with patch_subprocesses(fake_runner):
            with pytest.raises(ProvisioningFailed) as exc_info:
                await builder_for().build(manifest)
        assert exc_info.value.stage == "build"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_compile_failure(self, builder_for, manifest, toolbox, make_runner, patch_subprocesses):
        toolbox.add("cargo", "wasm-bindgen")
        runner = make_runner(fail={"cargo": 101})
        with patch_subprocesses(runner):
            with pytest.raises(BuildFailed) as exc_info:
                await builder_for().build(manifest)
        assert exc_info.value.exit_code == 101
        assert runner.programs() == ["cargo"]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_bindgen_failure(self, builder_for, manifest, toolbox, make_runner, patch_subprocesses):
        toolbox.add("cargo", "wasm-bindgen")
        with patch_subprocesses(make_runner(fail={"wasm-bindgen": 1})):
            with pytest.raises(BuildFailed) as exc_info:
                await builder_for().build(manifest)
        assert "wasm-bindgen" in exc_info.value.command

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_two_artifacts_is_ambiguous(self, builder_for, manifest, toolbox, make_runner, patch_subprocesses):
        toolbox.add("cargo", "wasm-bindgen")
        runner = make_runner(wasm_names=("game_engine.wasm", "helper.wasm"))
        with patch_subprocesses(runner):
            with pytest.raises(AmbiguousArtifact):
                await builder_for().build(manifest)
        assert runner.programs() == ["cargo"]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_crate_name_picks_artifact(self, builder_for, manifest, toolbox, make_runner, patch_subprocesses):
        toolbox.add("cargo", "wasm-bindgen")
        runner = make_runner(wasm_names=("game_engine.wasm", "helper.wasm"))
        with patch_subprocesses(runner):
            result = await builder_for(crate_name="helper").build(manifest)
        assert result.artifact.name == "helper.wasm"
        assert runner.calls[-1][1] == str(result.artifact)
