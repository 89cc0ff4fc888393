"""wasmdeploy pipeline orchestrator.

Runs the six stages of a build-and-publish run, strictly in order:

Stage 1: LOCATE    -- Find the crate's Cargo.toml.
Stage 2: ISOLATE   -- Point rustup/cargo state at workspace-local directories.
Stage 3: PROVISION -- Ensure rustc, the wasm target and wasm-pack.
Stage 4: BUILD     -- wasm-pack, or cargo + wasm-bindgen as a fallback.
Stage 5: RESOLVE   -- Find where the build output actually landed.
Stage 6: PUBLISH   -- Mirror the output into the deployment directory.

The deployment directory exists when the run ends, whatever the outcome.

Usage::

    wasmdeploy                      # auto-detect crate, release build
    wasmdeploy --debug --crate engine
    OUT_DIR=wasm/pkg PUBLIC_WASM_DIR=public/wasm/pkg wasmdeploy --force
"""

from __future__ import annotations

import argparse
import asyncio
import sys
import time
import traceback
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Iterator, Mapping

from rich.markup import escape
from rich.panel import Panel

from wasmdeploy.builder import BuildResult, BuildStrategySelector
from wasmdeploy.config import Config
from wasmdeploy.environment import isolate
from wasmdeploy.errors import ArtifactNotFound, DeployError, NoManifestFound, StrictFailure
from wasmdeploy.locator import BuildManifest, locate_manifest
from wasmdeploy.publisher import PublishReport, Publisher, files_table
from wasmdeploy.resolver import ArtifactSet, resolve_artifacts
from wasmdeploy.toolchain import Provisioner, ToolchainState, ToolInstaller, ToolLookup, describe_state
from wasmdeploy.utils import (
    STAGE_NAMES,
    console,
    ensure_dir,
    format_duration,
    print_error,
    print_stage_header,
    print_success,
    print_summary_table,
    print_warning,
)

OUTCOME_BUILT = "built"
OUTCOME_SKIPPED = "skipped"
OUTCOME_EMPTY = "empty"
OUTCOME_FAILED = "failed"


@dataclass
class RunReport:
    """Everything a run produced, stage by stage."""

    outcome: str = OUTCOME_FAILED
    exit_code: int = 1
    manifest: BuildManifest | None = None
    toolchain: ToolchainState | None = None
    build: BuildResult | None = None
    artifacts: ArtifactSet | None = None
    publish: PublishReport | None = None
    error: Exception | None = None
    failed_stage: str | None = None
    stage_durations: dict[str, float] = field(default_factory=dict)
    duration_seconds: float = 0.0

    @property
    def success(self) -> bool:
        return self.exit_code == 0


class DeployPipeline:
    """Drives one build-and-publish run.

    Attributes:
        config: Frozen run configuration.
        report: ``RunReport`` filled in as the stages complete.
    """

    def __init__(
        self,
        config: Config,
        *,
        lookup: ToolLookup | None = None,
        installer: ToolInstaller | None = None,
        publisher: Publisher | None = None,
        base_env: Mapping[str, str] | None = None,
    ) -> None:
        self.config = config
        self.report = RunReport()
        self._lookup = lookup
        self._installer = installer
        self._publisher = publisher
        self._base_env = base_env

    async def run(self) -> RunReport:
        """Execute every stage and return the report.

        Fatal errors are reported, not raised: the report carries the exit
        code for the CLI.
        """
        pipeline_start = time.monotonic()
        console.print(
            Panel(
                "[bold bright_cyan]wasmdeploy[/bold bright_cyan]\n"
                f"Workspace : {self.config.workspace}\n"
                f"Output    : {self.config.out_dir}\n"
                f"Public    : {self.config.public_dir}\n"
                f"Mode      : {self.config.mode.value}",
                title="[bold]Build Start[/bold]",
                border_style="bright_cyan",
            )
        )

        try:
            await self._execute()
        except DeployError as exc:
            self._fail(exc)
            print_error(str(exc))
        except Exception as exc:
            self._fail(exc)
            print_error(f"Unexpected error: {exc}")
            console.print(f"[dim]{escape(traceback.format_exc())}[/dim]")
        finally:
            ensure_dir(self.config.public_path)
            self.report.duration_seconds = time.monotonic() - pipeline_start
            self._print_final_summary()

        return self.report

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def _execute(self) -> None:
        config = self.config
        report = self.report

        with self._stage(1):
            try:
                manifest = locate_manifest(config)
            except NoManifestFound as exc:
                if config.force:
                    raise StrictFailure(exc.workspace) from exc
                print_warning(f"No Cargo.toml found under {config.workspace}; skipping wasm build.")
                publisher = self._publisher or Publisher()
                report.publish = await publisher.publish_empty(config.public_path)
                console.print(
                    f"  {config.public_path} is empty "
                    f"({len(report.publish.removed)} stale file(s) removed)"
                )
                report.outcome = OUTCOME_SKIPPED
                report.exit_code = 0
                return
            report.manifest = manifest
            console.print(f"  Found Cargo.toml at {manifest.path}")
            console.print(f"  Crate dir: {manifest.directory}")

        with self._stage(2):
            env = isolate(config, self._base_env)

        with self._stage(3):
            provisioner = Provisioner(config, env, lookup=self._lookup, installer=self._installer)
            state = await provisioner.provision()
            report.toolchain = state
            console.print(describe_state(state))

        with self._stage(4):
            selector = BuildStrategySelector(config, provisioner)
            build = await selector.build(manifest, state)
            report.build = build
            console.print(f"  {build.method.value} build finished in {format_duration(build.duration_seconds)}")

        with self._stage(5):
            try:
                artifacts: ArtifactSet | None = resolve_artifacts(config, manifest)
            except ArtifactNotFound as exc:
                print_warning(f"{exc}. Publishing an empty directory.")
                artifacts = None
            report.artifacts = artifacts

        with self._stage(6):
            publisher = self._publisher or Publisher(env=provisioner.env.as_env())
            if artifacts is None:
                report.publish = await publisher.publish_empty(config.public_path)
                report.outcome = OUTCOME_EMPTY
            else:
                report.publish = await publisher.publish(artifacts.directory, config.public_path)
                report.outcome = OUTCOME_BUILT
                console.print(files_table(report.publish))
            report.exit_code = 0

    @contextmanager
    def _stage(self, number: int) -> Iterator[None]:
        name = STAGE_NAMES[number]
        print_stage_header(number, name)
        start = time.monotonic()
        try:
            yield
        finally:
            elapsed = time.monotonic() - start
            self.report.stage_durations[name.lower()] = elapsed
        print_success(f"Stage {number} ({name}) completed in {format_duration(elapsed)}")

    def _fail(self, exc: Exception) -> None:
        self.report.outcome = OUTCOME_FAILED
        self.report.exit_code = 1
        self.report.error = exc
        self.report.failed_stage = exc.stage if isinstance(exc, DeployError) else None

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    def _print_final_summary(self) -> None:
        report = self.report
        if report.outcome == OUTCOME_FAILED:
            border_style = "bold red"
            status_text = "[bold red]BUILD FAILED[/bold red]"
        elif report.outcome == OUTCOME_BUILT:
            border_style = "bold green"
            status_text = "[bold green]BUILD SUCCEEDED[/bold green]"
        else:
            border_style = "bold yellow"
            status_text = f"[bold yellow]{report.outcome.upper()}[/bold yellow]"

        detail_lines = [
            status_text,
            "",
            f"Duration  : {format_duration(report.duration_seconds)}",
            f"Stages    : {', '.join(report.stage_durations) or 'none'}",
        ]
        if report.failed_stage:
            detail_lines.append(f"Failed in : {report.failed_stage}")
        if report.error is not None:
            detail_lines.append(f"Cause     : {escape(str(report.error))}")
        if report.build is not None:
            detail_lines.append(f"Method    : {report.build.method.value}")
        if report.publish is not None:
            detail_lines.append(f"Copy      : {report.publish.mechanism}")
            detail_lines.append(f"Published : {len(report.publish.files)} file(s)")
        detail_lines.extend([
            "",
            f"Public    : {self.config.public_path}",
            f"Exit code : {report.exit_code}",
        ])

        console.print()
        console.print(
            Panel(
                "\n".join(detail_lines),
                title="[bold]Build Complete[/bold]",
                border_style=border_style,
            )
        )


# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="wasmdeploy",
        description="Build a Rust crate to WebAssembly and publish it for static hosting",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Environment variables OUT_DIR, PUBLIC_WASM_DIR, BUILD_MODE, CRATE_PATH,\n"
            "CRATE_NAME, SKIP_INSTALL and FORCE_FAIL are read first; flags override them.\n\n"
            "Examples:\n"
            "  wasmdeploy\n"
            "  wasmdeploy --debug --crate engine\n"
            "  OUT_DIR=wasm/pkg PUBLIC_WASM_DIR=public/wasm/pkg wasmdeploy --force\n"
        ),
    )
    parser.add_argument(
        "--debug",
        action="store_const", const="debug", dest="mode", default=None,
        help="Build debug (default: release)",
    )
    parser.add_argument("--crate", dest="crate_path", default=None, help="Crate directory (where Cargo.toml is)")
    parser.add_argument("--crate-name", default=None, help="Crate whose .wasm the fallback build should use")
    parser.add_argument("--out", dest="out_dir", default=None, help="Build output directory (default: wasm/pkg)")
    parser.add_argument(
        "--public", dest="public_dir", default=None,
        help="Deployment directory (default: public/wasm/pkg)",
    )
    parser.add_argument(
        "--skip-install", action="store_true", default=None,
        help="Don't auto-install rustup, wasm-pack or wasm-bindgen",
    )
    parser.add_argument(
        "--force", action="store_true", default=None,
        help="Exit with an error if no Cargo.toml is found",
    )
    parser.add_argument("--workspace", default=None, help="Repository root (default: current directory)")
    parser.add_argument(
        "--no-isolate", action="store_true", default=False,
        help="Use the ambient RUSTUP_HOME/CARGO_HOME instead of workspace-local ones",
    )
    return parser


def main(argv: list[str] | None = None) -> None:
    """CLI entry point for ``wasmdeploy`` and ``python -m wasmdeploy``."""
    args = build_parser().parse_args(argv)

    try:
        config = Config.from_env(
            workspace=args.workspace,
            out_dir=args.out_dir,
            public_dir=args.public_dir,
            mode=args.mode,
            crate_path=args.crate_path,
            crate_name=args.crate_name,
            skip_install=args.skip_install,
            force=args.force,
            isolate=False if args.no_isolate else None,
        )
    except DeployError as exc:
        print_error(str(exc))
        sys.exit(1)

    print_summary_table(config.describe(), title="Configuration")

    report = asyncio.run(DeployPipeline(config).run())
    if report.exit_code != 0:
        sys.exit(report.exit_code)


if __name__ == "__main__":
    main()
