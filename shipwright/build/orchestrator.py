"""
Pipeline orchestrator for shipwright.

Sequences configure, build, prebuilt content harvesting, rebuild and the
two packaging passes, with per-stage timing.
"""

from __future__ import annotations

import argparse
import time
import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from shipwright.core.errors import MissingCacheError, PipelineError
from shipwright.core.process import Heartbeat, ProcessRunner, ensure_command_exists
from shipwright.core.utils import clear_directory, get_layout, log, remove_tree
from shipwright.build.archive import Archiver, select_archiver
from shipwright.build.bundler import build_vfs, prebuilt_content_dir
from shipwright.build.combo import BuildCombo, BuildContext, ComboOptions, activate, load_active, resolve
from shipwright.build.config import BuildConfig, load_settings
from shipwright.build.metadata import MetadataRecord, query_source_metadata, read_metadata
from shipwright.build.packager import find_executable, pack_all
from shipwright.build.phases import (
    PREBUILT_CONTENT_ARGS,
    extract_downloads,
    generator_arguments,
    run_build,
    run_built_executable,
    run_generator,
)


# =============================================================================
# Stages
# =============================================================================


class Stage(Enum):
    """A re-runnable step of the release pipeline."""

    CONFIGURE = "configure"
    BUILD = "build"
    HARVEST_PREBUILT = "harvest-prebuilt"
    PACK = "pack"


# The first build produces the executable that harvests prebuilt content,
# the second embeds it. The second pack picks up included builds
# extracted by the first.
PIPELINE: tuple[Stage, ...] = (
    Stage.CONFIGURE,
    Stage.BUILD,
    Stage.HARVEST_PREBUILT,
    Stage.BUILD,
    Stage.PACK,
    Stage.PACK,
)


# =============================================================================
# Pipeline Orchestrator
# =============================================================================


class PipelineOrchestrator:
    """Runs pipeline stages for one resolved combo."""

    def __init__(
        self,
        config: BuildConfig,
        runner: Optional[ProcessRunner] = None,
        archiver: Optional[Archiver] = None,
    ):
        self.config = config
        self.layout = config.layout
        self.settings = config.settings
        self.runner = runner or ProcessRunner(dry_run=config.dry_run)
        self.dry_run = config.dry_run or self.runner.dry_run
        self.archiver = archiver or select_archiver(self.settings.archiver, self.runner)
        self.combo = self._resolve_combo()

        # Timing tracking
        self._phase_start: Optional[float] = None
        self._phase_timings: dict[str, float] = {}
        self._run_id: str = ""

    def _generate_run_id(self) -> str:
        """Generate run_id as ISO timestamp + short hash."""
        timestamp = datetime.now().strftime("%Y-%m-%dT%H-%M-%S")
        short_hash = uuid.uuid4().hex[:6]
        return f"{timestamp}_{short_hash}"

    def _start_phase(self, name: str) -> None:
        """Mark start of a phase."""
        self._phase_start = time.time()

    def _end_phase(self, name: str) -> None:
        """Record phase duration."""
        if self._phase_start is not None:
            duration = time.time() - self._phase_start
            self._phase_timings[name] = round(duration, 3)
            self._phase_start = None

    @property
    def phase_timings(self) -> dict[str, float]:
        return dict(self._phase_timings)

    def _resolve_combo(self) -> BuildCombo:
        """Resolve the combo flags, or reuse the active build when none were given."""
        options = self.config.combo_options
        if options.is_empty:
            active = load_active(self.layout)
            if active is not None:
                log.dim(f"Using active build {active.build_dir.name}")
                return active.combo
        return resolve(options, self.settings.alias_table())

    def activate(self) -> BuildContext:
        """Activate this run's combo (idempotent)."""
        return activate(self.layout, self.combo, dry_run=self.dry_run)

    def _read_metadata(self, context: BuildContext) -> Optional[MetadataRecord]:
        try:
            return read_metadata(context.build_dir, self.settings.variable_prefix)
        except MissingCacheError as e:
            log.error(str(e))
            return None

    # -------------------------------------------------------------------------
    # Stages
    # -------------------------------------------------------------------------

    def configure(self) -> bool:
        """Generate the build tree for the combo."""
        log.header("Configuring")
        if not ensure_command_exists("cmake") or not ensure_command_exists("git"):
            return False

        source = query_source_metadata(self.runner, self.layout.repo)
        context = self.activate()
        args = generator_arguments(context, self.settings, source)
        for arg in args:
            log.line(arg)

        # Generated fragments must exist before the generator globs sources
        build_vfs(context, self.settings, None, self.archiver, dry_run=self.dry_run)

        result = run_generator(context, args, self.runner)
        if result.failed:
            log.error("Generator failed")
            return False
        log.success(f"Configured {context.build_dir.name}")
        return True

    def build(self, target: Optional[str] = None, parallel: Optional[int] = None) -> bool:
        """Refresh the embedded bundles and compile."""
        log.header("Building")
        if not ensure_command_exists("cmake"):
            return False

        context = self.activate()
        metadata = self._read_metadata(context)
        if metadata is None:
            return False

        bundled = build_vfs(context, self.settings, metadata, self.archiver, dry_run=self.dry_run)

        result = run_build(
            context,
            self.runner,
            target=target or self.config.target,
            parallel=parallel or self.config.parallel,
            heartbeat_seconds=self.settings.heartbeat_seconds,
        )
        if result.failed:
            log.error("Build failed")
            return False
        log.success("Built")
        return bundled

    def harvest_prebuilt(self) -> bool:
        """Run prebuild executables so they copy prebuilt content.

        Nothing under PrebuiltContent/ is touched unless at least one
        prebuild executable exists.
        """
        log.header("Copying Prebuilt Content")
        context = self.activate()
        metadata = self._read_metadata(context)
        if metadata is None:
            return False

        prebuild = [e for e in self.settings.executables if e.prebuild]
        located = []
        for executable in prebuild:
            if find_executable(context.build_dir, self.combo.configuration, executable) is None:
                log.error(
                    f"Executable does not exist for {executable.name} "
                    f"under {executable.library_dir(context.build_dir)}"
                )
            else:
                located.append(executable)

        if not located:
            return not prebuild

        ok = len(located) == len(prebuild)
        try:
            versioned = prebuilt_content_dir(self.layout, metadata)
        except PipelineError as e:
            log.error(str(e))
            return False

        retry = self.settings.retry.policy()
        clear_directory(self.layout.prebuilt_content, dry_run=self.dry_run)
        with Heartbeat(self.settings.heartbeat_seconds):
            for executable in located:
                library_dirs = [versioned / library for library in executable.resource_libraries]

                def reset(dirs=library_dirs) -> None:
                    for path in dirs:
                        remove_tree(path, dry_run=self.dry_run)

                result = run_built_executable(
                    context, executable, PREBUILT_CONTENT_ARGS, self.runner,
                    retry=retry, before_attempt=reset,
                )
                if result is None or result.failed:
                    log.error(f"{executable.name} failed to copy prebuilt content")
                    reset()
                    ok = False

            extract_downloads(self.layout, self.archiver, dry_run=self.dry_run)
            remove_tree(self.layout.downloads, dry_run=self.dry_run)

        content = self.layout.prebuilt_content
        if not content.is_dir() or not any(content.iterdir()):
            log.line("Prebuilt content directory did not exist or was empty")
        log.success("Copied Prebuilt Content")
        return ok

    def pack(self) -> bool:
        """Package every executable. Failures are per target."""
        log.header("Packing")
        context = self.activate()
        metadata = self._read_metadata(context)
        if metadata is None:
            return False

        results = pack_all(context, self.settings, metadata, self.archiver, dry_run=self.dry_run)
        packed = [path for path in results.values() if path is not None]
        log.success(f"Packed {len(packed)}/{len(results)} targets")
        return len(packed) == len(results)

    # -------------------------------------------------------------------------
    # Full pipeline
    # -------------------------------------------------------------------------

    def run_stage(self, stage: Stage) -> bool:
        if stage is Stage.CONFIGURE:
            return self.configure()
        if stage is Stage.BUILD:
            return self.build()
        if stage is Stage.HARVEST_PREBUILT:
            return self.harvest_prebuilt()
        return self.pack()

    def run_all(self, resume_from: Optional[Stage] = None) -> bool:
        """Run the whole pipeline, or its tail starting at resume_from.

        Later stages still run after a failed stage so every error of the
        run is reported; the return value says whether all stages passed.
        """
        stages = PIPELINE
        if resume_from is not None:
            stages = PIPELINE[PIPELINE.index(resume_from):]

        self._run_id = self._generate_run_id()
        build_start = time.time()
        log.header(f"Release pipeline ({self.combo.alias}, {self.combo.configuration})")
        log.info(f"Run ID: {self._run_id}")

        ok = True
        seen: dict[Stage, int] = {}
        for stage in stages:
            seen[stage] = seen.get(stage, 0) + 1
            phase = f"{stage.value}({seen[stage]})"
            self._start_phase(phase)
            try:
                passed = self.run_stage(stage)
            finally:
                self._end_phase(phase)
            ok = passed and ok

        log.header("PIPELINE COMPLETE" if ok else "PIPELINE FINISHED WITH ERRORS")
        log.info(f"Total time: {time.time() - build_start:.1f}s")
        if self.config.verbose:
            for phase, duration in self._phase_timings.items():
                log.info(f"  {phase}: {duration:.1f}s")
        return ok


# =============================================================================
# CLI Entry Point
# =============================================================================


def combo_options_from_args(args: argparse.Namespace) -> ComboOptions:
    """Collect the combo flags shared by all pipeline commands."""
    return ComboOptions(
        alias=getattr(args, "alias", None),
        toolchain=getattr(args, "toolchain", None),
        platform=getattr(args, "platform", None),
        architecture=getattr(args, "architecture", None),
        configuration=getattr(args, "configuration", None),
        vfs=getattr(args, "vfs", None),
        defines=tuple(getattr(args, "define", None) or ()),
    )


def cmd_pipeline(args: argparse.Namespace) -> int:
    """Entry point for configure, build, harvest-prebuilt, pack and run-all."""
    layout = get_layout()
    config = BuildConfig(
        layout=layout,
        settings=load_settings(layout),
        combo_options=combo_options_from_args(args),
        dry_run=getattr(args, "dry_run", False),
        verbose=getattr(args, "verbose", False),
        target=getattr(args, "target", None),
        parallel=getattr(args, "parallel", None),
    )
    orchestrator = PipelineOrchestrator(config)

    if args.command == "run-all":
        resume = Stage(args.resume_from) if getattr(args, "resume_from", None) else None
        orchestrator.run_all(resume_from=resume)
    else:
        orchestrator.run_stage(Stage(args.command))

    return 1 if log.error_count else 0
