"""
Main CLI for the shipwright tool.

Provides a unified interface to the release pipeline and the repository
maintenance commands.
"""

from __future__ import annotations

import argparse
import sys

from shipwright import __version__
from shipwright.core.utils import log

PIPELINE_COMMANDS = ("configure", "build", "harvest-prebuilt", "pack", "run-all")


# =============================================================================
# Argument Parsing
# =============================================================================


def _combo_parent() -> argparse.ArgumentParser:
    """Flags selecting the build combo, shared by every pipeline command."""
    parent = argparse.ArgumentParser(add_help=False)
    group = parent.add_argument_group("build combo")
    group.add_argument(
        "--alias",
        help="Named combo to start from (default: the host OS)",
    )
    group.add_argument("--toolchain", help="Override the toolchain (MSVC, Clang, GCC, Emscripten)")
    group.add_argument("--platform", help="Override the target platform")
    group.add_argument("--architecture", help="Override the target architecture")
    group.add_argument("--configuration", help="Override the build configuration (default: Release)")
    group.add_argument(
        "--vfs",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Embed the virtual file system (default: on)",
    )
    group.add_argument(
        "--define", "-D",
        action="append",
        metavar="KEY=VALUE",
        help="Extra generator definition (repeatable, part of the build directory name)",
    )
    group.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Print per-stage timings",
    )
    return parent


def create_parser() -> argparse.ArgumentParser:
    """Create the main argument parser with all subcommands."""

    # Main parser
    parser = argparse.ArgumentParser(
        prog="shipwright",
        description="Release pipeline for multi-target native products",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Commands:
  configure         Generate the build directory for a combo
  build             Bundle content and compile
  harvest-prebuilt  Run built executables to copy prebuilt content
  pack              Create versioned packages
  run-all           configure, build, harvest-prebuilt, build, pack, pack
  inspect           Show the active build, metadata and packages
  format            Format C/C++ sources
  disk              Print directories larger than 1 MiB

Examples:
  shipwright run-all                         # Full release for the host OS
  shipwright build --alias Emscripten        # Build the web combo
  shipwright pack --configuration Debug      # Package a Debug build
  shipwright run-all --resume-from pack      # Only the packaging passes
  shipwright format --validate               # Check formatting in CI
        """,
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    parser.add_argument(
        "--no-color",
        action="store_true",
        help="Disable colored output",
    )

    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Report commands and file changes without running or writing anything",
    )

    # Subparsers
    subparsers = parser.add_subparsers(
        dest="command",
        title="commands",
        metavar="<command>",
    )
    combo = _combo_parent()

    # --- configure ---
    subparsers.add_parser(
        "configure",
        parents=[combo],
        help="Generate the build directory for a combo",
        description="Query git metadata, activate the combo and run the CMake generator.",
    )

    # --- build ---
    build_parser = subparsers.add_parser(
        "build",
        parents=[combo],
        help="Bundle content and compile",
        description="Refresh the embedded file system fragments and run 'cmake --build'.",
    )
    build_parser.add_argument(
        "--target",
        help="Build a single target",
    )
    build_parser.add_argument(
        "--parallel",
        type=int,
        help="Number of parallel build jobs",
    )

    # --- harvest-prebuilt ---
    subparsers.add_parser(
        "harvest-prebuilt",
        parents=[combo],
        help="Run built executables to copy prebuilt content",
        description="Run every prebuild executable with -CopyPrebuiltContent -Exit.",
    )

    # --- pack ---
    subparsers.add_parser(
        "pack",
        parents=[combo],
        help="Create versioned packages",
        description="Package every executable into Build/Packages and mirror outputs to Build/Page.",
    )

    # --- run-all ---
    run_all_parser = subparsers.add_parser(
        "run-all",
        parents=[combo],
        help="Run the whole pipeline",
        description="configure, build, harvest-prebuilt, build, pack, pack.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  shipwright run-all                        # Everything
  shipwright run-all --resume-from build    # Skip configure
        """,
    )
    run_all_parser.add_argument(
        "--resume-from",
        choices=["configure", "build", "harvest-prebuilt", "pack"],
        help="Start at the first occurrence of this stage",
    )

    # --- inspect ---
    subparsers.add_parser(
        "inspect",
        help="Show the active build, metadata and packages",
        description="Inspect the active build directory, its metadata and the packages on disk.",
    )

    # --- format ---
    format_parser = subparsers.add_parser(
        "format",
        help="Format C/C++ sources",
        description="Run clang-format and normalise license headers under Code/.",
    )
    format_parser.add_argument(
        "--validate",
        action="store_true",
        help="Report unformatted files as errors instead of rewriting them",
    )
    format_parser.add_argument(
        "--jobs", "-j",
        type=int,
        help="Maximum concurrent clang-format processes",
    )

    # --- disk ---
    disk_parser = subparsers.add_parser(
        "disk",
        help="Print directories larger than 1 MiB",
        description="Print the approximate size of every large directory below a path.",
    )
    disk_parser.add_argument(
        "path",
        nargs="?",
        help="Directory to scan (default: current directory)",
    )

    return parser


# =============================================================================
# Main Entry Point
# =============================================================================


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)
    log.reset()

    # Handle --no-color
    if args.no_color:
        log.set_color(False)

    # No command specified
    if not args.command:
        parser.print_help()
        return 0

    # Dispatch to command handler
    try:
        if args.command in PIPELINE_COMMANDS:
            from shipwright.build.orchestrator import cmd_pipeline
            return cmd_pipeline(args)

        elif args.command == "inspect":
            from shipwright.build.inspect import cmd_inspect
            return cmd_inspect(args)

        elif args.command == "format":
            from shipwright.commands.format import cmd_format
            return cmd_format(args)

        elif args.command == "disk":
            from shipwright.commands.disk import cmd_disk
            return cmd_disk(args)

        else:
            log.error(f"Unknown command: {args.command}")
            return 1

    except KeyboardInterrupt:
        log.warning("\nInterrupted")
        return 130
    except Exception as e:
        log.error(str(e))
        return 1


if __name__ == "__main__":
    sys.exit(main())
