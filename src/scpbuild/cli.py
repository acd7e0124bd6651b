"""
Command-line interface for scpbuild.

This module provides the `scpbuild` CLI tool for building firmware and
running the quality assurance targets of a source tree.
"""

import argparse
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from scpbuild import __version__
from scpbuild.build.orchestrator import DEFAULT_TARGET, FirmwareBuildOrchestrator, default_build_dir
from scpbuild.build.tool_runner import ToolInvocationError, ToolRunner
from scpbuild.cli_utils import (
    DefineParseError,
    ErrorFormatter,
    PathValidator,
    parse_define_overrides,
    setup_logging,
)
from scpbuild.config.firmware_config import resolve_firmware_dir
from scpbuild.qa.pipeline import META_TARGETS, QAPipelineError, QARunner, build_pipeline
from scpbuild.qa.source_inventory import default_exclude_patterns, inventory
from scpbuild.qa.tool_probe import ToolAvailability


@dataclass
class BuildArgs:
    """Arguments for the build command."""

    project_dir: Path
    firmware_dir: Path
    target: str = DEFAULT_TARGET
    overrides: Dict[str, str] = field(default_factory=dict)
    toolchain: Optional[str] = None
    toolchain_file: Optional[Path] = None
    sysroot: Optional[str] = None
    build_dir: Optional[Path] = None
    jobs: Optional[int] = None
    verbose: bool = False


@dataclass
class QAArgs:
    """Arguments for the QA commands (format, format-diff, lint, check)."""

    target: str
    project_dir: Path
    build_dir: Optional[Path] = None
    jobs: Optional[int] = None
    verbose: bool = False


def build_command(args: BuildArgs) -> None:
    """Build a firmware.

    Examples:
        scpbuild build juno/scp_romfw                    # Build juno ROM firmware
        scpbuild build juno/scp_romfw -D BUILD_TYPE=Debug
        scpbuild build juno/scp_romfw --target juno-bl1-all
        scpbuild build rdn1e1/scp_ramfw --toolchain Clang --sysroot /opt/sysroot
    """
    print(f"scpbuild v{__version__}")
    print()

    try:
        orchestrator = FirmwareBuildOrchestrator(
            args.project_dir,
            build_dir=args.build_dir,
            jobs=args.jobs,
            verbose=args.verbose,
            runner=ToolRunner(show_progress=args.verbose),
        )

        if args.verbose:
            print(f"Building firmware: {args.firmware_dir}")
            print(f"Build directory: {orchestrator.build_dir}")
            print()
        else:
            print(f"Building firmware: {args.firmware_dir.name}...")

        result = orchestrator.build(
            args.firmware_dir,
            target=args.target,
            overrides=args.overrides,
            toolchain=args.toolchain,
            toolchain_file=args.toolchain_file,
            sysroot=args.sysroot,
        )

        if result.success:
            ErrorFormatter.print_success("Build successful!")
            print()
            if result.merged_archive:
                print(f"Archive: {result.merged_archive}")
            else:
                print(f"Firmware: {result.elf_path}")
                if result.map_path:
                    print(f"Map: {result.map_path}")
                if result.bin_path:
                    print(f"Binary: {result.bin_path}")
            print(f"Build time: {result.build_time:.2f}s")
            sys.exit(0)
        else:
            ErrorFormatter.print_error("Build failed!", result.message)
            sys.exit(1)

    except KeyboardInterrupt:
        ErrorFormatter.handle_keyboard_interrupt()
    except Exception as e:
        ErrorFormatter.handle_unexpected_error(e, args.verbose)


def qa_command(args: QAArgs) -> None:
    """Run a quality assurance target.

    Examples:
        scpbuild check              # Format checks and lint of the current tree
        scpbuild format             # Reformat all sources in place
        scpbuild format-diff        # Reformat the sources modified since HEAD
    """
    try:
        project_dir = args.project_dir.resolve()
        build_dir = args.build_dir or default_build_dir(project_dir)

        tools = ToolAvailability()
        pipeline = build_pipeline(project_dir, tools)
        sources = inventory([project_dir], default_exclude_patterns(project_dir, build_dir))

        if args.verbose:
            print(f"QA tasks: {', '.join(t.id for t in pipeline.concrete_tasks()) or 'none'}")
            print(f"Tools: {', '.join(t.name for t in tools.found()) or 'none'}")
            print(f"Sources: {sources.total()} files")

        runner = QARunner(
            pipeline,
            sources,
            ToolRunner(show_progress=args.verbose),
            project_dir,
            jobs=args.jobs,
            show_progress=args.verbose,
        )
        ran = runner.run(args.target)

        ErrorFormatter.print_success(f"{args.target}: {len(ran)} tasks completed")
        sys.exit(0)

    except (ToolInvocationError, QAPipelineError) as e:
        ErrorFormatter.print_error(f"{args.target} failed!", str(e))
        sys.exit(1)
    except KeyboardInterrupt:
        ErrorFormatter.handle_keyboard_interrupt()
    except Exception as e:
        ErrorFormatter.handle_unexpected_error(e, args.verbose)


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--build-dir",
        type=Path,
        default=None,
        help="Build output directory (default: $SCPBUILD_BUILD_DIR or <project>/build)",
    )
    parser.add_argument(
        "-j",
        "--jobs",
        type=int,
        default=None,
        help="Number of parallel jobs (default: CPU count)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Show verbose output",
    )


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="scpbuild",
        description="scpbuild - firmware composition build orchestrator",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"scpbuild {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # Build command
    build_parser = subparsers.add_parser(
        "build",
        help="Build a firmware",
    )
    build_parser.add_argument(
        "firmware_dir",
        nargs="?",
        type=Path,
        default=Path.cwd(),
        help="Firmware directory, absolute or relative to <project>/product (default: current directory)",
    )
    build_parser.add_argument(
        "--project-dir",
        type=Path,
        default=Path.cwd(),
        help="Project root directory (default: current directory)",
    )
    build_parser.add_argument(
        "-t",
        "--target",
        default=DEFAULT_TARGET,
        help="Build target: 'all' or '<firmware target>-all' (default: all)",
    )
    build_parser.add_argument(
        "-D",
        dest="defines",
        action="append",
        default=[],
        metavar="FLAG=VALUE",
        help="Override a build option (repeatable)",
    )
    build_parser.add_argument(
        "--toolchain",
        default=None,
        help="Toolchain name (selects Toolchain-<name>.ini in the firmware directory)",
    )
    build_parser.add_argument(
        "--toolchain-file",
        type=Path,
        default=None,
        help="Explicit toolchain file",
    )
    build_parser.add_argument(
        "--sysroot",
        default=None,
        help="System root path (required for Clang)",
    )
    _add_common_arguments(build_parser)

    # QA commands
    for target in META_TARGETS:
        qa_parser = subparsers.add_parser(
            target,
            help=f"Run the '{target}' quality assurance target",
        )
        qa_parser.add_argument(
            "project_dir",
            nargs="?",
            type=Path,
            default=Path.cwd(),
            help="Project directory (default: current directory)",
        )
        _add_common_arguments(qa_parser)

    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """scpbuild - firmware composition build orchestrator."""
    parser = create_parser()

    # Parse arguments
    parsed_args = parser.parse_args(argv)

    # If no command specified, show help
    if not parsed_args.command:
        parser.print_help()
        sys.exit(0)

    setup_logging(parsed_args.verbose)

    # Validate project directory exists
    PathValidator.validate_dir(parsed_args.project_dir)

    if parsed_args.command == "build":
        project_dir = parsed_args.project_dir.resolve()
        firmware_dir = resolve_firmware_dir(project_dir, parsed_args.firmware_dir)
        PathValidator.validate_dir(firmware_dir)

        try:
            overrides = parse_define_overrides(parsed_args.defines)
        except DefineParseError as e:
            ErrorFormatter.print_error("Invalid option", str(e))
            sys.exit(2)

        build_args = BuildArgs(
            project_dir=project_dir,
            firmware_dir=firmware_dir,
            target=parsed_args.target,
            overrides=overrides,
            toolchain=parsed_args.toolchain,
            toolchain_file=parsed_args.toolchain_file,
            sysroot=parsed_args.sysroot,
            build_dir=parsed_args.build_dir,
            jobs=parsed_args.jobs,
            verbose=parsed_args.verbose,
        )
        build_command(build_args)
    else:
        qa_args = QAArgs(
            target=parsed_args.command,
            project_dir=parsed_args.project_dir,
            build_dir=parsed_args.build_dir,
            jobs=parsed_args.jobs,
            verbose=parsed_args.verbose,
        )
        qa_command(qa_args)


if __name__ == "__main__":
    main()
