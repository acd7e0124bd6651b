"""Static Analysis Configuration.

This module decides whether and how the static analyzers run alongside
compilation: cppcheck (on unless disabled), clang-tidy and
include-what-you-use (both opt-in). An analyzer whose binary is not on the
search path is left out.
"""

import re
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import List, Mapping, Sequence, Tuple

from ..qa.tool_probe import ToolAvailability
from .toolchain_selector import ToolchainProfile


CLANG_TIDY_NAMES = (
    "clang-tidy",
    "clang-tidy-3.6",
    "clang-tidy-3.7",
    "clang-tidy-3.8",
    "clang-tidy-3.9",
    "clang-tidy-4.0",
    "clang-tidy-5.0",
    "clang-tidy-6.0",
    "clang-tidy-7",
    "clang-tidy-8",
    "clang-tidy-9",
    "clang-tidy-10",
    "clang-tidy-11",
)

ARMCLANG_ANALYSIS_DEFINES = (
    "-D__ARM_PROMISE=__builtin_assume",
    "-D__ARMCC_VERSION=600000",
    "-D__ESCAPE__(x)=(x)",
)


@dataclass(frozen=True)
class Analyzer:
    """A configured static analyzer.

    Attributes:
        name: Analyzer name (cppcheck, clang-tidy, iwyu)
        command: Analyzer command line without per-source arguments
        advisory: When True, a non-zero exit status does not fail the build
    """

    name: str
    command: Tuple[str, ...]
    advisory: bool = False

    def command_for(
        self,
        source: Path,
        compile_flags: Sequence[str],
        include_dirs: Sequence[Path],
        defines: Sequence[str],
    ) -> List[str]:
        """Full command line analyzing ``source``."""
        preprocessor = [f"-I{Path(inc).as_posix()}" for inc in include_dirs]
        preprocessor.extend(f"-D{define}" for define in defines)

        if self.name == "clang-tidy":
            return list(self.command) + [str(source), "--"] + list(compile_flags) + preprocessor
        if self.name == "iwyu":
            return list(self.command) + list(compile_flags) + preprocessor + [str(source)]
        return list(self.command) + preprocessor + [str(source)]


def _cppcheck(
    tools: ToolAvailability,
    profile: ToolchainProfile,
    project_root: Path,
    architecture: str,
) -> List[Analyzer]:
    found = tools.probe("cppcheck")
    if not found.found:
        return []

    command: List[str] = []
    wrapper = project_root / "tools" / "cppcheck_wrapper.py"
    if wrapper.exists():
        # Pre and post cppcheck operations
        command.extend([sys.executable, str(wrapper)])

    command.extend([
        str(found.path),
        "--quiet",
        f"--suppressions-list={project_root / 'tools' / 'cppcheck_suppress_list.txt'}",
        "--enable=all",
        "--error-exitcode=1",
    ])

    processor = profile.toolchain.system_processor or ""
    if architecture == "arm-m":
        if re.search(r"cortex-m(33|55)", processor):
            command.append(f"--library={project_root / '.armv8m.cppcheck.cfg'}")
        elif re.search(r"cortex-m(3|7)", processor):
            command.append(f"--library={project_root / '.armv7m.cppcheck.cfg'}")

    if profile.is_armclang:
        command.append(f"--library={project_root / '.armclang.cppcheck.cfg'}")
    else:
        command.append(f"--library={project_root / '.gnu.cppcheck.cfg'}")

    return [Analyzer("cppcheck", tuple(command))]


def _clang_tidy(tools: ToolAvailability, profile: ToolchainProfile) -> List[Analyzer]:
    found = tools.probe(*CLANG_TIDY_NAMES)
    if not found.found:
        return []

    command = [str(found.path)]
    if profile.toolchain.compiler_target:
        command.append(f"--extra-arg=--target={profile.toolchain.compiler_target}")

    for include_dir in profile.toolchain.implicit_include_dirs:
        command.append("--extra-arg=-isystem")
        command.append(f"--extra-arg={include_dir}")
        command.append("--extra-arg=-fms-extensions")

    if profile.is_armclang:
        command.extend(f"--extra-arg={define}" for define in ARMCLANG_ANALYSIS_DEFINES)

    command.append("--quiet")
    return [Analyzer("clang-tidy", tuple(command))]


def _iwyu(tools: ToolAvailability, profile: ToolchainProfile) -> List[Analyzer]:
    found = tools.probe("iwyu", "include-what-you-use")
    if not found.found:
        return []

    command = [str(found.path)]
    if profile.toolchain.compiler_target:
        command.append(f"--target={profile.toolchain.compiler_target}")

    for include_dir in profile.toolchain.implicit_include_dirs:
        command.extend(["-isystem", include_dir])

    if profile.is_armclang:
        command.extend(ARMCLANG_ANALYSIS_DEFINES)

    # include-what-you-use reports through its exit status even on success
    return [Analyzer("iwyu", tuple(command), advisory=True)]


def configure_analyzers(
    options: Mapping[str, object],
    profile: ToolchainProfile,
    tools: ToolAvailability,
    project_root: Path,
    architecture: str,
) -> List[Analyzer]:
    """Configure the static analyzers for a build.

    Args:
        options: Effective option values (DISABLE_CPPCHECK, ENABLE_CLANG_TIDY,
            ENABLE_IWYU)
        profile: Active toolchain profile
        tools: Tool availability for this invocation
        project_root: Project root holding the analyzer configuration files
        architecture: Firmware architecture (selects cppcheck libraries)

    Returns:
        Analyzers to run on every compiled source
    """
    analyzers: List[Analyzer] = []
    if not options.get("DISABLE_CPPCHECK"):
        analyzers.extend(_cppcheck(tools, profile, project_root, architecture))
    if options.get("ENABLE_CLANG_TIDY"):
        analyzers.extend(_clang_tidy(tools, profile))
    if options.get("ENABLE_IWYU"):
        analyzers.extend(_iwyu(tools, profile))
    return analyzers
