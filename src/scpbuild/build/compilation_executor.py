"""Compilation Executor.

This module turns component sources into object files, archives and the
final firmware executable by invoking the external toolchain.

Design:
    - Wraps ToolRunner for compile, archive and link commands
    - Generates one response file per component for include paths and
      defines (avoids command line length limits)
    - Build type selects the optimization flags
    - Object names embed a hash of the source directory so equally named
      sources of one component do not collide
    - Every compile command is recorded for the compilation database
      (compile_commands.json)
"""

import hashlib
import json
import logging
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from .analyzers import Analyzer
from .component import Component
from .tool_runner import ToolInvocationError, ToolRunner
from .toolchain_selector import ToolchainProfile


BUILD_TYPE_FLAGS: Dict[str, List[str]] = {
    "Debug": ["-O0", "-g"],
    "Release": ["-O3", "-DNDEBUG"],
    "MinSizeRel": ["-Os", "-DNDEBUG"],
    "RelWithDebInfo": ["-O2", "-g", "-DNDEBUG"],
}


class CompilationError(Exception):
    """Raised when compilation operations fail."""
    pass


def object_name(source: Path) -> str:
    """Object file name for a source file."""
    digest = hashlib.sha256(str(source.parent).encode("utf-8")).hexdigest()[:8]
    return f"{source.stem}-{digest}.o"


class CompilationExecutor:
    """Executes compile, archive and link commands.

    This class handles:
    - Compiling every source of a component into its object directory
    - Creating static archives for library components
    - Linking the firmware executable
    """

    def __init__(
        self,
        runner: ToolRunner,
        profile: ToolchainProfile,
        build_type: str = "Release",
        ipo: bool = False,
        analyzers: Optional[Sequence[Analyzer]] = None,
        show_progress: bool = True,
    ):
        """Initialize compilation executor.

        Args:
            runner: Tool runner used for every subprocess
            profile: Active toolchain profile
            build_type: One of Debug, Release, MinSizeRel, RelWithDebInfo
            ipo: Enable inter-procedural optimization
            analyzers: Static analyzers run on every source before it is compiled
            show_progress: Whether to show compilation progress
        """
        if build_type not in BUILD_TYPE_FLAGS:
            raise CompilationError(
                f"Unknown build type '{build_type}'. "
                f"Expected one of: {', '.join(BUILD_TYPE_FLAGS)}"
            )
        self.runner = runner
        self.profile = profile
        self.build_type = build_type
        self.ipo = ipo
        self.analyzers = list(analyzers or [])
        self.show_progress = show_progress
        self.compile_commands: List[Dict[str, Any]] = []
        self._commands_lock = threading.Lock()

    def compiler_command(self) -> str:
        compiler = self.profile.compiler_path()
        return str(compiler) if compiler else self.profile.toolchain.cc

    def archiver_command(self) -> str:
        archiver = self.profile.find_tool(self.profile.toolchain.ar)
        return str(archiver) if archiver else self.profile.toolchain.ar

    def compile_flags(self) -> List[str]:
        flags = self.profile.c_flags()
        flags.extend(BUILD_TYPE_FLAGS[self.build_type])
        if self.ipo:
            flags.append("-flto")
        return flags

    def write_response_file(
        self,
        response_file: Path,
        include_dirs: Sequence[Path],
        defines: Sequence[str],
    ) -> Path:
        """Write include paths and defines to a response file.

        Args:
            response_file: Path of the response file to write
            include_dirs: Include directories
            defines: Preprocessor definitions (NAME or NAME=VALUE)

        Returns:
            Path to the response file
        """
        lines = [f"-I{Path(inc).as_posix()}" for inc in include_dirs]
        lines.extend(f"-D{define}" for define in defines)

        response_file.parent.mkdir(parents=True, exist_ok=True)
        with open(response_file, "w", encoding="utf-8") as f:
            f.write("\n".join(lines))

        return response_file

    def compile_source(self, source: Path, output: Path, response_file: Path) -> Path:
        """Compile a single source file.

        Args:
            source: Source file
            output: Object file to produce
            response_file: Response file with include paths and defines

        Returns:
            Path to the object file

        Raises:
            CompilationError: If the source is missing
            ToolInvocationError: If the compiler fails
        """
        if not source.exists():
            raise CompilationError(f"Source file not found: {source}")

        output.parent.mkdir(parents=True, exist_ok=True)

        cmd = [self.compiler_command()]
        cmd.extend(self.compile_flags())
        cmd.append(f"@{response_file}")
        cmd.extend(["-c", str(source), "-o", str(output)])
        with self._commands_lock:
            self.compile_commands.append({
                "directory": str(output.parent),
                "arguments": cmd,
                "file": str(source),
                "output": str(output),
            })

        self.runner.run(cmd, description=f"Compiling {source.name}...")
        return output

    def write_compile_commands(self, path: Path) -> Path:
        """Write the recorded compile commands as a compilation database.

        Args:
            path: Path of the compile_commands.json file

        Returns:
            Path to the written file
        """
        with self._commands_lock:
            entries = sorted(self.compile_commands, key=lambda entry: entry["file"])

        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(entries, f, indent=2)

        logging.debug(f"Wrote {len(entries)} compile commands to {path}")
        return path

    def analyze_source(
        self,
        source: Path,
        include_dirs: Sequence[Path],
        defines: Sequence[str],
    ) -> None:
        """Run the configured static analyzers on a source file.

        Raises:
            ToolInvocationError: If a non-advisory analyzer reports a failure
        """
        for analyzer in self.analyzers:
            cmd = analyzer.command_for(source, self.compile_flags(), include_dirs, defines)
            try:
                self.runner.run(cmd, description=f"Analyzing {source.name} ({analyzer.name})...")
            except ToolInvocationError as e:
                if not analyzer.advisory or self.runner.aborted:
                    raise
                logging.info(f"{analyzer.name}: {source.name}\n{e.stderr}")

    def compile_component(
        self,
        component: Component,
        include_dirs: Sequence[Path],
        defines: Sequence[str],
        object_dir: Path,
    ) -> List[Path]:
        """Compile every source of a component.

        Args:
            component: Component to compile
            include_dirs: Effective include directories of the component
            defines: Effective defines of the component
            object_dir: Directory receiving the object files

        Returns:
            Object files in source order
        """
        response_file = self.write_response_file(
            object_dir / "flags.rsp", include_dirs, defines
        )

        objects = []
        for source in component.sources:
            self.analyze_source(source, include_dirs, defines)
            output = object_dir / object_name(source)
            objects.append(self.compile_source(source, output, response_file))

        if self.show_progress:
            print(f"      {component.id}: {len(objects)} objects")

        return objects

    def create_archive(self, archive_path: Path, object_files: Sequence[Path]) -> Path:
        """Create a static library archive from object files.

        An archive is produced even for components without sources so that
        every library component has an artifact to link and merge.

        Args:
            archive_path: Path for the output .a file
            object_files: Object files to archive

        Returns:
            Path to the archive

        Raises:
            ToolInvocationError: If the archiver fails
        """
        archive_path.parent.mkdir(parents=True, exist_ok=True)
        if archive_path.exists():
            archive_path.unlink()

        # 'rcs' flags: r=insert/replace, c=create, s=index
        cmd = [self.archiver_command(), "rcs", str(archive_path)]
        cmd.extend(str(obj) for obj in object_files)

        self.runner.run(cmd, description=f"Creating {archive_path.name}...")
        return archive_path

    def link(
        self,
        elf_path: Path,
        object_files: Sequence[Path],
        archives: Sequence[Path],
        extra_flags: Optional[Sequence[str]] = None,
    ) -> Path:
        """Link the firmware executable.

        Args:
            elf_path: Output executable
            object_files: Firmware component objects
            archives: Library archives in link order
            extra_flags: Additional link flags (e.g. map file options)

        Returns:
            Path to the executable

        Raises:
            CompilationError: If the linker reports success but produced nothing
            ToolInvocationError: If the linker fails
        """
        elf_path.parent.mkdir(parents=True, exist_ok=True)

        cmd = [self.compiler_command()]
        cmd.extend(self.profile.link_flags())
        if self.ipo:
            cmd.append("-flto")
        cmd.extend(extra_flags or [])
        cmd.extend(["-o", str(elf_path)])
        cmd.extend(str(obj) for obj in object_files)

        if archives:
            if self.profile.is_armclang:
                cmd.extend(str(a) for a in archives)
            else:
                cmd.append("-Wl,--start-group")
                cmd.extend(str(a) for a in archives)
                cmd.append("-Wl,--end-group")

        self.runner.run(cmd, description=f"Linking {elf_path.name}...")

        if not elf_path.exists():
            raise CompilationError(f"Linker did not produce {elf_path}")

        return elf_path
