"""Firmware Artifact Post-Processing.

This module handles the artifacts generated around the firmware executable:
the link map and the optional flat binary image.

Design:
    - create_executable() returns an explicit handle for the firmware
      executable; callers pass that handle to post_process() after linking
    - Map file options differ by toolchain family, the result does not:
      ``<output dir>/<base name>.map``
    - Flat binary extraction prefers the vendor tool (fromelf), falls back to
      objcopy and is skipped when neither is available
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from .component import Component
from .module_graph import BuildGraph
from .tool_runner import ToolRunner
from .toolchain_selector import ToolchainProfile


EXECUTABLE_SUFFIX = ".elf"


class PostProcessError(Exception):
    """Raised when post-processing is requested for an invalid target."""
    pass


@dataclass(frozen=True)
class ExecutableHandle:
    """Handle for the firmware executable created for a build graph."""

    component: Component
    output_name: str
    output_dir: Path

    @property
    def elf_path(self) -> Path:
        return self.output_dir / f"{self.output_name}{EXECUTABLE_SUFFIX}"

    @property
    def map_path(self) -> Path:
        return self.output_dir / f"{self.output_name}.map"

    @property
    def bin_path(self) -> Path:
        return self.output_dir / f"{self.output_name}.bin"


@dataclass
class PostProcessResult:
    """Artifacts produced by post-processing."""

    map_path: Optional[Path]
    bin_path: Optional[Path] = None
    extractor: Optional[str] = None
    skipped: List[str] = field(default_factory=list)


def create_executable(
    graph: BuildGraph,
    output_dir: Path,
    output_name: Optional[str] = None,
) -> ExecutableHandle:
    """Create the handle of the firmware executable.

    Args:
        graph: Build graph containing the firmware component
        output_dir: Directory receiving the executable (``<build>/bin``)
        output_name: Fixed output base name; defaults to the firmware target id

    Returns:
        ExecutableHandle
    """
    firmware = graph.firmware
    return ExecutableHandle(
        component=firmware,
        output_name=output_name or firmware.id,
        output_dir=Path(output_dir),
    )


class ArtifactPostProcessor:
    """Generates the link map and flat binary of the firmware executable.

    Example:
        processor = ArtifactPostProcessor(profile, runner, generate_flat_binary=True)
        handle = create_executable(graph, build_dir / "bin", "scp_romfw")
        link_options = processor.map_link_options(handle)
        ... link handle.elf_path with link_options ...
        result = processor.post_process(handle)
    """

    def __init__(
        self,
        profile: ToolchainProfile,
        runner: ToolRunner,
        generate_flat_binary: bool = False,
        show_progress: bool = True,
    ):
        """Initialize post-processor.

        Args:
            profile: Active toolchain profile
            runner: Tool runner for the binary extractors
            generate_flat_binary: Extract a flat binary after linking
            show_progress: Whether to show progress
        """
        self.profile = profile
        self.runner = runner
        self.generate_flat_binary = generate_flat_binary
        self.show_progress = show_progress

    @staticmethod
    def _check_firmware(handle: ExecutableHandle) -> None:
        if not handle.component.is_firmware:
            raise PostProcessError(
                f"Post-processing only applies to the firmware executable, "
                f"not {handle.component.kind.value} '{handle.component.id}'"
            )

    def map_link_options(self, handle: ExecutableHandle) -> List[str]:
        """Link options that make the linker write the map file.

        Args:
            handle: Firmware executable handle

        Returns:
            Linker options for the active toolchain family
        """
        self._check_firmware(handle)
        map_path = handle.map_path.as_posix()
        if self.profile.is_armclang:
            return ["-Wl,--map", f"-Wl,--list={map_path}"]
        return ["-Wl,--cref", f"-Wl,-Map={map_path}"]

    def find_fromelf(self) -> Optional[Path]:
        """Locate Arm Compiler's fromelf beside the compiler, then on PATH."""
        if not self.profile.is_armclang:
            return None
        return self.profile.find_tool("fromelf")

    def find_objcopy(self) -> Optional[Path]:
        return self.profile.find_tool(self.profile.toolchain.objcopy)

    def extract_flat_binary(self, handle: ExecutableHandle) -> PostProcessResult:
        """Extract the flat binary if an extractor is available.

        Args:
            handle: Firmware executable handle

        Returns:
            PostProcessResult; ``bin_path`` is None when no extractor exists

        Raises:
            ToolInvocationError: If the extractor runs and fails
        """
        result = PostProcessResult(map_path=handle.map_path)

        fromelf = self.find_fromelf()
        if fromelf is not None:
            cmd = [
                str(fromelf),
                "--bin", str(handle.elf_path),
                "--output", str(handle.bin_path),
            ]
            result.extractor = "fromelf"
        else:
            objcopy = self.find_objcopy()
            if objcopy is None:
                result.skipped.append("flat-binary")
                return result
            cmd = [str(objcopy), "-O", "binary", str(handle.elf_path), str(handle.bin_path)]
            result.extractor = "objcopy"

        self.runner.run(cmd, description=f"Generating flat binary {handle.bin_path.name}")
        result.bin_path = handle.bin_path

        if self.show_progress and handle.bin_path.exists():
            size = handle.bin_path.stat().st_size
            print(f"✓ Created {handle.bin_path.name}: {size:,} bytes ({size / 1024:.2f} KB)")

        return result

    def post_process(self, handle: ExecutableHandle) -> PostProcessResult:
        """Run post-build steps for the firmware executable.

        Args:
            handle: Firmware executable handle

        Returns:
            PostProcessResult

        Raises:
            PostProcessError: If the handle is not the firmware executable
            ToolInvocationError: If a post-processing tool fails
        """
        self._check_firmware(handle)

        if self.generate_flat_binary:
            result = self.extract_flat_binary(handle)
        else:
            result = PostProcessResult(map_path=handle.map_path)

        if not handle.map_path.exists():
            result.map_path = None

        return result
