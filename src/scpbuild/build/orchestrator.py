"""
Build orchestration for scpbuild firmware.

This module coordinates the entire build of a firmware, from reading its
firmware.ini to producing the executable and its post-build artifacts:
- Configuration loading (firmware.ini, component.ini manifests)
- Option resolution against the persisted build state
- Toolchain selection and the IPO decision
- Module graph construction
- Concurrent component builds and the firmware link
- Post-processing (link map, flat binary) and the merged archive target

Every configuration and resolution step completes before the first external
tool is spawned, so configuration errors never leave partial build output.
"""

import logging
import os
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from ..config.firmware_config import FirmwareConfigError, FirmwareDescriptor, load_firmware_descriptor
from ..qa.tool_probe import ToolAvailability
from ..state.build_state import BuildStateError, BuildStateStore
from .analyzers import Analyzer, configure_analyzers
from .archive_merger import ArchiveMergeError, ArchiveMerger
from .build_executor import BuildExecutor
from .compilation_executor import CompilationError, CompilationExecutor
from .component_loader import ComponentLoader, ComponentManifestError
from .module_graph import BuildGraph, ModuleGraphBuilder, ModuleGraphError
from .option_resolver import BUILD_TYPES, OptionResolver, ResolvedOption, builtin_options
from .post_processor import ArtifactPostProcessor, ExecutableHandle, PostProcessError, create_executable
from .scheduler import SchedulingError
from .tool_runner import ToolInvocationError, ToolRunner
from .toolchain_selector import ToolchainProfile, ToolchainSelectionError, ToolchainSelector, decide_ipo


BUILD_DIR_ENV = "SCPBUILD_BUILD_DIR"
BUILD_STATE_NAME = "build-state.json"
DEFAULT_TARGET = "all"
TOOLCHAIN_FILE_KEY = "toolchain:file"
TOOLCHAIN_COMPILER_KEY = "toolchain:compiler_id"
TOOLCHAIN_SYSROOT_KEY = "toolchain:sysroot"


def default_build_dir(project_root: Path) -> Path:
    """Build output directory: ``$SCPBUILD_BUILD_DIR`` or ``<root>/build``."""
    env_dir = os.environ.get(BUILD_DIR_ENV)
    if env_dir:
        return Path(env_dir).resolve()
    return Path(project_root).resolve() / "build"


@dataclass
class BuildResult:
    """Result of a complete build operation."""

    success: bool
    elf_path: Optional[Path]
    map_path: Optional[Path]
    bin_path: Optional[Path]
    merged_archive: Optional[Path]
    build_time: float
    message: str


class BuildOrchestratorError(Exception):
    """Exception raised for build orchestration errors."""
    pass


@dataclass
class BuildConfiguration:
    """Everything decided before the first tool runs."""

    project_root: Path
    build_dir: Path
    descriptor: FirmwareDescriptor
    store: BuildStateStore
    options: Dict[str, ResolvedOption]
    profile: ToolchainProfile
    graph: BuildGraph
    ipo: bool
    analyzers: List[Analyzer] = field(default_factory=list)

    def value(self, option_id: str) -> Any:
        return self.options[option_id].value

    @property
    def firmware_build_dir(self) -> Path:
        return self.build_dir / self.descriptor.binary_dir

    @property
    def output_name(self) -> str:
        return (
            self.value("OVERRIDE_FIRMWARE_NAME")
            or self.descriptor.override_name
            or self.descriptor.target_id
        )


class FirmwareBuildOrchestrator:
    """
    Orchestrates the complete build of a firmware.

    Phases:
    1. Load firmware.ini
    2. Resolve build options
    3. Select the toolchain
    4. Discover components and build the module graph
    5. Build components and link the firmware
    6. Post-process (map file, flat binary)

    Example usage:
        orchestrator = FirmwareBuildOrchestrator(Path("."), verbose=True)
        result = orchestrator.build(Path("juno/scp_romfw"))
        if result.success:
            print(f"Firmware: {result.elf_path}")
    """

    def __init__(
        self,
        project_root: Path,
        build_dir: Optional[Path] = None,
        jobs: Optional[int] = None,
        verbose: bool = False,
        tools: Optional[ToolAvailability] = None,
        runner: Optional[ToolRunner] = None,
    ):
        """
        Initialize build orchestrator.

        Args:
            project_root: Project root directory
            build_dir: Build output directory (defaults to default_build_dir())
            jobs: Maximum number of concurrent component builds
            verbose: Enable verbose output
            tools: Tool availability for this invocation (probed lazily if None)
            runner: Tool runner shared by every build step
        """
        self.project_root = Path(project_root).resolve()
        self.build_dir = Path(build_dir).resolve() if build_dir else default_build_dir(self.project_root)
        self.jobs = jobs
        self.verbose = verbose
        self.tools = tools or ToolAvailability()
        self.runner = runner or ToolRunner()

    def configure(
        self,
        firmware_dir: Path,
        overrides: Optional[Mapping[str, Any]] = None,
        toolchain: Optional[str] = None,
        toolchain_file: Optional[Path] = None,
        sysroot: Optional[str] = None,
    ) -> BuildConfiguration:
        """
        Resolve the build configuration of a firmware.

        Args:
            firmware_dir: Firmware source directory (absolute or below
                ``<root>/product``)
            overrides: Explicit option overrides keyed by option id
            toolchain: Toolchain name overriding the firmware's default
            toolchain_file: Explicit toolchain file
            sysroot: System root for Clang builds

        Returns:
            BuildConfiguration

        Raises:
            FirmwareConfigError: If firmware.ini is missing or incomplete
            BuildOrchestratorError: If an option value is invalid
            ToolchainSelectionError: If the toolchain cannot be selected
            ComponentManifestError: If a component manifest is invalid
            ModuleGraphError: If a component cannot be resolved
        """
        overrides = dict(overrides or {})

        # Phase 1: firmware description
        if self.verbose:
            print("[1/6] Loading firmware configuration...")

        descriptor = load_firmware_descriptor(self.project_root, Path(firmware_dir))

        if self.verbose:
            print(f"      Firmware: {descriptor.name} ({descriptor.target_id})")
            print(f"      Architecture: {descriptor.architecture}")

        # Phase 2: options
        if self.verbose:
            print("[2/6] Resolving build options...")

        store = BuildStateStore(self.build_dir / BUILD_STATE_NAME)
        flags = builtin_options(descriptor.option_hints, descriptor.architecture)

        for option_id in overrides:
            if option_id not in flags:
                logging.warning(f"Ignoring override of unknown option {option_id}")

        options = OptionResolver(store).resolve_all(flags.values(), overrides)

        build_type = options["BUILD_TYPE"].value
        if build_type not in BUILD_TYPES:
            raise BuildOrchestratorError(
                f"Invalid BUILD_TYPE '{build_type}'. Expected one of: {', '.join(BUILD_TYPES)}"
            )

        if self.verbose:
            for resolved in options.values():
                print(f"      {resolved.flag.id} = {resolved.value} ({resolved.source.value})")

        # Phase 3: toolchain
        if self.verbose:
            print("[3/6] Selecting toolchain...")

        explicit_file = toolchain_file
        if explicit_file is None and toolchain is None and store.contains(TOOLCHAIN_FILE_KEY):
            explicit_file = Path(store.get(TOOLCHAIN_FILE_KEY))
            logging.info(f"Using pinned toolchain file {explicit_file}")
        if sysroot is None and toolchain is None and store.contains(TOOLCHAIN_SYSROOT_KEY):
            sysroot = store.get(TOOLCHAIN_SYSROOT_KEY)
            logging.info(f"Using pinned sysroot {sysroot}")

        profile = ToolchainSelector(descriptor.source_dir).select(
            descriptor.toolchain_hint,
            explicit_toolchain_file=explicit_file,
            requested_toolchain_name=toolchain,
            sysroot_path=sysroot,
        )
        if profile.toolchain_file is not None:
            store.set(TOOLCHAIN_FILE_KEY, str(profile.toolchain_file))
        store.set(TOOLCHAIN_COMPILER_KEY, profile.compiler_id)
        if profile.sysroot_path:
            store.set(TOOLCHAIN_SYSROOT_KEY, profile.sysroot_path)
        else:
            store.delete(TOOLCHAIN_SYSROOT_KEY)
        ipo = decide_ipo(profile, options["ENABLE_IPO"].value, options["ENABLE_IPO"].explicit)

        if self.verbose:
            print(f"      Toolchain: {profile.name or 'host'} ({profile.compiler_id})")
            print(f"      IPO: {'enabled' if ipo else 'disabled'}")

        # Phase 4: module graph
        if self.verbose:
            print("[4/6] Resolving components...")

        builder = ModuleGraphBuilder(show_progress=self.verbose)
        builder.register_all(ComponentLoader(self.project_root, descriptor.source_dir).discover())
        logging.debug(f"Registered components: {', '.join(sorted(builder.registered))}")
        firmware_build_dir = self.build_dir / descriptor.binary_dir
        graph = builder.build(
            descriptor,
            descriptor.modules,
            include_debugger=options["ENABLE_DEBUGGER"].value,
            library_dir=firmware_build_dir / "lib",
        )

        values = {option_id: resolved.value for option_id, resolved in options.items()}
        analyzers = configure_analyzers(
            values, profile, self.tools, self.project_root, descriptor.architecture
        )
        if analyzers:
            logging.info(f"Static analyzers: {', '.join(a.name for a in analyzers)}")

        store.save()

        return BuildConfiguration(
            project_root=self.project_root,
            build_dir=self.build_dir,
            descriptor=descriptor,
            store=store,
            options=options,
            profile=profile,
            graph=graph,
            ipo=ipo,
            analyzers=analyzers,
        )

    def executable_for(self, configuration: BuildConfiguration) -> ExecutableHandle:
        return create_executable(
            configuration.graph, self.build_dir / "bin", configuration.output_name
        )

    def _compile_and_link(self, configuration: BuildConfiguration) -> BuildResult:
        start_time = time.time()

        handle = self.executable_for(configuration)
        post_processor = ArtifactPostProcessor(
            configuration.profile,
            self.runner,
            generate_flat_binary=configuration.value("GENERATE_FLAT_BINARY"),
            show_progress=self.verbose,
        )

        # Phase 5: compile and link
        if self.verbose:
            print("[5/6] Building components...")

        executor = CompilationExecutor(
            self.runner,
            configuration.profile,
            build_type=configuration.value("BUILD_TYPE"),
            ipo=configuration.ipo,
            analyzers=configuration.analyzers,
            show_progress=self.verbose,
        )
        BuildExecutor(
            executor,
            configuration.firmware_build_dir / "obj",
            jobs=self.jobs,
            show_progress=self.verbose,
            compile_commands=configuration.build_dir / "compile_commands.json",
        ).build(configuration.graph, handle.elf_path, post_processor.map_link_options(handle))

        # Phase 6: post-processing
        if self.verbose:
            print("[6/6] Post-processing...")

        artifacts = post_processor.post_process(handle)
        for skipped in artifacts.skipped:
            logging.info(f"Skipped {skipped}: no extractor available")

        return BuildResult(
            success=True,
            elf_path=handle.elf_path,
            map_path=artifacts.map_path,
            bin_path=artifacts.bin_path,
            merged_archive=None,
            build_time=time.time() - start_time,
            message="Build successful",
        )

    def merge_all(self, configuration: BuildConfiguration) -> Path:
        """
        Create the merged ``<target>-all`` archive of an already built firmware.

        Raises:
            ArchiveMergeError: If the firmware or a component archive is missing
            ToolInvocationError: If the archiver fails
        """
        handle = self.executable_for(configuration)
        merged = ArchiveMerger(configuration.profile, self.runner, self.verbose).merge(
            configuration.graph,
            handle.elf_path,
            configuration.firmware_build_dir,
            configuration.descriptor.target_id,
        )
        return merged.path

    def build(
        self,
        firmware_dir: Path,
        target: str = DEFAULT_TARGET,
        overrides: Optional[Mapping[str, Any]] = None,
        toolchain: Optional[str] = None,
        toolchain_file: Optional[Path] = None,
        sysroot: Optional[str] = None,
    ) -> BuildResult:
        """
        Execute a build target.

        Args:
            firmware_dir: Firmware source directory
            target: ``all`` (default build) or ``<target>-all`` (merged archive)
            overrides: Explicit option overrides keyed by option id
            toolchain: Toolchain name overriding the firmware's default
            toolchain_file: Explicit toolchain file
            sysroot: System root for Clang builds

        Returns:
            BuildResult with build status and output paths
        """
        start_time = time.time()

        try:
            configuration = self.configure(firmware_dir, overrides, toolchain, toolchain_file, sysroot)
            merged_target = configuration.descriptor.merged_target

            if target == DEFAULT_TARGET:
                result = self._compile_and_link(configuration)
            elif target == merged_target:
                handle = self.executable_for(configuration)
                merged_path = self.merge_all(configuration)
                if self.verbose:
                    print(f"✓ Created {merged_path.name}")
                result = BuildResult(
                    success=True,
                    elf_path=handle.elf_path,
                    map_path=None,
                    bin_path=None,
                    merged_archive=merged_path,
                    build_time=0.0,
                    message="Merged archive created",
                )
            else:
                raise BuildOrchestratorError(
                    f"Unknown build target '{target}'. Expected '{DEFAULT_TARGET}' or '{merged_target}'"
                )

            result.build_time = time.time() - start_time
            configuration.store.save()

            if self.verbose:
                print(f"Build time: {result.build_time:.2f}s")

            return result

        except (
            BuildOrchestratorError,
            FirmwareConfigError,
            BuildStateError,
            ToolchainSelectionError,
            ComponentManifestError,
            ModuleGraphError,
            CompilationError,
            ToolInvocationError,
            SchedulingError,
            PostProcessError,
            ArchiveMergeError,
        ) as e:
            return BuildResult(
                success=False,
                elf_path=None,
                map_path=None,
                bin_path=None,
                merged_archive=None,
                build_time=time.time() - start_time,
                message=str(e),
            )
