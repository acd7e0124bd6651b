"""Concurrent Build Execution.

This module runs the component builds of a finalized build graph. Every
component is submitted as soon as all of its dependencies have completed,
so independent modules compile concurrently.
Once every component is built the compile commands are written as a
compilation database.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional

from .compilation_executor import CompilationError, CompilationExecutor
from .component import Component
from .module_graph import BuildGraph
from .scheduler import DependencyScheduler


@dataclass
class ComponentBuildResult:
    """Outputs of one component build."""

    component: Component
    objects: List[Path] = field(default_factory=list)
    artifact: Optional[Path] = None


class BuildExecutor:
    """Builds every component of a graph and links the firmware.

    Library components (framework, architecture, modules) are compiled and
    archived; the firmware component is compiled and linked against the
    library archives in link order.
    """

    def __init__(
        self,
        executor: CompilationExecutor,
        object_root: Path,
        jobs: Optional[int] = None,
        show_progress: bool = True,
        compile_commands: Optional[Path] = None,
    ):
        """Initialize build executor.

        Args:
            executor: Compilation executor driving the toolchain
            object_root: Root directory for per-component object files
            jobs: Maximum number of concurrently built components
            show_progress: Whether to show build progress
            compile_commands: Where to write compile_commands.json (None to skip)
        """
        self.executor = executor
        self.object_root = Path(object_root)
        self.jobs = jobs
        self.show_progress = show_progress
        self.compile_commands = Path(compile_commands) if compile_commands else None

    def _build_library(self, graph: BuildGraph, component: Component) -> ComponentBuildResult:
        objects = self.executor.compile_component(
            component,
            graph.effective_include_dirs(component),
            graph.effective_defines(component),
            self.object_root / component.id,
        )
        if component.output_artifact_path is None:
            raise CompilationError(f"Component '{component.id}' has no output archive path")
        archive = self.executor.create_archive(component.output_artifact_path, objects)
        return ComponentBuildResult(component=component, objects=objects, artifact=archive)

    def _build_firmware(
        self,
        graph: BuildGraph,
        component: Component,
        elf_path: Path,
        link_options: List[str],
    ) -> ComponentBuildResult:
        objects = self.executor.compile_component(
            component,
            graph.effective_include_dirs(component),
            graph.effective_defines(component),
            self.object_root / component.id,
        )
        archives = [
            c.output_artifact_path
            for c in reversed(graph.components)
            if not c.is_firmware and c.output_artifact_path is not None
        ]
        elf = self.executor.link(elf_path, objects, archives, link_options)
        return ComponentBuildResult(component=component, objects=objects, artifact=elf)

    def build(
        self,
        graph: BuildGraph,
        elf_path: Path,
        link_options: Optional[List[str]] = None,
    ) -> Dict[str, ComponentBuildResult]:
        """Build the whole graph.

        Args:
            graph: Finalized build graph
            elf_path: Firmware executable to produce
            link_options: Extra firmware link options

        Returns:
            Component id -> ComponentBuildResult

        Raises:
            ToolInvocationError: If any tool fails
        """
        work: Dict[str, Callable[[], ComponentBuildResult]] = {}
        for component in graph.components:
            if component.is_firmware:
                work[component.id] = (
                    lambda c=component: self._build_firmware(graph, c, elf_path, list(link_options or []))
                )
            else:
                work[component.id] = lambda c=component: self._build_library(graph, c)

        scheduler = DependencyScheduler(jobs=self.jobs, on_abort=self.executor.runner.abort)

        if self.show_progress:
            print(f"      Building {len(work)} components with {scheduler.jobs} jobs")

        results = scheduler.execute(work, graph.dependencies)

        if self.compile_commands is not None:
            self.executor.write_compile_commands(self.compile_commands)

        return results
