"""Module Graph Construction.

This module composes the firmware out of its components and aggregates
their build inputs.

Design:
    - Components register themselves once and are never modified afterwards
    - Link order: framework, architecture, modules, firmware
    - Resolution order: architecture, modules, framework (the framework is
      resolved last but linked first)
    - Aggregated sources, include directories and defines keep the first
      occurrence of each entry
    - Explicit dependency edges let the executor build independent modules
      concurrently
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from ..config.firmware_config import FirmwareDescriptor
from .component import Component, ComponentKind, unique


FRAMEWORK_ID = "framework"
DEBUGGER_ID = "debugger"


class ModuleGraphError(Exception):
    """Raised when the component graph cannot be built."""
    pass


class ModuleResolutionError(ModuleGraphError):
    """Raised when the firmware references a component that was never registered."""

    def __init__(self, module_id: str, kind: str = "module"):
        self.module_id = module_id
        self.kind = kind
        super().__init__(f"Unknown {kind} '{module_id}': no component with this id was registered")


@dataclass(frozen=True)
class MergedArchive:
    """Read-only view over the archives merged into ``lib<target>-all.a``."""

    path: Path
    members: Tuple[Path, ...]


@dataclass
class BuildGraph:
    """Result of graph construction.

    Attributes:
        components: Components in link order
        resolution_order: Component ids in the order they were resolved
        dependencies: Component id -> ids it depends on
        sources: Aggregated, deduplicated source files
        include_dirs: Aggregated, deduplicated include directories
        defines: Aggregated, deduplicated preprocessor definitions
    """

    components: List[Component]
    resolution_order: List[str] = field(default_factory=list)
    dependencies: Dict[str, Tuple[str, ...]] = field(default_factory=dict)
    sources: List[Path] = field(default_factory=list)
    include_dirs: List[Path] = field(default_factory=list)
    defines: List[str] = field(default_factory=list)

    def get(self, component_id: str) -> Component:
        for component in self.components:
            if component.id == component_id:
                return component
        raise KeyError(component_id)

    @property
    def framework(self) -> Component:
        return self._single(ComponentKind.FRAMEWORK)

    @property
    def architecture(self) -> Component:
        return self._single(ComponentKind.ARCHITECTURE)

    @property
    def firmware(self) -> Component:
        return self._single(ComponentKind.FIRMWARE)

    @property
    def modules(self) -> List[Component]:
        return [c for c in self.components if c.kind is ComponentKind.MODULE]

    def _single(self, kind: ComponentKind) -> Component:
        for component in self.components:
            if component.kind is kind:
                return component
        raise KeyError(kind.value)

    def effective_include_dirs(self, component: Component) -> List[Path]:
        """Include directories used to compile ``component``.

        The framework and architecture headers are visible to every component.
        """
        return unique(
            list(self.framework.include_dirs)
            + list(self.architecture.include_dirs)
            + list(component.include_dirs)
        )

    def effective_defines(self, component: Component) -> List[str]:
        """Preprocessor definitions used to compile ``component``."""
        return unique(
            list(self.framework.defines)
            + list(self.architecture.defines)
            + list(component.defines)
        )

    def merged_archive(self, path: Path) -> MergedArchive:
        """Archives of every library component, in link order."""
        members = tuple(
            c.output_artifact_path
            for c in self.components
            if not c.is_firmware and c.output_artifact_path is not None
        )
        return MergedArchive(path=path, members=members)


class ModuleGraphBuilder:
    """Builds the ordered component composition of a firmware.

    Example:
        builder = ModuleGraphBuilder()
        for component in ComponentLoader(root, firmware_dir).discover():
            builder.register(component)
        graph = builder.build(descriptor, descriptor.modules)
    """

    def __init__(self, show_progress: bool = False):
        self.show_progress = show_progress
        self._registry: Dict[str, Component] = {}

    @property
    def registered(self) -> List[str]:
        return list(self._registry)

    def register(self, component: Component) -> None:
        """Register a component.

        Args:
            component: Component to register

        Raises:
            ModuleGraphError: If a different component already uses this id
        """
        existing = self._registry.get(component.id)
        if existing is not None:
            if existing == component:
                return
            raise ModuleGraphError(
                f"Component id '{component.id}' is registered twice "
                f"({existing.kind.value} and {component.kind.value})"
            )
        self._registry[component.id] = component

    def register_all(self, components: Iterable[Component]) -> None:
        for component in components:
            self.register(component)

    def _lookup(self, component_id: str, kind: ComponentKind) -> Component:
        component = self._registry.get(component_id)
        if component is None or component.kind is not kind:
            raise ModuleResolutionError(component_id, kind.value)
        return component

    def build(
        self,
        descriptor: FirmwareDescriptor,
        selected_modules: Iterable[str],
        include_debugger: bool = False,
        library_dir: Optional[Path] = None,
    ) -> BuildGraph:
        """Resolve the firmware's components into a build graph.

        Args:
            descriptor: Firmware descriptor
            selected_modules: Module ids in selection order; duplicates collapse
            include_debugger: Append the debugger module
            library_dir: When set, library components get their output archive
                path assigned as ``<library_dir>/lib<id>.a``

        Returns:
            BuildGraph with components in link order

        Raises:
            ModuleResolutionError: If any referenced component is unknown
        """
        resolution_order: List[str] = []

        architecture = self._lookup(descriptor.architecture, ComponentKind.ARCHITECTURE)
        resolution_order.append(architecture.id)

        module_ids = unique(selected_modules)
        if include_debugger and DEBUGGER_ID not in module_ids:
            module_ids.append(DEBUGGER_ID)

        modules = []
        for module_id in module_ids:
            modules.append(self._lookup(module_id, ComponentKind.MODULE))
            resolution_order.append(module_id)

        firmware = self._lookup(descriptor.target_id, ComponentKind.FIRMWARE)

        # Resolved last, linked first
        framework = self._lookup(FRAMEWORK_ID, ComponentKind.FRAMEWORK)
        resolution_order.append(framework.id)

        components = [framework, architecture] + modules + [firmware]

        if library_dir is not None:
            components = [
                c if c.is_firmware or c.output_artifact_path else
                c.with_output(library_dir / f"lib{c.id}.a")
                for c in components
            ]

        dependencies: Dict[str, Tuple[str, ...]] = {
            framework.id: (),
            architecture.id: (framework.id,),
        }
        for module in modules:
            dependencies[module.id] = (framework.id, architecture.id)
        dependencies[firmware.id] = tuple(c.id for c in components if not c.is_firmware)

        graph = BuildGraph(
            components=components,
            resolution_order=resolution_order,
            dependencies=dependencies,
            sources=unique(s for c in components for s in c.sources),
            include_dirs=unique(d for c in components for d in c.include_dirs),
            defines=unique(d for c in components for d in c.defines),
        )

        logging.info(
            f"Resolved {descriptor.target_id}: "
            + " -> ".join(c.id for c in components)
        )
        if self.show_progress:
            print(f"      Components: {len(components)} ({len(modules)} modules)")

        return graph
