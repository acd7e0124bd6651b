"""
Component manifest discovery.

Each component directory carries a ``component.ini`` manifest:

    [component]
    id = clock
    kind = module
    sources = src/*.c
    include_dirs = include
    defines =
        BUILD_HAS_MOD_CLOCK
        CLOCK_MAX_RATE=4

The loader walks the well-known component locations of a project tree:
- framework/                    the framework
- arch/**/                      architecture support libraries
- module/**/                    in-tree modules
- debugger/                     the CLI debugger (optional module)
- <firmware_dir>/               the firmware executable
- <firmware_dir>/module/**/     firmware-local modules
"""

import configparser
from pathlib import Path
from typing import List, Optional

from .component import Component, ComponentKind, unique


MANIFEST_NAME = "component.ini"

GLOB_CHARS = set("*?[")


class ComponentManifestError(Exception):
    """Raised when a component manifest is invalid."""
    pass


def _split_list(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [item for item in value.split() if item]


def load_component(manifest_path: Path, default_kind: Optional[ComponentKind] = None) -> Component:
    """Load a component from its manifest.

    Args:
        manifest_path: Path to a component.ini file
        default_kind: Kind used when the manifest does not declare one

    Returns:
        Component with absolute source and include paths

    Raises:
        ComponentManifestError: If the manifest is malformed, or a
            non-glob source or include path does not exist
    """
    parser = configparser.ConfigParser(
        allow_no_value=True, interpolation=configparser.ExtendedInterpolation()
    )
    try:
        parser.read(manifest_path, encoding="utf-8")
    except configparser.Error as e:
        raise ComponentManifestError(f"Failed to parse {manifest_path}: {e}") from e

    if "component" not in parser:
        raise ComponentManifestError(f"{manifest_path} has no [component] section")

    section = parser["component"]
    base_dir = manifest_path.parent.resolve()

    component_id = (section.get("id") or base_dir.name).strip()

    kind_name = (section.get("kind") or "").strip().lower()
    if kind_name:
        try:
            kind = ComponentKind(kind_name)
        except ValueError:
            valid = ", ".join(k.value for k in ComponentKind)
            raise ComponentManifestError(
                f"{manifest_path}: unknown kind '{kind_name}' (expected one of: {valid})"
            )
    elif default_kind is not None:
        kind = default_kind
    else:
        raise ComponentManifestError(f"{manifest_path} does not declare a `kind`")

    sources: List[Path] = []
    for pattern in _split_list(section.get("sources")):
        if GLOB_CHARS & set(pattern):
            sources.extend(sorted(p.resolve() for p in base_dir.glob(pattern) if p.is_file()))
        else:
            source = (base_dir / pattern).resolve()
            if not source.is_file():
                raise ComponentManifestError(
                    f"{manifest_path}: source file not found: {pattern}"
                )
            sources.append(source)

    include_dirs: List[Path] = []
    for entry in _split_list(section.get("include_dirs")):
        include_dir = (base_dir / entry).resolve()
        if not include_dir.is_dir():
            raise ComponentManifestError(
                f"{manifest_path}: include directory not found: {entry}"
            )
        include_dirs.append(include_dir)

    return Component(
        id=component_id,
        kind=kind,
        sources=tuple(unique(sources)),
        include_dirs=tuple(unique(include_dirs)),
        defines=tuple(unique(_split_list(section.get("defines")))),
    )


class ComponentLoader:
    """Discovers component manifests in a project tree."""

    def __init__(self, project_root: Path, firmware_dir: Path):
        """
        Initialize component loader.

        Args:
            project_root: Project root directory
            firmware_dir: Firmware source directory
        """
        self.project_root = Path(project_root)
        self.firmware_dir = Path(firmware_dir)

    def _manifests(self, directory: Path, recursive: bool) -> List[Path]:
        if not directory.is_dir():
            return []
        if recursive:
            return sorted(directory.rglob(MANIFEST_NAME))
        manifest = directory / MANIFEST_NAME
        return [manifest] if manifest.is_file() else []

    def discover(self) -> List[Component]:
        """
        Load every component manifest of the project.

        Returns:
            Components in discovery order: framework, architectures,
            modules, debugger, firmware

        Raises:
            ComponentManifestError: If any manifest is invalid
        """
        located = [
            (self.project_root / "framework", False, ComponentKind.FRAMEWORK),
            (self.project_root / "arch", True, ComponentKind.ARCHITECTURE),
            (self.project_root / "module", True, ComponentKind.MODULE),
            (self.project_root / "debugger", False, ComponentKind.MODULE),
            (self.firmware_dir / "module", True, ComponentKind.MODULE),
            (self.firmware_dir, False, ComponentKind.FIRMWARE),
        ]

        components = []
        seen_manifests = set()
        for directory, recursive, kind in located:
            for manifest in self._manifests(directory, recursive):
                manifest = manifest.resolve()
                if manifest in seen_manifests:
                    continue
                seen_manifests.add(manifest)
                components.append(load_component(manifest, default_kind=kind))

        return components
