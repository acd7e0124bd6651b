"""
Component model.

A component is one buildable unit of the firmware image: the framework,
the architecture support library, a module, or the firmware executable.
"""

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Iterable, List, Optional, Tuple, TypeVar


T = TypeVar("T")


class ComponentKind(str, Enum):
    """Kinds of components, in link order."""

    FRAMEWORK = "framework"
    ARCHITECTURE = "architecture"
    MODULE = "module"
    FIRMWARE = "firmware"


@dataclass(frozen=True)
class Component:
    """A buildable unit with its own sources, include paths and defines.

    Components are frozen: once registered with the graph builder their
    input sets never change.
    """

    id: str
    kind: ComponentKind
    sources: Tuple[Path, ...] = ()
    include_dirs: Tuple[Path, ...] = ()
    defines: Tuple[str, ...] = ()
    output_artifact_path: Optional[Path] = None

    @property
    def is_firmware(self) -> bool:
        return self.kind is ComponentKind.FIRMWARE

    def with_output(self, output_artifact_path: Path) -> "Component":
        """Return a copy of this component with its output artifact set."""
        return Component(
            id=self.id,
            kind=self.kind,
            sources=self.sources,
            include_dirs=self.include_dirs,
            defines=self.defines,
            output_artifact_path=output_artifact_path,
        )


def unique(items: Iterable[T]) -> List[T]:
    """Drop duplicates, keeping the first occurrence of each item.

    Example:
        >>> unique(["b", "a", "b", "c", "a"])
        ['b', 'a', 'c']
    """
    seen = set()
    result = []
    for item in items:
        if item not in seen:
            seen.add(item)
            result.append(item)
    return result
