"""
Source tree inventory for quality assurance tools.

This module globs the source tree into typed file sets:
- cmake: CMake list files
- markdown: documentation
- yaml: data files
- c: C/C++ sources and headers

Every include root is searched recursively for the globs of each type, then
paths matching any exclude pattern (a regular expression searched in the
absolute path) are dropped. The inventory is recomputed on every call.
"""

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Sequence


DEFAULT_TYPE_GLOBS: Dict[str, List[str]] = {
    "cmake": ["CMakeLists.txt", "*.cmake"],
    "markdown": ["*.md"],
    "yaml": ["*.yml", "*.yaml"],
    "c": ["*.[ch]", "*.[ch]pp", "*.[ch]xx"],
}


def default_exclude_patterns(project_root: Path, build_dir: Optional[Path] = None) -> List[str]:
    """Exclude third-party checkouts (and the build directory) from QA.

    Args:
        project_root: Project root directory
        build_dir: Build output directory, if inside the tree

    Returns:
        List of regular expressions
    """
    root = Path(project_root).resolve().as_posix()
    patterns = [
        f"^{re.escape(root)}/contrib/cmsis/git",
        f"^{re.escape(root)}/contrib/run-clang-format/git",
    ]
    if build_dir is not None:
        patterns.append(f"^{re.escape(Path(build_dir).resolve().as_posix())}/")
    return patterns


@dataclass
class SourceInventory:
    """File sets keyed by type tag.

    Consumers must not rely on the order of the paths within a set.
    """

    files: Dict[str, List[Path]] = field(default_factory=dict)

    def get(self, tag: str) -> List[Path]:
        return self.files.get(tag, [])

    def tags(self) -> List[str]:
        return list(self.files)

    def total(self) -> int:
        return sum(len(paths) for paths in self.files.values())


def inventory(
    include_roots: Iterable[Path],
    exclude_patterns: Sequence[str],
    type_globs: Optional[Mapping[str, Sequence[str]]] = None,
) -> SourceInventory:
    """
    Build the source inventory.

    Args:
        include_roots: Directories searched recursively
        exclude_patterns: Regular expressions; matching absolute paths are dropped
        type_globs: Type tag -> glob patterns (defaults to DEFAULT_TYPE_GLOBS)

    Returns:
        SourceInventory with an entry for every declared type

    Raises:
        re.error: If an exclude pattern is not a valid regular expression
    """
    if type_globs is None:
        type_globs = DEFAULT_TYPE_GLOBS

    roots = [Path(root).resolve() for root in include_roots]
    excludes = [re.compile(pattern) for pattern in exclude_patterns]

    files: Dict[str, List[Path]] = {}
    for tag, globs in type_globs.items():
        seen = set()
        paths = []
        for root in roots:
            if not root.is_dir():
                continue
            for pattern in globs:
                for path in root.rglob(pattern):
                    if not path.is_file() or path in seen:
                        continue
                    seen.add(path)
                    posix = path.as_posix()
                    if any(exclude.search(posix) for exclude in excludes):
                        continue
                    paths.append(path)
        files[tag] = paths

    return SourceInventory(files=files)
