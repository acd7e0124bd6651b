"""Merged Archive Creation.

This module implements the ``<firmware target>-all`` target, which merges
every component archive into a single ``lib<target>-all.a`` thin archive.

Design:
    - Only run when explicitly requested, never as part of the default build
    - Requires the firmware executable to exist already
    - Members keep the component link order
"""

from pathlib import Path
from typing import Optional

from .module_graph import BuildGraph, MergedArchive
from .tool_runner import ToolRunner
from .toolchain_selector import ToolchainProfile


class ArchiveMergeError(Exception):
    """Raised when the merged archive cannot be created."""
    pass


def merged_archive_path(output_dir: Path, target_id: str) -> Path:
    """Location of the merged archive for a firmware target."""
    return Path(output_dir) / f"lib{target_id}-all.a"


class ArchiveMerger:
    """Merges all component archives into one thin archive."""

    def __init__(self, profile: ToolchainProfile, runner: ToolRunner, show_progress: bool = True):
        self.profile = profile
        self.runner = runner
        self.show_progress = show_progress

    def archiver(self) -> str:
        found = self.profile.find_tool(self.profile.toolchain.ar)
        return str(found) if found else self.profile.toolchain.ar

    def merge(
        self,
        graph: BuildGraph,
        firmware_elf: Path,
        output_dir: Path,
        target_id: Optional[str] = None,
    ) -> MergedArchive:
        """Merge every component archive into ``lib<target>-all.a``.

        Args:
            graph: Build graph with component output paths assigned
            firmware_elf: Firmware executable; must already be built
            output_dir: Directory receiving the merged archive
            target_id: Firmware target id (defaults to the firmware component id)

        Returns:
            MergedArchive describing the created archive

        Raises:
            ArchiveMergeError: If the firmware or a member archive is missing
            ToolInvocationError: If the archiver fails
        """
        if not firmware_elf.exists():
            raise ArchiveMergeError(
                f"Firmware executable {firmware_elf} has not been built yet"
            )

        target_id = target_id or graph.firmware.id
        merged = graph.merged_archive(merged_archive_path(output_dir, target_id))

        missing = [str(member) for member in merged.members if not member.exists()]
        if missing:
            raise ArchiveMergeError(
                "Missing component archives:\n  " + "\n  ".join(missing)
            )

        merged.path.parent.mkdir(parents=True, exist_ok=True)
        if merged.path.exists():
            merged.path.unlink()

        # 'rcT': r=insert, c=create, T=thin archive referencing the members
        cmd = [self.archiver(), "rcT", str(merged.path)]
        cmd.extend(str(member) for member in merged.members)

        self.runner.run(
            cmd,
            description=f" Merging all libraries in a single {merged.path.name}",
        )

        if self.show_progress:
            print(f"✓ Created {merged.path.name} from {len(merged.members)} archives")

        return merged
