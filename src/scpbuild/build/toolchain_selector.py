"""Toolchain Selection.

This module picks the toolchain a firmware is built with and derives the
compiler profile (language standard, extensions, sysroot, IPO) from it.

Design:
    - An explicitly pinned toolchain file always wins
    - Otherwise the firmware's hint (or the user's requested name) is mapped
      to ``<firmware_dir>/Toolchain-<name>.ini``
    - Clang without a sysroot is rejected before anything else happens
    - The cross-compilation IPO rule is policy, not hard-wired logic
"""

import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import FrozenSet, List, Optional

from ..config.toolchain_file import (
    ToolchainFile,
    ToolchainFileError,
    host_toolchain,
    load_toolchain_file,
    toolchain_file_name,
)


class ToolchainSelectionError(Exception):
    """Raised when the toolchain configuration is invalid."""
    pass


@dataclass(frozen=True)
class ToolchainProfile:
    """Active compiler configuration for a build."""

    compiler_id: str
    toolchain: ToolchainFile
    standard: str = "C11"
    extensions_enabled: bool = True
    cross_compiling: bool = False
    sysroot_path: Optional[str] = None
    name: Optional[str] = None

    @property
    def toolchain_file(self) -> Optional[Path]:
        return self.toolchain.path

    @property
    def is_armclang(self) -> bool:
        return self.compiler_id == "ARMClang"

    def standard_flag(self) -> str:
        """Return the -std= flag for the configured standard."""
        version = self.standard.lower().lstrip("c")
        prefix = "gnu" if self.extensions_enabled else "c"
        return f"-std={prefix}{version}"

    def c_flags(self) -> List[str]:
        """Compiler flags implied by the profile."""
        flags = [self.standard_flag()]
        flags.extend(self.toolchain.c_flags)
        if self.compiler_id == "Clang":
            # `__declspec` support has to be enabled explicitly
            flags.append("-fms-extensions")
        if self.sysroot_path:
            flags.append(f"--sysroot={self.sysroot_path}")
        return flags

    def link_flags(self) -> List[str]:
        flags = list(self.toolchain.link_flags)
        if self.sysroot_path:
            flags.append(f"--sysroot={self.sysroot_path}")
        return flags

    def find_tool(self, tool: Optional[str]) -> Optional[Path]:
        """Locate a toolchain binary.

        Absolute paths are used as-is. Bare names are looked up next to the
        compiler first and then on PATH.
        """
        if not tool:
            return None

        candidate = Path(tool)
        if candidate.is_absolute():
            return candidate if candidate.exists() else None

        compiler = self.compiler_path()
        if compiler is not None:
            sibling = compiler.parent / tool
            if sibling.exists():
                return sibling

        found = shutil.which(tool)
        return Path(found) if found else None

    def compiler_path(self) -> Optional[Path]:
        cc = Path(self.toolchain.cc)
        if cc.is_absolute():
            return cc
        found = shutil.which(self.toolchain.cc)
        return Path(found) if found else None


@dataclass(frozen=True)
class IpoPolicy:
    """Policy for inter-procedural optimization.

    Attributes:
        trusted_cross_families: Compiler families for which IPO is forced on
            when cross compiling and the user explicitly asked for it
    """

    trusted_cross_families: FrozenSet[str] = field(default_factory=lambda: frozenset({"GNU"}))


class ToolchainSelector:
    """Selects the active toolchain for a firmware.

    Example:
        selector = ToolchainSelector(firmware_dir)
        profile = selector.select("GNU")
        # -> uses <firmware_dir>/Toolchain-GNU.ini
    """

    def __init__(self, firmware_dir: Path):
        """Initialize toolchain selector.

        Args:
            firmware_dir: Firmware source directory holding toolchain files
        """
        self.firmware_dir = Path(firmware_dir)

    def toolchain_file_for(self, name: str) -> Path:
        return self.firmware_dir / toolchain_file_name(name)

    def select(
        self,
        firmware_toolchain_hint: Optional[str],
        explicit_toolchain_file: Optional[Path] = None,
        requested_toolchain_name: Optional[str] = None,
        sysroot_path: Optional[str] = None,
    ) -> ToolchainProfile:
        """Select the toolchain profile.

        Args:
            firmware_toolchain_hint: Firmware's default toolchain name
            explicit_toolchain_file: Toolchain file pinned by the user
            requested_toolchain_name: User override of the toolchain name
            sysroot_path: System root for Clang builds

        Returns:
            ToolchainProfile

        Raises:
            ToolchainSelectionError: If Clang is selected without a sysroot
                or the toolchain file is invalid
        """
        if explicit_toolchain_file is not None:
            # The file decides the toolchain; the firmware hint does not apply
            name = requested_toolchain_name
        else:
            name = requested_toolchain_name or firmware_toolchain_hint

        if name == "Clang" and not sysroot_path:
            raise ToolchainSelectionError(
                "When Clang is set as toolchain a sysroot path (--sysroot) must be defined"
            )

        try:
            if explicit_toolchain_file is not None:
                toolchain = load_toolchain_file(Path(explicit_toolchain_file))
            elif name:
                toolchain = load_toolchain_file(self.toolchain_file_for(name))
            else:
                toolchain = host_toolchain()
        except ToolchainFileError as e:
            raise ToolchainSelectionError(str(e)) from e

        sysroot = sysroot_path or toolchain.sysroot
        if toolchain.compiler_id == "Clang" and not sysroot:
            raise ToolchainSelectionError(
                "When Clang is set as toolchain a sysroot path (--sysroot) must be defined"
            )

        return ToolchainProfile(
            compiler_id=toolchain.compiler_id,
            toolchain=toolchain,
            cross_compiling=toolchain.cross_compiling,
            sysroot_path=sysroot,
            name=name,
        )


def decide_ipo(
    profile: ToolchainProfile,
    enable_ipo: bool,
    explicitly_requested: bool,
    policy: Optional[IpoPolicy] = None,
) -> bool:
    """Decide whether inter-procedural optimization is enabled.

    Native builds use IPO whenever the toolchain supports it and the
    ENABLE_IPO option is on. Support cannot be probed when cross compiling,
    so IPO is then only forced on for trusted compiler families, and only
    when the user explicitly asked for it.

    Args:
        profile: Selected toolchain profile
        enable_ipo: Effective value of ENABLE_IPO
        explicitly_requested: Whether ENABLE_IPO was set by override or by
            the firmware rather than falling back to the default
        policy: IPO policy (defaults to IpoPolicy())

    Returns:
        True if IPO should be enabled
    """
    if not enable_ipo:
        return False

    policy = policy or IpoPolicy()

    if not profile.cross_compiling:
        return profile.toolchain.ipo_supported

    return explicitly_requested and profile.compiler_id in policy.trusted_cross_families
