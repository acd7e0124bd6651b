"""
Toolchain file parser.

A toolchain file (``Toolchain-<name>.ini``) describes the compiler family
and the tool binaries of one toolchain.

Example Toolchain-GNU.ini:
    [toolchain]
    compiler_id = GNU
    cc = arm-none-eabi-gcc
    ar = arm-none-eabi-ar
    objcopy = arm-none-eabi-objcopy
    cross_compiling = true
    system_processor = cortex-m3
    c_flags = -mcpu=cortex-m3 -mthumb
    link_flags = -mcpu=cortex-m3 -mthumb -specs=nosys.specs
"""

import configparser
import shlex
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional


TOOLCHAIN_FILE_PATTERN = "Toolchain-{name}.ini"

TRUE_VALUES = {"1", "true", "on", "yes"}


class ToolchainFileError(Exception):
    """Exception raised for invalid toolchain files."""

    pass


@dataclass(frozen=True)
class ToolchainFile:
    """Contents of a toolchain file."""

    path: Optional[Path]
    compiler_id: str
    cc: str
    ar: str = "ar"
    objcopy: Optional[str] = "objcopy"
    sysroot: Optional[str] = None
    cross_compiling: bool = False
    system_processor: Optional[str] = None
    compiler_target: Optional[str] = None
    ipo_supported: bool = False
    c_flags: List[str] = field(default_factory=list)
    link_flags: List[str] = field(default_factory=list)
    implicit_include_dirs: List[str] = field(default_factory=list)


def toolchain_file_name(name: str) -> str:
    """Return the file name used for the toolchain called ``name``."""
    return TOOLCHAIN_FILE_PATTERN.format(name=name)


def host_toolchain() -> ToolchainFile:
    """Toolchain used when the firmware expresses no preference."""
    return ToolchainFile(
        path=None,
        compiler_id="GNU",
        cc="gcc",
        ar="ar",
        objcopy="objcopy",
        ipo_supported=True,
    )


def load_toolchain_file(path: Path) -> ToolchainFile:
    """
    Parse a toolchain file.

    Args:
        path: Path to the toolchain file

    Returns:
        ToolchainFile

    Raises:
        ToolchainFileError: If the file is missing or lacks required keys
    """
    path = Path(path)
    if not path.exists():
        raise ToolchainFileError(f"Toolchain file not found: {path}")

    parser = configparser.ConfigParser(
        allow_no_value=True, interpolation=configparser.ExtendedInterpolation()
    )
    try:
        parser.read(path, encoding="utf-8")
    except configparser.Error as e:
        raise ToolchainFileError(f"Failed to parse {path}: {e}") from e

    if "toolchain" not in parser:
        raise ToolchainFileError(f"{path} has no [toolchain] section")

    section = parser["toolchain"]

    def get(key: str) -> Optional[str]:
        value = section.get(key)
        if value is None:
            return None
        value = value.strip()
        return value or None

    compiler_id = get("compiler_id")
    cc = get("cc")
    if not compiler_id or not cc:
        raise ToolchainFileError(
            f"{path} must set both `compiler_id` and `cc`"
        )

    return ToolchainFile(
        path=path.resolve(),
        compiler_id=compiler_id,
        cc=cc,
        ar=get("ar") or "ar",
        objcopy=get("objcopy"),
        sysroot=get("sysroot"),
        cross_compiling=(get("cross_compiling") or "").lower() in TRUE_VALUES,
        system_processor=get("system_processor"),
        compiler_target=get("compiler_target"),
        ipo_supported=(get("ipo_supported") or "").lower() in TRUE_VALUES,
        c_flags=shlex.split(get("c_flags") or ""),
        link_flags=shlex.split(get("link_flags") or ""),
        implicit_include_dirs=(get("implicit_include_dirs") or "").split(),
    )
