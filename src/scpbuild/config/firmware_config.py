"""
Firmware configuration parser.

This module parses the ``firmware.ini`` file that lives in a firmware's
source directory and turns it into an immutable FirmwareDescriptor.

Example firmware.ini:
    [firmware]
    name = juno-bl1
    target = juno-bl1-bypass
    architecture = arm-m
    toolchain = GNU
    modules =
        juno-ppu
        clock

    [options]
    GENERATE_FLAT_BINARY = true
    ENABLE_NOTIFICATIONS = false
"""

import configparser
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple


FIRMWARE_CONFIG_NAME = "firmware.ini"


class FirmwareConfigError(Exception):
    """Exception raised for firmware configuration errors."""

    pass


@dataclass(frozen=True)
class FirmwareDescriptor:
    """Description of the firmware being built.

    Loaded once per invocation and never modified afterwards.
    """

    name: str
    target_id: str
    source_dir: Path
    binary_dir: str
    architecture: str
    modules: Tuple[str, ...] = ()
    toolchain_hint: Optional[str] = None
    override_name: Optional[str] = None
    option_hints: Dict[str, str] = field(default_factory=dict)

    @property
    def merged_target(self) -> str:
        """Name of the explicitly invoked merged-archive target."""
        return f"{self.target_id}-all"


def resolve_firmware_dir(project_root: Path, firmware_dir: Path) -> Path:
    """Resolve a firmware source directory.

    Relative paths are looked up under ``<project_root>/product`` first and
    then under the project root itself.

    Args:
        project_root: Project root directory
        firmware_dir: Absolute or relative firmware source directory

    Returns:
        Absolute firmware source directory
    """
    firmware_dir = Path(firmware_dir)
    if firmware_dir.is_absolute():
        return firmware_dir.resolve()

    product_relative = project_root / "product" / firmware_dir
    if product_relative.is_dir():
        return product_relative.resolve()

    return (project_root / firmware_dir).resolve()


class FirmwareConfig:
    """
    Parser for firmware.ini configuration files.

    Usage:
        config = FirmwareConfig(firmware_dir / "firmware.ini")
        descriptor = config.to_descriptor(project_root)
    """

    SECTION = "firmware"
    OPTIONS_SECTION = "options"
    REQUIRED_FIELDS = ("name", "target")

    def __init__(self, ini_path: Path):
        """
        Initialize the parser with a firmware.ini file.

        Args:
            ini_path: Path to the firmware.ini file

        Raises:
            FirmwareConfigError: If the file doesn't exist or cannot be parsed
        """
        self.ini_path = Path(ini_path)

        if not self.ini_path.exists():
            raise FirmwareConfigError(f"Firmware configuration not found: {self.ini_path}")

        self.config = configparser.ConfigParser(
            allow_no_value=True, interpolation=configparser.ExtendedInterpolation()
        )
        # Option identifiers are upper case
        self.config.optionxform = str  # type: ignore[assignment,method-assign]

        try:
            self.config.read(self.ini_path, encoding="utf-8")
        except configparser.Error as e:
            raise FirmwareConfigError(f"Failed to parse {self.ini_path}: {e}") from e

        if self.SECTION not in self.config:
            raise FirmwareConfigError(
                f"{self.ini_path} has no [{self.SECTION}] section"
            )

    def _get(self, key: str) -> str:
        value = self.config[self.SECTION].get(key)
        return value.strip() if value else ""

    def get_modules(self) -> List[str]:
        """
        Parse the module selection list.

        Returns:
            Module ids in declaration order (duplicates preserved)

        Example:
            For modules =
                clock
                juno-ppu, sensor
            Returns: ['clock', 'juno-ppu', 'sensor']
        """
        modules = []
        for line in self._get("modules").split("\n"):
            for module in line.split(","):
                module = module.strip()
                if module:
                    modules.append(module)
        return modules

    def get_option_hints(self) -> Dict[str, str]:
        """
        Get the firmware-supplied initial option values.

        Returns:
            Mapping of option id to raw string value
        """
        if self.OPTIONS_SECTION not in self.config:
            return {}

        hints = {}
        for key, value in self.config[self.OPTIONS_SECTION].items():
            hints[key.upper()] = "" if value is None else value.strip()
        return hints

    def to_descriptor(self, project_root: Path) -> FirmwareDescriptor:
        """
        Validate the configuration and build the firmware descriptor.

        Args:
            project_root: Project root; the binary directory must stay inside it

        Returns:
            FirmwareDescriptor for this firmware

        Raises:
            FirmwareConfigError: If required metadata is missing or the binary
                directory escapes the project root
        """
        missing = [key for key in self.REQUIRED_FIELDS if not self._get(key)]
        if missing:
            raise FirmwareConfigError(
                "Insufficient firmware metadata provided.\n"
                f"Please ensure {self.ini_path} sets both `name` and `target` "
                "to the name of your firmware and the firmware's entry target. "
                f"Missing: {', '.join(missing)}"
            )

        source_dir = self.ini_path.parent.resolve()
        binary_dir = self._get("binary_dir")
        if not binary_dir:
            # Derive from the source location when the firmware is in-tree
            binary_dir = Path(os.path.relpath(source_dir, project_root)).as_posix()

        if ".." in binary_dir or Path(binary_dir).is_absolute():
            raise FirmwareConfigError(
                "Invalid firmware binary directory.\n"
                f"`binary_dir` is '{binary_dir}'. Please ensure your firmware binary "
                "directory is a relative path inside the project. This path is used "
                "as the location within the build directory for firmware artifacts."
            )

        architecture = self._get("architecture")
        if not architecture:
            raise FirmwareConfigError(
                f"{self.ini_path} does not set `architecture`"
            )

        return FirmwareDescriptor(
            name=self._get("name"),
            target_id=self._get("target"),
            source_dir=source_dir,
            binary_dir=binary_dir,
            architecture=architecture,
            modules=tuple(self.get_modules()),
            toolchain_hint=self._get("toolchain") or None,
            override_name=self._get("override_name") or None,
            option_hints=self.get_option_hints(),
        )


def load_firmware_descriptor(project_root: Path, firmware_dir: Path) -> FirmwareDescriptor:
    """Load the descriptor for the firmware in ``firmware_dir``.

    Args:
        project_root: Project root directory
        firmware_dir: Firmware source directory (see resolve_firmware_dir)

    Returns:
        FirmwareDescriptor

    Raises:
        FirmwareConfigError: If the configuration is missing or invalid
    """
    source_dir = resolve_firmware_dir(project_root, firmware_dir)
    config = FirmwareConfig(source_dir / FIRMWARE_CONFIG_NAME)
    return config.to_descriptor(project_root)
