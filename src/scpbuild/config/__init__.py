"""Configuration parsing modules for scpbuild."""

from .firmware_config import (
    FIRMWARE_CONFIG_NAME,
    FirmwareConfig,
    FirmwareConfigError,
    FirmwareDescriptor,
    load_firmware_descriptor,
    resolve_firmware_dir,
)
from .toolchain_file import (
    ToolchainFile,
    ToolchainFileError,
    host_toolchain,
    load_toolchain_file,
    toolchain_file_name,
)

__all__ = [
    "FIRMWARE_CONFIG_NAME",
    "FirmwareConfig",
    "FirmwareConfigError",
    "FirmwareDescriptor",
    "load_firmware_descriptor",
    "resolve_firmware_dir",
    "ToolchainFile",
    "ToolchainFileError",
    "host_toolchain",
    "load_toolchain_file",
    "toolchain_file_name",
]
