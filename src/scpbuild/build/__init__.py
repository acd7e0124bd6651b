"""
Build system components for scpbuild.

This module provides the build system implementation including:
- Option resolution against the persisted build state
- Toolchain selection and the IPO decision
- Component discovery and module graph construction
- Compilation, archiving and linking through the external toolchain
- Post-build artifacts (link map, flat binary, merged archive)
- Build orchestration
"""

from .component import Component, ComponentKind
from .component_loader import ComponentLoader, ComponentManifestError
from .module_graph import BuildGraph, ModuleGraphBuilder, ModuleGraphError, ModuleResolutionError
from .option_resolver import OptionFlag, OptionResolver, ResolvedOption, builtin_options
from .toolchain_selector import (
    IpoPolicy,
    ToolchainProfile,
    ToolchainSelectionError,
    ToolchainSelector,
    decide_ipo,
)
from .tool_runner import ToolInvocationError, ToolRunner
from .post_processor import ArtifactPostProcessor, PostProcessError, create_executable
from .archive_merger import ArchiveMergeError, ArchiveMerger
from .orchestrator import BuildOrchestratorError, BuildResult, FirmwareBuildOrchestrator

__all__ = [
    "Component",
    "ComponentKind",
    "ComponentLoader",
    "ComponentManifestError",
    "BuildGraph",
    "ModuleGraphBuilder",
    "ModuleGraphError",
    "ModuleResolutionError",
    "OptionFlag",
    "OptionResolver",
    "ResolvedOption",
    "builtin_options",
    "IpoPolicy",
    "ToolchainProfile",
    "ToolchainSelectionError",
    "ToolchainSelector",
    "decide_ipo",
    "ToolInvocationError",
    "ToolRunner",
    "ArtifactPostProcessor",
    "PostProcessError",
    "create_executable",
    "ArchiveMergeError",
    "ArchiveMerger",
    "BuildOrchestratorError",
    "BuildResult",
    "FirmwareBuildOrchestrator",
]
