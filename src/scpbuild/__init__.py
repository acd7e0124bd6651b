"""
scpbuild - firmware composition build orchestrator.

Resolves a firmware's build configuration (feature options, toolchain,
framework/architecture/module composition), drives the external toolchain
and generates post-build artifacts.
"""

__version__ = "0.1.0"
