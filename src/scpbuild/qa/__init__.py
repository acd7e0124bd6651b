"""
Quality assurance targets for scpbuild.

This package provides:
- Tool probing (which QA tools are installed)
- Source inventory (typed file sets of the source tree)
- The QA task pipeline (format, format-diff, lint, check)
"""

from .tool_probe import ToolAvailability, ToolProbe, probe
from .source_inventory import SourceInventory, default_exclude_patterns, inventory
from .pipeline import META_TARGETS, QAPipeline, QAPipelineError, QARunner, QATask, build_pipeline

__all__ = [
    "ToolAvailability",
    "ToolProbe",
    "probe",
    "SourceInventory",
    "default_exclude_patterns",
    "inventory",
    "META_TARGETS",
    "QAPipeline",
    "QAPipelineError",
    "QARunner",
    "QATask",
    "build_pipeline",
]
