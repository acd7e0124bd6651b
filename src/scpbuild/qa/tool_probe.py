"""
Tool availability probing.

A probe answers "is this executable on the search path?" without side
effects. Probes are run once per invocation and their results are passed
explicitly to whoever needs them.
"""

import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Iterable, Optional, Tuple


@dataclass(frozen=True)
class ToolProbe:
    """Result of probing for a tool."""

    name: str
    found: bool
    path: Optional[Path] = None


Prober = Callable[..., ToolProbe]


def probe(tool_name: str, *alternatives: str) -> ToolProbe:
    """Look for a tool on PATH.

    Args:
        tool_name: Preferred executable name
        *alternatives: Other names tried in order if the first is missing

    Returns:
        ToolProbe for the first name found, or a not-found probe
    """
    for candidate in (tool_name,) + alternatives:
        found = shutil.which(candidate)
        if found:
            logging.debug(f"Found {tool_name}: {found}")
            return ToolProbe(name=tool_name, found=True, path=Path(found))

    logging.debug(f"{tool_name} not found")
    return ToolProbe(name=tool_name, found=False)


class ToolAvailability:
    """Snapshot of probe results for one invocation.

    Each tool is probed at most once; later lookups reuse the result.
    """

    def __init__(self, prober: Prober = probe):
        self.prober = prober
        self._results: Dict[Tuple[str, ...], ToolProbe] = {}

    def probe(self, tool_name: str, *alternatives: str) -> ToolProbe:
        key = (tool_name,) + alternatives
        result = self._results.get(key)
        if result is None:
            result = self.prober(tool_name, *alternatives)
            self._results[key] = result
        return result

    def found(self) -> Iterable[ToolProbe]:
        return [result for result in self._results.values() if result.found]
