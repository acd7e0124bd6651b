"""Build Option Resolution.

This module computes the effective value of every feature option of a
firmware build from three sources: the firmware-supplied initial value, the
value cached by a previous invocation and an explicit user override.

Design:
    - Precedence: explicit override > cached value > initial value > default
    - The first resolution pins its value into the build-state store, along
      with the source it was pinned from
    - Resolution is memoized per invocation, so repeated calls are idempotent
    - Store writes are serialized per option id
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, Mapping, Optional

from ..state import BuildStateStore


BOOL_TRUE = {"1", "true", "on", "yes", "y"}
BOOL_FALSE = {"0", "false", "off", "no", "n", ""}

BUILD_TYPES = ("Debug", "Release", "MinSizeRel", "RelWithDebInfo")

CACHE_PREFIX = "option:"
SOURCE_PREFIX = "option-source:"


class OptionSource(str, Enum):
    """Where an effective option value came from."""

    OVERRIDE = "override"
    CACHE = "cache"
    INITIAL = "initial"
    DEFAULT = "default"


@dataclass(frozen=True)
class OptionFlag:
    """A single build option.

    Attributes:
        id: Option identifier (e.g. ENABLE_NOTIFICATIONS)
        description: Help text
        default: Built-in default used when no other source has a value
        initial_value: Firmware-supplied initial value
        kind: "bool" or "string"
    """

    id: str
    description: str
    default: Any = False
    initial_value: Optional[Any] = None
    kind: str = "bool"

    def with_initial(self, initial_value: Optional[Any]) -> "OptionFlag":
        return OptionFlag(
            id=self.id,
            description=self.description,
            default=self.default,
            initial_value=initial_value,
            kind=self.kind,
        )


@dataclass(frozen=True)
class ResolvedOption:
    """Effective value of an option and the source that supplied it."""

    flag: OptionFlag
    value: Any
    source: OptionSource
    pinned_from: Optional[OptionSource] = None

    @property
    def explicit(self) -> bool:
        """True when the user or the firmware asked for this value.

        A cached value stays explicit when it was pinned from an override or
        a firmware initial value.
        """
        origin = self.pinned_from if self.source is OptionSource.CACHE else self.source
        return origin in (OptionSource.OVERRIDE, OptionSource.INITIAL)


BUILTIN_OPTIONS = (
    OptionFlag("BUILD_TYPE", "Build type.", default="Release", kind="string"),
    OptionFlag("GENERATE_FLAT_BINARY", "Generate a flat binary (.bin) image?"),
    OptionFlag("ENABLE_IPO", "Enable the interprocedural optimization (IPO) if supported?",
               default=True),
    OptionFlag("OVERRIDE_FIRMWARE_NAME", "Override firmware binary name", default="",
               kind="string"),
    OptionFlag("ENABLE_SUB_SYSTEM_MODE", "Enable the execution as a sub-system?"),
    OptionFlag("ENABLE_NOTIFICATIONS", "Enable the notification subsystem?"),
    OptionFlag("ENABLE_RESOURCE_PERMISSIONS", "Enable the resource permission support?"),
    OptionFlag("ENABLE_SCMI_NOTIFICATIONS", "Enable the SCMI notifications?"),
    OptionFlag("ENABLE_SCMI_SENSOR_EVENTS", "Enable the SCMI sensor events?"),
    OptionFlag("ENABLE_FAST_CHANNELS", "Enable the transport Fast Channels?"),
    OptionFlag("ENABLE_DEBUGGER", "Enable the debugger-cli subsystem?"),
    OptionFlag("DISABLE_CPPCHECK", "Disable the cppcheck static analysis?"),
    OptionFlag("ENABLE_CLANG_TIDY", "Enable clang-tidy static analysis?"),
    OptionFlag("ENABLE_IWYU", "Enable include-what-you-use analysis?"),
)


def parse_bool(value: Any) -> bool:
    """Convert a raw option value to a boolean.

    Unrecognized strings are treated as true, as long as they are not empty.
    """
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in BOOL_TRUE:
        return True
    if text in BOOL_FALSE:
        return False
    return bool(text)


def _source_or_none(value: Any) -> Optional[OptionSource]:
    try:
        return OptionSource(value)
    except ValueError:
        return None


def coerce(flag: OptionFlag, value: Any) -> Any:
    if flag.kind == "bool":
        return parse_bool(value)
    return "" if value is None else str(value)


def builtin_options(
    hints: Optional[Mapping[str, Any]] = None,
    architecture: Optional[str] = None,
) -> Dict[str, OptionFlag]:
    """Build the option table for a firmware.

    Args:
        hints: Firmware-supplied initial values, keyed by option id
        architecture: Firmware architecture; ``optee`` firmware runs as a
            sub-system by default

    Returns:
        Mapping of option id to OptionFlag, builtin options first followed
        by any firmware-specific options found in ``hints``
    """
    hints = dict(hints or {})
    if architecture == "optee":
        hints.setdefault("ENABLE_SUB_SYSTEM_MODE", True)

    table = {}
    for flag in BUILTIN_OPTIONS:
        table[flag.id] = flag.with_initial(hints.pop(flag.id, None))

    # Firmware-specific options
    for option_id, value in hints.items():
        table[option_id] = OptionFlag(
            option_id, f"Firmware option {option_id}", initial_value=value
        )

    return table


class OptionResolver:
    """Resolves build options against a build-state store.

    Example:
        store = BuildStateStore(state_file)
        resolver = OptionResolver(store)
        flag = OptionFlag("ENABLE_FAST_CHANNELS", "...", initial_value=False)
        resolver.resolve(flag)           # False, now cached
        resolver.resolve(flag, True)     # True, cache updated
    """

    def __init__(self, store: BuildStateStore):
        """Initialize the resolver.

        Args:
            store: Persisted build-state store holding cached option values
        """
        self.store = store
        self._resolved: Dict[str, ResolvedOption] = {}
        self._overrides: Dict[str, Any] = {}

    @staticmethod
    def cache_key(option_id: str) -> str:
        return CACHE_PREFIX + option_id

    @staticmethod
    def source_key(option_id: str) -> str:
        return SOURCE_PREFIX + option_id

    def resolve(self, flag: OptionFlag, override: Optional[Any] = None) -> Any:
        """Resolve the effective value of an option.

        Args:
            flag: Option to resolve
            override: Explicit user override (None for no override)

        Returns:
            Effective option value
        """
        return self.resolve_option(flag, override).value

    def resolve_option(self, flag: OptionFlag, override: Optional[Any] = None) -> ResolvedOption:
        """Resolve an option and report where the value came from.

        Args:
            flag: Option to resolve
            override: Explicit user override (None for no override)

        Returns:
            ResolvedOption
        """
        key = self.cache_key(flag.id)

        with self.store.acquire(key):
            source_key = self.source_key(flag.id)
            previous = self._resolved.get(flag.id)
            if previous is not None and previous.flag == flag and self._overrides.get(flag.id) == override:
                return previous

            if override is not None:
                value = coerce(flag, override)
                source = OptionSource.OVERRIDE
                pinned_from = source
                self.store.set(key, value)
                self.store.set(source_key, source.value)
            elif self.store.contains(key):
                value = coerce(flag, self.store.get(key))
                source = OptionSource.CACHE
                pinned_from = _source_or_none(self.store.get(source_key))
            else:
                if flag.initial_value is not None:
                    value = coerce(flag, flag.initial_value)
                    source = OptionSource.INITIAL
                else:
                    value = coerce(flag, flag.default)
                    source = OptionSource.DEFAULT
                # First resolution pins the value
                pinned_from = source
                self.store.set(key, value)
                self.store.set(source_key, source.value)

            resolved = ResolvedOption(flag=flag, value=value, source=source, pinned_from=pinned_from)
            self._resolved[flag.id] = resolved
            self._overrides[flag.id] = override

        logging.debug(f"Option {flag.id} = {value!r} ({source.value})")
        return resolved

    def resolve_all(
        self,
        flags: Iterable[OptionFlag],
        overrides: Optional[Mapping[str, Any]] = None,
    ) -> Dict[str, ResolvedOption]:
        """Resolve every option in ``flags``.

        Args:
            flags: Options to resolve
            overrides: Explicit overrides keyed by option id

        Returns:
            Mapping of option id to ResolvedOption
        """
        overrides = overrides or {}
        return {
            flag.id: self.resolve_option(flag, overrides.get(flag.id))
            for flag in flags
        }
