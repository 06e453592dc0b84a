"""Plugin interface, request model, registry and pipeline construction."""

from __future__ import annotations

import abc
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Protocol, Sequence, runtime_checkable

logger = logging.getLogger(__name__)

Document = dict
PipelineFunc = Callable[["Request"], Document]

_ERROR_CODES = {
    "Unauthorized": 13,
    "AuthenticationFailed": 18,
    "IllegalOperation": 20,
    "CursorNotFound": 43,
    "CommandNotFound": 59,
}


def error_document(code_name: str, message: str) -> Document:
    """Build a MongoDB error reply for the named error code."""
    try:
        code = _ERROR_CODES[code_name]
    except KeyError:
        raise ValueError(f"unknown error code name: {code_name}") from None
    return {"ok": 0, "errmsg": message, "code": code, "codeName": code_name}


def lookup(document: Any, *keys: str) -> Any:
    """Follow ``keys`` through nested documents; None if any step is missing."""
    current = document
    for key in keys:
        if not isinstance(current, dict) or key not in current:
            return None
        current = current[key]
    return current


def is_ok(document: Optional[Document]) -> bool:
    """Whether a reply document reports success."""
    value = lookup(document, "ok")
    if isinstance(value, (bool, int, float)):
        return bool(value)
    return False


class Plugin(abc.ABC):
    """A step in the request pipeline."""

    @abc.abstractmethod
    def name(self) -> str:
        """The plugin's registry name."""

    @abc.abstractmethod
    def configure(self, config: Optional[dict]) -> None:
        """Apply configuration; raise if it is invalid."""

    @abc.abstractmethod
    def process(self, request: "Request", next_: PipelineFunc) -> Document:
        """Handle a request, usually by calling ``next_``."""


@dataclass
class CursorCacheEntry:
    """Per-cursor storage that lives as long as the cursor."""

    id: int
    cursor_consumed: int = 0
    data: dict = field(default_factory=dict)


class CursorCache:
    """Thread-safe in-memory map of cursor id to cursor entry."""

    def __init__(self) -> None:
        self._entries: dict[int, CursorCacheEntry] = {}
        self._lock = threading.Lock()

    def get_cursor(self, cursor_id: int) -> CursorCacheEntry:
        with self._lock:
            entry = self._entries.get(cursor_id)
            if entry is None:
                entry = self._entries[cursor_id] = CursorCacheEntry(cursor_id)
            return entry

    def close_cursor(self, cursor_id: int) -> None:
        with self._lock:
            self._entries.pop(cursor_id, None)


@runtime_checkable
class ClientIdentity(Protocol):
    """An authenticated identity on a client connection."""

    source: str
    user: str
    roles: Sequence[str]


@dataclass(frozen=True)
class StaticIdentity:
    """A fixed identity."""

    source: str
    user: str
    roles: tuple[str, ...] = ()


@dataclass
class ClientConnection:
    """State kept for one client connection."""

    addr: Any = None
    identities: Optional[list] = None
    data: dict = field(default_factory=dict)

    def addr_string(self) -> str:
        if self.addr is None:
            return ""
        if isinstance(self.addr, tuple) and len(self.addr) >= 2:
            host, port = self.addr[0], self.addr[1]
            if ":" in str(host):
                return f"[{host}]:{port}"
            return f"{host}:{port}"
        return str(self.addr)


@dataclass
class Request:
    """A command travelling through the pipeline."""

    command: dict
    command_name: str = ""
    client: ClientConnection = field(default_factory=ClientConnection)
    cursor_cache: CursorCache = field(default_factory=CursorCache)
    data: dict = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.command_name and self.command:
            self.command_name = next(iter(self.command))

    def database(self) -> str:
        value = self.command.get("$db")
        return value if isinstance(value, str) else ""

    def collection(self) -> str:
        key = "collection" if self.command_name == "getMore" else self.command_name
        value = self.command.get(key)
        return value if isinstance(value, str) else ""

    def read_preference_mode(self) -> str:
        value = lookup(self.command, "$readPreference", "mode")
        return value if isinstance(value, str) else ""


class PluginAlreadyRegistered(Exception):
    """Raised when two plugins register under the same name."""


_REGISTRY: dict[str, Callable[[], Plugin]] = {}


def register(factory: Callable[[], Plugin]) -> None:
    """Add a plugin factory to the registry under the plugin's name."""
    name = factory().name()
    if name in _REGISTRY:
        raise PluginAlreadyRegistered(f"Plugin named {name} already registered")
    _REGISTRY[name] = factory


def get_plugin(name: str) -> Optional[Plugin]:
    """A new instance of the named plugin, or None if it is unknown."""
    factory = _REGISTRY.get(name)
    return factory() if factory is not None else None


def _wrap(index: int, plugin: Plugin, next_: PipelineFunc) -> PipelineFunc:
    def run(request: Request) -> Document:
        start = time.perf_counter()
        status = "error"
        try:
            result = plugin.process(request, next_)
            status = "success"
            return result
        finally:
            logger.debug(
                "plugin %d %s %s in %.6fs",
                index,
                plugin.name(),
                status,
                time.perf_counter() - start,
            )

    return run


def build_pipeline(plugins: Sequence[Plugin], base: PipelineFunc) -> PipelineFunc:
    """Chain plugins in order in front of ``base``; returns the entry point."""
    pipeline = base
    for index in range(len(plugins) - 1, -1, -1):
        pipeline = _wrap(index, plugins[index], pipeline)
    return pipeline