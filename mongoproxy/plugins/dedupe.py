"""Plugin that merges identical in-flight single-batch secondary reads."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Optional

from .pipeline import Document, PipelineFunc, Plugin, Request, register

logger = logging.getLogger(__name__)

NAME = "dedupe"

_DEDUPE_READ_PREFERENCES = frozenset({"secondary", "secondaryPreferred", "nearest"})

_KEY_FIELDS = (
    "$db",
    "find",
    "filter",
    "limit",
    "skip",
    "sort",
    "maxTimeMS",
    "projection",
    "hint",
    "$readPreference",
    "collation",
    "allowPartialResults",
    "readConcern",
)


@dataclass
class _Call:
    done: threading.Event = field(default_factory=threading.Event)
    value: Any = None
    error: Optional[BaseException] = None


class SingleFlight:
    """Runs at most one call per key at a time; concurrent callers share its result."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._calls: dict[str, _Call] = {}

    def do(self, key: str, func: Callable[[], Any]) -> tuple[Any, bool]:
        """Run ``func`` for ``key`` or wait for the call already running.

        Returns the value and whether it came from another caller's call.
        Exceptions raised by ``func`` reach every caller sharing the call.
        """
        with self._lock:
            call = self._calls.get(key)
            leader = call is None
            if leader:
                call = self._calls[key] = _Call()

        if not leader:
            call.done.wait()
            if call.error is not None:
                raise call.error
            return call.value, True

        try:
            call.value = func()
        except BaseException as exc:
            call.error = exc
            raise
        finally:
            with self._lock:
                self._calls.pop(key, None)
            call.done.set()
        return call.value, False


def dedupe_key(command: Mapping[str, Any]) -> str:
    """The key under which equal ``find`` commands are merged."""
    return repr(tuple(command.get(name) for name in _KEY_FIELDS))


class DedupePlugin(Plugin):
    """Sends one request downstream for concurrent identical reads."""

    def __init__(self) -> None:
        self._group = SingleFlight()

    def name(self) -> str:
        return NAME

    def configure(self, config: Optional[dict]) -> None:
        self._group = SingleFlight()

    def process(self, request: Request, next_: PipelineFunc) -> Document:
        if request.command_name == "find":
            command = request.command
            read_pref = request.read_preference_mode()
            if command.get("singleBatch") is True and read_pref in _DEDUPE_READ_PREFERENCES:
                result, shared = self._group.do(
                    dedupe_key(command), lambda: next_(request)
                )
                if shared:
                    logger.debug(
                        "deduplicated db=%s collection=%s command=%s readpref=%s",
                        request.database(),
                        request.collection(),
                        request.command_name,
                        read_pref,
                    )
                return result
        return next_(request)


register(DedupePlugin)