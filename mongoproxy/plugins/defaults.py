"""Plugin that fills in a default read concern and time limit on reads."""

from __future__ import annotations

import copy
from typing import Any, Mapping, Optional

from .pipeline import Document, PipelineFunc, Plugin, Request, register

NAME = "defaults"

_READ_COMMANDS = frozenset({"aggregate", "count", "distinct", "find"})


class DefaultPlugin(Plugin):
    """Adds ``readConcern`` and ``maxTimeMS`` to read commands lacking them."""

    def __init__(self) -> None:
        self.default_read_concern: Optional[dict] = None
        self.default_max_time_ms: Optional[int] = None

    def name(self) -> str:
        return NAME

    def configure(self, config: Optional[dict]) -> None:
        read_concern: Optional[dict] = None
        max_time_ms: Optional[int] = None
        for key, value in (config or {}).items():
            if key == "defaultReadConcern":
                if value is not None and not isinstance(value, Mapping):
                    raise ValueError("defaultReadConcern must be a document")
                read_concern = dict(value) if value is not None else None
            elif key == "defaultMaxTimeMS":
                if value is not None and (
                    not isinstance(value, int) or isinstance(value, bool)
                ):
                    raise ValueError("defaultMaxTimeMS must be an integer")
                max_time_ms = value
            else:
                raise ValueError(f"unknown configuration field {key!r}")
        self.default_read_concern = read_concern
        self.default_max_time_ms = max_time_ms

    def process(self, request: Request, next_: PipelineFunc) -> Document:
        if request.command_name in _READ_COMMANDS:
            command: dict[str, Any] = request.command
            if self.default_read_concern is not None and command.get("readConcern") is None:
                command["readConcern"] = copy.deepcopy(self.default_read_concern)
            if self.default_max_time_ms is not None and command.get("maxTimeMS") is None:
                command["maxTimeMS"] = self.default_max_time_ms
        return next_(request)


register(DefaultPlugin)