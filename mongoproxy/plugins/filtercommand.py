"""Plugin that answers selected commands with ``CommandNotFound``."""

from __future__ import annotations

from typing import Any, Mapping, Optional

from .pipeline import Document, PipelineFunc, Plugin, Request, error_document, register

NAME = "filtercommand"


def _decode_commands(config: Optional[Mapping[str, Any]]) -> frozenset:
    commands: frozenset = frozenset()
    for key, value in (config or {}).items():
        if key != "filterCommands":
            raise ValueError(f"unknown configuration field {key!r}")
        if value is None:
            continue
        if not isinstance(value, (list, tuple)) or not all(
            isinstance(item, str) for item in value
        ):
            raise ValueError("filterCommands must be a list of strings")
        commands = frozenset(value)
    return commands


class FilterCommandPlugin(Plugin):
    """Rejects configured commands as if the server did not know them."""

    def __init__(self) -> None:
        self.filter_commands: frozenset = frozenset()

    def name(self) -> str:
        return NAME

    def configure(self, config: Optional[dict]) -> None:
        self.filter_commands = _decode_commands(config)

    def process(self, request: Request, next_: PipelineFunc) -> Document:
        if request.command_name in self.filter_commands:
            return error_document(
                "CommandNotFound", "no such command: '" + request.command_name + "'"
            )
        return next_(request)


register(FilterCommandPlugin)