"""Plugin that sorts ``$in``/``$nin`` lists in filters and limits their length."""

from __future__ import annotations

import datetime
import decimal
import functools
import logging
import re
from typing import Any, Mapping, Optional

from .pipeline import Document, PipelineFunc, Plugin, Request, error_document, register

logger = logging.getLogger(__name__)

NAME = "insort"


class InLenError(ValueError):
    """An ``$in`` or ``$nin`` list is longer than the configured limit."""

    def __init__(self, clause: str, count: int) -> None:
        super().__init__(f"{clause} clause longer than limit of {count}")
        self.clause = clause
        self.count = count

    def bson_error(self) -> Document:
        """The error reply sent to the client."""
        return error_document("IllegalOperation", str(self))


def _is_object_id(value: Any) -> bool:
    return not isinstance(value, (bytes, bytearray)) and isinstance(
        getattr(value, "binary", None), (bytes, bytearray)
    )


def _is_timestamp(value: Any) -> bool:
    return hasattr(value, "time") and hasattr(value, "inc")


def _regex_pattern(value: Any) -> Optional[str]:
    if isinstance(value, re.Pattern):
        return value.pattern if isinstance(value.pattern, str) else None
    if isinstance(value, str):
        return None
    pattern = getattr(value, "pattern", None)
    if isinstance(pattern, str) and hasattr(value, "flags"):
        return pattern
    return None


def _expect(a: Any, b: Any, kind: Any) -> None:
    if not isinstance(b, kind) or isinstance(b, bool):
        raise TypeError(f"cannot compare {type(a).__name__} with {type(b).__name__}")


def generic_less(a: Any, b: Any) -> bool:
    """Whether ``a`` orders before ``b`` among values of one BSON type."""
    if _is_object_id(a):
        return _is_object_id(b) and bytes(a.binary) < bytes(b.binary)
    if a is None or isinstance(a, bool):
        logger.error("sorting unknown for %s", type(a).__name__)
        return False
    if isinstance(a, int):
        _expect(a, b, int)
        return a < b
    if isinstance(a, float):
        _expect(a, b, float)
        return a < b
    if isinstance(a, str):
        _expect(a, b, str)
        return a < b
    if isinstance(a, list):
        return False
    if _is_timestamp(a):
        if not _is_timestamp(b):
            raise TypeError(f"cannot compare timestamp with {type(b).__name__}")
        return (a.time, a.inc) < (b.time, b.inc)
    pattern = _regex_pattern(a)
    if pattern is not None:
        if isinstance(b, str):
            other = b
        else:
            other = _regex_pattern(b)
            if other is None:
                raise TypeError(f"cannot find correct type in Process: {pattern}")
        return pattern < other
    if isinstance(a, decimal.Decimal):
        _expect(a, b, decimal.Decimal)
        return a.compare_total(b) < 0
    if isinstance(a, datetime.datetime):
        _expect(a, b, datetime.datetime)
        return a < b
    if isinstance(a, (bytes, bytearray)):
        _expect(a, b, (bytes, bytearray))
        return bytes(a) < bytes(b)
    logger.error("sorting unknown for %s", type(a).__name__)
    return False


def _compare(a: Any, b: Any) -> int:
    if generic_less(a, b):
        return -1
    if generic_less(b, a):
        return 1
    return 0


def sort_values(values: list) -> None:
    """Sort ``values`` in place by :func:`generic_less`."""
    values.sort(key=functools.cmp_to_key(_compare))


def _check_limit(clause: str, length: int, in_limit: int) -> None:
    if in_limit > 0 and length > in_limit:
        raise InLenError(clause, length)


def _sort_in_query(query: Mapping[str, Any], in_limit: int) -> None:
    for key, value in query.items():
        if key not in ("$in", "$nin"):
            continue
        if isinstance(value, Mapping):
            if value:
                _check_limit(key, len(value), in_limit)
        elif isinstance(value, list):
            if value:
                _check_limit(key, len(value), in_limit)
                sort_values(value)
        else:
            raise ValueError("$in expression must be list")


def preprocess_filter(filter_doc: Optional[Mapping[str, Any]], in_limit: int) -> None:
    """Sort every ``$in``/``$nin`` list in ``filter_doc`` in place.

    Raises :class:`InLenError` when a list is longer than a positive ``in_limit``.
    """
    for value in (filter_doc or {}).values():
        if isinstance(value, Mapping):
            _sort_in_query(value, in_limit)
        elif isinstance(value, list):
            for element in value:
                if isinstance(element, Mapping):
                    preprocess_filter(element, in_limit)


def _decode_limit(config: Optional[Mapping[str, Any]]) -> int:
    limit = 0
    for key, value in (config or {}).items():
        if key != "inlimit":
            raise ValueError(f"unknown configuration field {key!r}")
        if not isinstance(value, int) or isinstance(value, bool):
            raise ValueError("inlimit must be an integer")
        limit = value
    return limit


class InSortPlugin(Plugin):
    """Normalises ``$in`` lists so equal queries look the same downstream."""

    def __init__(self) -> None:
        self.in_limit = 0

    def name(self) -> str:
        return NAME

    def configure(self, config: Optional[dict]) -> None:
        self.in_limit = _decode_limit(config)

    def _filters(self, request: Request) -> list:
        command = request.command
        if request.command_name == "find":
            return [command.get("filter")]
        if request.command_name == "findAndModify":
            return [command.get("query")]
        if request.command_name == "update":
            return [
                update.get("q")
                for update in command.get("updates") or ()
                if isinstance(update, Mapping)
            ]
        return []

    def process(self, request: Request, next_: PipelineFunc) -> Document:
        for filter_doc in self._filters(request):
            if not isinstance(filter_doc, Mapping):
                continue
            try:
                preprocess_filter(filter_doc, self.in_limit)
            except InLenError as exc:
                return exc.bson_error()
        return next_(request)


register(InSortPlugin)