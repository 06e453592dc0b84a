"""Authorization plugin: checks every command against the loaded policies."""

from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Mapping, Optional

from ..authz.querier import Authz, AuthorizeResult
from ..authz.resource import Resource
from ..authz.types import AuthorizationMethod
from .pipeline import (
    Document,
    PipelineFunc,
    Plugin,
    Request,
    StaticIdentity,
    error_document,
    lookup,
    register,
)

logger = logging.getLogger(__name__)

NAME = "authz"
UNAUTHENTICATED_ROLE = "UNAUTHENTICATED"

OPEN_COMMANDS = frozenset(
    {
        "isMaster",
        "ismaster",
        "buildInfo",
        "buildinfo",
        "connectionStatus",
        "saslStart",
        "getnonce",
        "logout",
        "ping",
    }
)

_RESOURCES_KEY = "authz.resources"

ResourceMap = dict  # AuthorizationMethod -> list[Resource]

_READ = AuthorizationMethod.READ
_CREATE = AuthorizationMethod.CREATE
_UPDATE = AuthorizationMethod.UPDATE
_DELETE = AuthorizationMethod.DELETE

# Commands whose resources depend only on their namespace.
# Scope is "namespace" (db + collection), "database" or "global".
_SIMPLE_COMMANDS = {
    "aggregate": (_READ, "namespace"),
    "collStats": (_READ, "namespace"),
    "count": (_READ, "namespace"),
    "create": (_CREATE, "database"),
    "createIndexes": (_CREATE, "database"),
    "currentOp": (_READ, "global"),
    "delete": (_DELETE, "namespace"),
    "deleteIndexes": (_DELETE, "namespace"),
    "dropDatabase": (_DELETE, "global"),
    "drop": (_DELETE, "database"),
    "dropIndexes": (_DELETE, "namespace"),
    "endSessions": (_DELETE, "global"),
    "hostInfo": (_READ, "global"),
    "insert": (_CREATE, "namespace"),
    "killAllSessions": (_DELETE, "global"),
    "killCursors": (_DELETE, "global"),
    "killOp": (_DELETE, "global"),
    "listCollections": (_READ, "database"),
    "listDatabases": (_READ, "global"),
    "listIndexes": (_READ, "namespace"),
    "serverStatus": (_READ, "global"),
    "shardCollection": (_UPDATE, "global"),
}

_CONFIG_FIELDS = {
    "paths": "paths",
    "logUnauthenticated": "log_unauthenticated",
    "denyByDefault": "deny_by_default",
    "denyByDefaultNamespaces": "deny_by_default_namespaces",
}


@dataclass
class AuthzPluginConfig:
    """Settings of the authorization plugin."""

    paths: list = field(default_factory=list)
    log_unauthenticated: bool = False
    deny_by_default: bool = False
    deny_by_default_namespaces: Optional[dict] = None


def _decode_config(document: Optional[Mapping[str, Any]]) -> AuthzPluginConfig:
    conf = AuthzPluginConfig()
    for key, value in (document or {}).items():
        if key not in _CONFIG_FIELDS:
            raise ValueError(f"unknown configuration field {key!r}")
        if key == "paths":
            if value is None:
                value = []
            if not isinstance(value, (list, tuple)) or not all(
                isinstance(item, (str, os.PathLike)) for item in value
            ):
                raise ValueError("paths must be a list of strings")
            conf.paths = [os.fspath(item) for item in value]
        elif key == "denyByDefaultNamespaces":
            if value is None:
                conf.deny_by_default_namespaces = None
                continue
            if not isinstance(value, Mapping) or not all(
                isinstance(k, str) and isinstance(v, bool) for k, v in value.items()
            ):
                raise ValueError("denyByDefaultNamespaces must map names to booleans")
            conf.deny_by_default_namespaces = dict(value)
        else:
            if not isinstance(value, bool):
                raise ValueError(f"{key} must be a boolean")
            setattr(conf, _CONFIG_FIELDS[key], value)
    return conf


def _bool_number(value: Any) -> bool:
    if isinstance(value, (bool, int, float)):
        return bool(value)
    return False


def _unique(items: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(items))


def _expand_update(update: Any, upsert: bool) -> tuple[list[str], list[str], list[str]]:
    """Split an update specification into created, updated and deleted fields."""
    create: list[str] = []
    updated: list[str] = []
    deleted: list[str] = []
    if isinstance(update, list):
        updated.append("*")
    elif isinstance(update, Mapping) and update:
        if any(isinstance(key, str) and key.startswith("$") for key in update):
            for operator, spec in update.items():
                if not isinstance(spec, Mapping):
                    continue
                if operator == "$unset":
                    deleted.extend(spec)
                elif operator == "$setOnInsert":
                    create.extend(spec)
                elif operator == "$rename":
                    deleted.extend(spec)
                    updated.extend(v for v in spec.values() if isinstance(v, str))
                else:
                    updated.extend(spec)
        else:
            updated.extend(update)
    if upsert:
        create.extend(updated)
    return _unique(create), _unique(updated), _unique(deleted)


def _namespace(command_name: str, command: Mapping[str, Any]) -> tuple[str, str]:
    db = command.get("$db")
    db = db if isinstance(db, str) else ""
    if command_name == "getMore":
        collection = command.get("collection")
    elif command_name == "explain":
        inner = command.get("explain")
        collection = None
        if isinstance(inner, Mapping) and inner:
            collection = inner.get(next(iter(inner)))
    else:
        collection = command.get(command_name)
    return db, collection if isinstance(collection, str) else ""


class _ConfigWatcher(threading.Thread):
    """Polls directories and calls back when any file in them changes."""

    def __init__(
        self, directories: Iterable[str], on_change: Callable[[], None], interval: float
    ) -> None:
        super().__init__(daemon=True, name="authz-config-watcher")
        self._directories = list(dict.fromkeys(directories))
        self._on_change = on_change
        self._interval = interval
        self._stop_event = threading.Event()

    def _snapshot(self) -> dict:
        state = {}
        for directory in self._directories:
            try:
                entries = os.scandir(directory)
            except OSError as exc:
                logger.error("Schema watcher: %s", exc)
                continue
            with entries:
                for entry in entries:
                    try:
                        info = entry.stat()
                    except OSError:
                        continue
                    state[entry.path] = (info.st_mtime_ns, info.st_size)
        return state

    def run(self) -> None:
        previous = self._snapshot()
        while not self._stop_event.wait(self._interval):
            current = self._snapshot()
            if current == previous:
                continue
            changed = sorted(set(current.items()) ^ set(previous.items()))
            logger.debug("Schema watcher event: %s", [path for path, _ in changed])
            previous = current
            try:
                self._on_change()
            except Exception as exc:  # reload failures keep the old schema
                logger.error("Schema reload failed: %s", exc)

    def stop(self) -> None:
        self._stop_event.set()


class AuthzPlugin(Plugin):
    """Allows or denies commands according to role-based policies."""

    watch_interval = 1.0

    def __init__(self) -> None:
        self.conf = AuthzPluginConfig()
        self._authz = Authz()
        self._watcher: Optional[_ConfigWatcher] = None

    def name(self) -> str:
        return NAME

    def load_config(self) -> None:
        """(Re)load the policies from the configured paths."""
        try:
            self._authz.load_config(self.conf.paths)
        except Exception:
            logger.debug("authz config update failed")
            raise
        logger.debug("authz config update succeeded")

    def configure(self, config: Optional[dict]) -> None:
        self.conf = _decode_config(config)
        self.load_config()

        directories = [os.path.dirname(path) or "." for path in self.conf.paths]
        for directory in directories:
            if not os.path.isdir(directory):
                raise FileNotFoundError(f"cannot watch missing directory: {directory}")
        if self._watcher is not None:
            self._watcher.stop()
        self._watcher = _ConfigWatcher(directories, self.load_config, self.watch_interval)
        self._watcher.start()

    def resources_for_command(
        self, request: Request, command_name: str, command: Mapping[str, Any]
    ) -> ResourceMap:
        """The resources, by CRUD method, that ``command`` touches."""
        db, collection = _namespace(command_name, command)
        namespace = Resource(db=db, collection=collection)

        def fields(names: Iterable[str]) -> list[Resource]:
            return [Resource(db=db, collection=collection, field=name) for name in names]

        simple = _SIMPLE_COMMANDS.get(command_name)
        if simple is not None:
            method, scope = simple
            if scope == "global":
                return {method: [Resource(is_global=True)]}
            if scope == "database":
                return {method: [Resource(db=db)]}
            return {method: [namespace]}

        resources: ResourceMap = {}

        if command_name == "distinct":
            key = command.get("key")
            resources[_READ] = fields([key if isinstance(key, str) else ""])

        elif command_name == "explain":
            inner = command.get("explain")
            if not isinstance(inner, Mapping) or not inner:
                return {}
            inner_command = dict(inner)
            inner_command.setdefault("$db", db)
            resources = {
                method: list(items)
                for method, items in self.resources_for_command(
                    request, next(iter(inner_command)), inner_command
                ).items()
            }
            read = resources.setdefault(_READ, [])
            read.append(namespace)
            if command.get("verbosity") != "queryPlanner":
                read.append(Resource(is_global=True))

        elif command_name in ("find", "findAndModify"):
            key = "projection" if command_name == "find" else "fields"
            projection = command.get(key)
            if not isinstance(projection, Mapping) or not projection:
                resources[_READ] = fields(["*"])
            else:
                resources[_READ] = fields(
                    name for name, value in projection.items() if _bool_number(value)
                )
            if command_name == "findAndModify":
                self._add_update(
                    resources, fields, command.get("update"), bool(command.get("upsert"))
                )

        elif command_name == "getMore":
            cursor_id = command.get("getMore")
            if not isinstance(cursor_id, int) or isinstance(cursor_id, bool):
                return {}
            stored = request.cursor_cache.get_cursor(cursor_id).data.get(_RESOURCES_KEY)
            return stored if isinstance(stored, dict) else {}

        elif command_name == "update":
            for update in command.get("updates") or ():
                if isinstance(update, Mapping):
                    self._add_update(
                        resources, fields, update.get("u"), bool(update.get("upsert"))
                    )

        return resources

    @staticmethod
    def _add_update(
        resources: ResourceMap,
        fields: Callable[[Iterable[str]], list],
        update: Any,
        upsert: bool,
    ) -> None:
        created, updated, deleted = _expand_update(update, upsert)
        for method, names in ((_CREATE, created), (_UPDATE, updated), (_DELETE, deleted)):
            if names:
                resources[method] = fields(names)

    @staticmethod
    def _log_rules(identities: list, results: list[AuthorizeResult]) -> None:
        described = None
        for result in results:
            for rule in result.log_only_rules:
                if described is None:
                    described = [[ident.source, ident.user] for ident in identities]
                logger.debug(
                    "Authz LOGONLY identities=%s policy=%s ruleNumber=%d effect=%s "
                    "message=%s method=%s resource=%s",
                    described,
                    rule.policy_name,
                    rule.rule_number,
                    rule.effect,
                    rule.message,
                    result.method,
                    result.resource,
                )

    @staticmethod
    def _deny(db: str, collection: str, command_name: str) -> Document:
        logger.debug("authz deny db=%s collection=%s command=%s", db, collection, command_name)
        return error_document("Unauthorized", "unauthorized")

    def process(self, request: Request, next_: PipelineFunc) -> Document:
        if request.command_name in OPEN_COMMANDS:
            return next_(request)

        resources = self.resources_for_command(
            request, request.command_name, request.command
        )
        if not resources:
            return error_document(
                "Unauthorized", "unauthorized no resource for " + request.command_name
            )

        db, collection = _namespace(request.command_name, request.command)
        identities = request.client.identities
        if identities is None:
            if self.conf.log_unauthenticated:
                logger.warning(
                    "Unauthenticated request addr=%s commandName=%s database=%s collection=%s",
                    request.client.addr_string(),
                    request.command_name,
                    db,
                    collection,
                )
            identities = [StaticIdentity(NAME, UNAUTHENTICATED_ROLE, (UNAUTHENTICATED_ROLE,))]

        roles = _unique(role for ident in identities for role in ident.roles)

        querier = self._authz.querier()
        if querier is None:
            raise RuntimeError("authz plugin is not configured")
        results = [
            querier.authorize(roles, method, resource)
            for method, items in resources.items()
            for resource in items
        ]
        self._log_rules(identities, results)

        namespaces = self.conf.deny_by_default_namespaces
        for result in results:
            if result.rule is None:
                if namespaces is not None:
                    decision = namespaces.get(f"{db}.{collection}")
                    if decision is not None:
                        if decision:
                            return self._deny(db, collection, request.command_name)
                        continue
                if self.conf.deny_by_default:
                    return self._deny(db, collection, request.command_name)
                continue
            if not result.rule.effect.is_allow():
                return self._deny(db, collection, request.command_name)

        reply = next_(request)
        cursor_id = lookup(reply, "cursor", "id")
        if isinstance(cursor_id, int) and not isinstance(cursor_id, bool) and cursor_id > 0:
            request.cursor_cache.get_cursor(cursor_id).data[_RESOURCES_KEY] = resources
        return reply


register(AuthzPlugin)