"""Enumerations used by the authorization engine."""

from __future__ import annotations

import enum


class Effect(enum.Enum):
    """The effect a rule has when it matches."""

    NOT_SET = 0
    DENY = 1
    ALLOW = 2

    def is_set(self) -> bool:
        return self is not Effect.NOT_SET

    def is_deny(self) -> bool:
        return self is Effect.DENY

    def is_allow(self) -> bool:
        return self is Effect.ALLOW

    def __str__(self) -> str:
        return _EFFECT_NAMES[self]


_EFFECT_NAMES = {
    Effect.NOT_SET: "NotSet",
    Effect.DENY: "Deny",
    Effect.ALLOW: "Allow",
}


def get_effect(text: str) -> Effect:
    """Parse an effect name case-insensitively; unknown names are NOT_SET."""
    return {"deny": Effect.DENY, "allow": Effect.ALLOW}.get(text.lower(), Effect.NOT_SET)


class PolicyType(enum.Enum):
    """Whether a rule is enforced or only logged."""

    NOT_SET = 0
    LOG_ONLY = 1

    def is_set(self) -> bool:
        return self is not PolicyType.NOT_SET

    def is_log_only(self) -> bool:
        return self is PolicyType.LOG_ONLY

    def __str__(self) -> str:
        return "LogOnly" if self is PolicyType.LOG_ONLY else "NotSet"


def get_policy(text: str) -> PolicyType:
    """Parse a policy kind case-insensitively; unknown names are NOT_SET."""
    return PolicyType.LOG_ONLY if text.lower() == "logonly" else PolicyType.NOT_SET


class EnforceMethod(enum.Enum):
    """How the outcome of an authorization is acted upon."""

    DEFAULT = 1
    ENFORCE = 2
    LOG = 3
    AUTHORIZED = 4

    def __str__(self) -> str:
        return {
            EnforceMethod.DEFAULT: "default",
            EnforceMethod.ENFORCE: "enforce",
            EnforceMethod.LOG: "log",
            EnforceMethod.AUTHORIZED: "authorized",
        }[self]


class AuthorizationMethod(enum.Enum):
    """The CRUD permission being checked."""

    CREATE = 1
    READ = 2
    UPDATE = 3
    DELETE = 4

    def __str__(self) -> str:
        return _METHOD_NAMES[self]


_METHOD_NAMES = {
    AuthorizationMethod.CREATE: "Create",
    AuthorizationMethod.READ: "Read",
    AuthorizationMethod.UPDATE: "Update",
    AuthorizationMethod.DELETE: "Delete",
}

_METHODS_BY_NAME = {name: method for method, name in _METHOD_NAMES.items()}


def parse_action(text: str) -> AuthorizationMethod:
    """Map a policy action name ("Create", "Read", ...) to its method."""
    try:
        return _METHODS_BY_NAME[text]
    except (KeyError, TypeError):
        raise ValueError("received a non-CRUD permission") from None