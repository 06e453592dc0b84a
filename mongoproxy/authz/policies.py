"""Authorization rules, per-resource rule sets, policies and their loaders."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Optional, Union

from .resource import Resource, get_resource
from .types import (
    AuthorizationMethod,
    Effect,
    PolicyType,
    get_effect,
    get_policy,
    parse_action,
)

PathLike = Union[str, "os.PathLike[str]"]


class PolicyError(ValueError):
    """Raised when a policy or role definition is malformed."""


@dataclass
class Rule:
    """A single rule from a policy."""

    policy_name: str = ""
    rule_number: int = 0
    effect: Effect = Effect.NOT_SET
    policy: PolicyType = PolicyType.NOT_SET
    condition: dict = field(default_factory=dict)
    message: str = ""

    def __str__(self) -> str:
        return f"Effect: {self.effect}, Policy: {self.policy}, Condition: {self.condition}"


def sort_rules(rules: Iterable[Rule]) -> list[Rule]:
    """Return the rules with deny rules first, otherwise keeping their order."""
    return sorted(rules, key=lambda rule: 0 if rule.effect is Effect.DENY else 1)


def _empty_rule_lists() -> dict[AuthorizationMethod, list[Rule]]:
    return {method: [] for method in AuthorizationMethod}


@dataclass
class ResourceRules:
    """Enforced and log-only rules for one resource, by CRUD method."""

    rules: dict = field(default_factory=_empty_rule_lists)
    log_only: dict = field(default_factory=_empty_rule_lists)

    def _add(self, method: AuthorizationMethod, rule: Rule) -> None:
        target = self.log_only if rule.policy.is_log_only() else self.rules
        target[method].append(rule)

    def sort_rules(self) -> None:
        """Order every rule list so deny rules come first."""
        for table in (self.rules, self.log_only):
            for method, rules in table.items():
                table[method] = sort_rules(rules)

    def combine(self, other: Optional["ResourceRules"]) -> None:
        """Merge ``other``'s rules into these and re-sort."""
        if other is None or other is self:
            return
        for mine, theirs in ((self.rules, other.rules), (self.log_only, other.log_only)):
            for method, rules in theirs.items():
                mine.setdefault(method, []).extend(rules)
        self.sort_rules()

    def rule_for(self, method: AuthorizationMethod) -> Optional[Rule]:
        """The rule that decides ``method``, if any."""
        rules = self.rules.get(method)
        return rules[0] if rules else None

    def log_only_rules(self, method: AuthorizationMethod) -> list[Rule]:
        """All log-only rules for ``method``."""
        return list(self.log_only.get(method, ()))


@dataclass
class Policy:
    """A named policy: the rules it defines for each resource."""

    resources: dict = field(default_factory=dict)

    def combine(self, other: Optional["Policy"]) -> None:
        """Merge another policy's resources into this one."""
        if other is None or other is self:
            return
        for resource, rules in other.resources.items():
            existing = self.resources.get(resource)
            if existing is None:
                self.resources[resource] = rules
            else:
                existing.combine(rules)

    def rule_for(self, method: AuthorizationMethod, resource: Resource) -> Optional[Rule]:
        rules = self.resources.get(resource)
        return rules.rule_for(method) if rules is not None else None

    def log_only_rules(self, method: AuthorizationMethod, resource: Resource) -> list[Rule]:
        rules = self.resources.get(resource)
        return rules.log_only_rules(method) if rules is not None else []


def _parse_resource(raw: Any) -> Resource:
    if not isinstance(raw, dict) or not all(
        isinstance(key, str) and isinstance(value, str) for key, value in raw.items()
    ):
        raise PolicyError("resource must be an object of strings")
    try:
        return get_resource(raw)
    except ValueError as exc:
        raise PolicyError(str(exc)) from exc


def _parse_rule(policy_name: str, number: int, perm: Any) -> Rule:
    if not isinstance(perm, dict):
        raise PolicyError("each rule must be an object")
    message = perm.get("Message", "")
    if not isinstance(message, str):
        raise PolicyError("message must be a string")
    effect = perm.get("Effect")
    if not isinstance(effect, str):
        raise PolicyError("could not get effect from rule")
    kind = PolicyType.NOT_SET
    if "Policy" in perm:
        if not isinstance(perm["Policy"], str):
            raise PolicyError("could not get policy from rule")
        kind = get_policy(perm["Policy"])
    condition = perm.get("Condition")
    if not isinstance(condition, dict):
        raise PolicyError("could not get condition from rule")
    if condition:
        raise PolicyError("conditions are not implemented")
    return Rule(
        policy_name=policy_name,
        rule_number=number,
        effect=get_effect(effect),
        policy=kind,
        message=message,
    )


def parse_policy(policy_name: str, raw: Any) -> Policy:
    """Build a policy from its decoded JSON rule list."""
    if not isinstance(raw, list):
        raise PolicyError("policy must be a list of rules")
    policy = Policy()
    for number, perm in enumerate(raw):
        rule = _parse_rule(policy_name, number, perm)
        raw_resources = perm.get("Resource")
        if not isinstance(raw_resources, list):
            raise PolicyError("could not create resources list from rule")
        for raw_resource in raw_resources:
            actions = perm.get("Action")
            if not isinstance(actions, list):
                raise PolicyError("could not create list of actions from rule")
            rules = ResourceRules()
            for action in actions:
                try:
                    method = parse_action(action)
                except ValueError as exc:
                    raise PolicyError(str(exc)) from exc
                rules._add(method, rule)
            resource = _parse_resource(raw_resource)
            rules.sort_rules()
            existing = policy.resources.get(resource)
            if existing is None:
                policy.resources[resource] = rules
            else:
                existing.combine(rules)
    return policy


def _read_json(path: PathLike, name: str) -> Any:
    return json.loads(Path(path, name).read_text(encoding="utf-8"))


def load_policies(path: PathLike) -> dict[str, Policy]:
    """Load ``policies.json`` from the directory ``path``."""
    data = _read_json(path, "policies.json")
    if not isinstance(data, dict):
        raise PolicyError("policies.json must hold an object")
    return {name: parse_policy(name, raw) for name, raw in data.items()}


def load_roles(path: PathLike) -> dict[str, list[str]]:
    """Load ``roles.json`` (role name to policy names) from the directory ``path``."""
    data = _read_json(path, "roles.json")
    if not isinstance(data, dict):
        raise PolicyError("roles.json must hold an object")
    roles: dict[str, list[str]] = {}
    for role, policies in data.items():
        if policies is None:
            roles[role] = []
            continue
        if not isinstance(policies, list) or not all(isinstance(p, str) for p in policies):
            raise PolicyError(f"role {role} must map to a list of policy names")
        roles[role] = list(policies)
    return roles