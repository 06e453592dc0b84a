"""Authorization queries over loaded roles and policies."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Optional

from .policies import PathLike, Policy, Rule, load_policies, load_roles
from .resource import Resource, append_if_missing, expand_resource
from .types import AuthorizationMethod


@dataclass
class AuthorizeResult:
    """The outcome of one authorization query."""

    method: AuthorizationMethod
    resource: Resource
    identity_name: str = ""
    rule: Optional[Rule] = None
    log_only_rules: list = field(default_factory=list)


@dataclass
class AuthzSchema:
    """Roles (role name to policy names) and policies (name to policy)."""

    roles: dict = field(default_factory=dict)
    policies: dict = field(default_factory=dict)

    def load(self, path: PathLike) -> None:
        """Load and merge ``roles.json`` and ``policies.json`` from ``path``."""
        roles = load_roles(path)
        policies = load_policies(path)
        self.combine_roles(roles)
        self.combine_policies(policies)

    def combine_roles(self, roles: dict) -> None:
        for name, policy_names in roles.items():
            if name in self.roles:
                self.roles[name] = append_if_missing(self.roles[name], policy_names)
            else:
                self.roles[name] = list(policy_names)

    def combine_policies(self, policies: dict) -> None:
        for name, policy in policies.items():
            existing: Optional[Policy] = self.policies.get(name)
            if existing is None:
                self.policies[name] = policy
            else:
                existing.combine(policy)

    def authorize(
        self,
        identities: Iterable[str],
        method: AuthorizationMethod,
        resource: Resource,
    ) -> AuthorizeResult:
        """Find the rule deciding ``method`` on ``resource`` for these roles.

        A deny rule from any policy wins over allow rules.
        """
        candidates = expand_resource(resource)
        owners: dict[str, str] = {}
        for identity in identities:
            for policy_name in self.roles.get(identity, ()):
                owners[policy_name] = identity
        if not owners:
            return AuthorizeResult(method, resource)

        allow: Optional[tuple[str, Rule]] = None
        deny: Optional[tuple[str, Rule]] = None
        log_only: list[Rule] = []
        for policy_name, identity in owners.items():
            policy = self.policies.get(policy_name)
            if policy is None:
                continue
            for candidate in candidates:
                log_only.extend(policy.log_only_rules(method, candidate))
                if deny is not None:
                    continue
                rule = policy.rule_for(method, candidate)
                if rule is None:
                    continue
                if rule.effect.is_deny():
                    deny = (identity, rule)
                if allow is None:
                    allow = (identity, rule)

        chosen = deny or allow
        if chosen is None:
            return AuthorizeResult(method, resource, log_only_rules=log_only)
        identity_name, rule = chosen
        return AuthorizeResult(
            method,
            resource,
            identity_name=identity_name,
            rule=rule,
            log_only_rules=log_only,
        )


class Authz:
    """Holds the current authorization schema and reloads it on demand."""

    def __init__(self) -> None:
        self._schema: Optional[AuthzSchema] = None
        self.paths: list = []

    def load_config(self, paths: Iterable[PathLike]) -> None:
        """Load every path into a fresh schema and swap it in on success."""
        paths = list(paths)
        schema = AuthzSchema()
        for path in paths:
            schema.load(path)
        self._schema = schema
        self.paths = paths

    def querier(self) -> Optional[AuthzSchema]:
        """A consistent view of the currently loaded schema, or None."""
        return self._schema