"""Route-permission registry.

Maps "METHOD /path/{param}" patterns to the requirement guarding them.

Matching:
  1. exact literal match ("POST /api/inventory/products/add-stock")
  2. pattern rules in registration order; equal segment count, literal
     equality on every non-placeholder segment

Register specific patterns before general ones: the first match wins and
the matcher does not reorder rules.

Patterns are compiled once at registration into a tuple of segment
matchers.  Requirements are validated against the catalog and the role
set at registration, so a bad rule fails at startup instead of at request
time.

Writers take a lock and publish a fresh immutable snapshot; readers only
ever see a complete table.
"""

from __future__ import annotations

import inspect
import threading
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable, Union

from permengine.auth.catalog import Capability, get_capability, parse_capability
from permengine.auth.principal import Principal, Role
from permengine.middleware.exceptions import ConfigurationError

HTTP_METHODS = frozenset({"GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"})


# ── Requirements ────────────────────────────────────────────

@dataclass(frozen=True)
class RoleRequirement:
    """Satisfied outright when the principal's role is listed."""
    roles: frozenset[Role]

    def __init__(self, roles: Iterable[Role | str]):
        resolved = set()
        for r in roles:
            try:
                resolved.add(Role(r))
            except ValueError:
                raise ConfigurationError(f"Unknown role in rule: {r!r}") from None
        if not resolved:
            raise ConfigurationError("RoleRequirement needs at least one role")
        object.__setattr__(self, "roles", frozenset(resolved))

    def describe(self) -> str:
        return "role in " + ", ".join(sorted(r.value for r in self.roles))


@dataclass(frozen=True)
class CapabilityRequirement:
    capability: Capability

    def __init__(self, category: str, capability: str):
        object.__setattr__(self, "capability", get_capability(category, capability))

    @classmethod
    def parse(cls, key: str) -> "CapabilityRequirement":
        cap = parse_capability(key)
        return cls(cap.category.value, cap.name)

    def describe(self) -> str:
        return self.capability.key


@dataclass(frozen=True)
class AnyCapabilityRequirement:
    """Satisfied by any one of the listed capabilities."""
    capabilities: tuple[Capability, ...]

    def __init__(self, capabilities: Iterable[str]):
        caps = tuple(parse_capability(c) for c in capabilities)
        if not caps:
            raise ConfigurationError("AnyCapabilityRequirement needs at least one capability")
        object.__setattr__(self, "capabilities", caps)

    def describe(self) -> str:
        return "any of " + ", ".join(c.key for c in self.capabilities)


PredicateFn = Callable[[Principal, dict[str, Any]], Union[bool, "PredicateOutcome", Awaitable[Any]]]


@dataclass(frozen=True)
class PredicateOutcome:
    """Predicate result that can name the capability it found missing."""
    allowed: bool
    missing: Capability | None = None


@dataclass(frozen=True)
class CustomPredicate:
    """Arbitrary check over the principal and the request context.

    The context carries at least `method`, `path` and `params` (placeholder
    values).  The callable may be sync or async and returns either a bool
    or a PredicateOutcome.
    """
    fn: PredicateFn
    description: str = "custom check"

    def __post_init__(self):
        if not callable(self.fn):
            raise ConfigurationError("CustomPredicate needs a callable")

    async def evaluate(self, principal: Principal, context: dict[str, Any]) -> PredicateOutcome:
        result = self.fn(principal, context)
        if inspect.isawaitable(result):
            result = await result
        if isinstance(result, PredicateOutcome):
            return result
        return PredicateOutcome(bool(result))

    def describe(self) -> str:
        return self.description


Requirement = Union[RoleRequirement, CapabilityRequirement, AnyCapabilityRequirement, CustomPredicate]
_REQUIREMENT_TYPES = (RoleRequirement, CapabilityRequirement, AnyCapabilityRequirement, CustomPredicate)


# ── Compiled patterns ───────────────────────────────────────

@dataclass(frozen=True)
class Segment:
    literal: str | None = None   # None = placeholder
    name: str | None = None      # placeholder name

    @property
    def is_placeholder(self) -> bool:
        return self.literal is None


def split_path(path: str) -> list[str]:
    """Split a request path into segments.

    The query string and one trailing slash are ignored; "/" has no
    segments.
    """
    path = path.split("?", 1)[0]
    if path in ("", "/"):
        return []
    if path.endswith("/"):
        path = path[:-1]
    return path.split("/")[1:] if path.startswith("/") else path.split("/")


def _compile_segment(raw: str, pattern: str) -> Segment:
    if raw.startswith("{") and raw.endswith("}"):
        name = raw[1:-1]
        if not name or "{" in name or "}" in name:
            raise ConfigurationError(f"Bad placeholder {raw!r} in {pattern!r}")
        return Segment(name=name)
    if "{" in raw or "}" in raw:
        raise ConfigurationError(
            f"Partial-segment placeholders are not supported: {raw!r} in {pattern!r}"
        )
    return Segment(literal=raw)


@dataclass(frozen=True)
class CompiledPattern:
    method: str
    segments: tuple[Segment, ...]

    @property
    def is_literal(self) -> bool:
        return not any(s.is_placeholder for s in self.segments)

    def match(self, method: str, parts: list[str]) -> dict[str, str] | None:
        """Return placeholder values on match, None otherwise."""
        if method != self.method or len(parts) != len(self.segments):
            return None
        params: dict[str, str] = {}
        for seg, part in zip(self.segments, parts):
            if seg.is_placeholder:
                if not part:
                    return None
                params[seg.name] = part
            elif seg.literal != part:
                return None
        return params


def compile_pattern(method_and_pattern: str) -> CompiledPattern:
    method, sep, pattern = method_and_pattern.strip().partition(" ")
    method = method.upper()
    pattern = pattern.strip()
    if not sep or not pattern.startswith("/"):
        raise ConfigurationError(f"Rule must look like 'METHOD /path': {method_and_pattern!r}")
    if method not in HTTP_METHODS:
        raise ConfigurationError(f"Unknown HTTP method in rule: {method!r}")
    segments = tuple(_compile_segment(s, pattern) for s in split_path(pattern))
    return CompiledPattern(method, segments)


# ── Rules & registry ────────────────────────────────────────

@dataclass(frozen=True)
class RoutePermissionRule:
    method_and_pattern: str
    requirement: Requirement
    compiled: CompiledPattern = field(repr=False, compare=False, default=None)


@dataclass(frozen=True)
class RouteMatch:
    rule: RoutePermissionRule
    params: dict[str, str]


@dataclass(frozen=True)
class _Snapshot:
    exact: dict[tuple[str, str], RoutePermissionRule]
    patterns: tuple[RoutePermissionRule, ...]
    ordered: tuple[RoutePermissionRule, ...]


def _normalize_key(compiled: CompiledPattern) -> str:
    path = "/" + "/".join(
        s.literal if not s.is_placeholder else "{" + s.name + "}" for s in compiled.segments
    )
    return f"{compiled.method} {path}"


class RoutePermissionRegistry:
    def __init__(self, rules: Iterable[tuple[str, Requirement]] = ()):
        self._lock = threading.Lock()
        self._snapshot = _Snapshot({}, (), ())
        for method_and_pattern, requirement in rules:
            self.add_route_permission(method_and_pattern, requirement)

    # ── Configuration-time mutation ─────────────────────────

    def add_route_permission(self, method_and_pattern: str, requirement: Requirement) -> RoutePermissionRule:
        if not isinstance(requirement, _REQUIREMENT_TYPES):
            raise ConfigurationError(
                f"Unsupported requirement for {method_and_pattern!r}: {type(requirement).__name__}"
            )
        compiled = compile_pattern(method_and_pattern)
        key = _normalize_key(compiled)
        rule = RoutePermissionRule(key, requirement, compiled)

        with self._lock:
            ordered = list(self._snapshot.ordered)
            for i, existing in enumerate(ordered):
                if existing.method_and_pattern == key:
                    # Re-registration keeps its position in match order
                    ordered[i] = rule
                    break
            else:
                ordered.append(rule)
            self._publish(ordered)
        return rule

    def update_route_permission(self, method_and_pattern: str, requirement: Requirement) -> RoutePermissionRule:
        key = _normalize_key(compile_pattern(method_and_pattern))
        if self.get(key) is None:
            raise KeyError(key)
        return self.add_route_permission(key, requirement)

    def remove_route_permission(self, method_and_pattern: str) -> None:
        key = _normalize_key(compile_pattern(method_and_pattern))
        with self._lock:
            ordered = [r for r in self._snapshot.ordered if r.method_and_pattern != key]
            self._publish(ordered)

    def _publish(self, ordered: list[RoutePermissionRule]) -> None:
        exact = {}
        patterns = []
        for r in ordered:
            if r.compiled.is_literal:
                path = "/" + "/".join(s.literal for s in r.compiled.segments)
                exact[(r.compiled.method, path)] = r
            else:
                patterns.append(r)
        self._snapshot = _Snapshot(exact, tuple(patterns), tuple(ordered))

    # ── Lookup ──────────────────────────────────────────────

    def match(self, method: str, path: str) -> RouteMatch | None:
        snapshot = self._snapshot
        method = method.upper()
        parts = split_path(path)

        exact = snapshot.exact.get((method, "/" + "/".join(parts)))
        if exact is not None:
            return RouteMatch(exact, {})

        for rule in snapshot.patterns:
            params = rule.compiled.match(method, parts)
            if params is not None:
                return RouteMatch(rule, params)
        return None

    def lookup(self, method: str, path: str) -> RoutePermissionRule | None:
        found = self.match(method, path)
        return found.rule if found else None

    def get(self, method_and_pattern: str) -> RoutePermissionRule | None:
        key = _normalize_key(compile_pattern(method_and_pattern))
        for r in self._snapshot.ordered:
            if r.method_and_pattern == key:
                return r
        return None

    def rules(self) -> tuple[RoutePermissionRule, ...]:
        return self._snapshot.ordered

    def __len__(self) -> int:
        return len(self._snapshot.ordered)

    def describe(self) -> list[dict[str, Any]]:
        """Rule table for the admin UI / CLI."""
        out = []
        for r in self._snapshot.ordered:
            req = r.requirement
            entry: dict[str, Any] = {
                "route": r.method_and_pattern,
                "type": type(req).__name__,
                "requirement": req.describe(),
            }
            if isinstance(req, RoleRequirement):
                entry["roles"] = sorted(role.value for role in req.roles)
            elif isinstance(req, CapabilityRequirement):
                entry["requiredCapability"] = req.capability.key
            out.append(entry)
        return out
