"""Management CLI for permission operations.

Usage:
    python -m permengine.cli routes                          # Route-permission table + unguarded routes
    python -m permengine.cli catalog                         # All categories and capabilities
    python -m permengine.cli check <principal-id> <cat.cap>  # Evaluate one capability for a stored user
"""

import asyncio
import sys

from permengine.auth.catalog import catalog_as_dict, parse_capability
from permengine.auth.evaluator import PermissionEvaluator
from permengine.auth.resolver import PrincipalResolver
from permengine.auth.stores import SqlPrincipalStore
from permengine.config import settings
from permengine.database import build_engine, build_sessionmaker
from permengine.main import create_app
from permengine.middleware.exceptions import ConfigurationError, PrincipalResolutionError
from permengine.utils.routes import find_unguarded_routes


def show_routes():
    app = create_app(settings)
    registry = app.state.engine.registry
    for entry in registry.describe():
        print(f"  {entry['route']:<50} {entry['requirement']}")
    print(f"\n{len(registry)} rule(s)")

    unguarded = find_unguarded_routes(app, registry, settings.public_prefixes)
    if unguarded:
        print("\nUnguarded routes:")
        for entry in unguarded:
            print(f"  {entry}")


def show_catalog():
    total = 0
    for category, capabilities in catalog_as_dict().items():
        print(f"{category}")
        for name, kind in capabilities.items():
            suffix = " (limit)" if kind == "limit" else ""
            print(f"  {name}{suffix}")
            total += 1
    print(f"\n{total} capabilities")


async def _check(principal_id: str, key: str) -> int:
    cap = parse_capability(key)
    db_engine = build_engine(settings)
    resolver = PrincipalResolver(
        SqlPrincipalStore(build_sessionmaker(db_engine)),
        timeout=settings.principal_store_timeout_seconds,
    )
    try:
        principal = await resolver.resolve(principal_id)
    except PrincipalResolutionError as e:
        print(f"  UNRESOLVED: {type(e).__name__}: {e.message}")
        return 2
    finally:
        await db_engine.dispose()

    decision = PermissionEvaluator().decide_capability(principal, cap)
    if decision.allowed:
        value = f" (value={decision.value:g})" if decision.value is not None else ""
        print(f"  ALLOW {cap.key} for {principal.id} [{principal.role.value}]{value}")
        return 0
    print(f"  DENY {cap.key} for {principal.id} [{principal.role.value}]: {decision.reason}")
    return 1


def check(principal_id: str, key: str) -> int:
    return asyncio.run(_check(principal_id, key))


def main(argv: list[str] | None = None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    cmd = argv[0] if argv else ""
    try:
        if cmd == "routes":
            show_routes()
        elif cmd == "catalog":
            show_catalog()
        elif cmd == "check" and len(argv) == 3:
            return check(argv[1], argv[2])
        else:
            print("Usage: python -m permengine.cli [routes|catalog|check <principal-id> <category.capability>]")
            return 64
    except ConfigurationError as e:
        print(f"  CONFIGURATION ERROR: {e.message}")
        return 3
    return 0


if __name__ == "__main__":
    sys.exit(main())
