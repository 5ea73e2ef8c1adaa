"""Route-table coverage: which mounted routes have no permission rule."""

import logging

from fastapi import FastAPI
from fastapi.openapi.utils import get_openapi
from fastapi.routing import APIRoute

from permengine.auth.registry import HTTP_METHODS, RoutePermissionRegistry, split_path

logger = logging.getLogger(__name__)


def _is_public(path: str, public_prefixes: tuple[str, ...]) -> bool:
    return any(path == p or path.startswith(p.rstrip("/") + "/") for p in public_prefixes)


def mounted_operations(app: FastAPI) -> list[tuple[str, str]]:
    """Every (METHOD, path template) the app serves.

    Included routers are not guaranteed to appear in `app.routes` as
    APIRoutes, so the list comes from the generated OpenAPI paths (built
    fresh, not from the cached `app.openapi_schema`).  Top-level APIRoutes
    are added on top to pick up `include_in_schema=False` endpoints.
    """
    found: set[tuple[str, str]] = set()
    schema = get_openapi(title=app.title, version=app.version, routes=app.routes)
    for path, item in schema.get("paths", {}).items():
        for key in item:
            method = key.upper()
            if method in HTTP_METHODS:
                found.add((method, path))

    for route in app.routes:
        if isinstance(route, APIRoute):
            for method in route.methods or ():
                found.add((method, route.path))

    return sorted(found, key=lambda op: (op[1], op[0]))


def find_unguarded_routes(
    app: FastAPI,
    registry: RoutePermissionRegistry,
    public_prefixes: tuple[str, ...] = (),
) -> list[str]:
    """Mounted "METHOD /path" entries that fall through to the unmatched policy.

    Path parameters are filled with a dummy value so `{id}` routes match
    pattern rules the same way a real request would.
    """
    unguarded = []
    for method, path in mounted_operations(app):
        if method in ("HEAD", "OPTIONS") or _is_public(path, public_prefixes):
            continue
        sample = "/" + "/".join(
            "x" if part.startswith("{") else part for part in split_path(path)
        )
        if registry.match(method, sample) is None:
            unguarded.append(f"{method} {path}")
    return unguarded


def report_unguarded_routes(
    app: FastAPI,
    registry: RoutePermissionRegistry,
    public_prefixes: tuple[str, ...] = (),
) -> list[str]:
    unguarded = find_unguarded_routes(app, registry, public_prefixes)
    for entry in unguarded:
        logger.warning(f"Unguarded route (no permission rule): {entry}")
    if not unguarded:
        logger.info(f"All mounted routes covered by {len(registry)} permission rules")
    return unguarded
