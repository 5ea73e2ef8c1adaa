"""Permission middleware — enforces the route-permission table on every request.

Flow:
  1. Skip public prefixes (health, docs, login)
  2. Extract Bearer token from Authorization header
  3. Decode JWT → identity ref (`sub`, falling back to `userId`)
  4. Enforcer: resolve principal, look up rule, evaluate
  5. Deny  → structured error body, the route handler never runs
     Proceed → principal on `request.state.principal`

A token that is present but invalid is treated exactly like a missing one.
"""

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from permengine.auth.enforcement import Deny, OperationDescriptor
from permengine.auth.jwt import bearer_token, decode_token, identity_ref_from_claims
from permengine.middleware.exceptions import create_error_response


class PermissionMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, engine, public_prefixes: tuple[str, ...] = ()):
        super().__init__(app)
        self.engine = engine
        self.public_prefixes = tuple(public_prefixes)

    def _is_public(self, path: str) -> bool:
        return any(path == p or path.startswith(p.rstrip("/") + "/") for p in self.public_prefixes)

    async def dispatch(self, request: Request, call_next) -> Response:
        path = request.url.path

        # CORS preflight carries no credentials
        if request.method == "OPTIONS" or self._is_public(path):
            return await call_next(request)

        identity_ref = None
        token = bearer_token(request.headers.get("authorization"))
        if token:
            identity_ref = identity_ref_from_claims(decode_token(token, self.engine.settings))

        result = await self.engine.enforcer.enforce(
            OperationDescriptor(request.method, path),
            identity_ref,
            {"query": dict(request.query_params)},
        )

        if isinstance(result, Deny):
            details = None
            if result.required_capability:
                details = {"requiredCapability": result.required_capability}
            headers = {"WWW-Authenticate": "Bearer"} if result.status_code == 401 else None
            return create_error_response(
                status_code=result.status_code,
                message=result.message,
                error_code=result.code,
                details=details,
                headers=headers,
            )

        request.state.principal = result.principal
        request.state.route_params = result.params
        return await call_next(request)
