import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from permengine.auth.audit import AuditSink, SqlAuditSink
from permengine.auth.registry import RoutePermissionRegistry
from permengine.auth.stores import EntitySnapshotStore, PrincipalStore, SqlPrincipalStore
from permengine.config import Settings, settings as default_settings
from permengine.database import build_engine, build_sessionmaker
from permengine.engine import PermissionEngine
from permengine.middleware.exceptions import register_exception_handlers
from permengine.middleware.permissions import PermissionMiddleware
from permengine.routers import health, permissions
from permengine.utils.cache import CachingPrincipalStore, close_redis
from permengine.utils.routes import report_unguarded_routes

logger = logging.getLogger(__name__)


def create_app(
    settings: Settings | None = None,
    *,
    principal_store: PrincipalStore | None = None,
    audit_sink: AuditSink | None = None,
    registry: RoutePermissionRegistry | None = None,
    product_snapshots: EntitySnapshotStore | None = None,
    transaction_snapshots: EntitySnapshotStore | None = None,
) -> FastAPI:
    """Build the application and its PermissionEngine.

    Without an explicit principal store / audit sink the users table and
    `permission_audit_logs` are used.  A bad rule table raises
    ConfigurationError here, before anything is served.
    """
    settings = settings or default_settings

    db_engine = None
    if principal_store is None or audit_sink is None:
        db_engine = build_engine(settings)
        session_factory = build_sessionmaker(db_engine)
        principal_store = principal_store or SqlPrincipalStore(session_factory)
        audit_sink = audit_sink or SqlAuditSink(session_factory)

    use_cache = settings.principal_cache_ttl_seconds > 0
    if use_cache:
        principal_store = CachingPrincipalStore(
            principal_store,
            settings.principal_cache_ttl_seconds,
            redis_url=settings.redis_url,
        )
        logger.info(f"Principal cache enabled (ttl={settings.principal_cache_ttl_seconds}s)")

    engine = PermissionEngine.build(
        settings,
        principal_store,
        audit_sink=audit_sink,
        registry=registry,
        product_snapshots=product_snapshots,
        transaction_snapshots=transaction_snapshots,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        report_unguarded_routes(app, engine.registry, settings.public_prefixes)
        yield
        if use_cache:
            await close_redis()
        if db_engine is not None:
            await db_engine.dispose()

    app = FastAPI(
        title="permengine",
        description="Authorization & permission engine",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.engine = engine

    # ── Exception Handlers ───────────────────────────────────────
    register_exception_handlers(app)

    # ── Middleware (added last = outermost) ──────────────────────
    # Permission enforcement (innermost - runs right before the handler)
    app.add_middleware(
        PermissionMiddleware,
        engine=engine,
        public_prefixes=settings.public_prefixes,
    )

    # CORS (outermost - preflight never reaches enforcement)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins.split(","),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ── Routers ──────────────────────────────────────────────────
    app.include_router(health.router)
    app.include_router(permissions.router, prefix="/api/permissions", tags=["permissions"])

    return app
