import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.httpsredirect import HTTPSRedirectMiddleware
from starlette.middleware.trustedhost import TrustedHostMiddleware

from inbox.api.router import api_router
from inbox.api.v1.errors import ERROR_CODE_HEADER
from inbox.core.config import Settings, get_settings
from inbox.core.db import close_engine, get_session_factory, init_engine, initialize_database
from inbox.core.logging import configure_logging
from inbox.core.rate_limit import SendRateLimiter
from inbox.infra.db.repositories import AgentRepository
from inbox.infra.gateway import HttpMessagingGateway
from inbox.infra.realtime import InMemoryRealtimeHub
from inbox.infra.storage import HttpBlobStorage

logger = logging.getLogger(__name__)

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    # Voice notes are recorded in the agent console.
    "Permissions-Policy": "camera=(), microphone=(self), geolocation=()",
}
HSTS_VALUE = "max-age=31536000; includeSubDomains"


async def _reset_presence() -> None:
    # No socket survives a restart.
    async with get_session_factory()() as session:
        await AgentRepository(session).set_all_offline()
        await session.commit()


def _build_lifespan(settings: Settings):
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        engine = init_engine()
        await initialize_database(engine)
        gateway = HttpMessagingGateway(
            base_url=settings.gateway_base_url,
            instance_token=settings.gateway_instance_token,
            timeout_seconds=settings.gateway_timeout_seconds,
        )
        storage = HttpBlobStorage(
            base_url=settings.storage_base_url,
            public_url=settings.storage_public_url,
            api_key=settings.storage_api_key,
            timeout_seconds=settings.storage_timeout_seconds,
        )
        app.state.db_engine = engine
        app.state.realtime_hub = InMemoryRealtimeHub()
        app.state.send_rate_limiter = SendRateLimiter()
        app.state.gateway = gateway
        app.state.storage = storage

        await _reset_presence()
        logger.info("inbox core started (env=%s)", settings.app_env)
        try:
            yield
        finally:
            await gateway.aclose()
            await storage.aclose()
            await close_engine(engine)
            logger.info("inbox core stopped")

    return lifespan


def _install_middleware(app: FastAPI, settings: Settings) -> None:
    if settings.trusted_hosts:
        app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.trusted_hosts)
    if settings.force_https:
        app.add_middleware(HTTPSRedirectMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type"],
        expose_headers=[ERROR_CODE_HEADER, "Retry-After"],
    )

    headers = dict(SECURITY_HEADERS)
    if settings.force_https:
        headers["Strict-Transport-Security"] = HSTS_VALUE

    @app.middleware("http")
    async def apply_security_headers(request: Request, call_next):
        response = await call_next(request)
        for name, value in headers.items():
            response.headers.setdefault(name, value)
        return response


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    settings.validate_security_settings()
    configure_logging(settings.log_level)

    is_production = settings.app_env == "production"
    app = FastAPI(
        title="Inbox Core API",
        version="0.1.0",
        docs_url=None if is_production else "/docs",
        redoc_url=None if is_production else "/redoc",
        lifespan=_build_lifespan(settings),
    )
    _install_middleware(app, settings)
    app.include_router(api_router, prefix="/api")

    @app.get("/", tags=["meta"])
    async def root() -> dict[str, str]:
        return {"service": "inbox-core", "status": "ok"}

    return app


app = create_app()
