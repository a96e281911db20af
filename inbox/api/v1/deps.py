from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from inbox.core.config import get_settings
from inbox.core.db import get_db_session
from inbox.core.rate_limit import RateLimitRule, SendRateLimiter
from inbox.core.security import Principal, decode_agent_access_token
from inbox.infra.db.repositories import AgentRepository
from inbox.infra.gateway import MessagingGateway
from inbox.infra.realtime.publisher import NoopRealtimePublisher, RealtimePublisher
from inbox.infra.storage import BlobStorage
from inbox.services.errors import SendRateLimitedError

settings = get_settings()
bearer_scheme = HTTPBearer(auto_error=False)


def get_realtime(request: Request) -> RealtimePublisher:
    return getattr(request.app.state, "realtime_hub", None) or NoopRealtimePublisher()


def get_gateway(request: Request) -> MessagingGateway:
    gateway = getattr(request.app.state, "gateway", None)
    if gateway is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Messaging gateway is not configured",
        )
    return gateway


def get_storage(request: Request) -> BlobStorage | None:
    return getattr(request.app.state, "storage", None)


async def get_principal(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    session: AsyncSession = Depends(get_db_session),
) -> Principal:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing or invalid authorization credentials",
        )

    try:
        principal = decode_agent_access_token(
            credentials.credentials,
            settings.agent_auth_secret,
        )
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired agent session",
        ) from exc

    agent = await AgentRepository(session).get_by_id(principal.agent_id)
    if agent is None or agent.user_id != principal.user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired agent session",
        )
    return principal


async def get_admin_principal(principal: Principal = Depends(get_principal)) -> Principal:
    if not principal.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Administrator privileges required",
        )
    return principal


def get_send_rate_limiter(request: Request) -> SendRateLimiter:
    limiter = getattr(request.app.state, "send_rate_limiter", None)
    if limiter is None:
        limiter = SendRateLimiter()
        request.app.state.send_rate_limiter = limiter
    return limiter


async def enforce_send_rate_limit(
    principal: Principal = Depends(get_principal),
    limiter: SendRateLimiter = Depends(get_send_rate_limiter),
) -> Principal:
    rule = RateLimitRule.per_minute(settings.send_rate_limit_per_minute)
    key = f"send:{principal.agent_id}"
    if not await limiter.allow(key, rule):
        exc = SendRateLimitedError(await limiter.retry_after(key, rule))
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=str(exc),
            headers={"Retry-After": str(max(int(exc.retry_after), 1))},
        ) from exc
    return principal
