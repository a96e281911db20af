from fastapi import APIRouter

from inbox.api.v1.routes import (
    agents,
    catalog,
    conversations,
    delivery,
    gateway,
    health,
    inbox,
    realtime,
    routing,
)

api_router = APIRouter()
api_router.include_router(health.router, prefix="/v1", tags=["health"])
api_router.include_router(agents.router, prefix="/v1/agents", tags=["agents"])
api_router.include_router(routing.router, prefix="/v1", tags=["routing"])
api_router.include_router(delivery.router, prefix="/v1", tags=["delivery"])
api_router.include_router(
    conversations.router, prefix="/v1/conversations", tags=["conversations"]
)
api_router.include_router(inbox.router, prefix="/v1/inbox", tags=["inbox"])
api_router.include_router(catalog.router, prefix="/v1", tags=["catalog"])
api_router.include_router(gateway.router, prefix="/v1/gateway", tags=["gateway"])
api_router.include_router(realtime.router, prefix="/v1/realtime", tags=["realtime"])
