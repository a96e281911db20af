import asyncio

from inbox.core.config import get_settings
from inbox.core.db import close_engine, get_session_factory, init_engine
from inbox.core.security import create_agent_access_token
from inbox.infra.db.seed import (
    seed_bootstrap_admin,
    seed_default_departments,
    seed_default_routing_settings,
    seed_default_tags,
)


async def main() -> None:
    settings = get_settings()
    engine = init_engine()
    try:
        session_factory = get_session_factory()
        async with session_factory() as session:
            await seed_default_routing_settings(session)
            await seed_default_departments(session)
            await seed_default_tags(session)
            admin = await seed_bootstrap_admin(session)
            await session.commit()

        print("Successfully loaded data !")
        if admin is not None:
            token, expires_at = create_agent_access_token(
                user_id=admin.user_id,
                agent_id=admin.id,
                secret=settings.agent_auth_secret,
                ttl_minutes=settings.agent_auth_token_ttl_minutes,
                is_admin=True,
            )
            print(f"Admin agent {admin.id} created.")
            print(f"Admin access token (expires {expires_at.isoformat()}):")
            print(token)
    finally:
        await close_engine(engine)


if __name__ == "__main__":
    asyncio.run(main())
