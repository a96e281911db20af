from collections.abc import AsyncIterator
from pathlib import Path
from uuid import uuid4

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine

from inbox.infra.db.models import Base
from inbox.infra.db.repositories import AgentRepository, ConversationRepository


@pytest_asyncio.fixture
async def engine(tmp_path: Path) -> AsyncIterator[AsyncEngine]:
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'inbox.db'}")
    async with engine.begin() as connection:
        await connection.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.mark.asyncio
async def test_locked_conversation_reflects_concurrent_commit(engine: AsyncEngine) -> None:
    sessions = async_sessionmaker(engine, expire_on_commit=False)
    async with sessions() as setup:
        conversation = await ConversationRepository(setup).create("5511999990000")
        await setup.commit()
        conversation_id = conversation.id

    async with sessions() as first, sessions() as second:
        loaded = await ConversationRepository(first).get_by_contact_ref("5511999990000")
        assert loaded is not None and loaded.unread_count == 0

        other = await ConversationRepository(second).get_by_id_for_update(conversation_id)
        other.unread_count += 1
        await second.commit()

        locked = await ConversationRepository(first).get_by_id_for_update(conversation_id)
        assert locked is loaded
        assert locked.unread_count == 1
        locked.unread_count += 1
        await first.commit()

    async with sessions() as check:
        final = await ConversationRepository(check).get_by_id(conversation_id)
        assert final.unread_count == 2


@pytest.mark.asyncio
async def test_locked_agent_reflects_concurrent_commit(engine: AsyncEngine) -> None:
    sessions = async_sessionmaker(engine, expire_on_commit=False)
    async with sessions() as setup:
        agent = await AgentRepository(setup).create(
            user_id=uuid4(), display_name="Maya"
        )
        await setup.commit()
        agent_id = agent.id

    async with sessions() as first, sessions() as second:
        loaded = await AgentRepository(first).get_by_id(agent_id)
        assert loaded.is_active is True

        other = await AgentRepository(second).get_by_id_for_update(agent_id)
        other.is_active = False
        other.max_concurrent_chats = 1
        await second.commit()

        locked = await AgentRepository(first).get_by_id_for_update(agent_id)
        assert locked is loaded
        assert locked.is_active is False
        assert locked.max_concurrent_chats == 1
