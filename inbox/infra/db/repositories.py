from collections import defaultdict
from collections.abc import Iterable
from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy import Select, delete, func, insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from inbox.core.config import get_settings
from inbox.domain.enums import (
    OWNED_STATUSES,
    QUEUED_STATUSES,
    AssignmentStatus,
    ConversationFlag,
    MessageDirection,
    MessageType,
)
from inbox.domain.filters import InboxItem
from inbox.infra.db.models import (
    Agent,
    Assignment,
    Conversation,
    ConversationProduct,
    Department,
    Message,
    RoutingSettings,
    Tag,
    assignment_tags,
)


class AgentRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_by_id(self, agent_id: UUID) -> Agent | None:
        return await self.session.get(Agent, agent_id)

    async def get_by_id_for_update(self, agent_id: UUID) -> Agent | None:
        stmt: Select[tuple[Agent]] = (
            select(Agent)
            .where(Agent.id == agent_id)
            .with_for_update()
            # The row may already sit in the identity map with pre-lock values.
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_user_id(self, user_id: UUID) -> Agent | None:
        stmt: Select[tuple[Agent]] = select(Agent).where(Agent.user_id == user_id).limit(1)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_all(self) -> list[Agent]:
        stmt: Select[tuple[Agent]] = select(Agent).order_by(
            Agent.display_name.asc(), Agent.id.asc()
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def list_eligible(self, department_id: UUID | None = None) -> list[Agent]:
        stmt: Select[tuple[Agent]] = select(Agent).where(
            Agent.is_online.is_(True),
            Agent.is_active.is_(True),
        )
        if department_id is not None:
            stmt = stmt.where(Agent.department_id == department_id)
        result = await self.session.execute(stmt.order_by(Agent.created_at.asc(), Agent.id.asc()))
        return list(result.scalars().all())

    async def count_online(self) -> int:
        stmt: Select[tuple[int]] = select(func.count(Agent.id)).where(
            Agent.is_online.is_(True),
            Agent.is_active.is_(True),
        )
        result = await self.session.execute(stmt)
        return int(result.scalar_one() or 0)

    async def create(
        self,
        user_id: UUID,
        display_name: str,
        max_concurrent_chats: int = 5,
        department_id: UUID | None = None,
        is_online: bool = False,
    ) -> Agent:
        agent = Agent(
            user_id=user_id,
            display_name=display_name,
            max_concurrent_chats=max_concurrent_chats,
            department_id=department_id,
            is_online=is_online,
            is_active=True,
            last_activity_at=datetime.now(UTC),
        )
        self.session.add(agent)
        await self.session.flush()
        await self.session.refresh(agent)
        return agent

    async def update_presence(self, agent: Agent, is_online: bool) -> None:
        agent.is_online = is_online
        agent.last_activity_at = datetime.now(UTC)
        await self.session.flush()

    async def touch_activity(self, agent: Agent) -> None:
        agent.last_activity_at = datetime.now(UTC)
        await self.session.flush()

    async def mark_assigned(self, agent: Agent) -> None:
        agent.last_assigned_at = datetime.now(UTC)
        await self.session.flush()

    async def set_all_offline(self) -> None:
        await self.session.execute(
            update(Agent).where(Agent.is_online.is_(True)).values(is_online=False)
        )


class ConversationRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_by_id(self, conversation_id: UUID) -> Conversation | None:
        return await self.session.get(Conversation, conversation_id)

    async def get_by_id_for_update(self, conversation_id: UUID) -> Conversation | None:
        stmt: Select[tuple[Conversation]] = (
            select(Conversation)
            .where(Conversation.id == conversation_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_contact_ref(self, contact_ref: str) -> Conversation | None:
        stmt: Select[tuple[Conversation]] = (
            select(Conversation).where(Conversation.contact_ref == contact_ref).limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def create(
        self,
        contact_ref: str,
        is_group: bool = False,
        display_name: str | None = None,
        avatar_url: str | None = None,
    ) -> Conversation:
        conversation = Conversation(
            contact_ref=contact_ref,
            is_group=is_group,
            display_name=display_name,
            avatar_url=avatar_url,
            unread_count=0,
        )
        self.session.add(conversation)
        await self.session.flush()
        return conversation

    async def set_flag(
        self, conversation: Conversation, flag: ConversationFlag, value: bool
    ) -> None:
        setattr(conversation, flag.value, value)
        setattr(conversation, f"{flag.value}_at", datetime.now(UTC) if value else None)
        await self.session.flush()

    async def set_products(self, conversation_id: UUID, product_ids: Iterable[UUID]) -> None:
        await self.session.execute(
            delete(ConversationProduct).where(
                ConversationProduct.conversation_id == conversation_id
            )
        )
        rows = [
            {"conversation_id": conversation_id, "product_id": product_id}
            for product_id in dict.fromkeys(product_ids)
        ]
        if rows:
            await self.session.execute(insert(ConversationProduct), rows)

    async def product_ids_by_conversation(
        self, conversation_ids: Iterable[UUID]
    ) -> dict[UUID, set[UUID]]:
        ids = list(conversation_ids)
        grouped: dict[UUID, set[UUID]] = defaultdict(set)
        if not ids:
            return grouped
        stmt = select(ConversationProduct.conversation_id, ConversationProduct.product_id).where(
            ConversationProduct.conversation_id.in_(ids)
        )
        result = await self.session.execute(stmt)
        for conversation_id, product_id in result.all():
            grouped[conversation_id].add(product_id)
        return grouped


class AssignmentRepository:
    """Assignment ledger access.

    Ownership changes go through the ``compare_and_*`` methods: each is a single
    conditional UPDATE whose row count tells the caller whether it won.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_by_id(self, assignment_id: UUID) -> Assignment | None:
        return await self.session.get(Assignment, assignment_id)

    async def get_open_for_conversation(self, conversation_id: UUID) -> Assignment | None:
        stmt: Select[tuple[Assignment]] = (
            select(Assignment)
            .where(
                Assignment.conversation_id == conversation_id,
                Assignment.status != AssignmentStatus.CLOSED,
            )
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def create(
        self,
        conversation_id: UUID,
        status: AssignmentStatus = AssignmentStatus.PENDING,
        department_id: UUID | None = None,
    ) -> Assignment:
        assignment = Assignment(
            conversation_id=conversation_id,
            status=status,
            department_id=department_id,
        )
        self.session.add(assignment)
        await self.session.flush()
        return assignment

    async def count_owned_by_agent(self, agent_id: UUID) -> int:
        stmt: Select[tuple[int]] = select(func.count(Assignment.id)).where(
            Assignment.agent_id == agent_id,
            Assignment.status.in_(OWNED_STATUSES),
        )
        result = await self.session.execute(stmt)
        return int(result.scalar_one() or 0)

    async def count_owned_by_agents(self, agent_ids: Iterable[UUID]) -> dict[UUID, int]:
        ids = list(agent_ids)
        counts = {agent_id: 0 for agent_id in ids}
        if not ids:
            return counts
        stmt = (
            select(Assignment.agent_id, func.count(Assignment.id))
            .where(
                Assignment.agent_id.in_(ids),
                Assignment.status.in_(OWNED_STATUSES),
            )
            .group_by(Assignment.agent_id)
        )
        result = await self.session.execute(stmt)
        for agent_id, count in result.all():
            counts[agent_id] = int(count)
        return counts

    async def compare_and_claim(self, assignment_id: UUID, agent_id: UUID) -> bool:
        stmt = (
            update(Assignment)
            .where(
                Assignment.id == assignment_id,
                Assignment.agent_id.is_(None),
                Assignment.status.in_(QUEUED_STATUSES),
            )
            .values(
                agent_id=agent_id,
                status=AssignmentStatus.ACTIVE,
                updated_at=datetime.now(UTC),
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def compare_and_transfer(
        self,
        assignment_id: UUID,
        current_agent_id: UUID,
        target_agent_id: UUID,
        department_id: UUID | None = None,
    ) -> bool:
        values: dict = {"agent_id": target_agent_id, "updated_at": datetime.now(UTC)}
        if department_id is not None:
            values["department_id"] = department_id
        stmt = (
            update(Assignment)
            .where(
                Assignment.id == assignment_id,
                Assignment.agent_id == current_agent_id,
                Assignment.status == AssignmentStatus.ACTIVE,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def compare_and_set_status(
        self,
        assignment_id: UUID,
        expected_status: AssignmentStatus,
        expected_agent_id: UUID | None,
        new_status: AssignmentStatus,
        *,
        clear_agent: bool = False,
    ) -> bool:
        now = datetime.now(UTC)
        values: dict = {"status": new_status, "updated_at": now}
        if clear_agent:
            values["agent_id"] = None
        if new_status == AssignmentStatus.CLOSED:
            values["closed_at"] = now

        owner_clause = (
            Assignment.agent_id.is_(None)
            if expected_agent_id is None
            else Assignment.agent_id == expected_agent_id
        )
        stmt = (
            update(Assignment)
            .where(
                Assignment.id == assignment_id,
                Assignment.status == expected_status,
                owner_clause,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def set_tags(self, assignment: Assignment, tag_ids: Iterable[UUID]) -> None:
        await self.session.execute(
            delete(assignment_tags).where(assignment_tags.c.assignment_id == assignment.id)
        )
        rows = [
            {"assignment_id": assignment.id, "tag_id": tag_id}
            for tag_id in dict.fromkeys(tag_ids)
        ]
        if rows:
            await self.session.execute(insert(assignment_tags), rows)
        await self.session.flush()

    async def tag_ids(self, assignment_id: UUID) -> set[UUID]:
        stmt = select(assignment_tags.c.tag_id).where(
            assignment_tags.c.assignment_id == assignment_id
        )
        result = await self.session.execute(stmt)
        return set(result.scalars().all())

    async def list_inbox_items(
        self,
        include_closed: bool = False,
        limit: int = 500,
    ) -> list[InboxItem]:
        stmt: Select[tuple[Assignment]] = (
            select(Assignment)
            .join(Conversation, Conversation.id == Assignment.conversation_id)
            .options(
                selectinload(Assignment.conversation),
                selectinload(Assignment.tags),
            )
            .order_by(Conversation.last_message_at.desc().nulls_last(), Assignment.id.asc())
            .limit(limit)
        )
        if not include_closed:
            stmt = stmt.where(Assignment.status != AssignmentStatus.CLOSED)

        result = await self.session.execute(stmt)
        assignments = list(result.scalars().all())

        conversations = ConversationRepository(self.session)
        products = await conversations.product_ids_by_conversation(
            {assignment.conversation_id for assignment in assignments}
        )
        return [
            to_inbox_item(assignment, products.get(assignment.conversation_id, set()))
            for assignment in assignments
        ]


def to_inbox_item(assignment: Assignment, product_ids: Iterable[UUID] = ()) -> InboxItem:
    conversation = assignment.conversation
    return InboxItem(
        assignment_id=assignment.id,
        conversation_id=assignment.conversation_id,
        agent_id=assignment.agent_id,
        status=assignment.status,
        contact_ref=conversation.contact_ref,
        contact_name=conversation.display_name,
        is_group=conversation.is_group,
        unread_count=conversation.unread_count,
        last_message_at=conversation.last_message_at,
        last_message_preview=conversation.last_message_preview,
        department_id=assignment.department_id,
        archived=conversation.archived,
        pinned=conversation.pinned,
        muted=conversation.muted,
        favorite=conversation.favorite,
        blocked=conversation.blocked,
        tag_ids=frozenset(tag.id for tag in assignment.tags),
        product_ids=frozenset(product_ids),
    )


class MessageRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_by_client_ref(self, conversation_id: UUID, client_ref: str) -> Message | None:
        stmt: Select[tuple[Message]] = (
            select(Message)
            .where(
                Message.conversation_id == conversation_id,
                Message.client_ref == client_ref,
            )
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def next_position(self, conversation_id: UUID) -> int:
        stmt: Select[tuple[int]] = select(func.coalesce(func.max(Message.position), 0)).where(
            Message.conversation_id == conversation_id
        )
        result = await self.session.execute(stmt)
        return int(result.scalar_one() or 0) + 1

    async def create(
        self,
        conversation_id: UUID,
        direction: MessageDirection,
        message_type: MessageType,
        content: str,
        *,
        sent_at: datetime | None = None,
        media_url: str | None = None,
        media_mime_type: str | None = None,
        media_filename: str | None = None,
        media_duration_seconds: int | None = None,
        sender_agent_id: UUID | None = None,
        client_ref: str | None = None,
    ) -> Message:
        message = Message(
            conversation_id=conversation_id,
            direction=direction,
            message_type=message_type,
            content=content,
            media_url=media_url,
            media_mime_type=media_mime_type,
            media_filename=media_filename,
            media_duration_seconds=media_duration_seconds,
            sender_agent_id=sender_agent_id,
            client_ref=client_ref,
            position=await self.next_position(conversation_id),
            sent_at=sent_at or datetime.now(UTC),
        )
        self.session.add(message)
        await self.session.flush()
        await self.session.refresh(message)
        return message

    async def list_by_conversation(
        self, conversation_id: UUID, limit: int = 200
    ) -> list[Message]:
        stmt: Select[tuple[Message]] = (
            select(Message)
            .where(Message.conversation_id == conversation_id)
            .order_by(Message.sent_at.desc(), Message.position.desc())
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return list(reversed(result.scalars().all()))


class TagRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def list_active(self) -> list[Tag]:
        stmt: Select[tuple[Tag]] = (
            select(Tag)
            .where(Tag.is_active.is_(True))
            .order_by(Tag.display_order.asc(), Tag.name.asc())
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_many(self, tag_ids: Iterable[UUID]) -> list[Tag]:
        ids = list(tag_ids)
        if not ids:
            return []
        result = await self.session.execute(select(Tag).where(Tag.id.in_(ids)))
        return list(result.scalars().all())

    async def create(self, name: str, color: str, display_order: int = 0) -> Tag:
        tag = Tag(name=name, color=color, display_order=display_order, is_active=True)
        self.session.add(tag)
        await self.session.flush()
        await self.session.refresh(tag)
        return tag


class DepartmentRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_by_id(self, department_id: UUID) -> Department | None:
        return await self.session.get(Department, department_id)

    async def list_active(self) -> list[Department]:
        stmt: Select[tuple[Department]] = (
            select(Department)
            .where(Department.is_active.is_(True))
            .order_by(Department.display_order.asc(), Department.name.asc())
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def create(self, name: str, color: str, display_order: int = 0) -> Department:
        department = Department(
            name=name, color=color, display_order=display_order, is_active=True
        )
        self.session.add(department)
        await self.session.flush()
        await self.session.refresh(department)
        return department


class RoutingSettingsRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self) -> RoutingSettings:
        routing_settings = await self.session.get(RoutingSettings, 1)
        if routing_settings is not None:
            return routing_settings

        settings = get_settings()
        routing_settings = RoutingSettings(
            id=1,
            distribution_enabled=settings.distribution_enabled_default,
            enforce_capacity=settings.enforce_capacity_default,
        )
        self.session.add(routing_settings)
        await self.session.flush()
        return routing_settings

    async def update(
        self,
        distribution_enabled: bool | None = None,
        enforce_capacity: bool | None = None,
    ) -> RoutingSettings:
        routing_settings = await self.get()
        if distribution_enabled is not None:
            routing_settings.distribution_enabled = distribution_enabled
        if enforce_capacity is not None:
            routing_settings.enforce_capacity = enforce_capacity
        await self.session.flush()
        return routing_settings
