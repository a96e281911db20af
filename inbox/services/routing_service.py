import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from inbox.domain.enums import AssignmentStatus, RoutingAction
from inbox.domain.exceptions import (
    CapacityExceededError,
    InvalidAssignmentTransition,
    OwnershipConflictError,
)
from inbox.domain.state_machine import AssignmentLifecycle
from inbox.infra.db.models import Agent, Assignment, RoutingSettings
from inbox.infra.db.repositories import (
    AgentRepository,
    AssignmentRepository,
    ConversationRepository,
    DepartmentRepository,
    RoutingSettingsRepository,
    TagRepository,
)
from inbox.infra.realtime.channels import assignment_channels
from inbox.infra.realtime.events import RealtimeEvent
from inbox.infra.realtime.publisher import (
    NoopRealtimePublisher,
    RealtimePublisher,
    safe_publish,
)
from inbox.services.errors import (
    AgentInactiveError,
    AgentNotFoundError,
    AssignmentAccessDeniedError,
    AssignmentClosedError,
    AssignmentNotFoundError,
    AssignmentStillOpenError,
    ConversationNotFoundError,
    DepartmentNotFoundError,
    TagNotFoundError,
)
from inbox.services.payloads import assignment_payload

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class QueueResult:
    assignment: Assignment
    created: bool
    distributed_to: Agent | None = None


def _timestamp_or_floor(value: datetime | None) -> float:
    return value.timestamp() if value is not None else float("-inf")


def rank_candidates(
    agents: Iterable[Agent],
    open_counts: Mapping[UUID, int],
    enforce_capacity: bool = True,
) -> list[Agent]:
    """Order agents for a distribution push, best candidate first.

    Least loaded (by share of capacity, then absolute count) wins; ties go to the
    agent who was handed a conversation longest ago, which rotates work round robin
    among equally loaded agents.
    """
    ranked: list[tuple[tuple[float, int, float, float, str], Agent]] = []
    for agent in agents:
        capacity = max(agent.max_concurrent_chats, 1)
        open_count = open_counts.get(agent.id, 0)
        if enforce_capacity and open_count >= capacity:
            continue
        score = (
            open_count / capacity,
            open_count,
            _timestamp_or_floor(agent.last_assigned_at),
            _timestamp_or_floor(agent.last_activity_at),
            str(agent.id),
        )
        ranked.append((score, agent))
    ranked.sort(key=lambda entry: entry[0])
    return [agent for _, agent in ranked]


class RoutingService:
    """Owns every change to an assignment's status and owner."""

    def __init__(
        self,
        session: AsyncSession,
        assignments: AssignmentRepository | None = None,
        agents: AgentRepository | None = None,
        conversations: ConversationRepository | None = None,
        departments: DepartmentRepository | None = None,
        tags: TagRepository | None = None,
        routing_settings: RoutingSettingsRepository | None = None,
        realtime: RealtimePublisher | None = None,
    ) -> None:
        self.session = session
        self.assignments = assignments or AssignmentRepository(session)
        self.agents = agents or AgentRepository(session)
        self.conversations = conversations or ConversationRepository(session)
        self.departments = departments or DepartmentRepository(session)
        self.tags = tags or TagRepository(session)
        self.routing_settings = routing_settings or RoutingSettingsRepository(session)
        self.realtime = realtime or NoopRealtimePublisher()

    async def get_assignment(self, assignment_id: UUID) -> Assignment:
        return await self._get_assignment_or_raise(assignment_id)

    async def claim(self, assignment_id: UUID, agent_id: UUID) -> Assignment:
        # Locking the agent row serialises every claim targeting this agent, so the
        # capacity count below cannot go stale before the conditional update commits.
        agent = await self.agents.get_by_id_for_update(agent_id)
        try:
            if agent is None:
                raise AgentNotFoundError(agent_id)
            if not agent.is_active:
                raise AgentInactiveError(agent_id)

            assignment = await self._get_assignment_or_raise(assignment_id)
            self._assert_not_closed(assignment)
            if assignment.agent_id == agent_id:
                await self.session.commit()
                return assignment
            if assignment.agent_id is not None:
                raise OwnershipConflictError(assignment.id, assignment.agent_id)
            AssignmentLifecycle.transition(assignment.status, RoutingAction.CLAIM)

            await self._assert_below_capacity(agent)
            if not await self.assignments.compare_and_claim(assignment.id, agent.id):
                raise OwnershipConflictError(assignment.id)

            await self.agents.mark_assigned(agent)
            await self.session.commit()
        except (
            AgentNotFoundError,
            AgentInactiveError,
            AssignmentNotFoundError,
            AssignmentClosedError,
            InvalidAssignmentTransition,
            CapacityExceededError,
            OwnershipConflictError,
        ) as exc:
            await self.session.rollback()
            logger.info("claim of %s by %s rejected: %s", assignment_id, agent_id, exc)
            raise

        await self.session.refresh(assignment)
        logger.info("assignment %s claimed by %s", assignment.id, agent_id)
        await self._emit_assignment_updated(assignment)
        return assignment

    async def release(
        self,
        assignment_id: UUID,
        actor_agent_id: UUID,
        is_admin: bool = False,
    ) -> Assignment:
        assignment = await self._get_assignment_or_raise(assignment_id)
        self._assert_not_closed(assignment)
        AssignmentLifecycle.transition(assignment.status, RoutingAction.RELEASE)
        self._assert_can_act(assignment, actor_agent_id, is_admin)

        previous_owner = assignment.agent_id
        won = await self.assignments.compare_and_set_status(
            assignment.id,
            expected_status=assignment.status,
            expected_agent_id=previous_owner,
            new_status=AssignmentStatus.PENDING,
            clear_agent=True,
        )
        if not won:
            await self.session.rollback()
            raise OwnershipConflictError(assignment.id)

        await self.session.commit()
        await self.session.refresh(assignment)
        logger.info("assignment %s released by %s", assignment.id, actor_agent_id)
        await self._emit_assignment_updated(assignment, previous_owner)
        return assignment

    async def transfer(
        self,
        assignment_id: UUID,
        actor_agent_id: UUID,
        target_agent_id: UUID,
        department_id: UUID | None = None,
        is_admin: bool = False,
    ) -> Assignment:
        if department_id is not None and await self.departments.get_by_id(department_id) is None:
            raise DepartmentNotFoundError(department_id)

        target = await self.agents.get_by_id_for_update(target_agent_id)
        try:
            if target is None:
                raise AgentNotFoundError(target_agent_id)
            if not target.is_active:
                raise AgentInactiveError(target_agent_id)

            assignment = await self._get_assignment_or_raise(assignment_id)
            self._assert_not_closed(assignment)
            AssignmentLifecycle.transition(assignment.status, RoutingAction.TRANSFER)
            self._assert_can_act(assignment, actor_agent_id, is_admin)

            previous_owner = assignment.agent_id
            department_unchanged = (
                department_id is None or department_id == assignment.department_id
            )
            if previous_owner == target.id and department_unchanged:
                await self.session.commit()
                return assignment

            if previous_owner != target.id:
                await self._assert_below_capacity(target)

            # One conditional update swaps the owner: the row is never ownerless.
            won = await self.assignments.compare_and_transfer(
                assignment.id,
                current_agent_id=previous_owner,
                target_agent_id=target.id,
                department_id=department_id,
            )
            if not won:
                raise OwnershipConflictError(assignment.id)

            await self.agents.mark_assigned(target)
            await self.session.commit()
        except (
            AgentNotFoundError,
            AgentInactiveError,
            AssignmentNotFoundError,
            AssignmentClosedError,
            AssignmentAccessDeniedError,
            InvalidAssignmentTransition,
            CapacityExceededError,
            OwnershipConflictError,
        ):
            await self.session.rollback()
            raise

        await self.session.refresh(assignment)
        logger.info(
            "assignment %s transferred from %s to %s",
            assignment.id,
            previous_owner,
            target.id,
        )
        await self._emit_assignment_updated(assignment, previous_owner)
        return assignment

    async def set_status(
        self,
        assignment_id: UUID,
        status: AssignmentStatus,
        actor_agent_id: UUID,
        is_admin: bool = False,
    ) -> Assignment:
        assignment = await self._get_assignment_or_raise(assignment_id)
        self._assert_not_closed(assignment)
        if assignment.status == status:
            return assignment

        AssignmentLifecycle.transition(assignment.status, RoutingAction.SET_STATUS, status)
        if assignment.agent_id is not None:
            self._assert_can_act(assignment, actor_agent_id, is_admin)
        elif AssignmentLifecycle.requires_owner(status):
            # Taking ownership goes through claim so capacity is honoured.
            raise InvalidAssignmentTransition(
                assignment.status, RoutingAction.SET_STATUS, status
            )

        previous_status = assignment.status
        previous_owner = assignment.agent_id
        won = await self.assignments.compare_and_set_status(
            assignment.id,
            expected_status=previous_status,
            expected_agent_id=previous_owner,
            new_status=status,
            clear_agent=AssignmentLifecycle.is_claimable(status),
        )
        if not won:
            await self.session.rollback()
            raise OwnershipConflictError(assignment.id)

        await self.session.commit()
        await self.session.refresh(assignment)
        logger.info(
            "assignment %s moved %s -> %s by %s",
            assignment.id,
            previous_status.value,
            status.value,
            actor_agent_id,
        )
        await self._emit_assignment_updated(assignment, previous_owner)

        if previous_status == AssignmentStatus.TRIAGE and status == AssignmentStatus.PENDING:
            await self.distribute(assignment)
        return assignment

    async def ensure_queued(
        self,
        conversation_id: UUID,
        department_id: UUID | None = None,
        status: AssignmentStatus = AssignmentStatus.PENDING,
    ) -> QueueResult:
        if not AssignmentLifecycle.is_claimable(status):
            raise ValueError("New assignments start in triage or pending.")

        existing = await self.assignments.get_open_for_conversation(conversation_id)
        if existing is not None:
            return QueueResult(assignment=existing, created=False)

        try:
            assignment = await self.assignments.create(
                conversation_id=conversation_id,
                status=status,
                department_id=department_id,
            )
            await self.session.commit()
        except IntegrityError:
            # Another session opened the episode first; theirs is the one.
            await self.session.rollback()
            existing = await self.assignments.get_open_for_conversation(conversation_id)
            if existing is None:
                raise
            return QueueResult(assignment=existing, created=False)

        await self.session.refresh(assignment)
        logger.info("conversation %s queued as %s", conversation_id, assignment.id)
        await self._emit_assignment_updated(assignment)

        distributed_to: Agent | None = None
        if status == AssignmentStatus.PENDING:
            distributed_to = await self.distribute(assignment)
        return QueueResult(assignment=assignment, created=True, distributed_to=distributed_to)

    async def reopen(
        self,
        conversation_id: UUID,
        department_id: UUID | None = None,
    ) -> QueueResult:
        if await self.conversations.get_by_id(conversation_id) is None:
            raise ConversationNotFoundError(conversation_id)
        existing = await self.assignments.get_open_for_conversation(conversation_id)
        if existing is not None:
            raise AssignmentStillOpenError(conversation_id, existing.status)
        return await self.ensure_queued(conversation_id, department_id=department_id)

    async def distribute(self, assignment: Assignment) -> Agent | None:
        routing = await self.routing_settings.get()
        if not routing.distribution_enabled:
            return None
        if assignment.agent_id is not None or not AssignmentLifecycle.is_claimable(
            assignment.status
        ):
            return None

        assignment_id = assignment.id
        candidates = await self.agents.list_eligible(assignment.department_id)
        counts = await self.assignments.count_owned_by_agents(
            agent.id for agent in candidates
        )
        ranked = rank_candidates(candidates, counts, routing.enforce_capacity)
        candidate_ids = [agent.id for agent in ranked]
        for candidate_id in candidate_ids:
            try:
                await self.claim(assignment_id, candidate_id)
            except (CapacityExceededError, AgentInactiveError):
                continue
            except OwnershipConflictError:
                break
            logger.info("assignment %s distributed to %s", assignment_id, candidate_id)
            return await self.agents.get_by_id(candidate_id)
        else:
            logger.info("no eligible agent for assignment %s, left in queue", assignment_id)

        # A rejected claim rolls back and expires the instance.
        await self.session.refresh(assignment)
        return None

    async def set_tags(self, assignment_id: UUID, tag_ids: Iterable[UUID]) -> Assignment:
        assignment = await self._get_assignment_or_raise(assignment_id)
        wanted = set(tag_ids)
        found = {tag.id for tag in await self.tags.get_many(wanted)}
        missing = wanted - found
        if missing:
            raise TagNotFoundError(missing)

        await self.assignments.set_tags(assignment, wanted)
        await self.session.commit()
        await self.session.refresh(assignment, attribute_names=["tags"])
        await self._emit_assignment_updated(assignment)
        return assignment

    async def get_routing_settings(self) -> RoutingSettings:
        return await self.routing_settings.get()

    async def update_routing_settings(
        self,
        distribution_enabled: bool | None = None,
        enforce_capacity: bool | None = None,
    ) -> RoutingSettings:
        routing = await self.routing_settings.update(
            distribution_enabled=distribution_enabled,
            enforce_capacity=enforce_capacity,
        )
        await self.session.commit()
        return routing

    async def _assert_below_capacity(self, agent: Agent) -> None:
        routing = await self.routing_settings.get()
        if not routing.enforce_capacity:
            return
        owned = await self.assignments.count_owned_by_agent(agent.id)
        if owned >= agent.max_concurrent_chats:
            raise CapacityExceededError(agent.id, agent.max_concurrent_chats)

    async def _get_assignment_or_raise(self, assignment_id: UUID) -> Assignment:
        assignment = await self.assignments.get_by_id(assignment_id)
        if assignment is None:
            raise AssignmentNotFoundError(assignment_id)
        return assignment

    @staticmethod
    def _assert_not_closed(assignment: Assignment) -> None:
        if AssignmentLifecycle.is_terminal(assignment.status):
            raise AssignmentClosedError(assignment.id)

    @staticmethod
    def _assert_can_act(assignment: Assignment, actor_agent_id: UUID, is_admin: bool) -> None:
        if is_admin:
            return
        if assignment.agent_id != actor_agent_id:
            raise AssignmentAccessDeniedError(assignment.id, actor_agent_id)

    async def _emit_assignment_updated(
        self, assignment: Assignment, previous_owner: UUID | None = None
    ) -> None:
        await safe_publish(
            self.realtime,
            assignment_channels(assignment.conversation_id, assignment.agent_id, previous_owner),
            RealtimeEvent.ASSIGNMENT_UPDATED,
            {"assignment": assignment_payload(assignment)},
        )
