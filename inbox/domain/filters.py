"""Inbox filter composition.

Every predicate is evaluated per item against a flattened view of an assignment
joined with its conversation. The same functions back the REST listing and the
client-side cached inbox, so both always agree on what a filter shows.
"""

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID

from inbox.domain.enums import AssignmentStatus, InboxView

STATUS_ALL = "all"
STATUS_TRIAGE = "triage"


@dataclass(slots=True)
class InboxItem:
    assignment_id: UUID
    conversation_id: UUID
    agent_id: UUID | None
    status: AssignmentStatus
    contact_ref: str
    contact_name: str | None
    is_group: bool
    unread_count: int
    last_message_at: datetime | None
    last_message_preview: str | None = None
    department_id: UUID | None = None
    archived: bool = False
    pinned: bool = False
    muted: bool = False
    favorite: bool = False
    blocked: bool = False
    tag_ids: frozenset[UUID] = field(default_factory=frozenset)
    product_ids: frozenset[UUID] = field(default_factory=frozenset)


@dataclass(frozen=True, slots=True)
class InboxFilter:
    view: InboxView | None = None
    search: str = ""
    status: str = STATUS_ALL
    unread_only: bool = False
    groups_only: bool = False
    product_id: UUID | None = None
    tag_id: UUID | None = None
    agent_id: UUID | None = None


@dataclass(frozen=True, slots=True)
class InboxCounters:
    mine: int
    mine_unread: int
    queue: int
    queue_unread: int
    online_agents: int = 0


def _matches_view(item: InboxItem, view: InboxView | None, current_agent_id: UUID | None) -> bool:
    if view == InboxView.MINE:
        return current_agent_id is not None and item.agent_id == current_agent_id
    if view == InboxView.QUEUE:
        return item.status != AssignmentStatus.CLOSED
    return True


def _matches_search(item: InboxItem, search: str) -> bool:
    needle = search.strip().lower()
    if not needle:
        return True
    name = (item.contact_name or "").lower()
    return needle in name or needle in item.contact_ref.lower()


def _matches_status(item: InboxItem, status: str) -> bool:
    normalized = (status or STATUS_ALL).strip().lower()
    if normalized == STATUS_ALL:
        return True
    # "triage" is queue membership, not the literal status column.
    if normalized == STATUS_TRIAGE:
        return item.agent_id is None
    return item.status.value == normalized


def matches(
    item: InboxItem,
    inbox_filter: InboxFilter,
    current_agent_id: UUID | None = None,
) -> bool:
    if item.archived:
        return False
    if not _matches_view(item, inbox_filter.view, current_agent_id):
        return False
    if not _matches_search(item, inbox_filter.search):
        return False
    if not _matches_status(item, inbox_filter.status):
        return False
    if inbox_filter.unread_only and item.unread_count <= 0:
        return False
    if inbox_filter.groups_only and not item.is_group:
        return False
    if inbox_filter.product_id is not None and inbox_filter.product_id not in item.product_ids:
        return False
    if inbox_filter.tag_id is not None and inbox_filter.tag_id not in item.tag_ids:
        return False
    if inbox_filter.agent_id is not None and item.agent_id != inbox_filter.agent_id:
        return False
    return True


def _recency_key(item: InboxItem) -> tuple[bool, float]:
    if item.last_message_at is None:
        return (False, 0.0)
    return (True, item.last_message_at.timestamp())


def sort_by_recency(items: Iterable[InboxItem]) -> list[InboxItem]:
    return sorted(items, key=_recency_key, reverse=True)


def apply_inbox_filter(
    items: Iterable[InboxItem],
    inbox_filter: InboxFilter,
    current_agent_id: UUID | None = None,
) -> list[InboxItem]:
    return sort_by_recency(
        item for item in items if matches(item, inbox_filter, current_agent_id)
    )


def count_inbox(
    items: Iterable[InboxItem],
    current_agent_id: UUID | None,
    online_agents: int = 0,
) -> InboxCounters:
    mine = mine_unread = queue = queue_unread = 0
    for item in items:
        if item.archived or item.status == AssignmentStatus.CLOSED:
            continue
        unread = item.unread_count > 0
        if current_agent_id is not None and item.agent_id == current_agent_id:
            mine += 1
            mine_unread += int(unread)
        if item.agent_id is None:
            queue += 1
            queue_unread += int(unread)
    return InboxCounters(
        mine=mine,
        mine_unread=mine_unread,
        queue=queue,
        queue_unread=queue_unread,
        online_agents=online_agents,
    )
