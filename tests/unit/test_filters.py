from datetime import UTC, datetime, timedelta
from uuid import UUID, uuid4

import pytest

from inbox.domain.enums import AssignmentStatus, InboxView
from inbox.domain.filters import (
    InboxFilter,
    InboxItem,
    apply_inbox_filter,
    count_inbox,
    matches,
)

ME = uuid4()
OTHER = uuid4()
NOW = datetime(2026, 10, 19, 12, 0, tzinfo=UTC)


def make_item(
    agent_id: UUID | None = None,
    status: AssignmentStatus = AssignmentStatus.PENDING,
    minutes_ago: int | None = 0,
    **fields,
) -> InboxItem:
    defaults = {
        "contact_ref": "5511999990000",
        "contact_name": "Customer",
        "is_group": False,
        "unread_count": 0,
    }
    defaults.update(fields)
    return InboxItem(
        assignment_id=uuid4(),
        conversation_id=uuid4(),
        agent_id=agent_id,
        status=status,
        last_message_at=None if minutes_ago is None else NOW - timedelta(minutes=minutes_ago),
        **defaults,
    )


def test_mine_view_shows_only_my_conversations() -> None:
    mine = make_item(ME, AssignmentStatus.ACTIVE)
    theirs = make_item(OTHER, AssignmentStatus.ACTIVE)

    result = apply_inbox_filter([mine, theirs], InboxFilter(view=InboxView.MINE), ME)

    assert result == [mine]


def test_mine_view_is_empty_without_current_agent() -> None:
    item = make_item(ME, AssignmentStatus.ACTIVE)

    assert not matches(item, InboxFilter(view=InboxView.MINE), None)


def test_queue_view_excludes_closed() -> None:
    open_item = make_item()
    closed = make_item(OTHER, AssignmentStatus.CLOSED)

    assert apply_inbox_filter([open_item, closed], InboxFilter(view=InboxView.QUEUE)) == [open_item]


def test_triage_status_means_unowned() -> None:
    unowned = make_item(None, AssignmentStatus.PENDING)
    owned = make_item(ME, AssignmentStatus.ACTIVE)

    result = apply_inbox_filter([unowned, owned], InboxFilter(status="triage"))

    assert result == [unowned]


def test_literal_status_filter() -> None:
    waiting = make_item(ME, AssignmentStatus.WAITING)
    active = make_item(ME, AssignmentStatus.ACTIVE)

    assert apply_inbox_filter([waiting, active], InboxFilter(status="waiting")) == [waiting]


def test_archived_items_never_show() -> None:
    archived = make_item(archived=True)

    assert apply_inbox_filter([archived], InboxFilter()) == []


def test_search_matches_name_or_contact_ref() -> None:
    by_name = make_item(contact_name="Ana Souza")
    by_number = make_item(contact_ref="5521988880000", contact_name=None)
    neither = make_item(contact_name="Bruno")

    result = apply_inbox_filter([by_name, by_number, neither], InboxFilter(search="ana"))
    assert result == [by_name]

    result = apply_inbox_filter([by_name, by_number, neither], InboxFilter(search=" 552198 "))
    assert result == [by_number]


def test_predicates_compose() -> None:
    product_id = uuid4()
    tag_id = uuid4()
    match = make_item(
        ME,
        AssignmentStatus.ACTIVE,
        unread_count=2,
        is_group=True,
        product_ids=frozenset({product_id}),
        tag_ids=frozenset({tag_id}),
    )
    read = make_item(ME, AssignmentStatus.ACTIVE, is_group=True)
    not_group = make_item(ME, AssignmentStatus.ACTIVE, unread_count=1)

    inbox_filter = InboxFilter(
        view=InboxView.MINE,
        unread_only=True,
        groups_only=True,
        product_id=product_id,
        tag_id=tag_id,
        agent_id=ME,
    )

    assert apply_inbox_filter([match, read, not_group], inbox_filter, ME) == [match]


@pytest.mark.parametrize("field_name", ["product_id", "tag_id", "agent_id"])
def test_identifier_filters_exclude_non_matching(field_name: str) -> None:
    item = make_item(ME, AssignmentStatus.ACTIVE)

    assert not matches(item, InboxFilter(**{field_name: uuid4()}), ME)


def test_results_sorted_by_recency_with_empty_last() -> None:
    old = make_item(minutes_ago=30)
    recent = make_item(minutes_ago=1)
    silent = make_item(minutes_ago=None)

    assert apply_inbox_filter([old, silent, recent], InboxFilter()) == [recent, old, silent]


def test_counters_follow_ownership() -> None:
    items = [
        make_item(ME, AssignmentStatus.ACTIVE, unread_count=2),
        make_item(ME, AssignmentStatus.WAITING),
        make_item(None, AssignmentStatus.PENDING, unread_count=1),
        make_item(None, AssignmentStatus.TRIAGE),
        make_item(OTHER, AssignmentStatus.ACTIVE, unread_count=5),
        make_item(ME, AssignmentStatus.CLOSED, unread_count=1),
        make_item(None, AssignmentStatus.PENDING, archived=True, unread_count=1),
    ]

    counters = count_inbox(items, ME, online_agents=3)

    assert (counters.mine, counters.mine_unread) == (2, 1)
    assert (counters.queue, counters.queue_unread) == (2, 1)
    assert counters.online_agents == 3
