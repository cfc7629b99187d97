import asyncio

import pytest

from app.enums import EventType, MessageRole, MessageType, Role
from app.exceptions.errors import AttachmentRejected, Forbidden, InvalidRequest, NoCoach, NotFound
from app.services.assignment_service import AssignmentService
from app.services.attachment_service import AttachmentService
from app.services.conversation_service import ConversationService, decode_cursor, encode_cursor


@pytest.fixture
async def pair(db, make_user, make_coach, clock, bus):
    client = await make_user()
    coach = await make_coach()
    await AssignmentService.select_coach(db, client, coach.id, clock=clock, bus=bus)
    return client, coach


async def send(db, sender, peer, body, clock, bus, **kwargs):
    return await ConversationService.send_message(db, sender, peer.id, body=body, clock=clock, bus=bus, **kwargs)


async def test_client_without_coach_cannot_send(db, make_user, make_coach, clock, bus):
    client = await make_user()
    coach = await make_coach()
    with pytest.raises(NoCoach):
        await send(db, client, coach, "hi", clock, bus)


async def test_coach_cannot_open_conversation_with_stranger(db, make_user, make_coach, clock, bus):
    coach = await make_coach()
    stranger = await make_user()
    with pytest.raises(Forbidden):
        await send(db, coach, stranger, "hello", clock, bus)


async def test_messages_are_ordered_and_roles_derived(db, pair, clock, bus):
    client, coach = pair
    first = await send(db, client, coach, "Hi coach", clock, bus)
    second = await send(db, coach, client, "Hi! How was the run?", clock, bus)
    third = await send(db, client, coach, "Tough", clock, bus)

    # Same frozen instant: order still strictly increases
    assert first.created_at < second.created_at < third.created_at
    assert first.role == MessageRole.CLIENT.value
    assert second.role == MessageRole.COACH.value
    assert first.message_type == MessageType.TEXT.value

    page = await ConversationService.list_messages(db, coach, peer_id=client.id)
    assert [m.id for m in page] == [third.id, second.id, first.id]


async def test_pagination_with_before_and_after(db, pair, clock, bus):
    client, coach = pair
    sent = []
    for i in range(5):
        sent.append(await send(db, client, coach, f"message {i}", clock, bus))
        clock.advance(seconds=1)

    newest = await ConversationService.list_messages(db, client, peer_id=coach.id, limit=2)
    assert [m.body for m in newest] == ["message 4", "message 3"]

    older = await ConversationService.list_messages(
        db, client, peer_id=coach.id, limit=2, before=encode_cursor(newest[-1].created_at, newest[-1].id)
    )
    assert [m.body for m in older] == ["message 2", "message 1"]

    backfill = await ConversationService.list_messages(
        db, client, peer_id=coach.id, after=encode_cursor(sent[1].created_at, sent[1].id)
    )
    assert [m.body for m in backfill] == ["message 2", "message 3", "message 4"]


async def test_concurrent_sends_keep_a_total_order(session_factory, pair, clock, bus):
    client, coach = pair

    async def one(sender, peer, body):
        async with session_factory() as session:
            return await send(session, sender, peer, body, clock, bus)

    messages = await asyncio.gather(*[
        one(client, coach, f"c{i}") if i % 2 == 0 else one(coach, client, f"k{i}")
        for i in range(6)
    ])

    async with session_factory() as session:
        page = await ConversationService.list_messages(session, client, peer_id=coach.id)
    stamps = [m.created_at for m in page]
    assert len(page) == 6
    assert len(set(stamps)) == 6
    assert stamps == sorted(stamps, reverse=True)
    assert {m.id for m in page} == {m.id for m in messages}


async def test_body_rules(db, pair, clock, bus):
    client, coach = pair
    with pytest.raises(InvalidRequest):
        await send(db, client, coach, None, clock, bus)
    with pytest.raises(InvalidRequest):
        await send(db, client, coach, "x" * 4001, clock, bus)
    with pytest.raises(InvalidRequest):
        await send(db, client, client, "me", clock, bus)


async def test_mark_read_scenario(db, pair, clock, bus):
    client, coach = pair
    m1 = await send(db, client, coach, "one", clock, bus)
    m2 = await send(db, client, coach, "two", clock, bus)
    m3 = await send(db, client, coach, "three", clock, bus)

    assert (await ConversationService.unread_counts(db, coach))[client.id] == 3

    clock.advance(minutes=1)
    updated = await ConversationService.mark_read(db, coach, client.id, m3.id, clock=clock, bus=bus)
    assert updated == 3
    assert (await ConversationService.unread_counts(db, coach))[client.id] == 0

    # Idempotent
    assert await ConversationService.mark_read(db, coach, client.id, m3.id, clock=clock, bus=bus) == 0

    page = await ConversationService.list_messages(db, client, peer_id=coach.id)
    assert {m.id for m in page} == {m1.id, m2.id, m3.id}
    assert all(m.read_at == clock.current for m in page)


async def test_mark_read_only_touches_the_other_side(db, pair, clock, bus):
    client, coach = pair
    mine = await send(db, client, coach, "from client", clock, bus)
    theirs = await send(db, coach, client, "from coach", clock, bus)
    later = await send(db, client, coach, "after", clock, bus)

    # Client reading up to the coach's message leaves client-authored rows alone
    assert await ConversationService.mark_read(db, client, coach.id, theirs.id, clock=clock, bus=bus) == 1
    # Coach reading up to `mine` only covers the first client message
    assert await ConversationService.mark_read(db, coach, client.id, mine.id, clock=clock, bus=bus) == 1
    assert (await ConversationService.unread_counts(db, coach))[client.id] == 1

    with pytest.raises(NotFound):
        await ConversationService.mark_read(db, coach, client.id, "missing", clock=clock, bus=bus)
    page = await ConversationService.list_messages(db, client, peer_id=coach.id)
    assert [m.id for m in page if m.read_at is None] == [later.id]


async def test_outsider_cannot_read_or_mark(db, pair, make_user, clock, bus):
    client, coach = pair
    message = await send(db, client, coach, "private", clock, bus)
    outsider = await make_user()
    admin = await make_user(role=Role.ADMIN)

    with pytest.raises(NotFound):
        await ConversationService.list_messages(db, outsider, peer_id=coach.id)
    conversations = await ConversationService.list_conversations(db, client)
    with pytest.raises(Forbidden):
        await ConversationService.list_messages(db, outsider, conversation_id=conversations[0].id)

    # Admins read any pair by conversation id
    page = await ConversationService.list_messages(db, admin, conversation_id=conversations[0].id)
    assert [m.id for m in page] == [message.id]


async def test_unread_counts_and_conversation_list(db, make_user, make_coach, clock, bus):
    coach = await make_coach()
    c1 = await make_user()
    c2 = await make_user()
    for client in (c1, c2):
        await AssignmentService.select_coach(db, client, coach.id, clock=clock, bus=bus)

    await send(db, c1, coach, "a", clock, bus)
    await send(db, c1, coach, "b", clock, bus)
    clock.advance(seconds=5)
    await send(db, c2, coach, "c", clock, bus)

    assert await ConversationService.unread_counts(db, coach) == {c1.id: 2, c2.id: 1}
    assert await ConversationService.unread_counts(db, c1) == {coach.id: 0}

    conversations = await ConversationService.list_conversations(db, coach)
    assert [c.peer_id for c in conversations] == [c2.id, c1.id]
    assert [c.unread for c in conversations] == [1, 2]


async def test_ended_assignment_blocks_client_messages(db, pair, clock, bus):
    client, coach = pair
    await send(db, client, coach, "bye soon", clock, bus)
    await AssignmentService.end_assignment(db, client, clock=clock, bus=bus)

    with pytest.raises(NoCoach):
        await send(db, client, coach, "still there?", clock, bus)
    # History stays readable
    assert len(await ConversationService.list_messages(db, client, peer_id=coach.id)) == 1


async def test_attachment_message_types_and_single_use(db, pair, make_user, clock, bus, store):
    client, coach = pair
    image = await AttachmentService.upload(db, client, b"\x89PNG....", "image/png", "run.png", clock=clock, store=store)
    pdf = await AttachmentService.upload(db, client, b"%PDF-1.7", "application/pdf", "plan.pdf", clock=clock, store=store)

    with_image = await send(db, client, coach, None, clock, bus, attachment_key=image.storage_key)
    assert with_image.message_type == MessageType.IMAGE.value
    assert with_image.attachment.file_name == "run.png"

    with pytest.raises(InvalidRequest):
        await send(db, client, coach, "caption", clock, bus, attachment_key=pdf.storage_key, message_type=MessageType.IMAGE)
    with_pdf = await send(db, client, coach, "my plan", clock, bus, attachment_key=pdf.storage_key)
    assert with_pdf.message_type == MessageType.FILE.value

    with pytest.raises(AttachmentRejected) as exc_info:
        await send(db, client, coach, None, clock, bus, attachment_key=image.storage_key)
    assert exc_info.value.reason == "already_used"

    # Someone else's upload cannot be attached
    foreign = await AttachmentService.upload(db, coach, b"data", "text/plain", "notes.txt", clock=clock, store=store)
    with pytest.raises(AttachmentRejected) as exc_info:
        await send(db, client, coach, None, clock, bus, attachment_key=foreign.storage_key)
    assert exc_info.value.reason == "not_owner"


async def test_events_published_to_both_members(db, pair, clock, bus):
    client, coach = pair
    client_sub = bus.subscribe(client.id)
    coach_sub = bus.subscribe(coach.id)

    message = await send(db, client, coach, "ping", clock, bus)
    await ConversationService.mark_read(db, coach, client.id, message.id, clock=clock, bus=bus)

    for sub in (client_sub, coach_sub):
        created = await sub.next_event()
        read = await sub.next_event()
        assert created.type == EventType.MESSAGE_CREATED
        assert created.payload["id"] == message.id
        assert read.type == EventType.MESSAGE_READ
        assert read.payload["read_at"] is not None


def test_cursor_round_trip_and_garbage():
    import base64
    from datetime import datetime

    stamp = datetime(2026, 3, 1, 9, 0, 0, 17)
    assert decode_cursor(encode_cursor(stamp, "abc")) == (stamp, "abc")
    for raw in (b"no-separator", b"2026-13-45T00:00:00|abc"):
        with pytest.raises(InvalidRequest):
            decode_cursor(base64.urlsafe_b64encode(raw).decode())
