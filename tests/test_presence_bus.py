from app.enums import EventType
from app.services.presence_bus import Event, PresenceBus


def created(n: int) -> Event:
    return Event(EventType.MESSAGE_CREATED, {"n": n}, pair_key="a:b")


async def test_delivers_in_order_to_recipients_only():
    bus = PresenceBus(queue_size=10)
    alice = bus.subscribe("alice")
    bob = bus.subscribe("bob")
    carol = bus.subscribe("carol")

    for n in range(3):
        assert await bus.publish(["alice", "bob"], created(n)) == 2

    assert [(await alice.next_event()).payload["n"] for _ in range(3)] == [0, 1, 2]
    assert [(await bob.next_event()).payload["n"] for _ in range(3)] == [0, 1, 2]
    assert carol.queue.empty()


async def test_every_open_subscription_of_a_principal_receives():
    bus = PresenceBus(queue_size=10)
    phone = bus.subscribe("alice")
    laptop = bus.subscribe("alice")

    assert await bus.publish(["alice", "alice"], created(1)) == 2
    assert (await phone.next_event()).payload == {"n": 1}
    assert (await laptop.next_event()).payload == {"n": 1}


async def test_unsubscribe_stops_delivery():
    bus = PresenceBus(queue_size=10)
    sub = bus.subscribe("alice")
    sub.unsubscribe()

    assert await bus.publish(["alice"], created(1)) == 0
    assert bus.subscriber_count("alice") == 0
    assert await sub.next_event() is None


async def test_overflow_closes_the_subscription():
    bus = PresenceBus(queue_size=2)
    sub = bus.subscribe("alice")

    for n in range(4):
        await bus.publish(["alice"], created(n))

    received = [event async for event in sub]
    assert [e.type for e in received] == [
        EventType.MESSAGE_CREATED,
        EventType.MESSAGE_CREATED,
        EventType.STREAM_OVERFLOW,
    ]
    assert sub.closed
    assert bus.subscriber_count("alice") == 0


def test_frame_shape():
    event = Event(EventType.MESSAGE_READ, {"id": "m1"})
    assert event.frame() == {"type": "message.read", "payload": {"id": "m1"}}
