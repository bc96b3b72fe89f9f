"""
Unit tests for EventSource.

Tests cover:
- Append/publish with and without subscribers (consumed marking)
- Backfill of unconsumed events on subscribe
- Republish and replay identity rules
- Flush
- Handler fault behaviour under both policies
- Handlers working on private copies of stored data
- Re-entrant publishing from inside a handler
- Serialized access from several threads, including subscribe during publish
"""

import threading

import pytest
from pydantic import ValidationError

from event_source.core.dispatcher import Subscription
from event_source.core.event_source import EventSource
from event_source.core.event_store import EventNotFoundError
from event_source.core.models import EventFilter, EventReceipt
from event_source.events.topics import EventTopic

UPDATED = EventTopic.ACTION_UPDATED


def publish_update(source: EventSource, action_id: int, topic: EventTopic = UPDATED) -> str:
    receipt = source.publish(
        topic, {"type": "action", "version": "1", "data": {"actionId": action_id}}
    )
    return receipt.event_id


class TestAppend:
    """Test creating events."""

    def test_append_without_subscribers_leaves_event_unconsumed(self, event_source, clock):
        event_id = event_source.append(UPDATED, "action", "1", {"actionId": 1})

        event = event_source.find_by_id(event_id)
        assert event.topic == UPDATED
        assert event.type == "action"
        assert event.version == "1"
        assert event.published_at == clock.current
        assert event.consumed_at is None

    def test_append_with_subscriber_marks_consumed(self, event_source):
        event_source.subscribe(UPDATED, lambda data: None)

        event_id = event_source.append(UPDATED, "action", "1", {"actionId": 1})

        event = event_source.find_by_id(event_id)
        assert event.consumed_at is not None
        assert event.consumed_at > event.published_at

    def test_ids_are_unique(self, event_source):
        ids = {publish_update(event_source, i) for i in range(50)}

        assert len(ids) == 50

    def test_custom_id_factory(self, clock):
        counter = iter(range(1, 100))
        source = EventSource(clock=clock, id_factory=lambda: f"evt-{next(counter)}")

        assert publish_update(source, 1) == "evt-1"
        assert publish_update(source, 2) == "evt-2"

    def test_default_clock_is_timezone_aware(self):
        source = EventSource()

        event = source.find_by_id(publish_update(source, 1))

        assert event.published_at.tzinfo is not None

    def test_publish_returns_receipt(self, event_source):
        receipt = event_source.publish(
            UPDATED, {"type": "action", "version": "1", "data": {"actionId": 1}}
        )

        assert isinstance(receipt, EventReceipt)
        assert event_source.find_by_id(receipt.event_id) is not None

    def test_publish_rejects_incomplete_mapping(self, event_source):
        with pytest.raises(ValidationError):
            event_source.publish(UPDATED, {"type": "action"})

        assert event_source.find_all() == []


class TestSubscribeBackfill:
    """Test delivery of backlog on subscribe."""

    def test_subscribe_returns_token(self, event_source):
        subscription = event_source.subscribe(UPDATED, lambda data: None)

        assert isinstance(subscription, Subscription)
        assert event_source.subscriber_count(UPDATED) == 1

    def test_backfill_delivers_unconsumed_oldest_first(self, event_source):
        ids = [publish_update(event_source, i) for i in range(3)]
        received = []

        event_source.subscribe(UPDATED, received.append)

        assert received == [{"actionId": 0}, {"actionId": 1}, {"actionId": 2}]
        for event_id in ids:
            assert event_source.find_by_id(event_id).consumed_at is not None

    def test_backfill_only_for_subscribed_topic(self, event_source):
        publish_update(event_source, 1, EventTopic.ACTION_DELETED)
        received = []

        event_source.subscribe(UPDATED, received.append)

        assert received == []
        assert event_source.find_all(EventFilter(consumed_at=None)) != []

    def test_backfill_skips_consumed_events(self, event_source):
        event_source.subscribe(UPDATED, lambda data: None)
        publish_update(event_source, 1)
        received = []

        event_source.subscribe(UPDATED, received.append)

        assert received == []

    def test_resubscribed_handler_receives_backlog(self, event_source):
        existing = []
        event_source.subscribe(UPDATED, existing.append)
        event_source.unsubscribe(UPDATED, existing.append)
        publish_update(event_source, 1)
        event_source.subscribe(UPDATED, existing.append)
        later = []

        event_source.subscribe(UPDATED, later.append)

        assert existing == [{"actionId": 1}]
        assert later == []

    def test_backfill_drains_backlog_once(self, event_source):
        publish_update(event_source, 1)
        first, second = [], []

        event_source.subscribe(UPDATED, first.append)
        event_source.subscribe(UPDATED, second.append)

        assert first == [{"actionId": 1}]
        assert second == []


class TestUnsubscribe:
    """Test removing handlers."""

    def test_unsubscribed_handler_receives_nothing(self, event_source):
        received = []
        subscription = event_source.subscribe(UPDATED, received.append)

        assert event_source.unsubscribe(UPDATED, subscription) is True
        publish_update(event_source, 1)

        assert received == []

    def test_unsubscribe_never_subscribed_returns_false(self, event_source):
        assert event_source.unsubscribe(UPDATED, lambda data: None) is False


class TestRepublish:
    """Test re-creating events."""

    def test_republish_creates_new_event(self, event_source):
        received = []
        event_source.subscribe(UPDATED, received.append)
        original = event_source.find_by_id(publish_update(event_source, 1))
        received.clear()

        [receipt] = event_source.republish({"published_at": original.published_at})
        copy = event_source.find_by_id(receipt.event_id)

        assert copy.id != original.id
        assert copy.topic == original.topic
        assert copy.type == original.type
        assert copy.version == original.version
        assert copy.data == original.data
        assert copy.published_at != original.published_at
        assert copy.consumed_at != original.consumed_at
        assert received == [{"actionId": 1}]
        assert len(event_source.find_all()) == 2

    def test_republish_leaves_original_untouched(self, event_source):
        event_source.subscribe(UPDATED, lambda data: None)
        original = event_source.find_by_id(publish_update(event_source, 1))

        event_source.republish({"published_at": original.published_at})

        assert event_source.find_by_id(original.id) == original

    def test_republish_keeps_match_order(self, event_source):
        ids = [publish_update(event_source, i) for i in range(3)]

        receipts = event_source.republish({"topic": UPDATED})
        copies = [event_source.find_by_id(r.event_id) for r in receipts]

        assert [c.data["actionId"] for c in copies] == [0, 1, 2]
        assert not set(r.event_id for r in receipts) & set(ids)

    def test_republish_uses_each_events_own_topic(self, event_source):
        publish_update(event_source, 1, EventTopic.ACTION_DELETED)

        [receipt] = event_source.republish({"topic": EventTopic.ACTION_DELETED})

        assert event_source.find_by_id(receipt.event_id).topic == EventTopic.ACTION_DELETED

    def test_republish_without_matches_returns_empty_list(self, event_source):
        assert event_source.republish({"version": "nope"}) == []


class TestStoredDataIsolation:
    """Handlers cannot change what the log holds."""

    def test_handler_mutation_does_not_change_stored_event(self, event_source):
        event_source.subscribe(UPDATED, lambda data: data.update(actionId=999))

        event_id = publish_update(event_source, 1)

        assert event_source.find_by_id(event_id).data == {"actionId": 1}

    def test_replay_and_republish_send_untouched_data(self, event_source):
        received = []

        def mutate(data):
            received.append(dict(data))
            data["actionId"] = 999

        event_source.subscribe(UPDATED, mutate)
        publish_update(event_source, 1)

        event_source.replay({})
        event_source.republish({})

        assert received == [{"actionId": 1}] * 3

    def test_backfilled_handler_mutation_does_not_change_stored_event(self, event_source):
        event_id = publish_update(event_source, 1)

        event_source.subscribe(UPDATED, lambda data: data.clear())

        assert event_source.find_by_id(event_id).data == {"actionId": 1}


class TestReplay:
    """Test re-delivering events."""

    def test_replay_keeps_id_and_published_at(self, event_source):
        received = []
        event_source.subscribe(UPDATED, received.append)
        original = event_source.find_by_id(publish_update(event_source, 1))
        received.clear()

        [receipt] = event_source.replay({"published_at": original.published_at})
        replayed = event_source.find_by_id(receipt.event_id)

        assert receipt.event_id == original.id
        assert replayed.data == original.data
        assert replayed.published_at == original.published_at
        assert replayed.consumed_at != original.consumed_at
        assert received == [{"actionId": 1}]
        assert len(event_source.find_all()) == 1

    def test_replay_without_subscribers_leaves_consumed_at(self, event_source):
        event_id = publish_update(event_source, 1)

        [receipt] = event_source.replay({"topic": UPDATED})

        assert receipt.event_id == event_id
        assert event_source.find_by_id(event_id).consumed_at is None

    def test_replay_returns_original_ids_in_order(self, event_source):
        ids = [publish_update(event_source, i) for i in range(3)]

        receipts = event_source.replay()

        assert [r.event_id for r in receipts] == ids


class TestFlush:
    """Test clearing the store."""

    def test_flush_clears_events_and_subscriptions(self, event_source):
        received = []
        event_source.subscribe(UPDATED, received.append)
        publish_update(event_source, 1)
        received.clear()

        event_source.flush()
        publish_update(event_source, 2)

        assert received == []
        assert event_source.subscriber_count(UPDATED) == 0
        assert len(event_source.find_all()) == 1

    def test_flush_empties_log(self, event_source):
        publish_update(event_source, 1)

        event_source.flush()

        assert event_source.find_all({}) == []


class TestUpdate:
    """Test forwarding of partial updates."""

    def test_update_unknown_id_raises(self, event_source):
        with pytest.raises(EventNotFoundError):
            event_source.update("missing", consumed_at=None)

    def test_update_sets_field(self, event_source, clock):
        event_id = publish_update(event_source, 1)

        event_source.update(event_id, consumed_at=clock())

        assert event_source.find_by_id(event_id).consumed_at == clock.current


class TestHandlerFaults:
    """Test handler exceptions under both policies."""

    def test_propagate_leaves_event_stored_and_unconsumed(self, event_source):
        def failing(data):
            raise RuntimeError("boom")

        event_source.subscribe(UPDATED, failing)

        with pytest.raises(RuntimeError, match="boom"):
            publish_update(event_source, 1)

        [event] = event_source.find_all()
        assert event.consumed_at is None

    def test_propagate_stops_backfill(self, event_source):
        publish_update(event_source, 1)
        publish_update(event_source, 2)

        def failing(data):
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            event_source.subscribe(UPDATED, failing)

        assert len(event_source.find_all({"consumed_at": None})) == 2

    def test_isolate_marks_consumed_when_one_handler_succeeds(self, isolating_event_source):
        received = []

        def failing(data):
            raise RuntimeError("boom")

        isolating_event_source.subscribe(UPDATED, failing)
        isolating_event_source.subscribe(UPDATED, received.append)

        event_id = publish_update(isolating_event_source, 1)

        assert received == [{"actionId": 1}]
        assert isolating_event_source.find_by_id(event_id).consumed_at is not None

    def test_isolate_leaves_unconsumed_when_every_handler_fails(self, isolating_event_source):
        def failing(data):
            raise RuntimeError("boom")

        isolating_event_source.subscribe(UPDATED, failing)

        event_id = publish_update(isolating_event_source, 1)

        assert isolating_event_source.find_by_id(event_id).consumed_at is None

    def test_isolate_backfill_continues_past_failures(self, isolating_event_source):
        publish_update(isolating_event_source, 1)
        publish_update(isolating_event_source, 2)
        received = []

        def picky(data):
            if data["actionId"] == 1:
                raise RuntimeError("boom")
            received.append(data)

        isolating_event_source.subscribe(UPDATED, picky)

        assert received == [{"actionId": 2}]
        [pending] = isolating_event_source.find_all({"consumed_at": None})
        assert pending.data == {"actionId": 1}


class TestReentrancy:
    """Test handlers that call back into the event source."""

    def test_handler_can_publish(self, event_source):
        deleted = []
        event_source.subscribe(EventTopic.ACTION_DELETED, deleted.append)

        def cascade(data):
            publish_update(event_source, data["actionId"], EventTopic.ACTION_DELETED)

        event_source.subscribe(UPDATED, cascade)
        publish_update(event_source, 5)

        assert deleted == [{"actionId": 5}]
        assert len(event_source.find_all()) == 2

    def test_handler_subscribed_during_delivery_is_backfilled(self, event_source):
        # The in-flight event is not marked consumed until dispatch returns.
        late = []

        def subscribe_more(data):
            event_source.subscribe(UPDATED, late.append)

        event_source.subscribe(UPDATED, subscribe_more)
        publish_update(event_source, 1)

        assert late == [{"actionId": 1}]
        assert event_source.subscriber_count(UPDATED) == 2


def test_concurrent_publishers_keep_every_event():
    source = EventSource()
    received = []
    source.subscribe(UPDATED, received.append)

    def worker(offset: int):
        for i in range(100):
            publish_update(source, offset + i)

    threads = [threading.Thread(target=worker, args=(n * 1000,)) for n in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(received) == 400
    assert len(source.find_all()) == 400
    assert source.find_all({"consumed_at": None}) == []


def test_subscribers_joining_during_publishes_miss_nothing():
    source = EventSource()
    published = list(range(300))
    received = {n: [] for n in range(8)}
    start = threading.Barrier(9)

    def publisher():
        start.wait()
        for action_id in published:
            publish_update(source, action_id)

    def subscriber(n: int):
        start.wait()
        source.subscribe(UPDATED, lambda data: received[n].append(data["actionId"]))

    threads = [threading.Thread(target=publisher)]
    threads += [threading.Thread(target=subscriber, args=(n,)) for n in received]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    for ids in received.values():
        # Backfill plus live delivery: an unbroken tail of the publish order
        assert ids == published[len(published) - len(ids):]

    delivered = set().union(*received.values())
    assert delivered == set(published)
    assert source.find_all({"consumed_at": None}) == []
