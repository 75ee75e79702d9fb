# tests/unit/test_dispatch.py

"""
Unit tests for the Dispatcher in src/flat_file_source/dispatch.py.
"""

import pytest

from flat_file_source.core import RunStats
from flat_file_source.dispatch import Dispatcher
from flat_file_source.exceptions import PayloadEncodingError
from flat_file_source.schemas import EVENT_SOURCE, EVENT_TYPE, CloudEventOverrides


@pytest.fixture
def stats() -> RunStats:
    return RunStats()


def test_deliver_joins_lines_without_separators(make_transport, delivery_context, stats):
    transport = make_transport()
    dispatcher = Dispatcher(transport, delivery_context, stats)

    assert dispatcher.deliver(["one\n", "two\n", "EOF"]) is True

    event = transport.events[0]
    assert event.data.data == "one\ntwo\nEOF"
    assert event.type == EVENT_TYPE
    assert event.source == EVENT_SOURCE
    assert event.id == "1"
    assert transport.contexts == [delivery_context]
    assert stats.sent_count == 3
    assert stats.error_count == 0


def test_ids_increase_across_deliveries_including_failures(make_transport, delivery_context, stats):
    transport = make_transport([True, False, True])
    dispatcher = Dispatcher(transport, delivery_context, stats)

    results = [dispatcher.deliver([f"line {i}\n"]) for i in range(3)]

    assert results == [True, False, True]
    assert transport.ids == ["1", "2", "3"]
    assert stats.sent_count == 2
    assert stats.error_count == 1


def test_failed_delivery_leaves_batch_untouched(make_transport, delivery_context, stats):
    dispatcher = Dispatcher(make_transport([False]), delivery_context, stats)
    batch = ["a\n", "b\n"]

    assert dispatcher.deliver(batch) is False
    assert batch == ["a\n", "b\n"]
    assert stats.sent_count == 0


def test_overrides_are_applied_to_every_event(make_transport, delivery_context, stats):
    transport = make_transport()
    overrides = CloudEventOverrides(extensions={"team": "ingest", "env": "test"})
    dispatcher = Dispatcher(transport, delivery_context, stats, overrides)

    dispatcher.deliver(["a\n"])
    dispatcher.deliver(["b\n"])

    assert all(e.extensions == {"team": "ingest", "env": "test"} for e in transport.events)


def test_unencodable_payload_raises_before_sending(make_transport, delivery_context, stats):
    transport = make_transport()
    dispatcher = Dispatcher(transport, delivery_context, stats)

    with pytest.raises(PayloadEncodingError):
        dispatcher.deliver(["broken \ud800 surrogate\n"])

    assert transport.events == []
    assert stats.error_count == 0
