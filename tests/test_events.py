"""Tests for the event bus."""

from speakersync.core.events import Channel, DataChanged, EventBus, SyncCompleted


class TestChannel:
    """Test subscribe, emit and unsubscribe."""

    def test_handlers_run_in_subscription_order(self):
        channel = Channel("data_changed")
        calls = []
        channel.subscribe(lambda e: calls.append(("first", e.reason)))
        channel.subscribe(lambda e: calls.append(("second", e.reason)))

        channel.emit(DataChanged(reason="add"))

        assert calls == [("first", "add"), ("second", "add")]

    def test_unsubscribe(self):
        channel = Channel("data_changed")
        calls = []
        unsubscribe = channel.subscribe(calls.append)
        unsubscribe()
        unsubscribe()

        channel.emit(DataChanged())

        assert calls == []
        assert len(channel) == 0

    def test_failing_handler_does_not_stop_others(self, caplog):
        channel = Channel("sync_completed")
        calls = []

        def broken(event):
            raise RuntimeError("boom")

        channel.subscribe(broken)
        channel.subscribe(calls.append)

        channel.emit(SyncCompleted(conflict_count=0, action="none"))

        assert len(calls) == 1
        assert "sync_completed" in caplog.text
        assert "boom" in caplog.text

    def test_handler_may_unsubscribe_during_emit(self):
        channel = Channel("data_changed")
        calls = []
        unsubscribe = None

        def once(event):
            calls.append(event)
            unsubscribe()

        unsubscribe = channel.subscribe(once)
        channel.emit(DataChanged())
        channel.emit(DataChanged())

        assert len(calls) == 1


class TestEventBus:
    """Test the channel set."""

    def test_channels_are_independent(self):
        bus = EventBus()
        calls = []
        bus.data_changed.subscribe(calls.append)

        bus.sync_completed.emit(SyncCompleted(conflict_count=0, action="push"))

        assert calls == []

    def test_each_bus_has_its_own_channels(self):
        first, second = EventBus(), EventBus()
        first.data_changed.subscribe(lambda e: None)
        assert len(second.data_changed) == 0
