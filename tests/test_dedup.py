from channel_bridge.services.dedup import WebhookDedupTracker


class TestWebhookDedupTracker:
    def test_second_delivery_is_a_duplicate(self, clock):
        tracker = WebhookDedupTracker(clock=clock)
        assert tracker.check_and_mark("wamid.1") is True
        assert tracker.check_and_mark("wamid.1") is False
        assert tracker.seen("wamid.1") is True

    def test_missing_id_is_always_processed(self, clock):
        tracker = WebhookDedupTracker(clock=clock)
        assert tracker.check_and_mark(None) is True
        assert tracker.check_and_mark(None) is True
        assert tracker.check_and_mark("") is True
        assert tracker.seen(None) is False
        assert len(tracker) == 0

    def test_reprocessed_after_ttl(self, clock):
        tracker = WebhookDedupTracker(ttl_seconds=600, clock=clock)
        tracker.mark_seen("wamid.1")

        clock.advance(599)
        assert tracker.seen("wamid.1") is True
        clock.advance(1)
        assert tracker.check_and_mark("wamid.1") is True

    def test_mark_seen_keeps_first_seen_time(self, clock):
        tracker = WebhookDedupTracker(ttl_seconds=600, clock=clock)
        tracker.mark_seen("wamid.1")
        clock.advance(300)
        tracker.mark_seen("wamid.1")
        clock.advance(300)
        assert tracker.seen("wamid.1") is False

    def test_mark_seen_rearms_expired_entry(self, clock):
        tracker = WebhookDedupTracker(ttl_seconds=600, clock=clock)
        tracker.mark_seen("wamid.1")
        clock.advance(601)

        tracker.mark_seen("wamid.1")
        clock.advance(300)

        assert tracker.seen("wamid.1") is True

    def test_sweep_removes_expired(self, clock):
        tracker = WebhookDedupTracker(ttl_seconds=600, clock=clock)
        tracker.mark_seen("old")
        clock.advance(601)
        tracker.mark_seen("new")

        assert tracker.sweep() == 1
        assert len(tracker) == 1

    def test_periodic_sweep_on_lookup(self, clock):
        tracker = WebhookDedupTracker(ttl_seconds=600, sweep_interval_seconds=60, clock=clock)
        tracker.mark_seen("a")
        tracker.mark_seen("b")
        clock.advance(700)

        tracker.seen("unrelated")
        assert len(tracker) == 0
