"""
tests/test_dispatcher.py
─────────────────────────
Tests for alert dedup, cooldown, deferral and clearing.
"""
from datetime import timedelta

import pytest

from config.alerts import AlertSeverity
from src.alerts.dispatcher import AlertDispatcher
from src.alerts.notifier import LoggingNotifier


class TestDeduplication:
    def test_same_id_notified_once(self, dispatcher, recording_notifier, make_alert, now):
        alert = make_alert("a1")
        dispatcher.submit([alert], now=now)
        result = dispatcher.submit([alert], now=now + timedelta(minutes=5))
        assert len(recording_notifier.shown) == 1
        assert result.skipped == [alert]

    def test_same_id_twice_in_one_batch(self, dispatcher, recording_notifier, make_alert, now):
        alert = make_alert("c1", severity=AlertSeverity.CRITICAL)
        dispatcher.submit([alert, alert], now=now)
        assert len(recording_notifier.shown) == 1

    def test_capacity_evicts_oldest(self, recording_notifier, make_alert, now):
        dispatcher = AlertDispatcher(recording_notifier, capacity=2)
        for i in range(3):
            dispatcher.submit([make_alert(f"c{i}", severity=AlertSeverity.CRITICAL)], now=now)
        assert not dispatcher.was_notified("c0")
        assert dispatcher.was_notified("c2")
        dispatcher.submit([make_alert("c0", severity=AlertSeverity.CRITICAL)], now=now)
        assert len(recording_notifier.shown) == 4


class TestCooldown:
    def test_second_warning_deferred(self, dispatcher, recording_notifier, make_alert, now):
        first, second = make_alert("w1", parameter="pH"), make_alert("w2", parameter="Salinity")
        result = dispatcher.submit([first, second], now=now)
        assert result.notified == [first]
        assert result.deferred == [second]
        assert [a.id for a in recording_notifier.shown] == ["w1"]

    def test_critical_ignores_cooldown(self, dispatcher, recording_notifier, make_alert, now):
        dispatcher.submit([make_alert("w1")], now=now)
        critical = make_alert("c1", severity=AlertSeverity.CRITICAL, parameter="Ammonia")
        result = dispatcher.submit([critical], now=now + timedelta(seconds=1))
        assert result.notified == [critical]

    def test_batch_sorted_by_severity(self, dispatcher, recording_notifier, make_alert, now):
        batch = [
            make_alert("w1", parameter="pH"),
            make_alert("c1", severity=AlertSeverity.CRITICAL, parameter="Ammonia"),
            make_alert("w2", parameter="Salinity"),
        ]
        result = dispatcher.submit(batch, now=now)
        assert [a.id for a in recording_notifier.shown] == ["c1"]
        assert [a.id for a in result.deferred] == ["w1", "w2"]

    def test_critical_starts_cooldown(self, dispatcher, recording_notifier, make_alert, now):
        dispatcher.submit([make_alert("c1", severity=AlertSeverity.CRITICAL, parameter="Ammonia")], now=now)
        warning = make_alert("w1", parameter="pH")
        result = dispatcher.submit([warning], now=now + timedelta(seconds=2))
        assert result.deferred == [warning]
        result = dispatcher.submit([], now=now + timedelta(seconds=6))
        assert result.notified == [warning]
        assert [a.id for a in recording_notifier.shown] == ["c1", "w1"]

    def test_deferred_sent_after_cooldown(self, dispatcher, recording_notifier, make_alert, now):
        dispatcher.submit([make_alert("w1", parameter="pH"), make_alert("w2", parameter="Salinity")], now=now)
        result = dispatcher.submit([], now=now + timedelta(seconds=6))
        assert [a.id for a in result.notified] == ["w2"]
        assert dispatcher.deferred == []

    def test_cooldown_boundary_is_exclusive(self, dispatcher, make_alert, now):
        dispatcher.submit([make_alert("w1", parameter="pH")], now=now)
        result = dispatcher.submit([make_alert("w2", parameter="TDS")], now=now + timedelta(seconds=5))
        assert result.deferred

    def test_newer_alert_replaces_deferred_slot(self, dispatcher, make_alert, now):
        dispatcher.submit([make_alert("w1", parameter="pH"), make_alert("w2", parameter="Salinity")], now=now)
        dispatcher.submit([make_alert("w3", parameter="Salinity")], now=now + timedelta(seconds=1))
        assert [a.id for a in dispatcher.deferred] == ["w3"]

    def test_parameter_scope(self, recording_notifier, make_alert, now):
        dispatcher = AlertDispatcher(recording_notifier, cooldown=timedelta(seconds=5), scope="parameter")
        dispatcher.submit([make_alert("w1", parameter="pH"), make_alert("w2", parameter="Salinity")], now=now)
        assert len(recording_notifier.shown) == 2

    def test_tank_scope(self, recording_notifier, make_alert, now):
        dispatcher = AlertDispatcher(recording_notifier, cooldown=timedelta(seconds=5), scope="tank")
        result = dispatcher.submit([
            make_alert("w1", tank_id="tank_001"),
            make_alert("w2", tank_id="tank_002"),
            make_alert("w3", parameter="TDS", tank_id="tank_001"),
        ], now=now)
        assert [a.id for a in result.notified] == ["w1", "w2"]
        assert [a.id for a in result.deferred] == ["w3"]

    def test_unknown_scope_rejected(self, recording_notifier):
        with pytest.raises(ValueError):
            AlertDispatcher(recording_notifier, scope="planet")

    def test_uses_clock_when_no_time_given(self, dispatcher, recording_notifier, make_alert):
        dispatcher.submit([make_alert("w1", parameter="pH")])
        result = dispatcher.submit([make_alert("w2", parameter="TDS")])
        assert result.deferred


class TestNotifierFailure:
    def test_failure_does_not_stop_batch(self, dispatcher, recording_notifier, make_alert, now):
        recording_notifier.fail_ids = {"c1"}
        batch = [
            make_alert("c1", severity=AlertSeverity.CRITICAL, parameter="Ammonia"),
            make_alert("c2", severity=AlertSeverity.CRITICAL, parameter="Dissolved Oxygen"),
        ]
        result = dispatcher.submit(batch, now=now)
        assert [a.id for a in result.failed] == ["c1"]
        assert [a.id for a in result.notified] == ["c2"]
        assert not dispatcher.was_notified("c1")

    def test_failed_alert_not_deferred(self, dispatcher, recording_notifier, make_alert, now):
        recording_notifier.fail_ids = {"w1"}
        dispatcher.submit([make_alert("w1")], now=now)
        assert dispatcher.deferred == []
        recording_notifier.fail_ids = set()
        result = dispatcher.submit([make_alert("w1")], now=now + timedelta(seconds=1))
        assert [a.id for a in result.notified] == ["w1"]

    def test_disabled_logging_notifier(self, make_alert, now):
        dispatcher = AlertDispatcher(LoggingNotifier(enabled=False))
        result = dispatcher.submit([make_alert("c1", severity=AlertSeverity.CRITICAL)], now=now)
        assert len(result.failed) == 1


class TestListeners:
    def test_listener_receives_notified(self, dispatcher, make_alert, now):
        feed = []
        dispatcher.add_listener(feed.append)
        dispatcher.submit([make_alert("w1"), make_alert("w2", parameter="TDS")], now=now)
        assert [a.id for a in feed] == ["w1"]

    def test_listener_error_is_contained(self, dispatcher, recording_notifier, make_alert, now):
        def broken(alert):
            raise RuntimeError("ui gone")
        dispatcher.add_listener(broken)
        result = dispatcher.submit([make_alert("c1", severity=AlertSeverity.CRITICAL)], now=now)
        assert len(result.notified) == 1


class TestClearing:
    def test_resolve_clears_slot_and_ids(self, dispatcher, recording_notifier, make_alert, now):
        dispatcher.submit([make_alert("c1", severity=AlertSeverity.CRITICAL, parameter="Ammonia")], now=now)
        removed = dispatcher.resolve("Ammonia", "tank_001")
        assert removed == 1
        assert recording_notifier.cleared == [("Ammonia", "tank_001")]
        assert not dispatcher.was_notified("c1")

    def test_resolve_drops_deferred(self, dispatcher, make_alert, now):
        dispatcher.submit([make_alert("w1", parameter="pH"), make_alert("w2", parameter="TDS")], now=now)
        dispatcher.resolve("TDS", "tank_001")
        assert dispatcher.deferred == []

    def test_resolve_leaves_other_tanks(self, dispatcher, make_alert, now):
        dispatcher.submit([
            make_alert("c1", severity=AlertSeverity.CRITICAL, parameter="Ammonia", tank_id="tank_001"),
            make_alert("c2", severity=AlertSeverity.CRITICAL, parameter="Ammonia", tank_id="tank_002"),
        ], now=now)
        dispatcher.resolve("Ammonia", "tank_001")
        assert dispatcher.was_notified("c2")

    def test_reset(self, dispatcher, recording_notifier, make_alert, now):
        dispatcher.submit([make_alert("w1"), make_alert("w2", parameter="TDS")], now=now)
        dispatcher.reset()
        assert dispatcher.deferred == []
        result = dispatcher.submit([make_alert("w1")], now=now)
        assert len(result.notified) == 1

    def test_clear_tank(self, dispatcher, recording_notifier, make_alert, now):
        dispatcher.submit([
            make_alert("c1", severity=AlertSeverity.CRITICAL, tank_id="tank_001"),
            make_alert("c2", severity=AlertSeverity.CRITICAL, tank_id="tank_002"),
        ], now=now)
        dispatcher.clear_tank("tank_001")
        assert recording_notifier.cleared_tanks == ["tank_001"]
        assert not dispatcher.was_notified("c1")
        assert dispatcher.was_notified("c2")

    def test_stats(self, dispatcher, make_alert, now):
        dispatcher.submit([make_alert("w1"), make_alert("w2", parameter="TDS")], now=now)
        stats = dispatcher.stats
        assert stats["notified"] == 1
        assert stats["deferred"] == 1
        assert stats["pending_deferred"] == 1
