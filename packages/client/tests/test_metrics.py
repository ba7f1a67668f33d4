"""Tests for metrics collection."""

import pytest

from todo_sync.metrics import COUNTERS, GAUGES, MetricsCollector


def test_counter_increment():
    m = MetricsCollector()
    m.inc("fetches_total")
    m.inc("fetches_total")
    assert m.get("fetches_total") == 2


def test_declared_metrics_start_at_zero():
    m = MetricsCollector()
    assert m.get("mutations_total") == 0
    assert m.get("todos_cached") == 0


def test_undeclared_names_rejected():
    m = MetricsCollector()
    with pytest.raises(KeyError):
        m.inc("fetchs_total")
    with pytest.raises(KeyError):
        m.set_gauge("todo_cached", 1)


def test_gauge_set():
    m = MetricsCollector()
    m.set_gauge("todos_cached", 3)
    assert m.get("todos_cached") == 3


def test_prometheus_lists_every_declared_metric():
    m = MetricsCollector()
    m.inc("change_events_total", 5)
    m.set_gauge("todos_cached", 2)
    text = m.to_prometheus()
    assert "todo_sync_change_events_total 5" in text
    assert "todo_sync_todos_cached 2" in text
    assert "# HELP todo_sync_feed_connects_total Successful change feed connections" in text
    for name in COUNTERS:
        assert f"# TYPE todo_sync_{name} counter" in text
    for name in GAUGES:
        assert f"# TYPE todo_sync_{name} gauge" in text
    assert "todo_sync_uptime_seconds" in text


def test_summary():
    m = MetricsCollector()
    assert m.summary()["last_fetch_age_seconds"] is None

    m.inc("fetches_total")
    m.inc("feed_connects_total", 2)
    m.set_gauge("last_fetch_timestamp_seconds", 1.0)
    summary = m.summary()
    assert summary["fetches"] == 1
    assert summary["feed_connects"] == 2
    assert summary["last_fetch_age_seconds"] > 0
    assert "todos_cached" not in summary
