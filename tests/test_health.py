"""Tests for the node Health Evaluator."""

from datetime import datetime, timedelta, timezone

import pytest

from virt_controller.health.evaluator import (
    NodeHealth,
    evaluate_heartbeat,
    evaluate_node,
    has_malformed_heartbeat,
    parse_heartbeat,
)
from virt_controller.models.node import HEARTBEAT_ANNOTATION, Node

NOW = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)
THRESHOLD = timedelta(minutes=5)


def _make_node(heartbeat=None) -> Node:
    annotations = {HEARTBEAT_ANNOTATION: heartbeat} if heartbeat is not None else {}
    return Node(name="node01", annotations=annotations)


class TestParseHeartbeat:
    def test_parse_utc_z_suffix(self):
        assert parse_heartbeat("2024-05-01T11:58:00Z") == datetime(
            2024, 5, 1, 11, 58, tzinfo=timezone.utc
        )

    def test_parse_offset_is_normalized_to_utc(self):
        parsed = parse_heartbeat("2024-05-01T13:58:00+02:00")
        assert parsed == datetime(2024, 5, 1, 11, 58, tzinfo=timezone.utc)
        assert parsed.tzinfo == timezone.utc

    def test_parse_json_quoted_value(self):
        assert parse_heartbeat('"2024-05-01T11:58:00Z"') is not None

    def test_naive_timestamp_is_utc(self):
        assert parse_heartbeat("2024-05-01T11:58:00") == datetime(
            2024, 5, 1, 11, 58, tzinfo=timezone.utc
        )

    @pytest.mark.parametrize("value", [None, "", "yesterday", "2024-13-45T99:00:00Z"])
    def test_missing_or_malformed_is_none(self, value):
        assert parse_heartbeat(value) is None


class TestEvaluateHeartbeat:
    def test_fresh_heartbeat_is_healthy(self):
        assert evaluate_heartbeat(NOW - timedelta(seconds=10), THRESHOLD, NOW) == NodeHealth.HEALTHY

    def test_stale_heartbeat_is_unresponsive(self):
        assert evaluate_heartbeat(NOW - timedelta(minutes=10), THRESHOLD, NOW) == NodeHealth.UNRESPONSIVE

    def test_exactly_at_threshold_is_healthy(self):
        """Unresponsive only when the age strictly exceeds the threshold."""
        assert evaluate_heartbeat(NOW - THRESHOLD, THRESHOLD, NOW) == NodeHealth.HEALTHY

    def test_just_past_threshold_is_unresponsive(self):
        heartbeat = NOW - THRESHOLD - timedelta(seconds=1)
        assert evaluate_heartbeat(heartbeat, THRESHOLD, NOW) == NodeHealth.UNRESPONSIVE

    def test_missing_heartbeat_is_unresponsive(self):
        assert evaluate_heartbeat(None, THRESHOLD, NOW) == NodeHealth.UNRESPONSIVE

    def test_threshold_in_seconds(self):
        assert evaluate_heartbeat(NOW - timedelta(seconds=61), 60, NOW) == NodeHealth.UNRESPONSIVE
        assert evaluate_heartbeat(NOW - timedelta(seconds=59), 60, NOW) == NodeHealth.HEALTHY

    def test_naive_current_time_is_utc(self):
        naive_now = NOW.replace(tzinfo=None)
        assert evaluate_heartbeat(NOW - timedelta(minutes=1), THRESHOLD, naive_now) == NodeHealth.HEALTHY

    def test_defaults_to_wall_clock(self):
        recent = datetime.now(timezone.utc) - timedelta(seconds=5)
        assert evaluate_heartbeat(recent, THRESHOLD) == NodeHealth.HEALTHY


class TestEvaluateNode:
    def test_node_with_fresh_annotation(self):
        node = _make_node("2024-05-01T11:59:00Z")
        assert evaluate_node(node, THRESHOLD, NOW) == NodeHealth.HEALTHY

    def test_node_with_stale_annotation(self):
        node = _make_node("2024-05-01T11:50:00Z")
        assert evaluate_node(node, THRESHOLD, NOW) == NodeHealth.UNRESPONSIVE

    def test_node_never_seen_by_agent(self):
        node = _make_node()
        assert evaluate_node(node, THRESHOLD, NOW) == NodeHealth.UNRESPONSIVE
        assert not has_malformed_heartbeat(node)

    def test_node_with_garbage_annotation(self):
        node = _make_node("not-a-time")
        assert evaluate_node(node, THRESHOLD, NOW) == NodeHealth.UNRESPONSIVE
        assert has_malformed_heartbeat(node)
