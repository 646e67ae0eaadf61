import unittest
from unittest.mock import patch

from lifesync.observability import otel


class _Instrument:
    def __init__(self) -> None:
        self.calls: list[tuple[str, float, dict]] = []

    def add(self, amount, labels):
        self.calls.append(("add", amount, labels))

    def record(self, amount, labels):
        self.calls.append(("record", amount, labels))


class _PromChild:
    def __init__(self, parent, labels) -> None:
        self.parent = parent
        self.labels = labels

    def inc(self, amount):
        self.parent.calls.append(("inc", amount, self.labels))

    def observe(self, amount):
        self.parent.calls.append(("observe", amount, self.labels))


class _PromMetric:
    def __init__(self) -> None:
        self.calls: list[tuple[str, float, dict]] = []

    def labels(self, **labels):
        return _PromChild(self, labels)


class ObservabilityTests(unittest.TestCase):
    def test_helpers_are_noops_when_disabled(self) -> None:
        with patch.object(otel, "_state", otel._State()):
            with otel.start_span("sync.run", {"run_id": "SR-1"}) as span:
                self.assertIsNone(span)
            otel.record_sync_run("manual", "completed", 12)
            otel.record_issues(1, "orphaned_link", 2)
            otel.record_reasoning_call(2, "ok")

    def test_run_metrics_reach_both_exporters_with_normalized_labels(self) -> None:
        state = otel._State()
        runs, duration, prom_runs = _Instrument(), _Instrument(), _PromMetric()
        state.otel = {"lifesync_sync_runs_total": runs, "lifesync_sync_run_duration_ms": duration}
        state.prom = {"lifesync_sync_runs_total": prom_runs}

        with patch.object(otel, "_state", state):
            otel.record_sync_run("realtime", "", -5)

        self.assertEqual(runs.calls, [("add", 1, {"run_type": "realtime", "result": "unknown"})])
        self.assertEqual(duration.calls, [("record", 0.0, {"run_type": "realtime"})])
        self.assertEqual(prom_runs.calls, [("inc", 1, {"run_type": "realtime", "result": "unknown"})])

    def test_issue_counter_skips_empty_batches(self) -> None:
        state = otel._State()
        issues = _Instrument()
        state.otel = {"lifesync_sync_issues_recorded_total": issues}

        with patch.object(otel, "_state", state):
            otel.record_issues(3, "misaligned_task", 0)
            otel.record_issues(3, "misaligned_task", 2)

        self.assertEqual(issues.calls, [("add", 2, {"layer": "3", "type": "misaligned_task"})])

    def test_otlp_endpoint_gets_signal_path(self) -> None:
        with patch.object(otel.config, "OTEL_ENDPOINT", "http://collector:4318/"):
            self.assertEqual(otel._otlp_endpoint("traces"), "http://collector:4318/v1/traces")
        with patch.object(otel.config, "OTEL_ENDPOINT", "http://collector:4318/v1"):
            self.assertEqual(otel._otlp_endpoint("metrics"), "http://collector:4318/v1/metrics")
        with patch.object(otel.config, "OTEL_ENDPOINT", ""):
            self.assertIsNone(otel._otlp_endpoint("traces"))


if __name__ == "__main__":
    unittest.main()
