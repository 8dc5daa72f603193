"""Unit tests for metrics tracking"""

import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent.parent
sys.path.insert(0, str(project_root))

from eid_agent.analytics.metrics import MetricsTracker


class TestMetricsTracker:

    def test_empty_summary(self):
        summary = MetricsTracker().get_summary()

        assert summary["requests"] == 0
        assert summary["success_rate"] == 0
        assert summary["avg_workflow_seconds"] == 0
        assert summary["failure_log"] == []

    def test_outcomes_and_success_rate(self):
        metrics = MetricsTracker()
        metrics.record_outcome("Registration", True, 4.0)
        metrics.record_outcome("Download", False, 2.0)
        metrics.record_outcome("Download", True, 3.0)

        summary = metrics.get_summary()

        assert summary["successes"] == {"Registration": 1, "Download": 1}
        assert summary["failures"] == {"Download": 1}
        assert summary["success_rate"] == 2 / 3
        assert summary["avg_workflow_seconds"] == 3.0

    def test_checkpoint_timeouts_counted(self):
        metrics = MetricsTracker()
        metrics.record_checkpoint()
        metrics.record_failure("CheckpointTimeout", "Registration", "CAPTCHA response timed out.")
        metrics.record_failure("BusinessRejection", "Download", "No record found")

        summary = metrics.get_summary()

        assert summary["checkpoints"] == 1
        assert summary["checkpoint_timeouts"] == 1
        assert [entry["type"] for entry in summary["failure_log"]] == ["CheckpointTimeout", "BusinessRejection"]

    def test_requests_by_intent(self):
        metrics = MetricsTracker()
        metrics.record_request("download_eid")
        metrics.record_request("download_eid")
        metrics.record_request("unknown")
        metrics.record_reply()

        summary = metrics.get_summary()

        assert summary["requests"] == 3
        assert summary["by_intent"] == {"download_eid": 2, "unknown": 1}
        assert summary["replies"] == 1

    def test_reset(self):
        metrics = MetricsTracker()
        metrics.record_session_opened()
        metrics.reset()

        assert metrics.get_summary()["sessions_opened"] == 0
