"""Metrics tracking"""

from collections import defaultdict
from datetime import datetime
from typing import Any, Dict

from loguru import logger


class MetricsTracker:
    """Track session and workflow metrics for the /metrics endpoint"""

    def __init__(self):
        """Initialize metrics tracker"""
        self.reset()
        logger.info("Metrics tracker initialized")

    def record_session_opened(self):
        self.metrics['sessions_opened'] += 1

    def record_session_closed(self):
        self.metrics['sessions_closed'] += 1

    def record_request(self, intent: str):
        """Record a classified user message"""
        self.metrics['requests'] += 1
        self.metrics['by_intent'][intent] += 1

    def record_reply(self):
        """Record a clarification reply (no workflow started)"""
        self.metrics['replies'] += 1

    def record_checkpoint(self):
        self.metrics['checkpoints'] += 1

    def record_outcome(self, workflow: str, success: bool, duration_seconds: float):
        """Record a terminal workflow outcome"""
        bucket = 'successes' if success else 'failures'
        self.metrics[bucket][workflow] += 1
        self.metrics['durations'].append(duration_seconds)

    def record_failure(
        self,
        failure_type: str,
        component: str,
        reason: str,
        context: Dict[str, Any] = None
    ):
        """
        Record a detailed failure

        Args:
            failure_type: Error class (NavigationError, CheckpointTimeout, ...)
            component: Workflow or layer that failed
            reason: Failure message (already masked)
            context: Additional context (session id, final state, ...)
        """
        self.metrics['failure_log'].append({
            'timestamp': datetime.now().isoformat(),
            'type': failure_type,
            'component': component,
            'reason': reason,
            'context': context or {}
        })
        if failure_type == 'CheckpointTimeout':
            self.metrics['checkpoint_timeouts'] += 1

    def get_summary(self) -> Dict[str, Any]:
        """Get metrics summary"""
        durations = self.metrics['durations']
        avg_duration = sum(durations) / len(durations) if durations else 0

        total_successes = sum(self.metrics['successes'].values())
        total_failures = sum(self.metrics['failures'].values())
        finished = total_successes + total_failures

        return {
            'sessions_opened': self.metrics['sessions_opened'],
            'sessions_closed': self.metrics['sessions_closed'],
            'requests': self.metrics['requests'],
            'replies': self.metrics['replies'],
            'by_intent': dict(self.metrics['by_intent']),
            'successes': dict(self.metrics['successes']),
            'failures': dict(self.metrics['failures']),
            'success_rate': total_successes / finished if finished else 0,
            'checkpoints': self.metrics['checkpoints'],
            'checkpoint_timeouts': self.metrics['checkpoint_timeouts'],
            'avg_workflow_seconds': avg_duration,
            'failure_log': list(self.metrics['failure_log'][-50:]),
        }

    def reset(self):
        """Reset metrics"""
        self.metrics = {
            'sessions_opened': 0,
            'sessions_closed': 0,
            'requests': 0,
            'replies': 0,
            'by_intent': defaultdict(int),
            'successes': defaultdict(int),
            'failures': defaultdict(int),
            'checkpoints': 0,
            'checkpoint_timeouts': 0,
            'durations': [],
            'failure_log': [],
        }
