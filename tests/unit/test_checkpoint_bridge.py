"""Unit tests for the human checkpoint bridge"""

import asyncio
import base64
import sys
from pathlib import Path

import pytest

# Add project root to path
project_root = Path(__file__).parent.parent.parent
sys.path.insert(0, str(project_root))

from eid_agent.checkpoint.bridge import CheckpointBridge, image_to_data_uri
from eid_agent.errors import CheckpointTimeout


class Outbox:
    def __init__(self):
        self.sent = []

    async def send(self, payload):
        self.sent.append(payload)


async def _wait_until_pending(bridge: CheckpointBridge):
    while not bridge.has_pending:
        await asyncio.sleep(0)


class TestCheckpointBridge:
    """Suspend/deliver/timeout behaviour"""

    @pytest.mark.asyncio
    async def test_answer_before_deadline_resumes(self):
        """The delivered answer is returned by suspend"""
        outbox = Outbox()
        bridge = CheckpointBridge("s1", outbox.send, timeout_seconds=1.0)

        waiter = asyncio.create_task(bridge.suspend(b"png-bytes"))
        await _wait_until_pending(bridge)

        assert bridge.deliver("AB12C") is True
        assert await waiter == "AB12C"
        assert not bridge.has_pending

    @pytest.mark.asyncio
    async def test_image_sent_as_data_uri(self):
        """captcha_required carries the screenshot as a PNG data URI"""
        outbox = Outbox()
        bridge = CheckpointBridge("s1", outbox.send, timeout_seconds=1.0)

        waiter = asyncio.create_task(bridge.suspend(b"png-bytes"))
        await _wait_until_pending(bridge)
        await asyncio.sleep(0)
        bridge.deliver("x")
        await waiter

        assert outbox.sent == [{
            "type": "captcha_required",
            "image": "data:image/png;base64," + base64.b64encode(b"png-bytes").decode(),
        }]

    @pytest.mark.asyncio
    async def test_no_answer_times_out(self):
        """Silence past the deadline raises CheckpointTimeout and frees the slot"""
        bridge = CheckpointBridge("s1", Outbox().send, timeout_seconds=0.05)

        with pytest.raises(CheckpointTimeout) as exc_info:
            await bridge.suspend(b"png")

        assert exc_info.value.message == "CAPTCHA response timed out."
        assert not bridge.has_pending

    @pytest.mark.asyncio
    async def test_timeout_not_before_deadline(self):
        """CheckpointTimeout is raised no earlier than the deadline"""
        loop = asyncio.get_running_loop()
        bridge = CheckpointBridge("s1", Outbox().send, timeout_seconds=0.1)

        waiter = asyncio.create_task(bridge.suspend(b"png"))
        await _wait_until_pending(bridge)
        deadline = bridge.pending.deadline

        with pytest.raises(CheckpointTimeout):
            await waiter
        assert loop.time() >= deadline

    @pytest.mark.asyncio
    async def test_answer_one_ms_before_deadline_accepted(self, monkeypatch):
        loop = asyncio.get_running_loop()
        bridge = CheckpointBridge("s1", Outbox().send, timeout_seconds=5.0)

        waiter = asyncio.create_task(bridge.suspend(b"png"))
        await _wait_until_pending(bridge)
        deadline = bridge.pending.deadline

        with monkeypatch.context() as m:
            m.setattr(loop, "time", lambda: deadline - 0.001)
            accepted = bridge.deliver("AB12C")

        assert accepted is True
        assert await waiter == "AB12C"

    @pytest.mark.asyncio
    async def test_answer_one_ms_after_deadline_dropped(self, monkeypatch):
        loop = asyncio.get_running_loop()
        bridge = CheckpointBridge("s1", Outbox().send, timeout_seconds=5.0)

        waiter = asyncio.create_task(bridge.suspend(b"png"))
        await _wait_until_pending(bridge)
        deadline = bridge.pending.deadline

        with monkeypatch.context() as m:
            m.setattr(loop, "time", lambda: deadline + 0.001)
            accepted = bridge.deliver("AB12C")

        assert accepted is False
        assert bridge.has_pending
        bridge.cancel()
        with pytest.raises(asyncio.CancelledError):
            await waiter

    @pytest.mark.asyncio
    async def test_answer_after_timeout_is_dropped(self):
        """A late answer finds no pending checkpoint"""
        bridge = CheckpointBridge("s1", Outbox().send, timeout_seconds=0.05)

        with pytest.raises(CheckpointTimeout):
            await bridge.suspend(b"png")

        assert bridge.deliver("late") is False

    @pytest.mark.asyncio
    async def test_answer_without_checkpoint_is_dropped(self):
        """Stale solutions are a no-op and do not leak into the next checkpoint"""
        outbox = Outbox()
        bridge = CheckpointBridge("s1", outbox.send, timeout_seconds=0.1)

        assert bridge.deliver("too-early") is False

        with pytest.raises(CheckpointTimeout):
            await bridge.suspend(b"png")

    @pytest.mark.asyncio
    async def test_second_answer_is_ignored(self):
        """Only the first answer resolves a checkpoint"""
        bridge = CheckpointBridge("s1", Outbox().send, timeout_seconds=1.0)

        waiter = asyncio.create_task(bridge.suspend(b"png"))
        await _wait_until_pending(bridge)

        assert bridge.deliver("first") is True
        assert bridge.deliver("second") is False
        assert await waiter == "first"

    @pytest.mark.asyncio
    async def test_concurrent_suspend_rejected(self):
        """At most one checkpoint may be pending per session"""
        bridge = CheckpointBridge("s1", Outbox().send, timeout_seconds=1.0)

        waiter = asyncio.create_task(bridge.suspend(b"one"))
        await _wait_until_pending(bridge)

        with pytest.raises(RuntimeError):
            await bridge.suspend(b"two")

        bridge.deliver("ok")
        assert await waiter == "ok"

    @pytest.mark.asyncio
    async def test_cancel_discards_pending(self):
        """Teardown cancels the waiting workflow"""
        bridge = CheckpointBridge("s1", Outbox().send, timeout_seconds=5.0)

        waiter = asyncio.create_task(bridge.suspend(b"png"))
        await _wait_until_pending(bridge)
        bridge.cancel()

        with pytest.raises(asyncio.CancelledError):
            await waiter
        assert not bridge.has_pending

    @pytest.mark.asyncio
    async def test_sessions_are_isolated(self):
        """An answer for one session never resolves another's checkpoint"""
        first = CheckpointBridge("a", Outbox().send, timeout_seconds=1.0)
        second = CheckpointBridge("b", Outbox().send, timeout_seconds=0.1)

        waiter = asyncio.create_task(first.suspend(b"png"))
        await _wait_until_pending(first)

        assert second.deliver("for-a") is False
        first.deliver("for-a")
        assert await waiter == "for-a"


def test_image_to_data_uri():
    """PNG bytes become a base64 data URI"""
    assert image_to_data_uri(b"\x00\x01") == "data:image/png;base64,AAE="
