"""Pytest configuration and shared fixtures for testing"""

import asyncio
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from eid_agent.checkpoint.bridge import CheckpointBridge
from eid_agent.config.settings import AgentSettings


class RecordingChannel:
    """In-memory channel that records every frame sent to the user"""

    def __init__(self):
        self.sent: List[Dict[str, Any]] = []
        self._event = asyncio.Event()

    async def send_json(self, payload: Dict[str, Any]):
        self.sent.append(payload)
        self._event.set()

    def of_type(self, message_type: str) -> List[Dict[str, Any]]:
        return [payload for payload in self.sent if payload.get("type") == message_type]

    @property
    def types(self) -> List[str]:
        return [payload.get("type") for payload in self.sent]

    async def wait_for(self, message_type: str, timeout: float = 2.0) -> Dict[str, Any]:
        """Wait until a frame of message_type has been sent and return the latest"""
        async def _poll():
            while True:
                matches = self.of_type(message_type)
                if matches:
                    return matches[-1]
                self._event.clear()
                await self._event.wait()
        return await asyncio.wait_for(_poll(), timeout)


def make_fake_driver() -> MagicMock:
    """PageDriver double: every capability is an AsyncMock that succeeds"""
    driver = MagicMock()
    for name in (
        "start", "close", "navigate", "wait_for", "hover", "click", "type_text",
        "clear", "set_value", "select_option", "scroll_into_view",
    ):
        setattr(driver, name, AsyncMock(return_value=None))
    driver.title = AsyncMock(return_value="E-ID Services Portal")
    driver.read_text = AsyncMock(return_value="")
    driver.is_visible = AsyncMock(return_value=False)
    driver.wait_for_any = AsyncMock()
    driver.screenshot_element = AsyncMock(return_value=b"\x89PNG captcha")
    driver.is_started = True
    return driver


@pytest.fixture
def fast_settings() -> AgentSettings:
    """Settings with short timeouts for unit tests"""
    return AgentSettings(
        portal_url="http://portal.test/#",
        headless=True,
        slow_mo_ms=0,
        checkpoint_timeout_seconds=0.5,
        download_settle_seconds=0.1,
        navigation_timeout_ms=1000,
        menu_timeout_ms=1000,
        element_timeout_ms=1000,
    )


@pytest.fixture
def channel() -> RecordingChannel:
    return RecordingChannel()


@pytest.fixture
def channel_factory():
    return RecordingChannel


@pytest.fixture
def fake_driver() -> MagicMock:
    return make_fake_driver()


@pytest.fixture
def fake_driver_factory():
    """Factory building a fresh PageDriver double per call"""
    return make_fake_driver


@pytest.fixture
def progress_log():
    """Progress sink collecting every line a workflow emits"""
    lines: List[str] = []

    async def progress(message: str):
        lines.append(message)

    progress.lines = lines
    return progress


@pytest.fixture
def auto_bridge():
    """Bridge that answers every checkpoint immediately with `answer`"""
    def _build(answer: Optional[str] = "AB12C", timeout_seconds: float = 1.0) -> CheckpointBridge:
        sent: List[Dict[str, Any]] = []

        async def send(payload: Dict[str, Any]):
            sent.append(payload)
            if answer is not None:
                bridge.deliver(answer)

        bridge = CheckpointBridge("test-session", send, timeout_seconds=timeout_seconds)
        bridge.sent = sent
        return bridge
    return _build


@pytest.fixture
def test_fixture_path() -> Path:
    """Return the path to the test fixtures directory"""
    return Path(__file__).parent / "fixtures"


@pytest.fixture
def portal_url(test_fixture_path: Path) -> str:
    """Return the file:// URL for the mock E-ID portal"""
    fixture_path = test_fixture_path / "portal.html"
    return f"file://{fixture_path}"


# Pytest async configuration
def pytest_configure(config):
    """Configure custom markers"""
    config.addinivalue_line(
        "markers", "slow: mark test as slow (can be skipped with -m 'not slow')"
    )
    config.addinivalue_line(
        "markers", "browser: needs a Playwright Chromium install"
    )
