"""Session state for one connected user"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional, Set

from ..checkpoint.bridge import CheckpointBridge
from ..workflows.base import BaseWorkflow


@dataclass
class Session:
    """One connected user: channel, checkpoint slot, in-flight workflow

    `channel` is anything with `async send_json(dict)` (a Starlette
    WebSocket in production). The checkpoint slot lives on `bridge`.
    """
    session_id: str
    channel: Any
    bridge: CheckpointBridge
    connected_at: datetime = field(default_factory=datetime.now)
    current_workflow: Optional[BaseWorkflow] = None
    closed: bool = False
    # Serializes user_message handling: one workflow at a time per session
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)
    message_tasks: Set[asyncio.Task] = field(default_factory=set, repr=False)

    @property
    def busy(self) -> bool:
        return self.current_workflow is not None

    def describe(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "connected_at": self.connected_at.isoformat(),
            "busy": self.busy,
            "state": self.current_workflow.state if self.current_workflow else None,
            "pending_checkpoint": self.bridge.has_pending,
        }
