"""Human-in-the-loop checkpoint bridge.

A workflow that hits a CAPTCHA calls `suspend(image)`. The bridge registers
the pending checkpoint, pushes the image to the session's channel and awaits
a single-shot future that the inbound-message handler completes through
`deliver(answer)`. The wait is raced against a fixed deadline.

All slot mutations happen on the event loop between awaits, so registering
and resolving a checkpoint cannot interleave. The slot is registered before
the image is sent: an answer that arrives earlier than that finds no pending
checkpoint and is dropped.
"""

import asyncio
import base64
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional

from loguru import logger

from ..errors import CheckpointTimeout


DEFAULT_CHECKPOINT_TIMEOUT_SECONDS = 120.0

SendFunc = Callable[[Dict[str, Any]], Awaitable[None]]


@dataclass
class Checkpoint:
    """A pending human verification challenge"""
    image: bytes
    created_at: float
    deadline: float
    answer: asyncio.Future = field(repr=False)

    def remaining(self, now: float) -> float:
        return max(0.0, self.deadline - now)


def image_to_data_uri(image: bytes) -> str:
    """Encode a PNG screenshot as a data URI for the browser client"""
    return f"data:image/png;base64,{base64.b64encode(image).decode('utf-8')}"


class CheckpointBridge:
    """Per-session suspend/resume primitive with a fixed timeout"""

    def __init__(
        self,
        session_id: str,
        send: SendFunc,
        timeout_seconds: float = DEFAULT_CHECKPOINT_TIMEOUT_SECONDS,
    ):
        self.session_id = session_id
        self._send = send
        self.timeout_seconds = timeout_seconds
        self._pending: Optional[Checkpoint] = None

    @property
    def pending(self) -> Optional[Checkpoint]:
        return self._pending

    @property
    def has_pending(self) -> bool:
        return self._pending is not None

    async def suspend(self, image: bytes) -> str:
        """
        Hand the rendered checkpoint to the user and wait for their answer

        Args:
            image: PNG bytes of the checkpoint region

        Returns:
            The answer the user typed

        Raises:
            CheckpointTimeout: No answer before the deadline
            RuntimeError: A checkpoint is already pending for this session
        """
        if self._pending is not None:
            raise RuntimeError(f"Session {self.session_id} already has a pending checkpoint")

        loop = asyncio.get_running_loop()
        created_at = loop.time()
        checkpoint = Checkpoint(
            image=image,
            created_at=created_at,
            deadline=created_at + self.timeout_seconds,
            answer=loop.create_future(),
        )
        self._pending = checkpoint

        try:
            logger.info(f"[{self.session_id}] CAPTCHA required. Sending to user...")
            await self._send({"type": "captcha_required", "image": image_to_data_uri(image)})
            try:
                return await asyncio.wait_for(checkpoint.answer, checkpoint.remaining(loop.time()))
            except asyncio.TimeoutError:
                # Delivered in the same loop tick as the deadline
                if checkpoint.answer.done() and not checkpoint.answer.cancelled():
                    return checkpoint.answer.result()
                logger.warning(f"[{self.session_id}] CAPTCHA timed out after {self.timeout_seconds:.0f}s")
                raise CheckpointTimeout("CAPTCHA response timed out.") from None
        finally:
            if self._pending is checkpoint:
                self._pending = None

    def deliver(self, answer: str) -> bool:
        """
        Resolve the pending checkpoint with the user's answer

        Returns:
            True if a checkpoint was waiting, False if the answer was dropped
        """
        checkpoint = self._pending
        if checkpoint is None or checkpoint.answer.done():
            logger.debug(f"[{self.session_id}] No pending CAPTCHA; dropping solution")
            return False
        if checkpoint.answer.get_loop().time() > checkpoint.deadline:
            logger.debug(f"[{self.session_id}] CAPTCHA solution arrived after the deadline; dropping")
            return False

        checkpoint.answer.set_result(answer)
        self._pending = None
        logger.info(f"[{self.session_id}] Received CAPTCHA solution")
        return True

    def cancel(self):
        """Discard the pending checkpoint (session teardown)"""
        checkpoint = self._pending
        self._pending = None
        if checkpoint is not None and not checkpoint.answer.done():
            checkpoint.answer.cancel()
            logger.info(f"[{self.session_id}] Pending CAPTCHA discarded")
