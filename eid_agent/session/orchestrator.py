"""Route channel messages to the oracle, workflows and checkpoint bridge.

Each inbound user_message is handled in its own asyncio task, serialized
behind the session's lock, so a running workflow never blocks the receive
loop: captcha_solution messages for the same session and all traffic of
other sessions keep flowing while a workflow is suspended.
"""

import asyncio
from functools import partial
from typing import Any, Dict, List, Optional
from uuid import uuid4

from loguru import logger

from ..analytics.metrics import MetricsTracker
from ..browser.sanitize import mask_sensitive_in_logs
from ..checkpoint.bridge import CheckpointBridge
from ..config.settings import AgentSettings
from ..models import Outcome
from ..oracle.intent_oracle import IntentOracle
from ..workflows.registry import WorkflowRegistry
from .models import Session


DEFAULT_REPLY = "I'm not sure what you mean. Can you be more specific?"


class SessionOrchestrator:
    """Session registry and message router"""

    def __init__(
        self,
        oracle: IntentOracle,
        registry: WorkflowRegistry,
        settings: Optional[AgentSettings] = None,
        metrics: Optional[MetricsTracker] = None,
    ):
        self.oracle = oracle
        self.registry = registry
        self.settings = settings or registry.settings
        self.metrics = metrics or MetricsTracker()
        self.sessions: Dict[str, Session] = {}

    # -------------------------------------------------------------------------
    # Session lifecycle
    # -------------------------------------------------------------------------

    def connect(self, channel: Any) -> Session:
        """Create a session for a newly connected channel"""
        session_id = uuid4().hex
        bridge = CheckpointBridge(
            session_id,
            send=partial(self._send_checkpoint, session_id),
            timeout_seconds=self.settings.checkpoint_timeout_seconds,
        )
        session = Session(session_id=session_id, channel=channel, bridge=bridge)
        self.sessions[session_id] = session
        self.metrics.record_session_opened()
        logger.info(f"[{session_id}] A user connected")
        return session

    def get(self, session_id: str) -> Session:
        """Return a session or raise KeyError if missing"""
        session = self.sessions.get(session_id)
        if session is None:
            raise KeyError(f"Session {session_id} not found")
        return session

    async def disconnect(self, session_id: str):
        """
        Tear a session down: cancel its work, close its browser, drop it

        Nothing is sent to the channel; this is not an error path.
        """
        session = self.sessions.get(session_id)
        if session is None or session.closed:
            return
        session.closed = True

        tasks = list(session.message_tasks)
        for task in tasks:
            task.cancel()
        try:
            # Workflow finally-blocks close the page driver while these unwind.
            # Shielded so a cancelled caller does not interrupt that cleanup.
            await asyncio.shield(asyncio.gather(*tasks, return_exceptions=True))
        finally:
            session.bridge.cancel()
            self.sessions.pop(session_id, None)
            self.metrics.record_session_closed()
            logger.info(f"[{session_id}] A user disconnected ({len(tasks)} task(s) cancelled)")

    async def drain(self, session_id: str):
        """Wait until every in-flight message of a session has been handled"""
        session = self.sessions.get(session_id)
        while session is not None and session.message_tasks:
            await asyncio.gather(*list(session.message_tasks), return_exceptions=True)

    async def shutdown(self):
        """Disconnect every session (application shutdown)"""
        for session_id in list(self.sessions):
            await self.disconnect(session_id)

    # -------------------------------------------------------------------------
    # Inbound messages
    # -------------------------------------------------------------------------

    async def handle(self, session_id: str, payload: Dict[str, Any]):
        """Process one inbound channel payload without waiting for workflows"""
        session = self.sessions.get(session_id)
        if session is None or session.closed:
            logger.warning(f"[{session_id}] Message for unknown or closed session dropped")
            return

        message_type = payload.get("type")
        if message_type == "user_message":
            self._spawn(session, self._process_user_message(session, str(payload.get("text") or "")))
        elif message_type == "captcha_solution":
            self._deliver_solution(session, payload.get("code"))
        else:
            logger.warning(f"[{session_id}] Unsupported message type: {message_type}")
            await self._send_result(session, Outcome.failure(f"Unsupported message type: {message_type}"))

    def _spawn(self, session: Session, coro):
        task = asyncio.create_task(coro)
        session.message_tasks.add(task)
        task.add_done_callback(session.message_tasks.discard)

    def _deliver_solution(self, session: Session, code: Any):
        if code is None or not str(code).strip():
            logger.debug(f"[{session.session_id}] Empty CAPTCHA solution dropped")
            return
        session.bridge.deliver(str(code).strip())

    async def _process_user_message(self, session: Session, text: str):
        async with session.lock:
            if session.closed:
                return
            try:
                await self._dispatch(session, text)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.exception(f"[{session.session_id}] Error processing message: {e}")
                await self._send_result(session, Outcome.failure(str(e) or type(e).__name__))

    async def _dispatch(self, session: Session, text: str):
        if not text.strip():
            await self._reply(session, DEFAULT_REPLY)
            return

        result = await self.oracle.classify(text)
        self.metrics.record_request(result.intent.value)

        workflow_class = self.registry.get_workflow_class(result.intent)
        if workflow_class is None:
            prompt = result.missing_info_prompt or DEFAULT_REPLY
            await self._send_log(session, f'AI could not determine intent. Asking user: "{prompt}"')
            await self._reply(session, prompt)
            return

        fields = result.data.fields()
        prompt = self.registry.completeness_prompt(result.intent, fields)
        if prompt:
            prompt = result.missing_info_prompt or prompt
            await self._send_log(session, f"AI needs more information for {workflow_class.name}.")
            await self._reply(session, prompt)
            return

        workflow = self.registry.create(
            result.intent, fields, session.bridge, progress=partial(self._send_log, session)
        )
        await self._send_log(
            session, f"AI classified intent as: {workflow_class.describe(workflow.params)}. Starting agent..."
        )

        loop = asyncio.get_running_loop()
        started = loop.time()
        session.current_workflow = workflow
        try:
            outcome = await workflow.run()
        finally:
            session.current_workflow = None

        self._record_outcome(session, workflow, outcome, loop.time() - started)
        await self._send_result(session, outcome)

    def _record_outcome(self, session: Session, workflow, outcome: Outcome, duration: float):
        self.metrics.record_outcome(workflow.name, outcome.success, duration)
        if outcome.success:
            logger.success(f"[{session.session_id}] {workflow.name} succeeded in {duration:.1f}s")
            return
        failure_type = type(workflow.error).__name__ if workflow.error else "UnexpectedError"
        reason = mask_sensitive_in_logs(outcome.error or "")
        self.metrics.record_failure(
            failure_type=failure_type,
            component=workflow.name,
            reason=reason,
            context={"session_id": session.session_id, "state": workflow.state},
        )
        logger.warning(f"[{session.session_id}] {workflow.name} failed ({failure_type}) in {workflow.state}: {reason}")

    # -------------------------------------------------------------------------
    # Outbound messages
    # -------------------------------------------------------------------------

    async def _send(self, session: Session, payload: Dict[str, Any]):
        if session.closed:
            return
        try:
            await session.channel.send_json(payload)
        except Exception as e:
            # The receive loop notices the disconnect and tears the session down
            logger.warning(f"[{session.session_id}] Could not send {payload.get('type')}: {e}")

    async def _send_log(self, session: Session, message: str):
        logger.info(f"[{session.session_id}] {mask_sensitive_in_logs(message)}")
        await self._send(session, {"type": "agent_log", "message": message})

    async def _reply(self, session: Session, text: str):
        self.metrics.record_reply()
        await self._send(session, {"type": "ai_reply", "text": text})

    async def _send_result(self, session: Session, outcome: Outcome):
        await self._send(session, {"type": "agent_result", "result": outcome.to_wire()})

    async def _send_checkpoint(self, session_id: str, payload: Dict[str, Any]):
        session = self.sessions.get(session_id)
        if session is None:
            return
        self.metrics.record_checkpoint()
        await self._send(session, payload)

    def describe_sessions(self) -> List[Dict[str, Any]]:
        return [session.describe() for session in self.sessions.values()]
