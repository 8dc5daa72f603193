"""Stepped workflow executor shared by the registration, download and update tasks.

Each workflow declares its state order and an ordered list of Steps. run()
executes the steps strictly in sequence, emits one progress line per state
transition and converts every error at the task boundary into a failure
Outcome. Cancellation (session teardown) is the only thing that escapes.
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from loguru import logger

from ..browser.page_driver import PageDriver
from ..checkpoint.bridge import CheckpointBridge
from ..config.settings import AgentSettings
from ..errors import AutomationError, BusinessRejection, NavigationError, VerificationError
from ..models import Outcome


ProgressFunc = Callable[[str], Awaitable[None]]

START = "Start"


# =============================================================================
# PORTAL PAGE CONTRACT (shared by all workflows)
# =============================================================================

PORTAL_CONTRACT_VERSION = "2024.1"

PORTAL_SELECTORS = {
    "nav_bar": "nav.bg-blue-800",
    "menu": "nav .dropdown:first-child",
    "captcha_view": "#captchaView",
    "captcha_input": "#captchaInput",
    "captcha_submit": "#verifyCaptchaButton",
}


@dataclass(frozen=True)
class Step:
    """One state transition of a workflow

    Args:
        state: State reached when the action completes
        action: Coroutine function; returning an Outcome ends the run
        message: Progress line emitted on reaching the state (format fields
            come from the workflow params); None emits nothing
        checkpoint: Step belongs to the human-verification phase, so a
            missing element there is a VerificationError
    """
    state: str
    action: Callable[[], Awaitable[Optional[Outcome]]]
    message: Optional[str] = None
    checkpoint: bool = False


class BaseWorkflow(ABC):
    """Abstract base class for portal workflows"""

    name: str = "workflow"
    required_fields: Tuple[str, ...] = ()

    # Ordered groups of states; states in the same group are alternative
    # branches at the same depth (e.g. RecordFound / RecordNotFound).
    states: Tuple[Tuple[str, ...], ...] = ((START,),)

    def __init__(
        self,
        params: Mapping[str, str],
        driver: PageDriver,
        bridge: CheckpointBridge,
        progress: ProgressFunc,
        settings: Optional[AgentSettings] = None,
    ):
        """
        Initialize workflow

        Args:
            params: Validated input fields (see validate_params)
            driver: Page driver owned by this run
            bridge: Owning session's checkpoint bridge
            progress: Coroutine emitting a progress line to the session
            settings: Timeouts and portal URL
        """
        self.validate_params(params)
        self.params: Dict[str, str] = dict(params)
        self.driver = driver
        self.bridge = bridge
        self.progress = progress
        self.settings = settings or AgentSettings()
        self.session_id = bridge.session_id

        self.state = START
        self.history: List[str] = [START]
        self.error: Optional[AutomationError] = None
        self._rank = {state: depth for depth, group in enumerate(self.states) for state in group}

    # -------------------------------------------------------------------------
    # Contract
    # -------------------------------------------------------------------------

    @classmethod
    def accepted_fields(cls) -> Tuple[str, ...]:
        return cls.required_fields

    @classmethod
    def prepare_params(cls, fields: Mapping[str, str]) -> Dict[str, str]:
        """Pick and normalize this workflow's inputs from extracted fields"""
        return {
            name: fields[name].strip()
            for name in cls.accepted_fields()
            if (fields.get(name) or "").strip()
        }

    @classmethod
    def missing_fields(cls, fields: Mapping[str, str]) -> List[str]:
        """Return the required fields absent (or blank) in fields"""
        return [name for name in cls.required_fields if not (fields.get(name) or "").strip()]

    @classmethod
    def validate_params(cls, params: Mapping[str, str]):
        """Raise ValueError when params violate the workflow's preconditions"""
        missing = cls.missing_fields(params)
        if missing:
            raise ValueError(f"{cls.name} requires: {', '.join(missing)}")

    @classmethod
    def describe(cls, params: Mapping[str, str]) -> str:
        """Human-readable label used in the 'classified intent' log line"""
        return cls.name

    @abstractmethod
    def steps(self) -> Sequence[Step]:
        """Return the ordered steps of this workflow"""

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------

    async def run(self) -> Outcome:
        """
        Run the workflow to a terminal Outcome

        Returns:
            Outcome; never raises except asyncio.CancelledError
        """
        logger.info(f"[{self.session_id}] Starting {self.name} workflow")
        await self.progress(f"Launching browser for {self.name}...")
        try:
            await self.driver.start()
            for step in self.steps():
                outcome = await self._execute(step)
                if outcome is not None:
                    logger.info(f"[{self.session_id}] {self.name} finished in state {self.state}")
                    return outcome
            raise RuntimeError(f"{self.name} workflow ended without an outcome")
        except BusinessRejection as e:
            self._fail(e)
            await self.progress(f"{self.name} failed. Reason: {e.message}")
            return Outcome.failure(e.message)
        except VerificationError as e:
            self._fail(e)
            await self.progress(f"Verification failed: {e.message}")
            return Outcome.failure(e.message)
        except AutomationError as e:
            self._fail(e)
            await self.progress(f"Agent crash: {e.message}")
            return Outcome.failure(f"Automation script failed: {e.message}")
        except asyncio.CancelledError:
            logger.info(f"[{self.session_id}] {self.name} cancelled in state {self.state}")
            raise
        except Exception as e:
            logger.exception(f"[{self.session_id}] Unexpected error in {self.name}: {e}")
            await self.progress(f"Agent crash: {e}")
            return Outcome.failure(f"Automation script failed: {e}")
        finally:
            await self._shutdown()

    async def _execute(self, step: Step) -> Optional[Outcome]:
        try:
            outcome = await step.action()
        except NavigationError as e:
            if step.checkpoint:
                raise VerificationError(f"Verification did not complete: {e.message}", state=e.state) from e
            raise
        await self.advance(step.state, step.message)
        return outcome

    async def advance(self, state: str, message: Optional[str] = None):
        """Move to state, enforcing strictly forward transitions"""
        if state not in self._rank:
            raise RuntimeError(f"{self.name}: unknown state {state}")
        if self._rank[state] <= self._rank[self.state]:
            raise RuntimeError(f"{self.name}: illegal transition {self.state} -> {state}")

        logger.debug(f"[{self.session_id}] {self.name}: {self.state} -> {state}")
        self.state = state
        self.history.append(state)
        if message:
            await self.progress(message.format(**self.params))

    def _fail(self, error: AutomationError):
        self.error = error
        if error.state and error.state in self._rank and self._rank[error.state] > self._rank[self.state]:
            self.state = error.state
            self.history.append(error.state)
        logger.warning(f"[{self.session_id}] {self.name} failed in state {self.state}: {type(error).__name__}")

    async def _shutdown(self):
        if self.settings.result_linger_seconds > 0 and self.driver.is_started:
            try:
                await asyncio.sleep(self.settings.result_linger_seconds)
            finally:
                await self.driver.close()
        else:
            await self.driver.close()

    # -------------------------------------------------------------------------
    # Shared portal steps
    # -------------------------------------------------------------------------

    async def open_portal(self) -> None:
        await self.driver.navigate(self.settings.portal_url, timeout_ms=self.settings.navigation_timeout_ms)
        title = await self.driver.title()
        await self.progress(f'Navigated to E-ID portal. Page title is: "{title}"')
        await self.driver.wait_for(PORTAL_SELECTORS["nav_bar"], timeout_ms=self.settings.navigation_timeout_ms)

    async def open_menu_entry(self, entry_selector: str, view_selector: str) -> None:
        await self.progress('Hovering over "My E-ID" menu...')
        await self.driver.hover(PORTAL_SELECTORS["menu"], timeout_ms=self.settings.menu_timeout_ms)
        await self.driver.wait_for(entry_selector, timeout_ms=self.settings.menu_timeout_ms)
        await self.driver.click(entry_selector)
        await self.driver.wait_for(view_selector, timeout_ms=self.settings.element_timeout_ms)

    async def solve_checkpoint(self) -> None:
        """Screenshot the CAPTCHA, wait for the human answer, type it in

        Leaves the answer unsubmitted; submit_checkpoint clicks verify.
        """
        screenshot = await self.driver.screenshot_element(
            PORTAL_SELECTORS["captcha_view"], timeout_ms=self.settings.element_timeout_ms
        )
        await self.progress("CAPTCHA detected. Requesting human input...")
        answer = await self.bridge.suspend(screenshot)
        await self.progress("Human provided CAPTCHA. Submitting...")
        await self.driver.type_text(PORTAL_SELECTORS["captcha_input"], answer)

    async def submit_checkpoint(self) -> None:
        await self.driver.click(PORTAL_SELECTORS["captcha_submit"])

    async def read_result(self, success_selector: str, error_selector: str, message_selector: str,
                          fallback: str) -> Tuple[bool, str]:
        """
        Decide which of a success/error pair became visible

        Returns:
            (True, "") on success, (False, portal message) on failure
        """
        if await self.driver.is_visible(success_selector):
            return True, ""
        if await self.driver.is_visible(error_selector):
            message = await self.driver.read_text(message_selector)
            return False, message or fallback
        return False, fallback

