"""Workflow registry for routing classified intents to their workflow"""

from typing import Callable, Dict, Mapping, Optional, Type

from loguru import logger

from ..browser.page_driver import PageDriver
from ..checkpoint.bridge import CheckpointBridge
from ..config.settings import AgentSettings
from ..models import Intent
from .base import BaseWorkflow, ProgressFunc
from .download_workflow import DownloadWorkflow
from .registration_workflow import RegistrationWorkflow
from .update_workflow import UpdateWorkflow


DriverFactory = Callable[[str], PageDriver]

FIELD_LABELS = {
    "name": "full name",
    "dob": "date of birth",
    "gender": "gender",
    "phone": "phone number",
    "address": "address",
    "eId": "12-digit E-ID number",
}


class WorkflowRegistry:
    """Registry for workflow implementations"""

    def __init__(self, settings: Optional[AgentSettings] = None, driver_factory: Optional[DriverFactory] = None):
        """
        Initialize workflow registry

        Args:
            settings: Agent settings handed to every workflow
            driver_factory: Builds a fresh PageDriver for a session id
        """
        self.settings = settings or AgentSettings()
        self.driver_factory = driver_factory or self._default_driver
        self.workflows: Dict[Intent, Type[BaseWorkflow]] = {}
        self._register_defaults()
        logger.info("Workflow registry initialized")

    def _register_defaults(self):
        """Register default workflow implementations"""
        self.register(Intent.REGISTER, RegistrationWorkflow)
        self.register(Intent.DOWNLOAD, DownloadWorkflow)
        self.register(Intent.UPDATE, UpdateWorkflow)

    def register(self, intent: Intent, workflow_class: Type[BaseWorkflow]):
        """
        Register a workflow implementation

        Args:
            intent: Intent the workflow serves
            workflow_class: Workflow class implementation
        """
        self.workflows[intent] = workflow_class
        logger.debug(f"Registered workflow: {intent.value} -> {workflow_class.__name__}")

    def _default_driver(self, session_id: str) -> PageDriver:
        return PageDriver(
            session_id=session_id,
            headless=self.settings.headless,
            slow_mo_ms=self.settings.slow_mo_ms,
            default_timeout_ms=self.settings.element_timeout_ms,
        )

    def get_workflow_class(self, intent: Intent) -> Optional[Type[BaseWorkflow]]:
        """
        Get workflow class for an intent

        Returns:
            Workflow class or None (unknown intent)
        """
        return self.workflows.get(intent)

    def completeness_prompt(self, intent: Intent, fields: Mapping[str, str]) -> Optional[str]:
        """
        Check extracted fields against the workflow's preconditions

        Returns:
            A question for the user when something is missing or malformed,
            None when the workflow can start
        """
        workflow_class = self.get_workflow_class(intent)
        if workflow_class is None:
            return None

        params = workflow_class.prepare_params(fields)
        missing = workflow_class.missing_fields(params)
        if missing:
            labels = [FIELD_LABELS.get(name, name) for name in missing]
            return f"To continue I still need your {', '.join(labels)}."
        try:
            workflow_class.validate_params(params)
        except ValueError as e:
            return f"{e}. Could you check that and try again?"
        return None

    def create(
        self,
        intent: Intent,
        fields: Mapping[str, str],
        bridge: CheckpointBridge,
        progress: ProgressFunc,
    ) -> BaseWorkflow:
        """
        Build a workflow instance with its own page driver

        Raises:
            KeyError: No workflow registered for the intent
            ValueError: Fields violate the workflow's preconditions
        """
        workflow_class = self.workflows[intent]
        params = workflow_class.prepare_params(fields)
        workflow_class.validate_params(params)
        driver = self.driver_factory(bridge.session_id)
        return workflow_class(params, driver, bridge, progress, settings=self.settings)
