"""Registration workflow: fill the new E-ID form and pass the CAPTCHA.

States:
    Start -> NavigatedToPortal -> MenuOpened -> OnRegistrationForm -> FormFilled
    -> SubmittedAwaitingCheckpoint -> CheckpointAnswered -> Resolved

A duplicate phone number (or any other portal-side validation failure) ends
the run in Resolved with the portal's own message.
"""

from typing import Dict, Mapping, Optional, Sequence

from ..errors import BusinessRejection
from ..models import Outcome
from .base import START, BaseWorkflow, PORTAL_SELECTORS, Step


# =============================================================================
# REGISTRATION PAGE SELECTORS
# =============================================================================

REGISTRATION_SELECTORS = {
    "menu_entry": "#navRegister",
    "view": "#registerView",
    "name": "#reg-name",
    "dob": "#reg-dob",
    "gender": "#reg-gender",
    "phone": "#reg-phone",
    "address": "#reg-address",
    "submit": "#registerButton",
    "success_box": "#registerSuccessBox",
    "error_box": "#registerErrorBox",
    "error_message": "#registerErrorMessage",
    "new_eid": "#newEIdNumber",
}

REGISTRATION_STATES = (
    (START,),
    ("NavigatedToPortal",),
    ("MenuOpened",),
    ("OnRegistrationForm",),
    ("FormFilled",),
    ("SubmittedAwaitingCheckpoint",),
    ("CheckpointAnswered",),
    ("Resolved",),
)

GENDERS = ("Male", "Female", "Other")


class RegistrationWorkflow(BaseWorkflow):
    """Register a new E-ID on the portal"""

    name = "Registration"
    required_fields = ("name", "dob", "gender", "phone", "address")
    states = REGISTRATION_STATES

    @classmethod
    def prepare_params(cls, fields: Mapping[str, str]) -> Dict[str, str]:
        params = super().prepare_params(fields)
        if "gender" in params:
            params["gender"] = params["gender"].capitalize()
        return params

    @classmethod
    def validate_params(cls, params: Mapping[str, str]):
        super().validate_params(params)
        gender = params["gender"]
        if gender not in GENDERS:
            raise ValueError(f"gender must be one of {', '.join(GENDERS)}, got {gender!r}")

    @classmethod
    def describe(cls, params: Mapping[str, str]) -> str:
        return "Register E-ID"

    def steps(self) -> Sequence[Step]:
        return [
            Step("NavigatedToPortal", self.open_portal),
            Step("MenuOpened", self._open_registration),
            Step("OnRegistrationForm", self._confirm_form, "On registration page. Filling form..."),
            Step("FormFilled", self._fill_form, "Form filled. Proceeding to security check..."),
            Step("SubmittedAwaitingCheckpoint", self._submit_form),
            Step("CheckpointAnswered", self._answer_checkpoint, checkpoint=True),
            Step("Resolved", self._resolve, checkpoint=True),
        ]

    async def _open_registration(self) -> None:
        await self.open_menu_entry(REGISTRATION_SELECTORS["menu_entry"], REGISTRATION_SELECTORS["view"])

    async def _confirm_form(self) -> None:
        await self.driver.wait_for(REGISTRATION_SELECTORS["name"])

    async def _fill_form(self) -> None:
        await self.driver.type_text(REGISTRATION_SELECTORS["name"], self.params["name"])
        # Date inputs ignore typed text; the oracle already produced YYYY-MM-DD
        await self.driver.set_value(REGISTRATION_SELECTORS["dob"], self.params["dob"])
        await self.driver.select_option(REGISTRATION_SELECTORS["gender"], self.params["gender"])
        await self.driver.type_text(REGISTRATION_SELECTORS["phone"], self.params["phone"])
        await self.driver.type_text(REGISTRATION_SELECTORS["address"], self.params["address"])

    async def _submit_form(self) -> None:
        await self.driver.click(REGISTRATION_SELECTORS["submit"])
        await self.driver.wait_for(PORTAL_SELECTORS["captcha_view"], timeout_ms=self.settings.element_timeout_ms)

    async def _answer_checkpoint(self) -> None:
        await self.solve_checkpoint()
        await self.submit_checkpoint()

    async def _resolve(self) -> Optional[Outcome]:
        await self.driver.wait_for_any(
            [REGISTRATION_SELECTORS["success_box"], REGISTRATION_SELECTORS["error_box"]],
            timeout_ms=self.settings.element_timeout_ms,
        )
        succeeded, message = await self.read_result(
            REGISTRATION_SELECTORS["success_box"],
            REGISTRATION_SELECTORS["error_box"],
            REGISTRATION_SELECTORS["error_message"],
            fallback="Registration failed. Unknown error.",
        )
        if not succeeded:
            raise BusinessRejection(message, state="Resolved")

        eid = await self.driver.read_text(REGISTRATION_SELECTORS["new_eid"])
        await self.progress(f"Registration Successful! New E-ID: {eid}")
        return Outcome(success=True, eId=eid)
