"""Update workflow: change name, phone and/or address on an existing E-ID.

States:
    Start -> NavigatedToPortal -> MenuOpened -> OnUpdateForm -> UserLookupSubmitted
    -> UserFound | UserNotFound
    UserFound -> FieldsEdited -> SaveSubmitted -> SubmittedAwaitingCheckpoint
    -> CheckpointAnswered -> Resolved
"""

from typing import Dict, Mapping, Optional, Sequence, Tuple

from ..errors import BusinessRejection
from ..models import Outcome
from .base import START, BaseWorkflow, PORTAL_SELECTORS, Step
from .download_workflow import DownloadWorkflow


# =============================================================================
# UPDATE PAGE SELECTORS
# =============================================================================

UPDATE_SELECTORS = {
    "menu_entry": "#navUpdate",
    "view": "#updateView",
    "eid_input": "#eid-number-update",
    "find_button": "#findUserButton",
    "edit_step": "#updateStep2",
    "lookup_step": "#updateStep1",
    "find_error_box": "#updateFindErrorBox",
    "find_error_message": "#updateFindErrorMessage",
    "save_button": "#updateSaveChangesButton",
    "success_box": "#updateSuccessBox",
    "error_box": "#updateErrorBox",
    "error_message": "#updateErrorMessage",
}

# Edit order is fixed so runs are reproducible
CHANGE_FIELDS: Tuple[str, ...] = ("name", "phone", "address")

UPDATE_STATES = (
    (START,),
    ("NavigatedToPortal",),
    ("MenuOpened",),
    ("OnUpdateForm",),
    ("UserLookupSubmitted",),
    ("UserFound", "UserNotFound"),
    ("FieldsEdited",),
    ("SaveSubmitted",),
    ("SubmittedAwaitingCheckpoint",),
    ("CheckpointAnswered",),
    ("Resolved",),
)


def field_input(field: str) -> str:
    return f"#update-{field}"


def field_unlock_button(field: str) -> str:
    return f'button[data-field="update-{field}"]'


class UpdateWorkflow(BaseWorkflow):
    """Update details of an existing E-ID"""

    name = "Update"
    required_fields = ("eId",)
    states = UPDATE_STATES

    @classmethod
    def accepted_fields(cls) -> Tuple[str, ...]:
        return cls.required_fields + CHANGE_FIELDS

    @classmethod
    def prepare_params(cls, fields: Mapping[str, str]) -> Dict[str, str]:
        params = super().prepare_params(fields)
        # Same E-ID normalization as the download lookup
        params.update(DownloadWorkflow.prepare_params(params))
        return params

    @classmethod
    def missing_fields(cls, fields: Mapping[str, str]):
        missing = super().missing_fields(fields)
        if not any((fields.get(name) or "").strip() for name in CHANGE_FIELDS):
            missing.append(" or ".join(CHANGE_FIELDS))
        return missing

    @classmethod
    def validate_params(cls, params: Mapping[str, str]):
        if not any((params.get(name) or "").strip() for name in CHANGE_FIELDS):
            raise ValueError("Update requires at least one of: name, phone, address")
        super().validate_params(params)
        DownloadWorkflow.validate_params({"eId": params["eId"]})

    @classmethod
    def describe(cls, params: Mapping[str, str]) -> str:
        return f"Update E-ID for {params.get('eId', '')}"

    @property
    def changes(self) -> Dict[str, str]:
        """Present change fields in edit order"""
        return {name: self.params[name] for name in CHANGE_FIELDS if self.params.get(name)}

    def steps(self) -> Sequence[Step]:
        return [
            Step("NavigatedToPortal", self.open_portal),
            Step("MenuOpened", self._open_update),
            Step("OnUpdateForm", self._confirm_form, "On update page. Finding user..."),
            Step("UserLookupSubmitted", self._submit_lookup),
            Step("UserFound", self._check_user, "User found. Unlocking fields to update..."),
            Step("FieldsEdited", self._edit_fields),
            Step("SaveSubmitted", self._save),
            Step("SubmittedAwaitingCheckpoint", self._await_checkpoint, checkpoint=True),
            Step("CheckpointAnswered", self._answer_checkpoint, checkpoint=True),
            Step("Resolved", self._resolve, checkpoint=True),
        ]

    async def _open_update(self) -> None:
        await self.open_menu_entry(UPDATE_SELECTORS["menu_entry"], UPDATE_SELECTORS["view"])

    async def _confirm_form(self) -> None:
        await self.driver.wait_for(UPDATE_SELECTORS["eid_input"])

    async def _submit_lookup(self) -> None:
        await self.driver.type_text(UPDATE_SELECTORS["eid_input"], self.params["eId"])
        await self.driver.click(UPDATE_SELECTORS["find_button"])

    async def _check_user(self) -> None:
        shown = await self.driver.wait_for_any(
            [UPDATE_SELECTORS["edit_step"], UPDATE_SELECTORS["find_error_box"]],
            timeout_ms=self.settings.element_timeout_ms,
        )
        if shown == UPDATE_SELECTORS["find_error_box"]:
            message = await self.driver.read_text(UPDATE_SELECTORS["find_error_message"])
            raise BusinessRejection(message or "User not found.", state="UserNotFound")

    async def _edit_fields(self) -> None:
        for field, value in self.changes.items():
            await self.driver.click(field_unlock_button(field))
            await self.driver.clear(field_input(field))
            await self.driver.type_text(field_input(field), value)
            await self.progress(f"Updating {field} to: {value}")

    async def _save(self) -> None:
        await self.driver.click(UPDATE_SELECTORS["save_button"])

    async def _await_checkpoint(self) -> None:
        await self.driver.wait_for(PORTAL_SELECTORS["captcha_view"], timeout_ms=self.settings.element_timeout_ms)

    async def _answer_checkpoint(self) -> None:
        await self.solve_checkpoint()
        await self.submit_checkpoint()

    async def _resolve(self) -> Optional[Outcome]:
        # The portal returns to the lookup step and shows the result box there
        await self.driver.wait_for(UPDATE_SELECTORS["lookup_step"], timeout_ms=self.settings.element_timeout_ms)
        succeeded, message = await self.read_result(
            UPDATE_SELECTORS["success_box"],
            UPDATE_SELECTORS["error_box"],
            UPDATE_SELECTORS["error_message"],
            fallback="Update failed. Unknown error.",
        )
        if not succeeded:
            raise BusinessRejection(message, state="Resolved")

        await self.progress("Update Successful!")
        return Outcome(success=True, message="Update successful")
