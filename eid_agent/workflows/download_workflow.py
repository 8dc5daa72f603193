"""Download workflow: look up an E-ID and capture the downloaded card.

States:
    Start -> NavigatedToPortal -> MenuOpened -> OnSearchForm -> SearchSubmitted
    -> RecordFound | RecordNotFound
    RecordFound -> DownloadTriggered -> SubmittedAwaitingCheckpoint
    -> CheckpointAnswered -> DownloadCaptured | DownloadFailed

The card is not returned by any single page action: the portal produces it
asynchronously once the CAPTCHA is verified. The download listener is
attached before the answer is submitted and given a settle window afterwards;
only when that window passes empty is the run reported as failed.
"""

import re
from typing import Dict, Mapping, Optional, Sequence

from loguru import logger

from ..browser.page_driver import DownloadCapture
from ..errors import BusinessRejection, VerificationError
from ..models import Outcome
from .base import START, BaseWorkflow, PORTAL_SELECTORS, Step


# =============================================================================
# SEARCH / DOWNLOAD PAGE SELECTORS
# =============================================================================

DOWNLOAD_SELECTORS = {
    "menu_entry": "#navSearch",
    "view": "#searchView",
    "eid_input": "#eid-number-search",
    "submit": "#searchButton",
    "results_card": "#resultsCard",
    "error_box": "#searchErrorBox",
    "error_message": "#searchErrorMessage",
    "download_button": "#downloadButton",
    "download_button_enabled": "#downloadButton:not([disabled])",
}

DOWNLOAD_STATES = (
    (START,),
    ("NavigatedToPortal",),
    ("MenuOpened",),
    ("OnSearchForm",),
    ("SearchSubmitted",),
    ("RecordFound", "RecordNotFound"),
    ("DownloadTriggered",),
    ("SubmittedAwaitingCheckpoint",),
    ("CheckpointAnswered",),
    ("DownloadCaptured", "DownloadFailed"),
)

EID_PATTERN = re.compile(r"^\d{12}$")

DOWNLOAD_FAILED_MESSAGE = "Download failed. CAPTCHA may have been incorrect."


def is_eid_artifact(name: str) -> bool:
    """Whether a download filename / intercepted URL is the E-ID card"""
    lowered = name.lower()
    return lowered.startswith("data:text/plain") or lowered.endswith(".txt")


class DownloadWorkflow(BaseWorkflow):
    """Download an existing E-ID card"""

    name = "Download"
    required_fields = ("eId",)
    states = DOWNLOAD_STATES

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._capture: Optional[DownloadCapture] = None

    @classmethod
    def prepare_params(cls, fields: Mapping[str, str]) -> Dict[str, str]:
        params = super().prepare_params(fields)
        if "eId" in params:
            params["eId"] = re.sub(r"[\s-]", "", params["eId"])
        return params

    @classmethod
    def validate_params(cls, params: Mapping[str, str]):
        super().validate_params(params)
        if not EID_PATTERN.match(params["eId"]):
            raise ValueError("E-ID must be exactly 12 digits")

    @classmethod
    def describe(cls, params: Mapping[str, str]) -> str:
        return f"Download E-ID for {params.get('eId', '')}"

    def steps(self) -> Sequence[Step]:
        return [
            Step("NavigatedToPortal", self.open_portal),
            Step("MenuOpened", self._open_search),
            Step("OnSearchForm", self._confirm_form, "On search page."),
            Step("SearchSubmitted", self._submit_search, "Searching for E-ID: {eId}..."),
            Step("RecordFound", self._check_record, "E-ID found. Proceeding to download security check..."),
            Step("DownloadTriggered", self._trigger_download),
            Step("SubmittedAwaitingCheckpoint", self._await_checkpoint, checkpoint=True),
            Step("CheckpointAnswered", self._answer_checkpoint, checkpoint=True),
            Step("DownloadCaptured", self._collect_download, "Download successful!", checkpoint=True),
        ]

    async def _open_search(self) -> None:
        await self.open_menu_entry(DOWNLOAD_SELECTORS["menu_entry"], DOWNLOAD_SELECTORS["view"])

    async def _confirm_form(self) -> None:
        await self.driver.wait_for(DOWNLOAD_SELECTORS["eid_input"])

    async def _submit_search(self) -> None:
        await self.driver.type_text(DOWNLOAD_SELECTORS["eid_input"], self.params["eId"])
        await self.driver.click(DOWNLOAD_SELECTORS["submit"])

    async def _check_record(self) -> None:
        shown = await self.driver.wait_for_any(
            [DOWNLOAD_SELECTORS["results_card"], DOWNLOAD_SELECTORS["error_box"]],
            timeout_ms=self.settings.element_timeout_ms,
        )
        if shown == DOWNLOAD_SELECTORS["error_box"]:
            message = await self.driver.read_text(DOWNLOAD_SELECTORS["error_message"])
            raise BusinessRejection(message or "No E-ID record found for this number.", state="RecordNotFound")

    async def _trigger_download(self) -> None:
        await self.progress("Waiting for download button to be enabled...")
        await self.driver.wait_for(
            DOWNLOAD_SELECTORS["download_button_enabled"], timeout_ms=self.settings.navigation_timeout_ms
        )
        await self.driver.scroll_into_view(DOWNLOAD_SELECTORS["download_button"])
        await self.progress("Clicking download button...")
        await self.driver.click(DOWNLOAD_SELECTORS["download_button_enabled"])

    async def _await_checkpoint(self) -> None:
        await self.driver.wait_for(PORTAL_SELECTORS["captcha_view"], timeout_ms=self.settings.element_timeout_ms)

    async def _answer_checkpoint(self) -> None:
        await self.solve_checkpoint()
        # Subscribe before the click that makes the portal emit the file
        self._capture = self.driver.capture_download(is_eid_artifact)
        await self.submit_checkpoint()

    async def _collect_download(self) -> Optional[Outcome]:
        data = await self._capture.wait(self.settings.download_settle_seconds)
        if data is None:
            logger.info(f"[{self.session_id}] Nothing captured within {self.settings.download_settle_seconds}s")
            raise VerificationError(DOWNLOAD_FAILED_MESSAGE, state="DownloadFailed")
        return Outcome(success=True, data=data.decode("utf-8", errors="replace"))
