"""Error taxonomy for the E-ID agent.

Everything raised inside a workflow run is caught at the workflow boundary
and turned into a failure Outcome (see workflows/base.py). OracleError never
reaches the user at all: the oracle falls back to an "unknown" intent.
"""

from typing import Optional


class EIDAgentError(Exception):
    """Base class for all agent errors"""


class OracleError(EIDAgentError):
    """Intent extraction failed (API error, bad JSON, missing key)"""


class AutomationError(EIDAgentError):
    """Base class for errors that end an automation run

    Args:
        message: Human-readable reason
        state: Terminal workflow state the error leaves the run in, if the
            error itself decides it (e.g. RecordNotFound, DownloadFailed)
    """

    def __init__(self, message: str, state: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.state = state


class NavigationError(AutomationError):
    """Expected page element did not appear within its timeout"""


class VerificationError(AutomationError):
    """Checkpoint answer rejected, or its effect never became observable"""


class CheckpointTimeout(AutomationError):
    """No human answer arrived before the checkpoint deadline"""


class BusinessRejection(AutomationError):
    """Portal-reported domain failure (duplicate phone, record not found...)

    The message is the portal's own text and is surfaced to the user as-is.
    """
