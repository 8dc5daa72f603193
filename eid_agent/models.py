"""Data models shared by the oracle, workflows and session layer"""

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict


class Intent(str, Enum):
    """Actions the oracle can classify a request into"""
    REGISTER = "register_eid"
    DOWNLOAD = "download_eid"
    UPDATE = "update_eid"
    UNKNOWN = "unknown"


class IntentData(BaseModel):
    """Fields extracted from the user's text (all optional)"""
    model_config = ConfigDict(frozen=True, extra="ignore")

    name: Optional[str] = None
    dob: Optional[str] = None  # YYYY-MM-DD
    gender: Optional[str] = None  # Male | Female | Other
    phone: Optional[str] = None
    address: Optional[str] = None
    eId: Optional[str] = None
    missingInfo: Optional[str] = None

    def fields(self) -> Dict[str, str]:
        """Return the non-empty extracted fields, excluding the prompt"""
        values = self.model_dump(exclude={"missingInfo"})
        return {
            key: value.strip()
            for key, value in values.items()
            if isinstance(value, str) and value.strip()
        }


class IntentResult(BaseModel):
    """Oracle output for one inbound message"""
    model_config = ConfigDict(frozen=True)

    intent: Intent = Intent.UNKNOWN
    data: IntentData = IntentData()

    @property
    def missing_info_prompt(self) -> Optional[str]:
        return self.data.missingInfo


class Outcome(BaseModel):
    """Terminal result of one workflow run

    Exactly one payload field is set: eId (registration), data (download),
    message (update) on success, or error on failure.
    """
    model_config = ConfigDict(frozen=True)

    success: bool
    eId: Optional[str] = None
    data: Optional[str] = None
    message: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def failure(cls, error: str) -> "Outcome":
        return cls(success=False, error=error)

    def to_wire(self) -> Dict[str, Any]:
        """Serialize for the channel, dropping unset payload fields"""
        return self.model_dump(exclude_none=True)
