"""Intent and slot extraction with Gemini structured output.

The oracle fails open: any error (no API key, HTTP failure, malformed JSON)
becomes an "unknown" intent carrying a generic retry prompt, so the caller
always has something to tell the user.
"""

import json
from datetime import date
from typing import Any, Dict, Optional

from google import genai
from google.genai import types
from loguru import logger
from pydantic import ValidationError
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..browser.sanitize import mask_sensitive_in_logs, sanitize_fields
from ..errors import OracleError
from ..models import Intent, IntentData, IntentResult


ORACLE_ERROR_PROMPT = "My AI brain had an error. Please try again."


SYSTEM_PROMPT = """
You are an AI agent that parses user requests for a government E-ID services platform.
Your job is to determine the user's intent and extract all necessary information.
The user might not provide all information at once.
Today's date is {today}.

Intents:
- "register_eid": User wants to register a new E-ID. You MUST extract name, dob, gender, phone, and address.
- "download_eid": User wants to download their E-ID. You MUST extract the 12-digit eId.
- "update_eid": User wants to update their info. You MUST extract the 12-digit eId AND the field to update (name, phone, or address) with its new value.
- "unknown": You cannot understand the intent, OR you are missing information.

RULES:
1. DATE OF BIRTH (dob) IS CRITICAL: You MUST convert any date format into 'YYYY-MM-DD'.
   Examples:
   - '1/1/2012' becomes '2012-01-01'
   - 'May 10 1998' becomes '1998-05-10'
   - '10-05-1998' becomes '1998-05-10'
2. For "register_eid", if any field (name, dob, gender, phone, address) is missing, set intent to "unknown" and ask for the missing fields in 'missingInfo'.
3. For "download_eid", if 'eId' is missing, set intent to "unknown" and ask for it.
4. For "update_eid", if 'eId' OR the new info is missing, set intent to "unknown" and ask for it.
"""


RESPONSE_SCHEMA: Dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "intent": {
            "type": "STRING",
            "enum": [intent.value for intent in Intent],
        },
        "data": {
            "type": "OBJECT",
            "properties": {
                "name": {"type": "STRING"},
                "dob": {"type": "STRING", "description": "Must be in YYYY-MM-DD format"},
                "gender": {"type": "STRING", "enum": ["Male", "Female", "Other"]},
                "phone": {"type": "STRING"},
                "address": {"type": "STRING"},
                "eId": {"type": "STRING", "description": "A 12-digit number"},
                "missingInfo": {
                    "type": "STRING",
                    "description": "A friendly question to ask the user to get missing info.",
                },
            },
        },
    },
    "required": ["intent"],
}


def fallback_result(prompt: str = ORACLE_ERROR_PROMPT) -> IntentResult:
    return IntentResult(intent=Intent.UNKNOWN, data=IntentData(missingInfo=prompt))


def parse_intent_payload(payload_text: str) -> IntentResult:
    """
    Parse the model's JSON text into an IntentResult

    Raises:
        OracleError: Text is not JSON or does not match the contract
    """
    try:
        payload = json.loads(payload_text)
    except (TypeError, json.JSONDecodeError) as e:
        raise OracleError(f"Oracle returned invalid JSON: {e}") from e

    if not isinstance(payload, dict):
        raise OracleError("Oracle returned a non-object payload")
    payload.setdefault("data", {})
    if payload["data"] is None:
        payload["data"] = {}

    try:
        return IntentResult.model_validate(payload)
    except ValidationError as e:
        raise OracleError(f"Oracle payload does not match the intent contract: {e.error_count()} error(s)") from e


class IntentOracle:
    """Classify free text into an intent plus extracted fields"""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "gemini-2.5-flash",
        client: Optional[genai.Client] = None,
    ):
        """
        Args:
            api_key: Gemini API key; without one every call fails open
            model: Gemini model id
            client: Pre-built client (tests inject a mock here)
        """
        self.model = model
        if client is not None:
            self.client = client
        elif api_key:
            self.client = genai.Client(api_key=api_key)
            logger.info("Gemini intent oracle configured")
        else:
            self.client = None
            logger.warning("Gemini API key not found. Set GOOGLE_API_KEY or GEMINI_API_KEY.")

    @property
    def available(self) -> bool:
        return self.client is not None

    def _config(self) -> types.GenerateContentConfig:
        return types.GenerateContentConfig(
            system_instruction=SYSTEM_PROMPT.format(today=date.today().isoformat()),
            response_mime_type="application/json",
            response_schema=RESPONSE_SCHEMA,
        )

    @retry(
        stop=stop_after_attempt(2),
        wait=wait_exponential(multiplier=1, min=1, max=4),
        retry=retry_if_exception_type(OracleError),
        reraise=True
    )
    async def _generate(self, text: str) -> IntentResult:
        try:
            response = await self.client.aio.models.generate_content(
                model=self.model,
                contents=text,
                config=self._config(),
            )
        except Exception as e:
            raise OracleError(f"Gemini API error: {e}") from e

        payload_text = getattr(response, "text", None)
        if not payload_text:
            raise OracleError("Empty response from Gemini")
        logger.debug(f"[Gemini] Received plan: {mask_sensitive_in_logs(payload_text)}")
        return parse_intent_payload(payload_text)

    async def classify(self, text: str) -> IntentResult:
        """
        Classify a user message

        Args:
            text: Raw user text

        Returns:
            IntentResult; on any failure an "unknown" result with a retry prompt
        """
        logger.info(f"[Gemini] Analyzing text ({len(text)} chars)")
        try:
            if self.client is None:
                raise OracleError("Gemini client not configured")
            result = await self._generate(text)
        except OracleError as e:
            logger.error(f"[Gemini] Error: {e}")
            return fallback_result()
        except Exception as e:
            logger.exception(f"[Gemini] Unexpected error: {e}")
            return fallback_result()

        logger.info(
            f"[Gemini] Intent {result.intent.value}, fields {sanitize_fields(result.data.fields())}"
        )
        return result
