"""
Gemini vision moderation client.

Downloads a stored photo, sends it inline to the Gemini ``generateContent``
REST endpoint with a moderation rubric and parses a decision out of the
model's free-form reply. Configuration, transport and parse failures never
raise: they come back as an ``AnalysisResult`` with ``error_message`` set.
"""

import base64
import json
import logging
import math
import re
from typing import Optional

import httpx

from .credentials import CredentialResolver, GEMINI_API_KEY
from .exceptions import StorageError
from .models import ModerationDecision
from .retry import convert_http_error, NetworkError, exponential_backoff
from .schemas import AnalysisResult
from .storage import StorageProvider

logger = logging.getLogger(__name__)

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/models"

FALLBACK_MANUAL_REVIEW = "manual_review"
FALLBACK_APPROVE = "approve_fallback"

DEFAULT_CONFIDENCE = 0.8
FALLBACK_CONFIDENCE = 0.7

RUBRIC_PROMPT = """You are moderating photos uploaded by guests at a private event (wedding, party, concert, meetup).
Decide whether the photo may be shown on the shared event gallery.

APPROVE baseline:
- People celebrating, dancing, posing, group photos and selfies
- Food, decorations, venues, stages, landscapes
- Social drinking in an event context

REJECT baseline:
- Explicit nudity or sexual content
- Gore or graphic violence
- Weapons shown in a threatening context
- Drugs or drug paraphernalia
- Hate symbols or offensive gestures
- Exposed personal data (ID cards, credit cards, documents, screens with private info)

Respond with a single JSON object and nothing else:
{"decision": "approve" or "reject", "confidence": number between 0.0 and 1.0, "reason": "short explanation"}"""

_JSON_BLOCK = re.compile(r"\{[\s\S]*\}")


class ModelOutputError(ValueError):
    """The model reply did not contain a usable decision"""
    pass


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def parse_model_output(text: str, fallback_policy: str = FALLBACK_MANUAL_REVIEW) -> AnalysisResult:
    """Extract ``{decision, confidence, reason}`` from free-form model text.

    The first brace-delimited block is parsed as JSON. ``reject`` maps to
    reject, any other decision to approve. A non-numeric or non-finite
    confidence becomes 0.8. Text without a parseable object follows ``fallback_policy``.
    """
    match = _JSON_BLOCK.search(text or "")
    parsed = None
    if match:
        try:
            parsed = json.loads(match.group(0))
        except json.JSONDecodeError:
            parsed = None

    if not isinstance(parsed, dict):
        if fallback_policy == FALLBACK_APPROVE:
            return AnalysisResult(
                suggestion=ModerationDecision.APPROVE,
                confidence=FALLBACK_CONFIDENCE,
                reason="Analysis completed (fallback)",
            )
        raise ModelOutputError(f"Unparseable model output: {(text or '')[:200]!r}")

    decision = str(parsed.get("decision") or parsed.get("suggestion") or "").strip().lower()
    suggestion = ModerationDecision.REJECT if decision == "reject" else ModerationDecision.APPROVE

    confidence = parsed.get("confidence")
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)) or not math.isfinite(confidence):
        confidence = DEFAULT_CONFIDENCE

    return AnalysisResult(
        suggestion=suggestion,
        confidence=_clamp(float(confidence)),
        reason=str(parsed.get("reason") or "Analysis completed"),
    )


def _response_text(data: dict) -> str:
    try:
        return data["candidates"][0]["content"]["parts"][0]["text"]
    except (KeyError, IndexError, TypeError):
        raise ModelOutputError("Gemini response has no candidate text")


class GeminiModerationClient:
    """Vision moderation through the Gemini REST API"""

    def __init__(
        self,
        credentials: CredentialResolver,
        storage: StorageProvider,
        http_client: Optional[httpx.AsyncClient] = None,
        model: str = "gemini-2.0-flash",
        timeout: float = 30.0,
        max_retries: int = 2,
        fallback_policy: str = FALLBACK_MANUAL_REVIEW,
    ):
        self.credentials = credentials
        self.storage = storage
        self.http_client = http_client
        self.model = model
        self.timeout = timeout
        self.max_retries = max_retries
        self.fallback_policy = fallback_policy

    async def analyze(self, storage_path: str) -> AnalysisResult:
        """Analyze one stored photo. Never raises for upstream problems."""
        api_key = await self.credentials.get(GEMINI_API_KEY)
        if not api_key:
            logger.warning("Gemini API key not configured", extra={"storage_path": storage_path})
            return self._failure("Gemini API key not configured; set it in the admin panel")

        try:
            photo = await self.storage.download(storage_path)
        except StorageError as e:
            logger.error(f"Photo download failed for moderation: {e}", extra={"storage_path": storage_path})
            return self._failure(str(e))

        try:
            text = await self._generate(api_key, photo.data, photo.content_type)
            result = parse_model_output(text, self.fallback_policy)
        except ModelOutputError as e:
            logger.warning(f"Gemini output could not be parsed: {e}", extra={"storage_path": storage_path})
            return self._failure(str(e))
        except Exception as e:
            logger.error(f"Gemini analysis failed: {e}", extra={"storage_path": storage_path})
            return self._failure(f"Analysis error: {e}")

        logger.info(
            "Gemini analysis completed",
            extra={
                "storage_path": storage_path,
                "suggestion": result.suggestion.value,
                "confidence": result.confidence,
            }
        )
        return result

    def _failure(self, message: str) -> AnalysisResult:
        return AnalysisResult(suggestion=None, confidence=0.0, error_message=message)

    def _build_body(self, data: bytes, mime_type: str) -> dict:
        return {
            "contents": [{
                "parts": [
                    {"inline_data": {"mime_type": mime_type, "data": base64.b64encode(data).decode("ascii")}},
                    {"text": RUBRIC_PROMPT},
                ]
            }]
        }

    async def _generate(self, api_key: str, data: bytes, mime_type: str) -> str:
        url = f"{GEMINI_BASE_URL}/{self.model}:generateContent"
        body = self._build_body(data, mime_type)

        @exponential_backoff(max_retries=self.max_retries, base_delay=1.0, max_delay=10.0)
        async def call(client: httpx.AsyncClient) -> dict:
            try:
                resp = await client.post(url, params={"key": api_key}, json=body)
            except httpx.RequestError as e:
                raise NetworkError(f"Network error calling Gemini: {e}")
            if resp.status_code != 200:
                raise convert_http_error(resp.status_code, f"Gemini API error: {resp.text[:200]}")
            return resp.json()

        if self.http_client is not None:
            data_json = await call(self.http_client)
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                data_json = await call(client)
        return _response_text(data_json)
