"""Narrator service - AI incident explanations with a deterministic fallback."""
import asyncio
import json
import logging
import re
from dataclasses import dataclass
from typing import Optional

import httpx

from ..models.incident import Severity

logger = logging.getLogger(__name__)

_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)


@dataclass
class IncidentContext:
    """What the generator is told about a failing monitor."""
    url: str
    status_code: Optional[int] = None
    response_time: Optional[int] = None
    error_message: Optional[str] = None
    prior_incident_count: int = 0


@dataclass
class IncidentAnalysis:
    explanation: str
    severity: Severity
    suggested_fix: str
    fallback: bool = False


def determine_severity(
    status_code: Optional[int],
    response_time: Optional[int] = None,
    slow_threshold_ms: int = 3000,
) -> Severity:
    """Severity from the probe outcome alone.

    No response or 5xx is HIGH, 4xx is MEDIUM, any other failing code is LOW.
    A response slower than the slow threshold is never below MEDIUM.
    """
    if not status_code or status_code >= 500:
        severity = Severity.HIGH
    elif status_code >= 400:
        severity = Severity.MEDIUM
    else:
        severity = Severity.LOW

    if severity == Severity.LOW and response_time and response_time > slow_threshold_ms:
        severity = Severity.MEDIUM
    return severity


class NarratorService:
    """Calls the Gemini generateContent API, bounded by a timeout.

    Never raises: an unconfigured key, a timeout, a transport error or an
    unparseable reply all produce the fallback analysis.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "gemini-1.5-flash",
        base_url: str = "https://generativelanguage.googleapis.com/v1beta",
        timeout: float = 6.0,
        slow_threshold_ms: int = 3000,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.slow_threshold_ms = slow_threshold_ms
        self._client = http_client or httpx.AsyncClient(timeout=timeout)

    async def generate_explanation(self, context: IncidentContext) -> IncidentAnalysis:
        if not self.api_key:
            logger.warning("Narrative API not configured, using fallback analysis")
            return self.fallback_analysis(context)

        try:
            return await asyncio.wait_for(self._call_api(context), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Narrative generation timed out after {self.timeout}s for {context.url}")
        except httpx.HTTPError as e:
            logger.error(f"Narrative API call failed: {type(e).__name__}: {e}")
        except (ValueError, KeyError, IndexError, TypeError) as e:
            logger.error(f"Narrative API returned an unusable reply: {e}")
        return self.fallback_analysis(context)

    def fallback_analysis(self, context: IncidentContext) -> IncidentAnalysis:
        status_code = context.status_code
        error = (context.error_message or "").lower()

        explanation = "Website is unreachable."
        suggested_fix = "Check server status and connectivity."

        if status_code and status_code >= 500:
            explanation = f"Server error ({status_code}). Check application logs."
            suggested_fix = "Review server logs for error details."
        elif status_code and status_code >= 400:
            explanation = f"Client error ({status_code}). Check request configuration."
            suggested_fix = "Verify URL and request parameters are correct."
        elif status_code:
            explanation = f"Unexpected response ({status_code})."
            suggested_fix = "Check redirects and the response returned by the server."

        if context.response_time and context.response_time > self.slow_threshold_ms and status_code:
            explanation = f"Slow response ({context.response_time}ms). Possible performance issue."
            suggested_fix = "Investigate server performance and database queries."

        if "timeout" in error:
            explanation = "Request timeout. Server not responding."
            suggested_fix = "Verify server is running and accessible."

        return IncidentAnalysis(
            explanation=explanation,
            severity=determine_severity(status_code, context.response_time, self.slow_threshold_ms),
            suggested_fix=suggested_fix,
            fallback=True,
        )

    async def _call_api(self, context: IncidentContext) -> IncidentAnalysis:
        response = await self._client.post(
            f"{self.base_url}/models/{self.model}:generateContent",
            params={"key": self.api_key},
            json={"contents": [{"parts": [{"text": self._build_prompt(context)}]}]},
        )
        response.raise_for_status()
        data = response.json()
        text = data["candidates"][0]["content"]["parts"][0]["text"]
        return self._parse_reply(text, context)

    def _build_prompt(self, context: IncidentContext) -> str:
        status = context.status_code if context.status_code is not None else "No response"
        response_time = f"{context.response_time}ms" if context.response_time else "N/A"
        return (
            "You are an expert SRE. Analyze this website incident and respond as JSON:\n\n"
            f"Website: {context.url}\n"
            f"Status Code: {status}\n"
            f"Response Time: {response_time}\n"
            f"Error: {context.error_message or 'Unknown'}\n"
            f"Previous Incidents (24h): {context.prior_incident_count}\n\n"
            "Respond ONLY with valid JSON (no markdown):\n"
            "{\n"
            '  "explanation": "1-2 sentence technical explanation of the likely cause",\n'
            '  "severity": "LOW|MEDIUM|HIGH",\n'
            '  "suggestedFix": "1-2 sentence immediate action to resolve"\n'
            "}"
        )

    def _parse_reply(self, text: str, context: IncidentContext) -> IncidentAnalysis:
        match = _JSON_OBJECT.search(text)
        if not match:
            raise ValueError("no JSON object in reply")
        parsed = json.loads(match.group(0))

        explanation = parsed.get("explanation") or "Unable to determine cause"
        suggested_fix = parsed.get("suggestedFix") or "Check server logs and connectivity"
        if not isinstance(explanation, str) or not isinstance(suggested_fix, str):
            raise TypeError("explanation and suggestedFix must be strings")

        severity_raw = str(parsed.get("severity", "")).upper()
        if severity_raw in Severity.__members__:
            severity = Severity(severity_raw)
        else:
            severity = determine_severity(context.status_code, context.response_time, self.slow_threshold_ms)

        return IncidentAnalysis(
            explanation=explanation,
            severity=severity,
            suggested_fix=suggested_fix,
        )

    async def close(self):
        await self._client.aclose()
