# ctidash/ai.py
import logging
import re
import time

import requests

logger = logging.getLogger(__name__)

SECTION_HEADERS = ["EXECUTIVE SUMMARY", "BUSINESS IMPACT", "DETECTION & RESPONSE"]
SECTION_KEYS = {
    "EXECUTIVE SUMMARY": "executiveSummary",
    "BUSINESS IMPACT": "businessImpact",
    "DETECTION & RESPONSE": "detectionAndResponse",
}


class AIServiceError(Exception):
    """Upstream failure; ``status`` is the HTTP status Gemini answered with, or None."""

    def __init__(self, message, status=None):
        super().__init__(message)
        self.status = status


def build_incident_prompt(incident, users=(), threat_actors=()):
    assignee = next((u for u in users if str(u.get("_id")) == incident.get("assignedToUserId")), None)
    assignee_name = f"{assignee.get('firstName', '')} {assignee.get('lastName', '')}".strip() if assignee else "Unassigned"
    actor_ids = set(incident.get("threatActorIds") or [])
    actor_names = ", ".join(a["name"] for a in threat_actors if str(a.get("_id")) in actor_ids) or "None identified"
    cves = ", ".join(incident.get("cveIds") or []) or "None"

    return f"""Analyze this cybersecurity incident and provide a structured threat intelligence summary for small and medium enterprises (SMEs).

INCIDENT DETAILS:
- Title: {incident.get('title')}
- Description: {incident.get('description')}
- Status: {incident.get('status')}
- Priority: {incident.get('priority')}
- Type: {incident.get('type') or 'Not specified'}
- CVEs: {cves}
- Threat Actors: {actor_names}
- Assigned To: {assignee_name}

IMPORTANT: You MUST format your response with exactly these 3 sections using the exact headers shown below. Do not use any other format. Do not use any asterisks or other symbols in your response.

EXECUTIVE SUMMARY
Provide a concise overview of the threat and its significance.

BUSINESS IMPACT
Explain the potential impact on business operations, data, and systems.

DETECTION & RESPONSE
Describe how to detect this type of threat and immediate response actions. Provide specific, actionable recommendations for prevention and mitigation.

Format your response exactly as shown above with these 3 sections. Keep it short and concise. Use professional language suitable for business stakeholders who may not have deep technical knowledge."""


_HEADER_RE = re.compile(
    r"^\W*(" + "|".join(re.escape(h) for h in SECTION_HEADERS) + r")\W*$",
    re.I | re.M,
)

def parse_summary_sections(text):
    """Split model output on the three expected headers; text before the first header is dropped."""
    sections = {v: "" for v in SECTION_KEYS.values()}
    if not text:
        return sections
    marks = list(_HEADER_RE.finditer(text))
    for i, m in enumerate(marks):
        end = marks[i + 1].start() if i + 1 < len(marks) else len(text)
        key = SECTION_KEYS[m.group(1).upper()]
        sections[key] = text[m.end():end].strip()
    if not marks:
        sections["executiveSummary"] = text.strip()
    return sections


class GeminiClient:
    """generateContent wrapper; 503 answers are retried with exponential backoff (1s, 2s, 4s, ...)."""

    def __init__(self, api_key, model="gemini-1.5-flash",
                 base_url="https://generativelanguage.googleapis.com/v1",
                 timeout=30, max_retries=5, base_delay=1.0, sleep=time.sleep, session=None):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.sleep = sleep
        self.session = session or requests.Session()
        self.session.headers.update({"Content-Type": "application/json", "User-Agent": "cti-dashboard/1.0"})

    @property
    def url(self):
        return f"{self.base_url}/models/{self.model}:generateContent"

    def generate(self, prompt: str) -> str:
        body = {"contents": [{"parts": [{"text": prompt}]}]}
        for attempt in range(self.max_retries + 1):
            logger.info("gemini attempt %d/%d (prompt %d chars)", attempt + 1, self.max_retries + 1, len(prompt))
            try:
                r = self.session.post(self.url, params={"key": self.api_key}, json=body, timeout=self.timeout)
            except requests.RequestException as e:
                logger.warning("gemini request failed: %s", e)
                raise AIServiceError(str(e))
            if r.status_code == 503 and attempt < self.max_retries:
                delay = self.base_delay * (2 ** attempt)
                logger.warning("gemini overloaded (503), retrying in %.0fs", delay)
                self.sleep(delay)
                continue
            if r.status_code >= 400:
                logger.error("gemini returned %s: %s", r.status_code, r.text[:300])
                raise AIServiceError(f"Gemini API error {r.status_code}", status=r.status_code)
            return self._extract_text(r.json())

    @staticmethod
    def _extract_text(payload):
        candidates = (payload or {}).get("candidates") or []
        parts = ((candidates[0].get("content") or {}).get("parts") or []) if candidates else []
        text = "".join(p.get("text", "") for p in parts).strip()
        if not text:
            raise AIServiceError("Empty response from Gemini API")
        return text
