"""HTTP transport to the upstream generative-text API.

``GeminiTransport`` makes exactly one ``generateContent`` call per
``generate`` invocation, bounded by a timeout, and turns every way that
call can fail into one of the upstream errors from
``clarity.utils.errors``.  Anything with the same ``generate`` signature
can stand in for it (tests inject fakes).
"""
from __future__ import annotations
from typing import Any, Dict, Optional
import os
import time
import logging

import requests

from clarity.utils.errors import (
    EmptyUpstreamResponse,
    MalformedUpstreamJSON,
    NetworkFailure,
    UpstreamHTTPError,
    UpstreamTimeout,
)
from clarity.utils.storage import fingerprint
from clarity.utils.telemetry import add_upstream_latency

MODEL_NAME = os.environ.get("CLARITY_MODEL", "gemini-3-flash-preview")
BASE_URL = os.environ.get("CLARITY_BASE_URL", "https://generativelanguage.googleapis.com/v1beta")
TIMEOUT = float(os.environ.get("CLARITY_TIMEOUT", "15"))
TEMPERATURE = float(os.environ.get("CLARITY_TEMPERATURE", "0.7"))

logger = logging.getLogger(__name__)


def build_request_body(prompt: str, schema: Optional[Dict[str, Any]] = None, temperature: float = TEMPERATURE) -> Dict[str, Any]:
    body: Dict[str, Any] = {
        "contents": [{"parts": [{"text": prompt}]}],
        "generationConfig": {
            "temperature": temperature,
            "responseMimeType": "application/json" if schema else "text/plain",
        },
    }
    if schema:
        body["generationConfig"]["responseSchema"] = schema
    return body


def extract_text(data: Any) -> str:
    """Concatenate the text parts of the first candidate, '' if there are none."""
    if not isinstance(data, dict):
        return ""
    candidates = data.get("candidates")
    if not isinstance(candidates, list) or not candidates or not isinstance(candidates[0], dict):
        return ""
    content = candidates[0].get("content")
    if not isinstance(content, dict):
        return ""
    parts = content.get("parts")
    if not isinstance(parts, list):
        return ""
    return "".join(p.get("text", "") for p in parts if isinstance(p, dict) and isinstance(p.get("text"), str))


class GeminiTransport:
    def __init__(
        self,
        base_url: str = BASE_URL,
        model: str = MODEL_NAME,
        timeout: float = TIMEOUT,
        temperature: float = TEMPERATURE,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout
        self.temperature = temperature
        self.session = session or requests.Session()

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/models/{self.model}:generateContent"

    def generate(self, prompt: str, api_key: str, schema: Optional[Dict[str, Any]] = None) -> str:
        body = build_request_body(prompt, schema, temperature=self.temperature)
        start = time.monotonic()
        try:
            resp = self.session.post(
                self.endpoint,
                params={"key": api_key},
                headers={"Content-Type": "application/json"},
                json=body,
                timeout=self.timeout,
            )
        except requests.Timeout as exc:
            logger.warning("Upstream call timed out after %.1fs (key=%s)", self.timeout, fingerprint(api_key))
            raise UpstreamTimeout() from exc
        except requests.RequestException as exc:
            logger.error("Upstream call failed: %s", type(exc).__name__)
            raise NetworkFailure() from exc
        finally:
            add_upstream_latency((time.monotonic() - start) * 1000.0)

        if not resp.ok:
            logger.error("Upstream API error %s: %s", resp.status_code, resp.text[:500])
            raise UpstreamHTTPError(resp.status_code)

        try:
            data = resp.json()
        except ValueError as exc:
            logger.error("Upstream returned a non-JSON body")
            raise MalformedUpstreamJSON() from exc

        text = extract_text(data)
        if not text.strip():
            raise EmptyUpstreamResponse()
        return text
