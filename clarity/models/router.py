"""Action routing for the proxy.

Validates the inbound payload, picks the prompt template and response
schema for the requested action, performs the single upstream call
through an injected transport and shapes the reply.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol
import json
import logging

from pydantic import ValidationError as PydanticValidationError

from clarity.models import prompts
from clarity.models.schemas import MAX_QUESTIONS, ActionRequest, ClarificationResponse, QAPair
from clarity.utils.errors import (
    EmptyUpstreamResponse,
    InvalidAction,
    InvalidInput,
    MalformedUpstreamJSON,
    Unauthorized,
)

FAST = "fast"
CLARIFY_QUESTIONS = "clarify_questions"
CLARIFY_FINAL = "clarify_final"
ACTIONS = (FAST, CLARIFY_QUESTIONS, CLARIFY_FINAL)

logger = logging.getLogger(__name__)


class Transport(Protocol):
    def generate(self, prompt: str, api_key: str, schema: Optional[Dict[str, Any]] = None) -> str:
        ...


@dataclass(frozen=True)
class UpstreamCall:
    prompt: str
    schema: Optional[Dict[str, Any]] = None

    @property
    def expects_json(self) -> bool:
        return self.schema is not None


def parse_request(payload: Any) -> ActionRequest:
    if not isinstance(payload, dict):
        raise InvalidInput("Invalid request body.")
    user_input = payload.get("input")
    if not isinstance(user_input, str) or not user_input.strip():
        raise InvalidInput()
    action = payload.get("action")
    if action not in ACTIONS:
        raise InvalidAction()
    raw_pairs = payload.get("qaPairs")
    if raw_pairs is None:
        raw_pairs = []
    if not isinstance(raw_pairs, list):
        raise InvalidInput("Invalid qaPairs.")
    try:
        pairs = [QAPair.model_validate(p) for p in raw_pairs]
    except PydanticValidationError as exc:
        raise InvalidInput("Invalid qaPairs.") from exc
    api_key = payload.get("apiKey")
    if api_key is not None and not isinstance(api_key, str):
        raise InvalidInput("Invalid apiKey.")
    return ActionRequest(action=action, input=user_input, qaPairs=pairs, apiKey=api_key)


def plan(req: ActionRequest, language: str = prompts.DEFAULT_LANGUAGE) -> UpstreamCall:
    if req.action == FAST:
        return UpstreamCall(prompts.fast_prompt(req.input, language))
    if req.action == CLARIFY_QUESTIONS:
        return UpstreamCall(prompts.questions_prompt(req.input, language), prompts.QUESTIONS_SCHEMA)
    if req.action == CLARIFY_FINAL:
        return UpstreamCall(prompts.final_prompt(req.input, req.qa_pairs, language))
    raise InvalidAction()

# JSON-mode replies are normally bare JSON; tolerate a fenced block too

def _load_json(text: str) -> Any:
    cleaned = text.strip()
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        pass
    for marker in ("```json", "```JSON", "```"):
        open_idx = cleaned.find(marker)
        if open_idx == -1:
            continue
        content_start = open_idx + len(marker)
        close_idx = cleaned.find("```", content_start)
        if close_idx == -1:
            continue
        try:
            return json.loads(cleaned[content_start:close_idx].strip())
        except json.JSONDecodeError:
            continue
    raise MalformedUpstreamJSON()


def parse_questions(text: str) -> ClarificationResponse:
    data = _load_json(text)
    try:
        parsed = ClarificationResponse.model_validate(data)
    except PydanticValidationError as exc:
        logger.error("Clarification JSON failed shape validation: %s", exc.error_count())
        raise MalformedUpstreamJSON() from exc
    return ClarificationResponse(questions=parsed.questions[:MAX_QUESTIONS])


def dispatch(
    req: ActionRequest,
    transport: Transport,
    api_key: Optional[str],
    language: str = prompts.DEFAULT_LANGUAGE,
) -> Dict[str, Any]:
    if not api_key:
        raise Unauthorized()
    call = plan(req, language)
    text = transport.generate(call.prompt, api_key, schema=call.schema)
    if call.expects_json:
        return parse_questions(text).model_dump()
    result = text.strip()
    if not result:
        raise EmptyUpstreamResponse()
    return {"result": result}
